# Pylint is complaining about duplicated lines, but they are all imports
# pylint: disable=duplicate-code
import shutil
from pathlib import Path

import networkx as nx
import numpy as np
import pandas as pd
import pytest

from spatial_epi import data, loaders, simulation
from spatial_epi.network import Locale, reweightConnections


# Path to directory containing test files for fixtures
FIXTURE_DIR = Path(__file__).parents[0] / "test_data"


@pytest.fixture
def base_data_dir():
    yield FIXTURE_DIR / "inputs"


@pytest.fixture
def datastore(base_data_dir):  # pylint: disable=redefined-outer-name
    with data.Datastore.from_config(base_data_dir / "config.yaml") as store:
        yield store


@pytest.fixture(autouse=True, scope="session")
def teardown_remove_data():
    """Remove test output created during testing."""
    yield
    shutil.rmtree(FIXTURE_DIR / "inputs" / "output", ignore_errors=True)


@pytest.fixture
def alert_levels_table():
    return pd.DataFrame({
        "Level": [1, 2, 3, 4],
        "Control": [0.72, 0.52, 0.32, 0.21],
        "Flow": [0.1, 0.05, 0.01, 0.001],
    })


@pytest.fixture
def alert_triggers_table():
    return pd.DataFrame({"Level": [2, 3, 4], "Threshold": [0.005, 0.01, 0.025]})


@pytest.fixture
def alert_levels(alert_levels_table):  # pylint: disable=redefined-outer-name
    return loaders.readAlertLevels(alert_levels_table)


@pytest.fixture
def disease():
    return loaders.readDiseaseParameters(loaders.readParameters(None))


@pytest.fixture
def testing_parameters():
    return loaders.readTestingParameters(loaders.readParameters(None))


@pytest.fixture
def two_locales():
    """Two locales 10 units apart, connected both ways"""
    locales = [Locale(0, "a", "A", 1000, 0.0, 0.0), Locale(1, "b", "B", 1000, 10.0, 0.0)]
    graph = nx.DiGraph()
    graph.add_nodes_from([0, 1])
    graph.add_edge(0, 1, distance=10.0)
    graph.add_edge(1, 0, distance=10.0)
    reweightConnections(graph, locales)
    return locales, graph


@pytest.fixture
def data_model(datastore):  # pylint: disable=redefined-outer-name
    return simulation.createLocaleModel(
        datastore.read_table("parameters"),
        datastore.read_table("alert-levels"),
        datastore.read_table("alert-triggers"),
        datastore.read_table("locales"),
        datastore.read_table("distances"),
        datastore.read_table("initial-infections"),
        datastore.read_table("alert-schedule"),
    )


@pytest.fixture
def rng():
    return np.random.default_rng(123)
