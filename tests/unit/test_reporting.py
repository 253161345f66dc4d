import pandas as pd
import pytest

from spatial_epi import reporting, simulation
from spatial_epi.common import RepoInfo
from tests.utils import read_header

REPO_INFO = RepoInfo(git_sha="abc123", uri="http://example.com", is_dirty=False)


@pytest.fixture
def run_output(data_model, rng):
    return simulation.basicSimulation(data_model, rng)


def _header(model, output, stem="local-seed-42-run-0"):
    return reporting.headerTable(model, 42, 0, stem, REPO_INFO, output.summary)


def test_headerTable(data_model, run_output):
    header = _header(data_model, run_output).set_index("name")["value"]

    assert header["alert.policy"] == "local"
    assert header["max.seconds.per.day"] == 60.0
    assert header["seed"] == 42
    assert header["trial"] == 0
    assert header["num.locales"] == 4
    assert header["population"] == 25000
    assert header["alert.level.3.control"] == pytest.approx(0.32)
    assert header["alert.level.4.flow"] == pytest.approx(0.001)
    assert header["alert.trigger.2"] == pytest.approx(0.005)
    assert header["alert.trigger.4"] == pytest.approx(0.025)
    assert header["run.final.tick"] == 30
    assert header["log.file.name"] == "local-seed-42-run-0.csv"
    assert header["cases.file.name"] == "local-seed-42-run-0.cases"
    assert header["git.sha"] == "abc123"
    assert header["git.dirty"] == False  # pylint: disable=singleton-comparison


def test_headerTable_names_are_unique(data_model, run_output):
    header = _header(data_model, run_output)

    assert header["name"].is_unique
    assert list(header.columns) == reporting.HEADER_COLUMNS


def test_headerTable_seed_is_the_experiment_seed(data_model, run_output):
    header = reporting.headerTable(data_model, 7, 3, "x", REPO_INFO, run_output.summary).set_index("name")["value"]

    assert header["seed"] == 7
    assert header["trial"] == 3


def test_headerTable_without_case_log(data_model, run_output):
    model = data_model._replace(run=data_model.run._replace(logCases=False))

    header = _header(model, run_output).set_index("name")["value"]

    assert header["cases.file.name"] == ""


def test_writeRun(tmp_path, data_model, run_output):
    stem = "local-seed-42-run-0"
    directory = tmp_path / "out"

    paths = reporting.writeRun(directory, stem, _header(data_model, run_output, stem), run_output)

    assert [path.name for path in paths] == [f"{stem}.header", f"{stem}.csv", f"{stem}.cases"]
    with open(directory / f"{stem}.header") as fp:
        assert fp.readline().startswith("spatial_epi ")
        assert fp.readline().startswith("created,")
    detail = pd.read_csv(directory / f"{stem}.csv", dtype={"locale_id": str})
    pd.testing.assert_frame_equal(detail, run_output.detail, check_dtype=False)
    cases = pd.read_csv(directory / f"{stem}.cases")
    assert len(cases) == len(run_output.cases)


def test_writeRun_without_case_log(tmp_path, data_model, run_output):
    model = data_model._replace(run=data_model.run._replace(logCases=False))

    paths = reporting.writeRun(tmp_path, "x", _header(model, run_output, "x"), run_output)

    assert [path.name for path in paths] == ["x.header", "x.csv"]


def test_header_file_round_trip(tmp_path, data_model, run_output):
    reporting.writeRun(tmp_path, "x", _header(data_model, run_output, "x"), run_output)

    header = read_header(tmp_path / "x.header")

    assert header["alert.policy"] == "local"
    assert header["seed"] == "42"
    assert header["git.uri"] == "http://example.com"
    assert header["log.file.name"] == "x.csv"
    assert int(header["run.total.cases"]) == run_output.summary["total_cases"]
