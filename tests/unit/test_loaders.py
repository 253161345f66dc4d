import math

import pandas as pd
import pytest

from spatial_epi import loaders


def test_readParameters_defaults():
    assert loaders.readParameters(None) == loaders.DEFAULT_PARAMETERS


def test_readParameters_overrides(datastore):
    parameters = loaders.readParameters(datastore.read_table("parameters"))

    assert parameters["setup_method"] == "data"
    assert parameters["p_clinical"] == loaders.DEFAULT_PARAMETERS["p_clinical"]


def test_readParameters_unknown():
    with pytest.raises(ValueError, match="Unknown parameter"):
        loaders.readParameters(pd.DataFrame({"Parameter": ["bogus"], "Value": [1]}))


def test_readParameters_missing_columns():
    with pytest.raises(ValueError):
        loaders.readParameters(pd.DataFrame({"Name": ["seed"], "Value": [1]}))


def test_readRunParameters(datastore):
    run = loaders.readRunParameters(loaders.readParameters(datastore.read_table("parameters")))

    assert run == loaders.RunParameters(
        seed=42,
        trials=2,
        maxDays=30,
        maxSecondsPerDay=60.0,
        setupMethod="data",
        initialCases=10,
        initialCaseMaxAge=0.0,
        initialAlertLevel=1,
        logCases=True,
    )


@pytest.mark.parametrize("name,value", [
    ("seed", -1),
    ("trials", 0),
    ("max_days", 0),
    ("max_seconds_per_day", 0.0),
    ("setup_method", "gis"),
    ("initial_cases", -3),
    ("initial_case_max_age", -1.0),
    ("seed", 1.5),
    ("log_cases", "maybe"),
])
def test_readRunParameters_invalid(name, value):
    parameters = dict(loaders.DEFAULT_PARAMETERS, **{name: value})

    with pytest.raises(ValueError):
        loaders.readRunParameters(parameters)


@pytest.mark.parametrize("value,expected", [("true", True), ("False", False), (1, True), (0, False), ("yes", True)])
def test_readRunParameters_log_cases(value, expected):
    parameters = dict(loaders.DEFAULT_PARAMETERS, log_cases=value)

    assert loaders.readRunParameters(parameters).logCases is expected


def test_readNetworkParameters_defaults():
    network = loaders.readNetworkParameters(loaders.DEFAULT_PARAMETERS)

    assert network.weighting == "distance"
    assert math.isinf(network.maxDistance)


@pytest.mark.parametrize("name,value", [
    ("num_locales", 0),
    ("total_population", 5),
    ("population_cv", 0.0),
    ("world_size", -1.0),
    ("link_multiple", 0.0),
    ("weighting", "random"),
    ("max_distance", 0.0),
])
def test_readNetworkParameters_invalid(name, value):
    parameters = dict(loaders.DEFAULT_PARAMETERS, num_locales=10)
    parameters[name] = value

    with pytest.raises(ValueError):
        loaders.readNetworkParameters(parameters)


@pytest.mark.parametrize("name,value", [
    ("p_clinical", 1.5),
    ("r_clinical", -1.0),
    ("r_dispersion", -0.1),
    ("isolation_multiplier", -0.1),
    ("incubation_shape", 0.0),
    ("generation_max", 0.0),
    ("disease_duration", "long"),
])
def test_readDiseaseParameters_invalid(name, value):
    parameters = dict(loaders.DEFAULT_PARAMETERS, **{name: value})

    with pytest.raises(ValueError):
        loaders.readDiseaseParameters(parameters)


def test_readTestingParameters_invalid():
    parameters = dict(loaders.DEFAULT_PARAMETERS, false_negative_rate=2.0)

    with pytest.raises(ValueError):
        loaders.readTestingParameters(parameters)


@pytest.mark.parametrize("name,value", [("alert_period", 0), ("alert_grace_period", -1)])
def test_readPolicyParameters_invalid(name, value):
    parameters = dict(loaders.DEFAULT_PARAMETERS, **{name: value})

    with pytest.raises(ValueError):
        loaders.readPolicyParameters(parameters)


def test_readAlertLevels(datastore):
    levels = loaders.readAlertLevels(datastore.read_table("alert-levels"))

    assert levels.minLevel == 1
    assert levels.maxLevel == 4
    assert levels.levels[3] == loaders.AlertLevel(control=pytest.approx(0.32), flow=pytest.approx(0.01))
    assert levels.clamp(0) == 1
    assert levels.clamp(7) == 4


@pytest.mark.parametrize("table", [
    pd.DataFrame({"Level": [1, 3], "Control": [1.0, 0.5], "Flow": [0.1, 0.1]}),
    pd.DataFrame({"Level": [1, 1], "Control": [1.0, 0.5], "Flow": [0.1, 0.1]}),
    pd.DataFrame({"Level": [1, 2], "Control": [1.0, 1.5], "Flow": [0.1, 0.1]}),
    pd.DataFrame({"Level": [1, 2], "Control": [1.0, 0.5], "Flow": [0.1, -0.1]}),
    pd.DataFrame({"Level": [], "Control": [], "Flow": []}),
])
def test_readAlertLevels_invalid(table):
    with pytest.raises(ValueError):
        loaders.readAlertLevels(table)


def test_readAlertTriggers(datastore, alert_levels):
    thresholds = loaders.readAlertTriggers(datastore.read_table("alert-triggers"), alert_levels)

    assert thresholds == [pytest.approx(0.005), pytest.approx(0.01), pytest.approx(0.025)]


@pytest.mark.parametrize("table", [
    pd.DataFrame({"Level": [2, 3], "Threshold": [0.01, 0.02]}),
    pd.DataFrame({"Level": [2, 3, 4], "Threshold": [0.01, 0.01, 0.02]}),
    pd.DataFrame({"Level": [2, 3, 4], "Threshold": [0.01, 0.02, 1.5]}),
    pd.DataFrame({"Level": [1, 2, 3, 4], "Threshold": [0.0, 0.01, 0.02, 0.03]}),
])
def test_readAlertTriggers_invalid(table, alert_levels):
    with pytest.raises(ValueError):
        loaders.readAlertTriggers(table, alert_levels)


def test_readAlertSchedule(datastore):
    schedule = loaders.readAlertSchedule(datastore.read_table("alert-schedule"))

    assert schedule == [
        loaders.ScheduledChange(time=0, localeId=None, level=1),
        loaders.ScheduledChange(time=5, localeId="1", level=3),
        loaders.ScheduledChange(time=10, localeId=None, level=2),
    ]


def test_readAlertSchedule_sorted_and_stable():
    table = pd.DataFrame({"Time": [3, 1, 3], "Id": ["a", "b", "c"], "Level": [1, 2, 3]})

    assert [change.localeId for change in loaders.readAlertSchedule(table)] == ["b", "a", "c"]


def test_readAlertSchedule_none():
    assert loaders.readAlertSchedule(None) == []


def test_readLocales(datastore):
    locales = loaders.readLocales(datastore.read_table("locales"))

    assert locales[0] == loaders.LocaleDefinition(localeId="1", name="Alpha", population=10000, x=0.0, y=0.0)
    assert [locale.localeId for locale in locales] == ["1", "2", "3", "4"]


@pytest.mark.parametrize("table", [
    pd.DataFrame({"Id": ["a", "a"], "Name": ["a", "b"], "Population": [1, 2], "X": [0, 0], "Y": [0, 0]}),
    pd.DataFrame({"Id": ["a"], "Name": ["a"], "Population": [0], "X": [0], "Y": [0]}),
    pd.DataFrame({"Id": ["a"], "Name": ["a"], "Population": [1.5], "X": [0], "Y": [0]}),
    pd.DataFrame({"Id": ["a"], "Name": ["a"], "Population": [10]}),
])
def test_readLocales_invalid(table):
    with pytest.raises(ValueError):
        loaders.readLocales(table)


def test_readDistances_skips_self(datastore):
    distances = loaders.readDistances(datastore.read_table("distances"))

    assert all(distance.origin != distance.destination for distance in distances)
    assert distances[0] == loaders.Distance(origin="1", destination="2", distance=10.0)


def test_readDistances_invalid():
    with pytest.raises(ValueError):
        loaders.readDistances(pd.DataFrame({"Origin": ["a"], "Destination": ["b"], "Distance": [-1.0]}))


def test_readInitialInfections(datastore):
    assert loaders.readInitialInfections(datastore.read_table("initial-infections")) == {"1": 5, "3": 2}


def test_readInitialInfections_adds_duplicates():
    table = pd.DataFrame({"Id": ["a", "b", "a"], "Cases": [1, 2, 3]})

    assert loaders.readInitialInfections(table) == {"a": 4, "b": 2}


def test_readInitialInfections_negative():
    with pytest.raises(ValueError):
        loaders.readInitialInfections(pd.DataFrame({"Id": ["a"], "Cases": [-1]}))


def test_readInitialInfections_none():
    assert loaders.readInitialInfections(None) is None
