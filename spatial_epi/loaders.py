"""This module contains functions and classes to read and check input tables."""

import math
from typing import Any, Callable, Dict, List, NamedTuple, Optional

import pandas as pd  # type: ignore

# Type aliases used to make the types for the functions below easier to read
LocaleId = str
Level = int

SETUP_METHODS = ("random", "data")
WEIGHTINGS = ("distance", "gravity")

# name -> default value. These are the only names accepted in the parameters table
DEFAULT_PARAMETERS: Dict[str, Any] = {
    # run
    "seed": 0,
    "trials": 1,
    "max_days": 365,
    "max_seconds_per_day": 60.0,
    "setup_method": "random",
    "initial_cases": 10,
    "initial_case_max_age": 0.0,
    "initial_alert_level": 1,
    "log_cases": True,
    # network
    "num_locales": 20,
    "total_population": 500000,
    "population_cv": 0.5,
    "world_size": 100.0,
    "link_multiple": 2.0,
    "weighting": "distance",
    "max_distance": math.inf,
    # disease
    "p_clinical": 0.67,
    "r_clinical": 3.0,
    "subclinical_factor": 0.5,
    "r_dispersion": 0.0,
    "incubation_shape": 5.8,
    "incubation_scale": 0.95,
    "detection_delay_mean": 6.0,
    "p_hospitalised": 0.078,
    "hospital_delay_mean": 4.5,
    "hospital_stay_mean": 10.0,
    # weirdly high, for computational convenience: cases stay in the model this long after exposure
    "disease_duration": 30.0,
    "generation_shape": 2.83,
    "generation_scale": 5.67,
    "generation_max": 30.0,
    "isolation_multiplier": 0.65,
    # testing
    "p_test_symptomatic": 0.8,
    "false_negative_rate": 0.15,
    "background_test_rate": 0.0005,
    "screening_rate": 0.0002,
    # policy
    "alert_policy": "static",
    "alert_period": 7,
    "alert_grace_period": 14,
}


class RunParameters(NamedTuple):
    """
    Parameters controlling a run as a whole
    """
    seed: int
    trials: int
    maxDays: int
    maxSecondsPerDay: float
    setupMethod: str
    initialCases: int
    initialCaseMaxAge: float
    initialAlertLevel: Level
    logCases: bool


class NetworkParameters(NamedTuple):
    """
    Parameters used to build the network of locales
    """
    numLocales: int
    totalPopulation: int
    populationCV: float
    worldSize: float
    linkMultiple: float
    weighting: str
    maxDistance: float


class DiseaseParameters(NamedTuple):
    """
    Parameters of the natural history of a case and of its offspring distribution
    """
    pClinical: float
    rClinical: float
    subclinicalFactor: float
    rDispersion: float
    incubationShape: float
    incubationScale: float
    detectionDelayMean: float
    pHospitalised: float
    hospitalDelayMean: float
    hospitalStayMean: float
    diseaseDuration: float
    generationShape: float
    generationScale: float
    generationMax: float
    isolationMultiplier: float


class TestingParameters(NamedTuple):
    """
    Parameters of the daily testing in each locale
    """
    pTestSymptomatic: float
    falseNegativeRate: float
    backgroundTestRate: float
    screeningRate: float


class PolicyParameters(NamedTuple):
    """
    Which alert policy is active and how often it is evaluated
    """
    policy: str
    period: int
    gracePeriod: int


class AlertLevel(NamedTuple):
    """
    Multipliers associated with one alert level. Control scales the probability that an exposure becomes a case, flow
    is the probability that a new case is placed in a neighbouring locale instead of the home locale of its infector.
    """
    control: float
    flow: float


class AlertLevelTable(NamedTuple):
    """
    All the alert levels available to the policies, indexed by level
    """
    levels: Dict[Level, AlertLevel]

    @property
    def minLevel(self) -> Level:
        return min(self.levels)

    @property
    def maxLevel(self) -> Level:
        return max(self.levels)

    def clamp(self, level: int) -> Level:
        """Restrict level to the closed range of the table"""
        return max(self.minLevel, min(self.maxLevel, level))


class LocaleDefinition(NamedTuple):
    """
    Static description of a locale, as read from a table
    """
    localeId: LocaleId
    name: str
    population: int
    x: float
    y: float


class Distance(NamedTuple):
    """
    Directed distance between two locales
    """
    origin: LocaleId
    destination: LocaleId
    distance: float


class ScheduledChange(NamedTuple):
    """
    A level change applied by the scripted policy at the given time. localeId None means every locale
    """
    time: int
    localeId: Optional[LocaleId]
    level: Level


def _checkColumns(df: pd.DataFrame, columns: List[str], name: str):
    missing = set(columns) - set(df.columns)
    if missing:
        raise ValueError(f"{name} table is missing columns {sorted(missing)}")


def _assertProbability(value: float, name: str):
    if math.isnan(value) or value < 0.0 or value > 1.0:
        raise ValueError(f"{name} must be between 0 and 1 (got {value})")


def _assertPositiveNumber(value: float, name: str):
    if value <= 0.0 or math.isnan(value):
        raise ValueError(f"{name} must be a positive number (got {value})")


def _toBool(value: Any) -> bool:
    if isinstance(value, str):
        if value.strip().lower() in ("true", "1", "yes"):
            return True
        if value.strip().lower() in ("false", "0", "no"):
            return False
        raise ValueError(f"{value} is not a boolean")
    return bool(value)


def _toLocaleId(value: Any) -> LocaleId:
    # ids read from a column with blanks in it come back as floats
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _toInt(value: Any) -> int:
    number = float(value)
    if not number.is_integer():
        raise ValueError(f"{value} is not an integer")
    return int(number)


def readParameters(table: Optional[pd.DataFrame]) -> Dict[str, Any]:
    """
    Transforms a Parameter/Value table into a dict, filling in the defaults of anything not present in the table.

    :param table: pandas DataFrame with the columns Parameter and Value. None means all defaults
    :return: a dict of every known parameter, with values still in their raw form for the missing conversions
    """
    parameters = dict(DEFAULT_PARAMETERS)
    if table is None:
        return parameters

    _checkColumns(table, ["Parameter", "Value"], "parameters")
    for row in table.to_dict(orient="records"):
        name = str(row["Parameter"]).strip()
        if name not in DEFAULT_PARAMETERS:
            raise ValueError(f"Unknown parameter: {name}")
        parameters[name] = row["Value"]
    return parameters


def _get(parameters: Dict[str, Any], name: str, convert: Callable[[Any], Any]) -> Any:
    try:
        return convert(parameters[name])
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid value for {name}: {parameters[name]!r}") from e


def readRunParameters(parameters: Dict[str, Any]) -> RunParameters:
    """
    Picks the run parameters out of the parameters dict

    :param parameters: output of :meth:`readParameters`
    :return: the run parameters, validated
    """
    run = RunParameters(
        seed=_get(parameters, "seed", _toInt),
        trials=_get(parameters, "trials", _toInt),
        maxDays=_get(parameters, "max_days", _toInt),
        maxSecondsPerDay=_get(parameters, "max_seconds_per_day", float),
        setupMethod=_get(parameters, "setup_method", str),
        initialCases=_get(parameters, "initial_cases", _toInt),
        initialCaseMaxAge=_get(parameters, "initial_case_max_age", float),
        initialAlertLevel=_get(parameters, "initial_alert_level", _toInt),
        logCases=_get(parameters, "log_cases", _toBool),
    )
    if run.seed < 0:
        raise ValueError("Seed must be positive")
    if run.trials < 1:
        raise ValueError("trials must be > 0")
    if run.maxDays < 1:
        raise ValueError("max_days must be > 0")
    _assertPositiveNumber(run.maxSecondsPerDay, "max_seconds_per_day")
    if run.setupMethod not in SETUP_METHODS:
        raise ValueError(f"setup_method must be one of {SETUP_METHODS}")
    if run.initialCases < 0:
        raise ValueError("initial_cases must be >= 0")
    if run.initialCaseMaxAge < 0.0:
        raise ValueError("initial_case_max_age must be >= 0")
    return run


def readNetworkParameters(parameters: Dict[str, Any]) -> NetworkParameters:
    """
    Picks the network parameters out of the parameters dict

    :param parameters: output of :meth:`readParameters`
    :return: the network parameters, validated
    """
    network = NetworkParameters(
        numLocales=_get(parameters, "num_locales", _toInt),
        totalPopulation=_get(parameters, "total_population", _toInt),
        populationCV=_get(parameters, "population_cv", float),
        worldSize=_get(parameters, "world_size", float),
        linkMultiple=_get(parameters, "link_multiple", float),
        weighting=_get(parameters, "weighting", str),
        maxDistance=_get(parameters, "max_distance", float),
    )
    if network.numLocales < 1:
        raise ValueError("num_locales must be > 0")
    if network.totalPopulation < network.numLocales:
        raise ValueError("total_population must be at least one person per locale")
    _assertPositiveNumber(network.populationCV, "population_cv")
    _assertPositiveNumber(network.worldSize, "world_size")
    _assertPositiveNumber(network.linkMultiple, "link_multiple")
    _assertPositiveNumber(network.maxDistance, "max_distance")
    if network.weighting not in WEIGHTINGS:
        raise ValueError(f"weighting must be one of {WEIGHTINGS}")
    return network


def readDiseaseParameters(parameters: Dict[str, Any]) -> DiseaseParameters:
    """
    Picks the disease parameters out of the parameters dict

    :param parameters: output of :meth:`readParameters`
    :return: the disease parameters, validated
    """
    disease = DiseaseParameters(
        pClinical=_get(parameters, "p_clinical", float),
        rClinical=_get(parameters, "r_clinical", float),
        subclinicalFactor=_get(parameters, "subclinical_factor", float),
        rDispersion=_get(parameters, "r_dispersion", float),
        incubationShape=_get(parameters, "incubation_shape", float),
        incubationScale=_get(parameters, "incubation_scale", float),
        detectionDelayMean=_get(parameters, "detection_delay_mean", float),
        pHospitalised=_get(parameters, "p_hospitalised", float),
        hospitalDelayMean=_get(parameters, "hospital_delay_mean", float),
        hospitalStayMean=_get(parameters, "hospital_stay_mean", float),
        diseaseDuration=_get(parameters, "disease_duration", float),
        generationShape=_get(parameters, "generation_shape", float),
        generationScale=_get(parameters, "generation_scale", float),
        generationMax=_get(parameters, "generation_max", float),
        isolationMultiplier=_get(parameters, "isolation_multiplier", float),
    )
    for name in ("pClinical", "subclinicalFactor", "pHospitalised", "isolationMultiplier"):
        _assertProbability(getattr(disease, name), name)
    if disease.rClinical < 0.0 or math.isnan(disease.rClinical):
        raise ValueError("r_clinical must be >= 0")
    if disease.rDispersion < 0.0:
        raise ValueError("r_dispersion must be >= 0")
    for name in ("incubationShape", "incubationScale", "detectionDelayMean", "hospitalDelayMean",
                 "hospitalStayMean", "diseaseDuration", "generationShape", "generationScale", "generationMax"):
        _assertPositiveNumber(getattr(disease, name), name)
    return disease


def readTestingParameters(parameters: Dict[str, Any]) -> TestingParameters:
    """
    Picks the testing parameters out of the parameters dict

    :param parameters: output of :meth:`readParameters`
    :return: the testing parameters, validated
    """
    testing = TestingParameters(
        pTestSymptomatic=_get(parameters, "p_test_symptomatic", float),
        falseNegativeRate=_get(parameters, "false_negative_rate", float),
        backgroundTestRate=_get(parameters, "background_test_rate", float),
        screeningRate=_get(parameters, "screening_rate", float),
    )
    for name, value in testing._asdict().items():
        _assertProbability(value, name)
    return testing


def readPolicyParameters(parameters: Dict[str, Any]) -> PolicyParameters:
    """
    Picks the alert policy parameters out of the parameters dict. The policy name itself is checked when the policy is
    created.

    :param parameters: output of :meth:`readParameters`
    :return: the policy parameters, validated
    """
    policy = PolicyParameters(
        policy=_get(parameters, "alert_policy", str),
        period=_get(parameters, "alert_period", _toInt),
        gracePeriod=_get(parameters, "alert_grace_period", _toInt),
    )
    if policy.period < 1:
        raise ValueError("alert_period must be > 0")
    if policy.gracePeriod < 0:
        raise ValueError("alert_grace_period must be >= 0")
    return policy


def readAlertLevels(table: pd.DataFrame) -> AlertLevelTable:
    """
    Read the control and flow multipliers of each alert level.

    :param table: pandas DataFrame with the columns Level, Control and Flow
    :return: the alert level table
    """
    _checkColumns(table, ["Level", "Control", "Flow"], "alert-levels")
    if table.empty:
        raise ValueError("At least one alert level must be defined")

    levels: Dict[Level, AlertLevel] = {}
    for row in table.to_dict(orient="records"):
        level = _toInt(row["Level"])
        if level in levels:
            raise ValueError(f"Alert level {level} defined twice")
        control = float(row["Control"])
        flow = float(row["Flow"])
        _assertProbability(control, f"control of level {level}")
        _assertProbability(flow, f"flow of level {level}")
        levels[level] = AlertLevel(control=control, flow=flow)

    if sorted(levels) != list(range(min(levels), max(levels) + 1)):
        raise ValueError(f"Alert levels must be contiguous: {sorted(levels)}")
    return AlertLevelTable(levels=dict(sorted(levels.items())))


def readAlertTriggers(table: pd.DataFrame, levels: AlertLevelTable) -> List[float]:
    """
    Read the positivity thresholds that trigger each alert level above the minimum.

    :param table: pandas DataFrame with the columns Level and Threshold
    :param levels: the alert levels the triggers refer to
    :return: thresholds ordered by level, the first one triggers minLevel + 1
    """
    _checkColumns(table, ["Level", "Threshold"], "alert-triggers")
    triggers = {_toInt(row["Level"]): float(row["Threshold"]) for row in table.to_dict(orient="records")}

    expected = list(range(levels.minLevel + 1, levels.maxLevel + 1))
    if sorted(triggers) != expected:
        raise ValueError(f"Triggers must be given for levels {expected}, got {sorted(triggers)}")

    thresholds = [triggers[level] for level in expected]
    for threshold in thresholds:
        _assertProbability(threshold, "threshold")
    if any(a >= b for a, b in zip(thresholds, thresholds[1:])):
        raise ValueError(f"Thresholds must increase with the level: {thresholds}")
    return thresholds


def readAlertSchedule(table: Optional[pd.DataFrame]) -> List[ScheduledChange]:
    """
    Read the timetable used by the scripted alert policy.

    :param table: pandas DataFrame with the columns Time, Id and Level. An empty Id applies to every locale
    :return: the scheduled changes sorted by time, keeping the table order for changes at the same time
    """
    if table is None:
        return []
    _checkColumns(table, ["Time", "Id", "Level"], "alert-schedule")

    schedule = []
    for row in table.to_dict(orient="records"):
        time = _toInt(row["Time"])
        if time < 0:
            raise ValueError(f"Scheduled time must be >= 0 (got {time})")
        localeId = row["Id"]
        if localeId is None or (isinstance(localeId, float) and math.isnan(localeId)) or str(localeId).strip() == "":
            localeId = None
        else:
            localeId = _toLocaleId(localeId)
        schedule.append(ScheduledChange(time=time, localeId=localeId, level=_toInt(row["Level"])))
    return sorted(schedule, key=lambda change: change.time)


def readLocales(table: pd.DataFrame) -> List[LocaleDefinition]:
    """Read a table containing the locales of the model.

    :param table: pandas DataFrame with the columns Id, Name, Population, X and Y
    :return: the locales, in table order
    """
    _checkColumns(table, ["Id", "Name", "Population", "X", "Y"], "locales")

    locales = []
    seen = set()
    for row in table.to_dict(orient="records"):
        localeId = _toLocaleId(row["Id"])
        if localeId in seen:
            raise ValueError(f"Duplicated locale id {localeId}")
        seen.add(localeId)
        population = _toInt(row["Population"])
        if population <= 0:
            raise ValueError(f"invalid population {population} in locale {localeId}")
        locales.append(LocaleDefinition(
            localeId=localeId,
            name=str(row["Name"]),
            population=population,
            x=float(row["X"]),
            y=float(row["Y"]),
        ))
    if not locales:
        raise ValueError("At least one locale must be defined")
    return locales


def readDistances(table: pd.DataFrame) -> List[Distance]:
    """Read a table of directed distances between locales.

    :param table: pandas DataFrame with the columns Origin, Destination and Distance
    :return: the distances, in table order
    """
    _checkColumns(table, ["Origin", "Destination", "Distance"], "distances")

    distances = []
    for row in table.to_dict(orient="records"):
        origin, destination = _toLocaleId(row["Origin"]), _toLocaleId(row["Destination"])
        if origin == destination:
            continue
        distance = float(row["Distance"])
        _assertPositiveNumber(distance, f"distance {origin}->{destination}")
        distances.append(Distance(origin=origin, destination=destination, distance=distance))
    return distances


def readInitialInfections(table: Optional[pd.DataFrame]) -> Optional[Dict[LocaleId, int]]:
    """Read the number of cases seeded in each locale at the start of a run.

    :param table: pandas DataFrame with the columns Id and Cases. None means cases are placed at random
    :return: cases per locale id, or None
    """
    if table is None:
        return None
    _checkColumns(table, ["Id", "Cases"], "initial-infections")

    infections: Dict[LocaleId, int] = {}
    for row in table.to_dict(orient="records"):
        cases = _toInt(row["Cases"])
        if cases < 0:
            raise ValueError(f"Invalid number of cases: {row['Cases']}")
        localeId = _toLocaleId(row["Id"])
        infections[localeId] = infections.get(localeId, 0) + cases
    return infections
