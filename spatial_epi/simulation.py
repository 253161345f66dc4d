"""
This module runs one realisation of the model. A run starts from a `LocaleModel`, the immutable description of the
world built by :meth:`createLocaleModel`, and advances one simulated day at a time:

1. exposures due during the day become cases (:meth:`branching.BranchingEngine.flush`)
2. recovered cases leave the model (:meth:`branching.BranchingEngine.progress`)
3. every locale runs its tests and updates its positivity (:meth:`positivity.simulateTesting`)
4. the alert policy reacts to the positivity (:meth:`alert_policy.AlertPolicy.step`)
5. one detail row per locale is recorded

The run stops when there is nothing left to simulate, when `max_days` is reached, or when a day takes longer than
`max_seconds_per_day` of wall-clock time. The entrypoint is :meth:`basicSimulation`. It does not modify the model it
is given, so the same model can be used for any number of runs.
"""
# pylint: disable=import-error
import copy
import logging
import time
from typing import Any, Dict, List, NamedTuple, Optional

import networkx as nx  # type: ignore
import numpy as np  # type: ignore
import pandas as pd  # type: ignore

from spatial_epi import alert_policy
from spatial_epi import loaders
from spatial_epi import network
from spatial_epi import positivity
from spatial_epi.branching import BranchingEngine
from spatial_epi.cases import CASE_COLUMNS
from spatial_epi.common import Issue, IssueSeverity, Lazy, log_issue

logger = logging.getLogger(__name__)

# Mixed into the seed of the generator that builds random networks, so it does not share a stream with the trials
NETWORK_SEED_SALT = 0x5EED

DETAIL_COLUMNS = [
    "ticks", "locale_id", "locale_name", "pop0", "susceptible", "cumulative_cases", "cumulative_infected",
    "cumulative_recovered", "new_cases", "new_infected", "new_recovered", "new_tests", "new_positives",
    "active_cases", "positive_rate", "alert_level",
]


class LocaleModel(NamedTuple):
    """
    This type has all the data needed to run the model
    """
    parameters: Dict[str, Any]
    run: loaders.RunParameters
    network: loaders.NetworkParameters
    disease: loaders.DiseaseParameters
    testing: loaders.TestingParameters
    policy: loaders.PolicyParameters
    alertLevels: loaders.AlertLevelTable
    alertTriggers: List[float]
    alertSchedule: List[loaders.ScheduledChange]
    locales: List[network.Locale]
    graph: nx.DiGraph
    initialInfections: Optional[Dict[int, int]]


class RunOutput(NamedTuple):
    """
    Everything a run produces
    """
    detail: pd.DataFrame
    cases: pd.DataFrame
    summary: Dict[str, Any]
    issues: List[Issue]


# pylint: disable=too-many-arguments
# pylint: disable=too-many-locals
def createLocaleModel(
        parameters_table: Optional[pd.DataFrame],
        alert_levels_table: pd.DataFrame,
        alert_triggers_table: pd.DataFrame,
        locales_table: Optional[pd.DataFrame] = None,
        distances_table: Optional[pd.DataFrame] = None,
        initial_infections_table: Optional[pd.DataFrame] = None,
        alert_schedule_table: Optional[pd.DataFrame] = None,
) -> LocaleModel:
    """Create the model, loading data from tables.

    :param parameters_table: pd.DataFrame with the Parameter and Value columns. None means every default
    :param alert_levels_table: pd.DataFrame with the control and flow of each alert level
    :param alert_triggers_table: pd.DataFrame with the positivity threshold of each level above the minimum
    :param locales_table: pd.DataFrame with the locales, required by the data setup method
    :param distances_table: pd.DataFrame with the distances between locales, required by the data setup method
    :param initial_infections_table: pd.DataFrame with the number of cases seeded in each locale. When None,
                                     initial_cases are spread at random
    :param alert_schedule_table: pd.DataFrame with the timetable of the scripted policy
    :return: The constructed model
    """
    parameters = loaders.readParameters(parameters_table)
    run = loaders.readRunParameters(parameters)
    networkParameters = loaders.readNetworkParameters(parameters)
    disease = loaders.readDiseaseParameters(parameters)
    testing = loaders.readTestingParameters(parameters)
    policy = loaders.readPolicyParameters(parameters)

    levels = loaders.readAlertLevels(alert_levels_table)
    thresholds = loaders.readAlertTriggers(alert_triggers_table, levels)
    schedule = loaders.readAlertSchedule(alert_schedule_table)

    if run.setupMethod == "data":
        assert locales_table is not None and distances_table is not None, \
            "the data setup method needs the locales and distances tables"
        locales, graph = network.createNetworkFromTables(
            loaders.readLocales(locales_table),
            loaders.readDistances(distances_table),
            networkParameters.maxDistance,
        )
    else:
        locales, graph = network.createRandomNetwork(
            networkParameters,
            np.random.default_rng([run.seed, NETWORK_SEED_SALT]),
        )

    # Checks across datasets
    assert policy.policy in alert_policy.ALERT_POLICIES, \
        f"unknown alert policy {policy.policy}, expected one of {list(alert_policy.ALERT_POLICIES)}"
    assert run.initialAlertLevel in levels.levels, \
        f"initial alert level {run.initialAlertLevel} is not in the alert levels table"
    assert policy.policy != "scripted" or schedule, "the scripted policy needs an alert schedule"
    indexById = {locale.localeId: locale.index for locale in locales}
    for change in schedule:
        assert change.localeId is None or change.localeId in indexById, \
            f"alert schedule refers to unknown locale {change.localeId}"
        assert change.level in levels.levels, f"alert schedule refers to unknown level {change.level}"

    initialInfections = None
    infections = loaders.readInitialInfections(initial_infections_table)
    if infections is not None:
        unknown = set(infections) - set(indexById)
        assert not unknown, f"initial infections refer to unknown locales {sorted(unknown)}"
        initialInfections = {indexById[localeId]: cases for localeId, cases in infections.items()}

    logger.info(
        "Locales: %s, Connections: %s, Policy: %s, Levels: %s",
        len(locales),
        graph.number_of_edges(),
        policy.policy,
        list(levels.levels),
    )
    return LocaleModel(
        parameters=parameters,
        run=run,
        network=networkParameters,
        disease=disease,
        testing=testing,
        policy=policy,
        alertLevels=levels,
        alertTriggers=thresholds,
        alertSchedule=schedule,
        locales=locales,
        graph=graph,
        initialInfections=initialInfections,
    )


def seedInitialCases(
        engine: BranchingEngine,
        model: LocaleModel,
        issues: List[Issue],
        random_state: np.random.Generator,
) -> int:
    """
    Create the cases the run starts with. Their exposure times are spread uniformly over the `initial_case_max_age`
    days before the start, so the epidemic does not start perfectly synchronised.

    :param engine: the engine the cases are added to
    :param model: the model
    :param issues: list of issues, it will be modified in-place
    :param random_state: Random number generator used for the model
    :return: number of cases created
    """
    locales = engine.locales
    if model.initialInfections is not None:
        allocation = [model.initialInfections.get(locale.index, 0) for locale in locales]
    else:
        populations = np.array([locale.pop0 for locale in locales], dtype=np.float64)
        allocation = [int(x) for x in random_state.multinomial(model.run.initialCases, populations / populations.sum())]

    created = 0
    for locale, count in zip(locales, allocation):
        if count > locale.susceptible:
            log_issue(
                logger,
                f"Locale {locale.localeId} has {locale.pop0} people, it can't start with {count} cases",
                IssueSeverity.MEDIUM,
                issues,
            )
        for _ in range(count):
            exposureTime = 0.0
            if model.run.initialCaseMaxAge > 0.0:
                exposureTime = -random_state.uniform(0.0, model.run.initialCaseMaxAge)
            if engine.addCase(locale.index, exposureTime, 0.0) is not None:
                created += 1
    return created


def localeRows(tick: int, locales: List[network.Locale]) -> List[List[Any]]:
    """One row of the detail output per locale, in the DETAIL_COLUMNS order"""
    return [
        [
            tick, locale.localeId, locale.name, locale.pop0, locale.susceptible, locale.cumulativeCases,
            locale.cumulativeInfected, locale.cumulativeRecovered, locale.newCases, locale.newInfected,
            locale.newRecovered, locale.newTests, locale.newPositives, locale.activeCases, locale.positiveRate,
            locale.alertLevel,
        ]
        for locale in locales
    ]


def basicSimulation(model: LocaleModel, random_state: np.random.Generator) -> RunOutput:
    """Run the simulation of a disease spreading through the network of locales.

    :param model: the model, it is not modified
    :param random_state: Seeded random number generator to use in this simulation
    :return: the detail rows, the resolved cases, a summary of the run and the issues found
    """
    issues: List[Issue] = []
    locales = copy.deepcopy(model.locales)
    graph = copy.deepcopy(model.graph)

    positivity.resetWindows(locales, model.policy.period)
    for locale in locales:
        alert_policy.setAlertLevel(locale, model.run.initialAlertLevel, graph, locales, model.alertLevels)
    policy = alert_policy.createAlertPolicy(model.policy, model.alertLevels, model.alertTriggers, model.alertSchedule)
    engine = BranchingEngine(locales, graph, model.disease, model.network.weighting, random_state)

    seeded = seedInitialCases(engine, model, issues, random_state)
    logger.debug("Seeded %s cases", seeded)

    rows = localeRows(0, locales)
    caseRecords: List[Dict[str, Any]] = []
    eradicated = engine.isFinished()
    aborted = False
    firstDetection = None
    tick = 0
    while not eradicated and tick < model.run.maxDays:
        tick += 1
        started = time.perf_counter()
        for locale in locales:
            locale.resetDailyCounters()

        engine.flush(boundary=float(tick), now=float(tick - 1))
        recovered = engine.progress(float(tick))
        if model.run.logCases:
            caseRecords.extend(case.toRecord(locales[case.localeIndex].localeId) for case in recovered)

        positivity.simulateTesting(locales, engine.arena, tick - 1, tick, model.testing, random_state)
        if firstDetection is None and any(locale.newPositives > 0 for locale in locales):
            firstDetection = tick

        policy.step(tick, locales, graph, random_state)
        rows.extend(localeRows(tick, locales))
        logger.debug("Day %s/%s. Status: %s", tick, model.run.maxDays, engine.status())

        eradicated = engine.isFinished()
        elapsed = time.perf_counter() - started
        if not eradicated and elapsed > model.run.maxSecondsPerDay:
            log_issue(
                logger,
                f"Day {tick} took {elapsed:.1f}s (limit {model.run.maxSecondsPerDay}s) with "
                f"{engine.liveCases()} live cases, aborting the run",
                IssueSeverity.HIGH,
                issues,
            )
            aborted = True
            break

    if not eradicated and not aborted:
        log_issue(
            logger,
            f"Reached the limit of {model.run.maxDays} days with {engine.liveCases()} live cases",
            IssueSeverity.LOW,
            issues,
        )

    if model.run.logCases:
        # cases still alive at the end are reported too, their recovery time is in the future
        caseRecords.extend(case.toRecord(locales[case.localeIndex].localeId) for case in engine.arena)

    summary = {
        "final_tick": tick,
        "eradicated": eradicated,
        "aborted": aborted,
        "level_changes": policy.levelChanges,
        "first_detection": firstDetection,
        "total_cases": sum(locale.cumulativeCases for locale in locales),
    }
    logger.info("Run finished: %s", Lazy(lambda: summary))
    return RunOutput(
        detail=pd.DataFrame(rows, columns=DETAIL_COLUMNS),
        cases=pd.DataFrame(caseRecords, columns=CASE_COLUMNS),
        summary=summary,
        issues=issues,
    )
