"""
Alert-level policies. A policy looks at the test positivity of the locales every `period` days, once the grace period
is over, and moves their alert levels. The alert level of a locale sets its control (how easily exposures become cases)
and its flow (how often new cases land in a neighbouring locale).

Policies driven by positivity share the same rule to move between levels: a locale jumps straight up to the level its
positivity calls for, but comes down at most one level per evaluation.
"""
import logging
from abc import ABC, abstractmethod
from typing import ClassVar, Dict, List, Type

import networkx as nx  # type: ignore
import numpy as np  # type: ignore

from spatial_epi import loaders
from spatial_epi.loaders import Level
from spatial_epi.network import Locale, updateFlowRates

logger = logging.getLogger(__name__)


def setAlertLevel(
        locale: Locale,
        level: Level,
        graph: nx.DiGraph,
        locales: List[Locale],
        levels: loaders.AlertLevelTable,
) -> bool:
    """
    Put a locale at the given alert level, updating its control and flow and the flow rate of its connections. Also
    used to force a level from outside the policies.

    :param locale: the locale, modified in place
    :param level: the new level
    :param graph: the network, its flow rates are modified in place
    :param locales: all the locales, indexed as the graph nodes
    :param levels: the alert level table
    :return: True if the level changed
    """
    if level not in levels.levels:
        raise ValueError(f"Unknown alert level {level}, expected one of {list(levels.levels)}")
    changed = level != locale.alertLevel
    locale.alertLevel = level
    locale.control = levels.levels[level].control
    locale.flowRate = levels.levels[level].flow
    updateFlowRates(graph, locales, locale.index)
    return changed


def targetLevel(rate: float, thresholds: List[float], levels: loaders.AlertLevelTable) -> Level:
    """
    The level a positivity rate calls for: the minimum level plus the number of thresholds the rate reaches.

    >>> levels = loaders.AlertLevelTable({1: loaders.AlertLevel(1.0, 0.1), 2: loaders.AlertLevel(0.5, 0.01)})
    >>> targetLevel(0.05, [0.1], levels), targetLevel(0.1, [0.1], levels)
    (1, 2)

    :param rate: test positivity
    :param thresholds: ascending thresholds, the first one triggers minLevel + 1
    :param levels: the alert level table
    :return: the target level
    """
    return levels.minLevel + sum(1 for threshold in thresholds if rate >= threshold)


def nextLevel(current: Level, target: Level) -> Level:
    """Jump up to the target, but step down one level at a time"""
    if target < current:
        return current - 1
    return target


class AlertPolicy(ABC):
    """
    Base class of the alert policies. Subclasses implement :meth:`evaluate`, which runs on evaluation days.

    :param parameters: period and grace period of the policy
    :param levels: the alert level table
    :param thresholds: positivity thresholds, as read by :meth:`loaders.readAlertTriggers`
    :param schedule: the level timetable, only used by the scripted policy
    """
    name: ClassVar[str]

    def __init__(
            self,
            parameters: loaders.PolicyParameters,
            levels: loaders.AlertLevelTable,
            thresholds: List[float],
            schedule: List[loaders.ScheduledChange],
    ):
        self.period = parameters.period
        self.gracePeriod = parameters.gracePeriod
        self.levels = levels
        self.thresholds = thresholds
        self.schedule = schedule
        self.levelChanges = 0

    def isEvaluationTime(self, time: int) -> bool:
        return time >= self.gracePeriod and (time - self.gracePeriod) % self.period == 0

    def step(self, time: int, locales: List[Locale], graph: nx.DiGraph, random_state: np.random.Generator) -> int:
        """
        Called once per simulated day, after testing.

        :param time: the current day
        :param locales: the locales, modified in place
        :param graph: the network, modified in place
        :param random_state: Random number generator used for the model
        :return: number of locales whose level changed
        """
        if not self.isEvaluationTime(time):
            return 0
        return self.evaluate(time, locales, graph, random_state)

    @abstractmethod
    def evaluate(self, time: int, locales: List[Locale], graph: nx.DiGraph, random_state: np.random.Generator) -> int:
        """ Move the alert levels. Returns the number of locales whose level changed """

    def changeLevel(self, locale: Locale, level: Level, graph: nx.DiGraph, locales: List[Locale]) -> bool:
        """Set a level and keep count of the changes"""
        previous = locale.alertLevel
        changed = setAlertLevel(locale, level, graph, locales, self.levels)
        if changed:
            self.levelChanges += 1
            logger.debug("Locale %s moved from level %s to %s", locale.localeId, previous, level)
        return changed

    def applyRate(self, rate: float, locale: Locale, graph: nx.DiGraph, locales: List[Locale]) -> bool:
        level = nextLevel(locale.alertLevel, targetLevel(rate, self.thresholds, self.levels))
        return self.changeLevel(locale, level, graph, locales)


class StaticPolicy(AlertPolicy):
    """Levels never change"""
    name = "static"

    def evaluate(self, time, locales, graph, random_state) -> int:
        return 0


class LocalRandomPolicy(AlertPolicy):
    """Each locale moves one level down, stays or moves one level up, uniformly at random"""
    name = "local-random"

    def evaluate(self, time, locales, graph, random_state) -> int:
        changes = 0
        for locale in locales:
            delta = int(random_state.integers(-1, 2))
            changes += self.changeLevel(locale, self.levels.clamp(locale.alertLevel + delta), graph, locales)
        return changes


class LocalPolicy(AlertPolicy):
    """Each locale follows its own positivity"""
    name = "local"

    def evaluate(self, time, locales, graph, random_state) -> int:
        return sum(self.applyRate(locale.positiveRate, locale, graph, locales) for locale in locales)


class GlobalMaxPolicy(AlertPolicy):
    """Every locale follows the highest positivity of all locales"""
    name = "global-max"

    def evaluate(self, time, locales, graph, random_state) -> int:
        rate = max(locale.positiveRate for locale in locales)
        return sum(self.applyRate(rate, locale, graph, locales) for locale in locales)


class GlobalMeanPolicy(AlertPolicy):
    """Every locale follows the positivity of all locales, averaged by initial population"""
    name = "global-mean"

    def evaluate(self, time, locales, graph, random_state) -> int:
        weights = np.array([locale.pop0 for locale in locales], dtype=np.float64)
        rates = np.array([locale.positiveRate for locale in locales])
        rate = float(np.average(rates, weights=weights))
        return sum(self.applyRate(rate, locale, graph, locales) for locale in locales)


class ScriptedPolicy(AlertPolicy):
    """
    Levels follow a timetable. Every change whose time has been reached is applied, on every day rather than only on
    evaluation days.
    """
    name = "scripted"

    def __init__(self, parameters, levels, thresholds, schedule):
        super().__init__(parameters, levels, thresholds, schedule)
        self._applied = 0

    def step(self, time, locales, graph, random_state) -> int:
        return self.evaluate(time, locales, graph, random_state)

    def evaluate(self, time, locales, graph, random_state) -> int:
        byId = {locale.localeId: locale for locale in locales}
        changes = 0
        while self._applied < len(self.schedule) and self.schedule[self._applied].time <= time:
            change = self.schedule[self._applied]
            targets = locales if change.localeId is None else [byId[change.localeId]]
            for locale in targets:
                changes += self.changeLevel(locale, change.level, graph, locales)
            self._applied += 1
        return changes


ALERT_POLICIES: Dict[str, Type[AlertPolicy]] = {
    policy.name: policy
    for policy in (StaticPolicy, LocalRandomPolicy, LocalPolicy, GlobalMaxPolicy, GlobalMeanPolicy, ScriptedPolicy)
}


def createAlertPolicy(
        parameters: loaders.PolicyParameters,
        levels: loaders.AlertLevelTable,
        thresholds: List[float],
        schedule: List[loaders.ScheduledChange],
) -> AlertPolicy:
    """
    Instantiate the policy named in the parameters

    :param parameters: the policy parameters
    :param levels: the alert level table
    :param thresholds: positivity thresholds
    :param schedule: the level timetable
    :return: a new policy
    """
    try:
        policyClass = ALERT_POLICIES[parameters.policy]
    except KeyError as e:
        raise ValueError(f"Unknown alert policy {parameters.policy!r}, expected one of {list(ALERT_POLICIES)}") from e
    return policyClass(parameters, levels, thresholds, schedule)
