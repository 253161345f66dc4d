"""
The branching engine. Every live case has its future exposures queued, in time order, in the queue of its home locale.
Each simulated day the engine:

1. removes every exposure due before the end of the day from the queues,
2. decides whether each of them becomes a new case, using the current control of the infector's locale,
3. places each new case in the infector's locale or, following the flow of that locale, in a neighbour,
4. goes back to 1, since the cases created in 3 may themselves have exposures due before the end of the day, and stops
   only when nothing else is due,
5. removes recovered cases, together with any exposures they still had queued.

Step 4 is what keeps chains of transmission that happen within a single day from being lost.
"""
# pylint: disable=import-error
import bisect
import logging
from typing import Callable, Iterator, List, NamedTuple, Optional

import networkx as nx  # type: ignore
import numpy as np  # type: ignore

from spatial_epi import loaders
from spatial_epi.cases import Case, CaseArena, createCase, NO_PREDECESSOR
from spatial_epi.common import Lazy
from spatial_epi.network import Locale, selectNeighbour

logger = logging.getLogger(__name__)


class Exposure(NamedTuple):
    """
    A future infection caused by a live case. The case is identified by its arena slot and its id, so exposures of a
    recovered case can be recognised even after the slot has been reused.
    """
    time: float
    slot: int
    caseId: int


class ExposureQueue:
    """
    Exposures ordered by ascending time. An exposure pushed with the same time as exposures already in the queue goes
    after them.
    """

    def __init__(self):
        self._times: List[float] = []
        self._exposures: List[Exposure] = []

    def push(self, exposure: Exposure):
        """Insert an exposure, keeping the queue sorted"""
        position = bisect.bisect_right(self._times, exposure.time)
        self._times.insert(position, exposure.time)
        self._exposures.insert(position, exposure)

    def popDue(self, boundary: float) -> List[Exposure]:
        """
        Remove and return every exposure with time < boundary

        :param boundary: end of the current step
        :return: the due exposures, in time order
        """
        position = bisect.bisect_left(self._times, boundary)
        due = self._exposures[:position]
        del self._times[:position]
        del self._exposures[:position]
        return due

    def discard(self, predicate: Callable[[Exposure], bool]) -> int:
        """
        Remove every exposure for which predicate is true

        :param predicate: selects the exposures to remove
        :return: the number of exposures removed
        """
        kept = [exposure for exposure in self._exposures if not predicate(exposure)]
        removed = len(self._exposures) - len(kept)
        self._exposures = kept
        self._times = [exposure.time for exposure in kept]
        return removed

    def isSorted(self) -> bool:
        return all(a <= b for a, b in zip(self._times, self._times[1:]))

    def __len__(self) -> int:
        return len(self._exposures)

    def __iter__(self) -> Iterator[Exposure]:
        return iter(self._exposures)


# pylint: disable=too-many-instance-attributes
class BranchingEngine:
    """
    Holds the live cases and the exposure queues of a run, and turns exposures into cases.

    :param locales: the locales of the run. Their counters are updated in place
    :param graph: the network connecting the locales
    :param disease: the disease parameters
    :param weighting: "distance" or "gravity", which connection weight is used to pick a neighbour
    :param random_state: Random number generator used for the model
    """

    # pylint: disable=too-many-arguments
    def __init__(
            self,
            locales: List[Locale],
            graph: nx.DiGraph,
            disease: loaders.DiseaseParameters,
            weighting: str,
            random_state: np.random.Generator,
    ):
        self.locales = locales
        self.graph = graph
        self.disease = disease
        self.weighting = weighting
        self.random_state = random_state
        self.arena = CaseArena()
        self.queues = [ExposureQueue() for _ in locales]

    def addCase(
            self,
            localeIndex: int,
            exposureTime: float,
            now: float,
            predecessor: Optional[Case] = None,
    ) -> Optional[Case]:
        """
        Create a case in a locale and queue its exposures. Nothing happens if the locale has no susceptible left.

        :param localeIndex: locale of the new case
        :param exposureTime: infection time
        :param now: current simulation time
        :param predecessor: the infector, if any
        :return: the new case or None
        """
        locale = self.locales[localeIndex]
        if locale.susceptible <= 0:
            return None

        case = createCase(
            self.arena.nextCaseId(),
            localeIndex,
            exposureTime,
            now,
            self.disease,
            self.random_state,
            predecessorId=NO_PREDECESSOR if predecessor is None else predecessor.caseId,
        )
        slot = self.arena.add(case)
        queue = self.queues[localeIndex]
        for time in case.offspringTimes:
            queue.push(Exposure(time=time, slot=slot, caseId=case.caseId))

        locale.susceptible -= 1
        locale.activeCases += 1
        locale.newCases += 1
        locale.cumulativeCases += 1
        if case.clinical:
            locale.newInfected += 1
            locale.cumulativeInfected += 1
        return case

    def acceptanceProbability(self, case: Case, time: float) -> float:
        r"""
        Probability that an exposure caused by a case at a given time becomes a new case:
        :math:`control \times \frac{susceptible}{pop_0}` of the case's locale, further multiplied by the isolation
        multiplier if the case is clinical and already isolated.

        :param case: the infector
        :param time: time of the exposure
        :return: the probability
        """
        home = self.locales[case.localeIndex]
        probability = home.control * home.susceptible / home.pop0
        if case.isIsolated(time):
            probability *= self.disease.isolationMultiplier
        return probability

    def targetLocale(self, case: Case) -> int:
        """
        Where a new case caused by `case` is placed: a neighbour with probability equal to the flow rate of the case's
        locale, otherwise the case's own locale.

        :param case: the infector
        :return: index of the locale
        """
        home = self.locales[case.localeIndex]
        if home.flowRate > 0.0 and self.graph.out_degree(home.index) > 0:
            if self.random_state.random() < home.flowRate:
                neighbour = selectNeighbour(self.graph, home.index, self.weighting, self.random_state)
                if neighbour is not None:
                    return neighbour
        return home.index

    def realiseExposure(self, exposure: Exposure, now: float) -> Optional[Case]:
        """
        Decide the fate of a due exposure.

        :param exposure: the exposure
        :param now: current simulation time
        :return: the new case, or None if the exposure was rejected
        """
        case = self.arena.get(exposure.slot, exposure.caseId)
        if case is None:
            return None
        if self.random_state.random() >= self.acceptanceProbability(case, exposure.time):
            return None

        newCase = self.addCase(self.targetLocale(case), exposure.time, now, predecessor=case)
        if newCase is not None:
            case.offspring += 1
        return newCase

    def flush(self, boundary: float, now: float) -> int:
        """
        Realise every exposure due before `boundary`, including the ones belonging to cases created while doing so.
        Each wave takes everything currently due out of the queues, then processes it in time order (exposures at the
        same time keep the locale order). The loop ends when a wave finds nothing due.

        :param boundary: end of the current step
        :param now: start of the current step
        :return: the number of new cases
        """
        created = 0
        waves = 0
        while True:
            wave: List[Exposure] = []
            for queue in self.queues:
                wave.extend(queue.popDue(boundary))
            if not wave:
                break
            waves += 1
            wave.sort(key=lambda exposure: exposure.time)
            for exposure in wave:
                if self.realiseExposure(exposure, now) is not None:
                    created += 1

        logger.debug("Step [%s, %s): %s new cases in %s waves", now, boundary, created, waves)
        return created

    def progress(self, now: float) -> List[Case]:
        """
        Remove the cases that have recovered by `now`, and drop any exposures they still had queued.

        :param now: current simulation time
        :return: the recovered cases
        """
        recovered = []
        for slot, case in list(self.arena.items()):
            if case.recoveryTime <= now:
                self.arena.remove(slot)
                locale = self.locales[case.localeIndex]
                locale.activeCases -= 1
                locale.cumulativeRecovered += 1
                locale.newRecovered += 1
                recovered.append(case)

        if recovered:
            stale = self.discardExposures({case.caseId for case in recovered})
            if stale:
                logger.debug("Dropped %s exposures of recovered cases", stale)
        return recovered

    def discardExposures(self, caseIds: set) -> int:
        """
        Remove from every queue the exposures belonging to the given cases

        :param caseIds: ids of the cases
        :return: number of exposures removed
        """
        return sum(queue.discard(lambda exposure: exposure.caseId in caseIds) for queue in self.queues)

    def liveCases(self) -> int:
        return len(self.arena)

    def pendingExposures(self) -> int:
        return sum(len(queue) for queue in self.queues)

    def isFinished(self) -> bool:
        """True when there are no live cases and nothing queued"""
        return self.liveCases() + self.pendingExposures() == 0

    def status(self) -> Lazy:
        """A lazily formatted summary, for logging"""
        return Lazy(lambda: {"live": self.liveCases(), "queued": self.pendingExposures()})
