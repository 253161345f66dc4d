"""
Cases are the infected individuals of the model. Each case samples its whole private future when it is created:
whether it is clinical, when it becomes symptomatic, when it is isolated and hospitalised, when it recovers and when
each of its offspring exposures will happen. Nothing about a case is drawn again later; changes in the alert levels
after creation only decide whether those offspring exposures are accepted when they fall due.

Live cases are stored in a `CaseArena`, a dense list of slots that are recycled as cases recover.
"""
# pylint: disable=import-error
import math
from enum import Enum
from typing import Dict, Iterator, List, Optional

import numpy as np  # type: ignore

from spatial_epi import loaders
from spatial_epi import random_variates as rv

NO_PREDECESSOR = -1


class CaseType(Enum):
    """
    The two branches of the natural history of a case
    """
    CLINICAL = "clinical"
    SUBCLINICAL = "subclinical"


# pylint: disable=too-many-instance-attributes
class Case:
    """
    One infected individual.

    :param caseId: unique id of the case within the run
    :param localeIndex: locale the case lives in
    :param caseType: clinical or subclinical
    :param baseR: expected number of offspring
    :param exposureTime: time of infection, negative for cases seeded before the start of the run
    :param onsetTime: time symptoms start
    :param isolationTime: time the case is isolated, +inf if it is never detected
    :param hospitalEntryTime: time the case enters hospital, None if it is never hospitalised
    :param hospitalExitTime: time the case leaves hospital, None if it is never hospitalised
    :param recoveryTime: time the case recovers and leaves the model
    :param offspringTimes: ascending times of the exposures this case will cause
    :param predecessorId: id of the case that infected this one
    """

    # pylint: disable=too-many-arguments
    def __init__(
            self,
            caseId: int,
            localeIndex: int,
            caseType: CaseType,
            baseR: float,
            exposureTime: float,
            onsetTime: float,
            isolationTime: float,
            hospitalEntryTime: Optional[float],
            hospitalExitTime: Optional[float],
            recoveryTime: float,
            offspringTimes: List[float],
            predecessorId: int = NO_PREDECESSOR,
    ):
        self.caseId = caseId
        self.localeIndex = localeIndex
        self.caseType = caseType
        self.baseR = baseR
        self.exposureTime = exposureTime
        self.onsetTime = onsetTime
        self.isolationTime = isolationTime
        self.hospitalEntryTime = hospitalEntryTime
        self.hospitalExitTime = hospitalExitTime
        self.recoveryTime = recoveryTime
        self.offspringTimes = offspringTimes
        self.predecessorId = predecessorId
        self.offspring = 0

    @property
    def clinical(self) -> bool:
        return self.caseType is CaseType.CLINICAL

    def isIsolated(self, time: float) -> bool:
        """True if the case has been isolated at the given time"""
        return self.clinical and time >= self.isolationTime

    def becameSymptomatic(self, start: float, end: float) -> bool:
        """True if a clinical case had its symptom onset in [start, end)"""
        return self.clinical and start <= self.onsetTime < end

    def toRecord(self, localeId: str) -> Dict[str, object]:
        """
        Converts the case into a row of the cases output

        :param localeId: id of the locale of the case
        :return: a dict keyed by column name
        """
        return {
            "id": self.caseId,
            "type": self.caseType.value,
            "locale_id": localeId,
            "offspring": self.offspring,
            "base_r": self.baseR,
            "exposure_time": self.exposureTime,
            "recovery_time": self.recoveryTime,
            "predecessor_id": self.predecessorId,
            "onset_time": self.onsetTime,
            "isolation_time": self.isolationTime,
            "hospital_entry_time": self.hospitalEntryTime,
            "hospital_exit_time": self.hospitalExitTime,
        }

    def __repr__(self):
        return (f"Case({self.caseId}, {self.caseType.value}, locale={self.localeIndex}, "
                f"t0={self.exposureTime:.2f}, offspring={len(self.offspringTimes)})")


CASE_COLUMNS = [
    "id", "type", "locale_id", "offspring", "base_r", "exposure_time", "recovery_time", "predecessor_id",
    "onset_time", "isolation_time", "hospital_entry_time", "hospital_exit_time",
]


def sampleBaseR(disease: loaders.DiseaseParameters, caseType: CaseType, random_state: np.random.Generator) -> float:
    """
    The expected number of offspring of a new case. Subclinical cases transmit a fixed fraction of what clinical cases
    do. When `rDispersion` is positive, each case gets its own value from a Gamma distribution with that shape and the
    base value as mean.

    :param disease: the disease parameters
    :param caseType: clinical or subclinical
    :param random_state: Random number generator used for the model
    :return: the reproduction number of the case
    """
    baseR = disease.rClinical
    if caseType is CaseType.SUBCLINICAL:
        baseR *= disease.subclinicalFactor
    if disease.rDispersion > 0.0 and baseR > 0.0:
        baseR = rv.gamma(disease.rDispersion, baseR / disease.rDispersion, random_state)
    return baseR


def sampleOffspringTimes(
        disease: loaders.DiseaseParameters,
        exposureTime: float,
        baseR: float,
        now: float,
        random_state: np.random.Generator,
) -> List[float]:
    """
    Draw the times of every exposure a case will cause: a Poisson number of generation intervals, each from a truncated
    Weibull distribution, added to the exposure time of the case. Times before `now` are dropped, so that cases seeded
    in the past do not cause infections that should already have happened.

    :param disease: the disease parameters
    :param exposureTime: infection time of the case
    :param baseR: expected number of offspring
    :param now: current simulation time
    :param random_state: Random number generator used for the model
    :return: ascending exposure times
    """
    count = rv.poisson(baseR, random_state)
    times = [
        exposureTime + rv.weibull_truncated(
            disease.generationShape,
            disease.generationScale,
            0.0,
            disease.generationMax,
            random_state,
        )
        for _ in range(count)
    ]
    return sorted(t for t in times if t >= now)


# pylint: disable=too-many-arguments
def createCase(
        caseId: int,
        localeIndex: int,
        exposureTime: float,
        now: float,
        disease: loaders.DiseaseParameters,
        random_state: np.random.Generator,
        predecessorId: int = NO_PREDECESSOR,
) -> Case:
    """
    Create a case and sample its entire future. The draws always happen in the same order, so a seeded generator gives
    the same case every time.

    :param caseId: unique id of the new case
    :param localeIndex: locale the case lives in
    :param exposureTime: time of infection
    :param now: current simulation time
    :param disease: the disease parameters
    :param random_state: Random number generator used for the model
    :param predecessorId: id of the infector, if any
    :return: the new case
    """
    caseType = CaseType.CLINICAL if random_state.random() < disease.pClinical else CaseType.SUBCLINICAL
    baseR = sampleBaseR(disease, caseType, random_state)

    onsetTime = exposureTime + rv.gamma(disease.incubationShape, disease.incubationScale, random_state)
    isolationTime = math.inf
    hospitalEntryTime = None
    hospitalExitTime = None
    if caseType is CaseType.CLINICAL:
        isolationTime = onsetTime + rv.exponential(disease.detectionDelayMean, random_state)
        if random_state.random() < disease.pHospitalised:
            hospitalEntryTime = onsetTime + rv.exponential(disease.hospitalDelayMean, random_state)
            hospitalExitTime = hospitalEntryTime + rv.exponential(disease.hospitalStayMean, random_state)

    return Case(
        caseId=caseId,
        localeIndex=localeIndex,
        caseType=caseType,
        baseR=baseR,
        exposureTime=exposureTime,
        onsetTime=onsetTime,
        isolationTime=isolationTime,
        hospitalEntryTime=hospitalEntryTime,
        hospitalExitTime=hospitalExitTime,
        recoveryTime=exposureTime + disease.diseaseDuration,
        offspringTimes=sampleOffspringTimes(disease, exposureTime, baseR, now, random_state),
        predecessorId=predecessorId,
    )


class CaseArena:
    """
    Storage for the live cases of a run. Each case occupies a slot, an index that stays valid while the case is alive.
    Slots freed by recovered cases are handed out again to new cases, the most recently freed first.

    Case ids are never reused, so a (slot, case id) pair identifies a case even after its slot is recycled.
    """

    def __init__(self):
        self._slots: List[Optional[Case]] = []
        self._free: List[int] = []
        self._nextId = 0

    def nextCaseId(self) -> int:
        """Reserve a new case id"""
        caseId = self._nextId
        self._nextId += 1
        return caseId

    def add(self, case: Case) -> int:
        """
        Store a case

        :param case: the case
        :return: the slot of the case
        """
        if self._free:
            slot = self._free.pop()
            self._slots[slot] = case
        else:
            slot = len(self._slots)
            self._slots.append(case)
        return slot

    def remove(self, slot: int) -> Case:
        """
        Take a case out of the arena and free its slot

        :param slot: the slot of the case
        :return: the removed case
        """
        case = self._slots[slot]
        if case is None:
            raise KeyError(f"Slot {slot} is empty")
        self._slots[slot] = None
        self._free.append(slot)
        return case

    def get(self, slot: int, caseId: Optional[int] = None) -> Optional[Case]:
        """
        The case in a slot. When a case id is given, None is returned unless the slot still holds that case.

        :param slot: the slot
        :param caseId: expected id of the case
        :return: the case or None
        """
        case = self._slots[slot] if 0 <= slot < len(self._slots) else None
        if case is not None and caseId is not None and case.caseId != caseId:
            return None
        return case

    def __len__(self) -> int:
        return len(self._slots) - len(self._free)

    def __iter__(self) -> Iterator[Case]:
        return (case for case in self._slots if case is not None)

    def items(self) -> Iterator:
        """Iterates over (slot, case) pairs in slot order"""
        return ((slot, case) for slot, case in enumerate(self._slots) if case is not None)
