"""
Daily testing in each locale, and the rolling test positivity the alert policies react to.

Tests come from three sources:

1. symptomatic testing: clinical cases whose symptoms started during the day get tested with probability
   `pTestSymptomatic`, and test positive unless the result is a false negative
2. background testing: people with other illnesses, proportional to the susceptible population, always negative
3. screening: random testing of the whole population, positive with the prevalence of active cases

Each locale keeps the daily counts of the last `period` days. A window without any tests gives a positivity of 1,
which makes the policies assume the worst when a locale is not testing at all.
"""
import collections
import logging
from typing import Iterable, List, Tuple

import numpy as np  # type: ignore

from spatial_epi import loaders
from spatial_epi import random_variates as rv
from spatial_epi.cases import Case
from spatial_epi.network import Locale

logger = logging.getLogger(__name__)


def resetWindows(locales: List[Locale], length: int):
    """
    Give every locale an empty window of the given length

    :param locales: the locales, modified in place
    :param length: number of days kept in the window
    """
    if length < 1:
        raise ValueError(f"window length must be > 0 (got {length})")
    for locale in locales:
        locale.recentTests = collections.deque(maxlen=length)
        locale.recentPositives = collections.deque(maxlen=length)
        locale.positiveRate = 1.0


def positiveRate(locale: Locale) -> float:
    """Positive tests over total tests in the window, 1.0 if there were no tests"""
    total = sum(locale.recentTests)
    if total == 0:
        return 1.0
    return sum(locale.recentPositives) / total


def recordTests(locale: Locale, tests: int, positives: int):
    """
    Add a day of testing to a locale's window and update its positivity

    :param locale: the locale, modified in place
    :param tests: tests done in the day
    :param positives: how many of them were positive
    """
    if positives > tests:
        raise ValueError(f"{positives} positives out of {tests} tests in locale {locale.localeId}")
    locale.newTests = tests
    locale.newPositives = positives
    locale.recentTests.append(tests)
    locale.recentPositives.append(positives)
    locale.positiveRate = positiveRate(locale)


def testLocale(
        locale: Locale,
        symptomatic: int,
        testing: loaders.TestingParameters,
        random_state: np.random.Generator,
) -> Tuple[int, int]:
    """
    Simulate a day of tests in a locale.

    :param locale: the locale
    :param symptomatic: number of clinical cases that became symptomatic during the day
    :param testing: the testing parameters
    :param random_state: Random number generator used for the model
    :return: number of tests and number of positive results
    """
    sensitivity = 1.0 - testing.falseNegativeRate

    symptomaticTests = rv.binomial(symptomatic, testing.pTestSymptomatic, random_state)
    positives = rv.binomial(symptomaticTests, sensitivity, random_state)

    backgroundTests = rv.poisson(testing.backgroundTestRate * locale.susceptible, random_state)

    screeningTests = rv.poisson(testing.screeningRate * locale.pop0, random_state)
    prevalence = min(1.0, locale.activeCases / locale.pop0)
    positives += rv.binomial(screeningTests, prevalence * sensitivity, random_state)

    return symptomaticTests + backgroundTests + screeningTests, positives


def simulateTesting(
        locales: List[Locale],
        cases: Iterable[Case],
        start: float,
        end: float,
        testing: loaders.TestingParameters,
        random_state: np.random.Generator,
):
    """
    Simulate a day of tests in every locale, in index order, and update their positivity.

    :param locales: the locales, modified in place
    :param cases: the live cases
    :param start: start of the day
    :param end: end of the day
    :param testing: the testing parameters
    :param random_state: Random number generator used for the model
    """
    symptomatic = [0] * len(locales)
    for case in cases:
        if case.becameSymptomatic(start, end):
            symptomatic[case.localeIndex] += 1

    for locale in locales:
        tests, positives = testLocale(locale, symptomatic[locale.index], testing, random_state)
        recordTests(locale, tests, positives)
