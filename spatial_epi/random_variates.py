"""
Random variates used by the model. Every function takes the generator it draws from as its last parameter, there is no
module level random state. A single seeded `numpy.random.Generator` is therefore enough to replay a whole run, and
independent runs can be executed side by side without sharing anything.

Poisson, exponential and gamma draws are thin wrappers around numpy. The truncated Weibull and the binomial sampler
are implemented here because their exact behaviour matters for reproducibility:

1. :meth:`weibull_truncated` discards draws outside the interval instead of clamping them.
2. :meth:`binomial` uses a waiting-time algorithm (Devroye, *Non-Uniform Random Variate Generation*, X.4.3), whose
   cost grows with :math:`np` instead of :math:`n`.
"""
import math
from typing import List

import numpy as np  # type: ignore

MAX_REJECTIONS = 10_000


def seed_generators(seed: int, count: int) -> List[np.random.Generator]:
    """Creates independent generators from a single seed.

    :param seed: non-negative seed for the SeedSequence
    :param count: number of independent streams
    :return: a list of generators, one per stream
    """
    return [np.random.default_rng(seq) for seq in np.random.SeedSequence(seed).spawn(count)]


def poisson(mean: float, random_state: np.random.Generator) -> int:
    """Draw a Poisson distributed count

    :param mean: expected value, must be >= 0
    :param random_state: Random number generator used for the model
    :return: the count
    """
    if mean < 0.0 or math.isnan(mean):
        raise ValueError(f"poisson mean must be >= 0 (got {mean})")
    return int(random_state.poisson(mean))


def exponential(mean: float, random_state: np.random.Generator) -> float:
    """Draw an exponentially distributed delay

    :param mean: the mean of the distribution (not the rate)
    :param random_state: Random number generator used for the model
    :return: the delay
    """
    if mean <= 0.0:
        raise ValueError(f"exponential mean must be > 0 (got {mean})")
    return float(random_state.exponential(mean))


def gamma(shape: float, scale: float, random_state: np.random.Generator) -> float:
    """Draw from a gamma distribution with the given shape and scale

    :param shape: shape (k), must be > 0
    :param scale: scale (theta), must be > 0
    :param random_state: Random number generator used for the model
    :return: the value drawn
    """
    if shape <= 0.0 or scale <= 0.0:
        raise ValueError(f"gamma shape and scale must be > 0 (got {shape}, {scale})")
    return float(random_state.gamma(shape, scale))


def weibull_truncated(
        shape: float,
        scale: float,
        lo: float,
        hi: float,
        random_state: np.random.Generator,
) -> float:
    r"""
    Draw from a Weibull distribution restricted to the interval :math:`[lo, hi)`. Values are produced with the inverse
    CDF, :math:`x = \lambda (-\ln(1 - U))^{1/k}`, and any value outside the interval is thrown away and drawn again.

    :param shape: shape (k) of the Weibull distribution
    :param scale: scale (lambda) of the Weibull distribution
    :param lo: lower bound, inclusive
    :param hi: upper bound, exclusive
    :param random_state: Random number generator used for the model
    :return: a value in [lo, hi)
    """
    if shape <= 0.0 or scale <= 0.0:
        raise ValueError(f"weibull shape and scale must be > 0 (got {shape}, {scale})")
    if not lo < hi:
        raise ValueError(f"empty interval [{lo}, {hi})")
    if hi <= 0.0:
        raise ValueError(f"interval [{lo}, {hi}) is outside the support of the Weibull distribution")

    for _ in range(MAX_REJECTIONS):
        x = scale * (-math.log(1.0 - random_state.random())) ** (1.0 / shape)
        if lo <= x < hi:
            return x
    raise RuntimeError(f"could not draw from Weibull({shape}, {scale}) inside [{lo}, {hi}) in {MAX_REJECTIONS} tries")


def binomial(n: int, p: float, random_state: np.random.Generator) -> int:
    r"""
    Number of successes in :math:`n` trials with probability :math:`p`.

    Rather than running :math:`n` trials, the gaps between successes are drawn from a geometric distribution,
    :math:`\lfloor \ln U / \ln q \rfloor + 1` with :math:`q = 1 - p`, and accumulated until they overshoot :math:`n`.
    For :math:`p \geq 0.5` the symmetric identity :math:`Bin(n, p) = n - Bin(n, 1 - p)` keeps the expected number of
    draws at :math:`O(n \min(p, 1 - p))`.

    >>> binomial(10, 0.0, np.random.default_rng(1))
    0
    >>> binomial(10, 1.0, np.random.default_rng(1))
    10

    :param n: number of trials
    :param p: probability of success of each trial
    :param random_state: Random number generator used for the model
    :return: number of successes, between 0 and n
    """
    if n < 0:
        raise ValueError(f"n must be >= 0 (got {n})")
    if not 0.0 <= p <= 1.0:
        raise ValueError(f"p must be in [0, 1] (got {p})")
    if n == 0 or p == 0.0:
        return 0
    if p == 1.0:
        return n
    if p >= 0.5:
        return n - binomial(n, 1.0 - p, random_state)

    log_q = math.log1p(-p)
    successes = 0
    position = 0
    while True:
        # 1 - random() is in (0, 1], so the log is always finite. The gap can still overflow to inf for tiny p
        gap = math.log(1.0 - random_state.random()) / log_q
        if gap >= n - position:
            return successes
        position += math.floor(gap) + 1
        successes += 1
