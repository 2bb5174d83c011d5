"""KL-divergence confidence bounds for Bernoulli precisions.

Implements the exploration rate and bisection-based bounds of KL-LUCB
(Kaufmann & Kalyanakrishnan, "Information Complexity in Bandit Subset
Selection", COLT 2013), with the constants used by the anchors paper
(Ribeiro et al., AAAI 2018):

    beta(t) = log(k1 * K * t**alpha / delta),  beta += log(beta)
    k1 = 405.5, alpha = 1.1

The upper bound of an arm with empirical mean ``p`` after ``n`` pulls is the
largest ``q >= p`` with ``kl(p, q) <= beta / n``; the lower bound is the
smallest ``q <= p`` with the same property.
"""

from __future__ import annotations

import math

import numpy as np

__all__ = [
    "compute_beta",
    "kl_bernoulli",
    "kl_lower_bound",
    "kl_upper_bound",
]

#: Constants of the exploration rate.
BETA_K1: float = 405.5
BETA_ALPHA: float = 1.1

#: Bisection steps; 17 halvings resolve the bound to about 1e-5.
BISECTION_STEPS: int = 17

_P_MIN = 1e-7
_P_MAX = 1.0 - 1e-16


def kl_bernoulli(p: float, q: float) -> float:
    """KL divergence between Bernoulli(p) and Bernoulli(q), clipped away from 0 and 1."""
    p = min(_P_MAX, max(_P_MIN, p))
    q = min(_P_MAX, max(_P_MIN, q))
    return p * math.log(p / q) + (1.0 - p) * math.log((1.0 - p) / (1.0 - q))


def kl_upper_bound(p: float, level: float, steps: int = BISECTION_STEPS) -> float:
    """Largest q in [p, 1] with ``kl(p, q) <= level``, found by bisection."""
    lower = p
    upper = min(1.0, p + math.sqrt(level / 2.0))
    for _ in range(steps):
        mid = (upper + lower) / 2.0
        if kl_bernoulli(p, mid) > level:
            upper = mid
        else:
            lower = mid
    return upper


def kl_lower_bound(p: float, level: float, steps: int = BISECTION_STEPS) -> float:
    """Smallest q in [0, p] with ``kl(p, q) <= level``, found by bisection."""
    upper = p
    lower = max(0.0, p - math.sqrt(level / 2.0))
    for _ in range(steps):
        mid = (upper + lower) / 2.0
        if kl_bernoulli(p, mid) > level:
            lower = mid
        else:
            upper = mid
    return lower


def compute_beta(n_arms: int, t: int, delta: float) -> float:
    """Exploration rate of round *t* for *n_arms* arms at confidence *delta*.

    Decreasing in ``delta`` and increasing in ``t`` and ``n_arms``.
    """
    temp = math.log(BETA_K1 * n_arms * (t ** BETA_ALPHA) / delta)
    return temp + math.log(temp)


def confidence_bounds(
    means: np.ndarray,
    samples: np.ndarray,
    beta: float,
) -> tuple[np.ndarray, np.ndarray]:
    """Lower and upper bounds for every arm.

    Arms without samples get the trivial interval ``[0, 1]``.
    """
    lower = np.zeros(len(means))
    upper = np.ones(len(means))
    for i, (mean, n) in enumerate(zip(means, samples)):
        if n <= 0:
            continue
        level = beta / n
        lower[i] = kl_lower_bound(float(mean), level)
        upper[i] = kl_upper_bound(float(mean), level)
    return lower, upper
