"""
Population-size rules and weight diagnostics for adaptive resampling.

KLD sampling (Fox, 2003): the number of samples needed so that, with
probability 1 - delta, the KL divergence between the sample-based
estimate and the true posterior stays below pop_err, given that the
samples occupy k histogram bins.
"""

import math

import numpy as np
from scipy import stats


def _wilson_hilferty_cube(k: int, pop_z: float) -> float:
    """(1 - 2/(9(k-1)) + sqrt(2/(9(k-1))) * z)^3, the chi-square quantile term."""
    b = 2.0 / (9.0 * (k - 1))
    x = 1.0 - b + math.sqrt(b) * pop_z
    return x * x * x


def kld_sample_limit(
    k: int,
    pop_err: float,
    pop_z: float,
    min_samples: int,
    max_samples: int,
) -> int:
    """
    KLD sample-count bound, clamped to [min_samples, max_samples].

    n(k) = ceil((k - 1) / (2 * pop_err) * (1 - 2/(9(k-1)) + sqrt(2/(9(k-1))) * z)^3)

    Args:
        k: Number of occupied histogram bins
        pop_err: Maximum KL error (epsilon)
        pop_z: Upper standard normal quantile for (1 - delta)
        min_samples: Lower clamp (also returned for k <= 1)
        max_samples: Upper clamp

    Returns:
        Required number of samples
    """
    if k <= 1:
        return min_samples

    n = math.ceil((k - 1) / (2.0 * pop_err) * _wilson_hilferty_cube(k, pop_z))

    if n < min_samples:
        return min_samples
    if n >= max_samples:
        return max_samples
    return n


def kld_sample_limit_unclamped(
    k: int,
    pop_err: float,
    pop_z: float,
    err_scale: float = 5.0,
) -> int:
    """
    Relaxed KLD bound with the error budget multiplied by err_scale.

    Used when growing a small population around a single hypothesis, where
    the filter-wide clamps do not apply. With the default scale the
    denominator is 10 * pop_err instead of 2 * pop_err.

    Args:
        k: Number of occupied histogram bins
        pop_err: Maximum KL error (epsilon)
        pop_z: Upper standard normal quantile
        err_scale: Multiplier on the error budget

    Returns:
        Required number of samples (0 when k <= 1)
    """
    if k <= 1:
        return 0
    return math.ceil((k - 1) / (err_scale * 2.0 * pop_err) * _wilson_hilferty_cube(k, pop_z))


def kld_z_from_confidence(delta: float) -> float:
    """
    Upper standard normal quantile z = Phi^-1(1 - delta).

    Args:
        delta: Probability that the KL bound is violated, in (0, 1)
    """
    if not 0.0 < delta < 1.0:
        raise ValueError(f"delta must lie in (0, 1), got {delta}")
    return float(stats.norm.ppf(1.0 - delta))


def sum_square_weights(weights: np.ndarray) -> float:
    """
    Sum of squared weights, the inverse effective sample size.

    Lies in [1/N, 1] for normalized weights.
    """
    return float(np.sum(np.asarray(weights) ** 2))


def effective_sample_size(weights: np.ndarray) -> float:
    """
    Compute effective sample size (ESS).

    ESS = 1 / sum(w_i^2), where weights are normalized.

    Args:
        weights: [N] Normalized weights (must sum to 1)

    Returns:
        ESS value in [1, N]
    """
    return 1.0 / sum_square_weights(weights)
