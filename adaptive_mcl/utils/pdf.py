"""
Probability distributions used by the particle filter.

- DiscretePDF: i.i.d. index draws proportional to a weight vector
- GaussianPDF: 3-D multivariate Gaussian over poses
- bivariate_gaussian: zero-mean correlated 2-D Gaussian draw
"""

import numpy as np
from typing import Optional
from numpy.random import Generator

from .geometry import as_pose, as_matrix, matrix_unitary


class EmptyDistributionError(ValueError):
    """Raised when a discrete distribution has no probability mass."""


class DiscretePDF:
    """
    Discrete distribution over N non-negative weights.

    Draws index i with probability w[i] / sum(w) by inverting the
    normalized cumulative sum with a binary search.
    """

    def __init__(self, weights: np.ndarray):
        """
        Args:
            weights: [N] Non-negative weights (need not be normalized)

        Raises:
            EmptyDistributionError: If there are no weights, any weight is
                negative, or the weights sum to zero
        """
        w = np.asarray(weights, dtype=np.float64).reshape(-1)
        if w.size == 0:
            raise EmptyDistributionError("Cannot build a discrete distribution from no weights")
        if np.any(w < 0) or not np.all(np.isfinite(w)):
            raise EmptyDistributionError("Discrete distribution weights must be finite and non-negative")

        total = np.sum(w)
        if total <= 0.0:
            raise EmptyDistributionError("Discrete distribution weights sum to zero")

        self.weights = w
        self.total = float(total)
        self.cdf = np.cumsum(w) / total
        self.cdf[-1] = 1.0  # Ensure exactly 1.0 to avoid numerical issues

    def __len__(self) -> int:
        return self.weights.size

    def sample(self, rng: Generator) -> int:
        """Draw a single index."""
        return int(self.sample_n(1, rng)[0])

    def sample_n(self, n: int, rng: Generator) -> np.ndarray:
        """
        Draw n i.i.d. indices.

        Args:
            n: Number of draws
            rng: NumPy random generator

        Returns:
            indices: [n] int array
        """
        u = rng.random(n)
        # side='right' never lands on a zero-weight entry (its cdf equals
        # the previous one)
        indices = np.searchsorted(self.cdf, u, side='right')
        return np.minimum(indices, self.weights.size - 1)


class GaussianPDF:
    """
    Multivariate Gaussian over poses, N(mean, cov).

    The covariance is factored once as cov = R D R^T; a draw is
    mean + R @ (sqrt(D) * n) with n standard normal.
    """

    def __init__(self, mean, cov):
        """
        Args:
            mean: [3] Pose mean
            cov: [3, 3] Pose covariance (symmetric positive semi-definite)
        """
        self.mean = as_pose(mean)
        self.cov = as_matrix(cov)

        self.cr, cd = matrix_unitary(self.cov)
        # Tiny negative eigenvalues come from round-off
        self.cd = np.sqrt(np.clip(np.diag(cd), 0.0, None))

    def sample(self, rng: Generator) -> np.ndarray:
        """Draw a single [3] pose."""
        return self.sample_n(1, rng)[0]

    def sample_n(self, n: int, rng: Generator) -> np.ndarray:
        """
        Draw n poses.

        Returns:
            poses: [n, 3]
        """
        noise = rng.standard_normal((n, 3)) * self.cd
        return self.mean + noise @ self.cr.T


def bivariate_gaussian(
    rng: Generator,
    sigma_x: float,
    sigma_y: float,
    rho: float,
    size: Optional[int] = None,
) -> np.ndarray:
    """
    Draw zero-mean correlated 2-D Gaussian samples.

    Returns (sigma_x * n1, sigma_y * (rho * n1 + sqrt(1 - rho^2) * n2))
    for independent standard normals n1, n2.

    Args:
        rng: NumPy random generator
        sigma_x: Standard deviation along x
        sigma_y: Standard deviation along y
        rho: Correlation coefficient
        size: Number of samples; None draws a single one

    Returns:
        xy: [2] sample, or [size, 2] samples
    """
    n = rng.standard_normal((1 if size is None else size, 2))
    xy = np.empty_like(n)
    xy[:, 0] = sigma_x * n[:, 0]
    xy[:, 1] = sigma_y * (rho * n[:, 0] + np.sqrt(1.0 - rho * rho) * n[:, 1])
    return xy[0] if size is None else xy
