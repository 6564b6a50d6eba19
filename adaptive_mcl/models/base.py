"""
Model interfaces consumed by the adaptive particle filter.

The filter core does not model sensors or motion itself. It calls out to:

    motion model:  motion_fn(sample_set) -> None
        Mutates sample_set.poses in place; must not change sample_count.
    sensor model:  sensor_fn(sample_set) -> float
        Writes unnormalized likelihoods into sample_set.weights and
        returns their sum.
    init model:    init_fn() -> [3] pose
        Returns one pose per call.

Any callable with these signatures works (plain functions, closures over
model parameters, bound methods).

Pose hypotheses injected during resampling are described by Hypothesis.
"""

import numpy as np
from dataclasses import dataclass
from typing import Callable
from numpy.random import Generator

from ..utils.pdf import bivariate_gaussian


MotionModelFn = Callable[["SampleSet"], None]
SensorModelFn = Callable[["SampleSet"], float]
InitModelFn = Callable[[], np.ndarray]


@dataclass
class Hypothesis:
    """
    External pose hypothesis: a 2-D position mean and a 2x2 spread matrix.

    The spread matrix follows the hypothesis producers' convention: its
    diagonal entries are standard deviations (not variances) and the
    correlation is cov[0, 1] / (cov[0, 0] * cov[1, 1]).

    Attributes:
        mean: [2] position (x, y)
        cov: [2, 2] spread matrix (sigma_x, sigma_xy; sigma_xy, sigma_y)
    """
    mean: np.ndarray
    cov: np.ndarray

    def __post_init__(self):
        self.mean = np.asarray(self.mean, dtype=np.float64).reshape(2)
        self.cov = np.asarray(self.cov, dtype=np.float64).reshape(2, 2)

    @property
    def sigma_x(self) -> float:
        return float(self.cov[0, 0])

    @property
    def sigma_y(self) -> float:
        return float(self.cov[1, 1])

    @property
    def rho(self) -> float:
        return float(self.cov[0, 1] / (self.cov[0, 0] * self.cov[1, 1]))

    def sample_position(self, rng: Generator) -> np.ndarray:
        """Draw one [2] position around the hypothesis mean."""
        return self.mean + bivariate_gaussian(rng, self.sigma_x, self.sigma_y, self.rho)

    def sample_positions(self, n: int, rng: Generator) -> np.ndarray:
        """Draw [n, 2] positions around the hypothesis mean."""
        return self.mean + bivariate_gaussian(rng, self.sigma_x, self.sigma_y, self.rho, size=n)

    def __repr__(self) -> str:
        return (f"Hypothesis(mean=({self.mean[0]:.3f}, {self.mean[1]:.3f}), "
                f"sigma=({self.sigma_x:.3f}, {self.sigma_y:.3f}), rho={self.rho:.3f})")
