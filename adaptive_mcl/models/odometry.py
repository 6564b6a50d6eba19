"""
Odometry motion model.

Each pose moves by a body-frame increment (dx, dy, dtheta) corrupted by
independent Gaussian noise:

    x'     = x + cos(theta) * dx' - sin(theta) * dy'
    y'     = y + sin(theta) * dx' + cos(theta) * dy'
    theta' = theta + dtheta'

with (dx', dy', dtheta') = (dx, dy, dtheta) + noise.
"""

import numpy as np
from typing import Sequence
from numpy.random import Generator

from .base import MotionModelFn


def apply_odometry(
    poses: np.ndarray,
    delta: np.ndarray,
    noise_std: np.ndarray,
    rng: Generator,
) -> np.ndarray:
    """
    Propagate [N, 3] poses through one noisy odometry increment.

    Args:
        poses: [N, 3] poses
        delta: [3] body-frame increment (dx, dy, dtheta)
        noise_std: [3] per-component noise standard deviation
        rng: NumPy random generator

    Returns:
        poses_next: [N, 3]
    """
    n = poses.shape[0]
    d = delta + rng.standard_normal((n, 3)) * noise_std

    c = np.cos(poses[:, 2])
    s = np.sin(poses[:, 2])

    out = np.empty_like(poses)
    out[:, 0] = poses[:, 0] + c * d[:, 0] - s * d[:, 1]
    out[:, 1] = poses[:, 1] + s * d[:, 0] + c * d[:, 1]
    out[:, 2] = poses[:, 2] + d[:, 2]
    return out


def make_odometry_motion_model(
    delta: Sequence[float],
    noise_std: Sequence[float],
    rng: Generator,
) -> MotionModelFn:
    """
    Motion callback for one odometry step.

    Args:
        delta: (dx, dy, dtheta) body-frame increment
        noise_std: (sx, sy, stheta) noise standard deviations
        rng: NumPy random generator (usually the filter's own)

    Returns:
        motion_fn(sample_set) that updates the live poses in place
    """
    delta = np.asarray(delta, dtype=np.float64)
    noise_std = np.asarray(noise_std, dtype=np.float64)

    def motion_fn(sample_set) -> None:
        sample_set.poses[:] = apply_odometry(sample_set.poses, delta, noise_std, rng)

    return motion_fn
