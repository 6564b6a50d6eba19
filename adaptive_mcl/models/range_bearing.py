"""
Range-bearing landmark sensor model.

Observation of landmark j from pose (x, y, theta):
    range   = ||l_j - (x, y)||
    bearing = atan2(l_jy - y, l_jx - x) - theta   (wrapped to [-pi, pi))

Both components carry independent Gaussian noise; the likelihood of a scan
is the product over observed landmarks.
"""

import numpy as np
from scipy import stats
from typing import Optional, Sequence
from numpy.random import Generator

from .base import SensorModelFn
from ..utils.geometry import wrap_angle


def range_bearing(poses: np.ndarray, landmarks: np.ndarray) -> np.ndarray:
    """
    Noise-free range-bearing observations.

    Args:
        poses: [N, 3] or [3] poses
        landmarks: [L, 2] landmark positions

    Returns:
        y: [N, L, 2] or [L, 2] observations (range, bearing)
    """
    single = poses.ndim == 1
    if single:
        poses = poses[None, :]

    dx = landmarks[None, :, 0] - poses[:, None, 0]
    dy = landmarks[None, :, 1] - poses[:, None, 1]
    r = np.sqrt(dx ** 2 + dy ** 2)
    b = wrap_angle(np.arctan2(dy, dx) - poses[:, None, 2])

    y = np.stack([r, b], axis=-1)

    if single:
        return y[0]
    return y


def sample_range_bearing(
    pose: np.ndarray,
    landmarks: np.ndarray,
    sigma_r: float,
    sigma_b: float,
    rng: Generator,
) -> np.ndarray:
    """Noisy [L, 2] observation from a single pose."""
    y = range_bearing(np.asarray(pose, dtype=np.float64), landmarks)
    y[:, 0] += sigma_r * rng.standard_normal(len(landmarks))
    y[:, 1] = wrap_angle(y[:, 1] + sigma_b * rng.standard_normal(len(landmarks)))
    return y


def range_bearing_log_likelihood(
    poses: np.ndarray,
    landmarks: np.ndarray,
    observation: np.ndarray,
    sigma_r: float,
    sigma_b: float,
) -> np.ndarray:
    """
    Log-likelihood of an observation for every pose.

    Args:
        poses: [N, 3] poses
        landmarks: [L, 2] landmark positions
        observation: [L, 2] observed (range, bearing)
        sigma_r: Range noise standard deviation
        sigma_b: Bearing noise standard deviation

    Returns:
        log_lik: [N]
    """
    y_pred = range_bearing(poses, landmarks)  # [N, L, 2]
    res_r = observation[None, :, 0] - y_pred[:, :, 0]
    res_b = wrap_angle(observation[None, :, 1] - y_pred[:, :, 1])

    loglik_r = stats.norm.logpdf(res_r, loc=0.0, scale=sigma_r)
    loglik_b = stats.norm.logpdf(res_b, loc=0.0, scale=sigma_b)
    return np.sum(loglik_r + loglik_b, axis=1)


def make_range_bearing_sensor_model(
    landmarks: Sequence[Sequence[float]],
    observation: np.ndarray,
    sigma_r: float = 0.2,
    sigma_b: float = 0.05,
    log_offset: Optional[float] = None,
) -> SensorModelFn:
    """
    Sensor callback weighting poses by a range-bearing observation.

    Each prior weight is multiplied by exp(log_lik - log_offset); the offset keeps the
    likelihoods representable and defaults to the best pose's
    log-likelihood. Passing a fixed offset lets the total underflow to zero
    when no pose explains the observation.

    Args:
        landmarks: [L, 2] landmark positions
        observation: [L, 2] observed (range, bearing)
        sigma_r: Range noise standard deviation
        sigma_b: Bearing noise standard deviation
        log_offset: Optional fixed log-likelihood offset

    Returns:
        sensor_fn(sample_set) -> total unnormalized weight
    """
    landmarks = np.asarray(landmarks, dtype=np.float64)
    observation = np.asarray(observation, dtype=np.float64)

    def sensor_fn(sample_set) -> float:
        log_lik = range_bearing_log_likelihood(
            sample_set.poses, landmarks, observation, sigma_r, sigma_b
        )
        offset = np.max(log_lik) if log_offset is None else log_offset
        w = sample_set.weights * np.exp(log_lik - offset)
        sample_set.weights[:] = w
        return float(np.sum(w))

    return sensor_fn
