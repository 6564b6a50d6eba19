"""
Summary statistics and evaluation metrics for pose particle sets.
"""

import numpy as np
from typing import Tuple

from .geometry import wrap_angle


def compute_cep_stats(
    poses: np.ndarray,
    weights: np.ndarray,
) -> Tuple[np.ndarray, float]:
    """
    Circular Error Probable statistics of a weighted pose set.

    Weights need not sum to one; every moment is divided by sum(w).

    Args:
        poses: [N, 3] poses (x, y, theta)
        weights: [N] non-negative weights

    Returns:
        mean: [3] weighted centroid (x, y, 0)
        var: scalar variance E[x^2 + y^2] - (x_bar^2 + y_bar^2)
    """
    poses = np.asarray(poses, dtype=np.float64)
    weights = np.asarray(weights, dtype=np.float64)

    mn = np.sum(weights)
    mx = np.sum(weights * poses[:, 0])
    my = np.sum(weights * poses[:, 1])
    mrr = np.sum(weights * (poses[:, 0] ** 2 + poses[:, 1] ** 2))

    mean = np.array([mx / mn, my / mn, 0.0])
    var = mrr / mn - (mx * mx / (mn * mn) + my * my / (mn * mn))

    return mean, float(var)


def circular_mean(angles: np.ndarray, weights: np.ndarray) -> float:
    """Weighted circular mean atan2(sum w sin, sum w cos)."""
    return float(np.arctan2(np.sum(weights * np.sin(angles)), np.sum(weights * np.cos(angles))))


def circular_variance(angles: np.ndarray, weights: np.ndarray) -> float:
    """
    Circular variance -2 ln(R) of weighted angles.

    R is the length of the weighted resultant vector; with normalized
    weights this is the squared circular standard deviation.
    """
    c = np.sum(weights * np.cos(angles))
    s = np.sum(weights * np.sin(angles))
    return float(-2.0 * np.log(np.sqrt(c * c + s * s)))


def compute_pose_error(
    poses_true: np.ndarray,
    poses_est: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Per-step position and heading error.

    Args:
        poses_true: [T, 3] true poses
        poses_est: [T, 3] estimated poses

    Returns:
        position_error: [T] Euclidean distance in the plane
        heading_error: [T] absolute wrapped heading difference
    """
    poses_true = np.atleast_2d(poses_true)
    poses_est = np.atleast_2d(poses_est)
    T = min(poses_true.shape[0], poses_est.shape[0])

    d = poses_true[:T, :2] - poses_est[:T, :2]
    position_error = np.sqrt(np.sum(d ** 2, axis=1))
    heading_error = np.abs(wrap_angle(poses_true[:T, 2] - poses_est[:T, 2]))

    return position_error, heading_error
