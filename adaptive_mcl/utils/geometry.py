"""
Pose vector and covariance matrix primitives.

A pose is a [3] array (x, y, theta); a pose covariance is a [3, 3] array.
Batches of poses are [N, 3] with the first axis as batch dimension.
"""

import numpy as np
from typing import Tuple


def vector_zero() -> np.ndarray:
    """Return the zero pose (0, 0, 0)."""
    return np.zeros(3)


def matrix_zero() -> np.ndarray:
    """Return a [3, 3] zero matrix."""
    return np.zeros((3, 3))


def matrix_identity() -> np.ndarray:
    """Return the [3, 3] identity matrix."""
    return np.eye(3)


def as_pose(pose) -> np.ndarray:
    """
    Convert input to a float [3] pose vector.

    Args:
        pose: Sequence of (x, y, theta)

    Returns:
        pose: [3] float array (a copy)

    Raises:
        ValueError: If the input does not hold exactly three values
    """
    v = np.array(pose, dtype=np.float64).reshape(-1)
    if v.shape != (3,):
        raise ValueError(f"Pose must have 3 components, got shape {np.shape(pose)}")
    return v


def as_matrix(cov) -> np.ndarray:
    """
    Convert input to a float [3, 3] matrix.

    Raises:
        ValueError: If the input is not 3x3
    """
    m = np.array(cov, dtype=np.float64)
    if m.shape != (3, 3):
        raise ValueError(f"Pose covariance must be 3x3, got shape {m.shape}")
    return m


def matrix_unitary(a: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Decompose a symmetric matrix into a rotation and a diagonal.

    a = r @ d @ r.T, with r orthonormal and d diagonal (eigenvalues).

    Args:
        a: [3, 3] symmetric matrix

    Returns:
        r: [3, 3] eigenvectors (columns)
        d: [3, 3] diagonal eigenvalue matrix
    """
    a = 0.5 * (a + a.T)
    eigvals, eigvecs = np.linalg.eigh(a)
    return eigvecs, np.diag(eigvals)


def wrap_angle(a):
    """Wrap angle(s) to [-pi, pi)."""
    return (np.asarray(a) + np.pi) % (2.0 * np.pi) - np.pi
