"""
Robot trajectory simulation and storage.
"""

import numpy as np
from dataclasses import dataclass
from typing import Optional, Dict, Any, Sequence
from numpy.random import Generator, default_rng

from ..models.occupancy_map import OccupancyMap
from ..models.odometry import apply_odometry
from ..models.range_bearing import sample_range_bearing


@dataclass
class Trajectory:
    """
    Container for a simulated or recorded localization run.

    Attributes:
        poses: [T+1, 3] true poses (p_0, p_1, ..., p_T)
        odometry: [T, 3] measured body-frame increments (u_1, ..., u_T)
        observations: [T, L, 2] range-bearing observations (y_1, ..., y_T)
        landmarks: [L, 2] landmark positions
        metadata: Optional dictionary for additional info
    """
    poses: np.ndarray
    odometry: np.ndarray
    observations: np.ndarray
    landmarks: np.ndarray
    metadata: Optional[Dict[str, Any]] = None

    @property
    def T(self) -> int:
        """Number of time steps."""
        return self.odometry.shape[0]

    def subset(self, start: int, end: int) -> "Trajectory":
        """
        Extract a subset of the trajectory.

        Args:
            start: Start time index (inclusive)
            end: End time index (exclusive)

        Returns:
            New Trajectory with subset of data
        """
        return Trajectory(
            poses=self.poses[start:end+1].copy(),
            odometry=self.odometry[start:end].copy(),
            observations=self.observations[start:end].copy(),
            landmarks=self.landmarks,
            metadata=self.metadata,
        )

    def save(self, path: str):
        """Save trajectory to .npz file."""
        np.savez(
            path,
            poses=self.poses,
            odometry=self.odometry,
            observations=self.observations,
            landmarks=self.landmarks,
            metadata=self.metadata,
        )

    @classmethod
    def load(cls, path: str) -> "Trajectory":
        """Load trajectory from .npz file."""
        data = np.load(path, allow_pickle=True)
        metadata = data['metadata'].item() if 'metadata' in data else None
        return cls(
            poses=data['poses'],
            odometry=data['odometry'],
            observations=data['observations'],
            landmarks=data['landmarks'],
            metadata=metadata,
        )


def simulate(
    occ_map: OccupancyMap,
    landmarks: Sequence[Sequence[float]],
    controls: np.ndarray,
    start_pose: Sequence[float],
    motion_noise: Sequence[float] = (0.02, 0.02, 0.01),
    sigma_r: float = 0.1,
    sigma_b: float = 0.02,
    seed: Optional[int] = None,
    rng: Optional[Generator] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Trajectory:
    """
    Drive a robot through a map and record odometry and observations.

    The true motion applies each control with motion noise; the recorded
    odometry is the noise-free control. Steps that would leave free space
    keep the robot in place (and record a zero increment).

    Args:
        occ_map: Map the robot moves in
        landmarks: [L, 2] landmark positions
        controls: [T, 3] commanded body-frame increments
        start_pose: [3] initial pose
        motion_noise: Per-component standard deviation of the true motion
        sigma_r: Range noise standard deviation
        sigma_b: Bearing noise standard deviation
        seed: Random seed (ignored if rng is provided)
        rng: NumPy random generator (optional)
        metadata: Optional metadata to attach

    Returns:
        Trajectory object
    """
    if rng is None:
        rng = default_rng(seed)

    landmarks = np.asarray(landmarks, dtype=np.float64)
    controls = np.atleast_2d(np.asarray(controls, dtype=np.float64))
    motion_noise = np.asarray(motion_noise, dtype=np.float64)
    T = controls.shape[0]

    poses = np.zeros((T + 1, 3))
    odometry = np.zeros((T, 3))
    observations = np.zeros((T, len(landmarks), 2))

    poses[0] = start_pose
    if not occ_map.is_free_world(poses[0, 0], poses[0, 1]):
        raise ValueError(f"Start pose {tuple(poses[0])} is not in free space")

    for t in range(T):
        nxt = apply_odometry(poses[t:t+1], controls[t], motion_noise, rng)[0]
        if occ_map.is_free_world(nxt[0], nxt[1]):
            poses[t + 1] = nxt
            odometry[t] = controls[t]
        else:
            poses[t + 1] = poses[t]

        observations[t] = sample_range_bearing(poses[t + 1], landmarks, sigma_r, sigma_b, rng)

    return Trajectory(
        poses=poses,
        odometry=odometry,
        observations=observations,
        landmarks=landmarks,
        metadata=metadata,
    )
