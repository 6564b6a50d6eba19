"""
Sample set containers and result types for the adaptive particle filter.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..models.histogram import PoseHistogram
from ..utils.geometry import vector_zero, matrix_zero


class DegenerateWeightsWarning(RuntimeWarning):
    """The sensor model assigned zero likelihood to every sample."""


@dataclass
class Cluster:
    """
    Summary statistics of one cluster of samples.

    Attributes:
        count: Number of samples in the cluster
        weight: Total weight of the cluster
        mean: [3] mean pose; theta is the circular mean
        cov: [3, 3] covariance; linear block, circular variance at [2, 2],
             zero linear-angular cross terms
        m: [4] weighted sums of (x, y, cos theta, sin theta)
        c: [2, 2] weighted sums of the (x, y) outer product
    """
    count: int = 0
    weight: float = 0.0
    mean: np.ndarray = field(default_factory=vector_zero)
    cov: np.ndarray = field(default_factory=matrix_zero)
    m: np.ndarray = field(default_factory=lambda: np.zeros(4))
    c: np.ndarray = field(default_factory=lambda: np.zeros((2, 2)))

    def reset(self):
        self.count = 0
        self.weight = 0.0
        self.mean = vector_zero()
        self.cov = matrix_zero()
        self.m = np.zeros(4)
        self.c = np.zeros((2, 2))


@dataclass
class PoseEstimate:
    """
    Per-cluster pose estimate returned by cluster queries.

    Attributes:
        weight: Total weight of the cluster
        mean: [3] mean pose
        cov: [3, 3] pose covariance
    """
    weight: float
    mean: np.ndarray
    cov: np.ndarray

    @property
    def position(self) -> np.ndarray:
        """[2] mean position."""
        return self.mean[:2]

    @property
    def heading(self) -> float:
        return float(self.mean[2])

    @property
    def position_std(self) -> np.ndarray:
        """[2] standard deviation along x and y."""
        return np.sqrt(np.clip(np.diag(self.cov)[:2], 0.0, None))


class SampleSet:
    """
    Fixed-capacity buffer of weighted poses with its histogram and clusters.

    Only the first sample_count entries are live. The `poses` and `weights`
    properties are views of the live region, so motion and sensor models can
    update them in place.
    """

    def __init__(
        self,
        capacity: int,
        cluster_max_count: int = 100,
        histogram_resolution: Optional[Sequence[float]] = None,
    ):
        """
        Args:
            capacity: Maximum number of samples (max_samples)
            cluster_max_count: Capacity of the cluster table
            histogram_resolution: (dx, dy, dtheta) histogram bin size
        """
        self.capacity = int(capacity)
        self.sample_count = self.capacity

        self._poses = np.zeros((self.capacity, 3))
        self._weights = np.full(self.capacity, 1.0 / self.capacity)

        self.histogram = PoseHistogram(histogram_resolution)

        self.cluster_max_count = int(cluster_max_count)
        self.clusters: List[Cluster] = [Cluster() for _ in range(self.cluster_max_count)]
        self.cluster_count = 0

    # -------------------------------------------------------------------------
    # Live sample views
    # -------------------------------------------------------------------------

    @property
    def poses(self) -> np.ndarray:
        """[sample_count, 3] live poses (view)."""
        return self._poses[:self.sample_count]

    @poses.setter
    def poses(self, value):
        self._poses[:self.sample_count] = value

    @property
    def weights(self) -> np.ndarray:
        """[sample_count] live weights (view)."""
        return self._weights[:self.sample_count]

    @weights.setter
    def weights(self, value):
        self._weights[:self.sample_count] = value

    def __len__(self) -> int:
        return self.sample_count

    # -------------------------------------------------------------------------
    # Population edits
    # -------------------------------------------------------------------------

    def reset(self):
        """Drop every sample and clear the histogram."""
        self.sample_count = 0
        self.histogram.clear()

    def append(self, pose, weight: float = 1.0):
        """Add one sample and insert it into the histogram."""
        if self.sample_count >= self.capacity:
            raise IndexError(f"Sample set is full (capacity {self.capacity})")
        i = self.sample_count
        self._poses[i] = pose
        self._weights[i] = weight
        self.sample_count += 1
        self.histogram.insert(self._poses[i], weight)

    def extend(self, poses: np.ndarray, weight: float = 1.0):
        """Add a batch of [M, 3] poses with a common weight."""
        poses = np.atleast_2d(poses)
        n = poses.shape[0]
        if self.sample_count + n > self.capacity:
            raise IndexError(
                f"Cannot add {n} samples to a set holding {self.sample_count} "
                f"of {self.capacity}"
            )
        start = self.sample_count
        self._poses[start:start + n] = poses
        self._weights[start:start + n] = weight
        self.sample_count += n
        self.histogram.insert_many(self._poses[start:start + n], self._weights[start:start + n])

    def fill(self, poses: np.ndarray):
        """
        Replace the population with [N, 3] poses of uniform weight 1/N and
        rebuild the histogram.
        """
        poses = np.atleast_2d(poses)
        n = poses.shape[0]
        if n > self.capacity:
            raise IndexError(f"Cannot fill {n} samples into capacity {self.capacity}")
        self.sample_count = n
        self._poses[:n] = poses
        self._weights[:n] = 1.0 / n
        self.rebuild_histogram()

    def rebuild_histogram(self):
        """Re-insert every live sample into a cleared histogram."""
        self.histogram.clear()
        self.histogram.insert_many(self.poses, self.weights)

    def normalize(self):
        """Divide live weights by their total."""
        total = np.sum(self.weights)
        self.weights /= total

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_cluster_stats(self, label: int) -> Optional[PoseEstimate]:
        """
        Statistics of one cluster.

        Returns:
            PoseEstimate, or None if label is outside [0, cluster_count)
        """
        if label < 0 or label >= self.cluster_count:
            return None
        cluster = self.clusters[label]
        return PoseEstimate(
            weight=cluster.weight,
            mean=cluster.mean.copy(),
            cov=cluster.cov.copy(),
        )

    def __repr__(self) -> str:
        return (f"SampleSet(count={self.sample_count}/{self.capacity}, "
                f"leaves={self.histogram.leaf_count}, clusters={self.cluster_count})")
