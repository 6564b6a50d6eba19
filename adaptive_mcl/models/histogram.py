"""
Pose-space histogram for KLD sampling and clustering.

Poses are binned on a regular (x, y, theta) lattice; the histogram keeps one
leaf per occupied bin with its accumulated weight. Clustering labels
connected groups of occupied bins, where two bins are neighbours when their
integer keys differ by at most one in every dimension.
"""

import numpy as np
from typing import Dict, Optional, Sequence, Tuple
from scipy.spatial import cKDTree
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components


DEFAULT_RESOLUTION = (0.5, 0.5, np.deg2rad(10.0))


class PoseHistogram:
    """
    Sparse histogram of poses keyed by discretized pose.

    Operations mirror what adaptive resampling needs: clear, insert,
    leaf_count, cluster, get_cluster.
    """

    def __init__(self, resolution: Optional[Sequence[float]] = None):
        """
        Args:
            resolution: (dx, dy, dtheta) bin size. Default (0.5 m, 0.5 m, 10 deg).
        """
        if resolution is None:
            resolution = DEFAULT_RESOLUTION
        self.resolution = np.asarray(resolution, dtype=np.float64)
        if self.resolution.shape != (3,) or np.any(self.resolution <= 0):
            raise ValueError(f"Histogram resolution must be 3 positive values, got {resolution}")

        self._index: Dict[Tuple[int, int, int], int] = {}
        self._weights = []
        self._labels = []
        self.cluster_count = 0

    def _key(self, pose) -> Tuple[int, int, int]:
        k = np.floor(np.asarray(pose)[:3] / self.resolution).astype(int)
        return int(k[0]), int(k[1]), int(k[2])

    @property
    def leaf_count(self) -> int:
        """Number of occupied bins."""
        return len(self._index)

    def clear(self):
        """Remove every leaf."""
        self._index.clear()
        self._weights.clear()
        self._labels.clear()
        self.cluster_count = 0

    def insert(self, pose, weight: float):
        """Add weight to the bin containing pose, creating it if needed."""
        key = self._key(pose)
        leaf = self._index.get(key)
        if leaf is None:
            self._index[key] = len(self._weights)
            self._weights.append(float(weight))
            self._labels.append(-1)
        else:
            self._weights[leaf] += weight

    def insert_many(self, poses: np.ndarray, weights: np.ndarray):
        """Insert a batch of [N, 3] poses with [N] weights."""
        for pose, w in zip(np.asarray(poses), np.asarray(weights)):
            self.insert(pose, w)

    def leaf_weight(self, pose) -> float:
        """Accumulated weight of the bin containing pose (0 if empty)."""
        leaf = self._index.get(self._key(pose))
        return 0.0 if leaf is None else self._weights[leaf]

    def cluster(self) -> int:
        """
        Label connected groups of occupied bins.

        Returns:
            Number of clusters
        """
        n_leaves = len(self._index)
        if n_leaves == 0:
            self.cluster_count = 0
            return 0

        keys = np.empty((n_leaves, 3), dtype=np.float64)
        for key, leaf in self._index.items():
            keys[leaf] = key

        # Integer keys: Chebyshev distance <= 1 is the 26-neighbourhood
        pairs = cKDTree(keys).query_pairs(r=1.0, p=np.inf, output_type='ndarray')
        adjacency = coo_matrix(
            (np.ones(len(pairs)), (pairs[:, 0], pairs[:, 1])),
            shape=(n_leaves, n_leaves),
        )
        n_clusters, labels = connected_components(adjacency, directed=False)

        self._labels = labels.tolist()
        self.cluster_count = int(n_clusters)
        return self.cluster_count

    def get_cluster(self, pose) -> int:
        """
        Cluster label of the bin containing pose.

        Returns -1 when the bin is empty or was created after the last
        cluster() call.
        """
        leaf = self._index.get(self._key(pose))
        return -1 if leaf is None else self._labels[leaf]

    def get_clusters(self, poses: np.ndarray) -> np.ndarray:
        """Vectorized get_cluster over [N, 3] poses."""
        poses = np.asarray(poses)
        if poses.shape[0] == 0:
            return np.zeros(0, dtype=int)
        keys = np.floor(poses[:, :3] / self.resolution).astype(int)
        index = self._index
        labels = self._labels
        out = np.empty(len(keys), dtype=int)
        for i, (kx, ky, kt) in enumerate(keys.tolist()):
            leaf = index.get((kx, ky, kt))
            out[i] = -1 if leaf is None else labels[leaf]
        return out

    def __repr__(self) -> str:
        return f"PoseHistogram(leaves={self.leaf_count}, clusters={self.cluster_count})"
