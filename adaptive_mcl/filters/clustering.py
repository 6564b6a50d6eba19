"""
Per-cluster pose statistics.

Linear components use ordinary weighted moments; the heading uses circular
statistics: mean = atan2(sum w sin, sum w cos) and
variance = -2 ln sqrt((sum w cos)^2 + (sum w sin)^2).
"""

import numpy as np

from .base import SampleSet


def compute_cluster_stats(sample_set: SampleSet) -> int:
    """
    Re-cluster a set's histogram and rebuild its cluster table.

    Samples whose label is >= cluster_max_count are left out of the
    statistics.

    Args:
        sample_set: Set whose histogram reflects its live samples

    Returns:
        cluster_count
    """
    hist = sample_set.histogram
    hist.cluster()

    for cluster in sample_set.clusters:
        cluster.reset()
    sample_set.cluster_count = 0

    n = sample_set.sample_count
    if n == 0:
        return 0

    poses = sample_set.poses
    weights = sample_set.weights

    labels = hist.get_clusters(poses)
    assert np.all(labels >= 0), "Live sample missing from the histogram"

    keep = labels < sample_set.cluster_max_count
    if not np.any(keep):
        return 0

    labels = labels[keep]
    w = weights[keep]
    x = poses[keep, 0]
    y = poses[keep, 1]
    th = poses[keep, 2]

    n_clusters = int(np.max(labels)) + 1

    def accumulate(values):
        return np.bincount(labels, weights=values, minlength=n_clusters)

    counts = np.bincount(labels, minlength=n_clusters)
    total = accumulate(w)
    m = np.stack([
        accumulate(w * x),
        accumulate(w * y),
        accumulate(w * np.cos(th)),
        accumulate(w * np.sin(th)),
    ], axis=1)  # [C, 4]
    c_xx = accumulate(w * x * x)
    c_xy = accumulate(w * x * y)
    c_yy = accumulate(w * y * y)

    for i in range(n_clusters):
        cluster = sample_set.clusters[i]
        cluster.count = int(counts[i])
        cluster.weight = float(total[i])
        cluster.m = m[i].copy()
        cluster.c = np.array([[c_xx[i], c_xy[i]], [c_xy[i], c_yy[i]]])

        if cluster.weight <= 0.0:
            continue

        cluster.mean = np.array([
            cluster.m[0] / cluster.weight,
            cluster.m[1] / cluster.weight,
            np.arctan2(cluster.m[3], cluster.m[2]),
        ])

        cov = np.zeros((3, 3))
        cov[:2, :2] = cluster.c / cluster.weight - np.outer(cluster.mean[:2], cluster.mean[:2])
        cov[2, 2] = -2.0 * np.log(np.sqrt(cluster.m[2] ** 2 + cluster.m[3] ** 2))
        cluster.cov = cov

    sample_set.cluster_count = n_clusters
    return n_clusters
