"""
Adaptive particle filter core.
"""

from .base import Cluster, SampleSet, PoseEstimate, DegenerateWeightsWarning
from .clustering import compute_cluster_stats
from .resample import (
    kld_resample,
    draw_kld_samples,
    fixed_cap,
    reserve_cap,
    overhead_cap,
    occupancy_cap,
    UniformMapDiversifier,
    MapBackfillDiversifier,
    HypothesisDiversifier,
    HypothesisExpansionDiversifier,
)
from .amcl import AdaptiveParticleFilter

__all__ = [
    "Cluster",
    "SampleSet",
    "PoseEstimate",
    "DegenerateWeightsWarning",
    "compute_cluster_stats",
    "kld_resample",
    "draw_kld_samples",
    "fixed_cap",
    "reserve_cap",
    "overhead_cap",
    "occupancy_cap",
    "UniformMapDiversifier",
    "MapBackfillDiversifier",
    "HypothesisDiversifier",
    "HypothesisExpansionDiversifier",
    "AdaptiveParticleFilter",
]
