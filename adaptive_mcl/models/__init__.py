"""
Map, histogram and model definitions consumed by the filter.
"""

from .base import Hypothesis, MotionModelFn, SensorModelFn, InitModelFn
from .occupancy_map import (
    OccupancyMap,
    MapExhaustedError,
    sample_free_poses,
    sample_map_poses,
    FREE,
    UNKNOWN,
    OCCUPIED,
)
from .histogram import PoseHistogram
from .odometry import apply_odometry, make_odometry_motion_model
from .range_bearing import (
    range_bearing,
    sample_range_bearing,
    range_bearing_log_likelihood,
    make_range_bearing_sensor_model,
)

__all__ = [
    "Hypothesis",
    "MotionModelFn",
    "SensorModelFn",
    "InitModelFn",
    "OccupancyMap",
    "MapExhaustedError",
    "sample_free_poses",
    "sample_map_poses",
    "FREE",
    "UNKNOWN",
    "OCCUPIED",
    "PoseHistogram",
    "apply_odometry",
    "make_odometry_motion_model",
    "range_bearing",
    "sample_range_bearing",
    "range_bearing_log_likelihood",
    "make_range_bearing_sensor_model",
]
