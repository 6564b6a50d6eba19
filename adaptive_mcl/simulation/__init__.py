"""
Trajectory simulation.
"""

from .trajectory import Trajectory, simulate

__all__ = [
    "Trajectory",
    "simulate",
]
