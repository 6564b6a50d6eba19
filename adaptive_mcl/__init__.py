"""
Adaptive Monte-Carlo Localization library.

A NumPy-based particle filter over 2-D robot poses with:
- KLD-adaptive population size (Fox, 2003)
- Diversifying resamplers (free-space, map backfill, external hypotheses)
- Per-cluster pose statistics with circular heading moments
"""

from . import models
from . import filters
from . import simulation
from . import utils

from .filters import AdaptiveParticleFilter
from .models import OccupancyMap, Hypothesis

__version__ = "0.1.0"
