"""
Adaptive Monte-Carlo Localization particle filter.

Maintains a weighted sample approximation of a 2-D pose distribution over an
occupancy grid, with KLD-adaptive population size (Fox, 2003). Two sample
sets are kept: transitions that produce a new population write into the
inactive set and then swap, so the previous population stays intact until
the swap.

Typical cycle:
    pf.init_gaussian(mean, cov)
    for each step:
        pf.update_action(motion_fn)
        pf.update_sensor(sensor_fn)
        pf.resample()
        pf.get_cluster_stats(0)
"""

import warnings
import numpy as np
from typing import Optional, Sequence, Tuple
from numpy.random import Generator, default_rng

from .base import SampleSet, PoseEstimate, DegenerateWeightsWarning
from .clustering import compute_cluster_stats
from .resample import (
    kld_resample,
    inject_hypotheses,
    fixed_cap,
    reserve_cap,
    overhead_cap,
    occupancy_cap,
    UniformMapDiversifier,
    MapBackfillDiversifier,
    HypothesisDiversifier,
    HypothesisExpansionDiversifier,
)
from ..models.base import Hypothesis, MotionModelFn, SensorModelFn, InitModelFn
from ..models.occupancy_map import OccupancyMap, sample_free_poses, sample_map_poses
from ..utils.geometry import as_pose, as_matrix
from ..utils.pdf import GaussianPDF
from ..utils.metrics import compute_cep_stats
from ..utils.resampling import (
    kld_sample_limit,
    kld_sample_limit_unclamped,
    kld_z_from_confidence,
    sum_square_weights,
)


class AdaptiveParticleFilter:
    """
    KLD-sampling particle filter over (x, y, theta) poses.
    """

    def __init__(
        self,
        min_samples: int,
        max_samples: int,
        overhead_samples: int = 0,
        pop_err: float = 0.01,
        pop_z: float = 3.0,
        cluster_max_count: int = 100,
        histogram_resolution: Optional[Sequence[float]] = None,
        max_rejection_attempts: int = 100_000,
        seed: Optional[int] = None,
        rng: Optional[Generator] = None,
    ):
        """
        Args:
            min_samples: Lower bound of the adaptive population size
            max_samples: Upper bound and capacity of each sample set
            overhead_samples: Slots reserved for diversification samples
            pop_err: KLD error bound (epsilon)
            pop_z: Upper standard normal quantile for (1 - delta)
            cluster_max_count: Capacity of each set's cluster table
            histogram_resolution: (dx, dy, dtheta) KLD histogram bin size
            max_rejection_attempts: Consecutive rejected map draws tolerated
                before MapExhaustedError
            seed: Random seed (ignored if rng is provided)
            rng: NumPy random generator shared by every operation
        """
        if min_samples < 1:
            raise ValueError(f"min_samples must be >= 1, got {min_samples}")
        if max_samples < min_samples:
            raise ValueError(f"max_samples ({max_samples}) must be >= min_samples ({min_samples})")
        if not 0 <= overhead_samples < max_samples:
            raise ValueError(f"overhead_samples must lie in [0, max_samples), got {overhead_samples}")
        if pop_err <= 0:
            raise ValueError(f"pop_err must be positive, got {pop_err}")
        if max_rejection_attempts < 1:
            raise ValueError(f"max_rejection_attempts must be >= 1, got {max_rejection_attempts}")

        self.min_samples = int(min_samples)
        self.max_samples = int(max_samples)
        self.overhead_samples = int(overhead_samples)

        # [pop_err] is the max error between the true and the estimated
        # distribution; [pop_z] the upper standard normal quantile for (1 - p),
        # where p is the probability that the error stays below [pop_err].
        self.pop_err = float(pop_err)
        self.pop_z = float(pop_z)

        self.max_rejection_attempts = int(max_rejection_attempts)
        self.seed = seed
        self.rng = default_rng(seed) if rng is None else rng

        self._histogram_resolution = histogram_resolution
        self.sets = [
            SampleSet(self.max_samples, cluster_max_count, histogram_resolution)
            for _ in range(2)
        ]
        self.current_set = 0
        self._scratch: Optional[SampleSet] = None

        self.sum_square_weights = 0.0
        self.last_injected = 0

    # -------------------------------------------------------------------------
    # State access
    # -------------------------------------------------------------------------

    @property
    def current(self) -> SampleSet:
        """The active sample set."""
        return self.sets[self.current_set]

    @property
    def sample_count(self) -> int:
        return self.current.sample_count

    @property
    def scratch_set(self) -> SampleSet:
        """Work buffer for per-hypothesis populations, created on first use."""
        if self._scratch is None:
            self._scratch = SampleSet(self.max_samples, 1, self._histogram_resolution)
        return self._scratch

    @property
    def effective_sample_size(self) -> float:
        """1 / sum(w^2) from the last sensor update (nan before one)."""
        if self.sum_square_weights <= 0.0:
            return np.nan
        return 1.0 / self.sum_square_weights

    @staticmethod
    def kld_z_from_confidence(delta: float) -> float:
        """Upper standard normal quantile for a KLD confidence level 1 - delta."""
        return kld_z_from_confidence(delta)

    # -------------------------------------------------------------------------
    # Population size
    # -------------------------------------------------------------------------

    def resample_limit(
        self,
        k: int,
        pop_z: Optional[float] = None,
        pop_err: Optional[float] = None,
    ) -> int:
        """
        Required number of samples for k occupied bins, in [min, max].

        Args:
            k: Number of occupied histogram bins
            pop_z: Override for the normal quantile
            pop_err: Override for the KLD error bound
        """
        return kld_sample_limit(
            k,
            self.pop_err if pop_err is None else pop_err,
            self.pop_z if pop_z is None else pop_z,
            self.min_samples,
            self.max_samples,
        )

    def resample_limit_relaxed(self, k: int) -> int:
        """Unclamped KLD limit with a five-fold error budget."""
        return kld_sample_limit_unclamped(k, self.pop_err, self.pop_z)

    # -------------------------------------------------------------------------
    # Initialization
    # -------------------------------------------------------------------------

    def _init_with(self, poses: np.ndarray) -> SampleSet:
        sample_set = self.current
        sample_set.fill(poses)
        compute_cluster_stats(sample_set)
        return sample_set

    def init_gaussian(self, mean, cov) -> SampleSet:
        """
        Fill the active set with max_samples poses from N(mean, cov).

        Args:
            mean: [3] pose mean
            cov: [3, 3] pose covariance
        """
        pdf = GaussianPDF(as_pose(mean), as_matrix(cov))
        return self._init_with(pdf.sample_n(self.max_samples, self.rng))

    def init_map(self, occ_map: OccupancyMap) -> SampleSet:
        """
        Fill the active set with poses uniform over the map's free cells,
        heading 0.
        """
        poses = sample_map_poses(
            occ_map, self.max_samples, self.rng,
            random_heading=False,
            max_attempts=self.max_rejection_attempts,
        )
        return self._init_with(poses)

    def init_model(self, init_fn: InitModelFn) -> SampleSet:
        """Fill the active set with one init_fn() pose per sample."""
        poses = np.array([as_pose(init_fn()) for _ in range(self.max_samples)])
        return self._init_with(poses)

    def init_to_point(self, occ_map: OccupancyMap, x: float, y: float, var: float) -> SampleSet:
        """
        Fill the active set with poses uniform in a square of side `var`
        centered on (x, y), heading uniform.

        Only map validity is required; occupied and unknown cells are accepted.
        """
        half = 0.5 * var
        poses = sample_free_poses(
            occ_map, self.max_samples, self.rng,
            low=(x - half, y - half),
            high=(x + half, y + half),
            random_heading=True,
            require_free=False,
            max_attempts=self.max_rejection_attempts,
        )
        return self._init_with(poses)

    # -------------------------------------------------------------------------
    # Motion and sensor updates
    # -------------------------------------------------------------------------

    def update_action(self, action_fn: MotionModelFn):
        """
        Apply a motion model to the active set in place.

        The histogram is left stale; resample (which rebuilds it) should follow.
        """
        action_fn(self.current)

    def update_action_and_clusters(self, action_fn: MotionModelFn):
        """Apply a motion model, then rebuild the histogram and cluster stats."""
        sample_set = self.current
        sample_set.histogram.clear()
        action_fn(sample_set)
        sample_set.rebuild_histogram()
        compute_cluster_stats(sample_set)

    def update_sensor(self, sensor_fn: SensorModelFn) -> float:
        """
        Reweight the active set with a sensor model and normalize.

        When the model returns a non-positive total the weights fall back to
        uniform and a DegenerateWeightsWarning is issued.

        Returns:
            sum of squared normalized weights (1 / ESS)
        """
        sample_set = self.current
        total = sensor_fn(sample_set)

        if total > 0.0:
            sample_set.weights /= total
        else:
            warnings.warn(
                "Sensor model assigned zero probability to every sample; "
                "resetting weights to uniform.",
                DegenerateWeightsWarning,
            )
            sample_set.weights = 1.0 / sample_set.sample_count

        self.sum_square_weights = sum_square_weights(sample_set.weights)
        return self.sum_square_weights

    # -------------------------------------------------------------------------
    # Resampling
    # -------------------------------------------------------------------------

    def resample(self, n_max_particles: Optional[int] = None) -> SampleSet:
        """
        Plain KLD resampling, drawing at most n_max_particles poses.

        Args:
            n_max_particles: Draw cap (default and upper bound: max_samples)
        """
        if n_max_particles is None:
            n_max_particles = self.max_samples
        if n_max_particles < 1:
            raise ValueError(f"n_max_particles must be >= 1, got {n_max_particles}")
        return kld_resample(self, fixed_cap(min(n_max_particles, self.max_samples)))

    def resample_add_particles(self, n_add: int, occ_map: OccupancyMap) -> SampleSet:
        """
        KLD resampling capped at max_samples - n_add, then n_add poses
        uniform over free space with uniform heading.
        """
        if not 0 <= n_add <= self.max_samples:
            raise ValueError(f"n_add must lie in [0, max_samples], got {n_add}")
        return kld_resample(
            self,
            reserve_cap(n_add),
            [UniformMapDiversifier(occ_map, n_add)],
        )

    def resample_map(self, occ_map: OccupancyMap) -> SampleSet:
        """
        KLD resampling capped at max_samples - overhead_samples; when the
        result has fewer than min_samples + 10 poses, up to 100 free-space
        poses are added.
        """
        return kld_resample(self, overhead_cap(), [MapBackfillDiversifier(occ_map)])

    def resample_hypotheses(
        self,
        occ_map: OccupancyMap,
        hypotheses: Sequence[Hypothesis],
        n_particle: int,
    ) -> SampleSet:
        """
        KLD resampling capped at max_samples - overhead_samples, then
        floor(min(max_samples - count, n_particle) / H) one-shot poses per
        hypothesis. Draws outside free space are dropped, so the result may
        hold fewer samples than targeted (possibly fewer than min_samples).
        """
        return kld_resample(
            self,
            overhead_cap(),
            [HypothesisDiversifier(occ_map, hypotheses, n_particle)],
        )

    def resample_hypotheses_v2(
        self,
        occ_map: OccupancyMap,
        hypotheses: Sequence[Hypothesis],
    ) -> SampleSet:
        """
        Inject floor((max_samples - count) / H) one-shot poses per hypothesis
        into the active set, reweight it uniformly, then KLD-resample with cap
        max_samples - overhead_samples.
        """
        injected = inject_hypotheses(self, self.current, occ_map, list(hypotheses))
        new_set = kld_resample(self, overhead_cap())
        self.last_injected = injected
        return new_set

    def resample_hypotheses_v3(
        self,
        occ_map: OccupancyMap,
        hypotheses: Sequence[Hypothesis],
    ) -> SampleSet:
        """
        KLD resampling that keeps the active population size (or leaves
        overhead_samples free when near capacity), then a population grown
        per hypothesis under a relaxed KLD rule. See
        HypothesisExpansionDiversifier.
        """
        return kld_resample(
            self,
            occupancy_cap(),
            [HypothesisExpansionDiversifier(occ_map, hypotheses)],
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @staticmethod
    def cluster_set(sample_set: SampleSet) -> int:
        """
        Rebuild the histogram of an externally populated set and recompute
        its cluster statistics.

        Returns:
            cluster_count
        """
        sample_set.rebuild_histogram()
        return compute_cluster_stats(sample_set)

    def get_cep_stats(self) -> Tuple[np.ndarray, float]:
        """
        Weighted centroid (x, y, 0) and scalar position variance of the
        active set.
        """
        sample_set = self.current
        return compute_cep_stats(sample_set.poses, sample_set.weights)

    def get_cluster_stats(self, label: int) -> Optional[PoseEstimate]:
        """Statistics of one cluster of the active set, or None."""
        return self.current.get_cluster_stats(label)

    def get_best_estimate(self) -> Optional[PoseEstimate]:
        """Statistics of the heaviest cluster of the active set, or None."""
        sample_set = self.current
        if sample_set.cluster_count == 0:
            return None
        weights = [c.weight for c in sample_set.clusters[:sample_set.cluster_count]]
        return sample_set.get_cluster_stats(int(np.argmax(weights)))

    def __repr__(self) -> str:
        return (f"AdaptiveParticleFilter(min={self.min_samples}, max={self.max_samples}, "
                f"overhead={self.overhead_samples}, active={self.current})")
