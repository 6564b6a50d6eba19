"""
KLD-adaptive resampling with diversification.

Every resampler variant is the same procedure:

    1. build a discrete distribution over the active set's weights
    2. clear the inactive set and its histogram
    3. draw poses (weight 1) into the inactive set until the KLD limit for
       the current number of occupied bins is exceeded or the cap is hit
    4. let each diversifier add poses from its own source
    5. normalize, recompute cluster statistics, swap the active set

Variants differ only in the cap policy (step 3) and the diversifiers
(step 4).
"""

import numpy as np
from typing import Callable, List, Sequence

from .base import SampleSet
from .clustering import compute_cluster_stats
from ..models.base import Hypothesis
from ..models.occupancy_map import OccupancyMap, sample_map_poses
from ..utils.pdf import DiscretePDF


CapPolicy = Callable[["AdaptiveParticleFilter", SampleSet], int]
Diversifier = Callable[["AdaptiveParticleFilter", SampleSet, int], int]

_DRAW_BLOCK = 256


# -----------------------------------------------------------------------------
# Cap policies: how many poses may be drawn from the active set
# -----------------------------------------------------------------------------

def fixed_cap(n: int) -> CapPolicy:
    """Draw at most n poses."""
    return lambda pf, set_a: n


def reserve_cap(n_reserved: int) -> CapPolicy:
    """Leave n_reserved slots free for diversification."""
    return lambda pf, set_a: pf.max_samples - n_reserved


def overhead_cap() -> CapPolicy:
    """Leave the filter's overhead_samples slots free."""
    return lambda pf, set_a: pf.max_samples - pf.overhead_samples


def occupancy_cap() -> CapPolicy:
    """
    Keep the active population size, unless it is within overhead_samples of
    capacity, in which case leave overhead_samples slots free.
    """
    def cap(pf, set_a):
        if pf.max_samples - set_a.sample_count < pf.overhead_samples:
            return pf.max_samples - pf.overhead_samples
        return set_a.sample_count
    return cap


# -----------------------------------------------------------------------------
# Diversifiers: extra poses mixed into the new set
# -----------------------------------------------------------------------------

class UniformMapDiversifier:
    """Add n poses uniform over the map's free space, heading uniform."""

    def __init__(self, occ_map: OccupancyMap, n: int):
        self.occ_map = occ_map
        self.n = n

    def __call__(self, pf, set_b: SampleSet, cap: int) -> int:
        if self.n <= 0:
            return 0
        poses = sample_map_poses(
            self.occ_map, self.n, pf.rng,
            random_heading=True,
            max_attempts=pf.max_rejection_attempts,
        )
        set_b.extend(poses, weight=1.0)
        return self.n


class MapBackfillDiversifier:
    """
    Add up to `batch` free-space poses when the new set has fewer than
    min_samples + margin samples.
    """

    def __init__(self, occ_map: OccupancyMap, margin: int = 10, batch: int = 100):
        self.occ_map = occ_map
        self.margin = margin
        self.batch = batch

    def __call__(self, pf, set_b: SampleSet, cap: int) -> int:
        if set_b.sample_count >= pf.min_samples + self.margin:
            return 0
        n = min(self.batch, pf.max_samples - set_b.sample_count)
        if n <= 0:
            return 0
        poses = sample_map_poses(
            self.occ_map, n, pf.rng,
            random_heading=True,
            max_attempts=pf.max_rejection_attempts,
        )
        set_b.extend(poses, weight=1.0)
        return n


def draw_hypothesis_poses(
    occ_map: OccupancyMap,
    hypothesis: Hypothesis,
    n: int,
    rng,
) -> np.ndarray:
    """
    One attempt per pose around a hypothesis; rejected attempts are dropped.

    Returns:
        poses: [M, 3] with M <= n, positions in free cells, heading uniform
    """
    if n <= 0:
        return np.zeros((0, 3))
    xy = hypothesis.sample_positions(n, rng)
    theta = (rng.random(n) - 0.5) * 2.0 * np.pi
    free = occ_map.is_free_world(xy[:, 0], xy[:, 1])
    return np.column_stack([xy[free], theta[free]])


class HypothesisDiversifier:
    """
    Add floor(min(max_samples - count, n_particle) / H) one-shot poses around
    each of H hypotheses. The set may end up short when draws land outside
    free space.
    """

    def __init__(self, occ_map: OccupancyMap, hypotheses: Sequence[Hypothesis], n_particle: int):
        self.occ_map = occ_map
        self.hypotheses = list(hypotheses)
        self.n_particle = n_particle

    def __call__(self, pf, set_b: SampleSet, cap: int) -> int:
        n_hyp = len(self.hypotheses)
        if n_hyp == 0:
            return 0

        n_new = min(pf.max_samples - set_b.sample_count, self.n_particle) // n_hyp

        injected = 0
        for hyp in self.hypotheses:
            poses = draw_hypothesis_poses(self.occ_map, hyp, n_new, pf.rng)
            set_b.extend(poses, weight=1.0)
            injected += len(poses)
        return injected


class HypothesisExpansionDiversifier:
    """
    Grow a small population around each hypothesis, then merge it.

    Per hypothesis, a scratch set is seeded with up to n_seed one-shot
    poses (heading 0) and grown one attempt at a time until it holds
    (max_samples - cap) / H poses or exceeds the relaxed KLD limit for its
    own histogram. Accepted positions join the new set with uniform
    headings.
    """

    def __init__(self, occ_map: OccupancyMap, hypotheses: Sequence[Hypothesis], n_seed: int = 10):
        self.occ_map = occ_map
        self.hypotheses = list(hypotheses)
        self.n_seed = n_seed

    def _try_add(self, pf, hyp: Hypothesis, scratch: SampleSet):
        xy = hyp.sample_position(pf.rng)
        if self.occ_map.is_free_world(xy[0], xy[1]):
            scratch.append((xy[0], xy[1], 0.0), 1.0)

    def __call__(self, pf, set_b: SampleSet, cap: int) -> int:
        n_hyp = len(self.hypotheses)
        if n_hyp == 0:
            return 0

        n_new = (pf.max_samples - cap) // n_hyp
        n_min = min(self.n_seed, n_new)
        scratch = pf.scratch_set

        injected = 0
        for hyp in self.hypotheses:
            scratch.reset()

            for _ in range(n_min):
                self._try_add(pf, hyp, scratch)

            attempts = 0
            while scratch.sample_count < n_new:
                k = scratch.histogram.leaf_count
                # A single occupied bin says nothing about spread
                if k <= 1 or scratch.sample_count > pf.resample_limit_relaxed(k):
                    break
                if attempts >= pf.max_rejection_attempts:
                    break
                attempts += 1
                self._try_add(pf, hyp, scratch)

            n = scratch.sample_count
            if n == 0:
                continue
            poses = scratch.poses.copy()
            poses[:, 2] = (pf.rng.random(n) - 0.5) * 2.0 * np.pi
            set_b.extend(poses, weight=1.0)
            injected += n

        return injected


# -----------------------------------------------------------------------------
# Generic procedure
# -----------------------------------------------------------------------------

def draw_kld_samples(pf, set_a: SampleSet, set_b: SampleSet, cap: int) -> int:
    """
    Draw poses from set_a into set_b under the KLD stopping rule.

    set_b is emptied first. After each draw the pose is inserted into set_b's
    histogram and drawing stops once sample_count exceeds the KLD limit for
    the current leaf count, or when cap is reached.

    Returns:
        Number of poses drawn
    """
    pdf = DiscretePDF(set_a.weights)
    src_poses = set_a.poses
    src_weights = set_a.weights

    set_b.reset()
    cap = min(cap, set_b.capacity)
    hist = set_b.histogram

    while set_b.sample_count < cap:
        block = pdf.sample_n(min(_DRAW_BLOCK, cap - set_b.sample_count), pf.rng)
        for i in block:
            assert src_weights[i] > 0, "Drew a sample with zero weight"

            set_b.append(src_poses[i], 1.0)

            if set_b.sample_count > pf.resample_limit(hist.leaf_count):
                return set_b.sample_count

    return set_b.sample_count


def kld_resample(
    pf,
    cap_policy: CapPolicy,
    diversifiers: Sequence[Diversifier] = (),
) -> SampleSet:
    """
    Resample the active set into the inactive one and swap them.

    Args:
        pf: AdaptiveParticleFilter
        cap_policy: Maximum number of poses drawn from the active set
        diversifiers: Sources of extra poses, applied in order

    Returns:
        The new active SampleSet
    """
    set_a = pf.sets[pf.current_set]
    set_b = pf.sets[1 - pf.current_set]

    cap = cap_policy(pf, set_a)
    draw_kld_samples(pf, set_a, set_b, cap)

    injected = 0
    for diversify in diversifiers:
        injected += diversify(pf, set_b, cap)

    if set_b.sample_count == 0:
        raise ValueError("Resampling produced an empty sample set; check the draw cap")

    set_b.normalize()
    compute_cluster_stats(set_b)

    pf.current_set = 1 - pf.current_set
    pf.last_injected = injected
    return set_b


def inject_hypotheses(
    pf,
    sample_set: SampleSet,
    occ_map: OccupancyMap,
    hypotheses: List[Hypothesis],
) -> int:
    """
    Append floor((max_samples - count) / H) one-shot poses per hypothesis to
    a set in place, then reset its weights to uniform and rebuild its
    histogram.

    Returns:
        Number of poses added
    """
    n_hyp = len(hypotheses)
    if n_hyp == 0:
        return 0

    n_new = (pf.max_samples - sample_set.sample_count) // n_hyp

    injected = 0
    for hyp in hypotheses:
        poses = draw_hypothesis_poses(occ_map, hyp, n_new, pf.rng)
        sample_set.extend(poses, weight=1.0)
        injected += len(poses)

    sample_set.weights = 1.0 / sample_set.sample_count
    sample_set.rebuild_histogram()
    return injected
