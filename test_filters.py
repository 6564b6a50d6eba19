"""
Test suite for the adaptive particle filter.

Tests initialization, sensor and motion updates, every KLD resampler
variant, cluster statistics and the degenerate-weight path.

Run: pytest test_filters.py -v
"""

import math
import warnings

import pytest
import numpy as np
from numpy.random import default_rng

from adaptive_mcl.filters import (
    AdaptiveParticleFilter,
    SampleSet,
    DegenerateWeightsWarning,
)
from adaptive_mcl.models import (
    OccupancyMap,
    MapExhaustedError,
    Hypothesis,
    make_odometry_motion_model,
    make_range_bearing_sensor_model,
    FREE,
    OCCUPIED,
)
from adaptive_mcl.utils import wrap_angle
from adaptive_mcl.utils.pdf import EmptyDistributionError


# ============================================================================
# Assertion helpers
# ============================================================================

def assert_normalized(sample_set: SampleSet, name: str, atol: float = 1e-10):
    """Check live weights are non-negative and sum to one."""
    w = sample_set.weights
    if np.any(w < 0):
        pytest.fail(f"{name}: negative weights, min={w.min():.3e}")
    total = np.sum(w)
    if abs(total - 1.0) > atol:
        pytest.fail(f"{name}: weights sum to {total:.12f}, expected 1")


def assert_uniform(sample_set: SampleSet, name: str, atol: float = 1e-12):
    """Check every live weight equals 1 / sample_count."""
    n = sample_set.sample_count
    diff = np.max(np.abs(sample_set.weights - 1.0 / n))
    if diff > atol:
        pytest.fail(f"{name}: weights not uniform 1/{n}, max diff {diff:.3e}")


def assert_kld_count(pf: AdaptiveParticleFilter, cap: int, name: str):
    """
    Check the drawn population stopped exactly where the KLD rule says:
    one past the limit for the final leaf count, or at the cap.
    """
    k = pf.current.histogram.leaf_count
    expected = min(cap, pf.resample_limit(k) + 1)
    if pf.sample_count != expected:
        pytest.fail(
            f"{name}: sample_count={pf.sample_count}, expected {expected} "
            f"(k={k}, limit={pf.resample_limit(k)}, cap={cap})"
        )


def assert_free(occ_map: OccupancyMap, poses: np.ndarray, name: str):
    free = occ_map.is_free_world(poses[:, 0], poses[:, 1])
    if not np.all(free):
        pytest.fail(f"{name}: {np.sum(~free)} poses outside free space")


# ============================================================================
# Fixtures
# ============================================================================

# Bin-centered pose: a tight Gaussian around it occupies a single histogram leaf
TIGHT_MEAN = (0.25, 0.25, np.deg2rad(5.0))
TIGHT_COV = np.diag([1e-6, 1e-6, 1e-6])


@pytest.fixture
def room_map():
    """40x40 cells at 0.5 m (20 m square), occupied border, free interior."""
    grid = np.full((40, 40), FREE, dtype=np.int8)
    grid[0, :] = OCCUPIED
    grid[-1, :] = OCCUPIED
    grid[:, 0] = OCCUPIED
    grid[:, -1] = OCCUPIED
    return OccupancyMap(occ_state=grid, scale=0.5)


@pytest.fixture
def pf():
    return AdaptiveParticleFilter(min_samples=100, max_samples=1000, overhead_samples=100, seed=7)


@pytest.fixture
def tight_pf(pf):
    """Filter whose active set sits in one histogram leaf."""
    pf.init_gaussian(TIGHT_MEAN, TIGHT_COV)
    assert pf.current.histogram.leaf_count == 1
    return pf


def hyp(x, y, sigma):
    return Hypothesis(mean=[x, y], cov=[[sigma, 0.0], [0.0, sigma]])


def constant_sensor(value):
    """Sensor model assigning the same likelihood to every sample."""
    def sensor_fn(sample_set):
        sample_set.weights *= value
        return float(np.sum(sample_set.weights))
    return sensor_fn


# ============================================================================
# Construction
# ============================================================================

class TestConstruction:

    @pytest.mark.parametrize("kwargs", [
        dict(min_samples=0, max_samples=10),
        dict(min_samples=20, max_samples=10),
        dict(min_samples=10, max_samples=100, overhead_samples=100),
        dict(min_samples=10, max_samples=100, overhead_samples=-1),
        dict(min_samples=10, max_samples=100, pop_err=0.0),
        dict(min_samples=10, max_samples=100, max_rejection_attempts=0),
    ])
    def test_rejects_bad_configuration(self, kwargs):
        with pytest.raises(ValueError):
            AdaptiveParticleFilter(**kwargs)

    def test_initial_state(self, pf):
        assert pf.current_set == 0
        assert pf.sample_count == 1000
        assert_uniform(pf.current, "fresh set")
        assert math.isnan(pf.effective_sample_size)

    def test_resample_limits(self):
        pf = AdaptiveParticleFilter(100, 1000, pop_err=0.01, pop_z=3.0)
        assert pf.resample_limit(1) == 100
        assert pf.resample_limit(2) == 527
        assert pf.resample_limit(10000) == 1000
        assert pf.resample_limit(2, pop_err=1.0) == 100
        assert pf.resample_limit_relaxed(1) == 0
        assert pf.resample_limit_relaxed(2) == 106


# ============================================================================
# Initialization
# ============================================================================

class TestInitialization:

    def test_gaussian_init_round_trip(self):
        n = 5000
        mean = np.array([1.0, 2.0, 0.3])
        sigma = np.array([0.2, 0.2, 0.1])
        pf = AdaptiveParticleFilter(100, n, seed=11)
        pf.init_gaussian(mean, np.diag(sigma ** 2))

        assert pf.sample_count == n
        assert_uniform(pf.current, "gaussian init")

        best = pf.get_best_estimate()
        assert best is not None
        assert best.weight > 0.99

        tol = 4.0 * sigma / np.sqrt(n)
        assert np.all(np.abs(best.position - mean[:2]) < tol[:2])
        assert abs(wrap_angle(best.heading - mean[2])) < tol[2]
        np.testing.assert_allclose(np.diag(best.cov), sigma ** 2, rtol=0.1)

    def test_map_init_in_free_space(self, pf, room_map):
        pf.init_map(room_map)
        assert pf.sample_count == pf.max_samples
        assert_free(room_map, pf.current.poses, "init_map")
        np.testing.assert_array_equal(pf.current.poses[:, 2], 0.0)
        assert_uniform(pf.current, "init_map")

    def test_map_init_exhausted(self):
        blocked = OccupancyMap(occ_state=np.full((10, 10), OCCUPIED), scale=1.0)
        pf = AdaptiveParticleFilter(10, 50, max_rejection_attempts=1000, seed=0)
        with pytest.raises(MapExhaustedError):
            pf.init_map(blocked)

    def test_init_to_point(self, pf, room_map):
        pf.init_to_point(room_map, 1.0, -2.0, 2.0)
        poses = pf.current.poses
        assert pf.sample_count == pf.max_samples
        assert np.all(np.abs(poses[:, 0] - 1.0) <= 1.0)
        assert np.all(np.abs(poses[:, 1] + 2.0) <= 1.0)
        assert np.all((poses[:, 2] >= -np.pi) & (poses[:, 2] < np.pi))

    def test_init_to_point_accepts_occupied_cells(self, room_map):
        # Square lying inside the border wall
        pf = AdaptiveParticleFilter(10, 2000, seed=3)
        pf.init_to_point(room_map, -9.75, 0.0, 0.5)
        poses = pf.current.poses
        assert np.all(room_map.is_valid_world(poses[:, 0], poses[:, 1]))
        assert not np.all(room_map.is_free_world(poses[:, 0], poses[:, 1]))

    def test_init_model(self, pf):
        calls = []

        def init_fn():
            calls.append(1)
            return (3.0, 4.0, 0.5)

        pf.init_model(init_fn)
        assert len(calls) == pf.max_samples
        assert pf.current.cluster_count == 1
        np.testing.assert_allclose(pf.get_best_estimate().mean, [3.0, 4.0, 0.5])


# ============================================================================
# Motion and sensor updates
# ============================================================================

class TestUpdates:

    def test_sensor_update_normalizes(self, pf, room_map):
        pf.init_map(room_map)
        x = pf.current.poses[:, 0].copy()

        def sensor_fn(sample_set):
            sample_set.weights *= np.exp(-0.5 * x ** 2)
            return float(np.sum(sample_set.weights))

        ssw = pf.update_sensor(sensor_fn)
        assert_normalized(pf.current, "sensor update")
        assert math.isclose(ssw, float(np.sum(pf.current.weights ** 2)))
        assert 1.0 / pf.max_samples <= ssw <= 1.0
        assert math.isclose(pf.effective_sample_size, 1.0 / ssw)

    def test_constant_likelihood_keeps_uniform(self, pf):
        ssw = pf.update_sensor(constant_sensor(3.0))
        assert_uniform(pf.current, "constant sensor")
        assert math.isclose(ssw, 1.0 / pf.max_samples)

    def test_degenerate_weights_fall_back_to_uniform(self, pf, room_map):
        pf.init_map(room_map)
        pf.update_sensor(constant_sensor(2.0))
        with pytest.warns(DegenerateWeightsWarning):
            ssw = pf.update_sensor(constant_sensor(0.0))
        assert_uniform(pf.current, "degenerate weights")
        assert math.isclose(ssw, 1.0 / pf.max_samples)

    def test_range_bearing_underflow_warns(self, pf, room_map):
        pf.init_map(room_map)
        landmarks = np.array([[5.0, 5.0], [-5.0, 5.0]])
        observation = np.array([[3.0, 0.1], [7.0, 2.0]])
        sensor_fn = make_range_bearing_sensor_model(landmarks, observation, log_offset=1e6)
        with pytest.warns(DegenerateWeightsWarning):
            pf.update_sensor(sensor_fn)
        assert_normalized(pf.current, "underflow fallback")

    def test_nondegenerate_update_is_silent(self, pf):
        with warnings.catch_warnings():
            warnings.simplefilter("error", DegenerateWeightsWarning)
            pf.update_sensor(constant_sensor(0.5))

    def test_action_leaves_histogram_stale(self, tight_pf):
        pf = tight_pf
        before = pf.get_best_estimate().mean.copy()
        pf.update_action(make_odometry_motion_model((2.0, 0.0, 0.0), (0.0, 0.0, 0.0), pf.rng))
        assert pf.current.histogram.leaf_weight(TIGHT_MEAN) > 0
        np.testing.assert_allclose(pf.get_best_estimate().mean, before)

    def test_action_and_clusters_moves_estimate(self, tight_pf):
        pf = tight_pf
        pf.update_action_and_clusters(
            make_odometry_motion_model((2.0, 0.0, 0.0), (0.0, 0.0, 0.0), pf.rng)
        )
        expected = np.average(pf.current.poses[:, :2], axis=0, weights=pf.current.weights)
        best = pf.get_best_estimate()
        np.testing.assert_allclose(best.position, expected, atol=1e-9)
        assert best.position[0] > 2.0
        assert pf.current.histogram.leaf_weight(TIGHT_MEAN) == 0.0


# ============================================================================
# Resampler variants
# ============================================================================

def _hyps():
    return [hyp(3.0, 3.0, 0.3)]


VARIANTS = {
    "plain": lambda pf, m: pf.resample(),
    "add_n": lambda pf, m: pf.resample_add_particles(50, m),
    "map_backfill": lambda pf, m: pf.resample_map(m),
    "hypotheses_v1": lambda pf, m: pf.resample_hypotheses(m, _hyps(), 200),
    "hypotheses_v2": lambda pf, m: pf.resample_hypotheses_v2(m, _hyps()),
    "hypotheses_v3": lambda pf, m: pf.resample_hypotheses_v3(m, _hyps()),
}


class TestResamplePostconditions:

    @pytest.mark.parametrize("variant", list(VARIANTS))
    @pytest.mark.parametrize("init", ["tight", "map"])
    def test_postconditions(self, pf, room_map, variant, init):
        if init == "tight":
            pf.init_gaussian(TIGHT_MEAN, TIGHT_COV)
        else:
            pf.init_map(room_map)
        pf.update_sensor(constant_sensor(1.0))

        active = pf.current_set
        new_set = VARIANTS[variant](pf, room_map)

        assert pf.current_set == 1 - active
        assert new_set is pf.current
        assert 1 <= pf.sample_count <= pf.max_samples
        assert_normalized(pf.current, variant)
        assert_uniform(pf.current, variant)
        assert pf.current.cluster_count >= 1

    @pytest.mark.parametrize("variant", list(VARIANTS))
    def test_repeated_cycles(self, pf, room_map, variant):
        pf.init_map(room_map)
        x = None
        for step in range(5):
            pf.update_action(make_odometry_motion_model((0.1, 0.0, 0.05), (0.02, 0.02, 0.01), pf.rng))
            x = pf.current.poses[:, 0].copy()

            def sensor_fn(sample_set):
                sample_set.weights *= np.exp(-0.5 * (x - 1.0) ** 2)
                return float(np.sum(sample_set.weights))

            pf.update_sensor(sensor_fn)
            VARIANTS[variant](pf, room_map)
            assert pf.current_set == (step + 1) % 2
            assert_normalized(pf.current, f"{variant} step {step}")

    def test_zero_weights_raise(self, pf):
        pf.current.weights = 0.0
        with pytest.raises(EmptyDistributionError):
            pf.resample()

    def test_same_seed_is_reproducible(self, room_map):
        def run(seed):
            pf = AdaptiveParticleFilter(100, 1000, overhead_samples=100, seed=seed)
            pf.init_map(room_map)
            pf.resample_add_particles(50, room_map)
            return pf.current.poses.copy()

        np.testing.assert_array_equal(run(5), run(5))
        assert not np.array_equal(run(5), run(6))


class TestPlainResample:

    def test_broad_distribution_fills_cap(self, pf):
        pf.init_gaussian((0.0, 0.0, 0.0), np.diag([1.0, 1.0, 0.1]))
        pf.update_sensor(constant_sensor(1.0))
        pf.resample()
        assert_kld_count(pf, pf.max_samples, "broad")
        assert pf.sample_count == pf.max_samples

    def test_single_leaf_stops_past_min(self, tight_pf):
        tight_pf.resample()
        assert tight_pf.sample_count == tight_pf.min_samples + 1

    def test_draw_cap(self, pf, room_map):
        pf.init_map(room_map)
        pf.resample(300)
        assert pf.sample_count == 300

    def test_draw_cap_clamped_to_capacity(self, pf, room_map):
        pf.init_map(room_map)
        pf.resample(10 * pf.max_samples)
        assert_kld_count(pf, pf.max_samples, "clamped cap")

    def test_draw_cap_must_be_positive(self, pf):
        with pytest.raises(ValueError):
            pf.resample(0)

    def test_never_draws_zero_weight_samples(self, pf, room_map):
        pf.init_map(room_map)
        keep = pf.current.poses[:, 0] > 0.0

        def sensor_fn(sample_set):
            sample_set.weights[~keep] = 0.0
            return float(np.sum(sample_set.weights))

        pf.update_sensor(sensor_fn)
        pf.resample()
        assert np.all(pf.current.poses[:, 0] > 0.0)


class TestDiversifyingResample:

    def test_add_particles(self, tight_pf, room_map):
        pf = tight_pf
        pf.resample_add_particles(50, room_map)
        assert pf.sample_count == pf.min_samples + 1 + 50
        assert pf.last_injected == 50
        injected = pf.current.poses[-50:]
        assert_free(room_map, injected, "injected")
        assert np.all((injected[:, 2] >= -np.pi) & (injected[:, 2] < np.pi))

    def test_add_particles_bounds(self, pf, room_map):
        with pytest.raises(ValueError):
            pf.resample_add_particles(pf.max_samples + 1, room_map)

    def test_map_backfill_when_collapsed(self, tight_pf, room_map):
        pf = tight_pf
        pf.resample_map(room_map)
        # 101 drawn from a single leaf, then 100 free-space poses
        assert pf.sample_count == 201
        assert pf.last_injected == 100
        assert_free(room_map, pf.current.poses[101:], "backfill")
        assert_uniform(pf.current, "backfill")

    def test_map_no_backfill_when_spread(self, pf, room_map):
        pf.init_map(room_map)
        pf.resample_map(room_map)
        assert pf.last_injected == 0
        assert_kld_count(pf, pf.max_samples - pf.overhead_samples, "map spread")

    def test_hypotheses_v1_split_budget(self, tight_pf, room_map):
        pf = tight_pf
        hyps = [hyp(3.0, 3.0, 0.1), hyp(-3.0, -3.0, 0.1)]
        pf.resample_hypotheses(room_map, hyps, 400)
        # min(1000 - 101, 400) // 2 = 200 per hypothesis
        assert pf.last_injected == 400
        assert pf.sample_count == 501
        poses = pf.current.poses[101:]
        near_a = np.hypot(poses[:, 0] - 3.0, poses[:, 1] - 3.0) < 1.0
        near_b = np.hypot(poses[:, 0] + 3.0, poses[:, 1] + 3.0) < 1.0
        assert near_a.sum() == 200 and near_b.sum() == 200

    def test_hypotheses_v1_zero_budget(self, room_map):
        pf = AdaptiveParticleFilter(100, 1000, overhead_samples=0, seed=2)
        pf.init_map(room_map)
        pf.resample_hypotheses(room_map, [hyp(3.0, 3.0, 0.1), hyp(-3.0, -3.0, 0.1)], 400)
        assert pf.sample_count == pf.max_samples
        assert pf.last_injected == 0

    def test_hypotheses_v1_no_hypotheses(self, tight_pf, room_map):
        tight_pf.resample_hypotheses(room_map, [], 400)
        assert tight_pf.sample_count == tight_pf.min_samples + 1
        assert tight_pf.last_injected == 0

    def test_hypotheses_v1_outside_free_space(self, tight_pf, room_map):
        tight_pf.resample_hypotheses(room_map, [hyp(100.0, 100.0, 0.1)], 400)
        assert tight_pf.last_injected == 0
        assert tight_pf.sample_count == tight_pf.min_samples + 1

    def test_hypotheses_v2_inject_then_resample(self, tight_pf, room_map):
        pf = tight_pf
        pf.resample()
        assert pf.sample_count == 101

        pf.resample_hypotheses_v2(room_map, [hyp(3.0, 3.0, 0.5)])
        assert pf.last_injected == pf.max_samples - 101
        assert_kld_count(pf, pf.max_samples - pf.overhead_samples, "v2")
        near = np.hypot(pf.current.poses[:, 0] - 3.0, pf.current.poses[:, 1] - 3.0) < 3.0
        assert near.sum() > 0

    def test_hypotheses_v2_full_set_injects_nothing(self, tight_pf, room_map):
        tight_pf.resample_hypotheses_v2(room_map, [hyp(3.0, 3.0, 0.5)])
        assert tight_pf.last_injected == 0

    def test_hypotheses_v3_expands_population(self, tight_pf, room_map):
        pf = tight_pf
        prior = pf.current.poses.copy()
        prior_set = pf.current_set

        pf.resample_hypotheses_v3(room_map, [hyp(3.0, 3.0, 0.5)])

        # Near capacity the draw cap is max - overhead = 900; a single leaf
        # stops at 101, then (1000 - 900) // 1 poses grow around the hypothesis
        assert pf.last_injected == 100
        assert pf.sample_count == 201
        assert_free(room_map, pf.current.poses[101:], "v3")
        assert_uniform(pf.current, "v3")
        np.testing.assert_array_equal(pf.sets[prior_set].poses, prior)

    def test_hypotheses_v3_keeps_population_size(self, pf, room_map):
        pf.init_map(room_map)
        pf.resample(400)
        pf.update_sensor(constant_sensor(1.0))
        pf.resample_hypotheses_v3(room_map, [hyp(3.0, 3.0, 0.5)])
        # Far from capacity the cap is the previous count, and the
        # hypothesis budget (max - cap) is large
        assert pf.sample_count <= pf.max_samples
        assert pf.last_injected > 0

    def test_hypotheses_v3_no_hypotheses(self, tight_pf, room_map):
        tight_pf.resample_hypotheses_v3(room_map, [])
        assert tight_pf.last_injected == 0
        assert tight_pf.sample_count == 101


# ============================================================================
# Clusters and statistics
# ============================================================================

def two_blob_init(rng, a=(-4.0, 0.0), b=(4.0, 0.0), spread=0.05):
    flip = [False]

    def init_fn():
        flip[0] = not flip[0]
        cx, cy = a if flip[0] else b
        return (cx + spread * rng.standard_normal(), cy + spread * rng.standard_normal(), 0.1)

    return init_fn


class TestClusters:

    def test_two_blobs_two_clusters(self, pf):
        pf.init_model(two_blob_init(default_rng(0)))
        assert pf.current.cluster_count == 2
        stats = [pf.get_cluster_stats(i) for i in range(2)]
        np.testing.assert_allclose(sorted(s.weight for s in stats), [0.5, 0.5])
        xs = sorted(s.mean[0] for s in stats)
        np.testing.assert_allclose(xs, [-4.0, 4.0], atol=0.02)
        assert sum(pf.current.clusters[i].count for i in range(2)) == pf.sample_count

    def test_cluster_stats_out_of_range(self, pf):
        pf.init_model(two_blob_init(default_rng(0)))
        assert pf.get_cluster_stats(-1) is None
        assert pf.get_cluster_stats(2) is None
        assert pf.get_cluster_stats(0) is not None

    def test_cluster_table_overflow(self):
        pf = AdaptiveParticleFilter(10, 200, cluster_max_count=1, seed=0)
        pf.init_model(two_blob_init(default_rng(1)))
        assert pf.current.cluster_count == 1
        assert pf.current.clusters[0].count == 100
        assert math.isclose(pf.current.clusters[0].weight, 0.5)

    def test_heading_mean_across_pi(self, pf):
        rng = default_rng(4)
        # Headings unwrapped in [pi - 0.5, pi + 0.5] stay in contiguous bins
        pf.init_model(lambda: (0.25, 0.25, np.pi + rng.uniform(-0.5, 0.5)))
        assert pf.current.cluster_count == 1
        best = pf.get_best_estimate()
        assert abs(wrap_angle(best.heading - np.pi)) < 0.05
        # Variance of a uniform on width 1: 1/12, circular close to it
        assert 0.07 < best.cov[2, 2] < 0.1
        assert best.cov[0, 2] == 0.0 and best.cov[1, 2] == 0.0

    def test_cluster_set_on_external_set(self):
        sample_set = SampleSet(100)
        poses = np.zeros((60, 3))
        poses[:30, 0] = 5.0
        sample_set.fill(poses)
        sample_set.histogram.clear()
        assert AdaptiveParticleFilter.cluster_set(sample_set) == 2
        assert sample_set.histogram.leaf_count == 2
        weights = sorted(sample_set.get_cluster_stats(i).weight for i in range(2))
        np.testing.assert_allclose(weights, [0.5, 0.5])

    def test_cep_stats(self, pf):
        pf.current.fill(np.array([[1.0, 0.0, 0.3], [-1.0, 0.0, -0.3]]))
        mean, var = pf.get_cep_stats()
        np.testing.assert_allclose(mean, [0.0, 0.0, 0.0], atol=1e-12)
        assert math.isclose(var, 1.0)

    def test_best_estimate_is_heaviest(self, pf):
        pf.init_model(two_blob_init(default_rng(0)))
        right = pf.current.poses[:, 0] > 0.0

        def sensor_fn(sample_set):
            sample_set.weights[right] *= 3.0
            return float(np.sum(sample_set.weights))

        pf.update_sensor(sensor_fn)
        pf.cluster_set(pf.current)
        best = pf.get_best_estimate()
        assert best.mean[0] > 0.0
        assert math.isclose(best.weight, 0.75)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
