"""
Basic end-to-end test script for adaptive_mcl.

Simulates a robot in a room with landmarks and localizes it.

Run: python test_basic.py
"""

import os
import tempfile

import numpy as np

from adaptive_mcl.models import (
    OccupancyMap,
    Hypothesis,
    make_odometry_motion_model,
    make_range_bearing_sensor_model,
)
from adaptive_mcl.simulation import Trajectory, simulate
from adaptive_mcl.filters import AdaptiveParticleFilter
from adaptive_mcl.utils import compute_pose_error


def make_room():
    """20 m x 12 m room at 0.25 m, walled, four landmarks."""
    grid = np.full((48, 80), -1, dtype=np.int8)
    grid[0, :] = 1
    grid[-1, :] = 1
    grid[:, 0] = 1
    grid[:, -1] = 1
    occ_map = OccupancyMap(occ_state=grid, scale=0.25)
    landmarks = np.array([[-8.0, -4.0], [8.0, -4.0], [8.0, 4.0], [-8.0, 4.0]])
    return occ_map, landmarks


def make_trajectory(T=30, seed=0):
    occ_map, landmarks = make_room()
    controls = np.tile([0.2, 0.0, 0.05], (T, 1))
    traj = simulate(occ_map, landmarks, controls, start_pose=(-4.0, -2.0, 0.0), seed=seed)
    return occ_map, traj


def run(pf, traj, resample_step):
    """Run the filter over a trajectory; returns estimates and sample counts."""
    estimates = np.zeros((traj.T, 3))
    counts = np.zeros(traj.T, dtype=int)
    for t in range(traj.T):
        pf.update_action(make_odometry_motion_model(traj.odometry[t], (0.05, 0.05, 0.03), pf.rng))
        pf.update_sensor(make_range_bearing_sensor_model(traj.landmarks, traj.observations[t], 0.3, 0.1))
        resample_step(pf)
        estimates[t] = pf.get_best_estimate().mean
        counts[t] = pf.sample_count
    return estimates, counts


def test_simulation():
    """Test trajectory simulation and storage."""
    print("=" * 60)
    print("Testing Trajectory Simulation")
    print("=" * 60)

    occ_map, traj = make_trajectory(T=30, seed=1)

    assert traj.poses.shape == (31, 3), f"Expected (31, 3), got {traj.poses.shape}"
    assert traj.odometry.shape == (30, 3)
    assert traj.observations.shape == (30, 4, 2)
    assert np.all(occ_map.is_free_world(traj.poses[:, 0], traj.poses[:, 1]))
    print(f"Start: {traj.poses[0]}, end: {traj.poses[-1]}")

    sub = traj.subset(5, 15)
    assert sub.T == 10
    np.testing.assert_array_equal(sub.poses[0], traj.poses[5])

    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "traj.npz")
        traj.save(path)
        loaded = Trajectory.load(path)
    np.testing.assert_array_equal(loaded.observations, traj.observations)

    # A start inside a wall is rejected
    try:
        simulate(occ_map, traj.landmarks, np.zeros((3, 3)), start_pose=(-9.9, 0.0, 0.0))
    except ValueError:
        pass
    else:
        raise AssertionError("simulate accepted a start pose inside a wall")

    print("\n✓ Simulation working correctly!")
    return True


def test_tracking():
    """Track from a known start with plain KLD resampling."""
    print("\n" + "=" * 60)
    print("Testing Pose Tracking")
    print("=" * 60)

    _, traj = make_trajectory(T=30, seed=2)

    pf = AdaptiveParticleFilter(min_samples=100, max_samples=2000, seed=3)
    pf.init_gaussian(traj.poses[0], np.diag([0.05, 0.05, 0.02]))

    estimates, counts = run(pf, traj, lambda f: f.resample())
    pos_err, head_err = compute_pose_error(traj.poses[1:], estimates)
    print(f"Mean position error: {pos_err.mean():.3f} m, "
          f"mean heading error: {head_err.mean():.3f} rad, "
          f"samples: {counts.min()}-{counts.max()}")

    assert pos_err[-10:].mean() < 0.5, f"Tracking lost: {pos_err[-10:].mean():.3f} m"
    assert counts.max() <= pf.max_samples and counts.min() >= pf.min_samples

    print("\n✓ Tracking working correctly!")
    return True


def test_global_localization():
    """Localize from a uniform map initialization."""
    print("\n" + "=" * 60)
    print("Testing Global Localization")
    print("=" * 60)

    occ_map, traj = make_trajectory(T=30, seed=4)

    pf = AdaptiveParticleFilter(min_samples=100, max_samples=3000, overhead_samples=300, seed=5)
    pf.init_map(occ_map)

    estimates, counts = run(pf, traj, lambda f: f.resample_map(occ_map))
    pos_err, _ = compute_pose_error(traj.poses[1:], estimates)
    print(f"Final position error: {pos_err[-5:].mean():.3f} m, "
          f"samples: first {counts[0]}, last {counts[-1]}")

    assert pos_err[-5:].mean() < 1.0, f"Did not converge: {pos_err[-5:].mean():.3f} m"
    assert counts.max() <= pf.max_samples - pf.overhead_samples + 100

    print("\n✓ Global localization working correctly!")
    return True


def test_resampler_variants():
    """Run every resampler variant through a short tracking run."""
    print("\n" + "=" * 60)
    print("Testing Resampler Variants")
    print("=" * 60)

    occ_map, traj = make_trajectory(T=20, seed=6)

    def truth_hypothesis(pf):
        # Oracle hypothesis at the end of the run
        return [Hypothesis(mean=traj.poses[-1, :2], cov=[[0.5, 0.0], [0.0, 0.5]])]

    variants = {
        "plain": lambda pf: pf.resample(),
        "add_n": lambda pf: pf.resample_add_particles(20, occ_map),
        "map": lambda pf: pf.resample_map(occ_map),
        "hyp_v1": lambda pf: pf.resample_hypotheses(occ_map, truth_hypothesis(pf), 50),
        "hyp_v2": lambda pf: pf.resample_hypotheses_v2(occ_map, truth_hypothesis(pf)),
        "hyp_v3": lambda pf: pf.resample_hypotheses_v3(occ_map, truth_hypothesis(pf)),
    }

    for name, step in variants.items():
        pf = AdaptiveParticleFilter(100, 2000, overhead_samples=200, seed=7)
        pf.init_gaussian(traj.poses[0], np.diag([0.05, 0.05, 0.02]))
        estimates, counts = run(pf, traj, step)
        pos_err, _ = compute_pose_error(traj.poses[1:], estimates)
        print(f"{name:8s} - mean error: {pos_err.mean():.3f} m, "
              f"mean samples: {counts.mean():.1f}, "
              f"clusters: {pf.current.cluster_count}")
        assert np.isclose(np.sum(pf.current.weights), 1.0)

    print("\n✓ All resampler variants working!")
    return True


def main():
    """Run all tests."""
    print("\n" + "#" * 60)
    print("# Adaptive MCL Tests")
    print("#" * 60)

    tests = [
        test_simulation,
        test_tracking,
        test_global_localization,
        test_resampler_variants,
    ]

    passed = 0
    failed = 0

    for test in tests:
        try:
            if test():
                passed += 1
        except Exception as e:
            print(f"\n✗ {test.__name__} FAILED: {e}")
            import traceback
            traceback.print_exc()
            failed += 1

    print("\n" + "#" * 60)
    print(f"# Results: {passed} passed, {failed} failed")
    print("#" * 60)

    return failed == 0


if __name__ == "__main__":
    success = main()
    exit(0 if success else 1)
