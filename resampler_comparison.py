"""
Resampler Comparison: plain KLD vs diversifying variants

Experiments:
1. Tracking from a known start (Gaussian init) - all variants should track
2. Global localization (uniform map init) - diversifying variants should
   recover at least as often as plain KLD
3. Kidnapped robot (init far from the truth) - variants that inject
   free-space or hypothesis samples should recover, plain KLD usually not

Based on:
- Fox (2003): Adapting the sample size in particle filters through KLD-sampling
- Thrun, Burgard & Fox (2005): Probabilistic Robotics, ch. 8
"""

import argparse
import time
import numpy as np
from numpy.random import default_rng
from typing import Callable, Dict, List, Optional
from dataclasses import dataclass, field

from adaptive_mcl.filters import AdaptiveParticleFilter
from adaptive_mcl.models import (
    OccupancyMap,
    Hypothesis,
    make_odometry_motion_model,
    make_range_bearing_sensor_model,
)
from adaptive_mcl.simulation import Trajectory, simulate
from adaptive_mcl.utils import compute_pose_error


# =============================================================================
# World Factory
# =============================================================================

def make_world(scale: float = 0.25):
    """
    Rectangular room with an inner wall and four landmarks.

    Returns:
        occ_map, landmarks [4, 2]
    """
    width, height = 80, 48
    grid = np.full((height, width), -1, dtype=np.int8)
    grid[0, :] = 1
    grid[-1, :] = 1
    grid[:, 0] = 1
    grid[:, -1] = 1
    grid[12:36, 40] = 1  # inner wall

    occ_map = OccupancyMap(occ_state=grid, scale=scale)
    landmarks = np.array([
        [-8.0, -4.0],
        [8.0, -4.0],
        [8.0, 4.0],
        [-8.0, 4.0],
    ])
    return occ_map, landmarks


def make_controls(T: int) -> np.ndarray:
    """Drive forward with a gentle left turn."""
    controls = np.zeros((T, 3))
    controls[:, 0] = 0.2
    controls[:, 2] = 0.05
    return controls


# =============================================================================
# Result Data Structures
# =============================================================================

@dataclass
class RunResult:
    """Result from a single filter run on one trajectory."""
    position_error: np.ndarray
    sample_counts: np.ndarray
    runtime: float

    @property
    def final_error(self) -> float:
        return float(np.mean(self.position_error[-5:]))


@dataclass
class ExperimentResult:
    """Aggregated results across trajectories."""
    variant: str
    final_error_mean: float
    final_error_std: float
    success_rate: float
    mean_samples: float
    runtime_mean: float
    per_trajectory: List[RunResult] = field(default_factory=list)


# =============================================================================
# Core Experiment Runner
# =============================================================================

ResampleStep = Callable[[AdaptiveParticleFilter, OccupancyMap, Trajectory, int], None]


def hypothesis_at_truth(traj: Trajectory, t: int) -> List[Hypothesis]:
    """A single hypothesis at the true position (an oracle place recognizer)."""
    return [Hypothesis(mean=traj.poses[t + 1, :2], cov=[[0.5, 0.0], [0.0, 0.5]])]


VARIANTS: Dict[str, ResampleStep] = {
    "plain": lambda pf, m, traj, t: pf.resample(),
    "add_n": lambda pf, m, traj, t: pf.resample_add_particles(50, m),
    "map_backfill": lambda pf, m, traj, t: pf.resample_map(m),
    "hypotheses_v1": lambda pf, m, traj, t: pf.resample_hypotheses(m, hypothesis_at_truth(traj, t), 200),
    "hypotheses_v2": lambda pf, m, traj, t: pf.resample_hypotheses_v2(m, hypothesis_at_truth(traj, t)),
    "hypotheses_v3": lambda pf, m, traj, t: pf.resample_hypotheses_v3(m, hypothesis_at_truth(traj, t)),
}


def run_filter(
    pf: AdaptiveParticleFilter,
    occ_map: OccupancyMap,
    traj: Trajectory,
    resample_step: ResampleStep,
    motion_noise=(0.05, 0.05, 0.03),
    sigma_r: float = 0.3,
    sigma_b: float = 0.1,
) -> RunResult:
    """Run one filter over a trajectory and record its error."""
    T = traj.T
    estimates = np.zeros((T, 3))
    counts = np.zeros(T, dtype=int)

    t0 = time.perf_counter()
    for t in range(T):
        pf.update_action(make_odometry_motion_model(traj.odometry[t], motion_noise, pf.rng))
        pf.update_sensor(make_range_bearing_sensor_model(
            traj.landmarks, traj.observations[t], sigma_r, sigma_b,
        ))
        resample_step(pf, occ_map, traj, t)

        best = pf.get_best_estimate()
        estimates[t] = best.mean if best is not None else pf.get_cep_stats()[0]
        counts[t] = pf.sample_count
    runtime = time.perf_counter() - t0

    position_error, _ = compute_pose_error(traj.poses[1:], estimates)
    return RunResult(position_error=position_error, sample_counts=counts, runtime=runtime)


def run_experiment(
    name: str,
    init: Callable[[AdaptiveParticleFilter, OccupancyMap, Trajectory], None],
    n_trajectories: int = 5,
    T: int = 40,
    min_samples: int = 100,
    max_samples: int = 2000,
    overhead_samples: int = 200,
    success_tol: float = 1.0,
    seed: int = 0,
    variants: Optional[List[str]] = None,
) -> List[ExperimentResult]:
    """Run every resampler variant on the same set of trajectories."""
    print("\n" + "=" * 70)
    print(f"Experiment: {name}")
    print("=" * 70)

    occ_map, landmarks = make_world()
    rng = default_rng(seed)
    controls = make_controls(T)
    trajectories = [
        simulate(occ_map, landmarks, controls, start_pose=(-6.0, -3.0, 0.0), rng=rng)
        for _ in range(n_trajectories)
    ]

    results = []
    for variant in (variants or list(VARIANTS)):
        runs = []
        for i, traj in enumerate(trajectories):
            pf = AdaptiveParticleFilter(
                min_samples, max_samples, overhead_samples, seed=seed + 1000 * i,
            )
            init(pf, occ_map, traj)
            runs.append(run_filter(pf, occ_map, traj, VARIANTS[variant]))

        final = np.array([r.final_error for r in runs])
        res = ExperimentResult(
            variant=variant,
            final_error_mean=float(np.mean(final)),
            final_error_std=float(np.std(final)),
            success_rate=float(np.mean(final < success_tol)),
            mean_samples=float(np.mean([r.sample_counts.mean() for r in runs])),
            runtime_mean=float(np.mean([r.runtime for r in runs])),
            per_trajectory=runs,
        )
        results.append(res)
        print(f"  {variant:<15s} final err: {res.final_error_mean:6.3f} ± {res.final_error_std:5.3f} m  "
              f"success: {res.success_rate:4.0%}  samples: {res.mean_samples:7.1f}  "
              f"time: {res.runtime_mean:6.2f}s")

    return results


def init_tracking(pf, occ_map, traj):
    pf.init_gaussian(traj.poses[0], np.diag([0.1, 0.1, 0.05]))


def init_global(pf, occ_map, traj):
    pf.init_map(occ_map)


def init_kidnapped(pf, occ_map, traj):
    pf.init_gaussian((6.0, 3.0, np.pi), np.diag([0.1, 0.1, 0.05]))


# =============================================================================
# Plotting
# =============================================================================

def plot_results(all_results: Dict[str, List[ExperimentResult]], path: Optional[str] = None):
    """Bar chart of final error per variant and experiment."""
    import matplotlib.pyplot as plt

    fig, axes = plt.subplots(1, len(all_results), figsize=(5 * len(all_results), 4), squeeze=False)
    for ax, (name, results) in zip(axes[0], all_results.items()):
        labels = [r.variant for r in results]
        means = [r.final_error_mean for r in results]
        stds = [r.final_error_std for r in results]
        ax.bar(range(len(results)), means, yerr=stds, capsize=3)
        ax.set_xticks(range(len(results)))
        ax.set_xticklabels(labels, rotation=45, ha='right')
        ax.set_ylabel('Final position error [m]')
        ax.set_title(name)
    fig.tight_layout()

    if path:
        fig.savefig(path, dpi=150)
        print(f"Saved figure to {path}")
    else:
        plt.show()


# =============================================================================
# Main
# =============================================================================

def main():
    parser = argparse.ArgumentParser(description="Compare AMCL resampler variants")
    parser.add_argument("--trajectories", type=int, default=5)
    parser.add_argument("--steps", type=int, default=40)
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--plot", action="store_true", help="Plot results with matplotlib")
    parser.add_argument("--save", type=str, default=None, help="Save figure to this path")
    args = parser.parse_args()

    experiments = {
        "Tracking": init_tracking,
        "Global localization": init_global,
        "Kidnapped robot": init_kidnapped,
    }

    all_results = {}
    for name, init in experiments.items():
        all_results[name] = run_experiment(
            name, init,
            n_trajectories=args.trajectories,
            T=args.steps,
            seed=args.seed,
        )

    if args.plot or args.save:
        plot_results(all_results, args.save)


if __name__ == "__main__":
    main()
