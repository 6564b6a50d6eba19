"""
Occupancy grid map and free-space rejection sampling.

The grid is centered on the world origin:
    ix = floor(x / scale + size_x / 2),  iy = floor(y / scale + size_y / 2)

Cell occupancy state: -1 free, 0 unknown, +1 occupied.
"""

import numpy as np
from dataclasses import dataclass
from typing import Sequence, Tuple
from numpy.random import Generator


FREE = -1
UNKNOWN = 0
OCCUPIED = 1


class MapExhaustedError(RuntimeError):
    """Raised when rejection sampling cannot find an acceptable map cell."""


@dataclass
class OccupancyMap:
    """
    Read-only occupancy grid.

    Attributes:
        occ_state: [size_y, size_x] int array of cell states, indexed [iy, ix]
        scale: Cell edge length in meters
    """
    occ_state: np.ndarray
    scale: float

    def __post_init__(self):
        self.occ_state = np.asarray(self.occ_state, dtype=np.int8)
        if self.occ_state.ndim != 2:
            raise ValueError(f"occ_state must be 2-D, got shape {self.occ_state.shape}")
        if not np.all(np.isin(self.occ_state, (FREE, UNKNOWN, OCCUPIED))):
            raise ValueError("occ_state entries must be -1 (free), 0 (unknown) or +1 (occupied)")
        if self.scale <= 0:
            raise ValueError(f"scale must be positive, got {self.scale}")
        self.scale = float(self.scale)

    @property
    def size_x(self) -> int:
        """Grid width in cells."""
        return self.occ_state.shape[1]

    @property
    def size_y(self) -> int:
        """Grid height in cells."""
        return self.occ_state.shape[0]

    @property
    def extent(self) -> Tuple[float, float]:
        """World-frame width and height in meters."""
        return self.size_x * self.scale, self.size_y * self.scale

    @property
    def free_cell_count(self) -> int:
        return int(np.count_nonzero(self.occ_state == FREE))

    def world_to_map(self, x, y) -> Tuple[np.ndarray, np.ndarray]:
        """Convert world coordinates to (ix, iy) cell indices."""
        ix = np.floor(np.asarray(x) / self.scale + self.size_x / 2).astype(int)
        iy = np.floor(np.asarray(y) / self.scale + self.size_y / 2).astype(int)
        return ix, iy

    def map_to_world(self, ix, iy) -> Tuple[np.ndarray, np.ndarray]:
        """World coordinates of cell centers."""
        x = (np.asarray(ix) - self.size_x / 2 + 0.5) * self.scale
        y = (np.asarray(iy) - self.size_y / 2 + 0.5) * self.scale
        return x, y

    def valid(self, ix, iy):
        """True where (ix, iy) lies inside the grid."""
        ix = np.asarray(ix)
        iy = np.asarray(iy)
        return (ix >= 0) & (ix < self.size_x) & (iy >= 0) & (iy < self.size_y)

    def cell_state(self, ix, iy):
        """
        Occupancy state of cells; out-of-grid cells report UNKNOWN.
        """
        scalar = np.ndim(ix) == 0
        ix = np.atleast_1d(ix)
        iy = np.atleast_1d(iy)
        ok = self.valid(ix, iy)
        state = np.full(ok.shape, UNKNOWN, dtype=np.int8)
        state[ok] = self.occ_state[iy[ok], ix[ok]]
        return int(state[0]) if scalar else state

    def is_valid_world(self, x, y):
        ix, iy = self.world_to_map(x, y)
        return self.valid(ix, iy)

    def is_free_world(self, x, y):
        """True where the world point falls in a valid, free cell."""
        ix, iy = self.world_to_map(np.atleast_1d(x), np.atleast_1d(y))
        ok = self.valid(ix, iy)
        free = np.zeros(ok.shape, dtype=bool)
        free[ok] = self.occ_state[iy[ok], ix[ok]] == FREE
        return free if np.ndim(x) else bool(free[0])

    @classmethod
    def from_ascii(cls, rows: Sequence[str], scale: float) -> "OccupancyMap":
        """
        Build a map from text rows, top row first (highest y).

        '.' free, '#' occupied, anything else unknown.
        """
        if not rows or len({len(r) for r in rows}) != 1:
            raise ValueError("Map rows must be non-empty and of equal length")
        lookup = {'.': FREE, '#': OCCUPIED}
        grid = np.array([[lookup.get(ch, UNKNOWN) for ch in row] for row in rows], dtype=np.int8)
        return cls(occ_state=grid[::-1].copy(), scale=scale)

    def __repr__(self) -> str:
        return (f"OccupancyMap(size=({self.size_x}, {self.size_y}), scale={self.scale}, "
                f"free={self.free_cell_count})")


def sample_free_poses(
    occ_map: OccupancyMap,
    n: int,
    rng: Generator,
    low: Tuple[float, float],
    high: Tuple[float, float],
    random_heading: bool = True,
    require_free: bool = True,
    max_attempts: int = 100_000,
) -> np.ndarray:
    """
    Rejection-sample poses uniformly from a rectangle of the map.

    Candidates (x, y) are uniform in [low, high); a candidate is kept when
    its cell is valid and, if require_free, free. Heading is uniform in
    [-pi, pi) or zero.

    Args:
        occ_map: Map to test candidates against
        n: Number of poses to return
        rng: NumPy random generator
        low: (x_min, y_min)
        high: (x_max, y_max)
        random_heading: Draw theta uniformly instead of setting it to 0
        require_free: Also require occ_state == FREE
        max_attempts: Consecutive rejections tolerated before giving up

    Returns:
        poses: [n, 3]

    Raises:
        MapExhaustedError: After max_attempts candidates in a row are rejected
    """
    low = np.asarray(low, dtype=np.float64)
    high = np.asarray(high, dtype=np.float64)

    poses = np.zeros((n, 3))
    filled = 0
    misses = 0

    while filled < n:
        remaining = n - filled
        batch = min(max(2 * remaining, 64), max_attempts)
        xy = low + rng.random((batch, 2)) * (high - low)
        theta = (rng.random(batch) - 0.5) * 2.0 * np.pi

        ix, iy = occ_map.world_to_map(xy[:, 0], xy[:, 1])
        ok = occ_map.valid(ix, iy)
        if require_free:
            ok[ok] = occ_map.occ_state[iy[ok], ix[ok]] == FREE

        accepted = np.flatnonzero(ok)
        if accepted.size == 0:
            misses += batch
            if misses >= max_attempts:
                raise MapExhaustedError(
                    f"No acceptable cell found after {misses} candidates in "
                    f"[{low[0]:.2f}, {high[0]:.2f}) x [{low[1]:.2f}, {high[1]:.2f})"
                )
            continue
        misses = 0

        take = accepted[:remaining]
        poses[filled:filled + take.size, :2] = xy[take]
        if random_heading:
            poses[filled:filled + take.size, 2] = theta[take]
        filled += take.size

    return poses


def sample_map_poses(
    occ_map: OccupancyMap,
    n: int,
    rng: Generator,
    random_heading: bool = True,
    max_attempts: int = 100_000,
) -> np.ndarray:
    """Uniform poses over the free space of the whole map."""
    width, height = occ_map.extent
    return sample_free_poses(
        occ_map, n, rng,
        low=(-width / 2, -height / 2),
        high=(width / 2, height / 2),
        random_heading=random_heading,
        require_free=True,
        max_attempts=max_attempts,
    )
