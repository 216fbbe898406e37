"""
MPM grid operations - background Eulerian grid for momentum transfer.
"""
import math
from typing import Sequence, Tuple, Union

import numpy as np
import taichi as ti

# Ghost node layers below and above the domain
GHOST_LOW = 1
GHOST_HIGH = 2


def _as_vec3(value: Union[float, Sequence[float]]) -> Tuple[float, float, float]:
    if isinstance(value, (int, float)):
        return (float(value),) * 3
    values = tuple(float(v) for v in value)
    if len(values) != 3:
        raise ValueError(f"Expected 3 components, got {len(values)}")
    return values


@ti.data_oriented
class MPMGrid:
    """Dense background grid padded with ghost nodes around the domain.

    Node ``I`` sits at ``domain_min + (I - GHOST_LOW) * dx``. One ghost layer below
    and two above keep the 3x3x3 footprint of every point inside the domain on the grid.
    """

    def __init__(self,
                 resolution: Union[int, Sequence[int]],
                 domain_min: Union[float, Sequence[float]],
                 domain_max: Union[float, Sequence[float]]):
        """
        Initialize MPM grid.

        Args:
            resolution: Cells along the longest domain axis, or explicit per-axis counts
            domain_min: Minimum corner of simulation domain
            domain_max: Maximum corner of simulation domain
        """
        self.domain_min = _as_vec3(domain_min)
        self.domain_max = _as_vec3(domain_max)
        extent = [hi - lo for lo, hi in zip(self.domain_min, self.domain_max)]
        if min(extent) <= 0.0:
            raise ValueError(f"domain_max must exceed domain_min, got {self.domain_min} / {self.domain_max}")

        if isinstance(resolution, int):
            if resolution < 4:
                raise ValueError(f"Grid resolution must be at least 4, got {resolution}")
            self.dx = max(extent) / resolution
            self.resolution = tuple(max(4, int(math.ceil(e / self.dx - 1e-6))) for e in extent)
        else:
            res = tuple(int(r) for r in resolution)
            if len(res) != 3 or min(res) < 4:
                raise ValueError(f"Grid resolution must be 3 integers >= 4, got {resolution}")
            self.resolution = res
            self.dx = max(e / r for e, r in zip(extent, res))
        self.inv_dx = 1.0 / self.dx
        self.cell_volume = self.dx ** 3

        self.origin_position = tuple(lo - GHOST_LOW * self.dx for lo in self.domain_min)
        self.shape = tuple(r + GHOST_LOW + GHOST_HIGH for r in self.resolution)
        shape = self.shape
        self.momentum = ti.Vector.field(3, dtype=ti.f32, shape=shape)   # scattered momentum (pass 1)
        self.force = ti.Vector.field(3, dtype=ti.f32, shape=shape)      # stress and body impulses (pass 2)
        self.mass = ti.field(dtype=ti.f32, shape=shape)
        self.velocity = ti.Vector.field(3, dtype=ti.f32, shape=shape)   # end-of-tick velocity
        self.velocity_old = ti.Vector.field(3, dtype=ti.f32, shape=shape)  # transferred velocity before forces

        print(f"[MPMGrid] Dense grid {shape[0]}x{shape[1]}x{shape[2]}, dx={self.dx:.4f}m")

    @property
    def safe_min(self) -> np.ndarray:
        """Lowest position a particle may hold; its whole footprint lies on the grid."""
        return np.asarray(self.domain_min, dtype=np.float32)

    @property
    def safe_max(self) -> np.ndarray:
        return (np.asarray(self.domain_min) + np.asarray(self.resolution) * self.dx).astype(np.float32)

    @property
    def center(self) -> np.ndarray:
        return 0.5 * (np.asarray(self.domain_min) + np.asarray(self.domain_max))

    @ti.kernel
    def clear_grid(self):
        """Zero every accumulator before a scatter."""
        for I in ti.grouped(self.mass):
            self.momentum[I] = ti.Vector.zero(ti.f32, 3)
            self.force[I] = ti.Vector.zero(ti.f32, 3)
            self.velocity[I] = ti.Vector.zero(ti.f32, 3)
            self.velocity_old[I] = ti.Vector.zero(ti.f32, 3)
            self.mass[I] = 0.0

    @ti.func
    def is_valid_grid_pos(self, grid_pos) -> ti.i32:
        """
        Check if grid position is within valid range.

        Args:
            grid_pos: Grid position (integer indices)

        Returns:
            1 if valid, 0 otherwise
        """
        valid = 1
        for d in ti.static(range(3)):
            if grid_pos[d] < 0 or grid_pos[d] >= self.shape[d]:
                valid = 0
        return valid

    @ti.func
    def origin(self):
        return ti.Vector([self.origin_position[0], self.origin_position[1], self.origin_position[2]])

    @ti.func
    def node_position(self, I):
        return ti.Vector([self.origin_position[d] + I[d] * self.dx for d in ti.static(range(3))])

    def total_mass(self) -> float:
        return float(np.sum(self.mass.to_numpy(), dtype=np.float64))

    def scattered_momentum(self) -> np.ndarray:
        """Momentum plus impulses deposited by both P2G passes."""
        total = self.momentum.to_numpy().astype(np.float64) + self.force.to_numpy().astype(np.float64)
        return total.reshape(-1, 3).sum(axis=0)

    def solved_momentum(self) -> np.ndarray:
        """Sum of mass * velocity after the grid solve."""
        m = self.mass.to_numpy().astype(np.float64)[..., None]
        return (m * self.velocity.to_numpy().astype(np.float64)).reshape(-1, 3).sum(axis=0)
