"""
MPM state management - stores particle positions, velocities, material state, etc.
"""
from typing import Dict, Optional

import numpy as np
import taichi as ti

# Lifetime of particles that never expire (bulk loaded blocks)
IMMORTAL = np.float32(np.inf)


@ti.data_oriented
class MPMState:
    """Manages MPM particle state (positions, velocities, deformation gradients, etc.)"""

    def __init__(self, max_particles: int):
        """
        Initialize MPM state.

        Args:
            max_particles: Maximum number of MPM particles
        """
        if max_particles <= 0:
            raise ValueError(f"max_particles must be positive, got {max_particles}")
        self.max_particles = max_particles

        # Particle data
        self.x = ti.Vector.field(3, dtype=ti.f32, shape=max_particles)      # positions
        self.v = ti.Vector.field(3, dtype=ti.f32, shape=max_particles)      # velocities
        self.C = ti.Matrix.field(3, 3, dtype=ti.f32, shape=max_particles)   # APIC affine matrix
        self.F = ti.Matrix.field(3, 3, dtype=ti.f32, shape=max_particles)   # deformation gradient
        self.Jp = ti.field(dtype=ti.f32, shape=max_particles)               # snow plastic volume ratio
        self.plastic = ti.field(dtype=ti.f32, shape=max_particles)          # sand accumulated plastic strain

        # Particle properties
        self.mass = ti.field(dtype=ti.f32, shape=max_particles)
        self.density = ti.field(dtype=ti.f32, shape=max_particles)
        self.smoothed_density = ti.field(dtype=ti.f32, shape=max_particles)  # display only
        self.material = ti.field(dtype=ti.i32, shape=max_particles)

        # Lifecycle
        self.alive = ti.field(dtype=ti.i32, shape=max_particles)
        self.age = ti.field(dtype=ti.f32, shape=max_particles)
        self.lifetime = ti.field(dtype=ti.f32, shape=max_particles)

        # Active particle count
        self.n_particles = ti.field(dtype=ti.i32, shape=())
        # Non-finite resets performed by the last G2P
        self.nonfinite_count = ti.field(dtype=ti.i32, shape=())

    @property
    def count(self) -> int:
        return int(self.n_particles[None])

    def get_positions(self) -> np.ndarray:
        """Get particle positions as numpy array."""
        n = self.n_particles[None]
        return self.x.to_numpy()[:n]

    def get_velocities(self) -> np.ndarray:
        """Get particle velocities as numpy array."""
        n = self.n_particles[None]
        return self.v.to_numpy()[:n]

    def get_affine(self) -> np.ndarray:
        n = self.n_particles[None]
        return self.C.to_numpy()[:n]

    def get_masses(self) -> np.ndarray:
        n = self.n_particles[None]
        return self.mass.to_numpy()[:n]

    def get_densities(self) -> np.ndarray:
        n = self.n_particles[None]
        return self.density.to_numpy()[:n]

    def get_smoothed_densities(self) -> np.ndarray:
        n = self.n_particles[None]
        return self.smoothed_density.to_numpy()[:n]

    def get_materials(self) -> np.ndarray:
        n = self.n_particles[None]
        return self.material.to_numpy()[:n]

    def total_mass(self) -> float:
        return float(np.sum(self.get_masses(), dtype=np.float64))

    def add_particles(
        self,
        positions: np.ndarray,
        velocities: Optional[np.ndarray] = None,
        masses: Optional[np.ndarray] = None,
        materials: Optional[np.ndarray] = None,
        lifetimes: Optional[np.ndarray] = None,
        affine: Optional[np.ndarray] = None,
        strict: bool = False,
    ) -> int:
        """
        Append particles after the currently active ones.

        Args:
            positions: (N, 3) positions
            velocities: (N, 3) velocities, zero if omitted
            masses: (N,) masses, required unless every particle reuses 1.0
            materials: (N,) material ids
            lifetimes: (N,) lifetimes in seconds, infinite if omitted
            affine: (N, 3, 3) initial APIC matrices, zero if omitted
            strict: Raise instead of truncating when capacity is exceeded

        Returns:
            Number of particles actually added. Excess particles are rejected.
        """
        positions = np.asarray(positions, dtype=np.float32).reshape(-1, 3)
        requested = len(positions)
        start = self.count
        room = self.max_particles - start
        if requested > room and strict:
            raise ValueError(f"Too many particles: {start + requested} > {self.max_particles}")
        k = min(requested, room)
        if k <= 0:
            return 0

        def column(values, default, shape, dtype):
            if values is None:
                return np.broadcast_to(np.asarray(default, dtype=dtype), (k,) + shape)
            return np.asarray(values, dtype=dtype).reshape((-1,) + shape)[:k]

        end = start + k
        self._write_range(self.x, start, positions[:k])
        self._write_range(self.v, start, column(velocities, np.zeros(3), (3,), np.float32))
        self._write_range(self.C, start, column(affine, np.zeros((3, 3)), (3, 3), np.float32))
        self._write_range(self.mass, start, column(masses, 1.0, (), np.float32))
        self._write_range(self.material, start, column(materials, 0, (), np.int32))
        self._write_range(self.lifetime, start, column(lifetimes, IMMORTAL, (), np.float32))
        self.initialize_particles(start, end)
        self.n_particles[None] = end
        return k

    @staticmethod
    def _write_range(field, start: int, values: np.ndarray) -> None:
        data = field.to_numpy()
        data[start:start + len(values)] = values
        field.from_numpy(data)

    @ti.kernel
    def initialize_particles(self, start: ti.i32, end: ti.i32):
        """
        Reset material and lifecycle state of freshly added particles.

        Args:
            start: First slot to initialize
            end: One past the last slot
        """
        for i in range(start, end):
            self.F[i] = ti.Matrix.identity(ti.f32, 3)  # Initial deformation = identity
            self.Jp[i] = 1.0
            self.plastic[i] = 0.0
            self.density[i] = 0.0
            self.smoothed_density[i] = 0.0
            self.alive[i] = 1
            self.age[i] = 0.0

    @ti.kernel
    def advance_age(self, dt: ti.f32):
        for i in range(self.n_particles[None]):
            self.age[i] += dt

    def lifecycle_arrays(self) -> Dict[str, np.ndarray]:
        n = self.count
        return {
            "age": self.age.to_numpy()[:n],
            "lifetime": self.lifetime.to_numpy()[:n],
            "alive": self.alive.to_numpy()[:n],
            "position": self.x.to_numpy()[:n],
        }

    def compact(self, keep: np.ndarray) -> int:
        """
        Drop every active particle whose ``keep`` entry is False, preserving order.

        Returns:
            Number of particles removed.
        """
        n = self.count
        keep = np.asarray(keep, dtype=bool)[:n]
        removed = int(n - np.count_nonzero(keep))
        if removed == 0:
            return 0
        for field in (self.x, self.v, self.C, self.F, self.Jp, self.plastic, self.mass,
                      self.density, self.smoothed_density, self.material,
                      self.alive, self.age, self.lifetime):
            data = field.to_numpy()
            kept = data[:n][keep]
            data[:len(kept)] = kept
            field.from_numpy(data)
        self.n_particles[None] = n - removed
        return removed

    def clear(self):
        """Clear all particles."""
        self.n_particles[None] = 0
