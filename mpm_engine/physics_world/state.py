"""Read-only snapshots of the particle state handed to presentation consumers."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


def _frozen(array: np.ndarray) -> np.ndarray:
    copy = np.array(array, copy=True)
    copy.setflags(write=False)
    return copy


@dataclass(frozen=True)
class ParticleSnapshot:
    positions: np.ndarray  # meters (m), shape (N, 3)
    velocities: np.ndarray  # meters per second (m/s), shape (N, 3)
    densities: np.ndarray  # kilograms per cubic meter (kg/m^3), shape (N,)
    smoothed_densities: np.ndarray  # display density, relaxed towards ``densities`` each tick
    materials: np.ndarray  # material ids, shape (N,)

    @classmethod
    def capture(cls, positions, velocities, densities, smoothed_densities, materials) -> "ParticleSnapshot":
        """Copy the given arrays and mark the copies read-only."""
        return cls(
            positions=_frozen(positions),
            velocities=_frozen(velocities),
            densities=_frozen(densities),
            smoothed_densities=_frozen(smoothed_densities),
            materials=_frozen(materials),
        )

    def particle_count(self) -> int:
        return len(self.positions)


@dataclass(frozen=True)
class WorldSnapshot:
    step_index: int
    time: float  # seconds (s)
    particles: ParticleSnapshot
