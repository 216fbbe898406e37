"""Physics world core that wires the MPM solver to its collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from .emitters import EmitterManager
from .solvers.mpm.mpm_boundary import MPMBoundary
from .solvers.mpm.mpm_force_fields import ForceFieldSet
from .solvers.mpm.mpm_materials import MaterialTable, material_id
from .solvers.mpm.mpm_solver import MPMSolver
from .state import ParticleSnapshot, WorldSnapshot

if TYPE_CHECKING:
    from ..configuration import BoundaryConfig, ParticleBlockConfig, SceneConfig

_AXES = {"x": 0, "y": 1, "z": 2}


def _axis_index(axis) -> int:
    if isinstance(axis, str):
        return _AXES.get(axis.lower(), 1)
    return int(axis)


def build_boundary(config: BoundaryConfig, domain_min, domain_max) -> MPMBoundary:
    """Boundary collaborator; box and center default to the grid domain."""
    lo = np.asarray(domain_min, dtype=np.float64)
    hi = np.asarray(domain_max, dtype=np.float64)
    return MPMBoundary(
        shape=config.shape,
        mode=config.mode,
        restitution=config.restitution,
        friction=config.friction,
        box_min=config.box_min if config.box_min is not None else tuple(lo),
        box_max=config.box_max if config.box_max is not None else tuple(hi),
        center=config.center if config.center is not None else tuple(0.5 * (lo + hi)),
        radius=config.radius,
        half_height=config.half_height,
        axis=_axis_index(config.axis),
    )


def sample_block(block: ParticleBlockConfig, dx: float, table: MaterialTable):
    """Regular lattice of particles filling an axis-aligned block.

    Args:
        block: Block description
        dx: Grid cell size (m)
        table: Material constants used for the per-particle mass

    Returns:
        positions, velocities, masses, materials as numpy arrays
    """
    spacing = dx / block.particles_per_cell
    lo = np.asarray(block.min_corner, dtype=np.float64)
    hi = np.asarray(block.max_corner, dtype=np.float64)
    axes = [np.arange(lo[d] + 0.5 * spacing, hi[d], spacing) for d in range(3)]
    grid = np.stack(np.meshgrid(*axes, indexing="ij"), axis=-1).reshape(-1, 3)

    mat = material_id(block.material)
    mass = table[mat].rest_density * spacing ** 3
    center = 0.5 * (lo + hi)
    omega = np.asarray(block.angular_velocity, dtype=np.float64)
    velocities = np.asarray(block.velocity, dtype=np.float64) + np.cross(omega, grid - center)
    count = len(grid)
    return (
        grid.astype(np.float32),
        velocities.astype(np.float32),
        np.full(count, mass, dtype=np.float32),
        np.full(count, mat, dtype=np.int32),
    )


@dataclass
class PhysicsWorld:
    config: SceneConfig
    solver: MPMSolver
    emitters: EmitterManager
    current_time: float = 0.0
    current_step: int = 0
    rejected_particles: int = field(default=0)

    @classmethod
    def from_config(cls, config: SceneConfig) -> "PhysicsWorld":
        sim, grid_cfg = config.simulation, config.grid
        params = config.step_params()
        boundary = build_boundary(config.boundary, grid_cfg.domain_min, grid_cfg.domain_max)
        force_field = ForceFieldSet(config.force_fields)

        solver = MPMSolver(
            max_particles=sim.max_particles,
            grid_resolution=grid_cfg.resolution,
            domain_min=grid_cfg.domain_min,
            domain_max=grid_cfg.domain_max,
            params=params,
            boundary=boundary,
            force_field=force_field,
            adaptive_timestep=sim.adaptive_timestep,
            cfl=sim.cfl,
            min_dt=sim.min_time_step,
            max_dt=sim.max_time_step,
            wall_mode=config.grid_boundary.mode,
            wall_thickness=config.grid_boundary.thickness,
            wall_restitution=config.grid_boundary.restitution,
            debug_interval=sim.debug_interval,
        )

        table = params.materials
        for block in config.particle_blocks:
            positions, velocities, masses, materials = sample_block(block, solver.grid.dx, table)
            added = solver.add_particles(positions, velocities=velocities, masses=masses,
                                         materials=materials, strict=True)
            print(f"[PhysicsWorld] Seeded {added} {block.material} particles "
                  f"in [{block.min_corner}, {block.max_corner}]")

        # Emitted particles default to the mass of a two-per-cell lattice sample
        spacing = solver.grid.dx / 2.0
        emitters = EmitterManager(config.emitters, lambda mat: table[mat].rest_density * spacing ** 3,
                                  seed=sim.seed)
        print(f"[PhysicsWorld] {solver.state.count} particles, {len(emitters.emitters)} emitters, "
              f"{int(force_field.count[None])} force fields")
        return cls(config=config, solver=solver, emitters=emitters)

    def _lifecycle(self, dt: float) -> None:
        """Age, kill and spawn particles; runs between ticks, never inside one."""
        state = self.solver.state
        if state.count > 0:
            state.advance_age(dt)
            arrays = state.lifecycle_arrays()
            keep = EmitterManager.keep_mask(arrays["age"], arrays["lifetime"], arrays["alive"])
            state.compact(keep)

        batch = self.emitters.emit(dt)
        if len(batch) > 0:
            added = state.add_particles(batch.positions, velocities=batch.velocities, masses=batch.masses,
                                        materials=batch.materials, lifetimes=batch.lifetimes)
            if added < len(batch):
                self.rejected_particles += len(batch) - added

    def step(self, dt: float | None = None) -> WorldSnapshot:
        """Advance by one tick and return a read-only snapshot.

        The lifecycle phase follows the tick and uses the step the solver actually
        took. Particles emitted here join the next tick.
        """
        dt = dt if dt is not None else self.config.simulation.time_step
        taken = self.solver.step(dt)
        self._lifecycle(taken)
        self.current_time += taken
        self.current_step += 1
        return self.snapshot()

    def snapshot(self) -> WorldSnapshot:
        state = self.solver.state
        particles = ParticleSnapshot.capture(
            state.get_positions(),
            state.get_velocities(),
            state.get_densities(),
            state.get_smoothed_densities(),
            state.get_materials(),
        )
        return WorldSnapshot(step_index=self.current_step, time=self.current_time, particles=particles)
