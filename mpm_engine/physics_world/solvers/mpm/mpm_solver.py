"""
MPM solver - sequences the grid and particle passes of one simulation tick.

Each pass is a separate kernel launch, so every launch acts as the barrier
between passes: G2P only starts once all P2G and grid solve writes are done.
"""
from typing import Optional, Sequence, Union

import numpy as np
import taichi as ti

from .mpm_boundary import MPMBoundary
from .mpm_force_fields import ForceFieldSet
from .mpm_grid import MPMGrid
from .mpm_grid_solve import GridSolver
from .mpm_materials import N_COEFFS, N_MATERIALS
from .mpm_params import StepParams
from .mpm_state import MPMState
from .mpm_timestep import CFLTimestep, FixedTimestep
from .mpm_transfer import MPMTransfer
from .mpm_vorticity import NoVorticity, VorticityPass


@ti.data_oriented
class MPMSolver:
    """Hybrid APIC/FLIP material point solver."""

    def __init__(self,
                 max_particles: int = 100000,
                 grid_resolution: Union[int, Sequence[int]] = 64,
                 domain_min: Sequence[float] = (0.0, 0.0, 0.0),
                 domain_max: Sequence[float] = (1.0, 1.0, 1.0),
                 params: Optional[StepParams] = None,
                 boundary: Optional[MPMBoundary] = None,
                 force_field: Optional[ForceFieldSet] = None,
                 adaptive_timestep: bool = False,
                 cfl: float = 0.5,
                 min_dt: float = 1e-5,
                 max_dt: float = 1e-2,
                 wall_mode: str = 'none',
                 wall_thickness: int = 2,
                 wall_restitution: float = 0.5,
                 debug_interval: int = 0):
        """
        Initialize MPM solver.

        Args:
            max_particles: Particle capacity
            grid_resolution: Cells along the longest axis, or per-axis counts
            domain_min: Minimum corner of simulation domain (m)
            domain_max: Maximum corner of simulation domain (m)
            params: Initial parameter block; defaults to ``StepParams()``
            boundary: Boundary collaborator; defaults to no boundary
            force_field: Force field collaborator; defaults to an empty set
            adaptive_timestep: Use the CFL timestep strategy instead of a fixed step
            cfl: Target CFL number for the adaptive strategy
            min_dt: Lower clamp of the adaptive step (s)
            max_dt: Upper clamp of the adaptive step (s)
            wall_mode: Grid wall damping ('none', 'sticky', 'slip', 'bounce')
            wall_thickness: Grid wall thickness (in grid cells)
            wall_restitution: Restitution of bounce walls
            debug_interval: Print statistics every N ticks (0 disables)
        """
        self.params = params if params is not None else StepParams()
        self.state = MPMState(max_particles)
        self.grid = MPMGrid(grid_resolution, domain_min, domain_max)
        self.boundary = boundary if boundary is not None else MPMBoundary('none')
        self.force_field = force_field if force_field is not None else ForceFieldSet()
        self.transfer = MPMTransfer(self.state, self.grid)
        self.grid_solver = GridSolver(self.grid, self.force_field, wall_mode, wall_thickness, wall_restitution)
        self.material_table = ti.field(dtype=ti.f32, shape=(N_MATERIALS, N_COEFFS))
        self._uploaded_materials = None

        self._no_vorticity = NoVorticity()
        self._vorticity_pass: Optional[VorticityPass] = None
        self.vorticity = self._no_vorticity

        if adaptive_timestep:
            self.timestep = CFLTimestep(self.state, self.grid.dx, cfl, min_dt, max_dt)
        else:
            self.timestep = FixedTimestep()

        self.time = 0.0
        self.step_count = 0
        self.last_dt = self.params.dt
        self.debug_interval = max(int(debug_interval), 0)

        self.avg_v = ti.field(dtype=ti.f32, shape=())
        self.max_v = ti.field(dtype=ti.f32, shape=())
        self.avg_density = ti.field(dtype=ti.f32, shape=())

        print(f"[MPMSolver] Initializing with max_particles={max_particles}, grid={self.grid.resolution}")
        print(f"[MPMSolver] Domain: [{self.grid.domain_min}, {self.grid.domain_max}], dt={self.params.dt}s, "
              f"gravity={self.params.gravity}, flip_ratio={self.params.flip_ratio}")
        print(f"[MPMSolver] Boundary: {self.boundary}, timestep: {type(self.timestep).__name__}")

    def configure(self, params: StepParams) -> None:
        """Replace the parameter block; it takes effect at the start of the next tick."""
        self.params = params

    def add_particles(self, positions: np.ndarray, **kwargs) -> int:
        return self.state.add_particles(positions, **kwargs)

    def _select_vorticity(self, params: StepParams):
        if not params.vorticity_enabled:
            return self._no_vorticity
        if self._vorticity_pass is None:
            self._vorticity_pass = VorticityPass(self.grid)
        return self._vorticity_pass

    def _begin_tick(self, dt: Optional[float]) -> StepParams:
        """Freeze the parameter block for this tick and upload material constants."""
        params = self.params
        base_dt = dt if dt is not None else params.dt
        tick_dt = self.timestep.next_dt(base_dt)
        params = params.with_tick(tick_dt, self.time)
        if params.materials is not self._uploaded_materials:
            self.material_table.from_numpy(params.materials.to_numpy())
            self._uploaded_materials = params.materials
        self.vorticity = self._select_vorticity(params)
        return params

    def step(self, dt: Optional[float] = None) -> float:
        """
        Advance simulation by one tick.

        Args:
            dt: Optional base step overriding the configured one (s)

        Returns:
            The step actually taken (s)
        """
        params = self._begin_tick(dt)
        self.grid.clear_grid()
        self.transfer.p2g_mass_momentum()
        self.transfer.p2g_stress(params.dt, params.time, self.material_table)
        self.grid_solver.solve(params.dt, ti.math.vec3(*params.gravity), params.gravity_mode,
                               params.mass_epsilon, params.time)
        self.vorticity.run()
        self.transfer.g2p(params.dt,
                          params.flip_ratio,
                          params.vorticity_epsilon,
                          params.speed_limit(self.grid.dx),
                          params.out_of_domain,
                          self.material_table,
                          self.boundary,
                          self.vorticity)

        self.time += params.dt
        self.last_dt = params.dt
        self.step_count += 1
        if self.debug_interval and self.step_count % self.debug_interval == 0:
            self.print_stats()
        return params.dt

    @ti.kernel
    def compute_stats(self):
        """Average and maximum particle speed plus average density."""
        self.avg_v[None] = 0.0
        self.max_v[None] = 0.0
        self.avg_density[None] = 0.0
        n = self.state.n_particles[None]
        for p in range(n):
            speed = self.state.v[p].norm()
            self.avg_v[None] += speed / n
            self.avg_density[None] += self.state.density[p] / n
            ti.atomic_max(self.max_v[None], speed)

    def print_stats(self) -> None:
        n_particles = self.state.count
        if n_particles > 0:
            self.compute_stats()
        print(f"[MPM Step {self.step_count}] Particles: {n_particles}, t={self.time:.4f}s, dt={self.last_dt:.2e}s, "
              f"non-finite resets: {self.state.nonfinite_count[None]}")
        print(f"  Velocity: v_avg={self.avg_v[None]:.3f}m/s, v_max={self.max_v[None]:.3f}m/s")
        print(f"  Density: rho_avg={self.avg_density[None]:.1f}kg/m^3, mass={self.state.total_mass():.6e}kg")
