"""
MPM grid solve - momentum to velocity, body forces and coarse wall damping.
"""
import taichi as ti

from .mpm_grid import GHOST_LOW, MPMGrid
from .mpm_kernels import is_finite_vec
from .mpm_params import GRAVITY_RADIAL

# Grid wall modes
WALL_NONE = 0
WALL_STICKY = 1     # Zero velocity inside the wall layer
WALL_SLIP = 2       # Remove the normal component moving into the wall
WALL_BOUNCE = 3     # Reflect the normal component with restitution

WALL_MODES = {"none": WALL_NONE, "sticky": WALL_STICKY, "slip": WALL_SLIP, "bounce": WALL_BOUNCE}


@ti.data_oriented
class GridSolver:
    """Per-node velocity update; no node depends on any other node."""

    def __init__(self, grid: MPMGrid, force_field, wall_mode: str = 'none',
                 wall_thickness: int = 2, wall_restitution: float = 0.5):
        """
        Args:
            grid: Background grid
            force_field: Collaborator exposing ``sample(position, time)``
            wall_mode: 'none', 'sticky', 'slip' or 'bounce'
            wall_thickness: Thickness of the wall layer (in grid cells)
            wall_restitution: Restitution for bounce mode
        """
        self.grid = grid
        self.force_field = force_field
        mode_key = str(wall_mode).lower()
        if mode_key not in WALL_MODES:
            print(f"[GridSolver] Unknown grid wall mode '{wall_mode}', using none")
        self.wall_mode = WALL_MODES.get(mode_key, WALL_NONE)
        self.wall_thickness = max(int(wall_thickness), 0)
        self.wall_restitution = float(wall_restitution)
        self.center = tuple(float(c) for c in grid.center)

    @ti.func
    def _apply_walls(self, I, v):
        """Nodes within ``wall_thickness`` cells of a domain face, ghosts included."""
        out = v
        low = GHOST_LOW + self.wall_thickness
        for d in ti.static(range(3)):
            high = GHOST_LOW + self.grid.resolution[d] - self.wall_thickness
            into_low = I[d] < low and out[d] < 0.0
            into_high = I[d] > high and out[d] > 0.0
            if into_low or into_high:
                if ti.static(self.wall_mode == WALL_STICKY):
                    out = ti.Vector.zero(ti.f32, 3)
                elif ti.static(self.wall_mode == WALL_SLIP):
                    out[d] = 0.0
                elif ti.static(self.wall_mode == WALL_BOUNCE):
                    out[d] *= -self.wall_restitution
        return out

    @ti.kernel
    def solve(self, dt: ti.f32, gravity: ti.math.vec3, gravity_mode: ti.i32, mass_epsilon: ti.f32, time: ti.f32):
        """
        Convert momentum to velocity and integrate body forces for one step.

        Args:
            dt: Time step (s)
            gravity: Gravity vector (m/s^2); in radial mode only its magnitude is used
            gravity_mode: GRAVITY_UNIFORM or GRAVITY_RADIAL
            mass_epsilon: Nodes at or below this mass are inert
            time: Simulation time (s) for animated force fields
        """
        center = ti.Vector([self.center[0], self.center[1], self.center[2]])
        for I in ti.grouped(self.grid.mass):
            m = self.grid.mass[I]
            v_old = ti.Vector.zero(ti.f32, 3)
            v = ti.Vector.zero(ti.f32, 3)
            if m > mass_epsilon:
                v_old = self.grid.momentum[I] / m
                v = (self.grid.momentum[I] + self.grid.force[I]) / m
                pos = self.grid.node_position(I)
                accel = gravity
                if gravity_mode == GRAVITY_RADIAL:
                    to_center = center - pos
                    accel = gravity.norm() * to_center / ti.max(to_center.norm(), 1e-6)
                accel += self.force_field.sample(pos, time)
                v += dt * accel
                if ti.static(self.wall_mode != WALL_NONE):
                    v = self._apply_walls(I, v)
                if is_finite_vec(v_old) == 0:
                    v_old = ti.Vector.zero(ti.f32, 3)
                if is_finite_vec(v) == 0:
                    v = ti.Vector.zero(ti.f32, 3)
            self.grid.velocity_old[I] = v_old
            self.grid.velocity[I] = v
