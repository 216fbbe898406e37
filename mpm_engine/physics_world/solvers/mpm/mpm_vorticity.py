"""
MPM vorticity pass - grid curl and the confinement force gathered in G2P.

Two interchangeable strategies are provided. ``VorticityPass`` owns the curl
buffers and is inserted after the grid solve; ``NoVorticity`` compiles the
confinement term out of G2P entirely.
"""
import taichi as ti

from .mpm_grid import MPMGrid
from .mpm_kernels import STENCIL

# Added to |grad |omega|| before normalizing
GRADIENT_EPS = 1e-6


@ti.data_oriented
class NoVorticity:
    enabled = False

    def run(self):
        pass


@ti.data_oriented
class VorticityPass:
    """Central-difference curl of the grid velocity; boundary nodes stay zero."""

    enabled = True

    def __init__(self, grid: MPMGrid):
        self.grid = grid
        self.omega = ti.Vector.field(3, dtype=ti.f32, shape=grid.shape)
        self.omega_norm = ti.field(dtype=ti.f32, shape=grid.shape)

    @ti.func
    def _is_interior(self, I) -> ti.i32:
        inside = 1
        for d in ti.static(range(3)):
            if I[d] < 1 or I[d] > self.grid.shape[d] - 2:
                inside = 0
        return inside

    @ti.kernel
    def compute_curl(self):
        half_inv_dx = 0.5 * self.grid.inv_dx
        for I in ti.grouped(self.omega):
            curl = ti.Vector.zero(ti.f32, 3)
            if self._is_interior(I):
                ex = ti.Vector([1, 0, 0])
                ey = ti.Vector([0, 1, 0])
                ez = ti.Vector([0, 0, 1])
                ddx = (self.grid.velocity[I + ex] - self.grid.velocity[I - ex]) * half_inv_dx
                ddy = (self.grid.velocity[I + ey] - self.grid.velocity[I - ey]) * half_inv_dx
                ddz = (self.grid.velocity[I + ez] - self.grid.velocity[I - ez]) * half_inv_dx
                curl = ti.Vector([ddy[2] - ddz[1], ddz[0] - ddx[2], ddx[1] - ddy[0]])
            self.omega[I] = curl
            self.omega_norm[I] = curl.norm()

    def run(self):
        self.compute_curl()

    @ti.func
    def confinement(self, base, w, epsilon):
        """
        Confinement acceleration epsilon * dx * (N x omega) for a particle.

        Args:
            base: Lowest node of the particle's stencil
            w: Per-axis stencil weights
            epsilon: Confinement strength

        Returns:
            Acceleration (m/s^2); zero when the stencil centre is not interior.
        """
        omega = ti.Vector.zero(ti.f32, 3)
        for i, j, k in ti.static(ti.ndrange(STENCIL, STENCIL, STENCIL)):
            node = base + ti.Vector([i, j, k])
            if self.grid.is_valid_grid_pos(node):
                omega += w[i, 0] * w[j, 1] * w[k, 2] * self.omega[node]

        force = ti.Vector.zero(ti.f32, 3)
        c = base + ti.Vector([1, 1, 1])
        inner = 1
        for d in ti.static(range(3)):
            if c[d] < 2 or c[d] > self.grid.shape[d] - 3:
                inner = 0
        if inner == 1:
            grad = ti.Vector.zero(ti.f32, 3)
            half_inv_dx = 0.5 * self.grid.inv_dx
            for d in ti.static(range(3)):
                e = ti.Vector([0, 0, 0])
                e[d] = 1
                grad[d] = (self.omega_norm[c + e] - self.omega_norm[c - e]) * half_inv_dx
            N = grad / (grad.norm() + GRADIENT_EPS)
            force = epsilon * self.grid.dx * N.cross(omega)
        return force

    def peak_curl(self) -> float:
        return float(self.omega_norm.to_numpy().max())
