"""
MPM transfer kernels - particle to grid scatter and grid to particle gather.

P2G runs as two passes: mass and momentum first, then stress once the grid mass
(and therefore each particle's density) is complete. G2P is the only pass that
writes particle velocity, affine matrix, material state and position.
"""
import taichi as ti

from .mpm_grid import MPMGrid
from .mpm_kernels import STENCIL, bspline_stencil, clamp_norm, is_finite_mat, is_finite_vec
from .mpm_materials import (
    K_NOISE_SCALE,
    K_NOISE_STRENGTH,
    PLASMA,
    RIGID,
    compute_stress,
    resolve_material,
    update_material_state,
)
from .mpm_noise import tri_noise_vec
from .mpm_params import DOMAIN_KILL
from .mpm_state import MPMState

# Display density relaxes towards the new estimate at this rate
DENSITY_SMOOTHING = 0.05


@ti.data_oriented
class MPMTransfer:
    """P2G / G2P kernels bound to one particle store and one grid."""

    def __init__(self, state: MPMState, grid: MPMGrid):
        self.state = state
        self.grid = grid
        self.safe_min = tuple(float(v) for v in grid.safe_min)
        self.safe_max = tuple(float(v) for v in grid.safe_max)

    @ti.func
    def _sanitized_motion(self, p):
        v = self.state.v[p]
        C = self.state.C[p]
        if is_finite_vec(v) == 0 or is_finite_mat(C) == 0:
            v = ti.Vector.zero(ti.f32, 3)
            C = ti.Matrix.zero(ti.f32, 3, 3)
        return v, C

    @ti.func
    def _participates(self, p) -> ti.i32:
        return self.state.alive[p] == 1 and is_finite_vec(self.state.x[p]) == 1

    @ti.kernel
    def p2g_mass_momentum(self):
        """Pass 1: scatter mass and APIC momentum m * (v + C (x_i - x_p))."""
        dx = self.grid.dx
        inv_dx = self.grid.inv_dx
        for p in range(self.state.n_particles[None]):
            if self._participates(p):
                x = self.state.x[p]
                v, C = self._sanitized_motion(p)
                m = self.state.mass[p]
                base, fx, w = bspline_stencil(x, self.grid.origin(), inv_dx)
                for i, j, k in ti.static(ti.ndrange(STENCIL, STENCIL, STENCIL)):
                    offset = ti.Vector([i, j, k])
                    node = base + offset
                    if self.grid.is_valid_grid_pos(node):
                        dpos = (offset.cast(ti.f32) - fx) * dx
                        weight = w[i, 0] * w[j, 1] * w[k, 2]
                        self.grid.momentum[node] += weight * m * (v + C @ dpos)
                        self.grid.mass[node] += weight * m

    @ti.kernel
    def p2g_stress(self, dt: ti.f32, time: ti.f32, table: ti.template()):
        """Pass 2: estimate density from grid mass, then scatter stress and body impulses."""
        dx = self.grid.dx
        inv_dx = self.grid.inv_dx
        inv_cell_volume = 1.0 / self.grid.cell_volume
        for p in range(self.state.n_particles[None]):
            if self._participates(p):
                x = self.state.x[p]
                _, C = self._sanitized_motion(p)
                m = self.state.mass[p]
                mat = resolve_material(self.state.material[p])
                base, fx, w = bspline_stencil(x, self.grid.origin(), inv_dx)

                rho = 0.0
                for i, j, k in ti.static(ti.ndrange(STENCIL, STENCIL, STENCIL)):
                    node = base + ti.Vector([i, j, k])
                    if self.grid.is_valid_grid_pos(node):
                        rho += w[i, 0] * w[j, 1] * w[k, 2] * self.grid.mass[node]
                rho *= inv_cell_volume
                self.state.density[p] = rho
                shown = self.state.smoothed_density[p]
                if shown <= 0.0:
                    shown = rho
                self.state.smoothed_density[p] = shown + DENSITY_SMOOTHING * (rho - shown)

                F = self.state.F[p]
                if is_finite_mat(F) == 0:
                    F = ti.Matrix.identity(ti.f32, 3)
                stress, volume = compute_stress(mat, F, C, self.state.Jp[p], rho, m, table)
                affine = (-dt * volume * 4.0 * inv_dx * inv_dx) * stress
                if is_finite_mat(affine) == 0:
                    affine = ti.Matrix.zero(ti.f32, 3, 3)

                body = ti.Vector.zero(ti.f32, 3)
                if mat == PLASMA:
                    noise = tri_noise_vec(x * table[mat, K_NOISE_SCALE], 1.0, time)
                    body = 2.0 * table[mat, K_NOISE_STRENGTH] * noise
                impulse = m * dt * body

                for i, j, k in ti.static(ti.ndrange(STENCIL, STENCIL, STENCIL)):
                    offset = ti.Vector([i, j, k])
                    node = base + offset
                    if self.grid.is_valid_grid_pos(node):
                        dpos = (offset.cast(ti.f32) - fx) * dx
                        weight = w[i, 0] * w[j, 1] * w[k, 2]
                        self.grid.force[node] += weight * (affine @ dpos + impulse)

    @ti.kernel
    def g2p(self,
            dt: ti.f32,
            flip_ratio: ti.f32,
            vorticity_epsilon: ti.f32,
            velocity_limit: ti.f32,
            out_of_domain: ti.i32,
            table: ti.template(),
            boundary: ti.template(),
            vorticity: ti.template()):
        """
        Gather grid velocity, blend PIC/FLIP, evolve material state, resolve the
        boundary and advect.

        Args:
            dt: Time step (s)
            flip_ratio: 0 = PIC, 1 = FLIP; rigid particles always use 0
            vorticity_epsilon: Confinement strength, used only when the vorticity pass is active
            velocity_limit: Largest speed a particle may leave G2P with (m/s)
            out_of_domain: DOMAIN_CLAMP or DOMAIN_KILL
            table: Material coefficient field
            boundary: Boundary collaborator exposing ``resolve``
            vorticity: Vorticity strategy exposing ``enabled`` and ``confinement``
        """
        dx = self.grid.dx
        inv_dx = self.grid.inv_dx
        safe_lo = ti.Vector([self.safe_min[0], self.safe_min[1], self.safe_min[2]])
        safe_hi = ti.Vector([self.safe_max[0], self.safe_max[1], self.safe_max[2]])
        self.state.nonfinite_count[None] = 0
        for p in range(self.state.n_particles[None]):
            if self.state.alive[p] == 1:
                x = self.state.x[p]
                repaired = 0
                if is_finite_vec(x) == 0:
                    x = 0.5 * (safe_lo + safe_hi)
                    repaired = 1
                v_old, _ = self._sanitized_motion(p)
                if is_finite_vec(self.state.v[p]) == 0:
                    repaired = 1
                mat = resolve_material(self.state.material[p])
                base, fx, w = bspline_stencil(x, self.grid.origin(), inv_dx)

                v_pic = ti.Vector.zero(ti.f32, 3)
                v_delta = ti.Vector.zero(ti.f32, 3)
                B = ti.Matrix.zero(ti.f32, 3, 3)
                for i, j, k in ti.static(ti.ndrange(STENCIL, STENCIL, STENCIL)):
                    offset = ti.Vector([i, j, k])
                    node = base + offset
                    if self.grid.is_valid_grid_pos(node):
                        dpos = (offset.cast(ti.f32) - fx) * dx
                        weight = w[i, 0] * w[j, 1] * w[k, 2]
                        g_v = self.grid.velocity[node]
                        v_pic += weight * g_v
                        v_delta += weight * (g_v - self.grid.velocity_old[node])
                        B += weight * g_v.outer_product(dpos)
                C_new = B * (4.0 * inv_dx * inv_dx)

                ratio = flip_ratio
                if mat == RIGID:
                    ratio = 0.0
                v_new = ratio * (v_old + v_delta) + (1.0 - ratio) * v_pic

                F = self.state.F[p]
                if is_finite_mat(F) == 0:
                    F = ti.Matrix.identity(ti.f32, 3)
                F_new, Jp_new, plastic_new, C_out = update_material_state(
                    mat, F, C_new, self.state.Jp[p], self.state.plastic[p], dt, table)

                if ti.static(vorticity.enabled):
                    v_new += dt * vorticity.confinement(base, w, vorticity_epsilon)

                if is_finite_vec(v_new) == 0:
                    v_new = ti.Vector.zero(ti.f32, 3)
                    repaired = 1
                v_new = clamp_norm(v_new, velocity_limit)

                x_new = x + dt * v_new
                x_res, v_res, keep = boundary.resolve(x_new, v_new)
                if is_finite_vec(x_res) == 0 or is_finite_vec(v_res) == 0:
                    x_res = ti.min(ti.max(x, safe_lo), safe_hi)
                    v_res = ti.Vector.zero(ti.f32, 3)
                    repaired = 1

                outside = 0
                for d in ti.static(range(3)):
                    if x_res[d] < safe_lo[d] or x_res[d] > safe_hi[d]:
                        outside = 1
                if outside == 1:
                    if out_of_domain == DOMAIN_KILL:
                        keep = 0
                    else:
                        for d in ti.static(range(3)):
                            if x_res[d] < safe_lo[d]:
                                x_res[d] = safe_lo[d]
                                v_res[d] = ti.max(v_res[d], 0.0)
                            elif x_res[d] > safe_hi[d]:
                                x_res[d] = safe_hi[d]
                                v_res[d] = ti.min(v_res[d], 0.0)

                if is_finite_mat(F_new) == 0:
                    F_new = ti.Matrix.identity(ti.f32, 3)
                    repaired = 1
                if is_finite_mat(C_out) == 0:
                    C_out = ti.Matrix.zero(ti.f32, 3, 3)
                    repaired = 1

                self.state.x[p] = x_res
                self.state.v[p] = v_res
                self.state.C[p] = C_out
                self.state.F[p] = F_new
                self.state.Jp[p] = Jp_new
                self.state.plastic[p] = plastic_new
                self.state.alive[p] = keep
                if repaired == 1:
                    self.state.nonfinite_count[None] += 1
