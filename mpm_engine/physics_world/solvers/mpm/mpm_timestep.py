"""
MPM timestep strategies, chosen once when the solver is built.
"""
import taichi as ti

from .mpm_state import MPMState

# Below this particle speed (m/s) the CFL strategy keeps the base step
CFL_SPEED_THRESHOLD = 0.1


class FixedTimestep:
    """Always returns the configured step."""

    def next_dt(self, base_dt: float) -> float:
        return base_dt


@ti.data_oriented
class CFLTimestep:
    """Shrinks the step so the fastest particle crosses at most ``cfl`` cells per tick."""

    def __init__(self, state: MPMState, dx: float, cfl: float = 0.5,
                 min_dt: float = 1e-5, max_dt: float = 1e-2, stride: int = 1):
        self.state = state
        self.dx = dx
        self.cfl = cfl
        self.min_dt = min_dt
        self.max_dt = max_dt
        self.stride = max(int(stride), 1)
        self.max_speed = ti.field(dtype=ti.f32, shape=())

    @ti.kernel
    def _measure(self, stride: ti.i32):
        self.max_speed[None] = 0.0
        for s in range((self.state.n_particles[None] + stride - 1) // stride):
            p = s * stride
            if self.state.alive[p] == 1:
                speed = self.state.v[p].norm()
                if speed <= 1e30:
                    ti.atomic_max(self.max_speed[None], speed)

    def next_dt(self, base_dt: float) -> float:
        self._measure(self.stride)
        vmax = float(self.max_speed[None])
        dt = base_dt
        if vmax > CFL_SPEED_THRESHOLD:
            dt = min(base_dt, self.cfl * self.dx / vmax)
        return min(max(dt, self.min_dt), self.max_dt)
