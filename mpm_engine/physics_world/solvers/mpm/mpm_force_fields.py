"""
MPM force fields - additive accelerations sampled per grid node in the grid solve.
"""
from typing import Sequence

import numpy as np
import taichi as ti

from .mpm_noise import tri_noise_vec

MAX_FORCE_FIELDS = 8

# Force field types
ATTRACTOR = 0
REPELLER = 1
VORTEX = 2
TURBULENCE = 3
DIRECTIONAL = 4
VORTEX_TUBE = 5
SPHERICAL = 6
CURL_NOISE = 7

FIELD_TYPES = {
    "attractor": ATTRACTOR,
    "repeller": REPELLER,
    "vortex": VORTEX,
    "turbulence": TURBULENCE,
    "directional": DIRECTIONAL,
    "vortex_tube": VORTEX_TUBE,
    "spherical": SPHERICAL,
    "curl_noise": CURL_NOISE,
}

# Falloff modes
FALLOFF_CONSTANT = 0
FALLOFF_LINEAR = 1
FALLOFF_QUADRATIC = 2
FALLOFF_SMOOTH = 3

FALLOFF_TYPES = {
    "constant": FALLOFF_CONSTANT,
    "linear": FALLOFF_LINEAR,
    "quadratic": FALLOFF_QUADRATIC,
    "smooth": FALLOFF_SMOOTH,
}

CURL_EPS = 0.1


@ti.func
def falloff_weight(dist: ti.f32, radius: ti.f32, mode: ti.i32) -> ti.f32:
    """Falloff factor in [0, 1]; zero outside the radius."""
    weight = 0.0
    if dist <= radius:
        t = dist / ti.max(radius, 1e-6)
        weight = 1.0
        if mode == FALLOFF_LINEAR:
            weight = 1.0 - t
        elif mode == FALLOFF_QUADRATIC:
            weight = (1.0 - t) * (1.0 - t)
        elif mode == FALLOFF_SMOOTH:
            weight = 1.0 - t * t * (3.0 - 2.0 * t)
    return weight


@ti.data_oriented
class ForceFieldSet:
    """Up to ``MAX_FORCE_FIELDS`` analytic force fields evaluated in Taichi scope."""

    def __init__(self, configs: Sequence = ()):
        self.kind = ti.field(dtype=ti.i32, shape=MAX_FORCE_FIELDS)
        self.falloff = ti.field(dtype=ti.i32, shape=MAX_FORCE_FIELDS)
        self.position = ti.Vector.field(3, dtype=ti.f32, shape=MAX_FORCE_FIELDS)
        self.direction = ti.Vector.field(3, dtype=ti.f32, shape=MAX_FORCE_FIELDS)
        self.strength = ti.field(dtype=ti.f32, shape=MAX_FORCE_FIELDS)  # m/s^2
        self.radius = ti.field(dtype=ti.f32, shape=MAX_FORCE_FIELDS)    # m
        self.noise_scale = ti.field(dtype=ti.f32, shape=MAX_FORCE_FIELDS)
        self.noise_speed = ti.field(dtype=ti.f32, shape=MAX_FORCE_FIELDS)
        self.count = ti.field(dtype=ti.i32, shape=())
        self.configure(configs)

    def configure(self, configs: Sequence) -> None:
        """Upload field descriptions; enabled fields beyond the capacity are ignored."""
        active = [cfg for cfg in configs if getattr(cfg, "enabled", True)]
        if len(active) > MAX_FORCE_FIELDS:
            print(f"[ForceFieldSet] {len(active)} fields requested, keeping the first {MAX_FORCE_FIELDS}")
            active = active[:MAX_FORCE_FIELDS]

        kind = np.zeros(MAX_FORCE_FIELDS, dtype=np.int32)
        falloff = np.zeros(MAX_FORCE_FIELDS, dtype=np.int32)
        position = np.zeros((MAX_FORCE_FIELDS, 3), dtype=np.float32)
        direction = np.zeros((MAX_FORCE_FIELDS, 3), dtype=np.float32)
        direction[:, 1] = 1.0
        strength = np.zeros(MAX_FORCE_FIELDS, dtype=np.float32)
        radius = np.ones(MAX_FORCE_FIELDS, dtype=np.float32)
        noise_scale = np.ones(MAX_FORCE_FIELDS, dtype=np.float32)
        noise_speed = np.ones(MAX_FORCE_FIELDS, dtype=np.float32)
        for i, cfg in enumerate(active):
            kind[i] = FIELD_TYPES.get(str(cfg.type).lower(), ATTRACTOR)
            falloff[i] = FALLOFF_TYPES.get(str(cfg.falloff).lower(), FALLOFF_CONSTANT)
            position[i] = cfg.position
            d = np.asarray(cfg.direction, dtype=np.float32)
            norm = float(np.linalg.norm(d))
            direction[i] = d / norm if norm > 1e-8 else (0.0, 1.0, 0.0)
            strength[i] = cfg.strength
            radius[i] = cfg.radius
            noise_scale[i] = cfg.noise_scale
            noise_speed[i] = cfg.noise_speed

        self.kind.from_numpy(kind)
        self.falloff.from_numpy(falloff)
        self.position.from_numpy(position)
        self.direction.from_numpy(direction)
        self.strength.from_numpy(strength)
        self.radius.from_numpy(radius)
        self.noise_scale.from_numpy(noise_scale)
        self.noise_speed.from_numpy(noise_speed)
        self.count[None] = len(active)

    @ti.func
    def _curl_noise(self, p, speed, time):
        ex = ti.Vector([CURL_EPS, 0.0, 0.0])
        ey = ti.Vector([0.0, CURL_EPS, 0.0])
        ez = ti.Vector([0.0, 0.0, CURL_EPS])
        ddx = (tri_noise_vec(p + ex, speed, time) - tri_noise_vec(p - ex, speed, time)) / (2.0 * CURL_EPS)
        ddy = (tri_noise_vec(p + ey, speed, time) - tri_noise_vec(p - ey, speed, time)) / (2.0 * CURL_EPS)
        ddz = (tri_noise_vec(p + ez, speed, time) - tri_noise_vec(p - ez, speed, time)) / (2.0 * CURL_EPS)
        return ti.Vector([ddy[2] - ddz[1], ddz[0] - ddx[2], ddx[1] - ddy[0]])

    @ti.func
    def _field_acceleration(self, f, pos, time):
        acc = ti.Vector([0.0, 0.0, 0.0])
        to_field = self.position[f] - pos
        dist = to_field.norm()
        weight = falloff_weight(dist, self.radius[f], self.falloff[f])
        if weight > 0.0:
            kind = self.kind[f]
            strength = self.strength[f] * weight
            axis = self.direction[f]
            dir_to_field = to_field / ti.max(dist, 1e-6)
            if kind == ATTRACTOR:
                acc = dir_to_field * strength
            elif kind == REPELLER:
                acc = -dir_to_field * strength
            elif kind == VORTEX or kind == VORTEX_TUBE:
                along = to_field.dot(axis)
                radial = to_field - along * axis
                radial_dist = radial.norm()
                if radial_dist > 1e-3:
                    radial_dir = radial / radial_dist
                    tangent = axis.cross(radial_dir)
                    if kind == VORTEX:
                        acc = strength * (tangent - 0.3 * radial_dir + 0.2 * axis)
                    else:
                        height = ti.max(1.0 - ti.abs(along) / ti.max(self.radius[f], 1e-6), 0.0)
                        acc = strength * (2.0 * tangent - 0.8 * radial_dir + 0.5 * height * axis)
            elif kind == TURBULENCE:
                noise = tri_noise_vec(pos * self.noise_scale[f], self.noise_speed[f], time)
                acc = 2.0 * strength * noise
            elif kind == DIRECTIONAL:
                acc = axis * strength
            elif kind == SPHERICAL:
                pulse = 0.5 * ti.sin(2.0 * time) + 0.5
                acc = dir_to_field * strength * pulse
            elif kind == CURL_NOISE:
                acc = strength * self._curl_noise(pos * self.noise_scale[f], self.noise_speed[f], time)
        return acc

    @ti.func
    def sample(self, pos, time):
        """Total acceleration (m/s^2) at a world position."""
        acc = ti.Vector([0.0, 0.0, 0.0])
        for f in range(self.count[None]):
            acc += self._field_acceleration(f, pos, time)
        return acc

    @ti.kernel
    def _sample_arrays(self, pos: ti.types.ndarray(), out: ti.types.ndarray(), time: ti.f32):
        for i in range(pos.shape[0]):
            x = ti.Vector([pos[i, 0], pos[i, 1], pos[i, 2]])
            a = self.sample(x, time)
            for d in ti.static(range(3)):
                out[i, d] = a[d]

    def sample_positions(self, positions: np.ndarray, time: float = 0.0) -> np.ndarray:
        """Host-side sampling of the total acceleration at (N, 3) positions."""
        pos = np.ascontiguousarray(np.asarray(positions, dtype=np.float32).reshape(-1, 3))
        out = np.zeros_like(pos)
        if len(pos):
            self._sample_arrays(pos, out, time)
        return out
