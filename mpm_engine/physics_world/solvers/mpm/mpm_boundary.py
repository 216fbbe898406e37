"""
MPM boundary handling - collision shapes resolved on particles after advection.

The solver only calls ``resolve(x, v)`` and consumes the corrected values; the
shape geometry and response mode are fixed when the boundary is built.
"""
from typing import Sequence, Tuple

import numpy as np
import taichi as ti

# Shapes
SHAPE_NONE = 0
SHAPE_BOX = 1
SHAPE_SPHERE = 2
SHAPE_TUBE = 3

# Collision response modes
MODE_REFLECT = 0
MODE_CLAMP = 1
MODE_WRAP = 2
MODE_KILL = 3

SHAPE_NAMES = {"none": SHAPE_NONE, "box": SHAPE_BOX, "sphere": SHAPE_SPHERE, "tube": SHAPE_TUBE}
MODE_NAMES = {"reflect": MODE_REFLECT, "clamp": MODE_CLAMP, "wrap": MODE_WRAP, "kill": MODE_KILL}

# Wrapped particles land this fraction inside the opposite wall
WRAP_INSET = 1e-4


@ti.data_oriented
class MPMBoundary:
    """Box, sphere or tube container with reflect/clamp/wrap/kill response."""

    def __init__(self,
                 shape: str = 'none',
                 mode: str = 'reflect',
                 restitution: float = 0.3,
                 friction: float = 0.0,
                 box_min: Sequence[float] = (0.0, 0.0, 0.0),
                 box_max: Sequence[float] = (1.0, 1.0, 1.0),
                 center: Sequence[float] = (0.5, 0.5, 0.5),
                 radius: float = 0.5,
                 half_height: float = 0.5,
                 axis: int = 1):
        """
        Initialize boundary handler.

        Args:
            shape: 'none', 'box', 'sphere' or 'tube'; unknown names disable the boundary
            mode: 'reflect', 'clamp', 'wrap' or 'kill'; unknown names fall back to reflect
            restitution: Fraction of normal velocity kept on reflection (0-1)
            friction: Fraction of tangential velocity removed on contact (0-1)
            box_min: Box minimum corner (m)
            box_max: Box maximum corner (m)
            center: Sphere / tube center (m)
            radius: Sphere / tube radius (m)
            half_height: Tube half length along its axis (m)
            axis: Tube axis index (0=x, 1=y, 2=z)
        """
        shape_key = str(shape).lower()
        mode_key = str(mode).lower()
        if shape_key not in SHAPE_NAMES:
            print(f"[MPMBoundary] Unknown shape '{shape}', boundary disabled")
        if mode_key not in MODE_NAMES:
            print(f"[MPMBoundary] Unknown mode '{mode}', using reflect")
        self.shape = SHAPE_NAMES.get(shape_key, SHAPE_NONE)
        self.mode = MODE_NAMES.get(mode_key, MODE_REFLECT)
        self.restitution = float(np.clip(restitution, 0.0, 1.0))
        self.friction = float(np.clip(friction, 0.0, 1.0))
        # Normal velocity kept after contact; clamp mode stops the particle at the wall
        self.bounce = self.restitution if self.mode == MODE_REFLECT else 0.0
        self.box_min = tuple(float(v) for v in box_min)
        self.box_max = tuple(float(v) for v in box_max)
        self.center = tuple(float(v) for v in center)
        self.radius = float(radius)
        self.half_height = float(half_height)
        self.axis = int(axis) if int(axis) in (0, 1, 2) else 1

    def __repr__(self) -> str:
        shape = {v: k for k, v in SHAPE_NAMES.items()}[self.shape]
        mode = {v: k for k, v in MODE_NAMES.items()}[self.mode]
        return f"MPMBoundary(shape={shape}, mode={mode})"

    @ti.func
    def _respond(self, x, v, n, depth):
        """Push a penetrating particle back along the outward normal n."""
        x_out = x
        v_out = v
        keep = 1
        if ti.static(self.mode == MODE_KILL):
            keep = 0
        else:
            if ti.static(self.mode == MODE_REFLECT):
                x_out = x - 2.0 * depth * n
            else:
                x_out = x - depth * n
            vn = v.dot(n)
            if vn > 0.0:
                v_out = v - (1.0 + self.bounce) * vn * n
                vt = v_out - v_out.dot(n) * n
                v_out -= self.friction * vt
        return x_out, v_out, keep

    @ti.func
    def _resolve_box(self, x, v):
        lo = ti.Vector([self.box_min[0], self.box_min[1], self.box_min[2]])
        hi = ti.Vector([self.box_max[0], self.box_max[1], self.box_max[2]])
        x_out = x
        v_out = v
        keep = 1
        for d in ti.static(range(3)):
            if ti.static(self.mode == MODE_WRAP):
                length = hi[d] - lo[d]
                if x_out[d] < lo[d] or x_out[d] > hi[d]:
                    offset = x_out[d] - lo[d]
                    x_out[d] = lo[d] + offset - ti.floor(offset / length) * length
            else:
                n = ti.Vector([0.0, 0.0, 0.0])
                depth = 0.0
                if x_out[d] < lo[d]:
                    n[d] = -1.0
                    depth = lo[d] - x_out[d]
                elif x_out[d] > hi[d]:
                    n[d] = 1.0
                    depth = x_out[d] - hi[d]
                if depth > 0.0:
                    x_out, v_out, k = self._respond(x_out, v_out, n, depth)
                    keep = ti.min(keep, k)
        if ti.static(self.mode != MODE_KILL):
            x_out = ti.min(ti.max(x_out, lo), hi)
        return x_out, v_out, keep

    @ti.func
    def _resolve_radial(self, x, v, center, radius, mask):
        """Sphere (mask = 1,1,1) or tube cross-section (axis component masked out)."""
        x_out = x
        v_out = v
        keep = 1
        r = (x - center) * mask
        dist = r.norm()
        if dist > radius:
            n = r / dist
            if ti.static(self.mode == MODE_WRAP):
                x_out = x - r - n * radius * (1.0 - WRAP_INSET)
            else:
                x_out, v_out, keep = self._respond(x, v, n, dist - radius)
                if ti.static(self.mode != MODE_KILL):
                    r_out = (x_out - center) * mask
                    d_out = r_out.norm()
                    if d_out > radius:
                        x_out -= r_out * (1.0 - radius / d_out)
        return x_out, v_out, keep

    @ti.func
    def _resolve_tube(self, x, v):
        c = ti.Vector([self.center[0], self.center[1], self.center[2]])
        a = ti.static(self.axis)
        mask = ti.Vector([1.0, 1.0, 1.0])
        mask[a] = 0.0
        x_out, v_out, keep = self._resolve_radial(x, v, c, self.radius, mask)
        lo = c[a] - self.half_height
        hi = c[a] + self.half_height
        if ti.static(self.mode == MODE_WRAP):
            if x_out[a] < lo or x_out[a] > hi:
                length = hi - lo
                offset = x_out[a] - lo
                x_out[a] = lo + offset - ti.floor(offset / length) * length
        else:
            n = ti.Vector([0.0, 0.0, 0.0])
            depth = 0.0
            if x_out[a] < lo:
                n[a] = -1.0
                depth = lo - x_out[a]
            elif x_out[a] > hi:
                n[a] = 1.0
                depth = x_out[a] - hi
            if depth > 0.0:
                x2, v2, k = self._respond(x_out, v_out, n, depth)
                x_out = x2
                v_out = v2
                keep = ti.min(keep, k)
            if ti.static(self.mode != MODE_KILL):
                x_out[a] = ti.min(ti.max(x_out[a], lo), hi)
        return x_out, v_out, keep

    @ti.func
    def resolve(self, x, v):
        """
        Correct a post-advection position / velocity pair.

        Args:
            x: Candidate position (m)
            v: Candidate velocity (m/s)

        Returns:
            Tuple of (position, velocity, keep) where keep is 0 for killed particles.
        """
        x_out = x
        v_out = v
        keep = 1
        if ti.static(self.shape == SHAPE_BOX):
            x_out, v_out, keep = self._resolve_box(x, v)
        elif ti.static(self.shape == SHAPE_SPHERE):
            c = ti.Vector([self.center[0], self.center[1], self.center[2]])
            x_out, v_out, keep = self._resolve_radial(x, v, c, self.radius, ti.Vector([1.0, 1.0, 1.0]))
        elif ti.static(self.shape == SHAPE_TUBE):
            x_out, v_out, keep = self._resolve_tube(x, v)
        return x_out, v_out, keep

    @ti.kernel
    def _resolve_arrays(self, pos: ti.types.ndarray(), vel: ti.types.ndarray(), keep: ti.types.ndarray()):
        for i in range(pos.shape[0]):
            x = ti.Vector([pos[i, 0], pos[i, 1], pos[i, 2]])
            v = ti.Vector([vel[i, 0], vel[i, 1], vel[i, 2]])
            x_out, v_out, k = self.resolve(x, v)
            for d in ti.static(range(3)):
                pos[i, d] = x_out[d]
                vel[i, d] = v_out[d]
            keep[i] = k

    def resolve_batch(self, positions: np.ndarray, velocities: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Host-side resolve of (N, 3) arrays; inputs are not modified."""
        pos = np.array(positions, dtype=np.float32).reshape(-1, 3)
        vel = np.array(velocities, dtype=np.float32).reshape(-1, 3)
        keep = np.ones(len(pos), dtype=np.int32)
        if len(pos):
            self._resolve_arrays(pos, vel, keep)
        return pos, vel, keep.astype(bool)
