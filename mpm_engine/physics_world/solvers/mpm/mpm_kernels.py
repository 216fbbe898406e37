"""
MPM Taichi helpers - interpolation stencil and numeric guards shared by every pass.
"""
import taichi as ti

# Quadratic B-spline: every particle touches a 3x3x3 block of nodes.
STENCIL = 3

# Components above this magnitude (or NaN) are treated as non-finite.
FINITE_LIMIT = 1.0e30


@ti.func
def quadratic_kernel(r: ti.f32) -> ti.f32:
    """
    Quadratic B-spline kernel for MPM interpolation.

    Args:
        r: Distance (normalized by grid spacing)

    Returns:
        Kernel weight
    """
    w = 0.0
    abs_r = ti.abs(r)
    if abs_r < 0.5:
        w = 0.75 - abs_r * abs_r
    elif abs_r < 1.5:
        w = 0.5 * (1.5 - abs_r) ** 2
    return w


@ti.func
def bspline_stencil(x, origin, inv_dx):
    """
    Compute the interpolation footprint of a world-space position.

    Args:
        x: Particle position (world space)
        origin: Grid origin (world space)
        inv_dx: Inverse grid spacing

    Returns:
        Tuple of (base_node, fractional_offset, weights) where weights[o, d] is
        the 1-D weight of stencil offset o along axis d.
    """
    xg = (x - origin) * inv_dx
    base = ti.floor(xg - 0.5).cast(ti.i32)
    fx = xg - base.cast(ti.f32)
    w = ti.Matrix.zero(ti.f32, STENCIL, 3)
    for o, d in ti.static(ti.ndrange(STENCIL, 3)):
        w[o, d] = quadratic_kernel(fx[d] - o)
    return base, fx, w


@ti.func
def is_finite_vec(v) -> ti.i32:
    """1 when every component is a finite number (requires fast_math=False)."""
    ok = 1
    for d in ti.static(range(3)):
        if not (ti.abs(v[d]) <= FINITE_LIMIT):
            ok = 0
    return ok


@ti.func
def is_finite_mat(m) -> ti.i32:
    ok = 1
    for i, j in ti.static(ti.ndrange(3, 3)):
        if not (ti.abs(m[i, j]) <= FINITE_LIMIT):
            ok = 0
    return ok


@ti.func
def clamp_norm(v, limit):
    """Scale v down so that |v| <= limit."""
    out = v
    speed = v.norm()
    if speed > limit:
        out = v * (limit / speed)
    return out
