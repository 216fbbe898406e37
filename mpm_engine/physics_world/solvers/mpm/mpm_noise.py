"""
Triangle-wave fractal noise used by plasma particles and turbulence force fields.
"""
import taichi as ti

NOISE_OCTAVES = 4
# Mean of the raw fractal sum; subtracting it centres the field around zero.
NOISE_MEAN = 0.25 * (1.0 / 2.1 + 1.0 / 3.15 + 1.0 / 4.725 + 1.0 / 7.0875)


@ti.func
def tri(x):
    return ti.abs(ti.math.fract(x) - 0.5)


@ti.func
def tri3(p):
    return ti.Vector([
        tri(p[2] + tri(p[1])),
        tri(p[2] + tri(p[0])),
        tri(p[1] + tri(p[0])),
    ])


@ti.func
def tri_noise_vec(position, speed, time):
    """
    Animated vector noise in roughly [-0.3, 0.3] per component.

    Args:
        position: Sample position
        speed: Animation speed multiplier
        time: Simulation time (s)
    """
    p = position
    z = 1.4
    rz = ti.Vector([0.0, 0.0, 0.0])
    bp = position
    for _ in ti.static(range(NOISE_OCTAVES)):
        dg = tri3(bp * 2.0)
        p += dg + time * 0.1 * speed
        bp *= 1.8
        z *= 1.5
        p *= 1.2
        t = tri(ti.Vector([p[2], p[0], p[1]]) + tri(p + tri(ti.Vector([p[1], p[2], p[0]]))))
        rz += t / z
        bp += 0.14
    return rz - NOISE_MEAN
