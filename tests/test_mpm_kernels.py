import numpy as np
import taichi as ti

from mpm_engine.physics_world.solvers.mpm.mpm_kernels import STENCIL, bspline_stencil, clamp_norm, is_finite_vec


def _stencil_moments(positions, inv_dx):
    """Zeroth, first and second moments of the stencil weights for each position."""
    n = len(positions)
    weight_sum = np.zeros(n, dtype=np.float32)
    first = np.zeros((n, 3), dtype=np.float32)
    second = np.zeros((n, 3, 3), dtype=np.float32)

    @ti.kernel
    def moments(pos: ti.types.ndarray(), ws: ti.types.ndarray(), m1: ti.types.ndarray(), m2: ti.types.ndarray()):
        for p in range(pos.shape[0]):
            x = ti.Vector([pos[p, 0], pos[p, 1], pos[p, 2]])
            base, fx, w = bspline_stencil(x, ti.Vector([0.0, 0.0, 0.0]), inv_dx)
            total = 0.0
            mean = ti.Vector.zero(ti.f32, 3)
            spread = ti.Matrix.zero(ti.f32, 3, 3)
            for i, j, k in ti.static(ti.ndrange(STENCIL, STENCIL, STENCIL)):
                weight = w[i, 0] * w[j, 1] * w[k, 2]
                dpos = ti.Vector([i, j, k]).cast(ti.f32) - fx
                total += weight
                mean += weight * dpos
                spread += weight * dpos.outer_product(dpos)
            ws[p] = total
            for a in ti.static(range(3)):
                m1[p, a] = mean[a]
                for b in ti.static(range(3)):
                    m2[p, a, b] = spread[a, b]

    moments(positions, weight_sum, first, second)
    return weight_sum, first, second


def test_bspline_weights_form_partition_of_unity():
    positions = np.random.default_rng(3).uniform(0.2, 0.8, (64, 3)).astype(np.float32)
    weight_sum, _, _ = _stencil_moments(positions, 16.0)
    assert np.allclose(weight_sum, 1.0, atol=1e-5)


def test_bspline_first_moment_vanishes_and_second_is_quarter_identity():
    positions = np.random.default_rng(4).uniform(0.2, 0.8, (32, 3)).astype(np.float32)
    _, first, second = _stencil_moments(positions, 16.0)
    assert np.allclose(first, 0.0, atol=1e-5)
    assert np.allclose(second, 0.25 * np.eye(3)[None], atol=1e-5)


def test_is_finite_vec_flags_nan_and_inf():
    values = np.array([[1.0, 2.0, 3.0], [np.nan, 0.0, 0.0], [0.0, np.inf, 0.0], [0.0, 0.0, -np.inf]],
                      dtype=np.float32)
    flags = np.zeros(len(values), dtype=np.int32)

    @ti.kernel
    def check(vals: ti.types.ndarray(), out: ti.types.ndarray()):
        for i in range(vals.shape[0]):
            out[i] = is_finite_vec(ti.Vector([vals[i, 0], vals[i, 1], vals[i, 2]]))

    check(values, flags)
    assert flags.tolist() == [1, 0, 0, 0]


def test_clamp_norm_limits_speed_and_keeps_direction():
    out = np.zeros(3, dtype=np.float32)

    @ti.kernel
    def clamp(res: ti.types.ndarray()):
        v = clamp_norm(ti.Vector([3.0, 4.0, 0.0]), 2.5)
        for d in ti.static(range(3)):
            res[d] = v[d]

    clamp(out)
    assert np.allclose(out, [1.5, 2.0, 0.0], atol=1e-6)
