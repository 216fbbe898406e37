import dataclasses
import math

import numpy as np
import pytest
import taichi as ti

from mpm_engine.physics_world.solvers.mpm.mpm_materials import (
    DEFAULT_CONSTANTS,
    ELASTIC,
    FLUID,
    K_FRICTION_ALPHA,
    K_REST_DENSITY,
    K_VISCOSITY,
    N_COEFFS,
    N_MATERIALS,
    SAND,
    VISCOUS,
    MaterialTable,
    drucker_prager_project,
    material_id,
    resolve_material,
    tait_pressure,
)


@pytest.mark.parametrize("name, expected", [
    ("fluid", FLUID),
    ("Elastic", ELASTIC),
    ("honey", VISCOUS),
    ("sand", SAND),
    ("unobtainium", FLUID),
    (5, VISCOUS),
    (99, FLUID),
    (-1, FLUID),
])
def test_material_id_resolves_names_and_falls_back_to_fluid(name, expected):
    assert material_id(name) == expected


def test_table_shape_and_defaults():
    table = MaterialTable.from_overrides()
    data = table.to_numpy()
    assert data.shape == (N_MATERIALS, N_COEFFS)
    assert data[SAND, K_REST_DENSITY] == pytest.approx(1600.0)
    assert data[SAND, K_FRICTION_ALPHA] > 0.0


def test_preset_overrides_apply_to_material_type():
    table = MaterialTable.from_overrides({"honey": {"viscosity": 55.0}})
    assert table[VISCOUS].viscosity == pytest.approx(55.0)
    assert table[VISCOUS].rest_density == pytest.approx(1400.0)
    assert table[FLUID] == DEFAULT_CONSTANTS[FLUID]


def test_table_is_immutable():
    table = MaterialTable.from_overrides()
    with pytest.raises(dataclasses.FrozenInstanceError):
        table.constants = ()


def test_lame_parameters():
    mu, la = DEFAULT_CONSTANTS[ELASTIC].lame_parameters()
    assert mu == pytest.approx(5.0e4 / 2.6)
    assert la == pytest.approx(5.0e4 * 0.3 / (1.3 * 0.4))


def test_friction_alpha_matches_drucker_prager_cone():
    s = math.sin(math.radians(30.0))
    expected = math.sqrt(2.0 / 3.0) * 2.0 * s / (3.0 - s)
    assert DEFAULT_CONSTANTS[SAND].friction_alpha() == pytest.approx(expected)


def test_unknown_material_row_uses_fluid_constants_in_kernels():
    out = np.zeros(2, dtype=np.int32)

    @ti.kernel
    def resolve(res: ti.types.ndarray()):
        res[0] = resolve_material(12)
        res[1] = resolve_material(-3)

    resolve(out)
    assert out.tolist() == [FLUID, FLUID]


def test_tait_pressure_is_zero_below_rest_density():
    out = np.zeros(3, dtype=np.float32)

    @ti.kernel
    def pressure(res: ti.types.ndarray()):
        res[0] = tait_pressure(800.0, 1000.0, 5.0e4, 5.0)
        res[1] = tait_pressure(1000.0, 1000.0, 5.0e4, 5.0)
        res[2] = tait_pressure(1100.0, 1000.0, 5.0e4, 5.0)

    pressure(out)
    assert out[0] == 0.0
    assert out[1] == pytest.approx(0.0, abs=1e-3)
    assert out[2] == pytest.approx(5.0e4 * (1.1 ** 5 - 1.0), rel=1e-4)


def test_sand_under_tension_projects_to_cone_tip():
    F = np.diag([1.1, 1.05, 1.02]).astype(np.float32)
    out = np.zeros((3, 3), dtype=np.float32)
    delta = np.zeros(1, dtype=np.float32)

    @ti.kernel
    def project(f: ti.types.ndarray(), res: ti.types.ndarray(), d: ti.types.ndarray()):
        m = ti.Matrix.zero(ti.f32, 3, 3)
        for i, j in ti.static(ti.ndrange(3, 3)):
            m[i, j] = f[i, j]
        F_new, dp = drucker_prager_project(m, 1.0e4, 1.0e4, 0.2)
        for i, j in ti.static(ti.ndrange(3, 3)):
            res[i, j] = F_new[i, j]
        d[0] = dp

    project(F, out, delta)
    assert np.allclose(out, np.eye(3), atol=1e-4)
    assert delta[0] > 0.0


def test_viscous_material_is_more_viscous_than_water():
    table = MaterialTable.from_overrides()
    assert table.to_numpy()[VISCOUS, K_VISCOSITY] > table.to_numpy()[FLUID, K_VISCOSITY]
