import numpy as np
import pytest
import taichi as ti

from mpm_engine.configuration import ForceFieldConfig
from mpm_engine.physics_world.solvers.mpm.mpm_force_fields import ForceFieldSet
from mpm_engine.physics_world.solvers.mpm.mpm_grid import MPMGrid
from mpm_engine.physics_world.solvers.mpm.mpm_grid_solve import GridSolver
from mpm_engine.physics_world.solvers.mpm.mpm_params import GRAVITY_RADIAL, GRAVITY_UNIFORM


def _grid_with_node(index, mass, momentum):
    grid = MPMGrid(8, (0.0, 0.0, 0.0), (1.0, 1.0, 1.0))
    m = np.zeros(grid.shape, dtype=np.float32)
    p = np.zeros(grid.shape + (3,), dtype=np.float32)
    m[index] = mass
    p[index] = momentum
    grid.mass.from_numpy(m)
    grid.momentum.from_numpy(p)
    return grid


def test_grid_rejects_bad_domain_and_resolution():
    with pytest.raises(ValueError):
        MPMGrid(8, (0.0, 0.0, 0.0), (1.0, 0.0, 1.0))
    with pytest.raises(ValueError):
        MPMGrid(2, (0.0, 0.0, 0.0), (1.0, 1.0, 1.0))


def test_grid_resolution_follows_longest_axis():
    grid = MPMGrid(20, (0.0, 0.0, 0.0), (2.0, 1.0, 0.5))
    assert grid.dx == pytest.approx(0.1)
    assert grid.resolution == (20, 10, 5)
    assert grid.shape == (23, 13, 8)


def test_ghost_nodes_extend_footprint_safe_region_to_domain():
    grid = MPMGrid(8, (0.0, -1.0, 0.0), (2.0, 1.0, 2.0))
    assert grid.dx == pytest.approx(0.25)
    assert np.allclose(grid.safe_min, [0.0, -1.0, 0.0])
    assert np.allclose(grid.safe_max, [2.0, 1.0, 2.0])
    assert np.allclose(grid.origin_position, [-0.25, -1.25, -0.25])


def test_velocity_is_momentum_over_mass_plus_gravity():
    grid = _grid_with_node((4, 4, 4), 2.0, (1.0, 0.0, -2.0))
    solver = GridSolver(grid, ForceFieldSet(), wall_mode="none")
    solver.solve(0.01, ti.math.vec3(0.0, -10.0, 0.0), GRAVITY_UNIFORM, 1e-10, 0.0)

    assert np.allclose(grid.velocity_old.to_numpy()[4, 4, 4], [0.5, 0.0, -1.0], atol=1e-6)
    assert np.allclose(grid.velocity.to_numpy()[4, 4, 4], [0.5, -0.1, -1.0], atol=1e-6)


def test_massless_nodes_stay_at_rest():
    grid = _grid_with_node((4, 4, 4), 1e-12, (5.0, 5.0, 5.0))
    solver = GridSolver(grid, ForceFieldSet(), wall_mode="none")
    solver.solve(0.01, ti.math.vec3(0.0, -10.0, 0.0), GRAVITY_UNIFORM, 1e-10, 0.0)

    assert np.all(grid.velocity.to_numpy() == 0.0)


def test_radial_gravity_points_to_domain_center():
    grid = _grid_with_node((7, 4, 4), 1.0, (0.0, 0.0, 0.0))
    solver = GridSolver(grid, ForceFieldSet(), wall_mode="none")
    solver.solve(0.1, ti.math.vec3(0.0, -10.0, 0.0), GRAVITY_RADIAL, 1e-10, 0.0)

    v = grid.velocity.to_numpy()[7, 4, 4]
    assert v[0] < 0.0
    assert np.linalg.norm(v) == pytest.approx(1.0, rel=1e-4)


@pytest.mark.parametrize("mode, expected", [
    ("slip", [0.0, 0.5, 0.0]),
    ("sticky", [0.0, 0.0, 0.0]),
    ("bounce", [0.5, 0.5, 0.0]),
])
def test_wall_modes_damp_motion_into_walls(mode, expected):
    grid = _grid_with_node((0, 4, 4), 1.0, (-1.0, 0.5, 0.0))
    solver = GridSolver(grid, ForceFieldSet(), wall_mode=mode, wall_thickness=2, wall_restitution=0.5)
    solver.solve(0.01, ti.math.vec3(0.0, 0.0, 0.0), GRAVITY_UNIFORM, 1e-10, 0.0)

    assert np.allclose(grid.velocity.to_numpy()[0, 4, 4], expected, atol=1e-6)


def test_high_wall_covers_domain_face_and_ghost_nodes():
    grid = MPMGrid(8, (0.0, 0.0, 0.0), (1.0, 1.0, 1.0))
    m = np.zeros(grid.shape, dtype=np.float32)
    p = np.zeros(grid.shape + (3,), dtype=np.float32)
    # Node 9 lies on the upper face, node 8 one cell inside it, node 10 is a ghost
    for i in (7, 8, 9, 10):
        m[i, 4, 4] = 1.0
        p[i, 4, 4] = (1.0, 0.0, 0.0)
    grid.mass.from_numpy(m)
    grid.momentum.from_numpy(p)
    GridSolver(grid, ForceFieldSet(), wall_mode="slip", wall_thickness=2).solve(
        0.01, ti.math.vec3(0.0, 0.0, 0.0), GRAVITY_UNIFORM, 1e-10, 0.0)

    v = grid.velocity.to_numpy()[:, 4, 4, 0]
    assert v[7] == pytest.approx(1.0)
    assert np.all(v[8:11] == 0.0)


def test_force_field_adds_acceleration_on_grid():
    field = ForceFieldSet([ForceFieldConfig(type="directional", direction=(1.0, 0.0, 0.0), strength=4.0,
                                            radius=10.0)])
    grid = _grid_with_node((4, 4, 4), 1.0, (0.0, 0.0, 0.0))
    GridSolver(grid, field, wall_mode="none").solve(0.5, ti.math.vec3(0.0, 0.0, 0.0), GRAVITY_UNIFORM, 1e-10, 0.0)

    assert np.allclose(grid.velocity.to_numpy()[4, 4, 4], [2.0, 0.0, 0.0], atol=1e-6)
