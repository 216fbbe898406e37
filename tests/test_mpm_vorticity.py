import numpy as np

from mpm_engine.physics_world.solvers.mpm.mpm_grid import GHOST_LOW, MPMGrid
from mpm_engine.physics_world.solvers.mpm.mpm_params import StepParams
from mpm_engine.physics_world.solvers.mpm.mpm_vorticity import NoVorticity, VorticityPass
from tests.physics_helpers import kinetic_energy


def _rotating_grid(omega_z):
    grid = MPMGrid(16, (0.0, 0.0, 0.0), (1.0, 1.0, 1.0))
    idx = np.stack(np.meshgrid(*[np.arange(n) for n in grid.shape], indexing="ij"), axis=-1).astype(np.float32)
    rel = (idx - GHOST_LOW) * grid.dx - 0.5
    velocity = np.zeros_like(rel)
    velocity[..., 0] = -omega_z * rel[..., 1]
    velocity[..., 1] = omega_z * rel[..., 0]
    grid.velocity.from_numpy(velocity)
    return grid


def test_curl_of_rigid_rotation_is_twice_angular_velocity():
    grid = _rotating_grid(3.0)
    pass_ = VorticityPass(grid)
    pass_.run()

    omega = pass_.omega.to_numpy()
    assert np.allclose(omega[1:-1, 1:-1, 1:-1], [0.0, 0.0, 6.0], atol=1e-3)
    assert np.isclose(pass_.peak_curl(), 6.0, atol=1e-3)


def test_curl_is_zero_on_boundary_nodes():
    grid = _rotating_grid(3.0)
    pass_ = VorticityPass(grid)
    pass_.run()

    omega = pass_.omega.to_numpy()
    for face in (omega[0], omega[-1], omega[:, 0], omega[:, -1], omega[:, :, 0], omega[:, :, -1]):
        assert np.all(face == 0.0)


def test_vorticity_strategy_follows_parameters(make_solver):
    solver = make_solver(vorticity_enabled=False)
    solver.step()
    assert isinstance(solver.vorticity, NoVorticity)

    solver.configure(StepParams(dt=1e-3, gravity=(0.0, 0.0, 0.0), vorticity_enabled=True,
                                vorticity_epsilon=0.1))
    solver.step()
    assert isinstance(solver.vorticity, VorticityPass)


def _gaussian_vortex(make_solver, seed_block, table, epsilon, flip_ratio):
    solver = make_solver(resolution=32, max_particles=10000, flip_ratio=flip_ratio, materials=table,
                         vorticity_enabled=True, vorticity_epsilon=epsilon)
    count = seed_block(solver, (0.3, 0.3, 0.4), (0.7, 0.7, 0.6))
    rel = solver.state.get_positions() - 0.5
    r2 = rel[:, 0] ** 2 + rel[:, 1] ** 2
    # Gaussian vortex about the z axis; curl peaks on the axis
    swirl = 4.0 * np.exp(-r2 / 0.01)
    velocities = np.zeros((solver.state.max_particles, 3), dtype=np.float32)
    velocities[:count, 0] = -swirl * rel[:, 1]
    velocities[:count, 1] = swirl * rel[:, 0]
    solver.state.v.from_numpy(velocities)
    return solver


def _swirl_energy(make_solver, seed_block, table, epsilon, steps=20):
    solver = _gaussian_vortex(make_solver, seed_block, table, epsilon, flip_ratio=0.0)
    for _ in range(steps):
        solver.step()
    return kinetic_energy(solver.state)


def test_confinement_preserves_rotational_energy(make_solver, seed_block, stress_free_table):
    without = _swirl_energy(make_solver, seed_block, stress_free_table, 0.0)
    with_confinement = _swirl_energy(make_solver, seed_block, stress_free_table, 0.5)
    assert with_confinement > without


def _peak_curl_history(make_solver, seed_block, table, epsilon, steps=300):
    solver = _gaussian_vortex(make_solver, seed_block, table, epsilon, flip_ratio=0.95)
    solver.step()
    initial = solver.vorticity.peak_curl()
    for _ in range(steps):
        solver.step()
    return initial, solver.vorticity.peak_curl()


def test_confinement_sustains_peak_curl_without_runaway(make_solver, seed_block, stress_free_table):
    initial, decayed = _peak_curl_history(make_solver, seed_block, stress_free_table, 0.0)
    _, confined = _peak_curl_history(make_solver, seed_block, stress_free_table, 0.5)

    assert initial > 1.0
    assert decayed < 0.9 * initial
    assert decayed < confined < 1.5 * initial
