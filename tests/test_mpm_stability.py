import numpy as np

from mpm_engine.physics_world.solvers.mpm.mpm_materials import ELASTIC, SAND, SNOW


def test_non_finite_particles_are_reset(make_solver, seed_block):
    solver = make_solver(gravity=(0.0, -9.81, 0.0), dt=1e-4)
    count = seed_block(solver, (0.4, 0.4, 0.4), (0.6, 0.6, 0.6), material="water")
    v = solver.state.v.to_numpy()
    v[0] = [np.inf, 0.0, 0.0]
    v[1] = [np.nan, np.nan, np.nan]
    solver.state.v.from_numpy(v)
    x = solver.state.x.to_numpy()
    x[2] = [np.nan, 0.5, 0.5]
    solver.state.x.from_numpy(x)

    solver.step()

    assert solver.state.count == count
    assert np.isfinite(solver.state.get_positions()).all()
    assert np.isfinite(solver.state.get_velocities()).all()
    assert np.isfinite(solver.state.get_affine()).all()
    assert solver.state.nonfinite_count[None] >= 3


def test_infinite_velocity_does_not_poison_neighbours(make_solver, seed_block):
    solver = make_solver(dt=1e-4)
    seed_block(solver, (0.4, 0.4, 0.4), (0.6, 0.6, 0.6), material="water")
    v = solver.state.v.to_numpy()
    v[0] = [np.inf, -np.inf, np.inf]
    solver.state.v.from_numpy(v)

    for _ in range(5):
        solver.step()

    assert np.isfinite(solver.grid.velocity.to_numpy()).all()
    assert np.isfinite(solver.state.get_velocities()).all()


def test_solids_stay_finite_under_large_deformation(make_solver):
    solver = make_solver(gravity=(0.0, -9.81, 0.0), dt=1e-4, wall_mode="sticky")
    rng = np.random.default_rng(2)
    positions = rng.uniform(0.2, 0.8, (300, 3))
    materials = np.repeat([ELASTIC, SAND, SNOW], 100)
    velocities = rng.normal(scale=3.0, size=(300, 3))
    solver.add_particles(positions, velocities=velocities, masses=np.full(300, 2e-3), materials=materials)

    for _ in range(30):
        solver.step()

    assert np.isfinite(solver.state.get_positions()).all()
    assert np.isfinite(solver.state.F.to_numpy()[:300]).all()
    jp = solver.state.Jp.to_numpy()[:300]
    assert np.all((jp >= 0.6 - 1e-6) & (jp <= 20.0 + 1e-6))


def test_particles_stay_inside_grid_footprint(make_solver):
    solver = make_solver(dt=1e-2, gravity=(0.0, -50.0, 0.0))
    solver.add_particles(np.array([[0.5, 0.1, 0.5], [0.07, 0.5, 0.95]]), velocities=np.array([[0.0, -5.0, 0.0],
                                                                                            [-5.0, 0.0, 5.0]]),
                         masses=np.full(2, 1e-4))
    for _ in range(5):
        solver.step()

    x = solver.state.get_positions()
    assert np.all(x >= solver.grid.safe_min - 1e-6)
    assert np.all(x <= solver.grid.safe_max + 1e-6)
