import numpy as np

from mpm_engine.physics_world.solvers.mpm.mpm_materials import RIGID
from tests.physics_helpers import kinetic_energy


def test_apic_round_trip_recovers_velocity_and_affine(make_solver):
    solver = make_solver(flip_ratio=1.0, dt=1e-4)
    omega = np.array([0.0, 0.0, 2.0])
    # Skew-symmetric affine matrix of a rigid rotation
    C = np.array([[0.0, -omega[2], omega[1]],
                  [omega[2], 0.0, -omega[0]],
                  [-omega[1], omega[0], 0.0]], dtype=np.float32)
    v = np.array([0.3, -0.1, 0.2], dtype=np.float32)
    solver.add_particles(np.array([[0.52, 0.47, 0.51]]), velocities=v[None], masses=np.array([1e-3]),
                         materials=np.array([RIGID]), affine=C[None])

    solver.step()

    assert np.allclose(solver.state.get_velocities()[0], v, atol=1e-4)
    assert np.allclose(solver.state.get_affine()[0], C, atol=1e-3)


def test_fluid_particle_round_trips_velocity_and_affine_at_full_flip(make_solver, stress_free_table):
    solver = make_solver(flip_ratio=1.0, dt=1e-4, materials=stress_free_table)
    C = np.array([[0.5, -1.0, 0.2],
                  [1.5, -0.3, 0.0],
                  [0.1, 0.4, -0.2]], dtype=np.float32)
    v = np.array([-0.2, 0.4, 0.1], dtype=np.float32)
    solver.add_particles(np.array([[0.46, 0.53, 0.5]]), velocities=v[None], masses=np.array([1e-3]),
                         affine=C[None])

    solver.step()

    assert np.allclose(solver.state.get_velocities()[0], v, atol=1e-4)
    assert np.allclose(solver.state.get_affine()[0], C, atol=1e-3)


def test_rigid_material_keeps_only_rotational_affine(make_solver):
    solver = make_solver(flip_ratio=1.0, dt=1e-4)
    shear = np.array([[0.0, 1.0, 0.0], [0.0, 0.0, 0.0], [0.0, 0.0, 0.0]], dtype=np.float32)
    solver.add_particles(np.array([[0.5, 0.5, 0.5]]), masses=np.array([1e-3]),
                         materials=np.array([RIGID]), affine=shear[None])

    solver.step()

    C = solver.state.get_affine()[0]
    assert np.allclose(C, -C.T, atol=1e-4)
    assert np.allclose(C, 0.5 * (shear - shear.T), atol=1e-3)


def _energy_after_transfers(make_solver, seed_block, table, flip_ratio):
    solver = make_solver(flip_ratio=flip_ratio, materials=table)
    count = seed_block(solver, (0.375, 0.375, 0.375), (0.625, 0.625, 0.625))
    noise = np.random.default_rng(11).uniform(-0.1, 0.1, (count, 3)).astype(np.float32)
    solver.state.v.from_numpy(np.pad(noise, ((0, solver.state.max_particles - count), (0, 0))))
    for _ in range(5):
        solver.step()
    return kinetic_energy(solver.state)


def test_pic_dissipates_more_than_hybrid_which_dissipates_more_than_flip(make_solver, seed_block,
                                                                           stress_free_table):
    pic = _energy_after_transfers(make_solver, seed_block, stress_free_table, 0.0)
    hybrid = _energy_after_transfers(make_solver, seed_block, stress_free_table, 0.95)
    flip = _energy_after_transfers(make_solver, seed_block, stress_free_table, 1.0)

    assert pic < hybrid < flip


def test_unknown_material_behaves_like_fluid(make_solver):
    runs = []
    for material in (0, 42):
        solver = make_solver(gravity=(0.0, -9.81, 0.0), dt=1e-4)
        solver.add_particles(np.array([[0.5, 0.6, 0.5]]), velocities=np.array([[0.1, 0.0, 0.0]]),
                             masses=np.array([1e-3]), materials=np.array([material]))
        for _ in range(3):
            solver.step()
        runs.append((solver.state.get_positions()[0], solver.state.get_velocities()[0]))

    assert np.allclose(runs[0][0], runs[1][0], atol=1e-6)
    assert np.allclose(runs[0][1], runs[1][1], atol=1e-6)


def test_plasma_particles_are_pushed_by_noise(make_solver):
    solver = make_solver(dt=1e-3)
    solver.add_particles(np.array([[0.5, 0.5, 0.5], [0.4, 0.6, 0.45]]), masses=np.full(2, 1e-3),
                         materials=np.array([7, 7]))
    for _ in range(3):
        solver.step()
    assert np.linalg.norm(solver.state.get_velocities(), axis=1).max() > 0.0


def test_density_is_estimated_from_grid_mass(make_solver, seed_block):
    solver = make_solver(max_particles=8192, dt=1e-4)
    seed_block(solver, (0.25, 0.25, 0.25), (0.75, 0.75, 0.75), material="water")
    solver.step()

    densities = solver.state.get_densities()
    interior = np.all(np.abs(solver.state.get_positions() - 0.5) < 0.06, axis=1)
    assert interior.any()
    assert np.allclose(densities[interior], 1000.0, rtol=0.05)
