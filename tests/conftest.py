import pytest
import taichi as ti

from mpm_engine.configuration import ParticleBlockConfig
from mpm_engine.physics_world.solvers.mpm.mpm_materials import MaterialTable
from mpm_engine.physics_world.solvers.mpm.mpm_params import StepParams
from mpm_engine.physics_world.solvers.mpm.mpm_solver import MPMSolver
from mpm_engine.physics_world.world import sample_block


@pytest.fixture(autouse=True)
def taichi_cpu():
    ti.init(arch=ti.cpu, fast_math=False, random_seed=0)
    yield
    ti.reset()


@pytest.fixture
def stress_free_table():
    """Fluid without pressure or viscosity, so the grid only carries transfers."""
    return MaterialTable.from_overrides({"fluid": {"stiffness": 0.0, "viscosity": 0.0}})


@pytest.fixture
def make_solver():
    def factory(resolution=16, max_particles=4096, wall_mode="none", **param_kwargs):
        param_kwargs.setdefault("dt", 1e-3)
        param_kwargs.setdefault("gravity", (0.0, 0.0, 0.0))
        params = StepParams(**param_kwargs)
        return MPMSolver(max_particles=max_particles, grid_resolution=resolution,
                         params=params, wall_mode=wall_mode)
    return factory


@pytest.fixture
def seed_block():
    def seed(solver, lo, hi, material="fluid", velocity=(0.0, 0.0, 0.0), angular_velocity=(0.0, 0.0, 0.0)):
        block = ParticleBlockConfig(min_corner=lo, max_corner=hi, material=material,
                                    velocity=velocity, angular_velocity=angular_velocity)
        positions, velocities, masses, materials = sample_block(block, solver.grid.dx, solver.params.materials)
        solver.add_particles(positions, velocities=velocities, masses=masses, materials=materials, strict=True)
        return len(positions)
    return seed
