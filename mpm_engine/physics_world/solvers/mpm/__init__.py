"""
MPM (Material Point Method) solver module.
Provides the hybrid APIC/FLIP grid-particle core for fluids and solids.
"""

from .mpm_boundary import MPMBoundary
from .mpm_force_fields import ForceFieldSet
from .mpm_grid import MPMGrid
from .mpm_params import StepParams
from .mpm_solver import MPMSolver
from .mpm_state import MPMState

__all__ = ['MPMBoundary', 'ForceFieldSet', 'MPMGrid', 'MPMSolver', 'MPMState', 'StepParams']
