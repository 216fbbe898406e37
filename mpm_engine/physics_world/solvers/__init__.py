"""Solver collection for the physics world."""

from .mpm import MPMSolver

__all__ = ["MPMSolver"]
