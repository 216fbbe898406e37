"""Physics world package aggregating the MPM solver and its collaborators."""

from .emitters import EmitterManager, ParticleEmitter
from .state import ParticleSnapshot, WorldSnapshot
from .world import PhysicsWorld

__all__ = ["PhysicsWorld", "WorldSnapshot", "ParticleSnapshot", "EmitterManager", "ParticleEmitter"]
