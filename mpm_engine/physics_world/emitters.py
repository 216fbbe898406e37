"""Particle emitters: birth and death of particles between simulation ticks."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, List, Sequence, TYPE_CHECKING

import numpy as np

from .solvers.mpm.mpm_materials import material_id

if TYPE_CHECKING:
    from ..configuration import EmitterConfig

EMITTER_TYPES = ("point", "sphere", "disc", "box", "cone", "ring")
EMISSION_PATTERNS = ("continuous", "burst", "pulse", "fountain", "explosion", "stream")

MIN_LIFETIME = 0.1  # seconds (s)


@dataclass
class Particle:
    position: np.ndarray  # meters (m)
    velocity: np.ndarray  # meters per second (m/s)
    mass: float  # kilograms (kg)
    material: int
    lifetime: float  # seconds (s)
    age: float = 0.0  # seconds (s)


@dataclass
class ParticleBatch:
    positions: np.ndarray
    velocities: np.ndarray
    masses: np.ndarray
    materials: np.ndarray
    lifetimes: np.ndarray

    @classmethod
    def empty(cls) -> "ParticleBatch":
        return cls(
            positions=np.zeros((0, 3), dtype=np.float32),
            velocities=np.zeros((0, 3), dtype=np.float32),
            masses=np.zeros(0, dtype=np.float32),
            materials=np.zeros(0, dtype=np.int32),
            lifetimes=np.zeros(0, dtype=np.float32),
        )

    @classmethod
    def concatenate(cls, batches: Sequence["ParticleBatch"]) -> "ParticleBatch":
        if not batches:
            return cls.empty()
        return cls(
            positions=np.concatenate([b.positions for b in batches]),
            velocities=np.concatenate([b.velocities for b in batches]),
            masses=np.concatenate([b.masses for b in batches]),
            materials=np.concatenate([b.materials for b in batches]),
            lifetimes=np.concatenate([b.lifetimes for b in batches]),
        )

    def __len__(self) -> int:
        return len(self.positions)

    def particles(self) -> List[Particle]:
        return [
            Particle(self.positions[i], self.velocities[i], float(self.masses[i]),
                     int(self.materials[i]), float(self.lifetimes[i]))
            for i in range(len(self))
        ]


def _orthonormal_basis(direction: np.ndarray):
    d = direction / max(float(np.linalg.norm(direction)), 1e-8)
    helper = np.array([0.0, 1.0, 0.0]) if abs(d[1]) < 0.9 else np.array([1.0, 0.0, 0.0])
    p1 = np.cross(d, helper)
    p1 /= np.linalg.norm(p1)
    p2 = np.cross(d, p1)
    return d, p1, p2


@dataclass
class ParticleEmitter:
    """One emitter: samples positions, velocities and lifetimes for new particles."""

    config: EmitterConfig
    particle_mass: float
    rng: np.random.Generator
    accumulator: float = 0.0
    time_since_burst: float = field(default=float("inf"))
    has_exploded: bool = False

    def __post_init__(self):
        cfg = self.config
        self.kind = str(cfg.type).lower() if str(cfg.type).lower() in EMITTER_TYPES else "point"
        self.pattern = str(cfg.pattern).lower() if str(cfg.pattern).lower() in EMISSION_PATTERNS else "continuous"
        self.material = material_id(cfg.material)
        self.origin = np.asarray(cfg.position, dtype=np.float64)
        self.axis, self.perp1, self.perp2 = _orthonormal_basis(np.asarray(cfg.direction, dtype=np.float64))

    def _sample_positions(self, count: int) -> np.ndarray:
        cfg, rng = self.config, self.rng
        if self.kind == "sphere":
            dirs = rng.normal(size=(count, 3))
            dirs /= np.maximum(np.linalg.norm(dirs, axis=1, keepdims=True), 1e-8)
            offsets = dirs * cfg.radius
        elif self.kind in ("disc", "cone", "ring"):
            angle = rng.uniform(0.0, 2.0 * math.pi, count)
            if self.kind == "disc":
                r = np.sqrt(rng.uniform(0.0, 1.0, count)) * cfg.radius
            elif self.kind == "cone":
                r = rng.uniform(0.0, 1.0, count) * math.tan(math.radians(cfg.spread)) * cfg.radius
            else:
                r = np.full(count, cfg.radius)
            offsets = (r * np.cos(angle))[:, None] * self.perp1 + (r * np.sin(angle))[:, None] * self.perp2
        elif self.kind == "box":
            offsets = (rng.uniform(0.0, 1.0, (count, 3)) - 0.5) * np.asarray(cfg.size, dtype=np.float64)
        else:
            offsets = np.zeros((count, 3))
        return self.origin + offsets

    def _sample_velocities(self, count: int) -> np.ndarray:
        cfg, rng = self.config, self.rng
        spread = math.radians(cfg.spread)
        theta = rng.uniform(-1.0, 1.0, count) * spread
        phi = rng.uniform(0.0, 2.0 * math.pi, count)
        dirs = (self.axis[None, :]
                + (np.sin(theta) * np.cos(phi))[:, None] * self.perp1
                + (np.sin(theta) * np.sin(phi))[:, None] * self.perp2)
        dirs /= np.maximum(np.linalg.norm(dirs, axis=1, keepdims=True), 1e-8)
        speed = cfg.speed + rng.uniform(-1.0, 1.0, count) * cfg.speed_variance
        return dirs * speed[:, None]

    def _sample_lifetimes(self, count: int) -> np.ndarray:
        cfg = self.config
        if math.isinf(cfg.lifetime):
            return np.full(count, np.inf)
        lifetime = cfg.lifetime + self.rng.uniform(-1.0, 1.0, count) * cfg.lifetime_variance
        return np.maximum(lifetime, MIN_LIFETIME)

    def _make(self, count: int) -> ParticleBatch:
        if count <= 0:
            return ParticleBatch.empty()
        velocities = self._sample_velocities(count)
        if self.pattern == "fountain":
            velocities[:, 1] += 0.5 * self.config.speed
        elif self.pattern == "explosion":
            dirs = self.rng.normal(size=(count, 3))
            dirs /= np.maximum(np.linalg.norm(dirs, axis=1, keepdims=True), 1e-8)
            velocities = dirs * self.config.speed
        return ParticleBatch(
            positions=self._sample_positions(count).astype(np.float32),
            velocities=velocities.astype(np.float32),
            masses=np.full(count, self.particle_mass, dtype=np.float32),
            materials=np.full(count, self.material, dtype=np.int32),
            lifetimes=self._sample_lifetimes(count).astype(np.float32),
        )

    def spawn(self) -> Particle:
        """A single new particle, independent of the emission pattern."""
        return self._make(1).particles()[0]

    def emit(self, dt: float) -> ParticleBatch:
        """Particles born during a step of length dt."""
        cfg = self.config
        if not cfg.enabled:
            return ParticleBatch.empty()
        count = 0
        if self.pattern in ("continuous", "fountain", "stream"):
            exact = cfg.rate * dt + self.accumulator
            count = int(math.floor(exact))
            self.accumulator = exact - count
        elif self.pattern == "burst":
            if not self.has_exploded:
                count = cfg.burst_count
                self.has_exploded = True
        elif self.pattern == "pulse":
            self.time_since_burst = 0.0 if math.isinf(self.time_since_burst) else self.time_since_burst + dt
            if self.time_since_burst == 0.0 or self.time_since_burst >= cfg.pulse_interval:
                count = cfg.burst_count
                self.time_since_burst = 0.0
        elif self.pattern == "explosion":
            if not self.has_exploded:
                count = cfg.burst_count
                self.has_exploded = True
                self.time_since_burst = 0.0
            else:
                self.time_since_burst += dt
                if self.time_since_burst >= cfg.pulse_interval:
                    self.has_exploded = False
        return self._make(count)

    @staticmethod
    def should_kill(particle: Particle) -> bool:
        return particle.age >= particle.lifetime


class EmitterManager:
    """Runs every emitter's birth/death phase once per tick, outside the solver passes."""

    def __init__(self, configs: Sequence[EmitterConfig], mass_for: Callable[[int], float], seed: int = 0):
        self.rng = np.random.default_rng(seed)
        self.emitters: List[ParticleEmitter] = []
        for cfg in configs:
            mat = material_id(cfg.material)
            mass = cfg.particle_mass if cfg.particle_mass is not None else mass_for(mat)
            self.emitters.append(ParticleEmitter(cfg, float(mass), self.rng))

    def emit(self, dt: float) -> ParticleBatch:
        return ParticleBatch.concatenate([e.emit(dt) for e in self.emitters])

    @staticmethod
    def keep_mask(age: np.ndarray, lifetime: np.ndarray, alive: np.ndarray) -> np.ndarray:
        """Vectorized inverse of ``should_kill`` that also drops particles killed by the boundary."""
        return (np.asarray(alive) == 1) & (np.asarray(age) < np.asarray(lifetime))
