"""Scene runner: one physics world ticked in sequence, with interval PLY export."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from .configuration import SceneConfig, load_scene_config
from .exporter import SimulationExporter
from .physics_world.state import WorldSnapshot
from .physics_world.world import PhysicsWorld


@dataclass
class WorldContainer:
    """Owns a scene's physics world and exporter and counts frames across runs."""

    config: SceneConfig
    world: PhysicsWorld
    exporter: SimulationExporter
    current_step: int = 0
    exported: List[Path] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: SceneConfig) -> "WorldContainer":
        return cls(config=config, world=PhysicsWorld.from_config(config),
                   exporter=SimulationExporter.from_config(config.export))

    @classmethod
    def from_config_file(cls, config_path: str | Path) -> "WorldContainer":
        return cls.from_config(load_scene_config(config_path))

    def step(self, dt: float | None = None, *, export: bool = True) -> WorldSnapshot:
        """Tick the world once; the snapshot is written when the frame is on the export interval."""
        snapshot = self.world.step(dt)
        if export:
            path = self.exporter.export_step(self.current_step, snapshot)
            if path is not None:
                self.exported.append(path)
        self.current_step += 1
        return snapshot

    def run(self, steps: Optional[int] = None, *, export: bool = True,
            progress: bool = False) -> Optional[WorldSnapshot]:
        """
        Tick the world repeatedly.

        Args:
            steps: Number of ticks; defaults to ``simulation.total_steps``
            export: Write PLY snapshots on the export interval
            progress: Show a tqdm progress bar

        Returns:
            Snapshot after the last tick, or None when no tick ran
        """
        total_steps = steps if steps is not None else self.config.simulation.total_steps
        ticks = range(total_steps)
        if progress:
            ticks = tqdm(ticks, desc=f"Simulating {self.config.scene_name}")
        snapshot = None
        for _ in ticks:
            snapshot = self.step(export=export)
        if snapshot is not None:
            print(f"[WorldContainer] {self.config.scene_name}: {total_steps} steps, t={snapshot.time:.4f}s, "
                  f"{snapshot.particles.particle_count()} particles, "
                  f"{self.world.rejected_particles} emissions rejected, {len(self.exported)} frames exported")
        return snapshot
