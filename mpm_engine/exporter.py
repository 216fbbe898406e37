"""Exporter that writes particle snapshots as ASCII PLY files.

Output structure:
  outputs/
  └── particles/
      ├── particles_00000.ply
      ├── particles_00001.ply
      ...
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .configuration import ExportConfig
from .physics_world.state import WorldSnapshot


@dataclass
class SimulationExporter:
    output_root: Path
    particles_dirname: str = "particles"
    every_n_steps: int = 1

    @classmethod
    def from_config(cls, config: Optional[ExportConfig]) -> "SimulationExporter":
        if config is None:
            exporter = cls(output_root=Path("outputs"))
        else:
            exporter = cls(
                output_root=config.output_root,
                particles_dirname=config.particles_subdir,
                every_n_steps=max(int(config.every_n_steps), 1),
            )
        exporter._ensure_directories()
        return exporter

    def _ensure_directories(self) -> None:
        (self.output_root / self.particles_dirname).mkdir(parents=True, exist_ok=True)

    def particle_path(self, step_index: int) -> Path:
        return self.output_root / self.particles_dirname / f"particles_{step_index:05d}.ply"

    def export_step(self, step_index: int, snapshot: WorldSnapshot) -> Optional[Path]:
        """Write the snapshot when ``step_index`` falls on the export interval."""
        if step_index % self.every_n_steps != 0:
            return None
        path = self.particle_path(step_index)
        self._write_particles_ply(path, snapshot)
        return path

    def _write_particles_ply(self, path: Path, snapshot: WorldSnapshot) -> None:
        particles = snapshot.particles
        count = particles.particle_count()
        with path.open("w", encoding="utf-8") as handle:
            handle.write("ply\n")
            handle.write("format ascii 1.0\n")
            handle.write(f"comment time {snapshot.time:.6f}\n")
            handle.write(f"element vertex {count}\n")
            handle.write("property float x\nproperty float y\nproperty float z\n")
            handle.write("property float vx\nproperty float vy\nproperty float vz\n")
            handle.write("property float density\nproperty float smoothed_density\n")
            handle.write("property int material\n")
            handle.write("end_header\n")
            for pos, vel, density, shown, material in zip(particles.positions, particles.velocities,
                                                          particles.densities, particles.smoothed_densities,
                                                          particles.materials):
                handle.write(
                    f"{pos[0]:.6f} {pos[1]:.6f} {pos[2]:.6f} "
                    f"{vel[0]:.6f} {vel[1]:.6f} {vel[2]:.6f} {density:.6f} {shown:.6f} {int(material)}\n"
                )
