"""Scene configuration dataclasses and loader utilities."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from importlib import import_module
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, List, Mapping, Sequence

from .physics_world.solvers.mpm.mpm_materials import MATERIAL_NAMES, PRESETS, MaterialTable
from .physics_world.solvers.mpm.mpm_params import (
    DOMAIN_POLICIES,
    GRAVITY_MODES,
    StepParams,
    resolve_flip_ratio,
)


_YAML_MODULE: ModuleType | None = None


def _load_yaml_module() -> ModuleType:
    global _YAML_MODULE
    if _YAML_MODULE is None:
        try:
            _YAML_MODULE = import_module("yaml")
        except ModuleNotFoundError as exc:  # pragma: no cover - dependency hint
            raise ImportError(
                "PyYAML is required to load scene configurations. Install it via 'pip install pyyaml'."
            ) from exc
    return _YAML_MODULE


@dataclass
class SimulationConfig:
    time_step: float = 2e-4  # seconds (s)
    total_steps: int = 1000
    gravity: Sequence[float] = (0.0, -9.81, 0.0)  # meters per second squared (m/s^2)
    gravity_mode: str = "uniform"  # uniform | radial
    transfer_mode: str = "hybrid"  # pic | flip | hybrid
    flip_ratio: float = 0.95  # dimensionless
    vorticity_enabled: bool = False
    vorticity_epsilon: float = 0.0  # dimensionless
    adaptive_timestep: bool = False
    cfl: float = 0.5  # dimensionless
    min_time_step: float = 1e-5  # seconds (s)
    max_time_step: float = 1e-2  # seconds (s)
    max_particles: int = 100000
    velocity_limit: float = 0.0  # meters per second (m/s), 0 = one cell per step
    out_of_domain: str = "clamp"  # clamp | kill
    debug_interval: int = 0
    seed: int = 0


@dataclass
class GridConfig:
    resolution: int | Sequence[int] = 64
    domain_min: Sequence[float] = (0.0, 0.0, 0.0)  # meters (m)
    domain_max: Sequence[float] = (1.0, 1.0, 1.0)  # meters (m)
    mass_epsilon: float = 1e-10  # kilograms (kg)


@dataclass
class GridBoundaryConfig:
    mode: str = "none"  # none | sticky | slip | bounce
    thickness: int = 2  # grid cells
    restitution: float = 0.5  # dimensionless


@dataclass
class BoundaryConfig:
    shape: str = "none"  # none | box | sphere | tube
    mode: str = "reflect"  # reflect | clamp | wrap | kill
    restitution: float = 0.3  # dimensionless
    friction: float = 0.0  # dimensionless
    box_min: Sequence[float] | None = None  # meters (m), defaults to the grid domain
    box_max: Sequence[float] | None = None  # meters (m)
    center: Sequence[float] | None = None  # meters (m), defaults to the domain center
    radius: float = 0.5  # meters (m)
    half_height: float = 0.5  # meters (m)
    axis: int | str = "y"


@dataclass
class ParticleBlockConfig:
    min_corner: Sequence[float]  # meters (m)
    max_corner: Sequence[float]  # meters (m)
    material: str = "water"
    particles_per_cell: int = 2  # per axis
    velocity: Sequence[float] = (0.0, 0.0, 0.0)  # meters per second (m/s)
    angular_velocity: Sequence[float] = (0.0, 0.0, 0.0)  # radians per second (rad/s), about the block center


@dataclass
class ForceFieldConfig:
    type: str = "attractor"
    position: Sequence[float] = (0.5, 0.5, 0.5)  # meters (m)
    direction: Sequence[float] = (0.0, 1.0, 0.0)  # axis for vortices, heading for directional
    strength: float = 1.0  # meters per second squared (m/s^2)
    radius: float = 1.0  # meters (m)
    falloff: str = "constant"  # constant | linear | quadratic | smooth
    noise_scale: float = 1.0  # inverse meters (1/m)
    noise_speed: float = 1.0  # dimensionless
    enabled: bool = True


@dataclass
class EmitterConfig:
    type: str = "point"  # point | sphere | disc | box | cone | ring
    pattern: str = "continuous"  # continuous | burst | pulse | fountain | explosion | stream
    material: str = "water"
    position: Sequence[float] = (0.5, 0.5, 0.5)  # meters (m)
    direction: Sequence[float] = (0.0, 1.0, 0.0)
    rate: float = 1000.0  # particles per second
    speed: float = 1.0  # meters per second (m/s)
    speed_variance: float = 0.0  # meters per second (m/s)
    spread: float = 15.0  # degrees
    radius: float = 0.05  # meters (m)
    size: Sequence[float] = (0.1, 0.1, 0.1)  # meters (m), box extent
    lifetime: float = float("inf")  # seconds (s)
    lifetime_variance: float = 0.0  # seconds (s)
    burst_count: int = 100
    pulse_interval: float = 0.5  # seconds (s)
    particle_mass: float | None = None  # kilograms (kg), defaults to one grid-sampled particle
    enabled: bool = True


@dataclass
class ExportConfig:
    output_root: Path
    particles_subdir: str = "particles"
    every_n_steps: int = 1

    def particles_dir(self) -> Path:
        return self.output_root / self.particles_subdir


@dataclass
class SceneConfig:
    scene_name: str
    simulation: SimulationConfig
    grid: GridConfig
    materials: Dict[str, Dict[str, float]] = field(default_factory=dict)
    boundary: BoundaryConfig = field(default_factory=BoundaryConfig)
    grid_boundary: GridBoundaryConfig = field(default_factory=GridBoundaryConfig)
    particle_blocks: List[ParticleBlockConfig] = field(default_factory=list)
    force_fields: List[ForceFieldConfig] = field(default_factory=list)
    emitters: List[EmitterConfig] = field(default_factory=list)
    export: ExportConfig | None = None

    def material_table(self) -> MaterialTable:
        """Material constants; presets named by particle sources apply unless overridden."""
        overrides: Dict[str, Dict[str, float]] = {}
        for source in [*self.particle_blocks, *self.emitters]:
            name = str(source.material).lower()
            if name in PRESETS and name not in MATERIAL_NAMES:
                overrides.setdefault(name, {})
        overrides.update(self.materials)
        return MaterialTable.from_overrides(overrides)

    def step_params(self) -> StepParams:
        """Immutable parameter block for the solver."""
        sim = self.simulation
        return StepParams(
            dt=sim.time_step,
            gravity=tuple(sim.gravity),
            gravity_mode=GRAVITY_MODES.get(str(sim.gravity_mode).lower(), 0),
            flip_ratio=resolve_flip_ratio(sim.transfer_mode, sim.flip_ratio),
            vorticity_enabled=bool(sim.vorticity_enabled),
            vorticity_epsilon=float(sim.vorticity_epsilon),
            velocity_limit=float(sim.velocity_limit),
            mass_epsilon=float(self.grid.mass_epsilon),
            out_of_domain=DOMAIN_POLICIES.get(str(sim.out_of_domain).lower(), 0),
            materials=self.material_table(),
        )


def _coerce_path(base_dir: Path, path_value: str | Path) -> Path:
    path = Path(path_value)
    return path if path.is_absolute() else (base_dir / path)


def _build(cls, raw: Mapping[str, Any] | None, section: str):
    """Instantiate a config dataclass, rejecting unknown keys."""
    raw = dict(raw or {})
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown keys in '{section}': {', '.join(unknown)}")
    try:
        return cls(**raw)
    except TypeError as exc:
        raise ValueError(f"Invalid '{section}' section: {exc}") from exc


def _check_vec3(value: Sequence[float], name: str) -> None:
    if value is not None and len(value) != 3:
        raise ValueError(f"'{name}' must have 3 components, got {value}")


def validate_scene_config(config: SceneConfig) -> SceneConfig:
    sim, grid = config.simulation, config.grid
    if sim.time_step <= 0.0:
        raise ValueError(f"simulation.time_step must be positive, got {sim.time_step}")
    if sim.max_particles <= 0:
        raise ValueError(f"simulation.max_particles must be positive, got {sim.max_particles}")
    if not 0.0 <= sim.flip_ratio <= 1.0:
        raise ValueError(f"simulation.flip_ratio must lie in [0, 1], got {sim.flip_ratio}")
    _check_vec3(sim.gravity, "simulation.gravity")
    _check_vec3(grid.domain_min, "grid.domain_min")
    _check_vec3(grid.domain_max, "grid.domain_max")
    if any(hi <= lo for lo, hi in zip(grid.domain_min, grid.domain_max)):
        raise ValueError(f"grid.domain_max {grid.domain_max} must exceed grid.domain_min {grid.domain_min}")
    for block in config.particle_blocks:
        _check_vec3(block.min_corner, "particle_blocks.min_corner")
        _check_vec3(block.max_corner, "particle_blocks.max_corner")
        if block.particles_per_cell <= 0:
            raise ValueError("particle_blocks.particles_per_cell must be positive")
    return config


def load_scene_config(config_path: str | Path) -> SceneConfig:
    """Load a scene configuration from YAML."""
    path = Path(config_path).expanduser().resolve()
    with path.open("r", encoding="utf-8") as handle:
        yaml_module = _load_yaml_module()
        raw = yaml_module.safe_load(handle) or {}

    return scene_config_from_dict(raw, base_dir=path.parent, default_name=path.stem)


def scene_config_from_dict(raw: Mapping[str, Any], base_dir: Path | None = None,
                           default_name: str = "scene") -> SceneConfig:
    """Build a scene configuration from an already parsed mapping."""
    base_dir = base_dir or Path.cwd()
    if "simulation" not in raw:
        raise ValueError("Scene configuration requires a 'simulation' section")

    simulation = _build(SimulationConfig, raw["simulation"], "simulation")
    grid = _build(GridConfig, raw.get("grid"), "grid")
    boundary = _build(BoundaryConfig, raw.get("boundary"), "boundary")
    grid_boundary = _build(GridBoundaryConfig, raw.get("grid_boundary"), "grid_boundary")

    particle_blocks = [
        _build(ParticleBlockConfig, entry, "particle_blocks")
        for entry in (raw.get("particle_blocks") or [])
    ]
    force_fields = [
        _build(ForceFieldConfig, entry, "force_fields")
        for entry in (raw.get("force_fields") or [])
    ]
    emitters = [
        _build(EmitterConfig, entry, "emitters")
        for entry in (raw.get("emitters") or [])
    ]

    export_cfg = raw.get("export")
    export = None
    if export_cfg:
        export = ExportConfig(
            output_root=_coerce_path(base_dir, export_cfg["output_root"]),
            particles_subdir=export_cfg.get("particles_subdir", "particles"),
            every_n_steps=int(export_cfg.get("every_n_steps", 1)),
        )

    if not particle_blocks and not emitters:
        print("Warning: No particle blocks or emitters configured, the scene starts empty.")

    return validate_scene_config(SceneConfig(
        scene_name=raw.get("scene_name", default_name),
        simulation=simulation,
        grid=grid,
        materials=dict(raw.get("materials") or {}),
        boundary=boundary,
        grid_boundary=grid_boundary,
        particle_blocks=particle_blocks,
        force_fields=force_fields,
        emitters=emitters,
        export=export,
    ))
