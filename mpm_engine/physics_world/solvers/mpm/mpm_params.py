"""
Immutable per-tick parameter block handed to every MPM pass.
"""
from dataclasses import dataclass, field, replace
from typing import Tuple

from .mpm_materials import MaterialTable

# Transfer modes
TRANSFER_PIC = "pic"
TRANSFER_FLIP = "flip"
TRANSFER_HYBRID = "hybrid"

# Gravity modes
GRAVITY_UNIFORM = 0
GRAVITY_RADIAL = 1

GRAVITY_MODES = {"uniform": GRAVITY_UNIFORM, "radial": GRAVITY_RADIAL}

# Policy for particles leaving the footprint-safe region of the grid
DOMAIN_CLAMP = 0
DOMAIN_KILL = 1

DOMAIN_POLICIES = {"clamp": DOMAIN_CLAMP, "kill": DOMAIN_KILL}


def resolve_flip_ratio(transfer_mode: str, flip_ratio: float) -> float:
    """PIC and FLIP pin the blend to 0 and 1; hybrid uses the configured ratio."""
    mode = str(transfer_mode).lower()
    if mode == TRANSFER_PIC:
        return 0.0
    if mode == TRANSFER_FLIP:
        return 1.0
    return min(max(float(flip_ratio), 0.0), 1.0)


@dataclass(frozen=True)
class StepParams:
    dt: float = 2e-4  # seconds (s)
    gravity: Tuple[float, float, float] = (0.0, -9.81, 0.0)  # meters per second squared (m/s^2)
    gravity_mode: int = GRAVITY_UNIFORM
    flip_ratio: float = 0.95  # dimensionless, 0 = PIC, 1 = FLIP
    vorticity_enabled: bool = False
    vorticity_epsilon: float = 0.0  # dimensionless
    velocity_limit: float = 0.0  # meters per second (m/s), <= 0 means dx / dt
    mass_epsilon: float = 1e-10  # kilograms (kg)
    out_of_domain: int = DOMAIN_CLAMP
    time: float = 0.0  # seconds (s), simulation time at the start of the tick
    materials: MaterialTable = field(default_factory=MaterialTable.from_overrides)

    def __post_init__(self):
        object.__setattr__(self, "flip_ratio", min(max(float(self.flip_ratio), 0.0), 1.0))
        object.__setattr__(self, "gravity", tuple(float(g) for g in self.gravity))

    def with_tick(self, dt: float, time: float) -> "StepParams":
        return replace(self, dt=float(dt), time=float(time))

    def speed_limit(self, dx: float) -> float:
        return self.velocity_limit if self.velocity_limit > 0.0 else dx / self.dt
