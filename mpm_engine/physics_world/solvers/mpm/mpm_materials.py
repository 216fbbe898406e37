"""
MPM material models (fluid, elastic, sand, snow, foam, viscous, rigid, plasma).

Every material is a branch of two pure Taichi functions selected by the
particle's material id:

* ``compute_stress`` - stress and volume used by the P2G stress pass.
* ``update_material_state`` - evolution of the per-particle material state
  (deformation gradient, snow plastic ratio, sand plastic strain) in G2P.

Per-material constants live in a small ``(N_MATERIALS, N_COEFFS)`` table that is
uploaded once per tick from a frozen ``MaterialTable``.
"""
import math
from dataclasses import dataclass, replace
from typing import Dict, Mapping, Optional, Tuple, Union

import numpy as np
import taichi as ti

# Material type constants
FLUID = 0
ELASTIC = 1
SAND = 2
SNOW = 3
FOAM = 4
VISCOUS = 5
RIGID = 6
PLASMA = 7
N_MATERIALS = 8

MATERIAL_NAMES = {
    "fluid": FLUID,
    "elastic": ELASTIC,
    "sand": SAND,
    "snow": SNOW,
    "foam": FOAM,
    "viscous": VISCOUS,
    "rigid": RIGID,
    "plasma": PLASMA,
}

# Column layout of the coefficient table
K_REST_DENSITY = 0
K_STIFFNESS = 1
K_EOS_GAMMA = 2
K_VISCOSITY = 3
K_MU = 4
K_LAMBDA = 5
K_HARDENING = 6
K_CRIT_COMPRESSION = 7
K_CRIT_STRETCH = 8
K_FRICTION_ALPHA = 9
K_NOISE_STRENGTH = 10
K_NOISE_SCALE = 11
N_COEFFS = 12

# Fluid-like volumes use max(density, DENSITY_FLOOR * rest_density)
DENSITY_FLOOR = 0.1
# Snow plastic volume ratio is kept inside this range
JP_MIN = 0.6
JP_MAX = 20.0
# Smallest singular value allowed into the Hencky strain log
SIGMA_FLOOR = 1.0e-4


@dataclass(frozen=True)
class MaterialConstants:
    rest_density: float = 1000.0  # kilograms per cubic meter (kg/m^3)
    stiffness: float = 5.0e4  # Pascals (Pa), Tait equation of state
    eos_gamma: float = 5.0  # dimensionless
    viscosity: float = 0.1  # Pascal seconds (Pa·s)
    youngs_modulus: float = 0.0  # Pascals (Pa)
    poisson_ratio: float = 0.2  # dimensionless
    hardening: float = 0.0  # dimensionless (snow xi)
    critical_compression: float = 2.5e-2  # dimensionless (snow theta_c)
    critical_stretch: float = 4.5e-3  # dimensionless (snow theta_s)
    friction_angle: float = 0.0  # degrees (sand)
    noise_strength: float = 0.0  # meters per second squared (m/s^2)
    noise_scale: float = 1.0  # inverse meters (1/m)

    def lame_parameters(self) -> Tuple[float, float]:
        E, nu = self.youngs_modulus, self.poisson_ratio
        mu = E / (2.0 * (1.0 + nu))
        la = E * nu / ((1.0 + nu) * (1.0 - 2.0 * nu))
        return mu, la

    def friction_alpha(self) -> float:
        """Drucker-Prager cone coefficient from the friction angle."""
        s = math.sin(math.radians(self.friction_angle))
        return math.sqrt(2.0 / 3.0) * 2.0 * s / (3.0 - s)

    def row(self) -> np.ndarray:
        mu, la = self.lame_parameters()
        row = np.zeros(N_COEFFS, dtype=np.float32)
        row[K_REST_DENSITY] = self.rest_density
        row[K_STIFFNESS] = self.stiffness
        row[K_EOS_GAMMA] = self.eos_gamma
        row[K_VISCOSITY] = self.viscosity
        row[K_MU] = mu
        row[K_LAMBDA] = la
        row[K_HARDENING] = self.hardening
        row[K_CRIT_COMPRESSION] = self.critical_compression
        row[K_CRIT_STRETCH] = self.critical_stretch
        row[K_FRICTION_ALPHA] = self.friction_alpha()
        row[K_NOISE_STRENGTH] = self.noise_strength
        row[K_NOISE_SCALE] = self.noise_scale
        return row


DEFAULT_CONSTANTS: Dict[int, MaterialConstants] = {
    FLUID: MaterialConstants(),
    ELASTIC: MaterialConstants(stiffness=0.0, viscosity=0.0, youngs_modulus=5.0e4, poisson_ratio=0.3),
    SAND: MaterialConstants(
        rest_density=1600.0, stiffness=0.0, viscosity=0.0,
        youngs_modulus=1.0e5, poisson_ratio=0.3, friction_angle=30.0,
    ),
    SNOW: MaterialConstants(
        rest_density=400.0, stiffness=0.0, viscosity=0.0,
        youngs_modulus=4.0e4, poisson_ratio=0.2, hardening=10.0,
    ),
    FOAM: MaterialConstants(rest_density=300.0, stiffness=5.0e3, eos_gamma=1.0, viscosity=0.2),
    VISCOUS: MaterialConstants(viscosity=20.0),
    RIGID: MaterialConstants(rest_density=2500.0, stiffness=0.0, viscosity=0.0),
    PLASMA: MaterialConstants(
        rest_density=500.0, stiffness=2.0e4, viscosity=0.05,
        noise_strength=20.0, noise_scale=4.0,
    ),
}

# Named presets: (material type, overrides on top of the type defaults)
PRESETS: Dict[str, Tuple[int, Dict[str, float]]] = {
    "water": (FLUID, {}),
    "oil": (FLUID, {"rest_density": 900.0, "viscosity": 1.0}),
    "honey": (VISCOUS, {"rest_density": 1400.0, "viscosity": 40.0}),
    "lava": (VISCOUS, {"rest_density": 2600.0, "viscosity": 60.0}),
    "sand": (SAND, {}),
    "snow": (SNOW, {}),
    "rubber": (ELASTIC, {"rest_density": 1100.0, "youngs_modulus": 3.0e4, "poisson_ratio": 0.45}),
    "jelly": (ELASTIC, {"youngs_modulus": 1.0e4, "poisson_ratio": 0.3}),
    "foam": (FOAM, {}),
    "plasma": (PLASMA, {}),
    "metal": (RIGID, {"rest_density": 7800.0}),
}


def material_id(name: Union[str, int]) -> int:
    """Resolve a material or preset name to a material id; unknown names map to FLUID."""
    if isinstance(name, int):
        return name if 0 <= name < N_MATERIALS else FLUID
    key = str(name).lower()
    if key in MATERIAL_NAMES:
        return MATERIAL_NAMES[key]
    if key in PRESETS:
        return PRESETS[key][0]
    return FLUID


@dataclass(frozen=True)
class MaterialTable:
    """Immutable per-material constants for one tick."""

    constants: Tuple[MaterialConstants, ...]

    @classmethod
    def from_overrides(cls, overrides: Optional[Mapping[str, Mapping[str, float]]] = None) -> "MaterialTable":
        constants = dict(DEFAULT_CONSTANTS)
        for name, values in (overrides or {}).items():
            key = str(name).lower()
            if key in PRESETS and key not in MATERIAL_NAMES:
                mat, preset = PRESETS[key]
                constants[mat] = replace(DEFAULT_CONSTANTS[mat], **{**preset, **dict(values or {})})
            else:
                mat = material_id(key)
                constants[mat] = replace(constants[mat], **dict(values or {}))
        return cls(constants=tuple(constants[m] for m in range(N_MATERIALS)))

    def __getitem__(self, material: int) -> MaterialConstants:
        return self.constants[material_id(material)]

    def to_numpy(self) -> np.ndarray:
        return np.stack([c.row() for c in self.constants]).astype(np.float32)


@ti.func
def resolve_material(mat: ti.i32) -> ti.i32:
    """Map out-of-range ids to FLUID."""
    m = mat
    if m < 0 or m >= N_MATERIALS:
        m = FLUID
    return m


@ti.func
def tait_pressure(density: ti.f32, rest_density: ti.f32, stiffness: ti.f32, gamma: ti.f32) -> ti.f32:
    ratio = density / rest_density
    return stiffness * ti.max(ti.pow(ratio, gamma) - 1.0, 0.0)


@ti.func
def fixed_corotated_stress(F, mu, la):
    """Kirchhoff stress of the fixed-corotated model."""
    U, sig, V = ti.svd(F)
    J = sig[0, 0] * sig[1, 1] * sig[2, 2]
    return (2.0 * mu * (F - U @ V.transpose()) @ F.transpose()
            + ti.Matrix.identity(ti.f32, 3) * la * J * (J - 1.0))


@ti.func
def hencky_stress(F, mu, la):
    """Kirchhoff stress of St. Venant-Kirchhoff elasticity on Hencky (log) strain."""
    U, sig, V = ti.svd(F)
    eps = ti.Vector([ti.log(ti.max(ti.abs(sig[d, d]), SIGMA_FLOOR)) for d in ti.static(range(3))])
    tr = eps.sum()
    tau = ti.Matrix.zero(ti.f32, 3, 3)
    for d in ti.static(range(3)):
        tau[d, d] = 2.0 * mu * eps[d] + la * tr
    return U @ tau @ U.transpose()


@ti.func
def drucker_prager_project(F, mu, la, alpha):
    """
    Project a trial deformation gradient onto the Drucker-Prager yield cone.

    Returns:
        Tuple of (projected F, plastic strain increment)
    """
    U, sig, V = ti.svd(F)
    eps = ti.Vector([ti.log(ti.max(ti.abs(sig[d, d]), SIGMA_FLOOR)) for d in ti.static(range(3))])
    tr = eps.sum()
    eps_hat = eps - tr / 3.0
    eps_hat_norm = eps_hat.norm()
    F_new = F
    delta = 0.0
    if tr >= 0.0:
        # No cohesion: any volumetric tension goes to the cone tip
        F_new = U @ V.transpose()
        delta = eps.norm()
    else:
        dgamma = eps_hat_norm + (3.0 * la + 2.0 * mu) / (2.0 * mu) * tr * alpha
        if dgamma > 0.0 and eps_hat_norm > 1e-8:
            H = eps - (dgamma / eps_hat_norm) * eps_hat
            exp_H = ti.Matrix.zero(ti.f32, 3, 3)
            for d in ti.static(range(3)):
                exp_H[d, d] = ti.exp(H[d])
            F_new = U @ exp_H @ V.transpose()
            delta = dgamma
    return F_new, delta


@ti.func
def compute_stress(mat: ti.i32, F, C, Jp: ti.f32, density: ti.f32, mass: ti.f32, table: ti.template()):
    """
    Stress contribution of one particle.

    Args:
        mat: Resolved material id
        F: Deformation gradient
        C: APIC affine matrix (velocity gradient estimate)
        Jp: Snow plastic volume ratio
        density: Density estimated from the grid this tick
        mass: Particle mass
        table: Material coefficient field

    Returns:
        Tuple of (stress tensor, particle volume). Solids return Kirchhoff stress
        paired with rest volume, fluids Cauchy stress paired with current volume.
    """
    stress = ti.Matrix.zero(ti.f32, 3, 3)
    rest_density = ti.max(table[mat, K_REST_DENSITY], 1e-6)
    volume = mass / rest_density
    if mat == ELASTIC or mat == SNOW:
        mu = table[mat, K_MU]
        la = table[mat, K_LAMBDA]
        if mat == SNOW:
            h = ti.exp(table[mat, K_HARDENING] * (1.0 - Jp))
            mu *= h
            la *= h
        stress = fixed_corotated_stress(F, mu, la)
    elif mat == SAND:
        stress = hencky_stress(F, table[mat, K_MU], table[mat, K_LAMBDA])
    elif mat != RIGID:
        # Fluid, foam, viscous, plasma
        rho = ti.max(density, DENSITY_FLOOR * rest_density)
        volume = mass / rho
        pressure = tait_pressure(rho, rest_density, table[mat, K_STIFFNESS], table[mat, K_EOS_GAMMA])
        stress = (-pressure * ti.Matrix.identity(ti.f32, 3)
                  + table[mat, K_VISCOSITY] * (C + C.transpose()))
    return stress, volume


@ti.func
def update_material_state(mat: ti.i32, F, C, Jp: ti.f32, plastic: ti.f32, dt: ti.f32, table: ti.template()):
    """
    Evolve the material state of one particle after its velocity gradient is known.

    Returns:
        Tuple of (F, Jp, plastic strain, C). Rigid particles get their affine
        matrix reduced to its skew-symmetric (rotational) part.
    """
    identity = ti.Matrix.identity(ti.f32, 3)
    F_new = identity
    Jp_new = Jp
    plastic_new = plastic
    C_new = C
    if mat == ELASTIC:
        F_new = (identity + dt * C) @ F
    elif mat == SNOW:
        F_trial = (identity + dt * C) @ F
        U, sig, V = ti.svd(F_trial)
        lo = 1.0 - table[mat, K_CRIT_COMPRESSION]
        hi = 1.0 + table[mat, K_CRIT_STRETCH]
        for d in ti.static(range(3)):
            s = sig[d, d]
            clamped = ti.min(ti.max(s, lo), hi)
            Jp_new *= s / clamped
            sig[d, d] = clamped
        Jp_new = ti.min(ti.max(Jp_new, JP_MIN), JP_MAX)
        F_new = U @ sig @ V.transpose()
    elif mat == SAND:
        F_trial = (identity + dt * C) @ F
        mu = ti.max(table[mat, K_MU], 1e-6)
        F_proj, delta = drucker_prager_project(F_trial, mu, table[mat, K_LAMBDA], table[mat, K_FRICTION_ALPHA])
        F_new = F_proj
        plastic_new += delta
    elif mat == RIGID:
        C_new = 0.5 * (C - C.transpose())
    return F_new, Jp_new, plastic_new, C_new
