"""CLI entry point to run the hybrid APIC/FLIP material point simulation."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Add parent directory to path to find the mpm_engine package
sys.path.insert(0, str(Path(__file__).parent.parent))

import taichi as ti


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the hybrid APIC/FLIP MPM simulation")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config/scene_config.yaml"),
        help="Path to the scene configuration YAML file.",
    )
    parser.add_argument("--steps", type=int, default=None, help="Optional override for number of steps")
    parser.add_argument(
        "--cpu",
        action="store_true",
        help="Use the Taichi CPU backend instead of GPU",
    )
    parser.add_argument(
        "--no-export",
        action="store_true",
        help="Skip writing PLY snapshots",
    )
    return parser.parse_args()


def init_taichi(cpu: bool) -> None:
    os.environ['TI_LOG_LEVEL'] = 'error'  # Suppress Taichi logs
    # fast_math would fold away the NaN checks in the particle update
    if cpu:
        ti.init(arch=ti.cpu, fast_math=False)
        print("Using MPM solver (CPU backend)")
        return
    try:
        ti.init(arch=ti.gpu, fast_math=False)
        print("Using MPM solver (GPU backend)")
    except Exception as e:
        print(f"GPU init failed: {e}, falling back to CPU")
        ti.init(arch=ti.cpu, fast_math=False)


def main() -> None:
    args = parse_args()
    init_taichi(args.cpu)

    from mpm_engine import WorldContainer

    container = WorldContainer.from_config_file(args.config)
    container.run(args.steps, export=not args.no_export, progress=True)


if __name__ == "__main__":
    main()
