"""Core engine package for the hybrid APIC/FLIP material point simulator."""

from .world_container import WorldContainer
from .configuration import load_scene_config, scene_config_from_dict, SceneConfig

__all__ = [
    "WorldContainer",
    "SceneConfig",
    "load_scene_config",
    "scene_config_from_dict",
]
