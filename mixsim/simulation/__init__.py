"""Simulation module: data generating process for the null-model study."""
from .dgp import (
    GenerationError,
    SimulationConfig,
    build_lab_effects,
    build_skeleton,
    generate,
)
