"""Validation module: Monte Carlo study driver."""
from .monte_carlo import SimulationStudy, StudyReport, run_replication, run_study
