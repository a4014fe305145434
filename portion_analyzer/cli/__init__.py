"""CLI commands for portion analyzer."""

from .estimate import build_estimator_from_config, run_estimation

__all__ = ["build_estimator_from_config", "run_estimation"]
