"""
Drift detection: environment resolution and per-service hash comparison.
"""

from .detector import DriftDetector, ServiceDrift, ServiceState, StackDrift
from .environment import merge_env, read_env_file

__all__ = [
    "DriftDetector",
    "ServiceDrift",
    "ServiceState",
    "StackDrift",
    "merge_env",
    "read_env_file",
]
