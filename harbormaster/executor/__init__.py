"""
Executors that carry out plans: apply, prune and destroy.
"""

from .executor import ActionFailure, ExecutionResult, Executor
from .filesets import FilesetSyncer

__all__ = [
    "ActionFailure",
    "ExecutionResult",
    "Executor",
    "FilesetSyncer",
]
