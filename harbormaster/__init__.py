"""
Harbormaster - declarative reconciliation of container infrastructure.

Harbormaster converges networks, volumes, compose stacks and volume-backed
file trees across one or more runtime endpoints ("contexts") to the state
declared in a desired-state document:

- Discover labeled resources per context
- Detect drift through configuration and content hashes
- Assemble an ordered, immutable Plan
- Apply, prune or destroy with bounded concurrency
"""

from .assembly import Action, ActionKind, Plan, PlanBuilder, ResourceType
from .core import HarbormasterCore
from .errors import ErrorAccumulator, ErrorKind, ExecutionError, HarbormasterError, MultiError
from .executor import ExecutionResult, Executor
from .models import CleanupOptions, DesiredState, load_desired_state
from .settings import HarbormasterSettings, get_settings, reload_settings

__version__ = "0.1.0"
__all__ = [
    "Action",
    "ActionKind",
    "CleanupOptions",
    "DesiredState",
    "ErrorAccumulator",
    "ErrorKind",
    "ExecutionError",
    "ExecutionResult",
    "Executor",
    "HarbormasterCore",
    "HarbormasterError",
    "HarbormasterSettings",
    "MultiError",
    "Plan",
    "PlanBuilder",
    "ResourceType",
    "get_settings",
    "load_desired_state",
    "reload_settings",
]
