"""
Assembly module for harbormaster.

This module contains the plan model and the plan builder that turns desired
state plus discovered actual state into an ordered action list.
"""

from .plan import (
    RECREATE_REASON,
    SYMBOLS,
    TYPE_ORDER,
    Action,
    ActionKind,
    FilesetChange,
    NetworkChange,
    Plan,
    ResourceType,
    StackChange,
    dedupe_actions,
    order_actions,
    phase_of,
    render_plan,
)
from .planner import PlanBuilder, network_drift

__all__ = [
    # Plan exports
    "RECREATE_REASON",
    "SYMBOLS",
    "TYPE_ORDER",
    "Action",
    "ActionKind",
    "FilesetChange",
    "NetworkChange",
    "Plan",
    "ResourceType",
    "StackChange",
    "dedupe_actions",
    "order_actions",
    "phase_of",
    "render_plan",
    # Planner exports
    "PlanBuilder",
    "network_drift",
]
