"""
Plan model: an immutable, ordered list of typed actions.

Within a context, create/update actions run Networks, Volumes, Stacks,
Filesets; delete actions run in the reverse order. ``order_actions`` is the
single place that ordering is decided.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator

from ..drift import ServiceDrift, ServiceState
from ..errors import ErrorKind, HarbormasterError
from ..filesets import FileManifest, FilesetDiff
from ..models import FilesetSpec, NetworkSpec, StackSpec


class ActionKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ResourceType(str, Enum):
    NETWORK = "network"
    VOLUME = "volume"
    STACK = "stack"
    FILESET = "fileset"


# Creation order; deletion walks it backwards
TYPE_ORDER = (ResourceType.NETWORK, ResourceType.VOLUME, ResourceType.STACK, ResourceType.FILESET)

SYMBOLS = {
    ActionKind.CREATE: "+",
    ActionKind.UPDATE: "~",
    ActionKind.DELETE: "-",
}

_SECTION_TITLES = {
    ResourceType.NETWORK: "Networks",
    ResourceType.VOLUME: "Volumes",
    ResourceType.STACK: "Stacks",
    ResourceType.FILESET: "Filesets",
}

RECREATE_REASON = "recreate"


# =============================================================================
# Payloads
# =============================================================================

@dataclass(frozen=True)
class NetworkChange:
    spec: NetworkSpec | None = None
    recreate: bool = False


@dataclass(frozen=True)
class StackChange:
    """Compose work for one stack.

    ``services`` is set for create/update. ``remove`` lists services to drop
    from a kept stack; a delete with ``whole=True`` takes the stack down.
    """
    project: str
    stack: StackSpec | None = None
    env: dict[str, str] = field(default_factory=dict, repr=False, compare=False)
    services: tuple[ServiceDrift, ...] = ()
    remove: tuple[str, ...] = ()
    whole: bool = False


@dataclass(frozen=True)
class FilesetChange:
    spec: FilesetSpec
    diff: FilesetDiff = field(default_factory=FilesetDiff)
    manifest: FileManifest | None = None
    remote: FileManifest | None = None


@dataclass(frozen=True)
class Action:
    """One unit of work against one resource in one context."""
    kind: ActionKind
    resource_type: ResourceType
    context: str
    key: str
    reason: str = ""
    payload: Any = None

    @property
    def resource_key(self) -> tuple[str, ResourceType, str]:
        return (self.context, self.resource_type, self.key)

    @property
    def is_delete(self) -> bool:
        return self.kind == ActionKind.DELETE

    @property
    def is_recreate(self) -> bool:
        return self.kind == ActionKind.UPDATE and self.reason.startswith(RECREATE_REASON)

    @property
    def label(self) -> str:
        """Short human label for progress reporting."""
        verb = {
            ActionKind.CREATE: "creating",
            ActionKind.UPDATE: "recreating" if self.is_recreate else "updating",
            ActionKind.DELETE: "removing",
        }[self.kind]
        return f"[{self.context}] {verb} {self.resource_type.value} {self.key}"


def phase_of(action: Action) -> int:
    rank = TYPE_ORDER.index(action.resource_type)
    if action.is_delete:
        return len(TYPE_ORDER) + (len(TYPE_ORDER) - 1 - rank)
    return rank


def order_actions(actions: Iterable[Action]) -> list[Action]:
    """Sort by context name, then dependency phase; stable within a phase."""
    return sorted(actions, key=lambda a: (a.context, phase_of(a)))


def dedupe_actions(actions: Iterable[Action]) -> list[Action]:
    """Keep one action per (context, resource type, key, delete-or-not)."""
    seen = set()
    kept = []
    for action in actions:
        marker = (action.resource_key, action.is_delete)
        if marker in seen:
            continue
        seen.add(marker)
        kept.append(action)
    return kept


# =============================================================================
# Plan
# =============================================================================

class Plan:
    """Immutable ordered action list."""

    def __init__(self, actions: Iterable[Action] = (), identifiers: dict[str, str] | None = None):
        self._actions = tuple(actions)
        self._identifiers = dict(identifiers or {})

    @classmethod
    def build(cls, actions: Iterable[Action], identifiers: dict[str, str] | None = None) -> "Plan":
        """Deduplicate and order ``actions`` into a plan."""
        return cls(order_actions(dedupe_actions(actions)), identifiers)

    @property
    def actions(self) -> tuple[Action, ...]:
        return self._actions

    def __iter__(self) -> Iterator[Action]:
        return iter(self._actions)

    def __len__(self) -> int:
        return len(self._actions)

    def is_empty(self) -> bool:
        return not self._actions

    def count_actions(self) -> tuple[int, int, int]:
        """Return ``(create, update, delete)`` counts."""
        counts = {kind: 0 for kind in ActionKind}
        for action in self._actions:
            counts[action.kind] += 1
        return counts[ActionKind.CREATE], counts[ActionKind.UPDATE], counts[ActionKind.DELETE]

    def identifier(self, context: str) -> str:
        """Ownership identifier of ``context``, empty if unknown."""
        return self._identifiers.get(context, "")

    def contexts(self) -> list[str]:
        names: list[str] = []
        for action in self._actions:
            if action.context not in names:
                names.append(action.context)
        return names

    def for_context(self, context: str) -> list[Action]:
        return [a for a in self._actions if a.context == context]

    def changes(self) -> "Plan":
        """Create/update actions only."""
        return Plan((a for a in self._actions if not a.is_delete), self._identifiers)

    def deletions(self) -> "Plan":
        """Delete actions only."""
        return Plan((a for a in self._actions if a.is_delete), self._identifiers)

    def check(self) -> None:
        """Verify ordering and uniqueness.

        Raises:
            HarbormasterError: invalid_input when the plan is malformed
        """
        op = "plan.check"
        markers = [(a.resource_key, a.is_delete) for a in self._actions]
        if len(markers) != len(set(markers)):
            raise HarbormasterError(op, ErrorKind.INVALID_INPUT, "plan targets a resource more than once")
        for context in self.contexts():
            phases = [phase_of(a) for a in self.for_context(context)]
            if phases != sorted(phases):
                raise HarbormasterError(
                    op, ErrorKind.INVALID_INPUT, f"actions for context {context} are out of dependency order"
                )

    def summary(self) -> str:
        create, update, delete = self.count_actions()
        return f"Plan: {create} to create, {update} to change, {delete} to destroy."

    def __str__(self) -> str:
        return render_plan(self)

    def __repr__(self) -> str:
        create, update, delete = self.count_actions()
        return f"Plan(create={create}, update={update}, delete={delete})"


# =============================================================================
# Rendering
# =============================================================================

def _detail_lines(action: Action) -> list[str]:
    payload = action.payload
    lines = []
    if isinstance(payload, FilesetChange):
        for entry in payload.diff.to_create:
            lines.append(f"+ {entry.path}")
        for entry in payload.diff.to_update:
            lines.append(f"~ {entry.path}")
        for path in payload.diff.to_delete:
            lines.append(f"- {path}")
    elif isinstance(payload, StackChange):
        for service in payload.services:
            if service.state == ServiceState.UNCHANGED:
                continue
            marker = "+" if service.state == ServiceState.ABSENT else "~"
            lines.append(f"{marker} {service.service} ({service.reason})")
        for name in payload.remove:
            lines.append(f"- {name}")
    return lines


def render_plan(plan: Plan) -> str:
    """Render grouped by context, then resource type, with fixed markers."""
    if plan.is_empty():
        return "No changes. Infrastructure is up-to-date.\n\n" + plan.summary()

    lines = []
    for context in plan.contexts():
        lines.append(f"Context: {context}")
        actions = plan.for_context(context)
        for resource_type in TYPE_ORDER:
            section = [a for a in actions if a.resource_type == resource_type]
            if not section:
                continue
            lines.append(f"  {_SECTION_TITLES[resource_type]}")
            for action in section:
                reason = f" ({action.reason})" if action.reason else ""
                lines.append(f"    {SYMBOLS[action.kind]} {action.key}{reason}")
                lines.extend(f"        {detail}" for detail in _detail_lines(action))
        lines.append("")
    lines.append(plan.summary())
    return "\n".join(lines)
