"""
Harbormaster errors - kinds, operation tags and aggregation.

Every surfaced error carries an operation tag (where it happened) and a
stable kind (what category it belongs to) so callers can branch on the
category without parsing message text.
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Any, Iterable


class ErrorKind(str, Enum):
    """Stable error categories."""

    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    PRECONDITION = "precondition_failed"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    EXTERNAL = "external"
    INTERNAL = "internal"
    CANCELLED = "cancelled"


class HarbormasterError(Exception):
    """Base exception for all Harbormaster errors.

    Args:
        op: Operation tag, e.g. ``"filesets.build_manifest"``
        kind: Error category
        message: Human readable detail
        cause: Underlying exception, if any
    """

    def __init__(
        self,
        op: str,
        kind: ErrorKind,
        message: str = "",
        cause: BaseException | None = None,
    ):
        self.op = op
        self.kind = kind
        self.message = message
        self.cause = cause
        super().__init__(self._render())
        if cause is not None:
            self.__cause__ = cause

    def _render(self) -> str:
        detail = self.message or (str(self.cause) if self.cause else "")
        if self.op and detail:
            return f"{self.op}: {detail}"
        return self.op or detail or self.kind.value

    def __str__(self) -> str:
        return self._render()


class MultiError(Exception):
    """Several independent failures reported together."""

    def __init__(self, errors: Iterable[BaseException]):
        self.errors = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors))


class ExecutionError(HarbormasterError):
    """Apply, prune or destroy did not complete; ``result`` tells what ran."""

    def __init__(
        self,
        op: str,
        kind: ErrorKind,
        message: str = "",
        cause: BaseException | None = None,
        result: Any = None,
    ):
        super().__init__(op, kind, message, cause)
        self.result = result


def aggregate(
    op: str, kind: ErrorKind, message: str, errors: list[BaseException]
) -> HarbormasterError | None:
    """Fold a list of errors into at most one error.

    Returns:
        None when the list is empty, otherwise a HarbormasterError whose
        cause is the single error or a MultiError of all of them.
    """
    if not errors:
        return None
    if len(errors) == 1:
        return HarbormasterError(op, kind, message, cause=errors[0])
    return HarbormasterError(op, kind, message, cause=MultiError(errors))


def is_kind(err: BaseException | None, kind: ErrorKind) -> bool:
    """Check the kind of the first HarbormasterError in the cause chain."""
    seen = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        if isinstance(err, HarbormasterError):
            return err.kind == kind
        err = err.__cause__
    return False


def common_kind(errors: list[BaseException], default: ErrorKind) -> ErrorKind:
    """Return the kind shared by every error, or ``default``."""
    kinds = {e.kind for e in errors if isinstance(e, HarbormasterError)}
    if len(kinds) == 1 and all(isinstance(e, HarbormasterError) for e in errors):
        return kinds.pop()
    return default


class ErrorAccumulator:
    """Collects errors from concurrent workers.

    One accumulator is used per concurrent phase; ``lock`` may be shared
    with other mutable state of the same phase (e.g. a progress observer).
    """

    def __init__(self, lock: threading.Lock | None = None):
        self._lock = lock or threading.Lock()
        self._errors: list[BaseException] = []

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    def add(self, err: BaseException | None) -> None:
        if err is None:
            return
        with self._lock:
            self._errors.append(err)

    def extend(self, errors: Iterable[BaseException]) -> None:
        for err in errors:
            self.add(err)

    def errors(self) -> list[BaseException]:
        with self._lock:
            return list(self._errors)

    def __len__(self) -> int:
        with self._lock:
            return len(self._errors)

    def raise_if_any(self, op: str, kind: ErrorKind, message: str = "") -> None:
        """Raise the aggregated error if anything was collected."""
        err = aggregate(op, kind, message, self.errors())
        if err is not None:
            raise err
