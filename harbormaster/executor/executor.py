"""
Apply, prune and destroy executors.

A plan is walked per context in its stored order. Actions of one phase
(same resource type, same direction) run concurrently up to the worker
limit; the next phase of a context starts only once the previous one has
finished. Contexts run independently of each other.
"""

import asyncio
import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable

from ..assembly import (
    Action,
    ActionKind,
    FilesetChange,
    NetworkChange,
    Plan,
    PlanBuilder,
    ResourceType,
    StackChange,
    phase_of,
)
from ..concurrency import check_cancelled, fan_out
from ..errors import (
    ErrorAccumulator,
    ErrorKind,
    ExecutionError,
    HarbormasterError,
    MultiError,
    common_kind,
    is_kind,
)
from ..models import CleanupOptions, DesiredState
from ..runtime import ProgressObserver, RuntimeClient, owner_labels
from ..settings import get_settings
from .filesets import FilesetSyncer

logger = logging.getLogger(__name__)


@dataclass
class ActionFailure:
    """An action that raised, with the error it raised."""
    action: Action
    error: BaseException


@dataclass
class ExecutionResult:
    """What happened to every action of an executed plan."""
    completed: list[Action] = field(default_factory=list)
    failures: list[ActionFailure] = field(default_factory=list)
    not_run: list[Action] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failures and not self.not_run

    def errors(self) -> list[BaseException]:
        return [failure.error for failure in self.failures]


class _Run:
    """Mutable state of one plan walk; all mutation goes through one lock."""

    def __init__(self, observer: ProgressObserver | None):
        self.lock = threading.Lock()
        self.errors = ErrorAccumulator(self.lock)
        self.observer = observer
        self.result = ExecutionResult()
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        with self.lock:
            return self._cancelled

    def cancel(self, skipped: Iterable[Action] = ()) -> None:
        with self.lock:
            self._cancelled = True
            self.result.not_run.extend(skipped)

    def started(self, action: Action) -> None:
        if self.observer is None:
            return
        with self.lock:
            self.observer.on_action_start(action.label)

    def done(self, action: Action) -> None:
        with self.lock:
            self.result.completed.append(action)

    def failed(self, action: Action, error: BaseException) -> None:
        self.errors.add(error)
        with self.lock:
            self.result.failures.append(ActionFailure(action, error))

    def skipped(self, actions: list[Action]) -> None:
        with self.lock:
            self.result.not_run.extend(actions)

    def failure_count(self, context: str) -> int:
        with self.lock:
            return sum(1 for f in self.result.failures if f.action.context == context)


class Executor:
    """Executes plans against a runtime client."""

    def __init__(
        self,
        runtime: RuntimeClient,
        builder: PlanBuilder | None = None,
        observer: ProgressObserver | None = None,
        parallel: bool | None = None,
        max_workers: int | None = None,
    ):
        settings = get_settings()
        self.runtime = runtime
        self.builder = builder
        self.observer = observer
        self.parallel = settings.parallel if parallel is None else parallel
        self.max_workers = max_workers or settings.max_workers
        self.filesets = FilesetSyncer(runtime)

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def apply(self, plan: Plan, cancel: asyncio.Event | None = None) -> ExecutionResult:
        """Run the create/update actions of ``plan``.

        Returns:
            ExecutionResult when every action succeeded

        Raises:
            HarbormasterError: invalid_input for a malformed plan
            ExecutionError: when any action failed or the run was cancelled
        """
        op = "executor.apply"
        plan.check()
        changes = plan.changes()
        if len(changes) != len(plan):
            logger.debug(f"Apply skips {len(plan) - len(changes)} delete actions; run prune for those")
        run = await self._walk(changes, cancel, cleanup=False)
        self._raise_for_cancel(op, run)
        if run.result.failures:
            errors = run.errors.errors()
            raise ExecutionError(
                op,
                common_kind(errors, ErrorKind.EXTERNAL),
                f"{len(errors)} of {len(changes)} actions failed",
                cause=errors[0] if len(errors) == 1 else MultiError(errors),
                result=run.result,
            )
        logger.info(f"Applied {len(run.result.completed)} actions")
        return run.result

    async def prune(
        self,
        desired: DesiredState,
        options: CleanupOptions | None = None,
        plan: Plan | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Delete labeled resources that ``desired`` no longer declares.

        When ``plan`` is given its delete actions are executed as shown;
        otherwise a prune plan is built from ``desired``.
        """
        if plan is None:
            plan = await self._require_builder("executor.prune").build_prune_plan(desired, cancel)
        return await self._cleanup("executor.prune", plan.deletions(), options, cancel)

    async def destroy(
        self,
        desired: DesiredState,
        options: CleanupOptions | None = None,
        plan: Plan | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Delete every labeled resource of every context in ``desired``."""
        if plan is None:
            plan = await self._require_builder("executor.destroy").build_destroy_plan(desired, cancel)
        return await self._cleanup("executor.destroy", plan.deletions(), options, cancel)

    # ------------------------------------------------------------------
    # Walking
    # ------------------------------------------------------------------

    def _require_builder(self, op: str) -> PlanBuilder:
        if self.builder is None:
            raise HarbormasterError(op, ErrorKind.PRECONDITION, "no plan given and no plan builder configured")
        return self.builder

    async def _cleanup(
        self, op: str, plan: Plan, options: CleanupOptions | None, cancel
    ) -> ExecutionResult:
        options = options or CleanupOptions()
        plan.check()
        run = await self._walk(plan, cancel, cleanup=True)
        self._raise_for_cancel(op, run)
        failures = run.result.failures
        if not failures:
            logger.info(f"{op}: removed {len(run.result.completed)} resources")
            return run.result

        if options.strict:
            errors = run.errors.errors()
            message = f"{len(failures)} of {len(plan)} deletions failed"
            if options.verbose_errors:
                raise ExecutionError(
                    op, common_kind(errors, ErrorKind.EXTERNAL), message,
                    cause=errors[0] if len(errors) == 1 else MultiError(errors),
                    result=run.result,
                )
            raise ExecutionError(
                op, common_kind(errors, ErrorKind.EXTERNAL),
                f"{message} (enable verbose errors for details)",
                result=run.result,
            )

        for failure in failures:
            action = failure.action
            warning = f"failed to remove {action.resource_type.value} {action.key} in {action.context}"
            if options.verbose_errors:
                warning += f": {failure.error}"
            run.result.warnings.append(warning)
            logger.warning(warning)
        logger.warning(f"{op}: {len(failures)} deletions failed; continuing")
        return run.result

    def _raise_for_cancel(self, op: str, run: _Run) -> None:
        if not run.cancelled:
            return
        raise ExecutionError(
            op,
            ErrorKind.CANCELLED,
            f"cancelled; {len(run.result.not_run)} actions did not run",
            result=run.result,
        )

    async def _walk(self, plan: Plan, cancel: asyncio.Event | None, cleanup: bool) -> _Run:
        run = _Run(self.observer)
        limit = asyncio.Semaphore(self.max_workers)

        async def _action(action: Action) -> None:
            if cancel is not None and cancel.is_set():
                run.cancel([action])
                return
            run.started(action)
            try:
                await self._dispatch(plan, action, cancel)
            except Exception as e:
                if is_kind(e, ErrorKind.CANCELLED):
                    run.cancel()
                run.failed(action, e)
                logger.debug(f"{action.label} failed: {e}")
                return
            run.done(action)

        async def _context(context: str) -> None:
            phases = [list(group) for _, group in itertools.groupby(plan.for_context(context), key=phase_of)]
            for index, actions in enumerate(phases):
                if cancel is not None and cancel.is_set():
                    run.cancel([a for phase in phases[index:] for a in phase])
                    return
                before = run.failure_count(context)
                await fan_out(actions, _action, parallel=self.parallel, limit=limit)
                if not cleanup and run.failure_count(context) > before:
                    remaining = [a for phase in phases[index + 1:] for a in phase]
                    if remaining:
                        logger.warning(
                            f"[{context}] skipping {len(remaining)} dependent actions after failures"
                        )
                        run.skipped(remaining)
                    return

        await fan_out(plan.contexts(), _context, parallel=self.parallel)
        return run

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, plan: Plan, action: Action, cancel) -> None:
        check_cancelled(cancel, f"executor.{action.resource_type.value}")
        context = action.context
        identifier = plan.identifier(context)

        if action.resource_type == ResourceType.NETWORK:
            if action.kind == ActionKind.DELETE:
                await self.runtime.delete_network(context, action.key)
                return
            change = self._payload(action, NetworkChange)
            if change.recreate:
                await self.runtime.delete_network(context, action.key)
                check_cancelled(cancel, "executor.network")
            await self.runtime.create_network(context, change.spec, owner_labels(identifier))

        elif action.resource_type == ResourceType.VOLUME:
            if action.kind == ActionKind.DELETE:
                await self.runtime.delete_volume(context, action.key)
            else:
                await self.runtime.create_volume(context, action.key, owner_labels(identifier))

        elif action.resource_type == ResourceType.STACK:
            change = self._payload(action, StackChange)
            if action.kind != ActionKind.DELETE:
                await self.runtime.compose_up(context, change.stack, change.env, identifier)
            elif change.whole:
                await self.runtime.compose_down(context, change.project, identifier)
            else:
                await self.runtime.remove_services(context, change.project, list(change.remove))

        elif action.resource_type == ResourceType.FILESET:
            change = self._payload(action, FilesetChange)
            if action.kind == ActionKind.DELETE:
                await self.filesets.remove(context, change, cancel)
            else:
                await self.filesets.sync(context, change, cancel)

        else:
            raise HarbormasterError(
                "executor.dispatch", ErrorKind.INTERNAL, f"unknown resource type {action.resource_type}"
            )
        logger.debug(f"{action.label}: done")

    @staticmethod
    def _payload(action: Action, expected: type):
        if not isinstance(action.payload, expected):
            raise HarbormasterError(
                "executor.dispatch",
                ErrorKind.INVALID_INPUT,
                f"{action.resource_type.value} {action.key} has no {expected.__name__} payload",
            )
        return action.payload
