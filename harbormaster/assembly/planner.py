"""
Plan builder: discovers actual state per context and assembles the Plan.

Contexts are independent; their errors are collected and reported together
instead of stopping at the first broken context.
"""

import asyncio
import logging

from ..concurrency import check_cancelled, fan_out, split_results
from ..drift import DriftDetector, StackDrift
from ..errors import ErrorAccumulator, ErrorKind, HarbormasterError, aggregate, common_kind, is_kind
from ..filesets import SENTINEL_FILENAME, FileManifest, build_manifest, diff_manifests
from ..models import (
    ActualState,
    ContextSpec,
    DesiredState,
    FilesetSpec,
    NetworkInfo,
    NetworkMismatchPolicy,
    NetworkSpec,
    StackSpec,
)
from ..runtime import ReadFile, RuntimeClient, SecretsResolver
from ..settings import get_settings
from .plan import (
    RECREATE_REASON,
    Action,
    ActionKind,
    FilesetChange,
    NetworkChange,
    Plan,
    ResourceType,
    StackChange,
)

logger = logging.getLogger(__name__)


def network_drift(spec: NetworkSpec, actual: NetworkInfo) -> list[str]:
    """Names of the fields where ``actual`` differs from what ``spec`` sets.

    Unset desired fields are not compared; desired options must be a subset
    of the actual options.
    """
    fields = []
    if spec.driver and spec.driver != actual.driver:
        fields.append("driver")
    for key, value in spec.options.items():
        if actual.options.get(key) != value:
            fields.append("options")
            break
    for name in ("internal", "attachable", "ipv6"):
        if getattr(spec, name) and not getattr(actual, name):
            fields.append(name)
    for name in ("subnet", "gateway", "ip_range"):
        if getattr(spec, name) and getattr(spec, name) != getattr(actual, name):
            fields.append(name)
    if spec.aux_addresses and spec.aux_addresses != actual.aux_addresses:
        fields.append("aux_addresses")
    return fields


class PlanBuilder:
    """Builds plans from desired state and live runtime queries."""

    def __init__(
        self,
        runtime: RuntimeClient,
        secrets: SecretsResolver | None = None,
        parallel: bool | None = None,
        max_workers: int | None = None,
    ):
        settings = get_settings()
        self.runtime = runtime
        self.detector = DriftDetector(runtime, secrets)
        self.parallel = settings.parallel if parallel is None else parallel
        self.max_workers = max_workers or settings.max_workers

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def build_plan(
        self,
        desired: DesiredState,
        include_prune: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> Plan:
        """Compute create/update actions (and prune deletions when asked).

        Raises:
            HarbormasterError: aggregated errors of every failing context
        """
        plan = await self._across_contexts(
            "planner.build_plan", desired, cancel, changes=True, prune=include_prune
        )
        logger.info(f"Built plan: {plan.summary()}")
        return plan

    async def build_prune_plan(self, desired: DesiredState, cancel: asyncio.Event | None = None) -> Plan:
        """Delete actions for labeled resources no longer declared."""
        return await self._across_contexts(
            "planner.build_prune_plan", desired, cancel, changes=False, prune=True
        )

    async def build_destroy_plan(self, desired: DesiredState, cancel: asyncio.Event | None = None) -> Plan:
        """Delete actions for every labeled resource in every context."""
        op = "planner.build_destroy_plan"
        limit = asyncio.Semaphore(self.max_workers)

        async def _one(ctx: ContextSpec) -> list[Action]:
            return await self._destroy_context(ctx, limit, cancel)

        return self._collect(op, desired, await fan_out(desired.contexts, _one, parallel=self.parallel))

    # ------------------------------------------------------------------
    # Context orchestration
    # ------------------------------------------------------------------

    async def _across_contexts(
        self, op: str, desired: DesiredState, cancel, changes: bool, prune: bool
    ) -> Plan:
        limit = asyncio.Semaphore(self.max_workers)

        async def _one(ctx: ContextSpec) -> list[Action]:
            return await self._plan_context(desired, ctx, limit, cancel, changes, prune)

        return self._collect(op, desired, await fan_out(desired.contexts, _one, parallel=self.parallel))

    def _collect(self, op: str, desired: DesiredState, results: list) -> Plan:
        per_context, errors = split_results(results)
        for err in errors:
            if is_kind(err, ErrorKind.CANCELLED):
                raise err
        err = aggregate(op, common_kind(errors, ErrorKind.EXTERNAL), "", errors)
        if err is not None:
            raise err
        identifiers = {ctx.name: ctx.identifier for ctx in desired.contexts}
        return Plan.build((action for actions in per_context for action in actions), identifiers)

    async def discover(self, ctx: ContextSpec) -> ActualState:
        """Read labeled networks, volumes and stack services for one context."""
        op = f"planner.discover[{ctx.name}]"
        try:
            networks, volumes, services = await asyncio.gather(
                self.runtime.list_networks(ctx.name, ctx.identifier),
                self.runtime.list_volumes(ctx.name, ctx.identifier),
                self.runtime.list_stacks(ctx.name, ctx.identifier),
            )
        except HarbormasterError:
            raise
        except Exception as e:
            raise HarbormasterError(op, ErrorKind.UNAVAILABLE, str(e), cause=e) from e
        return ActualState(context=ctx.name, networks=networks, volumes=volumes, services=services)

    async def _plan_context(
        self,
        desired: DesiredState,
        ctx: ContextSpec,
        limit: asyncio.Semaphore,
        cancel,
        changes: bool,
        prune: bool,
    ) -> list[Action]:
        op = f"planner.context[{ctx.name}]"
        check_cancelled(cancel, op)
        actual = await self.discover(ctx)
        errors = ErrorAccumulator()
        actions: list[Action] = []

        if changes:
            for spec in sorted(ctx.networks, key=lambda n: n.name):
                try:
                    action = self._plan_network(ctx, spec, actual.network(spec.name))
                except HarbormasterError as e:
                    errors.add(e)
                    continue
                if action is not None:
                    actions.append(action)
            for name in ctx.desired_volumes():
                if not actual.has_volume(name):
                    actions.append(Action(ActionKind.CREATE, ResourceType.VOLUME, ctx.name, name, "missing"))

        async def _stack(stack: StackSpec) -> tuple[Action | None, StackDrift]:
            async with limit:
                check_cancelled(cancel, op)
                return await self._plan_stack(desired, ctx, stack, actual)

        stack_results, stack_errors = split_results(
            await fan_out(sorted(ctx.stacks, key=lambda s: s.name), _stack, parallel=self.parallel)
        )
        errors.extend(stack_errors)
        if changes:
            actions.extend(action for action, _ in stack_results if action is not None)

            async def _fileset(spec: FilesetSpec) -> Action | None:
                async with limit:
                    check_cancelled(cancel, op)
                    return await self._plan_fileset(ctx, spec, actual)

            fileset_results, fileset_errors = split_results(
                await fan_out(sorted(ctx.filesets, key=lambda f: f.name), _fileset, parallel=self.parallel)
            )
            errors.extend(fileset_errors)
            actions.extend(action for action in fileset_results if action is not None)

        if prune:
            actions.extend(self._prune_actions(ctx, actual, [drift for _, drift in stack_results]))

        for err in errors.errors():
            if is_kind(err, ErrorKind.CANCELLED):
                raise err
        errors.raise_if_any(op, common_kind(errors.errors(), ErrorKind.EXTERNAL))
        logger.debug(f"[{ctx.name}] planned {len(actions)} actions")
        return actions

    # ------------------------------------------------------------------
    # Per-resource planning
    # ------------------------------------------------------------------

    def _plan_network(self, ctx: ContextSpec, spec: NetworkSpec, actual: NetworkInfo | None) -> Action | None:
        if actual is None:
            return Action(
                ActionKind.CREATE, ResourceType.NETWORK, ctx.name, spec.name, "missing", NetworkChange(spec)
            )
        drifted = network_drift(spec, actual)
        if not drifted:
            return None
        detail = ", ".join(drifted)
        if spec.mismatch == NetworkMismatchPolicy.IGNORE:
            logger.debug(f"[{ctx.name}] ignoring drift on network {spec.name}: {detail}")
            return None
        if spec.mismatch == NetworkMismatchPolicy.ERROR:
            raise HarbormasterError(
                f"planner.network[{ctx.name}]",
                ErrorKind.CONFLICT,
                f"network {spec.name} differs from its declaration ({detail})",
            )
        return Action(
            ActionKind.UPDATE,
            ResourceType.NETWORK,
            ctx.name,
            spec.name,
            f"{RECREATE_REASON}: {detail} differ",
            NetworkChange(spec, recreate=True),
        )

    async def _plan_stack(
        self, desired: DesiredState, ctx: ContextSpec, stack: StackSpec, actual: ActualState
    ) -> tuple[Action | None, StackDrift]:
        env = await self.detector.resolve(stack, desired.secrets_config, desired.environment, desired.secrets)
        running = actual.stack_services(stack.project_name)
        drift = await self.detector.detect(ctx.name, stack, env, running, ctx.identifier)
        if not drift.needs_apply:
            return None, drift
        kind = ActionKind.CREATE if not running else ActionKind.UPDATE
        reason = ", ".join(f"{s.service}: {s.reason}" for s in drift.changed())
        payload = StackChange(
            project=stack.project_name, stack=stack, env=env, services=tuple(drift.services)
        )
        return Action(kind, ResourceType.STACK, ctx.name, stack.name, reason, payload), drift

    async def _read_sentinel(self, ctx: ContextSpec, spec: FilesetSpec) -> FileManifest:
        try:
            result = await self.runtime.run_staging_container(
                ctx.name, spec.target_volume, ReadFile(spec.target_path, SENTINEL_FILENAME)
            )
        except HarbormasterError:
            raise
        except Exception as e:
            raise HarbormasterError(
                f"planner.fileset[{ctx.name}/{spec.name}]", ErrorKind.EXTERNAL, str(e), cause=e
            ) from e
        try:
            return FileManifest.from_json(result.stdout)
        except HarbormasterError as e:
            if not is_kind(e, ErrorKind.INVALID_INPUT):
                raise
            logger.warning(
                f"[{ctx.name}] unreadable sentinel for fileset {spec.name}, treating the volume as empty: {e}"
            )
            return FileManifest()

    async def _plan_fileset(self, ctx: ContextSpec, spec: FilesetSpec, actual: ActualState) -> Action | None:
        local = await asyncio.to_thread(build_manifest, spec.source, spec.target_path, spec.exclude)
        remote = FileManifest()
        if actual.has_volume(spec.target_volume):
            remote = await self._read_sentinel(ctx, spec)
        diff = diff_manifests(local, remote)
        if diff.is_empty() and local.tree_hash == remote.tree_hash:
            return None
        reason = diff.summary() if not diff.is_empty() else "sentinel out of date"
        payload = FilesetChange(spec=spec, diff=diff, manifest=local, remote=remote)
        return Action(ActionKind.UPDATE, ResourceType.FILESET, ctx.name, spec.name, reason, payload)

    def _prune_actions(self, ctx: ContextSpec, actual: ActualState, drifts: list[StackDrift]) -> list[Action]:
        actions = []
        declared_networks = {n.name for n in ctx.networks}
        for network in sorted(actual.networks, key=lambda n: n.name):
            if network.name not in declared_networks:
                actions.append(
                    Action(ActionKind.DELETE, ResourceType.NETWORK, ctx.name, network.name, "not declared")
                )

        declared_volumes = set(ctx.desired_volumes())
        for volume in sorted(actual.volumes, key=lambda v: v.name):
            if volume.name not in declared_volumes:
                actions.append(
                    Action(ActionKind.DELETE, ResourceType.VOLUME, ctx.name, volume.name, "not declared")
                )

        stacks_by_name = {s.name: s for s in ctx.stacks}
        declared_projects = {s.project_name for s in ctx.stacks}
        stack_deletes = []
        for drift in drifts:
            stack = stacks_by_name[drift.stack]
            if not drift.services and drift.orphans:
                stack_deletes.append(Action(
                    ActionKind.DELETE, ResourceType.STACK, ctx.name, stack.project_name, "no services declared",
                    StackChange(project=stack.project_name, stack=stack, whole=True),
                ))
            elif drift.orphans:
                stack_deletes.append(Action(
                    ActionKind.DELETE, ResourceType.STACK, ctx.name, stack.project_name,
                    f"orphaned services: {', '.join(drift.orphans)}",
                    StackChange(project=stack.project_name, stack=stack, remove=tuple(drift.orphans)),
                ))
        for project in actual.stack_names():
            if project not in declared_projects:
                stack_deletes.append(Action(
                    ActionKind.DELETE, ResourceType.STACK, ctx.name, project, "not declared",
                    StackChange(project=project, whole=True),
                ))

        # Deletions are keyed by compose project; two of them for one project cannot both run.
        seen = set()
        for action in stack_deletes:
            if action.key in seen:
                raise HarbormasterError(
                    f"planner.prune[{ctx.name}]",
                    ErrorKind.CONFLICT,
                    f"several stacks share compose project {action.key}",
                )
            seen.add(action.key)
        actions.extend(stack_deletes)
        return actions

    async def _destroy_context(self, ctx: ContextSpec, limit: asyncio.Semaphore, cancel) -> list[Action]:
        op = f"planner.destroy[{ctx.name}]"
        check_cancelled(cancel, op)
        actual = await self.discover(ctx)
        actions = []

        async def _fileset(spec: FilesetSpec) -> Action:
            async with limit:
                check_cancelled(cancel, op)
                remote = await self._read_sentinel(ctx, spec)
                return Action(
                    ActionKind.DELETE, ResourceType.FILESET, ctx.name, spec.name, "destroy",
                    FilesetChange(spec=spec, remote=remote),
                )

        present = [f for f in sorted(ctx.filesets, key=lambda f: f.name) if actual.has_volume(f.target_volume)]
        results, errors = split_results(await fan_out(present, _fileset, parallel=self.parallel))
        if errors:
            raise aggregate(op, common_kind(errors, ErrorKind.EXTERNAL), "", errors)
        actions.extend(results)

        for project in actual.stack_names():
            actions.append(Action(
                ActionKind.DELETE, ResourceType.STACK, ctx.name, project, "destroy",
                StackChange(project=project, whole=True),
            ))
        for volume in sorted(actual.volumes, key=lambda v: v.name):
            actions.append(Action(ActionKind.DELETE, ResourceType.VOLUME, ctx.name, volume.name, "destroy"))
        for network in sorted(actual.networks, key=lambda n: n.name):
            actions.append(Action(ActionKind.DELETE, ResourceType.NETWORK, ctx.name, network.name, "destroy"))
        return actions
