"""
Harbormaster Core - reconciliation of container infrastructure.

Plan Pipeline: Discover actual state → Detect drift → Assemble ordered Plan
Apply Pipeline: Plan → Execute create/update actions → (optional) Prune
Destroy Pipeline: Discover labeled resources → Delete in reverse order
"""

import asyncio
import logging

from .assembly import Plan, PlanBuilder
from .executor import ExecutionResult, Executor
from .models import CleanupOptions, DesiredState
from .runtime import ProgressObserver, RuntimeClient, SecretsResolver
from .settings import get_settings

logger = logging.getLogger(__name__)


class HarbormasterCore:
    """Main coordinator for the Harbormaster pipeline."""

    def __init__(
        self,
        runtime: RuntimeClient,
        secrets: SecretsResolver | None = None,
        observer: ProgressObserver | None = None,
        parallel: bool | None = None,
        max_workers: int | None = None,
    ):
        """
        Initialize HarbormasterCore.

        Args:
            runtime: Container runtime client
            secrets: Resolver for SOPS secret files (optional)
            observer: Receives a label as each action starts (optional)
            parallel: Overrides settings.parallel
            max_workers: Overrides settings.max_workers
        """
        settings = get_settings()
        parallel = settings.parallel if parallel is None else parallel
        max_workers = max_workers or settings.max_workers

        self.builder = PlanBuilder(runtime, secrets, parallel=parallel, max_workers=max_workers)
        self.executor = Executor(
            runtime, self.builder, observer, parallel=parallel, max_workers=max_workers
        )

        logger.info(f"HarbormasterCore initialized (parallel={parallel}, max_workers={max_workers})")

    def _cleanup_options(self, options: CleanupOptions | None) -> CleanupOptions:
        if options is not None:
            return options
        settings = get_settings()
        return CleanupOptions(strict=settings.strict_cleanup, verbose_errors=settings.verbose_errors)

    async def plan(
        self,
        desired: DesiredState,
        include_prune: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> Plan:
        """
        Build a plan without changing anything.

        Args:
            desired: Normalized desired state
            include_prune: Also list deletions of undeclared resources
            cancel: Optional cancellation signal

        Returns:
            Immutable Plan
        """
        return await self.builder.build_plan(desired, include_prune=include_prune, cancel=cancel)

    async def apply(
        self,
        desired: DesiredState,
        plan: Plan | None = None,
        prune: bool = False,
        options: CleanupOptions | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """
        Apply a plan (built now when not given), optionally followed by prune.

        The deletions of ``plan`` are what prune executes, so the caller
        gets exactly the changes it inspected.
        """
        built_here = plan is None
        if plan is None:
            plan = await self.plan(desired, include_prune=prune, cancel=cancel)
        logger.info(f"Applying {plan.summary()}")
        result = await self.executor.apply(plan, cancel=cancel)
        if prune:
            prune_plan = plan if built_here or not plan.deletions().is_empty() else None
            pruned = await self.executor.prune(
                desired, self._cleanup_options(options), plan=prune_plan, cancel=cancel
            )
            result.completed.extend(pruned.completed)
            result.failures.extend(pruned.failures)
            result.warnings.extend(pruned.warnings)
        return result

    async def prune(
        self,
        desired: DesiredState,
        options: CleanupOptions | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Remove labeled resources no longer declared."""
        return await self.executor.prune(desired, self._cleanup_options(options), cancel=cancel)

    async def destroy(
        self,
        desired: DesiredState,
        options: CleanupOptions | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Remove every labeled resource of every context."""
        return await self.executor.destroy(desired, self._cleanup_options(options), cancel=cancel)
