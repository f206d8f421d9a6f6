"""
Per-service drift detection for stacks.

A service is compared by the configuration hash the runtime computes for
the fully resolved stack against the hash recorded on the running
container.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from ..errors import ErrorKind, HarbormasterError
from ..models import EnvironmentSpec, SecretsConfig, SecretsSpec, ServiceStatus, StackSpec
from ..runtime import RuntimeClient, SecretsResolver
from .environment import merge_env, read_env_file

logger = logging.getLogger(__name__)


class ServiceState(str, Enum):
    """Classification of one declared service."""
    ABSENT = "absent"
    UNCHANGED = "unchanged"
    CHANGED = "changed"


@dataclass
class ServiceDrift:
    """Outcome of comparing one service."""
    service: str
    state: ServiceState
    desired_hash: str = ""
    running_hash: str = ""
    reason: str = ""


@dataclass
class StackDrift:
    """Outcome of comparing every service of one stack."""
    stack: str
    services: list[ServiceDrift] = field(default_factory=list)
    orphans: list[str] = field(default_factory=list)

    @property
    def needs_apply(self) -> bool:
        return any(s.state != ServiceState.UNCHANGED for s in self.services)

    @property
    def all_absent(self) -> bool:
        return bool(self.services) and all(s.state == ServiceState.ABSENT for s in self.services)

    def changed(self) -> list[ServiceDrift]:
        return [s for s in self.services if s.state != ServiceState.UNCHANGED]


class DriftDetector:
    """Resolves stack environments and classifies their services."""

    def __init__(self, runtime: RuntimeClient, secrets: SecretsResolver | None = None):
        self.runtime = runtime
        self.secrets = secrets

    async def resolve(
        self,
        stack: StackSpec,
        secrets_config: SecretsConfig | None = None,
        root_environment: EnvironmentSpec | None = None,
        root_secrets: SecretsSpec | None = None,
    ) -> dict[str, str]:
        """Merge the environment for ``stack``.

        Precedence, lowest first: root env files, stack env files, root
        inline pairs, stack inline pairs, root secrets, stack secrets.

        Raises:
            HarbormasterError: not_found for a missing env file, precondition
                when secrets are declared but no resolver is configured
        """
        root_environment = root_environment or EnvironmentSpec()
        root_secrets = root_secrets or SecretsSpec()
        secrets_config = secrets_config or SecretsConfig()

        sources = []
        for path in root_environment.files + stack.environment.files:
            sources.append(await asyncio.to_thread(read_env_file, path))
        sources.append(root_environment.inline)
        sources.append(stack.environment.inline)

        secret_files = root_secrets.sops + stack.secrets.sops
        if secret_files and self.secrets is None:
            raise HarbormasterError(
                "drift.resolve", ErrorKind.PRECONDITION,
                f"stack {stack.name} declares secrets but no secrets resolver is configured",
            )
        for path in secret_files:
            try:
                sources.append(await self.secrets.decrypt(path, secrets_config))
            except HarbormasterError:
                raise
            except Exception as e:
                raise HarbormasterError(
                    "drift.resolve", ErrorKind.EXTERNAL, f"decrypt {path}: {e}", cause=e
                ) from e

        return merge_env(*sources)

    async def hash(
        self, context: str, stack: StackSpec, env: dict[str, str], identifier: str
    ) -> dict[str, str]:
        """Ask the runtime for ``{service: config hash}`` of the resolved stack."""
        try:
            return await self.runtime.compose_config_hash(context, stack, env, identifier)
        except HarbormasterError:
            raise
        except Exception as e:
            raise HarbormasterError(
                "drift.hash", ErrorKind.EXTERNAL, f"config hash for stack {stack.name}: {e}", cause=e
            ) from e

    @staticmethod
    def classify(
        service: str,
        desired_hash: str,
        running: ServiceStatus | None,
        identifier: str = "",
    ) -> ServiceDrift:
        if running is None:
            return ServiceDrift(service, ServiceState.ABSENT, desired_hash, reason="not running")
        if identifier and running.identifier and running.identifier != identifier:
            return ServiceDrift(
                service, ServiceState.CHANGED, desired_hash, running.config_hash, reason="identifier mismatch"
            )
        if running.config_hash != desired_hash:
            return ServiceDrift(
                service, ServiceState.CHANGED, desired_hash, running.config_hash, reason="config drift"
            )
        return ServiceDrift(service, ServiceState.UNCHANGED, desired_hash, running.config_hash)

    async def detect(
        self,
        context: str,
        stack: StackSpec,
        env: dict[str, str],
        running: dict[str, ServiceStatus],
        identifier: str = "",
    ) -> StackDrift:
        """Classify every declared service of ``stack`` and list orphans."""
        desired = await self.hash(context, stack, env, identifier)
        drift = StackDrift(stack=stack.name)
        for service in sorted(desired):
            result = self.classify(service, desired[service], running.get(service), identifier)
            logger.debug(f"[{context}] {stack.name}/{service}: {result.state.value} {result.reason}")
            drift.services.append(result)
        drift.orphans = sorted(name for name in running if name not in desired)
        return drift
