"""
Collaborator interfaces consumed by the engine.

The engine never talks to a container daemon, a secrets tool or a UI
directly. It drives these protocols, which a transport layer implements.
"""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from .models import NetworkInfo, NetworkSpec, SecretsConfig, ServiceStatus, StackSpec, VolumeInfo

# Label stamped on every runtime object the engine creates
IDENTIFIER_LABEL = "io.harbormaster.identifier"


def owner_labels(identifier: str) -> dict[str, str]:
    """Labels applied to networks and volumes created for ``identifier``."""
    return {IDENTIFIER_LABEL: identifier} if identifier else {}


# =============================================================================
# Staging container operations
# =============================================================================

@dataclass(frozen=True)
class ReadFile:
    """Read ``path`` (relative to ``target_path``); missing files read as empty."""
    target_path: str
    path: str


@dataclass(frozen=True)
class WriteFile:
    target_path: str
    path: str
    content: bytes


@dataclass(frozen=True)
class ExtractArchive:
    """Extract a tar archive into ``target_path``."""
    target_path: str
    archive: bytes


@dataclass(frozen=True)
class RemovePaths:
    target_path: str
    paths: tuple[str, ...]


@dataclass(frozen=True)
class RunScript:
    """Run a POSIX shell script with ``target_path`` as working directory."""
    target_path: str
    script: str


StagingOp = ReadFile | WriteFile | ExtractArchive | RemovePaths | RunScript


@dataclass
class StagingResult:
    stdout: bytes = b""
    stderr: bytes = b""
    metadata: dict[str, str] = field(default_factory=dict)


# =============================================================================
# Protocols
# =============================================================================

@runtime_checkable
class RuntimeClient(Protocol):
    """Container runtime primitives, scoped per context.

    Implementations raise HarbormasterError with kind ``unavailable`` when
    the endpoint cannot be reached and ``external`` for tool failures.
    """

    async def list_networks(self, context: str, identifier: str) -> list[NetworkInfo]: ...

    async def list_volumes(self, context: str, identifier: str) -> list[VolumeInfo]: ...

    async def list_stacks(self, context: str, identifier: str) -> list[ServiceStatus]: ...

    async def create_network(self, context: str, spec: NetworkSpec, labels: dict[str, str]) -> None: ...

    async def delete_network(self, context: str, name: str) -> None: ...

    async def create_volume(self, context: str, name: str, labels: dict[str, str]) -> None: ...

    async def delete_volume(self, context: str, name: str) -> None: ...

    async def compose_config_hash(
        self, context: str, stack: StackSpec, env: dict[str, str], identifier: str
    ) -> dict[str, str]:
        """Return ``{service: config hash}`` for every service the stack declares."""
        ...

    async def compose_up(
        self, context: str, stack: StackSpec, env: dict[str, str], identifier: str
    ) -> None: ...

    async def compose_down(self, context: str, project: str, identifier: str) -> None: ...

    async def remove_services(self, context: str, project: str, services: list[str]) -> None: ...

    async def run_staging_container(self, context: str, volume: str, op: StagingOp) -> StagingResult: ...

    async def discover_attached_services(self, context: str, volume: str) -> list[str]: ...

    async def restart_services(self, context: str, services: list[str]) -> None: ...

    async def stop_services(self, context: str, services: list[str]) -> None: ...

    async def start_services(self, context: str, services: list[str]) -> None: ...


@runtime_checkable
class SecretsResolver(Protocol):
    """Decrypts a secrets file into ordered key/value pairs."""

    async def decrypt(self, path, config: SecretsConfig) -> list[tuple[str, str]]: ...


@runtime_checkable
class ProgressObserver(Protocol):
    """Receives one human readable label per action as it starts."""

    def on_action_start(self, label: str) -> None: ...
