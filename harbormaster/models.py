"""
Pydantic models for the Harbormaster reconciliation engine.

This module contains the data models the engine consumes and produces:
- Desired state (contexts, networks, volumes, stacks, filesets)
- Actual state discovered from a container runtime
- Cleanup options for prune/destroy
"""

import re
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ErrorKind, HarbormasterError


# =============================================================================
# Core Enums
# =============================================================================

class NetworkMismatchPolicy(str, Enum):
    """What to do when an existing network differs from its declaration."""
    ERROR = "error"
    RECREATE = "recreate"
    IGNORE = "ignore"


class ApplyMode(str, Enum):
    """How a fileset sync interacts with the services that use it."""
    HOT = "hot"    # sync while running, restart afterwards
    COLD = "cold"  # stop, sync, start


# =============================================================================
# Desired State Models
# =============================================================================

class NetworkSpec(BaseModel):
    """Desired network. Empty or unset fields are not compared for drift."""
    name: str
    driver: str = ""
    options: dict[str, str] = Field(default_factory=dict)
    internal: bool = False
    attachable: bool = False
    ipv6: bool = False
    subnet: str = ""
    gateway: str = ""
    ip_range: str = ""
    aux_addresses: dict[str, str] = Field(default_factory=dict)
    mismatch: NetworkMismatchPolicy = NetworkMismatchPolicy.RECREATE


class VolumeSpec(BaseModel):
    """Desired volume."""
    name: str


_MODE_RE = re.compile(r"^[0-7]{3,4}$")
_OWNER_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")


class Ownership(BaseModel):
    """Ownership and permission policy applied after a fileset sync."""
    user: str = ""
    group: str = ""
    file_mode: str = ""
    dir_mode: str = ""
    preserve_existing: bool = False

    @field_validator("file_mode", "dir_mode")
    @classmethod
    def _check_mode(cls, value: str) -> str:
        value = value.strip()
        if value and not _MODE_RE.match(value):
            raise ValueError(f"invalid octal mode {value!r}")
        return value

    @field_validator("user", "group")
    @classmethod
    def _check_owner(cls, value: str) -> str:
        value = value.strip()
        if value and not _OWNER_RE.match(value):
            raise ValueError(f"invalid user/group {value!r}")
        return value

    def is_empty(self) -> bool:
        return not (self.user or self.group or self.file_mode or self.dir_mode)


class AttachedServices(BaseModel):
    """Restart every service that mounts the fileset's target volume."""
    kind: Literal["attached"] = "attached"


class ServiceList(BaseModel):
    """Restart an explicit list of services."""
    kind: Literal["services"] = "services"
    services: list[str] = Field(default_factory=list)

    @field_validator("services")
    @classmethod
    def _dedupe(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for name in value:
            name = name.strip()
            if name and name not in seen:
                seen.append(name)
        return seen


RestartTarget = Annotated[Union[AttachedServices, ServiceList], Field(discriminator="kind")]


def parse_restart_target(value: Any) -> Any:
    """Decode the keyword ``"attached"`` or a list of names into a RestartTarget."""
    if value is None:
        return ServiceList()
    if isinstance(value, str):
        if value.strip() == "attached":
            return AttachedServices()
        raise ValueError(f"restart_services must be 'attached' or a list, got {value!r}")
    if isinstance(value, (list, tuple)):
        return ServiceList(services=list(value))
    return value


class FilesetSpec(BaseModel):
    """Local directory kept in sync with a path inside a volume."""
    name: str
    source: Path
    target_volume: str
    target_path: str
    exclude: list[str] = Field(default_factory=list)
    ownership: Ownership | None = None
    restart_services: RestartTarget = Field(default_factory=ServiceList)
    apply_mode: ApplyMode = ApplyMode.HOT

    @field_validator("restart_services", mode="before")
    @classmethod
    def _decode_restart(cls, value: Any) -> Any:
        return parse_restart_target(value)

    @field_validator("target_path")
    @classmethod
    def _check_target_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"target_path must be absolute, got {value!r}")
        return value


class EnvironmentSpec(BaseModel):
    """Environment sources: dotenv files then inline pairs."""
    files: list[Path] = Field(default_factory=list)
    inline: dict[str, str] = Field(default_factory=dict)


class SecretsSpec(BaseModel):
    """SOPS-encrypted files whose pairs join the environment."""
    sops: list[Path] = Field(default_factory=list)


class SecretsConfig(BaseModel):
    """Key material handed explicitly to every decrypt call."""
    age_key_file: Path | None = None
    pgp_dir: Path | None = None


class StackSpec(BaseModel):
    """Compose application."""
    name: str
    root: Path
    files: list[str] = Field(default_factory=list)
    profiles: list[str] = Field(default_factory=list)
    project: str = ""
    environment: EnvironmentSpec = Field(default_factory=EnvironmentSpec)
    secrets: SecretsSpec = Field(default_factory=SecretsSpec)

    @property
    def project_name(self) -> str:
        return self.project or self.name


def _check_unique(kind: str, names: list[str]) -> None:
    seen = set()
    for name in names:
        if name in seen:
            raise ValueError(f"duplicate {kind} {name!r}")
        seen.add(name)


class ContextSpec(BaseModel):
    """One runtime endpoint and everything declared for it."""
    name: str
    identifier: str
    networks: list[NetworkSpec] = Field(default_factory=list)
    volumes: list[VolumeSpec] = Field(default_factory=list)
    stacks: list[StackSpec] = Field(default_factory=list)
    filesets: list[FilesetSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_keys(self) -> "ContextSpec":
        _check_unique("network", [n.name for n in self.networks])
        _check_unique("volume", [v.name for v in self.volumes])
        _check_unique("stack", [s.name for s in self.stacks])
        _check_unique("fileset", [f.name for f in self.filesets])
        return self

    def desired_volumes(self) -> list[str]:
        """Explicit volumes plus every fileset target volume, sorted."""
        names = {v.name for v in self.volumes}
        names.update(f.target_volume for f in self.filesets)
        return sorted(names)


class DesiredState(BaseModel):
    """Normalized desired-state document."""
    contexts: list[ContextSpec] = Field(default_factory=list)
    environment: EnvironmentSpec = Field(default_factory=EnvironmentSpec)
    secrets: SecretsSpec = Field(default_factory=SecretsSpec)
    secrets_config: SecretsConfig = Field(default_factory=SecretsConfig)

    @model_validator(mode="after")
    def _unique_contexts(self) -> "DesiredState":
        _check_unique("context", [c.name for c in self.contexts])
        return self

    def context(self, name: str) -> ContextSpec:
        for ctx in self.contexts:
            if ctx.name == name:
                return ctx
        raise HarbormasterError("models.context", ErrorKind.NOT_FOUND, f"unknown context {name!r}")


def load_desired_state(data: dict[str, Any]) -> DesiredState:
    """Validate a raw mapping into a DesiredState.

    Raises:
        HarbormasterError: invalid_input when validation fails
    """
    try:
        return DesiredState.model_validate(data)
    except ValidationError as e:
        raise HarbormasterError(
            "models.load_desired_state", ErrorKind.INVALID_INPUT, str(e), cause=e
        ) from e


# =============================================================================
# Actual State Models
# =============================================================================

class NetworkInfo(BaseModel):
    """Network as reported by the runtime."""
    name: str
    driver: str = ""
    options: dict[str, str] = Field(default_factory=dict)
    internal: bool = False
    attachable: bool = False
    ipv6: bool = False
    subnet: str = ""
    gateway: str = ""
    ip_range: str = ""
    aux_addresses: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)


class VolumeInfo(BaseModel):
    """Volume as reported by the runtime."""
    name: str
    labels: dict[str, str] = Field(default_factory=dict)


class ServiceStatus(BaseModel):
    """A running stack service and the configuration hash it was started with."""
    stack: str
    service: str
    container: str = ""
    config_hash: str = ""
    identifier: str = ""


class ActualState(BaseModel):
    """Everything discovered for one context during one plan build."""
    context: str
    networks: list[NetworkInfo] = Field(default_factory=list)
    volumes: list[VolumeInfo] = Field(default_factory=list)
    services: list[ServiceStatus] = Field(default_factory=list)

    def network(self, name: str) -> NetworkInfo | None:
        return next((n for n in self.networks if n.name == name), None)

    def has_volume(self, name: str) -> bool:
        return any(v.name == name for v in self.volumes)

    def stack_services(self, stack: str) -> dict[str, ServiceStatus]:
        return {s.service: s for s in self.services if s.stack == stack}

    def stack_names(self) -> list[str]:
        return sorted({s.stack for s in self.services})


# =============================================================================
# Execution Options
# =============================================================================

class CleanupOptions(BaseModel):
    """Failure policy for prune and destroy."""
    strict: bool = False
    verbose_errors: bool = False
