"""
Resolution models — the outcome of runtime + compose selection.

ResolutionRecord is the single document persisted to the runtime
lockfile (.state/runtime.lock). RuntimeConfig is the immutable value
handed to every collaborator once resolution has completed; nothing
downstream reads exported shell variables.
"""

from __future__ import annotations

import shlex
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

SCHEMA_VERSION = 2


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Engine(StrEnum):
    """Container engines, in default preference order."""

    DOCKER = "docker"
    PODMAN = "podman"

    @property
    def other(self) -> Engine:
        return Engine.PODMAN if self is Engine.DOCKER else Engine.DOCKER


class SupportLevel(StrEnum):
    """How completely a compose implementation supports a feature."""

    FULL = "full"
    LIMITED = "limited"
    NONE = "none"


class Capabilities(BaseModel):
    """Feature flags implied by the winning engine + compose pair.

    ``podman_socket``, ``network_backend`` and ``docker_network`` describe
    the engine rather than the compose implementation; they are probed at
    detection time and carried over when compose is resolved.
    """

    model_config = ConfigDict(frozen=True)

    secrets: SupportLevel = SupportLevel.NONE
    healthcheck: bool = False
    profiles: SupportLevel = SupportLevel.NONE
    buildkit: bool = False
    rootless: bool = False
    podman_socket: bool = False
    network_backend: str = ""  # netavark | cni (podman only)
    docker_network: bool = False

    def engine_flags(self) -> dict:
        """The engine-level fields, for carrying into a completed record."""
        return self.model_dump(include=set(ENGINE_CAPABILITIES))

    def engine_env(self, engine: Engine) -> dict[str, str]:
        """Engine-specific variables (only those meaningful for ``engine``)."""
        if engine == Engine.PODMAN:
            return {
                "PODMAN_HAS_SOCKET": _yes_no(self.podman_socket),
                "PODMAN_NETWORK_BACKEND": self.network_backend,
            }
        return {"DOCKER_NETWORK_AVAILABLE": _yes_no(self.docker_network)}


ENGINE_CAPABILITIES = ("rootless", "podman_socket", "network_backend", "docker_network")


class ComposeInvocation(BaseModel):
    """How to invoke compose: binary plus fixed leading args, plus env."""

    model_config = ConfigDict(frozen=True)

    argv: tuple[str, ...]
    env: dict[str, str] = Field(default_factory=dict)

    @property
    def command_line(self) -> str:
        return shlex.join(self.argv)

    def command(self, *args: str) -> list[str]:
        """Full argv for a compose subcommand, e.g. ``command("up", "-d")``."""
        return [*self.argv, *args]

    @classmethod
    def parse(cls, command_line: str, env: dict[str, str] | None = None) -> ComposeInvocation:
        argv = tuple(shlex.split(command_line))
        if not argv:
            raise ValueError("empty compose command line")
        return cls(argv=argv, env=env or {})


class ResolutionRecord(BaseModel):
    """Persisted result of runtime detection and compose resolution.

    A record with an engine but no compose invocation is a valid
    partial record: the engine decision is cached and only the compose
    cascade has to run again.
    """

    model_config = ConfigDict(frozen=True)

    schema_version: int = SCHEMA_VERSION
    engine: Engine
    provider: str | None = None
    compose: ComposeInvocation | None = None
    capabilities: Capabilities = Field(default_factory=Capabilities)
    detected_at: str = Field(default_factory=_now_iso)

    @property
    def complete(self) -> bool:
        """Whether both the engine and the compose invocation are known."""
        return self.compose is not None


class RuntimeConfig(BaseModel):
    """Ready-to-use runtime selection, threaded through to collaborators."""

    model_config = ConfigDict(frozen=True)

    engine: Engine
    provider: str
    compose: ComposeInvocation
    capabilities: Capabilities

    @classmethod
    def from_record(cls, record: ResolutionRecord) -> RuntimeConfig:
        if record.compose is None or record.provider is None:
            raise ValueError("resolution record has no compose invocation")
        return cls(
            engine=record.engine,
            provider=record.provider,
            compose=record.compose,
            capabilities=record.capabilities,
        )

    def compose_command(self, *args: str) -> list[str]:
        return self.compose.command(*args)

    def to_env(self) -> dict[str, str]:
        """Variables for collaborators that run as separate processes."""
        caps = self.capabilities
        env = {
            "CONTAINER_RUNTIME": self.engine.value,
            "COMPOSE_IMPL": self.provider,
            "COMPOSE_COMMAND": self.compose.command_line,
            "COMPOSE_SUPPORTS_SECRETS": caps.secrets.value,
            "COMPOSE_SUPPORTS_HEALTHCHECK": _yes_no(caps.healthcheck),
            "COMPOSE_SUPPORTS_PROFILES": caps.profiles.value,
            "COMPOSE_SUPPORTS_BUILDKIT": _yes_no(caps.buildkit),
            "CONTAINER_ROOTLESS": _yes_no(caps.rootless),
        }
        env.update(caps.engine_env(self.engine))
        env.update(self.compose.env)
        return env


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


# ── Errors ───────────────────────────────────────────────────────────


class CandidateAttempt(BaseModel):
    """One step of a detection or compose cascade, for diagnostics."""

    name: str
    outcome: str  # ok, unavailable, failed, timed_out, installed, install_failed
    command: str = ""
    detail: str = ""


class ResolutionError(RuntimeError):
    """Resolution exhausted every candidate.

    Carries the attempted candidates and operator-facing remediation
    lines so the CLI can print a complete diagnostic.
    """

    def __init__(
        self,
        message: str,
        attempts: list[CandidateAttempt] | None = None,
        remediation: list[str] | None = None,
    ):
        super().__init__(message)
        self.attempts = list(attempts or [])
        self.remediation = list(remediation or [])

    def report(self) -> str:
        lines = [str(self)]
        if self.attempts:
            lines.append("Attempted:")
            for attempt in self.attempts:
                detail = f" ({attempt.detail})" if attempt.detail else ""
                lines.append(f"  - {attempt.name}: {attempt.outcome}{detail}")
        if self.remediation:
            lines.append("Remediation:")
            lines.extend(f"  - {line}" for line in self.remediation)
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "attempts": [a.model_dump() for a in self.attempts],
            "remediation": self.remediation,
        }
