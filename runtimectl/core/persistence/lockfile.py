"""
Runtime lockfile — persisted ResolutionRecord in KEY=value form.

The lockfile is stored at .state/runtime.lock and written atomically.
It stays shell-sourceable so operators can inspect or source it:

    # runtimectl runtime lock
    SCHEMA_VERSION=2
    RUNTIME=podman
    COMPOSE='podman compose'
    COMPOSE_IMPL=podman-compose-plugin
    COMPOSE_SUPPORTS_SECRETS=full
    ...

Unknown keys are ignored. A file without SCHEMA_VERSION is the legacy
format (RUNTIME + COMPOSE only) and is read with default capabilities.
Anything unparseable is treated as absent: callers fall back to a cold
start instead of failing.
"""

from __future__ import annotations

import logging
import shlex
from pathlib import Path

from pydantic import ValidationError

from runtimectl.core.models.resolution import (
    SCHEMA_VERSION,
    Capabilities,
    ComposeInvocation,
    Engine,
    ResolutionRecord,
    SupportLevel,
)
from runtimectl.core.persistence.atomic import atomic_write

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".state"
DEFAULT_LOCK_FILE = "runtime.lock"

_ENV_PREFIX = "COMPOSE_ENV_"
_YES = {"yes", "true", "1", "full", "limited"}


class LockfileFormatError(ValueError):
    """Raised internally when a lockfile line cannot be parsed."""


def default_lockfile_path(project_root: Path) -> Path:
    """Get the default lockfile path for a project."""
    return project_root / DEFAULT_STATE_DIR / DEFAULT_LOCK_FILE


# ── Serialization ───────────────────────────────────────────────────


def render_record(record: ResolutionRecord) -> str:
    """Render a record as lockfile text."""
    caps = record.capabilities
    lines = [
        "# runtimectl runtime lock (generated, do not edit)",
        f"SCHEMA_VERSION={SCHEMA_VERSION}",
        f"RUNTIME={record.engine.value}",
    ]
    if record.compose is not None:
        lines.append(f"COMPOSE={shlex.quote(record.compose.command_line)}")
    if record.provider:
        lines.append(f"COMPOSE_IMPL={record.provider}")
    lines.extend([
        f"COMPOSE_SUPPORTS_SECRETS={caps.secrets.value}",
        f"COMPOSE_SUPPORTS_HEALTHCHECK={'yes' if caps.healthcheck else 'no'}",
        f"COMPOSE_SUPPORTS_PROFILES={caps.profiles.value}",
        f"COMPOSE_SUPPORTS_BUILDKIT={'yes' if caps.buildkit else 'no'}",
        f"CONTAINER_ROOTLESS={'yes' if caps.rootless else 'no'}",
    ])
    lines.extend(f"{k}={v}" for k, v in caps.engine_env(record.engine).items())
    lines.extend([
        f"DETECTED_AT={record.detected_at}",
    ])
    if record.compose is not None:
        for name, value in sorted(record.compose.env.items()):
            lines.append(f"{_ENV_PREFIX}{name}={shlex.quote(value)}")
    return "\n".join(lines) + "\n"


def parse_assignments(text: str) -> dict[str, str]:
    """Parse KEY=value lines. Comments and blank lines are skipped.

    Raises:
        LockfileFormatError: On a line that is not an assignment.
    """
    values: dict[str, str] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, sep, value = line.partition("=")
        if not sep or not key.isidentifier():
            raise LockfileFormatError(f"line {lineno}: not a KEY=value assignment")
        try:
            parts = shlex.split(value)
        except ValueError as e:
            raise LockfileFormatError(f"line {lineno}: {e}") from e
        values[key] = " ".join(parts)
    return values


def parse_record(text: str) -> ResolutionRecord | None:
    """Build a record from lockfile text, or None if it is not usable."""
    try:
        values = parse_assignments(text)
    except LockfileFormatError as e:
        logger.warning("Malformed runtime lock: %s", e)
        return None

    try:
        engine = Engine(values.get("RUNTIME", ""))
    except ValueError:
        logger.warning("Runtime lock names no known engine (RUNTIME=%r)", values.get("RUNTIME"))
        return None

    legacy = "SCHEMA_VERSION" not in values
    if not legacy:
        try:
            schema = int(values["SCHEMA_VERSION"])
        except ValueError:
            logger.warning("Runtime lock has a non-numeric SCHEMA_VERSION")
            return None
        if schema > SCHEMA_VERSION:
            logger.warning(
                "Runtime lock schema %d is newer than supported (%d)", schema, SCHEMA_VERSION
            )
            return None

    compose = None
    env = {k[len(_ENV_PREFIX):]: v for k, v in values.items() if k.startswith(_ENV_PREFIX)}
    try:
        if values.get("COMPOSE"):
            compose = ComposeInvocation.parse(values["COMPOSE"], env)
        record = ResolutionRecord(
            schema_version=SCHEMA_VERSION,
            engine=engine,
            provider=values.get("COMPOSE_IMPL") or (_legacy_provider(compose) if compose else None),
            compose=compose,
            capabilities=_parse_capabilities(values) if not legacy else Capabilities(),
            **({"detected_at": values["DETECTED_AT"]} if values.get("DETECTED_AT") else {}),
        )
    except (ValidationError, ValueError) as e:
        logger.warning("Runtime lock has invalid values: %s", e)
        return None

    if legacy:
        logger.info("Read legacy runtime lock (engine=%s)", engine.value)
    return record


def _parse_capabilities(values: dict[str, str]) -> Capabilities:
    return Capabilities(
        secrets=_level(values.get("COMPOSE_SUPPORTS_SECRETS")),
        healthcheck=_flag(values.get("COMPOSE_SUPPORTS_HEALTHCHECK")),
        profiles=_level(values.get("COMPOSE_SUPPORTS_PROFILES")),
        buildkit=_flag(values.get("COMPOSE_SUPPORTS_BUILDKIT")),
        rootless=_flag(values.get("CONTAINER_ROOTLESS")),
        podman_socket=_flag(values.get("PODMAN_HAS_SOCKET")),
        network_backend=values.get("PODMAN_NETWORK_BACKEND", ""),
        docker_network=_flag(values.get("DOCKER_NETWORK_AVAILABLE")),
    )


def _level(value: str | None) -> SupportLevel:
    if value is None:
        return SupportLevel.NONE
    value = value.lower()
    if value in ("yes", "true"):
        return SupportLevel.FULL
    if value in ("no", "false"):
        return SupportLevel.NONE
    return SupportLevel(value)


def _flag(value: str | None) -> bool:
    return (value or "").lower() in _YES


def _legacy_provider(compose: ComposeInvocation) -> str:
    """Best-effort provider name for a legacy lock that only has COMPOSE."""
    argv = compose.argv
    if argv[:2] == ("docker", "compose"):
        return "docker-compose-plugin"
    if argv[:2] == ("podman", "compose"):
        return "podman-compose-plugin"
    if argv[0].endswith("podman-compose"):
        return "podman-compose"
    if "DOCKER_HOST" in compose.env:
        return "docker-compose-on-podman"
    return "docker-compose"


# ── Cache ───────────────────────────────────────────────────────────


class ResolutionCache:
    """Load/store/clear the runtime lockfile.

    Args:
        path: Lockfile location (usually ``default_lockfile_path(root)``).
    """

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> ResolutionRecord | None:
        """Return the cached record, or None (absent or unusable)."""
        if not self.path.is_file():
            logger.debug("No runtime lock at %s", self.path)
            return None
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Cannot read runtime lock %s: %s — ignoring", self.path, e)
            return None
        record = parse_record(text)
        if record is None:
            logger.warning("Ignoring unusable runtime lock at %s", self.path)
        else:
            logger.debug(
                "Loaded runtime lock from %s (engine=%s, complete=%s)",
                self.path, record.engine.value, record.complete,
            )
        return record

    def store(self, record: ResolutionRecord) -> None:
        """Persist ``record`` (atomic replace)."""
        atomic_write(self.path, render_record(record))
        logger.info("Runtime lock written to %s", self.path)

    def clear(self) -> bool:
        """Remove the lockfile. Returns True if a file was removed."""
        if not self.path.exists():
            return False
        self.path.unlink()
        logger.info("Runtime lock %s removed", self.path)
        return True

    def show(self) -> str | None:
        """Raw lockfile text, or None if there is none."""
        if not self.path.is_file():
            return None
        return self.path.read_text(encoding="utf-8")
