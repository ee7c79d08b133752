"""
Configuration loader — reads runtimectl.yml into a Settings model.

The file is optional. It is found by walking up from the working
directory; the directory that holds it is the project root (the
lockfile and step markers live under <root>/.state/). Without a file,
defaults apply and the working directory is the root.

Environment overrides are applied after the file:

    CONTAINER_RUNTIME             pre-set engine (docker | podman)
    RUNTIMECTL_ALLOW_REMEDIATION  1/true/yes enables the compose download
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from runtimectl.core.models.resolution import Engine
from runtimectl.core.reliability.retry import BackoffStrategy, RetryPolicy

logger = logging.getLogger(__name__)

CONFIG_FILE = "runtimectl.yml"

ENV_ENGINE = "CONTAINER_RUNTIME"
ENV_ALLOW_REMEDIATION = "RUNTIMECTL_ALLOW_REMEDIATION"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


class ConfigError(Exception):
    """Raised when configuration is invalid or unreadable."""


# ── Models ──────────────────────────────────────────────────────


class RetrySettings(BaseModel):
    """Backoff for retried operations (verification, downloads)."""

    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    jitter_bound: float = Field(default=0.5, ge=0)
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL

    def policy(self, retryable_exit_codes: tuple[int, ...] = ()) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            jitter_bound=self.jitter_bound,
            retryable_exit_codes=frozenset(retryable_exit_codes),
            strategy=self.strategy,
        )


class DeadlineSettings(BaseModel):
    """Per-operation time budgets, in seconds."""

    model_config = ConfigDict(extra="forbid")

    daemon_probe: float = Field(default=5.0, gt=0)
    verify: float = Field(default=30.0, gt=0)
    download: float = Field(default=120.0, gt=0)
    compose: float = Field(default=3600.0, gt=0)
    grace_period: float = Field(default=5.0, ge=0)
    use_timeout_utility: bool = False


class RemediationSettings(BaseModel):
    """Opt-in download of a pinned docker-compose release."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    compose_version: str = "2.21.0"
    install_dir: str = "~/.local/bin"
    base_url: str = "https://github.com/docker/compose/releases/download"
    sha256: str | None = None

    @property
    def install_path(self) -> Path:
        return Path(self.install_dir).expanduser()


class Settings(BaseModel):
    """Effective configuration for one invocation."""

    model_config = ConfigDict(extra="forbid")

    engine: Engine | None = None
    state_dir: str = ".state"
    os_release_path: str = "/etc/os-release"
    run_lock_timeout: float = Field(default=30.0, gt=0)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    deadlines: DeadlineSettings = Field(default_factory=DeadlineSettings)
    remediation: RemediationSettings = Field(default_factory=RemediationSettings)

    # Not read from the file; set by load_settings()
    root: Path = Field(default_factory=Path.cwd, exclude=True)
    config_path: Path | None = Field(default=None, exclude=True)

    @property
    def state_path(self) -> Path:
        state = Path(self.state_dir).expanduser()
        return state if state.is_absolute() else self.root / state

    @property
    def lockfile_path(self) -> Path:
        return self.state_path / "runtime.lock"

    @property
    def steps_path(self) -> Path:
        return self.state_path / "steps"

    @property
    def run_lock_path(self) -> Path:
        return self.state_path / "deploy.lock"


# ── Loading ─────────────────────────────────────────────────────


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for runtimectl.yml from ``start_dir`` (default: cwd) upward."""
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def load_settings(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
    start_dir: Path | None = None,
) -> Settings:
    """Load settings from ``path`` (or the discovered file) plus environment.

    Raises:
        ConfigError: If an explicit path is missing, the YAML or any
            value is invalid, or CONTAINER_RUNTIME names no known engine.
    """
    env = os.environ if env is None else env

    if path is not None and not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    if path is None:
        path = find_config_file(start_dir)

    data: dict = {}
    if path is not None:
        data = _read_yaml(path)

    _apply_env(data, env)

    try:
        settings = Settings.model_validate(data)
    except ValidationError as e:
        source = path if path is not None else "environment"
        raise ConfigError(f"Invalid configuration ({source}): {e}") from e

    root = path.parent.resolve() if path is not None else (start_dir or Path.cwd()).resolve()
    settings = settings.model_copy(update={"root": root, "config_path": path})
    logger.debug(
        "Settings loaded (config=%s, root=%s, engine=%s)",
        path, root, settings.engine.value if settings.engine else "auto",
    )
    return settings


def _read_yaml(path: Path) -> dict:
    logger.debug("Loading settings from %s", path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    # Settings may sit under a top-level "runtimectl" key
    section = data.get("runtimectl", data)
    if not isinstance(section, dict):
        raise ConfigError(f"'runtimectl' in {path} must be a mapping")
    return dict(section)


def _apply_env(data: dict, env: Mapping[str, str]) -> None:
    engine = env.get(ENV_ENGINE, "").strip().lower()
    if engine:
        try:
            data["engine"] = Engine(engine)
        except ValueError:
            raise ConfigError(
                f"{ENV_ENGINE}={engine!r} is not a supported engine "
                f"(expected one of: {', '.join(e.value for e in Engine)})"
            ) from None

    allow = env.get(ENV_ALLOW_REMEDIATION)
    if allow is not None:
        value = allow.strip().lower()
        if value not in _TRUTHY | _FALSY:
            raise ConfigError(f"{ENV_ALLOW_REMEDIATION}={allow!r} is not a boolean")
        remediation = data.get("remediation")
        if remediation is None:
            remediation = {}
        if not isinstance(remediation, dict):
            raise ConfigError(
                f"'remediation' must be a mapping to apply {ENV_ALLOW_REMEDIATION}"
            )
        remediation = dict(remediation)
        remediation["enabled"] = value in _TRUTHY
        data["remediation"] = remediation
