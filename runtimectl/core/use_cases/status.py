"""
Status use case — cached decision next to what the host offers right now.

Nothing here writes the lockfile. Live probes are availability checks
only (binary present, daemon answering, provider installed); no
candidate is verified.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from runtimectl.adapters.compose.base import ProviderOptions
from runtimectl.adapters.compose.providers import cross_engine_provider, native_providers
from runtimectl.adapters.shell.command import CommandRunner
from runtimectl.core.config.loader import ENV_ALLOW_REMEDIATION, ENV_ENGINE, Settings
from runtimectl.core.models.resolution import Engine, ResolutionRecord, RuntimeConfig
from runtimectl.core.observability.logging_config import (
    ENV_LOG_FILE,
    ENV_LOG_FILE_LEVEL,
    ENV_LOG_LEVEL,
)
from runtimectl.core.persistence.lockfile import ResolutionCache
from runtimectl.core.persistence.steps import StepMarker, StepTracker
from runtimectl.core.services.platform_detect import (
    PlatformInfo,
    engine_preference,
    read_platform,
)
from runtimectl.core.services.runtime_detect import RuntimeDetector

# Variables produced by RuntimeConfig.to_env(), in display order
PRODUCED_VARIABLES: dict[str, str] = {
    "CONTAINER_RUNTIME": "Selected container engine (docker | podman)",
    "COMPOSE_IMPL": "Winning compose provider",
    "COMPOSE_COMMAND": "Compose command line (binary + leading args)",
    "COMPOSE_SUPPORTS_SECRETS": "Compose secrets support (full | limited | none)",
    "COMPOSE_SUPPORTS_HEALTHCHECK": "Compose healthcheck support (yes | no)",
    "COMPOSE_SUPPORTS_PROFILES": "Compose profiles support (full | limited | none)",
    "COMPOSE_SUPPORTS_BUILDKIT": "BuildKit builds available (yes | no)",
    "CONTAINER_ROOTLESS": "Engine runs rootless (yes | no)",
    "PODMAN_HAS_SOCKET": "Podman API socket present (yes | no; podman only)",
    "PODMAN_NETWORK_BACKEND": "Podman network backend (netavark | cni; podman only)",
    "DOCKER_NETWORK_AVAILABLE": "Docker bridge network available (yes | no; docker only)",
    "DOCKER_HOST": "Engine API socket (cross-engine fallback only)",
}

# Variables read by runtimectl itself
CONSUMED_VARIABLES: dict[str, str] = {
    ENV_ENGINE: "Pre-set engine; skips auto-detection",
    ENV_ALLOW_REMEDIATION: "Allow downloading docker-compose (1 | 0)",
    ENV_LOG_LEVEL: "Console log level",
    ENV_LOG_FILE: "Log file path",
    ENV_LOG_FILE_LEVEL: "Log file level",
}


@dataclass
class EngineProbe:
    engine: Engine
    installed: bool = False
    reachable: bool = False
    providers: dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "engine": self.engine.value,
            "installed": self.installed,
            "reachable": self.reachable,
            "providers": dict(self.providers),
        }


@dataclass
class StatusResult:
    """Cached record, live probes and interrupted steps."""

    record: ResolutionRecord | None = None
    lockfile: str = ""
    platform: PlatformInfo | None = None
    preference: list[str] = field(default_factory=list)
    preference_reason: str = ""
    engines: list[EngineProbe] = field(default_factory=list)
    incomplete_steps: list[StepMarker] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["lockfile"] = self.lockfile
        if self.record is not None:
            result["cached"] = {
                "engine": self.record.engine.value,
                "provider": self.record.provider,
                "compose": self.record.compose.command_line if self.record.compose else None,
                "complete": self.record.complete,
                "capabilities": self.record.capabilities.model_dump(mode="json"),
                "detected_at": self.record.detected_at,
            }
        else:
            result["cached"] = None
        if self.platform is not None:
            result["platform"] = self.platform.to_dict()
        result["preference"] = {"order": self.preference, "reason": self.preference_reason}
        result["engines"] = [e.to_dict() for e in self.engines]
        result["incomplete_steps"] = [m.to_dict() for m in self.incomplete_steps]
        return result


def get_status(
    settings: Settings,
    runner: CommandRunner,
    platform: PlatformInfo | None = None,
) -> StatusResult:
    """Report cached decision and live availability side by side."""
    cache = ResolutionCache(settings.lockfile_path)
    result = StatusResult(lockfile=str(cache.path))
    result.record = cache.load()

    platform = platform or read_platform(settings.os_release_path)
    result.platform = platform
    preference = engine_preference(
        platform,
        docker_installed=runner.which("docker") is not None,
        preset=settings.engine,
    )
    result.preference = [e.value for e in preference.order]
    result.preference_reason = preference.reason

    detector = RuntimeDetector(runner, cache, settings, platform=platform)
    options = ProviderOptions(
        probe_timeout=settings.deadlines.daemon_probe,
        verify_timeout=settings.deadlines.verify,
    )
    for engine in Engine:
        probe = EngineProbe(engine=engine, installed=runner.which(engine.value) is not None)
        if probe.installed:
            probe.reachable = detector.is_reachable(engine)
            candidates = native_providers(engine, runner, options)
            fallback = cross_engine_provider(engine, runner, options)
            if fallback is not None:
                candidates.append(fallback)
            probe.providers = {p.name: p.is_available() for p in candidates}
        result.engines.append(probe)

    result.incomplete_steps = StepTracker(settings.steps_path).markers()
    return result


def describe_variables(
    settings: Settings,
    env: Mapping[str, str] | None = None,
) -> list[dict]:
    """Recognized variables with descriptions and current values.

    Produced variables take their values from the runtime lock (empty
    when nothing is cached); consumed ones from the environment.
    """
    env = os.environ if env is None else env
    record = ResolutionCache(settings.lockfile_path).load()
    produced: dict[str, str] = {}
    if record is not None and record.complete:
        produced = RuntimeConfig.from_record(record).to_env()
    elif record is not None:
        produced = {"CONTAINER_RUNTIME": record.engine.value}

    rows = [
        {"name": name, "kind": "produced", "description": desc, "value": produced.get(name, "")}
        for name, desc in PRODUCED_VARIABLES.items()
    ]
    rows.extend(
        {"name": name, "kind": "consumed", "description": desc, "value": env.get(name, "")}
        for name, desc in CONSUMED_VARIABLES.items()
    )
    return rows
