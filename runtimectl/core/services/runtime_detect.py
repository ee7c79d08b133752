"""
Runtime detector — pick the container engine.

    Cold ──► Probing ──► Resolved
                    └──► Failed

A valid cached record skips probing entirely. Otherwise the engines are
probed in the order given by ``engine_preference()``: an engine
qualifies when its binary is on the path and its daemon/service answers
an ``info`` probe within the probe deadline. Reachability probes are
not retried.

The winner is persisted as a partial record (engine + rootless flag);
compose resolution completes it afterwards.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from pathlib import Path

from runtimectl.adapters.compose.providers import podman_socket_path
from runtimectl.adapters.shell.command import CommandRunner
from runtimectl.core.config.loader import Settings
from runtimectl.core.models.resolution import (
    Capabilities,
    CandidateAttempt,
    Engine,
    ResolutionError,
    ResolutionRecord,
)
from runtimectl.core.persistence.lockfile import ResolutionCache
from runtimectl.core.services.platform_detect import (
    PlatformInfo,
    engine_preference,
    read_platform,
)

logger = logging.getLogger(__name__)

# Reachability probe per engine: prints the server version when the
# daemon (docker) or the service (podman) answers
REACHABILITY_PROBES: dict[Engine, tuple[str, ...]] = {
    Engine.DOCKER: ("docker", "info", "--format", "{{.ServerVersion}}"),
    Engine.PODMAN: ("podman", "info", "--format", "{{.Version.Version}}"),
}

ROOTLESS_PROBES: dict[Engine, tuple[str, ...]] = {
    Engine.DOCKER: ("docker", "info", "--format", "{{.SecurityOptions}}"),
    Engine.PODMAN: ("podman", "info", "--format", "{{.Host.Security.Rootless}}"),
}

NETWORK_BACKEND_PROBE = ("podman", "info", "--format", "{{.Host.NetworkBackend}}")
DOCKER_NETWORK_PROBE = ("docker", "network", "ls", "--format", "{{.Driver}}")

INSTALL_HINTS: dict[Engine, list[str]] = {
    Engine.DOCKER: [
        "Install Docker: curl -fsSL https://get.docker.com | sh",
        "Start the daemon: sudo systemctl enable --now docker",
        "Allow your user: sudo usermod -aG docker $USER (then log in again)",
    ],
    Engine.PODMAN: [
        "Install Podman: sudo dnf install -y podman  # or: sudo apt-get install -y podman",
        "Check it works: podman info",
    ],
}


class DetectionState(StrEnum):
    COLD = "cold"
    PROBING = "probing"
    RESOLVED = "resolved"
    FAILED = "failed"


class RuntimeDetectionError(ResolutionError):
    """No container engine qualified."""


class RuntimeDetector:
    """Choose and cache the container engine.

    Args:
        runner: Command runner used for every probe.
        cache: Lockfile cache.
        settings: Effective settings (pre-set engine, probe deadline).
        platform: Host identity; read from ``settings.os_release_path``
            when omitted.
    """

    def __init__(
        self,
        runner: CommandRunner,
        cache: ResolutionCache,
        settings: Settings,
        platform: PlatformInfo | None = None,
    ):
        self.runner = runner
        self.cache = cache
        self.settings = settings
        self.platform = platform or read_platform(settings.os_release_path)
        self.state = DetectionState.COLD
        self.attempts: list[CandidateAttempt] = []

    def detect(self, force: bool = False) -> ResolutionRecord:
        """Return the engine decision, probing only when needed.

        Raises:
            RuntimeDetectionError: If no engine qualifies.
        """
        if not force:
            cached = self._usable_cache()
            if cached is not None:
                self.state = DetectionState.RESOLVED
                return cached

        self.state = DetectionState.PROBING
        self.attempts = []
        preference = engine_preference(
            self.platform,
            docker_installed=self.runner.which("docker") is not None,
            preset=self.settings.engine,
        )
        logger.info(
            "Probing engines %s (%s)",
            ", ".join(e.value for e in preference.order),
            preference.reason,
        )
        for note in preference.notes:
            logger.warning(note)

        for engine in preference.order:
            if self._qualifies(engine):
                record = ResolutionRecord(
                    engine=engine,
                    capabilities=Capabilities(
                        rootless=self.probe_rootless(engine),
                        **self.probe_engine_flags(engine),
                    ),
                )
                self.cache.store(record)
                self.state = DetectionState.RESOLVED
                logger.info("Container engine: %s", engine.value)
                return record

        self.state = DetectionState.FAILED
        raise RuntimeDetectionError(
            self._failure_message(preference.pinned),
            attempts=self.attempts,
            remediation=self._remediation(preference.order),
        )

    def is_reachable(self, engine: Engine) -> bool:
        """Binary present and daemon answering (single attempt)."""
        if self.runner.which(engine.value) is None:
            return False
        result = self.runner.run(
            list(REACHABILITY_PROBES[engine]),
            timeout=self.settings.deadlines.daemon_probe,
        )
        return result.ok

    def probe_rootless(self, engine: Engine) -> bool:
        result = self.runner.run(
            list(ROOTLESS_PROBES[engine]),
            timeout=self.settings.deadlines.daemon_probe,
        )
        if not result.ok:
            return False
        output = result.stdout.strip().lower()
        if engine == Engine.PODMAN:
            return output == "true"
        return "rootless" in output

    def probe_engine_flags(self, engine: Engine) -> dict:
        """Socket and network facts about ``engine`` (not compose-specific)."""
        timeout = self.settings.deadlines.daemon_probe
        if engine == Engine.PODMAN:
            socket_path = podman_socket_path(self.runner, timeout)
            result = self.runner.run(list(NETWORK_BACKEND_PROBE), timeout=timeout)
            backend = "netavark" if result.ok and "netavark" in result.stdout else "cni"
            return {
                "podman_socket": Path(socket_path).exists(),
                "network_backend": backend,
            }

        result = self.runner.run(list(DOCKER_NETWORK_PROBE), timeout=timeout)
        return {"docker_network": result.ok and "bridge" in result.stdout.split()}

    # ── Internals ───────────────────────────────────────────────

    def _usable_cache(self) -> ResolutionRecord | None:
        cached = self.cache.load()
        if cached is None:
            return None
        preset = self.settings.engine
        if preset is not None and cached.engine != preset:
            logger.info(
                "Cached engine %s differs from pre-set %s; re-detecting",
                cached.engine.value, preset.value,
            )
            return None
        logger.debug("Using cached engine %s", cached.engine.value)
        return cached

    def _qualifies(self, engine: Engine) -> bool:
        if self.runner.which(engine.value) is None:
            self.attempts.append(CandidateAttempt(
                name=engine.value, outcome="unavailable", detail="binary not found",
            ))
            logger.info("%s: not installed", engine.value)
            return False

        argv = list(REACHABILITY_PROBES[engine])
        result = self.runner.run(argv, timeout=self.settings.deadlines.daemon_probe)
        if result.ok:
            self.attempts.append(CandidateAttempt(
                name=engine.value, outcome="ok", command=" ".join(argv),
                detail=f"version {result.stdout.strip()}" if result.stdout.strip() else "",
            ))
            return True

        outcome = "timed_out" if result.timed_out else "failed"
        detail = result.output[:200] or f"exit code {result.exit_code}"
        self.attempts.append(CandidateAttempt(
            name=engine.value, outcome=outcome, command=" ".join(argv), detail=detail,
        ))
        logger.warning(
            "%s is installed but not reachable (rc=%d): %s",
            engine.value, result.exit_code, detail,
        )
        return False

    def _failure_message(self, pinned: Engine | None) -> str:
        if pinned is not None:
            return f"Container engine {pinned.value} is required here but is not usable"
        return "No usable container engine found (tried docker, podman)"

    @staticmethod
    def _remediation(order: tuple[Engine, ...]) -> list[str]:
        engines = list(order) if len(order) == 1 else [Engine.DOCKER, Engine.PODMAN]
        lines: list[str] = []
        for engine in engines:
            lines.extend(INSTALL_HINTS[engine])
        return lines
