"""
Compose providers — the concrete compose implementations, in cascade order.

    docker:  docker compose (v2 plugin) → docker-compose (standalone)
    podman:  podman compose (native)    → podman-compose (python)
             → docker-compose talking to the Podman API socket

The ordered lists are the whole cascade policy; the resolver just walks
them.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from runtimectl.adapters.compose.base import PROBE_PROJECT, ComposeProvider, ProviderOptions
from runtimectl.adapters.shell.command import CommandResult, CommandRunner
from runtimectl.core.models.resolution import Capabilities, Engine, SupportLevel

logger = logging.getLogger(__name__)


def _buildkit_available(provider: ComposeProvider) -> bool:
    return provider._probe("docker", "buildx", "version")


# ── Docker ──────────────────────────────────────────────────────


class DockerComposePlugin(ComposeProvider):
    """``docker compose`` (Compose v2 CLI plugin)."""

    name = "docker-compose-plugin"
    engine = Engine.DOCKER
    binary = "docker"
    leading_args = ("compose",)
    install_hint = "sudo dnf install docker-compose-plugin  # or: apt-get install docker-compose-plugin"

    def is_available(self) -> bool:
        # The docker CLI exists without the plugin on many hosts
        return self.is_installed() and self._probe("docker", "compose", "version")

    def capabilities(self, rootless: bool = False) -> Capabilities:
        return Capabilities(
            secrets=SupportLevel.FULL,
            healthcheck=True,
            profiles=SupportLevel.FULL,
            buildkit=_buildkit_available(self),
            rootless=rootless,
        )


class DockerComposeStandalone(ComposeProvider):
    """Standalone ``docker-compose`` binary (v1 python or v2 Go build)."""

    name = "docker-compose"
    engine = Engine.DOCKER
    binary = "docker-compose"

    @property
    def install_hint(self) -> str:
        url = self.options.compose_release_url
        if not url:
            return "install docker-compose from https://github.com/docker/compose/releases"
        return (
            f"curl -fsSL {url} -o ~/.local/bin/docker-compose "
            "&& chmod +x ~/.local/bin/docker-compose"
        )

    def version(self) -> str:
        result = self.runner.run(
            [self._binary_ref(), "version", "--short"], timeout=self.options.probe_timeout
        )
        return result.stdout.strip().lstrip("v") if result.ok else ""

    def is_legacy(self) -> bool:
        """Compose v1, which predates secrets and profiles."""
        return self.version().startswith("1.")

    def capabilities(self, rootless: bool = False) -> Capabilities:
        if self.is_legacy():
            return Capabilities(healthcheck=True, rootless=rootless)
        return Capabilities(
            secrets=SupportLevel.FULL,
            healthcheck=True,
            profiles=SupportLevel.FULL,
            buildkit=_buildkit_available(self),
            rootless=rootless,
        )


# ── Podman ──────────────────────────────────────────────────────


class PodmanComposePlugin(ComposeProvider):
    """``podman compose`` (podman's own compose front-end)."""

    name = "podman-compose-plugin"
    engine = Engine.PODMAN
    binary = "podman"
    leading_args = ("compose",)
    install_hint = "sudo dnf install podman  # podman >= 4.7 ships 'podman compose'"

    def is_available(self) -> bool:
        return self.is_installed() and self._probe("podman", "compose", "version")

    def capabilities(self, rootless: bool = False) -> Capabilities:
        return Capabilities(
            secrets=SupportLevel.FULL,
            healthcheck=True,
            profiles=SupportLevel.FULL,
            rootless=rootless,
        )


class PodmanComposePython(ComposeProvider):
    """The python ``podman-compose`` tool."""

    name = "podman-compose"
    engine = Engine.PODMAN
    binary = "podman-compose"
    install_hint = "pip3 install --user podman-compose"

    def verify_args(self, document: Path) -> list[str]:
        # podman-compose has no --quiet for config
        return ["-p", PROBE_PROJECT, "-f", str(document), "config"]

    def capabilities(self, rootless: bool = False) -> Capabilities:
        return Capabilities(
            secrets=SupportLevel.LIMITED,
            healthcheck=True,
            profiles=SupportLevel.LIMITED,
            rootless=rootless,
        )


class DockerComposeOnPodmanSocket(ComposeProvider):
    """``docker-compose`` driving Podman through its Docker-compatible API."""

    name = "docker-compose-on-podman"
    engine = Engine.PODMAN
    binary = "docker-compose"
    install_hint = "systemctl --user enable --now podman.socket"

    def __init__(
        self,
        runner: CommandRunner,
        socket_path: str,
        options: ProviderOptions | None = None,
    ):
        super().__init__(runner, options)
        self.socket_path = socket_path

    def env(self) -> dict[str, str]:
        return {"DOCKER_HOST": f"unix://{self.socket_path}"}

    def socket_exists(self) -> bool:
        return Path(self.socket_path).exists()

    def start_socket(self) -> CommandResult:
        """Ask systemd to start the Podman API socket unit."""
        argv = ["systemctl", "start", "podman.socket"]
        if os.geteuid() != 0:
            argv.insert(1, "--user")
        logger.info("Starting Podman API socket: %s", " ".join(argv))
        return self.runner.run(argv, timeout=self.options.probe_timeout)

    def is_available(self) -> bool:
        if not self.is_installed():
            return False
        if not self.socket_exists():
            logger.info("Podman API socket %s not found", self.socket_path)
            return False
        return True

    def capabilities(self, rootless: bool = False) -> Capabilities:
        return Capabilities(
            secrets=SupportLevel.LIMITED,
            healthcheck=True,
            profiles=SupportLevel.FULL,
            rootless=rootless,
        )


# ── Ordering ────────────────────────────────────────────────────


def native_providers(
    engine: Engine,
    runner: CommandRunner,
    options: ProviderOptions | None = None,
) -> list[ComposeProvider]:
    """Native compose candidates for ``engine``, most preferred first."""
    if engine == Engine.DOCKER:
        return [DockerComposePlugin(runner, options), DockerComposeStandalone(runner, options)]
    return [PodmanComposePlugin(runner, options), PodmanComposePython(runner, options)]


def cross_engine_provider(
    engine: Engine,
    runner: CommandRunner,
    options: ProviderOptions | None = None,
) -> DockerComposeOnPodmanSocket | None:
    """The fallback tried after the natives, or None if the engine has none."""
    if engine != Engine.PODMAN:
        return None
    timeout = options.probe_timeout if options else 5.0
    return DockerComposeOnPodmanSocket(runner, podman_socket_path(runner, timeout), options)


def podman_socket_path(runner: CommandRunner, timeout: float = 5.0) -> str:
    """Podman API socket, as reported by podman or at the usual location."""
    result = runner.run(
        ["podman", "info", "--format", "{{.Host.RemoteSocket.Path}}"], timeout=timeout
    )
    if result.ok:
        path = result.stdout.strip().removeprefix("unix://")
        if path:
            return path
    if os.geteuid() == 0:
        return "/run/podman/podman.sock"
    return f"/run/user/{os.getuid()}/podman/podman.sock"
