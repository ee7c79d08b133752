"""
Shared test fixtures — a scripted command runner and isolated settings.

No test touches a real container engine: every probe goes through
FakeRunner, which answers from a table of argv prefixes.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from runtimectl.adapters.shell.command import CommandResult, CommandRunner
from runtimectl.core.config.loader import (
    DeadlineSettings,
    RemediationSettings,
    RetrySettings,
    Settings,
)
from runtimectl.core.services.platform_detect import PlatformInfo


class FakeRunner(CommandRunner):
    """CommandRunner that never spawns processes.

    ``binaries`` are the names ``which()`` finds on the (fake) PATH.
    Responses are keyed by argv prefix; the longest matching prefix
    wins. argv[0] is compared by basename so absolute paths match too.
    Unscripted commands exit 1.
    """

    def __init__(self, binaries: tuple[str, ...] | set[str] = ()):
        super().__init__()
        self.binaries = set(binaries)
        self.responses: dict[tuple[str, ...], list[CommandResult]] = {}
        self.calls: list[list[str]] = []
        self.envs: list[dict | None] = []
        self.captures: list[bool] = []

    def respond(self, *prefix: str, code: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Script an answer. Repeated calls queue answers; the last one sticks."""
        self.responses.setdefault(tuple(prefix), []).append(
            CommandResult(argv=list(prefix), exit_code=code, stdout=stdout, stderr=stderr)
        )

    def which(self, name: str) -> str | None:
        for directory in self.extra_path:
            candidate = Path(directory) / name
            if candidate.is_file():
                return str(candidate)
        return f"/usr/bin/{name}" if name in self.binaries else None

    def run(self, argv, *, timeout, env=None, cwd=None, capture=True) -> CommandResult:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        self.envs.append(dict(env) if env else None)
        self.captures.append(capture)
        key = tuple([Path(argv[0]).name, *argv[1:]])

        best: tuple[str, ...] | None = None
        for prefix in self.responses:
            if key[: len(prefix)] == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return CommandResult(argv=argv, exit_code=1, stderr=f"unscripted: {' '.join(argv)}")

        queue = self.responses[best]
        scripted = queue.pop(0) if len(queue) > 1 else queue[0]
        return CommandResult(
            argv=argv,
            exit_code=scripted.exit_code,
            stdout=scripted.stdout,
            stderr=scripted.stderr,
        )

    def calls_starting_with(self, *prefix: str) -> list[list[str]]:
        return [
            c for c in self.calls
            if tuple([Path(c[0]).name, *c[1:]])[: len(prefix)] == prefix
        ]


# ── Scripted hosts ──────────────────────────────────────────────


def script_docker(
    runner: FakeRunner,
    *,
    reachable: bool = True,
    plugin: bool = True,
    plugin_verifies: bool = True,
    buildx: bool = True,
    rootless: bool = False,
) -> None:
    """A host with the docker CLI (and optionally the compose plugin)."""
    runner.binaries.add("docker")
    runner.respond("docker", "info", "--format", "{{.ServerVersion}}",
                   code=0 if reachable else 1,
                   stdout="24.0.7\n" if reachable else "",
                   stderr="" if reachable else "Cannot connect to the Docker daemon")
    runner.respond("docker", "info", "--format", "{{.SecurityOptions}}",
                   stdout="[name=seccomp,profile=builtin name=rootless]" if rootless
                   else "[name=seccomp,profile=builtin]")
    if plugin:
        runner.respond("docker", "compose", "version", stdout="Docker Compose version v2.24.5")
        runner.respond("docker", "compose", "-p",
                       code=0 if plugin_verifies else 1,
                       stderr="" if plugin_verifies else "compose: broken plugin")
    runner.respond("docker", "buildx", "version", code=0 if buildx else 1)
    runner.respond("docker", "network", "ls", "--format", "{{.Driver}}", stdout="bridge\nhost\nnull\n")


def script_podman(
    runner: FakeRunner,
    *,
    reachable: bool = True,
    plugin_verifies: bool | None = True,
    python_verifies: bool | None = None,
    rootless: bool = True,
    socket: str | None = None,
) -> None:
    """A host with podman. ``None`` for a verifier means not installed."""
    runner.binaries.add("podman")
    runner.respond("podman", "info", "--format", "{{.Version.Version}}",
                   code=0 if reachable else 125,
                   stdout="4.9.3\n" if reachable else "")
    runner.respond("podman", "info", "--format", "{{.Host.Security.Rootless}}",
                   stdout="true\n" if rootless else "false\n")
    runner.respond("podman", "info", "--format", "{{.Host.NetworkBackend}}", stdout="netavark\n")
    if socket is not None:
        runner.respond("podman", "info", "--format", "{{.Host.RemoteSocket.Path}}", stdout=socket)
    if plugin_verifies is not None:
        runner.respond("podman", "compose", "version", stdout="podman-compose version 1.0.6")
        runner.respond("podman", "compose", "-p",
                       code=0 if plugin_verifies else 1,
                       stderr="" if plugin_verifies else "Error: looking up compose provider failed")
    if python_verifies is not None:
        runner.binaries.add("podman-compose")
        runner.respond("podman-compose", "-p",
                       code=0 if python_verifies else 1,
                       stderr="" if python_verifies else "SyntaxError: invalid syntax")


# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in tmp_path with zero retry delays."""
    return Settings(
        root=tmp_path,
        os_release_path=str(tmp_path / "os-release"),
        retry=RetrySettings(max_attempts=2, base_delay=0, max_delay=0, jitter_bound=0),
        deadlines=DeadlineSettings(daemon_probe=1, verify=2, download=2, grace_period=0.5),
        remediation=RemediationSettings(install_dir=str(tmp_path / "bin")),
    )


@pytest.fixture
def generic_linux() -> PlatformInfo:
    return PlatformInfo(family="ubuntu", version_id="22.04", id_like=("debian",))


@pytest.fixture
def rhel8() -> PlatformInfo:
    return PlatformInfo(family="rhel", version_id="8.9", id_like=("fedora",))


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """The CLI reconfigures the root logger; put it back after each test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
