"""
Tests for the compose cascade — providers, verification, remediation.
"""

import stat
from pathlib import Path

import pytest
import yaml

from runtimectl.adapters.compose.base import ProviderOptions
from runtimectl.adapters.compose.providers import (
    DockerComposeStandalone,
    cross_engine_provider,
    native_providers,
    podman_socket_path,
)
from runtimectl.core.models.resolution import (
    Capabilities,
    Engine,
    ResolutionRecord,
    SupportLevel,
)
from runtimectl.core.persistence.lockfile import ResolutionCache
from runtimectl.core.services.compose_install import release_url
from runtimectl.core.services.compose_resolve import (
    ComposeResolutionError,
    ComposeResolver,
    write_probe_document,
)

from tests.conftest import FakeRunner, script_docker, script_podman


def _resolver(runner, settings, **kwargs):
    cache = ResolutionCache(settings.lockfile_path)
    return ComposeResolver(runner, cache, settings, **kwargs), cache


def _podman_record(rootless=True):
    return ResolutionRecord(engine=Engine.PODMAN, capabilities=Capabilities(rootless=rootless))


class TestProviders:
    def test_cascade_order(self):
        runner = FakeRunner()
        assert [p.name for p in native_providers(Engine.DOCKER, runner)] == [
            "docker-compose-plugin", "docker-compose",
        ]
        assert [p.name for p in native_providers(Engine.PODMAN, runner)] == [
            "podman-compose-plugin", "podman-compose",
        ]

    def test_docker_has_no_cross_engine_fallback(self):
        assert cross_engine_provider(Engine.DOCKER, FakeRunner()) is None

    def test_podman_socket_from_info(self):
        runner = FakeRunner()
        runner.respond("podman", "info", "--format", "{{.Host.RemoteSocket.Path}}",
                       stdout="unix:///run/user/1000/podman/podman.sock\n")
        assert podman_socket_path(runner) == "/run/user/1000/podman/podman.sock"

    def test_podman_socket_default(self):
        path = podman_socket_path(FakeRunner())
        assert path.endswith("podman.sock")

    def test_probe_document_is_minimal_compose(self, tmp_path: Path):
        doc = yaml.safe_load(write_probe_document(tmp_path).read_text())
        assert doc == {"services": {"probe": {"image": "busybox", "command": ["true"]}}}

    def test_verify_command_shape(self, tmp_path: Path):
        runner = FakeRunner()
        script_docker(runner)
        plugin = native_providers(Engine.DOCKER, runner)[0]
        document = tmp_path / "compose.yml"

        assert plugin.verify(document).ok
        assert runner.calls[-1] == [
            "docker", "compose", "-p", "runtimectl-probe", "-f", str(document), "config", "--quiet",
        ]

    def test_podman_compose_python_has_no_quiet(self, tmp_path: Path):
        runner = FakeRunner()
        script_podman(runner, plugin_verifies=None, python_verifies=True)
        python = native_providers(Engine.PODMAN, runner)[1]
        python.verify(tmp_path / "compose.yml")
        assert "--quiet" not in runner.calls[-1]

    def test_standalone_v1_capabilities(self):
        runner = FakeRunner({"docker-compose"})
        runner.respond("docker-compose", "version", "--short", stdout="1.29.2\n")
        caps = DockerComposeStandalone(runner).capabilities()
        assert caps.secrets == SupportLevel.NONE
        assert caps.profiles == SupportLevel.NONE
        assert caps.healthcheck is True

    def test_standalone_v2_capabilities(self):
        runner = FakeRunner({"docker-compose"})
        runner.respond("docker-compose", "version", "--short", stdout="2.21.0\n")
        runner.respond("docker", "buildx", "version", code=1)
        caps = DockerComposeStandalone(runner).capabilities()
        assert caps.secrets == SupportLevel.FULL
        assert caps.buildkit is False


class TestComposeResolver:
    def test_docker_plugin_wins(self, settings):
        runner = FakeRunner()
        script_docker(runner)
        resolver, cache = _resolver(runner, settings)

        record = resolver.resolve(ResolutionRecord(engine=Engine.DOCKER))

        assert record.provider == "docker-compose-plugin"
        assert record.compose.argv == ("docker", "compose")
        assert record.capabilities.buildkit is True
        assert cache.load() == record

    def test_second_candidate_selected_when_first_fails(self, settings):
        runner = FakeRunner()
        script_podman(runner, plugin_verifies=False, python_verifies=True)
        resolver, _ = _resolver(runner, settings)

        record = resolver.resolve(_podman_record())

        assert record.provider == "podman-compose"
        assert record.compose.argv == ("podman-compose",)
        assert record.capabilities == Capabilities(
            secrets=SupportLevel.LIMITED,
            healthcheck=True,
            profiles=SupportLevel.LIMITED,
            rootless=True,
        )
        assert [a.outcome for a in resolver.attempts] == ["failed", "ok"]

    def test_failing_candidate_logged_with_command(self, settings, caplog):
        runner = FakeRunner()
        script_podman(runner, plugin_verifies=False, python_verifies=True)
        resolver, _ = _resolver(runner, settings)

        with caplog.at_level("WARNING"):
            resolver.resolve(_podman_record())

        assert any(
            "podman compose -p runtimectl-probe" in r.getMessage()
            and "looking up compose provider failed" in r.getMessage()
            for r in caplog.records
        )

    def test_unavailable_candidates_skipped(self, settings):
        runner = FakeRunner()
        script_docker(runner, plugin=False)
        runner.binaries.add("docker-compose")
        runner.respond("docker-compose", "-p", code=0)
        runner.respond("docker-compose", "version", "--short", stdout="2.21.0")
        resolver, _ = _resolver(runner, settings)

        record = resolver.resolve(ResolutionRecord(engine=Engine.DOCKER))

        assert record.provider == "docker-compose"
        assert resolver.attempts[0].outcome == "unavailable"

    def test_verification_timeout_is_retried(self, settings):
        runner = FakeRunner()
        script_docker(runner)
        runner.responses.pop(("docker", "compose", "-p"))
        runner.respond("docker", "compose", "-p", code=124)
        runner.respond("docker", "compose", "-p", code=0)
        resolver, _ = _resolver(runner, settings)

        record = resolver.resolve(ResolutionRecord(engine=Engine.DOCKER))

        assert record.provider == "docker-compose-plugin"
        assert len(runner.calls_starting_with("docker", "compose", "-p")) == 2

    def test_verification_failure_not_retried(self, settings):
        runner = FakeRunner()
        script_docker(runner, plugin_verifies=False)
        resolver, _ = _resolver(runner, settings)

        with pytest.raises(ComposeResolutionError):
            resolver.resolve(ResolutionRecord(engine=Engine.DOCKER))

        assert len(runner.calls_starting_with("docker", "compose", "-p")) == 1

    def test_cross_engine_fallback(self, settings, tmp_path: Path):
        socket = tmp_path / "podman.sock"
        socket.touch()
        runner = FakeRunner({"docker-compose"})
        script_podman(runner, plugin_verifies=False, python_verifies=False, socket=str(socket))
        runner.respond("docker-compose", "-p", code=0)
        resolver, _ = _resolver(runner, settings)

        record = resolver.resolve(_podman_record())

        assert record.provider == "docker-compose-on-podman"
        assert record.compose.env == {"DOCKER_HOST": f"unix://{socket}"}
        assert record.capabilities.secrets == SupportLevel.LIMITED
        assert record.capabilities.profiles == SupportLevel.FULL
        verify_env = runner.envs[runner.calls.index(runner.calls_starting_with("docker-compose", "-p")[0])]
        assert verify_env["DOCKER_HOST"] == f"unix://{socket}"

    def test_exhaustion_lists_every_candidate(self, settings, tmp_path: Path):
        runner = FakeRunner()
        script_podman(runner, plugin_verifies=False, python_verifies=False,
                      socket=str(tmp_path / "podman.sock"))
        resolver, cache = _resolver(runner, settings)

        with pytest.raises(ComposeResolutionError) as exc:
            resolver.resolve(_podman_record())

        names = [a.name for a in exc.value.attempts]
        assert names == ["podman-compose-plugin", "podman-compose", "docker-compose-on-podman"]
        report = exc.value.report()
        for name in names:
            assert name in report
        assert "--install-missing" in report
        assert cache.load() is None

    def test_remediation_downloads_and_verifies(self, settings, tmp_path: Path):
        socket = tmp_path / "podman.sock"
        socket.touch()
        runner = FakeRunner()
        script_podman(runner, plugin_verifies=None, python_verifies=None, socket=str(socket))
        runner.respond("docker-compose", "-p", code=0)
        fetched = []

        def fake_fetch(url, destination, timeout):
            fetched.append(url)
            destination.write_bytes(b"#!/bin/sh\nexit 0\n")

        resolver, _ = _resolver(runner, settings, allow_remediation=True, fetch=fake_fetch)
        record = resolver.resolve(_podman_record())

        installed = Path(settings.remediation.install_dir) / "docker-compose"
        assert fetched == [release_url("2.21.0")]
        assert installed.is_file()
        assert stat.S_IMODE(installed.stat().st_mode) == 0o755
        assert record.provider == "docker-compose-on-podman"
        assert record.compose.argv == (str(installed),)
        assert [a.outcome for a in resolver.attempts][-2:] == ["installed", "ok"]

    def test_remediation_not_attempted_without_opt_in(self, settings, tmp_path: Path):
        runner = FakeRunner()
        script_podman(runner, plugin_verifies=None, socket=str(tmp_path / "podman.sock"))

        def fail_fetch(url, destination, timeout):
            raise AssertionError("download must not happen")

        resolver, _ = _resolver(runner, settings, fetch=fail_fetch)
        with pytest.raises(ComposeResolutionError):
            resolver.resolve(_podman_record())

    def test_remediation_skips_download_without_socket(self, settings, tmp_path: Path):
        runner = FakeRunner()
        script_podman(runner, plugin_verifies=None, socket=str(tmp_path / "podman.sock"))
        runner.respond("systemctl", code=1, stderr="Failed to connect to bus")
        fetched = []

        def fake_fetch(url, destination, timeout):
            fetched.append(url)
            destination.write_bytes(b"#!/bin/sh\nexit 0\n")

        resolver, _ = _resolver(runner, settings, allow_remediation=True, fetch=fake_fetch)
        with pytest.raises(ComposeResolutionError) as exc:
            resolver.resolve(_podman_record())

        assert fetched == []
        assert runner.calls_starting_with("systemctl")
        socket_attempt = next(a for a in exc.value.attempts if a.name == "podman socket")
        assert socket_attempt.outcome == "start_failed"

    def test_remediation_starts_socket_then_downloads(self, settings, tmp_path: Path):
        socket = tmp_path / "podman.sock"

        class SocketActivatingRunner(FakeRunner):
            def run(self, argv, **kwargs):
                if argv[0] == "systemctl":
                    socket.touch()
                return super().run(argv, **kwargs)

        runner = SocketActivatingRunner()
        script_podman(runner, plugin_verifies=None, socket=str(socket))
        runner.respond("systemctl", code=0)
        runner.respond("docker-compose", "-p", code=0)

        def fake_fetch(url, destination, timeout):
            destination.write_bytes(b"#!/bin/sh\nexit 0\n")

        resolver, _ = _resolver(runner, settings, allow_remediation=True, fetch=fake_fetch)
        record = resolver.resolve(_podman_record())

        assert record.provider == "docker-compose-on-podman"
        assert [a.outcome for a in resolver.attempts][-3:] == ["started", "installed", "ok"]

    def test_remediation_checksum_mismatch(self, settings, tmp_path: Path):
        socket = tmp_path / "podman.sock"
        socket.touch()
        settings = settings.model_copy(update={
            "remediation": settings.remediation.model_copy(update={"sha256": "0" * 64}),
        })
        runner = FakeRunner()
        script_podman(runner, plugin_verifies=None, socket=str(socket))

        def fake_fetch(url, destination, timeout):
            destination.write_bytes(b"tampered")

        resolver, _ = _resolver(runner, settings, allow_remediation=True, fetch=fake_fetch)
        with pytest.raises(ComposeResolutionError) as exc:
            resolver.resolve(_podman_record())

        assert exc.value.attempts[-2].outcome == "install_failed"
        assert "checksum" in exc.value.attempts[-2].detail
        assert not (Path(settings.remediation.install_dir) / "docker-compose").exists()


class TestReleaseUrl:
    @pytest.mark.parametrize(
        "system,machine,suffix",
        [
            ("Linux", "x86_64", "docker-compose-linux-x86_64"),
            ("Linux", "amd64", "docker-compose-linux-x86_64"),
            ("Linux", "aarch64", "docker-compose-linux-aarch64"),
            ("Darwin", "arm64", "docker-compose-darwin-aarch64"),
        ],
    )
    def test_asset_names(self, system, machine, suffix):
        url = release_url("2.21.0", system=system, machine=machine)
        assert url == f"https://github.com/docker/compose/releases/download/v2.21.0/{suffix}"

    def test_standalone_hint_names_host_asset(self):
        url = release_url("2.21.0", system="Linux", machine="aarch64")
        provider = DockerComposeStandalone(FakeRunner(), ProviderOptions(compose_release_url=url))
        assert url in provider.install_hint
        assert "x86_64" not in provider.install_hint

    def test_standalone_hint_without_release(self):
        assert "docker/compose/releases" in DockerComposeStandalone(FakeRunner()).install_hint

    def test_resolver_hint_follows_remediation_settings(self, settings):
        settings.remediation.compose_version = "2.24.1"
        resolver, _ = _resolver(FakeRunner(), settings)
        standalone = next(
            p for p in resolver.providers(ResolutionRecord(engine=Engine.DOCKER))
            if p.name == "docker-compose"
        )
        assert release_url("2.24.1", settings.remediation.base_url) in standalone.install_hint
