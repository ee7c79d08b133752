"""
Tests for the resolution use case — end-to-end over a scripted host.
"""

import pytest

from runtimectl.core.models.resolution import Engine, ResolutionRecord, RuntimeConfig
from runtimectl.core.persistence.lockfile import ResolutionCache
from runtimectl.core.use_cases.resolve import resolve_runtime

from tests.conftest import FakeRunner, script_docker, script_podman


class TestResolveRuntime:
    def test_cold_cache_docker_native(self, settings, generic_linux):
        runner = FakeRunner()
        script_docker(runner)

        result = resolve_runtime(settings, runner, platform=generic_linux)

        assert result.ok
        assert not result.from_cache
        assert result.config.engine == Engine.DOCKER
        assert result.config.compose_command("up", "-d") == ["docker", "compose", "up", "-d"]
        assert "RUNTIME=docker" in settings.lockfile_path.read_text()

    def test_warm_cache_is_idempotent_and_probe_free(self, settings, generic_linux):
        runner = FakeRunner()
        script_docker(runner)
        first = resolve_runtime(settings, runner, platform=generic_linux)

        runner.calls.clear()
        second = resolve_runtime(settings, runner, platform=generic_linux)

        assert second.from_cache
        assert second.record == first.record
        assert runner.calls == []

    def test_partial_cache_reuses_engine(self, settings, generic_linux):
        ResolutionCache(settings.lockfile_path).store(ResolutionRecord(engine=Engine.PODMAN))
        runner = FakeRunner()
        script_docker(runner)
        script_podman(runner)

        result = resolve_runtime(settings, runner, platform=generic_linux)

        assert result.config.engine == Engine.PODMAN
        assert not runner.calls_starting_with("docker", "info")
        assert ResolutionCache(settings.lockfile_path).load().complete

    def test_rhel8_override_without_docker_falls_through(self, settings, rhel8):
        runner = FakeRunner()
        script_podman(runner)

        result = resolve_runtime(settings, runner, platform=rhel8)

        assert result.ok
        assert result.config.engine == Engine.PODMAN

    def test_all_candidates_fail(self, settings, generic_linux, tmp_path):
        runner = FakeRunner()
        script_podman(runner, plugin_verifies=False, python_verifies=False,
                      socket=str(tmp_path / "missing.sock"))

        result = resolve_runtime(settings, runner, platform=generic_linux)

        assert not result.ok
        report = result.error.report()
        for name in ("podman-compose-plugin", "podman-compose", "docker-compose-on-podman"):
            assert name in report
        assert result.to_dict()["error"]

    def test_force_reprobes(self, settings, generic_linux):
        runner = FakeRunner()
        script_docker(runner)
        resolve_runtime(settings, runner, platform=generic_linux)
        runner.calls.clear()

        result = resolve_runtime(settings, runner, force=True, platform=generic_linux)

        assert not result.from_cache
        assert runner.calls_starting_with("docker", "info")

    def test_preset_engine_ignores_complete_cache_for_other_engine(self, settings, generic_linux):
        runner = FakeRunner()
        script_docker(runner)
        script_podman(runner)
        resolve_runtime(settings, runner, platform=generic_linux)

        podman_settings = settings.model_copy(update={"engine": Engine.PODMAN})
        result = resolve_runtime(podman_settings, runner, platform=generic_linux)

        assert result.config.engine == Engine.PODMAN
        assert result.config.provider == "podman-compose-plugin"

    def test_result_to_dict(self, settings, generic_linux):
        runner = FakeRunner()
        script_docker(runner)
        data = resolve_runtime(settings, runner, platform=generic_linux).to_dict()
        assert data["engine"] == "docker"
        assert data["compose"] == "docker compose"
        assert data["capabilities"]["secrets"] == "full"


class TestRuntimeConfig:
    def test_to_env(self, settings, generic_linux, tmp_path):
        socket = tmp_path / "podman.sock"
        socket.touch()
        runner = FakeRunner({"docker-compose"})
        script_podman(runner, plugin_verifies=None, socket=str(socket))
        runner.respond("docker-compose", "-p", code=0)

        config = resolve_runtime(settings, runner, platform=generic_linux).config
        env = config.to_env()

        assert env["CONTAINER_RUNTIME"] == "podman"
        assert env["COMPOSE_IMPL"] == "docker-compose-on-podman"
        assert env["COMPOSE_COMMAND"] == "docker-compose"
        assert env["COMPOSE_SUPPORTS_SECRETS"] == "limited"
        assert env["COMPOSE_SUPPORTS_PROFILES"] == "full"
        assert env["CONTAINER_ROOTLESS"] == "yes"
        assert env["DOCKER_HOST"] == f"unix://{socket}"
        assert env["PODMAN_HAS_SOCKET"] == "yes"
        assert env["PODMAN_NETWORK_BACKEND"] == "netavark"
        assert "DOCKER_NETWORK_AVAILABLE" not in env

    def test_to_env_docker_network(self, settings, generic_linux):
        runner = FakeRunner()
        script_docker(runner)

        env = resolve_runtime(settings, runner, platform=generic_linux).config.to_env()

        assert env["DOCKER_NETWORK_AVAILABLE"] == "yes"
        assert "PODMAN_HAS_SOCKET" not in env
        assert "PODMAN_NETWORK_BACKEND" not in env

    def test_from_partial_record_rejected(self):
        with pytest.raises(ValueError):
            RuntimeConfig.from_record(ResolutionRecord(engine=Engine.DOCKER))
