"""
Tests for platform identification and the engine preference policy.
"""

from pathlib import Path

import pytest

from runtimectl.core.models.resolution import Engine
from runtimectl.core.services.platform_detect import (
    PlatformInfo,
    engine_preference,
    parse_os_release,
    read_platform,
)

_ROCKY_8 = """\
NAME="Rocky Linux"
VERSION="8.9 (Green Obsidian)"
ID="rocky"
ID_LIKE="rhel centos fedora"
VERSION_ID="8.9"
PRETTY_NAME="Rocky Linux 8.9 (Green Obsidian)"
"""

_UBUNTU = """\
PRETTY_NAME="Ubuntu 22.04.4 LTS"
NAME="Ubuntu"
VERSION_ID="22.04"
ID=ubuntu
ID_LIKE=debian
"""


class TestReadPlatform:
    def test_parse_quoted_values(self):
        values = parse_os_release(_ROCKY_8)
        assert values["ID"] == "rocky"
        assert values["VERSION_ID"] == "8.9"
        assert values["PRETTY_NAME"] == "Rocky Linux 8.9 (Green Obsidian)"

    def test_read_rocky(self, tmp_path: Path):
        path = tmp_path / "os-release"
        path.write_text(_ROCKY_8)
        info = read_platform(path, tmp_path / "absent")
        assert info.family == "rocky"
        assert info.major_version == "8"
        assert info.id_like == ("rhel", "centos", "fedora")
        assert info.is_rhel8_family

    def test_read_ubuntu(self, tmp_path: Path):
        path = tmp_path / "os-release"
        path.write_text(_UBUNTU)
        info = read_platform(path, tmp_path / "absent")
        assert info.family == "ubuntu"
        assert not info.is_rhel8_family

    def test_redhat_release_fallback(self, tmp_path: Path):
        release = tmp_path / "redhat-release"
        release.write_text("CentOS Linux release 8.5.2111\n")
        info = read_platform(tmp_path / "absent", release)
        assert info.family == "centos"
        assert info.version_id == "8.5.2111"
        assert info.is_rhel8_family

    def test_nothing_readable_is_unknown(self, tmp_path: Path):
        info = read_platform(tmp_path / "a", tmp_path / "b")
        assert info == PlatformInfo()
        assert not info.is_rhel8_family


class TestRhel8Family:
    @pytest.mark.parametrize("family", ["rhel", "centos", "rocky", "almalinux", "ol"])
    def test_family_members_on_8(self, family: str):
        assert PlatformInfo(family=family, version_id="8.10").is_rhel8_family

    @pytest.mark.parametrize(
        "info",
        [
            PlatformInfo(family="rhel", version_id="9.3"),
            PlatformInfo(family="fedora", version_id="8"),
            PlatformInfo(family="ubuntu", version_id="8.04"),
            PlatformInfo(family="rocky", version_id="18"),
        ],
    )
    def test_non_members(self, info: PlatformInfo):
        assert not info.is_rhel8_family

    def test_rhel_derivative_via_id_like(self):
        assert PlatformInfo(family="eurolinux", version_id="8.7", id_like=("rhel",)).is_rhel8_family


class TestEnginePreference:
    def test_default_order_docker_first(self, generic_linux):
        pref = engine_preference(generic_linux, docker_installed=True)
        assert pref.order == (Engine.DOCKER, Engine.PODMAN)
        assert pref.pinned is None

    def test_rhel8_pins_docker_when_installed(self, rhel8):
        pref = engine_preference(rhel8, docker_installed=True)
        assert pref.order == (Engine.DOCKER,)
        assert pref.pinned == Engine.DOCKER

    def test_rhel8_without_docker_keeps_default_order(self, rhel8):
        pref = engine_preference(rhel8, docker_installed=False)
        assert pref.order == (Engine.DOCKER, Engine.PODMAN)
        assert pref.pinned is None
        assert pref.notes

    def test_preset_overrides_platform(self, rhel8):
        pref = engine_preference(rhel8, docker_installed=True, preset=Engine.PODMAN)
        assert pref.order == (Engine.PODMAN,)
        assert pref.pinned == Engine.PODMAN
