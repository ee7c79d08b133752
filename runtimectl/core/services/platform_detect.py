"""
Platform identification — which OS family, which version.

Reading the host (``read_platform``) is kept apart from the decision it
feeds (``engine_preference``), so the engine policy is a pure function
of a PlatformInfo value and can be tested without a real host.

RHEL-8 family hosts ship a Python that the python ``podman-compose``
does not run on, so Docker is pinned there whenever it is installed.
"""

from __future__ import annotations

import logging
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from runtimectl.core.models.resolution import Engine

logger = logging.getLogger(__name__)

RHEL_FAMILY = frozenset({"rhel", "centos", "rocky", "almalinux", "ol"})

_REDHAT_RELEASE = re.compile(
    r"(?P<name>Red Hat Enterprise Linux|CentOS|Rocky Linux|AlmaLinux|Oracle Linux)"
    r".*?release\s+(?P<version>[\d.]+)",
)
_REDHAT_NAMES = {
    "Red Hat Enterprise Linux": "rhel",
    "CentOS": "centos",
    "Rocky Linux": "rocky",
    "AlmaLinux": "almalinux",
    "Oracle Linux": "ol",
}


@dataclass(frozen=True)
class PlatformInfo:
    """Host OS identity as read from os-release."""

    family: str = "unknown"
    version_id: str = ""
    id_like: tuple[str, ...] = ()
    pretty_name: str = ""

    @property
    def major_version(self) -> str:
        return self.version_id.split(".", 1)[0]

    @property
    def is_rhel8_family(self) -> bool:
        in_family = self.family in RHEL_FAMILY or (
            self.family != "fedora" and "rhel" in self.id_like
        )
        return in_family and self.major_version == "8"

    def to_dict(self) -> dict:
        return {
            "family": self.family,
            "version_id": self.version_id,
            "id_like": list(self.id_like),
            "pretty_name": self.pretty_name,
        }


@dataclass(frozen=True)
class EnginePreference:
    """Ordered engines to probe, and whether the first one is pinned."""

    order: tuple[Engine, ...]
    pinned: Engine | None = None
    reason: str = ""
    notes: list[str] = field(default_factory=list)


def parse_os_release(text: str) -> dict[str, str]:
    """Parse os-release ``KEY=value`` lines (values may be quoted)."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw = line.partition("=")
        try:
            parts = shlex.split(raw)
        except ValueError:
            parts = [raw.strip().strip("\"'")]
        values[key.strip()] = parts[0] if parts else ""
    return values


def platform_from_os_release(values: dict[str, str]) -> PlatformInfo:
    return PlatformInfo(
        family=values.get("ID", "unknown").lower() or "unknown",
        version_id=values.get("VERSION_ID", ""),
        id_like=tuple(values.get("ID_LIKE", "").lower().split()),
        pretty_name=values.get("PRETTY_NAME", ""),
    )


def read_platform(
    os_release_path: Path | str = "/etc/os-release",
    redhat_release_path: Path | str = "/etc/redhat-release",
) -> PlatformInfo:
    """Identify the host. Never raises; unknown hosts get ``family='unknown'``."""
    try:
        text = Path(os_release_path).read_text(encoding="utf-8")
    except OSError:
        text = ""
    if text:
        info = platform_from_os_release(parse_os_release(text))
        logger.debug("Platform: %s %s", info.family, info.version_id or "?")
        return info

    # Older RHEL derivatives without os-release
    try:
        release = Path(redhat_release_path).read_text(encoding="utf-8")
    except OSError:
        logger.debug("No os-release at %s; platform unknown", os_release_path)
        return PlatformInfo()
    match = _REDHAT_RELEASE.search(release)
    if not match:
        return PlatformInfo(pretty_name=release.strip())
    return PlatformInfo(
        family=_REDHAT_NAMES[match.group("name")],
        version_id=match.group("version"),
        pretty_name=release.strip(),
    )


def engine_preference(
    platform: PlatformInfo,
    docker_installed: bool,
    preset: Engine | None = None,
) -> EnginePreference:
    """Which engines to probe, in order.

    Args:
        platform: Host identity.
        docker_installed: Whether a ``docker`` binary is on the path.
        preset: Engine chosen by the operator (config or environment).
    """
    if preset is not None:
        return EnginePreference(
            order=(preset,),
            pinned=preset,
            reason=f"engine pre-set to {preset.value}",
        )

    if platform.is_rhel8_family and docker_installed:
        return EnginePreference(
            order=(Engine.DOCKER,),
            pinned=Engine.DOCKER,
            reason=(
                f"{platform.family} {platform.version_id}: python podman-compose "
                "is unsupported, docker pinned"
            ),
        )

    notes = []
    if platform.is_rhel8_family:
        notes.append("RHEL 8 family without docker; podman-compose (python) may not work")
    return EnginePreference(
        order=(Engine.DOCKER, Engine.PODMAN),
        reason="default order",
        notes=notes,
    )
