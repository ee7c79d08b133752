"""
Compose remediation — fetch a pinned docker-compose release.

Only used when the operator opted in (``remediation.enabled``,
``--install-missing`` or RUNTIMECTL_ALLOW_REMEDIATION=1). The binary is
downloaded once per run (with retries), optionally checked against a
SHA-256 digest, and installed with mode 0755 through an atomic replace.
"""

from __future__ import annotations

import hashlib
import logging
import platform
import tempfile
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from runtimectl.adapters.shell.command import CommandRunner
from runtimectl.core.config.loader import RemediationSettings
from runtimectl.core.persistence.atomic import atomic_write_from_path
from runtimectl.core.reliability.retry import RetryPolicy, retry_call

logger = logging.getLogger(__name__)

BINARY_NAME = "docker-compose"

_ARCH_MAP = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "armv7l": "armv7",
    "armv6l": "armv6",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
}

Fetcher = Callable[[str, Path, float], None]


@dataclass
class InstallResult:
    """Outcome of a remediation install."""

    ok: bool
    url: str
    path: str = ""
    error: str = ""

    def to_dict(self) -> dict:
        d: dict = {"ok": self.ok, "url": self.url}
        if self.path:
            d["path"] = self.path
        if self.error:
            d["error"] = self.error
        return d


def release_url(
    version: str,
    base_url: str = "https://github.com/docker/compose/releases/download",
    system: str | None = None,
    machine: str | None = None,
) -> str:
    """Release asset URL for this host, e.g. ``.../v2.21.0/docker-compose-linux-x86_64``."""
    os_name = (system or platform.system()).lower()
    machine = (machine or platform.machine()).lower()
    arch = _ARCH_MAP.get(machine, machine)
    tag = version if version.startswith("v") else f"v{version}"
    return f"{base_url.rstrip('/')}/{tag}/{BINARY_NAME}-{os_name}-{arch}"


def sha256_of(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def _urlopen_to_file(url: str, destination: Path, timeout: float) -> None:
    req = urllib.request.Request(url, headers={"User-Agent": "runtimectl/1.0"})
    with urllib.request.urlopen(req, timeout=timeout) as resp, open(destination, "wb") as f:
        for chunk in iter(lambda: resp.read(65536), b""):
            f.write(chunk)


def install_compose_binary(
    settings: RemediationSettings,
    runner: CommandRunner,
    policy: RetryPolicy,
    *,
    timeout: float = 120.0,
    fetch: Fetcher = _urlopen_to_file,
) -> InstallResult:
    """Download and install docker-compose into ``settings.install_path``.

    On success the install directory is added to the runner's search
    path so the next lookup finds the new binary.
    """
    url = release_url(settings.compose_version, settings.base_url)
    target = settings.install_path / BINARY_NAME
    errors: list[str] = []

    with tempfile.TemporaryDirectory(prefix="runtimectl-dl-") as scratch:
        download = Path(scratch) / BINARY_NAME

        def _attempt() -> int:
            try:
                fetch(url, download, timeout)
            except TimeoutError as e:
                errors.append(f"timed out: {e}")
                return 124
            except (urllib.error.URLError, OSError) as e:
                errors.append(str(e))
                return 1
            return 0

        logger.info("Downloading docker-compose %s from %s", settings.compose_version, url)
        if retry_call(policy, _attempt, description=f"download of {url}") != 0:
            return InstallResult(ok=False, url=url, error=errors[-1] if errors else "download failed")

        if settings.sha256:
            actual = sha256_of(download)
            if actual != settings.sha256.lower():
                logger.error("Checksum mismatch for %s: expected %s, got %s", url, settings.sha256, actual)
                return InstallResult(
                    ok=False, url=url, error=f"checksum mismatch (got sha256:{actual})",
                )

        try:
            atomic_write_from_path(download, target, mode=0o755)
        except OSError as e:
            return InstallResult(ok=False, url=url, error=f"cannot install to {target}: {e}")

    runner.add_search_path(settings.install_path)
    logger.info("Installed docker-compose %s at %s", settings.compose_version, target)
    return InstallResult(ok=True, url=url, path=str(target))
