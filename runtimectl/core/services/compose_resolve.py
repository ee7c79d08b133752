"""
Compose resolver — walk the provider cascade for the chosen engine.

Each available candidate is verified by running its ``config`` command
against a minimal compose document in a scratch directory. The first
candidate that passes wins; its invocation and capabilities complete
the resolution record, which is then persisted.

Nothing unverified is ever returned: when the cascade is exhausted
ComposeResolutionError lists every attempt and the remediation commands.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

import yaml

from runtimectl.adapters.compose.base import ComposeProvider, ProviderOptions
from runtimectl.adapters.compose.providers import (
    DockerComposeOnPodmanSocket,
    cross_engine_provider,
    native_providers,
)
from runtimectl.adapters.shell.command import CommandRunner
from runtimectl.core.config.loader import Settings
from runtimectl.core.models.resolution import (
    CandidateAttempt,
    ResolutionError,
    ResolutionRecord,
)
from runtimectl.core.persistence.lockfile import ResolutionCache
from runtimectl.core.reliability.deadline import TIMEOUT_EXIT_CODE
from runtimectl.core.services.compose_install import (
    Fetcher,
    InstallResult,
    install_compose_binary,
    release_url,
)

logger = logging.getLogger(__name__)

PROBE_DOCUMENT = {
    "services": {
        "probe": {
            "image": "busybox",
            "command": ["true"],
        },
    },
}


class ComposeResolutionError(ResolutionError):
    """No compose implementation passed verification."""


def write_probe_document(directory: Path) -> Path:
    """Write the minimal compose document used for verification."""
    path = directory / "compose.yml"
    path.write_text(yaml.safe_dump(PROBE_DOCUMENT, sort_keys=False), encoding="utf-8")
    return path


class ComposeResolver:
    """Find a working compose implementation for a record's engine.

    Args:
        runner: Command runner for every probe and verification.
        cache: Lockfile cache the completed record is written to.
        settings: Deadlines, retry and remediation settings.
        allow_remediation: Override ``settings.remediation.enabled``.
        fetch: Download function for remediation (tests inject a fake).
    """

    def __init__(
        self,
        runner: CommandRunner,
        cache: ResolutionCache,
        settings: Settings,
        allow_remediation: bool | None = None,
        fetch: Fetcher | None = None,
    ):
        self.runner = runner
        self.cache = cache
        self.settings = settings
        self.allow_remediation = (
            settings.remediation.enabled if allow_remediation is None else allow_remediation
        )
        self._fetch = fetch
        self.attempts: list[CandidateAttempt] = []
        self.options = ProviderOptions(
            probe_timeout=settings.deadlines.daemon_probe,
            verify_timeout=settings.deadlines.verify,
            verify_retry=settings.retry.policy((TIMEOUT_EXIT_CODE,)),
            compose_release_url=release_url(
                settings.remediation.compose_version, settings.remediation.base_url
            ),
        )

    def providers(self, record: ResolutionRecord) -> list[ComposeProvider]:
        """Full cascade for the record's engine, in order."""
        cascade = native_providers(record.engine, self.runner, self.options)
        fallback = cross_engine_provider(record.engine, self.runner, self.options)
        if fallback is not None:
            cascade.append(fallback)
        return cascade

    def resolve(self, record: ResolutionRecord) -> ResolutionRecord:
        """Complete ``record`` with a verified compose invocation.

        Raises:
            ComposeResolutionError: If every candidate is unavailable or fails.
        """
        self.attempts = []
        engine = record.engine
        natives = native_providers(engine, self.runner, self.options)

        with tempfile.TemporaryDirectory(prefix="runtimectl-verify-") as scratch:
            document = write_probe_document(Path(scratch))

            for provider in natives:
                if self._try(provider, document):
                    return self._complete(record, provider)

            fallback = cross_engine_provider(engine, self.runner, self.options)
            if fallback is not None:
                logger.info("Native compose for %s exhausted; trying %s", engine.value, fallback.name)
                if self.allow_remediation:
                    self._prepare_fallback(fallback)
                if self._try(fallback, document):
                    return self._complete(record, fallback)

        hints = [p.install_hint for p in natives]
        if fallback is not None:
            hints.append(fallback.install_hint)
            if not self.allow_remediation:
                hints.append(
                    "Re-run with --install-missing (or RUNTIMECTL_ALLOW_REMEDIATION=1) "
                    "to download docker-compose automatically"
                )
        raise ComposeResolutionError(
            f"No working compose implementation for {engine.value}",
            attempts=self.attempts,
            remediation=hints,
        )

    # ── Internals ───────────────────────────────────────────────

    def _try(self, provider: ComposeProvider, document: Path) -> bool:
        if not provider.is_available():
            self.attempts.append(CandidateAttempt(name=provider.name, outcome="unavailable"))
            logger.info("%s: not available", provider.name)
            return False

        verdict = provider.verify(document)
        if verdict.ok:
            self.attempts.append(CandidateAttempt(
                name=provider.name, outcome="ok", command=verdict.command,
            ))
            return True

        self.attempts.append(CandidateAttempt(
            name=provider.name,
            outcome="timed_out" if verdict.timed_out else "failed",
            command=verdict.command,
            detail=verdict.output[:200] or f"exit code {verdict.exit_code}",
        ))
        return False

    def _prepare_fallback(self, fallback: DockerComposeOnPodmanSocket) -> None:
        """Bring up the Podman socket, then fetch docker-compose if missing.

        The download is skipped when no socket can be made available.
        """
        if not fallback.socket_exists():
            result = fallback.start_socket()
            started = result.ok and fallback.socket_exists()
            self.attempts.append(CandidateAttempt(
                name="podman socket",
                outcome="started" if started else "start_failed",
                command=" ".join(result.argv),
                detail=fallback.socket_path if started
                else (result.output[:200] or f"{fallback.socket_path} still missing"),
            ))
            if not started:
                logger.warning(
                    "Podman API socket %s unavailable; skipping docker-compose download",
                    fallback.socket_path,
                )
                return
        if not fallback.is_installed():
            self._remediate()

    def _remediate(self) -> InstallResult:
        kwargs = {"timeout": self.settings.deadlines.download}
        if self._fetch is not None:
            kwargs["fetch"] = self._fetch
        result = install_compose_binary(
            self.settings.remediation,
            self.runner,
            self.settings.retry.policy(),
            **kwargs,
        )
        self.attempts.append(CandidateAttempt(
            name="docker-compose download",
            outcome="installed" if result.ok else "install_failed",
            command=result.url,
            detail=result.path or result.error,
        ))
        if not result.ok:
            logger.warning("docker-compose download failed: %s", result.error)
        return result

    def _complete(self, record: ResolutionRecord, provider: ComposeProvider) -> ResolutionRecord:
        engine_flags = record.capabilities.engine_flags()
        if isinstance(provider, DockerComposeOnPodmanSocket):
            engine_flags["podman_socket"] = True
        capabilities = provider.capabilities(rootless=engine_flags["rootless"])
        completed = record.model_copy(update={
            "provider": provider.name,
            "compose": provider.invocation(),
            "capabilities": capabilities.model_copy(update=engine_flags),
        })
        self.cache.store(completed)
        logger.info(
            "Compose resolved: %s (%s)", completed.compose.command_line, provider.name,
        )
        return completed
