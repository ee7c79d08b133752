"""
Resolution use case — cache first, then detect + resolve + persist.

This is what every caller goes through to get a ready-to-use compose
invocation. A complete cached record is returned without running a
single probe. Otherwise the engine is detected (or taken from a partial
cached record), the compose cascade runs, and the completed record is
written to the lockfile.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from runtimectl.adapters.shell.command import CommandRunner
from runtimectl.core.config.loader import Settings
from runtimectl.core.models.resolution import (
    ResolutionError,
    ResolutionRecord,
    RuntimeConfig,
)
from runtimectl.core.persistence.lockfile import ResolutionCache
from runtimectl.core.services.compose_install import Fetcher
from runtimectl.core.services.compose_resolve import ComposeResolver
from runtimectl.core.services.platform_detect import PlatformInfo
from runtimectl.core.services.runtime_detect import RuntimeDetector

logger = logging.getLogger(__name__)


@dataclass
class ResolveResult:
    """Result of the resolve use case."""

    config: RuntimeConfig | None = None
    record: ResolutionRecord | None = None
    from_cache: bool = False
    lockfile: Path | None = None
    error: ResolutionError | None = None
    attempts: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None and self.config is not None

    def to_dict(self) -> dict:
        if self.error is not None:
            return self.error.to_dict()

        result: dict = {
            "from_cache": self.from_cache,
            "lockfile": str(self.lockfile) if self.lockfile else None,
        }
        if self.config is not None:
            result.update({
                "engine": self.config.engine.value,
                "provider": self.config.provider,
                "compose": self.config.compose.command_line,
                "compose_env": dict(self.config.compose.env),
                "capabilities": self.config.capabilities.model_dump(mode="json"),
            })
        if self.record is not None:
            result["detected_at"] = self.record.detected_at
        if self.attempts:
            result["attempts"] = [a.model_dump() for a in self.attempts]
        return result


def build_runner(settings: Settings) -> CommandRunner:
    """Command runner configured from settings.

    The remediation install dir is searched first when it exists, so a
    previously downloaded docker-compose is found.
    """
    install_dir = settings.remediation.install_path
    return CommandRunner(
        grace_period=settings.deadlines.grace_period,
        use_timeout_utility=settings.deadlines.use_timeout_utility,
        extra_path=[install_dir] if install_dir.is_dir() else [],
    )


def resolve_runtime(
    settings: Settings,
    runner: CommandRunner | None = None,
    *,
    force: bool = False,
    allow_remediation: bool | None = None,
    platform: PlatformInfo | None = None,
    fetch: Fetcher | None = None,
) -> ResolveResult:
    """Return the runtime configuration, resolving it if needed.

    Args:
        settings: Effective settings.
        runner: Command runner (default: built from settings).
        force: Ignore the cache and re-probe everything.
        allow_remediation: Override ``settings.remediation.enabled``.
        platform: Host identity override (default: read os-release).
        fetch: Download function override for remediation.

    Returns:
        ResolveResult. Resolution failures are reported in ``error``,
        never raised.
    """
    runner = runner or build_runner(settings)
    cache = ResolutionCache(settings.lockfile_path)
    result = ResolveResult(lockfile=cache.path)

    if not force:
        cached = cache.load()
        if cached is not None and cached.complete and _matches_preset(cached, settings):
            logger.debug("Runtime lock is complete; no probing needed")
            result.record = cached
            result.config = RuntimeConfig.from_record(cached)
            result.from_cache = True
            return result

    detector = RuntimeDetector(runner, cache, settings, platform=platform)
    resolver = ComposeResolver(
        runner, cache, settings, allow_remediation=allow_remediation, fetch=fetch,
    )
    try:
        record = detector.detect(force=force)
        record = resolver.resolve(record)
    except ResolutionError as e:
        logger.error("%s", e)
        result.error = e
        return result
    finally:
        result.attempts = [*detector.attempts, *resolver.attempts]

    result.record = record
    result.config = RuntimeConfig.from_record(record)
    return result


def _matches_preset(record: ResolutionRecord, settings: Settings) -> bool:
    if settings.engine is None or record.engine == settings.engine:
        return True
    logger.info(
        "Runtime lock engine %s differs from pre-set %s",
        record.engine.value, settings.engine.value,
    )
    return False
