"""
Shell command adapter — every external program runs through here.

CommandRunner is the single seam between resolution logic and the
host: binary lookup (``which``) and bounded execution (``run``).
Tests substitute a fake runner; nothing else spawns processes.

Every run is deadline-bounded. Command failures never raise: they
come back as a CommandResult with a nonzero exit code (127 for a
missing binary, 124 for a timeout).
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from runtimectl.core.reliability.deadline import (
    TIMEOUT_EXIT_CODE,
    DeadlineSpec,
    execute_with_deadline,
)
from runtimectl.core.reliability.retry import RetryPolicy, retry_call

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of one external command."""

    argv: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def timed_out(self) -> bool:
        return self.exit_code == TIMEOUT_EXIT_CODE

    @property
    def output(self) -> str:
        """Stripped stdout, falling back to stderr."""
        return (self.stdout or self.stderr).strip()

    def to_dict(self) -> dict:
        return {
            "command": " ".join(self.argv),
            "exit_code": self.exit_code,
            "stdout": self.stdout.strip(),
            "stderr": self.stderr.strip(),
            "duration_ms": self.duration_ms,
        }


class CommandRunner:
    """Run external commands under a deadline.

    Args:
        grace_period: Seconds between SIGTERM and SIGKILL on timeout.
        use_timeout_utility: Delegate deadlines to coreutils ``timeout``.
        extra_path: Directories searched before PATH (e.g. the
            remediation install dir).
    """

    def __init__(
        self,
        grace_period: float = 5.0,
        use_timeout_utility: bool = False,
        extra_path: Sequence[str | Path] = (),
    ):
        self.grace_period = grace_period
        self.use_timeout_utility = use_timeout_utility
        self._extra_path: list[str] = [str(p) for p in extra_path]

    @property
    def extra_path(self) -> list[str]:
        return list(self._extra_path)

    def add_search_path(self, directory: str | Path) -> None:
        """Prepend ``directory`` to the lookup path for later commands."""
        directory = str(directory)
        if directory not in self._extra_path:
            self._extra_path.insert(0, directory)

    def search_path(self) -> str:
        parts = [*self._extra_path, os.environ.get("PATH", os.defpath)]
        return os.pathsep.join(p for p in parts if p)

    def which(self, name: str) -> str | None:
        """Absolute path of ``name`` on the search path, or None."""
        return shutil.which(name, path=self.search_path())

    def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float,
        env: Mapping[str, str] | None = None,
        cwd: str | Path | None = None,
        capture: bool = True,
    ) -> CommandResult:
        """Run ``argv`` with a ``timeout``-second deadline.

        Args:
            env: Variables layered on top of the inherited environment.
            capture: Capture output. When False, the child writes to
                the caller's terminal.
        """
        argv = [str(a) for a in argv]
        child_env = dict(os.environ)
        child_env["PATH"] = self.search_path()
        if env:
            child_env.update(env)

        logger.debug("Running (timeout=%.1fs): %s", timeout, " ".join(argv))
        result = execute_with_deadline(
            DeadlineSpec(timeout=timeout, grace_period=self.grace_period),
            argv,
            env=child_env,
            cwd=str(cwd) if cwd is not None else None,
            capture=capture,
            use_utility=self.use_timeout_utility,
        )
        if result.exit_code != 0:
            logger.debug(
                "Command exited %d: %s — %s",
                result.exit_code,
                " ".join(argv),
                (result.stderr or result.stdout).strip()[:200],
            )
        return CommandResult(
            argv=argv,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            duration_ms=result.duration_ms,
        )

    def run_with_retry(
        self,
        policy: RetryPolicy,
        argv: Sequence[str],
        *,
        timeout: float,
        env: Mapping[str, str] | None = None,
        description: str | None = None,
    ) -> CommandResult:
        """Run ``argv`` under ``policy``; returns the last attempt's result."""
        last: list[CommandResult] = []

        def _attempt() -> int:
            result = self.run(argv, timeout=timeout, env=env)
            last[:] = [result]
            return result.exit_code

        retry_call(policy, _attempt, description=description or " ".join(argv))
        return last[0]
