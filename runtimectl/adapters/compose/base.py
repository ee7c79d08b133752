"""
Compose provider base — the contract between the resolver and each
compose implementation.

The resolver only talks to compose implementations through this
interface. A provider knows how to tell whether it is installed, how
to prove it works (``verify``), what it supports, and how to invoke it.

Providers never raise for tool failures: problems come back as a
VerifyResult with ok=False, or as is_available() == False.

To add a compose implementation:
    1. Subclass ComposeProvider
    2. Implement name, engine, binary, leading_args, install_hint, capabilities
    3. Add it to the ordered lists in providers.py
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from runtimectl.adapters.shell.command import CommandRunner
from runtimectl.core.models.resolution import Capabilities, ComposeInvocation, Engine
from runtimectl.core.reliability.deadline import TIMEOUT_EXIT_CODE
from runtimectl.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)

PROBE_PROJECT = "runtimectl-probe"


@dataclass
class ProviderOptions:
    """Budgets shared by every provider in one resolution run."""

    probe_timeout: float = 5.0
    verify_timeout: float = 30.0
    verify_retry: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(retryable_exit_codes=frozenset({TIMEOUT_EXIT_CODE}))
    )
    # Pinned docker-compose asset for this host, used in install hints
    compose_release_url: str | None = None


@dataclass
class VerifyResult:
    """Outcome of exercising a provider against a compose document."""

    ok: bool
    command: str
    exit_code: int
    output: str = ""
    timed_out: bool = False

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "command": self.command,
            "exit_code": self.exit_code,
            "output": self.output,
            "timed_out": self.timed_out,
        }


class ComposeProvider(ABC):
    """One compose implementation for one engine."""

    def __init__(self, runner: CommandRunner, options: ProviderOptions | None = None):
        self.runner = runner
        self.options = options or ProviderOptions()

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier persisted as COMPOSE_IMPL."""

    @property
    @abstractmethod
    def engine(self) -> Engine:
        """Engine this provider drives."""

    @property
    @abstractmethod
    def binary(self) -> str:
        """Executable looked up on the search path."""

    @property
    def leading_args(self) -> tuple[str, ...]:
        """Fixed arguments after the binary (e.g. ``compose``)."""
        return ()

    @property
    @abstractmethod
    def install_hint(self) -> str:
        """Operator command that installs this provider."""

    @abstractmethod
    def capabilities(self, rootless: bool = False) -> Capabilities:
        """Feature flags when this provider wins."""

    # ── Shared behaviour ────────────────────────────────────────

    def env(self) -> dict[str, str]:
        """Extra environment the invocation needs."""
        return {}

    def verify_args(self, document: Path) -> list[str]:
        return ["-p", PROBE_PROJECT, "-f", str(document), "config", "--quiet"]

    def is_installed(self) -> bool:
        return self.runner.which(self.binary) is not None

    def is_available(self) -> bool:
        """Whether the provider is installed. Fast, never raises."""
        return self.is_installed()

    def invocation(self) -> ComposeInvocation:
        return ComposeInvocation(argv=(self._binary_ref(), *self.leading_args), env=self.env())

    def verify(self, document: Path) -> VerifyResult:
        """Run the provider's ``config`` command against ``document``.

        Timeouts are retried under ``options.verify_retry``; any other
        failure is final.
        """
        invocation = self.invocation()
        argv = invocation.command(*self.verify_args(document))
        result = self.runner.run_with_retry(
            self.options.verify_retry,
            argv,
            timeout=self.options.verify_timeout,
            env=invocation.env,
            description=f"{self.name} verification",
        )
        verdict = VerifyResult(
            ok=result.ok,
            command=" ".join(argv),
            exit_code=result.exit_code,
            output=(result.stderr or result.stdout).strip(),
            timed_out=result.timed_out,
        )
        if not verdict.ok:
            logger.warning(
                "%s failed verification (rc=%d): %s\n%s",
                self.name,
                verdict.exit_code,
                verdict.command,
                verdict.output or "(no output)",
            )
        return verdict

    def _probe(self, *args: str) -> bool:
        """Quick yes/no check under the probe deadline."""
        return self.runner.run([*args], timeout=self.options.probe_timeout).ok

    def _binary_ref(self) -> str:
        # Binaries found only in an extra search dir are pinned by path
        path = self.runner.which(self.binary)
        if path and str(Path(path).parent) in self.runner.extra_path:
            return path
        return self.binary

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
