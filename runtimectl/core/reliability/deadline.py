"""
Deadline runner — execute a command under a wall-clock budget.

The child is started as the leader of a new session so the whole
process group can be signalled. A single watchdog thread acts as a
cancellable timer:

    child exits first   → watchdog is cancelled, nothing is signalled
    timer expires first → SIGTERM to the group, wait grace_period,
                          SIGKILL to the group if it is still alive

The watchdog is always joined before the call returns. A run that the
watchdog terminated is reported with TIMEOUT_EXIT_CODE (124), the same
code the coreutils ``timeout`` utility uses.
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
COMMAND_NOT_FOUND_EXIT_CODE = 127

# Exit codes a shell reports for a child killed by SIGTERM / SIGKILL
_SIGNAL_EXIT_CODES = {128 + 15, 128 + 9}


@dataclass(frozen=True)
class DeadlineSpec:
    """Wall-clock budget for one command.

    Args:
        timeout: Seconds the command may run.
        grace_period: Seconds between SIGTERM and SIGKILL.
    """

    timeout: float
    grace_period: float = 5.0

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")
        if self.grace_period < 0:
            raise ValueError(f"grace_period must be >= 0, got {self.grace_period}")


@dataclass
class DeadlineResult:
    """Outcome of a deadline-bounded run."""

    argv: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class _Watchdog(threading.Thread):
    """Cancellable timer that escalates signals against a process group."""

    def __init__(self, proc: subprocess.Popen, spec: DeadlineSpec):
        super().__init__(name=f"deadline-watchdog-{proc.pid}", daemon=True)
        self._proc = proc
        self._spec = spec
        self._cancelled = threading.Event()
        self.fired = False
        self.killed = False

    def cancel(self) -> None:
        self._cancelled.set()

    def run(self) -> None:
        if self._cancelled.wait(self._spec.timeout):
            return
        self.fired = True
        logger.warning(
            "Deadline of %.1fs expired for pid %d; sending SIGTERM",
            self._spec.timeout,
            self._proc.pid,
        )
        self._signal(signal.SIGTERM)
        if self._cancelled.wait(self._spec.grace_period):
            return
        # The leader may be gone while descendants still hold the pipes
        logger.warning(
            "Grace of %.1fs over for process group %d; sending SIGKILL",
            self._spec.grace_period,
            self._proc.pid,
        )
        self.killed = True
        self._signal(signal.SIGKILL)

    def _signal(self, sig: int) -> None:
        try:
            if hasattr(os, "killpg"):
                os.killpg(self._proc.pid, sig)
            elif sig == signal.SIGTERM:
                self._proc.terminate()
            else:
                self._proc.kill()
        except ProcessLookupError:
            pass  # group already gone
        except PermissionError as e:
            logger.warning("Cannot signal pid %d: %s", self._proc.pid, e)


def execute_with_deadline(
    spec: DeadlineSpec,
    command: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    capture: bool = True,
    use_utility: bool = False,
) -> DeadlineResult:
    """Run ``command`` under ``spec`` and return its full result.

    Args:
        spec: Timeout and grace period.
        command: Argument vector.
        env: Complete environment for the child (default: inherited).
        cwd: Working directory.
        capture: Capture stdout/stderr as text. When False the child
            inherits the caller's streams.
        use_utility: Delegate to the platform ``timeout`` utility when
            it is installed instead of the in-process watchdog.

    Returns:
        DeadlineResult. Never raises for command failures: a missing
        executable is reported as exit code 127.
    """
    argv = [str(part) for part in command]
    if not argv:
        raise ValueError("execute_with_deadline: no command provided")

    timeout_bin = shutil.which("timeout") if use_utility else None
    if timeout_bin:
        return _run_with_utility(timeout_bin, spec, argv, env=env, cwd=cwd, capture=capture)

    start = time.monotonic()
    try:
        proc = subprocess.Popen(
            argv,
            stdout=subprocess.PIPE if capture else None,
            stderr=subprocess.PIPE if capture else None,
            stdin=subprocess.DEVNULL if capture else None,
            text=True,
            env=dict(env) if env is not None else None,
            cwd=cwd,
            start_new_session=True,
        )
    except (FileNotFoundError, PermissionError) as e:
        logger.debug("Cannot execute %s: %s", argv[0], e)
        return DeadlineResult(
            argv=argv,
            exit_code=COMMAND_NOT_FOUND_EXIT_CODE,
            stderr=str(e),
        )

    watchdog = _Watchdog(proc, spec)
    watchdog.start()
    try:
        stdout, stderr = proc.communicate()
    finally:
        watchdog.cancel()
        watchdog.join()
        if proc.poll() is None:
            # communicate() was interrupted; do not leave the group behind
            watchdog._signal(signal.SIGKILL)
            proc.wait()

    elapsed_ms = int((time.monotonic() - start) * 1000)
    exit_code = proc.returncode
    timed_out = watchdog.fired and _ended_by_signal(exit_code)
    if timed_out:
        logger.warning(
            "Command timed out after %.1fs: %s", spec.timeout, " ".join(argv)
        )
        exit_code = TIMEOUT_EXIT_CODE

    return DeadlineResult(
        argv=argv,
        exit_code=exit_code,
        stdout=stdout or "",
        stderr=stderr or "",
        timed_out=timed_out,
        duration_ms=elapsed_ms,
    )


def run_with_deadline(
    timeout: float,
    grace_period: float,
    command: Sequence[str],
    **kwargs,
) -> int:
    """Exit code of ``command`` run under a deadline (124 = timed out)."""
    spec = DeadlineSpec(timeout=timeout, grace_period=grace_period)
    return execute_with_deadline(spec, command, **kwargs).exit_code


def _ended_by_signal(exit_code: int) -> bool:
    return exit_code in (-signal.SIGTERM, -signal.SIGKILL) or exit_code in _SIGNAL_EXIT_CODES


def _run_with_utility(
    timeout_bin: str,
    spec: DeadlineSpec,
    argv: list[str],
    *,
    env: Mapping[str, str] | None,
    cwd: str | None,
    capture: bool,
) -> DeadlineResult:
    """Delegate the deadline to coreutils ``timeout``."""
    wrapped = [
        timeout_bin,
        "-k", f"{spec.grace_period:g}s",
        f"{spec.timeout:g}s",
        *argv,
    ]
    start = time.monotonic()
    try:
        result = subprocess.run(
            wrapped,
            capture_output=capture,
            stdin=subprocess.DEVNULL if capture else None,
            text=True,
            env=dict(env) if env is not None else None,
            cwd=cwd,
        )
    except (FileNotFoundError, PermissionError) as e:
        return DeadlineResult(argv=argv, exit_code=COMMAND_NOT_FOUND_EXIT_CODE, stderr=str(e))

    elapsed_ms = int((time.monotonic() - start) * 1000)
    exit_code = result.returncode
    # 124: TERM was enough; 137: it took the KILL after the grace period
    timed_out = exit_code == TIMEOUT_EXIT_CODE or (
        exit_code == 128 + 9 and elapsed_ms >= spec.timeout * 1000
    )
    if timed_out:
        exit_code = TIMEOUT_EXIT_CODE

    return DeadlineResult(
        argv=argv,
        exit_code=exit_code,
        stdout=result.stdout or "",
        stderr=result.stderr or "",
        timed_out=timed_out,
        duration_ms=elapsed_ms,
    )
