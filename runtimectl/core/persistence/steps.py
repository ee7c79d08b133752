"""
Step tracker — in-progress markers for resumable multi-step work.

begin_step() drops a marker file named after the step; complete_step()
removes it. A marker that is still present when a new process starts
means an earlier run was interrupted in the middle of that step.

Markers are only removed on success. A crash (or an exception escaping
the ``step()`` context manager) deliberately leaves the marker behind.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from runtimectl.core.persistence.atomic import atomic_write

logger = logging.getLogger(__name__)

_MARKER_SUFFIX = ".inprogress"
_VALID_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


@dataclass(frozen=True)
class StepMarker:
    """A step that was begun and not (yet) completed."""

    name: str
    created_at: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "created_at": self.created_at}


class StepTracker:
    """Marker files for multi-step procedures.

    Args:
        steps_dir: Private directory holding the markers.
    """

    def __init__(self, steps_dir: Path):
        self._dir = steps_dir

    @property
    def steps_dir(self) -> Path:
        return self._dir

    def begin_step(self, name: str) -> StepMarker:
        """Record that ``name`` has started."""
        path = self._marker_path(name)
        created_at = datetime.now(UTC).isoformat()
        if path.is_file():
            logger.warning("Step '%s' was left incomplete by an earlier run; restarting it", name)
        atomic_write(path, created_at + "\n")
        logger.debug("Step '%s' begun", name)
        return StepMarker(name=name, created_at=created_at)

    def complete_step(self, name: str) -> None:
        """Record that ``name`` finished successfully."""
        self._marker_path(name).unlink(missing_ok=True)
        logger.debug("Step '%s' completed", name)

    def is_incomplete(self, name: str) -> bool:
        return self._marker_path(name).is_file()

    def list_incomplete(self) -> list[str]:
        return [marker.name for marker in self.markers()]

    def markers(self) -> list[StepMarker]:
        """All markers currently present, oldest first."""
        if not self._dir.is_dir():
            return []
        found: list[StepMarker] = []
        for path in self._dir.glob(f"*{_MARKER_SUFFIX}"):
            try:
                created_at = path.read_text(encoding="utf-8").strip()
            except OSError:
                created_at = ""
            found.append(StepMarker(name=path.name[: -len(_MARKER_SUFFIX)], created_at=created_at))
        return sorted(found, key=lambda m: (m.created_at, m.name))

    @contextmanager
    def step(self, name: str) -> Iterator[StepMarker]:
        """Track a block of work as ``name``.

        The marker is removed only if the block completes. On an
        exception it stays in place and the exception propagates.
        """
        marker = self.begin_step(name)
        try:
            yield marker
        except BaseException:
            logger.error("Step '%s' interrupted; marker kept at %s", name, self._marker_path(name))
            raise
        self.complete_step(name)

    def _marker_path(self, name: str) -> Path:
        if not _VALID_NAME.match(name):
            raise ValueError(f"Invalid step name: {name!r}")
        return self._dir / f"{name}{_MARKER_SUFFIX}"
