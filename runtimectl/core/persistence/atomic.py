"""
Atomic file replacement — readers never observe a half-written file.

Content is staged in a temp file created in the destination's own
directory (same filesystem, so the final rename is atomic), flushed
to disk, then renamed over the destination. If anything fails before
the rename the temp file is removed and the old content is untouched.
"""

from __future__ import annotations

import atexit
import logging
import os
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

# Temp files staged but not yet renamed; removed at interpreter exit
_pending: set[Path] = set()


def _cleanup_pending() -> None:
    for tmp in list(_pending):
        try:
            tmp.unlink(missing_ok=True)
        except OSError:
            logger.debug("Could not remove staged file %s", tmp)
    _pending.clear()


atexit.register(_cleanup_pending)


def _stage(destination: Path) -> tuple[int, Path]:
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=destination.parent,
        prefix=f".{destination.name}.",
        suffix=".tmp",
    )
    tmp = Path(tmp_path)
    _pending.add(tmp)
    return fd, tmp


def _commit(tmp: Path, destination: Path, mode: int | None) -> None:
    if mode is not None:
        os.chmod(tmp, mode)
    os.replace(tmp, destination)
    _pending.discard(tmp)


def _discard(tmp: Path) -> None:
    tmp.unlink(missing_ok=True)
    _pending.discard(tmp)


def atomic_write(
    destination: Path | str,
    content: str | bytes,
    mode: int | None = None,
) -> None:
    """Replace ``destination`` with ``content`` atomically.

    Args:
        destination: Target path. Parent directories are created.
        content: Text (written as UTF-8) or bytes.
        mode: Optional permission bits applied before the rename.

    Raises:
        OSError: If the directory cannot be created or the write/rename fails.
    """
    destination = Path(destination)
    data = content.encode("utf-8") if isinstance(content, str) else content

    fd, tmp = _stage(destination)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        _commit(tmp, destination, mode)
    except BaseException:
        _discard(tmp)
        logger.error("Atomic write to %s failed", destination)
        raise
    logger.debug("Wrote %s (%d bytes)", destination, len(data))


def atomic_write_from_path(
    source: Path | str,
    destination: Path | str,
    mode: int | None = None,
) -> None:
    """Replace ``destination`` with a copy of ``source`` atomically.

    Used when the content is itself the output of another tool (a
    download, a generated file). Timestamps are preserved where the
    platform allows.

    Raises:
        OSError: If the source cannot be read or the write/rename fails.
    """
    source = Path(source)
    destination = Path(destination)

    fd, tmp = _stage(destination)
    os.close(fd)
    try:
        shutil.copy2(source, tmp)
        with open(tmp, "rb") as f:
            os.fsync(f.fileno())
        _commit(tmp, destination, mode)
    except BaseException:
        _discard(tmp)
        logger.error("Atomic copy %s → %s failed", source, destination)
        raise
    logger.debug("Copied %s → %s", source, destination)
