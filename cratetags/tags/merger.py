"""Merge freshly generated tags with dependency tags and publish them atomically."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Sequence

from ..errors import TagsIOError
from ..identity import TEMP_PREFIX
from ..logging import get_logger
from .generator import TagsBuffer

_logger = get_logger("tags.merger")


def merge(own_tags: TagsBuffer, dependency_tags: Sequence[Path]) -> TagsBuffer:
    """Concatenate ``own_tags`` with each published dependency tags file, in order.

    Duplicate entries are kept. Dependency files that do not exist (the
    dependency failed or is being built by another process) are skipped.
    """
    chunks = [own_tags.data]
    for path in dependency_tags:
        if not path.is_file():
            _logger.debug("Skipping missing dependency tags '%s'", path)
            continue
        chunk = TagsBuffer.from_path(path).data
        if chunks[-1] and not chunks[-1].endswith(b"\n"):
            chunks.append(b"\n")
        chunks.append(chunk)
    return TagsBuffer(b"".join(chunks))


def promote(buffer: TagsBuffer, destination: Path) -> None:
    """Write ``buffer`` next to ``destination`` and atomically replace it."""
    tmp_path: Path | None = None
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=str(destination.parent),
            prefix=TEMP_PREFIX,
            delete=False,
        ) as temp_file:
            tmp_path = Path(temp_file.name)
            temp_file.write(buffer.data)
            temp_file.flush()
            os.fsync(temp_file.fileno())
        os.replace(tmp_path, destination)
        tmp_path = None
    except OSError as exc:
        raise TagsIOError(f"Unable to write tags file '{destination}': {exc}") from exc
    finally:
        if tmp_path is not None:
            tmp_path.unlink(missing_ok=True)


__all__ = ["merge", "promote"]
