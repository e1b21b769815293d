"""Stable node identities used as cache and lock keys."""

from __future__ import annotations

import base64
import hashlib
import os
from pathlib import Path
from typing import Iterable, Optional, Sequence

_HASH_LENGTH = 20

TEMP_PREFIX = ".cratetags-"

_SKIPPED_DIRS = {".git", "target", ".hg", ".svn"}


def node_hash(
    package_id: str,
    *,
    source_paths: Sequence[Path] = (),
    fingerprint: Optional[str] = None,
) -> str:
    """Return a deterministic identifier for a package.

    ``package_id`` already encodes name, version and origin for registry and git
    packages. Local packages pass a ``fingerprint`` of their source tree so that
    edits produce a new identity.
    """
    digest = hashlib.sha256()
    digest.update(package_id.encode("utf-8"))
    for path in source_paths:
        digest.update(b"\0")
        digest.update(os.fsencode(str(path)))
    if fingerprint is not None:
        digest.update(b"\0fingerprint:")
        digest.update(fingerprint.encode("ascii"))
    return _encode(digest.digest())


def source_fingerprint(paths: Iterable[Path], *, exclude: Iterable[str] = ()) -> str:
    """Fingerprint a source tree from file names, sizes and modification times.

    Files named in ``exclude`` (generated tags files) and in-flight temporary
    files are ignored so publishing tags does not change the fingerprint.
    """
    excluded = set(exclude)
    digest = hashlib.sha256()
    for root in paths:
        for file_path in _iter_files(root):
            if file_path.name in excluded or file_path.name.startswith(TEMP_PREFIX):
                continue
            try:
                stat = file_path.stat()
            except OSError:
                continue
            rel = file_path.relative_to(root) if file_path != root else Path(file_path.name)
            digest.update(os.fsencode(rel.as_posix()))
            digest.update(f"\0{stat.st_size}\0{stat.st_mtime_ns}\n".encode("ascii"))
    return digest.hexdigest()


def _iter_files(root: Path) -> list[Path]:
    if root.is_file():
        return [root]
    files: list[Path] = []
    for current, dirs, names in os.walk(root):
        dirs[:] = sorted(d for d in dirs if d not in _SKIPPED_DIRS)
        for name in sorted(names):
            files.append(Path(current) / name)
    return files


def _encode(raw: bytes) -> str:
    encoded = base64.b32encode(raw).decode("ascii").lower().rstrip("=")
    return encoded[:_HASH_LENGTH]


__all__ = ["TEMP_PREFIX", "node_hash", "source_fingerprint"]
