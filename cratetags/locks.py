"""Cooperative filesystem locks keyed by node hash.

A lock is a file named after the node hash inside the locks directory. It is
created with ``O_CREAT | O_EXCL`` so that only one of several concurrently
running processes can own it, and it is removed when the owner finishes. A
process killed mid-build leaves its lock file behind; the orchestrator reports
the path so an operator can delete it.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Union

from .logging import get_logger


@dataclass(frozen=True)
class LockToken:
    """Proof of ownership of the lock for ``node_hash``."""

    node_hash: str
    path: Path


@dataclass(frozen=True)
class AlreadyLocked:
    """Another process currently owns the lock for ``node_hash``."""

    node_hash: str
    path: Path


LockOutcome = Union[LockToken, AlreadyLocked]


class LockCoordinator:
    """Creates and removes lock files under ``locks_dir``."""

    def __init__(self, locks_dir: Path) -> None:
        self.locks_dir = locks_dir
        self.logger = get_logger("locks")

    def lock_path(self, node_hash: str) -> Path:
        return self.locks_dir / node_hash

    def try_acquire(self, node_hash: str) -> LockOutcome:
        path = self.lock_path(node_hash)
        self.locks_dir.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return AlreadyLocked(node_hash=node_hash, path=path)

        token = LockToken(node_hash=node_hash, path=path)
        try:
            with os.fdopen(fd, "w", encoding="ascii") as handle:
                handle.write(f"{os.getpid()}\n")
        except BaseException:
            self.release(token)
            raise
        self.logger.debug("Acquired lock %s", path)
        return token

    def release(self, token: LockToken) -> None:
        """Remove the lock file; releasing twice is harmless."""
        token.path.unlink(missing_ok=True)
        self.logger.debug("Released lock %s", token.path)

    @contextmanager
    def hold(self, node_hash: str) -> Iterator[LockOutcome]:
        """Try to take the lock for the duration of the ``with`` block.

        Yields ``AlreadyLocked`` without blocking when another process owns
        the lock. An acquired lock is released on every exit path.
        """
        outcome = self.try_acquire(node_hash)
        try:
            yield outcome
        finally:
            if isinstance(outcome, LockToken):
                self.release(outcome)


__all__ = ["AlreadyLocked", "LockCoordinator", "LockOutcome", "LockToken"]
