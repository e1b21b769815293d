"""Adapter around the external ctags indexer."""

from __future__ import annotations

import os
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence, Tuple

from ..errors import GenerationError, TagsIOError, ToolNotFoundError
from ..identity import TEMP_PREFIX
from ..logging import get_logger
from ..models import TagsKind


@dataclass(frozen=True)
class TagsBuffer:
    """Raw tags file content held in memory before promotion."""

    data: bytes = b""

    @classmethod
    def from_path(cls, path: Path) -> "TagsBuffer":
        try:
            return cls(path.read_bytes())
        except OSError as exc:
            raise TagsIOError(f"Unable to read tags file '{path}': {exc}") from exc

    def __bool__(self) -> bool:
        return bool(self.data)


@dataclass
class TagsRequest:
    """Represents one indexer invocation."""

    executable: str
    source_paths: Tuple[Path, ...]
    output_path: Path
    recurse: bool
    kind: TagsKind
    options: Tuple[str, ...] = field(default_factory=tuple)

    def command(self) -> list[str]:
        args = [self.executable, "-f", str(self.output_path)]
        if self.kind is TagsKind.EMACS:
            args.append("-e")
        else:
            # merged vi files are unsorted concatenations
            args.append("--sort=no")
        if self.recurse:
            args.append("--recurse")
        args.extend(self.options)
        args.extend(str(path) for path in self.source_paths)
        return args


def needs_recursion(source_paths: Sequence[Path]) -> bool:
    """Recurse when several roots are indexed together or a root is a directory."""
    if len(source_paths) > 1:
        return True
    return any(path.is_dir() for path in source_paths)


class TagGenerator:
    """Runs the indexer into a scratch file and returns the produced tags."""

    def __init__(
        self,
        executable: str = "ctags",
        *,
        kind: TagsKind = TagsKind.VI,
        options: Sequence[str] = (),
        runner: Callable[[TagsRequest], None] | None = None,
        scratch_dir: Optional[Path] = None,
    ) -> None:
        self.executable = executable
        self.kind = kind
        self.options = tuple(options)
        self.scratch_dir = scratch_dir
        self._runner = runner or self._subprocess_runner
        self.logger = get_logger("tags.generator")

    def generate(self, source_paths: Sequence[Path], recurse: bool) -> TagsBuffer:
        try:
            fd, raw_path = tempfile.mkstemp(
                prefix=TEMP_PREFIX,
                suffix=".tags",
                dir=str(self.scratch_dir) if self.scratch_dir else None,
            )
            os.close(fd)
        except OSError as exc:
            raise TagsIOError(f"Unable to create scratch tags file: {exc}") from exc
        output_path = Path(raw_path)
        request = TagsRequest(
            executable=self.executable,
            source_paths=tuple(source_paths),
            output_path=output_path,
            recurse=recurse,
            kind=self.kind,
            options=self.options,
        )
        try:
            self.logger.debug("Running %s", " ".join(request.command()))
            self._runner(request)
            return TagsBuffer.from_path(output_path)
        finally:
            output_path.unlink(missing_ok=True)

    @staticmethod
    def _subprocess_runner(request: TagsRequest) -> None:
        try:
            completed = subprocess.run(
                request.command(),
                capture_output=True,
                text=True,
                errors="replace",
            )
        except FileNotFoundError as exc:
            raise ToolNotFoundError(
                request.executable,
                hint=f"Is '{request.executable}' correctly installed and on PATH?",
            ) from exc
        except OSError as exc:
            raise TagsIOError(f"Unable to run '{request.executable}': {exc}") from exc
        if completed.returncode != 0:
            output = completed.stderr or completed.stdout or ""
            raise GenerationError(request.executable, completed.returncode, output)


__all__ = ["TagGenerator", "TagsBuffer", "TagsRequest", "needs_recursion"]
