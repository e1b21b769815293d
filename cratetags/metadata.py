"""Fetches the dependency graph from Cargo."""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Sequence

from .errors import MetadataError, ToolNotFoundError
from .logging import get_logger


@dataclass
class CommandOutput:
    """Captured result of a metadata command."""

    returncode: int
    stdout: str
    stderr: str


class CargoMetadata:
    """Runs ``cargo metadata`` in a project directory and decodes its JSON."""

    def __init__(
        self,
        executable: str = "cargo",
        runner: Callable[[Sequence[str], Path], CommandOutput] | None = None,
    ) -> None:
        self.executable = executable
        self._runner = runner or self._default_runner
        self.logger = get_logger("metadata")

    def fetch(self, start_dir: Path) -> Dict[str, Any]:
        self.logger.info("Fetching source and metadata ...")
        args = [self.executable, "metadata", "--format-version=1"]
        output = self._runner(args, start_dir)
        if output.returncode != 0:
            message = output.stderr.strip() or output.stdout.strip()
            raise MetadataError(message or f"'{self.executable} metadata' failed")
        try:
            data = json.loads(output.stdout)
        except json.JSONDecodeError as exc:
            raise MetadataError(f"'{self.executable} metadata' returned invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise MetadataError(f"'{self.executable} metadata' returned an unexpected document")
        return data

    def _default_runner(self, args: Sequence[str], cwd: Path) -> CommandOutput:
        try:
            completed = subprocess.run(
                list(args),
                cwd=str(cwd),
                capture_output=True,
                text=True,
                errors="replace",
            )
        except FileNotFoundError as exc:
            raise ToolNotFoundError(
                self.executable, hint=f"Is '{self.executable}' correctly installed?"
            ) from exc
        return CommandOutput(completed.returncode, completed.stdout, completed.stderr)


__all__ = ["CargoMetadata", "CommandOutput"]
