"""Error taxonomy for cratetags runs."""

from __future__ import annotations


class CrateTagsError(RuntimeError):
    """Base class for every error raised by cratetags."""


class ConfigError(CrateTagsError):
    """Raised when configuration or environment settings are invalid."""


class GraphError(CrateTagsError):
    """Raised when dependency metadata is malformed, cyclic or unresolvable."""


class MetadataError(GraphError):
    """Raised when the build tool fails to produce dependency metadata."""


class ToolNotFoundError(CrateTagsError):
    """Raised when an external executable cannot be located."""

    def __init__(self, executable: str, hint: str | None = None) -> None:
        message = f"'{executable}' execution failed: executable not found"
        if hint:
            message = f"{message}\n{hint}"
        super().__init__(message)
        self.executable = executable


class GenerationError(CrateTagsError):
    """Raised when the indexer exits with a non-zero status."""

    def __init__(self, executable: str, returncode: int, output: str) -> None:
        detail = output.strip() or "(no output)"
        super().__init__(f"'{executable}' failed with exit code {returncode}: {detail}")
        self.executable = executable
        self.returncode = returncode
        self.output = output


class TagsIOError(CrateTagsError, OSError):
    """Raised when reading, merging or publishing a tags file fails.

    Also an ``OSError``, so callers handling plain I/O failures catch it too.
    """


__all__ = [
    "ConfigError",
    "CrateTagsError",
    "GenerationError",
    "GraphError",
    "MetadataError",
    "TagsIOError",
    "ToolNotFoundError",
]
