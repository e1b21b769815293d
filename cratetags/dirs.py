"""Filesystem layout of the cratetags home directory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

HOME_ENV = "CRATETAGS_HOME"


@dataclass(frozen=True)
class CrateTagsPaths:
    home: Path
    config_file: Path
    locks_dir: Path
    build_cache: Path

    @classmethod
    def from_home(cls, home: Path) -> "CrateTagsPaths":
        return cls(
            home=home,
            config_file=home / "config.yml",
            locks_dir=home / "locks",
            build_cache=home / "build_cache.json",
        )

    def ensure(self) -> "CrateTagsPaths":
        self.locks_dir.mkdir(parents=True, exist_ok=True)
        return self


def default_home() -> Path:
    override = os.environ.get(HOME_ENV, "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".cratetags"


def resolve_paths(home: Path | None = None) -> CrateTagsPaths:
    return CrateTagsPaths.from_home(home or default_home())


__all__ = ["CrateTagsPaths", "HOME_ENV", "default_home", "resolve_paths"]
