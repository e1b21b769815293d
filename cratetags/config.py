"""Configuration loading for cratetags (config.yml + command line + environment)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

from .dirs import CrateTagsPaths, resolve_paths
from .errors import ConfigError
from .models import TagsKind

STD_SRC_ENV = "RUST_SRC_PATH"


@dataclass
class FileConfig:
    """Settings read from ``config.yml`` in the cratetags home directory."""

    vi_tags: str = "rusty-tags.vi"
    emacs_tags: str = "rusty-tags.emacs"
    ctags_exe: str = "ctags"
    ctags_options: List[str] = field(default_factory=list)
    num_threads: Optional[int] = None

    def tags_file_name(self, kind: TagsKind) -> str:
        return self.emacs_tags if kind is TagsKind.EMACS else self.vi_tags


@dataclass
class Config:
    """Effective settings for one run."""

    start_dir: Path
    kind: TagsKind
    paths: CrateTagsPaths
    force_recreate: bool = False
    verbose: bool = False
    quiet: bool = False
    num_threads: int = 1
    ctags_exe: str = "ctags"
    ctags_options: List[str] = field(default_factory=list)
    tags_file_name: str = "rusty-tags.vi"
    generated_file_names: tuple[str, ...] = ()
    std_src_path: Optional[Path] = None


def load_file_config(config_path: Path) -> FileConfig:
    """Load ``config.yml``; a missing file yields the defaults."""
    if not config_path.exists():
        return FileConfig()

    data = _read_config(config_path)
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path.name} must contain a mapping at the root")

    defaults = FileConfig()
    num_threads = _as_int(data.get("num_threads"))
    if num_threads is not None and num_threads < 1:
        raise ConfigError("num_threads must be a positive integer")

    return FileConfig(
        vi_tags=_as_str(data.get("vi_tags")) or defaults.vi_tags,
        emacs_tags=_as_str(data.get("emacs_tags")) or defaults.emacs_tags,
        ctags_exe=_as_str(data.get("ctags_exe")) or defaults.ctags_exe,
        ctags_options=_as_options(data.get("ctags_options")),
        num_threads=num_threads,
    )


def build_config(
    *,
    kind: TagsKind | str,
    start_dir: Path | str | None = None,
    force_recreate: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    num_threads: Optional[int] = None,
    home: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Combine the config file, command line values and environment into a ``Config``."""
    env = os.environ if environ is None else environ
    paths = resolve_paths(home)
    file_config = load_file_config(paths.config_file)
    try:
        tags_kind = TagsKind(kind)
    except ValueError as exc:
        raise ConfigError(f"Unknown tags kind '{kind}'") from exc

    resolved_start = Path(start_dir or Path.cwd()).expanduser().resolve()
    if not resolved_start.is_dir():
        raise ConfigError(f"Invalid start directory '{resolved_start}'")

    threads = num_threads or file_config.num_threads or os.cpu_count() or 1
    if threads < 1:
        raise ConfigError("Number of threads must be a positive integer")

    return Config(
        start_dir=resolved_start,
        kind=tags_kind,
        paths=paths,
        force_recreate=force_recreate,
        verbose=verbose,
        quiet=quiet,
        num_threads=threads,
        ctags_exe=file_config.ctags_exe,
        ctags_options=list(file_config.ctags_options),
        tags_file_name=file_config.tags_file_name(tags_kind),
        generated_file_names=(file_config.vi_tags, file_config.emacs_tags),
        std_src_path=resolve_std_src_path(env),
    )


def resolve_std_src_path(environ: Mapping[str, str]) -> Optional[Path]:
    """Return the standard library source root, or None when it is not configured."""
    raw = environ.get(STD_SRC_ENV, "").strip()
    if not raw:
        return None
    path = Path(raw).expanduser()
    if not path.is_dir():
        raise ConfigError(f"Missing rust source code at '{path}'!")
    return path


def _read_config(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Unable to read {path}: {exc}") from exc
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded if loaded is not None else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float)) and str(value) else None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_options(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float))]
    raise ConfigError("ctags_options must be a string or a list of strings")


__all__ = [
    "Config",
    "FileConfig",
    "STD_SRC_ENV",
    "build_config",
    "load_file_config",
    "resolve_std_src_path",
]
