from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from cratetags.locks import LockCoordinator
from cratetags.orchestrator import Orchestrator
from cratetags.stores import BuildCache
from cratetags.tags import TagGenerator
from tests._fixtures.cargo_builder import CargoWorkspace, FakeCtags


@pytest.fixture
def workspace(tmp_path: Path) -> CargoWorkspace:
    """Provide a cargo workspace builder rooted at the pytest tmp_path."""
    return CargoWorkspace(tmp_path)


@pytest.fixture
def fake_ctags() -> FakeCtags:
    return FakeCtags()


@pytest.fixture
def locks_dir(tmp_path: Path) -> Path:
    return tmp_path / "home" / "locks"


@pytest.fixture
def make_orchestrator(
    tmp_path: Path, fake_ctags: FakeCtags, locks_dir: Path
) -> Callable[..., Orchestrator]:
    """Build an orchestrator wired to the fake indexer and a temporary home."""

    def _make(**overrides: object) -> Orchestrator:
        runner = overrides.pop("runner", fake_ctags)
        options = dict(
            generator=TagGenerator("ctags", runner=runner),  # type: ignore[arg-type]
            locks=LockCoordinator(locks_dir),
            cache=BuildCache(tmp_path / "home" / "build_cache.json"),
            num_threads=2,
        )
        options.update(overrides)
        return Orchestrator(**options)  # type: ignore[arg-type]

    return _make
