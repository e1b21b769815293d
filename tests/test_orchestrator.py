"""Tests for cratetags.orchestrator."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict

import pytest

from cratetags.errors import GraphError, ToolNotFoundError
from cratetags.graph import dependency_trees
from cratetags.identity import node_hash
from cratetags.locks import LockCoordinator, LockToken
from cratetags.models import DependencyTree, NodeStatus, SourceNode
from cratetags.orchestrator import build_key, build_order
from cratetags.stores import BuildCache
from cratetags.tags import TagsRequest
from tests._fixtures.cargo_builder import CargoWorkspace, FakeCtags, fake_tags_for

TAGS = "rusty-tags.vi"


class StaticMetadata:
    """Metadata source returning a prepared document."""

    def __init__(self, metadata: Dict[str, Any]) -> None:
        self.metadata = metadata
        self.calls: list[Path] = []

    def fetch(self, start_dir: Path) -> Dict[str, Any]:
        self.calls.append(start_dir)
        return self.metadata


def _trees(workspace: CargoWorkspace) -> list[DependencyTree]:
    return dependency_trees(workspace.metadata(), tags_file_name=TAGS)


def _tags(workspace: CargoWorkspace, pkg_id: str) -> str:
    return (workspace.package_dir(pkg_id) / TAGS).read_text(encoding="utf-8")


def _node(name: str, root: Path) -> SourceNode:
    return SourceNode(
        name=name,
        hash=node_hash(name),
        source_paths=(root / name,),
        tags_path=root / name / TAGS,
    )


def test_root_without_dependencies_gets_raw_indexer_output(
    workspace: CargoWorkspace, fake_ctags: FakeCtags, make_orchestrator
) -> None:
    app = workspace.add_package("app", member=True)

    report = make_orchestrator().build(_trees(workspace))

    assert len(fake_ctags.requests) == 1
    assert [r.status for r in report.results.values()] == [NodeStatus.DONE]
    assert _tags(workspace, app) == fake_tags_for(workspace.package_dir(app))


def test_fresh_dependency_is_skipped_and_merged(
    workspace: CargoWorkspace, fake_ctags: FakeCtags, make_orchestrator
) -> None:
    app = workspace.add_package("app", member=True)
    dep = workspace.add_package("dep")
    workspace.depend(app, dep)
    (workspace.package_dir(dep) / TAGS).write_text("dep_fn\tlib.rs\t1\n", encoding="utf-8")

    report = make_orchestrator().build(_trees(workspace))

    statuses = {r.node.name: r.status for r in report.results.values()}
    assert statuses == {"dep": NodeStatus.SKIPPED, "app": NodeStatus.DONE}
    assert fake_ctags.indexed_names() == ["app"]
    assert _tags(workspace, app) == fake_tags_for(workspace.package_dir(app)) + "dep_fn\tlib.rs\t1\n"


def test_merged_tags_follow_dependency_order(
    workspace: CargoWorkspace, make_orchestrator
) -> None:
    root = workspace.add_package("root", member=True)
    a = workspace.add_package("a")
    b = workspace.add_package("b")
    workspace.depend(root, a, b)

    make_orchestrator().build(_trees(workspace))

    expected = (
        fake_tags_for(workspace.package_dir(root))
        + fake_tags_for(workspace.package_dir(a))
        + fake_tags_for(workspace.package_dir(b))
    )
    assert _tags(workspace, root) == expected


def test_transitive_tags_are_included(workspace: CargoWorkspace, make_orchestrator) -> None:
    app = workspace.add_package("app", member=True)
    mid = workspace.add_package("mid")
    leaf = workspace.add_package("leaf")
    workspace.depend(app, mid)
    workspace.depend(mid, leaf)

    make_orchestrator().build(_trees(workspace))

    assert _tags(workspace, mid) == fake_tags_for(workspace.package_dir(mid)) + fake_tags_for(
        workspace.package_dir(leaf)
    )
    assert _tags(workspace, app).endswith(_tags(workspace, mid))


def test_shared_dependency_is_built_once(
    workspace: CargoWorkspace, fake_ctags: FakeCtags, make_orchestrator
) -> None:
    first = workspace.add_package("first", member=True)
    second = workspace.add_package("second", member=True)
    a = workspace.add_package("a")
    b = workspace.add_package("b")
    log = workspace.add_package("log")
    workspace.depend(first, a, b)
    workspace.depend(second, log)
    workspace.depend(a, log)
    workspace.depend(b, log)

    make_orchestrator().build(_trees(workspace))

    names = fake_ctags.indexed_names()
    assert sorted(names) == sorted(set(names))
    assert names.index("log-0.1.0") < names.index("a-0.1.0")
    assert len(names) == 5


def test_second_run_does_no_work(
    workspace: CargoWorkspace, fake_ctags: FakeCtags, make_orchestrator
) -> None:
    app = workspace.add_package("app", member=True)
    dep = workspace.add_package("dep")
    workspace.depend(app, dep)
    orchestrator = make_orchestrator()
    orchestrator.build(_trees(workspace))
    calls = len(fake_ctags.requests)

    report = orchestrator.build(_trees(workspace))

    assert len(fake_ctags.requests) == calls
    assert {r.status for r in report.results.values()} == {NodeStatus.SKIPPED}


def test_force_recreate_rebuilds_everything(
    workspace: CargoWorkspace, fake_ctags: FakeCtags, make_orchestrator
) -> None:
    app = workspace.add_package("app", member=True)
    dep = workspace.add_package("dep")
    workspace.depend(app, dep)
    for pkg in (app, dep):
        (workspace.package_dir(pkg) / TAGS).write_text("old\n", encoding="utf-8")

    report = make_orchestrator(force_recreate=True).build(_trees(workspace))

    assert {r.status for r in report.results.values()} == {NodeStatus.DONE}
    assert sorted(fake_ctags.indexed_names()) == ["app", "dep-0.1.0"]
    assert "old" not in _tags(workspace, app)


def test_stale_recorded_key_triggers_rebuild(
    tmp_path: Path, workspace: CargoWorkspace, fake_ctags: FakeCtags, make_orchestrator
) -> None:
    app = workspace.add_package("app", member=True)
    tags_path = workspace.package_dir(app) / TAGS
    tags_path.write_text("old\n", encoding="utf-8")
    cache = BuildCache(tmp_path / "home" / "build_cache.json")
    cache.store(tags_path, "key-from-older-source")
    trees = _trees(workspace)

    report = make_orchestrator(cache=cache).build(trees)

    [result] = report.results.values()
    assert result.status is NodeStatus.DONE
    assert cache.recorded_key(tags_path) == build_key(trees[0])


def test_rebuilt_dependency_invalidates_dependents(
    workspace: CargoWorkspace, fake_ctags: FakeCtags, make_orchestrator
) -> None:
    app = workspace.add_package("app", member=True)
    dep = workspace.add_package("dep")
    workspace.depend(app, dep)
    (workspace.package_dir(app) / TAGS).write_text("stale\n", encoding="utf-8")

    report = make_orchestrator().build(_trees(workspace))

    assert {r.status for r in report.results.values()} == {NodeStatus.DONE}
    assert _tags(workspace, app).endswith(fake_tags_for(workspace.package_dir(dep)))


def test_switched_dependency_version_is_merged(
    workspace: CargoWorkspace, make_orchestrator
) -> None:
    app = workspace.add_package("app", member=True)
    mid = workspace.add_package("mid")
    dep_v1 = workspace.add_package("dep", "1.0.0")
    workspace.depend(app, mid)
    workspace.depend(mid, dep_v1)
    orchestrator = make_orchestrator()
    orchestrator.build(_trees(workspace))

    dep_v2 = workspace.add_package("dep", "2.0.0")
    (workspace.package_dir(dep_v2) / TAGS).write_text(
        fake_tags_for(workspace.package_dir(dep_v2)), encoding="utf-8"
    )
    workspace.set_dependencies(mid, dep_v2)
    report = orchestrator.build(_trees(workspace))

    statuses = {r.node.display_name: r.status for r in report.results.values()}
    assert statuses["dep 2.0.0"] is NodeStatus.SKIPPED
    assert statuses["mid 0.1.0"] is NodeStatus.DONE
    mid_tags = _tags(workspace, mid)
    assert "dep-2.0.0" in mid_tags
    assert "dep-1.0.0" not in mid_tags
    assert "dep-2.0.0" in _tags(workspace, app)


def test_dependent_that_failed_is_rebuilt_on_next_run(
    tmp_path: Path, workspace: CargoWorkspace, make_orchestrator
) -> None:
    app = workspace.add_package("app", member=True)
    dep = workspace.add_package("dep")
    workspace.depend(app, dep)
    cache = BuildCache(tmp_path / "home" / "build_cache.json")
    make_orchestrator(cache=cache).build(_trees(workspace))

    second = make_orchestrator(
        cache=cache,
        force_recreate=True,
        runner=FakeCtags(fail_for={"app"}, marker="dep_v2"),
    ).build(_trees(workspace))
    assert {r.node.name: r.status for r in second.results.values()} == {
        "dep": NodeStatus.DONE,
        "app": NodeStatus.FAILED,
    }

    third = make_orchestrator(cache=cache).build(_trees(workspace))

    assert {r.node.name: r.status for r in third.results.values()} == {
        "dep": NodeStatus.SKIPPED,
        "app": NodeStatus.DONE,
    }
    assert "dep_v2" in _tags(workspace, app)


def test_build_key_tracks_dependency_tags(workspace: CargoWorkspace) -> None:
    app = workspace.add_package("app", member=True)
    dep = workspace.add_package("dep")
    workspace.depend(app, dep)
    dep_tags = workspace.package_dir(dep) / TAGS
    [tree] = _trees(workspace)
    missing = build_key(tree)

    dep_tags.write_text("dep_fn\tlib.rs\t1\n", encoding="utf-8")
    published = build_key(tree)

    assert missing != published
    assert build_key(tree) == published
    dep_tags.write_text("dep_fn\tlib.rs\t1\nother_fn\tlib.rs\t2\n", encoding="utf-8")
    assert build_key(tree) != published


def test_fresh_nodes_are_logged_with_their_version(
    workspace: CargoWorkspace, make_orchestrator, monkeypatch, caplog
) -> None:
    app = workspace.add_package("app", member=True)
    dep = workspace.add_package("dep")
    workspace.depend(app, dep)
    monkeypatch.setattr(logging.getLogger("cratetags"), "propagate", True)
    caplog.set_level(logging.DEBUG, logger="cratetags")
    orchestrator = make_orchestrator()

    orchestrator.build(_trees(workspace))
    assert "Creating tags for 'dep 0.1.0' ..." in caplog.messages
    caplog.clear()
    orchestrator.build(_trees(workspace))

    assert "Fresh tags for 'dep 0.1.0'" in caplog.messages
    assert "Fresh tags for 'app 0.1.0'" in caplog.messages


def test_indexer_os_error_fails_only_that_node(
    workspace: CargoWorkspace, make_orchestrator, monkeypatch
) -> None:
    workspace.add_package("app", member=True)

    def denied(*args, **kwargs):
        raise PermissionError(13, "Permission denied", "ctags")

    monkeypatch.setattr("cratetags.tags.generator.subprocess.run", denied)

    report = make_orchestrator(runner=None).build(_trees(workspace))

    [result] = report.failures
    assert result.node.name == "app"
    assert "Permission denied" in str(result.error)


def test_node_locked_elsewhere_is_left_untouched(
    workspace: CargoWorkspace, fake_ctags: FakeCtags, make_orchestrator, locks_dir: Path
) -> None:
    app = workspace.add_package("app", member=True)
    dep = workspace.add_package("dep")
    workspace.depend(app, dep)
    trees = _trees(workspace)
    dep_node = trees[0].dependencies[0].source
    foreign = LockCoordinator(locks_dir).try_acquire(dep_node.hash)
    assert isinstance(foreign, LockToken)

    report = make_orchestrator().build(trees)

    assert report.status_of(dep_node.hash) is NodeStatus.LOCKED_ELSEWHERE
    assert report.ok
    assert not dep_node.tags_path.exists()
    assert foreign.path.exists()
    assert fake_ctags.indexed_names() == ["app"]


def test_locks_are_released_after_success_and_failure(
    workspace: CargoWorkspace, make_orchestrator, locks_dir: Path
) -> None:
    app = workspace.add_package("app", member=True)
    broken = workspace.add_package("broken")
    workspace.depend(app, broken)

    report = make_orchestrator(runner=FakeCtags(fail_for={"broken-0.1.0"})).build(
        _trees(workspace)
    )

    assert [r.node.name for r in report.failures] == ["broken"]
    assert list(locks_dir.iterdir()) == []


def test_failed_dependency_does_not_block_the_rest(
    workspace: CargoWorkspace, make_orchestrator
) -> None:
    app = workspace.add_package("app", member=True)
    good = workspace.add_package("good")
    broken = workspace.add_package("broken")
    workspace.depend(app, broken, good)

    report = make_orchestrator(runner=FakeCtags(fail_for={"broken-0.1.0"})).build(
        _trees(workspace)
    )

    statuses = {r.node.name: r.status for r in report.results.values()}
    assert statuses == {
        "broken": NodeStatus.FAILED,
        "good": NodeStatus.DONE,
        "app": NodeStatus.DONE,
    }
    assert "cannot index" in str(report.failures[0].error)
    assert _tags(workspace, app) == fake_tags_for(workspace.package_dir(app)) + fake_tags_for(
        workspace.package_dir(good)
    )


def test_missing_indexer_aborts_the_run(workspace: CargoWorkspace, make_orchestrator) -> None:
    workspace.add_package("app", member=True)

    def missing_tool(request: TagsRequest) -> None:
        raise ToolNotFoundError(request.executable)

    with pytest.raises(ToolNotFoundError):
        make_orchestrator(runner=missing_tool).build(_trees(workspace))


def test_build_order_puts_dependencies_first(tmp_path: Path) -> None:
    leaf = DependencyTree(_node("leaf", tmp_path))
    mid = DependencyTree(_node("mid", tmp_path), [leaf])
    root = DependencyTree(_node("root", tmp_path), [mid, leaf])

    levels = build_order([root])

    assert [[tree.source.name for tree in level] for level in levels] == [
        ["leaf"],
        ["mid"],
        ["root"],
    ]


def test_build_order_rejects_cycles(tmp_path: Path) -> None:
    a = DependencyTree(_node("a", tmp_path))
    b = DependencyTree(_node("b", tmp_path), [a])
    a.dependencies.append(b)

    with pytest.raises(GraphError, match="cycle"):
        build_order([a])


def test_std_lib_pass_builds_standalone_tags(tmp_path: Path, make_orchestrator) -> None:
    src = tmp_path / "rust-src"
    for name in ("core", "std", "unrelated"):
        (src / name).mkdir(parents=True)
    fake = FakeCtags()

    result = make_orchestrator(runner=fake, tags_file_name=TAGS).update_std_lib_tags(src)

    assert result.status is NodeStatus.DONE
    [request] = fake.requests
    assert request.recurse is True
    assert [p.name for p in request.source_paths] == ["core", "std"]
    assert (src / TAGS).read_text() == fake_tags_for(src / "core") + fake_tags_for(src / "std")


def test_std_lib_pass_skips_existing_tags(tmp_path: Path, make_orchestrator) -> None:
    src = tmp_path / "rust-src"
    (src / "core").mkdir(parents=True)
    (src / TAGS).write_text("existing\n")
    fake = FakeCtags()

    result = make_orchestrator(runner=fake, tags_file_name=TAGS).update_std_lib_tags(src)

    assert result.status is NodeStatus.SKIPPED
    assert fake.requests == []


def test_update_all_tags_runs_std_lib_then_projects(
    tmp_path: Path, workspace: CargoWorkspace, fake_ctags: FakeCtags, make_orchestrator
) -> None:
    app = workspace.add_package("app", member=True)
    src = tmp_path / "rust-src"
    (src / "core").mkdir(parents=True)
    metadata = StaticMetadata(workspace.metadata())
    cache_path = tmp_path / "home" / "build_cache.json"

    report = make_orchestrator(
        metadata_source=metadata, tags_file_name=TAGS
    ).update_all_tags(workspace.root, std_src_path=src)

    assert metadata.calls == [workspace.root]
    assert fake_ctags.indexed_names() == ["core", "app"]
    assert report.ok
    assert (src / TAGS).exists()
    assert (workspace.package_dir(app) / TAGS).exists()
    assert cache_path.exists()
