"""Dependency-driven tags build orchestration."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set

from .config import Config
from .errors import GenerationError, GraphError, TagsIOError
from .graph import dependency_trees
from .identity import node_hash
from .locks import AlreadyLocked, LockCoordinator
from .logging import get_logger
from .metadata import CargoMetadata
from .models import BuildReport, DependencyTree, NodeResult, NodeStatus, SourceNode
from .stores import BuildCache
from .tags import TagGenerator, merge, needs_recursion, promote

# Both the historical (libcore, ...) and the current (core, ...) source layouts.
STD_LIB_DIRS: Sequence[str] = (
    "liballoc",
    "libarena",
    "libbacktrace",
    "libcollections",
    "libcore",
    "libflate",
    "libfmt_macros",
    "libgetopts",
    "libgraphviz",
    "liblog",
    "librand",
    "librbml",
    "libserialize",
    "libstd",
    "libsyntax",
    "libterm",
    "alloc",
    "core",
    "proc_macro",
    "std",
    "test",
)

STD_LIB_NAME = "standard library"


def build_key(tree: DependencyTree) -> str:
    """Key identifying the inputs a node's published tags file is built from.

    Combines the node hash with, in order, each direct dependency's hash and
    the size and mtime of its published tags file, so a changed dependency
    set or a dependency rebuilt in an earlier run invalidates the dependent.
    """
    parts = [
        f"{dep.source.hash}:{_tags_stamp(dep.source.tags_path)}" for dep in tree.dependencies
    ]
    return node_hash(tree.source.hash, fingerprint=";".join(parts))


def _tags_stamp(path: Path) -> str:
    try:
        stat = path.stat()
    except OSError:
        return "missing"
    return f"{stat.st_size}-{stat.st_mtime_ns}"


def build_order(trees: Iterable[DependencyTree]) -> List[List[DependencyTree]]:
    """Group every distinct node by height: leaves first, dependents after.

    Raises ``GraphError`` when the trees contain a cycle.
    """
    heights: Dict[str, int] = {}
    discovered: List[DependencyTree] = []
    for root in trees:
        in_progress: Set[str] = set()
        stack: List[tuple[DependencyTree, bool]] = [(root, False)]
        while stack:
            tree, expanded = stack.pop()
            key = tree.source.hash
            if key in heights:
                continue
            if expanded:
                in_progress.discard(key)
                heights[key] = 1 + max(
                    (heights[dep.source.hash] for dep in tree.dependencies), default=-1
                )
                discovered.append(tree)
                continue
            if key in in_progress:
                raise GraphError(f"Dependency cycle detected involving package '{tree.source.name}'")
            in_progress.add(key)
            stack.append((tree, True))
            for dep in reversed(tree.dependencies):
                if dep.source.hash in in_progress:
                    raise GraphError(
                        f"Dependency cycle detected involving package '{dep.source.name}'"
                    )
                if dep.source.hash not in heights:
                    stack.append((dep, False))

    levels: List[List[DependencyTree]] = [[] for _ in range(max(heights.values(), default=-1) + 1)]
    for tree in discovered:
        levels[heights[tree.source.hash]].append(tree)
    return levels


class Orchestrator:
    """Decides per node whether tags need work and runs generation + merge."""

    def __init__(
        self,
        *,
        generator: TagGenerator,
        locks: LockCoordinator,
        cache: BuildCache | None = None,
        metadata_source: CargoMetadata | None = None,
        tags_file_name: str = "rusty-tags.vi",
        generated_file_names: Sequence[str] = (),
        force_recreate: bool = False,
        num_threads: int = 1,
    ) -> None:
        self.generator = generator
        self.locks = locks
        self.cache = cache or BuildCache(None)
        self.metadata_source = metadata_source or CargoMetadata()
        self.tags_file_name = tags_file_name
        self.generated_file_names = tuple(generated_file_names)
        self.force_recreate = force_recreate
        self.num_threads = max(1, num_threads)
        self.logger = get_logger("orchestrator")

    @classmethod
    def from_config(cls, config: Config) -> "Orchestrator":
        paths = config.paths.ensure()
        generator = TagGenerator(
            config.ctags_exe,
            kind=config.kind,
            options=config.ctags_options,
        )
        return cls(
            generator=generator,
            locks=LockCoordinator(paths.locks_dir),
            cache=BuildCache(paths.build_cache),
            tags_file_name=config.tags_file_name,
            generated_file_names=config.generated_file_names,
            force_recreate=config.force_recreate,
            num_threads=config.num_threads,
        )

    def update_all_tags(self, start_dir: Path, std_src_path: Optional[Path] = None) -> BuildReport:
        """Build the standard library tags (if configured) and every dependency tree."""
        metadata = self.metadata_source.fetch(start_dir)
        report = BuildReport()
        try:
            if std_src_path is not None:
                report.record(self.update_std_lib_tags(std_src_path))
            trees = dependency_trees(
                metadata,
                tags_file_name=self.tags_file_name,
                ignored_names=self.generated_file_names,
            )
            self.build(trees, report)
        finally:
            self.cache.persist()
        return report

    def build(
        self, trees: Sequence[DependencyTree], report: BuildReport | None = None
    ) -> BuildReport:
        """Process every distinct node, dependencies strictly before dependents."""
        report = report if report is not None else BuildReport()
        levels = build_order(trees)
        self.logger.debug(
            "Processing %d nodes in %d levels with %d worker(s)",
            sum(len(level) for level in levels),
            len(levels),
            self.num_threads,
        )
        with ThreadPoolExecutor(
            max_workers=self.num_threads, thread_name_prefix="cratetags"
        ) as pool:
            for level in levels:
                rebuilt = frozenset(
                    result.node.hash for result in report.with_status(NodeStatus.DONE)
                )
                futures = [pool.submit(self._process, tree, rebuilt) for tree in level]
                for future in futures:
                    report.record(future.result())
        return report

    def update_std_lib_tags(self, src_path: Path) -> NodeResult:
        """Build the standalone standard library tags file inside ``src_path``."""
        src_dirs = [src_path / name for name in STD_LIB_DIRS if (src_path / name).is_dir()]
        if not src_dirs:
            src_dirs = [src_path]
        node = SourceNode(
            name=STD_LIB_NAME,
            hash=node_hash(f"std:{src_path.resolve()}"),
            source_paths=tuple(src_dirs),
            tags_path=src_path / self.tags_file_name,
        )
        if node.tags_path.is_file() and not self.force_recreate:
            self.logger.debug("Fresh tags for the %s", STD_LIB_NAME)
            return NodeResult(node, NodeStatus.SKIPPED)
        return self._locked_build(node, dependency_tags=(), key=node.hash)

    def _process(self, tree: DependencyTree, rebuilt: frozenset[str]) -> NodeResult:
        node = tree.source
        key = build_key(tree)
        if not self.force_recreate and not self._dependencies_rebuilt(tree, rebuilt):
            if self.cache.is_fresh(node.tags_path, key):
                self.logger.debug("Fresh tags for '%s'", node.display_name)
                return NodeResult(node, NodeStatus.SKIPPED)
        return self._locked_build(node, dependency_tags=tree.dependency_tags(), key=key)

    def _locked_build(
        self, node: SourceNode, dependency_tags: Sequence[Path], key: str
    ) -> NodeResult:
        with self.locks.hold(node.hash) as lock:
            if isinstance(lock, AlreadyLocked):
                self.logger.info(
                    "Already creating tags for '%s', if this isn't the case remove the lock file '%s'",
                    node.display_name,
                    lock.path,
                )
                return NodeResult(node, NodeStatus.LOCKED_ELSEWHERE)

            self.logger.info("Creating tags for '%s' ...", node.display_name)
            try:
                own_tags = self.generator.generate(
                    node.source_paths, needs_recursion(node.source_paths)
                )
                promote(merge(own_tags, dependency_tags), node.tags_path)
            except (GenerationError, TagsIOError) as exc:
                self.logger.warning("Creating tags for '%s' failed: %s", node.display_name, exc)
                return NodeResult(node, NodeStatus.FAILED, error=exc)

        self.cache.store(node.tags_path, key)
        return NodeResult(node, NodeStatus.DONE)

    @staticmethod
    def _dependencies_rebuilt(tree: DependencyTree, rebuilt: frozenset[str]) -> bool:
        return any(dep.source.hash in rebuilt for dep in tree.dependencies)


__all__ = ["Orchestrator", "STD_LIB_DIRS", "build_key", "build_order"]
