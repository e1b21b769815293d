"""Core data models shared across cratetags components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple


class TagsKind(str, Enum):
    """Tags flavour produced for an editor."""

    VI = "vi"
    EMACS = "emacs"


@dataclass(frozen=True)
class SourceNode:
    """One buildable unit: the root project or a single dependency."""

    name: str
    hash: str
    source_paths: Tuple[Path, ...]
    tags_path: Path
    version: Optional[str] = None
    is_root: bool = False

    @property
    def display_name(self) -> str:
        return f"{self.name} {self.version}" if self.version else self.name


@dataclass(eq=False)
class DependencyTree:
    """A source node together with the trees of its direct dependencies.

    Trees are shared between dependents when a dependency is reachable via
    several paths, so identity comparison is used instead of field equality.
    """

    source: SourceNode
    dependencies: List["DependencyTree"] = field(default_factory=list)

    def walk(self) -> Iterator["DependencyTree"]:
        """Yield each distinct tree (by node hash) reachable from this one, once."""
        seen: set[str] = set()
        stack = [self]
        while stack:
            tree = stack.pop()
            if tree.source.hash in seen:
                continue
            seen.add(tree.source.hash)
            yield tree
            stack.extend(reversed(tree.dependencies))

    def dependency_tags(self) -> List[Path]:
        return [dep.source.tags_path for dep in self.dependencies]


class NodeStatus(str, Enum):
    """Terminal states of a node within one orchestration run."""

    SKIPPED = "skipped"
    LOCKED_ELSEWHERE = "locked-elsewhere"
    DONE = "done"
    FAILED = "failed"


@dataclass
class NodeResult:
    """Outcome of processing a single node."""

    node: SourceNode
    status: NodeStatus
    error: Optional[Exception] = None


@dataclass
class BuildReport:
    """Aggregated outcome of an orchestration run keyed by node hash."""

    results: Dict[str, NodeResult] = field(default_factory=dict)

    def record(self, result: NodeResult) -> None:
        self.results[result.node.hash] = result

    def status_of(self, node_hash: str) -> Optional[NodeStatus]:
        result = self.results.get(node_hash)
        return result.status if result else None

    def with_status(self, status: NodeStatus) -> List[NodeResult]:
        return [result for result in self.results.values() if result.status is status]

    @property
    def failures(self) -> List[NodeResult]:
        return self.with_status(NodeStatus.FAILED)

    @property
    def ok(self) -> bool:
        return not self.failures
