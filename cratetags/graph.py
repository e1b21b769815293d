"""Dependency forest construction from `cargo metadata` output."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from .errors import GraphError
from .identity import node_hash, source_fingerprint
from .logging import get_logger
from .models import DependencyTree, SourceNode

_DEV_KIND = "dev"


def dependency_trees(
    metadata: Mapping[str, Any],
    *,
    tags_file_name: str,
    ignored_names: Iterable[str] = (),
) -> List[DependencyTree]:
    """Return one tree per workspace member, sharing subtrees between members.

    ``ignored_names`` lists generated file names that must not influence the
    fingerprint of local packages (the tags files themselves).
    """
    builder = _ForestBuilder(
        metadata,
        tags_file_name=tags_file_name,
        ignored_names=(tags_file_name, *ignored_names),
    )
    return builder.build()


class _ForestBuilder:
    def __init__(
        self,
        metadata: Mapping[str, Any],
        *,
        tags_file_name: str,
        ignored_names: Sequence[str],
    ) -> None:
        if not isinstance(metadata, Mapping):
            raise GraphError("Dependency metadata must be a mapping")
        self._tags_file_name = tags_file_name
        self._ignored_names = tuple(ignored_names)
        self._packages = _index_packages(metadata.get("packages"))
        self._edges = _index_edges(metadata.get("resolve"), self._packages)
        self._roots = _root_ids(metadata, self._packages)
        self._trees: Dict[str, DependencyTree] = {}
        self._by_hash: Dict[str, DependencyTree] = {}
        self._logger = get_logger("graph")

    def build(self) -> List[DependencyTree]:
        forest: List[DependencyTree] = []
        seen: set[str] = set()
        for root_id in self._roots:
            self._visit(root_id)
            tree = self._trees[root_id]
            if tree.source.hash in seen:
                continue
            seen.add(tree.source.hash)
            forest.append(tree)
        self._logger.debug(
            "Resolved %d distinct nodes for %d root(s)", len(self._by_hash), len(forest)
        )
        return forest

    def _visit(self, start: str) -> None:
        visiting: set[str] = set()
        stack: List[tuple[str, bool]] = [(start, False)]
        while stack:
            pkg_id, expanded = stack.pop()
            if pkg_id in self._trees:
                continue
            if expanded:
                visiting.discard(pkg_id)
                self._trees[pkg_id] = self._make_tree(pkg_id)
                continue
            if pkg_id in visiting:
                raise GraphError(self._cycle_message(pkg_id))
            visiting.add(pkg_id)
            stack.append((pkg_id, True))
            for dep_id in reversed(self._edges.get(pkg_id, [])):
                if dep_id in visiting:
                    raise GraphError(self._cycle_message(dep_id))
                if dep_id not in self._trees:
                    stack.append((dep_id, False))

    def _make_tree(self, pkg_id: str) -> DependencyTree:
        node = self._make_node(pkg_id)
        existing = self._by_hash.get(node.hash)
        if existing is not None:
            return existing

        dependencies: List[DependencyTree] = []
        dep_hashes: set[str] = set()
        for dep_id in self._edges.get(pkg_id, []):
            dep_tree = self._trees[dep_id]
            if dep_tree.source.hash in dep_hashes:
                continue
            dep_hashes.add(dep_tree.source.hash)
            dependencies.append(dep_tree)

        tree = DependencyTree(source=node, dependencies=dependencies)
        self._by_hash[node.hash] = tree
        return tree

    def _make_node(self, pkg_id: str) -> SourceNode:
        package = self._packages[pkg_id]
        name = str(package["name"])
        source_dir = Path(str(package["manifest_path"])).parent
        if not source_dir.is_dir():
            raise GraphError(f"Missing source directory '{source_dir}' for package '{name}'")

        fingerprint = None
        if package.get("source") is None:
            fingerprint = source_fingerprint([source_dir], exclude=self._ignored_names)

        return SourceNode(
            name=name,
            hash=node_hash(pkg_id, source_paths=(source_dir,), fingerprint=fingerprint),
            source_paths=(source_dir,),
            tags_path=source_dir / self._tags_file_name,
            version=_as_optional_str(package.get("version")),
            is_root=pkg_id in self._roots,
        )

    def _cycle_message(self, pkg_id: str) -> str:
        name = self._packages[pkg_id].get("name", pkg_id)
        return f"Dependency cycle detected involving package '{name}'"


def _index_packages(raw: Any) -> Dict[str, Mapping[str, Any]]:
    if not isinstance(raw, list):
        raise GraphError("Dependency metadata is missing the 'packages' list")
    packages: Dict[str, Mapping[str, Any]] = {}
    for entry in raw:
        if not isinstance(entry, Mapping):
            raise GraphError("Package entries must be mappings")
        pkg_id = entry.get("id")
        if not isinstance(pkg_id, str) or not pkg_id:
            raise GraphError("Package entry without an 'id'")
        if not entry.get("name"):
            raise GraphError(f"Package '{pkg_id}' has no name")
        if not entry.get("manifest_path"):
            raise GraphError(f"Package '{entry['name']}' has no source location")
        packages[pkg_id] = entry
    return packages


def _index_edges(
    resolve: Any, packages: Mapping[str, Mapping[str, Any]]
) -> Dict[str, List[str]]:
    if resolve is None:
        return {}
    if not isinstance(resolve, Mapping):
        raise GraphError("'resolve' section must be a mapping")
    nodes = resolve.get("nodes") or []
    if not isinstance(nodes, list):
        raise GraphError("'resolve.nodes' must be a list")

    edges: Dict[str, List[str]] = {}
    for node in nodes:
        if not isinstance(node, Mapping):
            raise GraphError("Resolve nodes must be mappings")
        pkg_id = node.get("id")
        if pkg_id not in packages:
            raise GraphError(f"Resolve node references unknown package '{pkg_id}'")
        dep_ids = _node_dependencies(node)
        for dep_id in dep_ids:
            if dep_id not in packages:
                raise GraphError(
                    f"Package '{packages[pkg_id]['name']}' depends on unknown package '{dep_id}'"
                )
        edges[pkg_id] = dep_ids
    return edges


def _node_dependencies(node: Mapping[str, Any]) -> List[str]:
    deps = node.get("deps")
    if isinstance(deps, list):
        result: List[str] = []
        for dep in deps:
            if not isinstance(dep, Mapping) or not isinstance(dep.get("pkg"), str):
                raise GraphError("Resolve dependency entries must name a 'pkg'")
            kinds = dep.get("dep_kinds")
            if isinstance(kinds, list) and kinds and all(
                isinstance(kind, Mapping) and kind.get("kind") == _DEV_KIND for kind in kinds
            ):
                continue
            if dep["pkg"] not in result:
                result.append(dep["pkg"])
        return result

    plain = node.get("dependencies") or []
    if not isinstance(plain, list) or not all(isinstance(dep, str) for dep in plain):
        raise GraphError("'dependencies' must be a list of package ids")
    return list(dict.fromkeys(plain))


def _root_ids(
    metadata: Mapping[str, Any], packages: Mapping[str, Mapping[str, Any]]
) -> List[str]:
    members = metadata.get("workspace_members")
    roots: List[str] = []
    if isinstance(members, list):
        roots = [member for member in members if isinstance(member, str)]
    if not roots:
        resolve = metadata.get("resolve")
        root = resolve.get("root") if isinstance(resolve, Mapping) else None
        if isinstance(root, str):
            roots = [root]
    if not roots:
        raise GraphError("Dependency metadata names no root package")
    for root in roots:
        if root not in packages:
            raise GraphError(f"Root package '{root}' is not part of the metadata")
    return roots


def _as_optional_str(value: Any) -> str | None:
    return str(value) if isinstance(value, (str, int, float)) else None


__all__ = ["dependency_trees"]
