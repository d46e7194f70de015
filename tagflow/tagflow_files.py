"""
Cross-file reference resolution.

A reference node `{"$ref": "./other#selector"}` (or `{"$ref": "#selector"}`
for the current file) is replaced by the selected part of the target file,
itself resolved. Results are memoized per `file#selector` for one run and a
reference that is reached again while it is still being resolved raises
CyclicReferenceError.
"""
import collections.abc
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Set, Union

from tagflow.tagflow_datatypes import (
    REF_KEY, CyclicReferenceError, ValueNotFound, ValueShapeError,
)
from tagflow.tagflow_path import select
from tagflow.tagflow_tree import traverse_json_like

logger = logging.getLogger(__name__)


@dataclass
class ResolvableFile:
    name: str
    content: Any


def is_reference(node: Any) -> bool:
    return isinstance(node, collections.abc.Mapping) and isinstance(node.get(REF_KEY), str)


def _identity(node: Any) -> Any:
    return node


class ReferenceResolver:
    """
    One resolution run over a set of files.

    `node_visitor` is applied bottom-up to every node that is not a
    reference (for instance `Catalogue.resolve_node`, which builds operator
    nodes into computations).
    """

    def __init__(self, files: Iterable[ResolvableFile], node_visitor: Optional[Callable[[Any], Any]] = None):
        self.files: Dict[str, ResolvableFile] = {f.name: f for f in files}
        self.node_visitor = node_visitor or _identity
        self.memo: Dict[str, Any] = {}
        self.in_progress: Set[str] = set()

    def resolve(self, entry: Union[str, ResolvableFile]) -> Any:
        """Resolve the whole of `entry`, starting a fresh run."""
        self.memo = {}
        self.in_progress = set()
        file = entry if isinstance(entry, ResolvableFile) else self._file(entry)
        return self._resolve_key(file, "")

    def _file(self, name: str) -> ResolvableFile:
        file = self.files.get(name)
        if file is None:
            raise ValueNotFound(name, f"File not found: {name}")
        return file

    def resolve_reference(self, path: str, current: ResolvableFile) -> Any:
        if not (path.startswith("./") or path.startswith("#")):
            raise ValueShapeError(f"Invalid reference path: {path}")
        file_part, _, selector = path.partition("#")
        file = self._file(file_part[2:]) if file_part else current
        return self._resolve_key(file, selector)

    def _resolve_key(self, file: ResolvableFile, selector: str) -> Any:
        key = f"{file.name}#{selector}"
        if key in self.memo:
            return self.memo[key]
        if key in self.in_progress:
            raise CyclicReferenceError(key)
        self.in_progress.add(key)
        try:
            selected = select(file.content, selector) if selector else file.content
            result = self._walk(selected, file)
            self.memo[key] = result
        finally:
            self.in_progress.discard(key)
        logger.debug("Resolved %s", key)
        return result

    def _walk(self, content: Any, file: ResolvableFile) -> Any:
        def visit(node):
            if is_reference(node):
                return self.resolve_reference(node[REF_KEY], file)
            return self.node_visitor(node)
        return traverse_json_like(visit, content)


def resolve(files: Iterable[ResolvableFile], entry: Union[str, ResolvableFile],
            node_visitor: Optional[Callable[[Any], Any]] = None) -> Any:
    return ReferenceResolver(files, node_visitor).resolve(entry)
