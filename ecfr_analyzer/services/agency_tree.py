"""
eCFR Analyzer - Agency Tree

The agencies.json payload is a forest: each agency may carry a nested
`children` list of unbounded depth. AgencyTree flattens it into an arena
(a list of nodes addressed by index, each holding its parent index and
child indices) using an explicit stack, so neither building nor walking
the tree recurses on untrusted input.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from pydantic import ValidationError

from ..core.errors import SourceParseError
from ..models import AgencyRecord

logger = logging.getLogger(__name__)


@dataclass
class AgencyNode:
    index: int
    record: AgencyRecord
    parent: Optional[int] = None
    depth: int = 0
    children: list[int] = field(default_factory=list)

    @property
    def slug(self) -> str:
        return self.record.slug


@dataclass
class AgencyTree:
    nodes: list[AgencyNode] = field(default_factory=list)
    roots: list[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.nodes)

    @classmethod
    def from_payload(cls, agencies: list[Any]) -> "AgencyTree":
        """
        Build the arena from the raw `agencies` list.

        Each node is validated on its own (children excluded) so one
        malformed entry is reported with its path instead of a deep
        recursive validation error.
        """
        tree = cls()
        # (raw item, parent index, depth, path for error messages)
        stack: list[tuple[Any, Optional[int], int, str]] = [
            (agencies[i], None, 0, f"agencies[{i}]") for i in reversed(range(len(agencies)))
        ]
        while stack:
            raw, parent, depth, path = stack.pop()
            if not isinstance(raw, dict):
                raise SourceParseError(f"{path}: expected an object, got {type(raw).__name__}")
            body = {k: v for k, v in raw.items() if k != "children"}
            try:
                record = AgencyRecord.model_validate(body)
            except ValidationError as exc:
                raise SourceParseError(f"{path}: invalid agency ({exc.error_count()} errors)") from exc

            node = AgencyNode(index=len(tree.nodes), record=record, parent=parent, depth=depth)
            tree.nodes.append(node)
            if parent is None:
                tree.roots.append(node.index)
            else:
                tree.nodes[parent].children.append(node.index)

            children = raw.get("children") or []
            if not isinstance(children, list):
                raise SourceParseError(f"{path}.children: expected a list")
            for i in reversed(range(len(children))):
                stack.append((children[i], node.index, depth + 1, f"{path}.children[{i}]"))
        return tree

    def walk(self) -> Iterator[AgencyNode]:
        """Pre-order traversal over every node, roots in payload order."""
        stack = list(reversed(self.roots))
        while stack:
            node = self.nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.children))

    def descendants(self) -> Iterator[AgencyNode]:
        """Every non-root node, parents before their children."""
        for node in self.walk():
            if node.parent is not None:
                yield node

    def parent_of(self, node: AgencyNode) -> Optional[AgencyNode]:
        return self.nodes[node.parent] if node.parent is not None else None
