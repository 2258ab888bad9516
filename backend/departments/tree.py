"""In-memory department forest and closure queries.

The whole department table is small, so each request loads it once as
``(id, name, parent_id)`` rows and answers every hierarchy question from
an adjacency map. Nothing here touches the database.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from backend.common.exceptions import InvalidOperationException, NotFoundException

logger = logging.getLogger(__name__)


class _DepartmentRow(Protocol):
    id: int
    name: str
    parent_id: Optional[int]


@dataclass(frozen=True)
class DepartmentNode:
    """Immutable snapshot of one department row."""

    id: int
    name: str
    parent_id: Optional[int] = None


class DepartmentTree:
    """Adjacency-map view over the department forest.

    Children are kept sorted by id so every traversal is deterministic.
    Traversals carry a visited set: a cyclic store raises
    ``InvalidOperationException`` instead of looping.
    """

    def __init__(self, nodes: Iterable[DepartmentNode]) -> None:
        self._nodes: dict[int, DepartmentNode] = {}
        self._children: dict[int, list[int]] = {}
        for node in nodes:
            self._nodes[node.id] = node
        for node in self._nodes.values():
            if node.parent_id is not None:
                self._children.setdefault(node.parent_id, []).append(node.id)
        for child_ids in self._children.values():
            child_ids.sort()

    @classmethod
    def from_rows(cls, rows: Iterable[_DepartmentRow]) -> DepartmentTree:
        """Build a tree from ORM rows or anything with id/name/parent_id."""
        return cls(
            DepartmentNode(id=row.id, name=row.name, parent_id=row.parent_id)
            for row in rows
        )

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, department_id: object) -> bool:
        return department_id in self._nodes

    # ── Lookups ─────────────────────────────────────────────────────

    def exists(self, department_id: int) -> bool:
        return department_id in self._nodes

    def get_by_id(self, department_id: int) -> DepartmentNode:
        node = self._nodes.get(department_id)
        if node is None:
            raise NotFoundException("Department", department_id)
        return node

    def find_by_name(self, name: str) -> Optional[DepartmentNode]:
        """Case-insensitive, whitespace-trimmed name lookup (lowest id wins)."""
        wanted = name.strip().lower()
        if not wanted:
            return None
        for node_id in sorted(self._nodes):
            node = self._nodes[node_id]
            if node.name.strip().lower() == wanted:
                return node
        return None

    def all_ids(self) -> set[int]:
        return set(self._nodes)

    # ── Single hop ──────────────────────────────────────────────────

    def get_parent(self, department_id: int) -> Optional[DepartmentNode]:
        """Parent of a department; ``None`` for roots and unknown ids."""
        node = self._nodes.get(department_id)
        if node is None or node.parent_id is None:
            return None
        return self._nodes.get(node.parent_id)

    def get_children(self, department_id: int) -> list[DepartmentNode]:
        self.get_by_id(department_id)
        return [self._nodes[cid] for cid in self._children.get(department_id, [])]

    def get_roots(self) -> list[DepartmentNode]:
        return [
            self._nodes[nid]
            for nid in sorted(self._nodes)
            if self._nodes[nid].parent_id is None
        ]

    # ── Closures ────────────────────────────────────────────────────

    def get_ancestors(
        self,
        department_id: int,
        include_self: bool = False,
    ) -> list[DepartmentNode]:
        """Walk parent links, nearest first, ending at the root."""
        node = self.get_by_id(department_id)
        chain: list[DepartmentNode] = [node] if include_self else []
        seen = {node.id}
        current = node
        while current.parent_id is not None:
            parent_id = current.parent_id
            if parent_id in seen:
                logger.error("Department hierarchy cycle detected at id %s", parent_id)
                raise InvalidOperationException(
                    f"Department hierarchy contains a cycle at department {parent_id}.",
                )
            parent = self._nodes.get(parent_id)
            if parent is None:
                # Dangling parent reference: stop, current acts as the root
                logger.warning(
                    "Department %s references missing parent %s", current.id, parent_id,
                )
                break
            seen.add(parent_id)
            chain.append(parent)
            current = parent
        return chain

    def get_descendants(
        self,
        department_id: int,
        include_self: bool = False,
    ) -> list[DepartmentNode]:
        """Breadth-first closure below a department. O(size of subtree)."""
        root = self.get_by_id(department_id)
        result: list[DepartmentNode] = [root] if include_self else []
        visited = {root.id}
        queue: deque[int] = deque([root.id])
        while queue:
            current = queue.popleft()
            for child_id in self._children.get(current, []):
                if child_id in visited:
                    logger.error("Department hierarchy cycle detected at id %s", child_id)
                    raise InvalidOperationException(
                        f"Department hierarchy contains a cycle at department {child_id}.",
                    )
                visited.add(child_id)
                result.append(self._nodes[child_id])
                queue.append(child_id)
        logger.debug(
            "Department %s has %d descendant(s)",
            department_id, len(result) - (1 if include_self else 0),
        )
        return result

    def descendant_ids(self, department_id: int, include_self: bool = True) -> set[int]:
        return {node.id for node in self.get_descendants(department_id, include_self)}

    def get_path_names(
        self,
        department_id: int,
        include_self: bool = True,
    ) -> list[str]:
        """Breadcrumb names ordered root → self (or root → parent)."""
        ancestors = self.get_ancestors(department_id, include_self=include_self)
        return [node.name for node in reversed(ancestors)]

    # ── Invariant checks ────────────────────────────────────────────

    def would_create_cycle(self, department_id: int, new_parent_id: int) -> bool:
        """True when re-parenting ``department_id`` under ``new_parent_id``
        would make a department its own ancestor."""
        if department_id == new_parent_id:
            return True
        return new_parent_id in self.descendant_ids(department_id, include_self=False)
