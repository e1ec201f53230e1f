"""
boq_tree.py — Read-only traversal utilities over the BOQ item tree.

Covers:
  - Building the owned tree from flat persisted rows (parent_id back-references)
  - Depth-first lookup by id, pre-order flattening, leaf listing, parent lookup
  - Recursive total value (leaf quantity × unit rate, parents sum children)
  - Code depth (dot count + 1), used to place breakdown containers

Every function is pure: nothing here mutates the tree it is given.
"""

import logging
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Union

from app.models.domain import BOQItem

logger = logging.getLogger("boq-tracker.engine.tree")

BOQTree = Sequence[BOQItem]


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

def _row_value(row: Union[Mapping[str, Any], Any], key: str, default: Any = None) -> Any:
    if isinstance(row, Mapping):
        return row.get(key, default)
    return getattr(row, key, default)


def _to_float(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def build_tree(rows: Iterable[Union[Mapping[str, Any], Any]]) -> List[BOQItem]:
    """
    Assemble flat rows into a tree of BOQItem roots.

    Each row is a mapping or an object exposing ``id``, ``code``,
    ``description``, ``quantity``, ``unit``, ``unit_rate`` and ``parent_id``
    (``description_ar`` and ``unit_ar`` are optional). Siblings keep their
    input order. A row whose parent id is unknown, or whose parent chain
    loops back on itself, becomes a root.
    """
    rows = list(rows)
    nodes: Dict[str, BOQItem] = {}
    for row in rows:
        node = BOQItem(
            id=str(_row_value(row, "id")),
            code=_row_value(row, "code") or "",
            description=_row_value(row, "description") or "",
            quantity=_to_float(_row_value(row, "quantity")),
            unit=_row_value(row, "unit") or "",
            unit_rate=_to_float(_row_value(row, "unit_rate")),
            description_ar=_row_value(row, "description_ar"),
            unit_ar=_row_value(row, "unit_ar"),
            parent_id=_row_value(row, "parent_id"),
        )
        if node.parent_id is not None:
            node.parent_id = str(node.parent_id)
        nodes[node.id] = node

    roots: List[BOQItem] = []
    for node in nodes.values():
        if node.parent_id is None:
            roots.append(node)
            continue
        parent = nodes.get(node.parent_id)
        if parent is None:
            logger.warning(
                "BOQ item %s references unknown parent %s; treating it as a root",
                node.code, node.parent_id,
                extra={"boq_item_id": node.id},
            )
            roots.append(node)
            continue
        parent.children.append(node)

    # Rows whose parent chain loops back on itself hang off no root
    reachable = {item.id for item in _walk(roots)}
    for node in nodes.values():
        if node.id in reachable:
            continue
        logger.warning(
            "BOQ item %s is part of a parent cycle; treating it as a root",
            node.code,
            extra={"boq_item_id": node.id},
        )
        parent = nodes[node.parent_id]
        parent.children = [child for child in parent.children if child is not node]
        roots.append(node)
        reachable.update(item.id for item in _walk([node]))
    return roots


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------

def find_by_id(tree: BOQTree, item_id: Optional[str]) -> Optional[BOQItem]:
    """
    Depth-first search: each top-level item, then its subtree, in order.
    Returns the first match or None.
    """
    if item_id is None:
        return None
    for item in tree:
        if item.id == item_id:
            return item
        found = find_by_id(item.children or [], item_id)
        if found is not None:
            return found
    return None


def _walk(tree: BOQTree) -> Iterator[BOQItem]:
    for item in tree:
        yield item
        if item.children:
            yield from _walk(item.children)


def flatten(tree: BOQTree) -> List[BOQItem]:
    """Pre-order list of every node (a node precedes its children)."""
    return list(_walk(tree))


def leaves(tree: BOQTree) -> List[BOQItem]:
    return [item for item in _walk(tree) if item.is_leaf]


def index_by_id(tree: BOQTree) -> Dict[str, BOQItem]:
    """Flat lookup table. On duplicate ids the first node in pre-order wins."""
    index: Dict[str, BOQItem] = {}
    for item in _walk(tree):
        index.setdefault(item.id, item)
    return index


def find_parent(tree: BOQTree, item_id: str) -> Optional[BOQItem]:
    """Immediate parent of ``item_id``, or None for roots and unknown ids."""
    for item in _walk(tree):
        for child in item.children or []:
            if child.id == item_id:
                return item
    return None


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------

def total_value(node: BOQItem) -> float:
    """Leaf: quantity × unit rate. Parent: sum of its children's totals."""
    if node.is_leaf:
        return (node.quantity or 0.0) * (node.unit_rate or 0.0)
    return sum(total_value(child) for child in node.children)


def project_total(tree: BOQTree) -> float:
    """Total value of the whole catalogue (sum over the root set)."""
    return sum(total_value(root) for root in tree)


def depth(node: BOQItem) -> int:
    """Number of '.' in the item code plus one: "200.1.3" is depth 3."""
    return (node.code or "").count(".") + 1
