"""Assemble flat provider groups into the rooted department hierarchy."""

from __future__ import annotations

from collections import defaultdict
from typing import Iterator

from identity_sync.errors import TreeCycleError
from identity_sync.models import Group


def build_tree(root_id: str, groups: list[Group]) -> Group:
    """Return a synthetic root (no DN) whose descendants are taken from *groups*.

    Every node's children are all groups whose ``source_dept_parent_id`` equals
    that node's ``source_dept_id``. Groups unreachable from the root are left
    out. Raises TreeCycleError if a parent chain leads back to an ancestor.
    """
    by_parent: dict[str, list[Group]] = defaultdict(list)
    for group in groups:
        by_parent[group.source_dept_parent_id].append(group)

    root = Group(source_dept_id=root_id)
    # Depth-first with explicit leave markers, so ``ancestors`` is always the
    # path from the root to the node being entered.
    ancestors = {root_id}
    stack: list[tuple[Group, bool]] = [(root, False)]
    while stack:
        node, leaving = stack.pop()
        if leaving:
            ancestors.discard(node.source_dept_id)
            continue
        if node is not root:
            if node.source_dept_id in ancestors:
                raise TreeCycleError(node.source_dept_id)
            ancestors.add(node.source_dept_id)
            stack.append((node, True))
        node.children = list(by_parent.get(node.source_dept_id, ()))
        stack.extend((child, False) for child in reversed(node.children))
    return root


def walk(root: Group) -> Iterator[Group]:
    """Yield every descendant of *root*, parents before their children."""
    stack = list(reversed(root.children))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))
