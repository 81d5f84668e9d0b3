"""Generic trees, their flat array form, and declarative tree construction."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterable, Iterator, Optional, TypeVar

T = TypeVar("T")
In = TypeVar("In")


@dataclass
class FlatTreeNode(Generic[T]):
    """A node of a flattened tree, referring to its children by index."""

    value: T
    child_indices: list[int] = field(default_factory=list)


@dataclass
class FlatTree(Generic[T]):
    """A tree stored as a list of nodes in preorder; the first node is the root."""

    nodes: list[FlatTreeNode[T]] = field(default_factory=list)

    def to_tree(self) -> "TreeNode[T]":
        """Rebuild the nested tree; an empty list gives an empty root."""
        if not self.nodes:
            return TreeNode()

        def build(index: int) -> TreeNode[T]:
            flat = self.nodes[index]
            return TreeNode(flat.value, [build(i) for i in flat.child_indices])

        return build(0)


@dataclass
class TreeNode(Generic[T]):
    """A node holding a value and an ordered list of child nodes."""

    value: Optional[T] = None
    children: list["TreeNode[T]"] = field(default_factory=list)

    def append_child(self, child: Any) -> "TreeNode[T]":
        """Append a node, or a value wrapped in a new node; return the appended node."""
        node = child if isinstance(child, TreeNode) else TreeNode(child)
        self.children.append(node)
        return node

    def preorder(self) -> Iterator[Optional[T]]:
        """Yield values in preorder."""
        yield self.value
        for child in self.children:
            yield from child.preorder()

    def to_flat_tree(self) -> FlatTree[T]:
        """Convert to a flat list of nodes in preorder."""
        nodes: list[FlatTreeNode[T]] = []

        def visit(node: TreeNode[T]) -> int:
            index = len(nodes)
            flat: FlatTreeNode[T] = FlatTreeNode(node.value)  # type: ignore[arg-type]
            nodes.append(flat)
            for child in node.children:
                flat.child_indices.append(visit(child))
            return index

        visit(self)
        return FlatTree(nodes)


@dataclass
class TreeConstructor(Generic[In, T]):
    """Declarative recipe: a function producing nodes from input, and sub-recipes
    applied under each produced node."""

    nodes_to_attach: Callable[[In], Iterable[Any]]
    children: list["TreeConstructor[In, T]"] = field(default_factory=list)


def construct_tree(constructor: TreeConstructor, node: TreeNode, data: Any) -> None:
    """Attach the nodes ``constructor`` produces for ``data`` under ``node``, recursively."""
    for new_node in constructor.nodes_to_attach(data):
        attached = node.append_child(new_node)
        for child in constructor.children:
            construct_tree(child, attached, data)