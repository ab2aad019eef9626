"""
Rooted time trees stored as a node arena.

Nodes are addressed by a dense integer index. Tips take the first indices
(in order of appearance), interior nodes follow in postorder and the root is
always the last node. Every edit fires a change event for the most specific
node affected so that likelihood engines can flag cached values as stale.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class TreeListener(Protocol):
    """Interface implemented by objects observing a :class:`TimeTree`."""

    def tree_changed(self, node: "TreeNode") -> None:
        """The age, branch length or attachment of ``node`` changed."""

    def tree_reset(self) -> None:
        """The tree was restructured and its nodes renumbered."""


@dataclass(eq=False)
class TreeNode:
    """
    Node of a rooted time tree.

    Attributes
    ----------
    index : int
        Dense node index in ``[0, n_nodes)``
    name : Optional[str]
        Taxon name (tips) or label (interior nodes)
    parent : Optional[TreeNode]
        Parent node, ``None`` for the root
    children : list[TreeNode]
        Child nodes (0 for tips, 2 for interior nodes)
    age : float
        Time before the present
    is_sampled_ancestor : bool
        Tip sampled directly on a lineage (zero-length branch)
    """

    index: int
    name: Optional[str] = None
    parent: Optional["TreeNode"] = None
    children: list["TreeNode"] = field(default_factory=list)
    age: float = 0.0
    is_sampled_ancestor: bool = False

    @property
    def is_tip(self) -> bool:
        """Check if node is a tip."""
        return len(self.children) == 0

    @property
    def is_root(self) -> bool:
        """Check if node is the root."""
        return self.parent is None

    @property
    def is_fossil(self) -> bool:
        """A tip sampled in the past."""
        return self.is_tip and self.age > 0.0

    @property
    def branch_length(self) -> float:
        """Length of the branch connecting this node to its parent."""
        if self.parent is None:
            return 0.0
        return self.parent.age - self.age

    def __repr__(self) -> str:
        label = self.name if self.name is not None else ""
        return f"TreeNode(index={self.index}, name={label!r}, age={self.age:g})"


class TimeTree:
    """
    Rooted binary time tree.

    The tree is the single owner of its nodes. Parent and child references
    never cross tree boundaries; :meth:`copy` produces an independent arena.

    Parameters
    ----------
    root : TreeNode
        Root of a fully linked tree. Nodes are (re)indexed on construction.
    """

    def __init__(self, root: TreeNode):
        self._root = root
        self._nodes: list[TreeNode] = []
        self._listeners: list[TreeListener] = []
        self._reindex()

    # ------------------------------------------------------------------
    # structure
    # ------------------------------------------------------------------

    def _reindex(self) -> None:
        """Assign dense indices: tips first, interior nodes in postorder."""
        tips = []
        interior = []

        stack = [(self._root, False)]
        while stack:
            node, visited = stack.pop()
            if node.is_tip:
                tips.append(node)
            elif visited:
                interior.append(node)
            else:
                stack.append((node, True))
                for child in reversed(node.children):
                    stack.append((child, False))

        self._nodes = tips + interior
        for i, node in enumerate(self._nodes):
            node.index = i

    @property
    def root(self) -> TreeNode:
        return self._root

    @property
    def nodes(self) -> list[TreeNode]:
        return self._nodes

    @property
    def n_nodes(self) -> int:
        return len(self._nodes)

    @property
    def tips(self) -> list[TreeNode]:
        return [node for node in self._nodes if node.is_tip]

    @property
    def n_tips(self) -> int:
        return sum(1 for node in self._nodes if node.is_tip)

    @property
    def tip_names(self) -> list[str]:
        return [node.name if node.name else str(node.index) for node in self.tips]

    @property
    def number_of_sampled_ancestors(self) -> int:
        return sum(1 for node in self._nodes if node.is_sampled_ancestor)

    @property
    def number_of_extinct_tips(self) -> int:
        """Fossil tips that are not sampled ancestors."""
        return sum(
            1 for node in self._nodes
            if node.is_fossil and not node.is_sampled_ancestor
        )

    @property
    def tree_length(self) -> float:
        return sum(node.branch_length for node in self._nodes)

    def node(self, index: int) -> TreeNode:
        return self._nodes[index]

    def tip_with_name(self, name: str) -> TreeNode:
        for node in self._nodes:
            if node.is_tip and node.name == name:
                return node
        raise KeyError(f"No tip named {name!r}")

    def postorder(self) -> list[TreeNode]:
        """
        Return nodes in post-order traversal (children before parents).

        Returns
        -------
        list[TreeNode]
            Nodes in post-order
        """
        # Parents are visited before children with the right child first,
        # so the reversed visit order is a left-to-right postorder
        result = []
        stack = [self._root]
        while stack:
            node = stack.pop()
            result.append(node)
            stack.extend(node.children)
        result.reverse()
        return result

    def preorder(self) -> list[TreeNode]:
        """Return nodes in pre-order traversal (parents before children)."""
        return list(reversed(self.postorder()))

    def subtree(self, node: TreeNode) -> list[TreeNode]:
        """All nodes below and including ``node``."""
        result = []
        stack = [node]
        while stack:
            current = stack.pop()
            result.append(current)
            stack.extend(current.children)
        return result

    def is_ancestor(self, ancestor: TreeNode, node: TreeNode) -> bool:
        """True if ``ancestor`` lies on the path from ``node`` to the root."""
        current = node.parent
        while current is not None:
            if current is ancestor:
                return True
            current = current.parent
        return False

    # ------------------------------------------------------------------
    # change notification
    # ------------------------------------------------------------------

    def add_listener(self, listener: TreeListener) -> None:
        if not any(existing is listener for existing in self._listeners):
            self._listeners.append(listener)

    def remove_listener(self, listener: TreeListener) -> None:
        self._listeners = [l for l in self._listeners if l is not listener]

    @property
    def listeners(self) -> list[TreeListener]:
        return list(self._listeners)

    def fire_change(self, node: TreeNode) -> None:
        """Notify listeners that ``node`` (and hence its branch) changed."""
        for listener in self._listeners:
            listener.tree_changed(node)

    def fire_reset(self) -> None:
        for listener in self._listeners:
            listener.tree_reset()

    # ------------------------------------------------------------------
    # edits
    # ------------------------------------------------------------------

    def set_age(self, node: TreeNode, age: float) -> None:
        """
        Move a node in time.

        The branch above the node and the branches to its children change,
        so an event is fired for the node and for each child.
        """
        node.age = float(age)
        self.fire_change(node)
        for child in node.children:
            self.fire_change(child)

    def set_branch_length(self, node: TreeNode, length: float) -> None:
        """
        Set the length of the branch above ``node``.

        The whole subtree below the branch is shifted in time, which keeps
        the interior branch lengths of the subtree unchanged but moves the
        ages of every node in it.
        """
        if node.parent is None:
            raise ValueError("The root has no branch to resize")

        shift = (node.parent.age - float(length)) - node.age
        moved = self.subtree(node)
        for n in moved:
            n.age += shift
        for n in moved:
            self.fire_change(n)

    def exchange_subtrees(self, a: TreeNode, b: TreeNode) -> None:
        """
        Swap the attachment points of two nodes.

        This is the topology change performed by narrow/wide exchange
        proposals. Neither node may be an ancestor of the other.
        """
        if a.parent is None or b.parent is None:
            raise ValueError("Cannot exchange the root")
        if self.is_ancestor(a, b) or self.is_ancestor(b, a):
            raise ValueError("Cannot exchange nested subtrees")

        parent_a, parent_b = a.parent, b.parent
        ia = parent_a.children.index(a)
        ib = parent_b.children.index(b)
        parent_a.children[ia] = b
        parent_b.children[ib] = a
        a.parent, b.parent = parent_b, parent_a

        self.fire_change(a)
        self.fire_change(b)

    def drop_tip(self, name: str) -> None:
        """
        Remove a tip and splice out its (now unary) parent.

        Node indices change, so listeners receive a reset event.
        """
        tip = self.tip_with_name(name)
        parent = tip.parent
        if parent is None:
            raise ValueError("Cannot drop the only node of a tree")

        parent.children.remove(tip)
        tip.parent = None
        sibling = parent.children[0]
        grandparent = parent.parent

        if grandparent is None:
            sibling.parent = None
            self._root = sibling
        else:
            grandparent.children[grandparent.children.index(parent)] = sibling
            sibling.parent = grandparent
        parent.children = []
        parent.parent = None

        self._reindex()
        logger.debug("Dropped tip %s; tree now has %d nodes", name, self.n_nodes)
        self.fire_reset()

    def copy(self) -> "TimeTree":
        """
        Independent copy of the tree without any listeners.

        Nodes are rebuilt by index and relinked through the arena, so the
        copy keeps the numbering of this tree even after subtree exchanges
        and does not recurse along the node links.
        """
        duplicates = [
            TreeNode(
                index=node.index,
                name=node.name,
                age=node.age,
                is_sampled_ancestor=node.is_sampled_ancestor,
            )
            for node in self._nodes
        ]
        for node, duplicate in zip(self._nodes, duplicates):
            duplicate.children = [duplicates[child.index] for child in node.children]
            for child in duplicate.children:
                child.parent = duplicate

        tree = TimeTree.__new__(TimeTree)
        tree._root = duplicates[self._root.index]
        tree._nodes = duplicates
        tree._listeners = []
        return tree

    # ------------------------------------------------------------------
    # I/O shortcuts
    # ------------------------------------------------------------------

    @classmethod
    def from_newick(cls, newick_string: str) -> "TimeTree":
        """Parse a Newick string. See :func:`treelik.io.trees.parse_newick`."""
        from ..io.trees import parse_newick

        return parse_newick(newick_string)

    def to_newick(self, digits: int = 6) -> str:
        from ..io.trees import write_newick

        return write_newick(self, digits=digits)

    def to_simmap_newick(self, histories: list[str]) -> str:
        from ..io.trees import write_simmap_newick

        return write_simmap_newick(self, histories)

    def __repr__(self) -> str:
        return f"TimeTree(n_tips={self.n_tips}, n_nodes={self.n_nodes}, root_age={self._root.age:g})"
