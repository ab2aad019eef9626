"""
Double-buffered per-node storage with dirty-flag bookkeeping.

An MCMC proposal perturbs part of the model, the engine recomputes only the
affected nodes and the sampler then accepts (``keep``) or rejects
(``restore``) the proposal. Every node owns two buffer slots; a proposal
flips the active slot of each touched node exactly once, so a rejection is
undone by flipping back.

Protocol
--------
``touch(node)``
    Flag ``node`` and all its ancestors dirty. Each flagged node flips its
    active slot once per proposal (guarded by the ``changed`` latch).
``keep()``
    Clear all flags; the newly written slots become authoritative.
``restore()``
    Flip back every changed node, then clear all flags.
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)


class DirtyCache:
    """
    Dirty/changed/active bookkeeping plus named double buffers.

    Parameters
    ----------
    n_nodes : int
        Number of tree nodes

    Attributes
    ----------
    dirty : np.ndarray of bool, shape (n_nodes,)
        Node needs recomputation
    changed : np.ndarray of bool, shape (n_nodes,)
        Active slot already flipped during the current proposal
    active_slot : np.ndarray of int, shape (n_nodes,)
        Index (0 or 1) of the authoritative slot
    recomputed : int
        Number of node recomputations reported through :meth:`mark_computed`
        since the counter was last reset
    """

    def __init__(self, n_nodes: int):
        self._shapes: dict[str, tuple[tuple[int, ...], type]] = {}
        self._buffers: dict[str, np.ndarray] = {}
        self.recomputed = 0
        self.resize(n_nodes)

    @property
    def n_nodes(self) -> int:
        return len(self.dirty)

    def resize(self, n_nodes: int) -> None:
        """Reset all flags and reallocate every buffer for ``n_nodes`` nodes."""
        self.dirty = np.ones(n_nodes, dtype=bool)
        self.changed = np.zeros(n_nodes, dtype=bool)
        self.active_slot = np.zeros(n_nodes, dtype=np.int8)
        for name, (shape, dtype) in self._shapes.items():
            self._buffers[name] = np.zeros((n_nodes, 2) + shape, dtype=dtype)
        logger.debug("Cache reset for %d nodes (%d buffers)", n_nodes, len(self._buffers))

    def allocate(self, name: str, shape: tuple[int, ...], dtype=float) -> None:
        """
        Create (or re-create) a named double buffer.

        Parameters
        ----------
        name : str
            Buffer name
        shape : tuple[int, ...]
            Per-node array shape
        dtype : numpy dtype
            Element type
        """
        shape = tuple(int(s) for s in shape)
        self._shapes[name] = (shape, dtype)
        self._buffers[name] = np.zeros((self.n_nodes, 2) + shape, dtype=dtype)

    def slot(self, name: str, index: int) -> np.ndarray:
        """Active (authoritative) slot of buffer ``name`` for node ``index``."""
        return self._buffers[name][index, self.active_slot[index]]

    # ------------------------------------------------------------------
    # protocol
    # ------------------------------------------------------------------

    def touch(self, node) -> None:
        """
        Flag ``node`` and every ancestor dirty.

        If a node on the way up is already dirty its ancestors are dirty
        too, so the walk stops there.
        """
        current = node
        while current is not None and not self.dirty[current.index]:
            index = current.index
            self.dirty[index] = True
            if not self.changed[index]:
                self.active_slot[index] ^= 1
                self.changed[index] = True
            current = current.parent

    def touch_all(self) -> None:
        """Flag every node dirty, flipping each node not flipped yet."""
        self.dirty[:] = True
        flip = ~self.changed
        self.active_slot[flip] ^= 1
        self.changed[:] = True

    def keep(self) -> None:
        self.dirty[:] = False
        self.changed[:] = False

    def restore(self) -> None:
        self.active_slot[self.changed] ^= 1
        self.dirty[:] = False
        self.changed[:] = False

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def is_dirty(self, index: int) -> bool:
        return bool(self.dirty[index])

    def active(self, index: int) -> int:
        return int(self.active_slot[index])

    @property
    def n_dirty(self) -> int:
        return int(self.dirty.sum())

    def mark_computed(self, index: int) -> None:
        """Clear the dirty flag of a freshly computed node."""
        self.dirty[index] = False
        self.recomputed += 1

    def reset_counter(self) -> None:
        self.recomputed = 0

    def dirty_nodes(self) -> list[int]:
        return [int(i) for i in np.flatnonzero(self.dirty)]

    def dirty_postorder(self, node) -> list:
        """
        Dirty nodes at or below ``node``, every node after its children.

        Clean subtrees are not entered: a clean node has no dirty
        descendant because touching flags the whole path to the root.

        Parameters
        ----------
        node : TreeNode
            Top of the walk, usually the root

        Returns
        -------
        list[TreeNode]
            Nodes in the order they must be recomputed
        """
        order = []
        stack = [node]
        while stack:
            current = stack.pop()
            if not self.dirty[current.index]:
                continue
            order.append(current)
            stack.extend(current.children)
        order.reverse()
        return order

    def copy(self) -> "DirtyCache":
        """Independent copy of the flags and every buffer."""
        duplicate = DirtyCache.__new__(DirtyCache)
        duplicate._shapes = dict(self._shapes)
        duplicate._buffers = {name: values.copy() for name, values in self._buffers.items()}
        duplicate.dirty = self.dirty.copy()
        duplicate.changed = self.changed.copy()
        duplicate.active_slot = self.active_slot.copy()
        duplicate.recomputed = self.recomputed
        return duplicate

    def __repr__(self) -> str:
        return (
            f"DirtyCache(n_nodes={self.n_nodes}, n_dirty={self.n_dirty}, "
            f"n_changed={int(self.changed.sum())})"
        )
