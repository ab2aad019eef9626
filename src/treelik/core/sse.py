"""
Likelihood of a time tree and tip states under an SSE process.

The engine integrates the SSE system (see :mod:`treelik.core.ode`) along
every branch from the node age to the parent age and merges the two child
vectors at each speciation event. Per-node results ``[E, D]`` are stored
at the top of each branch in a double-buffered :class:`DirtyCache`, so an
MCMC proposal touching part of the tree only recomputes the path from the
touched nodes to the root.

Structurally invalid trees (children older than their parents, malformed
sampled ancestors, a root age that disagrees with the process age) yield
a log-likelihood of ``-inf``.
"""

import copy
import logging
from typing import Optional

import numpy as np
from scipy.special import gammaln

from ..config import DEFAULT_SETTINGS, LikelihoodSettings
from ..exceptions import check_taxa
from ..io.characters import CharacterMatrix
from .cache import DirtyCache
from .ode import SSEVectorField, integrate, integrate_slices
from .tree import TimeTree, TreeNode

logger = logging.getLogger(__name__)


def slice_ages(begin_age: float, end_age: float, dt: float) -> np.ndarray:
    """
    Ages ``end_age - m * dt`` for ``m = 1, 2, ...`` lying above ``begin_age``.

    Returned in decreasing order (slice 1 first).
    """
    n_slices = max(int(np.ceil((end_age - begin_age) / dt - 1e-9)) - 1, 0)
    return end_age - dt * np.arange(1, n_slices + 1)


class SSELikelihood:
    """
    Incremental SSE likelihood.

    Parameters
    ----------
    tree : TimeTree
        Time tree; sampled ancestors are zero-length fossil tips
    characters : CharacterMatrix or None
        Tip states. ``None`` treats every tip as missing.
    params : SSEParameters
        Process parameters, read at compute time
    settings : LikelihoodSettings, optional
        Rescaling, time slices and solver tolerances
    site : int, default=0
        Character (column) of ``characters`` used by the process

    Examples
    --------
    >>> tree = TimeTree.from_newick("((A:1,B:1):1,C:2);")
    >>> params = SSEParameters(extinction_rates=[0.1], speciation_rates=[1.0], process_age=2.0)
    >>> engine = SSELikelihood(tree, None, params)
    >>> lnL = engine.compute_log_likelihood()
    """

    def __init__(
        self,
        tree: TimeTree,
        characters: Optional[CharacterMatrix],
        params,
        settings: Optional[LikelihoodSettings] = None,
        site: int = 0,
    ):
        self.settings = settings or DEFAULT_SETTINGS
        self.params = params
        self.characters = characters
        self.site = site
        self.cache = DirtyCache(tree.n_nodes)
        self.branch_slices: dict[int, np.ndarray] = {}
        self._saved_ages: Optional[tuple] = None
        self._tree: Optional[TimeTree] = None
        self.set_tree(tree)

    # ------------------------------------------------------------------
    # setup
    # ------------------------------------------------------------------

    @property
    def tree(self) -> TimeTree:
        return self._tree

    @property
    def n_states(self) -> int:
        return self.params.n_states

    @property
    def dt(self) -> float:
        """Width of one time slice, also the largest ODE step."""
        return self.params.process_age / self.settings.num_time_slices

    def set_tree(self, tree: TimeTree) -> None:
        """Observe a new tree, dropping the subscription to the old one."""
        if self._tree is not None:
            self._tree.remove_listener(self)
        self._tree = tree
        tree.add_listener(self)
        self.tree_reset()

    def set_characters(self, characters: Optional[CharacterMatrix]) -> None:
        self.characters = characters
        self.tree_reset()

    def set_params(self, params) -> None:
        self.params = params
        self.tree_reset()

    def set_process_age(self, age: float) -> None:
        """
        Change the root (or origin) age of the process.

        Without an origin the process age is the root age, so the root of
        the tree is moved as well. The previous ages are recorded at the
        first change of a proposal and put back by :meth:`restore`.
        """
        if self._saved_ages is None:
            root_age = None if self.params.use_origin else self._tree.root.age
            self._saved_ages = (self.params.process_age, root_age)
        self.params.process_age = float(age)
        if not self.params.use_origin:
            self._tree.set_age(self._tree.root, age)
        self.cache.touch(self._tree.root)

    def _load_tips(self) -> None:
        k = self.n_states
        tips = self._tree.tips
        self.tip_masks = np.ones((len(tips), k))
        self.tip_observed = np.full(len(tips), -1, dtype=int)

        if self.characters is None:
            return

        check_taxa(self._tree.tip_names, self.characters.names)
        if self.characters.n_states != k:
            raise ValueError(
                f"Character data have {self.characters.n_states} states but the "
                f"process has {k}"
            )
        for tip, name in zip(tips, self._tree.tip_names):
            if self.characters.unknown(name, self.site):
                continue
            mask = self.characters.state_mask(name, self.site)
            self.tip_masks[tip.index] = mask
            if mask.sum() == 1:
                self.tip_observed[tip.index] = int(np.flatnonzero(mask)[0])

    # ------------------------------------------------------------------
    # tree listener
    # ------------------------------------------------------------------

    def tree_changed(self, node: TreeNode) -> None:
        self.cache.touch(node)

    def tree_reset(self) -> None:
        self._load_tips()
        self.cache.resize(self._tree.n_nodes)
        self.cache.allocate("partials", (2 * self.n_states,))
        self.cache.allocate("log_scale", (1,))
        self.cache.allocate("conditioning", (1,))
        self.branch_slices = {}
        self._saved_ages = None
        logger.debug(
            "SSE engine reset: %d tips, %d with an observed state",
            self._tree.n_tips, int((self.tip_observed >= 0).sum()),
        )

    # ------------------------------------------------------------------
    # transaction protocol
    # ------------------------------------------------------------------

    def touch(self, node: Optional[TreeNode] = None) -> None:
        """Flag ``node`` and its ancestors (or every node) for recomputation."""
        if node is None:
            self.cache.touch_all()
        else:
            self.cache.touch(node)

    def keep(self) -> None:
        self._saved_ages = None
        self.cache.keep()

    def restore(self) -> None:
        """Reject the proposal, including a change of the process age."""
        if self._saved_ages is not None:
            process_age, root_age = self._saved_ages
            self._saved_ages = None
            self.params.process_age = process_age
            if root_age is not None:
                self._tree.set_age(self._tree.root, root_age)
        self.cache.restore()

    @property
    def recomputed(self) -> int:
        return self.cache.recomputed

    def reset_counter(self) -> None:
        self.cache.reset_counter()

    def clone(self) -> "SSELikelihood":
        """Independent copy of the engine, its tree and all buffers."""
        duplicate = copy.copy(self)
        duplicate.params = copy.deepcopy(self.params)
        duplicate.cache = self.cache.copy()
        duplicate.tip_masks = self.tip_masks.copy()
        duplicate.tip_observed = self.tip_observed.copy()
        duplicate.branch_slices = {i: values.copy() for i, values in self.branch_slices.items()}
        duplicate._tree = self._tree.copy()
        duplicate._tree.add_listener(duplicate)
        return duplicate

    # ------------------------------------------------------------------
    # building blocks
    # ------------------------------------------------------------------

    def vector_field(self, backward: bool = True, extinction_only: bool = False) -> SSEVectorField:
        return SSEVectorField(self.params, backward=backward, extinction_only=extinction_only)

    def integrate(
        self, y: np.ndarray, begin: float, end: float,
        backward: bool = True, extinction_only: bool = False,
    ) -> np.ndarray:
        field = self.vector_field(backward, extinction_only)
        return integrate(field, y, begin, end, self.dt, self.settings)

    def integrate_field(self, field: SSEVectorField, y: np.ndarray, begin: float, end: float) -> np.ndarray:
        return integrate(field, y, begin, end, self.dt, self.settings)

    def p_extinction(self, begin: float, end: float) -> np.ndarray:
        """
        Probability that a lineage alive at ``end`` leaves no sampled
        descendant at ``begin``, per state.
        """
        rho = self.params.sampling_probability
        k = self.n_states
        y0 = np.concatenate([np.full(k, 1.0 - rho), np.full(k, rho)])
        return self.integrate(y0, begin, end, extinction_only=True)[:k]

    def p_survival(self, begin: float, end: float) -> float:
        """``1 - sum_s f_s E_s(begin, end)``."""
        return 1.0 - float(np.dot(self.params.root_frequencies, self.p_extinction(begin, end)))

    def tip_state(self, node: TreeNode) -> np.ndarray:
        """Initial ``[E, D]`` of a tip at its own age."""
        k = self.n_states
        rho = self.params.sampling_probability
        sampling = np.full(k, rho)
        extinction = np.full(k, 1.0 - rho)

        if self.params.uses_serial_sampling and node.is_fossil:
            sampling = self.params.psi().copy()
            extinction = self.p_extinction(0.0, node.age)

        return np.concatenate([extinction, sampling * self.tip_masks[node.index]])

    def is_speciation_node(self, node: TreeNode) -> bool:
        """A sampled-ancestor child is a continuation, not a speciation event."""
        if any(child.is_sampled_ancestor for child in node.children):
            return not self.params.uses_serial_sampling
        return True

    def merge(self, node: TreeNode, left_y: np.ndarray, right_y: np.ndarray) -> np.ndarray:
        """Combine the two child vectors at the age of ``node``."""
        k = self.n_states
        y = np.empty(2 * k)
        y[:k] = left_y[:k]
        if self.is_speciation_node(node):
            y[k:] = self.params.events.merge(left_y[k:], right_y[k:])
        else:
            y[k:] = left_y[k:] * right_y[k:]
        return y

    def node_state(self, node: TreeNode) -> np.ndarray:
        """Authoritative ``[E, D]`` stored for ``node``."""
        return self.cache.slot("partials", node.index).copy()

    def bottom_state(self, node: TreeNode) -> np.ndarray:
        """``[E, D]`` at the age of ``node`` before integrating its branch."""
        if node.is_tip:
            return self.tip_state(node)
        left, right = node.children
        return self.merge(
            node,
            self.cache.slot("partials", left.index),
            self.cache.slot("partials", right.index),
        )

    def _rescale(self, y: np.ndarray) -> float:
        if not self.settings.use_scaling:
            return 0.0
        k = self.n_states
        peak = y[k:].max()
        if peak <= self.settings.scaling_threshold or peak <= 0.0:
            return 0.0
        factor = peak * k
        y[k:] /= factor
        return float(np.log(factor))

    # ------------------------------------------------------------------
    # validity
    # ------------------------------------------------------------------

    def has_valid_ages(self) -> bool:
        """
        Check node ages, sampled ancestors and the root age.

        Returns
        -------
        bool
            False if the configuration has likelihood zero
        """
        use_origin = self.params.use_origin
        root = self._tree.root

        for node in self._tree.nodes:
            if node.is_root:
                continue
            if node.is_sampled_ancestor:
                if not node.is_fossil or node.branch_length != 0.0:
                    return False
                # Conditioning on the root requires a true bifurcation there,
                # so a single sampled-ancestor child of the root is enough to fail
                if not use_origin and node.parent.is_root:
                    return False
            elif node.age > node.parent.age:
                return False

        if root.age > self.params.process_age:
            return False
        if not use_origin and root.age != self.params.process_age:
            return False
        return True

    # ------------------------------------------------------------------
    # computation
    # ------------------------------------------------------------------

    def _compute(self, node: TreeNode) -> None:
        for current in self.cache.dirty_postorder(node):
            self._compute_node(current)

    def _compute_node(self, node: TreeNode) -> None:
        y = self.bottom_state(node)
        log_scale = sum(self.cache.slot("log_scale", child.index)[0] for child in node.children)

        if node.is_root:
            if self.params.use_origin:
                y = self.integrate(y, node.age, self.params.process_age)
            self.cache.slot("conditioning", node.index)[0] = self._conditioning()
        elif not node.is_sampled_ancestor:
            y = self.integrate(y, node.age, node.parent.age)

        if not node.is_root:
            log_scale += self._rescale(y)

        self.cache.slot("partials", node.index)[:] = y
        self.cache.slot("log_scale", node.index)[0] = log_scale
        self.cache.mark_computed(node.index)

    def _conditioning(self) -> float:
        if self.params.condition != "survival":
            return 0.0
        n_lineages = 1 if self.params.use_origin else 2
        with np.errstate(divide="ignore"):
            return -n_lineages * float(np.log(self.p_survival(0.0, self.params.process_age)))

    def compute_root_log_likelihood(self) -> float:
        """``log(sum_s f_s D_s) + accumulated scaling`` at the root (or origin)."""
        root = self._tree.root
        self._compute(root)
        k = self.n_states
        D = self.cache.slot("partials", root.index)[k:]
        prob = float(np.dot(self.params.root_frequencies, D))
        with np.errstate(divide="ignore"):
            return float(np.log(prob)) + float(self.cache.slot("log_scale", root.index)[0])

    def log_tree_shape(self) -> float:
        """
        Convert the oriented-tree density to a labelled-tree probability.

        Adds ``(n - n_sa - 1) log 2 - log((n - n_extinct)!)`` for ``n`` tips.
        """
        n_tips = self._tree.n_tips
        n_sa = self._tree.number_of_sampled_ancestors
        n_extinct = self._tree.number_of_extinct_tips
        return (n_tips - n_sa - 1) * np.log(2.0) - float(gammaln(n_tips - n_extinct + 1))

    def compute_log_likelihood(self) -> float:
        """
        Log probability density of the tree and tip states.

        Only dirty nodes are recomputed. Invalid trees give ``-inf``.

        Returns
        -------
        float
            Conditioning term plus root log-likelihood plus tree-shape term
        """
        if not self.has_valid_ages():
            return float("-inf")
        root_lnl = self.compute_root_log_likelihood()
        conditioning = float(self.cache.slot("conditioning", self._tree.root.index)[0])
        return conditioning + root_lnl + self.log_tree_shape()

    def store_branch_slices(self) -> None:
        """
        Store ``D`` at the slice points of every branch.

        Slice points lie at ``parent_age - m * dt`` for ``m = 1, 2, ...``
        while above the node age; ``branch_slices[i][m - 1]`` holds ``D`` at
        slice ``m`` of the branch above node ``i``. The stem branch above the
        root is stored under the root index when an origin is used.
        """
        self._compute(self._tree.root)
        self.branch_slices = {}
        dt = self.dt
        field = self.vector_field()
        k = self.n_states

        for node in self._tree.postorder():
            if node.is_sampled_ancestor:
                continue
            if node.is_root:
                if not self.params.use_origin:
                    continue
                end_age = self.params.process_age
            else:
                end_age = node.parent.age

            ages = slice_ages(node.age, end_age, dt)
            times = np.concatenate([[node.age], ages[::-1]])
            values = integrate_slices(field, self.bottom_state(node), times, dt, self.settings)
            # values[1:] runs from slice n_slices up to slice 1
            self.branch_slices[node.index] = values[1:, k:][::-1].copy()

    # ------------------------------------------------------------------
    # sampling and simulation
    # ------------------------------------------------------------------

    def draw_ancestral_states(self, rng: np.random.Generator):
        """See :func:`treelik.analysis.ancestral.draw_ancestral_states`."""
        from ..analysis.ancestral import draw_ancestral_states

        return draw_ancestral_states(self, rng)

    def draw_stochastic_character_map(self, rng: np.random.Generator):
        """See :func:`treelik.analysis.ancestral.draw_stochastic_character_map`."""
        from ..analysis.ancestral import draw_stochastic_character_map

        return draw_stochastic_character_map(self, rng)

    def simulate(self, rng: np.random.Generator, **kwargs):
        """Draw a fresh tree and tip states from the process parameters."""
        from ..simulate.sse import SSESimulator

        return SSESimulator(self.params, rng=rng, **kwargs).simulate()

    def __repr__(self) -> str:
        return (
            f"SSELikelihood(n_tips={self._tree.n_tips}, n_states={self.n_states}, "
            f"process_age={self.params.process_age:g})"
        )
