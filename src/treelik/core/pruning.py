"""
Likelihood calculation for discrete-character substitution models.

This module implements Felsenstein's pruning algorithm over a
:class:`~treelik.core.tree.TimeTree`, with site-pattern compression and
incremental recomputation. Partial likelihoods live at the top of each
branch: the vector stored for node ``n`` is the probability of the data
below ``n`` conditional on the state at the upper end of the branch above
``n``. The root stores ``f * Lleft * Lright`` directly.
"""

import copy
import logging
from typing import Optional

import numpy as np

from ..config import DEFAULT_SETTINGS, LikelihoodSettings
from ..exceptions import check_taxa
from ..io.characters import CharacterMatrix
from .cache import DirtyCache
from .tree import TimeTree, TreeNode

logger = logging.getLogger(__name__)


def compress_patterns(
    characters: CharacterMatrix, names: list[str]
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Collapse identical site columns into patterns.

    Parameters
    ----------
    characters : CharacterMatrix
        Observed characters
    names : list[str]
        Taxa in the order their observations form the column key

    Returns
    -------
    tip_masks : np.ndarray of float, shape (n_taxa, n_patterns, n_states)
        Compatible-state indicators of each pattern, rows in ``names`` order
    pattern_counts : np.ndarray of int, shape (n_patterns,)
        Multiplicity of each pattern
    site_to_pattern : np.ndarray of int, shape (n_sites,)
        Pattern index of every site
    """
    rows = [characters.taxon_index(name) for name in names]
    masks = characters.masks[rows] | (characters.gaps[rows] | characters.missing[rows])[..., np.newaxis]
    gaps = characters.gaps[rows]

    first_site: dict[bytes, int] = {}
    representatives = []
    counts = []
    site_to_pattern = np.empty(characters.n_sites, dtype=int)

    for site in range(characters.n_sites):
        key = masks[:, site].tobytes() + gaps[:, site].tobytes()
        pattern = first_site.get(key)
        if pattern is None:
            pattern = len(representatives)
            first_site[key] = pattern
            representatives.append(site)
            counts.append(0)
        counts[pattern] += 1
        site_to_pattern[site] = pattern

    tip_masks = masks[:, representatives, :].astype(float)
    return tip_masks, np.array(counts, dtype=int), site_to_pattern


class PruningLikelihood:
    """
    Incremental pruning likelihood of a character matrix on a time tree.

    Parameters
    ----------
    tree : TimeTree
        Time tree whose tip names match the character matrix
    characters : CharacterMatrix
        Observed characters
    model : SubstitutionModel
        Provides ``transition_probabilities(node, t)``,
        ``root_frequencies()`` and ``n_states``
    compress : bool, default=True
        Collapse identical site columns into weighted patterns
    settings : LikelihoodSettings, optional
        Numerical settings (rescaling)

    Examples
    --------
    >>> tree = TimeTree.from_newick("((A:1,B:1):1,C:2);")
    >>> data = CharacterMatrix.from_strings({"A": "0", "B": "0", "C": "1"}, Alphabet.standard(2))
    >>> engine = PruningLikelihood(tree, data, SubstitutionModel.mk(2))
    >>> lnL = engine.compute_log_likelihood()
    """

    def __init__(
        self,
        tree: TimeTree,
        characters: CharacterMatrix,
        model,
        compress: bool = True,
        settings: Optional[LikelihoodSettings] = None,
    ):
        self.settings = settings or DEFAULT_SETTINGS
        self.model = model
        self.compress = compress
        self.characters = characters
        self.cache = DirtyCache(tree.n_nodes)
        self._tree: Optional[TimeTree] = None
        self.set_tree(tree)

    # ------------------------------------------------------------------
    # setup
    # ------------------------------------------------------------------

    @property
    def tree(self) -> TimeTree:
        return self._tree

    def set_tree(self, tree: TimeTree) -> None:
        """Observe a new tree, dropping the subscription to the old one."""
        if self._tree is not None:
            self._tree.remove_listener(self)
        self._tree = tree
        tree.add_listener(self)
        self.tree_reset()

    def set_characters(self, characters: CharacterMatrix) -> None:
        self.characters = characters
        self.tree_reset()

    def set_model(self, model) -> None:
        """Replace the substitution model; every branch becomes stale."""
        self.model = model
        self._check_states()
        self.cache.touch_all()

    def _check_states(self) -> None:
        if self.characters.n_states != self.model.n_states:
            raise ValueError(
                f"Character data have {self.characters.n_states} states but the "
                f"model has {self.model.n_states}"
            )

    def _compress(self) -> None:
        tip_names = self._tree.tip_names
        check_taxa(tip_names, self.characters.names)
        self._check_states()

        if self.compress:
            tip_masks, counts, site_to_pattern = compress_patterns(self.characters, tip_names)
        else:
            # One pattern per site
            rows = [self.characters.taxon_index(name) for name in tip_names]
            unknown = self.characters.gaps[rows] | self.characters.missing[rows]
            tip_masks = (self.characters.masks[rows] | unknown[..., np.newaxis]).astype(float)
            counts = np.ones(self.characters.n_sites, dtype=int)
            site_to_pattern = np.arange(self.characters.n_sites)

        self.tip_masks = tip_masks
        self.pattern_counts = counts
        self.site_to_pattern = site_to_pattern
        logger.debug(
            "Compressed %d sites into %d patterns", self.characters.n_sites, len(counts)
        )

    @property
    def n_patterns(self) -> int:
        return len(self.pattern_counts)

    @property
    def n_states(self) -> int:
        return self.model.n_states

    # ------------------------------------------------------------------
    # tree listener
    # ------------------------------------------------------------------

    def tree_changed(self, node: TreeNode) -> None:
        self.cache.touch(node)

    def tree_reset(self) -> None:
        """Recompress and reallocate after the topology was replaced."""
        if self._tree.n_tips < 2:
            raise ValueError("Pruning likelihood needs a tree with at least two tips")
        self._compress()
        self.cache.resize(self._tree.n_nodes)
        self.cache.allocate("partials", (self.n_patterns, self.n_states))
        self.cache.allocate("log_scale", (self.n_patterns,))

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
        self.cache.keep()

    def restore(self) -> None:
        self.cache.restore()

    @property
    def recomputed(self) -> int:
        return self.cache.recomputed

    def reset_counter(self) -> None:
        self.cache.reset_counter()

    def clone(self) -> "PruningLikelihood":
        """
        Independent copy of the engine, its tree and all buffers.

        The copied tree notifies only the copied engine.
        """
        duplicate = copy.copy(self)
        duplicate.model = copy.deepcopy(self.model)
        duplicate.cache = self.cache.copy()
        duplicate.tip_masks = self.tip_masks.copy()
        duplicate.pattern_counts = self.pattern_counts.copy()
        duplicate.site_to_pattern = self.site_to_pattern.copy()
        duplicate._tree = self._tree.copy()
        duplicate._tree.add_listener(duplicate)
        return duplicate

    # ------------------------------------------------------------------
    # computation
    # ------------------------------------------------------------------

    def _rescale(self, partials: np.ndarray, log_scale: np.ndarray) -> None:
        if not self.settings.use_scaling:
            return
        peak = partials.max(axis=1)
        positive = peak > 0
        partials[positive] /= peak[positive, np.newaxis]
        log_scale[positive] += np.log(peak[positive])

    def _compute_tip(self, node: TreeNode) -> None:
        P = self.model.transition_probabilities(node, node.branch_length)
        partials = self.cache.slot("partials", node.index)
        log_scale = self.cache.slot("log_scale", node.index)

        # L[p, s] = sum_t P[s, t] * mask[p, t]
        partials[:] = self.tip_masks[node.index] @ P.T
        log_scale[:] = 0.0

    def _compute_internal(self, node: TreeNode) -> None:
        left, right = node.children
        product = self.cache.slot("partials", left.index) * self.cache.slot("partials", right.index)
        partials = self.cache.slot("partials", node.index)
        log_scale = self.cache.slot("log_scale", node.index)
        log_scale[:] = self.cache.slot("log_scale", left.index) + self.cache.slot("log_scale", right.index)

        if node.is_root:
            partials[:] = product * self.model.root_frequencies()[np.newaxis, :]
        else:
            P = self.model.transition_probabilities(node, node.branch_length)
            partials[:] = product @ P.T
            self._rescale(partials, log_scale)

    def _compute(self, node: TreeNode) -> None:
        """Recompute every dirty node below ``node``, children first."""
        for current in self.cache.dirty_postorder(node):
            if current.is_tip:
                self._compute_tip(current)
            else:
                self._compute_internal(current)
            self.cache.mark_computed(current.index)

    def has_valid_ages(self) -> bool:
        """False if some node is older than its parent."""
        return all(
            node.is_root or node.age <= node.parent.age for node in self._tree.nodes
        )

    def pattern_log_likelihoods(self) -> np.ndarray:
        """
        Log-likelihood of each pattern (not weighted by multiplicity).

        Every pattern is ``-inf`` on a tree with a negative branch length.
        """
        if not self.has_valid_ages():
            return np.full(self.n_patterns, -np.inf)
        root = self._tree.root
        self._compute(root)
        site_L = self.cache.slot("partials", root.index).sum(axis=1)
        with np.errstate(divide="ignore"):
            return np.log(site_L) + self.cache.slot("log_scale", root.index)

    def compute_log_likelihood(self) -> float:
        """
        Log-likelihood of the character matrix.

        Only dirty nodes are recomputed; with nothing touched since the last
        call the cached root value is reused. A node older than its
        parent gives ``-inf``.

        Returns
        -------
        float
            Total log-likelihood
        """
        return float(np.dot(self.pattern_counts, self.pattern_log_likelihoods()))

    def site_log_likelihoods(self) -> np.ndarray:
        """Per-site log-likelihoods in original site order."""
        return self.pattern_log_likelihoods()[self.site_to_pattern]

    def partial_likelihoods(self, node: TreeNode) -> np.ndarray:
        """Copy of the authoritative partials of ``node``."""
        return self.cache.slot("partials", node.index).copy()

    def conditional_likelihoods(self, node: TreeNode) -> np.ndarray:
        """
        Likelihood of the data below ``node`` given the state at ``node``.

        Unlike :meth:`partial_likelihoods` the branch above ``node`` is not
        included. Tips return their compatible-state indicators.
        """
        self._compute(self._tree.root)
        if node.is_tip:
            return self.tip_masks[node.index].copy()
        left, right = node.children
        return self.cache.slot("partials", left.index) * self.cache.slot("partials", right.index)

    # ------------------------------------------------------------------
    # sampling
    # ------------------------------------------------------------------

    def draw_ancestral_states(self, rng: np.random.Generator) -> np.ndarray:
        """Joint ancestral states, see :func:`treelik.analysis.ancestral.draw_pruning_ancestral_states`."""
        from ..analysis.ancestral import draw_pruning_ancestral_states

        return draw_pruning_ancestral_states(self, rng)

    def __repr__(self) -> str:
        return (
            f"PruningLikelihood(n_tips={self._tree.n_tips}, n_sites={self.characters.n_sites}, "
            f"n_patterns={self.n_patterns}, n_states={self.n_states})"
        )
