"""
Ancestral state sampling and stochastic character mapping.

All functions sample jointly from root to tips, conditioning each draw on
the likelihoods already computed by the engine for the data below a node.
They take an explicit ``numpy.random.Generator`` so that results are
reproducible from a seed.
"""

import logging
import warnings
from dataclasses import dataclass

import numpy as np

from ..core.sse import slice_ages
from ..core.tree import TimeTree, TreeNode

logger = logging.getLogger(__name__)


def draw_index(rng: np.random.Generator, weights: np.ndarray) -> int:
    """
    Draw an index with probability proportional to ``weights``.

    Falls back to a uniform draw (with a ``RuntimeWarning``) when no weight
    is positive.
    """
    weights = np.maximum(np.asarray(weights, dtype=float), 0.0)
    total = weights.sum()
    if not np.isfinite(total) or total <= 0.0:
        warnings.warn(
            "All sampling weights are zero; drawing uniformly instead",
            RuntimeWarning,
        )
        return int(rng.integers(len(weights)))
    return int(rng.choice(len(weights), p=weights / total))


def _one_hot(state: int, n_states: int) -> np.ndarray:
    v = np.zeros(n_states)
    v[state] = 1.0
    return v


def _draw_triple(engine, node: TreeNode, ancestor_weights: np.ndarray, rng) -> tuple[int, int, int]:
    """Joint (ancestor, left, right) states at a branching node."""
    k = engine.n_states
    left, right = node.children
    Dl = engine.node_state(left)[k:]
    Dr = engine.node_state(right)[k:]

    if engine.is_speciation_node(node):
        events = engine.params.events
        weights = (
            ancestor_weights[events.ancestors] * events.rates
            * Dl[events.left] * Dr[events.right]
        )
        i = draw_index(rng, weights)
        return int(events.ancestors[i]), int(events.left[i]), int(events.right[i])

    # Sampled ancestor: the lineage continues in the same state
    a = draw_index(rng, ancestor_weights * Dl * Dr)
    return a, a, a


def _draw_tip(engine, node: TreeNode, weights: np.ndarray, rng) -> int:
    observed = engine.tip_observed[node.index]
    if observed >= 0:
        return int(observed)
    return draw_index(rng, weights * engine.tip_masks[node.index])


def _branch_start(engine, state: int, top_age: float) -> np.ndarray:
    """``[E, D]`` at the top of a branch with ``D`` fixed to ``state``."""
    k = engine.n_states
    rho = engine.params.sampling_probability
    y = np.concatenate([np.full(k, 1.0 - rho), _one_hot(state, k)])
    return engine.integrate(y, 0.0, top_age, extinction_only=True)


def _check(engine) -> None:
    if not engine.has_valid_ages():
        raise ValueError("Cannot sample states on a tree with likelihood zero")
    engine.compute_log_likelihood()


def _branches(engine) -> list[tuple[TreeNode, float]]:
    """Every branch to sample as ``(node, top_age)``, in preorder."""
    tree = engine.tree
    result = []
    for node in tree.preorder():
        if node.is_root:
            if engine.params.use_origin:
                result.append((node, engine.params.process_age))
        else:
            result.append((node, node.parent.age))
    return result


def draw_ancestral_states(engine, rng: np.random.Generator) -> tuple[np.ndarray, np.ndarray]:
    """
    Sample the character state at both ends of every branch.

    Parameters
    ----------
    engine : SSELikelihood
        Engine whose tree has a finite likelihood
    rng : np.random.Generator
        Random source

    Returns
    -------
    start_states : np.ndarray of int, shape (n_nodes,)
        State at the top of the branch above each node
    end_states : np.ndarray of int, shape (n_nodes,)
        State at each node
    """
    _check(engine)
    tree = engine.tree
    k = engine.n_states
    start_states = np.full(tree.n_nodes, -1, dtype=int)
    end_states = np.full(tree.n_nodes, -1, dtype=int)

    root = tree.root
    freqs = engine.params.root_frequencies
    if engine.params.use_origin:
        origin_state = draw_index(rng, freqs * engine.node_state(root)[k:])
        start_states[root.index] = origin_state
        y = _branch_start(engine, origin_state, engine.params.process_age)
        y = engine.integrate(y, 0.0, engine.params.process_age - root.age, backward=False)
        ancestor_weights = y[k:]
    else:
        ancestor_weights = freqs

    a, l, r = _draw_triple(engine, root, ancestor_weights, rng)
    end_states[root.index] = a
    if not engine.params.use_origin:
        start_states[root.index] = a
    start_states[root.children[0].index] = l
    start_states[root.children[1].index] = r

    for node in tree.preorder():
        if node.is_root:
            continue
        y = _branch_start(engine, start_states[node.index], node.parent.age)
        y = engine.integrate(y, 0.0, node.branch_length, backward=False)
        D = y[k:]

        if node.is_tip:
            end_states[node.index] = _draw_tip(engine, node, D, rng)
        else:
            a, l, r = _draw_triple(engine, node, D, rng)
            end_states[node.index] = a
            start_states[node.children[0].index] = l
            start_states[node.children[1].index] = r

    return start_states, end_states


@dataclass
class CharacterHistory:
    """
    A sampled stochastic character map.

    Attributes
    ----------
    tree : TimeTree
        Tree the map was sampled on
    start_states, end_states : np.ndarray of int, shape (n_nodes,)
        States at the top of each branch and at each node
    histories : list[str]
        SIMMAP history ``{state,duration:...}`` of each branch (most recent
        segment first), indexed by node
    segments : list[list[tuple[int, float]]]
        ``(state, duration)`` segments of each branch from top to bottom
    time_in_state : np.ndarray, shape (k,)
        Total branch time spent in each state
    average_speciation, average_extinction : np.ndarray, shape (n_nodes,)
        Time-averaged rates along each branch
    """

    tree: TimeTree
    start_states: np.ndarray
    end_states: np.ndarray
    histories: list[str]
    segments: list[list[tuple[int, float]]]
    time_in_state: np.ndarray
    average_speciation: np.ndarray
    average_extinction: np.ndarray

    def to_newick(self) -> str:
        """SIMMAP Newick string of the mapped tree."""
        return self.tree.to_simmap_newick(self.histories)

    def number_of_transitions(self) -> int:
        return sum(max(len(s) - 1, 0) for s in self.segments)


def format_simmap(segments: list[tuple[int, float]]) -> str:
    """
    ``{state,duration:state,duration}`` with the most recent segment first.

    Parameters
    ----------
    segments : list[tuple[int, float]]
        Segments ordered from the top (oldest) to the bottom of the branch
    """
    parts = [f"{state},{duration:.6g}" for state, duration in reversed(segments)]
    return "{" + ":".join(parts) + "}"


def _map_branch(engine, node: TreeNode, start: int, top_age: float, rng):
    """
    Sample a history along one branch.

    Returns the forward ``D`` at the node age, the state occupied at the end
    of the last slice, the closed segments and the age at which the open
    segment began, plus the age of the last slice point.
    """
    k = engine.n_states
    dt = engine.dt
    ages = slice_ages(node.age, top_age, dt)
    back = engine.branch_slices.get(node.index)
    forward = engine.vector_field(backward=False)

    y = _branch_start(engine, start, top_age)
    current = start
    segment_start = top_age
    previous = top_age
    segments = []

    for m, age in enumerate(ages):
        y = engine.integrate_field(forward, y, top_age - previous, top_age - age)
        state = draw_index(rng, y[k:] * back[m])
        if state != current:
            segments.append((current, segment_start - age))
            current = state
            segment_start = age
        y[k:] = _one_hot(state, k)
        previous = age

    y = engine.integrate_field(forward, y, top_age - previous, top_age - node.age)
    return y[k:], current, segments, segment_start, previous


def draw_stochastic_character_map(engine, rng: np.random.Generator) -> CharacterHistory:
    """
    Sample a full character history on every branch.

    Each branch is cut into slices of width ``dt`` measured from the top of
    the branch. At every slice point a state is drawn with weights
    ``forward D * backward D``, where the backward values are the slice
    likelihoods stored by :meth:`SSELikelihood.store_branch_slices` and the
    forward values come from integrating the process forward in time from
    the previously drawn state. Node states are drawn jointly with the
    children's start states exactly as in :func:`draw_ancestral_states`.

    Parameters
    ----------
    engine : SSELikelihood
        Engine whose tree has a finite likelihood
    rng : np.random.Generator
        Random source

    Returns
    -------
    CharacterHistory
    """
    _check(engine)
    engine.store_branch_slices()

    tree = engine.tree
    params = engine.params
    k = engine.n_states
    n = tree.n_nodes

    start_states = np.full(n, -1, dtype=int)
    end_states = np.full(n, -1, dtype=int)
    segments: list[list[tuple[int, float]]] = [[] for _ in range(n)]
    time_in_state = np.zeros(k)
    avg_lambda = np.zeros(n)
    avg_mu = np.zeros(n)

    root = tree.root
    if params.use_origin:
        start_states[root.index] = draw_index(rng, params.root_frequencies * engine.node_state(root)[k:])
    else:
        a, l, r = _draw_triple(engine, root, params.root_frequencies, rng)
        start_states[root.index] = end_states[root.index] = a
        segments[root.index] = [(a, 0.0)]
        start_states[root.children[0].index] = l
        start_states[root.children[1].index] = r

    for node, top_age in _branches(engine):
        start = start_states[node.index]
        if node.is_sampled_ancestor:
            D = _one_hot(start, k)
            current, branch, segment_start, last = start, [], top_age, top_age
        else:
            D, current, branch, segment_start, last = _map_branch(engine, node, start, top_age, rng)

        if node.is_tip:
            end = _draw_tip(engine, node, D, rng)
        else:
            end, l, r = _draw_triple(engine, node, D, rng)
            start_states[node.children[0].index] = l
            start_states[node.children[1].index] = r

        if end != current:
            # Change inside the final partial slice: place it at the midpoint
            midpoint = 0.5 * (last + node.age)
            branch.append((current, segment_start - midpoint))
            current = end
            segment_start = midpoint
        branch.append((current, segment_start - node.age))

        end_states[node.index] = end
        segments[node.index] = branch

        branch_time = np.zeros(k)
        for state, duration in branch:
            branch_time[state] += duration
        time_in_state += branch_time
        length = top_age - node.age
        weights = branch_time / length if length > 0 else _one_hot(end, k)
        avg_lambda[node.index], avg_mu[node.index] = params.average_rates(weights)

    logger.debug(
        "Sampled character map with %d transitions",
        sum(max(len(branch) - 1, 0) for branch in segments),
    )
    return CharacterHistory(
        tree=tree,
        start_states=start_states,
        end_states=end_states,
        histories=[format_simmap(branch) for branch in segments],
        segments=segments,
        time_in_state=time_in_state,
        average_speciation=avg_lambda,
        average_extinction=avg_mu,
    )


def draw_pruning_ancestral_states(engine, rng: np.random.Generator) -> np.ndarray:
    """
    Joint sample of the state of every node at every site.

    The root state of each pattern is drawn proportional to
    ``f * Lleft * Lright``; a child in state ``t`` below a parent in state
    ``a`` is drawn proportional to ``P(a -> t) * L_below(t)``.

    Parameters
    ----------
    engine : PruningLikelihood
        Engine with up-to-date partial likelihoods
    rng : np.random.Generator
        Random source

    Returns
    -------
    np.ndarray of int, shape (n_nodes, n_sites)
        Sampled states, rows indexed by node
    """
    engine.compute_log_likelihood()
    tree = engine.tree
    n_patterns = engine.n_patterns
    states = np.full((tree.n_nodes, n_patterns), -1, dtype=int)

    root = tree.root
    root_weights = engine.partial_likelihoods(root)
    for p in range(n_patterns):
        states[root.index, p] = draw_index(rng, root_weights[p])

    for node in tree.preorder():
        if node.is_root:
            continue
        P = engine.model.transition_probabilities(node, node.branch_length)
        below = engine.conditional_likelihoods(node)
        parent_states = states[node.parent.index]
        weights = P[parent_states] * below
        for p in range(n_patterns):
            states[node.index, p] = draw_index(rng, weights[p])

    return states[:, engine.site_to_pattern]
