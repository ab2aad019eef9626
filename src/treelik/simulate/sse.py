"""
Forward-time simulation of trees and tip states under an SSE process.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np

from ..core.tree import TimeTree, TreeNode
from ..exceptions import SimulationError
from ..io.characters import Alphabet, CharacterMatrix
from .base import Simulator

logger = logging.getLogger(__name__)


@dataclass
class SimulatedTree:
    """
    Outcome of one SSE simulation.

    Attributes
    ----------
    tree : TimeTree
        Simulated tree; tips are named ``sp<i>`` (alive at the end) or
        ``ex<i>`` (extinct)
    characters : CharacterMatrix
        One character holding the tip states
    tip_states : dict[str, int]
        State of every tip
    """

    tree: TimeTree
    characters: CharacterMatrix
    tip_states: Dict[str, int]


class SSESimulator(Simulator):
    """
    Gillespie simulation of the SSE process forward from the root age.

    The process starts with the two daughter lineages of the root
    speciation event, whose states are drawn jointly with the root state
    from ``f(a) * rate(a -> l, r)``. Each subsequent event is an extinction,
    a speciation (daughter states drawn from the events of the ancestor
    state) or an anagenetic state change. The simulation stops at the
    present or as soon as ``max_num_lineages`` lineages are alive.

    Parameters
    ----------
    params : SSEParameters
        Process parameters; ``process_age`` is the root age
    max_num_lineages : int
        Stop once this many lineages are alive
    prune_extinct_lineages : bool
        Remove extinct tips from the returned tree
    max_attempts : int
        Redraw a simulation that ends with fewer than two tips at most
        this many times
    seed : int, optional
        Random seed for reproducibility
    rng : numpy.random.Generator, optional
        Random number generator (takes precedence over ``seed``)
    """

    def __init__(
        self,
        params,
        max_num_lineages: int = 5000,
        prune_extinct_lineages: bool = True,
        max_attempts: int = 100,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        super().__init__(seed, rng)
        if params.use_origin:
            raise ValueError(
                "Simulation is only implemented when the process age is the root age"
            )
        if max_num_lineages < 2:
            raise ValueError("max_num_lineages must be at least 2")
        self.params = params
        self.max_num_lineages = max_num_lineages
        self.prune_extinct_lineages = prune_extinct_lineages
        self.max_attempts = max_attempts

    def _draw(self, weights: np.ndarray) -> int:
        total = weights.sum()
        if total <= 0:
            return int(self.rng.integers(len(weights)))
        return int(self.rng.choice(len(weights), p=weights / total))

    def _draw_event(self, ancestor_weights: np.ndarray) -> tuple[int, int, int]:
        events = self.params.events
        i = self._draw(ancestor_weights[events.ancestors] * events.rates)
        return int(events.ancestors[i]), int(events.left[i]), int(events.right[i])

    def _simulate_once(self) -> SimulatedTree:
        params = self.params
        k = params.n_states
        mu = params.extinction_rates
        lam = params.speciation_rates_total()
        Q = params.anagenetic_matrix()
        Q_off = Q - np.diag(Q.diagonal())
        ana = Q_off.sum(axis=1)
        total_for_state = mu + lam + ana

        t = params.process_age
        nodes: list[TreeNode] = []
        state: dict[int, int] = {}

        def new_node(parent: Optional[TreeNode], node_state: int) -> TreeNode:
            node = TreeNode(index=len(nodes), parent=parent, age=t)
            nodes.append(node)
            if parent is not None:
                parent.children.append(node)
            state[node.index] = node_state
            return node

        _, l, r = self._draw_event(params.root_frequencies)
        root = TreeNode(index=0, age=t)
        nodes.append(root)
        alive = [new_node(root, l).index, new_node(root, r).index]
        extinct: list[int] = []

        while alive:
            rates = total_for_state[[state[i] for i in alive]]
            total = rates.sum()
            if total <= 0:
                t = 0.0
                break
            t -= self.rng.exponential(1.0 / total)
            if t <= 0:
                t = 0.0
                break
            if len(alive) >= self.max_num_lineages:
                break

            position = self._draw(rates)
            lineage = alive[position]
            s = state[lineage]
            kind = self._draw(np.array([mu[s], lam[s], ana[s]]))

            if kind == 0:
                nodes[lineage].age = t
                alive.pop(position)
                extinct.append(lineage)
            elif kind == 1:
                _, l, r = self._draw_event(np.eye(k)[s])
                parent = nodes[lineage]
                parent.age = t
                alive.pop(position)
                alive.append(new_node(parent, l).index)
                alive.append(new_node(parent, r).index)
            else:
                state[lineage] = self._draw(Q_off[s])

        for i in alive:
            nodes[i].age = t
            nodes[i].name = f"sp{i}"
        for i in extinct:
            nodes[i].name = f"ex{i}"

        tree = TimeTree(root)
        if self.prune_extinct_lineages:
            for i in extinct:
                if tree.n_tips <= 1:
                    break
                tree.drop_tip(f"ex{i}")

        names = tree.tip_names
        tip_states = {node.name: state[int(node.name[2:])] for node in tree.tips}
        characters = CharacterMatrix.from_states(
            names, [tip_states[name] for name in names], Alphabet.standard(k)
        )
        return SimulatedTree(tree=tree, characters=characters, tip_states=tip_states)

    def simulate(self) -> SimulatedTree:
        """
        Simulate a tree with at least two tips.

        When extinct lineages are pruned, a simulation in which one of the
        two root lineages died out is redrawn, so the root age always
        equals the process age.

        Returns
        -------
        SimulatedTree

        Raises
        ------
        SimulationError
            If no simulation in ``max_attempts`` kept two tips below the root
        """
        for attempt in range(1, self.max_attempts + 1):
            result = self._simulate_once()
            n_tips = result.tree.n_tips
            root = result.tree.root
            if n_tips >= 2 and not root.is_tip and root.age == self.params.process_age:
                logger.debug("Simulated tree with %d tips after %d attempt(s)", n_tips, attempt)
                return result
            logger.debug("Simulation attempt %d lost a root lineage (%d tip(s) left); retrying", attempt, n_tips)
        raise SimulationError(
            f"No simulation kept both root lineages in {self.max_attempts} attempts"
        )

    def get_parameters(self) -> Dict[str, Any]:
        p = self.params
        return {
            "model": "sse",
            "n_states": int(p.n_states),
            "process_age": float(p.process_age),
            "extinction_rates": p.extinction_rates.tolist(),
            "speciation_rates": p.speciation_rates_total().tolist(),
            "cladogenetic_events": [
                [a, l, r, rate] for (a, l, r), rate in p.events.events.items()
            ],
            "rate_matrix": p.rate_matrix.tolist(),
            "event_rate": float(p.event_rate),
            "root_frequencies": p.root_frequencies.tolist(),
            "max_num_lineages": int(self.max_num_lineages),
            "prune_extinct_lineages": bool(self.prune_extinct_lineages),
        }
