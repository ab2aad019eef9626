"""
Tests for forward simulation under SSE processes.
"""

import json

import numpy as np
import pytest

from treelik.core.sse import SSELikelihood
from treelik.exceptions import SimulationError
from treelik.models.sse import CladogeneticEvents, SSEParameters
from treelik.simulate.sse import SSESimulator


def bisse(age=2.0, mu=(0.1, 0.1), lam=(1.0, 1.5)):
    return SSEParameters(
        extinction_rates=np.array(mu),
        speciation_rates=np.array(lam),
        process_age=age,
        event_rate=0.5,
    )


class TestSSESimulator:

    def test_reproducible_with_seed(self):
        a = SSESimulator(bisse(), seed=7).simulate()
        b = SSESimulator(bisse(), seed=7).simulate()
        assert a.tree.to_newick() == b.tree.to_newick()
        assert a.tip_states == b.tip_states

    def test_rng_takes_precedence_over_seed(self):
        a = SSESimulator(bisse(), seed=1, rng=np.random.default_rng(3)).simulate()
        b = SSESimulator(bisse(), seed=3).simulate()
        assert a.tree.to_newick() == b.tree.to_newick()

    def test_at_least_two_tips(self):
        for seed in range(5):
            sim = SSESimulator(bisse(mu=(0.8, 0.8), lam=(1.0, 1.0)), seed=seed).simulate()
            assert sim.tree.n_tips >= 2

    def test_root_age_is_process_age(self):
        sim = SSESimulator(bisse(age=2.5), seed=11).simulate()
        assert sim.tree.root.age == 2.5

    def test_pruned_tree_has_only_sampled_tips(self):
        sim = SSESimulator(bisse(mu=(0.5, 0.5)), seed=4).simulate()
        assert all(name.startswith("sp") for name in sim.tree.tip_names)
        assert all(tip.age == 0.0 for tip in sim.tree.tips)

    def test_keep_extinct_lineages(self):
        params = bisse(mu=(0.9, 0.9), lam=(1.2, 1.2))
        sims = [
            SSESimulator(params, prune_extinct_lineages=False, seed=seed).simulate()
            for seed in range(10)
        ]
        names = [name for sim in sims for name in sim.tree.tip_names]
        assert any(name.startswith("ex") for name in names)
        for sim in sims:
            for tip in sim.tree.tips:
                if tip.name.startswith("ex"):
                    assert tip.age > 0.0

    def test_tip_states_match_characters(self):
        sim = SSESimulator(bisse(), seed=5).simulate()
        assert set(sim.tip_states) == set(sim.tree.tip_names)
        for name, state in sim.tip_states.items():
            assert sim.characters.state_index(name) == state
            assert state in (0, 1)

    def test_yule_stops_at_max_lineages(self):
        params = SSEParameters(
            extinction_rates=np.array([0.0]),
            speciation_rates=np.array([5.0]),
            process_age=10.0,
        )
        sim = SSESimulator(params, max_num_lineages=20, seed=2).simulate()
        assert sim.tree.n_tips == 20

    def test_cladogenetic_events_change_states(self):
        events = CladogeneticEvents(2, {(0, 0, 1): 1.0, (1, 1, 1): 1.0})
        params = SSEParameters(
            extinction_rates=np.zeros(2),
            cladogenetic_events=events,
            process_age=2.0,
            event_rate=0.0,
            root_frequencies=np.array([1.0, 0.0]),
        )
        sim = SSESimulator(params, seed=3).simulate()
        # The root event always produces one daughter in each state
        assert 0 in sim.tip_states.values()
        assert 1 in sim.tip_states.values()

    def test_use_origin_not_supported(self):
        params = SSEParameters(
            extinction_rates=np.array([0.1]),
            speciation_rates=np.array([1.0]),
            process_age=2.0,
            use_origin=True,
        )
        with pytest.raises(ValueError, match="root age"):
            SSESimulator(params)

    def test_max_lineages_validated(self):
        with pytest.raises(ValueError, match="max_num_lineages"):
            SSESimulator(bisse(), max_num_lineages=1)

    def test_gives_up_after_max_attempts(self):
        params = SSEParameters(
            extinction_rates=np.array([50.0]),
            speciation_rates=np.array([0.01]),
            process_age=5.0,
        )
        with pytest.raises(SimulationError, match="3 attempts"):
            SSESimulator(params, max_attempts=3, seed=0).simulate()

    def test_parameters_are_json_serialisable(self):
        simulator = SSESimulator(bisse(), seed=1)
        params = simulator.get_parameters()
        assert params["model"] == "sse"
        assert params["n_states"] == 2
        assert params["speciation_rates"] == [1.0, 1.5]
        json.dumps(params)

    def test_simulated_tree_scores_finite(self):
        params = SSEParameters(
            extinction_rates=np.array([0.0, 0.0]),
            speciation_rates=np.array([1.0, 1.5]),
            process_age=2.0,
            event_rate=0.5,
        )
        sim = SSESimulator(params, seed=9).simulate()
        engine = SSELikelihood(sim.tree, sim.characters, params)
        assert np.isfinite(engine.compute_log_likelihood())
