"""
Unit tests for ancestral state sampling and stochastic character maps.
"""

import warnings

import numpy as np
import pytest

from treelik.analysis.ancestral import draw_index, format_simmap
from treelik.core.sse import SSELikelihood
from treelik.core.tree import TimeTree
from treelik.io.characters import Alphabet, CharacterMatrix
from treelik.models.sse import SSEParameters


@pytest.fixture
def engine(five_tip_tree, five_tip_states, bisse_params, fast_settings):
    return SSELikelihood(five_tip_tree, five_tip_states, bisse_params, fast_settings)


@pytest.fixture
def frozen_engine(five_tip_tree, fast_settings):
    """No anagenetic change and every tip in state 1."""
    params = SSEParameters(
        extinction_rates=[0.1, 0.2], speciation_rates=[1.0, 1.5], process_age=3.0, event_rate=0.0,
    )
    data = CharacterMatrix.from_strings({name: "1" for name in "ABCDE"}, Alphabet.standard(2))
    return SSELikelihood(five_tip_tree, data, params, fast_settings)


class TestDrawIndex:

    def test_proportional(self):
        rng = np.random.default_rng(0)
        draws = [draw_index(rng, np.array([0.0, 1.0, 0.0])) for _ in range(20)]
        assert set(draws) == {1}

    def test_degenerate_weights_fall_back_to_uniform(self):
        rng = np.random.default_rng(0)
        with pytest.warns(RuntimeWarning, match="uniformly"):
            index = draw_index(rng, np.zeros(3))
        assert 0 <= index < 3


class TestAncestralStates:

    def test_tips_match_observations(self, engine, five_tip_states):
        start, end = engine.draw_ancestral_states(np.random.default_rng(1))
        tree = engine.tree
        assert start.shape == end.shape == (tree.n_nodes,)
        for tip in tree.tips:
            assert end[tip.index] == five_tip_states.state_index(tip.name)

    def test_daughters_inherit_parent_state(self, engine):
        start, end = engine.draw_ancestral_states(np.random.default_rng(2))
        tree = engine.tree
        assert start[tree.root.index] == end[tree.root.index]
        for node in tree.nodes:
            for child in node.children:
                assert start[child.index] == end[node.index]

    def test_reproducible(self, engine):
        first = engine.draw_ancestral_states(np.random.default_rng(5))
        second = engine.draw_ancestral_states(np.random.default_rng(5))
        assert np.array_equal(first[0], second[0])
        assert np.array_equal(first[1], second[1])

    def test_no_change_without_anagenesis(self, frozen_engine):
        start, end = frozen_engine.draw_ancestral_states(np.random.default_rng(3))
        assert (start == 1).all()
        assert (end == 1).all()

    def test_invalid_tree(self, engine):
        tree = engine.tree
        tree.set_age(tree.node(5), 2.0)
        with pytest.raises(ValueError, match="likelihood zero"):
            engine.draw_ancestral_states(np.random.default_rng(0))


class TestStochasticMap:

    def test_segments_cover_each_branch(self, engine):
        history = engine.draw_stochastic_character_map(np.random.default_rng(11))
        tree = engine.tree
        for node in tree.nodes:
            if node.is_root:
                assert history.segments[node.index] == [(history.end_states[node.index], 0.0)]
                continue
            branch = history.segments[node.index]
            assert sum(d for _, d in branch) == pytest.approx(node.branch_length, abs=1e-9)
            assert all(d >= 0.0 for _, d in branch)
            assert branch[0][0] == history.start_states[node.index]
            assert branch[-1][0] == history.end_states[node.index]
        assert history.time_in_state.sum() == pytest.approx(tree.tree_length)

    def test_tips_match_observations(self, engine, five_tip_states):
        history = engine.draw_stochastic_character_map(np.random.default_rng(12))
        for tip in engine.tree.tips:
            assert history.end_states[tip.index] == five_tip_states.state_index(tip.name)

    def test_reproducible(self, engine):
        first = engine.draw_stochastic_character_map(np.random.default_rng(4))
        second = engine.draw_stochastic_character_map(np.random.default_rng(4))
        assert first.histories == second.histories

    def test_frozen_history(self, frozen_engine):
        with warnings.catch_warnings():
            warnings.simplefilter("error", RuntimeWarning)
            history = frozen_engine.draw_stochastic_character_map(np.random.default_rng(6))
        assert history.number_of_transitions() == 0
        np.testing.assert_allclose(history.time_in_state, [0.0, frozen_engine.tree.tree_length])
        for node in frozen_engine.tree.nodes:
            if not node.is_root:
                assert history.average_speciation[node.index] == pytest.approx(1.5)
                assert history.average_extinction[node.index] == pytest.approx(0.2)

    def test_simmap_newick(self, engine):
        history = engine.draw_stochastic_character_map(np.random.default_rng(8))
        text = history.to_newick()
        assert text.endswith(";")
        assert text.count("{") == engine.tree.n_nodes - 1
        assert "A:{" in text

    def test_origin_branch(self, five_tip_tree, five_tip_states, bisse_params, fast_settings):
        bisse_params.process_age = 4.0
        bisse_params.use_origin = True
        engine = SSELikelihood(five_tip_tree, five_tip_states, bisse_params, fast_settings)
        history = engine.draw_stochastic_character_map(np.random.default_rng(9))
        stem = history.segments[five_tip_tree.root.index]
        assert sum(d for _, d in stem) == pytest.approx(1.0, abs=1e-9)

    def test_sampled_ancestor_branch(self, fast_settings):
        tree = TimeTree.from_newick("(((A:1,F:0):0.5,X:1):1,C:2.5);")
        params = SSEParameters(
            extinction_rates=[0.2, 0.2], speciation_rates=[1.0, 1.0],
            process_age=tree.root.age, serial_sampling_rates=[0.3, 0.3],
        )
        engine = SSELikelihood(tree, None, params, fast_settings)
        history = engine.draw_stochastic_character_map(np.random.default_rng(10))
        f = tree.tip_with_name("F")
        assert len(history.segments[f.index]) == 1
        assert history.segments[f.index][0][1] == 0.0
        assert history.end_states[f.index] == history.end_states[f.parent.index]


class TestFormat:

    def test_most_recent_segment_first(self):
        assert format_simmap([(0, 1.0), (1, 0.5)]) == "{1,0.5:0,1}"

    def test_single_segment(self):
        assert format_simmap([(2, 0.123456789)]) == "{2,0.123457}"
