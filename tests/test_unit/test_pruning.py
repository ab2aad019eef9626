"""
Unit tests for the incremental pruning likelihood engine.
"""

import numpy as np
import pytest

from treelik.config import LikelihoodSettings
from treelik.core.pruning import PruningLikelihood, compress_patterns
from treelik.core.tree import TimeTree
from treelik.exceptions import TaxonMismatchError
from treelik.io.characters import Alphabet, CharacterMatrix
from treelik.models.substitution import SubstitutionModel


@pytest.fixture
def engine(five_tip_tree, five_tip_matrix):
    return PruningLikelihood(five_tip_tree, five_tip_matrix, SubstitutionModel.mk(2))


class TestCompression:

    def test_patterns(self, five_tip_tree, five_tip_matrix):
        tip_masks, counts, site_to_pattern = compress_patterns(
            five_tip_matrix, five_tip_tree.tip_names
        )
        # Site 5 repeats site 0
        assert len(counts) == 5
        assert counts.sum() == five_tip_matrix.n_sites
        assert counts[0] == 2
        assert site_to_pattern[5] == site_to_pattern[0] == 0
        assert tip_masks.shape == (5, 5, 2)

    def test_unknown_cells_allow_every_state(self, five_tip_tree, five_tip_matrix):
        tip_masks, _, site_to_pattern = compress_patterns(five_tip_matrix, five_tip_tree.tip_names)
        c = five_tip_tree.tip_names.index("C")
        assert tip_masks[c, site_to_pattern[4]].tolist() == [1.0, 1.0]

    def test_compression_does_not_change_likelihood(self, five_tip_tree, five_tip_matrix):
        model = SubstitutionModel.mk(2)
        compressed = PruningLikelihood(five_tip_tree, five_tip_matrix, model)
        plain = PruningLikelihood(five_tip_tree.copy(), five_tip_matrix, model, compress=False)

        assert plain.n_patterns == five_tip_matrix.n_sites
        assert compressed.n_patterns < plain.n_patterns
        np.testing.assert_allclose(
            compressed.compute_log_likelihood(), plain.compute_log_likelihood(), rtol=1e-12
        )
        np.testing.assert_allclose(
            compressed.site_log_likelihoods(), plain.site_log_likelihoods(), rtol=1e-12
        )


class TestIncremental:
    """Only dirty nodes are recomputed and rejected proposals are undone exactly."""

    def test_first_evaluation_computes_every_node(self, engine):
        engine.compute_log_likelihood()
        assert engine.recomputed == engine.tree.n_nodes

    def test_idempotent(self, engine):
        first = engine.compute_log_likelihood()
        engine.reset_counter()
        second = engine.compute_log_likelihood()
        assert second == first
        assert engine.recomputed == 0

    def test_touch_recomputes_path_to_root(self, engine):
        engine.compute_log_likelihood()
        engine.keep()
        engine.reset_counter()

        engine.touch(engine.tree.tip_with_name("A"))
        engine.compute_log_likelihood()

        # A, AB, ABC, root
        assert engine.recomputed == 4

    def test_age_change_recomputes_node_and_children(self, engine):
        engine.compute_log_likelihood()
        engine.keep()
        engine.reset_counter()

        tree = engine.tree
        tree.set_age(tree.node(5), 0.25)
        engine.compute_log_likelihood()

        # A, B, AB, ABC, root
        assert engine.recomputed == 5

    def test_matches_fresh_engine_after_edit(self, engine, five_tip_matrix):
        engine.compute_log_likelihood()
        engine.keep()
        tree = engine.tree
        tree.set_age(tree.node(5), 0.25)
        incremental = engine.compute_log_likelihood()

        fresh = PruningLikelihood(tree.copy(), five_tip_matrix, SubstitutionModel.mk(2))
        assert incremental == pytest.approx(fresh.compute_log_likelihood(), rel=1e-12)

    def test_restore_is_bit_exact(self, engine):
        before = engine.compute_log_likelihood()
        engine.keep()

        tree = engine.tree
        node = tree.node(6)
        old_age = node.age
        tree.set_age(node, 2.5)
        proposed = engine.compute_log_likelihood()
        assert proposed != before

        node.age = old_age
        engine.restore()
        engine.reset_counter()
        assert engine.compute_log_likelihood() == before
        assert engine.recomputed == 0

    def test_keep_then_new_proposal(self, engine):
        engine.compute_log_likelihood()
        engine.keep()
        tree = engine.tree
        tree.set_age(tree.node(7), 2.5)
        accepted = engine.compute_log_likelihood()
        engine.keep()

        tree.set_age(tree.node(7), 1.0)
        engine.compute_log_likelihood()
        tree.node(7).age = 2.5
        engine.restore()
        assert engine.compute_log_likelihood() == accepted

    def test_set_model_touches_everything(self, engine):
        engine.compute_log_likelihood()
        engine.keep()
        engine.reset_counter()
        engine.set_model(SubstitutionModel.mk(2, clock_rate=2.0))
        engine.compute_log_likelihood()
        assert engine.recomputed == engine.tree.n_nodes

    def test_drop_tip_resets(self, engine):
        engine.compute_log_likelihood()
        engine.characters = engine.characters.select(["A", "B", "D", "E"])
        engine.tree.drop_tip("C")
        assert engine.tree.n_nodes == 7
        assert np.isfinite(engine.compute_log_likelihood())

    def test_clone_is_independent(self, engine):
        before = engine.compute_log_likelihood()
        engine.keep()
        twin = engine.clone()

        twin.tree.set_age(twin.tree.node(5), 0.25)
        assert twin.compute_log_likelihood() != before
        engine.reset_counter()
        assert engine.compute_log_likelihood() == before
        assert engine.recomputed == 0

    def test_clone_of_deep_tree(self, caterpillar_tree, binary_alphabet):
        data = CharacterMatrix.from_strings(
            {name: "1" if i % 3 == 0 else "0" for i, name in enumerate(caterpillar_tree.tip_names)},
            binary_alphabet,
        )
        engine = PruningLikelihood(caterpillar_tree, data, SubstitutionModel.mk(2))
        before = engine.compute_log_likelihood()
        engine.keep()

        twin = engine.clone()
        twin.reset_counter()
        assert twin.compute_log_likelihood() == before
        assert twin.recomputed == 0

        # Touching the deepest tip dirties the whole spine
        tip = twin.tree.tip_with_name("T0")
        twin.tree.set_branch_length(tip, 0.05)
        assert twin.compute_log_likelihood() != before
        assert twin.recomputed == caterpillar_tree.n_nodes - caterpillar_tree.n_tips + 1
        assert engine.compute_log_likelihood() == before


class TestValidity:

    def test_child_older_than_parent(self, three_tip_tree, three_tip_states):
        engine = PruningLikelihood(three_tip_tree, three_tip_states, SubstitutionModel.mk(2))
        before = engine.compute_log_likelihood()
        inner = three_tip_tree.node(3)

        three_tip_tree.set_age(inner, 5.0)
        assert not engine.has_valid_ages()
        assert engine.compute_log_likelihood() == float("-inf")
        assert np.all(engine.site_log_likelihoods() == float("-inf"))

        three_tip_tree.set_age(inner, 1.0)
        assert engine.has_valid_ages()
        assert engine.compute_log_likelihood() == pytest.approx(before, rel=1e-12)

    def test_zero_length_branch_is_valid(self, three_tip_tree, three_tip_states):
        engine = PruningLikelihood(three_tip_tree, three_tip_states, SubstitutionModel.mk(2))
        three_tip_tree.set_age(three_tip_tree.node(3), 2.0)
        assert engine.has_valid_ages()
        assert np.isfinite(engine.compute_log_likelihood())


class TestLikelihoodProperties:

    def test_ambiguity_sum_rule(self, three_tip_tree, binary_alphabet):
        model = SubstitutionModel.mk(2)

        def likelihood(a_state):
            data = CharacterMatrix.from_strings({"A": a_state, "B": "0", "C": "1"}, binary_alphabet)
            return np.exp(PruningLikelihood(three_tip_tree.copy(), data, model).compute_log_likelihood())

        assert likelihood("{01}") == pytest.approx(likelihood("0") + likelihood("1"), rel=1e-12)
        assert likelihood("?") == pytest.approx(likelihood("{01}"), rel=1e-12)

    def test_all_missing_has_probability_one(self, three_tip_tree, binary_alphabet):
        data = CharacterMatrix.missing_data(["A", "B", "C"], binary_alphabet)
        engine = PruningLikelihood(three_tip_tree, data, SubstitutionModel.mk(2))
        assert engine.compute_log_likelihood() == pytest.approx(0.0, abs=1e-12)

    def test_scaling_invariance(self, five_tip_tree, five_tip_matrix):
        model = SubstitutionModel.mk(2)
        scaled = PruningLikelihood(five_tip_tree, five_tip_matrix, model)
        unscaled = PruningLikelihood(
            five_tip_tree.copy(), five_tip_matrix, model,
            settings=LikelihoodSettings(use_scaling=False),
        )
        assert scaled.compute_log_likelihood() == pytest.approx(
            unscaled.compute_log_likelihood(), rel=1e-10
        )

    def test_deep_tree_underflows_without_scaling(self, caterpillar, binary_alphabet):
        # Neighbouring tips disagree and every branch is short
        tree = caterpillar(400, step=0.001, ultrametric=False)
        data = CharacterMatrix.from_strings(
            {name: "01"[i % 2] for i, name in enumerate(tree.tip_names)}, binary_alphabet
        )
        model = SubstitutionModel.mk(2)

        scaled = PruningLikelihood(tree, data, model).compute_log_likelihood()
        unscaled = PruningLikelihood(
            tree.copy(), data, model, settings=LikelihoodSettings(use_scaling=False)
        ).compute_log_likelihood()

        assert unscaled == float("-inf")
        assert np.isfinite(scaled)
        assert scaled < -745.0

    def test_site_likelihoods_sum_to_total(self, engine):
        assert engine.site_log_likelihoods().sum() == pytest.approx(engine.compute_log_likelihood())

    def test_conditional_likelihoods_of_tip(self, engine):
        a = engine.tree.tip_with_name("A")
        masks = engine.conditional_likelihoods(a)
        assert masks.shape == (engine.n_patterns, 2)


class TestErrors:

    def test_taxon_mismatch(self, three_tip_tree, binary_alphabet):
        data = CharacterMatrix.from_strings({"A": "0", "B": "0", "X": "1"}, binary_alphabet)
        with pytest.raises(TaxonMismatchError) as excinfo:
            PruningLikelihood(three_tip_tree, data, SubstitutionModel.mk(2))
        assert excinfo.value.in_tree_only == {"C"}
        assert excinfo.value.in_data_only == {"X"}

    def test_state_count_mismatch(self, three_tip_tree, three_tip_states):
        with pytest.raises(ValueError, match="states"):
            PruningLikelihood(three_tip_tree, three_tip_states, SubstitutionModel.mk(3))

    def test_single_tip_tree(self, binary_alphabet):
        tree = TimeTree.from_newick("A:1;")
        data = CharacterMatrix.from_strings({"A": "0"}, binary_alphabet)
        with pytest.raises(ValueError, match="at least two tips"):
            PruningLikelihood(tree, data, SubstitutionModel.mk(2))


class TestAncestralStates:

    def test_tips_match_observations(self, engine, five_tip_matrix):
        states = engine.draw_ancestral_states(np.random.default_rng(1))
        tree = engine.tree
        assert states.shape == (tree.n_nodes, five_tip_matrix.n_sites)
        d = tree.tip_with_name("D")
        assert states[d.index].tolist() == [five_tip_matrix.state_index("D", s) for s in range(6)]

    def test_reproducible(self, engine):
        first = engine.draw_ancestral_states(np.random.default_rng(7))
        second = engine.draw_ancestral_states(np.random.default_rng(7))
        assert np.array_equal(first, second)

    def test_no_change_without_substitutions(self, three_tip_tree, binary_alphabet):
        data = CharacterMatrix.from_strings({"A": "01", "B": "01", "C": "01"}, binary_alphabet)
        engine = PruningLikelihood(three_tip_tree, data, SubstitutionModel.mk(2, clock_rate=0.0))
        states = engine.draw_ancestral_states(np.random.default_rng(3))
        assert (states[:, 0] == 0).all()
        assert (states[:, 1] == 1).all()
