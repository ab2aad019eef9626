"""
Unit tests for substitution and SSE model parameters.
"""

import numpy as np
import pytest

from treelik.exceptions import ParameterError
from treelik.models.sse import CladogeneticEvents, SSEParameters
from treelik.models.substitution import SubstitutionModel


class TestSubstitutionModel:

    def test_mk_defaults(self):
        model = SubstitutionModel.mk(3)
        assert model.n_states == 3
        np.testing.assert_allclose(model.root_frequencies(), [1 / 3] * 3)
        np.testing.assert_allclose(model.Q.sum(axis=1), 0.0, atol=1e-15)

    def test_clock_rate_scales_time(self):
        slow = SubstitutionModel.mk(2)
        fast = SubstitutionModel.mk(2, clock_rate=2.0)
        np.testing.assert_allclose(
            fast.transition_probabilities(None, 0.5),
            slow.transition_probabilities(None, 1.0),
            rtol=1e-12,
        )

    def test_branch_rates(self, three_tip_tree):
        rates = np.ones(three_tip_tree.n_nodes)
        rates[0] = 3.0
        model = SubstitutionModel(SubstitutionModel.mk(2).Q, branch_rates=rates)
        a = three_tip_tree.tip_with_name("A")
        b = three_tip_tree.tip_with_name("B")
        assert model.rate_for(a) == 3.0
        assert model.rate_for(b) == 1.0

    def test_nonreversible_uses_expm(self):
        Q = np.array([[-1.0, 1.0, 0.0], [0.0, -1.0, 1.0], [1.0, 0.0, -1.0]])
        model = SubstitutionModel(Q)
        P = model.transition_probabilities(None, 0.7)
        np.testing.assert_allclose(P.sum(axis=1), 1.0, rtol=1e-12)
        np.testing.assert_allclose(model.pi, [1 / 3] * 3, rtol=1e-8)

    def test_invalid_pi(self):
        with pytest.raises(ValueError, match="sum to 1"):
            SubstitutionModel(SubstitutionModel.mk(2).Q, pi=[0.2, 0.2])

    def test_invalid_Q(self):
        with pytest.raises(ValueError):
            SubstitutionModel(np.array([[-1.0, 2.0], [1.0, -1.0]]))


class TestCladogeneticEvents:

    def test_speciation_rates(self):
        events = CladogeneticEvents(2, {(0, 0, 0): 1.0, (0, 0, 1): 0.5, (1, 1, 1): 2.0})
        np.testing.assert_allclose(events.speciation_rates(), [1.5, 2.0])
        assert len(events) == 3
        assert events.events_from(0) == [(0, 0, 1.0), (0, 1, 0.5)]

    def test_merge(self):
        events = CladogeneticEvents(2, {(0, 0, 1): 2.0, (1, 1, 1): 1.0})
        merged = events.merge(np.array([0.5, 0.25]), np.array([0.1, 0.4]))
        np.testing.assert_allclose(merged, [2.0 * 0.5 * 0.4, 0.25 * 0.4])

    def test_state_out_of_range(self):
        with pytest.raises(ParameterError, match="outside"):
            CladogeneticEvents(2, {(0, 0, 2): 1.0})

    def test_negative_rate(self):
        with pytest.raises(ParameterError, match="negative"):
            CladogeneticEvents(2, {(0, 0, 0): -1.0})


class TestSSEParameters:

    def test_defaults(self, bisse_params):
        assert bisse_params.n_states == 2
        np.testing.assert_allclose(bisse_params.root_frequencies, [0.5, 0.5])
        np.testing.assert_allclose(bisse_params.rate_matrix, [[-1.0, 1.0], [1.0, -1.0]])
        np.testing.assert_allclose(bisse_params.anagenetic_matrix(), 0.4 * bisse_params.rate_matrix)
        assert not bisse_params.is_cladogenetic
        assert not bisse_params.uses_serial_sampling
        np.testing.assert_allclose(bisse_params.psi(), [0.0, 0.0])

    def test_events_follow_rate_changes(self, bisse_params):
        bisse_params.speciation_rates[0] = 5.0
        np.testing.assert_allclose(bisse_params.speciation_rates_total(), [5.0, 1.5])

    def test_average_rates(self, bisse_params):
        lam, mu = bisse_params.average_rates([0.25, 0.75])
        assert lam == pytest.approx(0.25 * 0.8 + 0.75 * 1.5)
        assert mu == pytest.approx(0.25 * 0.1 + 0.75 * 0.3)

    def test_needs_exactly_one_speciation_form(self):
        with pytest.raises(ParameterError, match="Exactly one"):
            SSEParameters(extinction_rates=[0.1], process_age=1.0)
        with pytest.raises(ParameterError, match="Exactly one"):
            SSEParameters(
                extinction_rates=[0.1], process_age=1.0, speciation_rates=[1.0],
                cladogenetic_events=CladogeneticEvents.from_speciation_rates([1.0]),
            )

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"speciation_rates": [1.0, 2.0, 3.0]}, "speciation_rates"),
            ({"extinction_rates": [-0.1, 0.1]}, "non-negative"),
            ({"sampling_probability": 1.5}, "sampling_probability"),
            ({"process_age": 0.0}, "process_age"),
            ({"condition": "root"}, "condition"),
            ({"root_frequencies": [0.9, 0.3]}, "sum to 1"),
            ({"rate_matrix": np.eye(2)}, "sum to zero"),
            ({"serial_sampling_rates": [0.1]}, "serial_sampling_rates"),
        ],
    )
    def test_invalid(self, overrides, message):
        kwargs = dict(extinction_rates=[0.1, 0.1], speciation_rates=[1.0, 1.0], process_age=1.0)
        kwargs.update(overrides)
        with pytest.raises(ParameterError, match=message):
            SSEParameters(**kwargs)
