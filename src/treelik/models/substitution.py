"""
Homogeneous discrete-character substitution models.

A substitution model supplies the two quantities the pruning engine needs:
transition probability matrices for a branch and the root frequencies.
"""

from typing import Optional

import numpy as np

from ..core.matrix import (
    check_detailed_balance,
    check_rate_matrix,
    create_reversible_Q,
    eigen_decompose_rev,
    equal_rates_Q,
    matrix_exponential,
    stationary_distribution,
    transition_from_eigen,
)


class SubstitutionModel:
    """
    Continuous-time Markov model of character change.

    Parameters
    ----------
    Q : np.ndarray, shape (n, n)
        Instantaneous rate matrix
    pi : np.ndarray, shape (n,), optional
        Root frequencies. Defaults to the stationary distribution of Q.
    clock_rate : float
        Global rate multiplier applied to every branch
    branch_rates : np.ndarray, optional
        Per-node rate multipliers indexed by node index

    Examples
    --------
    >>> model = SubstitutionModel.mk(2)
    >>> P = model.transition_probabilities(None, 0.5)
    >>> P.shape
    (2, 2)
    """

    def __init__(
        self,
        Q: np.ndarray,
        pi: Optional[np.ndarray] = None,
        clock_rate: float = 1.0,
        branch_rates: Optional[np.ndarray] = None,
    ):
        Q = np.array(Q, dtype=float)
        check_rate_matrix(Q)
        self.Q = Q
        self.n_states = Q.shape[0]

        if pi is None:
            pi = stationary_distribution(Q)
        pi = np.asarray(pi, dtype=float)
        if pi.shape != (self.n_states,):
            raise ValueError(f"pi has shape {pi.shape}, expected ({self.n_states},)")
        if not np.isclose(pi.sum(), 1.0):
            raise ValueError(f"pi must sum to 1, got {pi.sum()}")
        self.pi = pi

        if clock_rate < 0:
            raise ValueError("clock_rate must be non-negative")
        self.clock_rate = float(clock_rate)
        self.branch_rates = None if branch_rates is None else np.asarray(branch_rates, dtype=float)

        # Eigendecomposition is only valid for reversible generators
        self._eigen = None
        if np.all(pi > 0) and check_detailed_balance(Q, pi, rtol=1e-8):
            self._eigen = eigen_decompose_rev(Q, pi)

    @classmethod
    def mk(cls, n_states: int, clock_rate: float = 1.0) -> "SubstitutionModel":
        """Equal-rates (Mk / Jukes-Cantor) model with uniform frequencies."""
        return cls(equal_rates_Q(n_states), np.full(n_states, 1.0 / n_states), clock_rate)

    @classmethod
    def gtr(
        cls, rates: np.ndarray, pi: np.ndarray, clock_rate: float = 1.0
    ) -> "SubstitutionModel":
        """General time-reversible model from symmetric exchangeabilities."""
        pi = np.asarray(pi, dtype=float)
        return cls(create_reversible_Q(np.asarray(rates, dtype=float), pi), pi, clock_rate)

    def rate_for(self, node) -> float:
        rate = self.clock_rate
        if self.branch_rates is not None and node is not None:
            rate *= self.branch_rates[node.index]
        return rate

    def transition_probabilities(self, node, branch_length: float) -> np.ndarray:
        """
        Transition probability matrix for the branch above ``node``.

        Parameters
        ----------
        node : TreeNode or None
            Node whose branch is evaluated (used for per-branch rates)
        branch_length : float
            Length of the branch in time units

        Returns
        -------
        np.ndarray, shape (n, n)
        """
        t = branch_length * self.rate_for(node)
        if self._eigen is not None:
            return transition_from_eigen(*self._eigen, t)
        return matrix_exponential(self.Q, t)

    def root_frequencies(self) -> np.ndarray:
        return self.pi

    def __repr__(self) -> str:
        return f"SubstitutionModel(n_states={self.n_states}, clock_rate={self.clock_rate:g})"
