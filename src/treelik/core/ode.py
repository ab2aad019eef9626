"""
The SSE ordinary differential equations and their numerical integration.

The state vector is ``[E, D]``: ``E[i]`` is the probability that a lineage
in state ``i`` leaves no sampled descendant, ``D[i]`` the probability of
the observed subtree given state ``i``. In backward time (ages increasing
towards the root)::

    dE_i/dt = mu_i - (lambda_i + mu_i + psi_i + q_i) E_i
              + sum_(i,j,k) r_ijk E_j E_k + sum_j q_ij E_j
    dD_i/dt = -(lambda_i + mu_i + psi_i + q_i) D_i
              + sum_(i,j,k) r_ijk (D_j E_k + D_k E_j) + sum_j q_ij D_j

where ``lambda_i`` is the total speciation rate of state ``i``, ``q_i`` the
total anagenetic rate out of ``i`` and the sums run over the speciation
events ``(i, j, k)`` of ancestor state ``i``.
"""

import warnings

import numpy as np
from scipy.integrate import solve_ivp

from ..config import DEFAULT_SETTINGS, LikelihoodSettings


class SSEVectorField:
    """
    Right-hand side of the SSE system.

    Parameters
    ----------
    params : SSEParameters
        Process parameters (read once, at construction)
    backward : bool, default=True
        Integrate towards the past. Forward time reverses the extinction
        dynamics and propagates ``D`` from ancestor to descendant states.
    extinction_only : bool, default=False
        Hold ``D`` constant and integrate ``E`` only
    """

    def __init__(self, params, backward: bool = True, extinction_only: bool = False):
        self.n_states = params.n_states
        self.backward = backward
        self.extinction_only = extinction_only

        events = params.events
        self.anc = events.ancestors
        self.left = events.left
        self.right = events.right
        self.rates = events.rates

        Q = params.anagenetic_matrix()
        self.Q_off = Q - np.diag(Q.diagonal())
        self.mu = params.extinction_rates
        self.total_out = (
            events.speciation_rates() + self.mu + params.psi() + self.Q_off.sum(axis=1)
        )

    def _extinction_derivative(self, E: np.ndarray) -> np.ndarray:
        births = np.bincount(
            self.anc, weights=self.rates * E[self.left] * E[self.right], minlength=self.n_states
        )
        return self.mu - self.total_out * E + births + self.Q_off @ E

    def _backward_D(self, E: np.ndarray, D: np.ndarray) -> np.ndarray:
        births = np.bincount(
            self.anc,
            weights=self.rates * (D[self.left] * E[self.right] + D[self.right] * E[self.left]),
            minlength=self.n_states,
        )
        return -self.total_out * D + births + self.Q_off @ D

    def _forward_D(self, E: np.ndarray, D: np.ndarray) -> np.ndarray:
        # Mass flows from the ancestor state into the observed daughter
        # state while the unobserved daughter goes extinct
        flow = self.rates * D[self.anc]
        births = np.bincount(self.left, weights=flow * E[self.right], minlength=self.n_states)
        births += np.bincount(self.right, weights=flow * E[self.left], minlength=self.n_states)
        return -self.total_out * D + births + self.Q_off.T @ D

    def __call__(self, t: float, y: np.ndarray) -> np.ndarray:
        k = self.n_states
        E = y[:k]
        D = y[k:]

        dE = self._extinction_derivative(E)
        if self.extinction_only:
            dD = np.zeros(k)
        elif self.backward:
            dD = self._backward_D(E, D)
        else:
            dD = self._forward_D(E, D)

        if not self.backward:
            dE = -dE
        return np.concatenate([dE, dD])


def integrate(
    field: SSEVectorField,
    y0: np.ndarray,
    begin: float,
    end: float,
    max_step: float,
    settings: LikelihoodSettings = DEFAULT_SETTINGS,
) -> np.ndarray:
    """
    Integrate ``field`` from ``begin`` to ``end``.

    Parameters
    ----------
    field : SSEVectorField
        Right-hand side
    y0 : np.ndarray, shape (2k,)
        Initial ``[E, D]``
    begin, end : float
        Integration interval
    max_step : float
        Largest step the adaptive solver may take
    settings : LikelihoodSettings
        Solver method and tolerances

    Returns
    -------
    np.ndarray, shape (2k,)
        ``[E, D]`` at ``end`` with negative entries clamped to zero
    """
    y0 = np.asarray(y0, dtype=float)
    if begin == end:
        return y0.copy()

    solution = solve_ivp(
        field,
        (begin, end),
        y0,
        method=settings.ode_method,
        atol=settings.ode_atol,
        rtol=settings.ode_rtol,
        max_step=max_step,
    )
    if not solution.success:
        warnings.warn(
            f"ODE integration from {begin:g} to {end:g} did not finish: {solution.message}",
            RuntimeWarning,
        )
    return np.maximum(solution.y[:, -1], 0.0)


def integrate_slices(
    field: SSEVectorField,
    y0: np.ndarray,
    times: np.ndarray,
    max_step: float,
    settings: LikelihoodSettings = DEFAULT_SETTINGS,
) -> np.ndarray:
    """
    Integrate through a sequence of time points.

    Parameters
    ----------
    times : np.ndarray, shape (m,)
        Monotone time points; ``y0`` is the state at ``times[0]``

    Returns
    -------
    np.ndarray, shape (m, 2k)
        State at every time point (row 0 is ``y0``)
    """
    result = np.empty((len(times), len(y0)))
    result[0] = y0
    for m in range(1, len(times)):
        result[m] = integrate(field, result[m - 1], times[m - 1], times[m], max_step, settings)
    return result
