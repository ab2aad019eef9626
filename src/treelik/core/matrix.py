"""
Rate-matrix operations for discrete-character likelihood calculations.

This module provides the matrix utilities needed for transition
probabilities: the matrix exponential, eigendecomposition of reversible
generators and constructors for common rate matrices.
"""

import numpy as np
from scipy.linalg import expm


def matrix_exponential(Q: np.ndarray, t: float) -> np.ndarray:
    """
    Compute transition probability matrix P(t) = exp(Q*t).

    Parameters
    ----------
    Q : ndarray, shape (n, n)
        Instantaneous rate matrix
    t : float
        Branch length (time)

    Returns
    -------
    P : ndarray, shape (n, n)
        P[i, j] is the probability of ending in state j after time t
        when starting in state i

    Examples
    --------
    >>> Q = equal_rates_Q(2)
    >>> P = matrix_exponential(Q, 0.1)
    >>> np.allclose(P.sum(axis=1), 1.0)
    True
    """
    return expm(Q * t)


def eigen_decompose_rev(Q: np.ndarray, pi: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Eigendecompose a reversible rate matrix, Q = U @ diag(eigenvalues) @ V.

    Q is symmetrised with the square roots of the stationary frequencies,
    Q' = D^(1/2) Q D^(-1/2), and the symmetric eigenproblem is solved.

    Parameters
    ----------
    Q : ndarray, shape (n, n)
        Rate matrix satisfying detailed balance with ``pi``
    pi : ndarray, shape (n,)
        Stationary distribution (strictly positive)

    Returns
    -------
    eigenvalues : ndarray, shape (n,)
    U : ndarray, shape (n, n)
        Right eigenvectors (columns)
    V : ndarray, shape (n, n)
        Left eigenvectors (rows), V = U^-1
    """
    sqrt_pi = np.sqrt(pi)
    Q_sym = Q * sqrt_pi[:, np.newaxis] / sqrt_pi[np.newaxis, :]
    # Remove rounding asymmetry before calling the symmetric solver
    Q_sym = 0.5 * (Q_sym + Q_sym.T)

    eigenvalues, eigenvectors = np.linalg.eigh(Q_sym)

    U = eigenvectors / sqrt_pi[:, np.newaxis]
    V = eigenvectors.T * sqrt_pi[np.newaxis, :]
    return eigenvalues, U, V


def transition_from_eigen(
    eigenvalues: np.ndarray, U: np.ndarray, V: np.ndarray, t: float
) -> np.ndarray:
    """
    P(t) = U @ diag(exp(eigenvalues * t)) @ V with rounding clean-up.

    Tiny negative entries produced by floating point error are set to zero
    and rows are renormalised to sum to one.
    """
    P = (U * np.exp(eigenvalues * t)[np.newaxis, :]) @ V
    P = np.maximum(P, 0.0)
    return P / P.sum(axis=1, keepdims=True)


def create_reversible_Q(
    rates: np.ndarray, pi: np.ndarray, normalize: bool = True
) -> np.ndarray:
    """
    Create a reversible rate matrix from exchangeabilities and frequencies.

    Parameters
    ----------
    rates : ndarray, shape (n, n)
        Symmetric exchangeability matrix (r[i,j] = r[j,i])
    pi : ndarray, shape (n,)
        Stationary distribution
    normalize : bool, default=True
        Scale Q to one expected substitution per unit time

    Returns
    -------
    Q : ndarray, shape (n, n)
        Q[i,j] = r[i,j] * pi[j] off the diagonal, rows summing to zero
    """
    Q = np.asarray(rates, dtype=float) * pi[np.newaxis, :]
    np.fill_diagonal(Q, 0.0)
    np.fill_diagonal(Q, -Q.sum(axis=1))

    if normalize:
        expected_rate = -np.dot(pi, Q.diagonal())
        if expected_rate > 0:
            Q /= expected_rate

    return Q


def equal_rates_Q(n_states: int) -> np.ndarray:
    """
    Normalised equal-rates (Jukes-Cantor / Mk) generator.

    Off-diagonal rates are 1/(n-1), so the expected number of changes per
    unit time is one.
    """
    if n_states < 1:
        raise ValueError("n_states must be positive")
    if n_states == 1:
        return np.zeros((1, 1))
    Q = np.full((n_states, n_states), 1.0 / (n_states - 1))
    np.fill_diagonal(Q, -1.0)
    return Q


def stationary_distribution(Q: np.ndarray) -> np.ndarray:
    """Stationary distribution of a generator (left null vector of Q)."""
    n = Q.shape[0]
    # Solve pi Q = 0 with sum(pi) = 1 as a least-squares system
    A = np.vstack([Q.T, np.ones(n)])
    b = np.zeros(n + 1)
    b[-1] = 1.0
    pi, *_ = np.linalg.lstsq(A, b, rcond=None)
    pi = np.maximum(pi, 0.0)
    return pi / pi.sum()


def check_rate_matrix(Q: np.ndarray, atol: float = 1e-8) -> None:
    """
    Validate a generator.

    Raises
    ------
    ValueError
        If Q is not square, has negative off-diagonal entries or rows that
        do not sum to zero
    """
    Q = np.asarray(Q)
    if Q.ndim != 2 or Q.shape[0] != Q.shape[1]:
        raise ValueError(f"Rate matrix must be square, got shape {Q.shape}")
    off = Q - np.diag(Q.diagonal())
    if np.any(off < -atol):
        raise ValueError("Rate matrix has negative off-diagonal rates")
    if not np.allclose(Q.sum(axis=1), 0.0, atol=atol):
        raise ValueError("Rate matrix rows must sum to zero")


def check_detailed_balance(Q: np.ndarray, pi: np.ndarray, rtol: float = 1e-10) -> bool:
    """
    Test whether pi_i * Q[i,j] == pi_j * Q[j,i] for all i, j.
    """
    flux = pi[:, np.newaxis] * Q
    return bool(np.allclose(flux, flux.T, rtol=rtol, atol=1e-14))
