"""
Parameters of state-dependent speciation-extinction (SSE) processes.

The parameter set covers BiSSE / MuSSE (one speciation rate per state),
ClaSSE (cladogenetic events keyed by ancestor, left and right state) and
their fossilized variants (a serial sampling rate per state).
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..core.matrix import check_rate_matrix, equal_rates_Q
from ..exceptions import ParameterError


class CladogeneticEvents:
    """
    Sparse map of speciation events ``(ancestor, left, right) -> rate``.

    Parameters
    ----------
    n_states : int
        Number of character states
    events : dict[tuple[int, int, int], float]
        Rate of each speciation event

    Examples
    --------
    >>> events = CladogeneticEvents(2, {(0, 0, 0): 1.0, (0, 0, 1): 0.5, (1, 1, 1): 2.0})
    >>> events.speciation_rates()
    array([1.5, 2. ])
    """

    def __init__(self, n_states: int, events: dict[tuple[int, int, int], float]):
        self.n_states = int(n_states)
        self.events: dict[tuple[int, int, int], float] = {}
        for (a, l, r), rate in events.items():
            for state in (a, l, r):
                if not 0 <= state < self.n_states:
                    raise ParameterError(
                        f"Event {(a, l, r)} refers to a state outside 0..{self.n_states - 1}"
                    )
            if rate < 0:
                raise ParameterError(f"Event {(a, l, r)} has negative rate {rate}")
            self.events[(int(a), int(l), int(r))] = float(rate)

        keys = list(self.events)
        self.ancestors = np.array([k[0] for k in keys], dtype=int)
        self.left = np.array([k[1] for k in keys], dtype=int)
        self.right = np.array([k[2] for k in keys], dtype=int)
        self.rates = np.array([self.events[k] for k in keys], dtype=float)

    @classmethod
    def from_speciation_rates(cls, speciation_rates) -> "CladogeneticEvents":
        """Events ``(i, i, i)`` with rate ``lambda_i`` (no cladogenetic change)."""
        rates = np.asarray(speciation_rates, dtype=float)
        return cls(len(rates), {(i, i, i): rate for i, rate in enumerate(rates)})

    def __len__(self) -> int:
        return len(self.events)

    def speciation_rates(self) -> np.ndarray:
        """Total speciation rate of each ancestor state."""
        return np.bincount(self.ancestors, weights=self.rates, minlength=self.n_states)

    def events_from(self, ancestor: int) -> list[tuple[int, int, float]]:
        """``(left, right, rate)`` for every event of the given ancestor state."""
        mask = self.ancestors == ancestor
        return list(zip(self.left[mask].tolist(), self.right[mask].tolist(), self.rates[mask].tolist()))

    def merge(self, left_D: np.ndarray, right_D: np.ndarray) -> np.ndarray:
        """
        ``D_a = sum over events (a, l, r) of rate * left_D[l] * right_D[r]``.
        """
        terms = self.rates * left_D[self.left] * right_D[self.right]
        return np.bincount(self.ancestors, weights=terms, minlength=self.n_states)

    def __repr__(self) -> str:
        return f"CladogeneticEvents(n_states={self.n_states}, n_events={len(self)})"


@dataclass
class SSEParameters:
    """
    Current values of the SSE process parameters.

    Exactly one of ``speciation_rates`` and ``cladogenetic_events`` must be
    given. Engines read these values at compute time; after changing a
    field call ``touch()`` on the engine.

    Attributes
    ----------
    extinction_rates : np.ndarray, shape (k,)
        Per-state extinction rates (mu)
    process_age : float
        Root age, or origin age when ``use_origin`` is set
    speciation_rates : np.ndarray, shape (k,), optional
        Per-state speciation rates (lambda)
    cladogenetic_events : CladogeneticEvents, optional
        Speciation events with state change at branching
    rate_matrix : np.ndarray, shape (k, k), optional
        Anagenetic generator. Defaults to the normalised equal-rates matrix.
    event_rate : float
        Multiplier applied to ``rate_matrix``
    sampling_probability : float
        Probability (rho) that an extant lineage is sampled
    serial_sampling_rates : np.ndarray, shape (k,), optional
        Fossil sampling rates (psi)
    root_frequencies : np.ndarray, shape (k,), optional
        Root state frequencies. Defaults to uniform.
    use_origin : bool
        ``process_age`` is the origin of a stem branch above the root
    condition : str
        ``"time"`` or ``"survival"``
    """

    extinction_rates: np.ndarray
    process_age: float
    speciation_rates: Optional[np.ndarray] = None
    cladogenetic_events: Optional[CladogeneticEvents] = None
    rate_matrix: Optional[np.ndarray] = None
    event_rate: float = 1.0
    sampling_probability: float = 1.0
    serial_sampling_rates: Optional[np.ndarray] = None
    root_frequencies: Optional[np.ndarray] = None
    use_origin: bool = False
    condition: str = "time"

    def __post_init__(self):
        self.validate()

    @property
    def n_states(self) -> int:
        return len(self.extinction_rates)

    def validate(self) -> None:
        """
        Normalise arrays and check consistency.

        Raises
        ------
        ParameterError
            If required parameters are missing or have inconsistent sizes
        """
        self.extinction_rates = np.asarray(self.extinction_rates, dtype=float)
        k = len(self.extinction_rates)
        if k == 0:
            raise ParameterError("At least one state is required")

        if (self.speciation_rates is None) == (self.cladogenetic_events is None):
            raise ParameterError(
                "Exactly one of speciation_rates and cladogenetic_events must be given"
            )
        if self.speciation_rates is not None:
            self.speciation_rates = np.asarray(self.speciation_rates, dtype=float)
            if self.speciation_rates.shape != (k,):
                raise ParameterError(
                    f"speciation_rates has shape {self.speciation_rates.shape}, expected ({k},)"
                )
        else:
            if self.cladogenetic_events.n_states != k:
                raise ParameterError(
                    f"Cladogenetic events are defined for {self.cladogenetic_events.n_states} "
                    f"states, expected {k}"
                )

        if self.rate_matrix is None:
            self.rate_matrix = equal_rates_Q(k)
        self.rate_matrix = np.asarray(self.rate_matrix, dtype=float)
        if self.rate_matrix.shape != (k, k):
            raise ParameterError(f"rate_matrix has shape {self.rate_matrix.shape}, expected ({k}, {k})")
        try:
            check_rate_matrix(self.rate_matrix)
        except ValueError as e:
            raise ParameterError(str(e)) from e

        if self.serial_sampling_rates is not None:
            self.serial_sampling_rates = np.asarray(self.serial_sampling_rates, dtype=float)
            if self.serial_sampling_rates.shape != (k,):
                raise ParameterError(
                    f"serial_sampling_rates has shape {self.serial_sampling_rates.shape}, expected ({k},)"
                )

        if self.root_frequencies is None:
            self.root_frequencies = np.full(k, 1.0 / k)
        self.root_frequencies = np.asarray(self.root_frequencies, dtype=float)
        if self.root_frequencies.shape != (k,):
            raise ParameterError(
                f"root_frequencies has shape {self.root_frequencies.shape}, expected ({k},)"
            )
        if not np.isclose(self.root_frequencies.sum(), 1.0):
            raise ParameterError("root_frequencies must sum to 1")

        if np.any(self.extinction_rates < 0) or np.any(self.speciation_rates_total() < 0):
            raise ParameterError("Rates must be non-negative")
        if not 0.0 <= self.sampling_probability <= 1.0:
            raise ParameterError("sampling_probability must lie in [0, 1]")
        if self.event_rate < 0:
            raise ParameterError("event_rate must be non-negative")
        if self.process_age <= 0:
            raise ParameterError("process_age must be positive")
        if self.condition not in ("time", "survival"):
            raise ParameterError(f"Unknown condition {self.condition!r}; use 'time' or 'survival'")

    @property
    def events(self) -> CladogeneticEvents:
        """Speciation events, synthesised as ``(i, i, i)`` for non-cladogenetic models."""
        if self.cladogenetic_events is not None:
            return self.cladogenetic_events
        return CladogeneticEvents.from_speciation_rates(self.speciation_rates)

    @property
    def is_cladogenetic(self) -> bool:
        return self.cladogenetic_events is not None

    @property
    def uses_serial_sampling(self) -> bool:
        """Fossil sampling is part of the model (``psi`` was supplied)."""
        return self.serial_sampling_rates is not None

    def psi(self) -> np.ndarray:
        if self.serial_sampling_rates is None:
            return np.zeros(self.n_states)
        return self.serial_sampling_rates

    def speciation_rates_total(self) -> np.ndarray:
        return self.events.speciation_rates()

    def anagenetic_matrix(self) -> np.ndarray:
        """The generator scaled by ``event_rate``."""
        return self.rate_matrix * self.event_rate

    def average_rates(self, state_weights: np.ndarray) -> tuple[float, float]:
        """Speciation and extinction rates averaged under ``state_weights``."""
        weights = np.asarray(state_weights, dtype=float)
        return (
            float(np.dot(weights, self.speciation_rates_total())),
            float(np.dot(weights, self.extinction_rates)),
        )
