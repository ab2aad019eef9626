"""
Numerical settings shared by the likelihood engines.
"""

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class LikelihoodSettings:
    """
    Settings for likelihood computation.

    Attributes
    ----------
    use_scaling : bool
        Rescale per-node partial likelihoods to avoid underflow
    scaling_threshold : float
        SSE partials are rescaled whenever their maximum exceeds this value
    num_time_slices : int
        The root (or origin) age is divided into this many slices; the slice
        width is the maximum ODE step and the resolution of stochastic
        character maps
    ode_atol, ode_rtol : float
        Absolute and relative tolerance of the adaptive ODE solver
    ode_method : str
        Integration method passed to :func:`scipy.integrate.solve_ivp`
    """

    use_scaling: bool = True
    scaling_threshold: float = 0.0
    num_time_slices: int = 500
    ode_atol: float = 1e-6
    ode_rtol: float = 1e-6
    ode_method: str = "RK45"

    def __post_init__(self):
        if self.num_time_slices <= 0:
            raise ValueError(f"num_time_slices must be positive, got {self.num_time_slices}")
        if self.scaling_threshold < 0:
            raise ValueError("scaling_threshold must be non-negative")

    def with_changes(self, **changes) -> "LikelihoodSettings":
        return replace(self, **changes)


DEFAULT_SETTINGS = LikelihoodSettings()
