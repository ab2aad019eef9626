"""
Base class for simulators.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import numpy as np


class Simulator(ABC):
    """
    Abstract base class for forward simulators.

    Parameters
    ----------
    seed : int, optional
        Random seed for reproducibility
    rng : numpy.random.Generator, optional
        Random number generator to draw from. Takes precedence over ``seed``.

    Attributes
    ----------
    rng : numpy.random.Generator
        Random number generator used by every draw
    """

    def __init__(self, seed: Optional[int] = None, rng: Optional[np.random.Generator] = None):
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    @abstractmethod
    def simulate(self):
        """Draw one replicate."""

    @abstractmethod
    def get_parameters(self) -> Dict[str, Any]:
        """
        Get simulation parameters for output metadata.

        Returns
        -------
        dict
            JSON-serialisable model parameters
        """
