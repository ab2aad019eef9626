"""
Forward simulation module for treelik.

Useful for:
- Validating likelihood calculations
- Generating test datasets

Available simulators:
- SSESimulator: trees and tip states under an SSE process
- SubstitutionSimulator: character matrices on a fixed tree
"""

from .base import Simulator
from .characters import SubstitutionSimulator
from .output import SimulationOutput
from .sse import SimulatedTree, SSESimulator

__all__ = [
    'Simulator',
    'SubstitutionSimulator',
    'SSESimulator',
    'SimulatedTree',
    'SimulationOutput',
]
