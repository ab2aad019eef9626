"""
Evolutionary models for discrete characters.

- **Substitution models**: rate matrices driving the pruning engine
- **SSE models**: state-dependent speciation, extinction and anagenetic
  change, with optional cladogenetic events and serial sampling
"""

from treelik.models.sse import CladogeneticEvents, SSEParameters
from treelik.models.substitution import SubstitutionModel

__all__ = [
    "SubstitutionModel",
    "CladogeneticEvents",
    "SSEParameters",
]
