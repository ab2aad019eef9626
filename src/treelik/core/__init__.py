"""
Core algorithms for incremental likelihood calculation.

This module provides low-level computational routines:

- **Tree arena**: time trees with dense node indices and change listeners
- **Dirty cache**: double-buffered per-node storage with keep/restore
- **Pruning**: Felsenstein's algorithm under a substitution model
- **SSE**: branch-wise integration of the speciation-extinction ODEs

These are expert-level classes typically used from a sampler.
The high-level API (:mod:`treelik.api`) provides easier access.
"""

from treelik.core.cache import DirtyCache
from treelik.core.matrix import eigen_decompose_rev, matrix_exponential
from treelik.core.pruning import PruningLikelihood
from treelik.core.sse import SSELikelihood
from treelik.core.tree import TimeTree, TreeNode

__all__ = [
    "DirtyCache",
    "PruningLikelihood",
    "SSELikelihood",
    "TimeTree",
    "TreeNode",
    "matrix_exponential",
    "eigen_decompose_rev",
]
