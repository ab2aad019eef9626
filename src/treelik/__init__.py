"""
treelik: incremental phylogenetic likelihoods for discrete characters.

Felsenstein pruning under substitution models and state-dependent
speciation-extinction (SSE) likelihoods on time trees, with a per-node
dirty cache for MCMC-style touch/keep/restore, ancestral state sampling,
stochastic character mapping and forward simulation.

Quick Start
-----------
Score characters under the Mk model:

>>> from treelik import pruning_log_likelihood
>>> result = pruning_log_likelihood("tree.nwk", "characters.fasta")
>>> print(result.summary())

Score a tree under BiSSE:

>>> from treelik import sse_log_likelihood
>>> result = sse_log_likelihood(
...     "tree.nwk", "states.fasta", speciation=[1.0, 2.0], extinction=[0.1, 0.1]
... )
>>> print(f"lnL = {result.lnL:.4f}")

Examples
--------
>>> # Incremental evaluation inside a sampler
>>> from treelik import TimeTree, SSELikelihood, SSEParameters
>>> engine = SSELikelihood(tree, characters, params)
>>> before = engine.compute_log_likelihood()
>>> engine.keep()
>>> tree.set_age(node, node.age * 1.1)
>>> after = engine.compute_log_likelihood()
>>> engine.restore()  # reject the move
"""

__version__ = "0.1.0"

# High-level API (simple interface)
from .api import (
    pruning_log_likelihood,
    sse_log_likelihood,
    stochastic_character_map,
    simulate_sse_tree,
    build_sse_parameters,
    load_tree,
    load_characters,
    PruningResult,
    SSEResult,
)

# Data structures
from .core.tree import TimeTree, TreeNode
from .io.characters import Alphabet, CharacterMatrix

# Models
from .models.substitution import SubstitutionModel
from .models.sse import CladogeneticEvents, SSEParameters

# Likelihood engines (expert use)
from .core.pruning import PruningLikelihood
from .core.sse import SSELikelihood
from .config import LikelihoodSettings, DEFAULT_SETTINGS

# Errors
from .exceptions import TreelikError, TaxonMismatchError, ParameterError, SimulationError

__all__ = [
    # Simple API - Start here!
    "pruning_log_likelihood",
    "sse_log_likelihood",
    "stochastic_character_map",
    "simulate_sse_tree",
    "build_sse_parameters",
    "load_tree",
    "load_characters",

    # Result objects
    "PruningResult",
    "SSEResult",

    # Data structures
    "TimeTree",
    "TreeNode",
    "Alphabet",
    "CharacterMatrix",

    # Models
    "SubstitutionModel",
    "CladogeneticEvents",
    "SSEParameters",

    # Engines
    "PruningLikelihood",
    "SSELikelihood",
    "LikelihoodSettings",
    "DEFAULT_SETTINGS",

    # Errors
    "TreelikError",
    "TaxonMismatchError",
    "ParameterError",
    "SimulationError",
]
