"""
High-level API for treelik likelihood calculations.

This module provides a simplified interface for scoring trees under a
substitution model or an SSE process, sampling character histories and
simulating trees, with result objects and automatic file format detection.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np

from .analysis.ancestral import CharacterHistory
from .config import LikelihoodSettings
from .core.pruning import PruningLikelihood
from .core.sse import SSELikelihood
from .core.tree import TimeTree
from .io.characters import Alphabet, CharacterMatrix
from .models.sse import SSEParameters
from .models.substitution import SubstitutionModel
from .simulate.sse import SimulatedTree, SSESimulator


@dataclass
class PruningResult:
    """
    Log-likelihood of a character matrix under a substitution model.

    Attributes
    ----------
    lnL : float
        Total log-likelihood
    site_lnL : np.ndarray
        Per-site log-likelihoods
    n_sites : int
        Number of characters
    n_patterns : int
        Number of unique site patterns
    n_states : int
        Number of character states
    n_tips : int
        Number of taxa
    """

    lnL: float
    site_lnL: np.ndarray
    n_sites: int
    n_patterns: int
    n_states: int
    n_tips: int

    def summary(self) -> str:
        lines = []
        lines.append("=" * 70)
        lines.append("MODEL: Mk (substitution)")
        lines.append("=" * 70)
        lines.append("")
        lines.append(f"Log-likelihood:       {self.lnL:.6f}")
        lines.append(f"States:               {self.n_states}")
        lines.append(f"Taxa:                 {self.n_tips}")
        lines.append(f"Sites / patterns:     {self.n_sites} / {self.n_patterns}")
        lines.append("")
        lines.append("=" * 70)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'lnL': float(self.lnL),
            'site_lnL': [float(x) for x in self.site_lnL],
            'n_sites': int(self.n_sites),
            'n_patterns': int(self.n_patterns),
            'n_states': int(self.n_states),
            'n_tips': int(self.n_tips),
        }

    def to_json(self, filepath: Optional[str] = None, indent: int = 2) -> str:
        """
        Export results as JSON.

        Parameters
        ----------
        filepath : str, optional
            If provided, write JSON to this file
        indent : int, default=2
            Indentation level for pretty printing
        """
        json_str = json.dumps(self.to_dict(), indent=indent)
        if filepath:
            with open(filepath, 'w') as f:
                f.write(json_str)
        return json_str

    def __str__(self) -> str:
        return self.summary()


@dataclass
class SSEResult:
    """
    Log probability of a tree and tip states under an SSE process.

    Attributes
    ----------
    lnL : float
        Full log probability (conditioning + root likelihood + tree shape)
    root_lnL : float
        Root log-likelihood including scaling factors
    n_tips : int
        Number of tips
    params : dict
        Process parameters used
    """

    lnL: float
    root_lnL: float
    n_tips: int
    params: Dict[str, Any] = field(default_factory=dict)

    def summary(self) -> str:
        lines = []
        lines.append("=" * 70)
        lines.append("MODEL: SSE")
        lines.append("=" * 70)
        lines.append("")
        lines.append(f"Log-likelihood:       {self.lnL:.6f}")
        lines.append(f"Root log-likelihood:  {self.root_lnL:.6f}")
        lines.append(f"Tips:                 {self.n_tips}")
        lines.append("")
        lines.append("PARAMETERS:")
        for name in ("speciation_rates", "extinction_rates", "sampling_probability",
                     "event_rate", "process_age", "condition"):
            if name in self.params:
                lines.append(f"  {name} = {self.params[name]}")
        lines.append("")
        lines.append("=" * 70)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'lnL': float(self.lnL),
            'root_lnL': float(self.root_lnL),
            'n_tips': int(self.n_tips),
            'params': self.params,
        }

    def to_json(self, filepath: Optional[str] = None, indent: int = 2) -> str:
        json_str = json.dumps(self.to_dict(), indent=indent)
        if filepath:
            with open(filepath, 'w') as f:
                f.write(json_str)
        return json_str

    def __str__(self) -> str:
        return self.summary()


# =============================================================================
# File loading helpers with automatic format detection
# =============================================================================

def load_tree(tree: Union[str, Path, TimeTree]) -> TimeTree:
    """
    Load tree from Newick file or string.

    Parameters
    ----------
    tree : str, Path, or TimeTree
        Path to tree file, Newick string, or TimeTree object

    Returns
    -------
    TimeTree

    Raises
    ------
    ValueError
        If tree parsing fails
    """
    if isinstance(tree, TimeTree):
        return tree

    path_or_str = str(tree)
    path = Path(path_or_str)
    if path.exists():
        with open(path) as f:
            newick_str = f.read().strip()
    else:
        newick_str = path_or_str

    try:
        return TimeTree.from_newick(newick_str)
    except ValueError as e:
        raise ValueError(f"Failed to parse tree: {e}") from e


def load_characters(
    characters: Union[str, Path, CharacterMatrix],
    n_states: Optional[int] = None,
) -> CharacterMatrix:
    """
    Load a character matrix with automatic format detection.

    ``.phy``/``.phylip`` files are read as PHYLIP, everything else as FASTA.

    Parameters
    ----------
    characters : str, Path, or CharacterMatrix
        Path to a character file or a CharacterMatrix
    n_states : int, optional
        Size of the standard alphabet. Inferred from the data if omitted.

    Raises
    ------
    FileNotFoundError
        If the file doesn't exist
    """
    if isinstance(characters, CharacterMatrix):
        return characters

    path = Path(characters)
    if not path.exists():
        raise FileNotFoundError(f"Character file not found: {path}")

    alphabet = Alphabet.standard(n_states) if n_states is not None else None
    if path.suffix.lower() in ('.phy', '.phylip'):
        return CharacterMatrix.from_phylip(path, alphabet)
    return CharacterMatrix.from_fasta(path, alphabet)


def build_sse_parameters(
    speciation: Sequence[float],
    extinction: Sequence[float],
    process_age: float,
    event_rate: float = 1.0,
    rate_matrix: Optional[np.ndarray] = None,
    sampling_probability: float = 1.0,
    serial_sampling: Optional[Sequence[float]] = None,
    root_frequencies: Optional[Sequence[float]] = None,
    use_origin: bool = False,
    condition: str = "time",
) -> SSEParameters:
    """Assemble :class:`SSEParameters` from plain sequences."""
    return SSEParameters(
        extinction_rates=np.asarray(extinction, dtype=float),
        speciation_rates=np.asarray(speciation, dtype=float),
        process_age=process_age,
        rate_matrix=rate_matrix,
        event_rate=event_rate,
        sampling_probability=sampling_probability,
        serial_sampling_rates=None if serial_sampling is None else np.asarray(serial_sampling, dtype=float),
        root_frequencies=None if root_frequencies is None else np.asarray(root_frequencies, dtype=float),
        use_origin=use_origin,
        condition=condition,
    )


def _params_dict(params: SSEParameters) -> Dict[str, Any]:
    return {
        'speciation_rates': params.speciation_rates_total().tolist(),
        'extinction_rates': params.extinction_rates.tolist(),
        'sampling_probability': float(params.sampling_probability),
        'event_rate': float(params.event_rate),
        'process_age': float(params.process_age),
        'use_origin': bool(params.use_origin),
        'condition': params.condition,
    }


# =============================================================================
# Main API functions
# =============================================================================

def pruning_log_likelihood(
    tree: Union[str, Path, TimeTree],
    characters: Union[str, Path, CharacterMatrix],
    n_states: Optional[int] = None,
    clock_rate: float = 1.0,
    compress: bool = True,
    settings: Optional[LikelihoodSettings] = None,
) -> PruningResult:
    """
    Log-likelihood of characters under the Mk (equal-rates) model.

    Examples
    --------
    >>> result = pruning_log_likelihood("((A:1,B:1):1,C:2);", "data.fasta")
    >>> print(result.summary())
    """
    tree = load_tree(tree)
    matrix = load_characters(characters, n_states)
    model = SubstitutionModel.mk(matrix.n_states, clock_rate=clock_rate)
    engine = PruningLikelihood(tree, matrix, model, compress=compress, settings=settings)
    lnL = engine.compute_log_likelihood()
    return PruningResult(
        lnL=lnL,
        site_lnL=engine.site_log_likelihoods(),
        n_sites=matrix.n_sites,
        n_patterns=engine.n_patterns,
        n_states=matrix.n_states,
        n_tips=tree.n_tips,
    )


def sse_log_likelihood(
    tree: Union[str, Path, TimeTree],
    characters: Optional[Union[str, Path, CharacterMatrix]],
    speciation: Sequence[float],
    extinction: Sequence[float],
    settings: Optional[LikelihoodSettings] = None,
    **param_kwargs,
) -> SSEResult:
    """
    Log probability of a tree and tip states under a (Bi/Mu)SSE process.

    The process age defaults to the root age of the tree.

    Parameters
    ----------
    tree : str, Path, or TimeTree
        Time tree
    characters : str, Path, CharacterMatrix or None
        Tip states (``None`` for all missing)
    speciation, extinction : sequence of float
        Per-state rates
    settings : LikelihoodSettings, optional
    **param_kwargs
        Further arguments of :func:`build_sse_parameters`
    """
    tree = load_tree(tree)
    n_states = len(speciation)
    matrix = None if characters is None else load_characters(characters, n_states)
    param_kwargs.setdefault("process_age", tree.root.age)
    params = build_sse_parameters(speciation, extinction, **param_kwargs)

    engine = SSELikelihood(tree, matrix, params, settings=settings)
    lnL = engine.compute_log_likelihood()
    root_lnL = engine.compute_root_log_likelihood() if np.isfinite(lnL) else float("-inf")
    return SSEResult(lnL=lnL, root_lnL=root_lnL, n_tips=tree.n_tips, params=_params_dict(params))


def stochastic_character_map(
    tree: Union[str, Path, TimeTree],
    characters: Optional[Union[str, Path, CharacterMatrix]],
    speciation: Sequence[float],
    extinction: Sequence[float],
    samples: int = 1,
    seed: Optional[int] = None,
    settings: Optional[LikelihoodSettings] = None,
    **param_kwargs,
) -> list[CharacterHistory]:
    """
    Sample stochastic character maps under a (Bi/Mu)SSE process.

    All maps are drawn from one engine and one random stream, so the
    likelihoods are computed once however many maps are requested.

    Parameters
    ----------
    tree : str, Path, or TimeTree
        Time tree
    characters : str, Path, CharacterMatrix or None
        Tip states (``None`` for all missing)
    speciation, extinction : sequence of float
        Per-state rates
    samples : int, default=1
        Number of maps to draw
    seed : int, optional
        Seed of the random stream
    settings : LikelihoodSettings, optional
    **param_kwargs
        Further arguments of :func:`build_sse_parameters`

    Returns
    -------
    list[CharacterHistory]
        One history per sample
    """
    if samples < 1:
        raise ValueError(f"Number of samples must be positive, got {samples}")
    tree = load_tree(tree)
    matrix = None if characters is None else load_characters(characters, len(speciation))
    param_kwargs.setdefault("process_age", tree.root.age)
    params = build_sse_parameters(speciation, extinction, **param_kwargs)
    engine = SSELikelihood(tree, matrix, params, settings=settings)
    rng = np.random.default_rng(seed)
    return [engine.draw_stochastic_character_map(rng) for _ in range(samples)]


def simulate_sse_tree(
    speciation: Sequence[float],
    extinction: Sequence[float],
    root_age: float,
    seed: Optional[int] = None,
    max_num_lineages: int = 5000,
    prune_extinct_lineages: bool = True,
    **param_kwargs,
) -> SimulatedTree:
    """
    Simulate a tree and tip states under a (Bi/Mu)SSE process.

    Examples
    --------
    >>> sim = simulate_sse_tree([1.0, 2.0], [0.1, 0.1], root_age=3.0, seed=1)
    >>> sim.tree.n_tips >= 2
    True
    """
    params = build_sse_parameters(speciation, extinction, process_age=root_age, **param_kwargs)
    simulator = SSESimulator(
        params,
        max_num_lineages=max_num_lineages,
        prune_extinct_lineages=prune_extinct_lineages,
        seed=seed,
    )
    return simulator.simulate()
