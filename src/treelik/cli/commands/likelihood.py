"""Likelihood and stochastic mapping command implementations."""

import sys
from pathlib import Path
from typing import Optional

from treelik import pruning_log_likelihood, sse_log_likelihood, stochastic_character_map
from treelik.exceptions import TreelikError


def parse_rates(text: str, option: str) -> list[float]:
    """Parse a comma-separated list of non-negative rates."""
    try:
        values = [float(x) for x in text.split(",") if x.strip()]
    except ValueError:
        print(f"Error: {option} expects comma-separated numbers, got '{text}'", file=sys.stderr)
        sys.exit(1)
    if not values:
        print(f"Error: {option} is empty", file=sys.stderr)
        sys.exit(1)
    return values


def _write(output_text: str, output: Optional[Path], quiet: bool) -> None:
    if output:
        with open(output, 'w') as f:
            f.write(output_text + '\n')
        if not quiet:
            print(f"Results written to {output}", file=sys.stderr)
    else:
        print(output_text)


def run_pruning(
    tree: Path,
    characters: Path,
    n_states: Optional[int],
    compress: bool,
    clock_rate: float,
    output: Optional[Path],
    format: str,
    quiet: bool,
):
    """Score a character matrix under the Mk model."""
    try:
        result = pruning_log_likelihood(
            tree, characters, n_states=n_states, clock_rate=clock_rate, compress=compress
        )
    except (TreelikError, ValueError, OSError) as e:
        print("Error: Likelihood calculation failed", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    output_text = result.to_json() if format == "json" else result.summary()
    _write(output_text, output, quiet)


def _sse_kwargs(
    extinction: str,
    rate_q: float,
    rho: float,
    survival: bool,
    process_age: Optional[float],
    psi: Optional[str],
    use_origin: bool,
) -> dict:
    kwargs = {
        'extinction': parse_rates(extinction, "--extinction"),
        'event_rate': rate_q,
        'sampling_probability': rho,
        'condition': "survival" if survival else "time",
        'use_origin': use_origin,
    }
    if process_age is not None:
        kwargs['process_age'] = process_age
    if psi is not None:
        kwargs['serial_sampling'] = parse_rates(psi, "--psi")
    return kwargs


def run_sse(
    tree: Path,
    characters: Optional[Path],
    speciation: str,
    extinction: str,
    rate_q: float,
    rho: float,
    survival: bool,
    process_age: Optional[float],
    psi: Optional[str],
    use_origin: bool,
    output: Optional[Path],
    format: str,
    quiet: bool,
):
    """Score a tree and tip states under an SSE process."""
    lam = parse_rates(speciation, "--speciation")
    kwargs = _sse_kwargs(extinction, rate_q, rho, survival, process_age, psi, use_origin)
    try:
        result = sse_log_likelihood(tree, characters, speciation=lam, **kwargs)
    except (TreelikError, ValueError, OSError) as e:
        print("Error: Likelihood calculation failed", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    output_text = result.to_json() if format == "json" else result.summary()
    _write(output_text, output, quiet)


def run_simmap(
    tree: Path,
    characters: Optional[Path],
    speciation: str,
    extinction: str,
    rate_q: float,
    rho: float,
    survival: bool,
    process_age: Optional[float],
    psi: Optional[str],
    use_origin: bool,
    samples: int,
    seed: Optional[int],
    output: Optional[Path],
    quiet: bool,
):
    """Draw stochastic character maps and write them as SIMMAP Newick."""
    lam = parse_rates(speciation, "--speciation")
    kwargs = _sse_kwargs(extinction, rate_q, rho, survival, process_age, psi, use_origin)
    try:
        histories = stochastic_character_map(
            tree, characters, speciation=lam, samples=samples, seed=seed, **kwargs
        )
    except (TreelikError, ValueError, OSError) as e:
        print("Error: Stochastic mapping failed", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    if not quiet:
        for i, history in enumerate(histories):
            print(
                f"  Sample {i + 1}: {history.number_of_transitions()} transition(s)",
                file=sys.stderr,
            )
    _write("\n".join(history.to_newick() for history in histories), output, quiet)
