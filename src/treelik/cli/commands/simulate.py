"""Simulate command for treelik CLI."""

import typer
from pathlib import Path
from typing import Optional

from ...api import build_sse_parameters
from ...exceptions import TreelikError
from ...simulate.output import SimulationOutput
from ...simulate.sse import SSESimulator
from .likelihood import parse_rates

app = typer.Typer(help="Simulate trees and characters under evolutionary models")


@app.command(name="sse")
def simulate_sse(
    speciation: str = typer.Option(
        ...,
        "--speciation",
        help="Comma-separated per-state speciation rates",
    ),
    extinction: str = typer.Option(
        ...,
        "--extinction",
        help="Comma-separated per-state extinction rates",
    ),
    root_age: float = typer.Option(
        ...,
        "--root-age",
        help="Age of the root speciation event",
        min=0.0,
    ),
    output: Path = typer.Option(
        ...,
        "--output", "-o",
        help="Output Newick file (tip states go to <stem>.states.tsv)",
    ),
    rate_q: float = typer.Option(
        1.0,
        "--rate-q",
        help="Rate of anagenetic state change",
        min=0.0,
    ),
    replicates: int = typer.Option(
        1,
        "--replicates", "-r",
        help="Number of replicates to simulate",
        min=1,
    ),
    max_lineages: int = typer.Option(
        5000,
        "--max-lineages",
        help="Stop once this many lineages are alive",
        min=2,
    ),
    keep_extinct: bool = typer.Option(
        False,
        "--keep-extinct",
        help="Keep extinct lineages in the tree",
    ),
    seed: Optional[int] = typer.Option(
        None,
        "--seed",
        help="Random seed for reproducibility",
    ),
    output_params: bool = typer.Option(
        True,
        "--output-params/--no-output-params",
        help="Write parameters to JSON file",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Suppress progress messages",
    ),
):
    """
    Simulate trees and tip states under an SSE process.

    Examples:

        \b
        # BiSSE tree of age 5 with a fast-speciating state 1
        treelik simulate sse --speciation 1.0,3.0 --extinction 0.2,0.2 --root-age 5 -o sim.nwk

        \b
        # 10 replicates with a fixed seed
        treelik simulate sse --speciation 1,1 --extinction 0,0 --root-age 3 -o sim.nwk -r 10 --seed 42
    """
    lam = parse_rates(speciation, "--speciation")
    mu = parse_rates(extinction, "--extinction")

    if not quiet:
        typer.echo("treelik Tree Simulator - SSE Model")
        typer.echo("=" * 50)
        typer.echo(f"  States: {len(lam)}")
        typer.echo(f"  Root age: {root_age}")
        typer.echo(f"  Replicates: {replicates}")
        if seed is not None:
            typer.echo(f"  Seed: {seed}")

    try:
        params = build_sse_parameters(lam, mu, process_age=root_age, event_rate=rate_q)
        simulator = SSESimulator(
            params,
            max_num_lineages=max_lineages,
            prune_extinct_lineages=not keep_extinct,
            seed=seed,
        )
    except (TreelikError, ValueError) as e:
        typer.echo(f"Error creating simulator: {e}", err=True)
        raise typer.Exit(code=1)

    for rep in range(replicates):
        try:
            result = simulator.simulate()
        except TreelikError as e:
            typer.echo(f"Error simulating replicate {rep+1}: {e}", err=True)
            raise typer.Exit(code=1)

        if replicates == 1:
            tree_path = output
        else:
            tree_path = output.parent / f"{output.stem}_rep{rep+1}{output.suffix}"
        states_path = tree_path.parent / f"{tree_path.stem}.states.tsv"

        try:
            SimulationOutput.write_newick(result.tree, tree_path)
            SimulationOutput.write_tip_states(result.tip_states, states_path)
        except OSError as e:
            typer.echo(f"Error writing output: {e}", err=True)
            raise typer.Exit(code=1)

        if not quiet:
            typer.echo(f"  Replicate {rep+1}: {result.tree.n_tips} tips -> {tree_path}")

    if output_params:
        params_path = output.parent / f"{output.stem}.params.json"
        try:
            meta = simulator.get_parameters()
            meta['seed'] = seed
            meta['replicates'] = replicates
            SimulationOutput.write_parameters(meta, params_path)
            if not quiet:
                typer.echo(f"\nParameters -> {params_path}")
        except OSError as e:
            typer.echo(f"Warning: Could not write parameters: {e}", err=True)

    if not quiet:
        typer.echo("\nSimulation complete!")
