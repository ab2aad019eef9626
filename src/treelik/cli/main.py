"""Main CLI application for treelik."""

import typer
from pathlib import Path
from typing import Optional
from enum import Enum

from .commands import simulate as simulate_cmd

app = typer.Typer(
    name="treelik",
    help="Incremental phylogenetic likelihoods for discrete characters",
    no_args_is_help=True,
)

app.add_typer(simulate_cmd.app, name="simulate")


class OutputFormat(str, Enum):
    """Output format."""
    TEXT = "text"
    JSON = "json"


# Options shared by several commands
TREE_OPTION = typer.Option(
    ...,
    "--tree", "-t",
    help="Time tree file (Newick format with branch lengths)",
    exists=True,
    file_okay=True,
    dir_okay=False,
)
STATES_FILE_OPTION = typer.Option(
    None,
    "--characters", "-s",
    help="Tip states (FASTA or PHYLIP); all missing if omitted",
    exists=True,
    file_okay=True,
    dir_okay=False,
)
SPECIATION_OPTION = typer.Option(..., "--speciation", help="Comma-separated per-state speciation rates")
EXTINCTION_OPTION = typer.Option(..., "--extinction", help="Comma-separated per-state extinction rates")
RATE_Q_OPTION = typer.Option(1.0, "--rate-q", help="Rate of anagenetic state change", min=0.0)
RHO_OPTION = typer.Option(
    1.0, "--rho", help="Sampling probability of extant lineages", min=0.0, max=1.0
)
SURVIVAL_OPTION = typer.Option(False, "--survival", help="Condition on survival of the root lineages")
PROCESS_AGE_OPTION = typer.Option(
    None, "--process-age", help="Root (or origin) age (default: root age of the tree)"
)
PSI_OPTION = typer.Option(None, "--psi", help="Comma-separated per-state fossil sampling rates")
USE_ORIGIN_OPTION = typer.Option(
    False, "--use-origin", help="Process age is the origin of a stem branch above the root"
)
FORMAT_OPTION = typer.Option(OutputFormat.TEXT, "--format", help="Output format")
QUIET_OPTION = typer.Option(False, "--quiet", "-q", help="Minimal output")


@app.command()
def pruning(
    tree: Path = TREE_OPTION,
    characters: Path = typer.Option(
        ...,
        "--characters", "-s",
        help="Character matrix (FASTA or PHYLIP)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    states: Optional[int] = typer.Option(
        None, "--states", help="Number of states (default: inferred from the data)", min=1
    ),
    no_compress: bool = typer.Option(
        False, "--no-compress", help="Score every site instead of unique patterns"
    ),
    clock_rate: float = typer.Option(1.0, "--clock-rate", help="Substitution rate multiplier", min=0.0),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (default: stdout)"),
    format: OutputFormat = FORMAT_OPTION,
    quiet: bool = QUIET_OPTION,
):
    """
    Log-likelihood of a character matrix under the Mk model.

    Example:
        treelik pruning -t tree.nwk -s data.fasta
        treelik pruning -t tree.nwk -s data.phy --states 3 --format json
    """
    from .commands.likelihood import run_pruning

    run_pruning(
        tree=tree,
        characters=characters,
        n_states=states,
        compress=not no_compress,
        clock_rate=clock_rate,
        output=output,
        format=format.value,
        quiet=quiet,
    )


@app.command()
def sse(
    tree: Path = TREE_OPTION,
    characters: Optional[Path] = STATES_FILE_OPTION,
    speciation: str = SPECIATION_OPTION,
    extinction: str = EXTINCTION_OPTION,
    rate_q: float = RATE_Q_OPTION,
    rho: float = RHO_OPTION,
    survival: bool = SURVIVAL_OPTION,
    process_age: Optional[float] = PROCESS_AGE_OPTION,
    psi: Optional[str] = PSI_OPTION,
    use_origin: bool = USE_ORIGIN_OPTION,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (default: stdout)"),
    format: OutputFormat = FORMAT_OPTION,
    quiet: bool = QUIET_OPTION,
):
    """
    Log probability of a tree and tip states under an SSE process.

    Example:
        treelik sse -t tree.nwk -s states.fasta --speciation 1,2 --extinction 0.1,0.1
        treelik sse -t tree.nwk --speciation 1 --extinction 0.5 --survival
    """
    from .commands.likelihood import run_sse

    run_sse(
        tree=tree,
        characters=characters,
        speciation=speciation,
        extinction=extinction,
        rate_q=rate_q,
        rho=rho,
        survival=survival,
        process_age=process_age,
        psi=psi,
        use_origin=use_origin,
        output=output,
        format=format.value,
        quiet=quiet,
    )


@app.command()
def simmap(
    tree: Path = TREE_OPTION,
    characters: Optional[Path] = STATES_FILE_OPTION,
    speciation: str = SPECIATION_OPTION,
    extinction: str = EXTINCTION_OPTION,
    rate_q: float = RATE_Q_OPTION,
    rho: float = RHO_OPTION,
    survival: bool = SURVIVAL_OPTION,
    process_age: Optional[float] = PROCESS_AGE_OPTION,
    psi: Optional[str] = PSI_OPTION,
    use_origin: bool = USE_ORIGIN_OPTION,
    samples: int = typer.Option(1, "--samples", "-n", help="Number of character maps to draw", min=1),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed for reproducibility"),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Output file, one SIMMAP Newick per line (default: stdout)"
    ),
    quiet: bool = QUIET_OPTION,
):
    """
    Draw stochastic character maps under an SSE process.

    Example:
        treelik simmap -t tree.nwk -s states.fasta --speciation 1,2 --extinction 0.1,0.1 -n 100
    """
    from .commands.likelihood import run_simmap

    run_simmap(
        tree=tree,
        characters=characters,
        speciation=speciation,
        extinction=extinction,
        rate_q=rate_q,
        rho=rho,
        survival=survival,
        process_age=process_age,
        psi=psi,
        use_origin=use_origin,
        samples=samples,
        seed=seed,
        output=output,
        quiet=quiet,
    )


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
