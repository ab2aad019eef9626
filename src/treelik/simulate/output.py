"""
Writers for simulated trees, tip states and character matrices.
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from ..core.tree import TimeTree
from ..io.characters import CharacterMatrix


def _wrap(row: str, width: int) -> Iterable[str]:
    return (row[i:i + width] for i in range(0, len(row), width))


class SimulationOutput:
    """
    File writers used by the ``simulate`` commands.

    Every writer takes the object to write and a destination path and
    overwrites the destination unless told otherwise.
    """

    @staticmethod
    def write_fasta(
        characters: CharacterMatrix,
        output_path: Path,
        replicate_id: Optional[int] = None,
        line_width: int = 60,
    ):
        """
        Write a character matrix as FASTA.

        Parameters
        ----------
        characters : CharacterMatrix
            Simulated tip characters
        output_path : Path
            Destination file
        replicate_id : int, optional
            Appended to every header as ``replicate=<id>``
        line_width : int
            Symbols per sequence line
        """
        suffix = "" if replicate_id is None else f" replicate={replicate_id}"
        lines = []
        for name, row in characters.to_strings().items():
            lines.append(f">{name}{suffix}")
            lines.extend(_wrap(row, line_width))
        Path(output_path).write_text("\n".join(lines) + "\n")

    @staticmethod
    def write_newick(tree: TimeTree, output_path: Path, append: bool = False):
        """Write a tree as one Newick line, optionally appending to the file."""
        with open(Path(output_path), 'a' if append else 'w') as f:
            f.write(tree.to_newick() + '\n')

    @staticmethod
    def write_tip_states(tip_states: Dict[str, int], output_path: Path):
        """
        Write the state of every tip as a two-column table.

        The first line is the header ``taxon<TAB>state``, followed by one
        ``name<TAB>state`` line per tip.
        """
        rows = ["taxon\tstate"] + [f"{name}\t{state}" for name, state in tip_states.items()]
        Path(output_path).write_text("\n".join(rows) + "\n")

    @staticmethod
    def write_parameters(params: Dict[str, Any], output_path: Path, indent: int = 2):
        """Dump the simulator parameters (``get_parameters()``) as JSON."""
        with open(Path(output_path), 'w') as f:
            json.dump(params, f, indent=indent)
