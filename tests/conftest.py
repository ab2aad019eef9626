"""
Pytest configuration and shared fixtures.
"""

import numpy as np
import pytest
from pathlib import Path
from typer.testing import CliRunner

from treelik.config import LikelihoodSettings
from treelik.core.tree import TimeTree, TreeNode
from treelik.io.characters import Alphabet, CharacterMatrix
from treelik.models.sse import SSEParameters


THREE_TIP_NEWICK = "((A:1,B:1):1,C:2);"
FIVE_TIP_NEWICK = "(((A:0.5,B:0.5):1.0,C:1.5):1.5,(D:2.0,E:2.0):1.0);"


@pytest.fixture
def cli_runner():
    """CLI test runner for Typer apps."""
    return CliRunner()


@pytest.fixture
def three_tip_tree():
    """Ultrametric tree of age 2: ((A,B),C)."""
    return TimeTree.from_newick(THREE_TIP_NEWICK)


@pytest.fixture
def five_tip_tree():
    """Ultrametric tree of age 3 with five tips."""
    return TimeTree.from_newick(FIVE_TIP_NEWICK)


def build_caterpillar(n_tips, step=0.1, ultrametric=True):
    """
    Ladder tree (((T0,T1),T2),...) with interior nodes ``step`` apart.

    Without ``ultrametric`` every branch has length ``step``, so the tips
    sit at increasing ages up the ladder.
    """
    node = TreeNode(index=-1, name="T0")
    for i in range(1, n_tips):
        age = i * step
        tip = TreeNode(index=-1, name=f"T{i}", age=0.0 if ultrametric else age - step)
        parent = TreeNode(index=-1, children=[node, tip], age=age)
        node.parent = parent
        tip.parent = parent
        node = parent
    return TimeTree(node)


@pytest.fixture
def caterpillar():
    """Factory for ladder trees too deep for recursive traversals."""
    return build_caterpillar


@pytest.fixture
def caterpillar_tree():
    """Ultrametric ladder with 1500 tips."""
    return build_caterpillar(1500)


@pytest.fixture
def binary_alphabet():
    return Alphabet.standard(2)


@pytest.fixture
def three_tip_states(binary_alphabet):
    """One binary character: A=0, B=0, C=1."""
    return CharacterMatrix.from_strings({"A": "0", "B": "0", "C": "1"}, binary_alphabet)


@pytest.fixture
def five_tip_matrix(binary_alphabet):
    """Binary matrix with repeated columns, an ambiguous cell and missing data."""
    return CharacterMatrix.from_strings(
        {
            "A": "0011{01}0",
            "B": "001100",
            "C": "0110?0",
            "D": "110011",
            "E": "1-0011",
        },
        binary_alphabet,
    )


@pytest.fixture
def five_tip_states(binary_alphabet):
    """One binary character on the five-tip tree."""
    return CharacterMatrix.from_strings(
        {"A": "0", "B": "0", "C": "1", "D": "1", "E": "0"}, binary_alphabet
    )


@pytest.fixture
def bisse_params():
    """BiSSE parameters for a process of age 3."""
    return SSEParameters(
        extinction_rates=np.array([0.1, 0.3]),
        speciation_rates=np.array([0.8, 1.5]),
        process_age=3.0,
        event_rate=0.4,
    )


@pytest.fixture
def fast_settings():
    """Coarser time slicing for sampling tests."""
    return LikelihoodSettings(num_time_slices=60)


@pytest.fixture
def tree_file(tmp_path):
    """Five-tip tree written to a Newick file."""
    path = tmp_path / "tree.nwk"
    path.write_text(FIVE_TIP_NEWICK + "\n")
    return path


@pytest.fixture
def fasta_file(tmp_path):
    """Binary characters of the five-tip tree in FASTA format."""
    path = tmp_path / "characters.fasta"
    path.write_text(">A\n0011\n>B\n0011\n>C\n0110\n>D\n1100\n>E\n1000\n")
    return path


@pytest.fixture
def states_file(tmp_path):
    """One binary character of the five-tip tree in FASTA format."""
    path = tmp_path / "states.fasta"
    path.write_text(">A\n0\n>B\n0\n>C\n1\n>D\n1\n>E\n0\n")
    return path
