"""
Input/output for trees and discrete character data.
"""

from .characters import Alphabet, CharacterMatrix
from .trees import parse_newick, read_newick, write_newick, write_simmap_newick

__all__ = [
    "Alphabet",
    "CharacterMatrix",
    "parse_newick",
    "read_newick",
    "write_newick",
    "write_simmap_newick",
]
