"""
Exception types raised by treelik.

Structurally invalid trees (e.g. children older than their parents) are not
errors: the engines report them as a log-likelihood of ``-inf``. The
exceptions below are reserved for programmer and configuration errors.
"""


class TreelikError(Exception):
    """Base class for treelik errors."""


class TaxonMismatchError(TreelikError, ValueError):
    """The tree tips and the character data describe different taxa."""

    def __init__(self, in_tree_only: set, in_data_only: set):
        self.in_tree_only = set(in_tree_only)
        self.in_data_only = set(in_data_only)
        super().__init__(
            "Tree and character data have different taxa. "
            f"In tree but not data: {sorted(self.in_tree_only)}. "
            f"In data but not tree: {sorted(self.in_data_only)}"
        )


class ParameterError(TreelikError, ValueError):
    """Model parameters are missing or inconsistent."""


class SimulationError(TreelikError, RuntimeError):
    """A simulation could not produce a valid outcome."""


def check_taxa(tree_names, data_names) -> None:
    """Raise :class:`TaxonMismatchError` unless both name sets agree."""
    tree_set = set(tree_names)
    data_set = set(data_names)
    if tree_set != data_set:
        raise TaxonMismatchError(tree_set - data_set, data_set - tree_set)
