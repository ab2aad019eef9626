"""Implementations behind the treelik subcommands."""
