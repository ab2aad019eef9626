"""Command line interface for treelik."""
