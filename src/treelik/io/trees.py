"""
Newick parsing and writing for time trees.
"""

import re
from pathlib import Path
from typing import Optional

from ..core.tree import TimeTree, TreeNode

# ages closer to the present than this are treated as extant
AGE_EPSILON = 1e-10


def parse_newick(newick_string: str) -> TimeTree:
    """
    Parse a Newick format tree string into a :class:`TimeTree`.

    Node ages are derived from root-to-node path lengths: the tip furthest
    from the root sits at age 0. Tips with a zero-length branch and a
    positive age are flagged as sampled ancestors.

    Parameters
    ----------
    newick_string : str
        Newick format tree

    Returns
    -------
    TimeTree
        Parsed tree

    Examples
    --------
    >>> tree = parse_newick("((A:1,B:1):1,C:2);")
    >>> tree.root.age
    2.0
    """
    # Remove // comments and [...] annotations (RevBayes/BEAST style)
    newick = re.sub(r'//.*', '', newick_string)
    newick = re.sub(r'\[[^\]]*\]', '', newick)
    newick = newick.strip()

    if ';' not in newick:
        raise ValueError("Invalid Newick format: missing semicolon")

    tree_line = newick[:newick.index(';')]
    tree_line = tree_line.replace('\n', '').replace('\t', '').replace('\r', '')
    if not tree_line.strip():
        raise ValueError("Invalid Newick format: no tree found")

    lengths: dict[int, float] = {}

    def skip_whitespace(s: str, pos: int) -> int:
        while pos < len(s) and s[pos] in ' \t\n\r':
            pos += 1
        return pos

    def parse_node(s: str, start: int, parent: Optional[TreeNode] = None) -> tuple[TreeNode, int]:
        node = TreeNode(index=-1, parent=parent)
        pos = skip_whitespace(s, start)

        if pos < len(s) and s[pos] == '(':
            pos = skip_whitespace(s, pos + 1)
            while True:
                child, pos = parse_node(s, pos, node)
                node.children.append(child)
                pos = skip_whitespace(s, pos)

                if pos < len(s) and s[pos] == ',':
                    pos = skip_whitespace(s, pos + 1)
                    continue
                elif pos < len(s) and s[pos] == ')':
                    pos = skip_whitespace(s, pos + 1)
                    break
                else:
                    raise ValueError(f"Expected ',' or ')' at position {pos}")

        # Quoted or plain name
        if pos < len(s) and s[pos] == "'":
            end = s.index("'", pos + 1)
            node.name = s[pos + 1:end]
            pos = end + 1
        else:
            name_start = pos
            while pos < len(s) and s[pos] not in ',:(); \t\n\r':
                pos += 1
            if pos > name_start:
                node.name = s[name_start:pos]

        pos = skip_whitespace(s, pos)

        length = 0.0
        if pos < len(s) and s[pos] == ':':
            pos = skip_whitespace(s, pos + 1)
            length_start = pos
            while pos < len(s) and s[pos] not in ',(); \t\n\r':
                pos += 1
            try:
                length = float(s[length_start:pos])
            except ValueError:
                raise ValueError(f"Invalid branch length: {s[length_start:pos]}")
        lengths[id(node)] = length

        return node, pos

    root, pos = parse_node(tree_line, 0, None)
    if skip_whitespace(tree_line, pos) != len(tree_line):
        raise ValueError(f"Unexpected characters after tree at position {pos}")

    for node in _walk(root):
        if len(node.children) not in (0, 2):
            raise ValueError(
                f"Only bifurcating trees are supported; node {node.name or '?'} "
                f"has {len(node.children)} children"
            )

    # depth from the root, then ages relative to the deepest tip
    depth = {id(root): 0.0}
    for node in _walk(root):
        for child in node.children:
            depth[id(child)] = depth[id(node)] + lengths[id(child)]
    height = max(depth[id(node)] for node in _walk(root) if not node.children)

    for node in _walk(root):
        age = height - depth[id(node)]
        node.age = 0.0 if abs(age) < AGE_EPSILON else age

    for node in _walk(root):
        if not node.children and node.parent is not None:
            if lengths[id(node)] == 0.0 and node.age > 0.0:
                node.is_sampled_ancestor = True

    return TimeTree(root)


def read_newick(filepath: Path | str) -> TimeTree:
    """Read the first tree from a Newick file."""
    with open(filepath, 'r') as f:
        return parse_newick(f.read())


def _walk(root: TreeNode):
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(node.children)


def _format_length(value: float, digits: int) -> str:
    return f"{value:.{digits}g}"


def write_newick(tree: TimeTree, digits: int = 6) -> str:
    """
    Write a tree in Newick format with branch lengths.

    Parameters
    ----------
    tree : TimeTree
        Tree to serialise
    digits : int
        Significant digits for branch lengths

    Returns
    -------
    str
        Newick string terminated with a semicolon
    """

    def render(node: TreeNode) -> str:
        text = ""
        if node.children:
            text = "(" + ",".join(render(child) for child in node.children) + ")"
        if node.name:
            text += node.name
        if node.parent is not None:
            text += ":" + _format_length(node.branch_length, digits)
        return text

    return render(tree.root) + ";"


def write_simmap_newick(tree: TimeTree, histories: list[str]) -> str:
    """
    Write a SIMMAP (phytools compatible) Newick string.

    Parameters
    ----------
    tree : TimeTree
        Tree the histories were sampled on
    histories : list[str]
        Per-node character history strings ``{state,duration:...}`` indexed
        by node index

    Returns
    -------
    str
        Newick string whose branch lengths are replaced by the histories
    """
    if len(histories) != tree.n_nodes:
        raise ValueError(
            f"Expected {tree.n_nodes} character histories, got {len(histories)}"
        )

    def render(node: TreeNode) -> str:
        text = ""
        if node.children:
            text = "(" + ",".join(render(child) for child in node.children) + ")"
        if node.name and node.is_tip:
            text += node.name
        if node.parent is not None:
            text += ":" + histories[node.index]
        return text

    return render(tree.root) + ";"
