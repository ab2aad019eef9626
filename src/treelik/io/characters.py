"""
Discrete character data: alphabets, parsing and the character matrix.

Each observation is stored as a boolean mask over the states of the
alphabet together with gap and missing flags. Gaps and missing data are
compatible with every state.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np

# Symbols for standard (morphological / "natural number") characters
STANDARD_SYMBOLS = "0123456789ABCDEFGHIJKLMNOPQRSTUV"

# IUPAC nucleotide ambiguity codes
DNA_AMBIGUITY = {
    'R': 'AG', 'Y': 'CT', 'S': 'CG', 'W': 'AT', 'K': 'GT', 'M': 'AC',
    'B': 'CGT', 'D': 'AGT', 'H': 'ACT', 'V': 'ACG', 'N': 'ACGT',
}


@dataclass(frozen=True)
class Alphabet:
    """
    State alphabet of a discrete character.

    Attributes
    ----------
    symbols : str
        One symbol per state, in state-index order
    ambiguity : dict[str, str]
        Extra single-symbol codes that stand for a set of states
    gap_symbols : str
        Symbols read as a gap
    missing_symbols : str
        Symbols read as missing data
    """

    symbols: str
    ambiguity: dict[str, str] = field(default_factory=dict)
    gap_symbols: str = "-"
    missing_symbols: str = "?"

    @property
    def n_states(self) -> int:
        return len(self.symbols)

    @classmethod
    def standard(cls, n_states: int) -> "Alphabet":
        """Alphabet ``0, 1, ..., n_states-1``."""
        if not 1 <= n_states <= len(STANDARD_SYMBOLS):
            raise ValueError(
                f"Standard alphabets support 1-{len(STANDARD_SYMBOLS)} states, got {n_states}"
            )
        return cls(symbols=STANDARD_SYMBOLS[:n_states])

    @classmethod
    def dna(cls) -> "Alphabet":
        return cls(symbols="ACGT", ambiguity=dict(DNA_AMBIGUITY), missing_symbols="?")

    def encode(self, token: str) -> tuple[np.ndarray, bool, bool]:
        """
        Encode one observation.

        Parameters
        ----------
        token : str
            A single symbol, an ambiguity code, or a set such as ``{01}``
            or ``(01)``

        Returns
        -------
        mask : np.ndarray of bool, shape (n_states,)
            Compatible states
        is_gap : bool
        is_missing : bool
        """
        mask = np.zeros(self.n_states, dtype=bool)

        if token in self.gap_symbols:
            mask[:] = True
            return mask, True, False
        if token in self.missing_symbols:
            mask[:] = True
            return mask, False, True

        if len(token) > 1 and token[0] in "{(" and token[-1] in "})":
            members = token[1:-1].replace(",", "").replace(" ", "")
        elif token.upper() in self.ambiguity:
            members = self.ambiguity[token.upper()]
        else:
            members = token

        for symbol in members:
            state = self.symbols.find(symbol)
            if state < 0:
                state = self.symbols.find(symbol.upper())
            if state < 0:
                raise ValueError(f"Unknown character state {symbol!r} for alphabet {self.symbols!r}")
            mask[state] = True
        return mask, False, False

    def tokenize(self, row: str) -> list[str]:
        """Split a row of observations into per-site tokens."""
        tokens = []
        i = 0
        row = row.replace(" ", "")
        while i < len(row):
            if row[i] in "{(":
                close = "}" if row[i] == "{" else ")"
                end = row.find(close, i)
                if end < 0:
                    raise ValueError(f"Unterminated state set in {row!r}")
                tokens.append(row[i:end + 1])
                i = end + 1
            else:
                tokens.append(row[i])
                i += 1
        return tokens

    def decode(self, mask: np.ndarray, is_gap: bool = False, is_missing: bool = False) -> str:
        """Inverse of :meth:`encode`."""
        if is_gap:
            return self.gap_symbols[0]
        if is_missing:
            return self.missing_symbols[0]
        states = np.flatnonzero(mask)
        if len(states) == 1:
            return self.symbols[states[0]]
        for code, members in self.ambiguity.items():
            if sorted(members) == sorted(self.symbols[s] for s in states):
                return code
        return "{" + "".join(self.symbols[s] for s in states) + "}"


@dataclass
class CharacterMatrix:
    """
    Matrix of discrete characters, one row per taxon.

    Attributes
    ----------
    names : list[str]
        Taxon names
    masks : ndarray of bool, shape (n_taxa, n_sites, n_states)
        Compatible states per observation
    gaps : ndarray of bool, shape (n_taxa, n_sites)
        Gap flags
    missing : ndarray of bool, shape (n_taxa, n_sites)
        Missing-data flags
    alphabet : Alphabet
        State alphabet
    """

    names: list[str]
    masks: np.ndarray
    gaps: np.ndarray
    missing: np.ndarray
    alphabet: Alphabet

    def __post_init__(self):
        self.masks = np.asarray(self.masks, dtype=bool)
        self.gaps = np.asarray(self.gaps, dtype=bool)
        self.missing = np.asarray(self.missing, dtype=bool)

        if self.masks.ndim != 3:
            raise ValueError(f"masks must be 3-dimensional, got shape {self.masks.shape}")
        n_taxa, n_sites, n_states = self.masks.shape
        if len(self.names) != n_taxa:
            raise ValueError(f"Got {len(self.names)} names for {n_taxa} rows")
        if n_states != self.alphabet.n_states:
            raise ValueError(
                f"masks have {n_states} states but the alphabet has {self.alphabet.n_states}"
            )
        if len(set(self.names)) != len(self.names):
            raise ValueError("Duplicate taxon names in character matrix")
        self._row = {name: i for i, name in enumerate(self.names)}

    @property
    def n_taxa(self) -> int:
        return self.masks.shape[0]

    @property
    def n_sites(self) -> int:
        return self.masks.shape[1]

    @property
    def n_states(self) -> int:
        return self.masks.shape[2]

    def taxon_index(self, name: str) -> int:
        try:
            return self._row[name]
        except KeyError:
            raise KeyError(f"Taxon {name!r} is not in the character matrix") from None

    def state_mask(self, name: str, site: int = 0) -> np.ndarray:
        return self.masks[self.taxon_index(name), site]

    def is_gap(self, name: str, site: int = 0) -> bool:
        return bool(self.gaps[self.taxon_index(name), site])

    def is_missing(self, name: str, site: int = 0) -> bool:
        return bool(self.missing[self.taxon_index(name), site])

    def is_ambiguous(self, name: str, site: int = 0) -> bool:
        """More (or fewer) than exactly one compatible state."""
        return int(self.state_mask(name, site).sum()) != 1

    def state_index(self, name: str, site: int = 0) -> int:
        """Observed state of an unambiguous observation."""
        mask = self.state_mask(name, site)
        if int(mask.sum()) != 1:
            raise ValueError(f"Observation of {name!r} at site {site} is ambiguous")
        return int(np.flatnonzero(mask)[0])

    def unknown(self, name: str, site: int = 0) -> bool:
        """Gap or missing."""
        row = self.taxon_index(name)
        return bool(self.gaps[row, site] or self.missing[row, site])

    def select(self, names: list[str]) -> "CharacterMatrix":
        """Rows in the given order."""
        rows = [self.taxon_index(name) for name in names]
        return CharacterMatrix(
            names=list(names),
            masks=self.masks[rows],
            gaps=self.gaps[rows],
            missing=self.missing[rows],
            alphabet=self.alphabet,
        )

    def to_strings(self) -> dict[str, str]:
        result = {}
        for i, name in enumerate(self.names):
            result[name] = "".join(
                self.alphabet.decode(self.masks[i, j], self.gaps[i, j], self.missing[i, j])
                for j in range(self.n_sites)
            )
        return result

    @classmethod
    def from_strings(cls, rows: dict[str, str], alphabet: Alphabet) -> "CharacterMatrix":
        """
        Build a matrix from one string per taxon.

        Parameters
        ----------
        rows : dict[str, str]
            Mapping from taxon name to its observations
        alphabet : Alphabet
            State alphabet used to encode observations

        Returns
        -------
        CharacterMatrix
        """
        names = list(rows)
        tokenized = [alphabet.tokenize(rows[name]) for name in names]

        lengths = {len(tokens) for tokens in tokenized}
        if len(lengths) > 1:
            raise ValueError(f"Rows have different numbers of sites: {sorted(lengths)}")
        n_sites = lengths.pop() if lengths else 0

        masks = np.zeros((len(names), n_sites, alphabet.n_states), dtype=bool)
        gaps = np.zeros((len(names), n_sites), dtype=bool)
        missing = np.zeros((len(names), n_sites), dtype=bool)
        for i, tokens in enumerate(tokenized):
            for j, token in enumerate(tokens):
                masks[i, j], gaps[i, j], missing[i, j] = alphabet.encode(token)

        return cls(names=names, masks=masks, gaps=gaps, missing=missing, alphabet=alphabet)

    @classmethod
    def from_states(
        cls, names: list[str], states: np.ndarray, alphabet: Alphabet
    ) -> "CharacterMatrix":
        """
        Build an unambiguous matrix from integer states.

        Parameters
        ----------
        names : list[str]
            Taxon names
        states : ndarray of int, shape (n_taxa, n_sites)
            State indices
        alphabet : Alphabet
        """
        states = np.asarray(states, dtype=int)
        if states.ndim == 1:
            states = states[:, np.newaxis]
        masks = np.zeros(states.shape + (alphabet.n_states,), dtype=bool)
        np.put_along_axis(masks, states[..., np.newaxis], True, axis=2)
        empty = np.zeros(states.shape, dtype=bool)
        return cls(names=list(names), masks=masks, gaps=empty, missing=empty.copy(), alphabet=alphabet)

    @classmethod
    def missing_data(cls, names: list[str], alphabet: Alphabet, n_sites: int = 1) -> "CharacterMatrix":
        """Matrix where every observation is missing."""
        masks = np.ones((len(names), n_sites, alphabet.n_states), dtype=bool)
        gaps = np.zeros((len(names), n_sites), dtype=bool)
        missing = np.ones((len(names), n_sites), dtype=bool)
        return cls(names=list(names), masks=masks, gaps=gaps, missing=missing, alphabet=alphabet)

    @classmethod
    def from_fasta(cls, filepath: Path | str, alphabet: Optional[Alphabet] = None) -> "CharacterMatrix":
        """
        Parse a FASTA format character matrix.

        Parameters
        ----------
        filepath : Path or str
            Path to FASTA format file
        alphabet : Alphabet, optional
            State alphabet (default: standard alphabet sized to the
            largest symbol found)

        Returns
        -------
        CharacterMatrix
        """
        filepath = Path(filepath)

        rows: dict[str, str] = {}
        with open(filepath, 'r') as f:
            current_name = None
            current_seq: list[str] = []

            for line in f:
                line = line.strip()
                if not line:
                    continue

                if line.startswith('>'):
                    if current_name is not None:
                        rows[current_name] = ''.join(current_seq)
                    current_name = line[1:].split()[0]
                    current_seq = []
                else:
                    current_seq.append(line)

            if current_name is not None:
                rows[current_name] = ''.join(current_seq)

        if not rows:
            raise ValueError(f"No sequences found in {filepath}")

        if alphabet is None:
            alphabet = infer_standard_alphabet(rows.values())
        return cls.from_strings(rows, alphabet)

    @classmethod
    def from_phylip(cls, filepath: Path | str, alphabet: Optional[Alphabet] = None) -> "CharacterMatrix":
        """
        Parse a relaxed sequential PHYLIP file (``name  data`` per line).

        The first line contains the number of taxa and characters.
        """
        filepath = Path(filepath)

        with open(filepath, 'r') as f:
            lines = [line.strip() for line in f if line.strip()]

        header = lines[0].split()
        n_taxa = int(header[0])
        n_chars = int(header[1])

        rows: dict[str, str] = {}
        for line in lines[1:1 + n_taxa]:
            parts = line.split(None, 1)
            if len(parts) != 2:
                raise ValueError(f"Malformed PHYLIP line: {line!r}")
            rows[parts[0]] = parts[1].replace(" ", "")

        if len(rows) != n_taxa:
            raise ValueError(f"Expected {n_taxa} sequences, found {len(rows)}")

        if alphabet is None:
            alphabet = infer_standard_alphabet(rows.values())
        matrix = cls.from_strings(rows, alphabet)
        if matrix.n_sites != n_chars:
            raise ValueError(f"Expected {n_chars} characters, found {matrix.n_sites}")
        return matrix


def infer_standard_alphabet(rows) -> Alphabet:
    """Smallest standard alphabet covering every symbol in ``rows``."""
    highest = 1
    for row in rows:
        for symbol in row:
            position = STANDARD_SYMBOLS.find(symbol.upper())
            if position >= 0:
                highest = max(highest, position + 1)
    return Alphabet.standard(max(highest, 2))
