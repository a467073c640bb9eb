"""
Round constants and MDS matrices for Poseidon over the BN254 scalar field.

The permutation consumes one table row per state width t:
  - a flat list of t * (R_F + R_P) round constants
  - a t x t MDS matrix, row-major
Entries are decimal strings. They are only turned into field elements when
a parameter set is built, so a table read from disk and a derived table go
through the same parsing and the same checks.

Derived rows are nothing-up-my-sleeve values:
  - round constant k is SHAKE256(domain || t || R_F || R_P || k || counter),
    read big-endian, masked to 254 bits, retried with the next counter until
    it falls below the modulus
  - the MDS matrix is the Cauchy matrix 1 / (x_i + y_j), x_i = i, y_j = t + j
"""
import json
import logging
import os
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from cryptography.hazmat.primitives import hashes

from scalar_field import Fr, MODULUS, MODULUS_BITS


log = logging.getLogger(__name__)

# Round schedule the tables are generated for
NUM_FULL_ROUNDS: int = 57
NUM_PARTIAL_ROUNDS: int = 8

# One to sixteen inputs plus the domain tag slot
SUPPORTED_WIDTHS = range(2, 18)

ROUND_CONSTANTS_DOMAIN: bytes = b"poseidon-bn254-round-constants"

# Points the default table at a JSON file instead of deriving it
CONSTANTS_FILE_ENV: str = "POSEIDON_CONSTANTS_FILE"

_FIELD_MASK: int = (1 << MODULUS_BITS) - 1


# SHAKE wrapper using cryptography
class SHAKE256:
    def __init__(self, outlen: int = 32):
        self.outlen = outlen
        self._init_digest()

    def _init_digest(self):
        self.digest = hashes.Hash(hashes.SHAKE256(self.outlen))

    def absorb(self, data: bytes) -> "SHAKE256":
        self.digest.update(data)
        return self

    def squeeze(self) -> bytes:
        output = self.digest.finalize()
        self._init_digest()  # Reset for next squeeze
        return output


def _be32(value: int) -> bytes:
    return value.to_bytes(4, 'big')


def sample_field_element(label: bytes) -> int:
    """Map a label to a field element by rejection sampling SHAKE256 output."""
    shake = SHAKE256(32)
    counter = 0
    while True:
        shake.absorb(label + _be32(counter))
        candidate = int.from_bytes(shake.squeeze(), 'big') & _FIELD_MASK
        if candidate < MODULUS:
            return candidate
        counter += 1


@dataclass(frozen=True)
class ConstantsRow:
    round_constants: List[str]
    mds: List[List[str]]


def derive_row(t: int, num_full: int = NUM_FULL_ROUNDS, num_partial: int = NUM_PARTIAL_ROUNDS) -> ConstantsRow:
    if t < 1:
        raise ValueError(f"state width must be positive, got {t}")
    seed = ROUND_CONSTANTS_DOMAIN + _be32(t) + _be32(num_full) + _be32(num_partial)
    round_constants = [
        str(sample_field_element(seed + _be32(k)))
        for k in range(t * (num_full + num_partial))
    ]
    # x_i + y_j = i + t + j is never zero and never repeats along a row or column
    mds = [[(Fr.one() / Fr(i + t + j)).to_decimal() for j in range(t)] for i in range(t)]
    return ConstantsRow(round_constants=round_constants, mds=mds)


class ConstantsTable:
    """Decimal-string constants indexed by state width.

    Rows are either supplied up front (e.g. loaded from JSON) or derived on
    first access for the widths listed in `derive_widths`.
    """

    def __init__(self, rows: Optional[Dict[int, ConstantsRow]] = None, derive_widths: Iterable[int] = ()):
        self._rows: Dict[int, ConstantsRow] = dict(rows or {})
        self._derive_widths = frozenset(derive_widths)

    @classmethod
    def derived(cls, widths: Iterable[int] = SUPPORTED_WIDTHS) -> "ConstantsTable":
        return cls(derive_widths=widths)

    @classmethod
    def load(cls, path: str) -> "ConstantsTable":
        """Read a table written by `dump`.

        The layout is {"<t>": {"round_constants": [...], "mds": [[...], ...]}}.
        Entries are not parsed here; bad entries surface when a parameter
        set is built from them.
        """
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise ValueError(f"{path}: expected an object keyed by state width")
        rows = {}
        for key, entry in raw.items():
            try:
                round_constants = entry['round_constants']
                mds = entry['mds']
                width = int(key)
            except (KeyError, TypeError, ValueError) as exc:
                raise ValueError(f"{path}: malformed row for width {key!r}") from exc
            # A bare string would otherwise split into one-character entries
            if not isinstance(round_constants, list) or not isinstance(mds, list) \
                    or not all(isinstance(r, list) for r in mds):
                raise ValueError(f"{path}: malformed row for width {key!r}")
            rows[width] = ConstantsRow(round_constants=list(round_constants), mds=[list(r) for r in mds])
        log.debug("loaded constants for widths %s from %s", sorted(rows), path)
        return cls(rows=rows)

    def dump(self, path: str, widths: Optional[Iterable[int]] = None):
        widths = self.widths() if widths is None else list(widths)
        raw = {}
        for t in widths:
            row = self.row(t)
            raw[str(t)] = {'round_constants': row.round_constants, 'mds': row.mds}
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(raw, f, indent=1)
        log.debug("wrote constants for widths %s to %s", list(widths), path)

    def widths(self) -> List[int]:
        return sorted(set(self._rows) | self._derive_widths)

    def __contains__(self, t: int) -> bool:
        return t in self._rows or t in self._derive_widths

    def row(self, t: int) -> ConstantsRow:
        """Return the row for width t, raising KeyError when there is none."""
        row = self._rows.get(t)
        if row is None:
            if t not in self._derive_widths:
                raise KeyError(t)
            row = derive_row(t)
            self._rows[t] = row
        return row


_default_table: Optional[ConstantsTable] = None
_default_table_lock = threading.Lock()


def default_table() -> ConstantsTable:
    """Return the process-wide table, creating it once on first use."""
    global _default_table
    table = _default_table
    if table is not None:
        return table
    with _default_table_lock:
        if _default_table is None:
            path = os.environ.get(CONSTANTS_FILE_ENV)
            _default_table = ConstantsTable.load(path) if path else ConstantsTable.derived()
        return _default_table
