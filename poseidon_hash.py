"""
Poseidon permutation and fixed-arity hash over the BN254 scalar field.

A hash of n inputs runs one permutation of width t = n + 1:

  state = [domain_tag, x_0, ..., x_{n-1}]
  for each round i in 0..R-1:
      state[k] += round_constants[i*t + k]       (all k)
      state[k] = state[k]^5                       (all k on full rounds, k = 0 otherwise)
      state = mds_matrix * state
  digest = state[1]

Full rounds sit at both ends of the schedule and partial rounds form the band
num_partial//2 <= i <= num_partial//2 + num_full in between.

Usage:
  digest = poseidon_hash([1, 2])
  node = poseidon_hash([left, right], HashMode.MERKLE_TREE)
"""
import enum
import logging
import sys
import threading
import weakref
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

from round_constants import NUM_FULL_ROUNDS, NUM_PARTIAL_ROUNDS, ConstantsTable, default_table
from scalar_field import Fr


log = logging.getLogger(__name__)

# S-box exponent, fixed for every width
ALPHA: int = 5


class PoseidonError(ValueError):
    pass


class UnsupportedWidth(PoseidonError):
    def __init__(self, width: int):
        super().__init__(f"no Poseidon constants for state width {width}")
        self.width = width


class MalformedConstant(PoseidonError):
    pass


class HashMode(enum.Enum):
    MERKLE_TREE = 'merkle_tree'
    CONST_INPUT_LEN = 'const_input_len'


@dataclass(frozen=True)
class PermutationParams:
    t: int
    alpha: int
    num_full_rounds: int
    num_partial_rounds: int
    mds_matrix: Tuple[Tuple[Fr, ...], ...]
    round_constants: Tuple[Fr, ...]

    def __post_init__(self):
        if self.t < 1:
            raise MalformedConstant(f"state width must be at least 1, got {self.t}")
        if len(self.mds_matrix) != self.t or any(len(row) != self.t for row in self.mds_matrix):
            raise MalformedConstant(f"MDS matrix must be {self.t}x{self.t}")
        expected = self.t * self.num_rounds
        if len(self.round_constants) != expected:
            raise MalformedConstant(
                f"expected {expected} round constants for width {self.t}, got {len(self.round_constants)}"
            )

    @property
    def num_rounds(self) -> int:
        return self.num_full_rounds + self.num_partial_rounds


def _parse(text: str, where: str) -> Fr:
    try:
        return Fr.from_decimal(text)
    except ValueError as exc:
        raise MalformedConstant(f"{where}: {exc}") from exc


def load_params(table: ConstantsTable, width: int) -> PermutationParams:
    """Build the parameter set for one width from its decimal-string row."""
    try:
        row = table.row(width)
    except KeyError:
        raise UnsupportedWidth(width) from None

    num_constants = width * (NUM_FULL_ROUNDS + NUM_PARTIAL_ROUNDS)
    if len(row.round_constants) < num_constants:
        raise MalformedConstant(
            f"width {width}: table holds {len(row.round_constants)} round constants, need {num_constants}"
        )
    if len(row.mds) < width or any(len(r) < width for r in row.mds[:width]):
        raise MalformedConstant(f"width {width}: MDS matrix smaller than {width}x{width}")

    round_constants = tuple(
        _parse(c, f"round constant {k} of width {width}")
        for k, c in enumerate(row.round_constants[:num_constants])
    )
    mds_matrix = tuple(
        tuple(_parse(row.mds[i][j], f"MDS entry ({i}, {j}) of width {width}") for j in range(width))
        for i in range(width)
    )
    return PermutationParams(
        t=width,
        alpha=ALPHA,
        num_full_rounds=NUM_FULL_ROUNDS,
        num_partial_rounds=NUM_PARTIAL_ROUNDS,
        mds_matrix=mds_matrix,
        round_constants=round_constants,
    )


# Weakly keyed by table, then by width
_params_cache: "weakref.WeakKeyDictionary[ConstantsTable, Dict[int, PermutationParams]]" = weakref.WeakKeyDictionary()
_params_lock = threading.Lock()


def params_for(width: int, table: Optional[ConstantsTable] = None) -> PermutationParams:
    """Return the cached parameter set for `width`, building it on first use.

    Construction runs under a lock so that a width is parsed at most once,
    even when several threads ask for it at the same time. Cached entries
    are held per table and dropped once the table itself is released.
    """
    if table is None:
        table = default_table()
    with _params_lock:
        by_width = _params_cache.setdefault(table, {})
        params = by_width.get(width)
        if params is None:
            params = load_params(table, width)
            by_width[width] = params
            log.debug("built Poseidon parameters for width %d", width)
    return params


def clear_params_cache():
    with _params_lock:
        _params_cache.clear()


def sbox(x: Fr) -> Fr:
    # x^5 as two squarings and a multiply
    return x.square().square() * x


def mix(state: Sequence[Fr], mds_matrix: Sequence[Sequence[Fr]]) -> List[Fr]:
    """Dense matrix-vector product mds_matrix * state."""
    new_state = []
    for row in mds_matrix:
        acc = Fr.zero()
        for m, s in zip(row, state):
            acc += m * s
        new_state.append(acc)
    return new_state


def is_full_round(round_idx: int, num_full_rounds: int, num_partial_rounds: int) -> bool:
    half = num_partial_rounds // 2
    return round_idx < half or round_idx > half + num_full_rounds


class PoseidonPermutation:
    """Owns one state vector and runs the round schedule over it in place."""

    def __init__(self, state: Sequence[Fr], params: PermutationParams):
        if len(state) != params.t:
            raise ValueError(f"state has {len(state)} elements, parameters are for width {params.t}")
        self.params = params
        self.state: List[Fr] = [Fr(x) for x in state]
        self.rounds_applied = 0

    def permute(self) -> List[Fr]:
        for round_idx in range(self.params.num_rounds):
            self.add_round_constants(round_idx)
            self.apply_sbox(round_idx)
            self.apply_mds()
            self.rounds_applied += 1
        return self.state

    def add_round_constants(self, round_idx: int):
        t = self.params.t
        constants = self.params.round_constants
        for k in range(t):
            self.state[k] += constants[round_idx * t + k]

    def apply_sbox(self, round_idx: int):
        if is_full_round(round_idx, self.params.num_full_rounds, self.params.num_partial_rounds):
            for k in range(self.params.t):
                self.state[k] = sbox(self.state[k])
        else:
            self.state[0] = sbox(self.state[0])

    def apply_mds(self):
        self.state = mix(self.state, self.params.mds_matrix)


def domain_tag(mode: HashMode, num_inputs: int) -> int:
    if mode is HashMode.MERKLE_TREE:
        return 2 ** num_inputs + 1
    if mode is HashMode.CONST_INPUT_LEN:
        return 2 ** 64 * num_inputs
    raise ValueError(f"unknown hash mode: {mode!r}")


def poseidon_hash(
    inputs: Sequence[Union[Fr, int]],
    mode: HashMode = HashMode.CONST_INPUT_LEN,
    table: Optional[ConstantsTable] = None,
) -> Fr:
    """Hash a fixed-length sequence of field elements to one field element.

    Raises UnsupportedWidth when the table has no row for len(inputs) + 1,
    and MalformedConstant when that row cannot be parsed.
    """
    params = params_for(len(inputs) + 1, table)
    state = [Fr(domain_tag(mode, len(inputs)))] + [Fr(x) for x in inputs]
    return PoseidonPermutation(state, params).permute()[1]


# Example usage
if __name__ == '__main__':
    args = sys.argv[1:]
    mode = HashMode.CONST_INPUT_LEN
    if args and args[0] == '--merkle':
        mode = HashMode.MERKLE_TREE
        args = args[1:]
    values = [int(a) for a in args] or [1, 2]

    print("Inputs:", values)
    print("Mode:", mode.value)
    print("Digest:", poseidon_hash(values, mode).to_decimal())
