"""
Pytest tests for the BN254 scalar field wrapper in scalar_field.py.
"""
import pytest

from scalar_field import Fr, MODULUS


def test_modulus_is_bn254_scalar_field():
    assert MODULUS == 21888242871839275222246405745257275088548364400416034343698204186575808495617


def test_arithmetic_wraps_around_modulus():
    assert Fr(MODULUS - 1) + Fr(2) == Fr(1)
    assert int(Fr(MODULUS + 5)) == 5
    assert Fr(-1) == Fr(MODULUS - 1)


def test_square():
    assert Fr(3).square() == Fr(9)
    assert Fr(-2).square() == Fr(4)
    assert Fr.zero().square() == Fr.zero()


def test_from_decimal_parses_canonical_values():
    assert Fr.from_decimal("0") == Fr.zero()
    assert Fr.from_decimal("42") == Fr(42)
    assert Fr.from_decimal(str(MODULUS - 1)) == Fr(-1)


def test_to_decimal_matches_from_decimal():
    x = Fr(123456789) * Fr(987654321)
    assert Fr.from_decimal(x.to_decimal()) == x


@pytest.mark.parametrize("text", [
    "",
    "-1",
    " 1",
    "1.0",
    "0x10",
    "12a",
    "１",  # full-width digit one
    str(MODULUS),
    str(MODULUS + 1),
])
def test_from_decimal_rejects_non_canonical_text(text):
    with pytest.raises(ValueError):
        Fr.from_decimal(text)


def test_from_decimal_rejects_non_strings():
    with pytest.raises(ValueError):
        Fr.from_decimal(12)
