"""
Scalar field of the BN254 (alt_bn128) curve.

Poseidon works over this field: every state slot, round constant and MDS
entry is an `Fr`. Arithmetic comes from py_ecc's generic prime-field element;
this module only pins the modulus and adds the two helpers the permutation
needs (squaring and strict parsing of decimal constants).
"""
from py_ecc.bn128 import curve_order
from py_ecc.fields.field_elements import FQ


# r = 21888242871839275222246405745257275088548364400416034343698204186575808495617
MODULUS: int = curve_order

# Values are reduced modulo r, so 254 bits hold any canonical element
MODULUS_BITS: int = MODULUS.bit_length()


class Fr(FQ):
    field_modulus = MODULUS

    def square(self) -> "Fr":
        return self * self

    @classmethod
    def from_decimal(cls, text: str) -> "Fr":
        """Parse a canonical decimal representation.

        Only plain ASCII digits are accepted and the value must already be
        reduced (0 <= value < r). Anything else raises ValueError.
        """
        if not isinstance(text, str):
            raise ValueError(f"expected a decimal string, got {type(text).__name__}")
        if not text or not (text.isascii() and text.isdigit()):
            raise ValueError(f"not a decimal field element: {text!r}")
        value = int(text)
        if value >= MODULUS:
            raise ValueError(f"value is not reduced modulo the field prime: {text}")
        return cls(value)

    def to_decimal(self) -> str:
        return str(self.n)
