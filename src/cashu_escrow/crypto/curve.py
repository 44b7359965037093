"""
Affine point arithmetic over secp256k1.

Provides:
- lift_x: recover the even-y point for an x coordinate
- point_add / point_negate / scalar_multiply (double-and-add)
- compress / decompress for the 33-byte SEC1 form (02/03 prefix + x)

The identity element is the tagged value ``INFINITY`` rather than a
coordinate pair, so ``P + (-P)`` is well defined and never inverts zero.
"""

from __future__ import annotations

import enum
from typing import NamedTuple, Union

from cashu_escrow.errors import CryptoFailure

# ==============================================================================
# secp256k1 curve constants
# ==============================================================================

# Field prime
SECP256K1_P = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFC2F

# Group order
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

SECP256K1_B = 7

SECP256K1_GX = 0x79BE667EF9DCBBAC55A06295CE870B07029BFCDB2DCE28D959F2815B16F81798
SECP256K1_GY = 0x483ADA7726A3C4655DA4FBFC0E1108A8FD17B448A68554199C47D08FFB10D4B8


# ==============================================================================
# Point types
# ==============================================================================


class Point(NamedTuple):
    """A finite affine point (x, y) on the curve."""
    x: int
    y: int


class Infinity(enum.Enum):
    """The point at infinity (group identity)."""
    INFINITY = "infinity"

    def __repr__(self) -> str:
        return "INFINITY"


INFINITY = Infinity.INFINITY

CurvePoint = Union[Point, Infinity]

G = Point(SECP256K1_GX, SECP256K1_GY)


def is_on_curve(pt: CurvePoint) -> bool:
    """Return True if ``pt`` is the identity or satisfies y² = x³ + 7 mod p."""
    if pt is INFINITY:
        return True
    x, y = pt
    return (y * y - x * x * x - SECP256K1_B) % SECP256K1_P == 0


def lift_x(x: int) -> Point | None:
    """
    Return the point with even y for the given x coordinate.

    Args:
        x: candidate x coordinate; must lie in [0, p).

    Returns:
        The even-y point, or None if x³ + 7 is not a square mod p.
    """
    if not 0 <= x < SECP256K1_P:
        return None
    y_sq = (pow(x, 3, SECP256K1_P) + SECP256K1_B) % SECP256K1_P
    # p ≡ 3 mod 4, so a square root (if any) is y_sq^((p+1)/4)
    y = pow(y_sq, (SECP256K1_P + 1) // 4, SECP256K1_P)
    if (y * y) % SECP256K1_P != y_sq:
        return None
    if y % 2 != 0:
        y = SECP256K1_P - y
    return Point(x, y)


# ==============================================================================
# Group law
# ==============================================================================


def point_negate(pt: CurvePoint) -> CurvePoint:
    if pt is INFINITY:
        return INFINITY
    return Point(pt.x, (-pt.y) % SECP256K1_P)


def point_add(a: CurvePoint, b: CurvePoint) -> CurvePoint:
    """
    Add two curve points.

    Doubling is the ``a == b`` case of the same routine. Adding a point to
    its negation yields INFINITY.
    """
    if a is INFINITY:
        return b
    if b is INFINITY:
        return a

    p = SECP256K1_P
    if a.x == b.x:
        if (a.y + b.y) % p == 0:
            return INFINITY
        # Tangent slope: 3x² / 2y
        lam = (3 * a.x * a.x) * pow(2 * a.y, -1, p) % p
    else:
        lam = (b.y - a.y) * pow(b.x - a.x, -1, p) % p

    x3 = (lam * lam - a.x - b.x) % p
    y3 = (lam * (a.x - x3) - a.y) % p
    return Point(x3, y3)


def point_double(pt: CurvePoint) -> CurvePoint:
    return point_add(pt, pt)


def scalar_multiply(k: int, pt: CurvePoint = G) -> CurvePoint:
    """
    Compute k·pt with left-to-right double-and-add.

    The scalar is reduced mod n first; a zero scalar gives INFINITY.
    """
    k %= SECP256K1_N
    result: CurvePoint = INFINITY
    if k == 0 or pt is INFINITY:
        return result
    for bit in bin(k)[2:]:
        result = point_add(result, result)
        if bit == "1":
            result = point_add(result, pt)
    return result


# ==============================================================================
# SEC1 compressed encoding
# ==============================================================================


def compress(pt: CurvePoint) -> bytes:
    """
    Encode a point as 33 bytes (02/03 prefix + 32-byte x).

    Raises:
        CryptoFailure: If the point is the identity.
    """
    if pt is INFINITY:
        raise CryptoFailure("Cannot encode the point at infinity")
    prefix = b"\x02" if pt.y % 2 == 0 else b"\x03"
    return prefix + pt.x.to_bytes(32, "big")


def decompress(data: bytes | str) -> Point:
    """
    Decode a 33-byte compressed point (raw bytes or hex).

    Raises:
        CryptoFailure: If the encoding is malformed or not on the curve.
    """
    if isinstance(data, str):
        try:
            data = bytes.fromhex(data)
        except ValueError as e:
            raise CryptoFailure(f"Invalid point hex: {e}") from e
    if len(data) != 33:
        raise CryptoFailure(f"Expected 33 bytes, got {len(data)}")
    prefix = data[0]
    if prefix not in (0x02, 0x03):
        raise CryptoFailure(f"Invalid prefix byte: 0x{prefix:02x}")

    pt = lift_x(int.from_bytes(data[1:], "big"))
    if pt is None:
        raise CryptoFailure(f"X coordinate 0x{data[1:].hex()} does not correspond to a curve point")
    if prefix == 0x03:
        pt = Point(pt.x, SECP256K1_P - pt.y)
    return pt


def point_to_hex(pt: CurvePoint) -> str:
    return compress(pt).hex()
