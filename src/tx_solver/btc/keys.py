"""ECDSA keys on secp256k1 — the signing capability handed to solvers.

Provides:
- The ``Signer`` protocol that solvers depend on
- ``PrivateKey``: deterministic (RFC 6979), low-S, DER-encoded signing
- Compressed / uncompressed public key encoding helpers
- Signature verification against a digest
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Protocol, Self, runtime_checkable

from ecdsa import SECP256k1, BadSignatureError, SigningKey, VerifyingKey

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_CURVE = SECP256k1
_CURVE_ORDER = _CURVE.order


# ---------------------------------------------------------------------------
# Key provider protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class Signer(Protocol):
    """Anything able to sign a 32-byte digest for a known public key."""

    def public_key(self) -> bytes: ...

    def sign(self, digest: bytes) -> bytes: ...


# ---------------------------------------------------------------------------
# Public key encoding
# ---------------------------------------------------------------------------


def private_key_to_public_key(privkey_bytes: bytes, *, compressed: bool = True) -> bytes:
    """Derive the public key from a 32-byte private key.

    Args:
        privkey_bytes: 32-byte big-endian scalar.
        compressed: If True, return the 33-byte SEC compressed encoding.

    Returns:
        The public key bytes (33 compressed or 65 uncompressed).
    """
    sk = SigningKey.from_string(privkey_bytes, curve=_CURVE)
    vk = sk.get_verifying_key()
    if compressed:
        return compress_public_key(vk.to_string())
    return b"\x04" + vk.to_string()


def compress_public_key(raw_pubkey: bytes) -> bytes:
    """Compress a 64-byte (or 65-byte with 0x04 prefix) raw public key to 33 bytes."""
    if len(raw_pubkey) == 65 and raw_pubkey[0] == 0x04:
        raw_pubkey = raw_pubkey[1:]
    if len(raw_pubkey) != 64:
        if len(raw_pubkey) == 33 and raw_pubkey[0] in (0x02, 0x03):
            return raw_pubkey  # Already compressed
        msg = f"Invalid raw public key length: {len(raw_pubkey)}"
        raise ValueError(msg)
    x = int.from_bytes(raw_pubkey[:32], "big")
    y = int.from_bytes(raw_pubkey[32:], "big")
    prefix = b"\x02" if y % 2 == 0 else b"\x03"
    return prefix + x.to_bytes(32, "big")


def decompress_public_key(compressed: bytes) -> bytes:
    """Decompress a 33-byte compressed public key to 65-byte uncompressed."""
    if len(compressed) != 33:
        msg = f"Invalid compressed key length: {len(compressed)}"
        raise ValueError(msg)
    prefix = compressed[0]
    if prefix not in (0x02, 0x03):
        msg = f"Invalid compressed key prefix: {prefix:#x}"
        raise ValueError(msg)
    x = int.from_bytes(compressed[1:], "big")
    p = _CURVE.curve.p()
    # y^2 = x^3 + 7  (mod p)  for secp256k1
    y_sq = (pow(x, 3, p) + 7) % p
    y = pow(y_sq, (p + 1) // 4, p)
    if (y % 2 == 0) != (prefix == 0x02):
        y = p - y
    return b"\x04" + x.to_bytes(32, "big") + y.to_bytes(32, "big")


# ---------------------------------------------------------------------------
# Signing / verification
# ---------------------------------------------------------------------------


def sign_digest(privkey_bytes: bytes, digest: bytes) -> bytes:
    """Sign a 32-byte digest, returning a low-S DER signature (no sighash byte)."""
    sk = SigningKey.from_string(privkey_bytes, curve=_CURVE)
    return sk.sign_digest_deterministic(
        digest, hashfunc=hashlib.sha256, sigencode=_der_encode_low_s
    )


def verify_signature(pubkey_bytes: bytes, digest: bytes, signature: bytes) -> bool:
    """Verify a DER-encoded signature (without sighash byte) against a digest."""
    if len(pubkey_bytes) == 33:
        raw_key = decompress_public_key(pubkey_bytes)[1:]
    elif len(pubkey_bytes) == 65:
        raw_key = pubkey_bytes[1:]
    else:
        raw_key = pubkey_bytes
    vk = VerifyingKey.from_string(raw_key, curve=_CURVE)
    try:
        return vk.verify_digest(signature, digest, sigdecode=_der_decode)
    except BadSignatureError:
        return False


def is_low_s(signature: bytes) -> bool:
    """True if the DER signature's S value is in the lower half of the order."""
    _, s = _der_decode(signature, _CURVE_ORDER)
    return s <= _CURVE_ORDER // 2


def _der_encode_low_s(r: int, s: int, order: int) -> bytes:
    """Encode r, s as a DER signature, normalising S to the lower half."""
    if s > order // 2:
        s = order - s
    rb = _int_to_der_bytes(r)
    sb = _int_to_der_bytes(s)
    return b"\x30" + bytes([len(rb) + len(sb)]) + rb + sb


def _der_decode(signature: bytes, order: int) -> tuple[int, int]:
    """Decode DER signature to (r, s)."""
    if len(signature) < 8 or signature[0] != 0x30:
        msg = "Invalid DER signature"
        raise BadSignatureError(msg)
    idx = 2  # skip 0x30 and length byte
    if signature[idx] != 0x02:
        msg = "Invalid DER signature (r marker)"
        raise BadSignatureError(msg)
    idx += 1
    r_len = signature[idx]
    idx += 1
    r = int.from_bytes(signature[idx : idx + r_len], "big")
    idx += r_len
    if idx >= len(signature) or signature[idx] != 0x02:
        msg = "Invalid DER signature (s marker)"
        raise BadSignatureError(msg)
    idx += 1
    s_len = signature[idx]
    idx += 1
    s = int.from_bytes(signature[idx : idx + s_len], "big")
    return r, s


def _int_to_der_bytes(n: int) -> bytes:
    """Encode an integer as a DER INTEGER TLV."""
    b = n.to_bytes((n.bit_length() + 7) // 8, "big")
    if b[0] & 0x80:
        b = b"\x00" + b
    return b"\x02" + bytes([len(b)]) + b


# ---------------------------------------------------------------------------
# PrivateKey
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PrivateKey:
    """A secp256k1 private key implementing :class:`Signer`.

    Attributes:
        secret: 32-byte big-endian scalar.
        compressed: Whether :meth:`public_key` returns the 33-byte encoding.
    """

    secret: bytes = field(repr=False)
    compressed: bool = True

    def __post_init__(self) -> None:
        if len(self.secret) != 32:
            msg = f"private key must be 32 bytes, got {len(self.secret)}"
            raise ValueError(msg)
        if not 0 < int.from_bytes(self.secret, "big") < _CURVE_ORDER:
            msg = "private key out of range"
            raise ValueError(msg)

    @classmethod
    def from_hex(cls, hex_str: str, *, compressed: bool = True) -> Self:
        return cls(bytes.fromhex(hex_str), compressed=compressed)

    @classmethod
    def from_int(cls, value: int, *, compressed: bool = True) -> Self:
        return cls(value.to_bytes(32, "big"), compressed=compressed)

    def public_key(self) -> bytes:
        return private_key_to_public_key(self.secret, compressed=self.compressed)

    def sign(self, digest: bytes) -> bytes:
        """DER signature over *digest*; the sighash byte is appended by the caller."""
        return sign_digest(self.secret, digest)
