"""
Deterministic encoding primitives for record addressing.

Record addresses are derived by hashing a domain-separated seed label and a
length-prefixed list of identifier parts, so distinct (seed, parts) tuples can
never collide by concatenation.
"""

from __future__ import annotations

import hashlib


ADDRESS_HEX_CHARS = 40


def domain_sep_bytes(label: str, version: int = 1) -> bytes:
    """
    Create a domain separation prefix.

    The output is ASCII-only and NUL-terminated to make concatenation unambiguous.
    """
    if not isinstance(label, str) or not label:
        raise TypeError("label must be a non-empty str")
    if "\x00" in label:
        raise ValueError("label must not contain NUL")
    try:
        label_bytes = label.encode("ascii")
    except UnicodeEncodeError as exc:
        raise ValueError("label must be ASCII") from exc
    if not isinstance(version, int) or isinstance(version, bool) or version <= 0:
        raise ValueError("version must be a positive int")
    return b"perps-flywheel:" + label_bytes + b":v" + str(version).encode("ascii") + b"\x00"


def encode_uvarint(value: int) -> bytes:
    """Unsigned LEB128."""
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValueError(f"uvarint must be a non-negative int, got {value!r}")
    out = bytearray()
    n = value
    while True:
        byte = n & 0x7F
        n >>= 7
        if n:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            break
    return bytes(out)


def encode_str(value: str) -> bytes:
    if not isinstance(value, str):
        raise TypeError(f"address part must be str, got {type(value).__name__}")
    raw = value.encode("utf-8")
    return encode_uvarint(len(raw)) + raw


def derive_address(seed: str, *parts: str) -> str:
    """Stable address for the record identified by *seed* and *parts*."""
    payload = domain_sep_bytes(seed) + encode_uvarint(len(parts))
    for part in parts:
        payload += encode_str(part)
    return "0x" + hashlib.sha256(payload).hexdigest()[:ADDRESS_HEX_CHARS]
