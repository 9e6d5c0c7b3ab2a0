# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""NIP-19 bech32 encoding for Nostr keys.

Only the bare key forms are supported: ``npub`` (x-only public key) and
``nsec`` (secret key). Both wrap exactly 32 bytes.
"""

from __future__ import annotations

from ..core.exceptions import ValidationException

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_GENERATOR = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)


def _polymod(values: list[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i in range(5):
            chk ^= _GENERATOR[i] if ((top >> i) & 1) else 0
    return chk


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _create_checksum(hrp: str, data: list[int]) -> list[int]:
    polymod = _polymod(_hrp_expand(hrp) + data + [0] * 6) ^ 1
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]


def _convert_bits(data: bytes | list[int], from_bits: int, to_bits: int, pad: bool) -> list[int]:
    acc = 0
    bits = 0
    out: list[int] = []
    maxv = (1 << to_bits) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise ValidationException("invalid bech32 data value")
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            out.append((acc >> bits) & maxv)
    if pad:
        if bits:
            out.append((acc << (to_bits - bits)) & maxv)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & maxv):
        raise ValidationException("invalid bech32 padding")
    return out


def bech32_encode(hrp: str, payload: bytes) -> str:
    """Encode ``payload`` under the human-readable part ``hrp``."""
    data = _convert_bits(payload, 8, 5, pad=True)
    combined = data + _create_checksum(hrp, data)
    return hrp + "1" + "".join(CHARSET[d] for d in combined)


def bech32_decode(value: str) -> tuple[str, bytes]:
    """Decode a bech32 string into ``(hrp, payload)``.

    Raises:
        ValidationException: On mixed case, bad characters or a bad checksum.
    """
    if value.lower() != value and value.upper() != value:
        raise ValidationException("bech32 string has mixed case", field="bech32")
    value = value.lower()
    pos = value.rfind("1")
    if pos < 1 or pos + 7 > len(value):
        raise ValidationException("bech32 separator misplaced", field="bech32")
    hrp = value[:pos]
    try:
        data = [CHARSET.index(c) for c in value[pos + 1 :]]
    except ValueError as e:
        raise ValidationException("invalid bech32 character", field="bech32") from e
    if _polymod(_hrp_expand(hrp) + data) != 1:
        raise ValidationException("invalid bech32 checksum", field="bech32")
    return hrp, bytes(_convert_bits(data[:-6], 5, 8, pad=False))


def _decode_key(value: str, expected_hrp: str) -> bytes:
    hrp, payload = bech32_decode(value)
    if hrp != expected_hrp:
        raise ValidationException(f"expected {expected_hrp}, got {hrp}", field=expected_hrp)
    if len(payload) != 32:
        raise ValidationException(f"{expected_hrp} must wrap 32 bytes", field=expected_hrp)
    return payload


def npub_encode(pubkey_hex: str) -> str:
    return bech32_encode("npub", bytes.fromhex(pubkey_hex))


def npub_decode(npub: str) -> str:
    """Decode an ``npub1…`` string to a 64-char hex public key."""
    return _decode_key(npub, "npub").hex()


def nsec_encode(secret: bytes) -> str:
    return bech32_encode("nsec", secret)


def nsec_decode(nsec: str) -> bytes:
    """Decode an ``nsec1…`` string to the raw 32-byte secret."""
    return _decode_key(nsec, "nsec")


def is_hex_key(value: str) -> bool:
    """True when ``value`` is exactly 64 hex characters."""
    if len(value) != 64:
        return False
    try:
        bytes.fromhex(value)
    except ValueError:
        return False
    return True


def resolve_pubkey_hex(value: str) -> str:
    """Accept either hex or npub and return lowercase hex.

    Raises:
        ValidationException: If ``value`` is neither form.
    """
    value = value.strip()
    if value.startswith("npub1"):
        return npub_decode(value)
    if is_hex_key(value):
        return value.lower()
    raise ValidationException("pubkey must be 64 hex chars or npub1…", field="pubkey", value=value)
