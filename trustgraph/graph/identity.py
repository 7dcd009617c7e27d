# trustgraph/graph/identity.py
"""
Identity key helpers.

Identity keys are 32-byte hex public keys. Users paste either hex or the
bech32 "npub1..." form, and labels show a shortened npub.
"""

import re
from typing import List, Optional

BECH32_ALPHABET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_GENERATOR = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
NPUB_HRP = "npub"

HEX_KEY_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def _polymod(values: List[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ value
        for i in range(5):
            if (top >> i) & 1:
                chk ^= _GENERATOR[i]
    return chk


def _hrp_expand(hrp: str) -> List[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _convert_bits(data: bytes, from_bits: int, to_bits: int, pad: bool) -> Optional[List[int]]:
    acc = 0
    bits = 0
    out = []
    max_value = (1 << to_bits) - 1
    for value in data:
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            out.append((acc >> bits) & max_value)
    if pad:
        if bits:
            out.append((acc << (to_bits - bits)) & max_value)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & max_value):
        return None
    return out


def is_hex_key(value: str) -> bool:
    return bool(HEX_KEY_PATTERN.match(value))


def hex_to_npub(hex_key: str) -> str:
    """Encode a hex key as npub. Non-hex input is returned unchanged."""
    if hex_key.startswith(NPUB_HRP):
        return hex_key
    try:
        raw = bytes.fromhex(hex_key)
    except ValueError:
        return hex_key
    data = _convert_bits(raw, 8, 5, pad=True)
    polymod = _polymod(_hrp_expand(NPUB_HRP) + data + [0] * 6) ^ 1
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return NPUB_HRP + "1" + "".join(BECH32_ALPHABET[d] for d in data + checksum)


def npub_to_hex(value: str) -> str:
    """Decode an npub to hex. Hex (or undecodable) input is returned unchanged."""
    if not value.lower().startswith(NPUB_HRP + "1"):
        return value
    lowered = value.lower()
    hrp, _, payload = lowered.rpartition("1")
    if hrp != NPUB_HRP or len(payload) < 7:
        return value
    try:
        data = [BECH32_ALPHABET.index(c) for c in payload]
    except ValueError:
        return value
    if _polymod(_hrp_expand(hrp) + data) != 1:
        return value
    decoded = _convert_bits(bytes(data[:-6]), 5, 8, pad=False)
    if decoded is None:
        return value
    return bytes(decoded).hex()


def format_pubkey(pubkey: str) -> str:
    """Shortened npub for display: npub1abcd...uvwxyz"""
    npub = hex_to_npub(pubkey)
    if len(npub) <= 16:
        return npub
    return f"{npub[:10]}...{npub[-6:]}"
