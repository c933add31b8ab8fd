"""Immobilizer data helpers: EEPROM scans, dealer keys, VIN key material, lookup tables."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Sequence

from vehsec.analysis.ciphers import Cipher

CS_OFFSETS = (0x0100, 0x0200, 0x0400, 0x0800)
CS_LENGTH = 16
EEPROM_KEY_LOCATIONS = (
    (0x100, 16),  # VW/Audi
    (0x200, 16),  # BMW
    (0x400, 12),  # GM
    (0x800, 16),  # Ford
)
MANUFACTURER_CODES = {
    "volkswagen": "564157",
    "audi": "415544",
    "bmw": "424D57",
    "mercedes": "4D4552",
    "toyota": "544F59",
    "honda": "484F4E",
    "ford": "464F5244",
    "gm": "474D",
}
LOOKUP_TABLE_CAP = 10_000


def _is_blank(block: bytes) -> bool:
    return block == b"\x00" * len(block) or block == b"\xff" * len(block)


def _scan(dump: bytes, locations: Sequence[tuple[int, int]], min_unique: int) -> tuple[int, bytes] | None:
    for offset, length in locations:
        if len(dump) <= offset + length:
            continue
        block = dump[offset:offset + length]
        if _is_blank(block) or len(set(block)) < min_unique:
            continue
        return offset, block
    return None


def extract_component_security(bcm_dump: bytes) -> bytes | None:
    """Find the 16-byte component security block in a BCM EEPROM image."""
    found = _scan(bcm_dump, [(offset, CS_LENGTH) for offset in CS_OFFSETS], min_unique=4)
    return found[1] if found else None


def extract_eeprom_key(ecu_dump: bytes) -> tuple[int, bytes] | None:
    return _scan(ecu_dump, EEPROM_KEY_LOCATIONS, min_unique=1)


def dealer_key(component_security: bytes, vin: str) -> str:
    combined = component_security.hex().upper() + re.sub(r"[^A-Z0-9]", "", vin.upper())
    return hashlib.sha256(combined.encode("ascii")).hexdigest()[:32].upper()


def key_material_from_vin(vin: str, manufacturer: str) -> str:
    seed = hashlib.sha256(vin.strip().upper().encode("ascii")).hexdigest()[:16].upper()
    code = MANUFACTURER_CODES.get(manufacturer.lower(), "000000")
    return (seed + code)[:32]


def build_lookup_table(cipher: Cipher, challenge: bytes, key_space: int = 65536, *, key_size: int = 4) -> dict[bytes, bytes]:
    """Map response -> first key producing it for a fixed challenge."""
    table: dict[bytes, bytes] = {}
    for candidate in range(min(key_space, LOOKUP_TABLE_CAP)):
        key = candidate.to_bytes(key_size, "big")
        table.setdefault(cipher(challenge, key), key)
    return table
