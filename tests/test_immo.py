from __future__ import annotations

from vehsec.analysis.ciphers import megamos_stub
from vehsec.analysis.immo import (
    build_lookup_table,
    dealer_key,
    extract_component_security,
    extract_eeprom_key,
    key_material_from_vin,
)


def _dump(blocks: dict[int, bytes], size: int = 0x900) -> bytes:
    image = bytearray(size)
    for offset, data in blocks.items():
        image[offset:offset + len(data)] = data
    return bytes(image)


def test_component_security_skips_blank_and_low_entropy_blocks() -> None:
    cs = bytes(range(0x10, 0x20))
    dump = _dump({0x100: b"\x01\x02" * 8, 0x400: cs})

    assert extract_component_security(dump) == cs


def test_component_security_missing() -> None:
    assert extract_component_security(_dump({})) is None
    assert extract_component_security(b"\x42" * 0x80) is None


def test_eeprom_key_reports_offset() -> None:
    key = bytes.fromhex("00112233445566778899AABB")
    assert extract_eeprom_key(_dump({0x400: key})) == (0x400, key)


def test_dealer_key_ignores_vin_punctuation() -> None:
    cs = bytes(range(16))
    key = dealer_key(cs, "wvw-zzz 1jz3w386752")

    assert key == dealer_key(cs, "WVWZZZ1JZ3W386752")
    assert len(key) == 32
    assert key == key.upper()
    assert key != dealer_key(bytes(range(1, 17)), "WVWZZZ1JZ3W386752")


def test_key_material_from_vin() -> None:
    material = key_material_from_vin("WVWZZZ1JZ3W386752", "Volkswagen")

    assert material.endswith("564157")
    assert len(material) == 22
    assert key_material_from_vin("WVWZZZ1JZ3W386752", "unknown").endswith("000000")


def test_lookup_table_keeps_first_key_per_response() -> None:
    challenge = b"\x00\x00\x00\x01"

    table = build_lookup_table(megamos_stub, challenge, key_space=300)

    assert len(table) == 300
    key = (0x2A).to_bytes(4, "big")
    assert table[megamos_stub(challenge, key)] == key


def test_lookup_table_is_capped() -> None:
    assert len(build_lookup_table(megamos_stub, b"\x00" * 4, key_space=20_000)) == 10_000
