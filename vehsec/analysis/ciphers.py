"""Stand-in transponder ciphers.

These are weak placeholders with the same call shape as the real Hitag2,
KeeLoq and Megamos primitives. Attack strategies receive them as plain
callables, so a real implementation can be passed in instead.
"""

from __future__ import annotations

from collections.abc import Callable

Cipher = Callable[[bytes, bytes], bytes]
HopDecryptor = Callable[[bytes, bytes], bytes]

MEGAMOS_KEY_BYTES = 24


def hitag2_stub(challenge: bytes, key: bytes) -> bytes:
    """XOR-fold challenge and key nibbles into a 32-bit response."""
    challenge_nibbles = challenge.hex()
    key_nibbles = key.hex() or "0"
    result = 0
    for index, nibble in enumerate(challenge_nibbles):
        result ^= int(nibble, 16) ^ int(key_nibbles[index % len(key_nibbles)], 16)
    return result.to_bytes(4, "big")


def keeloq_stub_decrypt(hop: bytes, key: bytes) -> bytes:
    hop_value = int.from_bytes(hop[:4].rjust(4, b"\x00"), "big")
    key_value = int.from_bytes(key[:4].ljust(4, b"\x00"), "big")
    return (hop_value ^ key_value).to_bytes(4, "big")


def megamos_stub(challenge: bytes, key: bytes) -> bytes:
    if not key:
        return challenge
    return bytes(c ^ key[i % len(key)] for i, c in enumerate(challenge))


def derive_megamos_key(transponder_id: bytes) -> bytes:
    """Key material from the known weak derivation: byte i is (id + i) & 0xFF."""
    base = int.from_bytes(transponder_id, "big")
    return bytes((base + i) & 0xFF for i in range(MEGAMOS_KEY_BYTES))
