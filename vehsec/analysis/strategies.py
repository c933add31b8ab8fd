"""Key-recovery strategies over challenge/response and side-channel evidence.

Every strategy exposes ``attempt(evidence) -> CrackedKey | None``. A ``None``
result means the strategy does not apply to the evidence or its search was
exhausted; unmet sample-count preconditions raise
``InsufficientSamplesError``. Strategies keep no state between calls.
"""

from __future__ import annotations

import logging
import math
import random
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from vehsec.analysis.ciphers import (
    Cipher,
    HopDecryptor,
    derive_megamos_key,
    hitag2_stub,
    keeloq_stub_decrypt,
    megamos_stub,
)
from vehsec.core.errors import InsufficientSamplesError
from vehsec.core.model import ChallengeResponse, CrackedKey

LOGGER = logging.getLogger(__name__)

KEY_BITS = 32
CPA_MIN_SAMPLES = 10
CPA_MAX_CONFIDENCE = 0.50
DPA_TOLERANCE = 10

COMMON_KEYS: dict[str, tuple[bytes, ...]] = {
    "hitag2": (
        bytes.fromhex("4D494B52"),  # "MIKR"
        bytes.fromhex("AAAAAAAA"),
        bytes.fromhex("00000000"),
        bytes.fromhex("FFFFFFFF"),
    ),
    "keeloq": (
        bytes.fromhex("5555555555555555"),
        bytes.fromhex("0123456789ABCDEF"),
        bytes.fromhex("DEADBEEFCAFEBABE"),
    ),
    "megamos": (
        bytes(16),
        bytes.fromhex("11" * 16),
    ),
}

MANUFACTURER_KEYS: tuple[bytes, ...] = (
    bytes.fromhex("5555555555555555"),
    bytes.fromhex("0123456789ABCDEF"),
    bytes.fromhex("FEDCBA9876543210"),
)

DEFAULT_CIPHERS: dict[str, Cipher] = {
    "hitag2": hitag2_stub,
    "megamos": megamos_stub,
}


@dataclass(frozen=True)
class Evidence:
    """Everything captured about one target, in whatever combination is available."""

    algorithm: str
    exchanges: tuple[ChallengeResponse, ...] = ()
    hops: tuple[bytes, ...] = ()
    fixed_code: str | None = None
    samples: tuple[bytes, ...] = ()
    power_trace: tuple[float, ...] = ()

    @classmethod
    def from_pair(cls, algorithm: str, challenge: str, response: str) -> Evidence:
        exchange = ChallengeResponse(
            algorithm=algorithm,
            challenge=bytes.fromhex(challenge),
            response=bytes.fromhex(response),
        )
        return cls(algorithm=algorithm, exchanges=(exchange,))

    @property
    def known_pair(self) -> ChallengeResponse | None:
        for exchange in self.exchanges:
            if exchange.challenge and exchange.response:
                return exchange
        return None


class AttackStrategy(Protocol):
    name: str

    def attempt(self, evidence: Evidence) -> CrackedKey | None:
        """Try to recover key material from evidence."""


def _bits_to_key(bits: Sequence[int]) -> bytes:
    value = 0
    for bit in bits:
        value = (value << 1) | bit
    return value.to_bytes(max(1, math.ceil(len(bits) / 8)), "big")


def _cracked(
    evidence: Evidence,
    key: bytes,
    *,
    confidence: float | None,
    method: str,
    attempts: int,
    started: float,
    bit_length: int | None = None,
) -> CrackedKey:
    return CrackedKey(
        algorithm=evidence.algorithm,
        key=key,
        confidence=confidence,
        method=method,
        attempts=attempts,
        duration_s=time.perf_counter() - started,
        bit_length=bit_length if bit_length is not None else len(key) * 8,
    )


class DictionaryAttack:
    name = "dictionary"

    def __init__(
        self,
        candidates: Mapping[str, Sequence[bytes]] = COMMON_KEYS,
        ciphers: Mapping[str, Cipher] = DEFAULT_CIPHERS,
    ) -> None:
        self._candidates = candidates
        self._ciphers = ciphers

    def attempt(self, evidence: Evidence) -> CrackedKey | None:
        pair = evidence.known_pair
        cipher = self._ciphers.get(evidence.algorithm)
        if pair is None or cipher is None:
            return None

        started = time.perf_counter()
        for index, key in enumerate(self._candidates.get(evidence.algorithm, ()), start=1):
            if cipher(pair.challenge, key) == pair.response:
                return _cracked(evidence, key, confidence=1.0, method=self.name, attempts=index, started=started)
        LOGGER.debug("No common %s key matched", evidence.algorithm)
        return None


class BruteforceAttack:
    name = "bruteforce"

    def __init__(
        self,
        ciphers: Mapping[str, Cipher] | None = None,
        *,
        bound: int = 100_000,
        key_size: int = 4,
    ) -> None:
        self._ciphers = ciphers if ciphers is not None else {"hitag2": hitag2_stub}
        self.bound = bound
        self.key_size = key_size

    def attempt(self, evidence: Evidence) -> CrackedKey | None:
        pair = evidence.known_pair
        cipher = self._ciphers.get(evidence.algorithm)
        if pair is None or cipher is None:
            return None

        LOGGER.info("Searching %d %s keys", self.bound, evidence.algorithm)
        started = time.perf_counter()
        for candidate in range(self.bound):
            key = candidate.to_bytes(self.key_size, "big")
            if cipher(pair.challenge, key) == pair.response:
                return _cracked(
                    evidence, key, confidence=0.99, method=self.name, attempts=candidate + 1, started=started
                )
        return None


class CorrelationAttack:
    """Manufacturer-key search over rolling-code hops."""

    name = "correlation"

    def __init__(
        self,
        manufacturer_keys: Sequence[bytes] = MANUFACTURER_KEYS,
        decrypt: HopDecryptor = keeloq_stub_decrypt,
    ) -> None:
        self._keys = tuple(manufacturer_keys)
        self._decrypt = decrypt

    def attempt(self, evidence: Evidence) -> CrackedKey | None:
        if not evidence.hops or not evidence.fixed_code:
            return None
        if len(evidence.hops) < 2:
            raise InsufficientSamplesError("Correlation needs at least 2 rolling-code hops")

        started = time.perf_counter()
        first, second = (int.from_bytes(h, "big") for h in evidence.hops[:2])
        LOGGER.debug("Hop increment %d", second - first)

        wanted = evidence.fixed_code.upper()[:4]
        for index, key in enumerate(self._keys, start=1):
            decrypted = self._decrypt(evidence.hops[0], key).hex().upper()
            if decrypted[:4] == wanted:
                return _cracked(evidence, key, confidence=0.95, method=self.name, attempts=index, started=started)
        return None


class MathematicalAttack:
    """Weak key derivation from the transponder id carried in the challenge."""

    name = "mathematical"

    def __init__(
        self,
        cipher: Cipher = megamos_stub,
        derive: Callable[[bytes], bytes] = derive_megamos_key,
        *,
        id_bytes: int = 4,
    ) -> None:
        self._cipher = cipher
        self._derive = derive
        self._id_bytes = id_bytes

    def attempt(self, evidence: Evidence) -> CrackedKey | None:
        pair = evidence.known_pair
        if pair is None or evidence.algorithm != "megamos" or len(pair.challenge) < self._id_bytes:
            return None

        started = time.perf_counter()
        key = self._derive(pair.challenge[: self._id_bytes])
        if self._cipher(pair.challenge, key) != pair.response:
            return None
        return _cracked(evidence, key, confidence=0.90, method=self.name, attempts=1, started=started)


class TimingAttack:
    name = "timing"

    def attempt(self, evidence: Evidence) -> CrackedKey | None:
        timed = [e for e in evidence.exchanges if e.timing_ms is not None]
        if not timed:
            return None

        started = time.perf_counter()
        mean = sum(e.timing_ms for e in timed) / len(timed)
        LOGGER.debug("Mean response time %.2fms over %d samples", mean, len(timed))
        bits = [1 if e.timing_ms > mean else 0 for e in timed]
        return _cracked(
            evidence,
            _bits_to_key(bits),
            confidence=0.60,
            method=self.name,
            attempts=len(timed),
            started=started,
            bit_length=len(bits),
        )


def _leading_bits(sample: bytes) -> int:
    """Top 32 significant bits of a sample; shorter samples are zero-extended."""
    value = int.from_bytes(sample, "big")
    return value >> max(value.bit_length() - KEY_BITS, 0)


class PowerCorrelationAttack:
    name = "power_correlation"

    def attempt(self, evidence: Evidence) -> CrackedKey | None:
        if not evidence.samples:
            return None
        if len(evidence.samples) < CPA_MIN_SAMPLES:
            raise InsufficientSamplesError(
                f"Correlation power analysis needs {CPA_MIN_SAMPLES} samples, got {len(evidence.samples)}"
            )

        started = time.perf_counter()
        values = np.array([_leading_bits(s) for s in evidence.samples], dtype=np.uint64)
        shifts = np.arange(KEY_BITS - 1, -1, -1, dtype=np.uint64)
        ones_fraction = ((values[:, None] >> shifts) & np.uint64(1)).mean(axis=0)

        pattern = []
        for fraction in ones_fraction:
            if fraction > 0.8:
                pattern.append("1")
            elif fraction < 0.2:
                pattern.append("0")
            else:
                pattern.append("?")
        LOGGER.debug("Extracted key pattern %s", "".join(pattern))

        resolved = sum(1 for p in pattern if p != "?")
        bits = [1 if p == "1" else 0 for p in pattern]
        return _cracked(
            evidence,
            _bits_to_key(bits),
            confidence=round(CPA_MAX_CONFIDENCE * resolved / KEY_BITS, 4),
            method=self.name,
            attempts=len(evidence.samples),
            started=started,
        )


class DifferentialPowerAttack:
    name = "differential_power"

    def attempt(self, evidence: Evidence) -> CrackedKey | None:
        if len(evidence.power_trace) < 3:
            return None

        started = time.perf_counter()
        trace = np.asarray(evidence.power_trace, dtype=float)
        threshold = trace.mean() + 2 * trace.std()

        middle = trace[1:-1]
        is_spike = (middle > threshold) & (middle > trace[:-2]) & (middle > trace[2:])
        spikes = np.flatnonzero(is_spike) + 1
        LOGGER.debug("Found %d power spikes above %.3f", len(spikes), threshold)

        bits = []
        for position in range(KEY_BITS):
            expected = math.floor(len(trace) / KEY_BITS * position)
            bits.append(1 if np.any(np.abs(spikes - expected) < DPA_TOLERANCE) else 0)

        return _cracked(
            evidence,
            _bits_to_key(bits),
            confidence=0.50,
            method=self.name,
            attempts=1,
            started=started,
        )


class FaultInjectionAttack:
    """Synthesises a glitched response and reports which bits moved.

    The result is a hint, not a verified key, so its confidence is None.
    """

    name = "fault_injection"

    def __init__(self, seed: int | None = None) -> None:
        self._seed = seed

    def attempt(self, evidence: Evidence) -> CrackedKey | None:
        pair = evidence.known_pair
        if pair is None:
            return None

        started = time.perf_counter()
        normal = pair.response
        faulted = self.introduce_fault(normal, random.Random(self._seed))
        LOGGER.debug("Normal %s faulted %s", normal.hex().upper(), faulted.hex().upper())
        hint = bytes(a ^ b for a, b in zip(normal, faulted))
        return _cracked(evidence, hint, confidence=None, method=self.name, attempts=1, started=started)

    @staticmethod
    def introduce_fault(data: bytes, rng: random.Random) -> bytes:
        position = rng.randrange(len(data))
        faulted = bytearray(data)
        faulted[position] ^= 0x01
        return bytes(faulted)
