from __future__ import annotations

import pytest

from vehsec.analysis.ciphers import derive_megamos_key, hitag2_stub, megamos_stub
from vehsec.analysis.registry import StrategyRegistry, default_registry
from vehsec.analysis.strategies import (
    BruteforceAttack,
    CorrelationAttack,
    DictionaryAttack,
    DifferentialPowerAttack,
    Evidence,
    FaultInjectionAttack,
    MathematicalAttack,
    PowerCorrelationAttack,
    TimingAttack,
)
from vehsec.core.errors import InsufficientSamplesError
from vehsec.core.model import ChallengeResponse


def _timed(*timings: float) -> Evidence:
    return Evidence(
        algorithm="hitag2",
        exchanges=tuple(ChallengeResponse("hitag2", b"", timing_ms=t) for t in timings),
    )


def test_hitag2_stub_shape() -> None:
    assert hitag2_stub(bytes.fromhex("01020304"), bytes(4)) == bytes.fromhex("00000004")
    assert len(hitag2_stub(b"\xff", b"")) == 4


def test_dictionary_attack_finds_common_key() -> None:
    evidence = Evidence.from_pair("hitag2", "01020304", "00000008")

    result = DictionaryAttack().attempt(evidence)

    assert result is not None
    assert result.key_hex == "4D494B52"
    assert result.confidence == 1.0
    assert result.attempts == 1
    assert result.method == "dictionary"


def test_dictionary_attack_needs_pair() -> None:
    assert DictionaryAttack().attempt(Evidence(algorithm="hitag2")) is None


def test_bruteforce_attack_finds_first_matching_key() -> None:
    evidence = Evidence.from_pair("hitag2", "01020304", "00000008")

    result = BruteforceAttack(bound=1000).attempt(evidence)

    assert result is not None
    assert result.key == bytes.fromhex("0000000C")
    assert result.attempts == 13
    assert result.confidence == 0.99
    assert result.bit_length == 32


def test_bruteforce_attack_exhausts_quietly() -> None:
    evidence = Evidence.from_pair("hitag2", "01020304", "00000010")
    assert BruteforceAttack(bound=50).attempt(evidence) is None


def test_bruteforce_attack_accepts_injected_cipher() -> None:
    def reverse(challenge: bytes, key: bytes) -> bytes:
        return bytes(reversed(key))

    evidence = Evidence.from_pair("keeloq", "00", "05000000")
    result = BruteforceAttack({"keeloq": reverse}, bound=10).attempt(evidence)

    assert result is not None
    assert result.key == bytes.fromhex("00000005")


def test_correlation_attack_matches_fixed_code_prefix() -> None:
    evidence = Evidence(
        algorithm="keeloq",
        hops=(bytes.fromhex("11223344"), bytes.fromhex("11223355")),
        fixed_code="1001FFFF",
    )

    result = CorrelationAttack().attempt(evidence)

    assert result is not None
    assert result.key == bytes.fromhex("0123456789ABCDEF")
    assert result.attempts == 2
    assert result.confidence == 0.95


def test_correlation_attack_needs_two_hops() -> None:
    evidence = Evidence(algorithm="keeloq", hops=(bytes.fromhex("11223344"),), fixed_code="4477")
    with pytest.raises(InsufficientSamplesError):
        CorrelationAttack().attempt(evidence)


def test_mathematical_attack_recovers_derived_key() -> None:
    challenge = bytes.fromhex("00000010")
    key = derive_megamos_key(challenge)
    evidence = Evidence.from_pair("megamos", challenge.hex(), megamos_stub(challenge, key).hex())

    result = MathematicalAttack().attempt(evidence)

    assert result is not None
    assert result.key == key
    assert key[:4] == bytes.fromhex("10111213")
    assert len(key) == 24
    assert result.confidence == 0.90
    assert result.attempts == 1


def test_mathematical_attack_rejects_mismatch() -> None:
    evidence = Evidence.from_pair("megamos", "00000010", "00000000")
    assert MathematicalAttack().attempt(evidence) is None


def test_timing_attack_is_deterministic() -> None:
    evidence = _timed(10.0, 30.0, 10.0, 30.0)

    first = TimingAttack().attempt(evidence)
    second = TimingAttack().attempt(evidence)

    assert first is not None and second is not None
    assert first.key == second.key == b"\x05"
    assert first.bit_length == 4
    assert first.confidence == 0.60


def test_timing_attack_without_timings() -> None:
    assert TimingAttack().attempt(Evidence(algorithm="hitag2")) is None


def test_power_correlation_needs_ten_samples() -> None:
    evidence = Evidence(algorithm="hitag2", samples=(bytes.fromhex("0000FFFF"),) * 9)
    with pytest.raises(InsufficientSamplesError):
        PowerCorrelationAttack().attempt(evidence)


def test_power_correlation_extracts_stable_bits() -> None:
    evidence = Evidence(algorithm="hitag2", samples=(bytes.fromhex("0000FFFF"),) * 10)

    result = PowerCorrelationAttack().attempt(evidence)

    assert result is not None
    assert result.key == bytes.fromhex("0000FFFF")
    assert result.confidence == pytest.approx(0.50)


def test_power_correlation_uses_leading_significant_bits() -> None:
    samples = (bytes.fromhex("12345678FF"), bytes.fromhex("0012345678FF")) * 5

    result = PowerCorrelationAttack().attempt(Evidence(algorithm="hitag2", samples=samples))

    assert result is not None
    assert result.key == bytes.fromhex("91A2B3C7")


def test_power_correlation_ranks_below_timing() -> None:
    samples = (bytes.fromhex("A5A5A5A5"),) * 10
    power = PowerCorrelationAttack().attempt(Evidence(algorithm="hitag2", samples=samples))
    timing = TimingAttack().attempt(_timed(10, 30))

    assert power is not None and timing is not None
    assert power.confidence < timing.confidence


def test_power_correlation_unresolved_bits_lower_confidence() -> None:
    samples = (bytes.fromhex("0000FFFF"), bytes.fromhex("FFFF0000")) * 5

    result = PowerCorrelationAttack().attempt(Evidence(algorithm="hitag2", samples=samples))

    assert result is not None
    assert result.confidence == 0.0
    assert result.key == bytes(4)


def test_differential_power_spike_sets_bit() -> None:
    trace = [0.0] * 320
    trace[50] = 100.0

    result = DifferentialPowerAttack().attempt(Evidence(algorithm="hitag2", power_trace=tuple(trace)))

    assert result is not None
    assert result.key == bytes.fromhex("04000000")
    assert result.confidence == 0.50


def test_differential_power_needs_trace() -> None:
    assert DifferentialPowerAttack().attempt(Evidence(algorithm="hitag2")) is None


def test_fault_injection_flips_one_bit() -> None:
    evidence = Evidence.from_pair("hitag2", "01020304", "A1B2C3D4")

    first = FaultInjectionAttack(seed=3).attempt(evidence)
    second = FaultInjectionAttack(seed=3).attempt(evidence)

    assert first is not None
    assert first.confidence is None
    assert first.key == second.key
    assert sorted(first.key) == [0, 0, 0, 1]


def test_registry_priority_order() -> None:
    registry = default_registry(bruteforce_bound=1000)
    assert [s.name for s in registry.strategies] == [
        "dictionary",
        "bruteforce",
        "correlation",
        "mathematical",
        "timing",
        "power_correlation",
        "differential_power",
        "fault_injection",
    ]

    result = registry.run(Evidence.from_pair("hitag2", "01020304", "00000008"))
    assert result is not None
    assert result.method == "dictionary"


def test_registry_skips_strategies_with_insufficient_samples() -> None:
    registry = StrategyRegistry([PowerCorrelationAttack()])
    registry.register(TimingAttack())
    evidence = Evidence(
        algorithm="hitag2",
        exchanges=_timed(5.0, 15.0).exchanges,
        samples=(b"\x00\x00\x00\x01",) * 3,
    )

    result = registry.run(evidence)

    assert result is not None
    assert result.method == "timing"
    assert registry.get("timing") is not None
    assert registry.get("nope") is None


def test_registry_returns_none_when_nothing_applies() -> None:
    evidence = Evidence(algorithm="keeloq", hops=(b"\x00\x00\x00\x01",), fixed_code="0001")
    assert default_registry().run(evidence) is None
