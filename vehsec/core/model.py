"""Core data models used across transport, codec, session, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class AdapterKind(str, Enum):
    ELM327 = "elm327"
    STN1110 = "stn1110"
    VLINKER = "vlinker"
    OBDLINK = "obdlink"
    SOCKETCAN = "socketcan"
    PROXMARK3 = "proxmark3"
    ACR122U = "acr122u"
    CHAMELEON = "chameleon"

    @property
    def is_elm_class(self) -> bool:
        return self in _ELM_CLASS

    @property
    def is_transponder_reader(self) -> bool:
        return self in _TRANSPONDER_READERS

    @property
    def default_baud_rate(self) -> int:
        if self is AdapterKind.ELM327:
            return 38400
        if self is AdapterKind.SOCKETCAN:
            return 500000
        return 115200

    @property
    def default_timeout_s(self) -> float:
        return 5.0 if self.is_transponder_reader else 2.0


_ELM_CLASS = frozenset(
    {AdapterKind.ELM327, AdapterKind.STN1110, AdapterKind.VLINKER, AdapterKind.OBDLINK}
)
_TRANSPONDER_READERS = frozenset(
    {AdapterKind.PROXMARK3, AdapterKind.ACR122U, AdapterKind.CHAMELEON}
)


@dataclass
class Connection:
    adapter: AdapterKind
    protocol: str
    baud_rate: int
    port: str
    connected: bool = True


@dataclass(frozen=True)
class PidDescriptor:
    name: str
    code: str
    formula: str
    unit: str
    description: str = ""

    @property
    def mode(self) -> int:
        return int(self.code[:2], 16)

    @property
    def pid(self) -> int | None:
        return int(self.code[2:4], 16) if len(self.code) >= 4 else None


@dataclass(frozen=True)
class Reading:
    timestamp: float
    pid: str
    value: float | int | None
    unit: str


@dataclass(frozen=True)
class Dtc:
    prefix: str
    code: str

    def __str__(self) -> str:
        return f"{self.prefix}{self.code}"


@dataclass(frozen=True)
class CanFrame:
    timestamp: float
    interface: str
    can_id: int
    data: bytes = b""
    is_extended: bool = False

    def __post_init__(self) -> None:
        if len(self.data) > 8:
            raise ValueError(f"CAN payload exceeds 8 bytes ({len(self.data)})")
        limit = 0x1FFFFFFF if self.is_extended else 0x7FF
        if not 0 <= self.can_id <= limit:
            raise ValueError(f"CAN id 0x{self.can_id:X} does not fit the declared bit width")


@dataclass(frozen=True)
class VehicleInfo:
    vin: str
    calibration_id: str | None
    ecu_name: str | None
    supported_pids: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class DetectedDevice:
    id: str
    name: str
    kind: str
    connected: bool = True


@dataclass(frozen=True)
class ExecResult:
    success: bool
    output: str
    error: str | None = None


@dataclass(frozen=True)
class Settings:
    adapter: AdapterKind = AdapterKind.ELM327
    port: str = "/dev/rfcomm0"
    baud_rate: int | None = None
    can_interface: str = "can0"
    bitrate: int = 500000
    monitor_interval_s: float = 0.1
    command_timeout_s: float | None = None


# Expected response sizes in bytes; algorithms not listed accept any length.
RESPONSE_LENGTHS = {"hitag2": 4, "keeloq": 4, "dst40": 3}


@dataclass(frozen=True)
class ChallengeResponse:
    algorithm: str
    challenge: bytes
    response: bytes = b""
    timing_ms: float | None = None
    power_samples: tuple[float, ...] = ()

    def __post_init__(self) -> None:
        expected = RESPONSE_LENGTHS.get(self.algorithm)
        if self.response and expected is not None and len(self.response) != expected:
            raise ValueError(
                f"{self.algorithm} responses are {expected} bytes, got {len(self.response)}"
            )


@dataclass(frozen=True)
class CrackedKey:
    algorithm: str
    key: bytes
    confidence: float | None
    method: str
    attempts: int
    duration_s: float
    bit_length: int

    @property
    def key_hex(self) -> str:
        return self.key.hex().upper()


class PatternKind(str, Enum):
    LINEAR = "linear"
    MULTIPLICATIVE = "multiplicative"
    XOR = "xor"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class RollingCodeSequence:
    fixed_code: str
    observed_codes: tuple[int, ...]
    algorithm: str = "unknown"


@dataclass(frozen=True)
class RollingCodePrediction:
    pattern: PatternKind
    next_code: int | None
    step: float | int | None = None

    @property
    def found(self) -> bool:
        return self.pattern is not PatternKind.NOT_FOUND
