"""Stable public API for building tooling on top of vehsec.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from vehsec.analysis import immo
from vehsec.analysis.registry import StrategyRegistry, default_registry
from vehsec.analysis.rolling import predict_rolling_code
from vehsec.analysis.strategies import AttackStrategy, Evidence
from vehsec.core.can_frames import CanFilter
from vehsec.core.config_loader import load_settings
from vehsec.core.errors import (
    CommandNotAllowedError,
    ConfigLoadError,
    ConfigValidationError,
    DeviceUnavailableError,
    InsufficientSamplesError,
    NotConnectedError,
    ParseError,
    TransportError,
    TransportSendError,
    TransportTimeoutError,
    UnknownPidError,
    UnsupportedError,
    VehsecError,
)
from vehsec.core.model import (
    AdapterKind,
    CanFrame,
    ChallengeResponse,
    Connection,
    CrackedKey,
    DetectedDevice,
    Dtc,
    PatternKind,
    Reading,
    RollingCodePrediction,
    RollingCodeSequence,
    Settings,
    VehicleInfo,
)
from vehsec.core.monitor import DataCallback
from vehsec.core.service import VehicleSession
from vehsec.transports.base import FrameReceiver
from vehsec.transports.command import ChannelFactory

__all__ = [
    "VehsecError",
    "CommandNotAllowedError",
    "ConfigLoadError",
    "ConfigValidationError",
    "DeviceUnavailableError",
    "InsufficientSamplesError",
    "NotConnectedError",
    "ParseError",
    "TransportError",
    "TransportSendError",
    "TransportTimeoutError",
    "UnknownPidError",
    "UnsupportedError",
    "AdapterKind",
    "AttackStrategy",
    "CanFilter",
    "CanFrame",
    "ChallengeResponse",
    "Connection",
    "CrackedKey",
    "DetectedDevice",
    "Dtc",
    "Evidence",
    "PatternKind",
    "Reading",
    "RollingCodePrediction",
    "RollingCodeSequence",
    "Settings",
    "StrategyRegistry",
    "VehicleInfo",
    "Client",
]


class Client:
    """Public client for interacting with vehsec core capabilities.

    A `Client` wraps one `VehicleSession` (adapter link, PID monitor, CAN
    sender) plus a strategy registry behind a stable API intended for
    third-party tools (GUI/TUI/services/scripts).
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        channel_factory: ChannelFactory | None = None,
        registry: StrategyRegistry | None = None,
        frame_receiver: FrameReceiver | None = None,
    ) -> None:
        self._session = VehicleSession(
            settings=settings or load_settings(),
            channel_factory=channel_factory,
            frame_receiver=frame_receiver,
        )
        self._registry = registry or default_registry()

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._session.load_warnings

    @property
    def connection(self) -> Connection | None:
        return self._session.connection

    def connect(
        self,
        adapter: AdapterKind | str | None = None,
        port: str | None = None,
        baud_rate: int | None = None,
    ) -> Connection:
        return self._session.connect(adapter, port, baud_rate)

    def disconnect(self) -> None:
        self._session.disconnect()

    def read_pid(self, pid: str) -> Reading:
        return self._session.read_pid(pid)

    def get_dtcs(self) -> list[Dtc]:
        return self._session.get_dtcs()

    def clear_dtcs(self) -> bool:
        return self._session.clear_dtcs()

    def vehicle_info(self) -> VehicleInfo:
        return self._session.vehicle_info()

    def on_data(self, pid: str, callback: DataCallback) -> None:
        self._session.on_data(pid, callback)

    def start_monitoring(self, pids: Iterable[str], interval_s: float | None = None) -> None:
        self._session.start_monitoring(pids, interval_s)

    def stop_monitoring(self, pid: str | None = None) -> None:
        self._session.stop_monitoring(pid)

    def replay_frames(self, frames: Sequence[CanFrame], *, speed: float = 1.0) -> int:
        return self._session.replay_frames(frames, speed=speed)

    def capture_traffic(self, duration_s: float, can_filter: CanFilter | None = None) -> list[CanFrame]:
        return self._session.capture_traffic(duration_s, can_filter)

    def detect_devices(self) -> list[DetectedDevice]:
        return self._session.detect_devices()

    def crack(self, evidence: Evidence) -> CrackedKey | None:
        return self._registry.run(evidence)

    def predict_rolling_code(self, codes: Sequence[int], fixed_code: str = "") -> RollingCodePrediction:
        return predict_rolling_code(RollingCodeSequence(fixed_code=fixed_code, observed_codes=tuple(codes)))

    def component_security(self, bcm_dump: bytes) -> bytes | None:
        return immo.extract_component_security(bcm_dump)

    def dealer_key(self, component_security: bytes, vin: str) -> str:
        return immo.dealer_key(component_security, vin)

    def eeprom_key(self, ecu_dump: bytes) -> tuple[int, bytes] | None:
        return immo.extract_eeprom_key(ecu_dump)

    def key_material_from_vin(self, vin: str, manufacturer: str) -> str:
        return immo.key_material_from_vin(vin, manufacturer)
