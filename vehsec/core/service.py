"""Session layer used by the CLI and the public API."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence

from vehsec.core import can_frames
from vehsec.core.config_loader import load_pid_table
from vehsec.core.devices import (
    CansendSender,
    ProcessExecutor,
    detect_rf_devices,
    detect_transponder_reader,
    rf_capture_command,
    rf_replay_command,
)
from vehsec.core.errors import NotConnectedError, ParseError
from vehsec.core.model import (
    AdapterKind,
    CanFrame,
    Connection,
    DetectedDevice,
    Dtc,
    ExecResult,
    Reading,
    Settings,
    VehicleInfo,
)
from vehsec.core.monitor import DataCallback, ErrorCallback, PidMonitor
from vehsec.core.obd_codec import OBDCodec
from vehsec.transports.base import FrameReceiver, FrameSender
from vehsec.transports.command import ChannelFactory, CommandTransport
from vehsec.transports.socketcan import SocketCANChannel

LOGGER = logging.getLogger(__name__)


class VehicleSession:
    """Everything one operator session holds: adapter link, monitor, CAN sender."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        channel_factory: ChannelFactory | None = None,
        executor: ProcessExecutor | None = None,
        frame_sender: FrameSender | None = None,
        frame_receiver: FrameReceiver | None = None,
        on_monitor_error: ErrorCallback | None = None,
    ) -> None:
        self.settings = settings or Settings()
        loaded = load_pid_table()
        self.load_warnings = loaded.warnings
        self.codec = OBDCodec(loaded.pids)
        self.transport = CommandTransport(channel_factory)
        self.executor = executor or ProcessExecutor()
        self._frame_sender = frame_sender
        self._frame_receiver = frame_receiver
        self.monitor = PidMonitor(
            self.read_pid,
            self.settings.monitor_interval_s,
            on_error=on_monitor_error,
        )
        self.transport.add_close_hook(self.monitor.stop)

    @property
    def connection(self) -> Connection | None:
        return self.transport.connection

    def connect(
        self,
        adapter: AdapterKind | str | None = None,
        port: str | None = None,
        baud_rate: int | None = None,
    ) -> Connection:
        return self.transport.connect(
            adapter or self.settings.adapter,
            port or self.settings.port,
            baud_rate or self.settings.baud_rate,
        )

    def disconnect(self) -> None:
        self.transport.disconnect()

    def send(self, command: str, timeout_s: float | None = None) -> str:
        return self.transport.send(command, timeout_s or self.settings.command_timeout_s)

    def read_pid(self, pid: str) -> Reading:
        request = self.codec.build_request(pid)
        return self.codec.parse_reading(pid, self.send(request))

    def get_dtcs(self) -> list[Dtc]:
        return list(self.codec.parse_dtcs(self.send(self.codec.build_request("GET_DTCS"))))

    def clear_dtcs(self) -> bool:
        return self.codec.is_clear_ack(self.send(self.codec.build_request("CLEAR_DTCS")))

    def read_vin(self) -> str:
        return self.codec.parse_vin(self.send(self.codec.build_request("VIN")))

    def vehicle_info(self) -> VehicleInfo:
        return VehicleInfo(
            vin=self.read_vin(),
            calibration_id=self._optional_text("CALIBRATION_ID"),
            ecu_name=self._optional_text("ECU_NAME"),
            supported_pids=tuple(p.name for p in self.codec.pids),
        )

    def _optional_text(self, pid: str) -> str | None:
        request = self.codec.build_request(pid)
        try:
            return self.codec.parse_info_text(self.send(request), request) or None
        except ParseError as exc:
            LOGGER.debug("%s unavailable: %s", pid, exc)
            return None

    def on_data(self, pid: str, callback: DataCallback) -> None:
        self.monitor.on_data(pid, callback)

    def start_monitoring(self, pids: Iterable[str], interval_s: float | None = None) -> None:
        if not self.transport.is_connected:
            raise NotConnectedError("Connect to an adapter before monitoring")
        pid_list = list(pids)
        for pid in pid_list:
            self.codec.lookup(pid)
        self.monitor.start(pid_list, interval_s)

    def stop_monitoring(self, pid: str | None = None) -> None:
        self.monitor.stop(pid)

    def frame_sender(self) -> FrameSender:
        if self._frame_sender is None:
            self._frame_sender = CansendSender(self.executor, self.settings.can_interface)
        return self._frame_sender

    def replay_frames(
        self,
        frames: Sequence[CanFrame],
        delay_fn: Callable[[CanFrame], float] | None = None,
        *,
        cancel: threading.Event | None = None,
        speed: float = 1.0,
    ) -> int:
        return can_frames.replay(self.frame_sender(), frames, delay_fn, cancel=cancel, speed=speed)

    def fuzz_can(
        self,
        id_low: int,
        id_high: int,
        duration_s: float,
        *,
        cancel: threading.Event | None = None,
        **options,
    ) -> int:
        return can_frames.fuzz(self.frame_sender(), id_low, id_high, duration_s, cancel=cancel, **options)

    def inject_frame(
        self,
        can_id: int,
        data: bytes,
        rate_hz: float,
        duration_s: float,
        *,
        cancel: threading.Event | None = None,
    ) -> int:
        return can_frames.inject(self.frame_sender(), can_id, data, rate_hz, duration_s, cancel=cancel)

    def capture_traffic(
        self,
        duration_s: float,
        can_filter: can_frames.CanFilter | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> list[CanFrame]:
        """Record bus traffic for duration_s, optionally keeping only filter matches.

        Without an injected receiver a SocketCAN channel is opened on the
        configured interface for the duration of the capture.
        """
        if self._frame_receiver is not None:
            return can_frames.capture(self._frame_receiver, duration_s, can_filter, cancel=cancel)

        channel = SocketCANChannel(self.settings.can_interface, bitrate=self.settings.bitrate)
        try:
            return can_frames.capture(channel, duration_s, can_filter, cancel=cancel)
        finally:
            channel.close()

    def detect_devices(self) -> list[DetectedDevice]:
        devices = detect_rf_devices(self.executor)
        reader = detect_transponder_reader(self.executor)
        if reader is not None:
            devices.append(reader)
        return devices

    def detect_transponder_reader(self) -> DetectedDevice | None:
        return detect_transponder_reader(self.executor)

    def rf_capture(
        self, device: str, filename: str, frequency: int, sample_rate: int, gain: int, duration_s: float
    ) -> ExecResult:
        command = rf_capture_command(device, filename, frequency, sample_rate, gain, duration_s)
        return self.executor.execute(command)

    def rf_replay(self, device: str, filename: str, frequency: int, sample_rate: int, gain: int) -> ExecResult:
        command = rf_replay_command(device, filename, frequency, sample_rate, gain)
        return self.executor.execute(command)

