"""SocketCAN channel implementation using python-can."""

from __future__ import annotations

import can

from vehsec.core.can_frames import format_capture_line, parse_send_command
from vehsec.core.errors import DeviceUnavailableError, TransportSendError
from vehsec.core.model import CanFrame


class SocketCANChannel:
    """Raw CAN access speaking candump/cansend text.

    ``write`` takes cansend syntax (``7DF#02010C``, optionally prefixed by the
    interface name) and ``read`` yields received frames as candump lines
    terminated by ``\\r``.
    """

    def __init__(self, interface: str = "can0", bitrate: int = 500000) -> None:
        try:
            self._bus = can.Bus(channel=interface, interface="socketcan", bitrate=bitrate)
        except (can.CanError, OSError, ValueError) as exc:
            raise DeviceUnavailableError(f"Could not open CAN interface {interface}: {exc}") from exc
        self.interface = interface

    def send_frame(self, can_id: int, data: bytes) -> None:
        message = can.Message(
            arbitration_id=can_id,
            data=data,
            is_extended_id=can_id > 0x7FF,
        )
        try:
            self._bus.send(message)
        except can.CanError as exc:
            raise TransportSendError(f"CAN send on {self.interface} failed: {exc}") from exc

    def write(self, data: bytes) -> None:
        can_id, payload = parse_send_command(data.decode("ascii").strip())
        self.send_frame(can_id, payload)

    def recv_frame(self, timeout_s: float) -> CanFrame | None:
        try:
            message = self._bus.recv(timeout=max(timeout_s, 0.0))
        except can.CanError as exc:
            raise TransportSendError(f"CAN receive on {self.interface} failed: {exc}") from exc
        if message is None:
            return None
        return CanFrame(
            timestamp=message.timestamp,
            interface=self.interface,
            can_id=message.arbitration_id,
            data=bytes(message.data),
            is_extended=message.is_extended_id,
        )

    def read(self, timeout_s: float) -> bytes:
        frame = self.recv_frame(timeout_s)
        if frame is None:
            return b""
        return (format_capture_line(frame) + "\r").encode("ascii")

    def reset_input(self) -> None:
        while self._bus.recv(timeout=0) is not None:
            pass

    def close(self) -> None:
        self._bus.shutdown()
