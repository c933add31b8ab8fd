"""Serial channel for ELM327-class adapters and transponder readers using pyserial."""

from __future__ import annotations

import serial

from vehsec.core.errors import DeviceUnavailableError, TransportSendError


class SerialChannel:
    def __init__(self, port: str, baud_rate: int) -> None:
        try:
            self._serial = serial.Serial(
                port=port,
                baudrate=baud_rate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=0,
            )
        except (serial.SerialException, ValueError) as exc:
            raise DeviceUnavailableError(f"Could not open serial port {port}: {exc}") from exc
        self.port = port

    def write(self, data: bytes) -> None:
        try:
            self._serial.write(data)
            self._serial.flush()
        except serial.SerialException as exc:
            raise TransportSendError(f"Serial write to {self.port} failed: {exc}") from exc

    def read(self, timeout_s: float) -> bytes:
        try:
            self._serial.timeout = max(timeout_s, 0.0)
            # Block for the first byte, then drain what is already buffered.
            data = self._serial.read(1)
            if data and self._serial.in_waiting:
                data += self._serial.read(self._serial.in_waiting)
            return data
        except serial.SerialException as exc:
            raise TransportSendError(f"Serial read from {self.port} failed: {exc}") from exc

    def reset_input(self) -> None:
        try:
            self._serial.reset_input_buffer()
        except serial.SerialException as exc:
            raise TransportSendError(f"Serial flush on {self.port} failed: {exc}") from exc

    def close(self) -> None:
        if self._serial.is_open:
            self._serial.close()
