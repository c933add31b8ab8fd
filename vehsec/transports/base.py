"""Transport interfaces."""

from __future__ import annotations

from typing import Protocol

from vehsec.core.model import CanFrame


class Channel(Protocol):
    def write(self, data: bytes) -> None:
        """Write raw bytes to the adapter."""

    def read(self, timeout_s: float) -> bytes:
        """Return whatever bytes arrive within timeout_s, possibly b''."""

    def reset_input(self) -> None:
        """Discard unread input left over from earlier exchanges."""

    def close(self) -> None:
        """Release the underlying device."""


class FrameSender(Protocol):
    def send_frame(self, can_id: int, data: bytes) -> None:
        """Put one frame on the bus."""


class FrameReceiver(Protocol):
    def recv_frame(self, timeout_s: float) -> CanFrame | None:
        """Return the next frame off the bus, or None after timeout_s."""
