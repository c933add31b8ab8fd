"""CAN frame capture parsing, formatting, analysis, and replay/fuzz loops."""

from __future__ import annotations

import logging
import random
import re
import threading
import time
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from vehsec.core.model import CanFrame
from vehsec.transports.base import FrameReceiver, FrameSender

LOGGER = logging.getLogger(__name__)

_CAPTURE_LINE_RE = re.compile(
    r"\((\d+\.\d+)\)\s+(\w+)\s+([0-9A-F]+)#([0-9A-F]*)", re.IGNORECASE
)
_SEND_COMMAND_RE = re.compile(r"^(?:(\w+)\s+)?([0-9A-F]+)#([0-9A-F]*)$", re.IGNORECASE)

KNOWN_IDS: dict[int, str] = {
    0x0C6: "ENGINE_RPM",
    0x3E5: "ENGINE_TEMP",
    0x244: "THROTTLE",
    0x349: "FUEL_LEVEL",
    0x2D0: "DOOR_LOCKS",
    0x2C1: "WINDOWS",
    0x21A: "LIGHTS",
    0x288: "WIPERS",
    0x1A0: "WHEEL_SPEED_FL",
    0x1A1: "WHEEL_SPEED_FR",
    0x1A2: "WHEEL_SPEED_RL",
    0x1A3: "WHEEL_SPEED_RR",
    0x1AA: "ABS_STATUS",
    0x025: "STEERING_ANGLE",
    0x2F0: "RADIO_CONTROL",
    0x3BC: "DISPLAY",
    0x050: "AIRBAG",
    0x3B7: "SEATBELT",
}


def _frame_from_parts(timestamp: float, interface: str, id_hex: str, data_hex: str) -> CanFrame | None:
    if len(data_hex) % 2:
        return None
    try:
        return CanFrame(
            timestamp=timestamp,
            interface=interface,
            can_id=int(id_hex, 16),
            data=bytes.fromhex(data_hex),
            is_extended=len(id_hex) > 3,
        )
    except ValueError:
        return None


def parse_capture_line(line: str) -> CanFrame | None:
    """Parse one candump ``-L`` line, ``(1700000000.123) can0 1A3#DEADBEEF``."""
    match = _CAPTURE_LINE_RE.search(line)
    if not match:
        return None
    timestamp, interface, id_hex, data_hex = match.groups()
    return _frame_from_parts(float(timestamp), interface, id_hex, data_hex)


def parse_capture(lines: Iterable[str]) -> list[CanFrame]:
    frames = []
    for line in lines:
        frame = parse_capture_line(line)
        if frame is None:
            if line.strip():
                LOGGER.debug("Skipping unparseable capture line %r", line)
            continue
        frames.append(frame)
    return frames


def format_capture_line(frame: CanFrame) -> str:
    width = 8 if frame.is_extended else 3
    return (
        f"({frame.timestamp:.6f}) {frame.interface} "
        f"{frame.can_id:0{width}X}#{frame.data.hex().upper()}"
    )


def build_send_command(interface: str, can_id: int, data: bytes) -> str:
    width = 8 if can_id > 0x7FF else 3
    return f"{interface} {can_id:0{width}X}#{data.hex().upper()}"


def parse_send_command(command: str) -> tuple[int, bytes]:
    """Split cansend syntax into id and payload."""
    match = _SEND_COMMAND_RE.match(command.strip())
    if not match or len(match.group(3)) % 2:
        raise ValueError(f"Invalid CAN send command '{command}'")
    payload = bytes.fromhex(match.group(3))
    if len(payload) > 8:
        raise ValueError(f"CAN payload exceeds 8 bytes in '{command}'")
    return int(match.group(2), 16), payload


def save_capture(path: Path, frames: Iterable[CanFrame]) -> int:
    lines = [format_capture_line(frame) for frame in frames]
    path.write_text("\n".join(lines) + ("\n" if lines else ""), encoding="utf-8")
    LOGGER.info("Saved %d frames to %s", len(lines), path)
    return len(lines)


def load_capture(path: Path) -> list[CanFrame]:
    return parse_capture(path.read_text(encoding="utf-8").splitlines())


@dataclass(frozen=True)
class CanFilter:
    id_mask: int | None = None
    id_pattern: int | None = None
    data_pattern: bytes | None = None

    def matches(self, frame: CanFrame) -> bool:
        if self.id_mask is not None and self.id_pattern is not None:
            if (frame.can_id & self.id_mask) != self.id_pattern:
                return False
        if self.data_pattern is not None and frame.data != self.data_pattern:
            return False
        return True


@dataclass(frozen=True)
class IdStatistics:
    can_id: int
    name: str
    count: int
    frequency_hz: float
    data_lengths: tuple[int, ...]
    changing_bytes: tuple[int, ...]
    periodic: bool
    sample: str


def _is_periodic(frames: Sequence[CanFrame]) -> bool:
    if len(frames) < 3:
        return False
    intervals = [b.timestamp - a.timestamp for a, b in zip(frames, frames[1:])]
    mean = sum(intervals) / len(intervals)
    variance = sum((i - mean) ** 2 for i in intervals) / len(intervals)
    return variance < 0.1


def _changing_bytes(frames: Sequence[CanFrame]) -> tuple[int, ...]:
    if len(frames) < 2:
        return ()
    changing = []
    for index in range(len(frames[0].data)):
        changes = sum(
            1
            for prev, cur in zip(frames, frames[1:])
            if _byte_at(prev.data, index) != _byte_at(cur.data, index)
        )
        if changes > len(frames) * 0.1:
            changing.append(index)
    return tuple(changing)


def _byte_at(data: bytes, index: int) -> int | None:
    return data[index] if index < len(data) else None


def analyze_traffic(frames: Sequence[CanFrame]) -> dict[int, IdStatistics]:
    """Group frames by id and summarise rate, payload shape and periodicity."""
    by_id: dict[int, list[CanFrame]] = defaultdict(list)
    for frame in frames:
        by_id[frame.can_id].append(frame)

    span = frames[-1].timestamp - frames[0].timestamp if len(frames) > 1 else 0.0
    stats: dict[int, IdStatistics] = {}
    for can_id, group in sorted(by_id.items()):
        stats[can_id] = IdStatistics(
            can_id=can_id,
            name=KNOWN_IDS.get(can_id, "UNKNOWN"),
            count=len(group),
            frequency_hz=len(group) / span if span > 0 else 0.0,
            data_lengths=tuple(sorted({len(f.data) for f in group})),
            changing_bytes=_changing_bytes(group),
            periodic=_is_periodic(group),
            sample=group[0].data.hex().upper(),
        )
    return stats


def _cancelled(cancel: threading.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


def _pause(seconds: float, cancel: threading.Event | None) -> bool:
    """Sleep, returning True when cancellation arrived meanwhile."""
    if seconds <= 0:
        return _cancelled(cancel)
    if cancel is None:
        time.sleep(seconds)
        return False
    return cancel.wait(seconds)


def replay(
    sender: FrameSender,
    frames: Sequence[CanFrame],
    delay_fn: Callable[[CanFrame], float] | None = None,
    *,
    cancel: threading.Event | None = None,
    speed: float = 1.0,
) -> int:
    """Send frames in input order, pausing delay_fn(frame) before each one after the first.

    The default delay reproduces the capture's timestamp gaps, divided by speed.
    Returns the number of frames actually sent.
    """
    if speed <= 0:
        raise ValueError("speed must be positive")

    sent = 0
    previous: CanFrame | None = None
    for frame in frames:
        if previous is not None:
            if delay_fn is not None:
                delay = delay_fn(frame)
            else:
                delay = (frame.timestamp - previous.timestamp) / speed
            if _pause(delay, cancel):
                break
        if _cancelled(cancel):
            break
        sender.send_frame(frame.can_id, frame.data)
        sent += 1
        previous = frame

    LOGGER.info("Replayed %d of %d frames", sent, len(frames))
    return sent


def fuzz(
    sender: FrameSender,
    id_low: int,
    id_high: int,
    duration_s: float,
    *,
    rate_hz: float = 100.0,
    data_length: int = 8,
    random_data: bool = True,
    cancel: threading.Event | None = None,
    rng: random.Random | None = None,
) -> int:
    if id_low > id_high:
        raise ValueError("id_low must not exceed id_high")
    if not 0 <= data_length <= 8:
        raise ValueError("data_length must be between 0 and 8")

    rng = rng or random.Random()
    interval = 1.0 / rate_hz
    end = time.monotonic() + duration_s
    sent = 0
    while time.monotonic() < end and not _cancelled(cancel):
        can_id = rng.randint(id_low, id_high)
        if random_data:
            data = bytes(rng.randrange(256) for _ in range(data_length))
        else:
            data = b"\xff" * data_length
        sender.send_frame(can_id, data)
        sent += 1
        if _pause(min(interval, max(end - time.monotonic(), 0.0)), cancel):
            break

    LOGGER.info("Fuzzed %d frames over ids 0x%X-0x%X", sent, id_low, id_high)
    return sent


def inject(
    sender: FrameSender,
    can_id: int,
    data: bytes,
    rate_hz: float,
    duration_s: float,
    *,
    cancel: threading.Event | None = None,
) -> int:
    interval = 1.0 / rate_hz
    end = time.monotonic() + duration_s
    sent = 0
    while time.monotonic() < end and not _cancelled(cancel):
        sender.send_frame(can_id, data)
        sent += 1
        if _pause(min(interval, max(end - time.monotonic(), 0.0)), cancel):
            break
    return sent


def capture(
    receiver: FrameReceiver,
    duration_s: float,
    can_filter: CanFilter | None = None,
    *,
    cancel: threading.Event | None = None,
) -> list[CanFrame]:
    """Collect frames for duration_s, keeping those the filter matches."""
    frames: list[CanFrame] = []
    end = time.monotonic() + duration_s
    while not _cancelled(cancel):
        remaining = end - time.monotonic()
        if remaining <= 0:
            break
        frame = receiver.recv_frame(min(remaining, 0.1))
        if frame is not None and (can_filter is None or can_filter.matches(frame)):
            frames.append(frame)

    LOGGER.info("Captured %d frames", len(frames))
    return frames
