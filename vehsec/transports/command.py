"""Serialized command/response transport over a single adapter channel."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from vehsec.core.errors import (
    DeviceUnavailableError,
    NotConnectedError,
    TransportTimeoutError,
    VehsecError,
)
from vehsec.core.model import AdapterKind, Connection
from vehsec.transports.base import Channel
from vehsec.transports.serial_port import SerialChannel
from vehsec.transports.socketcan import SocketCANChannel

LOGGER = logging.getLogger(__name__)

ELM_INIT_COMMANDS = ("ATZ", "ATE0", "ATL0", "ATS0", "ATSP0")
ELM_PROMPT = b">"
LINE_END = b"\r"

ChannelFactory = Callable[[AdapterKind, str, int], Channel]


def open_channel(adapter: AdapterKind, port: str, baud_rate: int) -> Channel:
    if adapter is AdapterKind.SOCKETCAN:
        return SocketCANChannel(port, bitrate=baud_rate)
    return SerialChannel(port, baud_rate)


class FifoLock:
    """Mutual exclusion that admits waiters strictly in arrival order."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._next_ticket = 0
        self._serving = 0

    def __enter__(self) -> FifoLock:
        with self._cond:
            ticket = self._next_ticket
            self._next_ticket += 1
            while ticket != self._serving:
                self._cond.wait()
        return self

    def __exit__(self, *exc_info: object) -> None:
        with self._cond:
            self._serving += 1
            self._cond.notify_all()


def _clean_response(text: str, command: str) -> str:
    lines = []
    for line in text.replace("\n", "\r").split("\r"):
        line = line.strip()
        if not line or line == command or line.startswith("SEARCHING"):
            continue
        lines.append(line)
    return "\r".join(lines)


class CommandTransport:
    """One adapter connection with at most one command in flight.

    Callers on different threads queue in FIFO order; every command gets a hard
    deadline and is never retried here.
    """

    def __init__(self, channel_factory: ChannelFactory | None = None) -> None:
        self._channel_factory = channel_factory or open_channel
        self._queue = FifoLock()
        self._channel: Channel | None = None
        self._connection: Connection | None = None
        self._close_hooks: list[Callable[[], None]] = []

    @property
    def connection(self) -> Connection | None:
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and self._connection.connected

    def add_close_hook(self, hook: Callable[[], None]) -> None:
        self._close_hooks.append(hook)

    def connect(
        self,
        adapter: AdapterKind | str,
        port: str,
        baud_rate: int | None = None,
    ) -> Connection:
        kind = AdapterKind(adapter)
        if self._connection is not None:
            self.disconnect()

        rate = baud_rate or kind.default_baud_rate
        try:
            channel = self._channel_factory(kind, port, rate)
        except DeviceUnavailableError:
            raise
        except (OSError, VehsecError) as exc:
            raise DeviceUnavailableError(f"Could not open {kind.value} adapter on {port}: {exc}") from exc

        with self._queue:
            init_commands = ELM_INIT_COMMANDS if kind.is_elm_class else ()
            for command in init_commands:
                try:
                    response = self._exchange(channel, kind, command, kind.default_timeout_s)
                except VehsecError as exc:
                    channel.close()
                    raise DeviceUnavailableError(
                        f"Adapter initialisation failed at {command} on {port}: {exc}"
                    ) from exc
                LOGGER.debug("init %s -> %r", command, response)

            self._channel = channel
            self._connection = Connection(
                adapter=kind,
                protocol=_protocol_for(kind),
                baud_rate=rate,
                port=port,
            )

        LOGGER.info("Connected to %s on %s at %d", kind.value, port, rate)
        return self._connection

    def send(self, command: str, timeout_s: float | None = None) -> str:
        with self._queue:
            connection, channel = self._connection, self._channel
            if connection is None or channel is None:
                raise NotConnectedError("Not connected to an adapter")
            timeout = timeout_s if timeout_s is not None else connection.adapter.default_timeout_s
            return self._exchange(channel, connection.adapter, command, timeout)

    def disconnect(self) -> None:
        for hook in self._close_hooks:
            hook()

        with self._queue:
            channel, connection = self._channel, self._connection
            self._channel = None
            self._connection = None
            if connection is not None:
                connection.connected = False
            if channel is not None:
                channel.close()
                LOGGER.info("Disconnected from %s", connection.port if connection else "adapter")

    def _exchange(self, channel: Channel, kind: AdapterKind, command: str, timeout_s: float) -> str:
        delimiter = ELM_PROMPT if kind.is_elm_class else LINE_END
        deadline = time.monotonic() + timeout_s

        channel.reset_input()
        channel.write(command.encode("ascii") + LINE_END)
        LOGGER.debug("-> %s", command)

        buffer = bytearray()
        while delimiter not in buffer:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TransportTimeoutError(
                    f"No response to {command} within {timeout_s:.1f}s"
                )
            buffer += channel.read(remaining)

        text = bytes(buffer[: buffer.index(delimiter)]).decode("ascii", errors="replace")
        response = _clean_response(text, command)
        LOGGER.debug("<- %r", response)
        return response


def _protocol_for(kind: AdapterKind) -> str:
    if kind is AdapterKind.SOCKETCAN:
        return "CAN"
    if kind.is_transponder_reader:
        return "RAW"
    return "AUTO"
