from __future__ import annotations

import threading
import time

import pytest

from vehsec.core.errors import (
    DeviceUnavailableError,
    NotConnectedError,
    TransportSendError,
    TransportTimeoutError,
)
from vehsec.core.model import AdapterKind
from vehsec.transports.command import ELM_INIT_COMMANDS, CommandTransport, FifoLock


def test_connect_runs_elm_init_sequence(elm_channel, channel_factory) -> None:
    channel = elm_channel()
    factory = channel_factory(channel)
    transport = CommandTransport(factory)

    connection = transport.connect("elm327", "/dev/rfcomm0")

    assert channel.commands == list(ELM_INIT_COMMANDS)
    assert factory.opened == [(AdapterKind.ELM327, "/dev/rfcomm0", 38400)]
    assert connection.adapter is AdapterKind.ELM327
    assert connection.protocol == "AUTO"
    assert connection.connected
    assert transport.is_connected


def test_socketcan_has_no_init_sequence(elm_channel, channel_factory) -> None:
    channel = elm_channel()
    transport = CommandTransport(channel_factory(channel))

    connection = transport.connect(AdapterKind.SOCKETCAN, "can0")

    assert channel.written == []
    assert connection.protocol == "CAN"
    assert connection.baud_rate == 500000


def test_send_without_connection_raises() -> None:
    transport = CommandTransport()
    with pytest.raises(NotConnectedError):
        transport.send("010C")


def test_send_returns_clean_response(elm_channel, channel_factory) -> None:
    channel = elm_channel({"010C": "SEARCHING...\r410C1AF8"})
    transport = CommandTransport(channel_factory(channel))
    transport.connect("elm327", "/dev/rfcomm0")

    assert transport.send("010C") == "410C1AF8"
    assert channel.written[-1] == b"010C\r"


def test_send_times_out(elm_channel, channel_factory) -> None:
    channel = elm_channel(silent={"0902"})
    transport = CommandTransport(channel_factory(channel))
    transport.connect("elm327", "/dev/rfcomm0")

    started = time.monotonic()
    with pytest.raises(TransportTimeoutError):
        transport.send("0902", timeout_s=0.05)
    assert time.monotonic() - started < 1.0


def test_init_failure_closes_channel(elm_channel, channel_factory) -> None:
    channel = elm_channel(fail_on={"ATE0"})
    transport = CommandTransport(channel_factory(channel))

    with pytest.raises(DeviceUnavailableError) as excinfo:
        transport.connect("elm327", "/dev/rfcomm0")

    assert isinstance(excinfo.value.__cause__, TransportSendError)
    assert channel.closed
    assert transport.connection is None


def test_open_failure_is_device_unavailable() -> None:
    def factory(adapter, port, baud_rate):
        raise OSError("No such file or directory")

    with pytest.raises(DeviceUnavailableError, match="/dev/ttyUSB9"):
        CommandTransport(factory).connect("obdlink", "/dev/ttyUSB9")


def test_disconnect_is_idempotent_and_runs_hooks(elm_channel, channel_factory) -> None:
    channel = elm_channel()
    transport = CommandTransport(channel_factory(channel))
    hooks = []
    transport.add_close_hook(lambda: hooks.append("closed"))
    connection = transport.connect("elm327", "/dev/rfcomm0")

    transport.disconnect()
    transport.disconnect()

    assert channel.closed
    assert not connection.connected
    assert transport.connection is None
    assert hooks == ["closed", "closed"]
    with pytest.raises(NotConnectedError):
        transport.send("010C")


def test_reconnect_replaces_connection(elm_channel) -> None:
    first, second = elm_channel(), elm_channel()
    channels = [first, second]
    transport = CommandTransport(lambda adapter, port, baud_rate: channels.pop(0))

    old = transport.connect("elm327", "/dev/rfcomm0")
    transport.connect("elm327", "/dev/rfcomm1")

    assert not old.connected
    assert first.closed
    assert not second.closed
    assert transport.connection.port == "/dev/rfcomm1"


def test_concurrent_sends_get_their_own_responses(elm_channel, channel_factory) -> None:
    responses = {f"01{pid:02X}": f"41{pid:02X}{pid:02X}" for pid in range(0x20, 0x40)}
    channel = elm_channel(responses)
    transport = CommandTransport(channel_factory(channel))
    transport.connect("elm327", "/dev/rfcomm0")

    results: dict[str, str] = {}

    def worker(command: str) -> None:
        results[command] = transport.send(command)

    threads = [threading.Thread(target=worker, args=(cmd,)) for cmd in responses]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results == responses
    assert all(data.endswith(b"\r") and data.count(b"\r") == 1 for data in channel.written)


def test_fifo_lock_admits_waiters_in_arrival_order() -> None:
    lock = FifoLock()
    order: list[int] = []

    def waiter(index: int) -> None:
        with lock:
            order.append(index)

    threads = []
    with lock:
        for index in range(5):
            thread = threading.Thread(target=waiter, args=(index,))
            thread.start()
            threads.append(thread)
            deadline = time.monotonic() + 2.0
            while lock._next_ticket < index + 2 and time.monotonic() < deadline:
                time.sleep(0.001)
    for thread in threads:
        thread.join()

    assert order == [0, 1, 2, 3, 4]
