from __future__ import annotations

import time
from pathlib import Path

import pytest

from vehsec.core.errors import TransportSendError

ELM_DEFAULTS = {
    "ATZ": "ELM327 v1.5",
    "ATE0": "OK",
    "ATL0": "OK",
    "ATS0": "OK",
    "ATSP0": "OK",
}


class FakeElmChannel:
    """Answers commands the way an ELM327 does: reply, blank line, prompt."""

    def __init__(self, responses: dict[str, str] | None = None, *, silent=(), fail_on=()) -> None:
        self.responses = {**ELM_DEFAULTS, **(responses or {})}
        self.silent = set(silent)
        self.fail_on = set(fail_on)
        self.written: list[bytes] = []
        self.closed = False
        self._pending = bytearray()

    @property
    def commands(self) -> list[str]:
        return [data.decode("ascii").rstrip("\r") for data in self.written]

    def write(self, data: bytes) -> None:
        command = data.decode("ascii").rstrip("\r")
        if command in self.fail_on:
            raise TransportSendError(f"write of {command} failed")
        self.written.append(data)
        if command in self.silent:
            return
        reply = self.responses.get(command, "?")
        self._pending += f"{reply}\r\r>".encode("ascii")

    def read(self, timeout_s: float) -> bytes:
        if not self._pending:
            time.sleep(min(timeout_s, 0.005))
            return b""
        chunk = bytes(self._pending)
        self._pending.clear()
        return chunk

    def reset_input(self) -> None:
        self._pending.clear()

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def isolated_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    return tmp_path


@pytest.fixture
def elm_channel():
    return FakeElmChannel


@pytest.fixture
def channel_factory():
    """Build a channel factory that hands out one prepared channel."""

    def build(channel):
        opened = []

        def factory(adapter, port, baud_rate):
            opened.append((adapter, port, baud_rate))
            return channel

        factory.opened = opened
        return factory

    return build
