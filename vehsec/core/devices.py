"""Vendor tool execution and device identification from tool output."""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Callable, Sequence

from vehsec.core.can_frames import build_send_command
from vehsec.core.errors import CommandNotAllowedError, TransportSendError, UnsupportedError
from vehsec.core.model import DetectedDevice, ExecResult

LOGGER = logging.getLogger(__name__)

ALLOWED_COMMANDS = (
    "hackrf_info",
    "hackrf_transfer",
    "rtl_test",
    "rtl_sdr",
    "rfcat",
    "pm3",
    "nfc-list",
    "candump",
    "cansend",
    "ip",
)

Runner = Callable[[Sequence[str]], subprocess.CompletedProcess]


def _run(cmd: Sequence[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        cmd,
        check=False,
        capture_output=True,
        text=True,
    )


class ProcessExecutor:
    """Runs allow-listed vendor tools and reports their output."""

    def __init__(self, runner: Runner | None = None, allowed: Sequence[str] = ALLOWED_COMMANDS) -> None:
        self._runner = runner or _run
        self._allowed = tuple(allowed)

    def execute(self, command: str) -> ExecResult:
        argv = shlex.split(command)
        if not argv or argv[0] not in self._allowed:
            raise CommandNotAllowedError(f"Command not allowed: {command!r}")

        try:
            result = self._runner(argv)
        except FileNotFoundError:
            return ExecResult(success=False, output="", error=f"{argv[0]} is not installed")

        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            LOGGER.debug("%s exited %d: %s", argv[0], result.returncode, stderr)
            return ExecResult(success=False, output=output, error=stderr or f"exit status {result.returncode}")
        return ExecResult(success=True, output=output)


def detect_rf_devices(executor: ProcessExecutor) -> list[DetectedDevice]:
    devices: list[DetectedDevice] = []

    hackrf = executor.execute("hackrf_info")
    if hackrf.success and "Found HackRF" in hackrf.output:
        devices.append(DetectedDevice(id="hackrf", name="HackRF One", kind="hackrf"))

    rtlsdr = executor.execute("rtl_test -t")
    if rtlsdr.success and "Found" in rtlsdr.output:
        devices.append(DetectedDevice(id="rtlsdr", name="RTL-SDR", kind="rtlsdr"))

    yardstick = executor.execute("rfcat -r")
    if yardstick.success:
        devices.append(DetectedDevice(id="yardstick", name="YardStick One", kind="yardstick"))

    return devices


def detect_transponder_reader(executor: ProcessExecutor) -> DetectedDevice | None:
    pm3 = executor.execute("pm3 --version")
    if pm3.success and "Proxmark3" in pm3.output:
        return DetectedDevice(id="proxmark3", name="Proxmark3", kind="proxmark3")

    acr = executor.execute("nfc-list")
    if acr.success and "ACR122" in acr.output:
        return DetectedDevice(id="acr122u", name="ACR122U", kind="acr122u")

    return None


def rf_capture_command(
    device: str,
    filename: str,
    frequency: int,
    sample_rate: int,
    gain: int,
    duration_s: float,
) -> str:
    samples = int(sample_rate * duration_s)
    if device == "hackrf":
        return f"hackrf_transfer -r {filename} -f {frequency} -s {sample_rate} -g {gain} -n {samples}"
    if device == "rtlsdr":
        return f"rtl_sdr -f {frequency} -s {sample_rate} -g {gain} -n {samples} {filename}"
    raise UnsupportedError(f"RF capture is not supported on '{device}'")


def rf_replay_command(device: str, filename: str, frequency: int, sample_rate: int, gain: int) -> str:
    if device == "hackrf":
        return f"hackrf_transfer -t {filename} -f {frequency} -s {sample_rate} -x {gain}"
    if device == "rtlsdr":
        raise UnsupportedError("RTL-SDR is receive-only and cannot replay")
    raise UnsupportedError(f"RF replay is not supported on '{device}'")


class CansendSender:
    """Frame sender that shells out to can-utils ``cansend``."""

    def __init__(self, executor: ProcessExecutor, interface: str = "can0") -> None:
        self._executor = executor
        self.interface = interface

    def send_frame(self, can_id: int, data: bytes) -> None:
        result = self._executor.execute(f"cansend {build_send_command(self.interface, can_id, data)}")
        if not result.success:
            raise TransportSendError(f"cansend failed: {result.error}")
