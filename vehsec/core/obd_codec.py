"""OBD-II request building and response decoding.

Responses are the trimmed text an ELM327-class adapter returns with echo,
linefeeds and spaces disabled, e.g. ``410C1AF8``. Spaces and CAN frame line
indices (``0:``) are tolerated.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterator, Mapping, Sequence

from vehsec.core.errors import ParseError, UnknownPidError
from vehsec.core.model import Dtc, PidDescriptor, Reading

LOGGER = logging.getLogger(__name__)

NO_DATA = "NO DATA"
_NO_DATA_TOKEN = NO_DATA.replace(" ", "")
DTC_PREFIXES = ("P", "C", "B", "U")

_HEX_RE = re.compile(r"^(?:[0-9A-F]{2})*$")
_LINE_INDEX_RE = re.compile(r"^[0-9A-F]:")
_ISOTP_LENGTH_RE = re.compile(r"^[0-9A-F]{3}$")
_DTC_RE = re.compile(r"^([PCBU])([0-3])([0-9A-F])([0-9A-F]{2})$")

Formula = Callable[[bytes], float | int]

# formula id -> (required data bytes, decoder)
FORMULAS: dict[str, tuple[int, Formula]] = {
    "rpm": (2, lambda d: ((d[0] * 256) + d[1]) / 4),
    "direct": (1, lambda d: d[0]),
    "temp_offset": (1, lambda d: d[0] - 40),
    "raw": (1, lambda d: d[0]),
    "maf": (2, lambda d: ((d[0] * 256) + d[1]) / 100),
    "percent": (1, lambda d: d[0] * 100 / 255),
    "timing_advance": (1, lambda d: d[0] / 2 - 64),
    "fuel_pressure": (1, lambda d: 3 * d[0]),
    "o2_voltage": (1, lambda d: d[0] / 200),
    "catalyst_temp": (2, lambda d: ((d[0] * 256) + d[1]) / 10 - 40),
}


def _response_lines(raw: str) -> list[str]:
    lines = []
    for line in re.split(r"[\r\n]+", raw.upper()):
        line = line.replace(" ", "").strip()
        if not line or _ISOTP_LENGTH_RE.match(line):
            continue
        if _LINE_INDEX_RE.match(line):
            line = line[2:]
        lines.append(line)
    return lines


def _hex_bytes(text: str) -> bytes | None:
    if not _HEX_RE.match(text):
        return None
    return bytes.fromhex(text)


def decode_dtc(byte1: int, byte2: int) -> Dtc:
    prefix = DTC_PREFIXES[(byte1 & 0xC0) >> 6]
    digit1 = (byte1 & 0x30) >> 4
    digit2 = byte1 & 0x0F
    return Dtc(prefix=prefix, code=f"{digit1}{digit2:X}{byte2:02X}")


def encode_dtc(code: str) -> bytes:
    """Pack a code such as ``P0123`` back into its two response bytes."""
    match = _DTC_RE.match(code.strip().upper())
    if not match:
        raise ValueError(f"Invalid DTC '{code}'")
    prefix, digit1, digit2, digit34 = match.groups()
    byte1 = (DTC_PREFIXES.index(prefix) << 6) | (int(digit1) << 4) | int(digit2, 16)
    return bytes((byte1, int(digit34, 16)))


class DtcList(Sequence[Dtc]):
    """Trouble codes decoded on demand from Mode 03 payloads.

    One payload per responding ECU, in response order. Within a payload,
    iteration stops at the first all-zero pair. Each iteration decodes afresh,
    so the list can be walked any number of times.
    """

    def __init__(self, *payloads: bytes) -> None:
        self._payloads = payloads

    def __iter__(self) -> Iterator[Dtc]:
        for payload in self._payloads:
            for offset in range(0, len(payload) - 1, 2):
                byte1, byte2 = payload[offset], payload[offset + 1]
                if byte1 == 0 and byte2 == 0:
                    break
                yield decode_dtc(byte1, byte2)

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __getitem__(self, index):  # type: ignore[override]
        return list(self)[index]

    def __repr__(self) -> str:
        return f"DtcList({[str(d) for d in self]!r})"


class OBDCodec:
    def __init__(self, pids: Mapping[str, PidDescriptor]) -> None:
        self._by_name = {name.upper(): pid for name, pid in pids.items()}
        self._by_code = {pid.code: pid for pid in pids.values()}

    @property
    def pids(self) -> tuple[PidDescriptor, ...]:
        return tuple(self._by_name.values())

    def lookup(self, pid_name: str) -> PidDescriptor:
        key = pid_name.strip().upper()
        pid = self._by_name.get(key) or self._by_code.get(key)
        if pid is None:
            raise UnknownPidError(f"Unknown PID '{pid_name}'")
        return pid

    def build_request(self, pid_name: str) -> str:
        return self.lookup(pid_name).code

    def parse_reading(self, pid_name: str, raw: str, *, timestamp: float | None = None) -> Reading:
        pid = self.lookup(pid_name)
        stamp = time.time() if timestamp is None else timestamp
        return Reading(timestamp=stamp, pid=pid.name, value=self._decode(pid, raw), unit=pid.unit)

    def _decode(self, pid: PidDescriptor, raw: str) -> float | int | None:
        lines = _response_lines(raw)
        if not lines or lines[0] == _NO_DATA_TOKEN:
            return None

        payload = _hex_bytes(lines[0])
        if payload is None:
            LOGGER.debug("Non-hex response for %s: %r", pid.name, raw)
            return None

        echo = bytes.fromhex(f"{pid.mode + 0x40:02X}{pid.code[2:]}")
        if not payload.startswith(echo):
            LOGGER.debug("Response for %s lacks echo %s: %r", pid.name, echo.hex().upper(), raw)
            return None

        required, formula = FORMULAS.get(pid.formula, FORMULAS["raw"])
        data = payload[len(echo):]
        if len(data) < required:
            return None
        return formula(data)

    def parse_dtcs(self, raw: str) -> DtcList:
        """Decode a Mode 03 response, one ``43`` payload per responding ECU.

        Lines without the header are dropped. Indexed continuation lines
        (``1:``, ``2:`` ...) extend the payload of the line before them.
        """
        payloads: list[bytearray] = []
        for line in re.split(r"[\r\n]+", raw.upper()):
            line = line.replace(" ", "").strip()
            if not line or _ISOTP_LENGTH_RE.match(line):
                continue
            if line == _NO_DATA_TOKEN:
                return DtcList()
            continuation = False
            if _LINE_INDEX_RE.match(line):
                continuation = line[0] != "0"
                line = line[2:]

            data = _hex_bytes(line)
            if data is None:
                LOGGER.debug("Dropping non-hex Mode 03 line %r", line)
            elif continuation and payloads:
                payloads[-1] += data
            elif data[:1] == b"\x43":
                payloads.append(bytearray(data[1:]))
            else:
                LOGGER.debug("Dropping Mode 03 line without 43 header: %r", line)

        if not payloads:
            raise ParseError(f"Mode 03 response has no 43 header: {raw!r}")
        return DtcList(*(bytes(p) for p in payloads))

    def parse_vin(self, raw: str) -> str:
        return self.parse_info_text(raw, "0902")

    def parse_info_text(self, raw: str, request_code: str) -> str:
        """Decode a Mode 09 text record (VIN, calibration id, ECU name)."""
        header = f"49{request_code[2:].upper()}"
        joined = "".join(_response_lines(raw))
        if header not in joined:
            raise ParseError(f"Mode 09 response has no {header} header: {raw!r}")

        data_hex = re.sub(rf"{header}[0-9A-F]{{2}}", "", joined)
        text = []
        for offset in range(0, len(data_hex) - 1, 2):
            try:
                char_code = int(data_hex[offset:offset + 2], 16)
            except ValueError:
                continue
            if 32 <= char_code <= 126:
                text.append(chr(char_code))
        return "".join(text).strip()

    @staticmethod
    def is_clear_ack(raw: str) -> bool:
        response = raw.strip()
        return response == "OK" or "44" in response
