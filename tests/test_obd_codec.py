from __future__ import annotations

import pytest

from vehsec.core.config_loader import load_pid_table
from vehsec.core.errors import ParseError, UnknownPidError
from vehsec.core.obd_codec import OBDCodec, decode_dtc, encode_dtc


@pytest.fixture
def codec() -> OBDCodec:
    return OBDCodec(load_pid_table().pids)


def test_build_request_by_name_and_code(codec: OBDCodec) -> None:
    assert codec.build_request("ENGINE_RPM") == "010C"
    assert codec.build_request("engine_rpm") == "010C"
    assert codec.build_request("010d") == "010D"
    assert codec.build_request("VIN") == "0902"


def test_unknown_pid_rejected(codec: OBDCodec) -> None:
    with pytest.raises(UnknownPidError):
        codec.build_request("WARP_DRIVE")


def test_rpm_reading(codec: OBDCodec) -> None:
    reading = codec.parse_reading("ENGINE_RPM", "410C1AF8", timestamp=12.5)
    assert reading.value == 1726.0
    assert reading.unit == "RPM"
    assert reading.pid == "ENGINE_RPM"
    assert reading.timestamp == 12.5


def test_reading_tolerates_spaces_and_prompt_lines(codec: OBDCodec) -> None:
    assert codec.parse_reading("ENGINE_RPM", "41 0C 1A F8\r").value == 1726.0


def test_speed_and_temperature(codec: OBDCodec) -> None:
    assert codec.parse_reading("VEHICLE_SPEED", "410D3C").value == 60
    assert codec.parse_reading("COOLANT_TEMP", "41055A").value == 50


def test_supplemental_formulas(codec: OBDCodec) -> None:
    assert codec.parse_reading("MAF_RATE", "411001F4").value == 5.0
    assert codec.parse_reading("TIMING_ADVANCE", "410E90").value == 8.0
    assert codec.parse_reading("FUEL_PRESSURE", "410A0A").value == 30
    assert codec.parse_reading("CATALYST_TEMP", "413C1194").value == pytest.approx(410.0)


@pytest.mark.parametrize(
    ("pid", "raw"),
    [
        ("ENGINE_RPM", "410C1A"),
        ("ENGINE_RPM", "NO DATA"),
        ("VEHICLE_SPEED", "410D"),
        ("VEHICLE_SPEED", "?"),
        ("VEHICLE_SPEED", "410C3C"),
        ("VEHICLE_SPEED", ""),
    ],
)
def test_unusable_responses_yield_no_value(codec: OBDCodec, pid: str, raw: str) -> None:
    assert codec.parse_reading(pid, raw).value is None


def test_dtc_list(codec: OBDCodec) -> None:
    dtcs = codec.parse_dtcs("4301230000")
    assert [str(d) for d in dtcs] == ["P0123"]


def test_dtc_list_stops_at_zero_pair_and_restarts(codec: OBDCodec) -> None:
    dtcs = codec.parse_dtcs("43 01 23 C1 45 00 00 81 00")
    assert [str(d) for d in dtcs] == ["P0123", "U0145"]
    assert [str(d) for d in dtcs] == ["P0123", "U0145"]
    assert len(dtcs) == 2
    assert str(dtcs[1]) == "U0145"


def test_dtc_lines_decoded_per_ecu(codec: OBDCodec) -> None:
    assert [str(d) for d in codec.parse_dtcs("43 01 23\r43 04 56")] == ["P0123", "P0456"]
    assert [str(d) for d in codec.parse_dtcs("43010300\r4304560000")] == ["P0103", "P0456"]


def test_dtc_lines_without_header_dropped(codec: OBDCodec) -> None:
    raw = "SEARCHING...\r7F0312\r43 01 23 00 00"
    assert [str(d) for d in codec.parse_dtcs(raw)] == ["P0123"]


def test_dtc_continuation_lines_extend_payload(codec: OBDCodec) -> None:
    raw = "00A\r0:43012304560789\r1:0ABC0000"
    assert [str(d) for d in codec.parse_dtcs(raw)] == ["P0123", "P0456", "P0789", "P0ABC"]


def test_dtc_no_data_is_empty(codec: OBDCodec) -> None:
    assert list(codec.parse_dtcs("NO DATA")) == []


def test_dtc_without_header_rejected(codec: OBDCodec) -> None:
    with pytest.raises(ParseError):
        codec.parse_dtcs("7F0312")


def test_decode_dtc_bit_layout() -> None:
    dtc = decode_dtc(0x81, 0x00)
    assert dtc.prefix == "B"
    assert str(dtc) == "B0100"


def test_encode_dtc_inverts_decode() -> None:
    for prefix in "PCBU":
        for digit1 in range(4):
            for digit2 in range(16):
                for low in range(256):
                    code = f"{prefix}{digit1}{digit2:X}{low:02X}"
                    byte1, byte2 = encode_dtc(code)
                    assert str(decode_dtc(byte1, byte2)) == code


def test_encode_dtc_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        encode_dtc("X0000")


def test_vin_from_multiframe_response(codec: OBDCodec) -> None:
    raw = "014\r0:490201314731\r1:4A433534343452\r2:37323532333637"
    assert codec.parse_vin(raw) == "1G1JC5444R7252367"


def test_vin_without_header_rejected(codec: OBDCodec) -> None:
    with pytest.raises(ParseError):
        codec.parse_vin("410C1AF8")


def test_ecu_name_uses_its_own_header(codec: OBDCodec) -> None:
    assert codec.parse_info_text("490A0145434D", "090A") == "ECM"


def test_clear_acknowledgement() -> None:
    assert OBDCodec.is_clear_ack("44")
    assert OBDCodec.is_clear_ack("OK")
    assert not OBDCodec.is_clear_ack("NO DATA")
