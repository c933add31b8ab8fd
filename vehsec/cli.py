"""Typer CLI entrypoint."""

from __future__ import annotations

import dataclasses
import logging
import time
from pathlib import Path

import typer

from vehsec.analysis.registry import default_registry
from vehsec.analysis.rolling import predict_rolling_code
from vehsec.analysis.strategies import Evidence
from vehsec.analysis.immo import dealer_key, extract_component_security, extract_eeprom_key
from vehsec.core.can_frames import CanFilter, analyze_traffic, load_capture, save_capture
from vehsec.core.config_loader import load_settings
from vehsec.core.errors import VehsecError
from vehsec.core.model import AdapterKind, ChallengeResponse, Reading, RollingCodeSequence
from vehsec.core.service import VehicleSession

app = typer.Typer(help="Vehicle diagnostics and key-security analysis over ELM327/SocketCAN")

ADAPTER_OPTION = typer.Option(None, "--adapter", help="Adapter type (default from config)")
PORT_OPTION = typer.Option(None, "--port", help="Serial port or CAN interface")
BAUD_OPTION = typer.Option(None, "--baud", help="Baud rate")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _build_session(**overrides) -> VehicleSession:
    settings = load_settings()
    if overrides:
        settings = dataclasses.replace(settings, **overrides)
    session = VehicleSession(settings=settings)
    for warning in getattr(session, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return session


def _connected_session(adapter: AdapterKind | None, port: str | None, baud: int | None) -> VehicleSession:
    session = _build_session()
    connection = session.connect(adapter, port, baud)
    typer.echo(f"Connected to {connection.adapter.value} on {connection.port} ({connection.protocol})", err=True)
    return session


def _format_reading(reading: Reading) -> str:
    if reading.value is None:
        return f"{reading.pid}: no data"
    value = f"{reading.value:.2f}" if isinstance(reading.value, float) else str(reading.value)
    return f"{reading.pid}: {value} {reading.unit}".rstrip()


@app.command("pids")
def list_pids() -> None:
    """List the PIDs known to the codec."""
    try:
        session = _build_session()
        for pid in session.codec.pids:
            typer.echo(f"{pid.code:<6} {pid.name:<20} {pid.unit:<6} {pid.description}".rstrip())
    except VehsecError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("read")
def read_pid(
    pid: str,
    adapter: AdapterKind | None = ADAPTER_OPTION,
    port: str | None = PORT_OPTION,
    baud: int | None = BAUD_OPTION,
) -> None:
    """Read one PID by name or request code."""
    try:
        session = _connected_session(adapter, port, baud)
        try:
            typer.echo(_format_reading(session.read_pid(pid)))
        finally:
            session.disconnect()
    except VehsecError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("dtcs")
def read_dtcs(
    adapter: AdapterKind | None = ADAPTER_OPTION,
    port: str | None = PORT_OPTION,
    baud: int | None = BAUD_OPTION,
) -> None:
    """Show stored diagnostic trouble codes."""
    try:
        session = _connected_session(adapter, port, baud)
        try:
            dtcs = session.get_dtcs()
        finally:
            session.disconnect()
        if not dtcs:
            typer.echo("No stored trouble codes")
            return
        for dtc in dtcs:
            typer.echo(str(dtc))
    except VehsecError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("clear-dtcs")
def clear_dtcs(
    adapter: AdapterKind | None = ADAPTER_OPTION,
    port: str | None = PORT_OPTION,
    baud: int | None = BAUD_OPTION,
) -> None:
    """Clear stored trouble codes (Mode 04)."""
    try:
        session = _connected_session(adapter, port, baud)
        try:
            cleared = session.clear_dtcs()
        finally:
            session.disconnect()
        if not cleared:
            typer.echo("Error: ECU did not acknowledge the clear request", err=True)
            raise typer.Exit(code=1)
        typer.echo("Trouble codes cleared")
    except VehsecError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("info")
def vehicle_info(
    adapter: AdapterKind | None = ADAPTER_OPTION,
    port: str | None = PORT_OPTION,
    baud: int | None = BAUD_OPTION,
) -> None:
    """Show VIN, calibration id and ECU name."""
    try:
        session = _connected_session(adapter, port, baud)
        try:
            info = session.vehicle_info()
        finally:
            session.disconnect()
        typer.echo(f"VIN: {info.vin}")
        typer.echo(f"Calibration ID: {info.calibration_id or '-'}")
        typer.echo(f"ECU: {info.ecu_name or '-'}")
    except VehsecError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("monitor")
def monitor(
    pids: list[str],
    interval: float | None = typer.Option(None, "--interval", help="Seconds between polls"),
    duration: float = typer.Option(10.0, "--duration", help="Seconds to monitor"),
    adapter: AdapterKind | None = ADAPTER_OPTION,
    port: str | None = PORT_OPTION,
    baud: int | None = BAUD_OPTION,
) -> None:
    """Poll PIDs periodically and print every reading."""
    try:
        session = _connected_session(adapter, port, baud)
        try:
            for pid in pids:
                session.on_data(pid, lambda reading: typer.echo(_format_reading(reading)))
            session.start_monitoring(pids, interval)
            time.sleep(duration)
        except KeyboardInterrupt:
            pass
        finally:
            session.stop_monitoring()
            session.disconnect()
    except VehsecError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("capture-stats")
def capture_stats(capture: Path = typer.Argument(..., exists=True, dir_okay=False)) -> None:
    """Summarise a candump log per CAN id."""
    frames = load_capture(capture)
    if not frames:
        typer.echo("No frames in capture")
        raise typer.Exit(code=1)

    typer.echo(f"{len(frames)} frames")
    for can_id, stats in analyze_traffic(frames).items():
        changing = ",".join(str(i) for i in stats.changing_bytes) or "-"
        flags = "periodic" if stats.periodic else ""
        typer.echo(
            f"{can_id:03X} {stats.name:<16} n={stats.count} {stats.frequency_hz:.1f}Hz "
            f"changing={changing} sample={stats.sample} {flags}".rstrip()
        )


@app.command("capture")
def capture(
    output: Path = typer.Argument(..., dir_okay=False, help="candump log to write"),
    duration: float = typer.Option(10.0, "--duration", help="Seconds to record"),
    interface: str | None = typer.Option(None, "--interface", help="CAN interface (default from config)"),
    id_mask: str | None = typer.Option(None, "--id-mask", help="Hex mask applied to CAN ids"),
    id_pattern: str | None = typer.Option(None, "--id-pattern", help="Hex id value required after masking"),
) -> None:
    """Record CAN traffic to a candump log."""
    try:
        can_filter = None
        if id_mask is not None and id_pattern is not None:
            can_filter = CanFilter(id_mask=int(id_mask, 16), id_pattern=int(id_pattern, 16))
        session = _build_session(can_interface=interface) if interface else _build_session()
        frames = session.capture_traffic(duration, can_filter)
        save_capture(output, frames)
        typer.echo(f"Captured {len(frames)} frames to {output}")
    except (VehsecError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("replay")
def replay(
    capture: Path = typer.Argument(..., exists=True, dir_okay=False),
    interface: str | None = typer.Option(None, "--interface", help="CAN interface (default from config)"),
    speed: float = typer.Option(1.0, "--speed", help="Playback speed multiplier"),
) -> None:
    """Replay a candump log onto a CAN interface via cansend."""
    try:
        frames = load_capture(capture)
        session = _build_session(can_interface=interface) if interface else _build_session()
        sent = session.replay_frames(frames, speed=speed)
        typer.echo(f"Replayed {sent}/{len(frames)} frames")
    except (VehsecError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("predict")
def predict(
    codes: list[str] = typer.Argument(..., help="Observed rolling codes in hex, oldest first"),
    fixed_code: str = typer.Option("", "--fixed-code", help="Fixed (serial) part of the transmission"),
) -> None:
    """Predict the next rolling code from observed hops."""
    try:
        observed = tuple(int(code, 16) for code in codes)
    except ValueError:
        typer.echo("Error: rolling codes must be hexadecimal", err=True)
        raise typer.Exit(code=1) from None

    try:
        prediction = predict_rolling_code(RollingCodeSequence(fixed_code=fixed_code, observed_codes=observed))
    except VehsecError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    typer.echo(f"Pattern: {prediction.pattern.value}")
    if prediction.next_code is None:
        raise typer.Exit(code=1)
    typer.echo(f"Next code: {prediction.next_code:X}")


@app.command("crack")
def crack(
    algorithm: str,
    challenge: str | None = typer.Option(None, "--challenge", help="Challenge bytes in hex"),
    response: str | None = typer.Option(None, "--response", help="Response bytes in hex"),
    hops: list[str] = typer.Option([], "--hop", help="Rolling-code hop in hex (repeatable)"),
    fixed_code: str | None = typer.Option(None, "--fixed-code", help="Fixed code in hex"),
    timings: list[float] = typer.Option([], "--timing", help="Response time in ms (repeatable)"),
    samples: list[str] = typer.Option([], "--sample", help="Power-analysis sample in hex (repeatable)"),
    trace: Path | None = typer.Option(None, "--trace", exists=True, dir_okay=False, help="Power trace file"),
    bound: int = typer.Option(100_000, "--bound", help="Bruteforce key-space bound"),
    seed: int | None = typer.Option(None, "--seed", help="Seed for fault injection"),
) -> None:
    """Run the attack strategies against captured evidence."""
    try:
        exchanges = []
        if challenge and response:
            exchanges.append(
                ChallengeResponse(algorithm, bytes.fromhex(challenge), bytes.fromhex(response))
            )
        exchanges.extend(ChallengeResponse(algorithm, b"", timing_ms=t) for t in timings)
        evidence = Evidence(
            algorithm=algorithm,
            exchanges=tuple(exchanges),
            hops=tuple(bytes.fromhex(h) for h in hops),
            fixed_code=fixed_code,
            samples=tuple(bytes.fromhex(s) for s in samples),
            power_trace=tuple(float(v) for v in trace.read_text().split()) if trace else (),
        )
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    try:
        result = default_registry(bruteforce_bound=bound, fault_seed=seed).run(evidence)
    except VehsecError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    if result is None:
        typer.echo("No key recovered")
        raise typer.Exit(code=1)
    if result.confidence is None:
        typer.echo(f"{result.algorithm} key hint {result.key_hex} via {result.method} (unverified)")
        raise typer.Exit(code=1)
    typer.echo(
        f"{result.algorithm} key {result.key_hex} via {result.method} "
        f"(confidence {result.confidence:.2f}, {result.attempts} attempts, {result.bit_length} bits)"
    )


@app.command("immo")
def immo(
    dump: Path = typer.Argument(..., exists=True, dir_okay=False, help="EEPROM image"),
    vin: str | None = typer.Option(None, "--vin", help="VIN for dealer-key derivation"),
) -> None:
    """Scan an EEPROM image for immobilizer key material."""
    image = dump.read_bytes()
    found = False

    component_security = extract_component_security(image)
    if component_security is not None:
        found = True
        typer.echo(f"Component security: {component_security.hex().upper()}")
        if vin:
            typer.echo(f"Dealer key: {dealer_key(component_security, vin)}")

    eeprom_key = extract_eeprom_key(image)
    if eeprom_key is not None:
        found = True
        offset, key = eeprom_key
        typer.echo(f"EEPROM key at 0x{offset:X}: {key.hex().upper()}")

    if not found:
        typer.echo("No key material found")
        raise typer.Exit(code=1)


@app.command("devices")
def list_devices() -> None:
    """Detect attached SDR and transponder-reader hardware."""
    try:
        session = _build_session()
        devices = session.detect_devices()
        if not devices:
            typer.echo("No devices found")
            return
        for device in devices:
            typer.echo(f"{device.id} {device.name} ({device.kind})")
    except VehsecError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
