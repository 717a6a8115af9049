"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

import typer

from watsctl.core.errors import DisconnectedError, MalformedFrameError, WatsctlError
from watsctl.core.model import CapabilityBitmask, CapabilitySet, MetricEvent
from watsctl.core.service import WatsService

app = typer.Typer(help="OBD-II telemetry over a BLE GATT characteristic")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log protocol activity to stderr"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def _build_service() -> WatsService:
    service = WatsService()
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    for warning in getattr(service, "runtime_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _echo_capabilities(capabilities: CapabilitySet, *, supported_only: bool = False) -> None:
    for position, (name, supported) in enumerate(capabilities.items()):
        if supported_only and not supported:
            continue
        flag = "yes" if supported else "no"
        typer.echo(f"  {position + 1:02X} {name}: {flag}")
    typer.echo(f"{len(capabilities.supported())} of {len(capabilities)} metrics supported")


def _format_event(event: MetricEvent) -> str:
    stamp = datetime.fromtimestamp(event.timestamp).strftime("%H:%M:%S.%f")[:-3]
    return f"{stamp} {event.metric}: {event.value}"


@app.command("profiles")
def list_profiles() -> None:
    """List available device profiles."""
    try:
        service = _build_service()
        profiles = service.list_profiles()
        if not profiles:
            typer.echo("No profiles loaded")
            raise typer.Exit(code=1)

        for profile in profiles:
            typer.echo(f"{profile.id}: {profile.name}")
            char = profile.transport.char_uuid or "<auto>"
            typer.echo(f"  characteristic: {char}")
            typer.echo(
                f"  poll every {profile.protocol.poll_interval_s:g}s, "
                f"timeout {profile.protocol.response_timeout_s:g}s, "
                f"bitmask policy {profile.protocol.bitmask_policy}"
            )
    except WatsctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("pids")
def list_pids() -> None:
    """List the Mode 01 metrics that can be polled."""
    try:
        service = _build_service()
        for metric in service.list_metrics():
            typer.echo(f"{metric.code} {metric.name}")
    except WatsctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("decode")
def decode_frame(
    payload: str = typer.Argument(..., help="Captured notification bytes as hex"),
    profile: str | None = typer.Option(None, "--profile", help="Profile ID"),
) -> None:
    """Decode a captured notification buffer."""
    try:
        try:
            raw = bytes.fromhex(payload.replace(":", "").replace(" ", ""))
        except ValueError:
            raise MalformedFrameError(f"'{payload}' is not valid hex") from None
        service = _build_service()
        frame, capabilities = service.decode_frame(raw, profile_id=profile)
        if isinstance(frame, CapabilityBitmask):
            typer.echo(f"Capability bitmask {frame.bits}")
            if capabilities is not None:
                _echo_capabilities(capabilities)
        else:
            typer.echo(f"Text: {frame.text!r}")
    except WatsctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("capabilities")
def show_capabilities(
    address: str = typer.Argument(..., help="BLE address of the telemetry device"),
    profile: str | None = typer.Option(None, "--profile", help="Profile ID"),
    char: str | None = typer.Option(None, "--char", help="Characteristic UUID override"),
    supported_only: bool = typer.Option(False, "--supported", help="Only list supported metrics"),
) -> None:
    """Connect, run the capability handshake, and list supported metrics."""

    async def _run(service: WatsService) -> CapabilitySet:
        async with service.open_session(address, profile_id=profile, char_uuid=char) as session:
            return session.get_capabilities()

    try:
        service = _build_service()
        capabilities = asyncio.run(_run(service))
        typer.echo(f"Device {address}:")
        _echo_capabilities(capabilities, supported_only=supported_only)
    except WatsctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("poll")
def poll_metrics(
    address: str = typer.Argument(..., help="BLE address of the telemetry device"),
    metric: list[str] = typer.Option(..., "--metric", "-m", help="Metric name or PID code; repeatable"),
    duration: float | None = typer.Option(None, "--duration", help="Stop after this many seconds"),
    interval: float | None = typer.Option(None, "--interval", help="Poll interval override in seconds"),
    profile: str | None = typer.Option(None, "--profile", help="Profile ID"),
    char: str | None = typer.Option(None, "--char", help="Characteristic UUID override"),
) -> None:
    """Poll metrics and print each decoded response as it arrives."""

    async def _run(service: WatsService) -> None:
        async with service.open_session(
            address,
            profile_id=profile,
            char_uuid=char,
            poll_interval_s=interval,
        ) as session:
            session.subscribe(lambda event: typer.echo(_format_event(event)))
            for name in metric:
                enabled = session.enable_metric(name)
                typer.echo(f"Polling {enabled.name} ({enabled.code})")
            try:
                await asyncio.wait_for(session.wait_closed(), timeout=duration)
            except asyncio.TimeoutError:
                return
            raise DisconnectedError(f"Session ended: {session.close_reason}")

    try:
        service = _build_service()
        asyncio.run(_run(service))
    except KeyboardInterrupt:
        typer.echo("Interrupted", err=True)
    except WatsctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
