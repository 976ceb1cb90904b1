"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
import signal
from pathlib import Path

import typer

from divectl.core.device_match import best_profile_for_device
from divectl.core.errors import DivectlError
from divectl.core.model import DiveOutcome, SyncStatus
from divectl.core.service import DiveService
from divectl.core.store import write_csv
from divectl.decode.bits import hex_dump

app = typer.Typer(help="Dive log download for Mares GENIUS-family dive computers over BLE")

DEVICE_OPTION = typer.Option(None, "--device", help="Address or partial name")
PROFILE_OPTION = typer.Option(None, "--profile", help="Device profile ID")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log protocol traffic"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _build_service() -> DiveService:
    service = DiveService()
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


class _InterruptFlag:
    """First Ctrl-C finishes the current dive and stops; the second one aborts."""

    def __init__(self) -> None:
        self.raised = False
        self._previous = None

    def __call__(self) -> bool:
        return self.raised

    def _handle(self, signum, frame) -> None:
        if self.raised:
            raise KeyboardInterrupt
        self.raised = True
        typer.echo("Stopping after the current dive (Ctrl-C again to abort)", err=True)

    def __enter__(self) -> _InterruptFlag:
        self._previous = signal.signal(signal.SIGINT, self._handle)
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._previous is not None:
            signal.signal(signal.SIGINT, self._previous)


def _describe(outcome: DiveOutcome) -> str:
    header = outcome.header
    if header is None:
        label = f"dive {outcome.ordinal}"
    else:
        label = f"#{header.dive_number} {header.timestamp:%Y-%m-%d %H:%M}"
    line = f"  [{outcome.status.value}] {label}"
    if header is not None and outcome.status is not SyncStatus.SKIPPED:
        line += f" {header.max_depth:.1f}m {header.duration_seconds // 60}min"
    if outcome.error is not None:
        line += f": {outcome.error}"
    return line


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
            typer.echo(f"  names: {', '.join(profile.match.name_prefix) or '-'}")
            if profile.match.address_prefix:
                typer.echo(f"  addresses: {', '.join(profile.match.address_prefix)}")
    except DivectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("scan")
def scan(
    timeout: float | None = typer.Option(None, "--timeout", help="Scan duration in seconds"),
) -> None:
    """Scan for BLE devices and show the matched profile."""
    try:
        service = _build_service()
        devices = service.scan(timeout)
        if not devices:
            typer.echo("No BLE devices found")
            return

        for device in devices:
            profile = best_profile_for_device(device, service.profiles)
            matched = profile.id if profile else "<no-match>"
            rssi = f" {device.rssi}dBm" if device.rssi is not None else ""
            typer.echo(f"{device.address} {device.name}{rssi} -> {matched}")
    except DivectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("info")
def info(
    device: str | None = DEVICE_OPTION,
    profile: str | None = PROFILE_OPTION,
) -> None:
    """Show the model, PCB number and dive count of the dive computer."""
    try:
        service = _build_service()
        target, summary = service.device_info(device_hint=device, profile_id=profile)
        model = summary.info
        typer.echo(f"Target: {target.device.address} ({target.device.name}) via {target.profile.id}")
        typer.echo(f"Model: {model.model_name} ({model.model.name}, 0x{model.model.value:02X})")
        typer.echo(f"PCB number: {summary.pcb_number or 'unknown'}")
        dives = "unknown" if summary.dive_count is None else summary.dive_count
        typer.echo(f"Dives: {dives}")
    except DivectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("diagnostics")
def diagnostics(
    device: str | None = DEVICE_OPTION,
    profile: str | None = PROFILE_OPTION,
) -> None:
    """Read the fixed diagnostic objects (PCB serial, warranty, dive mode)."""
    try:
        service = _build_service()
        target, device_info, results = service.diagnostics(device_hint=device, profile_id=profile)
        typer.echo(f"Target: {target.device.address} ({device_info.model_name})")
        for result in results:
            if result.data is None:
                typer.echo(f"  {result.name} [{result.address}]: failed: {result.error}")
                continue
            text = result.data.rstrip(b"\0").decode("ascii", errors="replace")
            typer.echo(f"  {result.name} [{result.address}]: {text!r} [{hex_dump(result.data)}]")
    except DivectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("download")
def download(
    output: Path = typer.Option(Path("dives.json"), "--output", "-o", help="JSON dive store to update"),
    device: str | None = DEVICE_OPTION,
    profile: str | None = PROFILE_OPTION,
    save_raw: Path | None = typer.Option(None, "--save-raw", help="Directory for raw header/profile dumps"),
    csv_dir: Path | None = typer.Option(None, "--csv", help="Directory for per-dive CSV timelines"),
    set_clock: bool | None = typer.Option(
        None,
        "--set-clock/--no-set-clock",
        help="Sync the device clock before downloading (default from profile)",
    ),
) -> None:
    """Download dives that are not in the store yet."""
    try:
        service = _build_service()

        def _report(outcome: DiveOutcome) -> None:
            typer.echo(_describe(outcome))
            if csv_dir is not None and outcome.record is not None:
                csv_dir.mkdir(parents=True, exist_ok=True)
                write_csv(csv_dir / f"dive_{outcome.record.header.dive_number:04d}.csv", outcome.record)

        with _InterruptFlag() as cancelled:
            report = service.download(
                output,
                device_hint=device,
                profile_id=profile,
                raw_dir=save_raw,
                set_clock=set_clock,
                should_cancel=cancelled,
                on_outcome=_report,
            )

        typer.echo(
            f"{report.device_info.model_name}: {len(report.outcomes)} dive(s), "
            f"{report.count(SyncStatus.DOWNLOADED)} downloaded, "
            f"{report.count(SyncStatus.PARTIAL)} partial, "
            f"{report.count(SyncStatus.SKIPPED)} skipped, "
            f"{report.count(SyncStatus.FAILED)} failed"
        )
        if report.stored:
            typer.echo(f"Saved {report.stored} new dive(s) to {output}")
        if report.cancelled:
            typer.echo("Download cancelled", err=True)
        if report.count(SyncStatus.FAILED):
            raise typer.Exit(code=1)
    except DivectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("parse")
def parse(
    raw_dir: Path = typer.Argument(..., help="Directory written by 'download --save-raw'"),
    output: Path | None = typer.Option(None, "--output", "-o", help="JSON dive store to update"),
) -> None:
    """Decode raw dumps offline."""
    try:
        service = _build_service()
        outcomes = service.parse_raw(raw_dir, store_path=output)
        if not outcomes:
            typer.echo(f"No raw dives in {raw_dir}")
            return
        for outcome in outcomes:
            typer.echo(_describe(outcome))
        if any(o.status is SyncStatus.FAILED for o in outcomes):
            raise typer.Exit(code=1)
    except DivectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
