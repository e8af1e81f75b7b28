"""Typer CLI entrypoint."""

from __future__ import annotations

import logging

import typer

from proxyboot.core.errors import ProxybootError
from proxyboot.core.service import BootstrapService

app = typer.Typer(help="Advertise over BLE and wait for a central to write the proxy device name")

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _build_service() -> BootstrapService:
    service = BootstrapService()
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    for warning in getattr(service, "runtime_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


@app.command("profiles")
def list_profiles() -> None:
    """List available bootstrap profiles."""
    try:
        service = _build_service()
        profiles = service.list_profiles()
        if not profiles:
            typer.echo("No profiles loaded")
            raise typer.Exit(code=1)

        for profile in profiles:
            typer.echo(f"{profile.id}: {profile.name}")
            typer.echo(f"  device name: {profile.device_name} ({profile.adapter})")
            typer.echo(f"  service: {profile.service_uuid}")
            typer.echo(f"  proxy name char: {profile.proxy_name_char_uuid}")
    except ProxybootError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("run")
def run_bootstrap(
    profile: str | None = typer.Option(None, "--profile", help="Profile ID"),
    device_name: str | None = typer.Option(None, "--device-name", help="Advertised local name"),
    adapter: str | None = typer.Option(None, "--adapter", help="Controller name, e.g. hci0"),
    service_uuid: str | None = typer.Option(None, "--service-uuid", help="128-bit service UUID"),
    char_uuid: str | None = typer.Option(None, "--char-uuid", help="128-bit proxy name characteristic UUID"),
    cancel: str | None = typer.Option(None, "--cancel", help="stdin, signal or none"),
    timeout: float | None = typer.Option(None, "--timeout", help="Give up after this many seconds"),
) -> None:
    """Advertise and wait for a central to write the proxy device name.

    The written name is printed on stdout.
    """
    try:
        service = _build_service()
        resolved = service.resolve_profile(
            profile,
            device_name=device_name,
            adapter=adapter,
            service_uuid=service_uuid,
            proxy_name_char_uuid=char_uuid,
            cancel_mode=cancel,
            timeout_s=timeout,
        )
        result = service.find_proxy_device_name(resolved)
        typer.echo(result.proxy_device_name)
    except ProxybootError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
