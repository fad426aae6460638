"""Command line entry point: ``python -m waypost.agent``."""

from dataclasses import replace
from typing import Any

import click

from .runtime import load_agent_settings, run_agent

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@click.command(
    name="waypost-agent",
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("--server-url", help="Base URL of the waypost server")
@click.option("--device-id", help="Device identifier (generated when omitted)")
@click.option("--gps-port", help="Serial device of the NMEA receiver; empty disables GPS")
@click.option("--gps-baudrate", type=int, help="Serial baud rate")
@click.option("--camera-index", type=int, help="OpenCV camera index; negative disables the camera")
@click.option("--interval", "capture_interval", type=float, help="Seconds between captures")
@click.option("--log-level", type=click.Choice(LOG_LEVELS, case_sensitive=False),
              help="Log level for waypost loggers")
@click.pass_context
def main(ctx: click.Context, **options: Any) -> None:
    """Capture position, camera frames and device info and sync them to a waypost server.

    Options left unset fall back to the WAYPOST_* environment variables.
    """
    overrides = {key: value for key, value in options.items() if value is not None}
    settings = replace(load_agent_settings(), **overrides)
    ctx.exit(run_agent(settings))


if __name__ == "__main__":
    main()
