"""Command-line interface for loopcast."""

from __future__ import annotations

import asyncio
import sys

import aiohttp
import click

DEFAULT_SERVER = "http://localhost:8000"


async def make_request(method: str, url: str, **kwargs):
    """Make an async HTTP request and return the decoded JSON body."""
    async with aiohttp.ClientSession() as session:
        async with session.request(method, url, **kwargs) as response:
            payload = await response.json(content_type=None)
            if response.status >= 400:
                message = payload.get("error") if isinstance(payload, dict) else None
                raise click.ClickException(message or f"HTTP {response.status}")
            return payload


def _call(method: str, url: str, **kwargs):
    try:
        return asyncio.run(make_request(method, url, **kwargs))
    except aiohttp.ClientError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


def _echo_status(status: dict, indent: str = "") -> None:
    click.echo(f"{indent}Station: {status['station_id']}")
    click.echo(f"{indent}  State: {status['state']}")
    if status.get("pid") is not None:
        click.echo(f"{indent}  PID: {status['pid']}")
    if status.get("uptime_seconds") is not None:
        click.echo(f"{indent}  Uptime: {status['uptime_seconds']}s")
    click.echo(f"{indent}  Restarts: {status['restart_count']}")
    if status.get("restart_pending"):
        click.echo(f"{indent}  Restart pending")
    if status.get("budget_exhausted"):
        click.echo(f"{indent}  Restart budget exhausted; manual restart required")
    if status.get("last_error"):
        click.echo(f"{indent}  Last error: {status['last_error']}")


server_option = click.option("--server", default=DEFAULT_SERVER, show_default=True, help="Server URL")


@click.group()
def cli():
    """Looping broadcast supervisor CLI."""
    pass


@cli.command()
@click.option("--host", help="Interface to bind (default from LOOPCAST_HOST)")
@click.option("--port", type=int, help="Port to listen on (default from LOOPCAST_PORT)")
@click.option("--log-level", help="Logging level (default from LOG_LEVEL)")
def serve(host, port, log_level):
    """Run the HTTP API and supervisor."""
    from .server import configure_logging, create_app
    from .settings import Settings

    configure_logging(log_level)
    settings = Settings.load()
    app = create_app(settings)
    app.run(host=host or settings.host, port=port or settings.port)


@cli.command()
@click.argument("station_id")
@server_option
def start(station_id, server):
    """Start a station."""
    status = _call("POST", f"{server}/stations/{station_id}/start")
    _echo_status(status)


@cli.command()
@click.argument("station_id")
@server_option
def stop(station_id, server):
    """Stop a station."""
    status = _call("POST", f"{server}/stations/{station_id}/stop")
    _echo_status(status)


@cli.command()
@click.argument("station_id")
@server_option
def restart(station_id, server):
    """Restart a station with fresh configuration."""
    status = _call("POST", f"{server}/stations/{station_id}/restart")
    _echo_status(status)


@cli.command()
@click.argument("station_id")
@server_option
def status(station_id, server):
    """Show the status of one station."""
    _echo_status(_call("GET", f"{server}/stations/{station_id}"))


@cli.command("list-stations")
@server_option
def list_stations(server):
    """List every known station."""
    stations = _call("GET", f"{server}/stations").get("stations", [])
    if not stations:
        click.echo("No stations")
        return

    click.echo(f"Found {len(stations)} station(s):")
    click.echo()
    for station in stations:
        _echo_status(station)
        click.echo()


@cli.command()
@click.argument("station_id")
@click.option("--no-apply", is_flag=True, help="Only rewrite the manifest; never restart")
@server_option
def materialize(station_id, no_apply, server):
    """Rewrite a station's playlist manifest."""
    result = _call("POST", f"{server}/stations/{station_id}/playlist", json={"apply": not no_apply})
    click.echo(f"Playlist updated: {result['summary']}")
    click.echo(f"State: {result['state']}")


@cli.command()
@click.argument("station_id")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Also save the image locally")
@server_option
def snapshot(station_id, output, server):
    """Render a preview frame of a station."""
    result = _call("POST", f"{server}/stations/{station_id}/snapshot")
    click.echo(f"Snapshot: {server}{result['snapshot']}")
    if not output:
        return

    async def _download():
        async with aiohttp.ClientSession() as session:
            async with session.get(f"{server}{result['snapshot']}") as response:
                response.raise_for_status()
                return await response.read()

    try:
        data = asyncio.run(_download())
    except aiohttp.ClientError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    with open(output, "wb") as handle:
        handle.write(data)
    click.echo(f"Saved to {output}")


@cli.command("test-nowplaying")
@click.argument("station_id")
@server_option
def test_nowplaying(station_id, server):
    """Fetch the station's now-playing source once."""
    result = _call("POST", f"{server}/stations/{station_id}/test/nowplaying")
    if result["success"]:
        click.echo(f"Track: {result['track'] or '(empty)'}")
        click.echo(f"  Artist: {result['artist']}")
        click.echo(f"  Title: {result['title']}")
    else:
        click.echo(f"Failed: {result['error']}", err=True)
        sys.exit(1)


@cli.command("test-audio")
@click.argument("station_id")
@server_option
def test_audio(station_id, server):
    """Check that the station's audio sources are reachable."""
    sources = _call("POST", f"{server}/stations/{station_id}/test/audio").get("sources", [])
    if not sources:
        click.echo("No enabled audio sources")
        return
    for source in sources:
        label = source.get("name") or source["url"]
        if source["reachable"]:
            click.echo(f"OK    {label} ({source['latency_ms']} ms)")
        else:
            click.echo(f"FAIL  {label}: {source['error']}")


@cli.command("test-destination")
@click.argument("station_id")
@click.option("--index", type=int, default=0, show_default=True, help="Position of the destination in the station")
@server_option
def test_destination(station_id, index, server):
    """Push a short test pattern to one of the station's destinations."""
    result = _call("POST", f"{server}/stations/{station_id}/test/destination", json={"index": index})
    label = result.get("name") or result["url"]
    if result["success"]:
        click.echo(f"OK    {label}")
    else:
        click.echo(f"FAIL  {label}: {result['error']}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("station_id")
@click.option("--limit", type=int, default=50, show_default=True, help="Number of entries")
@click.option("--level", type=click.Choice(["debug", "info", "warn", "error"]), help="Only entries of this level")
@server_option
def logs(station_id, limit, level, server):
    """Show recent log lines of a station."""
    params = {"limit": limit}
    if level:
        params["level"] = level
    entries = _call("GET", f"{server}/stations/{station_id}/logs", params=params).get("logs", [])
    for entry in entries:
        click.echo(f"[{entry['level']:5}] {entry['source']}: {entry['message']}")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
