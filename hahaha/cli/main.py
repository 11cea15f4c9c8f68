"""hahaha command-line interface.

Commands:
    hahaha run                 Run the controller until SIGTERM/SIGINT.
    hahaha status              Query a running controller's /readyz endpoint.
    hahaha version             Print version and exit.

``status`` talks to http://localhost:8999 (configurable via ``--url``).
"""

from __future__ import annotations

import asyncio
import json

import click
import httpx

from hahaha import __version__

_DEFAULT_URL = "http://localhost:8999"

_STATE_COLORS: dict[str, str] = {
    "ready": "green",
    "warming": "yellow",
    "resyncing": "yellow",
}


def _styled_bool(value: object) -> str:
    return click.style("yes" if value else "no", fg="green" if value else "red")


def _styled_state(state: str) -> str:
    return click.style(state, fg=_STATE_COLORS.get(state.lower(), "white"))


def _get(url: str, path: str) -> dict[str, object]:
    """GET ``path`` and return the JSON body.

    A 503 still carries the readiness body, so it is returned rather than raised.
    """
    endpoint = url.rstrip("/") + path
    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.get(endpoint)
    except httpx.ConnectError as err:
        raise click.ClickException(f"Cannot connect to hahaha at {url}. Is it running?") from err
    except httpx.HTTPError as err:
        raise click.ClickException(f"Request to {endpoint} failed: {err}") from err

    if response.status_code not in (200, 503):
        raise click.ClickException(f"HTTP {response.status_code}: {response.text[:200]}")
    return response.json()  # type: ignore[no-any-return]


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
def cli() -> None:
    """hahaha - shuts down sidecars that outlive their Job's main container."""


@cli.command("version")
def cmd_version() -> None:
    """Print the hahaha version and exit."""
    click.echo(f"hahaha {__version__}")


@cli.command("run")
def cmd_run() -> None:
    """Run the controller (configuration comes from HAHAHA_* environment variables)."""
    from hahaha.app import main

    asyncio.run(main())


@cli.command("status")
@click.option(
    "--url",
    default=_DEFAULT_URL,
    envvar="HAHAHA_URL",
    show_default=True,
    help="Base URL of the health endpoint.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the raw JSON response.")
def cmd_status(url: str, as_json: bool) -> None:
    """Show leadership, cache and queue state of a running controller."""
    data = _get(url, "/readyz")

    if as_json:
        click.echo(json.dumps(data, indent=2))
    else:
        click.echo(click.style("hahaha status", bold=True))
        click.echo(f"  Identity:    {data.get('identity', '')}")
        click.echo(f"  Ready:       {_styled_bool(data.get('ready'))}")
        click.echo(f"  Leader:      {_styled_bool(data.get('leader'))}")
        click.echo(f"  Cache:       {_styled_state(str(data.get('cache_state', 'unknown')))}")
        click.echo(f"  Pods cached: {data.get('cached_resources', 0)}")
        click.echo(f"  Queue depth: {data.get('queue_depth', 0)}")
        click.echo(f"  In flight:   {data.get('in_flight', 0)}")

    if not data.get("ready"):
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
