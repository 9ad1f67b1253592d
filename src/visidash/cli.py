"""Visidash CLI - call an AI provider directly or run the API server."""

import asyncio
import json
from typing import Optional

import typer

from visidash.ai_client import (
    DEFAULT_TIMEOUT_MS,
    TransportError,
    TransportTimeout,
    invoke_ai_provider,
)
from visidash.server.__main__ import configure_logging, run_server
from visidash.server.config import ConfigurationError

app = typer.Typer(
    name="visidash",
    help="Visidash - natural-language data visualization dashboard",
    add_completion=False,
)


def parse_header(value: str) -> tuple[str, str]:
    """Split a "Name: value" option into its two parts."""
    name, sep, content = value.partition(":")
    if not sep or not name.strip():
        raise typer.BadParameter(f"Header must look like 'Name: value', got {value!r}")
    return name.strip(), content.strip()


@app.command()
def invoke(
    url: str = typer.Argument(..., help="AI provider or webhook URL"),
    api_key: Optional[str] = typer.Option(
        None, "--api-key", "-k", envvar="AI_PROVIDER_API_KEY", help="Bearer credential"
    ),
    data: str = typer.Option("{}", "--data", "-d", help="JSON payload to send"),
    header: Optional[list[str]] = typer.Option(
        None, "--header", "-H", help="Extra header as 'Name: value' (repeatable)"
    ),
    method: str = typer.Option("POST", "--method", "-X", help="HTTP method"),
    timeout_ms: int = typer.Option(
        DEFAULT_TIMEOUT_MS, "--timeout-ms", help="Time budget in milliseconds"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log request details"),
) -> None:
    """Send one request to an AI provider and print what it answered."""
    configure_logging("DEBUG" if verbose else "WARNING")

    try:
        payload = json.loads(data)
    except ValueError as e:
        typer.secho(f"Invalid JSON payload: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    headers = dict(parse_header(h) for h in header or [])

    try:
        result = asyncio.run(
            invoke_ai_provider(
                url,
                api_key,
                payload,
                headers=headers,
                method=method.upper(),
                timeout_ms=timeout_ms,
            )
        )
    except ConfigurationError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except TransportTimeout:
        typer.secho(f"Timed out after {timeout_ms} ms", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except TransportError as e:
        typer.secho(f"Request failed: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    color = typer.colors.GREEN if result.ok else typer.colors.RED
    typer.secho(f"{result.status} {result.status_text or ''}".rstrip(), fg=color)
    if result.body_is_json:
        typer.echo(json.dumps(result.body, indent=2))
    else:
        typer.echo(result.body)

    if not result.ok:
        raise typer.Exit(1)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Interface to bind"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the Visidash API server."""
    run_server(host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
