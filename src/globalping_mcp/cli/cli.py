"""Globalping MCP CLI tools using Cyclopts."""

import importlib.metadata
import platform
from pathlib import Path
from typing import Annotated, Literal

import cyclopts
import pyperclip
import uvicorn
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

import globalping_mcp
from globalping_mcp.server.http import create_app
from globalping_mcp.settings import Settings
from globalping_mcp.utilities.logging import get_logger

logger = get_logger("cli")
console = Console()

app = cyclopts.App(
    name="globalping-mcp",
    help="Globalping MCP - delegated OAuth gateway for the Globalping API.",
    version=globalping_mcp.__version__,
)


@app.command
def version(
    *,
    copy: Annotated[
        bool,
        cyclopts.Parameter(
            "--copy",
            help="Copy version information to clipboard",
            negative="",
        ),
    ] = False,
):
    """Display version information and the configured gateway endpoints."""
    info: dict[str, object] = {
        "Globalping MCP version": globalping_mcp.__version__,
        "MCP version": importlib.metadata.version("mcp"),
        "Python version": platform.python_version(),
        "Platform": platform.platform(),
        "Globalping MCP root path": Path(globalping_mcp.__file__).resolve().parents[1],
    }
    try:
        settings = Settings()
    except ValidationError as e:
        logger.warning("Invalid configuration: %s", e)
    else:
        info.update(
            {
                "Public URL": settings.base_url or "(from request)",
                "Callback path": settings.redirect_path,
                "Upstream authorize endpoint": settings.authorization_endpoint,
                "Upstream token endpoint": settings.token_endpoint,
                "Storage": "redis" if settings.redis_url else "memory",
            }
        )

    g = Table.grid(padding=(0, 1))
    g.add_column(style="bold", justify="left")
    g.add_column(style="cyan", justify="right")
    for k, v in info.items():
        g.add_row(k + ":", str(v).replace("\n", " "))

    if copy:
        plain_console = Console(file=None, force_terminal=False, legacy_windows=False)
        with plain_console.capture() as capture:
            plain_console.print(g)
        pyperclip.copy(capture.get())
        console.print("[green]✓[/green] Version information copied to clipboard")
    else:
        console.print(g)


@app.command
def run(
    *,
    host: Annotated[
        str | None,
        cyclopts.Parameter(
            "--host",
            help="Host to bind to (default: 127.0.0.1)",
        ),
    ] = None,
    port: Annotated[
        int | None,
        cyclopts.Parameter(
            name=["--port", "-p"],
            help="Port to bind to (default: 8787)",
        ),
    ] = None,
    base_url: Annotated[
        str | None,
        cyclopts.Parameter(
            "--base-url",
            help="Public URL of this server, used to build the OAuth callback URL",
        ),
    ] = None,
    log_level: Annotated[
        Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] | None,
        cyclopts.Parameter(
            name=["--log-level", "-l"],
            help="Log level",
        ),
    ] = None,
) -> None:
    """Run the authorization gateway with uvicorn.

    Everything not given on the command line is read from GLOBALPING_MCP_*
    environment variables or a .env file.
    """
    overrides = {
        key: value
        for key, value in {
            "host": host,
            "port": port,
            "base_url": base_url,
            "log_level": log_level,
        }.items()
        if value is not None
    }
    try:
        settings = Settings(**overrides)
    except ValidationError as e:
        logger.error("Invalid configuration: %s", e)
        raise SystemExit(1) from e

    if not settings.client_id:
        logger.warning(
            "GLOBALPING_MCP_CLIENT_ID is not set; the upstream authorization will fail"
        )

    logger.info("Starting gateway on %s:%s", settings.host, settings.port)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
