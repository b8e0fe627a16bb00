"""wsvc serve — run the websocket sync server.

Settings come from ``WSVC_*`` environment variables (see
:class:`wsvc.settings.ServerSettings`); command-line flags override them.
"""
from __future__ import annotations

import logging
import pathlib
from typing import Optional

import typer
import uvicorn

from wsvc.commands._common import cli_errors
from wsvc.settings import ServerSettings
from wsvc.sync.server import create_app

logger = logging.getLogger(__name__)

app = typer.Typer()


@app.callback(invoke_without_command=True)
def serve(
    ctx: typer.Context,
    root: Optional[pathlib.Path] = typer.Option(None, "--root", help="Repository to serve (WSVC_REPO)."),
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (WSVC_HOST)."),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port (WSVC_PORT)."),
) -> None:
    """Serve a repository to sync clients."""
    overrides = {k: v for k, v in {"repo": root, "host": host, "port": port}.items() if v is not None}
    settings = ServerSettings(**overrides)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=True,
    )
    with cli_errors("serve"):
        server_app = create_app(settings)
    logger.info(
        "✅ Serving %s on %s:%d (%s)",
        settings.repo,
        settings.host,
        settings.port,
        "credentials required" if settings.account else "open",
    )
    uvicorn.run(server_app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
