"""wsvc CLI — Typer application root.

Entry point for the ``wsvc`` console script.  Commands without positional
arguments are Typer sub-applications; commands taking positional arguments
(new, checkout, sync, clone) are plain commands so options parse in any
position.
"""
from __future__ import annotations

import logging

import typer

from wsvc.commands import commit, config_cmd, init, log, serve
from wsvc.commands.checkout import checkout_cmd
from wsvc.commands.init import run_new
from wsvc.commands.sync import clone_cmd, sync_cmd

cli = typer.Typer(
    name="wsvc",
    help="wsvc — content-addressed version control with websocket sync.",
    no_args_is_help=True,
)


@cli.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


cli.add_typer(init.app, name="init", help="Initialise a repository in the current directory.")


@cli.command("new", help="Create a directory and initialise a repository in it.")
def _new_cmd(
    name: str = typer.Argument(..., help="Directory to create."),
    bare: bool = typer.Option(False, "--bare", help="Create a bare repository with no workspace."),
) -> None:
    run_new(name, bare)


cli.add_typer(commit.app, name="commit", help="Record the current workspace.")
cli.command("checkout", help="Restore a record into the workspace.")(checkout_cmd)
cli.add_typer(log.app, name="log", help="Show record history from HEAD.")
cli.command("sync", help="Synchronise records with a server.")(sync_cmd)
cli.command("clone", help="Clone a repository from a server.")(clone_cmd)
cli.add_typer(config_cmd.app, name="config", help="Get, set or unset configuration values.")
cli.add_typer(serve.app, name="serve", help="Run the websocket sync server.")


if __name__ == "__main__":
    cli()
