"""Click CLI definitions - main entry point."""

from __future__ import annotations

import logging
import sys

import click

from knowledgeoracle.commands.ask_cmd import ask_command
from knowledgeoracle.commands.config_cmd import config_group
from knowledgeoracle.commands.db_cmd import db_group


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, debug: bool) -> None:
    """knowledgeoracle - deadline-bounded answers from knowledge catalogs and the web."""
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


cli.add_command(ask_command, "ask")
cli.add_command(config_group, "config")
cli.add_command(db_group, "db")


if __name__ == "__main__":
    cli()
