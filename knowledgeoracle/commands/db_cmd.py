"""CLI handlers for database maintenance."""

from __future__ import annotations

import asyncio

import click


def _run(coro):
    return asyncio.run(coro)


@click.group("db")
def db_group():
    """Manage the database."""
    pass


@db_group.command("migrate")
def db_migrate():
    """Create collection indexes and the chunk vector search index."""
    from knowledgeoracle.context import AppContext

    async def _migrate():
        ctx = AppContext()
        await ctx.initialize()
        try:
            return await ctx.migrate()
        finally:
            await ctx.close()

    vector_ok = _run(_migrate())
    click.echo("Indexes created.")
    if not vector_ok:
        click.echo(
            "Vector search index could not be created; semantic retrieval stays disabled.",
            err=True,
        )
