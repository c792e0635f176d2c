"""CLI handler for asking one question."""

from __future__ import annotations

import asyncio
import json

import click

from knowledgeoracle.models.query import Intent, QualityTier, Query


def _run(coro):
    return asyncio.run(coro)


def _print_answer(answer) -> None:
    prov = answer.provenance
    click.echo(answer.text)
    click.echo("")
    catalogs = ", ".join(f"{k}={v}" for k, v in prov.catalogs.items()) or "none"
    click.echo(
        f"[{prov.model_used} | attempts={prov.attempts} | catalogs: {catalogs} | "
        f"web={'yes' if prov.used_web_research else 'no'} | {prov.elapsed_seconds:.1f}s]",
        err=True,
    )
    if prov.truncated:
        click.echo("Warning: the answer was cut off.", err=True)
    if prov.skipped_stages:
        click.echo(f"Skipped: {', '.join(prov.skipped_stages)}", err=True)


@click.command("ask")
@click.argument("question")
@click.option(
    "--intent",
    type=click.Choice([i.value for i in Intent]),
    default=Intent.STUDY.value,
    help="Conversation intent",
)
@click.option(
    "--tier",
    type=click.Choice([t.value for t in QualityTier]),
    default=QualityTier.BALANCED.value,
    help="Quality tier",
)
@click.option("--web", is_flag=True, help="Force web research")
@click.option("--tag", "tags", multiple=True, help="Topic tag (repeatable)")
@click.option("--source-id", default="", help="Selected study source id")
@click.option("--user-id", default="", help="Requesting user id (catalog visibility)")
@click.option("--focus", default="", help="Focus hint for the answer")
@click.option("--language", default=None, help="Answer language (default from config)")
@click.option("--json", "as_json", is_flag=True, help="Print answer and provenance as JSON")
def ask_command(question, intent, tier, web, tags, source_id, user_id, focus, language, as_json):
    """Answer QUESTION using the configured catalogs, web research and models."""
    from knowledgeoracle.context import AppContext
    from knowledgeoracle.services.answer_service import GenerationFailedError

    async def _ask():
        ctx = AppContext()
        await ctx.initialize()
        try:
            query = Query(
                raw_text=question,
                language=language or ctx.config.language,
                intent=Intent(intent),
                quality_tier=QualityTier(tier),
                selected_source_id=source_id,
                topic_tags=tuple(tags),
                focus=focus,
                use_web=web,
                user_id=user_id,
            )
            return await ctx.answer_service.answer(query)
        finally:
            await ctx.close()

    try:
        answer = _run(_ask())
    except GenerationFailedError as e:
        if as_json:
            click.echo(json.dumps(e.to_dict(), indent=2, default=str))
        else:
            click.echo(f"Could not generate an answer ({e.code}): {e.message}", err=True)
            click.echo(f"Attempts: {e.attempts}", err=True)
        raise SystemExit(1) from e
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    if as_json:
        click.echo(json.dumps(answer.to_dict(), indent=2, default=str))
    else:
        _print_answer(answer)
