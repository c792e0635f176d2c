"""CLI handlers for config commands."""

from __future__ import annotations

import json

import click

from knowledgeoracle.config import DEFAULT_CONFIG_PATH, init_config, load_config


def coerce_value(value: str):
    """Turn a command-line string into the TOML value it most likely means."""
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    if value.isdigit():
        return int(value)
    try:
        return float(value)
    except ValueError:
        pass
    if value.startswith("[") or value.startswith("{"):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def set_key(data: dict, key: str, value) -> dict:
    """Set a dot-separated ``key`` in nested TOML data, creating tables as needed."""
    parts = key.split(".")
    target = data
    for part in parts[:-1]:
        if not isinstance(target.get(part), dict):
            target[part] = {}
        target = target[part]
    target[parts[-1]] = value
    return data


@click.group("config")
def config_group():
    """Manage configuration."""
    pass


@config_group.command("init")
def config_init():
    """Create default configuration file."""
    path = init_config()
    click.echo(f"Configuration created at: {path}")


@config_group.command("show")
def config_show():
    """Show current configuration."""
    config = load_config()
    gen = config.generation
    click.echo(f"Config file: {config.config_path}")
    click.echo(f"  Language: {config.language}")
    click.echo(f"  MongoDB: {config.mongodb.uri}/{config.mongodb.database}")
    click.echo(f"  Embeddings: {config.embeddings.base_url} ({config.embeddings.dimensions} dims)")
    click.echo(
        f"  Budget: {config.budget.hard_limit_seconds:.0f}s "
        f"(margin {config.budget.safety_margin_seconds:.1f}s)"
    )
    click.echo(f"  Models: chat={gen.chat_model}, fast={gen.fast_model}, premium={gen.premium_model}")
    for tier, models in gen.tier_models.items():
        click.echo(f"    {tier}: {', '.join(models)}")
    click.echo(
        f"  Research: floor={config.research.confidence_floor}, "
        f"tools={', '.join(config.research.search_tools)}"
    )
    if config.pinned.body:
        click.echo(f"  Pinned: {config.pinned.title or '(untitled)'} ({len(config.pinned.keywords)} keywords)")

    click.echo("\n  Providers:")
    for name, prov in config.providers.items():
        has_key = "configured" if prov.api_key else "not set"
        click.echo(f"    {name}: model={prov.default_model or '-'}, key={has_key}")
    for name, search in config.search.items():
        has_key = "configured" if search.api_key else "not set"
        click.echo(f"    search.{name}: key={has_key}")


@config_group.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Set a configuration value.

    Modifies the TOML config file. Key uses dot notation, e.g.:
    budget.hard_limit_seconds, generation.chat_model, research.confidence_floor
    """
    import tomli_w

    path = DEFAULT_CONFIG_PATH
    if not path.exists():
        click.echo("No config file found. Run 'knowledgeoracle config init' first.", err=True)
        return

    try:
        import tomllib
    except ImportError:
        import tomli as tomllib  # type: ignore[no-redef]

    with open(path, "rb") as f:
        data = tomllib.load(f)

    set_key(data, key, coerce_value(value))

    with open(path, "wb") as f:
        tomli_w.dump(data, f)

    click.echo(f"Set {key} = {value}")
