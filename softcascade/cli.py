#!/usr/bin/env python3
"""
Command-line interface for softcascade.

Inspects and validates the soft delete declarations of a declarative base.
"""

import importlib
import sys
from typing import Any, Dict, Optional, Set, Type

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree
from sqlalchemy import inspect

from . import __version__
from .config import get_config
from .soft_delete import ConfigurationError, SoftDeleteRegistry

console = Console()


def load_base(target: str) -> Type[Any]:
    """
    Import a declarative base from a "module:attribute" path.

    Args:
        target: Import path such as "myapp.models:Base"

    Returns:
        The declarative base class
    """
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise click.BadParameter(
            f"'{target}' must look like 'package.module:Base'", param_hint="TARGET"
        )

    try:
        module = importlib.import_module(module_name)
        base = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise click.BadParameter(
            f"cannot import '{target}': {e}", param_hint="TARGET"
        ) from e

    if not hasattr(base, "registry"):
        raise click.BadParameter(
            f"'{target}' is not a declarative base", param_hint="TARGET"
        )
    return base


def load_registry(target: str) -> SoftDeleteRegistry:
    """Load and validate every mapped class of a declarative base."""
    registry = SoftDeleteRegistry()
    registry.load_all(load_base(target))
    return registry


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """softcascade - cascading soft deletes for SQLAlchemy."""
    if ctx.invoked_subcommand is None:
        console.print(
            Panel.fit(
                f"[bold blue]softcascade[/bold blue] v{__version__}\n"
                "[dim]Cascading soft deletes for SQLAlchemy[/dim]\n\n"
                "Use [bold]softcascade --help[/bold] to see available commands.",
                border_style="blue",
            )
        )


@cli.command("show")
@click.argument("target")
@click.option("--format", type=click.Choice(["table", "json", "yaml"]), default="table")
def show(target: str, format: str) -> None:
    """Display the soft delete configuration of every mapped class."""
    try:
        registry = load_registry(target)
    except ConfigurationError as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)

    configs = sorted(registry.configured().values(), key=lambda c: c.entity_type)
    data = {c.entity_type: c.to_dict() for c in configs}

    if format == "json":
        console.print_json(data=data)
    elif format == "yaml":
        import yaml

        console.print(yaml.safe_dump(data, default_flow_style=False, sort_keys=True))
    else:
        table = Table(title="Soft Delete Configuration", show_header=True)
        table.add_column("Entity", style="cyan")
        table.add_column("Field", style="green")
        table.add_column("Time aware")
        table.add_column("Hard delete")
        table.add_column("Cascade delete")
        table.add_column("Cascade undelete")

        for entity_config in configs:
            table.add_row(
                entity_config.entity_type,
                entity_config.field_name,
                "✓" if entity_config.time_aware else "✗",
                entity_config.hard_delete.describe(),
                ", ".join(sorted(entity_config.cascade_delete)) or "[dim]-[/dim]",
                ", ".join(sorted(entity_config.cascade_undelete)) or "[dim]-[/dim]",
            )

        console.print(table)


@cli.command("check")
@click.argument("target")
def check(target: str) -> None:
    """Validate soft delete declarations and report cascade cycles."""
    try:
        registry = load_registry(target)
    except ConfigurationError as e:
        console.print("[red]✗ Configuration validation failed:[/red]")
        console.print(f"  [red]• {e}[/red]")
        sys.exit(1)

    count = len(registry.configured())
    console.print(f"[green]✓ {count} soft deleteable entity types are valid[/green]")

    cycles = [cycle for cycle in registry.cascade_cycles() if len(set(cycle)) > 1]
    if cycles:
        console.print("\n[yellow]⚠ Cascade cycles between entity types:[/yellow]")
        for cycle in cycles:
            console.print(f"  [yellow]• {' -> '.join(cycle)}[/yellow]")
        console.print(
            "  [dim]Deleting objects linked in both directions aborts the flush.[/dim]"
        )


@cli.command("graph")
@click.argument("target")
@click.argument("entity")
@click.option(
    "--undelete", is_flag=True, help="Follow cascade-undelete instead of delete"
)
def graph(target: str, entity: str, undelete: bool) -> None:
    """Print the cascade tree of one entity type."""
    try:
        registry = load_registry(target)
    except ConfigurationError as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)

    classes = {cls.__name__: cls for cls in registry.configured()}
    if entity not in classes:
        console.print(f"[red]{entity} is not a soft deleteable entity type[/red]")
        sys.exit(1)

    tree = Tree(f"[bold]{entity}[/bold]")
    _add_branches(registry, classes[entity], tree, undelete, {entity})
    console.print(tree)


def _add_branches(
    registry: SoftDeleteRegistry,
    entity_type: Type[Any],
    node: Tree,
    undelete: bool,
    seen: Set[str],
) -> None:
    config = registry.get(entity_type)
    if config is None:
        return

    fields = config.cascade_undelete if undelete else config.cascade_delete
    relationships = inspect(entity_type).relationships

    for field in sorted(fields):
        target_type = relationships[field].mapper.class_
        name = target_type.__name__
        label = f"{field} → [cyan]{name}[/cyan]"

        if registry.get(target_type) is None:
            node.add(f"{label} [dim](not soft deleteable)[/dim]")
        elif name in seen:
            node.add(f"{label} [yellow](cycle)[/yellow]")
        else:
            branch = node.add(label)
            _add_branches(registry, target_type, branch, undelete, seen | {name})


@cli.group()
def config() -> None:
    """Manage softcascade settings."""
    pass


@config.command("show")
@click.option("--format", type=click.Choice(["table", "json", "yaml"]), default="table")
def config_show(format: str) -> None:
    """Display current settings."""
    try:
        settings = get_config()
    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)

    config_dict: Dict[str, Optional[Any]] = settings.to_dict()

    if format == "json":
        console.print_json(data=config_dict)
    elif format == "yaml":
        import yaml

        console.print(yaml.safe_dump(config_dict, default_flow_style=False))
    else:
        table = Table(title="softcascade Settings", show_header=True)
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        for setting, value in config_dict.items():
            if isinstance(value, bool):
                value = "✓" if value else "✗"
            table.add_row(setting, str(value))

        console.print(table)


if __name__ == "__main__":
    cli()
