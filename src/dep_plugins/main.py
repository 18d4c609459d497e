import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .cli_config import (
    config_from_data,
    create_sample_config,
    get_config,
    load_config_file,
    validate_config_values,
)
from .dependency import PackageRecord
from .entry_resolver import EntryResolver
from .plugin_loader import PluginLoader
from .registry import ParserRegistry
from .store_walker import StoreWalker
from .structured_logging import configure_logging
from .tree_extractor import TreeExtractor

__version__ = "1.0.0"

console = Console()


def _fail(error: Exception) -> None:
    Console(stderr=True).print(f"❌ Error: {str(error)}", style="red")
    sys.exit(1)


def output_json_records(records: List[PackageRecord]) -> None:
    """Print package records as JSON."""
    print(json.dumps([record.to_dict() for record in records], indent=2))


def output_console_records(records: List[PackageRecord], project_dir: str) -> None:
    table = Table(title=f"Dependencies of {project_dir}")
    table.add_column("Package", style="cyan")
    table.add_column("Version", style="green")
    table.add_column("Path", style="dim")
    table.add_column("Entry", style="dim")

    for record in records:
        table.add_row(
            record.name,
            record.version,
            str(record.path),
            str(record.entry_path) if record.entry_path else "",
        )

    console.print(table)
    console.print(f"📦 {len(records)} packages", style="bold")


async def async_list_parsers(project_dir: str, include_builtin: bool) -> List[str]:
    registry = ParserRegistry(project_dir, include_builtin=include_builtin or None)
    await registry.ready()
    return registry.registered_parsers


async def async_parse_file(
    file_path: str,
    project_dir: str,
    type_token: Optional[str],
    use_sync: bool,
    include_builtin: bool,
):
    registry = ParserRegistry(project_dir, include_builtin=include_builtin or None)
    options = {"type": type_token, "use_async": not use_sync}
    return await registry.parse_file(file_path, options)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.pass_context
def cli(ctx, version):
    """
    🔌 Dep-Plugins: dependency discovery and parser plugin loading

    Enumerates installed packages, extracts dependency trees and loads
    parser plugins from a project's module store.
    """
    if version:
        console.print(f"Dep-Plugins version {__version__}", style="bold blue")
        ctx.exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
    else:
        configure_logging(get_config().logging)


@cli.command("enumerate")
@click.argument("store", type=click.Path(file_okay=False))
def enumerate_command(store: str):
    """List every package directory in a module store."""
    try:
        for path in sorted(StoreWalker().enumerate(store)):
            print(path)
    except Exception as e:
        _fail(e)


@cli.command()
@click.argument(
    "project", type=click.Path(exists=True, file_okay=False), default="."
)
@click.option("--entries", is_flag=True, help="Resolve each package's entry file")
@click.option("--refresh", is_flag=True, help="Ignore cached results")
@click.option(
    "--output-format",
    type=click.Choice(["console", "json"]),
    default="console",
    help="Output format",
    show_default=True,
)
def extract(project: str, entries: bool, refresh: bool, output_format: str):
    """Extract a project's dependency tree, newest version per package."""
    try:
        records = asyncio.run(
            TreeExtractor().extract(project, with_entries=entries, refresh=refresh)
        )
    except KeyboardInterrupt:
        Console(stderr=True).print("\n⚠️  Extraction interrupted by user", style="yellow")
        sys.exit(130)
    except Exception as e:
        _fail(e)

    if output_format == "json":
        output_json_records(records)
    else:
        output_console_records(records, project)


@cli.command()
@click.argument("package_dir", type=click.Path(file_okay=False))
def entry(package_dir: str):
    """Show the entry file of a package."""
    try:
        print(EntryResolver().resolve_entry(package_dir))
    except Exception as e:
        _fail(e)


@cli.command()
@click.argument("identifier")
@click.option(
    "--project",
    type=click.Path(exists=True, file_okay=False),
    default=".",
    help="Project whose module store is searched",
    show_default=True,
)
def load(identifier: str, project: str):
    """Load a plugin module and list its public names."""
    module = PluginLoader(project).load(identifier)
    if module is None:
        _fail(RuntimeError(f"Could not load plugin: {identifier}"))

    console.print(f"✅ Loaded {identifier} from {getattr(module, '__file__', '?')}", style="green")
    public = sorted(name for name in vars(module) if not name.startswith("_"))
    if public:
        console.print(f"  Exports: {', '.join(public)}", style="dim")


@cli.command()
@click.argument(
    "project", type=click.Path(exists=True, file_okay=False), default="."
)
@click.option("--builtin", is_flag=True, help="Include the built-in parsers")
def parsers(project: str, builtin: bool):
    """List the parsers discovered for a project, in dispatch order."""
    try:
        names = asyncio.run(async_list_parsers(project, builtin))
    except Exception as e:
        _fail(e)

    if not names:
        console.print("ℹ️  No parsers found", style="blue")
        return
    for position, name in enumerate(names, 1):
        console.print(f"  {position}. {name}")


@cli.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--project",
    type=click.Path(exists=True, file_okay=False),
    default=".",
    help="Project whose parser plugins are used",
    show_default=True,
)
@click.option("--type", "type_token", help="Content type token (default: file extension)")
@click.option("--sync", "use_sync", is_flag=True, help="Use the parsers' synchronous path")
@click.option("--builtin", is_flag=True, help="Include the built-in parsers")
def parse(
    file_path: str,
    project: str,
    type_token: Optional[str],
    use_sync: bool,
    builtin: bool,
):
    """Parse a file with the first matching parser and print the result as JSON."""
    try:
        result = asyncio.run(
            async_parse_file(file_path, project, type_token, use_sync, builtin)
        )
    except Exception as e:
        _fail(e)

    if result is None:
        Console(stderr=True).print(
            f"⚠️  No parser matches {file_path}", style="yellow"
        )
        sys.exit(1)
    print(json.dumps(result, indent=2, default=str))


@cli.command()
def info():
    """Show information about store layouts, plugins and configuration."""
    info_text = """
[bold blue]📦 Store Layouts:[/bold blue]

• [green]flat[/green] - packages in node_modules and nested node_modules
• [green]side-indexed[/green] - links into .pnpm/<name>@<version>/node_modules

[bold blue]🔌 Parser Plugins:[/bold blue]

• Package directory name starts with [cyan]dep-parser-[/cyan]
• Entry module exports [cyan]parser[/cyan] (class or factory)
• Instances set [cyan]plugin_type = "parser"[/cyan] and [cyan]type_pattern[/cyan]
• Instances implement [cyan]async parse(content)[/cyan] and [cyan]parse_sync(content)[/cyan]

[bold blue]🌍 Environment Variables:[/bold blue]

• [cyan]DEP_PLUGINS_STORE_DIR[/cyan] - Module store directory name
• [cyan]DEP_PLUGINS_PLUGIN_PREFIX[/cyan] - Plugin package name prefix
• [cyan]DEP_PLUGINS_PROVIDERS[/cyan] - Provider order, e.g. npm,pnpm
• [cyan]DEP_PLUGINS_PROVIDER_TIMEOUT[/cyan] - Provider timeout in seconds
• [cyan]DEP_PLUGINS_BUILTIN_PARSERS[/cyan] - Enable built-in parsers
• [cyan]DEP_PLUGINS_LOG_LEVEL[/cyan] - Log level

[bold blue]📄 Configuration Files:[/bold blue]

• [green].dep-plugins.json[/green] / [green].dep-plugins.yaml[/green] - Project-level config
• [green]~/.config/dep-plugins/config.json[/green] - User-level config
• [green]~/.dep-plugins.json[/green] - User home config

[bold blue]💡 Usage Examples:[/bold blue]

  # List installed packages
  dep-plugins enumerate node_modules

  # Dependency tree as JSON
  dep-plugins extract . --output-format json

  # Parse a file with discovered plugins
  dep-plugins parse data.json --builtin
"""
    console.print(
        Panel(
            info_text,
            title="[bold]Dep-Plugins Information[/bold]",
            border_style="blue",
        )
    )


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=".dep-plugins.json",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        console.print(f"⚠️  Config file already exists at {config_path}", style="yellow")
        console.print("Use --force to overwrite", style="dim")
        return

    try:
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_sample_config())

        console.print(f"✅ Created configuration file at {config_path}", style="green")
        console.print("Edit this file to customize your settings", style="dim")

    except OSError as e:
        console.print(f"❌ Failed to create config file: {e}", style="red")


@config.command("show")
def config_show():
    """Show current configuration settings."""
    current_config = get_config()

    console.print(
        Panel("[bold blue]🔧 Configuration[/bold blue]", border_style="blue")
    )

    console.print("\n[bold cyan]📦 Store Settings:[/bold cyan]")
    console.print(f"  Store Directory: {current_config.store.store_dir_name}")
    console.print(f"  Group Prefix: {current_config.store.group_prefix}")
    console.print(f"  Side Index: {current_config.store.side_index_dir}")
    console.print(f"  Manifest: {current_config.store.manifest_name}")

    console.print("\n[bold cyan]📄 Entry Settings:[/bold cyan]")
    console.print(f"  Index File: {current_config.entry.index_file}")
    console.print(
        f"  Loadable Extensions: {', '.join(current_config.entry.loadable_extensions)}"
    )

    console.print("\n[bold cyan]🌳 Provider Settings:[/bold cyan]")
    for name, command in current_config.providers.commands.items():
        console.print(f"  {name}: {' '.join(command)}")
    timeout = current_config.providers.timeout_seconds
    console.print(f"  Timeout: {f'{timeout}s' if timeout else 'none'}")

    console.print("\n[bold cyan]🔌 Registry Settings:[/bold cyan]")
    console.print(f"  Plugin Prefix: {current_config.registry.plugin_prefix}")
    console.print(f"  Capability Tag: {current_config.registry.capability_tag}")
    console.print(
        f"  Built-in Parsers: {current_config.registry.include_builtin_parsers}"
    )

    console.print("\n[bold cyan]📝 Logging Settings:[/bold cyan]")
    console.print(f"  Log Level: {current_config.logging.log_level}")
    console.print(
        f"  Sensitive Data Masking: {current_config.logging.enable_sensitive_data_masking}"
    )

    console.print("\n[bold cyan]⚡ Performance Settings:[/bold cyan]")
    console.print(f"  Caching Enabled: {current_config.performance.enable_caching}")
    console.print(f"  Max Cache Size: {current_config.performance.max_cache_size}")


@config.command("validate")
@click.argument("config_file", type=click.Path(exists=True))
def config_validate(config_file: str):
    """Validate a configuration file."""
    config_data = load_config_file(Path(config_file))

    if config_data is None:
        console.print(f"❌ Could not load config from {config_file}", style="red")
        sys.exit(1)

    errors = validate_config_values(config_from_data(config_data))
    if errors:
        console.print("❌ Configuration validation failed:", style="red")
        for error in errors:
            console.print(f"  • {error}", style="red")
        sys.exit(1)

    console.print(f"✅ Configuration file {config_file} is valid", style="green")


if __name__ == "__main__":
    cli()
