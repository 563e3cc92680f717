"""CLI commands for buddian."""

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable

import typer
from rich.console import Console
from rich.table import Table

from buddian import __logo__, __version__

app = typer.Typer(
    name="buddian",
    help=f"{__logo__} buddian - Conversational assistant with plugins",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} buddian v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """buddian - Conversational assistant with plugins."""
    pass


@app.command()
def version():
    """Show the buddian version."""
    console.print(f"{__logo__} buddian v{__version__}")


class ConsoleCarrier:
    """Command carrier that prints plugin replies to the terminal."""

    def __init__(self, user_id: str = "cli", chat_id: str = "cli"):
        self.user_id = user_id
        self.chat_id = chat_id
        self.message_id = ""
        self.language = "en"
        self.replies: list[str] = []

    async def reply(self, text: str, **kwargs: Any) -> None:
        self.replies.append(text)
        console.print(text, markup=False)


def _with_runtime(action: Callable[[Any], Awaitable[Any]]) -> Any:
    """Start a runtime from the saved config, run ``action`` on it and stop it."""
    from buddian.app import build_runtime
    from buddian.config.loader import load_config
    from buddian.core.logger import configure_logger

    config = load_config()
    configure_logger(config)

    async def _main() -> Any:
        runtime = await build_runtime(config)
        await runtime.start()
        try:
            return await action(runtime)
        finally:
            await runtime.stop()

    return asyncio.run(_main())


# ============================================================================
# Plugins
# ============================================================================

plugins_app = typer.Typer(help="Inspect and run plugins")
app.add_typer(plugins_app, name="plugins")


@plugins_app.command("list")
def plugins_list():
    """List loaded plugins with their statistics and commands."""

    async def _collect(runtime):
        manager = runtime.manager
        return manager.get_plugin_stats(), manager.get_available_commands()

    stats, commands = _with_runtime(_collect)
    if not stats:
        console.print("[yellow]No plugins loaded.[/yellow]")
        console.print("[dim]Plugin system may be disabled. Create one with: buddian plugins scaffold --target <name>[/dim]")
        return

    table = Table(title="Loaded Plugins")
    table.add_column("Name", style="cyan")
    table.add_column("Version")
    table.add_column("Status")
    table.add_column("Commands", justify="right")
    table.add_column("Executions", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Avg ms", justify="right")

    for s in stats:
        status = "[green]Active[/green]" if s.active else "[red]Inactive[/red]"
        table.add_row(
            s.name,
            s.version,
            status,
            str(s.command_count),
            str(s.stats.executions),
            str(s.stats.errors),
            f"{s.stats.average_execution_time_ms:.1f}",
        )
    console.print(table)

    if commands:
        cmd_table = Table(title="Available Commands")
        cmd_table.add_column("Command", style="cyan")
        cmd_table.add_column("Plugin")
        cmd_table.add_column("Description")
        cmd_table.add_column("Usage", style="dim")
        for item in commands:
            cmd_table.add_row(f"/{item.command.name}", item.plugin, item.command.description, item.command.usage)
        console.print(cmd_table)

    console.print(f"\n[dim]Total: {len(stats)} plugin(s), {len(commands)} command(s)[/dim]")


@plugins_app.command("run")
def plugins_run(
    command: str = typer.Argument(..., help="Command name, with or without the leading /"),
    args: list[str] | None = typer.Argument(None, help="Command arguments"),
    user: str = typer.Option("cli", "--user", "-u", help="User id passed to the plugin"),
):
    """Execute a plugin command and print its replies."""
    name = command.lstrip("/").lower()
    carrier = ConsoleCarrier(user_id=user)

    async def _execute(runtime):
        return await runtime.manager.execute_command(name, carrier, list(args or []))

    handled = _with_runtime(_execute)
    if not handled:
        console.print(f"[red]Command not handled: /{name}[/red]")
        raise typer.Exit(1)


@plugins_app.command("health")
def plugins_health():
    """Run every plugin's health check."""

    async def _check(runtime):
        return await runtime.manager.health_check()

    results = _with_runtime(_check)
    if not results:
        console.print("[yellow]No plugins loaded.[/yellow]")
        return

    table = Table(title="Plugin Health")
    table.add_column("Plugin", style="cyan")
    table.add_column("Status")
    for name, ok in results.items():
        table.add_row(name, "[green]OK[/green]" if ok else "[red]FAIL[/red]")
    console.print(table)
    if not all(results.values()):
        raise typer.Exit(1)


@plugins_app.command("scaffold")
def plugins_scaffold(
    target: str = typer.Option("", "--target", "-t", help="Name of the plugin to create"),
    directory: Path | None = typer.Option(None, "--dir", "-d", help="Plugin directory (defaults to config)"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing plugin directory"),
):
    """Create a new plugin skeleton in the plugin directory."""
    from buddian.config.loader import load_config
    from buddian.plugins.loader import resolve_plugin_directory
    from buddian.plugins.scaffold import scaffold_plugin

    if not target:
        console.print("[red]--target is required for scaffold[/red]")
        raise typer.Exit(1)

    plugins_dir = directory or resolve_plugin_directory(load_config().plugins.directory)
    try:
        plugin_path = scaffold_plugin(plugins_dir, name=target, kind="dynamic", overwrite=force)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Scaffolded plugin: [cyan]{plugin_path}[/cyan]")


if __name__ == "__main__":
    app()
