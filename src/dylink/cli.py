"""dylink CLI entry point."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from dylink.app import Application
from dylink.config import Settings, load_settings
from dylink.errors import DylinkError

console = Console()

T = TypeVar("T")


def run_async(app: Application, coro: Callable[[], Awaitable[T]]) -> T:
    """Run an async command and always close the application.

    Closing matters: aiosqlite's background thread otherwise keeps the
    command from exiting.
    """

    async def wrapped() -> T:
        try:
            return await coro()
        finally:
            await app.shutdown()

    try:
        return asyncio.run(wrapped())
    except DylinkError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1) from e


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


@click.group()
@click.option("-c", "--config", "config_path", type=click.Path(dir_okay=False), help="Path to dylink.toml")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """dylink - encrypted module distribution and hot reload."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)
    try:
        ctx.obj["settings"] = load_settings(config_path)
    except DylinkError as e:
        raise click.ClickException(str(e)) from e


@cli.command()
@click.pass_context
def modules(ctx: click.Context) -> None:
    """List registered modules."""
    app = Application(_settings(ctx))

    async def do_list() -> None:
        await app.open()

        table = Table(title="Modules")
        table.add_column("Order", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Layer")
        table.add_column("Tags")
        table.add_column("Reloadable", style="green")

        for info in app.registry.descriptors():
            table.add_row(
                str(info.order),
                info.name,
                info.layer.value,
                ", ".join(sorted(t.value for t in info.tags)) or "-",
                "yes" if app.registry.is_reload_eligible(info.name) else "no",
            )

        console.print(table)
        metadata = app.registry.metadata_modules()
        if metadata:
            console.print(f"[dim]Metadata modules: {', '.join(metadata)}[/dim]")

    run_async(app, do_list)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show compile staleness per module."""
    app = Application(_settings(ctx))

    async def show_status() -> None:
        await app.open()

        table = Table(title="Compile Status")
        table.add_column("Module", style="cyan")
        table.add_column("Artifact")
        table.add_column("Last Compile")
        table.add_column("Status")

        for name in app.registry.all_modules():
            record = await app.records.get_compile_record(name)
            stale = await app.staleness.needs_rebuild(name)
            table.add_row(
                name,
                "present" if app.store.exists(name) else "[red]missing[/red]",
                str(record.last_compile_tick) if record else "-",
                "[yellow]stale[/yellow]" if stale else "[green]up to date[/green]",
            )

        console.print(table)
        pending = await app.coordinator.pending_units()
        if pending:
            console.print(f"[yellow]Renamed build units pending revert: {', '.join(pending)}[/yellow]")

    run_async(app, show_status)


@cli.command()
@click.option("--if-stale", is_flag=True, help="Skip when the library is up to date")
@click.pass_context
def compile(ctx: click.Context, if_stale: bool) -> None:
    """Compile modules into the encrypted artifact library."""
    app = Application(_settings(ctx))

    async def do_compile() -> None:
        await app.open()
        report = await (app.coordinator.compile_if_stale() if if_stale else app.coordinator.compile())
        if report is None:
            console.print("[green]Library up to date[/green]")
            return

        console.print(f"[green]Stored {len(report.written)} artifacts[/green]")
        if report.renamed:
            console.print(f"  Unique-compiled: {', '.join(report.renamed)}")
        if report.recompiled:
            console.print(f"  Reverted and recompiled: {', '.join(report.reverted)}")

    run_async(app, do_compile)


@cli.command()
@click.pass_context
def recover(ctx: click.Context) -> None:
    """Revert build units left renamed by an interrupted compile."""
    app = Application(_settings(ctx))

    async def do_recover() -> None:
        await app.open()
        reverted = await app.coordinator.recover()
        if reverted:
            console.print(f"[green]Reverted {len(reverted)} build units: {', '.join(reverted)}[/green]")
        else:
            console.print("[dim]Nothing to recover[/dim]")

    run_async(app, do_recover)


@cli.command()
@click.pass_context
def verify(ctx: click.Context) -> None:
    """Read and decrypt every artifact pair."""
    app = Application(_settings(ctx))

    async def do_verify() -> int:
        await app.open()
        failures = 0
        for name in app.registry.all_modules():
            try:
                pair = await app.store.read(name)
            except DylinkError as e:
                failures += 1
                console.print(f"[red]✗ {e}[/red]")
                continue
            console.print(f"[green]✓ {name}[/green] [dim]({len(pair.binary)} + {len(pair.symbols)} bytes)[/dim]")
        return failures

    failures = run_async(app, do_verify)
    if failures:
        raise SystemExit(1)


@cli.command()
@click.option("--watch", is_flag=True, help="Compile and reload when sources change")
@click.option("--poll-interval", default=2.0, help="Source poll interval in seconds")
@click.pass_context
def run(ctx: click.Context, watch: bool, poll_interval: float) -> None:
    """Load all modules and start the entry module."""
    app = Application(_settings(ctx))

    async def do_run() -> None:
        table = await app.start()
        console.print(f"[bold green]Loaded {len(table)} modules[/bold green]")

        if watch:
            console.print(f"[dim]Watching {app.settings.source_root}[/dim]")
            await app.watch(poll_interval=poll_interval)
        else:
            while True:
                await asyncio.sleep(1)

    try:
        run_async(app, do_run)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
