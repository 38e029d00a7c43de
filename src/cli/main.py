"""
CLI interface for Sidecar Bootstrap
"""
import click
import sys
import os
from rich.console import Console
from rich.table import Table
from rich import box

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(__file__))))

from config import Config
from src.core.artifacts import ArtifactCache
from src.core.bootstrap import Bootstrapper, check_interpreter
from src.core.environment import redact, resolve
from src.core.errors import BootstrapError
from src.core.services import hy2_descriptor, nezha_descriptor

console = Console()
err_console = Console(stderr=True)


@click.group()
def cli():
    """Sidecar Bootstrap - start companion services, then the application"""
    pass


@cli.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.option('--entry-point', default=None, help="Primary entry point as 'module:callable' (default: $BOOTSTRAP_ENTRY_POINT)")
@click.option('--ready-wait', type=float, default=None, help='Seconds to wait after starting the services')
@click.option('--cache-dir', type=click.Path(file_okay=False), default=None, help='Directory for downloaded executables')
@click.option('--app-name', default=None, help='Application name shown in status lines')
@click.argument('options', nargs=-1, type=click.UNPROCESSED)
def run(entry_point, ready_wait, cache_dir, app_name, options):
    """Start the auxiliary services, then run the primary application with OPTIONS"""
    entry_point = entry_point or Config.ENTRY_POINT
    if not entry_point:
        err_console.print("[bold red]No entry point given. Use --entry-point or set BOOTSTRAP_ENTRY_POINT.[/bold red]")
        sys.exit(1)

    if not Config.validate():
        err_console.print("[bold red]Configuration validation failed. Please check your environment variables.[/bold red]")
        sys.exit(1)

    if ready_wait is not None and ready_wait < 0:
        raise click.BadParameter("must not be negative", param_hint="--ready-wait")

    check_interpreter(console=err_console)

    bootstrapper = Bootstrapper(
        entry_point,
        ready_wait=ready_wait,
        cache_dir=cache_dir,
        app_name=app_name,
        console=console,
        err_console=err_console,
    )
    outcome = bootstrapper.boot(options)
    if not outcome.delegated:
        sys.exit(1)


@cli.command()
@click.option('--cache-dir', type=click.Path(file_okay=False), default=None, help='Directory for downloaded executables')
def fetch(cache_dir):
    """Download both auxiliary executables into the cache if missing"""
    cache_dir = cache_dir or Config.CACHE_DIR
    cache = ArtifactCache(timeout=Config.fetch_timeout())

    for descriptor in (hy2_descriptor(cache_dir), nezha_descriptor(cache_dir)):
        try:
            path = cache.ensure_local(descriptor)
        except BootstrapError as e:
            err_console.print(f"[bold red]✗[/bold red] {descriptor.name}: {e}", highlight=False)
            sys.exit(1)
        console.print(f"[bold green]✓[/bold green] {descriptor.name} → {path}")

    console.print(f"[dim]{cache.fetch_count} download(s)[/dim]")


@cli.command()
@click.option('--show-secrets', is_flag=True, default=False, help='Print secret values unmasked')
def env(show_secrets):
    """Show the effective environment handed to the auxiliary services"""
    effective = resolve()
    values = dict(effective) if show_secrets else redact(effective)

    table = Table(box=box.ROUNDED, border_style="cyan", title="Effective environment")
    table.add_column("Variable", style="bold")
    table.add_column("Value")
    table.add_column("Source", style="dim")
    for key, value in values.items():
        source = "env" if (os.environ.get(key) or "").strip() else "default"
        table.add_row(key, value, source)

    console.print(table)


if __name__ == '__main__':
    cli()
