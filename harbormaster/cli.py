"""
Harbormaster CLI - offline fileset tooling.
"""

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from .errors import HarbormasterError
from .filesets import FileManifest, build_manifest, diff_manifests
from .settings import get_settings

# Setup
app = typer.Typer(
    name="harbormaster",
    help="Declarative reconciliation of container networks, volumes, stacks and filesets",
    add_completion=False,
)
fileset_app = typer.Typer(help="Inspect fileset manifests without touching a runtime")
app.add_typer(fileset_app, name="fileset")
console = Console()


def configure_logging():
    """Configure logging based on settings."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@app.callback()
def main():
    """Harbormaster command line."""
    configure_logging()


def _fail(message: str) -> None:
    """Print an error and exit.

    Raises:
        typer.Exit: Always exits with code 1
    """
    console.print(f"[bold red]✗ Error:[/bold red] {message}")
    raise typer.Exit(code=1)


def _load_manifest(path: Path) -> FileManifest:
    if not path.is_file():
        _fail(f"manifest {path} not found")
    try:
        return FileManifest.from_json(path.read_text(encoding="utf-8"))
    except HarbormasterError as e:
        _fail(f"{path}: {e}")


@fileset_app.command("index")
def index(
    source: Path = typer.Argument(..., help="Local directory to index"),
    target_path: str = typer.Option("/", "--target-path", "-t", help="Path inside the volume"),
    exclude: list[str] = typer.Option(None, "--exclude", "-e", help="Glob to exclude (repeatable)"),
    output: Path = typer.Option(None, "--output", "-o", help="Write the manifest to this file"),
):
    """Build the manifest of a local directory."""
    try:
        manifest = build_manifest(source, target_path, exclude or [])
    except HarbormasterError as e:
        _fail(str(e))

    if output is None:
        typer.echo(manifest.to_json())
        return
    output.write_text(manifest.to_json() + "\n", encoding="utf-8")
    console.print(
        f"[bold green]✓[/bold green] Indexed {len(manifest.files)} files "
        f"[dim](tree {manifest.tree_hash[:12]})[/dim] → {output}"
    )


@fileset_app.command("diff")
def diff(
    local: Path = typer.Argument(..., help="Manifest of the local tree"),
    remote: Path = typer.Argument(..., help="Manifest read from the volume"),
):
    """Show what a sync from LOCAL onto REMOTE would change."""
    result = diff_manifests(_load_manifest(local), _load_manifest(remote))
    if result.is_empty():
        console.print("[green]No changes.[/green] Trees are identical.")
        return

    for entry in result.to_create:
        console.print(f"[green]+ {entry.path}[/green]")
    for entry in result.to_update:
        console.print(f"[yellow]~ {entry.path}[/yellow]")
    for path in result.to_delete:
        console.print(f"[red]- {path}[/red]")
    console.print(Panel.fit(result.summary(), title="Fileset diff", border_style="cyan"))


@app.command()
def version():
    """Show Harbormaster version."""
    from . import __version__

    console.print(f"Harbormaster version: [bold]{__version__}[/bold]")


if __name__ == "__main__":
    app()
