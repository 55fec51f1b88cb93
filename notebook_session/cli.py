"""
CLI interface for notebook-session with Rich output.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from notebook_session.autosave import AutosaveBridge
from notebook_session.checkpoint import CheckpointManager
from notebook_session.commands import NotebookCommands
from notebook_session.config import ensure_dirs, load_config
from notebook_session.errors import NotebookImportError
from notebook_session.history import EditHistory
from notebook_session.kernel import KernelRegistry
from notebook_session.notebook import CellType, ExecutionMode, Notebook
from notebook_session.notifications import Level, Notification, Notifier
from notebook_session.persistence import FileSaver, load_notebook, save_notebook
from notebook_session.scheduler import ExecutionScheduler
from notebook_session.session import SessionStore
from notebook_session.templates import get_template, list_templates
from notebook_session.utils import (
    format_rich_output,
    format_timestamp,
    get_cell_status,
    get_cell_type_icon,
    truncate_text,
)

console = Console()

_LEVEL_STYLES = {
    Level.SUCCESS: "green",
    Level.INFO: "dim",
    Level.WARNING: "yellow",
    Level.ERROR: "red",
}


def _setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _load(path: str) -> Notebook:
    try:
        return load_notebook(Path(path))
    except NotebookImportError as e:
        console.print(f"[red]Cannot open {path}: {e}[/red]")
        sys.exit(1)


def _render_cell_source(cell):
    if not cell.content.strip():
        return Text("(empty)", style="dim italic")
    if cell.type == CellType.CODE:
        return Syntax(cell.content, "python", theme="monokai", line_numbers=True, word_wrap=True)
    if cell.type == CellType.SQL:
        return Syntax(cell.content, "sql", theme="monokai", line_numbers=True, word_wrap=True)
    if cell.type == CellType.MARKDOWN:
        return Markdown(cell.content)
    return Text(cell.content)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def main(verbose: bool):
    """notebook-session: notebook editing sessions with a persistent Python kernel."""
    _setup_logging(verbose)


@main.command()
@click.argument("path", type=click.Path(), default="notebook.json")
@click.option("--name", "-n", default=None, help="Notebook name")
@click.option("--template", "-t", "template_id", default=None, help="Template to start from")
def new(path: str, name: Optional[str], template_id: Optional[str]):
    """Create a new notebook."""
    if template_id is not None:
        template = get_template(template_id)
        if template is None:
            console.print(f"[red]Unknown template: {template_id}[/red]")
            console.print("[dim]List templates with:[/dim] notebook-session templates")
            sys.exit(1)
        nb = template.instantiate()
        if name is not None:
            nb.name = name
    else:
        nb = Notebook.new(name=name or Path(path).stem)
        nb.add_cell(type=CellType.MARKDOWN, content=f"# {nb.name}")
        nb.add_cell(type=CellType.CODE, content="")

    save_notebook(nb, Path(path))

    code_count = sum(1 for c in nb.cells if c.type == CellType.CODE)
    console.print(Panel(
        f"[green]Created:[/green] {path}\n"
        f"[dim]Name:[/dim] {nb.name}\n"
        f"[dim]Cells:[/dim] {len(nb.cells)} ({code_count} code)",
        title="[bold blue]notebook-session[/bold blue]",
        border_style="green",
    ))
    console.print(f"\n[dim]Run with:[/dim] notebook-session run {path}")


@main.command()
@click.argument("path", type=click.Path(exists=True))
def show(path: str):
    """Print a notebook's cells and their last outputs."""
    nb = _load(path)
    console.print(Panel(
        f"[bold]{nb.name}[/bold]  [dim]{path}[/dim]\n"
        f"[dim]Updated:[/dim] {format_timestamp(nb.updated_at)}  "
        f"[dim]Mode:[/dim] {nb.settings.execution_mode.value}",
        title="[bold blue]notebook-session[/bold blue]",
        border_style="blue",
    ))
    if not nb.cells:
        console.print("[yellow]Notebook has no cells[/yellow]")
        return

    for i, cell in enumerate(nb.cells):
        status_char, status_style = get_cell_status(cell)
        if cell.type == CellType.CODE:
            title = f"In [{cell.execution_count or ' '}]"
        else:
            title = cell.type.value.capitalize()
        console.print(Panel(
            _render_cell_source(cell),
            title=f"[{status_style}]{i} {get_cell_type_icon(cell.type)} {title}[/{status_style}]",
            subtitle=f"[{status_style}]{status_char}[/{status_style}]",
            border_style=status_style,
            title_align="left",
        ))
        if cell.output is not None:
            console.print(format_rich_output(cell.output))


@main.command()
@click.option("--category", "-c", default=None, help="Only list templates in this category")
def templates(category: Optional[str]):
    """List built-in notebook templates."""
    found = list_templates(category)
    if not found:
        console.print("[yellow]No templates found[/yellow]")
        return

    table = Table(title="Templates", border_style="blue", show_lines=True)
    table.add_column("ID", style="bold cyan")
    table.add_column("Name", style="white")
    table.add_column("Category", style="dim")
    table.add_column("Cells", justify="right", style="green")
    table.add_column("Description", style="dim")
    for template in found:
        table.add_row(
            template.id,
            template.name,
            template.category,
            str(len(template.cells)),
            truncate_text(template.description, 50),
        )
    console.print(table)


async def _run_notebook(commands: NotebookCommands, save: FileSaver, autosave_delay: float) -> list:
    """Run every code cell, autosaving along the way, then save once more."""
    autosave = None
    if commands.notebook.settings.auto_save:
        autosave = AutosaveBridge(commands.store, save, commands.notifier, delay=autosave_delay)
    try:
        settled = await commands.execute_all() or []
    finally:
        if autosave is not None:
            autosave.close()
    await commands.save()
    return settled


@main.command()
@click.argument("path", type=click.Path(exists=True))
@click.option("--save-session", "-s", is_flag=True, help="Save kernel variables after execution")
@click.option("--restore", "-r", is_flag=True, help="Seed the kernel from the saved checkpoint")
@click.option(
    "--mode", "-m",
    type=click.Choice([m.value for m in ExecutionMode]),
    default=None,
    help="Override the notebook's execution mode",
)
def run(path: str, save_session: bool, restore: bool, mode: Optional[str]):
    """Run every code cell of a notebook non-interactively."""
    config = load_config()
    ensure_dirs(config)
    nb = _load(path)

    notifier = Notifier(limit=config.notification_limit)
    registry = KernelRegistry.with_defaults(config.default_kernel)
    store = SessionStore(nb, registry=registry)
    scheduler = ExecutionScheduler(store, notifier)
    saver = FileSaver(Path(path))
    commands = NotebookCommands(
        store,
        scheduler,
        notifier,
        save=saver,
        history=EditHistory(config.history_limit),
    )
    checkpoints = CheckpointManager(config.sessions_dir)

    def on_notification(notification: Notification):
        if notification.level in (Level.WARNING, Level.ERROR):
            style = _LEVEL_STYLES[notification.level]
            console.print(f"[{style}]{notification.message}[/{style}]")

    notifier.listen(on_notification)

    if mode is not None:
        commands.update_settings(execution_mode=mode)

    if restore:
        checkpoint = checkpoints.load_checkpoint(Path(path))
        if checkpoint is None:
            console.print("[yellow]No checkpoint found for this notebook[/yellow]")
        else:
            scheduler.restore_variables(checkpoint["variables"])
            console.print(f"[dim]Restored {len(checkpoint['variables'])} variables[/dim]")

    console.print(Panel(
        f"[bold]{store.notebook.name}[/bold]  [dim]{path}[/dim]",
        title="[bold blue]notebook-session[/bold blue]",
        border_style="blue",
    ))

    code_cells = [c for c in store.notebook.cells if c.type.is_runnable]
    if not code_cells:
        console.print("[yellow]No code cells to execute[/yellow]")
        return

    settled = asyncio.run(_run_notebook(commands, saver, config.autosave_delay))

    success_count = 0
    for cell in settled:
        index = store.notebook.index_of(cell.id)
        console.print(f"[dim]--- Cell {index} ({cell.execution_time or 0}ms) ---[/dim]")
        console.print(Syntax(cell.content, "python", theme="monokai", line_numbers=True))
        if cell.output is not None:
            console.print(format_rich_output(cell.output))
        if not (cell.output and cell.output.is_error):
            success_count += 1
        console.print()

    if save_session:
        kernel = store.current_kernel
        checkpoints.save_checkpoint(kernel.variables, Path(path), store.state.execution_count)
        console.print("[dim]Session saved[/dim]")

    total = len(code_cells)
    if success_count == total:
        console.print(f"[green]All {total} cells executed successfully[/green]")
    else:
        console.print(f"[yellow]Executed {success_count}/{total} cells[/yellow]")


@main.command()
def sessions():
    """List saved variable checkpoints."""
    config = load_config()
    manager = CheckpointManager(config.sessions_dir)
    sessions_list = manager.list_sessions()

    if not sessions_list:
        console.print("[yellow]No saved sessions found[/yellow]")
        console.print("[dim]Save one with --save-session when running[/dim]")
        return

    table = Table(title="Saved Sessions", border_style="blue", show_lines=True)
    table.add_column("#", style="bold cyan", justify="right")
    table.add_column("Name", style="white")
    table.add_column("Saved At", style="dim")
    table.add_column("Variables", justify="right", style="green")
    for i, session in enumerate(sessions_list):
        table.add_row(
            str(i),
            session.get("name", ""),
            session.get("saved_at") or "",
            str(session.get("var_count", 0)),
        )
    console.print(table)


if __name__ == "__main__":
    main()
