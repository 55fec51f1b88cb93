"""
Display helpers for notebook-session.
"""

import json
from datetime import datetime
from typing import Any

from rich.console import Group
from rich.syntax import Syntax
from rich.text import Text

from notebook_session.notebook import Cell, CellOutput, CellStatus, CellType


def _format_data(data: list[dict[str, Any]]) -> str:
    return json.dumps(data, indent=2, default=str)


def format_output(output: CellOutput) -> str:
    """
    Format a cell output for display (plain text).

    Errors win over everything else; otherwise the richest available
    payload is used, falling back to the plain result text.
    """
    if output.is_error:
        details = output.details if isinstance(output.details, dict) else {}
        if "ename" in details:
            return f"{details['ename']}: {details.get('evalue', '')}"
        return output.error

    parts = []
    if output.stdout:
        parts.append(output.stdout.rstrip("\n"))
    if output.html:
        parts.append(output.html)
    elif output.data:
        parts.append(_format_data(output.data))
    elif output.output and output.output.rstrip("\n") != (output.stdout or "").rstrip("\n"):
        parts.append(output.output)
    if output.stderr:
        parts.append(output.stderr.rstrip("\n"))
    if output.images:
        parts.append(f"[{len(output.images)} image(s)]")
    return "\n".join(parts)


def format_rich_output(output: CellOutput):
    """
    Format a cell output as a Rich renderable.

    Args:
        output: The cell's last run result

    Returns:
        Rich renderable object for console display
    """
    if output.is_error:
        details = output.details if isinstance(output.details, dict) else {}
        error_text = Text()
        if "ename" in details:
            error_text.append(details["ename"], style="bold red")
            error_text.append(f": {details.get('evalue', '')}", style="red")
        else:
            error_text.append(output.error, style="red")
        for tb_line in details.get("traceback", []):
            if isinstance(tb_line, str):
                error_text.append(f"\n{tb_line}", style="dim red")
        return error_text

    renderables = []
    if output.stdout:
        renderables.append(Text(output.stdout.rstrip("\n")))
    if output.html:
        renderables.append(Text(output.html, style="cyan"))
    elif output.data:
        renderables.append(Syntax(_format_data(output.data), "json", theme="monokai", line_numbers=False))
    elif output.output and output.output.rstrip("\n") != (output.stdout or "").rstrip("\n"):
        renderables.append(Syntax(output.output, "python", theme="monokai", line_numbers=False))
    if output.stderr:
        renderables.append(Text(output.stderr.rstrip("\n"), style="yellow"))
    if output.images:
        renderables.append(Text(f"[{len(output.images)} image(s)]", style="dim"))
    return Group(*renderables)


_TYPE_ICONS = {
    CellType.CODE: "py",
    CellType.MARKDOWN: "md",
    CellType.RAW: "raw",
    CellType.SQL: "sql",
}


def get_cell_type_icon(cell_type) -> str:
    """Get a short label for the cell type."""
    return _TYPE_ICONS.get(CellType(cell_type), "?")


def get_cell_status(cell: Cell) -> tuple[str, str]:
    """
    Get status indicator and style for a cell.

    Returns:
        Tuple of (indicator_string, rich_style)
    """
    if cell.status is CellStatus.ERROR:
        return ("err", "red")
    if cell.status is CellStatus.SUCCESS:
        return ("ok", "green")
    if cell.status is CellStatus.RUNNING:
        return ("..", "yellow")
    return ("--", "dim")


def truncate_text(text: str, max_length: int = 100) -> str:
    """Truncate text to max_length, adding ellipsis if needed."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def format_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")
