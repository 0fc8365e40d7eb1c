"""
Rendering of API results as tables, JSON or bare IDs.
"""
import csv
import json
from datetime import datetime
from typing import IO, Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import click
from rich.console import Console
from rich.table import Table

console = Console()
err_console = Console(stderr=True)

OUTPUT_FORMATS = ('table', 'json', 'quiet')

Column = Tuple[str, Union[str, Callable[[Dict[str, Any]], Any]]]


def format_json(data: Any) -> str:
    """Format JSON data with pretty printing."""
    return json.dumps(data, indent=2, default=str)


def format_price(cents: Optional[int]) -> str:
    return f"${(cents or 0) / 100:.2f}"


def format_date(ms: Optional[int]) -> str:
    if not ms:
        return ''
    return datetime.fromtimestamp(ms / 1000).strftime('%Y-%m-%d %H:%M:%S')


def _cell(record: Dict[str, Any], getter) -> str:
    value = getter(record) if callable(getter) else record.get(getter)
    if value is None:
        return ''
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def _default_columns(records: List[Dict[str, Any]]) -> List[Column]:
    keys: List[str] = []
    for record in records:
        for key, value in record.items():
            if key not in keys and not isinstance(value, (dict, list)):
                keys.append(key)
    if 'id' in keys:
        keys.remove('id')
        keys.insert(0, 'id')
    return [(key, key) for key in keys]


def render(
    data: Any,
    output: str = 'table',
    columns: Optional[Sequence[Column]] = None,
    title: Optional[str] = None,
) -> None:
    """
    Print a record or list of records.

    Args:
        data: A record (dict) or list of records
        output: 'table', 'json' or 'quiet' (IDs only)
        columns: (header, key-or-callable) pairs; derived from the data if omitted
        title: Table title
    """
    if output == 'json':
        click.echo(format_json(data))
        return

    if isinstance(data, dict):
        records = [data]
    elif isinstance(data, list):
        records = data
    else:
        click.echo(str(data))
        return

    if output == 'quiet':
        for record in records:
            click.echo(str(record.get('id', '')))
        return

    if isinstance(data, dict) and columns is None:
        table = Table(title=title, show_header=True)
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        for key, value in data.items():
            table.add_row(key, _cell(data, key))
        console.print(table)
        return

    if not records:
        console.print("[yellow]No results[/yellow]")
        return

    columns = list(columns or _default_columns(records))
    table = Table(title=title, show_header=True)
    for header, _ in columns:
        table.add_column(header, style="cyan" if header.lower() == 'id' else None)
    for record in records:
        table.add_row(*[_cell(record, getter) for _, getter in columns])
    console.print(table)


def write_csv(records: List[Dict[str, Any]], stream: IO[str]) -> None:
    """
    Write records as CSV with one column per scalar field.

    Nested objects are left out; missing fields are written empty.
    """
    if not records:
        return
    fieldnames = [key for key, _ in _default_columns(records)]
    writer = csv.DictWriter(stream, fieldnames=fieldnames, extrasaction='ignore', lineterminator='\n')
    writer.writeheader()
    writer.writerows(records)


def success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def warn(message: str) -> None:
    err_console.print(f"[yellow]⚠[/yellow] {message}")
