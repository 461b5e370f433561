"""Command-line interface for Cursor History Tools.

This module provides a CLI built with Typer for listing, previewing and
exporting chat history reconstructed from a local Cursor installation, and
for listing the installation's configuration files.
"""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .assembler import load_conversation
from .discovery import discover_projects, get_cursor_user_dirs
from .markdown_exporter import export_chats, format_timestamp
from .matcher import MatchConfig
from .models import ChatRef, Project, Role, set_selected
from .settings import discover_documentation_groups, discover_settings, preview_setting

app = typer.Typer(
    name="cursor-history",
    help="Discover, preview and export Cursor chat history.",
    no_args_is_help=True,
)
console = Console()

UserDirOption = Annotated[
    Optional[Path],
    typer.Option(
        "--user-dir", "-u",
        help="Cursor 'User' directory (defaults to the platform location or $CURSOR_USER_DIR).",
        file_okay=False,
    ),
]
ContainmentOption = Annotated[
    int,
    typer.Option(
        "--containment-min-length",
        help="Minimum length for prompt/bubble containment matches.",
        min=1,
    ),
]


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        console.print(f"cursor-history version {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version", "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose", "-v",
            help="Show debug logging, including matching decisions.",
        ),
    ] = False,
):
    """Cursor History - Rebuild Cursor chat conversations from local state."""
    _configure_logging(verbose)


def _discover(user_dir: Path | None, config: MatchConfig) -> list[Project]:
    return discover_projects(user_dir, current_dirs=[Path.cwd()], config=config)


def _find_chat(projects: list[Project], chat_id: str) -> ChatRef | None:
    for project in projects:
        for chat in project.chats:
            if chat.chat_id == chat_id:
                return chat
    return None


@app.command()
def projects(
    user_dir: UserDirOption = None,
    containment_min_length: ContainmentOption = 50,
):
    """List discovered projects and their chats."""
    found = _discover(user_dir, MatchConfig(containment_min_length=containment_min_length))
    if not found:
        console.print("[yellow]No Cursor chat history found.[/yellow]")
        raise typer.Exit(0)

    table = Table(title="Cursor Projects")
    table.add_column("Project", style="cyan")
    table.add_column("Chat ID", style="dim")
    table.add_column("Kind")
    table.add_column("Prompts", justify="right")
    table.add_column("Name")

    for project in found:
        label = f"{project.name} (current)" if project.is_current else project.name
        for chat in project.chats:
            table.add_row(
                escape(label),
                escape(chat.chat_id),
                chat.kind.value,
                str(chat.prompt_count) if chat.prompt_count else "",
                escape(chat.name),
            )
            label = ""

    console.print(table)
    console.print(
        f"\n{len(found)} projects, {sum(len(p.chats) for p in found)} chats"
    )


@app.command()
def preview(
    chat_id: Annotated[
        str,
        typer.Argument(help="Chat ID as shown by 'cursor-history projects'."),
    ],
    max_chars: Annotated[
        int,
        typer.Option(
            "--max-chars", "-n",
            help="Truncate each message to this many characters (0 for no limit).",
            min=0,
        ),
    ] = 500,
    user_dir: UserDirOption = None,
    containment_min_length: ContainmentOption = 50,
):
    """Show a reconstructed conversation in the terminal."""
    config = MatchConfig(containment_min_length=containment_min_length)
    chat = _find_chat(_discover(user_dir, config), chat_id)
    if chat is None:
        console.print(f"[red]Error: Chat '{escape(chat_id)}' not found.[/red]")
        raise typer.Exit(1)

    document = load_conversation(chat, config)
    console.print(f"[bold]Chat: {escape(document.title)}[/bold]")
    console.print(f"[dim]Source: {escape(document.source_description)}[/dim]")
    console.print(
        f"Prompts: {document.prompt_count}  Responses: {document.response_count}\n"
    )

    if not document.turns:
        console.print("[yellow]No messages could be reconstructed.[/yellow]")

    for turn in document.turns:
        if turn.role is Role.USER:
            header = f"[bold green]USER (Prompt #{turn.number})[/bold green]"
        else:
            header = f"[bold blue]ASSISTANT (Response #{turn.number})[/bold blue]"
        time_str = format_timestamp(turn.timestamp_ms)
        if time_str:
            header += f" [dim]{time_str}[/dim]"
        console.print(header)

        text = turn.text
        if max_chars and len(text) > max_chars:
            text = text[:max_chars] + "..."
        console.print(escape(text))
        console.print()

    for item in document.skipped:
        console.print(f"[yellow]Skipped {escape(item.source)}: {escape(item.reason)}[/yellow]")


@app.command()
def export(
    output_dir: Annotated[
        Path,
        typer.Argument(help="Directory to write markdown files into.", file_okay=False),
    ],
    project: Annotated[
        Optional[list[str]],
        typer.Option(
            "--project", "-p",
            help="Export only this project (by name). Can be specified multiple times.",
        ),
    ] = None,
    chat_id: Annotated[
        Optional[list[str]],
        typer.Option(
            "--chat", "-c",
            help="Export only this chat ID. Can be specified multiple times.",
        ),
    ] = None,
    user_dir: UserDirOption = None,
    containment_min_length: ContainmentOption = 50,
):
    """Export chats as markdown files, one directory per project."""
    config = MatchConfig(containment_min_length=containment_min_length)
    found = _discover(user_dir, config)

    wanted = {name.lower() for name in project or []}
    for entry in found:
        if not wanted or entry.name.lower() in wanted:
            set_selected(entry.selection, True)

    refs = [chat for entry in found for chat in entry.selected_chats()]
    if chat_id:
        ids = set(chat_id)
        refs = [chat for chat in refs if chat.chat_id in ids]

    if not refs:
        console.print("[yellow]No chats matched the selection.[/yellow]")
        raise typer.Exit(1)

    result = export_chats(refs, output_dir, config=config)

    color = "green" if not result.errors else "yellow"
    console.print(
        f"[{color}]Exported {result.success_count} chats, "
        f"{len(result.errors)} errors, {len(result.skipped)} skipped[/{color}]"
    )
    for error in result.errors:
        console.print(f"  [red]{escape(error.chat_id)}: {escape(error.message)}[/red]")
    for skipped in result.skipped:
        console.print(f"  [dim]{escape(skipped.chat_id)}: {escape(skipped.message)}[/dim]")
    console.print(f"Output: {output_dir}")


@app.command()
def settings(
    show: Annotated[
        Optional[str],
        typer.Option(
            "--show", "-s",
            help="Print the contents of one setting by ID.",
        ),
    ] = None,
    user_dir: UserDirOption = None,
    cursor_home: Annotated[
        Optional[Path],
        typer.Option(
            "--cursor-home",
            help="Per-user .cursor folder with extensions and rules (defaults to ~/.cursor).",
            file_okay=False,
        ),
    ] = None,
):
    """List Cursor configuration files and indexed documentation."""
    if user_dir is None:
        candidates = get_cursor_user_dirs()
        if not candidates:
            console.print("[yellow]No Cursor installation found.[/yellow]")
            raise typer.Exit(0)
        user_dir = candidates[0]

    items = discover_settings(user_dir, cursor_home)
    groups = discover_documentation_groups(user_dir)

    if show:
        item = next((i for i in items if i.id == show), None)
        if item is None:
            item = next((d for g in groups for d in g.items if d.id == show), None)
        if item is None:
            console.print(f"[red]Error: Setting '{escape(show)}' not found.[/red]")
            raise typer.Exit(1)
        console.print(f"[bold]{escape(item.name)}[/bold]")
        console.print(f"[dim]{escape(item.description)}[/dim]\n")
        if item.url:
            console.print(escape(item.url))
        else:
            console.print(escape(preview_setting(item)))
        return

    table = Table(title="Cursor Settings")
    table.add_column("ID", style="dim")
    table.add_column("Category", style="cyan")
    table.add_column("Name")
    table.add_column("Available", justify="center")
    table.add_column("Path")

    for item in items:
        table.add_row(
            escape(item.id),
            item.category,
            escape(item.name),
            "[green]yes[/green]" if item.is_available else "[red]no[/red]",
            escape(str(item.path)) if item.path else "",
        )
    console.print(table)

    if groups:
        console.print("\n[bold]Documentation:[/bold]")
        for group in groups:
            console.print(f"  [cyan]{escape(group.name)}[/cyan] ({len(group.items)})")
            for doc in group.items:
                console.print(f"    {escape(doc.name)}: {escape(doc.url or '')}")

    available = sum(1 for item in items if item.is_available)
    console.print(f"\n{available} of {len(items)} settings available")


def run():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
