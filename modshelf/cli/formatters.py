"""
Functions for formatting and displaying repository data in the console using Rich.
"""

from pathlib import Path

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from modshelf.models.config import Settings
from modshelf.models.mods import Character, CharacterInfo, ModDetails, ModView
from modshelf.models.reports import ActivationReport, NormalizeReport, ReconcileReport
from modshelf.storage.cache import CacheEntry
from modshelf.utils.formatting import format_size, format_state, format_timestamp, truncate


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "NotConfigured": [
            "• Set the mods folder with `modshelf config set-mods-root <PATH>`.",
            "• Check that the configured folder still exists.",
        ],
        "BackendUnavailable": [
            "• Install 7-Zip (the `7z`, `7zz` or `7za` command).",
            "• Or point to it with `modshelf config set-7z <PATH>`.",
        ],
        "ArchiveReadError": [
            "• The archive may be damaged or password protected.",
            "• Try opening it with 7-Zip directly.",
        ],
        "ArchiveWriteError": [
            "• Make sure the archive is not open in another program.",
            "• RAR archives cannot be modified by 7-Zip; convert the mod to a folder.",
        ],
        "TargetExists": [
            "• Pick another name, or rename or delete the existing entry first.",
        ],
        "ModNotFound": [
            "• List what exists with `modshelf characters list` or `modshelf mods list`.",
            "• Names are matched without the DISABLED_ prefix, ignoring case.",
        ],
        "InvalidName": [
            "• Avoid characters such as < > : \" / \\ | ? * in names.",
        ],
        "ConfigurationError": [
            "• Review the settings file shown by `modshelf config show`.",
            "• Delete the file to start over with defaults.",
        ],
        "DownloadError": [
            "• Check the URL in a browser.",
            "• Check your internet connection and try again.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_settings(settings_path: Path, settings: Settings, backend: str | None):
    """Displays the current settings."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    def path_or_unset(value: Path | None) -> str:
        return escape(str(value)) if value else "[yellow]not set[/yellow]"

    table.add_row("Mods root:", path_or_unset(settings.mods_root))
    table.add_row("Assets root:", path_or_unset(settings.images_root))
    table.add_row(
        "7-Zip:",
        escape(backend) if backend else "[red]✗ not found[/red]",
    )
    table.add_row("Refresh workers:", str(settings.max_workers))
    table.add_row("Cache capacity:", str(settings.cache_capacity))
    table.add_row("Watch debounce:", f"{settings.debounce_ms} ms")

    console.print(
        Panel(
            table,
            title=f"Settings ([dim]{escape(str(settings_path))}[/dim])",
            border_style="cyan",
            expand=False,
        )
    )


def print_characters_table(characters: list[Character], images: dict[str, Path | None]):
    console = Console()
    if not characters:
        console.print("[dim]No characters yet.[/dim]")
        return
    table = Table(box=box.ROUNDED)
    table.add_column("Character", style="cyan")
    table.add_column("State")
    table.add_column("Folder", style="dim")
    table.add_column("Picture", style="dim")
    for character in characters:
        image = images.get(character.name)
        table.add_row(
            escape(character.name),
            format_state(character.enabled),
            escape(character.backing_name),
            escape(image.name) if image else "-",
        )
    console.print(table)


def print_mods_table(entry: CacheEntry):
    """Displays one character's mods with their resolved details."""
    console = Console()
    if not entry.views:
        console.print(f"[dim]No mods for {escape(entry.character)}.[/dim]")
        return
    table = Table(title=f"[bold]{escape(entry.character)}[/bold]", box=box.ROUNDED)
    table.add_column("Mod", style="cyan")
    table.add_column("State")
    table.add_column("Kind", style="dim")
    table.add_column("Primary entry")
    table.add_column("Preview", justify="right")
    table.add_column("Page", style="blue")
    for view in entry.views:
        table.add_row(
            escape(view.name),
            format_state(view.enabled),
            view.mod.kind,
            escape(view.primary_name or "-"),
            format_size(len(view.preview.data)) if view.preview else "-",
            escape(truncate(view.page_url, 40)),
        )
    console.print(table)


def print_mod_details(view: ModView, details: ModDetails | None):
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()
    table.add_row("State:", format_state(view.enabled))
    table.add_row("Kind:", view.mod.kind)
    table.add_row("Location:", escape(str(view.mod.path)))
    table.add_row("Primary entry:", escape(view.primary_name or "-"))
    table.add_row("Page URL:", escape(view.page_url or "-"))
    table.add_row("Image URL:", escape(view.image_url or "-"))
    table.add_row("Update URL:", escape(view.update_url or "-"))
    if view.preview:
        table.add_row(
            "Preview:", f"{escape(view.preview.name)} ({format_size(len(view.preview.data))})"
        )
    if details:
        table.add_row("Version:", escape(details.version or "-"))
        table.add_row("Author:", escape(details.author or "-"))
        table.add_row("Updated:", format_timestamp(details.updated_at))
        if details.description:
            table.add_row("Description:", escape(details.description))
    console.print(
        Panel(table, title=f"[bold]{escape(view.name)}[/bold]", border_style="cyan", expand=False)
    )


def print_character_info(info: CharacterInfo):
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()
    table.add_row("Picture:", escape(str(info.image_path)) if info.image_path else "-")
    table.add_row("Source URL:", escape(info.url or "-"))
    if info.crop:
        crop = ", ".join(f"{k}={v}" for k, v in info.crop.items())
        table.add_row("Crop:", escape(crop))
    console.print(
        Panel(table, title=f"[bold]{escape(info.name)}[/bold]", border_style="cyan", expand=False)
    )


def print_normalize_report(report: NormalizeReport):
    console = Console()
    if report.is_noop:
        console.print("[green]✓ All character names are already normalized.[/green]")
        return
    for before, after in report.changed:
        console.print(f"[green]✓[/green] {escape(before)} → [bold]{escape(after)}[/bold]")
    for name in report.skipped:
        console.print(f"[yellow]○ Skipped {escape(name)}[/yellow]")
    console.print(
        f"\n[bold]Renamed:[/bold] {len(report.changed)}  "
        f"[bold]Skipped:[/bold] {len(report.skipped)}"
    )


def print_activation_report(report: ActivationReport):
    console = Console()
    if report.enabled:
        console.print(f"[green]✓ Enabled {escape(report.target)}[/green]")
    for name in report.disabled:
        console.print(f"[dim]○ Disabled {escape(name)}[/dim]")
    for name, reason in report.failed:
        console.print(f"[red]✗ {escape(name)}: {escape(reason)}[/red]")


def print_reconcile_report(report: ReconcileReport):
    console = Console()
    if not report.restored and not report.skipped:
        console.print("[green]✓ No interrupted renames found.[/green]")
        return
    for before, after in report.restored:
        console.print(f"[green]✓ Restored[/green] {escape(before)} → {escape(after)}")
    for name in report.skipped:
        console.print(f"[yellow]○ Left in place (name taken): {escape(name)}[/yellow]")
