"""
Helper functions for formatting repository data into human-readable strings.
"""

from datetime import datetime


def format_size(bytes_size: int | None) -> str:
    """Formats bytes into a human-readable size string (e.g., '145.3 MB')."""
    if not bytes_size or bytes_size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    size = float(bytes_size)
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f"{size:.1f} {units[i]}"


def format_timestamp(value: str | None) -> str:
    """Shortens an ISO timestamp from mod.json to 'YYYY-MM-DD HH:MM'."""
    if not value:
        return "-"
    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return value


def format_state(enabled: bool) -> str:
    return "[green]enabled[/green]" if enabled else "[dim]disabled[/dim]"


def truncate(text: str | None, width: int = 48) -> str:
    """Cuts long values (URLs, descriptions) for table cells."""
    if not text:
        return "-"
    return text if len(text) <= width else f"{text[: width - 1]}…"
