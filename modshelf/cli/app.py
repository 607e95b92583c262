"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import json
import logging
import os
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from modshelf import __version__
from modshelf.core.session import Session
from modshelf.exceptions import BackendUnavailable, ModShelfError
from modshelf.models.mods import ModView
from modshelf.models.reports import RenameOutcome
from modshelf.storage.settings import SETTINGS_FILE_NAME, SettingsManager

from .formatters import (
    format_error_with_suggestions,
    print_activation_report,
    print_character_info,
    print_characters_table,
    print_mod_details,
    print_mods_table,
    print_normalize_report,
    print_reconcile_report,
    print_settings,
)

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("modshelf")

app = typer.Typer(
    name="modshelf",
    help=(
        "Manage per-character game mods by folder and file names. Use 'modshelf"
        " <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)
config_app = typer.Typer(help="Show and change settings.", no_args_is_help=True)
characters_app = typer.Typer(help="Manage character folders.", no_args_is_help=True)
mods_app = typer.Typer(help="Manage the mods of a character.", no_args_is_help=True)
app.add_typer(config_app, name="config")
app.add_typer(characters_app, name="characters")
app.add_typer(mods_app, name="mods")

T = TypeVar("T")


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "modshelf"


CONFIG_DIR = get_config_dir()
SETTINGS_FILE = CONFIG_DIR / SETTINGS_FILE_NAME


def open_session() -> Session:
    return Session(SettingsManager(SETTINGS_FILE))


@contextmanager
def _reported_errors() -> Iterator[None]:
    """Turns application errors into an error panel and exit code 1."""
    try:
        yield
    except (ModShelfError, ValueError) as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e


def _run(action: Callable[[Session], Awaitable[T]]) -> T:
    """Runs ``action`` against a fresh session on a new event loop."""

    async def _runner() -> T:
        session = open_session()
        try:
            return await action(session)
        finally:
            await session.close()

    with _reported_errors():
        return asyncio.run(_runner())


def _print_outcome(outcome: RenameOutcome, what: str) -> None:
    if outcome.changed:
        console.print(
            f"[green]✓ {what}:[/green] {escape(outcome.before)} → "
            f"[bold]{escape(outcome.after)}[/bold]"
        )
    else:
        console.print(f"[dim]○ {what}: nothing to do ({escape(outcome.after)}).[/dim]")


def _table_printer(session: Session) -> Callable[[str, ModView], None]:
    """A refresh listener printing a character's table once it is fully resolved."""

    def _print(character: str, view: ModView) -> None:
        entry = session.context.cache.peek(character)
        if entry is not None and entry.complete:
            print_mods_table(entry)

    return _print


def _parse_crop(crop: str | None) -> dict[str, Any] | None:
    if not crop:
        return None
    try:
        data = json.loads(crop)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"Crop must be a JSON object: {e}") from e
    if not isinstance(data, dict):
        raise typer.BadParameter("Crop must be a JSON object.")
    return data


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
):
    """Mod repository manager"""
    if version:
        console.print(f"[bold]modshelf[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "WARNING"
    if verbose >= 2:
        log_level = "DEBUG"
    elif verbose == 1:
        log_level = "INFO"
    logging.getLogger("modshelf").setLevel(log_level)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


# --- config ---


@config_app.command("show")
def config_show():
    """Display the current settings."""
    with _reported_errors():
        session = open_session()
        try:
            backend = session.context.backend.locate()
        except BackendUnavailable:
            backend = None
        print_settings(SETTINGS_FILE, session.settings, backend)


@config_app.command("set-mods-root")
def config_set_mods_root(
    path: Path = typer.Argument(..., help="Folder holding one sub-folder per character."),
):
    """Choose the mods folder."""
    with _reported_errors():
        settings = open_session().set_mods_root(path)
    console.print(f"[green]✓ Mods root set to[/green] {escape(str(settings.mods_root))}")


@config_app.command("set-assets-root")
def config_set_assets_root(
    path: Path = typer.Argument(..., help="Folder for character pictures."),
):
    """Choose the folder where character pictures are kept."""
    with _reported_errors():
        settings = open_session().set_images_root(path)
    console.print(
        f"[green]✓ Assets root set to[/green] {escape(str(settings.images_root))}"
    )


@config_app.command("set-7z")
def config_set_7z(
    path: Path | None = typer.Argument(
        None, help="Path to the 7-Zip executable. Omit to search PATH again."
    ),
):
    """Choose the 7-Zip executable."""
    with _reported_errors():
        resolved = open_session().set_seven_zip(path)
    console.print(f"[green]✓ Using 7-Zip at[/green] {escape(resolved)}")


@config_app.command("set-engine")
def config_set_engine(
    max_workers: int | None = typer.Option(None, "--max-workers", help="Refresh workers (1-32)."),
    cache_capacity: int | None = typer.Option(
        None, "--cache-capacity", help="Characters kept in the view cache."
    ),
    debounce_ms: int | None = typer.Option(
        None, "--debounce-ms", help="Quiet period before a watch refresh."
    ),
):
    """Tune the refresh workers, the view cache and the watch debounce."""
    with _reported_errors():
        settings = open_session().set_engine(max_workers, cache_capacity, debounce_ms)
    console.print(
        f"[green]✓ Engine:[/green] {settings.max_workers} workers, cache of "
        f"{settings.cache_capacity}, debounce {settings.debounce_ms} ms"
    )


# --- characters ---


@characters_app.command("list")
def characters_list():
    """List characters, enabled and disabled."""

    async def _list(session: Session):
        characters = await session.store.list_characters()
        images = {
            c.name: await session.context.assets.character_image(c.name)
            for c in characters
        }
        return characters, images

    characters, images = _run(_list)
    print_characters_table(characters, images)


@characters_app.command("add")
def characters_add(name: str = typer.Argument(..., help="Character name.")):
    """Create a character folder."""
    character = _run(lambda session: session.store.add_character(name))
    console.print(f"[green]✓ Added character[/green] {escape(character.name)}")


@characters_app.command("rename")
def characters_rename(
    old: str = typer.Argument(..., help="Current name."),
    new: str = typer.Argument(..., help="New name."),
):
    """Rename a character, keeping its enabled or disabled state."""
    outcome = _run(lambda session: session.rename_character(old, new))
    _print_outcome(outcome, "Renamed")


@characters_app.command("delete")
def characters_delete(
    name: str = typer.Argument(..., help="Character name."),
    force: bool = typer.Option(
        False, "--force", "-f", help="Bypass the confirmation prompt."
    ),
):
    """Delete a character with all of its mods and pictures."""
    if not force and not typer.confirm(
        f"Delete '{name}' with all of its mods and pictures? This cannot be undone."
    ):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()
    _run(lambda session: session.delete_character(name))
    console.print(f"[green]✓ Deleted character[/green] {escape(name)}")


@characters_app.command("normalize")
def characters_normalize():
    """Rewrite character names as 'Capitalized lowercase'."""
    report = _run(lambda session: session.store.normalize_names())
    print_normalize_report(report)


@characters_app.command("info")
def characters_info(name: str = typer.Argument(..., help="Character name.")):
    """Show the character's picture and its source URL."""

    async def _info(session: Session):
        character = await session.store.find_character(name)
        return await session.context.assets.character_info(character.name)

    print_character_info(_run(_info))


@characters_app.command("set-image")
def characters_set_image(
    name: str = typer.Argument(..., help="Character name."),
    url: str | None = typer.Option(None, "--url", help="Download the picture from a URL."),
    file: Path | None = typer.Option(None, "--file", help="Use a local picture."),
    crop: str | None = typer.Option(
        None, "--crop", help='Crop rectangle as JSON, e.g. \'{"x":0,"y":0,"w":64,"h":64}\'.'
    ),
):
    """Save the character's picture into the assets root."""
    if bool(url) == bool(file):
        raise typer.BadParameter("Give exactly one of --url or --file.")
    crop_data = _parse_crop(crop)
    path = _run(
        lambda session: session.set_character_image(name, url=url, file=file, crop=crop_data)
    )
    console.print(f"[green]✓ Saved picture[/green] {escape(str(path))}")


# --- mods ---


@mods_app.command("list")
def mods_list(
    character: str = typer.Argument(..., help="Character name."),
    fresh: bool = typer.Option(False, "--fresh", help="Ignore cached results."),
):
    """List a character's mods with previews, primary entries and links."""
    entry = _run(lambda session: session.view(character, fresh=fresh))
    if entry is not None:
        print_mods_table(entry)


@mods_app.command("show")
def mods_show(
    character: str = typer.Argument(..., help="Character name."),
    mod: str = typer.Argument(..., help="Mod name."),
):
    """Show everything known about one mod."""

    async def _show(session: Session):
        found = await session.store.find_mod(character, mod)
        entry = await session.view(character)
        view = entry.view_for(found.path) if entry else None
        if view is None:
            raise ModShelfError(f"Could not resolve '{found.name}'.")
        return view, await session.inspector.read_details(found)

    view, details = _run(_show)
    print_mod_details(view, details)


@mods_app.command("enable")
def mods_enable(
    character: str = typer.Argument(..., help="Character name."),
    mod: str = typer.Argument(..., help="Mod name."),
):
    """Enable a mod (remove the DISABLED_ prefix)."""

    async def _enable(session: Session):
        return await session.store.enable(await session.store.find_mod(character, mod))

    _print_outcome(_run(_enable), "Enabled")


@mods_app.command("disable")
def mods_disable(
    character: str = typer.Argument(..., help="Character name."),
    mod: str = typer.Argument(..., help="Mod name."),
):
    """Disable a mod (add the DISABLED_ prefix)."""

    async def _disable(session: Session):
        return await session.store.disable(await session.store.find_mod(character, mod))

    _print_outcome(_run(_disable), "Disabled")


@mods_app.command("activate")
def mods_activate(
    character: str = typer.Argument(..., help="Character name."),
    mod: str = typer.Argument(..., help="Mod to keep enabled."),
):
    """Enable one mod and disable every other mod of the character."""
    report = _run(lambda session: session.store.exclusive_activate(character, mod))
    print_activation_report(report)
    if report.is_partial:
        raise typer.Exit(code=1)


@mods_app.command("rename")
def mods_rename(
    character: str = typer.Argument(..., help="Character name."),
    old: str = typer.Argument(..., help="Current mod name."),
    new: str = typer.Argument(..., help="New mod name."),
):
    """Rename a mod, keeping its state and archive extension."""
    outcome = _run(lambda session: session.store.rename_mod(character, old, new))
    _print_outcome(outcome, "Renamed")


@mods_app.command("convert")
def mods_convert(
    character: str = typer.Argument(..., help="Character name."),
    mod: str = typer.Argument(..., help="Archive mod to extract."),
):
    """Extract an archive mod into a folder mod."""

    async def _convert(session: Session):
        return await session.store.convert_flat_to_folder(
            await session.store.find_mod(character, mod)
        )

    folder = _run(_convert)
    console.print(f"[green]✓ Converted into folder[/green] {escape(folder.backing_name)}")


@mods_app.command("import")
def mods_import(
    character: str = typer.Argument(..., help="Character name."),
    archive: Path = typer.Argument(..., help="A .zip, .7z or .rar archive."),
    extract: bool = typer.Option(
        False, "--extract/--keep-archive", help="Extract into a folder mod."
    ),
    name: str | None = typer.Option(None, "--name", help="Mod name (default: archive name)."),
    page_url: str | None = typer.Option(None, "--page-url", help="Mod page URL."),
    update_url: str | None = typer.Option(None, "--update-url", help="Update download URL."),
    version: str | None = typer.Option(None, "--version", help="Mod version."),
    author: str | None = typer.Option(None, "--author", help="Mod author."),
):
    """Add an archive to a character."""
    details = {
        key: value
        for key, value in {
            "page_url": page_url,
            "update_url": update_url,
            "version": version,
            "author": author,
        }.items()
        if value
    }
    mod = _run(
        lambda session: session.store.import_archive(
            character, archive, extract=extract, name=name, details=details
        )
    )
    console.print(f"[green]✓ Imported as[/green] {escape(mod.backing_name)}")


@mods_app.command("delete")
def mods_delete(
    character: str = typer.Argument(..., help="Character name."),
    mod: str = typer.Argument(..., help="Mod name."),
    force: bool = typer.Option(
        False, "--force", "-f", help="Bypass the confirmation prompt."
    ),
):
    """Delete a mod."""
    if not force and not typer.confirm(f"Delete mod '{mod}'? This cannot be undone."):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()

    async def _delete(session: Session):
        await session.store.delete_mod(await session.store.find_mod(character, mod))

    _run(_delete)
    console.print(f"[green]✓ Deleted mod[/green] {escape(mod)}")


@mods_app.command("set-meta")
def mods_set_meta(
    character: str = typer.Argument(..., help="Character name."),
    mod: str = typer.Argument(..., help="Mod name."),
    page_url: str | None = typer.Option(None, "--page-url", help="Page URL ('' clears)."),
    image_url: str | None = typer.Option(None, "--image-url", help="Image URL ('' clears)."),
):
    """Write the metadata record stored inside the mod (data.txt)."""

    async def _set_meta(session: Session):
        found = await session.store.find_mod(character, mod)
        return await session.set_metadata(found, page_url=page_url, image_url=image_url)

    metadata = _run(_set_meta)
    console.print("[green]✓ Metadata saved.[/green]")
    console.print(f"  Page:  {escape(metadata.page_url or '-')}")
    console.print(f"  Image: {escape(metadata.image_url or '-')}")


@mods_app.command("set-details")
def mods_set_details(
    character: str = typer.Argument(..., help="Character name."),
    mod: str = typer.Argument(..., help="Folder mod name."),
    version: str | None = typer.Option(None, "--version", help="Mod version."),
    author: str | None = typer.Option(None, "--author", help="Mod author."),
    description: str | None = typer.Option(None, "--description", help="Description."),
    page_url: str | None = typer.Option(None, "--page-url", help="Mod page URL."),
    update_url: str | None = typer.Option(None, "--update-url", help="Update download URL."),
):
    """Write descriptive fields into a folder mod's mod.json."""

    async def _set_details(session: Session):
        found = await session.store.find_mod(character, mod)
        return await session.store.save_details(
            found,
            version=version,
            author=author,
            description=description,
            page_url=page_url,
            update_url=update_url,
        )

    details = _run(_set_details)
    if details is None:
        console.print("[yellow]○ Archive mods keep no details; convert it first.[/yellow]")
        raise typer.Exit(code=1)
    console.print("[green]✓ Details saved.[/green]")


@mods_app.command("set-preview")
def mods_set_preview(
    character: str = typer.Argument(..., help="Character name."),
    mod: str = typer.Argument(..., help="Mod name."),
    url: str | None = typer.Option(None, "--url", help="Download the picture from a URL."),
    file: Path | None = typer.Option(None, "--file", help="Use a local picture."),
):
    """Store a preview picture inside the mod."""
    if bool(url) == bool(file):
        raise typer.BadParameter("Give exactly one of --url or --file.")

    async def _set_preview(session: Session):
        found = await session.store.find_mod(character, mod)
        return await session.set_preview(found, url=url, file=file)

    entry_name = _run(_set_preview)
    console.print(f"[green]✓ Preview saved as[/green] {escape(entry_name)}")


@mods_app.command("rename-primary")
def mods_rename_primary(
    character: str = typer.Argument(..., help="Character name."),
    mod: str = typer.Argument(..., help="Mod name."),
    new: str = typer.Argument(..., help="New name for the primary entry."),
):
    """Rename the main folder or file inside a mod."""

    async def _rename_primary(session: Session):
        found = await session.store.find_mod(character, mod)
        return await session.inspector.rename_primary(found, new)

    _print_outcome(_run(_rename_primary), "Primary entry")


@mods_app.command("open-page")
def mods_open_page(
    character: str = typer.Argument(..., help="Character name."),
    mod: str = typer.Argument(..., help="Mod name."),
):
    """Open the mod's page in the web browser."""

    async def _page(session: Session):
        return await session.page_url(await session.store.find_mod(character, mod))

    url = _run(_page)
    if not url:
        console.print(f"[yellow]○ No page URL saved for {escape(mod)}.[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"Opening [blue]{escape(url)}[/blue]")
    typer.launch(url)


@mods_app.command("update")
def mods_update(
    character: str = typer.Argument(..., help="Character name."),
    mod: str = typer.Argument(..., help="Folder mod name."),
):
    """Download the mod's update URL and extract it over the folder."""

    async def _update(session: Session):
        await session.update_mod(await session.store.find_mod(character, mod))

    _run(_update)
    console.print(f"[green]✓ Updated[/green] {escape(mod)}")


# --- top-level ---


@app.command()
def peek(archive: Path = typer.Argument(..., help="Any .zip, .7z or .rar archive.")):
    """Show the primary entry of an archive without extracting it."""
    primary = _run(lambda session: session.peek(archive))
    if primary is None:
        console.print("[yellow]○ The archive holds no payload entries.[/yellow]")
    else:
        console.print(escape(primary))


@app.command()
def reconcile():
    """Restore entries left behind by an interrupted rename."""
    report = _run(lambda session: session.store.reconcile_temporaries())
    print_reconcile_report(report)


@app.command()
def watch(
    character: str | None = typer.Argument(
        None, help="Character to keep refreshed while watching."
    ),
):
    """Watch the mods root and refresh on changes until interrupted."""

    async def _watch(session: Session):
        session.pipeline.on_update = _table_printer(session)
        report = await session.startup()
        if report and report.restored:
            print_reconcile_report(report)
        session.start_watching()
        if character:
            await session.select(character)
        console.print(
            f"[cyan]Watching[/cyan] {escape(str(session.settings.mods_root))}"
            " [dim](Ctrl+C to stop)[/dim]"
        )
        while True:
            await asyncio.sleep(3600)

    _run(_watch)
