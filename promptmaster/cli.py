"""promptmaster CLI — manage prompt templates, drafts, backups and cloud sync."""

from __future__ import annotations

import asyncio
import inspect
import logging
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .config import DB_ENV_VAR, LOGS_DIR
from .errors import PromptMasterError
from .generate import generate_content
from .history import version_number
from .library import PromptLibrary
from .models import PromptRecord
from .sync import resolve_cloud_config
from .template import extract_variables, parse_assignments
from .views import FilterType

console = Console()
err_console = Console(stderr=True)


def _setup_logging(verbose: bool) -> None:
    """Log to a file under LOGS_DIR; with --verbose also to stderr."""
    logger = logging.getLogger("promptmaster")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Clear existing handlers
    logger.handlers.clear()

    try:
        LOGS_DIR.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(LOGS_DIR / "promptmaster.log")
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
        )
        logger.addHandler(handler)
    except OSError:
        pass

    if verbose:
        logger.addHandler(RichHandler(console=err_console, show_path=False))


def _fmt_ms(ms: int | None) -> str:
    if not ms:
        return ""
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M")


def _resolve_id(library: PromptLibrary, ref: str) -> str:
    """Accept a full id or an unambiguous prefix of one."""
    ids = [r.id for r in library.records]
    if ref in ids:
        return ref
    matches = [i for i in ids if i.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    raise PromptMasterError.record_not_found(ref)


def _confirmer(yes: bool):
    def confirm(message: str) -> bool:
        return yes or click.confirm(message, default=False)

    return confirm


def _run(ctx: click.Context, action):
    """Open the library, pull the cloud copy, run ``action``, close everything."""

    async def session():
        library = PromptLibrary.open(ctx.obj["db"])
        try:
            if await library.start():
                err_console.print("[dim]Loaded prompts from the cloud.[/dim]")
            result = action(library)
            if inspect.isawaitable(result):
                result = await result
            return result
        finally:
            await library.aclose()

    try:
        return asyncio.run(session())
    except PromptMasterError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        sys.exit(1)


def _apply_fields(record: PromptRecord, **fields) -> PromptRecord:
    changes = {name: value for name, value in fields.items() if value is not None}
    if "tags" in changes:
        changes["tags"] = list(changes["tags"])
    config_changes = {
        name: changes.pop(name)
        for name in ("model", "temperature")
        if name in changes
    }
    if config_changes:
        changes["config"] = replace(record.config, **config_changes)
    return replace(record, **changes)


def _print_table(records: list[PromptRecord], title: str) -> None:
    table = Table(title=title)
    table.add_column("#", style="dim", justify="right")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Tags", style="green")
    table.add_column("Fav", justify="center")
    table.add_column("Updated")
    table.add_column("Last used")

    for i, r in enumerate(records, 1):
        table.add_row(
            str(i),
            r.id[:8],
            r.title[:50],
            ", ".join(r.tags),
            "*" if r.is_favorite else "",
            _fmt_ms(r.updated_at),
            _fmt_ms(r.last_used_at),
        )
    console.print(table)


def _print_record(record: PromptRecord, restored: bool, show_history: bool) -> None:
    status = "[yellow]Unsaved draft restored[/yellow]" if restored else "Saved"
    header = (
        f"[bold]{record.title}[/bold]  ({record.id})\n"
        f"{record.description}\n"
        f"Tags: {', '.join(record.tags) or 'none'}  |  "
        f"Favorite: {'yes' if record.is_favorite else 'no'}  |  {status}"
    )
    console.print(Panel(header, title="Prompt"))
    if record.system_instruction:
        console.print(Panel(record.system_instruction, title="System Instruction"))
    console.print(Panel(record.template or "(empty)", title="Template"))

    variables = extract_variables(record.template)
    cfg = record.config
    console.print(
        f"  Variables: {', '.join(variables) or 'none'}\n"
        f"  Model: {cfg.model}  temperature={cfg.temperature} "
        f"top_p={cfg.top_p} top_k={cfg.top_k}"
        + (f" max_tokens={cfg.max_output_tokens}" if cfg.max_output_tokens else "")
    )

    if not show_history:
        console.print(f"  [dim]{len(record.history)} saved versions[/dim]")
        return
    if not record.history:
        console.print("  [dim]No history yet.[/dim]")
        return

    table = Table(title="History")
    table.add_column("Version", justify="right")
    table.add_column("Title")
    table.add_column("Saved")
    table.add_column("Template", style="dim")
    for index, version in enumerate(record.history):
        table.add_row(
            str(version_number(record.history, index)),
            version.title,
            _fmt_ms(version.updated_at),
            version.template[:40],
        )
    console.print(table)


@click.group()
@click.version_option(package_name="promptmaster")
@click.option(
    "--db",
    type=click.Path(path_type=Path, dir_okay=False),
    envvar=DB_ENV_VAR,
    default=None,
    help="Database file (default ~/.config/promptmaster/promptmaster.db)",
)
@click.option("--verbose", is_flag=True, help="Log to stderr as well")
@click.pass_context
def cli(ctx: click.Context, db: Path | None, verbose: bool):
    """promptmaster - a local prompt library with optional cloud sync."""
    ctx.ensure_object(dict)
    ctx.obj["db"] = db
    _setup_logging(verbose)


@cli.command(name="list")
@click.option(
    "--filter",
    "-f",
    "filter_name",
    type=click.Choice([f.value for f in FilterType]),
    default=FilterType.ALL.value,
    help="Which view to show",
)
@click.option("--tag", "-t", default=None, help="Tag for the tag view")
@click.pass_context
def list_prompts(ctx: click.Context, filter_name: str, tag: str | None):
    """List prompts."""
    filter_type = FilterType(filter_name)
    if tag and filter_type is FilterType.ALL:
        filter_type = FilterType.TAG
    records = _run(ctx, lambda lib: lib.view(filter_type, tag))

    if not records:
        console.print("[yellow]No prompts found.[/yellow]")
        return

    title = f"# {tag}" if filter_type is FilterType.TAG and tag else filter_type.value.title()
    _print_table(records, f"Prompts: {title}")


@cli.command()
@click.pass_context
def tags(ctx: click.Context):
    """List tags, most used first."""
    tag_list = _run(ctx, lambda lib: lib.tags())
    if not tag_list:
        console.print("[yellow]No tags yet.[/yellow]")
        return
    for tag in tag_list:
        click.echo(tag)


@cli.command()
@click.argument("prompt_id")
@click.option("--history", "show_history", is_flag=True, help="List saved versions")
@click.pass_context
def show(ctx: click.Context, prompt_id: str, show_history: bool):
    """Show a prompt, including any unsaved draft."""
    record, restored = _run(
        ctx, lambda lib: lib.open_for_edit(_resolve_id(lib, prompt_id))
    )
    _print_record(record, restored, show_history)


def _field_options(fn):
    options = [
        click.option("--title", default=None),
        click.option("--description", default=None),
        click.option("--system", "system_instruction", default=None, help="System instruction"),
        click.option("--tag", "tags", multiple=True, help="Tag (repeatable)"),
        click.option("--model", default=None),
        click.option("--temperature", type=float, default=None),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@cli.command()
@click.option("--template", required=True, help="Template text with {{variables}}")
@click.option("--favorite", is_flag=True, help="Mark as favorite")
@_field_options
@click.pass_context
def new(ctx: click.Context, template: str, favorite: bool, tags: tuple, **fields):
    """Create and save a new prompt."""

    def action(lib: PromptLibrary) -> PromptRecord:
        record = _apply_fields(
            lib.new_record(),
            template=template,
            tags=tags or None,
            **fields,
        )
        record = replace(record, is_favorite=favorite)
        return lib.save(record)

    saved = _run(ctx, action)
    console.print(f"[green]Saved[/green] {saved.title} ({saved.id})")
    variables = extract_variables(saved.template)
    if variables:
        console.print(f"  Variables: {', '.join(variables)}")


@cli.command()
@click.argument("prompt_id")
@click.option("--template", default=None)
@click.option("--save", "do_save", is_flag=True, help="Save now instead of keeping a draft")
@_field_options
@click.pass_context
def edit(ctx: click.Context, prompt_id: str, template: str | None, do_save: bool, tags: tuple, **fields):
    """Edit a prompt. Changes stay a draft until saved with --save."""

    def action(lib: PromptLibrary):
        record, restored = lib.open_for_edit(_resolve_id(lib, prompt_id))
        record = _apply_fields(record, template=template, tags=tags or None, **fields)
        if do_save:
            return lib.save(record), "saved"
        lib.edit(record)
        lib.flush_drafts()
        return record, "restored" if restored else "draft"

    record, outcome = _run(ctx, action)
    if outcome == "saved":
        console.print(f"[green]Saved[/green] {record.title} ({len(record.history)} versions)")
    else:
        console.print(f"[yellow]Draft saved[/yellow] for {record.title}")
        console.print(f"[dim]Use: promptmaster edit {record.id[:8]} --save[/dim]")


@cli.command(name="discard-draft")
@click.argument("prompt_id")
@click.pass_context
def discard_draft(ctx: click.Context, prompt_id: str):
    """Throw away the unsaved draft of a prompt."""
    _run(ctx, lambda lib: lib.discard_draft(_resolve_id(lib, prompt_id)))
    console.print("Draft discarded.")


@cli.command()
@click.argument("prompt_id")
@click.option("--var", "-v", "assignments", multiple=True, help="name=value")
@click.pass_context
def fill(ctx: click.Context, prompt_id: str, assignments: tuple):
    """Print the filled template and mark the prompt as used."""
    try:
        variables = parse_assignments(assignments)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e
    filled = _run(ctx, lambda lib: lib.use(_resolve_id(lib, prompt_id), variables))
    click.echo(filled)


@cli.command()
@click.argument("prompt_id")
@click.option("--var", "-v", "assignments", multiple=True, help="name=value")
@click.pass_context
def run(ctx: click.Context, prompt_id: str, assignments: tuple):
    """Fill the template and send it to the prompt's model."""
    try:
        variables = parse_assignments(assignments)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    async def action(lib: PromptLibrary) -> str:
        record = lib.get(_resolve_id(lib, prompt_id))
        filled = lib.fill(record.id, variables)
        text = await asyncio.to_thread(
            generate_content, record.system_instruction, filled, record.config
        )
        lib.mark_used(record.id)
        return text

    click.echo(_run(ctx, action))


@cli.command()
@click.argument("prompt_id")
@click.pass_context
def fav(ctx: click.Context, prompt_id: str):
    """Toggle favorite."""
    record = _run(ctx, lambda lib: lib.toggle_favorite(_resolve_id(lib, prompt_id)))
    state = "added to" if record.is_favorite else "removed from"
    console.print(f"{record.title} {state} favorites.")


@cli.command()
@click.argument("prompt_id")
@click.pass_context
def copy(ctx: click.Context, prompt_id: str):
    """Duplicate a prompt as a new one with no history."""
    record = _run(ctx, lambda lib: lib.duplicate(_resolve_id(lib, prompt_id)))
    console.print(f"[green]Created[/green] {record.title} ({record.id})")


@cli.command()
@click.argument("prompt_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete(ctx: click.Context, prompt_id: str, yes: bool):
    """Delete a prompt."""
    deleted = _run(
        ctx, lambda lib: lib.delete(_resolve_id(lib, prompt_id), _confirmer(yes))
    )
    console.print("Deleted." if deleted else "Cancelled.")


@cli.command()
@click.argument("prompt_ids", nargs=-1, required=True)
@click.pass_context
def reorder(ctx: click.Context, prompt_ids: tuple):
    """Set the favorites order to the given sequence."""
    favorites = _run(
        ctx, lambda lib: lib.reorder([_resolve_id(lib, ref) for ref in prompt_ids])
    )
    _print_table(favorites, "Prompts: Favorites")


@cli.command()
@click.argument("prompt_id")
@click.argument("version", type=int)
@click.pass_context
def restore(ctx: click.Context, prompt_id: str, version: int):
    """Save an earlier version as the current content."""
    record = _run(ctx, lambda lib: lib.restore(_resolve_id(lib, prompt_id), version))
    console.print(f"[green]Restored[/green] version {version} of {record.title}")


@cli.command()
@click.option("--output", "-o", default=None, help="File to write ('-' for stdout)")
@click.pass_context
def export(ctx: click.Context, output: str | None):
    """Write all prompts to a JSON backup."""
    data, filename = _run(ctx, lambda lib: (lib.export(), lib.export_filename()))
    if output == "-":
        click.echo(data)
        return
    path = Path(output or filename)
    path.write_text(data, encoding="utf-8")
    console.print(f"Exported to {path}")


@cli.command(name="import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def import_(ctx: click.Context, file: Path, yes: bool):
    """Restore prompts from a JSON backup."""
    text = file.read_text(encoding="utf-8")
    result = _run(ctx, lambda lib: lib.import_backup(text, _confirmer(yes)))

    if result is None:
        console.print("Cancelled.")
        return
    if result.mode == "merge":
        console.print(f"[green]Imported {result.count} prompts.[/green]")
    elif result.cloud_synced:
        console.print(
            f"[green]Restore complete.[/green] Cloud database replaced with {result.count} prompts."
        )
    else:
        console.print(
            f"[yellow]Warning:[/yellow] cloud sync failed, restored {result.count} prompts locally only."
        )
        console.print(f"  {result.cloud_error}")


@cli.command()
@click.option("--push", is_flag=True, help="Upload local prompts to the cloud and wait")
@click.pass_context
def sync(ctx: click.Context, push: bool):
    """Pull from (or push to) the cloud copy."""

    async def action(lib: PromptLibrary) -> int:
        if not lib.cloud_enabled:
            raise PromptMasterError.cloud_not_configured()
        if push:
            await lib.sync.push_now(lib.records)
        return len(lib.records)

    count = _run(ctx, action)
    verb = "Uploaded" if push else "In sync:"
    console.print(f"{verb} {count} prompts.")


@cli.group()
def cloud():
    """Cloud sync settings."""


@cloud.command(name="status")
@click.pass_context
def cloud_status(ctx: click.Context):
    """Show whether cloud sync is configured."""

    def action(lib: PromptLibrary):
        return resolve_cloud_config(lib.store), lib.cloud_enabled

    config, enabled = _run(ctx, action)
    if config is None:
        console.print("Cloud sync: [dim]off[/dim] (local only)")
        return
    state = "[green]on[/green]" if enabled else "[red]invalid[/red]"
    console.print(Panel(f"Cloud sync: {state}\nURL: {config.url}", title="Cloud"))


@cloud.command(name="set")
@click.argument("url")
@click.argument("key")
@click.pass_context
def cloud_set(ctx: click.Context, url: str, key: str):
    """Save a cloud URL and anon key on this machine."""
    _run(ctx, lambda lib: lib.configure_cloud(url, key))
    console.print("[green]Cloud settings saved.[/green]")


@cloud.command(name="clear")
@click.pass_context
def cloud_clear(ctx: click.Context):
    """Forget the saved cloud URL and key."""
    _run(ctx, lambda lib: lib.clear_cloud())
    console.print("Cloud settings cleared.")


def main():
    cli()


if __name__ == "__main__":
    main()
