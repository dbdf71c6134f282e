"""
Main CLI entry point for image-sorter.

Thin command-line surface over ImageSorterEngine: scan a folder, find
duplicates, sort by date, move, delete, make thumbnails and roll back.
"""

import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import click
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from ..core.concurrency import ProgressListener
from ..core.config import Settings
from ..core.errors import ImageSorterError
from ..core.types import (
    HashAlgorithm,
    OperationOutcome,
    PrimaryPolicy,
    ProgressEvent,
    SortOptions,
    TransferMethod,
)
from ..engine import ImageSorterEngine
from ..shared.media_utils import format_bytes, setup_logging
from ..version import __version__

console = Console()


@contextmanager
def progress_listener(description: str, quiet: bool) -> Iterator[ProgressListener]:
    """Rich progress bar fed by engine progress events."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TimeRemainingColumn(),
        console=console,
        disable=quiet,
    ) as progress:
        task = progress.add_task(description, total=None)

        def on_event(event: ProgressEvent) -> None:
            progress.update(task, completed=event.completed, total=event.total or None)

        yield on_event


def build_settings(state_dir: Optional[str], **overrides) -> Settings:
    values = {k: v for k, v in overrides.items() if v is not None}
    if state_dir:
        values["state_dir"] = Path(state_dir).expanduser()
    return Settings(**values)


def fail(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")
    sys.exit(1)


def print_outcome(title: str, outcome: OperationOutcome, verbose: bool) -> None:
    """Print a summary table for a batch file operation."""
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Processed", str(outcome.processed))
    table.add_row("Succeeded", str(outcome.succeeded))
    table.add_row("Failed", str(outcome.failed))
    if outcome.permanently_deleted:
        table.add_row("Permanently deleted", str(len(outcome.permanently_deleted)))
    if outcome.transaction_id:
        table.add_row("Transaction ID", outcome.transaction_id)
    if outcome.cancelled:
        table.add_row("Cancelled", "yes")

    console.print(table)

    if outcome.errors:
        console.print(f"\n[yellow]{len(outcome.errors)} errors:[/yellow]")
        shown = outcome.errors if verbose else outcome.errors[:10]
        for error in shown:
            console.print(f"  • {error}")
        if len(shown) < len(outcome.errors):
            console.print(f"  ... and {len(outcome.errors) - len(shown)} more")


@click.group()
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory for the hash cache, thumbnails and transaction logs",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
@click.option("-q", "--quiet", is_flag=True, help="Suppress all output except errors")
@click.version_option(__version__, prog_name="image-sorter")
@click.pass_context
def cli(ctx: click.Context, state_dir: Optional[str], verbose: bool, quiet: bool):
    """Find duplicate images and sort photos into date folders."""
    setup_logging(verbose=verbose, quiet=quiet)
    ctx.ensure_object(dict)
    ctx.obj["state_dir"] = state_dir
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.pass_context
def scan(ctx: click.Context, directory: str) -> None:
    """
    Scan a directory for images.

    DIRECTORY: Path to directory containing images
    """
    settings = build_settings(ctx.obj["state_dir"])
    quiet = ctx.obj["quiet"]

    try:
        with ImageSorterEngine(settings) as engine:
            with progress_listener("Scanning images...", quiet) as listener:
                result = engine.scan(Path(directory), progress=listener)
    except ImageSorterError as e:
        fail(str(e))
        return

    table = Table(title="Scan Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Images", str(result.image_count))
    table.add_row("Total size", format_bytes(result.total_size_bytes))
    table.add_row("Errors", str(len(result.errors)))
    table.add_row("Skipped links", str(len(result.skipped_links)))
    console.print(table)

    if result.errors and ctx.obj["verbose"]:
        for error in result.errors:
            console.print(f"  [yellow]•[/yellow] {error}")


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option(
    "-t",
    "--threshold",
    type=int,
    default=None,
    help="Similarity threshold (0-64 for 8x8 hashes, lower = more strict)",
)
@click.option(
    "--algorithm",
    type=click.Choice([a.value for a in HashAlgorithm], case_sensitive=False),
    default=None,
    help="Perceptual hash algorithm",
)
@click.option(
    "--primary",
    type=click.Choice([p.value for p in PrimaryPolicy], case_sensitive=False),
    default=None,
    help="How the original of each group is chosen",
)
@click.pass_context
def duplicates(
    ctx: click.Context,
    directory: str,
    threshold: Optional[int],
    algorithm: Optional[str],
    primary: Optional[str],
) -> None:
    """
    Find duplicate and similar images.

    Uses perceptual hashing to find images that are visually similar, even if
    they have different file sizes, formats, or resolutions.

    DIRECTORY: Path to directory containing images to analyze
    """
    settings = build_settings(
        ctx.obj["state_dir"], hash_algorithm=algorithm, primary_policy=primary
    )
    quiet = ctx.obj["quiet"]

    try:
        with ImageSorterEngine(settings) as engine:
            with progress_listener("Scanning images...", quiet) as listener:
                scan_result = engine.scan(Path(directory), progress=listener)
            with progress_listener("Computing hashes...", quiet) as listener:
                result = engine.find_duplicates(
                    scan_result.images, threshold=threshold, progress=listener
                )
    except ImageSorterError as e:
        fail(str(e))
        return

    for i, group in enumerate(result.groups, 1):
        kind = "exact" if group.exact else "similar"
        console.print(f"\n[bold]Group {i}[/bold] ({kind}, {group.size} images)")
        console.print(f"  [green]primary[/green]  {group.primary.path}")
        for duplicate in group.duplicates:
            console.print(f"  [yellow]dup[/yellow]      {duplicate.path}")

    table = Table(title="Duplicate Detection Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Images hashed", str(result.processed - result.failed))
    table.add_row("Failed", str(result.failed))
    table.add_row("Duplicate groups", str(len(result.groups)))
    table.add_row("Duplicates", str(result.total_duplicates))
    console.print(table)

    if result.groups:
        console.print(
            "\n[yellow]Review the results carefully before deleting any files![/yellow]"
        )


@cli.command(name="sort")
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.argument("target", type=click.Path(file_okay=False))
@click.option(
    "--method",
    type=click.Choice([m.value for m in TransferMethod], case_sensitive=False),
    default="copy",
    help="copy (safe) or move (removes originals)",
)
@click.option("--day-folders", is_flag=True, help="Add a day folder below each month")
@click.option("--month-names", is_flag=True, help='Name months "06 - June"')
@click.option("--verify", is_flag=True, help="Verify checksums after each transfer")
@click.pass_context
def sort_command(
    ctx: click.Context,
    directory: str,
    target: str,
    method: str,
    day_folders: bool,
    month_names: bool,
    verify: bool,
) -> None:
    """
    Sort images into YEAR/MONTH[/DAY] folders.

    DIRECTORY: Folder with images to sort
    TARGET: Existing destination folder
    """
    settings = build_settings(ctx.obj["state_dir"])
    quiet = ctx.obj["quiet"]
    options = SortOptions(
        group_by_day=day_folders, use_month_names=month_names, verify_checksums=verify
    )

    try:
        with ImageSorterEngine(settings) as engine:
            with progress_listener("Scanning images...", quiet) as listener:
                scan_result = engine.scan(Path(directory), progress=listener)
            with progress_listener("Sorting files...", quiet) as listener:
                outcome = engine.sort_by_date(
                    [image.path for image in scan_result.images],
                    TransferMethod(method),
                    Path(target),
                    options,
                    progress=listener,
                )
    except ImageSorterError as e:
        fail(str(e))
        return

    print_outcome("Sort Summary", outcome, ctx.obj["verbose"])
    if outcome.failed:
        sys.exit(1)


@cli.command()
@click.argument("files", nargs=-1, required=True, type=click.Path())
@click.option(
    "--target",
    "-t",
    required=True,
    type=click.Path(file_okay=False),
    help="Existing destination folder",
)
@click.pass_context
def move(ctx: click.Context, files: List[str], target: str) -> None:
    """Move FILES into a folder, renaming on collisions."""
    settings = build_settings(ctx.obj["state_dir"])

    try:
        with ImageSorterEngine(settings) as engine:
            with progress_listener("Moving files...", ctx.obj["quiet"]) as listener:
                outcome = engine.move_files(files, Path(target), progress=listener)
    except ImageSorterError as e:
        fail(str(e))
        return

    print_outcome("Move Summary", outcome, ctx.obj["verbose"])
    if outcome.failed:
        sys.exit(1)


@cli.command()
@click.argument("files", nargs=-1, required=True, type=click.Path())
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete(ctx: click.Context, files: List[str], yes: bool) -> None:
    """Move FILES to the trash."""
    if not yes and not click.confirm(f"Move {len(files)} files to the trash?"):
        console.print("[yellow]Cancelled[/yellow]")
        return

    settings = build_settings(ctx.obj["state_dir"])
    with ImageSorterEngine(settings) as engine:
        with progress_listener("Deleting files...", ctx.obj["quiet"]) as listener:
            outcome = engine.delete_files(files, progress=listener)

    print_outcome("Delete Summary", outcome, ctx.obj["verbose"])
    if outcome.failed:
        sys.exit(1)


@cli.command()
@click.argument("file", type=click.Path())
@click.pass_context
def thumbnail(ctx: click.Context, file: str) -> None:
    """Print the path of FILE's cached thumbnail, creating it if needed."""
    settings = build_settings(ctx.obj["state_dir"])

    try:
        with ImageSorterEngine(settings) as engine:
            thumb_path = engine.get_thumbnail(Path(file))
    except ImageSorterError as e:
        fail(str(e))
        return

    click.echo(str(thumb_path))


@cli.command()
@click.argument("transaction_id")
@click.pass_context
def rollback(ctx: click.Context, transaction_id: str) -> None:
    """Undo the sort or move batch TRANSACTION_ID."""
    settings = build_settings(ctx.obj["state_dir"])

    try:
        with ImageSorterEngine(settings) as engine:
            outcome = engine.rollback(transaction_id)
    except ImageSorterError as e:
        fail(str(e))
        return

    print_outcome("Rollback Summary", outcome, ctx.obj["verbose"])
    if outcome.failed:
        sys.exit(1)


if __name__ == "__main__":
    cli()
