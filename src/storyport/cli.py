"""Command-line interface for storyport."""

import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from storyport import __version__
from storyport.config import get_settings
from storyport.core.bundle import apply_import, load_bundle, new_bundle, save_bundle
from storyport.core.cancellation import CancellationToken
from storyport.core.exporter import export_story, write_export
from storyport.core.importer import import_story
from storyport.core.models import (
    ExportOptions,
    GlossaryOptions,
    ImportMode,
    ImportOptions,
    ImportProgress,
    ImportSource,
)
from storyport.formats import FORMATS
from storyport.formats.base import StoryportError
from storyport.log import configure_logging

app = typer.Typer(
    name="storyport",
    help="Import manuscripts into story projects and export them as Markdown, DOCX, EPUB or PDF.",
    add_completion=False,
)
console = Console()

EXIT_CANCELLED = 130


class _State:
    verbose: bool = False


state = _State()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"storyport v{__version__}")
        raise typer.Exit()


def fail(message: str) -> None:
    """Print one error line and exit with status 1."""
    console.print(f"[red]Error:[/red] {message}")
    if state.verbose:
        console.print_exception()
    raise typer.Exit(1)


def split_types(value: Optional[str]) -> Optional[list[str]]:
    if value is None:
        return None
    return [t.strip() for t in value.split(",") if t.strip()]


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """
    Move stories between project bundles and manuscript files.

    Examples:

        storyport init novel.json --name "The Long Road"

        storyport import novel.json draft.docx

        storyport export novel.json --format epub --output out/
    """
    state.verbose = verbose
    configure_logging(verbose=verbose)


@app.command()
def init(
    bundle_path: Path = typer.Argument(..., help="Bundle file to create"),
    name: str = typer.Option(..., "--name", "-n", help="Project name"),
    description: str = typer.Option("", "--description", "-d", help="Project description"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing bundle"),
) -> None:
    """Create an empty project bundle."""
    if bundle_path.exists() and not force:
        fail(f"{bundle_path} already exists (use --force to overwrite)")
    save_bundle(new_bundle(str(uuid.uuid4()), name, description), bundle_path)
    console.print(f"[green]Created:[/green] {bundle_path}")


@app.command("export")
def export_command(
    bundle_path: Path = typer.Argument(..., help="Project bundle (JSON)", exists=True),
    format: Optional[str] = typer.Option(
        None,
        "--format",
        "-f",
        help="Output format: markdown (md), docx, epub or pdf",
    ),
    output: Path = typer.Option(
        Path("."),
        "--output",
        "-o",
        help="Directory to write the file into",
    ),
    no_title_page: bool = typer.Option(False, "--no-title-page", help="Leave out the title page"),
    no_toc: bool = typer.Option(False, "--no-toc", help="Leave out the table of contents"),
    entity_marks: bool = typer.Option(
        False,
        "--entity-marks",
        help="Keep entity references visible and linked to the glossary",
    ),
    no_glossary: bool = typer.Option(False, "--no-glossary", help="Leave out the glossary"),
    glossary_types: Optional[str] = typer.Option(
        None,
        "--glossary-types",
        help="Comma-separated entity types for the glossary (default: character,location)",
    ),
    all_entities: bool = typer.Option(
        False,
        "--all-entities",
        help="Include entities the text never references",
    ),
    file_name: Optional[str] = typer.Option(None, "--file-name", help="Output file name"),
) -> None:
    """Export a project bundle to a manuscript file."""
    settings = get_settings()
    options = ExportOptions(
        format=format or settings.default_format,
        include_title_page=not no_title_page,
        include_toc=not no_toc,
        preserve_entity_marks=entity_marks,
        glossary=GlossaryOptions(
            include=not no_glossary,
            types=split_types(glossary_types) or settings.glossary_type_list,
            only_referenced=not all_entities,
        ),
        file_name=file_name,
    )

    try:
        bundle = load_bundle(bundle_path)
        result = export_story(bundle.project, bundle.documents, bundle.entities, options)
        path = write_export(result, output)
    except (StoryportError, OSError) as e:
        fail(str(e))
        return

    console.print(f"[green]Exported:[/green] {path}")


@app.command("import")
def import_command(
    bundle_path: Path = typer.Argument(..., help="Project bundle (JSON)", exists=True),
    file: Path = typer.Argument(..., help="Manuscript to import", exists=True, dir_okay=False),
    format: str = typer.Option(
        "auto",
        "--format",
        "-f",
        help="Input format: auto, markdown (md), docx, epub or text (txt)",
    ),
    mode: ImportMode = typer.Option(
        ImportMode.APPEND,
        "--mode",
        "-m",
        help="Append after existing chapters or replace them",
    ),
    detect_entities: bool = typer.Option(
        False,
        "--detect-entities",
        "-e",
        help="Detect characters, locations and other entities with an LLM",
    ),
    entity_types: Optional[str] = typer.Option(
        None,
        "--entity-types",
        help="Comma-separated entity types to detect (default: character,location)",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Show what would be imported without changing the bundle",
    ),
) -> None:
    """Import a manuscript file into a project bundle."""
    options = ImportOptions(format=format, mode=mode, detect_entities=detect_entities)
    types = split_types(entity_types)
    if types:
        options.entity_types = types

    try:
        bundle = load_bundle(bundle_path)
        source = ImportSource(file_name=file.name, data=file.read_bytes())
    except (StoryportError, OSError) as e:
        fail(str(e))
        return

    token = CancellationToken()
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task(f"Importing {file.name}...", total=100)

        def on_progress(update: ImportProgress) -> None:
            progress.update(task, completed=update.percent, description=update.message)

        with ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(
                import_story,
                source,
                options,
                existing_documents=bundle.documents,
                existing_entities=bundle.entities,
                project_id=bundle.project.id,
                on_progress=on_progress,
                token=token,
            )
            try:
                try:
                    result = future.result()
                except KeyboardInterrupt:
                    token.cancel()
                    progress.update(task, description="Cancelling...")
                    result = future.result()
            except StoryportError as e:
                fail(str(e))
                return

    if result.cancelled:
        console.print("[yellow]Import cancelled; the bundle was not changed[/yellow]")
        raise typer.Exit(EXIT_CANCELLED)

    _print_import_summary(result)

    if dry_run:
        console.print("[yellow]Dry run:[/yellow] bundle not written")
        return

    save_bundle(apply_import(bundle, result, mode), bundle_path)
    console.print(f"[green]Updated:[/green] {bundle_path}")


def _print_import_summary(result) -> None:
    table = Table(title="Imported documents")
    table.add_column("#", justify="right")
    table.add_column("Type")
    table.add_column("Title")
    table.add_column("Words", justify="right")
    for doc in result.documents:
        title = doc.title if doc.parent_id is None else f"  {doc.title}"
        table.add_row(str(doc.order_index), doc.type, title, str(doc.word_count))
    console.print(table)

    if result.entities_created or result.entities_updated:
        console.print(
            f"[blue]Entities:[/blue] {len(result.entities_created)} new, "
            f"{len(result.entities_updated)} updated"
        )


@app.command()
def formats() -> None:
    """List supported formats."""
    table = Table(title="Formats")
    table.add_column("Format")
    table.add_column("Name")
    table.add_column("Extensions")
    table.add_column("Import", justify="center")
    table.add_column("Export", justify="center")
    for info in FORMATS.values():
        table.add_row(
            info.id.value,
            info.label,
            ", ".join(info.extensions),
            "yes" if info.can_parse else "-",
            "yes" if info.can_render else "-",
        )
    console.print(table)


if __name__ == "__main__":
    app()
