"""
Command-line interface.

Usage:
    identisnap ingest data/images "51.5,-0.12,1.jpg" "51.5,-0.12,2.jpg"
    identisnap query data/indexes/51.5,-0.12.faiss photo.jpg
    identisnap locate photo.jpg
    identisnap match photo.jpg reference1.jpg reference2.jpg
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from identisnap.components import (
    create_index_store,
    create_locator,
    create_pairwise_matcher,
    create_recogniser,
)
from identisnap.config import (
    ConfigurationError,
    Settings,
    get_settings,
    load_settings,
    load_yaml_config,
)
from identisnap.core.exceptions import ServiceError
from identisnap.logging import setup_logging
from identisnap.services.descriptor_index import DescriptorIndexError
from identisnap.services.index_store import IngestionError
from identisnap.utils.image import read_image_file

console = Console()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="identisnap",
        description="Location recognition from photographs",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file (defaults to CONFIG_PATH or ./config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        help="Log level for the JSON logs written to stdout",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Ingest images of one location")
    ingest.add_argument("folder", type=Path, help="Folder holding the images")
    ingest.add_argument(
        "filenames",
        nargs="+",
        help='Image filenames; the first must start with "<lat>,<lng>"',
    )
    ingest.add_argument("--index-dir", type=Path, default=None, help="Index output folder")
    ingest.add_argument("--ledger", type=Path, default=None, help="Bin ledger file")

    query = subparsers.add_parser("query", help="Count matches against one location")
    query.add_argument("index", type=Path, help="Index file of the location")
    query.add_argument("image", type=Path, help="Query image")

    locate = subparsers.add_parser("locate", help="Score an image against every location")
    locate.add_argument("image", type=Path, help="Query image")

    match = subparsers.add_parser("match", help="Geometrically match images")
    match.add_argument("query", type=Path, help="Query image")
    match.add_argument("references", type=Path, nargs="+", help="Reference images")

    return parser.parse_args(argv)


def resolve_settings(config_path: Path | None) -> Settings:
    if config_path is None:
        return get_settings()
    return load_settings(load_yaml_config(config_path))


def run_ingest(settings: Settings, args: argparse.Namespace) -> int:
    store = create_index_store(settings, index_dir=args.index_dir, ledger_path=args.ledger)
    with console.status(f"Ingesting {len(args.filenames)} images..."):
        result = store.ingest_folder(args.folder, args.filenames)

    console.print(
        f"[green]✓ Ingested {result.location}: {result.image_count} images, "
        f"{result.descriptor_count} descriptors, "
        f"bins {result.entry.start_bin}-{result.entry.end_bin}[/green]"
    )
    if result.dropped_descriptors:
        console.print(
            f"[yellow]Dropped {result.dropped_descriptors} zero-norm descriptors[/yellow]"
        )
    console.print(f"[dim]Index: {result.index_path}[/dim]")
    return 0


def run_query(settings: Settings, args: argparse.Namespace) -> int:
    recogniser = create_recogniser(settings, args.index)
    confidence = recogniser.query_path(args.image)
    console.print(f"{recogniser.location}: [bold]{confidence}[/bold] matches")
    return 0


def run_locate(settings: Settings, args: argparse.Namespace) -> int:
    locator = create_locator(settings)
    result = locator.locate(read_image_file(args.image))

    if not result.scores:
        console.print("[yellow]The catalog is empty[/yellow]")
        return 0

    table = Table(title="Location Scores")
    table.add_column("Location", style="cyan")
    table.add_column("Matches", justify="right")
    for score in result.scores:
        table.add_row(score.location.key, str(score.confidence))
    console.print(table)

    best = result.best
    if best is None:
        console.print("[yellow]No location matched[/yellow]")
    else:
        console.print(f"[bold green]Best: {best.location} ({best.confidence} matches)[/bold green]")
    return 0


def run_match(settings: Settings, args: argparse.Namespace) -> int:
    matcher = create_pairwise_matcher(settings)
    query_bytes = read_image_file(args.query)
    references = [read_image_file(path) for path in args.references]
    outcome = matcher.match_batch(query_bytes, references)

    table = Table(title=f"Matches for {args.query.name} ({outcome.query_features} features)")
    table.add_column("Reference", style="cyan")
    table.add_column("Filtered", justify="right")
    table.add_column("Inliers", justify="right")
    table.add_column("Area ratio", justify="right")
    table.add_column("Match", justify="center")
    for path, result in zip(args.references, outcome.results, strict=True):
        area = "-" if result.area_ratio is None else f"{result.area_ratio:.4f}"
        table.add_row(
            path.name,
            str(result.filtered_matches),
            str(result.inliers),
            area,
            "[green]yes[/green]" if result.is_match else "[red]no[/red]",
        )
    console.print(table)
    return 0


COMMANDS = {
    "ingest": run_ingest,
    "query": run_query,
    "locate": run_locate,
    "match": run_match,
}


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    args = parse_args(argv)

    try:
        settings = resolve_settings(args.config)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        return 1

    try:
        setup_logging(args.log_level)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    try:
        return COMMANDS[args.command](settings, args)
    except ServiceError as e:
        console.print(f"[red]Error ({e.error}): {e.message}[/red]")
    except (DescriptorIndexError, IngestionError) as e:
        console.print(f"[red]Error: {e}[/red]")
    return 1


if __name__ == "__main__":
    sys.exit(main())
