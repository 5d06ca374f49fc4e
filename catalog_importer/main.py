"""Main entry point for the marketplace catalog importer."""

import argparse
import asyncio
import logging
import sys

from .config import ImporterSettings
from .images import IMAGE_TASK
from .models import CompleteEvent, ErrorEvent, ImportOptions, LogEvent, ProgressEvent, Severity
from .store import LocalCatalog
from .stream import ImportStreamController

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
    ]
)
logger = logging.getLogger(__name__)

DEFAULT_CATALOG = "catalog.yaml"

SEVERITY_PREFIX = {
    Severity.INFO: "   ",
    Severity.WARNING: "[!]",
    Severity.SUCCESS: "[+]",
    Severity.ERROR: "[x]",
    Severity.AI: "[ai]",
}


async def run_import(
    csv_file: str,
    catalog_file: str = DEFAULT_CATALOG,
    options: ImportOptions | None = None,
    env_file: str | None = None,
    sse: bool = False,
) -> CompleteEvent | None:
    """Import a CSV file into the local catalog, printing events as they come.

    Args:
        csv_file: Marketplace CSV export
        catalog_file: Path to catalog YAML file
        options: Per-run switches
        env_file: Optional .env file with classifier settings
        sse: Print Server-Sent Events frames instead of log lines

    Returns:
        The final complete event, or None if the file was rejected before
        any row was read
    """
    catalog = LocalCatalog(catalog_file, autosave=False)
    settings = ImporterSettings.from_env(env_file)
    controller = ImportStreamController(
        catalog=catalog,
        metadata=catalog,
        assets=catalog,
        queue=catalog,
        settings=settings,
        options=options or ImportOptions(),
    )

    complete: CompleteEvent | None = None
    started = False
    async for event in controller.run(csv_file):
        if isinstance(event, ProgressEvent):
            started = True
        if sse:
            print(event.to_sse(), end="", flush=True)
        elif isinstance(event, LogEvent):
            print(f"{SEVERITY_PREFIX[event.severity]} {event.message}")
        elif isinstance(event, ProgressEvent) and event.current > 0:
            print(f"    [{event.current}/{event.total}] {event.percent}%")
        elif isinstance(event, ErrorEvent):
            print(f"[x] {event.message}")
        if isinstance(event, CompleteEvent):
            complete = event
    return complete if started else None


def show_status(catalog_file: str) -> int:
    """Show catalog status."""
    catalog = LocalCatalog(catalog_file)
    print(catalog.print_status())
    return 0


def show_tasks(catalog_file: str, limit: int = 10) -> int:
    """Show queued image tasks."""
    catalog = LocalCatalog(catalog_file)
    tasks = catalog.pending_tasks(IMAGE_TASK)

    if not tasks:
        print("No queued image tasks.")
        return 0

    print(f"=== Queued Image Tasks ({len(tasks)} total) ===\n")
    for task in tasks[:limit]:
        print(f"[{task.id}] run at {task.run_at.isoformat(timespec='seconds')}")
        print(f"  Product: {task.payload.get('product_id')}")
        print(f"  URL: {task.payload.get('image_url')}")
        if task.payload.get("is_featured"):
            print("  Featured: yes")
        print()

    if len(tasks) > limit:
        print(f"... and {len(tasks) - limit} more tasks")

    return 0


def main() -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Marketplace Catalog Importer - Import CSV listings into a product catalog"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Import command
    import_parser = subparsers.add_parser("import", help="Import a marketplace CSV export")
    import_parser.add_argument("csv_file", help="CSV file to import")
    import_parser.add_argument(
        "-c", "--catalog",
        default=DEFAULT_CATALOG,
        help=f"Catalog file path (default: {DEFAULT_CATALOG})"
    )
    import_parser.add_argument(
        "--no-images",
        action="store_true",
        help="Do not queue or sync product images"
    )
    import_parser.add_argument(
        "--physical",
        action="store_true",
        help="Create physical products instead of digital downloads"
    )
    import_parser.add_argument(
        "--draft",
        action="store_true",
        help="Create products as drafts"
    )
    import_parser.add_argument(
        "--no-categories",
        action="store_true",
        help="Skip classification and category assignment"
    )
    import_parser.add_argument(
        "--create-categories",
        action="store_true",
        help="Create missing categories from SECTION paths and matches"
    )
    import_parser.add_argument(
        "--default-category",
        type=int,
        default=0,
        help="Category id used when nothing matches (default: none)"
    )
    import_parser.add_argument(
        "--env-file",
        default=None,
        help="Path to a .env file with classifier settings"
    )
    import_parser.add_argument(
        "--sse",
        action="store_true",
        help="Print Server-Sent Events frames instead of log lines"
    )
    import_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    # Status command
    status_parser = subparsers.add_parser("status", help="Show catalog status")
    status_parser.add_argument(
        "-c", "--catalog",
        default=DEFAULT_CATALOG,
        help="Catalog file path"
    )

    # Tasks command
    tasks_parser = subparsers.add_parser("tasks", help="Show queued image tasks")
    tasks_parser.add_argument(
        "-c", "--catalog",
        default=DEFAULT_CATALOG,
        help="Catalog file path"
    )
    tasks_parser.add_argument(
        "-n", "--limit",
        type=int,
        default=10,
        help="Number of tasks to show (default: 10)"
    )

    args = parser.parse_args()

    if args.command == "status":
        return show_status(args.catalog)

    if args.command == "tasks":
        return show_tasks(args.catalog, args.limit)

    if args.command != "import":
        parser.print_help()
        return 1

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    options = ImportOptions(
        import_images=not args.no_images,
        mark_digital=not args.physical,
        draft_status=args.draft,
        import_categories=not args.no_categories,
        create_categories=args.create_categories,
        default_category=args.default_category,
    )

    try:
        complete = asyncio.run(run_import(
            csv_file=args.csv_file,
            catalog_file=args.catalog,
            options=options,
            env_file=args.env_file,
            sse=args.sse,
        ))
    except KeyboardInterrupt:
        logger.info("Import interrupted by user")
        return 1
    except Exception as e:
        logger.error(f"Import failed: {e}")
        return 1

    if complete is None:
        return 1

    if not args.sse:
        print(f"\n{'='*50}")
        print("Import Complete!")
        print(f"{'='*50}")
        print(f"Imported:           {complete.imported}")
        print(f"Updated:            {complete.updated}")
        print(f"Skipped:            {complete.skipped}")
        print(f"Images queued:      {complete.images_queued}")
        print(f"Categories created: {complete.categories_created}")
        print(f"Duration:           {complete.duration_text}")
        print(f"Catalog:            {args.catalog}")
        print(f"{'='*50}")
        for error in complete.errors:
            print(f"  {error}")

    return 1 if complete.errors and complete.imported + complete.updated == 0 else 0


if __name__ == "__main__":
    sys.exit(main())
