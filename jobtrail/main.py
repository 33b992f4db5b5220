"""Command-line entry point for CSV imports."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout
from pydantic import TypeAdapter, ValidationError

from .config import get_config, load_config
from .dedupe import recommended_resolutions
from .errors import ImportFailedError
from .models import Application, ImportProgress
from .pipeline import ImportPipeline
from .templates import generate_template_csv, get_template

LOCK_FILE = Path("/tmp/jobtrail_import.lock")
LOG_DIR = Path(__file__).parent.parent / "logs"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def setup_logging() -> None:
    """Configure logging for the application."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOG_DIR / "import.log"

    config = get_config()
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout),
        ],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jobtrail",
        description="Import job applications from CSV exports.",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", type=Path, help="Path to config.yaml")
    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser(
        "import", parents=[common], help="Import applications from a CSV file"
    )
    import_parser.add_argument("file", type=Path, help="CSV file to import")
    import_parser.add_argument(
        "--existing", type=Path, help="JSON file with already stored applications"
    )
    import_parser.add_argument(
        "--output", type=Path, help="Write the import result as JSON to this file"
    )
    import_parser.add_argument(
        "--mapping", type=Path, help="JSON file with a field -> column mapping"
    )
    import_parser.add_argument(
        "--skip-row",
        type=int,
        action="append",
        default=[],
        dest="skip_rows",
        help="0-based data row index to skip (repeatable)",
    )
    import_parser.add_argument(
        "--resolve",
        choices=["recommended", "keep_all"],
        default="keep_all",
        help="How to resolve duplicate groups",
    )

    template_parser = subparsers.add_parser(
        "template", parents=[common], help="Print a CSV template"
    )
    template_parser.add_argument("template_id", help="Template id, e.g. linkedin or custom")
    template_parser.add_argument(
        "--no-examples", action="store_true", help="Only print the header row"
    )

    return parser


def load_existing(path: Optional[Path]) -> list[Application]:
    if path is None:
        return []
    with open(path) as f:
        data = json.load(f)
    return TypeAdapter(list[Application]).validate_python(data)


def load_mapping(path: Optional[Path]) -> Optional[dict[str, str]]:
    if path is None:
        return None
    with open(path) as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Mapping file must contain a JSON object: {path}")
    return {str(field): str(column) for field, column in data.items()}


def run_import(args: argparse.Namespace) -> int:
    """Run one import and write the result."""
    logger = logging.getLogger(__name__)

    def report(event: ImportProgress) -> None:
        logger.info(f"[{event.stage}] {event.progress:.0f}% {event.message}")

    existing = load_existing(args.existing)
    mapping = load_mapping(args.mapping)
    pipeline = ImportPipeline(config=get_config(), on_progress=report)

    resolutions = None
    if args.resolve == "recommended":
        # Detection has to run once to learn the group ids.
        analysis = pipeline.analyze(args.file)
        preview = pipeline.validate(
            analysis.rows, mapping or analysis.detection.mapping, existing, args.skip_rows
        )
        resolutions = recommended_resolutions(preview.duplicate_groups)

    result = pipeline.run(
        args.file,
        mapping=mapping,
        existing=existing,
        resolutions=resolutions,
        skip_rows=args.skip_rows,
    )

    payload = result.model_dump_json(indent=2)
    if args.output:
        args.output.write_text(payload)
        logger.info(f"Wrote import result to {args.output}")
    else:
        print(payload)

    summary = result.summary
    logger.info(
        f"Imported {summary.successful_imports} of {summary.total_rows} rows "
        f"({summary.skipped_rows} skipped, {summary.duplicates_found} duplicates)"
    )
    return EXIT_OK


def print_template(args: argparse.Namespace) -> int:
    if get_template(args.template_id) is None:
        print(f"Unknown template: {args.template_id}", file=sys.stderr)
        return EXIT_USAGE
    sys.stdout.write(generate_template_csv(args.template_id, include_examples=not args.no_examples))
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point with concurrency protection."""
    args = build_parser().parse_args(argv)

    try:
        load_config(args.config)
    except FileNotFoundError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILED

    if args.command == "template":
        return print_template(args)

    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        with FileLock(LOCK_FILE, timeout=10):
            logger.info("Acquired lock, starting import")
            return run_import(args)

    except Timeout:
        logger.warning("Could not acquire lock - another import is running")
        return EXIT_OK

    except ImportFailedError as e:
        logger.error(f"Import failed during {e.stage}: {e}")
        return EXIT_FAILED

    except (OSError, ValueError, ValidationError) as e:
        logger.error(f"Invalid input: {e}")
        return EXIT_USAGE

    except Exception as e:
        logger.exception(f"Import failed: {e}")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
