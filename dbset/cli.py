"""
dbset - Command-Line Interface
==============================

Build-time generator front end, built on the standard-library ``argparse``.

Usage examples::

    # Generate the data access package
    dbset --schema entities.yaml --output ./src

    # Validate the declarations and show every statement
    dbset -s entities.yaml --validate-only --print-sql

    # Regenerate over an existing package under another name
    python -m dbset -s entities.yaml -o ./src --overwrite --package-name store

Exit codes:
    0 - success
    1 - validation error
    2 - generation error
    3 - export error
    4 - input/argument error
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, NoReturn, Optional, Sequence

if TYPE_CHECKING:
    from dbset.generator import GenerationReport

# ---------------------------------------------------------------------------
# Logger (configured in _setup_logging)
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dbset")


# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_SUCCESS: int = 0
EXIT_VALIDATION_ERROR: int = 1
EXIT_GENERATION_ERROR: int = 2
EXIT_EXPORT_ERROR: int = 3
EXIT_INPUT_ERROR: int = 4


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(verbosity: int) -> None:
    """
    Configure the ``dbset`` logger.

    Args:
        verbosity: 0 = WARNING, 1 = INFO, 2+ = DEBUG.
    """
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity >= 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    handler: logging.StreamHandler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
            datefmt="%H:%M:%S",
        )
    )

    root_logger: logging.Logger = logging.getLogger("dbset")
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.propagate = False


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    from dbset import __version__

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="dbset",
        description=(
            "dbset - typed query builders for relational tables.\n\n"
            "Turns entity declarations (JSON/YAML) into a Python package of "
            "row models, statement constants and per-shape builders."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  %(prog)s -s entities.yaml -o ./src\n"
            "  %(prog)s -s entities.yaml --validate-only --print-sql\n"
            "  %(prog)s -s entities.yaml -o ./src --overwrite -v\n"
        ),
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"dbset v{__version__}",
    )

    parser.add_argument(
        "-s", "--schema",
        type=str,
        required=True,
        metavar="PATH",
        help="Path to the entity declaration file (JSON or YAML).",
    )
    parser.add_argument(
        "-o", "--output",
        type=str,
        default=None,
        metavar="DIR",
        help="Output directory (defaults to the config's output_dir).",
    )

    # --- Modes ---
    mode_group = parser.add_argument_group("operation modes")
    mode_group.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Validate and compile the declarations without writing files.",
    )
    mode_group.add_argument(
        "--print-sql",
        action="store_true",
        default=False,
        help="Print every generated statement to stdout.",
    )

    # --- Config overrides ---
    config_group = parser.add_argument_group("configuration overrides")
    config_group.add_argument(
        "--package-name",
        type=str,
        default=None,
        metavar="NAME",
        help="Override the generated package name.",
    )
    config_group.add_argument(
        "--overwrite",
        action="store_true",
        default=False,
        help="Replace files that already exist in the output directory.",
    )
    config_group.add_argument(
        "--no-manifest",
        action="store_true",
        default=False,
        help="Do not write the export manifest.",
    )
    config_group.add_argument(
        "--strict",
        action="store_true",
        default=False,
        help="Treat validation warnings as errors.",
    )

    # --- Verbosity ---
    verbosity_group = parser.add_argument_group("verbosity")
    verbosity_group.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for INFO, -vv for DEBUG).",
    )
    verbosity_group.add_argument(
        "-q", "--quiet",
        action="store_true",
        default=False,
        help="Suppress all output except errors.",
    )

    return parser


def _build_config_overrides(args: argparse.Namespace) -> Dict[str, object]:
    overrides: Dict[str, object] = {}
    if args.package_name is not None:
        overrides["package_name"] = args.package_name
    if args.overwrite:
        overrides["overwrite_existing"] = True
    if args.no_manifest:
        overrides["write_manifest"] = False
    return overrides


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def _exit_code_for(report: GenerationReport) -> int:
    if report.success:
        return EXIT_SUCCESS
    if report.input_errors:
        return EXIT_INPUT_ERROR
    if report.validation_errors:
        return EXIT_VALIDATION_ERROR
    if report.generation_errors:
        return EXIT_GENERATION_ERROR
    if report.export_errors:
        return EXIT_EXPORT_ERROR
    return EXIT_GENERATION_ERROR


def _run(schema_path: Path, args: argparse.Namespace) -> int:
    from dbset.generator import DbSetGenerator
    from dbset.models import GenerationConfig
    from dbset.templates import TemplateGenerator

    generator: DbSetGenerator = DbSetGenerator(fail_on_warnings=args.strict)
    overrides: Dict[str, object] = _build_config_overrides(args)
    report: GenerationReport = generator.generate_from_file(
        schema_path,
        Path(args.output) if args.output is not None else None,
        config_overrides=overrides or None,
        validate_only=args.validate_only,
    )

    if args.print_sql and report.compiled:
        listing: str = TemplateGenerator(
            GenerationConfig(package_name=report.package_name)
        ).render_sql_listing(report.compiled)
        print(listing)

    if not args.quiet:
        print(report.summary())

    return _exit_code_for(report)


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def cli_main(argv: Optional[Sequence[str]] = None) -> NoReturn:
    """
    Main CLI entry point.

    Can be called from ``__main__.py`` or directly for testing.

    Args:
        argv: Optional argument list (defaults to sys.argv[1:]).
    """
    parser: argparse.ArgumentParser = _build_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    _setup_logging(-1 if args.quiet else args.verbose)
    if args.quiet:
        logging.getLogger("dbset").setLevel(logging.ERROR)

    schema_path: Path = Path(args.schema).resolve()
    if not schema_path.is_file():
        logger.error("Schema file not found: %s", schema_path)
        sys.exit(EXIT_INPUT_ERROR)

    logger.info("Schema:  %s", schema_path)
    logger.info("Output:  %s", args.output or "(from config)")

    exit_code: int = _run(schema_path, args)
    if exit_code == EXIT_SUCCESS:
        logger.info("dbset finished successfully.")
    else:
        logger.error("dbset failed with exit code %d.", exit_code)
    sys.exit(exit_code)


__all__: List[str] = [
    "cli_main",
    "EXIT_SUCCESS",
    "EXIT_VALIDATION_ERROR",
    "EXIT_GENERATION_ERROR",
    "EXIT_EXPORT_ERROR",
    "EXIT_INPUT_ERROR",
]

logger.debug("dbset.cli loaded.")
