#!/usr/bin/env python3
"""
Tableau Site Migrator - Main CLI Entry Point

This script provides the command-line interface for taking an inventory of
a site, exporting its workbooks and data sources to disk, and importing
exported content into another site.
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Dict

import yaml

from config_loader import ConfigLoader, get_nested, resolve_task_flags
from logger import log_config, log_section, setup_logging
from models import TaskCommand
from orchestrator import MigrationOrchestrator

# Version
__version__ = "1.0.0"

# Seconds between status polls while the task runs
POLL_INTERVAL = 0.5

EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for CLI."""
    parser = argparse.ArgumentParser(
        description="Inventory, export and import Tableau site content",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Inventory of a site
  python migrate.py --config config.yaml --command inventory

  # Export everything tagged 'migrate' into per-project folders
  python migrate.py --command export --tag migrate --output ./export

  # Export one project and remove the tag afterwards
  python migrate.py --command export --project Finance --tag migrate --remove-tag

  # Import an export into another site
  python migrate.py --command import --content-url "https://target/#/site/sales/" --source ./export

  # Show what would run without contacting the server
  python migrate.py --command export --dry-run

  # Verbose logging
  python migrate.py -vv
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '--config',
        type=str,
        default='config.yaml',
        help='Path to configuration YAML file (default: config.yaml)'
    )

    parser.add_argument(
        '--command',
        choices=[c.value for c in TaskCommand],
        help='Task to run (default: task.command from the config file)'
    )

    parser.add_argument(
        '--content-url',
        type=str,
        help="Site URL as copied from the browser, e.g. 'https://host/#/site/sales/'"
    )

    parser.add_argument(
        '--username',
        type=str,
        help='Account used to sign in'
    )

    parser.add_argument(
        '--output',
        dest='output_dir',
        type=str,
        help='Export output directory'
    )

    parser.add_argument(
        '--source',
        dest='source_dir',
        type=str,
        help='Import source directory (containing datasources/ and workbooks/)'
    )

    parser.add_argument(
        '--project',
        type=str,
        help='Only export content from this project'
    )

    parser.add_argument(
        '--tag',
        type=str,
        help='Only export content carrying this tag'
    )

    parser.add_argument(
        '--remove-tag',
        action='store_true',
        help='Remove the --tag from content after it was exported'
    )

    parser.add_argument(
        '--remap-references',
        action='store_true',
        help='Point published data source references in workbooks at the target site'
    )

    parser.add_argument(
        '--inventory-file',
        type=str,
        help='Write the site inventory CSV to this file'
    )

    parser.add_argument(
        '--report-json',
        dest='report_file',
        type=str,
        help='Write the task summary as JSON to this file'
    )

    parser.add_argument(
        '--log-file',
        type=str,
        help='Write the debug log to this file'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Show the steps that would run without contacting the server'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase verbosity (-v for INFO, -vv for DEBUG)'
    )

    return parser


def print_plan(config: Dict) -> None:
    """Print the steps a task would run."""
    flags = resolve_task_flags(config)
    print("\n" + "=" * 60)
    print("TASK PREVIEW (DRY RUN)")
    print("=" * 60)
    print(f"\nCommand: {get_nested(config, 'task.command')}")
    print(f"Site:    {get_nested(config, 'server.content_url')}")
    print("\nSteps:")
    print("-" * 60)
    for name, enabled in flags.items():
        if enabled:
            print(f"  {name}")
    for command in get_nested(config, 'task.custom_requests', []) or []:
        print(f"  custom request: {command}")
    if get_nested(config, 'export.project'):
        print(f"\nProject filter: {get_nested(config, 'export.project')}")
    if get_nested(config, 'export.tag'):
        print(f"Tag filter:     {get_nested(config, 'export.tag')}")
    print("\n" + "=" * 60)


def run_task(orchestrator: MigrationOrchestrator, logger: logging.Logger) -> int:
    """Run the task on its worker thread and echo new status lines until it is done."""
    orchestrator.execute_task_begin()
    printed = 0
    try:
        while not orchestrator.is_done:
            printed = _print_new_status(orchestrator, printed)
            time.sleep(POLL_INTERVAL)
        orchestrator.wait()
    except KeyboardInterrupt:
        logger.error("Task interrupted by user, aborting")
        orchestrator.abort(mark_as_done=False)
        _wait_for_worker(orchestrator, printed, logger)
        return EXIT_INTERRUPTED

    _print_new_status(orchestrator, printed)

    report = orchestrator.generate_report()
    print(orchestrator.report.format_console_report(report))

    report_path = get_nested(orchestrator.config, 'output.report_file')
    if report_path:
        try:
            orchestrator.report.export_json_report(report, Path(report_path))
        except OSError as e:
            logger.warning(f"Failed to export JSON report: {e}")

    errors = orchestrator.status_log.error_count
    if errors > 0:
        print("\nErrors:\n" + orchestrator.error_text())
        logger.warning(f"Task completed with {errors} errors")
        return EXIT_ERRORS

    logger.info("Task completed successfully")
    return EXIT_OK


def _wait_for_worker(orchestrator: MigrationOrchestrator, printed: int, logger: logging.Logger) -> None:
    """
    Let an aborted task reach its next checkpoint and sign out.

    A second Ctrl-C stops waiting; the daemon worker then dies with the
    interpreter, possibly in the middle of a request.
    """
    print("Waiting for the current request to finish (press Ctrl-C again to force exit)...")
    try:
        while not orchestrator.wait(POLL_INTERVAL):
            printed = _print_new_status(orchestrator, printed)
    except KeyboardInterrupt:
        logger.error("Forced exit before the task stopped")
        return
    _print_new_status(orchestrator, printed)


def _print_new_status(orchestrator: MigrationOrchestrator, printed: int) -> int:
    entries = orchestrator.status_log.status_entries()
    for entry in entries[printed:]:
        print(f"{entry.timestamp:%H:%M:%S}  {entry.text}")
    return len(entries)


def main() -> int:
    """Main entry point for the CLI."""
    parser = create_argument_parser()
    args = parser.parse_args()

    try:
        setup_logging(verbosity=args.verbose)
        logger = logging.getLogger('tableau_site_migrator.cli')

        log_section("Tableau Site Migrator")
        logger.info(f"Version: {__version__}")

        # Load configuration
        logger.info(f"Loading configuration from {args.config}")
        config = ConfigLoader.load(args.config)

        # Merge with CLI arguments (CLI takes precedence)
        config = ConfigLoader.merge_with_args(config, args)
        ConfigLoader.validate(config)

        # Reconfigure logging with config file settings
        logging_config = config.get('logging', {})
        setup_logging(
            verbosity=args.verbose,
            log_file=logging_config.get('file'),
            level=logging_config.get('level') if not args.verbose else None
        )
        log_config(config)

        if args.dry_run:
            print_plan(config)
            return EXIT_OK

        return run_task(MigrationOrchestrator(config), logger)

    except FileNotFoundError as e:
        print(f"ERROR: File not found: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except (ValueError, yaml.YAMLError) as e:
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
