"""Command-line entry point for doc-link."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config
from .config_loader import ensure_config
from .logger import setup_logging
from .mirror.engine import MirrorEngine
from .mirror.reporter import (
    format_repo_listing,
    format_scan_report,
    report_to_json,
)
from .mirror.scanner import scan_all

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="doc-link",
        description="doc-link - mirror repository documentation as a tree of symlinks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Write a starter config, then edit it
  doc-link init --output-dir ~/doc-link

  # Validate the config and list repos
  doc-link check

  # One-shot reconciliation of every repo
  doc-link scan

  # Keep the mirror in sync until interrupted (SIGHUP reloads the config)
  doc-link run
        """,
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Config file path (takes precedence over DOC_LINK_CONFIG and discovery)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        help="Log line format (default: from config, else text)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"doc-link version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Scan, then watch and mirror continuously")

    scan = sub.add_parser("scan", help="Run one full scan of every repo")
    scan.add_argument(
        "--json", action="store_true", help="Print the summary as JSON"
    )

    init = sub.add_parser("init", help="Write a starter config file")
    init.add_argument(
        "--output-dir",
        default="~/doc-link",
        help="Mirror directory written into the starter config",
    )

    sub.add_parser("check", help="Validate the config and list repos")
    return parser


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _configure_logging(args: argparse.Namespace, config: Config, mode: str) -> None:
    setup_logging(
        mode=mode,
        debug=args.debug,
        log_file=args.log_file or config.log_file,
        log_format=args.log_format or config.log_format,
        level=config.log_level,
    )


def cmd_run(args: argparse.Namespace, config: Config) -> int:
    _configure_logging(args, config, mode="service")
    MirrorEngine(config).run_forever()
    return 0


def cmd_scan(args: argparse.Namespace, config: Config) -> int:
    _configure_logging(args, config, mode="cli")
    results = scan_all(config)
    if args.json:
        print(json.dumps(report_to_json(results), indent=2))
    else:
        print(format_scan_report(results))
    return 1 if any(r.errors for r in results) else 0


def cmd_check(args: argparse.Namespace, config: Config) -> int:
    print(f"Config: {config.config_path or '(environment only)'}")
    print(f"Output: {config.output_dir}")
    print(f"Debounce: {config.debounce_seconds}s")
    print(f"Rescan: {config.rescan_interval}")
    print("")
    print(format_repo_listing(config.repos))
    return 0


def cmd_init(args: argparse.Namespace) -> int:
    path, created = ensure_config(args.config, output_dir=args.output_dir)
    if created:
        print(f"Created {path}")
    else:
        print(f"Config already exists: {path}")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv()

    if args.command == "init":
        return cmd_init(args)

    try:
        config = load_config(config_path=args.config)
    except ValueError as exc:
        _stderr_print(f"Configuration error: {exc}")
        return 1
    except (OSError, yaml.YAMLError) as exc:
        _stderr_print(f"ERROR: Cannot read configuration: {exc}")
        return 1

    commands = {"run": cmd_run, "scan": cmd_scan, "check": cmd_check}
    return commands[args.command](args, config)


def run() -> None:
    """Entry point that handles errors gracefully."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        _stderr_print("\nInterrupted.")
        sys.exit(130)


if __name__ == "__main__":
    run()
