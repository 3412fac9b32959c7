#!/usr/bin/env python3
"""
CLI entry point for the Azure DevOps Scoping Agent.

Usage:
    python -m scoping_agent --org myorg --pat TOKEN --out ./output

Or with environment variables in .env file:
    python -m scoping_agent
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from . import __version__
from .ado_client import ScopingFatalError
from .config import ConfigurationError, ScopingConfig
from .logging_config import setup_structured_logging
from .orchestrator import INTERRUPTED, run_scan
from .utils import setup_logging

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="scoping_agent",
        description="Azure DevOps Scoping Agent - Collect migration scoping data for an organization",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Scope an organization with a personal access token
  python -m scoping_agent --org myorg --pat xxxx --out ./output

  # Use the signed-in Azure CLI account instead of a PAT
  python -m scoping_agent --org myorg --auth azure_cli

  # Also clone every repository and look for files over 50MB
  python -m scoping_agent --org myorg --scan-large-files

  # Using .env file (create .env with ADO_ORG, ADO_PAT)
  python -m scoping_agent

Environment Variables (can be set in .env):
  ADO_ORG                         Organization name (ORG also accepted)
  ADO_PAT                         Personal Access Token
  ADO_TOKEN                       Static bearer token (with ADO_AUTH_MODE=bearer)
  ADO_AUTH_MODE                   pat | bearer | azure_cli (default: pat)
  OUTPUT_DIR                      Output directory (default: ./output)
  SCAN_LARGE_FILES                1 to clone repositories and scan for large files
  MAX_WORKERS                     Parallel workers (default: 8)
  RUN_TIMEOUT                     Global deadline in seconds (default: 0, none)
  DEBUG                           1 for debug logging

Required Token Scopes:
  - Code (Read), Work Items (Read), Build (Read), Project and Team (Read)
  - Member Entitlement Management (Read) for the user section
  - Advanced Security (Read) for alert counts
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    # Connection settings
    parser.add_argument(
        "--org",
        metavar="ORG",
        help="Azure DevOps organization name",
    )
    parser.add_argument(
        "--pat",
        metavar="TOKEN",
        help="Personal Access Token (or bearer token with --auth bearer)",
    )
    parser.add_argument(
        "--auth",
        choices=["pat", "bearer", "azure_cli"],
        help="Credential type (default: pat)",
    )

    # Output settings
    parser.add_argument(
        "--out",
        metavar="DIR",
        type=Path,
        help="Output directory for scoping-report.json (default: ./output)",
    )

    # Scan settings
    parser.add_argument(
        "--scan-large-files",
        action="store_true",
        help="Clone every repository and report blobs over the large-file threshold",
    )
    parser.add_argument(
        "--large-repo-gib",
        metavar="GIB",
        type=float,
        help="Repository size above which a repository counts as large (default: 1)",
    )
    parser.add_argument(
        "--large-blob-mb",
        metavar="MB",
        type=float,
        help="Blob size above which a file counts as large (default: 50)",
    )

    # Execution
    parser.add_argument(
        "--workers",
        metavar="N",
        type=int,
        help="Maximum parallel workers (default: 8)",
    )
    parser.add_argument(
        "--run-timeout",
        metavar="SECONDS",
        type=int,
        help="Stop starting new work after this many seconds and write a partial report",
    )

    # Logging
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all output except errors",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON lines",
    )
    parser.add_argument(
        "--log-file",
        metavar="FILE",
        help="Also write logs to FILE",
    )

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    # Setup logging
    if args.quiet:
        log_level = logging.ERROR
    elif args.debug:
        log_level = logging.DEBUG
    else:
        log_level = logging.INFO

    if args.log_json or args.log_file:
        setup_structured_logging(
            level=log_level, json_format=args.log_json, log_file=args.log_file, organization=args.org
        )
    else:
        setup_logging(level=log_level)
    logger = logging.getLogger("scoping_agent")

    try:
        # Build configuration from args + env
        config = ScopingConfig.from_env(
            organization=args.org,
            token=args.pat,
            auth_mode=args.auth,
            output_dir=str(args.out) if args.out else None,
            enable_deep_scan=True if args.scan_large_files else None,
            debug=True if args.debug else None,
            large_repo_gib=args.large_repo_gib,
            large_blob_mb=args.large_blob_mb,
            max_workers=args.workers,
            run_timeout=args.run_timeout,
        )
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        logger.error("Please provide required settings via CLI arguments or .env file")
        return EXIT_FAILED

    if config.debug and not args.quiet and log_level != logging.DEBUG:
        logging.getLogger("scoping_agent").setLevel(logging.DEBUG)
    logger.debug(
        f"Configuration: org={config.organization}, auth={config.auth_mode}, "
        f"deep_scan={config.enable_deep_scan}, workers={config.max_workers}"
    )

    try:
        report = run_scan(config)
    except KeyboardInterrupt:
        logger.warning("Scoping interrupted by user before any data was collected")
        return EXIT_INTERRUPTED
    except ScopingFatalError as e:
        logger.error(f"Scoping failed: {e}")
        return EXIT_FAILED
    except Exception as e:
        logger.exception(f"Scoping failed: {e}")
        return EXIT_FAILED

    if report.terminated_early:
        logger.warning(f"Partial report written ({report.termination_reason})")
        if report.termination_reason == INTERRUPTED:
            return EXIT_INTERRUPTED
    elif report.nothing_to_migrate:
        logger.info("Nothing to migrate")
    else:
        logger.info(
            f"Scoping complete: {report.project_count} projects, "
            f"{report.repo_count} repositories"
        )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
