#!/usr/bin/env python3
"""ShopGuard: restricted-business compliance scanner for online stores.

This CLI tool fetches a WooCommerce storefront's products, checks each one
against every restricted-business policy category with a language model,
stores the verdicts and writes a site-level compliance summary.

Commands:
    check       Scan one or more storefronts
    violations  Show stored violations and site summaries
    status      Show configuration and database statistics

Examples:
    python main.py check https://shop.example
    python main.py check https://a.example https://b.example --exclude adult gambling
    python main.py check https://shop.example --force --export results.json
    python main.py check https://shop.example --model "openai:qwen2.5-7b@http://localhost:1234/v1"
    python main.py violations --site https://shop.example
    python main.py status

Environment:
    OPENAI_API_KEY: Required unless every model is local
    Other settings: see the Config docstring in config.py
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from config import Config
from database import Database
from observability.logging import setup_logging
from policies import POLICY_CATALOG, parse_category_keys


def cmd_check(args: argparse.Namespace, config: Config) -> int:
    """Scan storefronts and print per-site stats.

    Args:
        args: Parsed command line arguments
        config: Application configuration (CLI overrides already applied)

    Returns:
        Exit code (0 for success)
    """
    from pipeline import check_sites

    logger = logging.getLogger(__name__)
    export_path = Path(args.export) if args.export else None

    try:
        stats = asyncio.run(check_sites(config, args.urls, force=args.force, export_path=export_path))
    except KeyboardInterrupt:
        logger.info("Scan interrupted")
        return 130
    except Exception as e:
        logger.error("Scan failed | error=%s type=%s", e, type(e).__name__, exc_info=True)
        return 1

    print(json.dumps(stats, indent=2))
    return 0


def cmd_violations(args: argparse.Namespace, config: Config) -> int:
    """Print stored violations grouped by site, with each site's summary."""
    with Database(config.db_path) as db:
        if args.site:
            rows = db.get_violations_for_site(args.site)
            summary = db.get_site_summary(args.site)
            summaries = {args.site: summary} if summary else {}
        else:
            rows = db.get_all_violations()
            summaries = {s.site_url: s for s in db.get_site_summaries()}

    if not rows and not summaries:
        print("No violations recorded.")
        return 0

    sites = sorted({r.site_url for r in rows} | set(summaries))
    for site_url in sites:
        summary = summaries.get(site_url)
        flag = "unknown" if summary is None else ("VIOLATION" if summary.violation else "ok")
        print(f"\n=== {site_url} [{flag}] ===")
        if summary and summary.summary:
            print(f"{summary.summary}\n")

        for row in (r for r in rows if r.site_url == site_url):
            label = POLICY_CATALOG[row.category_key].label if row.category_key in POLICY_CATALOG else row.category_key
            print(f"- {row.product_name} ({row.permalink})")
            print(f"  {label} [{row.confidence:.2f}, {row.model_id}]: {row.reason}")

    print()
    return 0


def cmd_status(args: argparse.Namespace, config: Config) -> int:
    """Print the effective configuration and row counts as JSON."""
    with Database(config.db_path) as db:
        counts = db.stats()

    report = {
        "config": {
            "classifier_model": config.classifier_model,
            "summary_model": config.summary_model,
            "summary_enabled": config.summary_enabled,
            "categories": len(POLICY_CATALOG) - len(config.excluded_categories),
            "excluded_categories": sorted(config.excluded_categories),
            "batch_size": config.batch_size,
            "products_per_page": config.products_per_page,
            "enable_logfire": config.enable_logfire,
        },
        "database": {"path": str(config.db_path), **counts},
    }

    print(json.dumps(report, indent=2))
    return 0


def _apply_overrides(args: argparse.Namespace, config: Config) -> None:
    """Apply `check` command-line overrides onto the loaded config."""
    if args.model:
        config.classifier_model = args.model
    if args.exclude:
        config.excluded_categories = config.excluded_categories | parse_category_keys(args.exclude)
    if args.batch_size is not None:
        config.batch_size = args.batch_size
    if args.no_summary:
        config.summary_enabled = False


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        description="ShopGuard: restricted-business compliance scanner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    # check command
    check_parser = subparsers.add_parser("check", help="Scan storefronts for policy violations")
    check_parser.add_argument(
        "urls",
        nargs="+",
        metavar="URL",
        help="Storefront base URL(s), e.g. https://shop.example",
    )
    check_parser.add_argument(
        "--model",
        help="Classifier model (default: config CLASSIFIER_MODEL); products are re-checked with a new model",
    )
    check_parser.add_argument(
        "--exclude",
        nargs="+",
        metavar="KEY",
        default=[],
        help=f"Policy categories to skip ({', '.join(POLICY_CATALOG)})",
    )
    check_parser.add_argument(
        "--batch-size",
        type=int,
        help="Products classified concurrently (default: config BATCH_SIZE)",
    )
    check_parser.add_argument(
        "--force",
        action="store_true",
        help="Re-classify products that were already checked",
    )
    check_parser.add_argument(
        "--no-summary",
        action="store_true",
        help="Skip the site summary",
    )
    check_parser.add_argument(
        "--export",
        metavar="PATH",
        help="Write this run's verdicts as JSON keyed by product permalink",
    )

    # violations command
    violations_parser = subparsers.add_parser("violations", help="Show stored violations")
    violations_parser.add_argument(
        "--site",
        help="Only show this storefront",
    )

    # status command
    subparsers.add_parser("status", help="Show settings and database counts")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, load settings and dispatch to a command.

    Returns:
        Exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = Config.load()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config, verbose=args.verbose)

    if args.command == "check":
        _apply_overrides(args, config)
        error = config.validate()
        if error:
            print(f"Configuration error: {error}", file=sys.stderr)
            return 1

    handler = {
        "check": cmd_check,
        "violations": cmd_violations,
        "status": cmd_status,
    }.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    try:
        return handler(args, config)
    except Exception as e:
        logging.getLogger(__name__).error("%s failed | error=%s", args.command, e, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
