#!/usr/bin/env python3

"""
Job Harvester - Main Entry Point
Bootstraps one browser session, then harvests job offers over plain HTTP
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from config_loader import BOOTSTRAP_BACKENDS, ConfigLoader, load_config
from errors import BootstrapFailure, ConfigurationError
from harvester import Harvester, resolve_seeds

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def setup_logging(config) -> None:
    """Configure logging for the application"""
    log_file = config.get_log_file()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    log_level = getattr(logging, config.get_log_level(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ],
        force=True,
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file}")


def display_config(config: ConfigLoader, seeds: List[str]) -> None:
    """Display loaded configuration"""
    print("\n" + "="*60)
    print("🌾 JOB HARVESTER")
    print("="*60)

    print("\n📋 SEARCH PARAMETERS:")
    print(f"  Keyword: {config.get_keyword() or '-'}")
    print(f"  Location: {config.get_location() or '-'}")
    print(f"  Category: {config.get_category() or '-'}")
    for i, seed in enumerate(seeds, 1):
        print(f"  Seed {i}: {seed}")

    print(f"\n🎯 Results wanted: {config.get_results_wanted()}")
    print(f"📄 Max list pages: {config.get_max_pages()}")
    print(f"🔎 Collect details: {config.is_collect_details_enabled()}")

    print(f"\n⚙️  SESSION & FETCH:")
    print(f"  Bootstrap backend: {config.get_bootstrap_backend()} (on failure: {config.get_bootstrap_failure_policy()})")
    print(f"  Concurrency: {config.get_concurrency()}")
    print(f"  Delay range: {config.get_min_delay()}s - {config.get_max_delay()}s")
    print(f"  Re-bootstrap ceiling: {config.get_max_rebootstraps()}")
    print(f"  Proxy: {'enabled' if config.is_proxy_enabled() else 'disabled'}")

    print(f"\n💾 OUTPUT:")
    print(f"  JSONL: {config.get_output_path('jsonl')}")
    if config.is_markdown_enabled():
        print(f"  Markdown: {config.get_output_path('md')}")

    print("\n" + "="*60 + "\n")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Adaptive two-phase job harvester")
    parser.add_argument("--config", default="config/settings.yaml", help="Path to config YAML")
    parser.add_argument("--keyword", help="Search keyword")
    parser.add_argument("--location", help="Location code (province id)")
    parser.add_argument("--category", help="Job category")
    parser.add_argument("--start-url", action="append", dest="start_urls", metavar="URL",
                        help="Explicit seed URL (repeatable)")
    parser.add_argument("--results-wanted", type=int, help="Stop after this many saved jobs")
    parser.add_argument("--max-pages", type=int, help="Maximum list pages to visit")
    parser.add_argument("--no-details", action="store_true",
                        help="Save list-page URLs only, skip detail pages")
    parser.add_argument("--concurrency", type=int, help="Fetch worker count")
    parser.add_argument("--backend", choices=BOOTSTRAP_BACKENDS, help="Session bootstrap backend")
    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> dict:
    overrides = {
        'search.keyword': args.keyword,
        'search.location': args.location,
        'search.category': args.category,
        'search.start_urls': args.start_urls,
        'search.results_wanted': args.results_wanted,
        'search.max_pages': args.max_pages,
        'fetch.concurrency': args.concurrency,
        'bootstrap.backend': args.backend,
    }
    if args.no_details:
        overrides['search.collect_details'] = False
    return overrides


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function"""
    print("\n🚀 Starting Job Harvester...")
    load_dotenv(dotenv_path=PROJECT_ROOT / ".env", override=False)
    args = parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.config)
        config.apply_overrides(build_overrides(args))
        seeds = resolve_seeds(config)
    except FileNotFoundError as e:
        print(f"❌ Error: {e}")
        print("Make sure config/settings.yaml exists!")
        return 1
    except ConfigurationError as e:
        print(f"❌ Error loading config: {e}")
        return 1

    setup_logging(config)
    logger = logging.getLogger(__name__)

    display_config(config, seeds)

    try:
        harvester = Harvester(config)
        summary = harvester.run()
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        print(f"❌ Error: {e}")
        return 1
    except BootstrapFailure as e:
        logger.error("Could not bootstrap a session: %s", e)
        print(f"❌ Bootstrap failed: {e}")
        return 1

    # Summary
    print("\n" + "="*60)
    print("✅ HARVEST COMPLETE")
    print("="*60)
    print(f"\n📊 Results: {summary.saved} jobs saved ({summary.pages_visited} list pages, {summary.blocked} blocks)")
    print(f"🩺 Session health: {summary.recovery_state}")
    print(f"📁 Files:")
    print(f"   JSONL: {summary.output_path}")
    if summary.markdown_path:
        print(f"   Markdown: {summary.markdown_path}")
    print(f"   Metrics: {summary.metrics_path}")
    print("\n" + "="*60 + "\n")

    if summary.saved == 0:
        print("⚠️  No jobs saved. Check your search parameters or try again later.")
        logger.warning("No jobs saved")

    logger.info(f"Harvest complete: {summary.saved} jobs saved")
    return 0


if __name__ == "__main__":
    sys.exit(main())
