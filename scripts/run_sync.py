#!/usr/bin/env python3
"""
Run a LifeGraph importer from the command line.

Usage:
    python scripts/run_sync.py whatsapp PATH/TO/chat.zip
    python scripts/run_sync.py linkedin PATH/TO/Connections.csv
    python scripts/run_sync.py google [--token PATH]
    python scripts/run_sync.py runs [--platform PLATFORM]

Options:
    --ephemeral   Use an in-memory graph (nothing is persisted)

Exits with status 1 when the run fails.
"""
# Load environment variables from .env FIRST, before any other imports
from pathlib import Path
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

import argparse
import logging
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from api.services.container import GraphContainer
from api.services.graph_models import Platform

logger = logging.getLogger(__name__)


def _print_stats(stats: dict) -> None:
    for key, value in stats.items():
        print(f"  {key}: {value}")


def _print_runs(graph: GraphContainer, platform: Platform = None) -> int:
    summary = graph.tracker.get_sync_summary()
    print("\nSync Health Summary:")
    print(f"  Total sources: {summary['total_sources']}")
    print(f"  Failed: {summary['failed_sources']}")
    print(f"  Never run: {summary['never_run_sources']}")
    print(f"  All healthy: {summary['all_healthy']}")

    print("\nRecent runs:")
    for run in graph.store.list_sync_runs(platform, limit=20):
        line = f"  {run.started_at:%Y-%m-%d %H:%M} {run.platform.value:<9} {run.status.value:<9}"
        line += f" {run.records_processed} processed, {run.records_created} created"
        if run.error_log:
            line += f" ({run.error_log})"
        print(line)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run LifeGraph importers")
    parser.add_argument("--ephemeral", action="store_true", help="Use an in-memory graph")
    sub = parser.add_subparsers(dest="command", required=True)

    whatsapp = sub.add_parser("whatsapp", help="Import a WhatsApp export .zip")
    whatsapp.add_argument("path", type=Path)

    linkedin = sub.add_parser("linkedin", help="Import a LinkedIn Connections.csv")
    linkedin.add_argument("path", type=Path)

    google = sub.add_parser("google", help="Sync Google contacts and one page of Gmail")
    google.add_argument("--token", type=Path, default=None, help="Authorized-user token JSON")

    runs = sub.add_parser("runs", help="Show sync run history")
    runs.add_argument("--platform", choices=[p.value for p in Platform], default=None)
    return parser


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
    args = build_parser().parse_args(argv)

    graph = GraphContainer() if args.ephemeral else GraphContainer.from_settings()
    graph.start()
    try:
        if args.command == "runs":
            return _print_runs(graph, Platform(args.platform) if args.platform else None)

        try:
            if args.command == "whatsapp":
                stats = graph.whatsapp.import_archive(args.path.read_bytes(), args.path.name)
            elif args.command == "linkedin":
                stats = graph.linkedin.import_csv(args.path.read_text(encoding="utf-8", errors="replace"))
            else:
                stats = graph.google.sync(token_path=args.token)
        except Exception as e:
            logger.error(f"{args.command} sync failed: {e}")
            return 1

        print(f"\n{args.command} sync completed:")
        _print_stats(stats)
        return 0
    finally:
        graph.close()


if __name__ == "__main__":
    sys.exit(main() or 0)
