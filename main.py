#!/usr/bin/env python3
"""
Entry point for the Hospitality Reputation Tracker.

Usage:
  python main.py demo                   # offline run: mock resolver + fetchers, in-memory DB
  python main.py api                    # start the FastAPI server
  python main.py refresh [--platform P] # resolve + fetch every property
  python main.py heal                   # one auto-heal sweep over missing scores
  python main.py export scores.csv      # latest scores as CSV
  python main.py test                   # run pytest
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import subprocess
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from config.settings import settings

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger("main")


async def _demo() -> None:
    from sqlalchemy.orm import sessionmaker

    from db.database import init_db, make_engine
    from utils.export import scores_frame, summary_lines
    from utils.pipeline import build_service, seed_demo
    from utils.scoring import format_score

    engine = make_engine("sqlite:///:memory:")
    init_db(engine)
    service = build_service(
        mock=True,
        session_factory=sessionmaker(autocommit=False, autoflush=False, bind=engine),
        pacing=False,
    )

    logger.info("=== Hospitality Reputation Tracker — Demo Run ===")
    props = await seed_demo(service)
    summary = await service.orchestrator.refresh_all()
    healing = await service.auto_heal.run()
    groups, metrics = await service.aggregator.all_group_metrics()
    for group in groups:
        await service.aggregator.refresh_group_snapshot(group.id)

    df = scores_frame(props, await service.latest.get())

    print("\n" + "=" * 70)
    print("  HOSPITALITY REPUTATION REPORT")
    print("=" * 70)
    print(f"  Properties : {len(props)}")
    print(f"  Found      : {summary.found}")
    print(f"  Not listed : {summary.not_listed}")
    print(f"  Failed     : {summary.failed}")
    print(f"  Healed     : {healing.resolved}/{healing.total}")
    print("=" * 70)

    print("\n🏨 PROPERTIES (review-weighted, 0-10)")
    print("-" * 70)
    for line in summary_lines(df):
        print(line)

    print("\n📊 GROUPS")
    print("-" * 70)
    for group in groups:
        m = metrics[group.id]
        print(
            f"  {group.name:<40} {format_score(m.avg_score):>5}  "
            f"{m.total_properties} properties  {m.total_reviews} reviews"
        )
    print("=" * 70)
    await service.aclose()


async def _refresh(platforms) -> None:
    from db.database import init_db
    from utils.pipeline import build_service

    init_db()
    service = build_service()
    try:
        summary = await service.orchestrator.refresh_all(platforms=platforms)
        logger.info(
            f"Refresh done: {summary.found} found, {summary.not_listed} not listed, "
            f"{summary.failed} failed"
        )
    finally:
        await service.aclose()


async def _heal() -> None:
    from db.database import init_db
    from utils.pipeline import build_service

    init_db()
    service = build_service()
    try:
        progress = await service.auto_heal.run()
        logger.info(f"Auto-heal done: {progress.resolved} resolved, {progress.failed} failed")
    finally:
        await service.aclose()


async def _export(path: str) -> None:
    from db.database import init_db
    from utils.export import export_scores_csv
    from utils.pipeline import build_service

    init_db()
    service = build_service()
    try:
        rows = export_scores_csv(
            path, await service.repository.list_properties(), await service.latest.get()
        )
        logger.info(f"Wrote {rows} rows to {path}")
    finally:
        await service.aclose()


def start_api():
    """Start the FastAPI server."""
    import uvicorn
    uvicorn.run("api.main:app", host=settings.API_HOST, port=settings.API_PORT, reload=settings.DEBUG)


def run_tests():
    """Run pytest."""
    result = subprocess.run(
        ["pytest", "tests/", "-v", "--tb=short"],
        cwd=os.path.dirname(os.path.abspath(__file__)),
    )
    sys.exit(result.returncode)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Hospitality Reputation Tracker")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("demo", help="Offline demo with mock data")
    sub.add_parser("api", help="Start the FastAPI server")
    refresh = sub.add_parser("refresh", help="Resolve and fetch every property")
    refresh.add_argument("--platform", action="append", dest="platforms",
                         help="Limit to a platform (repeatable)")
    sub.add_parser("heal", help="Run one auto-heal sweep")
    export = sub.add_parser("export", help="Export latest scores as CSV")
    export.add_argument("path", nargs="?", default="scores.csv")
    sub.add_parser("test", help="Run the test suite")

    args = parser.parse_args(argv)
    command = args.command or "demo"

    if command == "demo":
        asyncio.run(_demo())
    elif command == "api":
        start_api()
    elif command == "refresh":
        asyncio.run(_refresh(args.platforms))
    elif command == "heal":
        asyncio.run(_heal())
    elif command == "export":
        asyncio.run(_export(args.path))
    elif command == "test":
        run_tests()


if __name__ == "__main__":
    main()
