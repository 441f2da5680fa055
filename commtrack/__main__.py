#!/usr/bin/env python3
"""
Communications-Tracking Data Layer

Command-line entry point.

Usage:
    python -m commtrack demo              # in-memory walkthrough of every operation
    python -m commtrack ensure-indexes    # create both index sets on MongoDB
    python -m commtrack health            # ping MongoDB

    # MongoDB target comes from the environment
    MONGO_URI=mongodb://db.internal:27017 MONGO_DB_NAME=comms python -m commtrack health
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import timedelta
from typing import Optional, Sequence

from commtrack.comms.access import CommsAccessLayer
from commtrack.comms.models import ScheduleRecord
from commtrack.core.config import CommsConfig, MongoConfig
from commtrack.core.types import utc_day, utc_now
from commtrack.observability import LogLevel, StructuredLogger, setup_logging
from commtrack.storage import MongoConnection, create_stores, ensure_indexes

logger = StructuredLogger("commtrack.cli")


async def demo_local_mode(config: CommsConfig) -> int:
    """
    Exercise every access-layer operation against the in-memory backends.
    """
    print("\n" + "=" * 60)
    print("Communications Tracking - Local Demo")
    print("=" * 60 + "\n")

    stores = create_stores(config=config.store)
    access = CommsAccessLayer.from_stores(stores, config.store)
    day = utc_day(utc_now())
    day_str = day.date().isoformat()

    for user_id in (1001, 1002, 1003):
        result = await access.append_events(user_id, "premium", day_str, [
            {
                "dispatch_time": (day + timedelta(hours=8, minutes=user_id % 60)).isoformat(),
                "template_id": "template_001",
                "tracking_id": "track_001",
                "content_score": 0.75,
            },
        ])
        if result.is_err():
            print(f"Append failed: {result.error}")
            return 1
    print("1. Appended one event for users 1001, 1002, 1003")

    events = (await access.get_day(1001, day_str)).unwrap()
    print(f"2. User 1001 has {len(events)} event(s) today")

    updated = (await access.update_event_status(
        1001, events[0].dispatch_time, "template_001", "track_001", "opened",
    )).unwrap()
    print(f"3. Status update matched: {updated}")

    cursor = None
    page_no = 0
    while True:
        page = (await access.campaign_distinct_users(
            day_str, 8, "template_001", "track_001", last_user_id=cursor, page_size=2,
        )).unwrap()
        page_no += 1
        print(f"4. Campaign page {page_no}: users={page.users} has_more={page.has_more}")
        if not page.has_more:
            break
        cursor = page.next_cursor

    replaced = (await access.replace_day(1003, day_str, [])).unwrap()
    print(f"5. Replace-to-empty for 1003 deleted bucket: {replaced.deleted}")

    for hour, score in ((8, 0.9), (12, 0.6), (20, 0.8)):
        planned = day + timedelta(hours=hour)
        await access.create_schedule_record(ScheduleRecord(
            user_id=42,
            tracking_id=f"track_{hour:03d}",
            template_id="template_001",
            planned_date_hour=planned,
            final_score=score,
            relevance_score=score / 2,
            dispatch_time=(planned, planned + timedelta(minutes=20), planned + timedelta(minutes=40)),
            content_end_time=planned + timedelta(days=1),
        ))
    schedule = (await access.get_user_schedule(
        42, day + timedelta(hours=6), day + timedelta(hours=14),
    )).unwrap()
    print("6. User 42 schedule 06:00-14:00: " + ", ".join(
        f"{r.planned_date_hour:%H:%M} ({r.final_score})" for r in schedule
    ))

    print(f"7. Templates: {(await access.list_template_ids()).unwrap_or([])}")

    print("\n✓ Demo complete")
    print("=" * 60 + "\n")
    return 0


async def run_ensure_indexes(mongo: MongoConfig) -> int:
    connection = MongoConnection(mongo)
    connected = await connection.connect()
    if connected.is_err():
        print(f"Connection error: {connected.error}")
        return 1
    try:
        result = await ensure_indexes(connection)
        if result.is_err():
            print(f"Index error: {result.error}")
            return 1
        for name in result.unwrap():
            print(f"✓ {name}")
        return 0
    finally:
        await connection.close()


async def run_health(mongo: MongoConfig) -> int:
    connection = MongoConnection(mongo)
    connected = await connection.connect()
    if connected.is_err():
        print(f"Connection error: {connected.error}")
        return 1
    try:
        health = await connection.health_check()
        if health.is_err():
            print(f"Unhealthy: {health.error}")
            return 1
        for key, value in health.unwrap().items():
            print(f"{key}: {value}")
        return 0
    finally:
        await connection.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="commtrack", description=__doc__.splitlines()[1])
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("demo", help="run every operation against in-memory stores")
    sub.add_parser("ensure-indexes", help="create index sets on MongoDB")
    sub.add_parser("health", help="ping MongoDB")
    return parser


async def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    config_result = CommsConfig.from_env()
    if config_result.is_err():
        print(f"Configuration error: {config_result.error}")
        return 2
    config = config_result.unwrap()
    validation = config.validate()
    if validation.is_err():
        print(f"Validation error: {validation.error}")
        return 2

    setup_logging(
        LogLevel.parse(config.observability.log_level),
        json_output=config.observability.log_json,
    )

    if args.command == "demo":
        return await demo_local_mode(config)

    mongo = config.mongo or MongoConfig.from_env()
    if args.command == "ensure-indexes":
        return await run_ensure_indexes(mongo)
    return await run_health(mongo)


def run() -> None:
    """Synchronous entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(130)


if __name__ == "__main__":
    run()
