#!/usr/bin/env python
"""
Tracking Maintenance Script

Runs retention and position jobs outside the server, e.g. from cron.
Run from backend directory: python scripts/tracking_maintenance.py <command>

Commands:
    init-db            Create tables and default business settings
    sweep              End idle tracking sessions
    cleanup            Full retention pass (sessions, samples, rollups, devices)
    update-positions   Recompute and publish every known bus position
    stats              Print today's collection statistics
"""

import sys
import os
import json
import argparse
import logging

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def build_service():
    from bustrack.config import TrackingSettings
    from bustrack.database import SessionLocal, SettingsStore, init_db
    from bustrack.services import DatabaseScheduleProvider, TrackingService

    init_db()
    store = SettingsStore(SessionLocal)
    store.initialize_defaults()
    settings = TrackingSettings.from_config().with_overrides(store)
    schedule = DatabaseScheduleProvider(SessionLocal, utc_offset_minutes=settings.utc_offset_minutes)
    return TrackingService(settings=settings, session_factory=SessionLocal, schedule=schedule)


def main(argv=None):
    parser = argparse.ArgumentParser(description='Bus tracking maintenance')
    parser.add_argument('command', choices=['init-db', 'sweep', 'cleanup', 'update-positions', 'stats'])
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args(argv)

    from dotenv import load_dotenv
    load_dotenv()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    print("=" * 60)
    print(f"TRACKING MAINTENANCE: {args.command}")
    print("=" * 60)

    from bustrack.exceptions import TransientStorageError

    try:
        service = build_service()

        if args.command == 'init-db':
            print("[OK] Database and default settings ready")

        elif args.command == 'sweep':
            result = service.sweep_stale_sessions()
            print(f"[OK] Sessions ended: {result['sessionsEnded']}, deleted: {result['sessionsDeleted']}")

        elif args.command == 'cleanup':
            result = service.cleanup_old_data()
            for key, value in result.items():
                print(f"   {key}: {value}")
            print("[OK] Cleanup complete")

        elif args.command == 'update-positions':
            views = service.get_all_current_positions()
            for view in views:
                print(f"   {view.bus_id}: {view.status.value} (confidence {view.confidence_level:.2f})")
            print(f"[OK] Updated {len(views)} bus positions")

        elif args.command == 'stats':
            print(json.dumps(service.get_collection_statistics(), indent=2))

    except TransientStorageError as e:
        print(f"[ERROR] {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
