"""
Database Initialization Script
Prepares the SQL snapshot backend and seeds the default Office/Home fleet

Usage:
    python init_database.py            create tables, seed if empty
    python init_database.py --reseed   replace every printer with a fresh default fleet
    python init_database.py --reset    drop the snapshot table first (asks for confirmation)
"""

import sys
from sqlalchemy.exc import SQLAlchemyError

from config import Config
from database import SessionLocal, drop_tables, init_db
from errors import SimulatorError
from fleet import FleetRegistry
from storage import SQLStorage


def check_database_connection():
    print(f"🔍 Connecting to {Config.DATABASE_URL.split('@')[-1]} ...")
    storage = SQLStorage(SessionLocal)
    if storage.health_check():
        print("✅ Database reachable")
        return True
    print("❌ Database unreachable")
    print("ℹ️  Check DATABASE_URL in .env")
    return False


def create_tables():
    print("📊 Creating snapshot table...")
    try:
        init_db()
    except SQLAlchemyError as e:
        print(f"❌ Failed to create tables: {e}")
        return False
    print("✅ printer_snapshots ready")
    return True


def print_fleet(registry: FleetRegistry):
    for location in registry.list_locations():
        print(f"   {location.icon} {location.name} ({location.id})")
        for printer in registry.printers_in_location(location.id):
            marker = "★" if printer.id == location.default_printer_id else " "
            print(f"      {marker} {printer.name:<28} {printer.status.value:<10} paper {printer.paper_count}")


def seed_fleet(reseed: bool = False):
    """Seed the default fleet unless one exists; reseed replaces it"""
    print("\n🌱 Seeding printer fleet...")
    registry = FleetRegistry(SQLStorage(SessionLocal))
    try:
        if reseed:
            registry.reset_to_defaults()
            print("♻️  Existing fleet replaced")
        elif registry.load_fleet() is not None:
            print("⚠️  Fleet already seeded. Skipping (use --reseed to replace it)")
        else:
            registry.seed_default_fleet()
        print_fleet(registry)
        return True
    except SimulatorError as e:
        print(f"❌ Failed to seed fleet: {e}")
        return False


def reset_database():
    print("⚠️  WARNING: This drops every printer snapshot, location and user setting!")
    confirmation = input("Type 'DELETE ALL DATA' to confirm: ")
    if confirmation != "DELETE ALL DATA":
        print("❌ Confirmation failed. Aborting.")
        return False

    print("🗑️  Dropping snapshot table...")
    try:
        drop_tables()
    except SQLAlchemyError as e:
        print(f"❌ Failed to drop tables: {e}")
        return False
    print("✅ Snapshot table dropped")
    return True


def main():
    args = set(sys.argv[1:])
    print("=" * 60)
    print("  Virtual Printer Fleet - Database Initialization")
    print("=" * 60)
    print()

    if "--reset" in args and not reset_database():
        sys.exit(1)

    steps = [
        check_database_connection,
        create_tables,
        lambda: seed_fleet(reseed="--reseed" in args),
    ]
    for step in steps:
        if not step():
            sys.exit(1)

    print()
    print("=" * 60)
    print("  ✨ Database ready")
    print("=" * 60)
    print()
    print("Next steps:")
    print("  1. Start the API: STORAGE_TYPE=sql uvicorn backend:app --port 8000")
    print("  2. API docs: http://localhost:8000/docs")
    print()


if __name__ == "__main__":
    main()
