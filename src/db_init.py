"""
Database initialization script for the meeting scheduler.

This script:
1. Initializes the database connection (retrying while it comes up)
2. Creates the meeting_requests and flow_checkpoints tables
"""
import sys
from pathlib import Path

# Add src directory to path for imports
src_path = Path(__file__).parent
sys.path.insert(0, str(src_path))

from dotenv import load_dotenv

from config import get_settings
from models.database import init_db_with_retry


def initialize_database(database_url: str) -> None:
    """
    Initialize the database and create all tables.

    Args:
        database_url: SQLAlchemy connection string
    """
    try:
        print("Initializing database...")

        engine = init_db_with_retry(database_url, create=True)
        print(f"✓ Connected to database: {engine.url.database}")
        print("✓ Tables created successfully:")
        print("  - meeting_requests")
        print("  - flow_checkpoints")

    except Exception as e:
        print(f"\n✗ Error during database initialization: {e}", file=sys.stderr)
        sys.exit(1)


def main():
    """
    Main entry point for database initialization script.
    """
    load_dotenv()
    settings = get_settings()

    print("=" * 50)
    print("Meeting Scheduler - Database Setup")
    print("=" * 50 + "\n")

    initialize_database(settings.database_url)


if __name__ == "__main__":
    main()
