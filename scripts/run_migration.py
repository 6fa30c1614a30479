"""
Create the shipsync database schema.

Creates any missing tables from the SQLAlchemy table definitions. Connects
through DATABASE_URL when set, otherwise through the Cloud SQL Python
Connector with IAM authentication.
"""

import sys

from dotenv import load_dotenv
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

# Load environment variables
load_dotenv()

from shipsync import config  # noqa: E402
from shipsync.db import DatabaseConnection  # noqa: E402
from shipsync.db.tables import metadata  # noqa: E402


def grant_postgres_access(engine: Engine):
    """Grant postgres user access to all tables.

    When using IAM authentication, tables are owned by the service account.
    This grants the postgres user access so tables can be viewed in Cloud SQL Studio.
    """
    print("\n🔐 Granting postgres user access to tables...")

    try:
        with engine.begin() as conn:
            conn.execute(text("GRANT USAGE ON SCHEMA public TO postgres"))
            conn.execute(
                text(
                    "GRANT SELECT, INSERT, UPDATE, DELETE ON ALL TABLES IN SCHEMA public TO postgres"
                )
            )
            conn.execute(
                text(
                    "ALTER DEFAULT PRIVILEGES IN SCHEMA public "
                    "GRANT SELECT, INSERT, UPDATE, DELETE ON TABLES TO postgres"
                )
            )

        print("✅ Postgres user access granted")
    except Exception as e:
        print(f"⚠️  Failed to grant postgres access (non-fatal): {e}")


def main():
    """Main function."""
    print("🚀 shipsync Schema Tool")
    print("=" * 50)

    if config.DATABASE_URL:
        target = config.DATABASE_URL.split("@")[-1]
        print(f"\n⚠️  This will create missing tables in: {target}")
    elif config.INSTANCE_CONNECTION_NAME:
        print("\n⚠️  This will create missing tables in:")
        print(f"   Instance: {config.INSTANCE_CONNECTION_NAME}")
        print(f"   Database: {config.DB_NAME}")
        print(f"   User: {config.DB_USER}")
        print("   Auth: IAM (Cloud SQL Connector)")
    else:
        print("❌ Neither DATABASE_URL nor INSTANCE_CONNECTION_NAME is set")
        sys.exit(1)

    if "--yes" not in sys.argv[1:]:
        response = input("\nProceed? (yes/no): ").strip().lower()
        if response not in ["yes", "y"]:
            print("❌ Cancelled")
            sys.exit(0)

    db = DatabaseConnection.from_env()
    print("\n🔌 Connecting...")
    try:
        db.initialize()
        existing = set(inspect(db.engine).get_table_names())
        db.create_all()
    except Exception as e:
        print(f"❌ Schema creation failed: {e}")
        sys.exit(1)

    for table in metadata.sorted_tables:
        marker = "exists " if table.name in existing else "created"
        print(f"  - {marker} {table.name}")

    if db.engine.dialect.name == "postgresql" and not config.DATABASE_URL:
        grant_postgres_access(db.engine)

    db.close()

    print("\n" + "=" * 50)
    print("✅ Schema is up to date")


if __name__ == "__main__":
    main()
