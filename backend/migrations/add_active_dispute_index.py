"""
Migration: Add partial unique index on active disputes.

At most one OPEN or IN_COURT dispute per property. Databases created before
the index existed may hold duplicates; those are reported and the migration
stops without creating the index.
"""
from sqlalchemy import create_engine, text
import os

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/title_registry"
)

def run_migration():
    """Create uq_disputes_active_property."""
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        # Check if the index exists
        result = conn.execute(text("""
            SELECT indexname
            FROM pg_indexes
            WHERE tablename = 'disputes' AND indexname = 'uq_disputes_active_property'
        """))

        if result.fetchone():
            print("uq_disputes_active_property already exists")
            return

        duplicates = conn.execute(text("""
            SELECT property_id, COUNT(*)
            FROM disputes
            WHERE status IN ('OPEN', 'IN_COURT')
            GROUP BY property_id
            HAVING COUNT(*) > 1
        """)).fetchall()

        if duplicates:
            print("Properties with more than one active dispute (resolve before migrating):")
            for property_id, count in duplicates:
                print(f"  {property_id}: {count}")
            return

        conn.execute(text("""
            CREATE UNIQUE INDEX uq_disputes_active_property
            ON disputes (property_id)
            WHERE status IN ('OPEN', 'IN_COURT')
        """))
        print("Created uq_disputes_active_property on disputes")

        conn.commit()

if __name__ == "__main__":
    run_migration()
