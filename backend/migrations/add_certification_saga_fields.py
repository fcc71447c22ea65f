"""
Migration: Add certification saga columns to applications table.

certification_state, reserved_property_id, submission_id, reserved_at and
last_certification_error track an in-flight ledger write so a retry re-polls
the same submission instead of writing twice.
"""
from sqlalchemy import create_engine, text
import os

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/title_registry"
)

COLUMNS = {
    "certification_state": "certificationstate NOT NULL DEFAULT 'NONE'",
    "reserved_property_id": "VARCHAR(48)",
    "submission_id": "VARCHAR(80)",
    "reserved_at": "TIMESTAMP",
    "last_certification_error": "TEXT",
}

def run_migration():
    """Add certification saga columns to applications table."""
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        # Enum type as SQLAlchemy creates it for CertificationState
        conn.execute(text("""
            DO $$ BEGIN
                CREATE TYPE certificationstate AS ENUM ('NONE', 'RESERVED', 'SUBMITTED', 'CERTIFIED');
            EXCEPTION WHEN duplicate_object THEN NULL;
            END $$
        """))

        for column, ddl in COLUMNS.items():
            result = conn.execute(text("""
                SELECT column_name
                FROM information_schema.columns
                WHERE table_name = 'applications' AND column_name = :column
            """), {"column": column})

            if result.fetchone():
                print(f"{column} column already exists")
            else:
                conn.execute(text(f"ALTER TABLE applications ADD COLUMN {column} {ddl}"))
                print(f"Added {column} column to applications table")

        # Certified applications predate the saga columns
        conn.execute(text("""
            UPDATE applications
            SET certification_state = 'CERTIFIED'
            WHERE ledger_tx_hash IS NOT NULL AND certification_state = 'NONE'
        """))

        conn.commit()

if __name__ == "__main__":
    run_migration()
