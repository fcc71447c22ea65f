#!/usr/bin/env python3
"""
Approval Settings Seed Script
Creates or updates the approval policy row.

Usage:
    python -m scripts.seed_settings <required_approvals> <parallel|sequential> [role ...]

Example:
    python -m scripts.seed_settings 2 sequential junior_registrar senior_registrar
"""
import sys
import os

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from title_registry.database import SessionLocal, init_db
from title_registry.exceptions import RegistryError
from title_registry.models.domain import SYSTEM_ACTOR
from title_registry.services.approvals import ApprovalSettingsService


def seed_settings(required_approvals: int, approval_type: str, sequence: list) -> bool:
    """Write the approval policy, recording the change in the audit log."""
    # Ensure tables exist
    init_db()

    db = SessionLocal()
    try:
        settings = ApprovalSettingsService(db).update(
            SYSTEM_ACTOR,
            enabled=True,
            required_approvals=required_approvals,
            approval_type=approval_type,
            approval_sequence=sequence,
        )
        print("Approval settings saved:")
        print(f"  Required approvals: {settings.required_approvals}")
        print(f"  Type: {settings.approval_type.value}")
        print(f"  Sequence: {', '.join(settings.approval_sequence) or '(submission order)'}")
        return True

    except RegistryError as e:
        print(f"Error saving approval settings: {e.message}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    if len(sys.argv) < 3:
        print(__doc__)
        sys.exit(1)

    try:
        required = int(sys.argv[1])
    except ValueError:
        print("Error: required_approvals must be a number.")
        sys.exit(1)

    success = seed_settings(required, sys.argv[2], sys.argv[3:])
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
