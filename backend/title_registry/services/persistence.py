"""
Commit helpers shared by the services.

Every mutating service operation ends in commit_or_conflict(): a stale
version_id_col write rolls back and surfaces as ConcurrentModificationError.
"""
import logging
import secrets

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..exceptions import ConcurrentModificationError

logger = logging.getLogger(__name__)


def new_id(prefix: str) -> str:
    """Natural id such as APP-1F3A9C0D2B7E."""
    return f"{prefix}-{secrets.token_hex(6).upper()}"


def flush_or_conflict(db: Session, subject_ref: str) -> None:
    try:
        db.flush()
    except StaleDataError as e:
        db.rollback()
        logger.info(f"Stale write on {subject_ref}, rolled back")
        raise ConcurrentModificationError(
            f"{subject_ref} was modified concurrently; re-read and retry",
            details={"subject_ref": subject_ref},
        ) from e


def commit_or_conflict(db: Session, subject_ref: str) -> None:
    try:
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.info(f"Stale write on {subject_ref}, rolled back")
        raise ConcurrentModificationError(
            f"{subject_ref} was modified concurrently; re-read and retry",
            details={"subject_ref": subject_ref},
        ) from e
