"""
Shared fixtures: in-memory SQLite database, in-process ledger, services.

DATABASE_URL must be set before title_registry.database is imported, since
the module-level engine is created at import time.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from title_registry.database import init_db
from title_registry.models.db_models import ActorRole
from title_registry.models.domain import Actor, PropertyDraft
from title_registry.services.approvals import ApplicationService, ApprovalSettingsService
from title_registry.services.certification import CertificationService, VerificationService
from title_registry.services.disputes import DisputeService
from title_registry.services.ledger import InMemoryLedger, LedgerGateway


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def gateway(ledger):
    return LedgerGateway(ledger, poll_interval=0, timeout=0)


@pytest.fixture
def applications(db, gateway):
    return ApplicationService(db, gateway)


@pytest.fixture
def certification(db, gateway):
    return CertificationService(db, gateway)


@pytest.fixture
def verification(db, gateway):
    return VerificationService(db, gateway)


@pytest.fixture
def disputes(db):
    return DisputeService(db)


@pytest.fixture
def settings_service(db):
    return ApprovalSettingsService(db)


# =============================================================================
# ACTORS & DRAFTS
# =============================================================================

@pytest.fixture
def citizen():
    return Actor(ref="citizen-1", role=ActorRole.CITIZEN)


@pytest.fixture
def buyer():
    return Actor(ref="citizen-2", role=ActorRole.CITIZEN)


@pytest.fixture
def registrar_a():
    return Actor(ref="registrar-a", role=ActorRole.REGISTRAR, registrar_role="junior")


@pytest.fixture
def registrar_b():
    return Actor(ref="registrar-b", role=ActorRole.REGISTRAR, registrar_role="senior")


@pytest.fixture
def registrar_c():
    return Actor(ref="registrar-c", role=ActorRole.REGISTRAR, registrar_role="junior")


@pytest.fixture
def court():
    return Actor(ref="court-1", role=ActorRole.COURT)


@pytest.fixture
def admin():
    return Actor(ref="admin-1", role=ActorRole.ADMIN)


@pytest.fixture
def draft():
    return PropertyDraft(
        owner_name="Asha Verma",
        address_line1="12 Lake Road",
        district="Pune",
        state="Maharashtra",
        pincode="411001",
        area_sqft=1200.0,
        value=4500000.0,
    )


@pytest.fixture
def certified_property(applications, citizen, registrar_a, registrar_b, draft):
    """An issued title, certified through the default two-approval policy."""
    app = applications.submit(citizen, "issue", draft)
    applications.record_decision(app.app_id, registrar_a, "approve")
    app = applications.record_decision(app.app_id, registrar_b, "approve")
    assert app.property_id is not None
    return app.property_id
