"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database with a savepoint per test (rollback after each test)
- Organization, membership and gate fixtures
- HTTPX AsyncClient against the FastAPI app
"""
import os
import uuid
from dataclasses import dataclass
from typing import AsyncGenerator, Callable, Generator

import pytest
from cryptography.fernet import Fernet
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

# Configure keys and database before any phi_core module reads settings
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["PHI_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["PHI_HASH_KEY"] = "test-hash-key-" + uuid.uuid4().hex
os.environ["SENTRY_DSN"] = ""

from phi_core.api.deps import get_caller_id, get_db, get_recorder
from phi_core.core.config import settings
from phi_core.db.base import Base
from phi_core.db.enums import Role
from phi_core.db.models import Organization, OrganizationMembership
from phi_core.db.session import engine
from phi_core.main import app
from phi_core.services.access_gate_service import AccessControlGate
from phi_core.services.audit_service import AuditTrailRecorder, SqlAlchemyAuditStore
from phi_core.services.membership_service import SqlAlchemyMembershipLookup, grant_membership
from phi_core.services.permission_service import PermissionResolver
from phi_core.services.phi_codec_service import PHIFieldCodec
from phi_core.services.resource_repository import SqlAlchemyResourceRepository


# =============================================================================
# Database Fixtures (Savepoint pattern)
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def create_tables() -> Generator[None, None, None]:
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def connection():
    """Connection holding the outer transaction that is rolled back per test."""
    conn = engine.connect()
    transaction = conn.begin()
    yield conn
    transaction.rollback()
    conn.close()


@pytest.fixture(scope="function")
def session_factory(connection) -> Callable[[], Session]:
    """
    Sessions joined to the test connection.

    Each session runs inside its own SAVEPOINT so that app code can call
    commit() without ending the test transaction.
    """
    def factory() -> Session:
        return Session(bind=connection, join_transaction_mode="create_savepoint")

    return factory


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Tenant Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def test_org(db: Session) -> Organization:
    """Create a test organization."""
    org = Organization(id=uuid.uuid4(), name="Test Practice")
    db.add(org)
    db.flush()
    return org


@pytest.fixture(scope="function")
def other_org(db: Session) -> Organization:
    org = Organization(id=uuid.uuid4(), name="Other Practice")
    db.add(org)
    db.flush()
    return org


@dataclass
class Staff:
    """A user and their membership in test_org."""
    user_id: uuid.UUID
    membership: OrganizationMembership


@pytest.fixture(scope="function")
def make_staff(db: Session, test_org: Organization) -> Callable[..., Staff]:
    """Factory: grant a fresh user a membership from a role preset."""
    def factory(role: Role = Role.THERAPIST, org: Organization | None = None, **overrides) -> Staff:
        user_id = uuid.uuid4()
        membership = grant_membership(
            db,
            (org or test_org).id,
            user_id,
            role,
            is_primary_owner=overrides.pop("is_primary_owner", False),
            **overrides,
        )
        return Staff(user_id=user_id, membership=membership)

    return factory


@pytest.fixture(scope="function")
def owner(make_staff) -> Staff:
    return make_staff(Role.OWNER, is_primary_owner=True)


@pytest.fixture(scope="function")
def therapist(make_staff) -> Staff:
    return make_staff(Role.THERAPIST)


@pytest.fixture(scope="function")
def other_therapist(make_staff) -> Staff:
    return make_staff(Role.THERAPIST)


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def codec() -> PHIFieldCodec:
    return PHIFieldCodec.from_settings(settings)


@pytest.fixture(scope="function")
def audit_store(session_factory) -> SqlAlchemyAuditStore:
    return SqlAlchemyAuditStore(session_factory)


@pytest.fixture(scope="function")
def recorder(audit_store) -> AuditTrailRecorder:
    return AuditTrailRecorder(audit_store)


@pytest.fixture(scope="function")
def gate(db: Session, codec: PHIFieldCodec, recorder: AuditTrailRecorder) -> AccessControlGate:
    return AccessControlGate(
        resolver=PermissionResolver(SqlAlchemyMembershipLookup(db)),
        codec=codec,
        repository=SqlAlchemyResourceRepository(db),
        recorder=recorder,
    )


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def act_as() -> Callable[[uuid.UUID], None]:
    """Set the authenticated caller for API requests."""
    def set_caller(user_id: uuid.UUID) -> None:
        app.dependency_overrides[get_caller_id] = lambda: user_id

    return set_caller


@pytest.fixture(scope="function")
async def client(db: Session, recorder: AuditTrailRecorder) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient wired to the test session and audit store."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_recorder] = lambda: recorder

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
