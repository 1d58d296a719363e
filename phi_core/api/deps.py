"""FastAPI dependencies for database access, caller identity and the gate."""

from functools import lru_cache
from typing import Generator
from uuid import UUID

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from phi_core.core.config import settings
from phi_core.db.session import SessionLocal
from phi_core.services.access_gate_service import AccessControlGate
from phi_core.services.audit_service import AuditTrailRecorder, SqlAlchemyAuditStore
from phi_core.services.membership_service import SqlAlchemyMembershipLookup
from phi_core.services.permission_service import PermissionResolver
from phi_core.services.phi_codec_service import PHIFieldCodec
from phi_core.services.resource_repository import SqlAlchemyResourceRepository


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache
def get_codec() -> PHIFieldCodec:
    """Codec built once per process from settings (runs the key self-test)."""
    return PHIFieldCodec.from_settings(settings)


def get_recorder() -> AuditTrailRecorder:
    return AuditTrailRecorder(SqlAlchemyAuditStore(SessionLocal))


def get_caller_id(request: Request) -> UUID:
    """
    Authenticated user id.

    The host application's authentication layer sets request.state.user_id;
    this module does not authenticate.
    """
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user_id if isinstance(user_id, UUID) else UUID(str(user_id))


def get_gate(
    db: Session = Depends(get_db),
    codec: PHIFieldCodec = Depends(get_codec),
    recorder: AuditTrailRecorder = Depends(get_recorder),
) -> AccessControlGate:
    return AccessControlGate(
        resolver=PermissionResolver(SqlAlchemyMembershipLookup(db)),
        codec=codec,
        repository=SqlAlchemyResourceRepository(db),
        recorder=recorder,
    )
