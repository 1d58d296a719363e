"""Audit trail service - PHI access event recording and review.

Security guidelines:
- NEVER put PHI values in an entry: field names, ids and counts only
- Entries are append-only; the store refuses updates and early deletes
- A failed write never fails the business operation; it is logged to the
  fallback logger, retried, then escalated
"""

import hashlib
import json
import logging
import time
import uuid
from collections.abc import Callable, Iterable
from datetime import date, datetime, timedelta, timezone
from typing import Any
from uuid import UUID

import sentry_sdk
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from phi_core.core.config import settings
from phi_core.core.exceptions import AuditWriteFailure
from phi_core.core.interfaces import AuditStore
from phi_core.core.permissions import ADMIN_CAPABILITIES, Capability
from phi_core.core.request_audit_context import get_request_audit_context
from phi_core.core.structured_logging import build_log_context
from phi_core.db.enums import AuditAction, SecurityLevel
from phi_core.db.models import AuditLogEntry


logger = logging.getLogger(__name__)

# Receives a redacted copy of every entry that could not be persisted on the
# first attempt. Route this logger to a durable sink in production.
fallback_logger = logging.getLogger("phi_core.audit.fallback")


# =============================================================================
# Classification
# =============================================================================

ACTION_BASE_RISK: dict[AuditAction, int] = {
    AuditAction.PHI_ACCESS: 50,
    AuditAction.CREATE: 30,
    AuditAction.READ: 20,
    AuditAction.UPDATE: 40,
    AuditAction.DELETE: 60,
    AuditAction.LOGIN: 10,
}
RISK_PER_FIELD = 5
FAILURE_RISK = 30

HIGH_RISK_THRESHOLD = 50
MAX_RISK_SCORE = 100


def calculate_risk_score(action: AuditAction | str, fields_count: int, success: bool) -> int:
    """Score an event 0-100: base by action, +5 per PHI field, +30 if it failed."""
    score = ACTION_BASE_RISK.get(AuditAction(action), 0)
    score += fields_count * RISK_PER_FIELD
    if not success:
        score += FAILURE_RISK
    return min(score, MAX_RISK_SCORE)


def classify_security_level(
    phi_fields_count: int,
    capability: Capability | None = None,
) -> SecurityLevel:
    if capability is not None and capability in ADMIN_CAPABILITIES:
        return SecurityLevel.ADMIN
    if phi_fields_count > 0:
        return SecurityLevel.PHI_PROTECTED
    return SecurityLevel.STANDARD


def classify_query_type(query: str | None) -> str | None:
    """Classify query strings for PHI audit metadata. The query itself is never kept."""
    if not query:
        return None
    if "@" in query:
        return "email"
    digit_count = sum(1 for ch in query if ch.isdigit())
    return "phone" if digit_count >= 7 else "text"


def compute_retention_expiry(created_at: datetime, years: int | None = None) -> datetime:
    """created_at plus the retention period; Feb 29 lands on Feb 28 in common years."""
    years = settings.AUDIT_RETENTION_YEARS if years is None else years
    try:
        return created_at.replace(year=created_at.year + years)
    except ValueError:
        return created_at.replace(year=created_at.year + years, day=28)


# =============================================================================
# Hash chain
# =============================================================================

GENESIS_HASH = "0" * 64

# Every stored column except the hash itself
_HASHED_COLUMNS = (
    "id",
    "organization_id",
    "actor_user_id",
    "action",
    "resource_type",
    "resource_id",
    "fields_accessed",
    "phi_fields_count",
    "success",
    "security_level",
    "risk_score",
    "hipaa_compliant",
    "request_method",
    "request_path",
    "response_status",
    "response_time_ms",
    "correlation_id",
    "ip_address",
    "user_agent",
    "details",
)


def canonical_json(obj: Any) -> str:
    """Sorted keys, compact separators, str() for non-JSON types. Use for every hash."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _utc_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def compute_entry_hash(entry: AuditLogEntry) -> str:
    """SHA256 over prev_hash and the canonical JSON of all immutable fields."""
    material = {name: getattr(entry, name) for name in _HASHED_COLUMNS}
    material["created_at"] = _utc_iso(entry.created_at)
    material["retention_expiry"] = _utc_iso(entry.retention_expiry)
    data = f"{entry.prev_hash or GENESIS_HASH}|{canonical_json(material)}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _org_clause(org_id: UUID | None):
    if org_id is None:
        return AuditLogEntry.organization_id.is_(None)
    return AuditLogEntry.organization_id == org_id


def get_chain_tip(db: Session, org_id: UUID | None) -> str:
    """Hash of the organization's newest entry: the one no other entry points back to."""
    linked = select(AuditLogEntry.prev_hash).where(
        _org_clause(org_id), AuditLogEntry.prev_hash.isnot(None)
    )
    tip = db.execute(
        select(AuditLogEntry.entry_hash)
        .where(_org_clause(org_id))
        .where(AuditLogEntry.entry_hash.isnot(None))
        .where(AuditLogEntry.entry_hash.not_in(linked))
        .order_by(AuditLogEntry.created_at.desc())
        .limit(1)
    ).scalar()
    return tip or GENESIS_HASH


# =============================================================================
# Store
# =============================================================================

class SqlAlchemyAuditStore:
    """
    Durable audit store.

    Each append runs in its own session and transaction, so audit writes
    neither ride on nor roll back the caller's business transaction. The
    entry is linked to its organization's chain tip in that same transaction.
    """

    def __init__(self, session_factory: sessionmaker | Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def append(self, entry: AuditLogEntry) -> None:
        db = self._session_factory()
        try:
            if entry.id is None:
                entry.id = uuid.uuid4()
            entry.prev_hash = get_chain_tip(db, entry.organization_id)
            entry.entry_hash = compute_entry_hash(entry)
            db.add(entry)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


# =============================================================================
# Recorder
# =============================================================================

def _redacted_payload(entry: AuditLogEntry) -> dict[str, Any]:
    return {
        "organization_id": str(entry.organization_id) if entry.organization_id else None,
        "actor_user_id": str(entry.actor_user_id) if entry.actor_user_id else None,
        "action": entry.action,
        "resource_type": entry.resource_type,
        "resource_id": str(entry.resource_id) if entry.resource_id else None,
        "fields_accessed": list(entry.fields_accessed or []),
        "success": entry.success,
        "response_status": entry.response_status,
        "correlation_id": entry.correlation_id,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


class AuditTrailRecorder:
    """Completes and persists audit entries; never raises to the caller."""

    def __init__(
        self,
        store: AuditStore,
        *,
        retries: int | None = None,
        retention_years: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._retries = settings.AUDIT_WRITE_RETRIES if retries is None else retries
        self._retention_years = retention_years
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def build_entry(
        self,
        *,
        organization_id: UUID | None,
        actor_user_id: UUID | None,
        action: AuditAction,
        resource_type: str,
        resource_id: UUID | None = None,
        fields_accessed: Iterable[str] = (),
        success: bool = True,
        response_status: int | None = None,
        capability: Capability | None = None,
        internal_error: bool = False,
        started_at: float | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        """Assemble an entry, filling derived and request-context fields."""
        fields = list(dict.fromkeys(fields_accessed))
        created_at = self._clock()
        context = get_request_audit_context()

        if context is not None:
            started_at = context.started_at
        elapsed_ms = None
        if started_at is not None:
            elapsed_ms = max(int((time.perf_counter() - started_at) * 1000), 0)

        return AuditLogEntry(
            organization_id=organization_id,
            actor_user_id=actor_user_id,
            action=AuditAction(action).value,
            resource_type=resource_type,
            resource_id=resource_id,
            fields_accessed=fields,
            phi_fields_count=len(fields),
            success=success,
            security_level=classify_security_level(len(fields), capability).value,
            risk_score=calculate_risk_score(action, len(fields), success),
            hipaa_compliant=not internal_error,  # denials are compliant outcomes
            request_method=context.method if context else None,
            request_path=context.path if context else None,
            response_status=response_status,
            response_time_ms=elapsed_ms,
            correlation_id=context.correlation_id if context else str(uuid.uuid4()),
            ip_address=context.ip_address if context else None,
            user_agent=context.user_agent if context else None,
            details=details,
            created_at=created_at,
            retention_expiry=compute_retention_expiry(created_at, self._retention_years),
        )

    def record(self, entry: AuditLogEntry) -> bool:
        """
        Persist an entry.

        Returns True once stored. On failure the entry goes to the fallback
        logger and is retried; if every attempt fails the failure is logged
        at CRITICAL and sent to Sentry. Returns False in that case.
        """
        if entry.created_at is None:
            entry.created_at = self._clock()
        if entry.retention_expiry is None:
            entry.retention_expiry = compute_retention_expiry(entry.created_at, self._retention_years)
        # Fill column defaults before hashing; the chain hash must match the stored row
        if entry.fields_accessed is None:
            entry.fields_accessed = []
        if entry.phi_fields_count is None:
            entry.phi_fields_count = len(entry.fields_accessed)
        if entry.success is None:
            entry.success = True
        if entry.hipaa_compliant is None:
            entry.hipaa_compliant = True
        if entry.security_level is None:
            entry.security_level = classify_security_level(entry.phi_fields_count).value
        if entry.risk_score is None:
            entry.risk_score = calculate_risk_score(entry.action, entry.phi_fields_count, entry.success)

        payload = _redacted_payload(entry)
        last_exc: Exception | None = None
        for attempt in range(self._retries + 1):
            try:
                self._store.append(entry if attempt == 0 else _clone(entry))
                return True
            except Exception as exc:
                last_exc = exc
                fallback_logger.warning(
                    "Audit write failed (attempt %d): %s",
                    attempt + 1,
                    type(exc).__name__,
                    extra={"audit_entry": payload},
                )

        log_context = build_log_context(
            user_id=entry.actor_user_id,
            org_id=entry.organization_id,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            correlation_id=entry.correlation_id,
            action=entry.action,
        )
        logger.critical("Audit entry could not be persisted", extra=log_context)
        failure = AuditWriteFailure()
        failure.__cause__ = last_exc
        sentry_sdk.capture_exception(failure)
        return False

    def record_login(
        self,
        user_id: UUID | None,
        success: bool,
        *,
        organization_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Record a login attempt. Failed attempts may have no known actor."""
        entry = self.build_entry(
            organization_id=organization_id,
            actor_user_id=user_id,
            action=AuditAction.LOGIN,
            resource_type="session",
            success=success,
            response_status=200 if success else 401,
            details=details,
        )
        return self.record(entry)


def _clone(entry: AuditLogEntry) -> AuditLogEntry:
    """Fresh transient copy of an entry, for retry after a failed session."""
    columns = AuditLogEntry.__table__.columns.keys()
    return AuditLogEntry(**{name: getattr(entry, name) for name in columns})


# =============================================================================
# Review
# =============================================================================

def list_entries(
    db: Session,
    org_id: UUID,
    *,
    actor_user_id: UUID | None = None,
    action: AuditAction | None = None,
    resource_type: str | None = None,
    resource_id: UUID | None = None,
    start_date: datetime | date | None = None,
    end_date: datetime | date | None = None,
    min_risk: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[AuditLogEntry], int]:
    """
    List audit entries for an organization, newest first.

    Returns:
        (entries, total_count)
    """
    query = db.query(AuditLogEntry).filter(AuditLogEntry.organization_id == org_id)

    if actor_user_id:
        query = query.filter(AuditLogEntry.actor_user_id == actor_user_id)
    if action:
        query = query.filter(AuditLogEntry.action == AuditAction(action).value)
    if resource_type:
        query = query.filter(AuditLogEntry.resource_type == resource_type)
    if resource_id:
        query = query.filter(AuditLogEntry.resource_id == resource_id)
    if start_date:
        query = query.filter(AuditLogEntry.created_at >= start_date)
    if end_date:
        query = query.filter(AuditLogEntry.created_at <= end_date)
    if min_risk is not None:
        query = query.filter(AuditLogEntry.risk_score >= min_risk)

    total = query.count()
    entries = (
        query.order_by(AuditLogEntry.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return entries, total


def get_stats(db: Session, org_id: UUID, *, now: datetime | None = None) -> dict[str, int]:
    """Summary counts for the audit review dashboard."""
    now = now or datetime.now(timezone.utc)
    base = db.query(func.count(AuditLogEntry.id)).filter(AuditLogEntry.organization_id == org_id)

    return {
        "total": base.scalar() or 0,
        "last_24h": base.filter(AuditLogEntry.created_at >= now - timedelta(hours=24)).scalar() or 0,
        "failed": base.filter(AuditLogEntry.response_status >= 400).scalar() or 0,
        "high_risk": base.filter(AuditLogEntry.risk_score >= HIGH_RISK_THRESHOLD).scalar() or 0,
        "phi_access": base.filter(AuditLogEntry.phi_fields_count >= 1).scalar() or 0,
    }


def verify_chain(db: Session, org_id: UUID | None) -> bool:
    """
    Check an organization's audit chain for tampering.

    Every entry must still hash to its stored entry_hash, and the entries must
    form one unbroken chain. The chain may start from a hash that is no longer
    stored, since expired entries are purged from the old end.
    """
    entries = db.query(AuditLogEntry).filter(_org_clause(org_id)).all()
    if not entries:
        return True

    stored_hashes = set()
    seen_prev = set()
    for entry in entries:
        if entry.entry_hash is None or entry.entry_hash != compute_entry_hash(entry):
            logger.warning(
                "Audit entry hash mismatch",
                extra=build_log_context(org_id=org_id, resource_id=entry.id),
            )
            return False
        if entry.prev_hash in seen_prev:
            logger.warning("Audit chain fork", extra=build_log_context(org_id=org_id))
            return False
        seen_prev.add(entry.prev_hash)
        stored_hashes.add(entry.entry_hash)

    roots = [entry for entry in entries if entry.prev_hash not in stored_hashes]
    if len(roots) != 1:
        logger.warning("Audit chain has a gap", extra=build_log_context(org_id=org_id))
        return False
    return True
