"""Access-control gate - the single entry point for protected resource access.

Every operation follows the same shape:

    fetch -> authorize -> encode/decode -> persist -> audit

and writes exactly one audit entry from a ``finally`` block, after the
decision and any transform are final. Denials short-circuit before any codec
call. Denials on an existing resource look exactly like a missing resource.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from phi_core.core.exceptions import AuthorizationDenied, InvalidFieldError, ResourceNotFound
from phi_core.core.interfaces import ResourceRepository
from phi_core.core.permissions import Capability
from phi_core.core.phi_fields import ResourceSchema, get_schema
from phi_core.core.policies import get_policy
from phi_core.core.telemetry import get_gate_tracer
from phi_core.db.enums import AuditAction, ResourceType
from phi_core.services.age_service import DisplayAge, compute_age
from phi_core.services.audit_service import AuditTrailRecorder, classify_query_type
from phi_core.services.permission_service import Decision, PermissionResolver, ResourceScope
from phi_core.services.phi_codec_service import PHIFieldCodec, to_plaintext
from phi_core.services.resource_repository import coerce_values

logger = logging.getLogger(__name__)
tracer = get_gate_tracer()

ORGANIZATION_FIELD = "organization_id"


@dataclass
class _Outcome:
    """Mutable audit facts collected while an operation runs."""

    action: AuditAction
    resource_type: ResourceType
    capability: Capability
    caller_id: UUID
    resource_id: UUID | None = None
    organization_id: UUID | None = None
    fields: list[str] = field(default_factory=list)
    # Anything that escapes without setting a status is an internal error
    status: int = 500
    details: dict[str, Any] | None = None

    @property
    def success(self) -> bool:
        return self.status < 400


class AccessControlGate:
    """Composes authorization, PHI encoding and auditing for protected resources."""

    def __init__(
        self,
        resolver: PermissionResolver,
        codec: PHIFieldCodec,
        repository: ResourceRepository,
        recorder: AuditTrailRecorder,
        *,
        age_computer: Callable[..., DisplayAge] = compute_age,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._resolver = resolver
        self._codec = codec
        self._repository = repository
        self._recorder = recorder
        self._age = age_computer
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # =========================================================================
    # Authorization
    # =========================================================================

    def authorize(self, caller_id: UUID, scope: ResourceScope, capability: Capability) -> Decision:
        """Pure decision; writes no audit entry."""
        return self._resolver.authorize(caller_id, scope, capability)

    def require(self, caller_id: UUID, scope: ResourceScope, capability: Capability) -> Decision:
        """Organization-level check: raise AuthorizationDenied unless granted."""
        decision = self.authorize(caller_id, scope, capability)
        if not decision.granted:
            raise AuthorizationDenied(decision)
        return decision

    @staticmethod
    def scope_for(resource_type: ResourceType, row: Any) -> ResourceScope:
        """Ownership facts of a stored row."""
        schema = get_schema(resource_type)
        staff = getattr(row, schema.assigned_staff_field) if schema.assigned_staff_field else None
        return ResourceScope.build(
            organization_id=row.organization_id,
            primary_assignee_id=getattr(row, schema.assignee_field),
            assigned_staff_ids=staff,
        )

    # =========================================================================
    # Operations
    # =========================================================================

    def read_protected(self, resource_type: ResourceType, resource_id: UUID, caller_id: UUID) -> dict[str, Any]:
        """Return the decrypted view of a resource the caller may see."""
        resource_type = ResourceType(resource_type)
        schema = get_schema(resource_type)
        outcome = _Outcome(
            action=AuditAction.PHI_ACCESS,
            resource_type=resource_type,
            capability=get_policy(resource_type).read,
            caller_id=caller_id,
            resource_id=resource_id,
        )
        started = time.perf_counter()
        with tracer.start_as_current_span("phi_gate.read") as span:
            span.set_attribute("phi.resource_type", resource_type.value)
            try:
                row = self._load_authorized(outcome)
                encrypted = {f.name: getattr(row, f.encrypted_column) for f in schema.phi_fields}
                plaintext = self._codec.decrypt_fields(resource_type, encrypted)

                view = self._view(schema, row, plaintext)
                outcome.fields = [name for name, value in encrypted.items() if value]
                outcome.status = 200
                return view
            finally:
                span.set_attribute("phi.status", outcome.status)
                self._audit(outcome, started)

    def write_protected(
        self,
        resource_type: ResourceType,
        field_updates: Mapping[str, Any],
        caller_id: UUID,
        resource_id: UUID | None = None,
    ) -> dict[str, Any]:
        """
        Create (resource_id is None) or update a resource.

        On create, field_updates must carry organization_id and the assignee
        column. Returns the plain fields of the stored row plus the supplied
        PHI in plaintext; other stored PHI is not decrypted.
        """
        resource_type = ResourceType(resource_type)
        schema = get_schema(resource_type)
        policy = get_policy(resource_type)
        creating = resource_id is None
        outcome = _Outcome(
            action=AuditAction.CREATE if creating else AuditAction.UPDATE,
            resource_type=resource_type,
            capability=policy.create if creating else policy.write,
            caller_id=caller_id,
            resource_id=resource_id,
        )
        started = time.perf_counter()
        with tracer.start_as_current_span("phi_gate.write") as span:
            span.set_attribute("phi.resource_type", resource_type.value)
            span.set_attribute("phi.create", creating)
            try:
                phi_updates, plain_updates = self._split_updates(schema, field_updates, creating, outcome)

                if creating:
                    organization_id = plain_updates[ORGANIZATION_FIELD]
                    outcome.organization_id = organization_id
                    decision = self.authorize(caller_id, ResourceScope.build(organization_id), outcome.capability)
                    if not decision.granted:
                        outcome.status = 403
                        raise AuthorizationDenied(decision)
                else:
                    self._load_authorized(outcome)

                values = dict(plain_updates)
                values.update(self._encode(schema, phi_updates))

                if creating:
                    row = self._repository.create(resource_type, values)
                    outcome.resource_id = row.id
                else:
                    row = self._repository.update(resource_type, resource_id, values)

                supplied = {name: to_plaintext(value) for name, value in phi_updates.items()}
                view = self._view(schema, row, supplied)
                outcome.fields = list(phi_updates)
                outcome.status = 201 if creating else 200
                return view
            finally:
                span.set_attribute("phi.status", outcome.status)
                self._audit(outcome, started)

    def delete_protected(self, resource_type: ResourceType, resource_id: UUID, caller_id: UUID) -> None:
        """Soft-delete a resource. The row is kept for retention."""
        resource_type = ResourceType(resource_type)
        outcome = _Outcome(
            action=AuditAction.DELETE,
            resource_type=resource_type,
            capability=get_policy(resource_type).delete,
            caller_id=caller_id,
            resource_id=resource_id,
        )
        started = time.perf_counter()
        with tracer.start_as_current_span("phi_gate.delete") as span:
            span.set_attribute("phi.resource_type", resource_type.value)
            try:
                self._load_authorized(outcome)
                self._repository.soft_delete(resource_type, resource_id, caller_id, self._clock())
                outcome.status = 200
            finally:
                span.set_attribute("phi.status", outcome.status)
                self._audit(outcome, started)

    def search_by(
        self,
        resource_type: ResourceType,
        field_name: str,
        query: str | None,
        caller_id: UUID,
    ) -> list[dict[str, Any]]:
        """
        Exact-match search on a hashed field.

        Results the caller may not read are dropped silently. One audit entry
        covers the whole call; it records the query type, never the query.
        """
        resource_type = ResourceType(resource_type)
        schema = get_schema(resource_type)
        outcome = _Outcome(
            action=AuditAction.PHI_ACCESS,
            resource_type=resource_type,
            capability=get_policy(resource_type).read,
            caller_id=caller_id,
            details={"search_field": field_name, "q_type": classify_query_type(query)},
        )
        started = time.perf_counter()
        with tracer.start_as_current_span("phi_gate.search") as span:
            span.set_attribute("phi.resource_type", resource_type.value)
            try:
                try:
                    search_hash = self._codec.search_hash_for(resource_type, field_name, query)
                except InvalidFieldError:
                    outcome.status = 400
                    raise

                rows = self._repository.find_by_search_hash(resource_type, field_name, search_hash) if search_hash else []

                visible = []
                for row in rows:
                    decision = self.authorize(caller_id, self.scope_for(resource_type, row), outcome.capability)
                    if decision.granted:
                        visible.append(row)

                results = []
                accessed: set[str] = set()
                for row in visible:
                    encrypted = {f.name: getattr(row, f.encrypted_column) for f in schema.phi_fields}
                    plaintext = self._codec.decrypt_fields(resource_type, encrypted)
                    results.append(self._view(schema, row, plaintext))
                    accessed.update(name for name, value in encrypted.items() if value)

                if visible:
                    outcome.organization_id = visible[0].organization_id
                outcome.details.update(
                    result_count=len(results),
                    result_ids=[str(row.id) for row in visible],
                )
                outcome.fields = sorted(accessed)
                outcome.status = 200
                return results
            finally:
                span.set_attribute("phi.status", outcome.status)
                self._audit(outcome, started)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _load_authorized(self, outcome: _Outcome) -> Any:
        """Fetch a live row and authorize the outcome's capability against it."""
        row = self._repository.find_by_id(outcome.resource_type, outcome.resource_id)
        if row is None or row.deleted:
            outcome.status = 404
            raise ResourceNotFound()

        scope = self.scope_for(outcome.resource_type, row)
        outcome.organization_id = scope.organization_id
        decision = self.authorize(outcome.caller_id, scope, outcome.capability)
        if not decision.granted:
            outcome.status = 404
            raise ResourceNotFound()
        return row

    def _split_updates(
        self,
        schema: ResourceSchema,
        field_updates: Mapping[str, Any],
        creating: bool,
        outcome: _Outcome,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Validate field names and plain values; return (phi_updates, plain_updates)."""
        allowed_plain = set(schema.plain_fields) | {schema.assignee_field}
        if creating:
            allowed_plain.add(ORGANIZATION_FIELD)

        phi_updates: dict[str, Any] = {}
        plain_updates: dict[str, Any] = {}
        for name, value in field_updates.items():
            if schema.is_phi(name):
                phi_updates[name] = value
            elif name in allowed_plain:
                plain_updates[name] = value
            else:
                outcome.status = 400
                problem = "organization cannot change" if name == ORGANIZATION_FIELD else "unknown field"
                raise InvalidFieldError(name, problem)

        if creating:
            for name in (ORGANIZATION_FIELD, schema.assignee_field):
                if plain_updates.get(name) is None:
                    outcome.status = 400
                    raise InvalidFieldError(name, "required field missing")
            for phi_field in schema.phi_fields:
                if phi_field.required and to_plaintext(phi_updates.get(phi_field.name)) is None:
                    outcome.status = 400
                    raise InvalidFieldError(phi_field.name, "required field missing")
        else:
            for phi_field in schema.phi_fields:
                if (
                    phi_field.required
                    and phi_field.name in phi_updates
                    and to_plaintext(phi_updates[phi_field.name]) is None
                ):
                    outcome.status = 400
                    raise InvalidFieldError(phi_field.name, "required field cannot be cleared")
            if schema.assignee_field in plain_updates and plain_updates[schema.assignee_field] is None:
                outcome.status = 400
                raise InvalidFieldError(schema.assignee_field, "required field cannot be cleared")

        try:
            plain_updates = coerce_values(schema.resource_type, plain_updates)
        except InvalidFieldError:
            outcome.status = 400
            raise

        return phi_updates, plain_updates

    def _encode(self, schema: ResourceSchema, phi_updates: Mapping[str, Any]) -> dict[str, Any]:
        """Ciphertext columns plus refreshed search hashes for the supplied PHI."""
        if not phi_updates:
            return {}
        encrypted = self._codec.encrypt_fields(schema.resource_type, phi_updates)
        hashes = self._codec.search_hashes(schema.resource_type, phi_updates)

        values: dict[str, Any] = {}
        for name, ciphertext in encrypted.items():
            phi_field = schema.get_field(name)
            values[phi_field.encrypted_column] = ciphertext
            if phi_field.hashed:
                values[phi_field.search_hash_column] = hashes[name]
        return values

    def _view(self, schema: ResourceSchema, row: Any, plaintext: Mapping[str, str | None]) -> dict[str, Any]:
        """Caller-facing dict: ids, plain columns and plaintext PHI."""
        view: dict[str, Any] = {
            "id": row.id,
            ORGANIZATION_FIELD: row.organization_id,
            schema.assignee_field: getattr(row, schema.assignee_field),
        }
        for name in schema.plain_fields:
            view[name] = getattr(row, name)
        for phi_field in schema.phi_fields:
            if phi_field.name not in plaintext:
                continue
            view[phi_field.name] = plaintext[phi_field.name]
            if phi_field.derives_age:
                view["age"] = self._age(plaintext[phi_field.name], as_of=self._clock())
        return view

    def _audit(self, outcome: _Outcome, started: float) -> None:
        entry = self._recorder.build_entry(
            organization_id=outcome.organization_id,
            actor_user_id=outcome.caller_id,
            action=outcome.action,
            resource_type=outcome.resource_type.value,
            resource_id=outcome.resource_id,
            fields_accessed=outcome.fields if outcome.success else (),
            success=outcome.success,
            response_status=outcome.status,
            capability=outcome.capability,
            internal_error=outcome.status >= 500,
            started_at=started,
            details=outcome.details,
        )
        self._recorder.record(entry)
