"""SQLAlchemy storage for protected resources."""

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, DateTime, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Session

from phi_core.core.exceptions import InvalidFieldError
from phi_core.core.phi_fields import get_schema
from phi_core.db.base import Base
from phi_core.db.enums import ResourceType
from phi_core.db.models import ClinicalSession, ClinicianPHI, Patient, TreatmentPlan


logger = logging.getLogger(__name__)

RESOURCE_MODELS: dict[ResourceType, type[Base]] = {
    ResourceType.PATIENT: Patient,
    ResourceType.CLINICIAN_PHI: ClinicianPHI,
    ResourceType.CLINICAL_SESSION: ClinicalSession,
    ResourceType.TREATMENT_PLAN: TreatmentPlan,
}


def get_model(resource_type: ResourceType | str) -> type[Base]:
    return RESOURCE_MODELS[ResourceType(resource_type)]


def _coerce_uuid(value: Any) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def _coerce_column(column, value: Any) -> Any:
    """Convert one JSON-shaped value to the column's Python type. Raises ValueError."""
    column_type = column.type
    if isinstance(column_type, Uuid):
        return _coerce_uuid(value)
    if isinstance(column_type, Boolean):
        if not isinstance(value, bool):
            raise ValueError("not a boolean")
        return value
    if isinstance(column_type, Integer):
        if isinstance(value, bool):
            raise ValueError("not an integer")
        if isinstance(value, float) and not value.is_integer():
            raise ValueError("not an integer")
        return int(value)
    if isinstance(column_type, Numeric):
        if isinstance(value, bool):
            raise ValueError("not a number")
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            raise ValueError("not a number") from None
        if not number.is_finite():
            raise ValueError("not a number")
        return number
    if isinstance(column_type, DateTime):
        if isinstance(value, datetime):
            return value
        return datetime.fromisoformat(str(value))
    if isinstance(column_type, Date):
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        return date.fromisoformat(str(value))
    if isinstance(column_type, String):
        if not isinstance(value, str):
            raise ValueError("not a string")
        if column_type.length is not None and len(value) > column_type.length:
            raise ValueError("too long")
        return value
    if isinstance(column_type, JSON):
        # Id lists are the only JSON columns callers may set
        if not isinstance(value, (list, tuple)):
            raise ValueError("not a list")
        return [str(_coerce_uuid(item)) for item in value]
    return value


def coerce_values(resource_type: ResourceType | str, values: dict[str, Any]) -> dict[str, Any]:
    """
    Convert JSON-shaped values to the Python types the columns expect.

    Raises InvalidFieldError naming the first field whose value does not fit
    its column. Names that are not columns pass through unchanged.
    """
    columns = get_model(resource_type).__table__.columns
    coerced = {}
    for name, value in values.items():
        if name in columns:
            column = columns[name]
            if value is None:
                if not column.nullable:
                    raise InvalidFieldError(name, "field cannot be null")
            else:
                try:
                    value = _coerce_column(column, value)
                except (TypeError, ValueError):
                    problem = "invalid id" if isinstance(column.type, Uuid) else "invalid value"
                    raise InvalidFieldError(name, problem) from None
        coerced[name] = value
    return coerced


class SqlAlchemyResourceRepository:
    """
    ResourceRepository over the caller's session.

    Writes commit immediately and roll back on failure, leaving the session
    usable. Rows only ever carry ciphertext and search hashes in PHI columns;
    encoding happens in the gate.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def find_by_id(self, resource_type: ResourceType, resource_id: UUID) -> Any | None:
        model = get_model(resource_type)
        return self.db.get(model, resource_id)

    def create(self, resource_type: ResourceType, values: dict[str, Any]) -> Any:
        model = get_model(resource_type)
        row = model(**coerce_values(resource_type, values))
        self.db.add(row)
        self._commit(row)
        return row

    def update(self, resource_type: ResourceType, resource_id: UUID, values: dict[str, Any]) -> Any:
        row = self.find_by_id(resource_type, resource_id)
        if row is None:
            raise LookupError(f"{ResourceType(resource_type).value} {resource_id} does not exist")
        for column, value in coerce_values(resource_type, values).items():
            setattr(row, column, value)
        self._commit(row)
        return row

    def _commit(self, row: Any) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(row)

    def soft_delete(
        self,
        resource_type: ResourceType,
        resource_id: UUID,
        deleted_by: UUID,
        deleted_at: datetime,
    ) -> Any:
        row = self.update(
            resource_type,
            resource_id,
            {"deleted": True, "deleted_at": deleted_at, "deleted_by": deleted_by},
        )
        logger.info("Soft-deleted %s %s", ResourceType(resource_type).value, resource_id)
        return row

    def find_by_search_hash(
        self, resource_type: ResourceType, field_name: str, search_hash: str
    ) -> list[Any]:
        model = get_model(resource_type)
        phi_field = get_schema(resource_type).get_field(field_name)
        if phi_field is None or not phi_field.hashed:
            return []
        column = getattr(model, phi_field.search_hash_column)
        return (
            self.db.query(model)
            .filter(column == search_hash, model.deleted.is_(False))
            .order_by(model.created_at)
            .all()
        )
