"""
HTTP boundary tests.

Tests cover:
- Uniform error responses (404 for denied and missing, 403, 400, 500)
- Correlation id propagated from X-Request-ID into the audit trail
- PHI responses marked uncacheable
- Audit review endpoints gated on manage-settings
"""

import uuid

import pytest

from phi_core.db.models import AuditLogEntry, Patient


def _patient_body(org_id, therapist_id, **extra):
    body = {
        "organization_id": str(org_id),
        "primary_therapist_id": str(therapist_id),
        "name": "Jane Doe",
        "contact_phone": "(555) 123-4567",
        "dob": "1980-05-17",
    }
    body.update(extra)
    return body


async def _create(client, act_as, test_org, therapist):
    act_as(therapist.user_id)
    response = await client.post("/resources/patient", json=_patient_body(test_org.id, therapist.user_id))
    assert response.status_code == 201
    return response.json()


# =============================================================================
# Resources
# =============================================================================

@pytest.mark.asyncio
async def test_create_and_read_patient(client, act_as, test_org, therapist):
    created = await _create(client, act_as, test_org, therapist)
    assert created["name"] == "Jane Doe"

    response = await client.get(f"/resources/patient/{created['id']}")
    assert response.status_code == 200
    data = response.json()
    assert data["contact_phone"] == "(555) 123-4567"
    assert isinstance(data["age"], int)


@pytest.mark.asyncio
async def test_denied_read_matches_missing(client, act_as, test_org, therapist, other_therapist):
    created = await _create(client, act_as, test_org, therapist)

    act_as(other_therapist.user_id)
    denied = await client.get(f"/resources/patient/{created['id']}")
    missing = await client.get(f"/resources/patient/{uuid.uuid4()}")

    assert denied.status_code == missing.status_code == 404
    assert denied.json() == missing.json() == {"detail": "Not found"}


@pytest.mark.asyncio
async def test_create_denied_is_403(client, act_as, test_org, make_staff):
    restricted = make_staff(can_create_patients=False)
    act_as(restricted.user_id)

    response = await client.post("/resources/patient", json=_patient_body(test_org.id, restricted.user_id))

    assert response.status_code == 403
    assert response.json() == {"detail": "Insufficient permissions"}


@pytest.mark.asyncio
async def test_unknown_field_is_400(client, act_as, test_org, therapist):
    act_as(therapist.user_id)
    response = await client.post(
        "/resources/patient",
        json=_patient_body(test_org.id, therapist.user_id, shoe_size="10"),
    )

    assert response.status_code == 400
    assert "shoe_size" in response.json()["detail"]


@pytest.mark.asyncio
async def test_unknown_resource_type_rejected(client, act_as, therapist):
    act_as(therapist.user_id)
    response = await client.get(f"/resources/invoices/{uuid.uuid4()}")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unauthenticated_is_401(client):
    response = await client.get(f"/resources/patient/{uuid.uuid4()}")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_codec_error_is_generic_500(client, act_as, db, test_org, therapist):
    created = await _create(client, act_as, test_org, therapist)
    row = db.get(Patient, uuid.UUID(created["id"]))
    row.name_encrypted = "enc:tampered"
    db.commit()

    response = await client.get(f"/resources/patient/{created['id']}")

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal error"}


@pytest.mark.asyncio
async def test_update_delete_and_search(client, act_as, test_org, therapist):
    created = await _create(client, act_as, test_org, therapist)
    patient_url = f"/resources/patient/{created['id']}"

    response = await client.patch(patient_url, json={"contact_phone": "555-987-6543"})
    assert response.status_code == 200

    response = await client.get(
        "/resources/patient/search",
        params={"field": "contact_phone", "q": "+1 555 987 6543"},
    )
    assert response.status_code == 200
    assert response.json()["total"] == 1

    response = await client.delete(patient_url)
    assert response.status_code == 204

    response = await client.get(patient_url)
    assert response.status_code == 404


# =============================================================================
# Request context
# =============================================================================

@pytest.mark.asyncio
async def test_request_id_lands_in_audit_entry(client, act_as, db, test_org, therapist):
    created = await _create(client, act_as, test_org, therapist)

    response = await client.get(
        f"/resources/patient/{created['id']}",
        headers={"X-Request-ID": "trace-123", "User-Agent": "pytest-client"},
    )

    assert response.headers["X-Request-ID"] == "trace-123"
    assert response.headers["Cache-Control"] == "no-store, no-cache, must-revalidate, private"
    assert response.headers["Pragma"] == "no-cache"
    assert response.headers["Expires"] == "0"
    entry = (
        db.query(AuditLogEntry)
        .filter(AuditLogEntry.correlation_id == "trace-123")
        .one()
    )
    assert entry.request_method == "GET"
    assert entry.request_path == f"/resources/patient/{created['id']}"
    assert entry.user_agent == "pytest-client"
    assert entry.response_time_ms is not None


# =============================================================================
# Audit review
# =============================================================================

@pytest.mark.asyncio
async def test_owner_lists_audit_entries(client, act_as, test_org, owner, therapist):
    await _create(client, act_as, test_org, therapist)

    act_as(owner.user_id)
    response = await client.get(f"/organizations/{test_org.id}/audit")

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    item = data["items"][0]
    assert item["action"] == "CREATE"
    assert "Jane" not in str(item)

    response = await client.get(f"/organizations/{test_org.id}/audit/stats")
    assert response.status_code == 200
    assert response.json()["total"] >= 1


@pytest.mark.asyncio
async def test_therapist_cannot_review_audit(client, act_as, test_org, therapist):
    act_as(therapist.user_id)
    response = await client.get(f"/organizations/{test_org.id}/audit")

    assert response.status_code == 403
    assert response.json() == {"detail": "Insufficient permissions"}


@pytest.mark.asyncio
async def test_error_responses_are_uncacheable(client, act_as, therapist):
    act_as(therapist.user_id)
    response = await client.get(f"/resources/patient/{uuid.uuid4()}")

    assert response.status_code == 404
    assert response.headers["Cache-Control"] == "no-store, no-cache, must-revalidate, private"


@pytest.mark.asyncio
async def test_owner_verifies_audit_chain(client, act_as, test_org, owner, therapist):
    created = await _create(client, act_as, test_org, therapist)
    await client.get(f"/resources/patient/{created['id']}")

    act_as(owner.user_id)
    response = await client.get(f"/organizations/{test_org.id}/audit/verify")

    assert response.status_code == 200
    assert response.json() == {"valid": True}
