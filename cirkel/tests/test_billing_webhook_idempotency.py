"""
Xendit webhook processing.

Verifies authenticity checks, idempotent replays and that a failed ledger
write leaves no dedup marker behind.
"""
import pytest
from unittest.mock import patch
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

from cirkel.core.config import settings
from cirkel.core.database import get_db_session, idempotency_keys
from cirkel.core.metrics import webhooks_processed_total
from cirkel.features.entitlements.service import (
    get_entitlement,
    FREE_STORAGE_BYTES,
    PREMIUM_MAX_PROJECTS,
    PREMIUM_STORAGE_BYTES,
)


TOKEN = "test-callback-token"
HEADERS = {"x-callback-token": TOKEN}


def callback(external_id="premium-U1-1700000000", status="PAID", invoice_id="inv_001"):
    return {
        "id": invoice_id,
        "external_id": external_id,
        "status": status,
        "payment_method": "BANK_TRANSFER",
        "paid_amount": 75000,
    }


def marker_count():
    with get_db_session() as session:
        return session.execute(select(func.count()).select_from(idempotency_keys)).scalar_one()


@pytest.fixture
def premium_candidate(make_user):
    make_user("U1", "Uno")
    return "U1"


def test_paid_callback_activates_premium(client, premium_candidate):
    resp = client.post("/api/webhook", json=callback(), headers=HEADERS)

    assert resp.status_code == 200
    body = resp.json()
    assert body["received"] is True
    assert body["outcome"] == "applied"
    assert body["userId"] == "U1"
    assert body["expiresAt"]

    entitlement = get_entitlement("U1")
    assert entitlement.active is True
    assert entitlement.tier == "premium"
    assert entitlement.storage.total_bytes == PREMIUM_STORAGE_BYTES
    assert entitlement.projects.max_count == PREMIUM_MAX_PROJECTS
    assert entitlement.expires_at is not None
    assert webhooks_processed_total.value({"provider": "xendit", "outcome": "applied"}) == 1


def test_replayed_callback_is_a_duplicate(client, premium_candidate):
    first = client.post("/api/webhook", json=callback(), headers=HEADERS)
    expires_after_first = get_entitlement("U1").expires_at

    second = client.post("/api/webhook", json=callback(), headers=HEADERS)

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["outcome"] == "duplicate"
    # The replay must not re-extend the window
    assert get_entitlement("U1").expires_at == expires_after_first
    assert marker_count() == 1


def test_expired_after_paid_deactivates(client, premium_candidate):
    client.post("/api/webhook", json=callback(status="PAID"), headers=HEADERS)
    resp = client.post("/api/webhook", json=callback(status="EXPIRED"), headers=HEADERS)

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "applied"
    entitlement = get_entitlement("U1")
    assert entitlement.active is False
    assert entitlement.expires_at is None
    assert entitlement.storage.total_bytes == FREE_STORAGE_BYTES
    assert marker_count() == 2


def test_failed_status_is_acknowledged_and_ignored(client, premium_candidate):
    resp = client.post("/api/webhook", json=callback(status="FAILED"), headers=HEADERS)

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "ignored"
    assert get_entitlement("U1").active is False
    assert marker_count() == 0


def test_missing_token_is_rejected(client, premium_candidate):
    resp = client.post("/api/webhook", json=callback())

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"
    assert get_entitlement("U1").active is False
    assert marker_count() == 0


def test_wrong_token_is_rejected(client, premium_candidate):
    resp = client.post("/api/webhook", json=callback(), headers={"x-callback-token": "nope"})

    assert resp.status_code == 401
    assert get_entitlement("U1").active is False


def test_unconfigured_token_fails_closed(client, premium_candidate, monkeypatch):
    monkeypatch.setattr(settings, "XENDIT_CALLBACK_TOKEN", None)

    resp = client.post("/api/webhook", json=callback(), headers=HEADERS)

    assert resp.status_code == 401
    assert get_entitlement("U1").active is False


def test_alternate_token_header_is_accepted(client, premium_candidate):
    resp = client.post("/api/webhook", json=callback(), headers={"callback-token": TOKEN})

    assert resp.status_code == 200
    assert get_entitlement("U1").active is True


def test_malformed_reference_is_rejected(client, premium_candidate):
    resp = client.post("/api/webhook", json=callback(external_id="premium-U1"), headers=HEADERS)

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "malformed_payload"
    assert marker_count() == 0


def test_non_json_body_is_rejected(client, premium_candidate):
    resp = client.post(
        "/api/webhook",
        content=b"status=PAID",
        headers={**HEADERS, "content-type": "application/x-www-form-urlencoded"},
    )

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "malformed_payload"


def test_unknown_user_is_not_created(client):
    resp = client.post("/api/webhook", json=callback(external_id="premium-ghost-1700000000"), headers=HEADERS)

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"
    assert marker_count() == 0


def test_user_ids_with_dashes_resolve(client, make_user):
    make_user("user-with-dashes")

    resp = client.post(
        "/api/webhook",
        json=callback(external_id="premium-user-with-dashes-1700000000"),
        headers=HEADERS,
    )

    assert resp.status_code == 200
    assert resp.json()["userId"] == "user-with-dashes"
    assert get_entitlement("user-with-dashes").active is True


def test_ledger_failure_leaves_no_marker_so_retry_applies(client, premium_candidate):
    failure = OperationalError("UPDATE entitlements", {}, Exception("database is locked"))
    with patch("cirkel.features.billing.service.ledger.activate", side_effect=failure):
        resp = client.post("/api/webhook", json=callback(), headers=HEADERS)

    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "ledger_write_failed"
    assert marker_count() == 0
    assert get_entitlement("U1").active is False

    retry = client.post("/api/webhook", json=callback(), headers=HEADERS)
    assert retry.status_code == 200
    assert retry.json()["outcome"] == "applied"
    assert get_entitlement("U1").active is True


def test_concurrent_delivery_applies_once(client, premium_candidate):
    first = client.post("/api/webhook", json=callback(), headers=HEADERS)
    expires_after_first = get_entitlement("U1").expires_at

    # The second delivery read no marker before the first one committed
    with patch("cirkel.features.billing.service.check_key", return_value=False):
        second = client.post("/api/webhook", json=callback(), headers=HEADERS)

    assert first.json()["outcome"] == "applied"
    assert second.status_code == 200
    assert second.json()["outcome"] == "duplicate"
    assert get_entitlement("U1").expires_at == expires_after_first
    assert marker_count() == 1
    assert webhooks_processed_total.value({"provider": "xendit", "outcome": "applied"}) == 1
