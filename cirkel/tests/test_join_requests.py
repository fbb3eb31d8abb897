"""Join request lifecycle and the notifications it publishes."""
import pytest

from cirkel.core.errors import ConflictError, NotFoundError, ValidationError
from cirkel.features.join_requests.service import (
    get_join_request,
    mark_join_request_read,
    resolve_join_request,
    submit_join_request,
)
from cirkel.features.notifications.sources import subscribe_source
from cirkel.models.join_request import JoinRequestStatus
from cirkel.models.notification import NotificationKind


def test_submit_creates_pending_request():
    request = submit_join_request("p1", "alice", "bob", "hello")

    assert request.status == JoinRequestStatus.PENDING
    assert request.message == "hello"
    assert get_join_request(request.id) == request


def test_owner_cannot_request_own_project():
    with pytest.raises(ValidationError):
        submit_join_request("p1", "alice", "alice")


def test_only_one_open_request_per_project():
    submit_join_request("p1", "alice", "bob")

    with pytest.raises(ConflictError) as exc:
        submit_join_request("p1", "alice", "bob")
    assert exc.value.code == "request_exists"


def test_mark_read_is_owner_only():
    request = submit_join_request("p1", "alice", "bob")

    with pytest.raises(NotFoundError):
        mark_join_request_read(request.id, "bob")
    assert mark_join_request_read(request.id, "alice").status == JoinRequestStatus.READ


def test_resolved_request_cannot_be_resolved_again():
    request = submit_join_request("p1", "alice", "bob")
    resolve_join_request(request.id, "alice", accepted=True)

    with pytest.raises(ConflictError) as exc:
        resolve_join_request(request.id, "alice", accepted=False)
    assert exc.value.code == "request_resolved"


def test_resolve_publishes_to_both_parties():
    owner_snapshots, requester_snapshots = [], []
    owner_sub = subscribe_source(NotificationKind.JOIN_REQUEST, "alice", owner_snapshots.append)
    requester_sub = subscribe_source(NotificationKind.REQUEST_UPDATE, "bob", requester_snapshots.append)

    request = submit_join_request("p1", "alice", "bob")
    resolve_join_request(request.id, "alice", accepted=True)

    assert [len(s) for s in owner_snapshots] == [0, 1, 0]
    assert [len(s) for s in requester_snapshots] == [0, 1]
    owner_sub.cancel()
    requester_sub.cancel()


def test_join_request_endpoints(client):
    created = client.post(
        "/v1/join-requests",
        json={"project_id": "p1", "project_owner_id": "alice", "message": "hi"},
        headers={"X-User-Id": "bob"},
    )
    assert created.status_code == 200
    request_id = created.json()["id"]
    assert created.json()["status"] == "pending"

    read = client.post(f"/v1/join-requests/{request_id}/read", headers={"X-User-Id": "alice"})
    assert read.json()["status"] == "read"

    resolved = client.post(
        f"/v1/join-requests/{request_id}/resolve",
        json={"accepted": False},
        headers={"X-User-Id": "alice"},
    )
    assert resolved.json()["status"] == "rejected"

    again = client.post(
        f"/v1/join-requests/{request_id}/resolve",
        json={"accepted": True},
        headers={"X-User-Id": "alice"},
    )
    assert again.status_code == 409
