"""Unread counters behind the message digest."""
import pytest

from cirkel.core.errors import ValidationError
from cirkel.features.conversations.service import (
    get_unread_count,
    mark_conversation_read,
    record_message,
)
from cirkel.features.notifications.sources import subscribe_source
from cirkel.models.notification import NotificationKind


def test_message_counts_for_everyone_but_the_sender():
    recipients = record_message("c1", "alice", ["alice", "bob", "carol"])

    assert sorted(recipients) == ["bob", "carol"]
    assert get_unread_count("alice") == 0
    assert get_unread_count("bob") == 1
    assert get_unread_count("carol", "c1") == 1


def test_counters_accumulate_per_conversation():
    record_message("c1", "alice", ["alice", "bob"])
    record_message("c1", "alice", ["alice", "bob"])
    record_message("c2", "carol", ["carol", "bob"])

    assert get_unread_count("bob", "c1") == 2
    assert get_unread_count("bob") == 3


def test_sending_does_not_clear_own_unread():
    record_message("c1", "alice", ["alice", "bob"])
    record_message("c1", "bob", ["alice", "bob"])

    assert get_unread_count("alice") == 1
    assert get_unread_count("bob") == 1


def test_message_without_recipients_is_rejected():
    with pytest.raises(ValidationError):
        record_message("c1", "alice", ["alice"])


def test_mark_conversation_read_publishes_digest():
    record_message("c1", "alice", ["alice", "bob"])
    snapshots = []
    subscription = subscribe_source(NotificationKind.UNREAD_DIGEST, "bob", snapshots.append)

    mark_conversation_read("c1", "bob")
    mark_conversation_read("c1", "bob")

    assert get_unread_count("bob") == 0
    # initial snapshot plus one change; the no-op second call publishes nothing
    assert [len(s) for s in snapshots] == [1, 0]
    subscription.cancel()


def test_message_endpoint(client):
    resp = client.post(
        "/v1/conversations/c9/messages",
        json={"participant_ids": ["alice", "bob"]},
        headers={"X-User-Id": "alice"},
    )

    assert resp.status_code == 200
    assert resp.json() == {"conversationId": "c9", "recipients": ["bob"]}
    assert get_unread_count("bob", "c9") == 1
