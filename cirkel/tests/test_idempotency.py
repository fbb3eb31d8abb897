"""
cirkel/tests/test_idempotency.py
Tests for idempotency marker management.
"""

import pytest

from cirkel.core.database import get_db_session
from cirkel.core.idempotency import (
    DuplicateKeyError,
    check_and_set,
    check_key,
    clear_all_keys,
    mark_key,
)


def test_check_and_set_first_time():
    """First time seeing key returns False (not duplicate)."""
    assert check_and_set("key-1", "test_op") is False


def test_check_and_set_duplicate():
    """Second time seeing key returns True (duplicate)."""
    check_and_set("key-2", "test_op")
    assert check_and_set("key-2", "test_op") is True


def test_check_and_set_different_keys():
    check_and_set("key-3", "test_op")
    assert check_and_set("key-4", "test_op") is False


def test_check_key_not_exists():
    assert check_key("key-nonexistent") is False


def test_mark_key_duplicate_raises():
    check_and_set("key-5", "test_op")

    with pytest.raises(DuplicateKeyError) as exc:
        with get_db_session() as session:
            mark_key("key-5", "test_op", session)
    assert exc.value.key == "key-5"


def test_marker_rolls_back_with_its_transaction():
    """A marker written in a failed transaction must not survive."""
    with pytest.raises(RuntimeError):
        with get_db_session() as session:
            mark_key("key-6", "webhook.xendit", session)
            assert check_key("key-6", session=session) is True
            raise RuntimeError("ledger write failed")

    assert check_key("key-6") is False


def test_clear_all_keys():
    check_and_set("key-7", "test_op")
    check_and_set("key-8", "test_op")

    clear_all_keys()

    assert check_key("key-7") is False
    assert check_key("key-8") is False
