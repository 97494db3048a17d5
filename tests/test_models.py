"""
Tests for records, references and error classification.

Tests cover:
- Record document shape and tolerant decoding
- Bookmark input validation
- Duplicate and expired-subscription detection
"""
from datetime import datetime

import pytest
from pydantic import ValidationError

from secretvault_session.exceptions import (
    ErrorCode,
    VaultError,
    VaultRequestError,
    is_duplicate_error,
    is_subscription_expired,
)
from secretvault_session.models import BookmarkInput, Record, RecordReference


class TestRecord:
    """Tests for Record <-> vault document."""

    def test_document_shape(self):
        record = Record(id="a-1", storage_id="s-1", title="T", url="https://t.test")
        document = record.to_document()
        assert document["_id"] == "s-1"
        assert document["id"] == "a-1"
        assert datetime.fromisoformat(document["created_at"]) == record.created_at

    def test_from_document_fills_defaults(self):
        record = Record.from_document({"_id": "s-1", "url": "https://t.test"})
        assert record.id == "s-1"
        assert record.storage_id == "s-1"
        assert record.title == "https://t.test"
        assert record.tags == []
        assert record.favorite is False

    def test_storage_id_argument_wins(self):
        record = Record.from_document(
            {"_id": "old", "id": "a-1", "title": "T", "url": "u"}, storage_id="s-9"
        )
        assert record.storage_id == "s-9"
        assert record.id == "a-1"

    def test_reference_matches_document_or_name(self):
        ref = RecordReference(collection="c", document="s-1", name="a-1", extra=True)
        assert ref.matches("s-1")
        assert ref.matches("a-1")
        assert not ref.matches("x")


class TestBookmarkInput:
    """Tests for BookmarkInput validation."""

    def test_requires_title_and_url(self):
        with pytest.raises(ValidationError):
            BookmarkInput(title="", url="https://t.test")
        with pytest.raises(ValidationError):
            BookmarkInput(title="T")

    def test_defaults(self):
        bookmark = BookmarkInput(title="T", url="u", image=None, unknown="ignored")
        assert bookmark.image == ""
        assert bookmark.archived is False


class TestErrorClassification:
    """Tests for duplicate and subscription detection."""

    @pytest.mark.parametrize("error", [
        VaultRequestError("conflict", status=409),
        VaultRequestError("bad", status=400, body={"errors": [{"code": "DUPLICATE_KEY"}]}),
        VaultRequestError("E11000 duplicate key error collection", status=500),
        ValueError("Builder already registered"),
    ])
    def test_duplicates(self, error):
        assert is_duplicate_error(error)

    @pytest.mark.parametrize("error", [
        VaultRequestError("node unavailable", status=503),
        RuntimeError("boom"),
    ])
    def test_not_duplicates(self, error):
        assert not is_duplicate_error(error)

    def test_subscription_expired(self):
        assert is_subscription_expired(401, {"error": "subscription expired"})
        assert is_subscription_expired(403, {"code": "SUBSCRIPTION_INACTIVE"})
        assert not is_subscription_expired(500, {"error": "subscription expired"})
        assert not is_subscription_expired(401, {"error": "invalid token"})

    def test_retryable(self):
        assert VaultError("x", ErrorCode.READ_FAILED).retryable
        assert not VaultError("x", ErrorCode.BOOKMARK_NOT_FOUND).retryable
        assert VaultError("x", "CREATE_FAILED").code is ErrorCode.CREATE_FAILED
