"""
Tests for the repository functions in smssink.storage.

Tests cover:
- Message insert/list/clear round trip
- Credential bootstrap and replacement
- Application log writes, filters and retention cleanup
- Settings and debug mode
"""

import time
from datetime import timedelta

from smssink.config import settings
from smssink.models import LogEntry
from smssink.storage import (
    cleanup_old_logs,
    clear_logs,
    clear_messages,
    decode_media_urls,
    get_credential,
    get_logs,
    get_setting,
    insert_message,
    is_debug_mode,
    list_messages,
    record_log,
    set_credential,
    set_setting,
)
from smssink.utils import storage_timestamp, utc_now


def add_message(db, message_id, direction="outbound", media_urls=None):
    assert insert_message(db, message_id, "+1", "+2", "hi", media_urls, "p1", direction)


class TestMessageRepository:

    def test_insert_and_list(self, db_session):
        add_message(db_session, "m1", media_urls=["http://x/a.jpg"])

        messages = list_messages(db_session)

        assert len(messages) == 1
        assert messages[0].id == "m1"
        assert messages[0].direction == "outbound"
        assert messages[0].created_at.endswith("Z")
        assert decode_media_urls(messages[0].media_urls) == ["http://x/a.jpg"]

    def test_empty_media_stored_as_empty_list(self, db_session):
        add_message(db_session, "m1", media_urls=None)

        assert list_messages(db_session)[0].media_urls == "[]"

    def test_newest_first(self, db_session):
        add_message(db_session, "older")
        time.sleep(0.01)
        add_message(db_session, "newer", direction="inbound")

        assert [m.id for m in list_messages(db_session)] == ["newer", "older"]

    def test_duplicate_id_fails(self, db_session):
        add_message(db_session, "m1")

        assert insert_message(db_session, "m1", "+1", "+2", "again", [], "p1", "inbound") is False
        assert len(list_messages(db_session)) == 1

    def test_clear_yields_empty_list(self, db_session):
        add_message(db_session, "m1")
        add_message(db_session, "m2")

        assert clear_messages(db_session) is True
        assert list_messages(db_session) == []

    def test_decode_media_urls_tolerates_bad_values(self):
        assert decode_media_urls(None) == []
        assert decode_media_urls("not json") == []
        assert decode_media_urls('{"a": 1}') == []


class TestCredentialStore:

    def test_default_credential(self, db_session):
        assert get_credential(db_session).api_key == settings.DEFAULT_API_KEY

    def test_set_credential(self, db_session):
        before = get_credential(db_session).updated_at

        credential = set_credential(db_session, "new-key")

        assert credential.api_key == "new-key"
        assert get_credential(db_session).api_key == "new-key"
        assert get_credential(db_session).updated_at >= before


class TestApplicationLog:

    def test_record_and_filter(self, db_session):
        record_log("info", "message", "one", {"a": 1})
        record_log("error", "webhook", "two")
        record_log("warning", "webhook", "three", db=db_session)

        assert [e.message for e in get_logs(db_session)] == ["three", "two", "one"]
        assert [e.message for e in get_logs(db_session, category="webhook")] == ["three", "two"]
        assert [e.message for e in get_logs(db_session, level="error")] == ["two"]
        assert len(get_logs(db_session, limit=1)) == 1

    def test_details_serialized(self, db_session):
        record_log("info", "system", "with details", {"count": 2})

        assert get_logs(db_session)[0].details == '{"count": 2}'

    def test_clear(self, db_session):
        record_log("info", "system", "x")

        assert clear_logs(db_session) is True
        assert get_logs(db_session) == []

    def test_cleanup_old_logs(self, db_session):
        db_session.add(LogEntry(
            created_at=storage_timestamp(utc_now() - timedelta(days=8)),
            level="info",
            category="system",
            message="stale",
            details="",
        ))
        db_session.commit()
        record_log("info", "system", "fresh")

        assert cleanup_old_logs(db_session, 7) == 1
        assert [e.message for e in get_logs(db_session)] == ["fresh"]


class TestSettingsStore:

    def test_get_set(self, db_session):
        assert get_setting(db_session, "debug_mode") is None
        assert get_setting(db_session, "debug_mode", "false") == "false"

        assert set_setting(db_session, "debug_mode", "true") is True
        assert get_setting(db_session, "debug_mode") == "true"

    def test_debug_mode_from_setting(self, db_session):
        assert is_debug_mode(db_session) is False

        set_setting(db_session, "debug_mode", "true")

        assert is_debug_mode(db_session) is True

    def test_debug_mode_from_environment(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "SMSSINK_DEBUG", True)

        assert is_debug_mode(db_session) is True
