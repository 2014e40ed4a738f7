"""Unit tests for log formatting, redaction and request context."""

import json
import logging

from edupulse.api.middleware.request_id import resolve_request_id
from edupulse.logging_config import (
    REDACTED,
    JsonFormatter,
    RequestContextFilter,
    is_sensitive_field,
    request_id_var,
    user_id_var,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.makeLogRecord({"name": "edupulse.test", "levelname": "INFO", "msg": "hello"})
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRedaction:
    def test_sensitive_names(self):
        for name in ("password", "new_password", "refresh_token", "token", "password_hash",
                     "reset_token_hash", "Authorization", "cookie", "jwt_secret", "admin_code"):
            assert is_sensitive_field(name), name

    def test_ordinary_names(self):
        for name in ("user_id", "ip_address", "sessions_revoked", "refresh_tokens_purged", "reason"):
            assert not is_sensitive_field(name), name

    def test_json_formatter_redacts_extras(self):
        record = _record(user_id="u-1", password_hash="$argon2id$...", refresh_token="eyJ...")

        out = json.loads(JsonFormatter().format(record))

        assert out["message"] == "hello"
        assert out["user_id"] == "u-1"
        assert out["password_hash"] == REDACTED
        assert out["refresh_token"] == REDACTED

    def test_unserialisable_extra_is_stringified(self):
        out = json.loads(JsonFormatter().format(_record(role=object)))

        assert out["role"] == str(object)


class TestRequestContextFilter:
    def test_stamps_request_and_user(self):
        request_token = request_id_var.set("req-1")
        user_token = user_id_var.set("user-1")
        try:
            record = _record()
            RequestContextFilter().filter(record)
        finally:
            user_id_var.reset(user_token)
            request_id_var.reset(request_token)

        assert record.request_id == "req-1"
        assert record.user_id == "user-1"

    def test_explicit_user_id_wins(self):
        user_token = user_id_var.set("user-1")
        try:
            record = _record(user_id="user-2")
            RequestContextFilter().filter(record)
        finally:
            user_id_var.reset(user_token)

        assert record.user_id == "user-2"

    def test_outside_a_request(self):
        record = _record()
        RequestContextFilter().filter(record)

        assert record.request_id == "-"
        assert not hasattr(record, "user_id")


class TestResolveRequestId:
    def test_accepts_well_formed_id(self):
        assert resolve_request_id("abc-123.def_4") == "abc-123.def_4"

    def test_replaces_malformed_id(self):
        generated = resolve_request_id("bad id\nwith newline")

        assert generated != "bad id\nwith newline"
        assert len(generated) == 36

    def test_generates_when_missing(self):
        assert resolve_request_id(None) != resolve_request_id(None)
