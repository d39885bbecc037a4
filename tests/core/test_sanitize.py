"""Sanitize: log redaction, private-key stripping and string cleanup."""

from autoregistry.core.sanitize import (
    REDACTED,
    describe_error,
    redact,
    redact_fields,
    sanitize_string,
    slugify,
    strip_private,
)


def test_redact_sensitive_fields_at_any_depth():
    payload = {
        "email": "a@b.io",
        "password": "hunter2",
        "profile": {"apiKey": "k-123", "bio": "hi"},
        "sessions": [{"refresh_token": "t", "ip": "1.2.3.4"}],
    }
    assert redact(payload) == {
        "email": "a@b.io",
        "password": REDACTED,
        "profile": {"apiKey": REDACTED, "bio": "hi"},
        "sessions": [{"refresh_token": REDACTED, "ip": "1.2.3.4"}],
    }
    assert payload["password"] == "hunter2"


def test_strip_private_keys_recursively():
    data = {"id": 1, "_internal": True, "items": [{"name": "x", "_score": 3}]}
    assert strip_private(data) == {"id": 1, "items": [{"name": "x"}]}


def test_redact_fields_matches_exact_names_only():
    rows = [{"id": 1, "password_hash": "$2b$abc", "hash_algo": "bcrypt", "meta": {"Password_Hash": "x"}}]
    assert redact_fields(rows, frozenset({"password_hash"})) == [
        {"id": 1, "password_hash": REDACTED, "hash_algo": "bcrypt", "meta": {"Password_Hash": REDACTED}},
    ]
    assert redact_fields(rows, frozenset()) is rows


def test_describe_error_trace_only_on_request():
    exc = ValueError("bad")
    assert "stack" not in describe_error(exc)
    assert describe_error(exc, include_trace=True)["name"] == "ValueError"


def test_sanitize_and_slugify():
    assert sanitize_string("  <b>Lamp</b> ") == "Lamp"
    assert sanitize_string(None) == ""
    assert slugify("Hello, World!") == "hello-world"
