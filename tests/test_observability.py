"""Tests for run-scoped logging."""

import logging

from observability.logging import CredentialFilter, RunIDFilter, get_run_id, run_context, scrub


def _record(msg, *args, **extra):
    record = logging.LogRecord("quoting", logging.INFO, __file__, 1, msg, args, None)
    record.__dict__.update(extra)
    return record


def test_run_context_binds_and_restores():
    assert get_run_id() is None
    with run_context("run-7"):
        record = _record("probe dispatched")
        RunIDFilter().filter(record)
        assert record.run_id == "run-7"
    record = _record("idle")
    RunIDFilter().filter(record)
    assert record.run_id == "none"


def test_scrub_masks_url_credentials_and_keys():
    assert scrub("postgresql+asyncpg://quote:s3cret@db:5432/quotes") == "postgresql+asyncpg://***@db:5432/quotes"
    assert scrub("POST https://g.example/v1:generate?key=abc123&x=1") == "POST https://g.example/v1:generate?key=***&x=1"
    assert scrub("no secrets here") == "no secrets here"


def test_credential_filter_formats_then_scrubs():
    record = _record("[Database] connecting to %s", "postgres://u:pw@h/db", gemini_api_key="g-key")
    CredentialFilter().filter(record)
    assert record.getMessage() == "[Database] connecting to postgres://***@h/db"
    assert record.gemini_api_key == "***"
