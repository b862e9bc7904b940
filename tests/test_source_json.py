import json
from datetime import datetime, timedelta, timezone

import pytest

from job_scanner.adapters.source_json import JsonFileSource
from job_scanner.core.errors import AuthError, FetchError
from job_scanner.core.models import FetchWindow


def _write_inbox(path, entries):
    path.write_text(json.dumps(entries), encoding="utf-8")
    return str(path)


def _entry(message_id, days_ago, subject="Thanks for applying"):
    when = datetime.now(timezone.utc) - timedelta(days=days_ago)
    return {"id": message_id, "date": when.isoformat(), "from": "jobs@acme.com", "subject": subject, "body": "Hi"}


def test_fetch_applies_window_and_cap(tmp_path):
    path = _write_inbox(
        tmp_path / "inbox.json",
        [_entry("a", 1), _entry("b", 40), _entry("c", 2), _entry("d", 3)],
    )
    source = JsonFileSource(path)
    items = source.fetch(FetchWindow(lookback_days=14, max_count=2))
    assert [item.message_id for item in items] == ["a", "c"]


def test_malformed_entries_are_dropped(tmp_path):
    path = _write_inbox(
        tmp_path / "inbox.json",
        [_entry("a", 1), {"subject": "no id"}, {"id": "x", "date": "yesterday"}, "junk"],
    )
    items = JsonFileSource(path).fetch(FetchWindow(lookback_days=14, max_count=10))
    assert [item.message_id for item in items] == ["a"]


def test_after_floor_is_exclusive(tmp_path):
    floor = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    entries = [
        {"id": "same", "date": floor.isoformat()},
        {"id": "later", "date": (floor + timedelta(seconds=1)).isoformat()},
    ]
    path = _write_inbox(tmp_path / "inbox.json", entries)
    items = JsonFileSource(path).fetch(FetchWindow(lookback_days=7, max_count=10, after=floor))
    assert [item.message_id for item in items] == ["later"]


def test_authenticate_requires_file(tmp_path):
    with pytest.raises(AuthError):
        JsonFileSource(str(tmp_path / "missing.json")).authenticate()


def test_non_list_file_is_fetch_error(tmp_path):
    path = tmp_path / "inbox.json"
    path.write_text('{"id": "a"}', encoding="utf-8")
    with pytest.raises(FetchError):
        JsonFileSource(str(path)).fetch(FetchWindow(lookback_days=7, max_count=10))
