"""Shared fakes and fixtures for the scanner tests."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from job_scanner.adapters.storage_json import JsonRecordStore, JsonSeenStore, JsonSettingsStore
from job_scanner.core.interfaces import AIProvider, EmailSource
from job_scanner.core.models import EmailItem, ExtractionResult, FetchWindow
from job_scanner.core.pipeline import Pipeline


BASE_TIME = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


def make_item(index: int, subject: str = "", body: str = "", sender: str = "jobs@acme.com") -> EmailItem:
    return EmailItem(
        message_id=f"m{index}",
        thread_id=f"t{index}",
        subject=subject or f"Thank you for applying to Acme ({index})",
        sender=sender,
        received_at=BASE_TIME + timedelta(hours=index),
        body=body or "We received your application for the Data Engineer role.",
        snippet="We received your application",
    )


class FakeSource(EmailSource):
    def __init__(self, items: Optional[List[EmailItem]] = None, error: Optional[Exception] = None) -> None:
        self.items = list(items or [])
        self.error = error
        self.windows: List[FetchWindow] = []
        self.revoked = False

    def authenticate(self) -> str:
        return "token"

    def fetch(self, window: FetchWindow) -> List[EmailItem]:
        self.windows.append(window)
        if self.error is not None:
            raise self.error
        return self.items[: window.max_count]

    def revoke(self) -> bool:
        self.revoked = True
        return True

    def user_email(self) -> Optional[str]:
        return "me@example.com"


class ScriptedAI(AIProvider):
    """Answers per message id; queued exceptions are raised before answering."""

    def __init__(
        self,
        matches: Optional[Dict[str, bool]] = None,
        extractions: Optional[Dict[str, ExtractionResult]] = None,
        classify_errors: Optional[Dict[str, List[Exception]]] = None,
        extract_errors: Optional[Dict[str, List[Exception]]] = None,
    ) -> None:
        self.matches = matches or {}
        self.extractions = extractions or {}
        self.classify_errors = classify_errors or {}
        self.extract_errors = extract_errors or {}
        self.classify_calls: List[str] = []
        self.extract_calls: List[str] = []

    def classify(self, item: EmailItem) -> bool:
        self.classify_calls.append(item.message_id)
        queued = self.classify_errors.get(item.message_id)
        if queued:
            raise queued.pop(0)
        return self.matches.get(item.message_id, True)

    def extract(self, item: EmailItem) -> ExtractionResult:
        self.extract_calls.append(item.message_id)
        queued = self.extract_errors.get(item.message_id)
        if queued:
            raise queued.pop(0)
        return self.extractions.get(item.message_id, ExtractionResult(company="Acme", position="Data Engineer"))


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def stores(tmp_path):
    data_dir = str(tmp_path / "data")
    return JsonRecordStore(data_dir), JsonSeenStore(data_dir), JsonSettingsStore(data_dir)


@pytest.fixture
def make_pipeline(stores, sleeper, tmp_path):
    records, seen, settings = stores

    def _factory(source, ai, **kwargs) -> Pipeline:
        kwargs.setdefault("records", records)
        kwargs.setdefault("seen", seen)
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("sleep", sleeper)
        kwargs.setdefault("export_dir", str(tmp_path / "exports"))
        return Pipeline(source=source, ai=ai, **kwargs)

    return _factory
