"""Error taxonomy for the scanning pipeline.

Run-fatal errors (auth, listing, persistence) carry the partial ``RunSummary``
computed before the failure so callers can still show what was produced.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from job_scanner.core.models import RunSummary


class ScannerError(Exception):
    def __init__(self, message: str, summary: Optional["RunSummary"] = None) -> None:
        super().__init__(message)
        self.summary = summary


class ConfigError(ScannerError):
    pass


class AuthError(ScannerError):
    pass


class FetchError(ScannerError):
    pass


class ItemDetailError(ScannerError):
    def __init__(self, message_id: str, reason: str) -> None:
        super().__init__(f"Failed to fetch message {message_id}: {reason}")
        self.message_id = message_id


class InferenceError(ScannerError):
    pass


class InferenceRateLimited(InferenceError):
    pass


class ExtractionIncomplete(ScannerError):
    pass


class PersistenceError(ScannerError):
    pass


class RunAlreadyActiveError(ScannerError):
    pass


class NoRecordsError(ScannerError):
    pass
