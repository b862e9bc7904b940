from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


PROVIDER_NAMES = ("openai", "gemini", "claude", "deepseek", "rules")
KEYLESS_PROVIDERS = {"rules"}
TIME_PERIODS = (7, 14, 30, 60, 90)
MIN_EMAIL_LIMIT = 1
MAX_EMAIL_LIMIT = 500


@dataclass(frozen=True)
class EmailItem:
    message_id: str
    subject: str
    sender: str
    received_at: datetime
    body: str = ""
    snippet: str = ""
    thread_id: str = ""


@dataclass
class ExtractionResult:
    company: Optional[str]
    position: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return bool(self.company or self.position)


@dataclass(frozen=True)
class ApplicationRecord:
    message_id: str
    company: Optional[str]
    position: Optional[str]
    email_title: str
    email_date: datetime
    processed_timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message_id": self.message_id,
            "company": self.company,
            "position": self.position,
            "email_title": self.email_title,
            "email_date": self.email_date.isoformat(),
            "processed_timestamp": self.processed_timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ApplicationRecord":
        return cls(
            message_id=payload["message_id"],
            company=payload.get("company"),
            position=payload.get("position"),
            email_title=payload.get("email_title", ""),
            email_date=datetime.fromisoformat(payload["email_date"]),
            processed_timestamp=datetime.fromisoformat(payload["processed_timestamp"]),
        )


@dataclass
class AppendResult:
    inserted: int
    duplicates: int
    total: int


@dataclass
class FetchWindow:
    lookback_days: int
    max_count: int
    after: Optional[datetime] = None

    def floor(self, now: Optional[datetime] = None) -> datetime:
        if self.after is not None:
            if self.after.tzinfo is None:
                return self.after.replace(tzinfo=timezone.utc)
            return self.after
        now = now or datetime.now(timezone.utc)
        return now - timedelta(days=self.lookback_days)


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    NOT_MATCH = "skipped_not_match"
    EXTRACTION_FAILED = "extraction_failed"
    ERROR = "error"


@dataclass
class ItemOutcome:
    index: int
    message_id: str
    subject: str
    sender: str
    received_at: datetime
    status: OutcomeStatus
    is_confirmation: bool = False
    extracted: Optional[ExtractionResult] = None
    error: Optional[str] = None

    @property
    def label(self) -> str:
        if self.status == OutcomeStatus.SUCCESS:
            return "Successfully extracted"
        if self.status == OutcomeStatus.NOT_MATCH:
            return "Skipped - Not a job confirmation"
        if self.status == OutcomeStatus.EXTRACTION_FAILED:
            return "Extraction failed"
        return f"Error: {self.error}"


@dataclass
class RunConfig:
    limit: int
    lookback_days: int
    since_checkpoint: bool = False


@dataclass
class RunSummary:
    scanned: int = 0
    matched: int = 0
    new_records: int = 0
    duplicates_skipped: int = 0
    errors: int = 0
    fetched: int = 0
    already_scanned: int = 0
    record_duplicates: int = 0
    stopped: bool = False
    outcomes: List[ItemOutcome] = field(default_factory=list)
    records: List[ApplicationRecord] = field(default_factory=list)
    message: Optional[str] = None


class RunStage(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    FILTERING = "filtering"
    ITERATING = "iterating"
    RECONCILING = "reconciling"
    DONE = "done"


@dataclass
class ProgressEvent:
    stage: RunStage
    message: str
    current: int = 0
    total: int = 0
    outcome: Optional[ItemOutcome] = None
    summary: Optional[RunSummary] = None


@dataclass
class ScanStats:
    total_seen: int
    total_records: int = 0
    last_checkpoint: Optional[str] = None


def _default_api_keys() -> Dict[str, str]:
    return {name: "" for name in PROVIDER_NAMES if name not in KEYLESS_PROVIDERS}


@dataclass
class ScanSettings:
    active_provider: str = "openai"
    api_keys: Dict[str, str] = field(default_factory=_default_api_keys)
    time_period: int = 14
    email_limit: int = 50
    gmail_authenticated: bool = False
    user_email: Optional[str] = None
    last_checkpoint: Optional[str] = None

    def api_key_for(self, provider: Optional[str] = None) -> str:
        name = provider or self.active_provider
        return (self.api_keys.get(name) or "").strip()

    def validate(self) -> List[str]:
        errors: List[str] = []
        provider = self.active_provider
        if provider not in PROVIDER_NAMES:
            errors.append(f"Unknown provider '{provider}'")
        elif provider not in KEYLESS_PROVIDERS and not self.api_key_for(provider):
            errors.append(f"No API key configured for {provider.upper()}")
        if not MIN_EMAIL_LIMIT <= self.email_limit <= MAX_EMAIL_LIMIT:
            errors.append(f"Email limit must be between {MIN_EMAIL_LIMIT} and {MAX_EMAIL_LIMIT}")
        if self.time_period not in TIME_PERIODS:
            errors.append("Invalid time period selected")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_provider": self.active_provider,
            "api_keys": dict(self.api_keys),
            "time_period": self.time_period,
            "email_limit": self.email_limit,
            "gmail_authenticated": self.gmail_authenticated,
            "user_email": self.user_email,
            "last_checkpoint": self.last_checkpoint,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ScanSettings":
        defaults = cls()
        api_keys = dict(defaults.api_keys)
        api_keys.update(payload.get("api_keys") or {})
        return cls(
            active_provider=payload.get("active_provider", defaults.active_provider),
            api_keys=api_keys,
            time_period=int(payload.get("time_period", defaults.time_period)),
            email_limit=int(payload.get("email_limit", defaults.email_limit)),
            gmail_authenticated=bool(payload.get("gmail_authenticated", False)),
            user_email=payload.get("user_email"),
            last_checkpoint=payload.get("last_checkpoint"),
        )
