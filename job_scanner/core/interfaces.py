from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable, List, Optional, Set

from job_scanner.core.models import (
    AppendResult,
    ApplicationRecord,
    EmailItem,
    ExtractionResult,
    FetchWindow,
    ScanSettings,
)


class EmailSource(ABC):
    @abstractmethod
    def authenticate(self) -> Any:
        raise NotImplementedError

    @abstractmethod
    def fetch(self, window: FetchWindow) -> List[EmailItem]:
        raise NotImplementedError

    @abstractmethod
    def revoke(self) -> bool:
        raise NotImplementedError

    def user_email(self) -> Optional[str]:
        return None


class AIProvider(ABC):
    @abstractmethod
    def classify(self, item: EmailItem) -> bool:
        raise NotImplementedError

    @abstractmethod
    def extract(self, item: EmailItem) -> ExtractionResult:
        raise NotImplementedError


class RecordStore(ABC):
    @abstractmethod
    def append(self, candidates: Iterable[ApplicationRecord]) -> AppendResult:
        raise NotImplementedError

    @abstractmethod
    def read_all(self) -> List[ApplicationRecord]:
        raise NotImplementedError

    @abstractmethod
    def export(self, path: Path) -> Path:
        raise NotImplementedError

    def existing_ids(self) -> Set[str]:
        return {record.message_id for record in self.read_all()}


class SeenStore(ABC):
    @abstractmethod
    def contains(self, message_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def mark_many(self, message_ids: Iterable[str]) -> int:
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def count(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def all_ids(self) -> Set[str]:
        raise NotImplementedError


class SettingsStore(ABC):
    @abstractmethod
    def load(self) -> ScanSettings:
        raise NotImplementedError

    @abstractmethod
    def save(self, settings: ScanSettings) -> None:
        raise NotImplementedError

    def update(self, **fields: Any) -> ScanSettings:
        settings = self.load()
        for key, value in fields.items():
            if not hasattr(settings, key):
                raise AttributeError(f"Unknown setting '{key}'")
            setattr(settings, key, value)
        self.save(settings)
        return settings

    def get_checkpoint(self) -> Optional[str]:
        return self.load().last_checkpoint

    def update_checkpoint(self, timestamp: str) -> None:
        self.update(last_checkpoint=timestamp)
