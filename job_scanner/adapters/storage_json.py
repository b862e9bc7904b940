from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable, List, Set

from job_scanner.config import resolve_env
from job_scanner.core.errors import PersistenceError
from job_scanner.core.export import EXPORT_FILENAME, write_csv
from job_scanner.core.interfaces import RecordStore, SeenStore, SettingsStore
from job_scanner.core.models import AppendResult, ApplicationRecord, ScanSettings


logger = logging.getLogger(__name__)


class _JsonFile:
    def __init__(self, base_dir: str, name: str) -> None:
        self.base_dir = base_dir
        self.name = name

    @property
    def path(self) -> str:
        return os.path.join(self.base_dir, f"{self.name}.json")

    def _read(self, default: Any) -> Any:
        if not os.path.exists(self.path):
            return default
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Failed to read {self.path}: {exc}") from exc

    def _write(self, payload: Any) -> None:
        try:
            os.makedirs(self.base_dir, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
        except OSError as exc:
            raise PersistenceError(f"Failed to write {self.path}: {exc}") from exc


class JsonRecordStore(_JsonFile, RecordStore):
    def __init__(self, base_dir: str = "data") -> None:
        super().__init__(base_dir, "records")

    def append(self, candidates: Iterable[ApplicationRecord]) -> AppendResult:
        items = self._read([])
        existing = {item.get("message_id") for item in items}
        inserted = 0
        duplicates = 0
        for record in candidates:
            if record.message_id in existing:
                duplicates += 1
                continue
            existing.add(record.message_id)
            items.append(record.to_dict())
            inserted += 1
        if inserted:
            self._write(items)
        logger.info("Saved %d new records (%d duplicates skipped)", inserted, duplicates)
        return AppendResult(inserted=inserted, duplicates=duplicates, total=len(items))

    def read_all(self) -> List[ApplicationRecord]:
        return [ApplicationRecord.from_dict(item) for item in self._read([])]

    def existing_ids(self) -> Set[str]:
        return {item.get("message_id") for item in self._read([])}

    def export(self, path: Path) -> Path:
        path = Path(path)
        if path.is_dir() or not path.suffix:
            path = path / EXPORT_FILENAME
        return write_csv(self.read_all(), path)


class JsonSeenStore(_JsonFile, SeenStore):
    """Ids of every message the pipeline has attempted, whatever the outcome."""

    def __init__(self, base_dir: str = "data") -> None:
        super().__init__(base_dir, "scanned_ids")

    def _ids(self) -> List[str]:
        return list(self._read([]))

    def contains(self, message_id: str) -> bool:
        return message_id in set(self._ids())

    def mark_many(self, message_ids: Iterable[str]) -> int:
        ids = self._ids()
        known = set(ids)
        added = 0
        for message_id in message_ids:
            if message_id in known:
                continue
            known.add(message_id)
            ids.append(message_id)
            added += 1
        if added:
            self._write(ids)
        logger.debug("Marked %d messages as scanned, %d total", added, len(ids))
        return added

    def remove_many(self, message_ids: Iterable[str]) -> int:
        drop = set(message_ids)
        ids = self._ids()
        kept = [message_id for message_id in ids if message_id not in drop]
        if len(kept) != len(ids):
            self._write(kept)
        return len(ids) - len(kept)

    def clear(self) -> None:
        if os.path.exists(self.path):
            try:
                os.remove(self.path)
            except OSError as exc:
                raise PersistenceError(f"Failed to clear {self.path}: {exc}") from exc
        logger.info("Cleared scan history")

    def count(self) -> int:
        return len(self._ids())

    def all_ids(self) -> Set[str]:
        return set(self._ids())


class JsonSettingsStore(_JsonFile, SettingsStore):
    def __init__(self, base_dir: str = "data") -> None:
        super().__init__(base_dir, "settings")

    def load(self) -> ScanSettings:
        settings = ScanSettings.from_dict(self._read({}))
        settings.api_keys = resolve_env(settings.api_keys)
        return settings

    def load_raw(self) -> ScanSettings:
        return ScanSettings.from_dict(self._read({}))

    def save(self, settings: ScanSettings) -> None:
        self._write(settings.to_dict())

    def update(self, **fields: Any) -> ScanSettings:
        # Read unresolved values so "$VAR" references survive the rewrite.
        settings = self.load_raw()
        for key, value in fields.items():
            if not hasattr(settings, key):
                raise AttributeError(f"Unknown setting '{key}'")
            setattr(settings, key, value)
        self.save(settings)
        settings.api_keys = resolve_env(settings.api_keys)
        return settings
