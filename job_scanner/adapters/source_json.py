from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import List, Optional

from job_scanner.core.errors import AuthError, FetchError, ItemDetailError
from job_scanner.core.interfaces import EmailSource
from job_scanner.core.models import EmailItem, FetchWindow


logger = logging.getLogger(__name__)


def _parse_item(payload: dict) -> EmailItem:
    if not isinstance(payload, dict):
        raise ItemDetailError("<missing>", "entry is not an object")
    message_id = payload.get("id") or payload.get("message_id")
    if not message_id:
        raise ItemDetailError("<missing>", "entry has no id")
    try:
        received_at = datetime.fromisoformat(payload["date"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ItemDetailError(message_id, f"invalid date: {exc}") from exc
    if received_at.tzinfo is None:
        received_at = received_at.replace(tzinfo=timezone.utc)
    return EmailItem(
        message_id=message_id,
        thread_id=payload.get("thread_id", ""),
        subject=payload.get("subject", ""),
        sender=payload.get("from", ""),
        received_at=received_at,
        body=payload.get("body", ""),
        snippet=payload.get("snippet", ""),
    )


class JsonFileSource(EmailSource):
    """Reads messages from a JSON export instead of a live mailbox."""

    def __init__(self, path: str = "data/inbox.json") -> None:
        self.path = path

    def authenticate(self) -> str:
        if not os.path.exists(self.path):
            raise AuthError(f"Message file not found: {self.path}")
        return self.path

    def fetch(self, window: FetchWindow) -> List[EmailItem]:
        raw = self._read_messages()
        floor = window.floor()
        items: List[EmailItem] = []
        for payload in raw:
            try:
                item = _parse_item(payload)
            except ItemDetailError as exc:
                logger.warning("Dropping message: %s", exc)
                continue
            if window.after is not None:
                if item.received_at <= floor:
                    continue
            elif item.received_at < floor:
                continue
            items.append(item)
            if len(items) >= window.max_count:
                break
        return items

    def revoke(self) -> bool:
        return True

    def user_email(self) -> Optional[str]:
        return None

    def _read_messages(self) -> List[dict]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise FetchError(f"Failed to read {self.path}: {exc}") from exc
        if not isinstance(payload, list):
            raise FetchError(f"{self.path} must contain a JSON list of messages")
        return payload
