"""
Gmail source connector.

Handles the OAuth2 desktop flow, lists inbox messages inside the lookback
window, and fetches message details through batched API requests. A message
whose detail fetch fails is logged and dropped; the batch carries on.
"""

from __future__ import annotations

import base64
import logging
import re
import urllib.error
import urllib.parse
import urllib.request
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup
from google.auth.exceptions import GoogleAuthError, RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from job_scanner.core.errors import AuthError, FetchError, ItemDetailError
from job_scanner.core.interfaces import EmailSource
from job_scanner.core.models import EmailItem, FetchWindow


logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]
REVOKE_URL = "https://oauth2.googleapis.com/revoke"
LIST_PAGE_MAX = 500
MAX_BODY_CHARS = 10000


def decode_base64url(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")
    except (ValueError, UnicodeEncodeError):
        logger.warning("Failed to decode message body part")
        return ""


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return soup.get_text(" ")


def _find_part(payload: Dict[str, Any], mime_type: str) -> Optional[str]:
    if payload.get("mimeType") == mime_type:
        data = (payload.get("body") or {}).get("data")
        if data:
            return decode_base64url(data)
    for part in payload.get("parts") or []:
        found = _find_part(part, mime_type)
        if found:
            return found
    return None


def extract_body(payload: Dict[str, Any]) -> str:
    text = _find_part(payload, "text/plain")
    if text is None:
        html = _find_part(payload, "text/html")
        if html is None:
            data = (payload.get("body") or {}).get("data")
            html = decode_base64url(data) if data else ""
        text = html_to_text(html)
    return re.sub(r"\s+", " ", text).strip()[:MAX_BODY_CHARS]


def _received_at(message: Dict[str, Any], date_header: Optional[str]) -> datetime:
    internal = message.get("internalDate")
    if internal:
        try:
            return datetime.fromtimestamp(int(internal) / 1000, tz=timezone.utc)
        except (TypeError, ValueError):
            pass
    if date_header:
        try:
            parsed = parsedate_to_datetime(date_header)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
        except (TypeError, ValueError):
            pass
    logger.warning("No usable date on message %s, using current time", message.get("id"))
    return datetime.now(timezone.utc)


def parse_message(message: Dict[str, Any]) -> EmailItem:
    message_id = message.get("id")
    payload = message.get("payload")
    if not message_id or not isinstance(payload, dict):
        raise ItemDetailError(message_id or "<missing>", "malformed message payload")
    headers = {
        header.get("name", "").lower(): header.get("value", "")
        for header in payload.get("headers") or []
    }
    return EmailItem(
        message_id=message_id,
        thread_id=message.get("threadId", ""),
        subject=headers.get("subject", ""),
        sender=headers.get("from", ""),
        received_at=_received_at(message, headers.get("date")),
        body=extract_body(payload),
        snippet=message.get("snippet", ""),
    )


def gmail_query(window: FetchWindow) -> str:
    floor = window.floor().astimezone()
    return f"in:inbox after:{floor.strftime('%Y/%m/%d')}"


class GmailSource(EmailSource):
    def __init__(
        self,
        credentials_path: str = "credentials.json",
        token_path: str = "data/gmail_token.json",
        scopes: Optional[List[str]] = None,
        batch_size: int = 50,
    ) -> None:
        self.credentials_path = Path(credentials_path)
        self.token_path = Path(token_path)
        self.scopes = scopes or SCOPES
        self.batch_size = batch_size
        self._credentials: Optional[Credentials] = None

    def authenticate(self, force_reauth: bool = False) -> Credentials:
        """Load, refresh, or interactively obtain credentials."""
        credentials = None if force_reauth else self._cached_credentials()
        if credentials is None or not credentials.valid:
            if not self.credentials_path.exists():
                raise AuthError(
                    f"OAuth client file not found: {self.credentials_path}. "
                    "Download desktop OAuth credentials from Google Cloud Console."
                )
            logger.info("Running OAuth2 flow")
            try:
                flow = InstalledAppFlow.from_client_secrets_file(str(self.credentials_path), self.scopes)
                credentials = flow.run_local_server(port=0, open_browser=True)
            except (GoogleAuthError, ValueError, OSError) as exc:
                raise AuthError(f"Gmail authentication failed: {exc}") from exc
            self._save_token(credentials)
        self._credentials = credentials
        logger.info("Authenticated with Gmail")
        return credentials

    def fetch(self, window: FetchWindow) -> List[EmailItem]:
        service = self._service()
        query = gmail_query(window)
        message_ids = self._list_message_ids(service, query, window.max_count)
        logger.info("Listed %d messages for query %r", len(message_ids), query)
        if not message_ids:
            return []
        items = self._fetch_details(service, message_ids)
        if window.after is not None:
            floor = window.floor()
            items = [item for item in items if item.received_at > floor]
        return items

    def revoke(self) -> bool:
        credentials = self._credentials or self._cached_credentials(refresh=False)
        revoked = False
        if credentials is not None and credentials.token:
            body = urllib.parse.urlencode({"token": credentials.token}).encode("utf-8")
            request = urllib.request.Request(REVOKE_URL, data=body, method="POST")
            request.add_header("Content-Type", "application/x-www-form-urlencoded")
            try:
                with urllib.request.urlopen(request, timeout=10) as response:
                    revoked = response.status == 200
            except urllib.error.URLError as exc:
                logger.warning("Token revoke request failed: %s", exc)
        self._credentials = None
        if self.token_path.exists():
            self.token_path.unlink()
            logger.info("Deleted token file %s", self.token_path)
        return revoked

    def user_email(self) -> Optional[str]:
        service = self._service()
        try:
            profile = service.users().getProfile(userId="me").execute()
        except HttpError as exc:
            raise FetchError(f"Failed to fetch Gmail profile: {exc}") from exc
        return profile.get("emailAddress")

    def _cached_credentials(self, refresh: bool = True) -> Optional[Credentials]:
        if not self.token_path.exists():
            return None
        try:
            credentials = Credentials.from_authorized_user_file(str(self.token_path), self.scopes)
        except (ValueError, OSError) as exc:
            logger.warning("Failed to load token: %s", exc)
            return None
        if refresh and credentials.expired and credentials.refresh_token:
            logger.info("Refreshing expired token")
            try:
                credentials.refresh(Request())
            except RefreshError as exc:
                logger.warning("Token refresh failed: %s", exc)
                return None
            self._save_token(credentials)
        return credentials

    def _save_token(self, credentials: Credentials) -> None:
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.token_path, "w", encoding="utf-8") as handle:
            handle.write(credentials.to_json())

    def _service(self) -> Any:
        credentials = self._credentials
        if credentials is None or not credentials.valid:
            credentials = self._cached_credentials()
        if credentials is None or not credentials.valid:
            raise AuthError("Gmail authentication required. Run `job-scanner auth` first.")
        self._credentials = credentials
        return build("gmail", "v1", credentials=credentials, cache_discovery=False)

    def _list_message_ids(self, service: Any, query: str, max_count: int) -> List[str]:
        message_ids: List[str] = []
        page_token = None
        while len(message_ids) < max_count:
            try:
                response = (
                    service.users()
                    .messages()
                    .list(
                        userId="me",
                        q=query,
                        maxResults=min(max_count - len(message_ids), LIST_PAGE_MAX),
                        pageToken=page_token,
                    )
                    .execute()
                )
            except HttpError as exc:
                if exc.resp.status in (401, 403):
                    raise AuthError(f"Gmail rejected the credentials: {exc}") from exc
                raise FetchError(f"Failed to list messages: {exc}") from exc
            except RefreshError as exc:
                raise AuthError(f"Gmail token refresh failed: {exc}") from exc
            message_ids.extend(ref["id"] for ref in response.get("messages", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        return message_ids[:max_count]

    def _fetch_details(self, service: Any, message_ids: List[str]) -> List[EmailItem]:
        fetched: Dict[str, EmailItem] = {}

        def _collect(request_id: str, response: Dict[str, Any], exception: Optional[Exception]) -> None:
            if exception is not None:
                logger.warning("%s", ItemDetailError(request_id, str(exception)))
                return
            try:
                fetched[request_id] = parse_message(response)
            except ItemDetailError as exc:
                logger.warning("%s", exc)

        for start in range(0, len(message_ids), self.batch_size):
            chunk = message_ids[start : start + self.batch_size]
            batch = service.new_batch_http_request(callback=_collect)
            for message_id in chunk:
                batch.add(
                    service.users().messages().get(userId="me", id=message_id, format="full"),
                    request_id=message_id,
                )
            try:
                batch.execute()
            except HttpError as exc:
                logger.warning("Detail batch of %d messages failed: %s", len(chunk), exc)

        dropped = len(message_ids) - len(fetched)
        if dropped:
            logger.warning("Dropped %d of %d messages whose details could not be fetched", dropped, len(message_ids))
        return [fetched[message_id] for message_id in message_ids if message_id in fetched]
