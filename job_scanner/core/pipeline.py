from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from job_scanner.core.errors import (
    AuthError,
    ConfigError,
    ExtractionIncomplete,
    FetchError,
    InferenceError,
    InferenceRateLimited,
    NoRecordsError,
    PersistenceError,
    RunAlreadyActiveError,
)
from job_scanner.core.interfaces import AIProvider, EmailSource, RecordStore, SeenStore, SettingsStore
from job_scanner.core.models import (
    ApplicationRecord,
    EmailItem,
    FetchWindow,
    ItemOutcome,
    OutcomeStatus,
    ProgressEvent,
    RunConfig,
    RunStage,
    RunSummary,
    ScanStats,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunState:
    """Per-pipeline run bookkeeping: current stage, reentrancy guard, cancel flag."""

    def __init__(self) -> None:
        self.stage = RunStage.IDLE
        self._guard = threading.Lock()
        self._cancel = threading.Event()

    @property
    def active(self) -> bool:
        return self._guard.locked()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def acquire(self) -> bool:
        if not self._guard.acquire(blocking=False):
            return False
        self._cancel.clear()
        return True

    def release(self) -> None:
        self.stage = RunStage.IDLE
        self._guard.release()

    def request_cancel(self) -> bool:
        if not self.active:
            return False
        self._cancel.set()
        return True


class Pipeline:
    def __init__(
        self,
        source: EmailSource,
        ai: Optional[AIProvider],
        records: RecordStore,
        seen: SeenStore,
        settings: SettingsStore,
        item_delay: float = 0.5,
        rate_limit_backoff: float = 2.0,
        max_fetch: int = 500,
        export_dir: str = "data",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.source = source
        self.ai = ai
        self.records = records
        self.seen = seen
        self.settings = settings
        self.item_delay = item_delay
        self.rate_limit_backoff = rate_limit_backoff
        self.max_fetch = max_fetch
        self.export_dir = export_dir
        self.sleep = sleep
        self.state = RunState()

    # Control surface

    def start_run(
        self, run_config: RunConfig, on_event: Optional[Callable[[ProgressEvent], None]] = None
    ) -> RunSummary:
        summary = RunSummary()
        for event in self.iter_run(run_config):
            if on_event:
                on_event(event)
            if event.summary is not None:
                summary = event.summary
        return summary

    def iter_run(self, run_config: RunConfig) -> Iterator[ProgressEvent]:
        """Run one scan, yielding progress events as it goes.

        The final event has stage ``DONE`` and carries the ``RunSummary``.
        Closing the iterator early stops the run after the current item; the
        items already attempted are still reconciled.
        """
        if not self.state.acquire():
            raise RunAlreadyActiveError("A scan is already running")
        try:
            yield from self._run(run_config)
        finally:
            self.state.release()

    def cancel_active_run(self) -> bool:
        requested = self.state.request_cancel()
        if requested:
            logger.info("Cancellation requested, stopping after the current email")
        return requested

    def is_run_active(self) -> bool:
        return self.state.active

    def export_records(self, path: Optional[str] = None) -> Path:
        if not self.records.read_all():
            raise NoRecordsError("No records found. Process some emails first.")
        return self.records.export(Path(path or self.export_dir))

    def get_scan_stats(self) -> ScanStats:
        return ScanStats(
            total_seen=self.seen.count(),
            total_records=len(self.records.read_all()),
            last_checkpoint=self.settings.get_checkpoint(),
        )

    def clear_seen_history(self) -> None:
        if self.state.active:
            raise RunAlreadyActiveError("Cannot clear scan history while a scan is running")
        self.seen.clear()

    def authenticate(self) -> Optional[str]:
        self.source.authenticate()
        email = self.source.user_email()
        self.settings.update(gmail_authenticated=True, user_email=email)
        return email

    def revoke(self) -> bool:
        revoked = self.source.revoke()
        self.settings.update(gmail_authenticated=False, user_email=None)
        return revoked

    def fetch_limit(self, requested: int, seen_count: int) -> int:
        return min(requested + seen_count, self.max_fetch)

    # Run stages

    def _run(self, run_config: RunConfig) -> Iterator[ProgressEvent]:
        if run_config.limit < 1:
            raise ConfigError("Email limit must be at least 1")
        if self.ai is None:
            raise ConfigError("No AI provider configured")
        summary = RunSummary()

        self.state.stage = RunStage.FETCHING
        yield ProgressEvent(RunStage.FETCHING, "Fetching emails...")
        emails = self._fetch(run_config, summary)
        summary.fetched = len(emails)

        self.state.stage = RunStage.FILTERING
        pending = self._filter(emails, run_config.limit, summary)
        yield ProgressEvent(
            RunStage.FILTERING,
            f"Processing {len(pending)} new emails ({summary.already_scanned} already scanned)...",
            total=len(pending),
        )

        self.state.stage = RunStage.ITERATING
        candidates: List[ApplicationRecord] = []
        attempted: List[str] = []
        reconciled = False
        try:
            for index, item in enumerate(pending, start=1):
                if self.state.cancelled:
                    logger.info("Processing stopped by user before email %d of %d", index, len(pending))
                    summary.stopped = True
                    break
                outcome = self._process_item(index, item, candidates, summary)
                attempted.append(item.message_id)
                summary.outcomes.append(outcome)
                yield ProgressEvent(
                    RunStage.ITERATING,
                    f"Processed email {index} of {len(pending)}: {item.subject[:50]!r} - {outcome.label}",
                    current=index,
                    total=len(pending),
                    outcome=outcome,
                )
                self.sleep(self.item_delay)

            self.state.stage = RunStage.RECONCILING
            yield ProgressEvent(RunStage.RECONCILING, "Saving results...")
            self._reconcile(emails, attempted, candidates, summary)
            reconciled = True
        except GeneratorExit:
            if not reconciled:
                summary.stopped = True
                self._reconcile(emails, attempted, candidates, summary)
            raise

        self.state.stage = RunStage.DONE
        yield ProgressEvent(RunStage.DONE, summary.message or "Done.", summary=summary)

    def _fetch(self, run_config: RunConfig, summary: RunSummary) -> List[EmailItem]:
        after = None
        if run_config.since_checkpoint:
            checkpoint = self.settings.get_checkpoint()
            if checkpoint:
                after = datetime.fromisoformat(checkpoint)
        window = FetchWindow(
            lookback_days=run_config.lookback_days,
            max_count=self.fetch_limit(run_config.limit, self.seen.count()),
            after=after,
        )
        logger.info("Fetching up to %d emails from the last %d days", window.max_count, window.lookback_days)
        try:
            return self.source.fetch(window)
        except (AuthError, FetchError) as exc:
            exc.summary = summary
            raise

    def _filter(self, emails: List[EmailItem], limit: int, summary: RunSummary) -> List[EmailItem]:
        seen_ids = self.seen.all_ids()
        unscanned = [email for email in emails if email.message_id not in seen_ids]
        summary.already_scanned = len(emails) - len(unscanned)
        summary.duplicates_skipped = summary.already_scanned
        return unscanned[:limit]

    def _process_item(
        self,
        index: int,
        item: EmailItem,
        candidates: List[ApplicationRecord],
        summary: RunSummary,
    ) -> ItemOutcome:
        outcome = ItemOutcome(
            index=index,
            message_id=item.message_id,
            subject=item.subject,
            sender=item.sender,
            received_at=item.received_at,
            status=OutcomeStatus.ERROR,
        )
        summary.scanned += 1
        logger.info("[%d] Categorizing %r from %s", index, item.subject, item.sender)

        try:
            is_match = self._with_retry(self.ai.classify, item)
        except InferenceError as exc:
            logger.warning("Error processing email %s: %s", item.message_id, exc)
            outcome.error = str(exc)
            summary.errors += 1
            return outcome
        except Exception as exc:
            return _unexpected_failure(outcome, exc, summary)

        outcome.is_confirmation = is_match
        if not is_match:
            outcome.status = OutcomeStatus.NOT_MATCH
            return outcome
        summary.matched += 1

        try:
            extracted = self._with_retry(self.ai.extract, item)
        except (InferenceError, ExtractionIncomplete) as exc:
            logger.warning("Extraction failed for %s: %s", item.message_id, exc)
            outcome.status = OutcomeStatus.EXTRACTION_FAILED
            outcome.error = str(exc)
            return outcome
        except Exception as exc:
            return _unexpected_failure(outcome, exc, summary)

        outcome.extracted = extracted
        outcome.status = OutcomeStatus.SUCCESS
        candidates.append(
            ApplicationRecord(
                message_id=item.message_id,
                company=extracted.company,
                position=extracted.position,
                email_title=item.subject,
                email_date=item.received_at,
                processed_timestamp=datetime.now(timezone.utc),
            )
        )
        logger.info("[%d] Extracted company=%s position=%s", index, extracted.company, extracted.position)
        return outcome

    def _with_retry(self, call: Callable[[EmailItem], T], item: EmailItem) -> T:
        retrying = Retrying(
            retry=retry_if_exception_type(InferenceRateLimited),
            stop=stop_after_attempt(2),
            wait=wait_fixed(self.rate_limit_backoff),
            sleep=self.sleep,
            before_sleep=_log_rate_limit,
            reraise=True,
        )
        try:
            return retrying(call, item)
        except InferenceRateLimited as exc:
            raise InferenceError(f"Still rate limited after retry: {exc}") from exc

    def _reconcile(
        self,
        emails: List[EmailItem],
        attempted: List[str],
        candidates: List[ApplicationRecord],
        summary: RunSummary,
    ) -> None:
        summary.records = list(candidates)
        try:
            if attempted:
                self.seen.mark_many(attempted)
                logger.info("Marked %d emails as scanned", len(attempted))
            existing = self.records.existing_ids()
            new_records = [record for record in candidates if record.message_id not in existing]
            summary.records = new_records
            result = self.records.append(new_records)
            summary.new_records = result.inserted
            summary.record_duplicates = len(candidates) - len(new_records) + result.duplicates
            summary.duplicates_skipped = summary.already_scanned + summary.record_duplicates
            if emails:
                watermark = max(email.received_at for email in emails)
                self.settings.update_checkpoint(watermark.isoformat())
        except PersistenceError as exc:
            exc.summary = summary
            raise
        summary.message = _summary_message(summary)


def _unexpected_failure(outcome: ItemOutcome, exc: Exception, summary: RunSummary) -> ItemOutcome:
    # Item-scope: record it and move on to the next email.
    logger.exception("Unexpected error processing email %s", outcome.message_id)
    outcome.status = OutcomeStatus.ERROR
    outcome.error = f"{type(exc).__name__}: {exc}"
    summary.errors += 1
    return outcome


def _log_rate_limit(retry_state: RetryCallState) -> None:
    logger.warning("Rate limit hit, retrying in %.1fs", retry_state.next_action.sleep if retry_state.next_action else 0)


def _summary_message(summary: RunSummary) -> Optional[str]:
    if summary.fetched == 0:
        return "No emails found in the selected time period."
    if summary.scanned == 0 and summary.already_scanned:
        return (
            f"All {summary.fetched} emails in the time period have already been scanned. "
            "Try increasing the time period or clearing scan history."
        )
    if summary.stopped:
        return "Processing stopped by user. Partial results saved."
    return None


def summary_to_dict(summary: RunSummary) -> dict[str, Any]:
    return {
        "emails_scanned": summary.scanned,
        "confirmations_found": summary.matched,
        "new_records": summary.new_records,
        "duplicates_skipped": summary.duplicates_skipped,
        "errors": summary.errors,
        "stopped": summary.stopped,
        "message": summary.message,
    }
