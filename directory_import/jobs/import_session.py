"""Batch driver that runs a whole CSV through the row importer."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from directory_import.etl.normalize import map_columns
from directory_import.models import ImportSettings, ImportStats, RawImportRow, RowIssue, utcnow

logger = logging.getLogger(__name__)

RUNNING = "running"
PAUSED = "paused"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"
FINISHED_STATUSES = {COMPLETED, FAILED, CANCELLED}

# The header is line 1 of the file, so the first data row is line 2.
FIRST_DATA_LINE = 2
SESSION_TTL = timedelta(hours=1)
UNKNOWN_COMPANY = "غير محدد"
DEFAULT_SKIP_REASON = "تم تخطي الشركة"
DEFAULT_ROW_ERROR = "خطأ غير محدد"
GENERAL_ROW_LABEL = "عام"


@dataclass
class ImportSession:
    id: str
    rows: List[RawImportRow]
    settings: ImportSettings
    status: str = RUNNING
    stats: ImportStats = field(default_factory=ImportStats)
    errors: List[RowIssue] = field(default_factory=list)
    skipped: List[RowIssue] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    current_index: int = 0

    @classmethod
    def new(cls, rows: List[RawImportRow], settings: Optional[ImportSettings] = None) -> "ImportSession":
        rows = list(rows)
        session = cls(id=str(uuid.uuid4()), rows=rows, settings=settings or ImportSettings())
        session.stats.total_rows = len(rows)
        return session

    @property
    def finished(self) -> bool:
        return self.status in FINISHED_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        stats = self.stats
        return {
            "id": self.id,
            "status": self.status,
            "startedAt": self.started_at.isoformat(),
            "currentIndex": self.current_index,
            "stats": {
                "totalRows": stats.total_rows,
                "processedRows": stats.processed_rows,
                "successfulImports": stats.successful_imports,
                "failedImports": stats.failed_imports,
                "skippedRows": stats.skipped_rows,
                "downloadedImages": stats.downloaded_images,
                "failedImages": stats.failed_images,
            },
            "errors": [{"row": i.row, "companyName": i.company_name, "error": i.message} for i in self.errors],
            "skipped": [{"row": i.row, "companyName": i.company_name, "reason": i.message} for i in self.skipped],
        }


def _company_name(row: RawImportRow) -> str:
    try:
        return map_columns(row).name or UNKNOWN_COMPANY
    except (AttributeError, TypeError):
        return UNKNOWN_COMPANY


def _wait_while_paused(session: ImportSession, poll_interval: float, sleep: Callable[[float], None]) -> None:
    if session.status == PAUSED:
        logger.info("Import %s paused at row %d", session.id, session.current_index + FIRST_DATA_LINE)
    while session.status == PAUSED:
        sleep(poll_interval)


def run_import_session(
    session: ImportSession,
    importer: Any,
    *,
    poll_interval: float = 1.0,
    row_delay: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> ImportSession:
    """Process the session's rows from ``current_index`` until done or cancelled.

    Pause and cancel are honoured between rows only. A paused session
    blocks here until another thread resumes or cancels it.
    """
    stats = session.stats
    batch_size = max(1, session.settings.batch_size)
    logger.info("Import %s started with %d rows from index %d", session.id, len(session.rows), session.current_index)

    try:
        for index in range(session.current_index, len(session.rows)):
            _wait_while_paused(session, poll_interval, sleep)
            if session.status == CANCELLED:
                logger.info("Import %s cancelled after %d rows", session.id, stats.processed_rows)
                return session

            row = session.rows[index]
            line = index + FIRST_DATA_LINE
            result = importer.process_row(row, session.settings, line)

            if result.success:
                stats.successful_imports += 1
                stats.downloaded_images += result.images_downloaded
                stats.failed_images += result.images_failed
            elif result.skipped:
                stats.skipped_rows += 1
                session.skipped.append(RowIssue(line, _company_name(row), result.error or DEFAULT_SKIP_REASON))
            else:
                stats.failed_imports += 1
                session.errors.append(RowIssue(line, _company_name(row), result.error or DEFAULT_ROW_ERROR))

            stats.processed_rows = index + 1
            session.current_index = index + 1

            if stats.processed_rows % batch_size == 0:
                logger.info(
                    "Import %s progress: %d/%d rows (%d ok, %d failed, %d skipped)",
                    session.id,
                    stats.processed_rows,
                    stats.total_rows,
                    stats.successful_imports,
                    stats.failed_imports,
                    stats.skipped_rows,
                )
            if row_delay:
                sleep(row_delay)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Import %s failed: %s", session.id, exc)
        session.errors.append(RowIssue(0, GENERAL_ROW_LABEL, str(exc)))
        session.status = FAILED
        return session

    session.status = COMPLETED
    logger.info(
        "Import %s completed: %d imported, %d failed, %d skipped, %d images (%d failed)",
        session.id,
        stats.successful_imports,
        stats.failed_imports,
        stats.skipped_rows,
        stats.downloaded_images,
        stats.failed_images,
    )
    return session


class ImportSessionManager:
    """In-memory registry of import sessions for one process."""

    def __init__(self, max_workers: int = 2) -> None:
        self._sessions: Dict[str, ImportSession] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers)

    def create(self, session: ImportSession) -> ImportSession:
        with self._lock:
            self._sessions[session.id] = session
            logger.info("Registered import %s (%d sessions)", session.id, len(self._sessions))
        return session

    def get(self, session_id: str) -> Optional[ImportSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def update(self, session_id: str, **changes: Any) -> Optional[ImportSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            for key, value in changes.items():
                if not hasattr(session, key):
                    raise AttributeError(f"ImportSession has no field {key!r}")
                setattr(session, key, value)
            return session

    def delete(self, session_id: str) -> bool:
        with self._lock:
            deleted = self._sessions.pop(session_id, None) is not None
        logger.info("Deleted import %s: %s", session_id, deleted)
        return deleted

    def all(self) -> List[ImportSession]:
        with self._lock:
            return list(self._sessions.values())

    def _transition(self, session_id: str, allowed: set, status: str) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.status not in allowed:
                return False
            session.status = status
        logger.info("Import %s is now %s", session_id, status)
        return True

    def pause(self, session_id: str) -> bool:
        return self._transition(session_id, {RUNNING}, PAUSED)

    def resume(self, session_id: str) -> bool:
        return self._transition(session_id, {PAUSED}, RUNNING)

    def cancel(self, session_id: str) -> bool:
        return self._transition(session_id, {RUNNING, PAUSED}, CANCELLED)

    def cleanup(self, now: Optional[datetime] = None) -> int:
        """Drop finished sessions that started more than an hour ago."""
        cutoff = (now or utcnow()) - SESSION_TTL
        with self._lock:
            stale = [sid for sid, s in self._sessions.items() if s.finished and s.started_at < cutoff]
            for session_id in stale:
                del self._sessions[session_id]
        if stale:
            logger.info("Cleaned up %d finished import sessions", len(stale))
        return len(stale)

    def start(self, session: ImportSession, importer: Any, **kwargs: Any) -> Future:
        """Register ``session`` and run it on the manager's worker pool."""
        self.create(session)
        return self._executor.submit(self._run_safe, session, importer, kwargs)

    @staticmethod
    def _run_safe(session: ImportSession, importer: Any, kwargs: Dict[str, Any]) -> ImportSession:
        try:
            return run_import_session(session, importer, **kwargs)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Import %s crashed: %s", session.id, exc)
            session.status = FAILED
            return session

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
