"""
HookStream Logging — JSONL event logs for webhooks, transforms and subscribers.

Implements:
- FileLogger: one JSONL file per stream / category / day
- AsyncLogQueue: non-blocking push, background writer thread
- LogRetentionManager: delete past retention, gzip older days
- Entry builders for ingest, lifecycle, mapping, transform and subscriber events

Layout: {log_dir}/{stream}/{category}/{YYYY-MM-DD}.jsonl[.gz]
"""

from __future__ import annotations

import gzip
import json
import logging
import shutil
import threading
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger("hookstream.engine.logging")

# Streams and the categories each one writes
LOG_STREAMS: Dict[str, Tuple[str, ...]] = {
    "webhooks": ("execution", "security"),
    "transforms": ("execution", "performance"),
    "subscribers": ("execution",),
    "system": ("execution",),
}

# Days kept per category
DEFAULT_RETENTION: Dict[str, int] = {
    "execution": 90,
    "performance": 30,
    "security": 365,
}

_SUFFIX = ".jsonl"
_GZ_SUFFIX = ".jsonl.gz"


class LogEntry:
    """One JSON document bound for ``{stream}/{category}``."""

    __slots__ = ("stream", "category", "data")

    def __init__(self, stream: str, category: str, data: Dict[str, Any]):
        self.stream = stream
        self.category = category
        self.data = data

    @property
    def target(self) -> Tuple[str, str]:
        return self.stream, self.category

    def to_json(self) -> str:
        return json.dumps(self.data, separators=(",", ":"), default=str)

    def __repr__(self) -> str:
        return f"<LogEntry {self.stream}/{self.category} {self.data.get('event')}>"


class FileLogger:
    """
    Appends entries to daily JSONL files and reads them back.
    Writers to the same file are serialized by a per-file lock.
    """

    def __init__(self, log_dir: str = "logs"):
        self._root = Path(log_dir)
        self._locks: Dict[Path, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        for stream, categories in LOG_STREAMS.items():
            for category in categories:
                (self._root / stream / category).mkdir(parents=True, exist_ok=True)

    @property
    def log_dir(self) -> Path:
        return self._root

    def day_file(self, stream: str, category: str, day: Optional[date] = None) -> Path:
        """Plain (uncompressed) file for ``day`` (default today)."""
        day = day or date.today()
        return self._root / stream / category / f"{day.isoformat()}{_SUFFIX}"

    def _lock_for(self, path: Path) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(path)
            if lock is None:
                lock = self._locks[path] = threading.Lock()
            return lock

    def write(self, entry: LogEntry) -> None:
        self.write_batch([entry])

    def write_batch(self, entries: List[LogEntry]) -> None:
        """Append entries; one open() per target file."""
        lines_by_file: Dict[Path, List[str]] = {}
        for entry in entries:
            path = self.day_file(*entry.target)
            lines_by_file.setdefault(path, []).append(entry.to_json())

        for path, lines in lines_by_file.items():
            path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock_for(path), path.open("a", encoding="utf-8") as fh:
                fh.write("\n".join(lines) + "\n")

    def query(
        self,
        stream: str,
        category: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 500,
    ) -> List[Dict[str, Any]]:
        """
        Entries of ``stream/category`` between two dates, newest first.

        Args:
            start_date: Earliest day (default: 7 days before end_date).
            end_date: Latest day (default: today).
            filters: Exact matches on top-level keys (e.g. {"webhook_id": "gh"}).
            limit: Maximum number of entries.
        """
        end_date = end_date or date.today()
        start_date = start_date or end_date - timedelta(days=7)
        if not (self._root / stream / category).is_dir():
            return []

        found: List[Dict[str, Any]] = []
        day = end_date
        while day >= start_date and len(found) < limit:
            matching = [
                doc for doc in self._read_day(stream, category, day)
                if not filters or all(doc.get(k) == v for k, v in filters.items())
            ]
            found.extend(reversed(matching))
            day -= timedelta(days=1)
        return found[:limit]

    def _read_day(self, stream: str, category: str, day: date) -> Iterator[Dict[str, Any]]:
        """Documents of one day in write order (compressed part first)."""
        plain = self.day_file(stream, category, day)
        packed = plain.with_name(plain.name[: -len(_SUFFIX)] + _GZ_SUFFIX)
        sources = [(packed, gzip.open), (plain, open)]
        for path, opener in sources:
            if not path.exists():
                continue
            try:
                with opener(path, "rt", encoding="utf-8") as fh:
                    for raw in fh:
                        raw = raw.strip()
                        if not raw:
                            continue
                        try:
                            yield json.loads(raw)
                        except json.JSONDecodeError:
                            logger.debug(f"Skipping corrupt line in {path}")
            except OSError as e:
                logger.warning(f"Could not read {path}: {e}")


class AsyncLogQueue:
    """
    Buffers entries in memory and hands them to a FileLogger from a daemon
    thread, in batches of up to ``flush_batch_size`` or every
    ``flush_interval_ms``. A full queue drops the entry and counts it.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._writer = file_logger
        self._interval = flush_interval_ms / 1000.0
        self._batch_size = max(1, flush_batch_size)
        self._pending: Queue = Queue(maxsize=max_queue_size)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._dropped = 0

    @property
    def file_logger(self) -> FileLogger:
        return self._writer

    @property
    def pending_count(self) -> int:
        return self._pending.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="hookstream-log-writer", daemon=True)
        self._thread.start()
        logger.debug("Log writer thread started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the writer thread, then write whatever is still queued."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self.flush()
        if self._dropped:
            logger.warning(f"Log queue stopped; {self._dropped} entries were dropped")

    def push(self, entry: LogEntry) -> bool:
        """Queue ``entry`` without blocking. False when it had to be dropped."""
        try:
            self._pending.put_nowait(entry)
        except Full:
            self._dropped += 1
            return False
        return True

    def flush(self) -> None:
        """Synchronously write every queued entry."""
        batch = self._take(limit=None, wait=0)
        while batch:
            self._write(batch)
            batch = self._take(limit=None, wait=0)

    def _run(self) -> None:
        while not self._stop.is_set():
            batch = self._take(limit=self._batch_size, wait=self._interval)
            if batch:
                self._write(batch)

    def _take(self, limit: Optional[int], wait: float) -> List[LogEntry]:
        """Collect up to ``limit`` entries, blocking at most ``wait`` for the first."""
        batch: List[LogEntry] = []
        try:
            batch.append(self._pending.get(timeout=wait) if wait else self._pending.get_nowait())
        except Empty:
            return batch
        while limit is None or len(batch) < limit:
            try:
                batch.append(self._pending.get_nowait())
            except Empty:
                break
        return batch

    def _write(self, batch: List[LogEntry]) -> None:
        try:
            self._writer.write_batch(batch)
        except OSError as e:
            logger.error(f"Failed to write {len(batch)} log entries: {e}")


# ---------------------------------------------------------------------------
# Entry builders
# ---------------------------------------------------------------------------

def _document(event: str, level: str, webhook_id: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
    doc: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
    }
    if webhook_id:
        doc["webhook_id"] = webhook_id
    for key, value in fields.items():
        if value is not None:
            doc[key] = value
    return doc


def log_webhook_ingest(
    webhook_id: str,
    success: bool,
    duration_ms: float,
    event_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_kind: Optional[str] = None,
    error: Optional[str] = None,
    mapping_failures: int = 0,
    subscribers_notified: Optional[int] = None,
) -> LogEntry:
    """One entry per ingest() call, accepted or rejected."""
    doc = _document(
        "webhook_ingested" if success else "webhook_rejected",
        "INFO" if success else "WARNING",
        webhook_id,
        success=success,
        duration_ms=round(duration_ms, 3),
        event_id=event_id,
        event_type=event_type,
        error_kind=error_kind,
        error=error,
        subscribers_notified=subscribers_notified,
        mapping_failures=mapping_failures or None,
    )
    return LogEntry("webhooks", "execution", doc)


def log_webhook_lifecycle(
    event: str,
    webhook_id: str,
    status: Optional[str] = None,
    previous_status: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    """Registered / updated / unregistered / status_changed."""
    doc = _document(
        event, "INFO", webhook_id,
        status=status,
        previous_status=previous_status,
        details=details or None,
    )
    return LogEntry("webhooks", "execution", doc)


def log_webhook_security(event: str, webhook_id: str, reason: str, level: str = "WARNING") -> LogEntry:
    """Validator rejections."""
    return LogEntry("webhooks", "security", _document(event, level, webhook_id, reason=reason))


def log_mapping_failure(
    transform_id: Optional[str],
    mapping_index: int,
    target_field: str,
    error: str,
    webhook_id: Optional[str] = None,
    source_path: Optional[str] = None,
    fallback: str = "default",
) -> LogEntry:
    """A mapping the TransformEngine recovered from."""
    doc = _document(
        "mapping_failed", "ERROR", webhook_id,
        transform_id=transform_id,
        mapping_index=mapping_index,
        target_field=target_field,
        source_path=source_path,
        error=error,
        fallback=fallback,
    )
    return LogEntry("transforms", "execution", doc)


def log_transform_performance(
    transform_id: Optional[str],
    duration_ms: float,
    mappings: int,
    failures: int,
    webhook_id: Optional[str] = None,
) -> LogEntry:
    doc = _document(
        "transform_applied", "INFO", webhook_id,
        transform_id=transform_id,
        duration_ms=round(duration_ms, 3),
        mappings=mappings,
        failures=failures,
    )
    return LogEntry("transforms", "performance", doc)


def log_subscriber_error(
    webhook_id: str,
    event_id: Optional[str],
    error: str,
    callback: Optional[str] = None,
) -> LogEntry:
    doc = _document(
        "subscriber_failed", "ERROR", webhook_id,
        event_id=event_id,
        error=error,
        callback=callback,
    )
    return LogEntry("subscribers", "execution", doc)


def log_system_event(event: str, level: str = "INFO", details: Optional[Dict[str, Any]] = None) -> LogEntry:
    """Runtime startup / shutdown, store write failures."""
    return LogEntry("system", "execution", _document(event, level, details=details or None))


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------

class LogRetentionManager:
    """
    Per category: files older than the retention are deleted, plain files
    older than ``compress_after_days`` are gzipped in place.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        retention_days: Optional[Dict[str, int]] = None,
        compress_after_days: int = 7,
    ):
        self._root = Path(log_dir)
        self._retention = {**DEFAULT_RETENTION, **(retention_days or {})}
        self._compress_after = compress_after_days

    def cleanup(self, today: Optional[date] = None) -> Dict[str, int]:
        """Returns {"deleted": N, "compressed": M}."""
        today = today or date.today()
        counts = {"deleted": 0, "compressed": 0}

        for stream, categories in LOG_STREAMS.items():
            for category in categories:
                keep_days = self._retention.get(category, DEFAULT_RETENTION["execution"])
                for path, day in self._dated_files(self._root / stream / category):
                    age = (today - day).days
                    if age > keep_days:
                        path.unlink()
                        counts["deleted"] += 1
                    elif age > self._compress_after and path.name.endswith(_SUFFIX):
                        if self._gzip(path):
                            counts["compressed"] += 1

        logger.info(f"Log cleanup: {counts}")
        return counts

    @staticmethod
    def _dated_files(directory: Path) -> Iterator[Tuple[Path, date]]:
        """(path, day) for every ``YYYY-MM-DD.jsonl[.gz]`` file in ``directory``."""
        if not directory.is_dir():
            return
        for path in sorted(directory.iterdir()):
            if not path.is_file():
                continue
            stem = path.name.split(".", 1)[0]
            try:
                yield path, date.fromisoformat(stem)
            except ValueError:
                continue

    @staticmethod
    def _gzip(path: Path) -> bool:
        target = path.with_name(path.name + ".gz")
        try:
            with path.open("rb") as src, gzip.open(target, "wb") as dst:
                shutil.copyfileobj(src, dst)
        except OSError as e:
            logger.error(f"Could not compress {path}: {e}")
            target.unlink(missing_ok=True)
            return False
        path.unlink()
        return True


def create_log_queue(
    log_dir: str = "logs",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
    start: bool = True,
) -> AsyncLogQueue:
    """Build a FileLogger-backed queue, started unless ``start`` is False."""
    queue = AsyncLogQueue(
        FileLogger(log_dir=log_dir),
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    if start:
        queue.start()
    return queue
