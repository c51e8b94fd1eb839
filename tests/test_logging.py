"""Unit tests for hookstream.engine.logging — FileLogger, AsyncLogQueue, LogRetentionManager."""

import gzip
import json
from datetime import date, timedelta

import pytest

from hookstream.engine.logging import (
    DEFAULT_RETENTION,
    LOG_STREAMS,
    AsyncLogQueue,
    FileLogger,
    LogEntry,
    LogRetentionManager,
    create_log_queue,
    log_mapping_failure,
    log_subscriber_error,
    log_system_event,
    log_transform_performance,
    log_webhook_ingest,
    log_webhook_lifecycle,
    log_webhook_security,
)


class TestObjectTypeCategories:
    """Verify the category mapping is complete."""

    def test_streams(self):
        assert set(LOG_STREAMS) == {"webhooks", "transforms", "subscribers", "system"}

    def test_every_category_has_retention(self):
        for stream, cats in LOG_STREAMS.items():
            for cat in cats:
                assert cat in DEFAULT_RETENTION, f"{stream}/{cat} has no retention"


class TestLogEntry:
    def test_to_json(self):
        entry = LogEntry("webhooks", "execution", {"webhook_id": "gh", "n": 1})
        assert json.loads(entry.to_json()) == {"webhook_id": "gh", "n": 1}

    def test_to_json_stringifies_unknown_types(self):
        entry = LogEntry("system", "execution", {"when": date(2026, 1, 2)})
        assert json.loads(entry.to_json())["when"] == "2026-01-02"


class TestFileLogger:
    """Test FileLogger file writing."""

    def test_creates_category_directories(self, tmp_path):
        FileLogger(log_dir=str(tmp_path / "logs"))
        assert (tmp_path / "logs" / "webhooks" / "security").is_dir()
        assert (tmp_path / "logs" / "transforms" / "performance").is_dir()

    def test_write_creates_daily_file(self, tmp_path):
        file_logger = FileLogger(log_dir=str(tmp_path / "logs"))
        file_logger.write(LogEntry("webhooks", "execution", {"event": "webhook_ingested"}))

        files = list((tmp_path / "logs" / "webhooks" / "execution").glob("*.jsonl"))
        assert [f.name for f in files] == [f"{date.today().isoformat()}.jsonl"]
        assert json.loads(files[0].read_text().strip())["event"] == "webhook_ingested"

    def test_write_batch(self, tmp_path):
        file_logger = FileLogger(log_dir=str(tmp_path / "logs"))
        file_logger.write_batch([LogEntry("webhooks", "execution", {"n": i}) for i in range(5)])

        files = list((tmp_path / "logs" / "webhooks" / "execution").glob("*.jsonl"))
        assert len(files[0].read_text().strip().split("\n")) == 5


class TestFileLoggerQuery:
    def setup_method(self):
        self.today = date.today()

    def _write_day(self, base, day, entries):
        path = base / "webhooks" / "execution" / f"{day.isoformat()}.jsonl"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("".join(json.dumps(e) + "\n" for e in entries), encoding="utf-8")
        return path

    def test_newest_first_across_days(self, tmp_path):
        self._write_day(tmp_path, self.today - timedelta(days=1), [{"n": 1}, {"n": 2}])
        self._write_day(tmp_path, self.today, [{"n": 3}])
        entries = FileLogger(log_dir=str(tmp_path)).query("webhooks", "execution")
        assert [e["n"] for e in entries] == [3, 2, 1]

    def test_filters_and_limit(self, tmp_path):
        self._write_day(tmp_path, self.today, [
            {"webhook_id": "gh", "n": 1},
            {"webhook_id": "stripe", "n": 2},
            {"webhook_id": "gh", "n": 3},
        ])
        file_logger = FileLogger(log_dir=str(tmp_path))
        entries = file_logger.query("webhooks", "execution", filters={"webhook_id": "gh"})
        assert [e["n"] for e in entries] == [3, 1]
        assert len(file_logger.query("webhooks", "execution", limit=1)) == 1

    def test_reads_compressed_days(self, tmp_path):
        day = self.today - timedelta(days=2)
        path = tmp_path / "webhooks" / "execution" / f"{day.isoformat()}.jsonl.gz"
        path.parent.mkdir(parents=True)
        with gzip.open(path, "wt", encoding="utf-8") as f:
            f.write(json.dumps({"n": 9}) + "\n")
        entries = FileLogger(log_dir=str(tmp_path)).query("webhooks", "execution")
        assert entries == [{"n": 9}]

    def test_skips_corrupt_lines(self, tmp_path):
        path = self._write_day(tmp_path, self.today, [{"n": 1}])
        with open(path, "a", encoding="utf-8") as f:
            f.write("{broken\n")
        assert FileLogger(log_dir=str(tmp_path)).query("webhooks", "execution") == [{"n": 1}]

    def test_unknown_stream(self, tmp_path):
        assert FileLogger(log_dir=str(tmp_path)).query("nothing", "execution") == []


class TestAsyncLogQueue:
    def test_flush_writes_pending(self, tmp_path):
        queue = AsyncLogQueue(FileLogger(log_dir=str(tmp_path)))
        assert queue.push(log_system_event("runtime_started")) is True
        assert queue.pending_count == 1
        queue.flush()
        assert queue.pending_count == 0
        entries = queue.file_logger.query("system", "execution")
        assert entries[0]["event"] == "runtime_started"

    def test_drops_when_full(self, tmp_path):
        queue = AsyncLogQueue(FileLogger(log_dir=str(tmp_path)), max_queue_size=1)
        assert queue.push(log_system_event("a")) is True
        assert queue.push(log_system_event("b")) is False
        assert queue.dropped_count == 1

    def test_stop_drains(self, tmp_path):
        queue = create_log_queue(log_dir=str(tmp_path), flush_interval_ms=10)
        for i in range(3):
            queue.push(log_system_event(f"e{i}"))
        queue.stop()
        assert queue.pending_count == 0
        assert len(queue.file_logger.query("system", "execution")) == 3

    def test_create_without_start(self, tmp_path):
        queue = create_log_queue(log_dir=str(tmp_path), start=False)
        queue.push(log_system_event("a"))
        assert queue.pending_count == 1


class TestLogRetentionManager:
    """Test retention cleanup."""

    def setup_method(self):
        self.today = date(2026, 3, 1)

    def _touch(self, base, obj_type, cat, day, suffix=".jsonl"):
        path = base / obj_type / cat / f"{day.isoformat()}{suffix}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text('{"n": 1}\n', encoding="utf-8")
        return path

    def test_cleanup_empty_dir(self, tmp_path):
        result = LogRetentionManager(log_dir=str(tmp_path)).cleanup(today=self.today)
        assert result == {"deleted": 0, "compressed": 0}

    def test_deletes_expired(self, tmp_path):
        old = self._touch(tmp_path, "transforms", "performance", self.today - timedelta(days=31))
        kept = self._touch(tmp_path, "webhooks", "security", self.today - timedelta(days=31), ".jsonl.gz")
        result = LogRetentionManager(log_dir=str(tmp_path)).cleanup(today=self.today)
        assert result["deleted"] == 1
        assert not old.exists()
        assert kept.exists()

    def test_compresses_older_files(self, tmp_path):
        path = self._touch(tmp_path, "webhooks", "execution", self.today - timedelta(days=8))
        fresh = self._touch(tmp_path, "webhooks", "execution", self.today - timedelta(days=1))
        result = LogRetentionManager(log_dir=str(tmp_path)).cleanup(today=self.today)
        assert result == {"deleted": 0, "compressed": 1}
        assert not path.exists()
        assert path.with_suffix(".jsonl.gz").exists()
        assert fresh.exists()

    def test_custom_retention(self, tmp_path):
        path = self._touch(tmp_path, "webhooks", "execution", self.today - timedelta(days=3))
        mgr = LogRetentionManager(log_dir=str(tmp_path), retention_days={"execution": 2})
        assert mgr.cleanup(today=self.today)["deleted"] == 1
        assert not path.exists()

    def test_ignores_unrelated_files(self, tmp_path):
        (tmp_path / "system" / "execution").mkdir(parents=True)
        (tmp_path / "system" / "execution" / "notes.txt").write_text("x")
        assert LogRetentionManager(log_dir=str(tmp_path)).cleanup(today=self.today)["deleted"] == 0


class TestLogBuilders:
    """Test convenience log entry builder functions."""

    def test_ingest_success(self):
        entry = log_webhook_ingest("gh", True, 1.23456, event_id="evt_1_0", subscribers_notified=2)
        assert (entry.stream, entry.category) == ("webhooks", "execution")
        assert entry.data["event"] == "webhook_ingested"
        assert entry.data["duration_ms"] == 1.235
        assert entry.data["subscribers_notified"] == 2
        assert "error_kind" not in entry.data
        assert "mapping_failures" not in entry.data

    def test_ingest_rejected(self):
        entry = log_webhook_ingest("gh", False, 0.5, error_kind="inactive", error="off")
        assert entry.data["event"] == "webhook_rejected"
        assert entry.data["level"] == "WARNING"
        assert entry.data["error_kind"] == "inactive"

    def test_lifecycle(self):
        entry = log_webhook_lifecycle(
            "webhook_status_changed", "gh", status="inactive", previous_status="active",
        )
        assert entry.data["previous_status"] == "active"

    def test_security(self):
        entry = log_webhook_security("webhook_validation_failed", "gh", "bad signature")
        assert entry.category == "security"
        assert entry.data["reason"] == "bad signature"

    def test_mapping_failure(self):
        entry = log_mapping_failure("tf_1", 2, "total", "boom", source_path="a.b")
        assert entry.stream == "transforms"
        assert entry.data["mapping_index"] == 2
        assert entry.data["fallback"] == "default"

    def test_transform_performance(self):
        entry = log_transform_performance("tf_1", 3.0, mappings=4, failures=0)
        assert entry.category == "performance"
        assert entry.data["mappings"] == 4

    def test_subscriber_error(self):
        entry = log_subscriber_error("gh", "evt_1_0", "listener down", callback="on_event")
        assert entry.stream == "subscribers"
        assert entry.data["callback"] == "on_event"

    @pytest.mark.parametrize("details", [None, {"webhooks_loaded": 2}])
    def test_system_event(self, details):
        entry = log_system_event("runtime_started", details=details)
        assert entry.stream == "system"
        assert ("details" in entry.data) == bool(details)
