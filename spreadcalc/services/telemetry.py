"""
Execution telemetry.

Every execution is recorded as a flat dictionary (service id, status,
execution time, error kind, cache flag, request info). Records are handed
to a TelemetryRecorder, which delivers them to the configured sinks on a
background worker so that a slow or failing sink never delays or breaks a
response.

Sinks:
    - InMemoryTelemetrySink: bounded buffer of recent records with simple
      per-service analytics.
    - JsonLinesTelemetrySink: appends records to one ``requests-YYYY-MM-DD.log``
      file per day.
"""

import json
import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class TelemetrySink(Protocol):
    """Receives one structured record per execution."""

    def record(self, entry: dict[str, Any]) -> None: ...


class InMemoryTelemetrySink:
    """
    Keeps the most recent records in memory.

    Attributes:
        max_entries: Size of the ring buffer.
    """

    def __init__(self, max_entries: int = 1000) -> None:
        self.max_entries = max_entries
        self._entries: deque[dict[str, Any]] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def record(self, entry: dict[str, Any]) -> None:
        with self._lock:
            self._entries.append(entry)

    def recent(
        self,
        service_id: str | None = None,
        status: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """
        Get recent records, newest first.

        Args:
            service_id: Only records for this service.
            status: Only records with this status (``success`` or ``error``).
            limit: Maximum number of records.
        """
        with self._lock:
            entries = list(self._entries)

        if service_id is not None:
            entries = [e for e in entries if e.get("serviceId") == service_id]
        if status is not None:
            entries = [e for e in entries if e.get("status") == status]

        return list(reversed(entries[-limit:])) if limit > 0 else []

    def analytics(self, service_id: str | None = None) -> dict[str, Any]:
        """
        Summarize recent records.

        Returns:
            Request, success and error counts, the average execution time
            of successful requests in ms, and the last request timestamp.
        """
        entries = self.recent(service_id=service_id, limit=self.max_entries)
        if not entries:
            return {
                "totalRequests": 0,
                "successCount": 0,
                "errorCount": 0,
                "avgExecutionTime": 0,
                "cacheHitRate": 0,
            }

        successes = [e for e in entries if e.get("status") == "success"]
        total_time = sum(e.get("executionTime") or 0 for e in successes)
        cached = sum(1 for e in successes if e.get("cached"))

        return {
            "totalRequests": len(entries),
            "successCount": len(successes),
            "errorCount": len(entries) - len(successes),
            "avgExecutionTime": round(total_time / len(successes), 2) if successes else 0,
            "cacheHitRate": round(cached / len(successes), 4) if successes else 0,
            "lastRequest": entries[0].get("timestamp"),
        }


class JsonLinesTelemetrySink:
    """Appends records as JSON lines to a daily log file."""

    def __init__(self, logs_dir: str | Path) -> None:
        self.logs_dir = Path(logs_dir)
        self._lock = threading.Lock()

    def _log_file(self) -> Path:
        date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.logs_dir / f"requests-{date}.log"

    def record(self, entry: dict[str, Any]) -> None:
        line = json.dumps(entry, default=str)
        with self._lock:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            with self._log_file().open("a", encoding="utf-8") as f:
                f.write(line + "\n")

    def read(self, date: str | None = None) -> list[dict[str, Any]]:
        """Read the records of one day (``YYYY-MM-DD``, default today)."""
        path = self.logs_dir / f"requests-{date}.log" if date else self._log_file()
        if not path.exists():
            return []
        with path.open(encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]


class TelemetryRecorder:
    """
    Fire-and-forget delivery of telemetry records.

    Records are delivered on a single background thread in submission
    order. Sink failures are logged and otherwise ignored.

    Example:
        memory = InMemoryTelemetrySink()
        recorder = TelemetryRecorder([memory])
        recorder.record({"serviceId": "loan", "status": "success"})
        recorder.flush()
    """

    def __init__(self, sinks: list[TelemetrySink] | None = None) -> None:
        self.sinks: list[TelemetrySink] = list(sinks or [])
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="telemetry")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def _deliver(self, entry: dict[str, Any]) -> None:
        for sink in self.sinks:
            try:
                sink.record(entry)
            except Exception:
                logger.warning("Telemetry sink %s failed", type(sink).__name__, exc_info=True)

    def record(self, entry: dict[str, Any]) -> None:
        """Queue a record for delivery; never raises."""
        if not self.sinks:
            return
        try:
            future = self._executor.submit(self._deliver, entry)
        except RuntimeError:
            logger.warning("Telemetry recorder is shut down; dropping record for %s", entry.get("serviceId"))
            return
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def flush(self, timeout: float | None = 5.0) -> bool:
        """
        Wait until every queued record has been delivered.

        Never raises; a sink that is still busy after ``timeout`` seconds is
        logged and left to finish in the background.

        Returns:
            True if every queued record was delivered in time.
        """
        with self._lock:
            pending = list(self._pending)
        for future in pending:
            try:
                future.result(timeout=timeout)
            except Exception:
                logger.warning("Telemetry flush did not complete within %s s", timeout, exc_info=True)
                return False
        return True

    def shutdown(self) -> None:
        """Deliver queued records and stop the worker."""
        self._executor.shutdown(wait=True)
