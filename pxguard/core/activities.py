"""Activity (telemetry) buffering and batched delivery."""

from __future__ import annotations

import queue
import threading
from typing import Any

import httpx

from pxguard.config.enforcer_config import EnforcementConfig
from pxguard.config.settings import settings
from pxguard.core.errors import TelemetryFlushError
from pxguard.core.models import ActivityEvent
from pxguard.util.logger import get_logger

ACTIVITIES_PATH = "/api/v1/collector/s2s"

logger = get_logger("activities")


class ActivityBuffer:
    """Process-wide activity buffer shared by all in-flight requests.

    ``enqueue`` only appends under a lock; once the batch size is reached the
    whole pending list is swapped out while still holding the lock, so every
    event belongs to exactly one batch. Batches are posted by a daemon worker
    thread and never block the request path.
    """

    def __init__(
        self,
        config: EnforcementConfig,
        *,
        transport: httpx.BaseTransport | None = None,
        max_queued_batches: int = 1000,
    ) -> None:
        self.config = config
        self.batch_size = max(1, int(config.max_activity_batch_size))
        self.url = f"{config.backend_collector_url}{ACTIVITIES_PATH}"
        self._transport = transport
        self._pending: list[ActivityEvent] = []
        self._pending_lock = threading.Lock()
        self._queue: queue.Queue[list[ActivityEvent] | None] = queue.Queue(maxsize=max(1, max_queued_batches))
        self._worker: threading.Thread | None = None
        self._worker_lock = threading.Lock()
        self._client: httpx.Client | None = None
        self.sent_batches = 0
        self.failed_batches = 0

    @property
    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def enqueue(self, event: ActivityEvent) -> None:
        batch: list[ActivityEvent] | None = None
        with self._pending_lock:
            self._pending.append(event)
            if len(self._pending) >= self.batch_size:
                batch, self._pending = self._pending, []
        if batch:
            self._dispatch(batch)

    def flush(self) -> None:
        with self._pending_lock:
            batch, self._pending = self._pending, []
        if batch:
            self._dispatch(batch)

    def _dispatch(self, batch: list[ActivityEvent]) -> None:
        self._ensure_worker()
        try:
            self._queue.put_nowait(batch)
        except queue.Full:
            self.failed_batches += 1
            logger.warning("activities queue full, dropping batch size=%d", len(batch))

    def _ensure_worker(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        with self._worker_lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(target=self._worker_loop, name="pxguard-activities", daemon=True)
            self._worker.start()

    def _worker_loop(self) -> None:
        while True:
            batch = self._queue.get()
            try:
                if batch is None:
                    break
                self._deliver(batch)
            except TelemetryFlushError as exc:
                self.failed_batches += 1
                logger.warning("activities flush failed size=%d error=%s", len(batch or []), exc)
            finally:
                self._queue.task_done()

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                transport=self._transport,
                timeout=float(settings.activities_timeout_seconds),
            )
        return self._client

    def _deliver(self, batch: list[ActivityEvent]) -> None:
        body: list[dict[str, Any]] = [event.model_dump() for event in batch]
        headers = {
            "Authorization": f"Bearer {self.config.auth_token}",
            "Content-Type": "application/json",
        }
        attempts = 1 + max(0, int(settings.activities_flush_retries))
        last_error = ""
        for attempt in range(1, attempts + 1):
            try:
                response = self._get_client().post(self.url, json=body, headers=headers)
                response.raise_for_status()
                self.sent_batches += 1
                logger.debug("activities batch sent size=%d attempt=%d", len(batch), attempt)
                return
            except httpx.HTTPError as exc:
                last_error = (str(exc) or "").strip() or type(exc).__name__
                logger.debug("activities post failed attempt=%d error=%s", attempt, last_error)
        raise TelemetryFlushError(f"activities_unreachable: {last_error}")

    def shutdown(self, timeout_seconds: float = 2.0) -> None:
        """Flush what is pending and stop the worker."""
        self.flush()
        worker = self._worker
        if worker is not None:
            try:
                self._queue.put_nowait(None)
            except queue.Full:
                pass
            worker.join(timeout=timeout_seconds)
            self._worker = None
        if self._client is not None:
            self._client.close()
            self._client = None
