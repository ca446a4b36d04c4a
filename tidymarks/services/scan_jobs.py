"""Link liveness scans over a snapshot of the document's bookmarks.

A scan is owned by one :class:`ScanContext`: the snapshot, a shared cursor,
the counters, the result list, its cancellation token and the pending flush
timer.  Worker threads claim items under the context lock, so every bookmark is
checked and counted at most once.  Progress is pushed to an observer at most
once per flush interval, plus a final flush when the scan ends; no update is
delivered after the final one.  Discarding a scan detaches it at once, while
starting a new scan first drains every detached one.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime

from tidymarks.errors import ScanCancelled
from tidymarks.models import (
    FlatBookmark,
    SCAN_STATUS_BROKEN,
    SCAN_STATUS_ERROR,
    SCAN_STATUS_OK,
    ScanResult,
    ScanSnapshot,
    ScanStats,
    utcnow,
)
from tidymarks.services.link_probe import LinkProbeResult, clamp_timeout, probe_link

logger = logging.getLogger(__name__)

SCAN_STATE_IDLE = "idle"
SCAN_STATE_RUNNING = "running"
SCAN_STATE_DONE = "done"
SCAN_STATE_STOPPED = "stopped"
SCAN_STATE_ERROR = "error"
FINISHED_STATES = {SCAN_STATE_DONE, SCAN_STATE_STOPPED, SCAN_STATE_ERROR}

DEFAULT_CONCURRENCY = 8
DEFAULT_FLUSH_INTERVAL = 0.2

Prober = Callable[..., LinkProbeResult]
Observer = Callable[[ScanSnapshot], None]

_scan_ids = itertools.count(1)


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()


class ScanContext:
    def __init__(self, targets: Sequence[FlatBookmark]) -> None:
        self.scan_id = next(_scan_ids)
        self.targets = tuple(targets)
        self.token = CancellationToken()
        self.lock = threading.Lock()
        self.cursor = 0
        self.stats = ScanStats(total=len(self.targets))
        self.results: list[ScanResult] = []
        self.state = SCAN_STATE_RUNNING
        self.error_message: str | None = None
        self.failure: BaseException | None = None
        self.flush_timer: threading.Timer | None = None
        self.started_at: datetime = utcnow()
        self.finished_at: datetime | None = None

    def claim(self) -> FlatBookmark | None:
        with self.lock:
            if self.token.is_cancelled() or self.cursor >= len(self.targets):
                return None
            item = self.targets[self.cursor]
            self.cursor += 1
            return item

    def record(self, result: ScanResult) -> None:
        with self.lock:
            self.results.append(result)
            self.stats.record(result.status)

    def snapshot(self) -> ScanSnapshot:
        with self.lock:
            return self.snapshot_locked()

    def snapshot_locked(self) -> ScanSnapshot:
        """Build a snapshot; the caller holds ``lock``."""
        return ScanSnapshot(
            scan_id=self.scan_id,
            state=self.state,
            stats=self.stats.copy(),
            results=tuple(self.results),
            error_message=self.error_message,
            started_at=self.started_at,
            finished_at=self.finished_at,
        )


def _error_result(item: FlatBookmark, message: str, duration_ms=None) -> ScanResult:
    return ScanResult(
        id=item.id,
        title=item.title,
        url=item.url,
        path=item.path,
        status=SCAN_STATUS_ERROR,
        error=message,
        duration_ms=duration_ms,
    )


def classify_response(item: FlatBookmark, response: LinkProbeResult) -> ScanResult:
    if not response.ok:
        return _error_result(item, response.error or "Check failed", response.duration_ms)
    if response.status is None:
        return _error_result(item, "Missing status code")
    return ScanResult(
        id=item.id,
        title=item.title,
        url=item.url,
        path=item.path,
        status=SCAN_STATUS_BROKEN if response.status >= 400 else SCAN_STATUS_OK,
        status_code=response.status,
        duration_ms=response.duration_ms,
    )


def check_bookmark(
    item: FlatBookmark, prober: Prober, timeout_ms: int, token: CancellationToken
) -> ScanResult | None:
    """Probe one bookmark; ``None`` means the scan was cancelled mid-check."""
    if not item.url:
        return _error_result(item, "Missing URL")
    try:
        response = prober(item.url, timeout_ms, token)
    except ScanCancelled:
        return None
    except Exception as exc:
        return _error_result(item, str(exc) or exc.__class__.__name__)
    if token.is_cancelled():
        return None
    return classify_response(item, response)


class ScanOrchestrator:
    def __init__(
        self,
        prober: Prober = probe_link,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout_ms=None,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        on_update: Observer | None = None,
    ) -> None:
        self.prober = prober
        self.concurrency = max(1, int(concurrency))
        self.timeout_ms = clamp_timeout(timeout_ms)
        self.flush_interval = flush_interval
        self.on_update = on_update
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._context: ScanContext | None = None
        self._thread: threading.Thread | None = None
        self._detached: list[threading.Thread] = []

    @property
    def active(self) -> bool:
        with self._lock:
            context = self._context
        return context is not None and context.state == SCAN_STATE_RUNNING

    def snapshot(self) -> ScanSnapshot:
        with self._lock:
            context = self._context
        if context is None:
            return ScanSnapshot(scan_id=0, state=SCAN_STATE_IDLE, stats=ScanStats())
        return context.snapshot()

    def start(self, targets: Sequence[FlatBookmark]) -> ScanContext:
        """Start a scan in a background thread, draining any scan still running."""
        self.reset()
        context = ScanContext(targets)
        worker = threading.Thread(
            target=self._run,
            args=(context,),
            daemon=True,
            name=f"link-scan-{context.scan_id}",
        )
        with self._lock:
            self._context = context
            self._thread = worker
        worker.start()
        return context

    def run(self, targets: Sequence[FlatBookmark]) -> ScanSnapshot:
        """Run a scan in the calling thread and return its final snapshot."""
        self.reset()
        context = ScanContext(targets)
        with self._lock:
            self._context = context
            self._thread = None
        self._run(context)
        return context.snapshot()

    def wait(self, timeout: float | None = None) -> ScanSnapshot:
        with self._lock:
            thread = self._thread
        if thread is not None:
            thread.join(timeout)
        return self.snapshot()

    def stop(self) -> bool:
        with self._lock:
            context = self._context
        if context is None or context.state != SCAN_STATE_RUNNING:
            return False
        if context.token.is_cancelled():
            return False
        context.token.cancel()
        logger.info("Stop requested for scan %s", context.scan_id)
        return True

    def discard(self) -> None:
        """Cancel the current scan and forget it without waiting for in-flight checks."""
        with self._lock:
            context = self._context
            thread = self._thread
            self._context = None
            self._thread = None
            self._detached = [item for item in self._detached if item.is_alive()]
            if thread is not None:
                self._detached.append(thread)
        if context is not None:
            context.token.cancel()
            self._cancel_flush(context)

    def reset(self) -> None:
        """Cancel the current scan and drain every scan still winding down."""
        self.discard()
        with self._lock:
            pending = self._detached
            self._detached = []
        for thread in pending:
            if thread is not threading.current_thread():
                thread.join()

    def _run(self, context: ScanContext) -> None:
        logger.info("Scan %s started for %s bookmarks", context.scan_id, len(context.targets))
        try:
            worker_count = min(self.concurrency, len(context.targets))
            if worker_count:
                with ThreadPoolExecutor(
                    max_workers=worker_count,
                    thread_name_prefix=f"link-scan-{context.scan_id}",
                ) as executor:
                    futures = [
                        executor.submit(self._work, context) for _ in range(worker_count)
                    ]
                    for future in as_completed(futures):
                        future.result()

            if context.failure is not None:
                raise context.failure
            state = SCAN_STATE_STOPPED if context.token.is_cancelled() else SCAN_STATE_DONE
            self._finish(context, state)
        except Exception as exc:
            logger.warning("Scan %s failed: %s", context.scan_id, exc)
            self._finish(context, SCAN_STATE_ERROR, str(exc) or "Scan failed.")

    def _work(self, context: ScanContext) -> None:
        try:
            while True:
                item = context.claim()
                if item is None:
                    break
                result = check_bookmark(item, self.prober, self.timeout_ms, context.token)
                if result is None:
                    break
                context.record(result)
                self._schedule_flush(context)
        except Exception as exc:
            with context.lock:
                if context.failure is None:
                    context.failure = exc
            context.token.cancel()

    def _finish(self, context: ScanContext, state: str, error_message: str | None = None):
        self._cancel_flush(context)
        with context.lock:
            context.state = state
            context.error_message = error_message
            context.finished_at = utcnow()
        stats = context.stats
        logger.info(
            "Scan %s %s: %s/%s scanned, %s ok, %s broken, %s errors",
            context.scan_id,
            state,
            stats.scanned,
            stats.total,
            stats.ok,
            stats.broken,
            stats.error,
        )
        self._flush(context, final=True)

    def _schedule_flush(self, context: ScanContext) -> None:
        with context.lock:
            if context.flush_timer is not None or context.state != SCAN_STATE_RUNNING:
                return
            timer = threading.Timer(self.flush_interval, self._flush, args=(context,))
            timer.daemon = True
            context.flush_timer = timer
        timer.start()

    def _cancel_flush(self, context: ScanContext) -> None:
        with context.lock:
            timer = context.flush_timer
            context.flush_timer = None
        if timer is not None:
            timer.cancel()

    def _flush(self, context: ScanContext, final: bool = False) -> None:
        # Deliveries are serialized so a timer flush never lands after the final one.
        with self._flush_lock:
            with context.lock:
                if not final and context.state != SCAN_STATE_RUNNING:
                    return
                context.flush_timer = None
                snapshot = context.snapshot_locked()
            with self._lock:
                current = self._context
            if current is context and self.on_update is not None:
                self.on_update(snapshot)
