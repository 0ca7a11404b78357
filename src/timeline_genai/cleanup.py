from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait

from timeline_genai.config import settings
from timeline_genai.storage import BlobStorage

logger = logging.getLogger(__name__)


class BlobCleanupQueue:
    """Fire-and-forget remote deletes. Callers never wait on, or see, the outcome."""

    def __init__(self, storage: BlobStorage, workers: int | None = None) -> None:
        self.storage = storage
        self._executor = ThreadPoolExecutor(
            max_workers=workers or settings.cleanup_workers,
            thread_name_prefix="blob-cleanup",
        )
        self._pending: set[Future[None]] = set()
        self._lock = threading.Lock()

    def schedule(self, locator: str) -> None:
        if not locator or not locator.strip():
            return
        try:
            future = self._executor.submit(self._delete, locator)
        except RuntimeError:
            logger.warning("Cleanup queue is shut down; leaving %s in storage", locator)
            return
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)

    def drain(self, timeout: float | None = None) -> None:
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def _delete(self, locator: str) -> None:
        try:
            self.storage.delete(locator)
        except Exception:
            logger.warning("Failed to delete image %s", locator, exc_info=True)

    def _discard(self, future: Future[None]) -> None:
        with self._lock:
            self._pending.discard(future)
