"""Async front for a blocking Classifier.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> Classifier.run

Requests beyond the semaphore limit queue with a 5s timeout, then get 503.
With the default ``max_concurrent=1`` calls into the classifier are fully
serialized.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from imgcls.config import Settings
    from imgcls.ml.classifier import Classifier
    from imgcls.ml.image import Image
    from imgcls.ml.results import ClassificationResult

logger = logging.getLogger(__name__)

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Bounds how many classifier calls run at once and tracks the backlog."""

    def __init__(self, classifier: Classifier, settings: Settings) -> None:
        self._classifier = classifier
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="imgcls-inference",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    @property
    def classifier(self) -> Classifier:
        return self._classifier

    async def classify(self, images: Sequence[Image]) -> list[ClassificationResult]:
        """Run ``images`` through the classifier on the inference thread pool.

        Raises:
            TimeoutError: If no slot frees up within the timeout.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=SEMAPHORE_TIMEOUT_SECONDS)
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, self._classifier.run, images)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of batches currently being classified."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Wait for running batches, then release the classifier."""
        self._executor.shutdown(wait=True)
        self._classifier.close()
        logger.info("Inference pool shut down")
