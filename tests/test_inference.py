"""Tests for the async inference pool."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest
from conftest import StubEngine, solid_image

from imgcls.ml.classifier import Classifier
from imgcls.ml.inference import InferencePool

if TYPE_CHECKING:
    from imgcls.config import Settings


def _make_pool(settings: Settings, engine: StubEngine) -> InferencePool:
    custom = settings.model_copy(update={"input_name": "input", "image_size": 8})
    classifier = Classifier.from_settings(custom, engine_factory=engine.factory)
    return InferencePool(classifier, custom)


class TestInferencePool:
    async def test_classify_runs_classifier(self, settings: Settings) -> None:
        engine = StubEngine({"output": [[0.25, 0.75]]})
        pool = _make_pool(settings, engine)
        try:
            results = await pool.classify([solid_image(8, 8)])
            assert results[0].raw[0].tolist() == [0.25, 0.75]
            assert pool.active_count == 0
            assert pool.queue_depth == 0
        finally:
            pool.shutdown()

    async def test_times_out_when_saturated(self, settings: Settings) -> None:
        pool = _make_pool(settings, StubEngine({"output": [[0.5, 0.5]]}))
        await pool._semaphore.acquire()
        try:
            with patch("imgcls.ml.inference.SEMAPHORE_TIMEOUT_SECONDS", 0.01), pytest.raises(asyncio.TimeoutError):
                await pool.classify([solid_image(8, 8)])
            assert pool.queue_depth == 0
        finally:
            pool._semaphore.release()
            pool.shutdown()

    def test_shutdown_closes_classifier(self, settings: Settings) -> None:
        engine = StubEngine({"output": [[0.5, 0.5]]})
        pool = _make_pool(settings, engine)
        pool.shutdown()
        assert pool.classifier.closed
        assert engine.close_calls == 1
