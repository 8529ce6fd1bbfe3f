"""Latency benchmark for loaded logical models."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from voice_orchestrator.errors import NotLoadedError
from voice_orchestrator.orchestrator.inference_runner import InferenceOptions, InferenceRunner
from voice_orchestrator.orchestrator.model_loader import ModelLoader
from voice_orchestrator.schemas import BenchmarkStats, TaskKind
from voice_orchestrator.voice.audio_source import AudioBuffer

logger = logging.getLogger(__name__)

BENCHMARK_PROMPT = "Hello, how are you?"
BENCHMARK_MAX_NEW_TOKENS = 50
BENCHMARK_AUDIO_SECONDS = 5.0


def synthetic_input(task: TaskKind) -> tuple[Any, InferenceOptions]:
    """Fixed input used for every round trip of a task kind."""
    if task == TaskKind.SPEECH_TO_TEXT:
        return AudioBuffer.silence(BENCHMARK_AUDIO_SECONDS), InferenceOptions()
    return BENCHMARK_PROMPT, InferenceOptions(max_new_tokens=BENCHMARK_MAX_NEW_TOKENS)


class BenchmarkHarness:
    """
    Times repeated requests against an already loaded model.

    Each iteration sends a synthetic input for the model's task. Failed
    iterations are recorded and skipped; the aggregates cover successes only.
    """

    def __init__(
        self,
        runner: InferenceRunner,
        loader: ModelLoader,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._runner = runner
        self._loader = loader
        self._clock = clock

    async def run(self, logical_key: str, iterations: int = 5) -> BenchmarkStats:
        """
        Measure sequential round trips for a loaded model.

        Failed iterations are logged and excluded. Aggregates stay NaN when
        no iteration succeeded.

        Raises:
            NotLoadedError: If the model is not loaded.
        """
        handle = self._loader.get_handle(logical_key)
        if handle is None:
            raise NotLoadedError(f"Model {logical_key!r} is not loaded")

        model_input, options = synthetic_input(handle.task)
        samples: list[float] = []
        failures = 0

        for i in range(1, iterations + 1):
            started = self._clock()
            try:
                await self._runner.run(logical_key, model_input, options)
            except Exception as e:
                failures += 1
                logger.warning(f"Benchmark iteration {i}/{iterations} for {logical_key} failed: {e}")
                continue
            samples.append(self._clock() - started)

        stats = BenchmarkStats(
            logical_key=logical_key,
            backend=handle.backend,
            identifier=handle.identifier,
            iterations=iterations,
            samples=samples,
            failures=failures,
        )
        if samples:
            stats.avg = sum(samples) / len(samples)
            stats.min = min(samples)
            stats.max = max(samples)
            logger.info(
                f"Benchmark {logical_key} on {handle.backend.value}: "
                f"avg={stats.avg * 1000:.1f}ms min={stats.min * 1000:.1f}ms max={stats.max * 1000:.1f}ms"
            )
        else:
            logger.warning(f"Benchmark {logical_key}: no successful iterations (avg/min/max undefined)")
        return stats

