"""
Per-request inference.

The runner borrows a ready handle from the ModelLoader, frames the input for
the handle's model family, invokes it and extracts the reply. Generation
failures are surfaced as GenerationError and never retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping

import numpy as np

from voice_orchestrator.backends.base import ModelHandle, PacingClass
from voice_orchestrator.errors import GenerationError, NotLoadedError
from voice_orchestrator.orchestrator.model_loader import ModelLoader
from voice_orchestrator.orchestrator.streaming import StreamCallback, StreamingEmitter, iter_events
from voice_orchestrator.prompts.templates import generation_params, unwrap, wrap
from voice_orchestrator.schemas import Pacing, StreamEvent, TaskKind
from voice_orchestrator.voice.audio_source import AudioBuffer

logger = logging.getLogger(__name__)

DEFAULT_PACING: dict[PacingClass, Pacing] = {
    "standard": Pacing(word_delay_s=0.025, sentence_delay_s=0.1),
    "fast": Pacing(word_delay_s=0.015, sentence_delay_s=0.03),
}


@dataclass
class InferenceOptions:
    stream_callback: StreamCallback | None = None
    max_new_tokens: int | None = None
    system_prompt: str | None = None


class InferenceRunner:
    """Runs single requests against loaded handles."""

    def __init__(
        self,
        loader: ModelLoader,
        *,
        max_new_tokens: int = 100,
        pacing: Mapping[PacingClass, Pacing] | None = None,
        emitter: StreamingEmitter | None = None,
    ) -> None:
        self._loader = loader
        self._max_new_tokens = max_new_tokens
        self._pacing: dict[PacingClass, Pacing] = dict(DEFAULT_PACING)
        if pacing:
            self._pacing.update(pacing)
        self._emitter = emitter or StreamingEmitter(self._pacing["standard"])

    def pacing_for(self, handle: ModelHandle) -> Pacing:
        return self._pacing.get(handle.pacing_class, self._pacing["standard"])

    def _handle(self, logical_key: str) -> ModelHandle:
        handle = self._loader.get_handle(logical_key)
        if handle is None:
            raise NotLoadedError(f"Model {logical_key!r} is not loaded")
        return handle

    async def _invoke(self, handle: ModelHandle, model_input: Any, options: InferenceOptions) -> str:
        try:
            if handle.task == TaskKind.SPEECH_TO_TEXT:
                if not isinstance(model_input, AudioBuffer):
                    raise GenerationError(
                        f"Speech-to-text input must be an AudioBuffer, got {type(model_input).__name__}"
                    )
                if model_input.samples.size == 0 or not np.isfinite(model_input.samples).all():
                    raise GenerationError("Audio buffer is empty or contains invalid samples")
                raw = await handle.invoke(model_input)
                return (raw or "").strip()

            system_prompt = options.system_prompt if options.system_prompt is not None else handle.system_prompt
            framed = wrap(handle.family, str(model_input), system_prompt)
            params = generation_params(handle.family, options.max_new_tokens or self._max_new_tokens)
            raw = await handle.invoke(framed, **params)
            return unwrap(handle.family, raw)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(
                f"Inference failed for {handle.logical_key} on {handle.backend.value}: {e}"
            ) from e

    async def run(
        self,
        logical_key: str,
        model_input: Any,
        options: InferenceOptions | None = None,
    ) -> str:
        """
        Run one request.

        Args:
            logical_key: Logical model to use.
            model_input: Raw prompt for text generation or an AudioBuffer for
                speech to text.
            options: Streaming callback, token budget and system prompt.

        Returns:
            Extracted reply text (also streamed when a callback is given).

        Raises:
            NotLoadedError: If no ready handle exists for the key.
            GenerationError: If the backend failed.
        """
        options = options or InferenceOptions()
        handle = self._handle(logical_key)
        text = await self._invoke(handle, model_input, options)
        logger.debug(f"{logical_key} produced {len(text)} chars on {handle.backend.value}")

        if options.stream_callback is not None:
            return await self._emitter.emit(text, options.stream_callback, self.pacing_for(handle))
        return text

    async def stream(
        self,
        logical_key: str,
        model_input: Any,
        options: InferenceOptions | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Run one request and yield its reply as stream events."""
        options = options or InferenceOptions()
        handle = self._handle(logical_key)
        text = await self._invoke(handle, model_input, options)
        async for event in iter_events(text, self.pacing_for(handle)):
            yield event
