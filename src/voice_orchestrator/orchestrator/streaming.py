"""
Simulated token streaming.

Engines here return whole completions, so progressive display is simulated by
replaying the finished text word by word with small pauses. Sentence events
let speech output start before the full reply has been shown.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from voice_orchestrator.schemas import Pacing, StreamEvent, StreamEventType

logger = logging.getLogger(__name__)

StreamCallback = Callable[[StreamEvent], "Awaitable[Any] | Any"]

SENTENCE_TERMINATORS = (".", "!", "?")


async def iter_events(text: str, pacing: Pacing | None = None) -> AsyncIterator[StreamEvent]:
    """
    Replay finished text as word, sentence and complete events.

    Words are split on single spaces. A word ending a sentence closes the
    sentence buffer and yields one `sentence` event instead of a `word`
    event. Any leftover buffer becomes a final `sentence`; a `complete`
    event carrying the full text always ends the sequence.
    """
    pacing = pacing or Pacing()
    accumulated = ""
    sentence = ""

    for word in text.split(" "):
        if not word:
            continue
        accumulated = f"{accumulated} {word}" if accumulated else word
        sentence = f"{sentence} {word}" if sentence else word

        if word.endswith(SENTENCE_TERMINATORS):
            yield StreamEvent(type=StreamEventType.SENTENCE, text=sentence.strip())
            sentence = ""
            await asyncio.sleep(pacing.sentence_delay_s)
        else:
            yield StreamEvent(type=StreamEventType.WORD, text=word, full_text=accumulated)
            await asyncio.sleep(pacing.word_delay_s)

    if sentence.strip():
        yield StreamEvent(type=StreamEventType.SENTENCE, text=sentence.strip())

    yield StreamEvent(type=StreamEventType.COMPLETE, text=text, is_complete=True)


class StreamingEmitter:
    """Delivers iter_events() to a sync or async callback."""

    def __init__(self, pacing: Pacing | None = None) -> None:
        self._pacing = pacing or Pacing()

    @property
    def pacing(self) -> Pacing:
        return self._pacing

    async def emit(self, text: str, callback: StreamCallback, pacing: Pacing | None = None) -> str:
        """
        Stream text to a callback.

        Args:
            text: Finished text to replay.
            callback: Receives every StreamEvent in order; may be a coroutine
                function.
            pacing: Overrides the emitter's default pacing.

        Returns:
            The streamed text, unchanged.
        """
        async for event in iter_events(text, pacing or self._pacing):
            result = callback(event)
            if inspect.isawaitable(result):
                await result
        return text
