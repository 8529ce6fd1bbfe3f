"""One spoken turn (glue layer).

audio source -> speech-to-text -> text generation (streamed) -> Piper

Each sentence event is synthesized as soon as it arrives, so speech output
starts before the reply has finished streaming. Model selection and
fallback stay in the orchestrator.
"""

from __future__ import annotations

import inspect
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from pydantic import BaseModel, Field

from voice_orchestrator.schemas import STT_KEY, TEXTGEN_KEY, StreamEvent, StreamEventType
from voice_orchestrator.voice.audio_source import AudioSource
from voice_orchestrator.voice.tts import SpeechSynthesizer

if TYPE_CHECKING:
    from voice_orchestrator.orchestrator.voice_orchestrator import VoiceOrchestrator

logger = logging.getLogger(__name__)

EventHook = Callable[[StreamEvent], "Awaitable[Any] | Any"]


class VoiceTurn(BaseModel):
    """Record of one spoken turn."""

    transcript: str
    reply: str = ""
    sentences: list[str] = Field(default_factory=list)
    wavs: list[str] = Field(default_factory=list, description="Synthesized sentence WAVs in order")
    stt_seconds: float = 0.0
    reply_seconds: float = 0.0


class VoiceTurnPipeline:
    def __init__(
        self,
        orchestrator: "VoiceOrchestrator",
        *,
        tts: SpeechSynthesizer | None = None,
        out_dir: str | Path = "data/turns",
        stt_key: str = STT_KEY,
        textgen_key: str = TEXTGEN_KEY,
    ) -> None:
        self._orchestrator = orchestrator
        self._tts = tts
        self._out_dir = Path(out_dir)
        self._stt_key = stt_key
        self._textgen_key = textgen_key
        self._tts_disabled = tts is None

    async def run_turn(self, source: AudioSource, on_event: EventHook | None = None) -> VoiceTurn:
        """
        Run one turn: transcribe, stream the reply and speak each sentence.

        Args:
            source: Where the user's audio comes from.
            on_event: Optional hook receiving every stream event (for display).

        Returns:
            The turn record. An empty transcript yields an empty reply.
        """
        t0 = time.perf_counter()
        buffer = await source.get_buffer()
        transcript = (await self._orchestrator.infer(self._stt_key, buffer)).strip()
        turn = VoiceTurn(transcript=transcript, stt_seconds=time.perf_counter() - t0)

        if not transcript:
            logger.info("[VOICE] empty transcript, skipping reply")
            return turn

        turn_dir = self._out_dir / datetime.now().strftime("%Y%m%d_%H%M%S")

        async def _on_event(event: StreamEvent) -> None:
            if on_event is not None:
                result = on_event(event)
                if inspect.isawaitable(result):
                    await result
            if event.type == StreamEventType.SENTENCE:
                turn.sentences.append(event.text)
                wav = await self._speak(event.text, turn_dir / f"sentence_{len(turn.sentences):02d}.wav")
                if wav is not None:
                    turn.wavs.append(str(wav))

        t1 = time.perf_counter()
        turn.reply = await self._orchestrator.infer(self._textgen_key, transcript, stream_callback=_on_event)
        turn.reply_seconds = time.perf_counter() - t1
        logger.info(
            f"[VOICE] turn stt={turn.stt_seconds:.2f}s reply={turn.reply_seconds:.2f}s "
            f"sentences={len(turn.sentences)} wavs={len(turn.wavs)}"
        )
        return turn

    async def _speak(self, sentence: str, wav_path: Path) -> Path | None:
        if self._tts_disabled or self._tts is None:
            return None
        try:
            return await self._tts.synthesize(sentence, wav_path)
        except RuntimeError as e:
            # Keep the turn going as text when speech output is unavailable.
            logger.warning(f"TTS unavailable; continuing with text output: {e}")
            self._tts_disabled = True
            return None
