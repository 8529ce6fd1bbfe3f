"""Speech output through the Piper CLI.

Each sentence is synthesized to its own WAV file in a worker thread so the
event loop keeps streaming while Piper runs.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TTSConfig:
    piper_bin: str = "piper"
    model_path: str | None = None  # *.onnx voice
    speaker_id: int | None = None
    timeout_s: float = 60.0


class SpeechSynthesizer:
    async def synthesize(self, text: str, wav_path: str | Path) -> Path:
        raise NotImplementedError


class PiperTTS(SpeechSynthesizer):
    def __init__(self, config: TTSConfig | None = None) -> None:
        self._config = config or TTSConfig()
        self._piper_path: str | None = None

    @property
    def config(self) -> TTSConfig:
        return self._config

    def is_available(self) -> tuple[bool, str]:
        try:
            self._require_piper()
        except RuntimeError as e:
            return False, str(e)
        return True, "ok"

    def _require_piper(self) -> str:
        if self._piper_path:
            return self._piper_path

        p = shutil.which(self._config.piper_bin)
        if not p:
            raise RuntimeError(
                "piper CLI not found. Install Piper and ensure it's on PATH, "
                "or set PIPER_BIN to the binary path."
            )
        if not self._config.model_path:
            raise RuntimeError("Piper voice not configured. Set PIPER_MODEL=/path/to/voice.onnx.")

        self._piper_path = p
        return p

    async def synthesize(self, text: str, wav_path: str | Path) -> Path:
        """
        Synthesize one utterance.

        Raises:
            RuntimeError: If Piper is missing, times out or exits non-zero.
        """
        wav_path = Path(wav_path)
        wav_path.parent.mkdir(parents=True, exist_ok=True)

        cmd = [self._require_piper(), "--model", str(self._config.model_path), "--output_file", str(wav_path)]
        if self._config.speaker_id is not None:
            cmd += ["--speaker", str(self._config.speaker_id)]

        def _call() -> None:
            try:
                subprocess.run(
                    cmd,
                    input=text,
                    text=True,
                    check=True,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    timeout=self._config.timeout_s,
                )
            except subprocess.TimeoutExpired as e:
                raise RuntimeError(f"piper timed out after {self._config.timeout_s:.1f}s") from e
            except subprocess.CalledProcessError as e:
                stderr = (e.stderr or "").strip()
                raise RuntimeError(f"piper failed (exit={e.returncode}). stderr={stderr or '<empty>'}") from e

        await asyncio.to_thread(_call)
        logger.debug(f"Synthesized {len(text)} chars to {wav_path}")
        return wav_path
