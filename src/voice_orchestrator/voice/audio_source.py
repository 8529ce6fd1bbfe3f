"""Audio buffers handed to speech-to-text models.

Capture and resampling live outside this package; producers only need to
hand over mono float32 samples at a known rate.
"""

from __future__ import annotations

import asyncio
import logging
import wave
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 16000


@dataclass(frozen=True)
class AudioBuffer:
    samples: np.ndarray  # float32, mono, [-1.0, 1.0]
    sample_rate: int = DEFAULT_SAMPLE_RATE

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return float(len(self.samples)) / float(self.sample_rate)

    @classmethod
    def silence(cls, seconds: float, sample_rate: int = DEFAULT_SAMPLE_RATE) -> "AudioBuffer":
        return cls(samples=np.zeros(int(seconds * sample_rate), dtype=np.float32), sample_rate=sample_rate)


class AudioSource(Protocol):
    async def get_buffer(self) -> AudioBuffer: ...


class WavFileAudioSource:
    """Reads a 16-bit PCM WAV file and downmixes it to mono float32."""

    def __init__(self, wav_path: str | Path) -> None:
        self._wav_path = Path(wav_path)

    @property
    def path(self) -> Path:
        return self._wav_path

    def _read(self) -> AudioBuffer:
        with wave.open(str(self._wav_path), "rb") as wf:
            sr = wf.getframerate()
            n_channels = wf.getnchannels()
            sampwidth = wf.getsampwidth()
            if sampwidth != 2:
                raise ValueError(f"Only 16-bit WAV supported, got sampwidth={sampwidth}")
            frames = wf.readframes(wf.getnframes())

        audio = np.frombuffer(frames, dtype=np.int16).astype(np.float32) / 32768.0
        if n_channels > 1:
            audio = audio.reshape(-1, n_channels).mean(axis=1)
        logger.debug(f"Read {len(audio)} samples at {sr} Hz from {self._wav_path}")
        return AudioBuffer(samples=audio.astype(np.float32, copy=False), sample_rate=sr)

    async def get_buffer(self) -> AudioBuffer:
        return await asyncio.to_thread(self._read)


def write_wav(wav_path: str | Path, buffer: AudioBuffer) -> Path:
    """Write a buffer as int16 PCM WAV."""
    wav_path = Path(wav_path)
    wav_path.parent.mkdir(parents=True, exist_ok=True)

    clipped = np.clip(np.asarray(buffer.samples, dtype=np.float32), -1.0, 1.0)
    audio_i16 = (clipped * 32767.0).astype(np.int16)

    with wave.open(str(wav_path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)  # int16
        wf.setframerate(buffer.sample_rate)
        wf.writeframes(audio_i16.tobytes())

    return wav_path
