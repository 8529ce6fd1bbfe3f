"""Voice glue.

Audio input, Piper speech output and the one-turn pipeline:

audio source -> STT -> text generation -> TTS
"""

from voice_orchestrator.voice.audio_source import (
    AudioBuffer,
    AudioSource,
    WavFileAudioSource,
    write_wav,
)
from voice_orchestrator.voice.pipeline import VoiceTurn, VoiceTurnPipeline
from voice_orchestrator.voice.tts import PiperTTS, SpeechSynthesizer, TTSConfig

__all__ = [
    "AudioBuffer",
    "AudioSource",
    "WavFileAudioSource",
    "write_wav",
    "VoiceTurn",
    "VoiceTurnPipeline",
    "PiperTTS",
    "SpeechSynthesizer",
    "TTSConfig",
]
