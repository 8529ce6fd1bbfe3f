import numpy as np
import pytest

from voice_orchestrator.voice.audio_source import AudioBuffer, WavFileAudioSource, write_wav
from voice_orchestrator.voice.tts import PiperTTS, TTSConfig


@pytest.mark.asyncio
async def test_wav_source_reads_mono_float32(tmp_path):
    samples = np.linspace(-0.5, 0.5, 1600, dtype=np.float32)
    path = write_wav(tmp_path / "clip.wav", AudioBuffer(samples=samples, sample_rate=16000))

    buffer = await WavFileAudioSource(path).get_buffer()

    assert buffer.sample_rate == 16000
    assert buffer.samples.dtype == np.float32
    assert buffer.duration == pytest.approx(0.1)
    assert np.allclose(buffer.samples, samples, atol=1e-3)


def test_silence_buffer():
    buffer = AudioBuffer.silence(5.0)

    assert buffer.duration == pytest.approx(5.0)
    assert not buffer.samples.any()


def test_piper_unavailable_is_reported(monkeypatch):
    monkeypatch.setattr("voice_orchestrator.voice.tts.shutil.which", lambda _: None)

    ok, reason = PiperTTS(TTSConfig(model_path="/tmp/voice.onnx")).is_available()

    assert ok is False
    assert "piper CLI not found" in reason


@pytest.mark.asyncio
async def test_piper_requires_voice_model(monkeypatch, tmp_path):
    monkeypatch.setattr("voice_orchestrator.voice.tts.shutil.which", lambda _: "/usr/local/bin/piper")

    with pytest.raises(RuntimeError, match="PIPER_MODEL"):
        await PiperTTS(TTSConfig()).synthesize("Hello.", tmp_path / "out.wav")
