"""
Tests for the VoiceOrchestrator facade and the one-turn voice pipeline.
"""

import asyncio
from pathlib import Path
from typing import Any

import numpy as np
import pytest

from voice_orchestrator.backends.base import Backend, ModelHandle
from voice_orchestrator.config import Settings
from voice_orchestrator.errors import CapabilityUnavailableError, ConfigurationError
from voice_orchestrator.orchestrator.capability_probe import CapabilityProbe
from voice_orchestrator.orchestrator.voice_orchestrator import VoiceOrchestrator, build_logical_specs
from voice_orchestrator.prompts import ModelFamily, classify_family
from voice_orchestrator.schemas import STT_KEY, TEXTGEN_KEY, Capability, StreamEventType, TaskKind
from voice_orchestrator.voice.audio_source import AudioBuffer
from voice_orchestrator.voice.pipeline import VoiceTurnPipeline


def _settings(**overrides: Any) -> Settings:
    values = dict(
        remote_api_enabled=False,
        word_delay_s=0.0,
        sentence_delay_s=0.0,
        fast_word_delay_s=0.0,
        fast_sentence_delay_s=0.0,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


class EchoHandle(ModelHandle):
    async def invoke(self, model_input: Any, **params: Any) -> str:
        if self.task == TaskKind.SPEECH_TO_TEXT:
            return " what time is it "
        return f"{model_input} It is noon. Anything else?<|user|>"


class EchoBackend(Backend):
    def __init__(self, capability: Capability) -> None:
        self.capability = capability
        self.loaded: list[str] = []
        self.closed = False

    async def load(self, spec, identifier, on_progress=None) -> ModelHandle:
        self.loaded.append(identifier)
        family = classify_family(identifier) if spec.task == TaskKind.TEXT_GENERATION else ModelFamily.GENERIC
        return EchoHandle(
            logical_key=spec.key,
            identifier=identifier,
            backend=self.capability,
            task=spec.task,
            family=family,
        )

    async def close(self) -> None:
        self.closed = True


class GatedBackend(EchoBackend):
    """Blocks inside load until released."""

    def __init__(self, capability: Capability) -> None:
        super().__init__(capability)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def load(self, spec, identifier, on_progress=None) -> ModelHandle:
        self.entered.set()
        await self.release.wait()
        return await super().load(spec, identifier, on_progress)


class CountingProbe(CapabilityProbe):
    def __init__(self) -> None:
        super().__init__(
            portable_check=lambda: True,
            accelerator_check=lambda: False,
            specialized_check=lambda: False,
            remote_enabled=False,
        )
        self.calls = 0

    async def probe(self):
        self.calls += 1
        return await super().probe()


class FakeSource:
    async def get_buffer(self) -> AudioBuffer:
        return AudioBuffer(samples=np.zeros(8000, dtype=np.float32))


class FakeTTS:
    def __init__(self, fail: bool = False) -> None:
        self.spoken: list[str] = []
        self.fail = fail

    async def synthesize(self, text: str, wav_path) -> Path:
        if self.fail:
            raise RuntimeError("piper CLI not found")
        self.spoken.append(text)
        return Path(wav_path)


@pytest.fixture
def backends() -> dict[Capability, EchoBackend]:
    return {c: EchoBackend(c) for c in (Capability.PORTABLE_BYTECODE, Capability.BASELINE_CPU)}


@pytest.fixture
def probe() -> CountingProbe:
    return CountingProbe()


@pytest.fixture
def orchestrator(backends, probe) -> VoiceOrchestrator:
    return VoiceOrchestrator(_settings(), backends=backends, probe=probe)


class TestVoiceOrchestrator:
    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, orchestrator: VoiceOrchestrator, probe: CountingProbe) -> None:
        await orchestrator.initialize()
        await orchestrator.initialize()

        assert probe.calls == 1
        assert orchestrator.is_initialized

    @pytest.mark.asyncio
    async def test_load_and_infer(self, orchestrator: VoiceOrchestrator, backends) -> None:
        assert await orchestrator.load_model(TEXTGEN_KEY) is True

        reply = await orchestrator.infer(TEXTGEN_KEY, "What time is it?")

        assert reply == "It is noon. Anything else?"
        assert backends[Capability.PORTABLE_BYTECODE].loaded == ["TinyLlama/TinyLlama-1.1B-Chat-v1.0"]

    @pytest.mark.asyncio
    async def test_stream(self, orchestrator: VoiceOrchestrator) -> None:
        await orchestrator.load_model(TEXTGEN_KEY)

        events = [e async for e in orchestrator.stream(TEXTGEN_KEY, "Time?")]

        sentences = [e.text for e in events if e.type == StreamEventType.SENTENCE]
        assert sentences == ["It is noon.", "Anything else?"]
        assert events[-1].is_complete

    @pytest.mark.asyncio
    async def test_transcribe(self, orchestrator: VoiceOrchestrator) -> None:
        await orchestrator.load_model(STT_KEY)

        assert await orchestrator.transcribe(FakeSource()) == "what time is it"

    @pytest.mark.asyncio
    async def test_status(self, orchestrator: VoiceOrchestrator) -> None:
        await orchestrator.load_model(TEXTGEN_KEY)

        status = await orchestrator.get_status()

        assert status.models[TEXTGEN_KEY].loaded is True
        assert status.models[TEXTGEN_KEY].backend == Capability.PORTABLE_BYTECODE
        assert status.models[STT_KEY].loaded is False
        assert status.available_capabilities == [Capability.PORTABLE_BYTECODE, Capability.BASELINE_CPU]
        assert status.current_backend == Capability.PORTABLE_BYTECODE
        assert status.remote_api_available is False

    @pytest.mark.asyncio
    async def test_unknown_key(self, orchestrator: VoiceOrchestrator) -> None:
        with pytest.raises(ConfigurationError):
            await orchestrator.load_model("translation")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["hardware-accelerated", "quantum"])
    async def test_switch_to_unsupported_backend_changes_nothing(
        self, orchestrator: VoiceOrchestrator, name: str
    ) -> None:
        await orchestrator.load_model(TEXTGEN_KEY)
        handle = orchestrator.loader.get_handle(TEXTGEN_KEY)
        before = await orchestrator.get_status()

        with pytest.raises(CapabilityUnavailableError):
            await orchestrator.switch_backend(name)

        after = await orchestrator.get_status()
        assert handle.ready
        assert after.current_backend == before.current_backend
        assert after.models == before.models

    @pytest.mark.asyncio
    async def test_switch_backend_unloads_then_routes_loads(self, orchestrator: VoiceOrchestrator) -> None:
        await orchestrator.load_model(TEXTGEN_KEY)
        old = orchestrator.loader.get_handle(TEXTGEN_KEY)

        await orchestrator.switch_backend("baseline-cpu")

        assert not old.ready
        assert orchestrator.loader.get_handle(TEXTGEN_KEY) is None

        await orchestrator.load_model(TEXTGEN_KEY)
        status = await orchestrator.get_status()
        assert status.current_backend == Capability.BASELINE_CPU
        assert status.models[TEXTGEN_KEY].backend == Capability.BASELINE_CPU

    @pytest.mark.asyncio
    async def test_switch_keeps_speech_to_text_on_a_device(self) -> None:
        backends = {c: EchoBackend(c) for c in Capability if c != Capability.HARDWARE_ACCELERATED}
        probe = CapabilityProbe(
            portable_check=lambda: True,
            accelerator_check=lambda: False,
            specialized_check=lambda: True,
            remote_enabled=True,
        )
        orchestrator = VoiceOrchestrator(
            _settings(textgen_model_id="google/gemma-3-1b-it"), backends=backends, probe=probe
        )

        for name in ("remote-api", "specialized-runtime"):
            await orchestrator.switch_backend(name)
            await orchestrator.load_model(STT_KEY)
            await orchestrator.load_model(TEXTGEN_KEY)

            status = await orchestrator.get_status()
            assert status.models[STT_KEY].backend == Capability.PORTABLE_BYTECODE
            assert status.models[TEXTGEN_KEY].backend == Capability(name)

        assert backends[Capability.REMOTE_API].loaded == ["google/gemma-3-1b-it"]
        assert backends[Capability.SPECIALIZED_RUNTIME].loaded == ["google/gemma-3-1b-it"]

    @pytest.mark.asyncio
    async def test_switch_drops_load_already_in_flight(self, backends, probe) -> None:
        gated = GatedBackend(Capability.PORTABLE_BYTECODE)
        backends[Capability.PORTABLE_BYTECODE] = gated
        orchestrator = VoiceOrchestrator(_settings(), backends=backends, probe=probe)

        load_task = asyncio.create_task(orchestrator.load_model(TEXTGEN_KEY))
        await gated.entered.wait()
        switch_task = asyncio.create_task(orchestrator.switch_backend("baseline-cpu"))
        await asyncio.sleep(0)
        gated.release.set()
        await load_task
        await switch_task

        status = await orchestrator.get_status()
        assert status.current_backend == Capability.BASELINE_CPU
        assert status.models[TEXTGEN_KEY].loaded is False
        assert orchestrator.loader.get_handle(TEXTGEN_KEY) is None

        await orchestrator.load_model(TEXTGEN_KEY)
        assert orchestrator.loader.get_handle(TEXTGEN_KEY).backend == Capability.BASELINE_CPU

    @pytest.mark.asyncio
    async def test_benchmark_uses_default_iterations(self, backends, probe) -> None:
        orchestrator = VoiceOrchestrator(_settings(benchmark_iterations=3), backends=backends, probe=probe)
        await orchestrator.load_model(TEXTGEN_KEY)

        stats = await orchestrator.benchmark(TEXTGEN_KEY)

        assert stats.iterations == 3
        assert len(stats.samples) == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("iterations", [0, -2])
    async def test_benchmark_rejects_non_positive_iterations(
        self, orchestrator: VoiceOrchestrator, iterations: int
    ) -> None:
        await orchestrator.load_model(TEXTGEN_KEY)

        with pytest.raises(ValueError, match="at least 1"):
            await orchestrator.benchmark(TEXTGEN_KEY, iterations)

    @pytest.mark.asyncio
    async def test_close_releases_everything(self, orchestrator: VoiceOrchestrator, backends) -> None:
        await orchestrator.load_model(TEXTGEN_KEY)
        handle = orchestrator.loader.get_handle(TEXTGEN_KEY)

        await orchestrator.close()

        assert not handle.ready
        assert all(b.closed for b in backends.values())

    def test_logical_specs_from_settings(self) -> None:
        specs = build_logical_specs(_settings(textgen_model_id="google/gemma-3-1b-it", stt_preferred_backend="baseline-cpu"))

        assert specs[TEXTGEN_KEY].identifier == "google/gemma-3-1b-it"
        assert specs[STT_KEY].task == TaskKind.SPEECH_TO_TEXT
        assert specs[STT_KEY].preferred_backend == Capability.BASELINE_CPU


class TestVoiceTurnPipeline:
    @pytest.mark.asyncio
    async def test_sentences_are_spoken_as_they_stream(self, orchestrator: VoiceOrchestrator, tmp_path) -> None:
        await orchestrator.load_model(STT_KEY)
        await orchestrator.load_model(TEXTGEN_KEY)
        tts = FakeTTS()
        seen: list[str] = []

        pipeline = VoiceTurnPipeline(orchestrator, tts=tts, out_dir=tmp_path)
        turn = await pipeline.run_turn(FakeSource(), on_event=lambda e: seen.append(e.type.value))

        assert turn.transcript == "what time is it"
        assert turn.reply == "It is noon. Anything else?"
        assert tts.spoken == ["It is noon.", "Anything else?"]
        assert len(turn.wavs) == 2
        assert seen[-1] == "complete"

    @pytest.mark.asyncio
    async def test_missing_tts_degrades_to_text(self, orchestrator: VoiceOrchestrator, tmp_path) -> None:
        await orchestrator.load_model(STT_KEY)
        await orchestrator.load_model(TEXTGEN_KEY)

        pipeline = VoiceTurnPipeline(orchestrator, tts=FakeTTS(fail=True), out_dir=tmp_path)
        turn = await pipeline.run_turn(FakeSource())

        assert turn.reply == "It is noon. Anything else?"
        assert turn.sentences == ["It is noon.", "Anything else?"]
        assert turn.wavs == []
