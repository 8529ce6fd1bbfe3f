"""
Voice orchestrator.

Facade exposed to the application layer. It wires capability detection,
backend selection, model loading, inference and benchmarking together and
owns their lifecycle.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Mapping

from voice_orchestrator.backends.base import Backend, ProgressCallback
from voice_orchestrator.backends.llama_cpp_backend import LlamaCppBackend
from voice_orchestrator.backends.remote import RemoteAPIBackend
from voice_orchestrator.backends.transformers_backend import TransformersBackend
from voice_orchestrator.config import Settings
from voice_orchestrator.errors import CapabilityUnavailableError
from voice_orchestrator.orchestrator.backend_selector import BackendSelector, SelectionPolicy
from voice_orchestrator.orchestrator.benchmark import BenchmarkHarness
from voice_orchestrator.orchestrator.capability_probe import CapabilityProbe
from voice_orchestrator.orchestrator.fallback import FallbackPlan
from voice_orchestrator.orchestrator.inference_runner import InferenceOptions, InferenceRunner
from voice_orchestrator.orchestrator.model_loader import ModelLoader
from voice_orchestrator.orchestrator.streaming import StreamCallback
from voice_orchestrator.schemas import (
    DEVICE_CAPABILITIES,
    BenchmarkStats,
    Capability,
    CapabilityReport,
    LogicalModelSpec,
    OrchestratorStatus,
    Pacing,
    STT_KEY,
    TEXTGEN_KEY,
    StreamEvent,
    TaskKind,
)
from voice_orchestrator.voice.audio_source import AudioSource

logger = logging.getLogger(__name__)


def build_logical_specs(settings: Settings) -> dict[str, LogicalModelSpec]:
    """Logical models configured in settings, keyed by logical key."""

    def _backend(name: str | None) -> Capability | None:
        return Capability(name) if name else None

    return {
        STT_KEY: LogicalModelSpec(
            key=STT_KEY,
            identifier=settings.stt_model_id,
            task=TaskKind.SPEECH_TO_TEXT,
            preferred_backend=_backend(settings.stt_preferred_backend),
            precision=settings.stt_precision,
        ),
        TEXTGEN_KEY: LogicalModelSpec(
            key=TEXTGEN_KEY,
            identifier=settings.textgen_model_id,
            task=TaskKind.TEXT_GENERATION,
            preferred_backend=_backend(settings.textgen_preferred_backend),
            precision=settings.textgen_precision,
        ),
    }


def build_backends(settings: Settings) -> dict[Capability, Backend]:
    """Concrete backend per capability. Engines are only imported on load."""
    backends: dict[Capability, Backend] = {
        capability: TransformersBackend(capability, cache_dir=settings.model_cache_dir)
        for capability in DEVICE_CAPABILITIES
    }
    backends[Capability.SPECIALIZED_RUNTIME] = LlamaCppBackend(
        init_timeout_s=settings.specialized_init_timeout_s,
        download_timeout_s=settings.specialized_download_timeout_s,
        n_ctx=settings.specialized_n_ctx,
        n_gpu_layers=settings.specialized_n_gpu_layers,
        cache_dir=settings.model_cache_dir,
    )
    if settings.remote_api_enabled:
        backends[Capability.REMOTE_API] = RemoteAPIBackend(
            settings.remote_api_base_url,
            settings.remote_api_model,
            max_tokens=settings.remote_api_max_tokens,
            temperature=settings.remote_api_temperature,
            timeout=settings.remote_api_timeout,
        )
    return backends


class VoiceOrchestrator:
    """
    Entry point for speech recognition and text generation.

    Usage:
        orchestrator = VoiceOrchestrator(get_settings())
        await orchestrator.initialize()
        await orchestrator.load_model("text-generation")
        reply = await orchestrator.infer("text-generation", "Hello!")
    """

    def __init__(
        self,
        settings: Settings,
        *,
        backends: Mapping[Capability, Backend] | None = None,
        probe: CapabilityProbe | None = None,
        fallback_plans: Mapping[str, FallbackPlan] | None = None,
        specs: Mapping[str, LogicalModelSpec] | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            settings: Application settings.
            backends: Backend per capability (built from settings if omitted).
            probe: Capability probe (default checks the real environment).
            fallback_plans: Fallback plan per logical key.
            specs: Logical models (built from settings if omitted).
        """
        self._settings = settings
        self._backends = dict(backends) if backends is not None else build_backends(settings)
        self._probe = probe or CapabilityProbe(remote_enabled=settings.remote_api_enabled)
        self._fallback_plans = dict(fallback_plans or {})
        self._specs = dict(specs) if specs is not None else build_logical_specs(settings)

        self._init_lock = asyncio.Lock()
        self._report: CapabilityReport | None = None
        self._loader: ModelLoader | None = None
        self._runner: InferenceRunner | None = None
        self._harness: BenchmarkHarness | None = None
        self._override: Capability | None = None

    @property
    def is_initialized(self) -> bool:
        return self._report is not None

    @property
    def capabilities(self) -> CapabilityReport | None:
        return self._report

    @property
    def loader(self) -> ModelLoader:
        if self._loader is None:
            raise RuntimeError("VoiceOrchestrator.initialize() has not been awaited")
        return self._loader

    async def initialize(self) -> None:
        """Probe the environment and build the pipeline. Safe to await repeatedly."""
        async with self._init_lock:
            if self._report is not None:
                return

            report = await self._probe.probe()
            selector = BackendSelector(report, SelectionPolicy.from_settings(self._settings))
            self._loader = ModelLoader(self._backends, selector, self._specs, self._fallback_plans)
            self._runner = InferenceRunner(
                self._loader,
                max_new_tokens=self._settings.max_new_tokens,
                pacing={
                    "standard": Pacing(
                        word_delay_s=self._settings.word_delay_s,
                        sentence_delay_s=self._settings.sentence_delay_s,
                    ),
                    "fast": Pacing(
                        word_delay_s=self._settings.fast_word_delay_s,
                        sentence_delay_s=self._settings.fast_sentence_delay_s,
                    ),
                },
            )
            self._harness = BenchmarkHarness(self._runner, self._loader)
            self._report = report
            logger.info(f"Voice orchestrator initialized (best device: {report.best.value})")

    async def _ready(self) -> tuple[ModelLoader, InferenceRunner]:
        await self.initialize()
        if self._loader is None or self._runner is None:
            raise RuntimeError("Voice orchestrator failed to initialize")
        return self._loader, self._runner

    def _require_report(self) -> CapabilityReport:
        if self._report is None:
            raise RuntimeError("VoiceOrchestrator.initialize() has not been awaited")
        return self._report

    async def load_model(self, logical_key: str, on_progress: ProgressCallback | None = None) -> bool:
        """
        Load a logical model, falling back as needed.

        Raises:
            ConfigurationError: If the key is unknown.
            LoadError: If every option failed (AggregateFallbackError after a cascade).
        """
        loader, _ = await self._ready()
        await loader.load(logical_key, on_progress=on_progress, override=self._override)
        return True

    async def unload_model(self, logical_key: str) -> None:
        loader, _ = await self._ready()
        await loader.unload(logical_key)

    async def infer(
        self,
        logical_key: str,
        model_input: Any,
        *,
        stream_callback: StreamCallback | None = None,
        max_new_tokens: int | None = None,
        system_prompt: str | None = None,
    ) -> str:
        """Run one request; with a stream_callback the reply is also streamed."""
        _, runner = await self._ready()
        options = InferenceOptions(
            stream_callback=stream_callback,
            max_new_tokens=max_new_tokens,
            system_prompt=system_prompt,
        )
        return await runner.run(logical_key, model_input, options)

    async def stream(
        self,
        logical_key: str,
        prompt: str,
        *,
        max_new_tokens: int | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield the reply to a prompt as word, sentence and complete events."""
        _, runner = await self._ready()
        async for event in runner.stream(logical_key, prompt, InferenceOptions(max_new_tokens=max_new_tokens)):
            yield event

    async def transcribe(self, source: AudioSource) -> str:
        """Pull one buffer from an audio source and transcribe it."""
        buffer = await source.get_buffer()
        logger.info(f"Transcribing {buffer.duration:.2f}s of audio")
        return await self.infer(STT_KEY, buffer)

    async def get_status(self) -> OrchestratorStatus:
        loader, _ = await self._ready()
        report = self._require_report()
        return OrchestratorStatus(
            models={key: loader.status(key) for key in loader.keys},
            available_capabilities=list(report.available),
            current_backend=self._override or report.best,
            specialized_runtime_available=report.has(Capability.SPECIALIZED_RUNTIME),
            remote_api_available=report.has(Capability.REMOTE_API),
        )

    async def benchmark(self, logical_key: str, iterations: int | None = None) -> BenchmarkStats:
        """
        Time repeated requests against a loaded model.

        Raises:
            ValueError: If iterations is given and below 1.
            NotLoadedError: If the key has no ready handle.
        """
        if iterations is None:
            iterations = self._settings.benchmark_iterations
        elif iterations < 1:
            raise ValueError(f"iterations must be at least 1, got {iterations}")
        await self._ready()
        if self._harness is None:
            raise RuntimeError("Voice orchestrator failed to initialize")
        return await self._harness.run(logical_key, iterations)

    async def switch_backend(self, name: str | Capability) -> bool:
        """
        Route subsequent loads to a backend.

        Every loaded model is unloaded, including loads still in flight;
        callers reload what they need. A model the backend cannot serve (for
        example speech-to-text on the remote API) keeps automatic selection.

        Raises:
            CapabilityUnavailableError: If the backend is unknown or not
                available here. State is left untouched in that case.
        """
        loader, _ = await self._ready()
        report = self._require_report()
        try:
            capability = Capability(name)
        except ValueError:
            raise CapabilityUnavailableError(f"Backend {name} is not supported", capability=str(name)) from None
        if not report.has(capability):
            raise CapabilityUnavailableError(
                f"Backend {capability.value} is not available in this environment",
                capability=capability.value,
            )

        previous = self._override or report.best
        # Route new loads first; unload_all then waits out loads already running.
        self._override = capability
        await loader.unload_all()
        logger.info(f"Switched from {previous.value} to {capability.value} backend")
        return True

    async def close(self) -> None:
        """Unload every model and release backend resources."""
        if self._loader is not None:
            await self._loader.unload_all()
        for backend in self._backends.values():
            try:
                await backend.close()
            except Exception as e:
                logger.warning(f"Error closing {backend.capability.value} backend: {e}")
        logger.info("Voice orchestrator closed")
