"""
Tests for the model loader and its fallback cascade.
"""

import asyncio
import time
from typing import Any

import pytest

from voice_orchestrator.backends.base import Backend, ModelHandle
from voice_orchestrator.backends.llama_cpp_backend import LlamaCppBackend
from voice_orchestrator.errors import (
    AggregateFallbackError,
    ConfigurationError,
    LoadError,
    LoadTimeoutError,
)
from voice_orchestrator.orchestrator.backend_selector import BackendSelector
from voice_orchestrator.orchestrator.fallback import FallbackPlan, build_fallback_plan
from voice_orchestrator.orchestrator.model_loader import ModelLoader
from voice_orchestrator.prompts import classify_family
from voice_orchestrator.schemas import Capability, CapabilityReport, LoadState, LogicalModelSpec, TaskKind

KEY = "text-generation"


class FakeHandle(ModelHandle):
    async def invoke(self, model_input: Any, **params: Any) -> str:
        return "ok"


class FakeBackend(Backend):
    def __init__(self, capability: Capability, log: list[tuple[Capability, str]], failing: set[str]) -> None:
        self.capability = capability
        self._log = log
        self._failing = failing

    async def load(self, spec, identifier, on_progress=None) -> ModelHandle:
        self._log.append((self.capability, identifier))
        if identifier in self._failing or self.capability.value in self._failing:
            raise LoadError(f"{identifier} failed on {self.capability.value}", identifier=identifier)
        return FakeHandle(
            logical_key=spec.key,
            identifier=identifier,
            backend=self.capability,
            task=spec.task,
            family=classify_family(identifier),
        )


def _loader(
    identifier: str,
    failing: set[str],
    *,
    ranked=(Capability.PORTABLE_BYTECODE, Capability.BASELINE_CPU),
    plan: FallbackPlan | None = None,
    capabilities=None,
) -> tuple[ModelLoader, list[tuple[Capability, str]]]:
    log: list[tuple[Capability, str]] = []
    report = CapabilityReport(ranked=ranked, extras=frozenset({Capability.SPECIALIZED_RUNTIME}))
    caps = capabilities if capabilities is not None else list(Capability)
    backends = {c: FakeBackend(c, log, failing) for c in caps}
    spec = LogicalModelSpec(key=KEY, identifier=identifier, task=TaskKind.TEXT_GENERATION)
    plans = {KEY: plan} if plan else None
    return ModelLoader(backends, BackendSelector(report), {KEY: spec}, plans), log


ABC_PLAN = FallbackPlan(logical_key=KEY, candidates=("A", "B", "C"), emergency="E")


class TestCascade:
    @pytest.mark.asyncio
    async def test_specialized_success_needs_no_fallback(self) -> None:
        loader, log = _loader("google/gemma-3-1b-it", set(), plan=ABC_PLAN)

        handle = await loader.load(KEY)

        assert handle.backend == Capability.SPECIALIZED_RUNTIME
        assert log == [(Capability.SPECIALIZED_RUNTIME, "google/gemma-3-1b-it")]
        assert loader.state(KEY) == LoadState.READY
        assert loader.status(KEY).fallback_active is False

    @pytest.mark.asyncio
    async def test_candidates_tried_in_order_until_success(self) -> None:
        loader, log = _loader("google/gemma-3-1b-it", {"specialized-runtime", "A", "B"}, plan=ABC_PLAN)

        handle = await loader.load(KEY)

        assert [identifier for _, identifier in log[1:]] == ["A", "B", "C"]
        assert handle.identifier == "C"
        assert loader.status(KEY).fallback_active is True
        assert loader.active_spec(KEY).identifier == "C"
        # The configured spec is never rewritten.
        assert loader.spec(KEY).identifier == "google/gemma-3-1b-it"

    @pytest.mark.asyncio
    async def test_total_failure_lists_every_attempt(self) -> None:
        failing = {"specialized-runtime", "A", "B", "C", "E"}
        loader, log = _loader("google/gemma-3-1b-it", failing, plan=ABC_PLAN)
        progress: list[tuple[int, str]] = []

        with pytest.raises(AggregateFallbackError) as exc_info:
            await loader.load(KEY, on_progress=lambda p, m: progress.append((p, m)))

        err = exc_info.value
        assert [a.identifier for a in err.attempts] == ["A", "B", "C", "E"]
        assert len(err.errors) == 4
        assert isinstance(err.primary_error, LoadError)
        assert str(err).endswith("E failed on portable-bytecode")
        assert loader.state(KEY) == LoadState.FAILED
        assert loader.get_handle(KEY) is None
        assert progress[-1][0] == -1

    @pytest.mark.asyncio
    async def test_missing_specialized_backend_triggers_cascade(self) -> None:
        caps = [Capability.PORTABLE_BYTECODE, Capability.BASELINE_CPU]
        loader, log = _loader("google/gemma-3-1b-it", set(), plan=ABC_PLAN, capabilities=caps)

        handle = await loader.load(KEY)

        assert handle.identifier == "A"
        assert log == [(Capability.PORTABLE_BYTECODE, "A")]

    @pytest.mark.asyncio
    async def test_timeout_counts_as_backend_failure(self) -> None:
        loader, log = _loader("google/gemma-3-1b-it", set(), plan=ABC_PLAN)

        class SlowBackend(Backend):
            capability = Capability.SPECIALIZED_RUNTIME

            async def load(self, spec, identifier, on_progress=None) -> ModelHandle:
                raise LoadTimeoutError("init timed out", timeout_s=5.0)

        loader._backends[Capability.SPECIALIZED_RUNTIME] = SlowBackend()

        handle = await loader.load(KEY)

        assert handle.identifier == "A"

    @pytest.mark.asyncio
    async def test_runtime_init_timeout_moves_to_first_candidate(self) -> None:
        loader, log = _loader("google/gemma-3-1b-it", set(), plan=ABC_PLAN)

        class SlowRuntime(LlamaCppBackend):
            def _import_runtime(self):
                time.sleep(0.2)
                return object

        loader._backends[Capability.SPECIALIZED_RUNTIME] = SlowRuntime(init_timeout_s=0.01)

        handle = await loader.load(KEY)

        assert handle.identifier == "A"
        assert log == [(Capability.PORTABLE_BYTECODE, "A")]
        assert loader.status(KEY).fallback_active is True

    @pytest.mark.asyncio
    async def test_non_specialized_failure_does_not_cascade(self) -> None:
        loader, log = _loader("TinyLlama/TinyLlama-1.1B-Chat-v1.0", {"portable-bytecode"}, plan=ABC_PLAN)

        with pytest.raises(LoadError) as exc_info:
            await loader.load(KEY)

        assert not isinstance(exc_info.value, AggregateFallbackError)
        assert len(log) == 1


class TestDowngrade:
    @pytest.mark.asyncio
    async def test_accelerator_failure_retries_once_on_portable(self) -> None:
        ranked = (Capability.HARDWARE_ACCELERATED, Capability.PORTABLE_BYTECODE, Capability.BASELINE_CPU)
        loader, log = _loader("TinyLlama/TinyLlama-1.1B-Chat-v1.0", {"hardware-accelerated"}, ranked=ranked)

        handle = await loader.load(KEY)

        assert handle.backend == Capability.PORTABLE_BYTECODE
        assert [c for c, _ in log] == [Capability.HARDWARE_ACCELERATED, Capability.PORTABLE_BYTECODE]

    @pytest.mark.asyncio
    async def test_downgrade_without_portable_goes_to_cpu(self) -> None:
        ranked = (Capability.HARDWARE_ACCELERATED, Capability.BASELINE_CPU)
        loader, log = _loader("TinyLlama/TinyLlama-1.1B-Chat-v1.0", {"hardware-accelerated"}, ranked=ranked)

        handle = await loader.load(KEY)

        assert handle.backend == Capability.BASELINE_CPU


class TestRegistry:
    @pytest.mark.asyncio
    async def test_unknown_key_is_configuration_error(self) -> None:
        loader, _ = _loader("TinyLlama/TinyLlama-1.1B-Chat-v1.0", set())

        with pytest.raises(ConfigurationError):
            await loader.load("image-generation")

    @pytest.mark.asyncio
    async def test_reload_invalidates_previous_handle(self) -> None:
        loader, _ = _loader("TinyLlama/TinyLlama-1.1B-Chat-v1.0", set())

        first = await loader.load(KEY)
        second = await loader.load(KEY)

        assert not first.ready
        assert second.ready
        assert loader.get_handle(KEY) is second

    @pytest.mark.asyncio
    async def test_failing_progress_callback_is_ignored(self) -> None:
        loader, _ = _loader("TinyLlama/TinyLlama-1.1B-Chat-v1.0", set())

        def _bad_progress(percent: int, message: str) -> None:
            raise ValueError("UI went away")

        handle = await loader.load(KEY, on_progress=_bad_progress)

        assert handle.ready

    @pytest.mark.asyncio
    async def test_unload_returns_key_to_idle(self) -> None:
        loader, _ = _loader("TinyLlama/TinyLlama-1.1B-Chat-v1.0", set())
        handle = await loader.load(KEY)

        await loader.unload(KEY)

        assert not handle.ready
        assert loader.state(KEY) == LoadState.IDLE
        assert loader.status(KEY).loaded is False

    @pytest.mark.asyncio
    async def test_unload_waits_for_running_load(self) -> None:
        loader, _ = _loader("TinyLlama/TinyLlama-1.1B-Chat-v1.0", set())
        entered = asyncio.Event()
        release = asyncio.Event()
        portable = loader._backends[Capability.PORTABLE_BYTECODE]
        original_load = portable.load

        async def gated_load(spec, identifier, on_progress=None):
            entered.set()
            await release.wait()
            return await original_load(spec, identifier, on_progress)

        portable.load = gated_load
        load_task = asyncio.create_task(loader.load(KEY))
        await entered.wait()
        unload_task = asyncio.create_task(loader.unload(KEY))
        await asyncio.sleep(0)
        release.set()

        handle = await load_task
        await unload_task

        assert not handle.ready
        assert loader.get_handle(KEY) is None
        assert loader.state(KEY) == LoadState.IDLE


class TestFallbackPlan:
    def test_gemma_plan_from_family_table(self) -> None:
        spec = LogicalModelSpec(key=KEY, identifier="google/gemma-3-1b-it", task=TaskKind.TEXT_GENERATION)

        plan = build_fallback_plan(spec)

        assert plan.candidates[0] == "onnx-community/gemma-3-1b-it-ONNX"
        assert plan.emergency == "TinyLlama/TinyLlama-1.1B-Chat-v1.0"

    def test_plan_never_retries_configured_identifier(self) -> None:
        spec = LogicalModelSpec(
            key=KEY, identifier="TinyLlama/TinyLlama-1.1B-Chat-v1.0", task=TaskKind.TEXT_GENERATION
        )

        plan = build_fallback_plan(spec)

        assert plan.identifiers == ()

    def test_speech_to_text_plan(self) -> None:
        spec = LogicalModelSpec(
            key="speech-to-text", identifier="openai/whisper-base.en", task=TaskKind.SPEECH_TO_TEXT
        )

        plan = build_fallback_plan(spec)

        assert plan.identifiers == ("openai/whisper-tiny",)
