"""
Model loading with cascading fallback.

The ModelLoader owns the registry of ready handles, one per logical key.
Loads move a key through idle -> loading -> ready | failed. When the
specialized runtime cannot serve a model, the loader walks the key's
FallbackPlan one identifier at a time; a hardware-accelerated failure is
retried once on the next device down.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping

from voice_orchestrator.backends.base import Backend, ModelHandle, ProgressCallback, report_progress
from voice_orchestrator.errors import (
    AggregateFallbackError,
    CapabilityUnavailableError,
    ConfigurationError,
    FallbackAttempt,
)
from voice_orchestrator.orchestrator.backend_selector import BackendSelector
from voice_orchestrator.orchestrator.fallback import FallbackPlan, build_fallback_plan
from voice_orchestrator.schemas import Capability, LoadState, LogicalModelSpec, ModelStatus

logger = logging.getLogger(__name__)


class ModelLoader:
    """
    Loads logical models onto backends and keeps the handle registry.

    The registry is written only here; the runner and the benchmark harness
    borrow handles through get_handle().
    """

    def __init__(
        self,
        backends: Mapping[Capability, Backend],
        selector: BackendSelector,
        specs: Mapping[str, LogicalModelSpec],
        plans: Mapping[str, FallbackPlan] | None = None,
    ) -> None:
        """
        Initialize the loader.

        Args:
            backends: Backend instance per capability. Capabilities missing
                from the mapping are treated as unavailable.
            selector: Backend selection policy.
            specs: Configured logical models by key.
            plans: Fallback plan per key; built from the model family when
                omitted.
        """
        self._backends = dict(backends)
        self._selector = selector
        self._specs = dict(specs)
        self._plans = dict(plans or {})

        self._handles: dict[str, ModelHandle] = {}
        self._active_specs: dict[str, LogicalModelSpec] = {}
        self._states: dict[str, LoadState] = {key: LoadState.IDLE for key in self._specs}
        self._fallback_active: dict[str, bool] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def keys(self) -> list[str]:
        return list(self._specs)

    @property
    def selector(self) -> BackendSelector:
        return self._selector

    def spec(self, logical_key: str) -> LogicalModelSpec:
        """Configured spec for a key (never mutated by a cascade)."""
        try:
            return self._specs[logical_key]
        except KeyError:
            raise ConfigurationError(f"Unknown logical model key: {logical_key!r}") from None

    def active_spec(self, logical_key: str) -> LogicalModelSpec | None:
        """Spec of the currently registered handle, with the identifier actually loaded."""
        return self._active_specs.get(logical_key)

    def state(self, logical_key: str) -> LoadState:
        self.spec(logical_key)
        return self._states.get(logical_key, LoadState.IDLE)

    def plan(self, logical_key: str) -> FallbackPlan:
        plan = self._plans.get(logical_key)
        if plan is None:
            plan = build_fallback_plan(self.spec(logical_key))
            self._plans[logical_key] = plan
        return plan

    def get_handle(self, logical_key: str) -> ModelHandle | None:
        handle = self._handles.get(logical_key)
        if handle is not None and handle.ready:
            return handle
        return None

    def handles(self) -> dict[str, ModelHandle]:
        return {key: h for key, h in self._handles.items() if h.ready}

    def status(self, logical_key: str) -> ModelStatus:
        handle = self.get_handle(logical_key)
        return ModelStatus(
            loaded=handle is not None,
            state=self.state(logical_key),
            backend=handle.backend if handle else None,
            identifier=handle.identifier if handle else None,
            fallback_active=self._fallback_active.get(logical_key, False) if handle else False,
            details=handle.describe() if handle else {},
        )

    async def load(
        self,
        logical_key: str,
        on_progress: ProgressCallback | None = None,
        override: Capability | None = None,
    ) -> ModelHandle:
        """
        Load a logical model and register its handle.

        Args:
            logical_key: Key of the logical model.
            on_progress: Optional (percent, message) callback; -1 signals failure.
            override: Backend to prefer over the spec's own preference.

        Returns:
            The registered, ready handle.

        Raises:
            ConfigurationError: If the key is unknown.
            AggregateFallbackError: If the specialized runtime and every
                fallback candidate failed.
            LoadError: If a non-cascading load failed.
        """
        spec = self.spec(logical_key)

        async with self._lock(logical_key):
            await self._release(logical_key)
            self._states[logical_key] = LoadState.LOADING

            capability = self._selector.select_backend(
                logical_key,
                spec.identifier,
                explicit_override=override or spec.preferred_backend,
                task=spec.task,
            )
            logger.info(f"Loading {logical_key} ({spec.identifier}) on {capability.value}")

            fallback_active = False
            try:
                try:
                    handle = await self._load_with_downgrade(spec, spec.identifier, capability, on_progress)
                except Exception as primary:
                    if capability != Capability.SPECIALIZED_RUNTIME:
                        raise
                    logger.warning(f"Specialized runtime failed for {spec.identifier}: {primary}")
                    report_progress(on_progress, 0, "Specialized runtime unavailable, trying fallback models...")
                    handle = await self._cascade(spec, primary, on_progress)
                    fallback_active = True
            except Exception as e:
                self._states[logical_key] = LoadState.FAILED
                logger.error(f"Failed to load {logical_key}: {e}")
                report_progress(on_progress, -1, f"Failed to load {logical_key}: {e}")
                raise

            self._register(spec, handle, fallback_active)
            report_progress(on_progress, 100, f"{logical_key} ready ({handle.backend.value})")
            return handle

    def _lock(self, logical_key: str) -> asyncio.Lock:
        return self._locks.setdefault(logical_key, asyncio.Lock())

    async def _direct_load(
        self,
        spec: LogicalModelSpec,
        identifier: str,
        capability: Capability,
        on_progress: ProgressCallback | None,
    ) -> ModelHandle:
        backend = self._backends.get(capability)
        if backend is None:
            raise CapabilityUnavailableError(
                f"No backend registered for {capability.value}",
                capability=capability.value,
            )
        return await backend.load(spec, identifier, on_progress)

    async def _load_with_downgrade(
        self,
        spec: LogicalModelSpec,
        identifier: str,
        capability: Capability,
        on_progress: ProgressCallback | None,
    ) -> ModelHandle:
        try:
            return await self._direct_load(spec, identifier, capability, on_progress)
        except Exception as e:
            if capability != Capability.HARDWARE_ACCELERATED:
                raise
            target = self._selector.downgrade_target()
            logger.warning(
                f"Hardware-accelerated load of {identifier} failed ({e}); retrying on {target.value}"
            )
            report_progress(on_progress, 0, f"Retrying {spec.key} on {target.value}...")
            return await self._direct_load(spec, identifier, target, on_progress)

    async def _cascade(
        self,
        spec: LogicalModelSpec,
        primary_error: BaseException,
        on_progress: ProgressCallback | None,
    ) -> ModelHandle:
        plan = self.plan(spec.key)
        attempts: list[FallbackAttempt] = []
        total = len(plan.identifiers)

        for index, identifier in enumerate(plan.identifiers, start=1):
            is_emergency = identifier == plan.emergency and index == total
            label = "emergency fallback" if is_emergency else f"fallback {index}/{len(plan.candidates)}"
            report_progress(on_progress, 0, f"Trying {label}: {identifier}")

            capability = self._selector.select_backend(spec.key, identifier, task=spec.task)
            try:
                handle = await self._load_with_downgrade(spec, identifier, capability, on_progress)
            except Exception as e:
                logger.warning(f"Fallback {identifier} failed on {capability.value}: {e}")
                attempts.append(FallbackAttempt(identifier=identifier, error=e))
                continue

            logger.info(f"Fallback succeeded for {spec.key}: {identifier} on {handle.backend.value}")
            return handle

        raise AggregateFallbackError(spec.key, attempts, primary_error=primary_error) from primary_error

    def _register(self, spec: LogicalModelSpec, handle: ModelHandle, fallback_active: bool) -> None:
        key = spec.key
        if handle.identifier != spec.identifier:
            self._active_specs[key] = spec.model_copy(update={"identifier": handle.identifier})
        else:
            self._active_specs[key] = spec
        self._handles[key] = handle
        self._fallback_active[key] = fallback_active
        self._states[key] = LoadState.READY
        logger.info(f"{key} ready: {handle!r} (fallback_active={fallback_active})")

    async def _release(self, logical_key: str) -> None:
        handle = self._handles.pop(logical_key, None)
        self._active_specs.pop(logical_key, None)
        self._fallback_active.pop(logical_key, None)
        if handle is None:
            return
        handle.invalidate()
        try:
            await handle.close()
        except Exception as e:
            logger.warning(f"Error closing previous handle for {logical_key}: {e}")

    async def unload(self, logical_key: str) -> None:
        """
        Invalidate and drop the handle for a key; the key returns to idle.

        Waits for a load of the same key that is already running, so its
        result is released too.
        """
        self.spec(logical_key)
        async with self._lock(logical_key):
            await self._release(logical_key)
            self._states[logical_key] = LoadState.IDLE
        logger.info(f"Unloaded {logical_key}")

    async def unload_all(self) -> None:
        for key in list(self._specs):
            await self.unload(key)
