"""
Capability detection.

Probes the host once at startup and ranks the usable execution backends.
Absence of any capability is expressed by omission; probing never raises.
"""

from __future__ import annotations

import asyncio
import importlib.util
import inspect
import logging
from typing import Awaitable, Callable

from voice_orchestrator.backends.llama_cpp_backend import specialized_runtime_present
from voice_orchestrator.schemas import Capability, CapabilityReport

logger = logging.getLogger(__name__)

SyncCheck = Callable[[], bool]
AsyncCheck = Callable[[], "bool | Awaitable[bool]"]


def portable_runtime_present() -> bool:
    """Whether the ONNX Runtime execution engine is installed."""
    return importlib.util.find_spec("onnxruntime") is not None


def _cuda_device_available() -> bool:
    if importlib.util.find_spec("torch") is None:
        return False
    import torch  # type: ignore

    return bool(torch.cuda.is_available())


async def accelerator_available() -> bool:
    """Ask torch for a CUDA device without blocking the event loop."""
    return await asyncio.to_thread(_cuda_device_available)


class CapabilityProbe:
    """
    Detects which execution backends are usable and ranks them.

    Every check is injectable so tests (and unusual hosts) can describe the
    environment explicitly.
    """

    def __init__(
        self,
        *,
        portable_check: SyncCheck = portable_runtime_present,
        accelerator_check: AsyncCheck = accelerator_available,
        specialized_check: SyncCheck = specialized_runtime_present,
        remote_enabled: bool = True,
    ) -> None:
        """
        Initialize the probe.

        Args:
            portable_check: Synchronous check for the portable runtime.
            accelerator_check: Check (sync or async) for a hardware accelerator.
            specialized_check: Symbol lookup for the specialized runtime.
            remote_enabled: Whether the remote API is configured.
        """
        self._portable_check = portable_check
        self._accelerator_check = accelerator_check
        self._specialized_check = specialized_check
        self._remote_enabled = remote_enabled

    @staticmethod
    def _safe(check: SyncCheck, name: str) -> bool:
        try:
            return bool(check())
        except Exception as e:
            logger.info(f"{name} check failed, treating as unavailable: {e}")
            return False

    async def _accelerator(self) -> bool:
        try:
            result = self._accelerator_check()
            if inspect.isawaitable(result):
                result = await result
            return bool(result)
        except Exception as e:
            logger.info(f"Hardware acceleration not available: {e}")
            return False

    async def probe(self) -> CapabilityReport:
        """
        Probe the environment.

        Returns:
            Report whose ranked list always ends with baseline-cpu.
        """
        ranked: list[Capability] = [Capability.BASELINE_CPU]

        if self._safe(self._portable_check, "Portable runtime"):
            ranked.insert(0, Capability.PORTABLE_BYTECODE)

        if await self._accelerator():
            ranked.insert(0, Capability.HARDWARE_ACCELERATED)
            logger.info("Hardware accelerator found")

        extras: set[Capability] = set()
        if self._safe(self._specialized_check, "Specialized runtime"):
            extras.add(Capability.SPECIALIZED_RUNTIME)
        if self._remote_enabled:
            extras.add(Capability.REMOTE_API)

        report = CapabilityReport(ranked=tuple(ranked), extras=frozenset(extras))
        logger.info(
            f"Supported devices: {[c.value for c in report.ranked]}, "
            f"extras: {sorted(c.value for c in report.extras)}"
        )
        return report
