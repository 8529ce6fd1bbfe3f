"""
Backend abstraction.

A Backend turns a model identifier into a live ModelHandle; a handle runs one
request at a time. Concrete engines (transformers, llama.cpp, remote APIs)
live behind this contract so the orchestration layer never imports them.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Literal

from voice_orchestrator.prompts.templates import ModelFamily
from voice_orchestrator.schemas import Capability, LogicalModelSpec, TaskKind

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], Any]
PacingClass = Literal["standard", "fast"]


class ModelHandle(ABC):
    """
    Live, invocable result of loading a model on a backend.

    Handles are owned by the ModelLoader registry. Callers borrow them per
    request and never mutate them; the loader invalidates a handle before
    replacing it.
    """

    def __init__(
        self,
        *,
        logical_key: str,
        identifier: str,
        backend: Capability,
        task: TaskKind,
        family: ModelFamily,
        pacing_class: PacingClass = "standard",
        system_prompt: str | None = None,
    ) -> None:
        self.logical_key = logical_key
        self.identifier = identifier
        self.backend = backend
        self.task = task
        self.family = family
        self.pacing_class: PacingClass = pacing_class
        self.system_prompt = system_prompt
        self._ready = True

    @property
    def ready(self) -> bool:
        return self._ready

    @abstractmethod
    async def invoke(self, model_input: Any, **params: Any) -> str:
        """
        Run one request.

        Args:
            model_input: Framed prompt (text generation) or audio buffer
                (speech to text).
            **params: Backend-specific generation parameters.

        Returns:
            Raw text output of the engine.
        """
        ...

    def describe(self) -> dict[str, Any]:
        """Backend-specific details for status reporting."""
        return {}

    async def close(self) -> None:
        """Release engine resources and mark the handle unusable."""
        self.invalidate()

    def invalidate(self) -> None:
        self._ready = False

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(key={self.logical_key!r}, identifier={self.identifier!r}, "
            f"backend={self.backend.value}, ready={self._ready})"
        )


class Backend(ABC):
    """Abstract base class for execution backends."""

    capability: Capability

    @abstractmethod
    async def load(
        self,
        spec: LogicalModelSpec,
        identifier: str,
        on_progress: ProgressCallback | None = None,
    ) -> ModelHandle:
        """
        Load a model and return a ready handle.

        Args:
            spec: Logical model being served.
            identifier: Concrete identifier to load (may differ from
                spec.identifier during a fallback cascade).
            on_progress: Optional (percent, message) callback.

        Returns:
            Ready model handle.

        Raises:
            LoadError: If the backend cannot load the model.
        """
        ...

    async def close(self) -> None:
        """Release backend-wide resources."""
        return None


def report_progress(on_progress: ProgressCallback | None, percent: int, message: str) -> None:
    """Invoke a progress callback without letting it affect control flow."""
    if on_progress is None:
        return
    try:
        on_progress(percent, message)
    except Exception as e:
        logger.warning(f"Progress callback failed ({percent}%, {message!r}): {e}")
