"""
Pydantic schemas shared by the orchestrator and the backends.

Defines capabilities, logical model specs, stream events and the status and
benchmark records returned to the application layer.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# Logical model keys configured by default.
STT_KEY = "speech-to-text"
TEXTGEN_KEY = "text-generation"


class Capability(str, Enum):
    """Execution backends, listed from most to least preferred device."""

    HARDWARE_ACCELERATED = "hardware-accelerated"
    PORTABLE_BYTECODE = "portable-bytecode"
    BASELINE_CPU = "baseline-cpu"
    SPECIALIZED_RUNTIME = "specialized-runtime"
    REMOTE_API = "remote-api"


# Capabilities that describe a local compute device (ranked list members).
DEVICE_CAPABILITIES: tuple[Capability, ...] = (
    Capability.HARDWARE_ACCELERATED,
    Capability.PORTABLE_BYTECODE,
    Capability.BASELINE_CPU,
)


class TaskKind(str, Enum):
    """Kind of work a logical model performs."""

    SPEECH_TO_TEXT = "automatic-speech-recognition"
    TEXT_GENERATION = "text-generation"


class LoadState(str, Enum):
    """Lifecycle of a logical model inside the loader."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class StreamEventType(str, Enum):
    """Kinds of incremental events produced by the streaming emitter."""

    WORD = "word"
    SENTENCE = "sentence"
    COMPLETE = "complete"


class CapabilityReport(BaseModel):
    """
    Result of probing the host environment.

    `ranked` holds device capabilities best-first and always ends with
    baseline-cpu. `extras` holds runtimes that only serve specific models.
    """

    model_config = ConfigDict(frozen=True)

    ranked: tuple[Capability, ...] = Field(
        default=(Capability.BASELINE_CPU,),
        description="Device capabilities ordered by preference",
    )
    extras: frozenset[Capability] = Field(
        default_factory=frozenset,
        description="Optional runtimes outside the ranked device list",
    )

    @property
    def best(self) -> Capability:
        """Most preferred device capability."""
        return self.ranked[0]

    @property
    def available(self) -> tuple[Capability, ...]:
        """Every usable capability, ranked devices first."""
        extras = tuple(c for c in Capability if c in self.extras and c not in self.ranked)
        return self.ranked + extras

    def has(self, capability: Capability) -> bool:
        return capability in self.ranked or capability in self.extras


class LogicalModelSpec(BaseModel):
    """Configuration of one logical model role."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., description="Logical key (e.g., speech-to-text)")
    identifier: str = Field(..., description="Concrete model identifier")
    task: TaskKind = Field(..., description="Task the model performs")
    preferred_backend: Capability | None = Field(
        default=None,
        description="Backend to use when available",
    )
    precision: str | None = Field(
        default=None,
        description="Precision/quantization hint (e.g., fp16, q4)",
    )


class Pacing(BaseModel):
    """Wall-clock spacing between simulated stream events."""

    model_config = ConfigDict(frozen=True)

    word_delay_s: float = Field(default=0.025, ge=0.0)
    sentence_delay_s: float = Field(default=0.1, ge=0.0)


class StreamEvent(BaseModel):
    """One incremental event of a simulated token stream."""

    model_config = ConfigDict(frozen=True)

    type: StreamEventType
    text: str = Field(..., description="Word, sentence or full text for this event")
    full_text: str | None = Field(
        default=None,
        description="Text accumulated so far (word events only)",
    )
    is_complete: bool = Field(default=False, description="True only on the final event")


class BenchmarkStats(BaseModel):
    """
    Latency measurements for a loaded logical model.

    Aggregates are computed over successful samples only and are NaN when no
    iteration succeeded.
    """

    logical_key: str
    backend: Capability | None = None
    identifier: str = ""
    iterations: int
    samples: list[float] = Field(default_factory=list, description="Seconds per successful iteration")
    failures: int = 0
    avg: float = math.nan
    min: float = math.nan
    max: float = math.nan


class ModelStatus(BaseModel):
    """Status of one logical model."""

    loaded: bool = False
    state: LoadState = LoadState.IDLE
    backend: Capability | None = None
    identifier: str | None = None
    fallback_active: bool = False
    details: dict[str, Any] = Field(default_factory=dict, description="Backend-specific details")


class OrchestratorStatus(BaseModel):
    """Snapshot returned by VoiceOrchestrator.get_status()."""

    models: dict[str, ModelStatus] = Field(default_factory=dict)
    available_capabilities: list[Capability] = Field(default_factory=list)
    current_backend: Capability | None = None
    specialized_runtime_available: bool = False
    remote_api_available: bool = False
