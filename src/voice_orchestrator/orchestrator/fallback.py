"""
Fallback plans for logical models whose preferred backend fails.

A plan is an immutable ordered list of substitute identifiers plus one
emergency identifier that is tried last. Plans are looked up by model family
so a failing Gemma build falls back to other small chat models.
"""

from __future__ import annotations

import logging
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field

from voice_orchestrator.prompts.templates import ModelFamily, classify_family
from voice_orchestrator.schemas import LogicalModelSpec, TaskKind

logger = logging.getLogger(__name__)


class FallbackPlan(BaseModel):
    """Ordered substitutes for one logical model."""

    model_config = ConfigDict(frozen=True)

    logical_key: str
    candidates: tuple[str, ...] = Field(default=(), description="Identifiers tried in order")
    emergency: str | None = Field(default=None, description="Last-resort identifier")

    @property
    def identifiers(self) -> tuple[str, ...]:
        """Candidates followed by the emergency identifier."""
        if self.emergency:
            return self.candidates + (self.emergency,)
        return self.candidates


# (candidates, emergency) per family served by the specialized runtime.
FAMILY_FALLBACKS: dict[ModelFamily, tuple[tuple[str, ...], str]] = {
    ModelFamily.GEMMA: (
        (
            "onnx-community/gemma-3-1b-it-ONNX",
            "HuggingFaceTB/SmolLM2-360M-Instruct",
            "Qwen/Qwen2.5-0.5B-Instruct",
        ),
        "TinyLlama/TinyLlama-1.1B-Chat-v1.0",
    ),
}

DEFAULT_TEXTGEN_EMERGENCY = "TinyLlama/TinyLlama-1.1B-Chat-v1.0"
DEFAULT_STT_EMERGENCY = "openai/whisper-tiny"


def build_fallback_plan(
    spec: LogicalModelSpec,
    table: Mapping[ModelFamily, tuple[tuple[str, ...], str]] | None = None,
) -> FallbackPlan:
    """
    Build the fallback plan for a logical model.

    Args:
        spec: Logical model the plan belongs to.
        table: Optional family table overriding FAMILY_FALLBACKS.

    Returns:
        Plan whose identifiers never include the spec's own identifier.
    """
    table = FAMILY_FALLBACKS if table is None else table

    if spec.task == TaskKind.SPEECH_TO_TEXT:
        candidates: tuple[str, ...] = ()
        emergency = DEFAULT_STT_EMERGENCY
    else:
        family = classify_family(spec.identifier)
        candidates, emergency = table.get(family, ((), DEFAULT_TEXTGEN_EMERGENCY))

    current = spec.identifier.lower()
    candidates = tuple(c for c in candidates if c.lower() != current)
    if emergency.lower() == current:
        emergency = None

    plan = FallbackPlan(logical_key=spec.key, candidates=candidates, emergency=emergency)
    logger.debug(f"Fallback plan for {spec.key}: {list(plan.identifiers)}")
    return plan
