"""
Local execution through Hugging Face pipelines.

One class covers the three device capabilities:

- hardware-accelerated: `transformers` pipeline on CUDA via torch
- portable-bytecode: `optimum` ONNX Runtime pipeline
- baseline-cpu: `transformers` pipeline on the CPU

Engines are imported lazily so the orchestration layer stays importable
without the optional `[local]` dependencies.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import numpy as np

from voice_orchestrator.backends.base import Backend, ModelHandle, ProgressCallback, report_progress
from voice_orchestrator.errors import GenerationError, LoadError
from voice_orchestrator.prompts.templates import ModelFamily, classify_family
from voice_orchestrator.schemas import (
    DEVICE_CAPABILITIES,
    Capability,
    LogicalModelSpec,
    TaskKind,
)

logger = logging.getLogger(__name__)

# Suffix some hubs use for 4-bit weights with fp16 activations.
Q4F16_SUFFIX = "/q4f16"


def resolve_model_path(identifier: str, precision: str | None) -> tuple[str, str | None]:
    """
    Map an identifier to the repository path and effective precision.

    Identifiers carrying the `/q4f16` suffix name a quantized variant of the
    base repository; the suffix is stripped and the precision forced to q4.
    """
    if Q4F16_SUFFIX in identifier:
        return identifier.replace(Q4F16_SUFFIX, ""), "q4"
    return identifier, precision


def _extract_generated_text(result: Any) -> str:
    if isinstance(result, list) and result:
        result = result[0]
    if isinstance(result, dict):
        return str(result.get("generated_text") or result.get("text") or "")
    return str(result or "")


class TransformersHandle(ModelHandle):
    """Handle around a loaded Hugging Face pipeline."""

    def __init__(self, pipe: Any, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._pipe = pipe

    async def invoke(self, model_input: Any, **params: Any) -> str:
        if not self.ready:
            raise GenerationError(f"Handle for {self.identifier} has been invalidated")

        if self.task == TaskKind.SPEECH_TO_TEXT:
            samples = np.asarray(getattr(model_input, "samples", model_input), dtype=np.float32)
            sample_rate = int(getattr(model_input, "sample_rate", 16000))

            def _transcribe() -> str:
                result = self._pipe(
                    {"raw": samples, "sampling_rate": sample_rate},
                    chunk_length_s=30,
                    stride_length_s=5,
                    return_timestamps=False,
                )
                if isinstance(result, dict):
                    return str(result.get("text") or "")
                return str(result or "")

            return await asyncio.to_thread(_transcribe)

        def _generate() -> str:
            return _extract_generated_text(self._pipe(str(model_input), **params))

        return await asyncio.to_thread(_generate)

    async def close(self) -> None:
        self._pipe = None
        await super().close()


class TransformersBackend(Backend):
    """Loads models as Hugging Face pipelines on a local device."""

    def __init__(self, capability: Capability, cache_dir: str | Path | None = None) -> None:
        if capability not in DEVICE_CAPABILITIES:
            raise ValueError(f"{capability.value} is not a local device capability")
        self.capability = capability
        self._cache_dir = str(cache_dir) if cache_dir else None

    def _build_pipeline(self, task: TaskKind, model_path: str, precision: str | None) -> Any:
        model_kwargs: dict[str, Any] = {}
        if self._cache_dir:
            model_kwargs["cache_dir"] = self._cache_dir

        if self.capability == Capability.PORTABLE_BYTECODE:
            try:
                from optimum.pipelines import pipeline as ort_pipeline  # type: ignore
            except ImportError as e:
                raise LoadError(
                    "optimum[onnxruntime] is required for portable execution. "
                    "Install with: pip install -e '.[local]'",
                    identifier=model_path,
                    backend=self.capability.value,
                ) from e
            return ort_pipeline(task.value, model=model_path, accelerator="ort", model_kwargs=model_kwargs)

        try:
            import torch  # type: ignore
            from transformers import pipeline  # type: ignore
        except ImportError as e:
            raise LoadError(
                "transformers and torch are required for local execution. "
                "Install with: pip install -e '.[local]'",
                identifier=model_path,
                backend=self.capability.value,
            ) from e

        kwargs: dict[str, Any] = {}
        if self.capability == Capability.HARDWARE_ACCELERATED:
            if not torch.cuda.is_available():
                raise LoadError(
                    "CUDA device is no longer available",
                    identifier=model_path,
                    backend=self.capability.value,
                )
            device = "cuda"
            if precision in ("fp16", "q4"):
                # torch has no generic 4-bit path; half precision is the closest fit.
                kwargs["torch_dtype"] = torch.float16
        else:
            device = "cpu"

        return pipeline(task.value, model=model_path, device=device, model_kwargs=model_kwargs, **kwargs)

    async def load(
        self,
        spec: LogicalModelSpec,
        identifier: str,
        on_progress: ProgressCallback | None = None,
    ) -> ModelHandle:
        model_path, precision = resolve_model_path(identifier, spec.precision)
        if model_path != identifier:
            logger.info(f"Using quantized variant of {model_path} (precision={precision})")

        report_progress(on_progress, 0, f"Loading {spec.key} model {model_path} on {self.capability.value}...")
        logger.info(f"Loading {spec.key} model: {model_path} on {self.capability.value}")

        try:
            pipe = await asyncio.to_thread(self._build_pipeline, spec.task, model_path, precision)
        except LoadError:
            raise
        except Exception as e:
            raise LoadError(
                f"Failed to load {model_path} on {self.capability.value}: {e}",
                identifier=identifier,
                backend=self.capability.value,
            ) from e

        family = classify_family(model_path) if spec.task == TaskKind.TEXT_GENERATION else ModelFamily.GENERIC
        report_progress(on_progress, 100, f"{spec.key} ready on {self.capability.value}")
        return TransformersHandle(
            pipe,
            logical_key=spec.key,
            identifier=identifier,
            backend=self.capability,
            task=spec.task,
            family=family,
        )
