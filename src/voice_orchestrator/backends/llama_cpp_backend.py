"""
Specialized runtime backend for Gemma-family models via llama-cpp-python.

Characteristics:
- completion-based (prompt framing is applied by the caller)
- GGUF weights fetched from the Hugging Face hub on first load
- only serves the model families routed to it by the BackendSelector
"""

from __future__ import annotations

import asyncio
import importlib.util
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from voice_orchestrator.backends.base import Backend, ModelHandle, ProgressCallback, report_progress
from voice_orchestrator.errors import GenerationError, LoadError, LoadTimeoutError
from voice_orchestrator.prompts.templates import VOICE_ASSISTANT_SYSTEM_PROMPT, ModelFamily
from voice_orchestrator.schemas import Capability, LogicalModelSpec, TaskKind

logger = logging.getLogger(__name__)

RUNTIME_MODULE = "llama_cpp"


@dataclass(frozen=True)
class SpecializedModel:
    model_id: str
    name: str
    repo_id: str
    filename: str
    quantization: str  # Q4 | FP16 | Q8


SUPPORTED_MODELS: dict[str, SpecializedModel] = {
    "gemma-3-1b-it-q4": SpecializedModel(
        model_id="gemma-3-1b-it-q4",
        name="Gemma 3 1B Instruct Q4",
        repo_id="google/gemma-3-1b-it-qat-q4_0-gguf",
        filename="gemma-3-1b-it-q4_0.gguf",
        quantization="Q4",
    ),
    "gemma-3-1b-it": SpecializedModel(
        model_id="gemma-3-1b-it",
        name="Gemma 3 1B Instruct",
        repo_id="ggml-org/gemma-3-1b-it-GGUF",
        filename="gemma-3-1b-it-Q8_0.gguf",
        quantization="Q8",
    ),
    "gemma-7b-it": SpecializedModel(
        model_id="gemma-7b-it",
        name="Gemma 7B Instruct",
        repo_id="google/gemma-7b-it-GGUF",
        filename="gemma-7b-it.gguf",
        quantization="FP16",
    ),
}


def specialized_runtime_present() -> bool:
    """Whether the specialized runtime library is installed."""
    return importlib.util.find_spec(RUNTIME_MODULE) is not None


def map_to_specialized_model(identifier: str) -> str | None:
    """Map a Gemma identifier onto a supported runtime build; None outside the family."""
    lowered = identifier.lower()
    if lowered in SUPPORTED_MODELS:
        return lowered
    if "gemma" not in lowered:
        return None
    if "7b" in lowered:
        return "gemma-7b-it"
    if "q4" in lowered:
        return "gemma-3-1b-it-q4"
    # Unknown Gemma variants get the 1B build.
    return "gemma-3-1b-it"


class LlamaCppHandle(ModelHandle):
    def __init__(self, llm: Any, model: SpecializedModel, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._llm = llm
        self._model = model

    @property
    def model(self) -> SpecializedModel:
        return self._model

    async def invoke(self, model_input: Any, **params: Any) -> str:
        if not self.ready or self._llm is None:
            raise GenerationError(f"Specialized runtime handle for {self.identifier} is not ready")

        def _run() -> str:
            result = self._llm(
                str(model_input),
                max_tokens=params.get("max_new_tokens", 100),
                temperature=params.get("temperature", 0.7),
                top_k=params.get("top_k", 40),
                top_p=params.get("top_p", 0.9),
                repeat_penalty=params.get("repetition_penalty", 1.1),
                echo=False,
            )
            if isinstance(result, dict):
                return str(result["choices"][0]["text"])
            if isinstance(result, str):
                return result
            raise GenerationError("Invalid response format from specialized runtime")

        return await asyncio.to_thread(_run)

    def describe(self) -> dict[str, Any]:
        is_q4 = self._model.quantization == "Q4"
        return {
            "runtime": "llama.cpp",
            "model": self._model.model_id,
            "quantization": self._model.quantization,
            "optimized": is_q4,
        }

    async def close(self) -> None:
        llm, self._llm = self._llm, None
        if llm is not None and hasattr(llm, "close"):
            await asyncio.to_thread(llm.close)
        await super().close()


class LlamaCppBackend(Backend):
    """
    Loads supported Gemma builds into the llama.cpp runtime.

    Runtime initialization and model download are each bounded by a fixed
    timeout; exceeding either raises LoadTimeoutError so the loader can move
    on to its fallback plan.
    """

    capability = Capability.SPECIALIZED_RUNTIME

    def __init__(
        self,
        *,
        init_timeout_s: float = 5.0,
        download_timeout_s: float = 300.0,
        n_ctx: int = 2048,
        n_gpu_layers: int = -1,
        cache_dir: str | Path | None = None,
        models: dict[str, SpecializedModel] | None = None,
        system_prompt: str | None = VOICE_ASSISTANT_SYSTEM_PROMPT,
    ) -> None:
        self._init_timeout_s = init_timeout_s
        self._download_timeout_s = download_timeout_s
        self._n_ctx = n_ctx
        self._n_gpu_layers = n_gpu_layers
        self._cache_dir = str(cache_dir) if cache_dir else None
        self._models = models if models is not None else dict(SUPPORTED_MODELS)
        self._system_prompt = system_prompt
        self._llama_cls: Any = None

    @property
    def is_initialized(self) -> bool:
        return self._llama_cls is not None

    @property
    def supported_models(self) -> dict[str, SpecializedModel]:
        return dict(self._models)

    def _import_runtime(self) -> Any:
        try:
            from llama_cpp import Llama  # type: ignore
        except ImportError as e:
            raise LoadError(
                "llama-cpp-python is not installed. Install with: pip install -e '.[specialized]'",
                backend=self.capability.value,
            ) from e
        return Llama

    async def initialize(self) -> None:
        if self._llama_cls is not None:
            return
        try:
            self._llama_cls = await asyncio.wait_for(
                asyncio.to_thread(self._import_runtime),
                timeout=self._init_timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise LoadTimeoutError(
                f"Specialized runtime initialization timed out after {self._init_timeout_s}s",
                backend=self.capability.value,
                timeout_s=self._init_timeout_s,
            ) from e
        logger.info("Specialized runtime (llama.cpp) initialized")

    def _instantiate(self, model: SpecializedModel) -> Any:
        return self._llama_cls.from_pretrained(
            repo_id=model.repo_id,
            filename=model.filename,
            cache_dir=self._cache_dir,
            n_ctx=self._n_ctx,
            n_gpu_layers=self._n_gpu_layers,
            verbose=False,
        )

    async def load(
        self,
        spec: LogicalModelSpec,
        identifier: str,
        on_progress: ProgressCallback | None = None,
    ) -> ModelHandle:
        if spec.task != TaskKind.TEXT_GENERATION:
            raise LoadError(
                f"Specialized runtime cannot serve {spec.task.value}",
                identifier=identifier,
                backend=self.capability.value,
            )
        model_id = map_to_specialized_model(identifier)
        model = self._models.get(model_id) if model_id else None
        if model is None:
            raise LoadError(
                f"Unsupported specialized model: {model_id or identifier}",
                identifier=identifier,
                backend=self.capability.value,
            )

        report_progress(on_progress, 0, "Initializing specialized runtime...")
        await self.initialize()

        report_progress(on_progress, 25, f"Downloading {model.name}...")
        logger.info(f"Loading specialized model {model.model_id} from {model.repo_id}/{model.filename}")

        try:
            llm = await asyncio.wait_for(
                asyncio.to_thread(self._instantiate, model),
                timeout=self._download_timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise LoadTimeoutError(
                f"Download of {model.name} timed out after {self._download_timeout_s}s",
                identifier=identifier,
                backend=self.capability.value,
                timeout_s=self._download_timeout_s,
            ) from e
        except Exception as e:
            raise LoadError(
                f"Failed to load {model.name}: {e}",
                identifier=identifier,
                backend=self.capability.value,
            ) from e

        if model.quantization == "Q4":
            logger.info(f"Configured {model.model_id} with Q4 quantization for faster inference")

        report_progress(on_progress, 100, f"{model.name} ready!")
        return LlamaCppHandle(
            llm,
            model,
            logical_key=spec.key,
            identifier=identifier,
            backend=self.capability,
            task=spec.task,
            family=ModelFamily.GEMMA,
            pacing_class="fast" if model.quantization == "Q4" else "standard",
            system_prompt=self._system_prompt,
        )
