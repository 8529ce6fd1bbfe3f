"""
Execution backends.

Each backend loads models for one capability and returns ModelHandles.
Heavy engines (torch, transformers, optimum, llama.cpp) are imported lazily.
"""

from voice_orchestrator.backends.base import Backend, ModelHandle, ProgressCallback, report_progress
from voice_orchestrator.backends.llama_cpp_backend import (
    SUPPORTED_MODELS,
    LlamaCppBackend,
    SpecializedModel,
    map_to_specialized_model,
    specialized_runtime_present,
)
from voice_orchestrator.backends.remote import RemoteAPIBackend, extract_completion_text
from voice_orchestrator.backends.transformers_backend import TransformersBackend, resolve_model_path

__all__ = [
    "Backend",
    "ModelHandle",
    "ProgressCallback",
    "report_progress",
    "SUPPORTED_MODELS",
    "LlamaCppBackend",
    "SpecializedModel",
    "map_to_specialized_model",
    "specialized_runtime_present",
    "RemoteAPIBackend",
    "extract_completion_text",
    "TransformersBackend",
    "resolve_model_path",
]
