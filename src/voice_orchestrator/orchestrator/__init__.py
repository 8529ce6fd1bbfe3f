"""
Orchestration layer.

Capability detection, backend selection, model loading with fallback,
inference, simulated streaming and benchmarking.
"""

from voice_orchestrator.orchestrator.backend_selector import BackendSelector, SelectionPolicy
from voice_orchestrator.orchestrator.benchmark import BenchmarkHarness
from voice_orchestrator.orchestrator.capability_probe import CapabilityProbe
from voice_orchestrator.orchestrator.fallback import FallbackPlan, build_fallback_plan
from voice_orchestrator.orchestrator.inference_runner import InferenceOptions, InferenceRunner
from voice_orchestrator.orchestrator.model_loader import ModelLoader
from voice_orchestrator.orchestrator.streaming import StreamingEmitter, iter_events
from voice_orchestrator.orchestrator.voice_orchestrator import (
    STT_KEY,
    TEXTGEN_KEY,
    VoiceOrchestrator,
    build_backends,
    build_logical_specs,
)

__all__ = [
    "BackendSelector",
    "SelectionPolicy",
    "BenchmarkHarness",
    "CapabilityProbe",
    "FallbackPlan",
    "build_fallback_plan",
    "InferenceOptions",
    "InferenceRunner",
    "ModelLoader",
    "StreamingEmitter",
    "iter_events",
    "STT_KEY",
    "TEXTGEN_KEY",
    "VoiceOrchestrator",
    "build_backends",
    "build_logical_specs",
]
