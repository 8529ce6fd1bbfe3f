"""
Application configuration using pydantic-settings.

Loads configuration from environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BackendName = Literal[
    "hardware-accelerated",
    "portable-bytecode",
    "baseline-cpu",
    "specialized-runtime",
    "remote-api",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Logical models
    stt_model_id: str = Field(
        default="openai/whisper-tiny.en",
        description="Model identifier for the speech-to-text logical model",
    )
    stt_precision: str | None = Field(
        default="fp16",
        description="Precision/quantization hint for speech-to-text (e.g., fp16, q4)",
    )
    stt_preferred_backend: BackendName | None = Field(
        default=None,
        description="Pin speech-to-text to a backend when available",
    )
    textgen_model_id: str = Field(
        default="TinyLlama/TinyLlama-1.1B-Chat-v1.0",
        description="Model identifier for the text-generation logical model",
    )
    textgen_precision: str | None = Field(
        default="q4",
        description="Precision/quantization hint for text generation",
    )
    textgen_preferred_backend: BackendName | None = Field(
        default=None,
        description="Pin text generation to a backend when available",
    )
    max_new_tokens: int = Field(
        default=100,
        description="Default token budget for text generation",
    )

    # Backend selection policy
    specialized_families: list[str] = Field(
        default_factory=lambda: ["gemma"],
        description="Identifier substrings served by the specialized runtime",
    )
    converted_markers: list[str] = Field(
        default_factory=lambda: ["onnx", "xenova"],
        description="Identifier substrings marking builds already converted for local execution",
    )
    accelerator_incompatible: list[str] = Field(
        default_factory=lambda: ["smollm2"],
        description="Identifier substrings known to fail on hardware acceleration",
    )

    # Specialized runtime (llama.cpp)
    specialized_init_timeout_s: float = Field(
        default=5.0,
        description="Timeout in seconds for specialized runtime initialization",
    )
    specialized_download_timeout_s: float = Field(
        default=300.0,
        description="Timeout in seconds for specialized model download and load",
    )
    specialized_n_ctx: int = Field(
        default=2048,
        description="Context window for specialized runtime models",
    )
    specialized_n_gpu_layers: int = Field(
        default=-1,
        description="Layers offloaded to the GPU by the specialized runtime",
    )

    # Remote API
    remote_api_enabled: bool = Field(
        default=True,
        description="Expose the remote API as an available backend",
    )
    remote_api_base_url: str = Field(
        default="https://text.pollinations.ai",
        description="Base URL of the OpenAI-compatible remote text API",
    )
    remote_api_model: str = Field(
        default="openai",
        description="Model name sent to the remote text API",
    )
    remote_api_max_tokens: int = Field(
        default=150,
        description="Upper bound on tokens requested from the remote API",
    )
    remote_api_temperature: float = Field(
        default=0.7,
        description="Sampling temperature for the remote API",
    )
    remote_api_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for remote API requests",
    )

    # Streaming pacing
    word_delay_s: float = Field(default=0.025, description="Delay after each streamed word")
    sentence_delay_s: float = Field(default=0.1, description="Delay after each streamed sentence")
    fast_word_delay_s: float = Field(
        default=0.015,
        description="Word delay for fast-class backends (Q4 specialized models)",
    )
    fast_sentence_delay_s: float = Field(
        default=0.03,
        description="Sentence delay for fast-class backends",
    )

    # Benchmark
    benchmark_iterations: int = Field(
        default=5,
        description="Default number of benchmark round trips",
    )

    # Storage
    model_cache_dir: str = Field(
        default="./data/models",
        description="Directory where local backends cache downloaded weights",
    )

    # Speech output (Piper)
    piper_bin: str = Field(default="piper", description="Path/name of the Piper TTS binary")
    piper_model: str | None = Field(default=None, description="Path to the Piper .onnx voice")
    piper_timeout_s: float = Field(default=60.0, description="Timeout per Piper synthesis call")

    # Application
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
