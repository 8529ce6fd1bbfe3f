"""
Exception hierarchy for the orchestration layer.

Capability probing and backend selection never raise; everything else
reports failures through these types.
"""

from __future__ import annotations

from dataclasses import dataclass


class VoiceOrchestratorError(Exception):
    """Base class for all orchestration errors."""


class ConfigurationError(VoiceOrchestratorError):
    """Raised when a logical model key is unknown or misconfigured."""


class CapabilityUnavailableError(VoiceOrchestratorError):
    """Raised when a requested backend is not present in this environment."""

    def __init__(self, message: str, capability: str | None = None) -> None:
        super().__init__(message)
        self.capability = capability


class LoadError(VoiceOrchestratorError):
    """Backend-reported failure while loading a model."""

    def __init__(self, message: str, identifier: str = "", backend: str | None = None) -> None:
        super().__init__(message)
        self.identifier = identifier
        self.backend = backend


class LoadTimeoutError(LoadError, TimeoutError):
    """Runtime initialization or model load exceeded its time bound."""

    def __init__(
        self,
        message: str,
        identifier: str = "",
        backend: str | None = None,
        timeout_s: float | None = None,
    ) -> None:
        super().__init__(message, identifier=identifier, backend=backend)
        self.timeout_s = timeout_s


class GenerationError(VoiceOrchestratorError):
    """Backend-reported failure while running inference."""


class NotLoadedError(VoiceOrchestratorError):
    """Raised when inference is requested for a model with no ready handle."""


@dataclass(frozen=True)
class FallbackAttempt:
    """One failed candidate of a fallback cascade."""

    identifier: str
    error: BaseException

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__


def innermost_cause(error: BaseException) -> BaseException:
    """Follow the explicit cause chain down to the original failure."""
    seen: set[int] = set()
    current = error
    while current.__cause__ is not None and id(current) not in seen:
        seen.add(id(current))
        current = current.__cause__
    return current


class AggregateFallbackError(LoadError):
    """
    Every candidate of a fallback plan failed, including the emergency one.

    Attributes:
        logical_key: Logical model the cascade was loading.
        attempts: Failed attempts in the order they were made.
        primary_error: Failure of the preferred backend that started the cascade.
    """

    def __init__(
        self,
        logical_key: str,
        attempts: list[FallbackAttempt],
        primary_error: BaseException | None = None,
    ) -> None:
        self.logical_key = logical_key
        self.attempts = list(attempts)
        self.primary_error = primary_error

        summary = "; ".join(f"{a.identifier}: {a.message}" for a in self.attempts)
        message = f"All fallback candidates for '{logical_key}' failed ({summary})"
        root = self.root_cause
        if root is not None:
            message += f". Last error: {str(root) or type(root).__name__}"

        identifier = self.attempts[-1].identifier if self.attempts else ""
        super().__init__(message, identifier=identifier)

    @property
    def errors(self) -> list[BaseException]:
        return [a.error for a in self.attempts]

    @property
    def root_cause(self) -> BaseException | None:
        if self.attempts:
            return innermost_cause(self.attempts[-1].error)
        if self.primary_error is not None:
            return innermost_cause(self.primary_error)
        return None
