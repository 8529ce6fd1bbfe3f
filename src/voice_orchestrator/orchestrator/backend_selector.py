"""
Backend selection policy.

Decides which capability serves a logical model. The decision is a pure
function of the probed capabilities, the identifier and an optional explicit
override: it never blocks and never raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from voice_orchestrator.config import Settings
from voice_orchestrator.schemas import DEVICE_CAPABILITIES, Capability, CapabilityReport, TaskKind

logger = logging.getLogger(__name__)


def _matches(identifier: str, patterns: tuple[str, ...]) -> bool:
    lowered = identifier.lower()
    return any(p.lower() in lowered for p in patterns)


@dataclass(frozen=True)
class SelectionPolicy:
    """
    Identifier heuristics used by the selector.

    Attributes:
        specialized_families: Substrings of identifiers served by the
            specialized runtime.
        converted_markers: Substrings marking builds already converted for
            local execution; these bypass the specialized runtime.
        accelerator_incompatible: Substrings of identifiers known to fail on
            hardware acceleration. Only list families that were observed to
            fail; nothing is inferred.
    """

    specialized_families: tuple[str, ...] = ("gemma",)
    converted_markers: tuple[str, ...] = ("onnx", "xenova")
    accelerator_incompatible: tuple[str, ...] = ("smollm2",)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SelectionPolicy":
        return cls(
            specialized_families=tuple(settings.specialized_families),
            converted_markers=tuple(settings.converted_markers),
            accelerator_incompatible=tuple(settings.accelerator_incompatible),
        )

    def wants_specialized_runtime(self, identifier: str) -> bool:
        return _matches(identifier, self.specialized_families) and not _matches(
            identifier, self.converted_markers
        )

    def is_accelerator_incompatible(self, identifier: str) -> bool:
        return _matches(identifier, self.accelerator_incompatible)


@dataclass
class BackendSelector:
    """
    Picks a capability for each load from a probed CapabilityReport.

    Explicit overrides are honored only when the capability is available and
    can serve the model: device capabilities serve every task, the remote
    API serves text generation only and the specialized runtime serves only
    the families its policy routes to it.
    """

    capabilities: CapabilityReport
    policy: SelectionPolicy = field(default_factory=SelectionPolicy)

    def downgrade_target(self) -> Capability:
        """Device used when hardware acceleration must be avoided."""
        if self.capabilities.has(Capability.PORTABLE_BYTECODE):
            return Capability.PORTABLE_BYTECODE
        return Capability.BASELINE_CPU

    def can_serve(self, capability: Capability, identifier: str, task: TaskKind) -> bool:
        if capability in DEVICE_CAPABILITIES:
            return True
        if capability == Capability.REMOTE_API:
            return task == TaskKind.TEXT_GENERATION
        if capability == Capability.SPECIALIZED_RUNTIME:
            return task == TaskKind.TEXT_GENERATION and self.policy.wants_specialized_runtime(identifier)
        return False

    def select_backend(
        self,
        logical_key: str,
        identifier: str,
        explicit_override: Capability | None = None,
        task: TaskKind = TaskKind.TEXT_GENERATION,
    ) -> Capability:
        """
        Choose the backend for one logical model.

        Args:
            logical_key: Logical model key (used for logging only).
            identifier: Concrete model identifier.
            explicit_override: Backend requested by configuration or by a
                top-level backend switch.
            task: Task the model performs.

        Returns:
            The chosen capability; baseline-cpu when nothing better applies.
        """
        if explicit_override is not None:
            if not self.capabilities.has(explicit_override):
                logger.info(
                    f"Requested backend {explicit_override.value} for {logical_key} is unavailable; "
                    "using automatic selection"
                )
            elif not self.can_serve(explicit_override, identifier, task):
                logger.info(
                    f"Requested backend {explicit_override.value} cannot serve {identifier} ({task.value}); "
                    "using automatic selection"
                )
            else:
                return explicit_override

        if task == TaskKind.TEXT_GENERATION and self.policy.wants_specialized_runtime(identifier):
            return Capability.SPECIALIZED_RUNTIME

        best = self.capabilities.ranked[0] if self.capabilities.ranked else Capability.BASELINE_CPU
        if best == Capability.HARDWARE_ACCELERATED and self.policy.is_accelerator_incompatible(identifier):
            target = self.downgrade_target()
            logger.info(
                f"Forcing {target.value} for {identifier} due to hardware acceleration compatibility issues"
            )
            return target
        return best
