"""
Prompt framing module.

Maps model identifiers to families and frames/extracts text per family.
"""

from voice_orchestrator.prompts.templates import (
    FAMILY_RULES,
    VOICE_ASSISTANT_SYSTEM_PROMPT,
    ModelFamily,
    PromptTemplate,
    classify_family,
    generation_params,
    get_template,
    unwrap,
    wrap,
)

__all__ = [
    "FAMILY_RULES",
    "VOICE_ASSISTANT_SYSTEM_PROMPT",
    "ModelFamily",
    "PromptTemplate",
    "classify_family",
    "generation_params",
    "get_template",
    "unwrap",
    "wrap",
]
