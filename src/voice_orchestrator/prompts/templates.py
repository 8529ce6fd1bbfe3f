"""
Prompt framing and response extraction per model family.

A model identifier is classified once into a ModelFamily; every other
decision (turn delimiters, stop markers, sampling defaults) dispatches on
that enum.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ModelFamily(str, Enum):
    """Families of models sharing a prompt-framing convention."""

    TINYLLAMA = "tinyllama"
    SMOLLM2 = "smollm2"
    QWEN = "qwen"
    PHI = "phi"
    GEMMA = "gemma"
    LLAMA = "llama"
    GPT2 = "gpt2"
    GENERIC = "generic"
    # Chat endpoints take structured messages and need no framing.
    CHAT_API = "chat-api"


# Ordered (patterns, family) rules; first match wins. "tinyllama" must be
# tested before "llama", and "smollm2" has a commonly misspelled variant.
FAMILY_RULES: tuple[tuple[tuple[str, ...], ModelFamily], ...] = (
    (("tinyllama",), ModelFamily.TINYLLAMA),
    (("smollm2", "smolml2"), ModelFamily.SMOLLM2),
    (("qwen",), ModelFamily.QWEN),
    (("phi",), ModelFamily.PHI),
    (("gemma",), ModelFamily.GEMMA),
    (("llama",), ModelFamily.LLAMA),
    (("gpt2", "distilgpt2"), ModelFamily.GPT2),
)

VOICE_ASSISTANT_SYSTEM_PROMPT = (
    "You are an intelligent voice assistant. Respond naturally and conversationally "
    "as if speaking to a friend. Keep answers brief and to the point - aim for 1-2 "
    "sentences unless the user asks for more detail. Use simple, clear language "
    "without technical jargon. Avoid using markdown, special formatting, or numbered "
    "lists in your responses. Be helpful, friendly, and direct."
)


@dataclass(frozen=True)
class PromptTemplate:
    """
    Framing rules for one family.

    `template` receives `prompt` and `system` placeholders. `assistant_marker`
    opens the reply turn; `end_markers` close it.
    """

    family: ModelFamily
    template: str
    assistant_marker: str | None = None
    end_markers: tuple[str, ...] = ()
    default_system: str | None = None
    system_template: str | None = None
    delimiters: tuple[str, ...] = field(default=())

    def render(self, prompt: str, system_prompt: str | None = None) -> str:
        system = system_prompt if system_prompt is not None else self.default_system
        system_block = ""
        if system and self.system_template:
            system_block = self.system_template.format(system=system)
        return self.template.format(prompt=prompt, system=system or "", system_block=system_block)

    def extract(self, raw: str) -> str:
        text = raw or ""
        if self.assistant_marker and self.assistant_marker in text:
            text = text.split(self.assistant_marker, 1)[1]
        for marker in self.end_markers:
            text = text.split(marker, 1)[0]
        return text.strip()

    @property
    def tokens(self) -> tuple[str, ...]:
        """Every delimiter a prompt must not contain for a clean round trip."""
        found = [t for t in (self.assistant_marker, *self.end_markers, *self.delimiters) if t]
        return tuple(dict.fromkeys(found))


TEMPLATES: dict[ModelFamily, PromptTemplate] = {
    ModelFamily.TINYLLAMA: PromptTemplate(
        family=ModelFamily.TINYLLAMA,
        template="<|system|>\n{system}<|user|>\n{prompt}<|assistant|>\n",
        assistant_marker="<|assistant|>\n",
        end_markers=("<|user|>", "<|system|>"),
        default_system="You are a helpful AI assistant.",
    ),
    ModelFamily.SMOLLM2: PromptTemplate(
        family=ModelFamily.SMOLLM2,
        template="{system_block}<|im_start|>user\n{prompt}<|im_end|>\n<|im_start|>assistant\n",
        system_template="<|im_start|>system\n{system}<|im_end|>\n",
        assistant_marker="<|im_start|>assistant\n",
        end_markers=("<|im_end|>", "<|im_start|>"),
    ),
    ModelFamily.QWEN: PromptTemplate(
        family=ModelFamily.QWEN,
        template=(
            "<|im_start|>system\n{system}<|im_end|>\n"
            "<|im_start|>user\n{prompt}<|im_end|>\n"
            "<|im_start|>assistant\n"
        ),
        assistant_marker="<|im_start|>assistant\n",
        end_markers=("<|im_end|>",),
        default_system="You are a helpful assistant.",
        delimiters=("<|im_start|>",),
    ),
    ModelFamily.PHI: PromptTemplate(
        family=ModelFamily.PHI,
        template="{system_block}<|user|>\n{prompt}<|end|>\n<|assistant|>\n",
        system_template="<|system|>\n{system}<|end|>\n",
        assistant_marker="<|assistant|>\n",
        end_markers=("<|end|>",),
    ),
    ModelFamily.GEMMA: PromptTemplate(
        family=ModelFamily.GEMMA,
        template="<bos>{system_block}<start_of_turn>user\n{prompt}<end_of_turn>\n<start_of_turn>model\n",
        system_template="<start_of_turn>system\n{system}<end_of_turn>\n",
        assistant_marker="<start_of_turn>model\n",
        end_markers=("<end_of_turn>", "<start_of_turn>"),
        delimiters=("<bos>",),
    ),
    ModelFamily.LLAMA: PromptTemplate(
        family=ModelFamily.LLAMA,
        template="<s>[INST] {system_block}{prompt} [/INST]",
        system_template="<<SYS>>\n{system}\n<</SYS>>\n\n",
        assistant_marker="[/INST]",
        end_markers=("</s>",),
        delimiters=("<s>", "[INST]"),
    ),
    ModelFamily.GPT2: PromptTemplate(
        family=ModelFamily.GPT2,
        template="Human: {prompt}\nAI:",
        assistant_marker="AI:",
        end_markers=("Human:", "\n\n"),
    ),
    ModelFamily.GENERIC: PromptTemplate(
        family=ModelFamily.GENERIC,
        template="Human: {prompt}\nAI:",
        assistant_marker="AI:",
        end_markers=("Human:", "\n\n"),
    ),
    ModelFamily.CHAT_API: PromptTemplate(
        family=ModelFamily.CHAT_API,
        template="{prompt}",
    ),
}


def classify_family(identifier: str) -> ModelFamily:
    """
    Classify a model identifier into its prompt family.

    Args:
        identifier: Model identifier (e.g., "Qwen/Qwen2.5-0.5B-Instruct").

    Returns:
        First matching family, or GENERIC when nothing matches.
    """
    lowered = (identifier or "").lower()
    for patterns, family in FAMILY_RULES:
        if any(p in lowered for p in patterns):
            return family
    return ModelFamily.GENERIC


def get_template(family: ModelFamily) -> PromptTemplate:
    return TEMPLATES[family]


def wrap(family: ModelFamily, prompt: str, system_prompt: str | None = None) -> str:
    """
    Frame a raw user prompt with the family's turn delimiters.

    Args:
        family: Model family.
        prompt: Raw user prompt.
        system_prompt: Optional system instruction; families without a
            system turn ignore it, some fall back to their default.

    Returns:
        Prompt ready to send to a completion-style model.
    """
    return get_template(family).render(prompt, system_prompt)


def unwrap(family: ModelFamily, raw_output: str) -> str:
    """
    Extract the assistant reply from raw model output.

    Slices away everything up to the assistant-turn marker (if present),
    truncates at the first end-of-turn marker and trims whitespace.
    """
    return get_template(family).extract(raw_output)


def generation_params(family: ModelFamily, max_new_tokens: int) -> dict[str, Any]:
    """Sampling parameters for completion-style backends."""
    if family == ModelFamily.SMOLLM2:
        # Small SmolLM2 builds loop on long outputs; keep them short and cool.
        return {
            "max_new_tokens": min(max_new_tokens, 50),
            "temperature": 0.6,
            "do_sample": True,
            "top_p": 0.85,
            "repetition_penalty": 1.15,
        }
    return {
        "max_new_tokens": max_new_tokens,
        "temperature": 0.7,
        "do_sample": True,
        "top_p": 0.9,
        "repetition_penalty": 1.1,
    }
