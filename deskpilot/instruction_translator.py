"""Adapt system personas and prompts to the instruction style of a model family."""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class ModelFamily(enum.IntEnum):
    """Known model families with distinct instruction-following quirks."""

    LLAMA3 = 0
    QWEN = 1
    MISTRAL = 2
    PHI = 3
    GEMMA = 4
    GENERIC = 5


@dataclass
class Message:
    """One conversation turn."""

    role: str
    content: str


_FAMILY_MARKERS: tuple[tuple[ModelFamily, tuple[str, ...]], ...] = (
    (ModelFamily.LLAMA3, ("llama", "llama-3", "llama3", "meta-llama")),
    (ModelFamily.QWEN, ("qwen", "qwen2", "qwen1.5")),
    (ModelFamily.MISTRAL, ("mistral", "mixtral")),
    (ModelFamily.PHI, ("phi-", "phi3", "phi4")),
    (ModelFamily.GEMMA, ("gemma",)),
)

_PERSONA_FRAMES: dict[ModelFamily, str] = {
    ModelFamily.LLAMA3: (
        "You are a high-performance Windows system AI agent. "
        "You operate as a native OS controller with direct access to system functions.\n\n"
        "CRITICAL RULES:\n"
        "- You MUST respond with ONLY valid JSON objects.\n"
        "- You MUST NOT include explanations, markdown, or natural language outside JSON.\n"
        "- You MUST NOT hallucinate capabilities you don't have.\n"
        "- You have NO internet access when using local mode.\n"
        "- You strictly execute OS-level commands: open apps, manage windows, "
        "control system settings, file operations.\n\n"
        'RESPONSE FORMAT: {"thought": "reasoning", "action": "action_name", '
        '"params": {"key": "value"}}'
    ),
    ModelFamily.QWEN: (
        "You are a Windows AI system agent. Output JSON commands only.\n"
        "No chat. No explanations. No markdown.\n\n"
        'Format: {"thought": "...", "action": "...", "params": {...}}\n\n'
        "Available actions: open_app, close_app, type_text, press_key, "
        "search_web, set_volume, set_brightness, task_complete.\n"
        "Respond with one JSON object per turn."
    ),
    ModelFamily.MISTRAL: (
        "You are a Windows system AI agent that executes OS commands.\n"
        "Always respond with a single JSON object.\n"
        "Never include text outside the JSON.\n\n"
        "JSON format:\n"
        '{"thought": "your reasoning", "action": "action_name", '
        '"params": {"key": "value"}}\n\n'
        "Focus on accuracy. Do not guess."
    ),
    ModelFamily.PHI: (
        "Windows AI agent. JSON output only.\n"
        'Format: {"thought":"...","action":"...","params":{...}}\n'
        "Execute system commands. No chat."
    ),
    ModelFamily.GEMMA: (
        "You're a Windows system agent that controls the OS via JSON commands.\n\n"
        "Your responses must be valid JSON with this structure:\n"
        '- "thought": Brief reasoning about what to do\n'
        '- "action": The system action to perform\n'
        '- "params": Parameters for the action\n\n'
        "Don't include any text outside the JSON object."
    ),
    ModelFamily.GENERIC: (
        "You are a Windows AI assistant. "
        "Respond with a JSON object containing 'thought', 'action', and 'params'. "
        "Do not include any text outside the JSON."
    ),
}

_JSON_REINFORCEMENTS: dict[ModelFamily, str] = {
    ModelFamily.LLAMA3: (
        "\n\nIMPORTANT: Output RAW JSON only. "
        "Do NOT wrap in ```json``` code blocks. "
        "Do NOT add any text before or after the JSON object."
    ),
    ModelFamily.QWEN: "\nOutput: JSON only. No trailing text.",
    ModelFamily.MISTRAL: "\nRespond ONLY with the JSON object, nothing else.",
    ModelFamily.PHI: "\nJSON only.",
    ModelFamily.GEMMA: "\nOutput only the JSON object with no additional text.",
    ModelFamily.GENERIC: "\nRespond with ONLY a valid JSON object.",
}

_MULTI_NEWLINE = re.compile(r"\n{3,}")
_VERBOSE_PREFIX = re.compile(r"(?:IMPORTANT|CRITICAL|NOTE|WARNING):\s*")
_MUST_NOT = re.compile(r"You MUST NOT\s+")
_MUST = re.compile(r"You MUST\s+")
_SENTENCE_LIST = re.compile(
    r"([A-Z][^.]{5,30}\.)\s+([A-Z][^.]{5,30}\.)\s+([A-Z][^.]{5,30}\.)"
    r"(?:\s+([A-Z][^.]{5,30}\.))??"
)
_BULLET = re.compile(r"\n?-\s+([^\n]+)")
_DOUBLE_PERIOD = re.compile(r"\.\.")


class InstructionTranslator:
    """Rewrite system prompts so they suit the target model family."""

    @staticmethod
    def detect_family(model_identifier: str) -> ModelFamily:
        """Guess the model family from a model name or file path."""
        lower = model_identifier.lower()
        for family, markers in _FAMILY_MARKERS:
            if any(marker in lower for marker in markers):
                return family
        return ModelFamily.GENERIC

    def translate_system_prompt(
        self, prompt: str, source: ModelFamily, target: ModelFamily
    ) -> str:
        """Adapt a system prompt written for ``source`` to ``target``."""
        if source == target:
            return prompt
        logger.info(
            "InstructionTranslator: translating persona from %s to %s",
            source.name,
            target.name,
        )
        adapted = self._adapt_verbosity(prompt, target)
        adapted = self._adapt_constraints(adapted, target)
        return self._add_model_anchors(adapted, target)

    def translate_conversation(
        self,
        conversation: list[Message],
        source: ModelFamily,
        target: ModelFamily,
    ) -> list[Message]:
        """Translate the system messages of a conversation; other turns pass through."""
        if source == target:
            return list(conversation)
        return [
            Message("system", self.translate_system_prompt(msg.content, source, target))
            if msg.role == "system"
            else msg
            for msg in conversation
        ]

    @staticmethod
    def get_persona_frame(family: ModelFamily) -> str:
        """Return the recommended persona text for a model family."""
        return _PERSONA_FRAMES.get(family, _PERSONA_FRAMES[ModelFamily.GENERIC])

    @staticmethod
    def get_json_reinforcement(family: ModelFamily) -> str:
        """Return the trailing JSON-only reminder suited to a model family."""
        return _JSON_REINFORCEMENTS.get(
            family, _JSON_REINFORCEMENTS[ModelFamily.GENERIC]
        )

    @staticmethod
    def _adapt_verbosity(prompt: str, target: ModelFamily) -> str:
        if target == ModelFamily.LLAMA3:
            if len(prompt.encode("utf-8")) < 100:
                return (
                    "SYSTEM INSTRUCTION:\n"
                    f"{prompt}\n\n"
                    "ADDITIONAL CONTEXT:\n"
                    "- Process user requests step by step.\n"
                    "- Consider edge cases and error handling.\n"
                    "- Be precise with parameter values."
                )
            return prompt
        if target in (ModelFamily.QWEN, ModelFamily.PHI):
            trimmed = _MULTI_NEWLINE.sub("\n\n", prompt)
            trimmed = _VERBOSE_PREFIX.sub("", trimmed)
            trimmed = _MUST_NOT.sub("Don't ", trimmed)
            return _MUST.sub("", trimmed)
        return prompt

    @staticmethod
    def _adapt_constraints(prompt: str, target: ModelFamily) -> str:
        if target == ModelFamily.LLAMA3:
            match = _SENTENCE_LIST.search(prompt)
            if match is None:
                return prompt
            items = [g for g in match.groups() if g is not None]
            replacement = "\n".join(f"- {item}" for item in items)
            return prompt[: match.start()] + replacement + prompt[match.end():]
        if target == ModelFamily.QWEN:
            adapted = _BULLET.sub(r" \1.", prompt)
            return _DOUBLE_PERIOD.sub(".", adapted)
        return prompt

    def _add_model_anchors(self, prompt: str, target: ModelFamily) -> str:
        if target == ModelFamily.LLAMA3:
            if "RULES:" not in prompt and "INSTRUCTIONS:" not in prompt:
                prompt = "## INSTRUCTIONS\n\n" + prompt
        return prompt + self.get_json_reinforcement(target)