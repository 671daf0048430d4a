"""Coordinate a local and a cloud inference backend behind one conversation."""

from __future__ import annotations

import enum
import json
import logging
import re
import threading
import time
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from deskpilot.instruction_translator import InstructionTranslator, Message, ModelFamily

logger = logging.getLogger(__name__)

MAX_CACHE_ENTRIES = 100
HISTORY_WINDOW = 3
KEEP_RECENT_MESSAGES = 8
MAX_SUMMARISED_MESSAGES = 10
SNIPPET_LENGTH = 50

_TIMESTAMP = re.compile(r"[0-9]{10,}|[0-9]{4}-.{5}(?:T.{0,8})?", re.DOTALL)
_OBSERVATION = re.compile(r"Observation:.*?(?=Thought:|\Z)", re.DOTALL)
_ACTIVE_WINDOW = re.compile(r"Active window:[^\n]*\n?")
_JSON_BLOCK = re.compile(r"```(?:json)?\s*\n?(\{[\s\S]*?\})\s*\n?```")


class BackendType(enum.Enum):
    """Which inference engine handles requests."""

    LOCAL = "local"
    CLOUD = "cloud"


@runtime_checkable
class AIBackend(Protocol):
    """What the controller needs from an inference backend."""

    def initialize(self) -> bool:
        """Prepare the backend; return whether it is usable."""

    def shutdown(self) -> None:
        """Release every resource the backend holds."""

    def is_ready(self) -> bool:
        """True while the backend can generate."""

    def generate(self, prompt: str, history: Sequence[Message]) -> str:
        """Reply to ``prompt`` given the conversation ``history``."""

    def cancel_generation(self) -> None:
        """Ask a running generation to stop."""

    def info(self) -> str:
        """One-line description of the backend."""


@dataclass
class _CacheEntry:
    response: str
    time: float


class LLMController:
    """Routes prompts to the active backend with caching, failover and persona translation."""

    def __init__(self, local_backend: Any, cloud_backend: Any = None) -> None:
        self._local = local_backend
        self._cloud = cloud_backend
        self._active = local_backend
        self._active_type = BackendType.LOCAL

        self._translator = InstructionTranslator()
        self.local_model_family = InstructionTranslator.detect_family(local_backend.info())
        self.cloud_model_family = ModelFamily.LLAMA3
        self._active_family = self.local_model_family

        self._conversation: list[Message] = []
        self._system_prompt = ""
        self.max_conversation_messages = 20

        self._cache: dict[str, _CacheEntry] = {}
        self.cache_ttl_seconds = 300.0
        self.failover_enabled = True
        self.failover_count = 0

        self._lock = threading.RLock()
        self._cache_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="llm")

        logger.info(
            "LLMController: dual engine ready (local: %s | cloud: %s)",
            self.local_model_family.name,
            self.cloud_model_family.name,
        )

    # ── Lifecycle ───────────────────────────────────────────────

    def close(self) -> None:
        """Wait for pending async work, then shut both backends down."""
        self._executor.shutdown(wait=True)
        self._local.shutdown()
        if self._cloud is not None:
            self._cloud.shutdown()
        logger.info("LLMController: both backends shut down")

    def __enter__(self) -> LLMController:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def load_model(self) -> bool:
        """Initialise the active backend."""
        with self._lock:
            return self._active.initialize()

    def unload_model(self) -> None:
        """Shut the active backend down."""
        with self._lock:
            self._active.shutdown()

    def is_model_loaded(self) -> bool:
        """True when the active backend is ready."""
        with self._lock:
            return self._active.is_ready()

    def cancel_generation(self) -> None:
        """Stop a generation in progress on the active backend."""
        self._active.cancel_generation()

    def check_idle_unload(self) -> None:
        """Let the local backend free its memory if it has been idle."""
        self._local.check_idle_unload()

    @property
    def active_backend(self) -> BackendType:
        """The backend currently handling requests."""
        return self._active_type

    @property
    def conversation(self) -> list[Message]:
        """A copy of the current conversation."""
        with self._lock:
            return list(self._conversation)

    # ── Generation ──────────────────────────────────────────────

    def generate_response(self, prompt: str) -> str:
        """Generate a reply, using the cache and failing over when needed."""
        with self._lock:
            if not self._active.is_ready() and not self._active.initialize():
                logger.error("LLMController: failed to initialise active backend")
                return self._try_failover(prompt) if self.failover_enabled else ""

            key = self.canonical_cache_key(prompt)
            cached = self._lookup(key)
            if cached is not None:
                return cached

            result = self._active.generate(prompt, list(self._conversation))
            if not result and self.failover_enabled:
                logger.warning("LLMController: active backend returned nothing, failing over")
                result = self._try_failover(prompt)

            if result:
                with self._cache_lock:
                    self._cache[key] = _CacheEntry(result, time.monotonic())
                    if len(self._cache) > MAX_CACHE_ENTRIES:
                        self._cache.clear()
            return result

    def _try_failover(self, prompt: str) -> str:
        if self._active_type == BackendType.LOCAL:
            fallback = self._cloud
        else:
            fallback = self._local
        if fallback is None:
            return ""
        if not fallback.is_ready() and not fallback.initialize():
            logger.error("LLMController: failover backend also failed to initialise")
            return ""
        result = fallback.generate(prompt, list(self._conversation))
        if result:
            self.failover_count += 1
            logger.info("LLMController: failover succeeded (count: %d)", self.failover_count)
        return result

    def generate_react_response(self, prompt: str) -> str:
        """Generate a reply for an agent step."""
        return self.generate_response(prompt)

    def generate_response_async(self, prompt: str) -> Future[str]:
        """Generate in the background; requests run one after another."""
        return self._executor.submit(self.generate_response, prompt)

    def get_embeddings(self, text: str) -> list[float]:
        """Embed ``text`` with the local backend, loading it if necessary."""
        with self._lock:
            if not self._local.is_ready():
                logger.warning("LLMController: re-initialising local backend for embeddings")
                if not self._local.initialize():
                    return []
            return self._local.get_embeddings(text)

    # ── Agent helpers ───────────────────────────────────────────

    def react_step(
        self, task: str, observation: Any, history: Sequence[Any]
    ) -> dict[str, Any] | None:
        """Ask for the next agent action as a JSON object; None when none came back."""
        prompt = (
            f"{task}\n\nCurrent state:\n"
            f"{json.dumps(observation, indent=2, sort_keys=True, ensure_ascii=False)}\n\n"
        )
        if history:
            recent = list(history[-HISTORY_WINDOW:])
            prompt += f"Recent actions:\n{self.format_history(recent)}\n\n"
        prompt += "Output ONLY valid JSON:"

        response = self.generate_response(prompt)
        if not response:
            return None
        try:
            return self.validate_and_fill(self.parse_json_strict(response))
        except (TypeError, ValueError):
            logger.warning("Failed to parse ReAct response: %s", response)
            return None

    def parse_ambiguous_command(self, command: str, context: str = "") -> Any | None:
        """Ask the model to turn a free-form command into an action object."""
        safe_cmd = command.replace('"', '\\"')
        prompt = f'Parse this command into a JSON action. Command: "{safe_cmd}"'
        if context:
            prompt += f"\nContext: {context}"
        prompt += '\n\nRespond with ONLY: {"action": "name", "params": {}}'

        response = self.generate_response(prompt)
        if not response:
            return None
        return self.parse_json_strict(response)

    # ── Backend switching ───────────────────────────────────────

    def set_backend(self, backend_type: BackendType) -> None:
        """Switch engines, freeing the old one and adapting the system persona."""
        with self._lock:
            if backend_type == self._active_type:
                logger.info("LLMController: already using %s backend", backend_type.value)
                return
            if backend_type == BackendType.CLOUD and self._cloud is None:
                raise ValueError("no cloud backend configured")

            self._active.shutdown()

            new_family = (
                self.cloud_model_family
                if backend_type == BackendType.CLOUD
                else self.local_model_family
            )
            if new_family != self._active_family and self._conversation and self._system_prompt:
                translated = self._translator.translate_system_prompt(
                    self._system_prompt, ModelFamily.GENERIC, new_family
                )
                for msg in self._conversation:
                    if msg.role == "system":
                        msg.content = translated
            self._active_family = new_family

            self._active = self._cloud if backend_type == BackendType.CLOUD else self._local
            self._active_type = backend_type

            if not self._active.initialize() and backend_type == BackendType.CLOUD:
                logger.warning("LLMController: cloud backend failed, falling back to local")
                self._active = self._local
                self._active_type = BackendType.LOCAL
                self._active_family = self.local_model_family
                self._active.initialize()

    def set_cloud_model(self, model: str) -> None:
        """Choose the cloud model and detect its instruction family."""
        setter = getattr(self._cloud, "set_model", None)
        if setter is not None:
            setter(model)
        self.cloud_model_family = InstructionTranslator.detect_family(model)

    # ── Conversation ────────────────────────────────────────────

    def add_user_message(self, content: str) -> None:
        """Append a user turn, summarising old turns when the history grows long."""
        with self._lock:
            self._conversation.append(Message("user", content))
            self._prune_conversation()

    def add_assistant_message(self, content: str) -> None:
        """Append an assistant turn."""
        with self._lock:
            self._conversation.append(Message("assistant", content))

    def set_system_prompt(self, prompt: str) -> None:
        """Set the system prompt, replacing or inserting the leading system turn."""
        with self._lock:
            self._system_prompt = prompt
            if self._conversation and self._conversation[0].role == "system":
                self._conversation[0].content = prompt
            else:
                self._conversation.insert(0, Message("system", prompt))

    def clear_conversation(self) -> None:
        """Forget the conversation, keeping only the system prompt."""
        with self._lock:
            self._conversation.clear()
            if self._system_prompt:
                self._conversation.append(Message("system", self._system_prompt))

    def _prune_conversation(self) -> None:
        total = len(self._conversation)
        if total <= self.max_conversation_messages:
            return
        start = 1 if self._conversation and self._conversation[0].role == "system" else 0
        non_system = total - start
        if non_system <= self.max_conversation_messages:
            return
        keep_recent = min(KEEP_RECENT_MESSAGES, non_system)
        summarize_count = non_system - keep_recent
        if summarize_count <= 0:
            return

        limit = min(summarize_count, MAX_SUMMARISED_MESSAGES)
        parts = []
        for msg in self._conversation[start:start + limit]:
            snippet = msg.content[:SNIPPET_LENGTH]
            if len(msg.content) > SNIPPET_LENGTH:
                snippet += "..."
            parts.append(f"{msg.role}: {snippet} | ")
        summary = "[Conversation summary: " + "".join(parts)
        if summarize_count > limit:
            summary += f"...and {summarize_count - limit} more messages"
        summary += "]"

        self._conversation[start:start + summarize_count] = [Message("system", summary)]
        logger.info(
            "LLMController: pruned conversation from %d to %d messages",
            total,
            len(self._conversation),
        )

    def get_model_info(self) -> str:
        """Describe the active backend and the conversation length."""
        label = "LOCAL" if self._active_type == BackendType.LOCAL else "CLOUD"
        return (
            f"[{label}] {self._active.info()}"
            f" | conversation: {len(self._conversation)} messages"
        )

    # ── Cache ───────────────────────────────────────────────────

    def _lookup(self, key: str) -> str | None:
        with self._cache_lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if time.monotonic() - entry.time < self.cache_ttl_seconds:
                return entry.response
            del self._cache[key]
            return None

    def get_cached_response(self, prompt: str) -> str | None:
        """Return a fresh cached response for ``prompt``, if any."""
        return self._lookup(prompt)

    def cache_response(self, prompt: str, response: str) -> None:
        """Store a response, evicting the oldest entry past the size limit."""
        with self._cache_lock:
            self._cache[prompt] = _CacheEntry(response, time.monotonic())
            if len(self._cache) > MAX_CACHE_ENTRIES:
                oldest = min(self._cache, key=lambda k: self._cache[k].time)
                del self._cache[oldest]

    # ── Parsing ─────────────────────────────────────────────────

    @staticmethod
    def parse_json_strict(text: str) -> Any:
        """Extract JSON from a model reply, wrapping plain text as a chat action."""
        try:
            return json.loads(text)
        except ValueError:
            pass

        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            try:
                return json.loads(text[start:end + 1])
            except ValueError:
                pass

        match = _JSON_BLOCK.search(text)
        if match is not None:
            try:
                return json.loads(match.group(1))
            except ValueError:
                pass

        logger.warning("LLM produced plain text; wrapping as chat reply")
        trimmed = text.strip(" \t\r\n")
        if not trimmed:
            return {
                "thought": "No response from LLM",
                "action": "chat",
                "params": {"message": "I'm thinking... could you rephrase that?"},
            }
        return {
            "thought": "LLM replied naturally — delivering as chat",
            "action": "chat",
            "params": {"message": trimmed},
        }

    @staticmethod
    def validate_and_fill(parsed: Any) -> dict[str, Any]:
        """Ensure an action object has ``action``, ``params`` and ``thought``."""
        if not isinstance(parsed, dict):
            raise TypeError("model reply is not a JSON object")
        filled = dict(parsed)
        filled.setdefault("action", "task_complete")
        filled.setdefault("params", {})
        filled.setdefault("thought", "")
        return filled

    @staticmethod
    def format_history(history: Sequence[Any]) -> str:
        """Number history entries, one compact JSON object per line."""
        return "".join(
            f"{number}. {json.dumps(entry, separators=(',', ':'), sort_keys=True, ensure_ascii=False)}\n"
            for number, entry in enumerate(history, start=1)
        )

    @staticmethod
    def canonical_cache_key(prompt: str) -> str:
        """Strip timestamps, observations and window titles that change every call."""
        key = _TIMESTAMP.sub("", prompt)
        key = _OBSERVATION.sub("", key)
        return _ACTIVE_WINDOW.sub("", key)