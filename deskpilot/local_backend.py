"""Local GGUF inference backend: prompt assembly, sampling, embeddings and idle unload."""

from __future__ import annotations

import abc
import logging
import math
import os
import random
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

from deskpilot.instruction_translator import Message

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_DIRS: tuple[str, ...] = (
    "models",
    "data/models",
    "../models",
    "M:/AI/MODELS/TEXT",
)

PREFERRED_PATTERNS: tuple[str, ...] = (
    "Instruct-Q4_K_M",
    "Instruct-Q6_K",
    "instruct",
    "Q4_K_M",
    "Q6_K",
    ".gguf",
)

FALLBACK_MODEL_PATH = "models/model.gguf"
EMBEDDING_DIM = 128
MAX_EMBEDDING_TOKENS = 256
CHAT_SEQUENCE = 0
EMBEDDING_SEQUENCE = 1

NOT_LOADED_MESSAGE = (
    "Error: Local model is not loaded correctly. "
    "Please check your model path in Settings."
)
INVALID_CONTEXT_MESSAGE = (
    "Error: Model context became invalid. "
    "Please restart the app or reload the model."
)


class LoadedModel(abc.ABC):
    """A model loaded into memory together with its inference context."""

    @property
    @abc.abstractmethod
    def n_batch(self) -> int:
        """Largest number of tokens accepted by one ``decode`` call."""

    @abc.abstractmethod
    def tokenize(self, text: str) -> list[int]:
        """Turn text into token ids."""

    @abc.abstractmethod
    def decode(self, tokens: Sequence[int], start_pos: int, seq_id: int) -> list[float]:
        """Evaluate tokens at consecutive positions; return the logits of the last one.

        Raises an exception when evaluation fails.
        """

    @abc.abstractmethod
    def token_to_piece(self, token: int) -> str:
        """Text of a single token."""

    @abc.abstractmethod
    def is_end_of_generation(self, token: int) -> bool:
        """True when the token ends generation."""

    @abc.abstractmethod
    def clear_memory(self) -> None:
        """Drop the whole key/value cache."""

    @abc.abstractmethod
    def remove_sequence(self, seq_id: int) -> None:
        """Drop one sequence from the key/value cache."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the model and its context."""


ModelLoader = Callable[[str, int, int, int], LoadedModel]


def build_full_prompt(prompt: str, history: Sequence[Message]) -> str:
    """Render conversation history plus the current prompt as plain text."""
    if not history:
        return prompt

    parts: list[str] = []
    for msg in history:
        if msg.role == "system":
            parts.append(f"{msg.content}\n\n")
        elif msg.role == "user":
            parts.append(f"User: {msg.content}\n")
        elif msg.role == "assistant":
            parts.append(f"Assistant: {msg.content}\n")

    last = history[-1]
    if not (last.role == "user" and last.content == prompt):
        parts.append(f"User: {prompt}\n")
    parts.append("Assistant: ")
    return "".join(parts)


def find_model_path(search_dirs: Iterable[str] | None = None) -> str:
    """Pick the best ``.gguf`` file found in the search directories."""
    dirs = DEFAULT_SEARCH_DIRS if search_dirs is None else tuple(search_dirs)
    all_models: list[str] = []
    for directory in dirs:
        base = Path(directory)
        if not base.is_dir():
            continue
        try:
            entries = sorted(base.iterdir())
        except OSError:
            continue
        all_models.extend(str(entry) for entry in entries if entry.suffix == ".gguf")

    for pattern in PREFERRED_PATTERNS:
        for model in all_models:
            if pattern in model:
                logger.info("LocalBackend: selected model: %s", model)
                return model

    return all_models[0] if all_models else FALLBACK_MODEL_PATH


def trim_prompt_tokens(tokens: Sequence[int], context_size: int) -> list[int]:
    """Keep the head and tail of a prompt that exceeds half the context."""
    count = len(tokens)
    half = context_size // 2
    if count <= half:
        return list(tokens)
    keep_prefix = min(128, count // 4)
    keep_suffix = max(0, half - keep_prefix)
    trimmed = list(tokens[:keep_prefix]) + list(tokens[count - keep_suffix:] if keep_suffix else [])
    logger.warning(
        "KV cache shift: trimmed prompt from %d to %d tokens", count, len(trimmed)
    )
    return trimmed


def sample_token(
    logits: Sequence[float],
    temperature: float,
    top_p: float,
    rng: random.Random | None = None,
) -> int:
    """Choose the next token: greedy at very low temperature, otherwise top-p."""
    if temperature < 0.01:
        best = 0
        best_value = logits[0]
        for token, value in enumerate(logits):
            if value > best_value:
                best, best_value = token, value
        return best

    candidates = sorted(
        ((value / temperature, token) for token, value in enumerate(logits)),
        reverse=True,
    )
    max_score = candidates[0][0]
    weights = [(math.exp(score - max_score), token) for score, token in candidates]
    total = sum(weight for weight, _ in weights)

    generator = rng if rng is not None else random.Random()
    threshold = generator.uniform(0.0, top_p * total)

    cumulative = 0.0
    for weight, token in weights:
        cumulative += weight
        if cumulative >= threshold:
            return token
    return weights[0][1]


def compact_embedding(logits: Sequence[float], dim: int = EMBEDDING_DIM) -> list[float]:
    """Fold a logit vector into ``dim`` buckets and L2-normalise it."""
    embedding = [0.0] * dim
    for index, value in enumerate(logits):
        embedding[index % dim] += value
    norm = math.sqrt(sum(v * v for v in embedding))
    if norm > 0.0:
        embedding = [v / norm for v in embedding]
    return embedding


class LocalBackend:
    """Runs a local model through a loader, freeing it when idle or on shutdown."""

    IDLE_TIMEOUT_SECONDS = 300

    def __init__(self, model_path: str = "", loader: ModelLoader | None = None) -> None:
        self.model_path = model_path or find_model_path()
        self.gpu_layers = 0
        self.context_size = 4096
        self.thread_count = os.cpu_count() or 4
        self.max_tokens = 512
        self.temperature = 0.7
        self.top_p = 0.9
        self._loader = loader
        self._model: LoadedModel | None = None
        self._loaded = False
        self._lock = threading.RLock()
        self._cancel = threading.Event()
        self._rng = random.Random()
        self._last_activity = time.monotonic()

    # ── Configuration ───────────────────────────────────────────

    def set_gpu_layers(self, layers: int) -> None:
        """Number of layers to offload to the GPU on the next load."""
        self.gpu_layers = layers

    def set_context_size(self, size: int) -> None:
        """Context window used on the next load."""
        self.context_size = size

    def set_thread_count(self, count: int) -> None:
        """Worker threads used on the next load."""
        self.thread_count = count

    # ── Lifecycle ───────────────────────────────────────────────

    def initialize(self) -> bool:
        """Load the model; return whether it is loaded."""
        with self._lock:
            if self._loaded:
                return True
            if self._loader is None:
                return False
            if not os.path.exists(self.model_path):
                logger.error("LocalBackend: model not found: %s", self.model_path)
                return False
            try:
                self._model = self._loader(
                    self.model_path,
                    self.gpu_layers,
                    self.context_size,
                    max(1, self.thread_count),
                )
            except Exception:
                logger.exception("LocalBackend: failed to load model: %s", self.model_path)
                self._model = None
                return False
            self._loaded = True
            self._touch()
            logger.info(
                "LocalBackend loaded: %s (GPU layers: %d, threads: %d, ctx: %d)",
                self.model_path,
                self.gpu_layers,
                self.thread_count,
                self.context_size,
            )
            return True

    def shutdown(self) -> None:
        """Release the model and all memory it holds."""
        with self._lock:
            if self._model is not None:
                self._model.close()
                self._model = None
            self._loaded = False

    def is_ready(self) -> bool:
        """True while a model is loaded."""
        return self._loaded

    # ── Inference ───────────────────────────────────────────────

    def generate(self, prompt: str, history: Sequence[Message] = ()) -> str:
        """Generate a reply to ``prompt`` in the context of ``history``."""
        with self._lock:
            if self._loader is None:
                return ""
            if not self._loaded and not self.initialize():
                logger.error("LocalBackend.generate: model not loaded")
                return NOT_LOADED_MESSAGE
            model = self._model
            if model is None:
                self._loaded = False
                return INVALID_CONTEXT_MESSAGE

            self._touch()
            self._cancel.clear()
            try:
                return self._run_generation(model, build_full_prompt(prompt, history))
            finally:
                self._cancel.clear()

    def _run_generation(self, model: LoadedModel, full_prompt: str) -> str:
        try:
            tokens = model.tokenize(full_prompt)
        except Exception:
            logger.exception("LocalBackend: tokenization failed")
            return ""
        tokens = trim_prompt_tokens(tokens, self.context_size)

        model.clear_memory()
        try:
            logits = self._evaluate(model, tokens, CHAT_SEQUENCE)
        except Exception:
            logger.exception("LocalBackend: prompt decode failed")
            return ""

        pieces: list[str] = []
        position = len(tokens)
        for _ in range(self.max_tokens):
            if self._cancel.is_set():
                logger.warning("LocalBackend: generation cancelled")
                break
            if not logits:
                break
            token = sample_token(logits, self.temperature, self.top_p, self._rng)
            if model.is_end_of_generation(token):
                break
            pieces.append(model.token_to_piece(token))
            if position >= self.context_size - 1:
                logger.warning(
                    "Context limit reached during generation (%d/%d)",
                    position,
                    self.context_size,
                )
                break
            current = position
            position += 1
            try:
                logits = model.decode([token], current, CHAT_SEQUENCE)
            except Exception:
                break
        return "".join(pieces)

    @staticmethod
    def _evaluate(model: LoadedModel, tokens: Sequence[int], seq_id: int) -> list[float] | None:
        step = max(1, model.n_batch)
        logits: list[float] | None = None
        for start in range(0, len(tokens), step):
            logits = model.decode(tokens[start:start + step], start, seq_id)
        return logits

    def get_embeddings(self, text: str) -> list[float]:
        """Return a normalised 128-value vector describing ``text``."""
        with self._lock:
            if self._loader is None:
                return []
            if not self._loaded and not self.initialize():
                return []
            model = self._model
            if model is None:
                return []
            self._touch()

            try:
                tokens = model.tokenize(text)
            except Exception:
                return []
            if not tokens:
                return []
            tokens = tokens[:MAX_EMBEDDING_TOKENS]

            try:
                logits = self._evaluate(model, tokens, EMBEDDING_SEQUENCE)
            except Exception:
                logger.exception("LocalBackend: embedding decode failed")
                return []

            embedding = compact_embedding(logits or [], EMBEDDING_DIM)
            model.remove_sequence(EMBEDDING_SEQUENCE)
            return embedding

    # ── Control ─────────────────────────────────────────────────

    def cancel_generation(self) -> None:
        """Ask a running generation to stop after the current token."""
        self._cancel.set()

    def info(self) -> str:
        """One-line description of the backend state."""
        state = "[LOADED]" if self._loaded else "[NOT LOADED]"
        return (
            f"Local GGUF ({self.model_path}) {state}"
            f" | GPU layers: {self.gpu_layers}"
            f" | ctx: {self.context_size}"
            f" | threads: {self.thread_count}"
        )

    def check_idle_unload(self) -> None:
        """Unload the model when it has been idle for the timeout."""
        with self._lock:
            if not self._loaded:
                return
            if time.monotonic() - self._last_activity >= self.IDLE_TIMEOUT_SECONDS:
                logger.info(
                    "LocalBackend: idle for %ss, unloading", self.IDLE_TIMEOUT_SECONDS
                )
                self.shutdown()

    def _touch(self) -> None:
        self._last_activity = time.monotonic()