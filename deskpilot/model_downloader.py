"""Catalogue of downloadable GGUF models and a streaming downloader for them."""

from __future__ import annotations

import enum
import logging
import os
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

MODEL_HUB_URL = os.environ.get("DESKPILOT_MODEL_HUB", "https://huggingface.co")
USER_AGENT = "deskpilot/3.0"
CHUNK_SIZE = 1024 * 1024
MIN_MODEL_BYTES = 1024
TIMEOUT_SECONDS = 60

ProgressCallback = Callable[[int, int], None]
Opener = Callable[[urllib.request.Request], Any]


class Tier(enum.Enum):
    """Performance class of the machine, used to suggest a model size."""

    LOW = "low"
    MID = "mid"
    HIGH = "high"


class DownloadError(Exception):
    """A model could not be downloaded."""


@dataclass(frozen=True)
class ModelOption:
    """A model that can be offered for download."""

    name: str
    description: str
    params: str
    file_size: str
    filename: str
    repository: str
    recommended_tier: Tier

    @property
    def url(self) -> str:
        """Where the model file is fetched from."""
        return f"{MODEL_HUB_URL}/{self.repository}/resolve/main/{self.filename}"


MODELS: tuple[ModelOption, ...] = (
    ModelOption(
        name="Qwen2.5-1.5B-Instruct",
        description=(
            "Compact & fast — ideal for low-end systems. "
            "Great for simple tasks, quick commands, and basic reasoning."
        ),
        params="1.5B parameters",
        file_size="~1.1 GB",
        filename="qwen2.5-1.5b-instruct-q4_k_m.gguf",
        repository="Qwen/Qwen2.5-1.5B-Instruct-GGUF",
        recommended_tier=Tier.LOW,
    ),
    ModelOption(
        name="Llama-3.2-3B-Instruct",
        description=(
            "Balanced performance — best for most systems. "
            "Strong reasoning, tool use, and multi-step planning."
        ),
        params="3B parameters",
        file_size="~2.0 GB",
        filename="Llama-3.2-3B-Instruct-Q4_K_M.gguf",
        repository="bartowski/Llama-3.2-3B-Instruct-GGUF",
        recommended_tier=Tier.MID,
    ),
    ModelOption(
        name="Mistral-7B-Instruct-v0.3",
        description=(
            "Maximum capability — for powerful hardware. "
            "Best reasoning, complex tool chains, and code generation."
        ),
        params="7B parameters",
        file_size="~4.1 GB",
        filename="Mistral-7B-Instruct-v0.3.Q4_K_M.gguf",
        repository="MaziyarPanahi/Mistral-7B-Instruct-v0.3-GGUF",
        recommended_tier=Tier.HIGH,
    ),
)


def recommended_model(tier: Tier) -> ModelOption:
    """The catalogue entry suggested for a machine of the given tier."""
    return next((m for m in MODELS if m.recommended_tier == tier), MODELS[0])


def human_size(num_bytes: int) -> str:
    """Readable size: bytes, KB and MB with one decimal, GB with two."""
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    if num_bytes < 1024 ** 3:
        return f"{num_bytes / 1024 ** 2:.1f} MB"
    return f"{num_bytes / 1024 ** 3:.2f} GB"


def is_model_needed(model_path: str | os.PathLike[str] | None) -> bool:
    """True when no model path is configured or the file it names is missing."""
    if not model_path:
        return True
    return not Path(model_path).exists()


def _content_length(response: Any) -> int:
    headers = getattr(response, "headers", None)
    if headers is None:
        return 0
    value = headers.get("Content-Length")
    try:
        return max(0, int(value)) if value is not None else 0
    except (TypeError, ValueError):
        return 0


def download_model(
    option: ModelOption,
    models_dir: str | os.PathLike[str],
    progress: ProgressCallback | None = None,
    opener: Opener | None = None,
) -> Path:
    """Stream a model into ``models_dir`` and return the path of the file.

    A file already present with more than a trivial size is reused. The
    ``progress`` callback receives bytes received and the expected total
    (0 when unknown); an exception raised from it aborts the download. Any
    partial file is removed when the download does not complete.
    """
    directory = Path(models_dir)
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / option.filename

    if target.is_file() and target.stat().st_size > MIN_MODEL_BYTES:
        logger.info("Using existing model: %s", target)
        return target

    open_url = opener or (lambda req: urllib.request.urlopen(req, timeout=TIMEOUT_SECONDS))
    request = urllib.request.Request(option.url, headers={"User-Agent": USER_AGENT})
    logger.info("Starting download: %s -> %s", option.url, target)

    received = 0
    try:
        with open_url(request) as response, target.open("wb") as out:
            total = _content_length(response)
            while True:
                chunk = response.read(CHUNK_SIZE)
                if not chunk:
                    break
                out.write(chunk)
                received += len(chunk)
                if progress is not None:
                    progress(received, total)
    except (urllib.error.URLError, OSError) as exc:
        target.unlink(missing_ok=True)
        logger.error("Download failed, removed partial file: %s", target)
        raise DownloadError(f"Failed to download model:\n{exc}") from exc
    except BaseException:
        target.unlink(missing_ok=True)
        logger.info("Download aborted, removed partial file: %s", target)
        raise

    if received < MIN_MODEL_BYTES:
        target.unlink(missing_ok=True)
        raise DownloadError(
            "Downloaded file is too small — the URL may be invalid.\n"
            "Please check your internet connection and try again."
        )

    logger.info("Model downloaded: %s (%s)", target, human_size(received))
    return target