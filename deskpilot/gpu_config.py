"""GPU acceleration backend choice and its persisted configuration."""

from __future__ import annotations

import enum
import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_PATH = Path("data") / "gpu_config.json"

_BACKEND_NAMES = {
    "cuda": "CUDA (NVIDIA)",
    "vulkan": "Vulkan",
    "cpu": "CPU Only",
}

_LAYER_STEPS: tuple[tuple[int, int], ...] = (
    (4096, 32),
    (2048, 18),
    (1024, 10),
)


class GpuBackend(enum.Enum):
    """Acceleration engine used for inference."""

    CUDA = "cuda"
    VULKAN = "vulkan"
    CPU = "cpu"


@dataclass
class GpuConfig:
    """Chosen backend plus what was detected about the GPU."""

    backend: GpuBackend = GpuBackend.CPU
    gpu_name: str = ""
    gpu_memory_mb: int = 0
    vendor: str = "unknown"
    recommended_layers: int = 0

    @property
    def backend_name(self) -> str:
        """Human-readable name of the backend."""
        return _BACKEND_NAMES[self.backend.value]

    @classmethod
    def load(cls, path: str | Path = CONFIG_PATH) -> GpuConfig:
        """Read a saved configuration; defaults when missing or unreadable."""
        file = Path(path)
        if not file.exists():
            return cls()
        try:
            data = json.loads(file.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("configuration is not a JSON object")
            backend_text = data.get("backend", "cpu")
            try:
                backend = GpuBackend(backend_text)
            except ValueError:
                backend = GpuBackend.CPU
            return cls(
                backend=backend,
                gpu_name=str(data.get("gpu_name", "")),
                gpu_memory_mb=int(data.get("gpu_memory_mb", 0)),
                vendor=str(data.get("vendor", "unknown")),
                recommended_layers=int(data.get("recommended_layers", 0)),
            )
        except (OSError, ValueError, TypeError):
            logger.warning("Could not read GPU configuration from %s", file)
            return cls()

    def save(self, path: str | Path = CONFIG_PATH) -> None:
        """Write the configuration as indented JSON, creating its directory."""
        file = Path(path)
        data = {
            "backend": self.backend.value,
            "gpu_name": self.gpu_name,
            "gpu_memory_mb": self.gpu_memory_mb,
            "vendor": self.vendor,
            "recommended_layers": self.recommended_layers,
        }
        try:
            file.parent.mkdir(parents=True, exist_ok=True)
            file.write_text(json.dumps(data, indent=4), encoding="utf-8")
        except OSError:
            logger.warning("Could not write GPU configuration to %s", file)


def recommended_layers(gpu_memory_mb: int) -> int:
    """Number of model layers worth offloading for the given VRAM."""
    for threshold, layers in _LAYER_STEPS:
        if gpu_memory_mb >= threshold:
            return layers
    return 0


def cuda_available() -> bool:
    """True when ``nvidia-smi`` runs successfully and reports a GPU name."""
    try:
        completed = subprocess.run(
            ["nvidia-smi", "--query-gpu=name", "--format=csv,noheader"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (OSError, subprocess.SubprocessError):
        return False
    if completed.returncode != 0 or not completed.stdout:
        return False
    first_line = completed.stdout.splitlines(keepends=True)[0]
    return len(first_line) > 2


def choose_gpu_config(
    gpu_name: str, gpu_memory_mb: int, vendor: str, cuda_ok: bool
) -> GpuConfig:
    """Pick the backend for a detected GPU without asking the user.

    NVIDIA gets CUDA when the toolkit works and Vulkan otherwise; AMD gets
    Vulkan; anything else gets Vulkan with no layers offloaded.
    """
    cfg = GpuConfig(
        gpu_name=gpu_name,
        gpu_memory_mb=gpu_memory_mb,
        vendor=vendor,
        recommended_layers=recommended_layers(gpu_memory_mb),
    )
    if vendor == "nvidia":
        cfg.backend = GpuBackend.CUDA if cuda_ok else GpuBackend.VULKAN
    elif vendor == "amd":
        cfg.backend = GpuBackend.VULKAN
    else:
        cfg.backend = GpuBackend.VULKAN
        cfg.recommended_layers = 0
    return cfg