"""Desktop assistant core: prompt translation, local and dual-backend LLM control, a ReAct agent loop, file helpers, GPU configuration and model downloads."""

__version__ = "3.0.0"

__all__ = [
    "file_manager",
    "gpu_config",
    "instruction_translator",
    "llm_controller",
    "local_backend",
    "model_downloader",
    "react_agent",
]