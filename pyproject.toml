[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "deskpilot"
version = "3.0.0"
description = "Desktop assistant core: LLM orchestration, model-aware prompt translation, a ReAct agent loop, file helpers, GPU configuration and model downloads"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "llm",
    "agent",
    "react",
    "prompt",
    "desktop-assistant",
    "gguf",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["deskpilot"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
