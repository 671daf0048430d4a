# deskpilot

The reasoning core of a desktop assistant. It has no runtime dependencies
beyond the standard library.

## Modules

- **`deskpilot.instruction_translator`**: `InstructionTranslator.detect_family`
  works out the `ModelFamily` (Llama-3, Qwen, Mistral, Phi, Gemma or generic)
  from a model name or path. `translate_system_prompt` and
  `translate_conversation` rewrite system prompts in the style that family
  follows best. Only system messages are rewritten; user and assistant turns
  pass through unchanged. `get_persona_frame` and `get_json_reinforcement`
  return ready-made persona texts and JSON-only reminders.
- **`deskpilot.local_backend`**: `LocalBackend` runs a local model through a
  loader that you supply. The loader is called as
  `loader(model_path, gpu_layers, context_size, threads)` and returns a
  `LoadedModel`. The backend builds the prompt from the conversation history
  (`build_full_prompt`) and keeps only the head and tail of a prompt longer
  than half the context (`trim_prompt_tokens`). It samples greedily or with
  temperature and top-p (`sample_token`) and folds logits into 128-value
  normalised embeddings (`compact_embedding`). `check_idle_unload` frees the
  model once it has been idle for 300 seconds. When no model path is given,
  `find_model_path` looks for `.gguf` files in `models`, `data/models` and
  `../models`, preferring instruct and Q4_K_M builds.
- **`deskpilot.llm_controller`**: `LLMController` takes a local backend and an
  optional cloud backend, each an `AIBackend`.
  - `generate_response` answers from a cache keyed on the prompt with
    timestamps, `Observation:` blocks and `Active window:` lines removed
    (`canonical_cache_key`). If the active backend cannot start or returns
    nothing, it fails over to the other backend.
  - `set_backend(BackendType.CLOUD)` / `set_backend(BackendType.LOCAL)` shuts
    the old backend down and rewrites the system prompt for the new model
    family. It raises `ValueError` when no cloud backend is configured.
  - `add_user_message` folds older turns into a summary once the conversation
    grows past `max_conversation_messages`.
  - `react_step` asks for the next agent action. `parse_json_strict` pulls
    JSON out of a reply and turns plain text into a `chat` action.
  - `generate_response_async` runs requests one after another on a background
    thread. `close()` (or a `with` block) waits for them and shuts both
    backends down.
- **`deskpilot.react_agent`**: `ReActAgent(llm, executor, observe=None,
  step_delay=0.3)` runs an observe / think / act loop of up to 10 steps.
  `llm` is anything with a `react_step` method, such as `LLMController`.
  `executor(action, params)` returns `(success, message)`. When the model
  gives no plan, the agent uses `fallback_think`, which matches keywords. The
  loop stops after the same action with the same parameters has come up more
  than three times, and `stop()` ends it early.
- **`deskpilot.file_manager`**: `FileManager` lists, searches, copies, moves
  and renames files, and groups them by type (`organize_by_type`). If it is
  given a guard object with `validate_file_operation(operation, path)` and
  `log_action(action, target, status)`, each change is checked and logged
  first. Refused or failed operations raise `FileOperationError`. Helper
  functions are `resolve_location`, `format_file_size`, `get_file_extension`
  and `get_file_category`.
- **`deskpilot.gpu_config`**: `choose_gpu_config` picks CUDA or Vulkan for a
  detected GPU. `recommended_layers` says how many layers to offload for a
  given amount of VRAM. `cuda_available` runs `nvidia-smi` to check for CUDA.
  `GpuConfig.save` / `GpuConfig.load` store the choice as JSON, by default in
  `data/gpu_config.json`.
- **`deskpilot.model_downloader`**: `MODELS` lists one model for each `Tier`,
  and `recommended_model(tier)` picks from it. `is_model_needed` tells whether
  a model still has to be fetched. `download_model` streams the file into a
  directory, reuses a file that is already there, reports progress and
  removes partial files. Failures raise `DownloadError`. The download host
  can be changed with the `DESKPILOT_MODEL_HUB` environment variable.

## Examples

Adapt a prompt to another model family:

```python
from deskpilot.instruction_translator import InstructionTranslator, Message

translator = InstructionTranslator()
source = InstructionTranslator.detect_family("Qwen2.5-7B-Instruct")
target = InstructionTranslator.detect_family("llama-3.3-70b-versatile")

prompt = InstructionTranslator.get_persona_frame(source)
adapted = translator.translate_system_prompt(prompt, source, target)

history = [Message("system", prompt), Message("user", "open notepad")]
adapted_history = translator.translate_conversation(history, source, target)
```

Parse a model reply, whatever shape it came in:

```python
from deskpilot.llm_controller import LLMController

LLMController.parse_json_strict('Sure! {"action": "open_app", "params": {"name": "notepad"}}')
# -> {"action": "open_app", "params": {"name": "notepad"}}

LLMController.parse_json_strict("Hello there!")
# -> a "chat" action whose params["message"] is "Hello there!"
```

Fall back to keywords when there is no plan:

```python
from deskpilot.react_agent import fallback_think

fallback_think("search python tutorials")
# -> {"thought": ..., "action": "search_web", "params": {"query": "python tutorials"}}
```

File helpers:

```python
from deskpilot.file_manager import format_file_size, get_file_category

format_file_size(1536)        # "1.5 KB"
get_file_category(".PNG")     # "Images"
```

Choose a GPU setup and a model:

```python
from deskpilot.gpu_config import choose_gpu_config, cuda_available
from deskpilot.model_downloader import Tier, download_model, recommended_model

config = choose_gpu_config("Example GPU", 8192, "nvidia", cuda_available())
config.save()

option = recommended_model(Tier.MID)
path = download_model(option, "data/models", progress=lambda got, total: None)
```

## What it does not do

deskpilot is a library. It has no command-line program and no windows or
dialogs. You supply the parts that touch the outside world:

- **Local inference.** There is no model runtime. `LocalBackend` cannot load a
  model unless it is given a loader that returns a `LoadedModel`.
- **Cloud inference.** There is no cloud client. Any object that meets the
  `AIBackend` protocol can be passed as the cloud backend.
- **Actions.** The agent does not open apps, type or click by itself. Those
  actions are carried out by the executor you pass to `ReActAgent`.
- **Safety policy.** The package has no safety policy of its own. Without a
  guard, `FileManager` performs operations unchecked. It also has no
  recycle-bin delete.
- **Hardware detection.** The package does not detect GPU, VRAM or the
  machine's `Tier`. Pass these values in yourself.