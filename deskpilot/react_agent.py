"""Reason-and-act loop: observe, ask the model for an action, execute it, repeat."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import Counter
from collections.abc import Callable, Mapping
from typing import Any, Protocol

logger = logging.getLogger(__name__)

COMPLETION_ACTIONS = frozenset({"task_complete", "done", "finish", "chat"})
MAX_HISTORY = 5
OBSERVED_ACTIONS = 3
MAX_REPEATS = 3

FALLBACK_CHAT_MESSAGE = (
    "I'm not sure how to do that as a system action, but I'll try to help! "
    "Could you tell me more about what you need?"
)

_PROMPT_HEADER = (
    "You are VISION AI, a smart and friendly Windows desktop assistant. "
    "You understand English, Hindi, and Hinglish — always match the user's language. "
    "You have TWO modes:\n"
    "MODE 1 — OS ACTION: For tasks like opening apps, searching, typing, taking screenshots, etc.\n"
    '  Output: {"action": "<action_name>", "params": {<relevant_params>}}\n'
    "MODE 2 — CHAT: For greetings, questions, conversations, explanations, "
    "or when you cannot perform a task.\n"
    '  Output: {"action": "chat", "params": {"message": "your natural reply"}}\n\n'
    "Available OS actions: open_app, open_url, search_web, type_text, press_key, "
    "click_element, scroll, set_volume, set_brightness, minimize, maximize, "
    "close_window, focus_window, screenshot, list_files, move_file, copy_file, "
    "delete_file, clipboard_get, clipboard_set, get_ui_tree, task_complete, "
    "run_powershell.\n\n"
    "CRITICAL FOR COMPLEX WORKFLOWS:\n"
    "- If asked to do complex data processing (like 'search top 20 billionaires and "
    "write to excel' or 'organize downloads'), "
    "DO NOT use simple macros. Instead, use 'run_powershell' to write a script that "
    "does the entire job seamlessly.\n"
    '  Example: {"action": "run_powershell", "params": {"script": '
    '"$data = Invoke-RestMethod ...; $data | Export-Csv output.csv"}}\n'
    "  PowerShell has full access to the web (Invoke-RestMethod) and files.\n\n"
    "RULES:\n"
    "1. ALWAYS output ONLY valid JSON — no extra text before or after.\n"
    "2. If the user is chatting (hi, hello, how are you, what is X, etc.) use MODE 2.\n"
    "3. If the user wants an OS action, use MODE 1.\n"
    "4. Be smart, helpful, and conversational like a real assistant.\n\n"
    "[USER] "
)


class _Planner(Protocol):
    def react_step(
        self, task: str, observation: Any, history: list[dict[str, Any]]
    ) -> dict[str, Any] | None: ...


Executor = Callable[[str, Mapping[str, Any]], "tuple[bool, str]"]


def build_smart_prompt(cmd: str) -> str:
    """The dual-mode (action or chat) instruction followed by the user's command."""
    return _PROMPT_HEADER + cmd


def _ascii_lower(text: str) -> str:
    # Lower only ASCII letters so that indices stay aligned with the original text.
    return "".join(ch.lower() if ch.isascii() else ch for ch in text)


def fallback_think(cmd: str) -> dict[str, Any]:
    """Keyword-based action used when the model gives no plan."""
    lower = _ascii_lower(cmd)

    if "open" in lower:
        pos = lower.find("open ")
        if pos != -1:
            return {
                "thought": "Fallback: opening app",
                "action": "open_app",
                "params": {"name": cmd[pos + len("open "):]},
            }

    if "search" in lower or "google" in lower:
        for keyword in ("search ", "google "):
            pos = lower.find(keyword)
            if pos != -1:
                return {
                    "thought": "Fallback: web search",
                    "action": "search_web",
                    "params": {"query": cmd[pos + len(keyword):]},
                }

    return {
        "thought": "No template match — treating as conversation",
        "action": "chat",
        "params": {"message": FALLBACK_CHAT_MESSAGE},
    }


class ReActAgent:
    """Drives a planner and an executor until the task completes or a limit is hit."""

    max_steps = 10

    def __init__(
        self,
        llm: _Planner,
        executor: Executor,
        observe: Callable[[], Mapping[str, Any]] | None = None,
        step_delay: float = 0.3,
    ) -> None:
        self._llm = llm
        self._executor = executor
        self._observe_fn = observe
        self.step_delay = step_delay
        self._running = threading.Event()
        self._history: list[dict[str, Any]] = []
        self._action_counts: Counter[str] = Counter()

    @property
    def running(self) -> bool:
        """True while a task is being executed."""
        return self._running.is_set()

    @property
    def action_history(self) -> list[dict[str, Any]]:
        """The most recent executed steps, oldest first."""
        return list(self._history)

    def stop(self) -> None:
        """Ask the loop to end before its next step."""
        self._running.clear()

    def execute_task(self, command: str) -> tuple[bool, str]:
        """Run the loop for ``command``; return whether it succeeded and the last result."""
        logger.info("ReAct agent starting task: %s", command)
        self._running.set()
        self._history.clear()
        self._action_counts.clear()

        last_result = ""
        success = False
        step = 0
        while step < self.max_steps and self._running.is_set():
            context = self._observe()
            context["step"] = step + 1
            context["max_steps"] = self.max_steps

            plan = self._llm.react_step(
                build_smart_prompt(command), context, list(self._history)
            )
            if not plan:
                plan = fallback_think(command)

            thought = plan.get("thought", "") or ""
            action = plan.get("action", "") or ""
            params = plan.get("params", {})
            if not isinstance(params, Mapping):
                params = {}
            logger.info("Thought: %s | Action: %s", thought, action)

            if action in COMPLETION_ACTIONS:
                success = True
                last_result = params.get("message", thought or "Task completed")
                break

            key = f"{action}:{json.dumps(params, sort_keys=True, separators=(',', ':'))}"
            self._action_counts[key] += 1
            if self._action_counts[key] > MAX_REPEATS:
                logger.warning("Action repeated too many times: %s", action)
                last_result = "Action loop detected, stopping"
                break

            act_success, act_result = self._act(action, params)
            self._history.append(
                {
                    "step": step + 1,
                    "thought": thought,
                    "action": action,
                    "params": dict(params),
                    "result": act_result,
                    "success": act_success,
                }
            )
            if len(self._history) > MAX_HISTORY:
                del self._history[0]

            last_result = act_result
            if not act_success:
                logger.warning("Action failed: %s", act_result)

            step += 1
            if self.step_delay > 0:
                time.sleep(self.step_delay)

        self._running.clear()
        if not last_result:
            last_result = "Task completed" if success else "Task failed"
        logger.info(
            "ReAct agent finished: %s - %s", "SUCCESS" if success else "FAILED", last_result
        )
        return success, last_result

    def _observe(self) -> dict[str, Any]:
        ctx: dict[str, Any] = dict(self._observe_fn()) if self._observe_fn else {}
        if self._history:
            ctx["previous_actions"] = [
                {
                    "action": entry["action"],
                    "result": entry["result"],
                    "success": entry["success"],
                }
                for entry in self._history[-OBSERVED_ACTIONS:]
            ]
        return ctx

    def _act(self, action: str, params: Mapping[str, Any]) -> tuple[bool, str]:
        if not action:
            return False, "No action specified"
        return self._executor(action, params)