import pytest

from deskpilot.instruction_translator import (
    InstructionTranslator,
    Message,
    ModelFamily,
)

LLAMA_REINFORCEMENT = (
    "\n\nIMPORTANT: Output RAW JSON only. "
    "Do NOT wrap in ```json``` code blocks. "
    "Do NOT add any text before or after the JSON object."
)
QWEN_REINFORCEMENT = "\nOutput: JSON only. No trailing text."


@pytest.fixture
def translator():
    return InstructionTranslator()


@pytest.mark.parametrize(
    "identifier, family",
    [
        ("llama-3.3-70b-versatile", ModelFamily.LLAMA3),
        ("Meta-Llama-3-8B.gguf", ModelFamily.LLAMA3),
        ("Qwen2.5-7B-Instruct", ModelFamily.QWEN),
        ("models/qwen2.5-1.5b-instruct-q4_k_m.gguf", ModelFamily.QWEN),
        ("Mistral-7B-Instruct-v0.3.Q4_K_M.gguf", ModelFamily.MISTRAL),
        ("mixtral-8x7b-32768", ModelFamily.MISTRAL),
        ("Phi-3-mini-4k", ModelFamily.PHI),
        ("phi4-q4", ModelFamily.PHI),
        ("gemma2-9b-it", ModelFamily.GEMMA),
        ("some-unknown-model", ModelFamily.GENERIC),
        ("", ModelFamily.GENERIC),
    ],
)
def test_detect_family(identifier, family):
    assert InstructionTranslator.detect_family(identifier) == family


def test_same_family_returns_prompt_unchanged(translator):
    prompt = "IMPORTANT: You MUST do this."
    result = translator.translate_system_prompt(
        prompt, ModelFamily.QWEN, ModelFamily.QWEN
    )
    assert result == prompt


def test_qwen_trims_verbose_directives(translator):
    prompt = "IMPORTANT: You MUST NOT chat. You MUST output JSON."
    result = translator.translate_system_prompt(
        prompt, ModelFamily.LLAMA3, ModelFamily.QWEN
    )
    assert "IMPORTANT" not in result
    assert "MUST" not in result
    assert "Don't chat." in result
    assert result.endswith(QWEN_REINFORCEMENT)


def test_qwen_inlines_bullets(translator):
    prompt = "Rules\n- Be brief\n- Use JSON"
    result = translator.translate_system_prompt(
        prompt, ModelFamily.GENERIC, ModelFamily.QWEN
    )
    assert "- " not in result
    assert "Be brief." in result
    assert "Use JSON." in result
    assert result.endswith(QWEN_REINFORCEMENT)


def test_qwen_collapses_double_periods(translator):
    prompt = "Header\n- Done."
    result = translator.translate_system_prompt(
        prompt, ModelFamily.GENERIC, ModelFamily.QWEN
    )
    assert "Done.." not in result
    assert "Done." in result


def test_phi_collapses_newlines_and_drops_must(translator):
    prompt = "First\n\n\n\nSecond. You MUST reply fast."
    result = translator.translate_system_prompt(
        prompt, ModelFamily.LLAMA3, ModelFamily.PHI
    )
    assert "\n\n\n" not in result
    assert "First\n\nSecond" in result
    assert "reply fast." in result
    assert "MUST" not in result
    assert result.endswith("\nJSON only.")


def test_llama_short_prompt_is_expanded(translator):
    prompt = "Output JSON."
    result = translator.translate_system_prompt(
        prompt, ModelFamily.QWEN, ModelFamily.LLAMA3
    )
    assert result.startswith("## INSTRUCTIONS\n\nSYSTEM INSTRUCTION:\nOutput JSON.")
    assert "ADDITIONAL CONTEXT:" in result
    assert result.endswith(LLAMA_REINFORCEMENT)


def test_llama_bulletizes_sentence_lists(translator):
    prompt = "No chat here. No explanations. No markdown at all. " + (
        "rules follow below " * 5
    )
    assert len(prompt) >= 100
    result = translator.translate_system_prompt(
        prompt, ModelFamily.QWEN, ModelFamily.LLAMA3
    )
    assert result.startswith(
        "## INSTRUCTIONS\n\n- No chat here.\n- No explanations.\n- No markdown at all."
    )
    assert result.endswith(LLAMA_REINFORCEMENT)


def test_llama_skips_header_when_rules_present(translator):
    prompt = "RULES: " + "always answer with a json object and nothing else " * 3
    result = translator.translate_system_prompt(
        prompt, ModelFamily.QWEN, ModelFamily.LLAMA3
    )
    assert not result.startswith("## INSTRUCTIONS")
    assert result == prompt + LLAMA_REINFORCEMENT


@pytest.mark.parametrize(
    "target", [ModelFamily.MISTRAL, ModelFamily.GEMMA, ModelFamily.GENERIC]
)
def test_neutral_targets_only_append_reinforcement(translator, target):
    prompt = "You MUST NOT chat.\n\n\n\nIMPORTANT: be precise."
    result = translator.translate_system_prompt(prompt, ModelFamily.LLAMA3, target)
    assert result == prompt + InstructionTranslator.get_json_reinforcement(target)


def test_translate_conversation_only_touches_system(translator):
    conversation = [
        Message("system", "IMPORTANT: You MUST answer."),
        Message("user", "IMPORTANT: hello"),
        Message("assistant", "You MUST see this"),
    ]
    result = translator.translate_conversation(
        conversation, ModelFamily.LLAMA3, ModelFamily.QWEN
    )
    assert len(result) == 3
    assert result[0].role == "system"
    assert result[0].content == translator.translate_system_prompt(
        conversation[0].content, ModelFamily.LLAMA3, ModelFamily.QWEN
    )
    assert result[1] == conversation[1]
    assert result[2] == conversation[2]
    assert conversation[0].content == "IMPORTANT: You MUST answer."


def test_translate_conversation_same_family_is_copy(translator):
    conversation = [Message("system", "x"), Message("user", "y")]
    result = translator.translate_conversation(
        conversation, ModelFamily.PHI, ModelFamily.PHI
    )
    assert result == conversation
    assert result is not conversation


def test_persona_frames_are_distinct():
    frames = {InstructionTranslator.get_persona_frame(f) for f in ModelFamily}
    assert len(frames) == len(ModelFamily)


def test_persona_frame_contents():
    qwen = InstructionTranslator.get_persona_frame(ModelFamily.QWEN)
    assert qwen.startswith("You are a Windows AI system agent. Output JSON commands only.")
    phi = InstructionTranslator.get_persona_frame(ModelFamily.PHI)
    assert phi.endswith("Execute system commands. No chat.")
    llama = InstructionTranslator.get_persona_frame(ModelFamily.LLAMA3)
    assert "CRITICAL RULES:" in llama


@pytest.mark.parametrize(
    "family, text",
    [
        (ModelFamily.QWEN, "\nOutput: JSON only. No trailing text."),
        (ModelFamily.MISTRAL, "\nRespond ONLY with the JSON object, nothing else."),
        (ModelFamily.PHI, "\nJSON only."),
        (ModelFamily.GEMMA, "\nOutput only the JSON object with no additional text."),
        (ModelFamily.GENERIC, "\nRespond with ONLY a valid JSON object."),
        (ModelFamily.LLAMA3, LLAMA_REINFORCEMENT),
    ],
)
def test_json_reinforcement(family, text):
    assert InstructionTranslator.get_json_reinforcement(family) == text