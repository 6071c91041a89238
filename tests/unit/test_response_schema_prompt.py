from llmchat.domain.services.response_schema_prompt import (
    MAX_PROMPT_KEYWORDS,
    build_retry_instruction,
    build_system_instruction,
)


def _prompt_keywords(prompt: str) -> list[str]:
    keyword_line = prompt.split("**DANGER KEYWORDS TO DETECT:**\n", 1)[1].split("\n", 1)[0]
    return keyword_line.split(", ")


def test_keyword_list_is_capped() -> None:
    keywords = [f"keyword_{index:02d}" for index in range(60)]

    prompt = build_system_instruction(keywords)

    assert _prompt_keywords(prompt) == keywords[:MAX_PROMPT_KEYWORDS]
    assert "keyword_50" not in prompt
    assert "**DANGER CATEGORIES:**" in prompt


def test_safety_section_requires_keywords() -> None:
    prompt = build_system_instruction()

    assert prompt.startswith("## MANDATORY JSON RESPONSE FORMAT")
    assert "SAFETY DETECTION" not in prompt
    assert "DANGER KEYWORDS" not in prompt


def test_retry_instruction_lists_every_error() -> None:
    errors = (
        "Missing required field: type",
        "Invalid danger_level: severe",
        "Missing required metadata field: model",
    )

    instruction = build_retry_instruction(errors)

    error_lines = [line for line in instruction.splitlines() if line.startswith("- ")]
    assert error_lines == [f"- {error}" for error in errors]
    assert instruction.startswith("Your previous response was invalid.")
