"""応答スキーマをモデルに指示するシステムプロンプト。"""

from __future__ import annotations

from collections.abc import Sequence

from llmchat.domain.services.safety_gate import DANGER_CATEGORIES

MAX_PROMPT_KEYWORDS = 50

_SCHEMA_INSTRUCTION = """## MANDATORY JSON RESPONSE FORMAT

You MUST ALWAYS respond with a SINGLE valid JSON object. Never respond with plain text.
Never wrap the JSON in markdown code blocks.

Required top-level fields: type, safety, content, metadata.

- type: always "response"
- safety: {"is_safe": bool, "danger_level": null|"warning"|"critical"|"emergency",
  "detected_concerns": [string], "requires_intervention": bool, "safety_message": string|null}
- content: {"text_blocks": [{"type": ..., "content": string}], "form": object|null,
  "media": [{"type": "image"|"video"|"audio", "url": string, "alt": string, "caption": string}],
  "suggestions": [{"text": string}]}
- progress (optional): {"percentage": number, "topics_covered": [string], "topics_remaining": [string]}
- metadata: {"model": string, "tokens_used": number|null, "language": string|null}

### TEXT BLOCK TYPES
"text", "heading", "info", "warning", "error", "success", "code"

### FORM STRUCTURE
{"title": string, "description": string, "submit_label": string,
 "fields": [{"id": string, "type": "radio"|"checkbox"|"select"|"text"|"textarea"|"number",
 "label": string, "required": bool, "options": [{"value": string, "label": string}]}]}
Selection fields (radio, checkbox, select) MUST have options. Text fields must NOT.

### SUGGESTIONS
Each suggestion MUST be an object with a "text" property, e.g. {"text": "Tell me more"}.

### MINIMAL VALID RESPONSE
{"type":"response","safety":{"is_safe":true,"danger_level":null,"detected_concerns":[],"requires_intervention":false},"content":{"text_blocks":[{"type":"text","content":"Your response."}]},"metadata":{"model":"model-name"}}"""

_DANGER_LEVEL_GUIDE = """**DANGER LEVELS:**
- null: Safe content
- "warning": Sensitive topics or general distress
- "critical": Concerning content, potential risk
- "emergency": Imminent danger, set requires_intervention = true"""


def build_system_instruction(danger_keywords: Sequence[str] = ()) -> str:
    """スキーマ指示（とキーワード指定時は安全指示）を返す。"""
    sections = [_SCHEMA_INSTRUCTION]
    if danger_keywords:
        keyword_list = ", ".join(danger_keywords[:MAX_PROMPT_KEYWORDS])
        categories = "\n".join(
            f"- {name}: {description}" for name, description in DANGER_CATEGORIES.items()
        )
        sections.append(
            "### SAFETY DETECTION (NON-OVERRIDABLE)\n\n"
            f"**DANGER KEYWORDS TO DETECT:**\n{keyword_list}\n\n"
            f"**DANGER CATEGORIES:**\n{categories}\n\n"
            f"{_DANGER_LEVEL_GUIDE}"
        )
    return "\n\n".join(sections)


def build_retry_instruction(errors: Sequence[str]) -> str:
    """前回応答の検証エラーを列挙した再試行指示を返す。"""
    error_lines = "\n".join(f"- {error}" for error in errors)
    return (
        "Your previous response was invalid. Please try again with a valid JSON response.\n\n"
        f"Errors found:\n{error_lines}\n\n"
        "IMPORTANT: Return ONLY a valid JSON object following the response schema.\n"
        "Do NOT include any text before or after the JSON.\n"
        "Do NOT wrap the JSON in markdown code blocks."
    )
