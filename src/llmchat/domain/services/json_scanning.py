"""文字列リテラルを考慮した JSON 断片の走査ユーティリティ。"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass

_FENCE_OPEN_PATTERN = re.compile(r"^```(?:json)?[ \t]*\n?", re.IGNORECASE)
_FENCE_CLOSE_PATTERN = re.compile(r"\n?```\s*$")


@dataclass(frozen=True, slots=True)
class BracketScan:
    """括弧走査の結果。"""

    open_braces: int
    open_brackets: int
    in_string: bool


@dataclass(frozen=True, slots=True)
class EmbeddedJson:
    """散文に埋め込まれた JSON object とその前後テキスト。"""

    value: object
    text_before: str
    text_after: str


def strip_code_fence(text: str) -> str:
    """```json ... ``` 形式の囲みを外して返す。"""
    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped
    stripped = _FENCE_OPEN_PATTERN.sub("", stripped, count=1)
    stripped = _FENCE_CLOSE_PATTERN.sub("", stripped, count=1)
    return stripped.strip()


def scan_brackets(text: str) -> BracketScan:
    """文字列外の {} と [] の開き数を数える。"""
    open_braces = 0
    open_brackets = 0
    in_string = False
    escape_next = False

    for char in text:
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if char == "\\":
                escape_next = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            open_braces += 1
        elif char == "}":
            open_braces -= 1
        elif char == "[":
            open_brackets += 1
        elif char == "]":
            open_brackets -= 1

    return BracketScan(open_braces=open_braces, open_brackets=open_brackets, in_string=in_string)


def is_incomplete_json(text: str) -> bool:
    """途中で切れた（または JSON で始まらない）テキストかを返す。"""
    stripped = text.strip()
    if not stripped:
        return True
    if stripped[0] not in "{[":
        return True

    scan = scan_brackets(stripped)
    if scan.open_braces != 0 or scan.open_brackets != 0:
        return True
    if scan.in_string:
        return True
    return stripped[-1] not in "}]"


def find_matching_brace(text: str, start: int) -> int:
    """start 位置の { に対応する } の位置を返す。見つからなければ -1。"""
    depth = 0
    in_string = False
    escape_next = False

    for index in range(start, len(text)):
        char = text[index]
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if char == "\\":
                escape_next = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return -1


def extract_embedded_object(text: str) -> EmbeddedJson | None:
    """最初の { から対応する } までを JSON として取り出す。"""
    first_brace = text.find("{")
    if first_brace == -1:
        return None
    last_brace = find_matching_brace(text, first_brace)
    if last_brace == -1:
        return None

    try:
        value = json.loads(text[first_brace : last_brace + 1])
    except json.JSONDecodeError:
        return None
    return EmbeddedJson(
        value=value,
        text_before=text[:first_brace].strip(),
        text_after=text[last_brace + 1 :].strip(),
    )


def unescape_json_fragment(fragment: str) -> str:
    """JSON 文字列リテラルの中身をアンエスケープする。途中切れの escape は落とす。"""
    candidate = fragment
    for _ in range(6):
        try:
            decoded = json.loads(f'"{candidate}"', strict=False)
        except json.JSONDecodeError:
            if not candidate:
                break
            candidate = candidate[:-1]
            continue
        if isinstance(decoded, str):
            return decoded
        break
    return fragment
