"""ユーザー発話の危険キーワード検出。"""

from __future__ import annotations

import re
from collections.abc import Iterable

MAX_PHRASE_WORD_GAP = 10


def parse_danger_keywords(raw: str | None) -> tuple[str, ...]:
    """カンマ区切りのキーワード設定を小文字・重複なしの tuple にする。"""
    if not raw:
        return ()
    return normalize_danger_keywords(raw.split(","))


def normalize_danger_keywords(keywords: Iterable[str]) -> tuple[str, ...]:
    """前後空白を除き、小文字化して重複を落とす。順序は保つ。"""
    normalized: list[str] = []
    for keyword in keywords:
        candidate = keyword.strip().lower()
        if candidate and candidate not in normalized:
            normalized.append(candidate)
    return tuple(normalized)


def scan_message_for_keywords(message: str, keywords: Iterable[str]) -> tuple[str, ...]:
    """メッセージに含まれるキーワードを検出順に返す。"""
    lowered = message.lower()
    detected: list[str] = []
    for keyword in normalize_danger_keywords(keywords):
        matched = (
            _phrase_matches(lowered, keyword)
            if " " in keyword
            else re.search(rf"\b{re.escape(keyword)}\b", lowered) is not None
        )
        if matched:
            detected.append(keyword)
    return tuple(detected)


def _phrase_matches(message: str, phrase: str) -> bool:
    if phrase in message:
        return True

    words = phrase.split()
    if len(words) <= 1:
        return False
    # 単語が順番どおり、間隔 MAX_PHRASE_WORD_GAP 文字以内で現れれば一致とみなす。
    previous_end = -1
    for word in words:
        position = message.find(word, max(previous_end, 0))
        if position == -1:
            return False
        if previous_end >= 0 and position - previous_end > MAX_PHRASE_WORD_GAP:
            return False
        previous_end = position + len(word)
    return True
