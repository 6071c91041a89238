"""環境変数から組み立てる LLM 接続設定。"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from llmchat.domain.services.danger_keyword_scanner import parse_danger_keywords

DEFAULT_BASE_URL = "https://gpustack.unibe.ch/v1"
DEFAULT_MODEL = "qwen3-vl-8b-instruct"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2048
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_LANGUAGE = "en"


@dataclass(frozen=True, slots=True)
class LlmSettings:
    """1つの上流接続とターン制御の設定。呼び出し側が一度だけ組み立てて渡す。"""

    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    language: str = DEFAULT_LANGUAGE
    danger_keywords: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """最低限の整合性を検証する。"""
        if self.max_attempts < 1:
            raise ValueError("max_attempts は 1 以上である必要があります。")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds は正の値である必要があります。")


def load_llm_settings(environ: Mapping[str, str] | None = None) -> LlmSettings:
    """環境変数から LlmSettings を作る。不正な数値は既定値に戻す。"""
    env = os.environ if environ is None else environ
    return LlmSettings(
        base_url=_first_env(env, "LLM_BASE_URL", "OPENAI_BASE_URL") or DEFAULT_BASE_URL,
        api_key=_first_env(env, "LLM_API_KEY", "OPENAI_API_KEY") or "",
        model=_resolve_model_name(primary_env="LLM_MODEL", environ=env),
        temperature=_resolve_float_env("LLM_TEMPERATURE", default=DEFAULT_TEMPERATURE, environ=env),
        max_tokens=_resolve_positive_int_env("LLM_MAX_TOKENS", default=DEFAULT_MAX_TOKENS, environ=env),
        timeout_seconds=_resolve_positive_float_env(
            "LLM_TIMEOUT_SECONDS", default=DEFAULT_TIMEOUT_SECONDS, environ=env
        ),
        max_attempts=_resolve_positive_int_env(
            "LLM_MAX_ATTEMPTS", default=DEFAULT_MAX_ATTEMPTS, environ=env
        ),
        language=(env.get("LLM_LANGUAGE") or DEFAULT_LANGUAGE).strip() or DEFAULT_LANGUAGE,
        danger_keywords=parse_danger_keywords(env.get("LLM_DANGER_KEYWORDS")),
    )


def _resolve_model_name(*, primary_env: str, environ: Mapping[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ
    return _first_env(env, primary_env, "OPENAI_MODEL") or DEFAULT_MODEL


def _resolve_non_negative_int_env(
    name: str,
    *,
    default: int,
    environ: Mapping[str, str] | None = None,
) -> int:
    value = _parse_int((os.environ if environ is None else environ).get(name))
    if value is None or value < 0:
        return default
    return value


def _resolve_positive_int_env(
    name: str,
    *,
    default: int,
    environ: Mapping[str, str] | None = None,
) -> int:
    value = _resolve_non_negative_int_env(name, default=default, environ=environ)
    return value if value > 0 else default


def _resolve_float_env(
    name: str,
    *,
    default: float,
    environ: Mapping[str, str] | None = None,
) -> float:
    raw = (os.environ if environ is None else environ).get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _resolve_positive_float_env(
    name: str,
    *,
    default: float,
    environ: Mapping[str, str] | None = None,
) -> float:
    value = _resolve_float_env(name, default=default, environ=environ)
    return value if value > 0 else default


def _first_env(env: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = env.get(name, "").strip()
        if value:
            return value
    return None


def _parse_int(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None
