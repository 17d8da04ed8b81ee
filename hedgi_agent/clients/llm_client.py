from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from openai import OpenAI

from hedgi_agent.utils.llm_json import parse_llm_json

logger = logging.getLogger(__name__)


@dataclass
class LLMResult:
    """Outcome of one LLM call: a parsed value, or an error code the caller falls back on."""

    value: Any = None
    error: str = ""
    raw: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


class LLMClient:
    def __init__(self, api_key: str, model: str, timeout_seconds: int = 20):
        self.api_key = api_key.strip()
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._client = OpenAI(api_key=self.api_key, timeout=timeout_seconds) if self.api_key else None

    def enabled(self) -> bool:
        return self._client is not None

    def complete(self, system: str, user: str) -> LLMResult:
        if not self.enabled():
            return LLMResult(error="missing_api_key")
        try:
            response = self._client.responses.create(
                model=self.model,
                input=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            )
        except Exception as exc:
            logger.warning("LLM request failed: %s", str(exc))
            return LLMResult(error="network_error")
        text = (response.output_text or "").strip()
        if not text:
            return LLMResult(error="empty_response")
        return LLMResult(value=text, raw=text)

    def complete_json(self, system: str, user: str) -> LLMResult:
        result = self.complete(system, user)
        if not result.ok:
            return result
        payload = parse_llm_json(result.raw)
        if payload is None:
            logger.warning("LLM returned unparsable JSON: %s", result.raw[:300])
            return LLMResult(error="invalid_json", raw=result.raw)
        return LLMResult(value=payload, raw=result.raw)


def as_text(value: Any, default: Optional[str] = None) -> Optional[str]:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or default
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return default


def as_string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]
