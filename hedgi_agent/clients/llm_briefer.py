from __future__ import annotations

import logging
from typing import Any, Dict, List

from hedgi_agent.clients.llm_client import LLMClient
from hedgi_agent.errors import HedgiError, LLMOutputError
from hedgi_agent.utils.llm_json import parse_llm_object

logger = logging.getLogger(__name__)

_SCHEMA_HINT = (
    "Return a JSON object with keys: summary (string), "
    "risks (array of 3-6 objects with name, severity: low|medium|high, impact), "
    "lossScenario (object with revenueAtRisk, worstCase, likelihood, timeframe), "
    "hedging (object with unprotected, protected, reduction), "
    "signals (array of 2-5 objects with name, strength: weak|partial|strong, description)."
)

BASE_PROMPT = (
    "You are a risk analyst. Summarize external risks and market signals for the business described. "
    f"{_SCHEMA_HINT} "
    "Return only JSON with no extra commentary and no code fences. "
    "Do not include newline characters inside string values; keep all strings on a single line. "
    "Use USD with $ and commas when describing money. Keep the summary concise (2-4 sentences)."
)
STRICT_SUFFIX = " Output MUST be a single-line JSON object under 1200 characters."


class RiskBriefer:
    def __init__(self, llm: LLMClient):
        self.llm = llm

    def analyze(self, business: str) -> Dict[str, Any]:
        business = (business or "").strip()
        if not business:
            raise HedgiError("missing_business")
        if not self.llm.enabled():
            raise HedgiError("missing_api_key")

        user = f"Business description:\n{business}"
        first = self.llm.complete(BASE_PROMPT, user)
        if first.error == "empty_response":
            raise LLMOutputError("empty_response")
        if not first.ok:
            raise HedgiError("analysis_failed", first.error)

        parsed = parse_llm_object(first.raw)
        if parsed is None:
            logger.info("Risk brief output unparsable, retrying with stricter prompt")
            retry = self.llm.complete(BASE_PROMPT + STRICT_SUFFIX, user)
            parsed = parse_llm_object(retry.raw) if retry.ok else None
            if parsed is None:
                logger.error("Invalid JSON output from risk brief: %s", (retry.raw or first.raw)[:300])
                raise LLMOutputError("invalid_json")
        return parsed


def render_brief(brief: Dict[str, Any]) -> str:
    lines: List[str] = [str(brief.get("summary") or "").strip()]
    risks = brief.get("risks")
    if isinstance(risks, list) and risks:
        lines.append("Risks:")
        for risk in risks:
            if isinstance(risk, dict):
                lines.append(f"- {risk.get('name', '?')} [{risk.get('severity', '?')}]: {risk.get('impact', '')}")
    signals = brief.get("signals")
    if isinstance(signals, list) and signals:
        lines.append("Signals:")
        for signal in signals:
            if isinstance(signal, dict):
                lines.append(f"- {signal.get('name', '?')} ({signal.get('strength', '?')}): {signal.get('description', '')}")
    return "\n".join(line for line in lines if line)
