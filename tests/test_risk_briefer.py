from __future__ import annotations

import unittest

from hedgi_agent.clients.llm_briefer import STRICT_SUFFIX, RiskBriefer, render_brief
from hedgi_agent.clients.llm_client import LLMClient, LLMResult
from hedgi_agent.errors import HedgiError, LLMOutputError

BRIEF = (
    '{"summary": "A coastal hotel exposed to storms.",'
    ' "risks": [{"name": "Hurricane", "severity": "high", "impact": "Closures in peak season"}],'
    ' "signals": [{"name": "Landfall market", "strength": "strong", "description": "Tracks storm risk"}]}'
)


class FakeLLM(LLMClient):
    def __init__(self, replies=(), enabled: bool = True) -> None:
        super().__init__(api_key="", model="test-model")
        self.replies = list(replies)
        self._enabled = enabled
        self.systems = []

    def enabled(self) -> bool:
        return self._enabled

    def complete(self, system: str, user: str) -> LLMResult:
        self.systems.append(system)
        reply = self.replies.pop(0)
        if isinstance(reply, LLMResult):
            return reply
        return LLMResult(value=reply, raw=reply)


class RiskBrieferTests(unittest.TestCase):
    def test_returns_parsed_object(self) -> None:
        llm = FakeLLM([BRIEF])

        brief = RiskBriefer(llm).analyze("  Beach hotel in Miami  ")

        self.assertEqual(brief["risks"][0]["severity"], "high")
        self.assertEqual(len(llm.systems), 1)

    def test_retries_once_with_stricter_prompt(self) -> None:
        llm = FakeLLM(["Here is my analysis, no JSON.", BRIEF])

        brief = RiskBriefer(llm).analyze("Beach hotel in Miami")

        self.assertEqual(brief["summary"], "A coastal hotel exposed to storms.")
        self.assertFalse(llm.systems[0].endswith(STRICT_SUFFIX))
        self.assertTrue(llm.systems[1].endswith(STRICT_SUFFIX))

    def test_second_failure_is_invalid_json(self) -> None:
        for second in ("still not json", LLMResult(error="network_error")):
            with self.subTest(second=second):
                with self.assertRaises(LLMOutputError) as ctx:
                    RiskBriefer(FakeLLM(["nope", second])).analyze("Beach hotel in Miami")
                self.assertEqual(ctx.exception.code, "invalid_json")

    def test_error_codes(self) -> None:
        with self.assertRaises(HedgiError) as ctx:
            RiskBriefer(FakeLLM()).analyze("   ")
        self.assertEqual(ctx.exception.code, "missing_business")

        with self.assertRaises(HedgiError) as ctx:
            RiskBriefer(FakeLLM(enabled=False)).analyze("Beach hotel")
        self.assertEqual(ctx.exception.code, "missing_api_key")

        with self.assertRaises(LLMOutputError) as ctx:
            RiskBriefer(FakeLLM([LLMResult(error="empty_response")])).analyze("Beach hotel")
        self.assertEqual(ctx.exception.code, "empty_response")

        with self.assertRaises(HedgiError) as ctx:
            RiskBriefer(FakeLLM([LLMResult(error="network_error")])).analyze("Beach hotel")
        self.assertEqual(ctx.exception.code, "analysis_failed")
        self.assertEqual(ctx.exception.details, "network_error")
        self.assertNotIsInstance(ctx.exception, LLMOutputError)


class RenderBriefTests(unittest.TestCase):
    def test_renders_sections(self) -> None:
        text = render_brief(
            {
                "summary": "A coastal hotel exposed to storms.",
                "risks": [{"name": "Hurricane", "severity": "high", "impact": "Closures"}, "skip"],
                "signals": [{"name": "Landfall market", "strength": "strong", "description": "Tracks storms"}],
            }
        )

        self.assertEqual(
            text.splitlines(),
            [
                "A coastal hotel exposed to storms.",
                "Risks:",
                "- Hurricane [high]: Closures",
                "Signals:",
                "- Landfall market (strong): Tracks storms",
            ],
        )

    def test_empty_sections_are_omitted(self) -> None:
        self.assertEqual(render_brief({"summary": "Only a summary.", "risks": [], "signals": "none"}), "Only a summary.")


if __name__ == "__main__":
    unittest.main()
