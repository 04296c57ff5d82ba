"""
Unit tests for the ideation oracle adapter.

Tests:
- Reply parsing: fences, defaults, fallback
- Hypo field aliases
- Anthropic API request shape and error handling (mock transport)
"""
import json

import httpx
import pytest

from hypobot.integrations.ideation import (
    ANTHROPIC_VERSION,
    FALLBACK_RULE,
    CycleResult,
    Hypo,
    IdeationOracle,
    OracleError,
    build_user_message,
    extract_json_text,
    parse_cycle_response,
)


REPLY = {
    "cycle": 5,
    "bankroll": 104.2,
    "sharpe": 1.4,
    "mdd": 0.08,
    "hypos": [
        {
            "market": "Will X happen?",
            "action": "BUY_YES",
            "size": 5,
            "price": 0.42,
            "edge": 0.07,
            "kelly_f": 0.12,
            "tokenId": "111",
        }
    ],
    "rules": ["Never exceed 5% per market"],
    "log": "Bought X",
}


class TestExtractJsonText:
    """Tests for fence stripping."""

    def test_plain_json_untouched(self):
        assert extract_json_text(' {"a": 1} ') == '{"a": 1}'

    def test_json_fence(self):
        assert extract_json_text('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence_with_preamble(self):
        text = 'Here you go:\n```\n{"a": 1}\n```\nGood luck'
        assert extract_json_text(text) == '{"a": 1}'


class TestParseCycleResponse:
    """Tests for parse_cycle_response()."""

    def test_full_reply(self):
        result = parse_cycle_response(json.dumps(REPLY), cycle=5, bankroll=100.0)

        assert result.cycle == 5
        assert result.bankroll == pytest.approx(104.2)
        assert result.sharpe == pytest.approx(1.4)
        assert result.rules == ["Never exceed 5% per market"]
        assert result.parse_error is False
        hypo = result.hypos[0]
        assert hypo.action == "BUY_YES"
        assert hypo.price == pytest.approx(0.42)
        assert hypo.token_id == "111"

    def test_fenced_reply(self):
        text = "```json\n" + json.dumps(REPLY) + "\n```"
        assert parse_cycle_response(text, 5, 100.0).bankroll == pytest.approx(104.2)

    def test_missing_fields_defaulted(self):
        result = parse_cycle_response("{}", cycle=7, bankroll=88.5)

        assert result.cycle == 7
        assert result.bankroll == pytest.approx(88.5)
        assert result.sharpe == 0.0
        assert result.mdd == 0.0
        assert result.hypos == []
        assert result.rules == []
        assert result.log == "Cycle complete"

    def test_unparseable_reply_falls_back(self):
        raw = "Sorry, I cannot help with that. " * 20
        result = parse_cycle_response(raw, cycle=3, bankroll=97.0)

        assert result.parse_error is True
        assert result.cycle == 3
        assert result.bankroll == pytest.approx(97.0)
        assert result.hypos == []
        assert result.rules == [FALLBACK_RULE]
        assert result.log.endswith(raw[:200])

    def test_non_object_reply_falls_back(self):
        assert parse_cycle_response("[1, 2]", 1, 10.0).parse_error is True

    def test_non_dict_hypos_dropped(self):
        text = json.dumps({"hypos": ["junk", {"market": "M", "action": "NO", "size": "2"}]})
        result = parse_cycle_response(text, 1, 10.0)

        assert len(result.hypos) == 1
        assert result.hypos[0].size == pytest.approx(2.0)

    @pytest.mark.parametrize(
        "text",
        [
            '{"cycle": NaN, "bankroll": Infinity}',
            '{"cycle": 1e400, "bankroll": -1e400, "sharpe": NaN, "mdd": Infinity}',
            '{"cycle": "soon", "bankroll": null}',
        ],
    )
    def test_non_finite_numbers_use_request_values(self, text):
        result = parse_cycle_response(text, cycle=4, bankroll=91.0)

        assert result.parse_error is False
        assert result.cycle == 4
        assert result.bankroll == pytest.approx(91.0)
        assert result.sharpe == 0.0
        assert result.mdd == 0.0

    @pytest.mark.parametrize("value", ["5", '"text"', '{"market": "M"}', "true"])
    def test_non_list_hypos_and_rules_are_empty(self, value):
        text = '{"hypos": %s, "rules": %s}' % (value, value)
        result = parse_cycle_response(text, cycle=2, bankroll=50.0)

        assert result.hypos == []
        assert result.rules == []
        assert result.parse_error is False


class TestHypo:
    """Tests for Hypo parsing."""

    def test_aliases(self):
        hypo = Hypo.from_dict({
            "market": "M",
            "side": "SELL",
            "size": 1,
            "token_id": "t",
            "condition_id": "0xc",
            "market_slug": "m",
        })
        assert hypo.action == "SELL"
        assert hypo.token_id == "t"
        assert hypo.condition_id == "0xc"
        assert hypo.slug == "m"

    def test_bad_numbers_become_defaults(self):
        hypo = Hypo.from_dict({"market": "M", "action": "BUY", "size": "lots", "price": "n/a"})
        assert hypo.size == 0.0
        assert hypo.price is None

    def test_non_finite_numbers_become_defaults(self):
        hypo = Hypo.from_dict(
            {"market": "M", "action": "BUY", "size": float("nan"), "price": float("inf")}
        )
        assert hypo.size == 0.0
        assert hypo.price is None

    def test_cycle_result_to_dict_shape(self):
        result = CycleResult(cycle=1, bankroll=100.0, hypos=[Hypo.from_dict(REPLY["hypos"][0])])
        data = result.to_dict()
        assert set(data) == {"cycle", "bankroll", "sharpe", "mdd", "hypos", "rules", "log"}
        assert data["hypos"][0]["market"] == "Will X happen?"


class TestIdeationOracle:
    """Tests for IdeationOracle over a mock transport."""

    @staticmethod
    def anthropic_reply(text: str) -> dict:
        return {
            "id": "msg_1",
            "type": "message",
            "content": [{"type": "text", "text": text}],
            "stop_reason": "end_turn",
        }

    @pytest.mark.asyncio
    async def test_generate(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json=self.anthropic_reply(json.dumps(REPLY)))

        oracle = IdeationOracle(
            api_key="sk-test",
            model="test-model",
            max_tokens=1234,
            transport=httpx.MockTransport(handler),
        )
        try:
            result = await oracle.generate(5, 100.0, "Be careful.", "POLYMARKET LIVE:\nA | ...")
        finally:
            await oracle.close()

        assert result.bankroll == pytest.approx(104.2)
        request = captured[0]
        assert request.url.path == "/v1/messages"
        assert request.headers["x-api-key"] == "sk-test"
        assert request.headers["anthropic-version"] == ANTHROPIC_VERSION
        body = json.loads(request.content)
        assert body["model"] == "test-model"
        assert body["max_tokens"] == 1234
        assert body["messages"][0]["content"] == build_user_message(
            5, 100.0, "POLYMARKET LIVE:\nA | ...", "Be careful."
        )

    @pytest.mark.asyncio
    async def test_prose_reply_uses_fallback(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json=self.anthropic_reply("I think you should buy."))
        )
        oracle = IdeationOracle(api_key="sk-test", transport=transport)
        try:
            result = await oracle.generate(2, 50.0, "p", "s")
        finally:
            await oracle.close()

        assert result.parse_error is True
        assert result.bankroll == pytest.approx(50.0)

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(529, json={"error": {"type": "overloaded_error"}})
        )
        oracle = IdeationOracle(api_key="sk-test", transport=transport)
        try:
            with pytest.raises(OracleError, match="529"):
                await oracle.complete("hello")
        finally:
            await oracle.close()

    @pytest.mark.asyncio
    async def test_missing_key_raises(self):
        oracle = IdeationOracle(api_key="")
        with pytest.raises(OracleError, match="not configured"):
            await oracle.complete("hello")

    @pytest.mark.asyncio
    async def test_empty_content_is_empty_object(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"content": []})
        )
        oracle = IdeationOracle(api_key="sk-test", transport=transport)
        try:
            assert await oracle.complete("hello") == "{}"
        finally:
            await oracle.close()
