"""
Decision adapter tests - reply validation, safe defaults and request building.
"""
import asyncio
import json

import pytest

from arena_trader.agents.decision import DecisionAgent, build_decision_request, parse_decisions
from arena_trader.errors import DecisionInvalid
from arena_trader.schemas import (
    CloseDecision,
    Direction,
    HoldDecision,
    NoneDecision,
    OpenDecision,
    PositionRequest,
    WaitDecision,
)


class StaticProvider:
    def __init__(self, reply=None, delay=0.0, error=None):
        self.reply = reply
        self.delay = delay
        self.error = error
        self.requests = []

    async def decide(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.reply


MULTI_SYMBOL_REPLY = {
    "decisions": {
        "BTC": {"trade_signal_args": {
            "coin": "BTC", "signal": "long", "size_usd": 150, "leverage": 10,
            "stop_loss": 49000, "profit_target": 52000, "confidence": 0.72,
            "expected_duration": "30min", "justification": "breakout on 15m",
        }},
        "ETH": {"trade_signal_args": {"coin": "ETH", "signal": "short", "quantity": 80, "leverage": 5,
                                      "confidence": 0.65, "justification": "rejection at resistance"}},
        "SOL": {"trade_signal_args": {"coin": "SOL", "signal": "hold", "confidence": 0.6}},
        "ADA": {"trade_signal_args": {"coin": "ADA", "signal": "close", "confidence": 0.4}},
        "AVAX": {"trade_signal_args": {"coin": "AVAX", "signal": "wait"}},
    },
    "conclusion": "BTC breaking out, ETH weak",
}


class TestParseDecisions:

    def test_multi_symbol_shape(self):
        result = parse_decisions(MULTI_SYMBOL_REPLY)
        by_symbol = {d.symbol: d for d in result.decisions}

        btc = by_symbol["BTC"]
        assert isinstance(btc, OpenDecision)
        assert btc.direction == Direction.LONG
        assert btc.size_usd == 150
        assert btc.take_profit == 52000
        assert btc.rationale == "breakout on 15m"

        eth = by_symbol["ETH"]
        assert isinstance(eth, OpenDecision)
        assert eth.direction == Direction.SHORT
        assert eth.size_usd == 80

        assert isinstance(by_symbol["SOL"], HoldDecision)
        assert isinstance(by_symbol["ADA"], CloseDecision)
        assert isinstance(by_symbol["AVAX"], WaitDecision)
        assert result.conclusion == "BTC breaking out, ETH weak"
        assert len(result.actionable) == 3

    def test_single_decision_json_text(self):
        raw = "```json\n" + json.dumps({
            "action": "open", "symbol": "eth", "direction": "short", "size_pct": 10,
            "leverage": 8, "confidence": 0.8, "rationale": "overbought",
        }) + "\n```"
        result = parse_decisions(raw)
        decision = result.decisions[0]
        assert isinstance(decision, OpenDecision)
        assert decision.symbol == "ETH"
        assert decision.size_pct == 10

    def test_invalid_entry_collapses_to_none(self):
        result = parse_decisions({"decisions": [
            {"action": "open", "symbol": "BTC", "direction": "long", "size_usd": 100, "leverage": 7},
            {"action": "hold", "symbol": "ETH"},
        ]})
        assert isinstance(result.decisions[0], NoneDecision)
        assert result.decisions[0].confidence == 0.0
        assert isinstance(result.decisions[1], HoldDecision)

    @pytest.mark.parametrize("raw", [
        "not json at all",
        ["a", "list"],
        {"foo": "bar"},
        {"decisions": [{"action": "teleport"}]},
        {"action": "open", "symbol": "BTC", "direction": "long", "confidence": 3},
    ])
    def test_unusable_replies_raise(self, raw):
        with pytest.raises(DecisionInvalid):
            parse_decisions(raw)

    def test_empty_decisions_is_valid(self):
        result = parse_decisions({"decisions": {}, "conclusion": "AI decision generation failed"})
        assert result.decisions == []


class TestDecisionAgent:

    @pytest.fixture
    def request_(self, paper_agent, ledger, config):
        return build_decision_request(paper_agent, ledger, {"BTC": 50000.0}, config)

    @pytest.mark.asyncio
    async def test_valid_reply(self, config, request_):
        agent = DecisionAgent(config, provider=StaticProvider(MULTI_SYMBOL_REPLY))
        outcome = await agent.decide(request_)
        assert not outcome.failed
        assert len(outcome.decisions.decisions) == 5

    @pytest.mark.asyncio
    async def test_timeout_gives_safe_default(self, config, request_):
        agent = DecisionAgent(config, provider=StaticProvider(MULTI_SYMBOL_REPLY, delay=5.0))
        outcome = await agent.decide(request_)
        assert outcome.error_type == "DecisionTimeout"
        assert len(outcome.decisions.decisions) == 1
        assert isinstance(outcome.decisions.decisions[0], NoneDecision)
        assert outcome.decisions.decisions[0].confidence == 0.0

    @pytest.mark.asyncio
    async def test_provider_exception_gives_safe_default(self, config, request_):
        agent = DecisionAgent(config, provider=StaticProvider(error=RuntimeError("rate limited")))
        outcome = await agent.decide(request_)
        assert outcome.error_type == "RuntimeError"
        assert outcome.decisions.actionable == []

    @pytest.mark.asyncio
    async def test_invalid_reply_gives_safe_default(self, config, request_):
        agent = DecisionAgent(config, provider=StaticProvider("definitely not json"))
        outcome = await agent.decide(request_)
        assert outcome.error_type == "DecisionInvalid"


class TestBuildRequest:

    def test_positions_enriched(self, paper_agent, ledger, config):
        ledger.open_position(paper_agent, PositionRequest(
            symbol="BTC", direction=Direction.LONG, entry_price=50000.0, notional_usd=200.0,
            leverage=10, stop_loss=49000.0, take_profit=52000.0,
        ))
        request = build_decision_request(paper_agent, ledger, {"BTC": 50500.0, "ETH": 2500.0}, config)

        assert request.agent_name == "Alpha"
        assert request.balance == 1000.0
        assert request.exposure_pct == pytest.approx(20.0)
        assert request.exposure_ceiling_pct == pytest.approx(70.0)
        assert request.available_symbols == ["BTC", "ETH"]

        view = request.open_positions[0]
        assert view.unrealized_pnl_pct == pytest.approx(1.0)
        assert view.unrealized_pnl_usd == pytest.approx(2.0)
        assert view.distance_to_stop_pct == pytest.approx(1500 / 50500 * 100, rel=1e-3)
        assert view.distance_to_target_pct == pytest.approx(1500 / 50500 * 100, rel=1e-3)

    def test_volatility_carried_for_priced_coins(self, paper_agent, ledger, config):
        request = build_decision_request(
            paper_agent, ledger, {"BTC": 50000.0}, config,
            volatility={"BTC": 1000.0, "DOGE": 0.01},
        )
        assert request.volatility == {"BTC": 1000.0}
        assert "volatility" in request.model_dump_json()

    def test_volatility_defaults_empty(self, paper_agent, ledger, config):
        request = build_decision_request(paper_agent, ledger, {"BTC": 50000.0}, config)
        assert request.volatility == {}
