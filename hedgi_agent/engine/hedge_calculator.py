from __future__ import annotations

import math
from typing import Optional

from hedgi_agent.errors import HedgeQuoteError
from hedgi_agent.models import HedgeQuoteInput, HedgeQuoteOutput, HedgeQuotePercentInput

MAX_EXPECTED_PROFIT = 1e12
DEFAULT_BASELINE_LOSS = 100.0


def compute_hedge_quote(quote: HedgeQuoteInput) -> HedgeQuoteOutput:
    """Size a YES-contract hedge so its payout offsets the loss if the event happens.

    Each contract pays exactly 1 on YES, so contract counts are integral. The yes
    price doubles as the implied event probability for the expected value.
    """
    price_yes = quote.price_yes
    if not (0.0 < price_yes < 1.0):
        raise HedgeQuoteError("invalid_price_yes")

    expected_profit = quote.expected_profit
    if not math.isfinite(expected_profit) or abs(expected_profit) > MAX_EXPECTED_PROFIT:
        raise HedgeQuoteError("invalid_expected_profit")

    loss_if_event = quote.loss_if_event
    if not math.isfinite(loss_if_event) or loss_if_event <= 0:
        raise HedgeQuoteError("invalid_loss_if_event")

    coverage = _clamp(_finite_or(quote.hedge_coverage, 1.0), 0.0, 1.0)
    max_cost = _budget(quote.max_hedge_cost)

    target_payout = loss_if_event * coverage
    contracts_needed = math.ceil(target_payout)
    contracts_to_buy = contracts_needed
    if max_cost is not None:
        # Budget always wins over the desired coverage.
        contracts_to_buy = min(contracts_needed, math.floor(max_cost / price_yes))

    actual_payout = float(contracts_to_buy)
    total_cost = contracts_to_buy * price_yes
    profit_if_event = expected_profit - loss_if_event + actual_payout - total_cost
    profit_if_no_event = expected_profit - total_cost
    expected_value = price_yes * profit_if_event + (1.0 - price_yes) * profit_if_no_event

    return HedgeQuoteOutput(
        market_id=quote.market_id,
        contracts_needed=contracts_needed,
        contracts_to_buy=contracts_to_buy,
        price_yes=price_yes,
        target_payout=target_payout,
        actual_payout=actual_payout,
        total_cost=total_cost,
        profit_if_event=profit_if_event,
        profit_if_no_event=profit_if_no_event,
        coverage_achieved=actual_payout / loss_if_event,
        expected_value=expected_value,
    )


def compute_hedge_quote_percent(quote: HedgeQuotePercentInput) -> HedgeQuoteOutput:
    baseline = quote.baseline_loss
    if baseline is None or not math.isfinite(baseline) or baseline <= 0:
        baseline = DEFAULT_BASELINE_LOSS

    raw_percent = quote.loss_if_event_percent
    if not math.isfinite(raw_percent) or raw_percent <= 0:
        raise HedgeQuoteError("invalid_loss_if_event_percent")
    # 50 means 50%, 0.5 is already a fraction.
    fraction = raw_percent / 100.0 if raw_percent > 1 else raw_percent

    return compute_hedge_quote(
        HedgeQuoteInput(
            market_id=quote.market_id,
            price_yes=quote.price_yes,
            expected_profit=0.0,
            loss_if_event=baseline * _clamp(fraction, 0.0, 1.0),
            hedge_coverage=quote.hedge_coverage,
            max_hedge_cost=quote.max_hedge_cost,
        )
    )


def _budget(value: Optional[float]) -> Optional[float]:
    if value is None or math.isnan(value) or value == math.inf:
        return None
    return max(0.0, value)


def _finite_or(value: Optional[float], default: float) -> float:
    if value is None or math.isnan(value):
        return default
    return value


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
