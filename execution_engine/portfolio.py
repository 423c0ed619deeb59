"""
Execution Engine - Portfolio Valuation.

Values a user's holdings at current prices. Read-only.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping

from storage.models.ledger import Holding, normalize_coin_id


ZERO = Decimal("0")
HUNDRED = Decimal("100")
_PERCENT_QUANTUM = Decimal("0.01")


def _percent(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= 0:
        return ZERO
    return (part / whole * HUNDRED).quantize(_PERCENT_QUANTUM)


@dataclass
class HoldingValue:
    """One holding valued at the current price."""

    coin_id: str
    coin_symbol: str
    quantity: Decimal
    average_buy_price: Decimal
    current_price: Decimal
    current_value: Decimal
    invested_value: Decimal
    profit_loss: Decimal
    profit_loss_percent: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {k: (str(v) if isinstance(v, Decimal) else v) for k, v in self.__dict__.items()}


@dataclass
class PortfolioSummary:
    """Totals across all valued holdings."""

    holdings: List[HoldingValue] = field(default_factory=list)
    total_portfolio_value: Decimal = ZERO
    total_invested: Decimal = ZERO
    total_profit_loss: Decimal = ZERO
    total_profit_loss_percent: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "holdings": [h.to_dict() for h in self.holdings],
            "summary": {
                "total_portfolio_value": str(self.total_portfolio_value),
                "total_invested": str(self.total_invested),
                "total_profit_loss": str(self.total_profit_loss),
                "total_profit_loss_percent": str(self.total_profit_loss_percent),
            },
        }


def value_holding(holding: Holding, current_price: Decimal) -> HoldingValue:
    current_value = holding.quantity * current_price
    invested_value = holding.quantity * holding.average_buy_price
    profit_loss = current_value - invested_value
    return HoldingValue(
        coin_id=holding.coin_id,
        coin_symbol=holding.coin_symbol,
        quantity=holding.quantity,
        average_buy_price=holding.average_buy_price,
        current_price=current_price,
        current_value=current_value,
        invested_value=invested_value,
        profit_loss=profit_loss,
        profit_loss_percent=_percent(profit_loss, invested_value),
    )


def value_portfolio(
    holdings: Iterable[Holding],
    prices: Mapping[str, Decimal],
) -> PortfolioSummary:
    """
    Value ``holdings`` with ``prices`` keyed by coin id.

    A coin without a price is valued at zero.
    """
    by_coin = {normalize_coin_id(k): v for k, v in prices.items()}
    summary = PortfolioSummary()
    for holding in holdings:
        valued = value_holding(holding, by_coin.get(holding.coin_id, ZERO))
        summary.holdings.append(valued)
        summary.total_portfolio_value += valued.current_value
        summary.total_invested += valued.invested_value

    summary.total_profit_loss = summary.total_portfolio_value - summary.total_invested
    summary.total_profit_loss_percent = _percent(
        summary.total_profit_loss, summary.total_invested
    )
    return summary
