"""
Execution Engine - Locked-Amount Calculator.

============================================================
PURPOSE
============================================================
Derives the balance and holdings a user can still commit.

    available_balance  = balance  - Σ pending buys  (price * qty * (1 + fee))
    available_holdings = holdings - Σ pending sells (qty)

Limit buys lock at their limit price. Market buys awaiting settlement
lock at a caller-supplied reference price for their coin; without one
they lock nothing. Both results are clamped at zero.

Nothing is persisted: locks are computed on read, so cancelling an
order frees its amount with no compensating write.

============================================================
"""

import logging
from decimal import Decimal
from typing import Mapping, Optional

from storage.models.ledger import normalize_coin_id

from .repository import LedgerRepository
from .types import LockedAmounts, OrderMode


logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _clamp(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO


async def locked_balance(
    repo: LedgerRepository,
    user_id: str,
    fee_rate: Decimal,
    reference_prices: Optional[Mapping[str, Decimal]] = None,
) -> Decimal:
    """Amount of balance reserved by the user's pending buy orders."""
    notional = await repo.sum_pending_limit_buy_notional(user_id)

    if reference_prices:
        prices = {normalize_coin_id(k): v for k, v in reference_prices.items()}
        for order in await repo.list_pending_buy_orders(user_id):
            if order.mode != OrderMode.MARKET.value:
                continue
            price = prices.get(order.coin_id)
            if price is not None:
                notional += price * order.quantity

    return notional * (Decimal("1") + fee_rate)


async def locked_holdings(repo: LedgerRepository, user_id: str, coin_id: str) -> Decimal:
    """Quantity of a coin reserved by the user's pending sell orders."""
    return await repo.sum_pending_sell_quantity(user_id, coin_id)


async def available_balance(
    repo: LedgerRepository,
    user_id: str,
    fee_rate: Decimal,
    reference_prices: Optional[Mapping[str, Decimal]] = None,
) -> Decimal:
    balance = await repo.get_balance(user_id)
    raw = balance.amount if balance is not None else ZERO
    locked = await locked_balance(repo, user_id, fee_rate, reference_prices)
    return _clamp(raw - locked)


async def available_holdings(repo: LedgerRepository, user_id: str, coin_id: str) -> Decimal:
    holding = await repo.get_holding(user_id, coin_id)
    raw = holding.quantity if holding is not None else ZERO
    locked = await locked_holdings(repo, user_id, coin_id)
    return _clamp(raw - locked)


async def locked_amounts_for(
    repo: LedgerRepository,
    user_id: str,
    fee_rate: Decimal,
    reference_prices: Optional[Mapping[str, Decimal]] = None,
) -> LockedAmounts:
    """Full raw / locked / available picture for display."""
    balance = await repo.get_balance(user_id)
    raw_balance = balance.amount if balance is not None else ZERO
    locked_bal = await locked_balance(repo, user_id, fee_rate, reference_prices)

    holdings = {h.coin_id: h.quantity for h in await repo.list_holdings(user_id)}
    locked_qty = await repo.pending_sell_quantities(user_id)

    coins = sorted(set(holdings) | set(locked_qty))
    return LockedAmounts(
        balance=raw_balance,
        locked_balance=locked_bal,
        available_balance=_clamp(raw_balance - locked_bal),
        holdings={c: holdings.get(c, ZERO) for c in coins},
        locked_holdings={c: locked_qty.get(c, ZERO) for c in coins},
        available_holdings={
            c: _clamp(holdings.get(c, ZERO) - locked_qty.get(c, ZERO)) for c in coins
        },
    )
