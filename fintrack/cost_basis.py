from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date
from decimal import ROUND_DOWN, Decimal
from typing import Iterable, Optional

from fintrack.models import CRYPTO, LISTED_EQUITY, InvestmentAsset, Purchase, normalize_asset_type
from fintrack.money import ZERO, divide, multiply, parse_decimal

logger = logging.getLogger(__name__)

QUANTITY_DECIMALS = {
    LISTED_EQUITY: 0,
    CRYPTO: 8,
}


@dataclass(frozen=True)
class CashConversion:
    quantity: Decimal
    total: Decimal


def new_average_price(
    quantity: Decimal,
    average_price: Decimal,
    purchase_quantity: Decimal,
    purchase_price: Decimal,
) -> Decimal:
    """Volume-weighted average price after adding a purchase to a position."""
    if quantity <= ZERO:
        return purchase_price
    total_quantity = quantity + purchase_quantity
    if total_quantity <= ZERO:
        return ZERO
    total_cost = multiply(quantity, average_price) + multiply(purchase_quantity, purchase_price)
    return divide(total_cost, total_quantity)


def purchase_total(quantity: Decimal, price: Decimal) -> Decimal:
    return multiply(quantity, price)


def quantity_decimals(asset_type: str) -> int:
    return QUANTITY_DECIMALS[normalize_asset_type(asset_type)]


def quantity_from_cash(cash: Decimal, price: Decimal, asset_type: str) -> CashConversion:
    """Convert a cash amount into the quantity it can buy without overspending.

    Quantities round down to the asset's precision: whole shares for listed
    equities, eight decimals for crypto. ``total`` is what is actually spent.
    """
    decimals = quantity_decimals(asset_type)
    if price <= ZERO or cash <= ZERO:
        return CashConversion(quantity=ZERO, total=ZERO)
    quantity = divide(cash, price, decimals, ROUND_DOWN)
    return CashConversion(quantity=quantity, total=purchase_total(quantity, price))


def build_purchase(
    asset: InvestmentAsset,
    purchase_date: date,
    price: Decimal | str | int | float,
    quantity: Decimal | str | int | float | None = None,
    cash: Decimal | str | int | float | None = None,
) -> Optional[Purchase]:
    """Validate a purchase entered by quantity or by invested cash.

    Returns None when the parsed price or resulting quantity is not positive,
    so a bad entry never reaches the average price.
    """
    parsed_price = parse_decimal(price)
    if parsed_price is None or parsed_price <= ZERO:
        logger.debug("Rejected purchase for %s: invalid price %r", asset.symbol, price)
        return None

    if quantity is not None:
        parsed_quantity = parse_decimal(quantity)
        if parsed_quantity is None or parsed_quantity <= ZERO:
            logger.debug("Rejected purchase for %s: invalid quantity %r", asset.symbol, quantity)
            return None
        total = purchase_total(parsed_quantity, parsed_price)
    else:
        parsed_cash = parse_decimal(cash)
        if parsed_cash is None or parsed_cash <= ZERO:
            logger.debug("Rejected purchase for %s: invalid amount %r", asset.symbol, cash)
            return None
        conversion = quantity_from_cash(parsed_cash, parsed_price, asset.asset_type)
        if conversion.quantity <= ZERO:
            logger.debug("Amount %s buys no %s at %s", parsed_cash, asset.symbol, parsed_price)
            return None
        parsed_quantity = conversion.quantity
        total = conversion.total

    return Purchase(
        asset_id=asset.id,
        date=purchase_date,
        price_per_unit=parsed_price,
        quantity=parsed_quantity,
        total_invested=total,
    )


def apply_purchase(asset: InvestmentAsset, purchase: Purchase) -> InvestmentAsset:
    average = new_average_price(
        asset.quantity,
        asset.average_price,
        purchase.quantity,
        purchase.price_per_unit,
    )
    return replace(
        asset,
        quantity=asset.quantity + purchase.quantity,
        average_price=average,
    )


def replay_purchases(asset: InvestmentAsset, purchases: Iterable[Purchase]) -> InvestmentAsset:
    """Rebuild a position from its append-only purchase log."""
    position = replace(asset, quantity=ZERO, average_price=ZERO)
    for purchase in sorted(purchases, key=lambda item: item.date):
        position = apply_purchase(position, purchase)
    return position
