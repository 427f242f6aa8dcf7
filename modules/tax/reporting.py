"""
Reporting Views

Read-only views over completed replays:
- snapshots and per-year record selections
- pandas DataFrames for export
- unrealized gains against current quotes
- one TaxResult across several portfolios

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional

import pandas as pd

from lib.utils.logging_config import log_dataframe_info, setup_logger
from modules.tax.calculators.base import TaxCalculator
from modules.tax.currency import CurrencyConverter, QuoteProvider
from modules.tax.engine import ReplayResult
from modules.tax.policy import CostBasisDate
from modules.tax.tax_events import Disposal, Fee, Income, Lot, Money, TaxResult

logger = setup_logger(__name__)


def current_snapshot(result: ReplayResult) -> Dict[str, List[Lot]]:
    return result.current_snapshot()


def disposals_for_year(result: ReplayResult, year: int) -> List[Disposal]:
    return result.disposals_for_year(year)


def income_for_year(result: ReplayResult, year: int) -> List[Income]:
    return result.income_for_year(year)


def fees_for_year(result: ReplayResult, year: int) -> List[Fee]:
    return result.fees_for_year(year)


def _frame(rows: List[dict], columns: List[str], name: str) -> pd.DataFrame:
    df = pd.DataFrame(rows, columns=columns)
    log_dataframe_info(logger, df, name)
    return df


def disposals_frame(disposals: Iterable[Disposal]) -> pd.DataFrame:
    """One row per disposal with its gain; amounts stay Decimal."""
    rows = []
    for d in disposals:
        row = d.to_dict()
        row["gain"] = d.gain.amount
        row["holding_period_days"] = d.holding_period_days
        rows.append(row)
    columns = [
        "symbol", "quantity", "acquisition_date", "disposal_date", "holding_period_days",
        "proceeds", "cost_basis", "commission", "acquisition_commission", "gain",
        "currency", "lot_id", "sequence_no", "origin", "reason",
    ]
    return _frame(rows, columns, "disposals")


def income_frame(income: Iterable[Income]) -> pd.DataFrame:
    columns = [
        "date", "kind", "symbol", "amount", "tax_withheld", "currency",
        "original_amount", "original_currency", "sequence_no",
    ]
    return _frame([i.to_dict() for i in income], columns, "income")


def fees_frame(fees: Iterable[Fee]) -> pd.DataFrame:
    columns = ["date", "description", "amount", "currency", "original_amount", "original_currency", "sequence_no"]
    return _frame([f.to_dict() for f in fees], columns, "fees")


def lots_frame(lots: Iterable[Lot]) -> pd.DataFrame:
    columns = [
        "lot_id", "symbol", "quantity", "unit_cost", "currency", "acquisition_date",
        "settlement_date", "sequence_no", "origin", "commission", "commission_currency", "parent_lot_id",
    ]
    return _frame([lot.to_dict() for lot in lots], columns, "lots")


def unrealized_gains(
    result: ReplayResult,
    converter: CurrencyConverter,
    quote_provider: QuoteProvider,
    on_date: date,
    quote_currencies: Optional[Mapping[str, str]] = None,
) -> pd.DataFrame:
    """
    Market value minus cost basis per open symbol, in base currency.

    Each symbol is quoted in a single currency: quote_currencies[symbol]
    if given, otherwise the cost currency of its oldest lot. Cost basis is
    converted per lot on the dates the ledger would use for a disposal.
    """
    by_settlement = result.ledger.policy.cost_basis_date == CostBasisDate.SETTLEMENT
    quote_currencies = {k.upper(): v.upper() for k, v in (quote_currencies or {}).items()}
    rows = []
    for symbol in result.ledger.symbols():
        lots = result.ledger.lots(symbol)
        quantity = sum((lot.quantity for lot in lots), Decimal(0))
        quote_currency = quote_currencies.get(symbol, lots[0].unit_cost.currency)
        if symbol not in quote_currencies and len({lot.unit_cost.currency for lot in lots}) > 1:
            logger.warning(
                f"{symbol} has lots costed in several currencies; quoting in {quote_currency}",
                extra={"ledger_context": {"symbol": symbol}},
            )

        cost = Money.zero(converter.base_currency)
        for lot in lots:
            cost_date = lot.settlement_date if by_settlement else lot.acquisition_date
            cost = cost + converter.convert(lot.total_cost(), cost_date)

        price = Decimal(quote_provider.rate(symbol, on_date))
        market_value = converter.convert(Money(price * quantity, quote_currency), on_date)

        rows.append({
            "symbol": symbol,
            "quantity": quantity,
            "price": price,
            "quote_currency": quote_currency,
            "cost_basis": cost.amount,
            "market_value": market_value.amount,
            "unrealized_gain": (market_value - cost).amount,
            "currency": converter.base_currency,
        })

    columns = [
        "symbol", "quantity", "price", "quote_currency", "cost_basis", "market_value",
        "unrealized_gain", "currency",
    ]
    return _frame(rows, columns, "unrealized_gains")


def aggregate_tax(results: Mapping[str, ReplayResult], calculator: TaxCalculator, year: int) -> TaxResult:
    """One TaxResult over the combined records of several portfolios."""
    disposals: List[Disposal] = []
    income: List[Income] = []
    for name in sorted(results):
        disposals.extend(results[name].disposals)
        income.extend(results[name].income)
    logger.info(f"Aggregating {len(results)} portfolio(s) for {year}")
    return calculator.calculate(disposals, income, year)
