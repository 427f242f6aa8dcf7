"""
Event Processor - Deterministic Portfolio Replay

Replays a portfolio's canonical event stream from the beginning:
1. Verifies strict (date, sequence_no) order
2. Resolves broker symbol remappings
3. Sends trades to the Lot Ledger and corporate actions to the
   Corporate Action Engine
4. Records income and fees in base currency

Replays are atomic: they run on a private copy of the starting ledger and
only a fully processed stream produces a ReplayResult. Replaying the same
stream twice yields identical records and an identical fingerprint.

Independent portfolios can be replayed in parallel with replay_portfolios().

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from core.hashing import fingerprint
from lib.parsers.canonical_events import (
    CanonicalEvent,
    CorporateActionPayload,
    EventKind,
    FeePayload,
    IncomePayload,
    TradePayload,
)
from lib.utils.logging_config import get_ledger_logger, get_perf_logger, setup_logger
from modules.tax.corporate_actions import (
    CorporateAction,
    CorporateActionEngine,
    Merger,
    Rename,
    SpinOff,
    StockDividend,
)
from modules.tax.currency import CurrencyConverter
from modules.tax.errors import (
    AmbiguousMatch,
    DataInconsistency,
    LedgerError,
    MissingSettlementDate,
    OutOfOrderEvent,
    PortfolioReplayError,
)
from modules.tax.ledger import LotLedger
from modules.tax.policy import CostBasisDate, JurisdictionPolicy
from modules.tax.tax_events import Disposal, Fee, Income, Lot, LotOrigin, Money

logger = setup_logger(__name__)


def resolve_remapping(mapping: Mapping[str, str]) -> Dict[str, str]:
    """
    Flatten remapping chains (A -> B -> C becomes A -> C).

    Raises:
        AmbiguousMatch: if the mapping contains a cycle
    """
    resolved = {}
    for source in mapping:
        seen = [source]
        target = mapping[source]
        while target in mapping:
            if target in seen:
                raise AmbiguousMatch("Symbol remapping cycle", chain=" -> ".join(seen + [target]))
            seen.append(target)
            target = mapping[target]
        if target == source:
            raise AmbiguousMatch("Symbol remapped to itself", symbol=source)
        resolved[source] = target
    return resolved


@dataclass
class ReplayResult:
    """Outcome of a successful replay of one portfolio."""

    portfolio: str
    ledger: LotLedger
    disposals: List[Disposal]
    income: List[Income]
    fees: List[Fee]
    warnings: List[str] = field(default_factory=list)
    fingerprint: str = ""
    events_processed: int = 0

    def current_snapshot(self) -> Dict[str, List[Lot]]:
        return {symbol: self.ledger.lots(symbol) for symbol in self.ledger.symbols()}

    def disposals_for_year(self, year: int) -> List[Disposal]:
        return [d for d in self.disposals if d.disposal_date.year == year]

    def income_for_year(self, year: int) -> List[Income]:
        return [i for i in self.income if i.date.year == year]

    def fees_for_year(self, year: int) -> List[Fee]:
        return [f for f in self.fees if f.date.year == year]

    def save_snapshot(self, store):
        """Persist the open lots through a snapshot store (core.db.SnapshotStore)."""
        store.save(self.portfolio, self.ledger.lots())


class EventProcessor:
    """Replays one portfolio's event stream."""

    def __init__(
        self,
        portfolio: str,
        converter: CurrencyConverter,
        policy: JurisdictionPolicy,
        symbol_remapping: Optional[Mapping[str, str]] = None,
        initial_lots: Optional[Iterable[Lot]] = None,
    ):
        self.portfolio = portfolio
        self.converter = converter
        self.policy = policy
        self.remapping = resolve_remapping(symbol_remapping or {})

        self._initial = LotLedger(converter, policy)
        for lot in initial_lots or []:
            self._initial.open(lot)
            self._initial.touch(lot.symbol, lot.acquisition_date)

    def resolve_symbol(self, symbol: str) -> str:
        return self.remapping.get(symbol, symbol)

    def replay(self, events: Iterable[CanonicalEvent]) -> ReplayResult:
        """
        Replay events from the starting ledger.

        Raises:
            LedgerError: on the first fatal condition, with portfolio and
                sequence number added to its context
        """
        state = _ReplayState(self._initial.copy())
        engine = CorporateActionEngine(state.ledger, self.policy)

        log = get_ledger_logger(logger, portfolio=self.portfolio)
        log.info(f"Replaying portfolio {self.portfolio}")
        with get_perf_logger(log, f"replay {self.portfolio}", threshold_ms=2000):
            last_key: Optional[Tuple[date, int]] = None
            seen_sequences: Set[int] = set()

            for event in events:
                key = event.sort_key()
                try:
                    if event.sequence_no in seen_sequences:
                        raise OutOfOrderEvent("Sequence number reused", date=event.date)
                    if last_key is not None and key <= last_key:
                        raise OutOfOrderEvent(
                            "Event stream is not sorted by (date, sequence_no)",
                            date=event.date, previous_date=last_key[0], previous_sequence_no=last_key[1],
                        )
                    self._dispatch(event, state, engine)
                except LedgerError as e:
                    log.error(
                        f"Replay of {self.portfolio} aborted at event #{event.sequence_no}: {e}",
                        extra={"ledger_context": {"sequence_no": event.sequence_no, "kind": event.kind.value}},
                    )
                    raise e.add_context(portfolio=self.portfolio, sequence_no=event.sequence_no)

                seen_sequences.add(event.sequence_no)
                last_key = key
                state.processed += 1

        result = ReplayResult(
            portfolio=self.portfolio,
            ledger=state.ledger,
            disposals=state.disposals,
            income=state.income,
            fees=state.fees,
            warnings=state.warnings,
            fingerprint=fingerprint(disposals=state.disposals, income=state.income, fees=state.fees),
            events_processed=state.processed,
        )
        log.info(
            f"Replayed {self.portfolio}: {state.processed} events, {len(state.disposals)} disposals, "
            f"{len(state.income)} income records, {len(state.ledger.symbols())} open positions"
        )
        return result

    # --- Dispatch ------------------------------------------------------------

    def _dispatch(self, event: CanonicalEvent, state: "_ReplayState", engine: CorporateActionEngine):
        payload = event.payload
        if event.kind == EventKind.TRADE:
            self._trade(event, payload, state)
        elif event.kind == EventKind.CORPORATE_ACTION:
            self._corporate_action(event, payload, state, engine)
        elif event.kind == EventKind.INCOME:
            self._income(event, payload, state)
        elif event.kind == EventKind.FEE:
            self._fee(event, payload, state)
        else:
            raise TypeError(f"Unsupported event kind: {event.kind}")

    def _settlement_date(self, event: CanonicalEvent, symbol: str, state: "_ReplayState") -> date:
        if event.settlement_date is not None:
            return event.settlement_date
        if self.policy.cost_basis_date == CostBasisDate.SETTLEMENT:
            raise MissingSettlementDate(
                "Trade has no settlement date but the jurisdiction costs at settlement",
                symbol=symbol, date=event.date,
            )
        if not state.assumed_t0:
            state.assumed_t0 = True
            message = f"{self.portfolio}: trades without settlement date are treated as settling on the trade date (T+0)"
            state.warnings.append(message)
            logger.info(message)
        return event.date

    def _trade(self, event: CanonicalEvent, payload: TradePayload, state: "_ReplayState"):
        symbol = self.resolve_symbol(payload.symbol)
        settlement_date = self._settlement_date(event, symbol, state)
        price = payload.price.to_money()
        commission = payload.commission.to_money() if payload.commission else Money.zero(price.currency)

        if payload.quantity > 0:
            state.ledger.open(Lot(
                lot_id=f"L{event.sequence_no}",
                symbol=symbol,
                quantity=payload.quantity,
                unit_cost=price,
                acquisition_date=event.date,
                settlement_date=settlement_date,
                sequence_no=event.sequence_no,
                origin=LotOrigin.PURCHASE,
                commission=commission,
            ))
        else:
            quantity = -payload.quantity
            state.disposals.extend(state.ledger.close(
                symbol,
                quantity,
                event.date,
                proceeds=price * quantity,
                commission=commission,
                settlement_date=settlement_date,
                sequence_no=event.sequence_no,
            ))
        state.ledger.touch(symbol, event.date)

    def _remap_action(self, action: CorporateAction) -> CorporateAction:
        if isinstance(action, Rename):
            return Rename(self.resolve_symbol(action.new_symbol))
        if isinstance(action, SpinOff):
            return SpinOff(
                new_symbol=self.resolve_symbol(action.new_symbol),
                ratio=action.ratio,
                allocation_ratio=action.allocation_ratio,
                old_price=action.old_price,
                new_price=action.new_price,
            )
        if isinstance(action, Merger):
            return Merger(self.resolve_symbol(action.into_symbol), action.ratio)
        if isinstance(action, StockDividend) and action.new_symbol:
            return StockDividend(
                new_symbol=self.resolve_symbol(action.new_symbol),
                quantity_per_held=action.quantity_per_held,
                quantity=action.quantity,
                unit_cost=action.unit_cost,
            )
        return action

    def _corporate_action(self, event: CanonicalEvent, payload: CorporateActionPayload,
                          state: "_ReplayState", engine: CorporateActionEngine):
        symbol = self.resolve_symbol(payload.symbol)
        action = self._remap_action(payload.to_action())
        state.disposals.extend(engine.apply(symbol, action, event.date, event.sequence_no))

    def _income(self, event: CanonicalEvent, payload: IncomePayload, state: "_ReplayState"):
        original = payload.amount.to_money()
        withheld = payload.tax_withheld.to_money() if payload.tax_withheld else Money.zero(original.currency)
        if original.amount < 0 or withheld.amount < 0:
            raise DataInconsistency("Income amounts must be non-negative", date=event.date, amount=original)

        state.income.append(Income(
            date=event.date,
            kind=payload.kind,
            amount=self.converter.convert_to_cents(original, event.date),
            tax_withheld=self.converter.convert_to_cents(withheld, event.date),
            original_amount=original,
            original_tax_withheld=withheld,
            sequence_no=event.sequence_no,
            symbol=self.resolve_symbol(payload.symbol) if payload.symbol else None,
        ))

    def _fee(self, event: CanonicalEvent, payload: FeePayload, state: "_ReplayState"):
        original = payload.amount.to_money()
        state.fees.append(Fee(
            date=event.date,
            amount=self.converter.convert_to_cents(original, event.date),
            original_amount=original,
            sequence_no=event.sequence_no,
            description=payload.description,
        ))


class _ReplayState:
    """Mutable state of a replay in progress."""

    def __init__(self, ledger: LotLedger):
        self.ledger = ledger
        self.disposals: List[Disposal] = []
        self.income: List[Income] = []
        self.fees: List[Fee] = []
        self.warnings: List[str] = []
        self.assumed_t0 = False
        self.processed = 0


def replay_portfolios(
    jobs: Mapping[str, Tuple[EventProcessor, List[CanonicalEvent]]],
    max_workers: int = 4,
) -> Dict[str, ReplayResult]:
    """
    Replay independent portfolios in parallel and wait for all of them.

    Args:
        jobs: portfolio name -> (processor, events)
        max_workers: thread pool size

    Returns:
        portfolio name -> ReplayResult, sorted by name

    Raises:
        PortfolioReplayError: if any replay failed; lists every failure
    """
    results: Dict[str, ReplayResult] = {}
    failures: Dict[str, LedgerError] = {}

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(processor.replay, events): name
            for name, (processor, events) in jobs.items()
        }
        for future in as_completed(futures):
            name = futures[future]
            try:
                results[name] = future.result()
            except LedgerError as e:
                failures[name] = e

    if failures:
        raise PortfolioReplayError(failures, completed=sorted(results))
    return {name: results[name] for name in sorted(results)}
