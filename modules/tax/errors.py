"""
Ledger Error Taxonomy

Three families of fatal errors:
- DataInconsistency: the event stream contradicts itself (oversell, broken
  value conservation, out-of-order events). Aborts the portfolio replay.
- ConfigurationMissing: the operator must supply something (tax rate,
  exemption policy, manual remap). Never defaulted silently.
- ExternalUnavailable: a collaborator could not deliver (missing FX rate).

Every error carries a context dict so it is actionable from the log alone.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from typing import Any, Dict, List, Optional


class LedgerError(Exception):
    """Base class for all ledger, corporate action and tax errors."""

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
        super().__init__(self._render())

    def add_context(self, **context: Any) -> "LedgerError":
        """Attach context discovered further up the stack (portfolio, event)."""
        for key, value in context.items():
            if value is not None:
                self.context.setdefault(key, value)
        self.args = (self._render(),)
        return self

    def _render(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value}" for key, value in sorted(self.context.items()))
        return f"{self.message} ({details})"


# --- Data inconsistency ------------------------------------------------------

class DataInconsistency(LedgerError):
    """Broker data contradicts the ledger state."""


class InsufficientQuantity(DataInconsistency):
    """A close requested more shares than the open lots hold."""


class ValueConservationError(DataInconsistency):
    """A corporate action changed total cost basis beyond the allowed epsilon."""


class OutOfOrderEvent(DataInconsistency):
    """An event arrived before an already processed one."""


class MissingSettlementDate(DataInconsistency):
    """Settlement-date costing was requested for a trade without a settlement date."""


# --- Configuration -----------------------------------------------------------

class ConfigurationMissing(LedgerError):
    """Operator input is required before the computation can proceed."""


class MissingTaxRate(ConfigurationMissing):
    """No tax rate is configured for the requested year."""


class MissingExemptionPolicy(ConfigurationMissing):
    """Disposals exist but the portfolio has no explicit exemption policy."""


class AmbiguousMatch(ConfigurationMissing):
    """A symbol or remap could not be resolved to exactly one target."""


class InvalidActionConfiguration(ConfigurationMissing):
    """A corporate action lacks the data needed to apply it."""


# --- External ----------------------------------------------------------------

class ExternalUnavailable(LedgerError):
    """A collaborator could not provide required data."""


class RateNotAvailable(ExternalUnavailable):
    """Quote or FX rate is missing for the requested key and date."""


# --- Aggregation -------------------------------------------------------------

class PortfolioReplayError(LedgerError):
    """One or more portfolio replays failed in a multi-portfolio run."""

    def __init__(self, failures: Dict[str, LedgerError], completed: Optional[List[str]] = None):
        self.failures = failures
        self.completed = completed or []
        summary = "; ".join(f"{name}: {error}" for name, error in sorted(failures.items()))
        super().__init__(
            f"{len(failures)} portfolio replay(s) failed: {summary}",
            failed=",".join(sorted(failures)),
        )
