"""
Logging Configuration

Structured logging for the ledger:
- One line per record: [TIMESTAMP] [LEVEL] [MODULE:FUNCTION:LINE] MESSAGE {context}
- Ledger context (portfolio, symbol, sequence number) passed via
  extra={"ledger_context": {...}} or bound once with LedgerLogAdapter
- Context dicts of raised ledger errors appended to logged exceptions
- Timing of replays and tax runs (get_perf_logger)
- Level from LOG_LEVEL
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional


def _render_context(context: Mapping[str, Any]) -> str:
    return " ".join(f"{key}={value}" for key, value in sorted(context.items()) if value is not None)


class StructuredFormatter(logging.Formatter):
    """
    Structured log formatter.

    Format: [TIMESTAMP] [LEVEL] [MODULE:FUNCTION:LINE] MESSAGE {context}
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        location = f"{record.module}:{record.funcName}:{record.lineno}"

        base_msg = f"[{timestamp}] [{record.levelname:8s}] [{location}] {record.getMessage()}"

        context = getattr(record, 'ledger_context', None)
        if context:
            rendered = _render_context(context) if isinstance(context, Mapping) else str(context)
            base_msg += f" {{{rendered}}}"

        if record.exc_info:
            base_msg += f"\n{self.formatException(record.exc_info)}"
            error_context = getattr(record.exc_info[1], 'context', None)
            if error_context:
                base_msg += f"\n  context: {_render_context(error_context)}"

        return base_msg


class LedgerLogAdapter(logging.LoggerAdapter):
    """
    Logger bound to a portfolio (or any fixed context).

    Per-call extra={"ledger_context": {...}} entries are merged over the
    bound context.
    """

    def process(self, msg, kwargs):
        extra = kwargs.setdefault('extra', {})
        context: Dict[str, Any] = dict(self.extra)
        context.update(extra.get('ledger_context') or {})
        extra['ledger_context'] = context
        return msg, kwargs


class PerformanceLogger:
    """Times a block and logs it; slow blocks become SLOW warnings."""

    def __init__(self, logger: logging.Logger, operation: str, threshold_ms: float = 1000):
        self.logger = logger
        self.operation = operation
        self.threshold_ms = threshold_ms
        self.start_time: Optional[datetime] = None
        self.duration_ms: Optional[float] = None

    def __enter__(self):
        self.start_time = datetime.now()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (datetime.now() - self.start_time).total_seconds() * 1000

        if exc_type is not None:
            self.logger.debug(f"{self.operation} failed after {self.duration_ms:.1f}ms")
        elif self.duration_ms > self.threshold_ms:
            self.logger.warning(f"SLOW: {self.operation} took {self.duration_ms:.1f}ms")
        else:
            self.logger.debug(f"{self.operation} took {self.duration_ms:.1f}ms")
        return False


def setup_logger(
    name: str,
    level: Optional[str] = None,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Set up a logger with structured formatting and optional file output.

    Args:
        name: Logger name (usually __name__)
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL or INFO
        log_file: Optional file path for logs (defaults to LEDGER_LOG_FILE if set)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    level = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    log_level = getattr(logging, level, logging.INFO)
    logger.setLevel(log_level)

    handlers = [logging.StreamHandler(sys.stdout)]
    log_file = log_file or os.getenv('LEDGER_LOG_FILE')
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_ledger_logger(logger: logging.Logger, **context: Any) -> LedgerLogAdapter:
    """
    Bind ledger context to a logger.

    Usage:
        log = get_ledger_logger(logger, portfolio="ib")
        log.info("Replay started")   # ... Replay started {portfolio=ib}
    """
    return LedgerLogAdapter(logger, context)


def get_perf_logger(logger: logging.Logger, operation: str, threshold_ms: float = 1000):
    """
    Get a performance logger context manager.

    Usage:
        with get_perf_logger(logger, "replay ib", threshold_ms=2000):
            result = processor.replay(events)
    """
    return PerformanceLogger(logger, operation, threshold_ms)


def log_dataframe_info(logger: logging.Logger, df, name: str = "DataFrame"):
    """Log row and column counts of an exported DataFrame."""
    if df is None:
        logger.warning(f"{name} is None")
        return

    if df.empty:
        logger.debug(f"{name} is empty (0 rows)")
    else:
        logger.debug(f"{name}: {len(df)} rows, {len(df.columns)} columns")
