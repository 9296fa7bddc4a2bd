"""Structured logging with settlement context.

Log records carry the payment, transfer and merchant being worked on, bound
through ``settlement_context`` so every line emitted while driving one transfer
can be correlated:

    with settlement_context(transfer_id=transfer.transfer_id):
        logger.info("Burn submitted")
"""
from __future__ import annotations

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
payment_id_var: ContextVar[Optional[str]] = ContextVar("payment_id", default=None)
transfer_id_var: ContextVar[Optional[str]] = ContextVar("transfer_id", default=None)
merchant_id_var: ContextVar[Optional[str]] = ContextVar("merchant_id", default=None)

_CONTEXT_VARS: dict[str, ContextVar[Optional[str]]] = {
    "correlation_id": correlation_id_var,
    "payment_id": payment_id_var,
    "transfer_id": transfer_id_var,
    "merchant_id": merchant_id_var,
}

_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"} | frozenset(_CONTEXT_VARS)


class SettlementContextFilter(logging.Filter):
    """Adds the bound settlement context to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, var in _CONTEXT_VARS.items():
            setattr(record, name, var.get())
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for name in _CONTEXT_VARS:
            value = getattr(record, name, None)
            if value:
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # extra={...} fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure logging for the process.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON structured logging (True) or a plain text format
        log_file: Optional file path for logging output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - "
            "[%(payment_id)s/%(transfer_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(SettlementContextFilter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(SettlementContextFilter())
        root_logger.addHandler(file_handler)


def generate_correlation_id() -> str:
    return f"cor_{uuid.uuid4().hex[:16]}"


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


@contextmanager
def settlement_context(
    payment_id: Optional[str] = None,
    transfer_id: Optional[str] = None,
    merchant_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> Iterator[None]:
    """Bind ids to the logging context; unset ids keep their outer value."""
    values = {
        "payment_id": payment_id,
        "transfer_id": transfer_id,
        "merchant_id": merchant_id,
        "correlation_id": correlation_id,
    }
    tokens = [
        (_CONTEXT_VARS[name], _CONTEXT_VARS[name].set(value))
        for name, value in values.items()
        if value is not None
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def mask_address(address: Optional[str], visible: int = 4) -> str:
    """Shorten an address for log lines: 0x1234...abcd."""
    if not address:
        return "<none>"
    if len(address) <= visible * 2 + 3:
        return address
    return f"{address[:visible + 2 if address.startswith('0x') else visible]}...{address[-visible:]}"


__all__ = [
    "SettlementContextFilter",
    "StructuredFormatter",
    "generate_correlation_id",
    "get_correlation_id",
    "mask_address",
    "settlement_context",
    "setup_logging",
]
