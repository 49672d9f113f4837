"""
Logging for the faucet.

Every record, whether it comes from a structlog logger or from a stdlib
module logger, is rendered by structlog: JSON lines in production and a
colored console at DEBUG. Before rendering, secret-bearing fields are masked
and token amounts too large for a JSON number are written as strings.
"""

import logging
import sys
from typing import Any, Iterable, Optional

import structlog

from .config import settings

REDACTED = "[redacted]"

SECRET_KEY_MARKERS = ("mnemonic", "private_key", "privkey", "seed", "secret", "password")

# Largest integer a JSON double holds exactly
MAX_SAFE_INT = 2**53 - 1


def is_secret_key(key: Any) -> bool:
    name = str(key).lower()
    return any(marker in name for marker in SECRET_KEY_MARKERS)


class SecretRedactor:
    """Masks secret-named fields, and known secret values inside any string."""

    def __init__(self, secret_values: Iterable[str] = ()):
        self.secret_values = [value for value in secret_values if value]

    def scrub(self, value: Any) -> Any:
        if isinstance(value, str):
            for secret in self.secret_values:
                value = value.replace(secret, REDACTED)
            return value
        if isinstance(value, dict):
            return {k: REDACTED if is_secret_key(k) else self.scrub(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.scrub(v) for v in value]
        return value

    def __call__(self, logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> structlog.types.EventDict:
        for key in list(event_dict):
            if key.startswith("_"):
                continue
            if is_secret_key(key):
                event_dict[key] = REDACTED
            else:
                event_dict[key] = self.scrub(event_dict[key])
        return event_dict


def _stringify_amount(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value) if abs(value) > MAX_SAFE_INT else value
    if isinstance(value, dict):
        return {k: _stringify_amount(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_stringify_amount(v) for v in value]
    return value


def stringify_amounts(logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> structlog.types.EventDict:
    """Base-unit amounts (10**18 scale) lose precision as JSON numbers."""
    for key in list(event_dict):
        if not key.startswith("_"):
            event_dict[key] = _stringify_amount(event_dict[key])
    return event_dict


def setup_logging(log_level: Optional[str] = None, secret_values: Optional[Iterable[str]] = None) -> None:
    """Route all logging through structlog.

    Args:
        log_level: Override log level (default: from settings.log_level)
        secret_values: Literal strings to mask wherever they appear
            (default: the configured mnemonic)
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    is_dev = level == logging.DEBUG

    if secret_values is None:
        secret_values = [settings.mnemonic.get_secret_value()] if settings.has_mnemonic else []

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso"),
        SecretRedactor(secret_values),
        stringify_amounts,
    ]

    if is_dev:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # One line per RPC round trip otherwise
    for name in ("uvicorn.access", "httpcore", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_request_context(**values: object) -> None:
    """Attach request-scoped fields (request id, recipient) to every log line."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)
