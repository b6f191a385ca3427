"""Logging and tracing setup.

Logs go through the standard ``logging`` module (stderr, so stdout stays free
for the stdio transport). Spans go through logfire; ``trace_operation`` wraps
repository operations so every issue/return/allocation shows up as a span
with its tenant and outcome.
"""

import functools
import logging
import sys
from collections.abc import Callable
from datetime import datetime
from typing import Any

import logfire

from .config import ServerConfig, get_config

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(config: ServerConfig | None = None) -> None:
    """Configure root logging from the server configuration."""
    config = config or get_config()
    level = logging.DEBUG if config.debug else getattr(logging, config.log_level)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    if not config.is_development:
        logging.getLogger("fastmcp").setLevel(logging.WARNING)


def configure_observability(config: ServerConfig | None = None) -> bool:
    """Configure logfire tracing. Returns True if tracing was configured."""
    config = config or get_config()
    if not config.logfire_enabled:
        logger.info("Logfire tracing disabled by configuration")
        return False

    logfire.configure(
        service_name=config.server_name,
        service_version=config.server_version,
        send_to_logfire=config.logfire_send,
        console=None if config.logfire_console else False,
    )
    logger.info(
        "Logfire tracing configured (send=%s, console=%s)",
        config.logfire_send,
        config.logfire_console,
    )
    return True


def trace_operation(operation: str) -> Callable:
    """Decorator opening a logfire span around a repository method.

    The wrapped method's ``self`` is expected to carry a ``tenant_id``.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(self, *args: Any, **kwargs: Any) -> Any:
            with logfire.span(
                f"circulation.{operation}",
                operation=operation,
                tenant_id=getattr(self, "tenant_id", None),
            ) as span:
                start_time = datetime.now()
                try:
                    result = func(self, *args, **kwargs)
                except Exception as e:
                    span.set_attribute("operation.success", False)
                    span.set_attribute("operation.error_type", type(e).__name__)
                    span.set_attribute("operation.error", str(e))
                    raise
                span.set_attribute("operation.success", True)
                span.set_attribute(
                    "operation.duration_ms",
                    (datetime.now() - start_time).total_seconds() * 1000,
                )
                return result

        return wrapper

    return decorator
