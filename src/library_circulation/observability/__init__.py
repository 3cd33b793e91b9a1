"""Logfire observability for the library circulation server."""

import logging

import logfire

from .config import ObservabilityConfig
from .context import trace_operation
from .metrics import record_circulation_event

logger = logging.getLogger(__name__)


def initialize_observability(config: ObservabilityConfig | None = None) -> ObservabilityConfig:
    """Configure logfire once at startup."""
    config = config or ObservabilityConfig()

    if not config.enabled:
        logger.debug("Observability disabled via configuration")
        return config

    logfire.configure(
        token=config.token or None,
        service_name=config.project_name,
        environment=config.environment,
        send_to_logfire=config.send_to_logfire,
        console=None if config.console_output else False,
    )

    if config.environment == "production":
        logfire.instrument_system_metrics()

    logger.info(
        "Observability initialized (environment=%s, send_to_logfire=%s)",
        config.environment,
        config.send_to_logfire,
    )
    return config


__all__ = [
    "ObservabilityConfig",
    "initialize_observability",
    "logfire",
    "record_circulation_event",
    "trace_operation",
]
