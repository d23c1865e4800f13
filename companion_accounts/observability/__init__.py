"""
Observability module - Logging, Metrics, and Tracing.
"""

from companion_accounts.observability.logging import get_logger, log_context, setup_logging
from companion_accounts.observability.metrics import metrics
from companion_accounts.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
