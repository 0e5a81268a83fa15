"""Logging and metrics helpers for the form handler."""

from formhandler.monitoring.logging import setup_structured_logging
from formhandler.monitoring.metrics import HandlerMetrics

__all__ = ['setup_structured_logging', 'HandlerMetrics']
