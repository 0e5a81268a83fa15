"""
Structured logging setup for the form handler.

Library modules only ever call ``structlog.get_logger(__name__)``. Applications that
want the package's output formatted call ``setup_structured_logging()`` once at startup;
it wires structlog to the standard library logging module and picks a JSON or console
renderer from the settings.
"""

import logging
import logging.config
from typing import Optional

import structlog

from formhandler.config.settings import HandlerSettings, get_settings


def build_processors(log_format: str) -> list:
    """Return the structlog processor chain for the given output format."""
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == 'console':
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:
        processors.append(structlog.processors.JSONRenderer())

    return processors


def setup_structured_logging(
    settings: Optional[HandlerSettings] = None
) -> structlog.stdlib.BoundLogger:
    """
    Configure structlog and the standard library logging module.

    Args:
        settings: Settings to read level and format from, defaults to the cached settings

    Returns:
        Configured structured logger for the package
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=build_processors(settings.log_format),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'plain': {
                'format': '%(message)s'
            }
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'plain',
                'stream': 'ext://sys.stdout'
            }
        },
        'loggers': {
            'formhandler': {
                'handlers': ['console'],
                'level': settings.log_level,
                'propagate': False
            }
        }
    })

    logger = structlog.get_logger('formhandler')
    logger.info(
        "Structured logging configured",
        log_level=settings.log_level,
        log_format=settings.log_format
    )
    return logger
