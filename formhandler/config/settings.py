"""
Process-wide settings for the form handler.

Settings are read once from environment variables, optionally seeded from a ``.env``
file through python-dotenv, and cached. Handlers receive the cached instance unless a
caller passes explicit settings at construction time.

Environment variables:
- FORMHANDLER_DB_CASE_STYLE: ``camel`` or ``snake`` field naming in existence queries
- FORMHANDLER_LOG_LEVEL: standard logging level name
- FORMHANDLER_LOG_FORMAT: ``console`` or ``json``
- FORMHANDLER_METRICS_ENABLED: toggles Prometheus instrumentation
"""

import logging
import os
from dataclasses import dataclass, replace
from enum import Enum
from functools import lru_cache
from typing import Mapping, Optional

import structlog
from dotenv import find_dotenv, load_dotenv

from formhandler.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

ENV_PREFIX = 'FORMHANDLER_'
LOG_FORMATS = ('console', 'json')
TRUTHY_ENV_VALUES = ('1', 'true', 'yes', 'on')


class DBCaseStyle(Enum):
    """Naming convention applied to field names when building existence queries."""

    CAMEL = 'camel'
    SNAKE = 'snake'


@dataclass(frozen=True)
class HandlerSettings:
    """Immutable settings snapshot shared by handlers."""

    db_case_style: DBCaseStyle = DBCaseStyle.CAMEL
    log_level: str = 'INFO'
    log_format: str = 'console'
    metrics_enabled: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'HandlerSettings':
        """
        Build settings from an environment mapping.

        Args:
            environ: Mapping to read from, defaults to ``os.environ``

        Returns:
            Validated settings instance

        Raises:
            ConfigurationError: If any variable holds an unsupported value
        """
        environ = os.environ if environ is None else environ

        case_style = environ.get(f'{ENV_PREFIX}DB_CASE_STYLE', DBCaseStyle.CAMEL.value)
        log_level = environ.get(f'{ENV_PREFIX}LOG_LEVEL', 'INFO').upper()
        log_format = environ.get(f'{ENV_PREFIX}LOG_FORMAT', 'console').lower()
        metrics_enabled = environ.get(f'{ENV_PREFIX}METRICS_ENABLED', 'true').lower()

        return cls(
            db_case_style=parse_case_style(case_style),
            log_level=_validate_log_level(log_level),
            log_format=_validate_log_format(log_format),
            metrics_enabled=metrics_enabled in TRUTHY_ENV_VALUES
        )

    def with_case_style(self, case_style) -> 'HandlerSettings':
        """Return a copy using the given database case style."""
        return replace(self, db_case_style=parse_case_style(case_style))


def parse_case_style(value) -> DBCaseStyle:
    """Turn a case style name or enum member into a ``DBCaseStyle``."""
    if isinstance(value, DBCaseStyle):
        return value
    try:
        return DBCaseStyle(str(value).strip().lower())
    except ValueError:
        raise ConfigurationError(
            f"unsupported database case style '{value}'",
            details={'allowed': [style.value for style in DBCaseStyle]}
        ) from None


def _validate_log_level(level: str) -> str:
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigurationError(f"unsupported log level '{level}'")
    return level


def _validate_log_format(log_format: str) -> str:
    if log_format not in LOG_FORMATS:
        raise ConfigurationError(
            f"unsupported log format '{log_format}'",
            details={'allowed': list(LOG_FORMATS)}
        )
    return log_format


def load_settings(env_file: Optional[str] = None) -> HandlerSettings:
    """
    Load a ``.env`` file if one is found and build settings from the environment.

    Variables already present in the process environment take precedence over the
    file contents.
    """
    target_env_file = env_file or find_dotenv(usecwd=True)
    if target_env_file:
        load_dotenv(target_env_file, override=False)
        logger.debug("Environment file loaded", env_file=target_env_file)

    settings = HandlerSettings.from_env()
    logger.debug(
        "Form handler settings loaded",
        db_case_style=settings.db_case_style.value,
        log_level=settings.log_level,
        log_format=settings.log_format,
        metrics_enabled=settings.metrics_enabled
    )
    return settings


@lru_cache(maxsize=1)
def get_settings() -> HandlerSettings:
    """Return the process-wide settings, loading them on first use."""
    return load_settings()
