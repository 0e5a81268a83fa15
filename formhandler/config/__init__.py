"""Configuration package for the form handler."""

from formhandler.config.settings import (
    DBCaseStyle,
    HandlerSettings,
    get_settings,
    load_settings,
    parse_case_style,
)

__all__ = [
    'DBCaseStyle',
    'HandlerSettings',
    'get_settings',
    'load_settings',
    'parse_case_style',
]
