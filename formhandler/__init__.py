"""
Declarative validation, filtering and normalization of form submissions.

Typical use::

    from formhandler import Handler

    handler = Handler(data, files, rules)
    if await handler.execute():
        handler.data
    else:
        handler.errors
"""

from formhandler.adapters import CallableAdapter, DBAdapter, MongoAdapter
from formhandler.config import DBCaseStyle, HandlerSettings, get_settings
from formhandler.exceptions import (
    ConfigurationError,
    DatabaseCheckError,
    DataSourceNotSetError,
    DirectoryNotFoundError,
    FileMoveError,
    FilesSourceNotSetError,
    FormHandlerError,
    InvalidDateError,
    RuleDefinitionError,
    RulesNotSetError,
    StateError,
)
from formhandler.files import FileExtensionDetector
from formhandler.handler import Handler, HandlerState
from formhandler.rules import FieldRule

__version__ = '1.0.0'

__all__ = [
    'Handler',
    'HandlerState',
    'FieldRule',
    'DBAdapter',
    'MongoAdapter',
    'CallableAdapter',
    'FileExtensionDetector',
    'DBCaseStyle',
    'HandlerSettings',
    'get_settings',
    'FormHandlerError',
    'ConfigurationError',
    'DataSourceNotSetError',
    'RulesNotSetError',
    'FilesSourceNotSetError',
    'StateError',
    'RuleDefinitionError',
    'InvalidDateError',
    'DirectoryNotFoundError',
    'FileMoveError',
    'DatabaseCheckError',
]
