"""
Per-field validation context and message interpolation.

A ``ValidationContext`` carries the value under validation together with the resolved
rule, the live data source and the shared error bag. Option values are read through
the context so ``{otherField}`` references resolve against the current data.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

import structlog

from formhandler.error_bag import ErrorBag
from formhandler.inflector import ordinalize
from formhandler.rules import FieldRule

logger = structlog.get_logger(__name__)

PLACEHOLDER_PATTERN = re.compile(r'\{([A-Za-z_][\w.\-]*)\}')

# Tokens substituted in error messages, never treated as field references
RESERVED_TOKENS = frozenset({'this', '_this', 'value', '_index'})


def stringify(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def resolve_references(text: str, data: Mapping[str, Any]) -> str:
    """Replace ``{field}`` tokens that name a field of ``data`` with its current value."""
    def replace(match):
        name = match.group(1)
        if name in RESERVED_TOKENS or name not in data:
            return match.group(0)
        value = data[name]
        if isinstance(value, (list, tuple)):
            return ','.join(stringify(item) for item in value)
        return '' if value is None else stringify(value)

    return PLACEHOLDER_PATTERN.sub(replace, text)


def interpolate_message(message: str, field_name: str, value: Any = None,
                        index: int = 0) -> str:
    """Substitute the reserved message tokens in a single pass."""
    quoted = '"' + ('' if value is None else stringify(value)) + '"'
    replacements = {
        'this': quoted,
        'value': quoted,
        '_this': field_name,
        '_index': ordinalize(index + 1),
    }

    def replace(match):
        name = match.group(1)
        return replacements.get(name, match.group(0))

    return PLACEHOLDER_PATTERN.sub(replace, message)


@dataclass
class ValidationContext:
    """Transient state for validating one value of one field."""

    rule: FieldRule
    value: Any
    errors: ErrorBag
    data: Mapping[str, Any] = field(default_factory=dict)
    files: Mapping[str, Any] = field(default_factory=dict)
    index: int = 0

    @property
    def field(self) -> str:
        return self.rule.field

    @property
    def required(self) -> bool:
        return self.rule.required

    @property
    def has_error(self) -> bool:
        return self.errors.has(self.rule.field)

    def option(self, name: str, default: Any = None) -> Any:
        """Read a rule option, resolving lazy ``{field}`` references in strings."""
        value = self.rule.options.get(name, default)
        if isinstance(value, str):
            return resolve_references(value, self.data)
        return value

    def fail(self, message: str, value: Any = None) -> bool:
        """
        Record an error for the field and return False.

        Args:
            message: Message template, may contain ``{this}``, ``{_this}`` and ``{_index}``
            value: Value quoted into ``{this}``, defaults to the value under validation

        Returns:
            Always False so validators can ``return ctx.fail(...)``
        """
        value = self.value if value is None else value
        message = resolve_references(message, self.data)
        message = interpolate_message(message, self.rule.field, value, self.index)
        if self.errors.set(self.rule.field, message):
            logger.debug(
                "Field validation failed",
                field=self.rule.field,
                rule_type=self.rule.type,
                index=self.index,
                error=message
            )
        return False
