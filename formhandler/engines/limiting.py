"""
Limiting rule engine.

Evaluates the ``min``, ``max``, ``gt`` and ``lt`` options of a field, in that order,
stopping at the first violated bound. Bounds may be plain numbers, numeric strings or
byte sizes with a unit suffix (``2mb``, ``1.5gb``). A caller-supplied transform turns
bound values into comparable objects, e.g. date strings into ``datetime.date``.
"""

import operator
import re
from datetime import date
from typing import Any, Callable, NamedTuple, Optional, Tuple

import structlog

from formhandler.context import ValidationContext
from formhandler.exceptions import InvalidDateError, RuleDefinitionError

logger = structlog.get_logger(__name__)

UNIT_CHARACTERS = 'characters'
UNIT_NUMERIC = 'numeric'
UNIT_DATE = 'date'
UNIT_FILE = 'file'

SIZE_SUFFIX_PATTERN = re.compile(r'^(\.[0-9]+|[0-9]+[.]?[0-9]*)(tb|gb|mb|kb|bytes)$', re.IGNORECASE)

# Decimal multipliers, largest first
FILE_SIZE_UNITS: Tuple[Tuple[str, int], ...] = (
    ('tb', 1000 ** 4),
    ('gb', 1000 ** 3),
    ('mb', 1000 ** 2),
    ('kb', 1000),
    ('bytes', 1),
)


class LimitingRule(NamedTuple):
    option: str
    phrase: str
    violated: Callable[[Any, Any], bool]


LIMITING_RULES: Tuple[LimitingRule, ...] = (
    LimitingRule('min', 'should not be less than', operator.lt),
    LimitingRule('max', 'should not be greater than', operator.gt),
    LimitingRule('gt', 'should be greater than', operator.le),
    LimitingRule('lt', 'should be less than', operator.ge),
)

BoundTransform = Callable[[Any], Optional[Any]]


def parse_size(value: str) -> Optional[float]:
    """Turn ``'2mb'`` into ``2000000.0``; returns None when there is no unit suffix."""
    match = SIZE_SUFFIX_PATTERN.match(value.strip())
    if not match:
        return None
    multiplier = dict(FILE_SIZE_UNITS)[match.group(2).lower()]
    return float(match.group(1)) * multiplier


def format_number(value: float, max_fraction_digits: int = 3) -> str:
    """Group thousands and drop trailing fraction zeros, e.g. ``1,000`` or ``2.5``."""
    text = f"{value:,.{max_fraction_digits}f}"
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return text


def format_file_size(size: float) -> str:
    """Reduce a byte count to the largest unit it reaches, e.g. ``2mb``."""
    for label, multiplier in FILE_SIZE_UNITS:
        if size >= multiplier:
            return format_number(size / multiplier, 2) + label
    return format_number(size, 2) + 'bytes'


class LimitingRuleEngine:
    """Checks numeric-style bounds and formats unit-aware messages."""

    def resolve_bound(self, raw: Any, transform: Optional[BoundTransform] = None) -> Any:
        """
        Convert a declared bound into a comparable value.

        Raises:
            InvalidDateError: If ``transform`` returns None for the bound
            RuleDefinitionError: If the bound is neither numeric nor a size
        """
        if transform is not None:
            resolved = transform(raw)
            if resolved is None:
                raise InvalidDateError(f"{raw} is not a valid date", details={'bound': str(raw)})
            return resolved

        if isinstance(raw, bool):
            raise RuleDefinitionError(f"invalid limiting bound {raw!r}")
        if isinstance(raw, (int, float)):
            return raw
        if isinstance(raw, str):
            size = parse_size(raw)
            if size is not None:
                return size
            try:
                return float(raw.strip())
            except ValueError:
                pass
        raise RuleDefinitionError(f"invalid limiting bound {raw!r}")

    def format_bound(self, bound: Any, unit: str) -> str:
        if unit == UNIT_FILE:
            return format_file_size(bound)
        if unit == UNIT_DATE:
            return bound.isoformat() if isinstance(bound, date) else str(bound)
        text = format_number(bound)
        if unit == UNIT_CHARACTERS:
            return text + ' characters'
        return text

    def check(
        self,
        ctx: ValidationContext,
        actual: Any,
        unit: str = UNIT_NUMERIC,
        prefix: Optional[str] = None,
        transform: Optional[BoundTransform] = None
    ) -> bool:
        """
        Evaluate min, max, gt and lt against ``actual``.

        Args:
            ctx: Validation context of the field
            actual: Length, number, date or byte size being limited
            unit: One of ``characters``, ``numeric``, ``date`` or ``file``
            prefix: Message prefix, defaults to the field name
            transform: Optional converter applied to every declared bound

        Returns:
            True if every declared bound is satisfied
        """
        prefix = prefix or '{_this}'

        for rule in LIMITING_RULES:
            raw = ctx.option(rule.option)
            if raw is None or raw == '':
                continue

            bound = self.resolve_bound(raw, transform)
            if rule.violated(actual, bound):
                default_message = f"{prefix} {rule.phrase} {self.format_bound(bound, unit)}"
                return ctx.fail(ctx.option(f"{rule.option}Err", default_message))

        return True
