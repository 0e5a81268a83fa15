"""
Type validators for form fields.

Each declared field type maps to one ``TypeValidator`` strategy exposing a single
``validate(ctx)`` capability. Validators share a common flow:

1. Setup guard: empty optional values pass, empty required values fail
2. Type-specific format check, short-circuiting with a type error
3. Limiting rules (min/max/gt/lt) against a type-appropriate actual value
4. Regex rules for text-like types
5. Cross-field ``shouldMatch`` comparison

The registry that maps type names to validator instances lives in
``formhandler.registry``.
"""

import re
from datetime import date, datetime
from typing import Any, Optional, Pattern, Tuple

import structlog

from formhandler.context import ValidationContext, resolve_references
from formhandler.engines.limiting import (
    UNIT_CHARACTERS,
    UNIT_DATE,
    UNIT_NUMERIC,
    LimitingRuleEngine,
)
from formhandler.engines.patterns import PatternRuleEngine
from formhandler.rules import RegexTest, is_empty, loosely_equals

logger = structlog.get_logger(__name__)


# ============================================================================
# TYPE CATEGORIES
# ============================================================================

TEXT_TYPES = ('text', 'title')
INTEGER_TYPES = ('int', 'pInt', 'nInt')
FLOAT_TYPES = ('number', 'pNumber', 'nNumber', 'money')
BOOLEAN_TYPES = ('checkbox', 'boolean')
CHOICE_TYPES = ('choice', 'range')

URL_SCHEMES = (
    'http', 'https', 'ssh', 'ftp', 'smtp', 'telnet', 'imap', 'ip', 'ssl', 'pop3',
    'sip', 'ws', 'wss',
)

DATE_FORMAT = re.compile(r'^([0-9]{4})([-._:|/\s])?([0-9]{1,2})\2?([0-9]{1,2})$')

EMAIL_REGEX_ALL: Tuple[RegexTest, ...] = (
    # overall shape of local part and domain
    RegexTest.compile(r"^[-\w!#$%&'*+/=?^`{|}~.]{1,64}@[-a-z0-9.]{1,253}$", flags=re.IGNORECASE),
    # local part starts with a word character
    RegexTest.compile(r'^\w'),
    # domain labels and tld
    RegexTest.compile(
        r'@[a-z0-9](?:[-a-z0-9]*[a-z0-9])?(?:\.[a-z0-9](?:[-a-z0-9]*[a-z0-9])?)*(\.[a-z]{2,4})$',
        flags=re.IGNORECASE
    ),
)

EMAIL_REGEX_NONE: Tuple[RegexTest, ...] = (
    RegexTest.compile(r'\.{2,}.*@'),
)

URL_REGEX = RegexTest.compile(
    r'^(?:(?:' + '|'.join(URL_SCHEMES) + r')://)?'
    r'[a-z0-9](?:[-a-z0-9]*[a-z0-9])?(?:\.[a-z0-9](?:[-a-z0-9]*[a-z0-9])?)*'
    r'(\.[a-z]{2,4})(?:\:\d{1,4})?(?:[#/?][-\w()/#~:.?+=&%@]*)?$',
    flags=re.IGNORECASE
)


def resolve_date(value: Any) -> Optional[date]:
    """
    Convert a ``YYYY-MM-DD`` style string (any repeated separator) into a date.

    Returns:
        The calendar date, or None when the text is malformed or not a real date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    match = DATE_FORMAT.match(value.strip())
    if not match:
        return None
    try:
        return date(int(match.group(1)), int(match.group(3)), int(match.group(4)))
    except ValueError:
        return None


# ============================================================================
# BASE STRATEGY
# ============================================================================

class TypeValidator:
    """
    Base validator strategy.

    Subclasses override ``check`` with the type-specific format and limit checks.
    ``post_validate_prefix`` names the subject of the default mismatch message.
    """

    post_validate_prefix = '{_this}'

    def __init__(
        self,
        limiting: Optional[LimitingRuleEngine] = None,
        patterns: Optional[PatternRuleEngine] = None
    ):
        self.limiting = limiting or LimitingRuleEngine()
        self.patterns = patterns or PatternRuleEngine()

    def validate(self, ctx: ValidationContext) -> bool:
        """Validate one value. Returns True when no error was recorded."""
        if not self.setup(ctx):
            return not ctx.has_error
        if not self.check(ctx):
            return False
        return self.post_validate(ctx)

    def setup(self, ctx: ValidationContext) -> bool:
        """Return True when the value should be checked further."""
        if not is_empty(ctx.value):
            return True
        if ctx.required:
            ctx.fail('{_this} is required')
        return False

    def check(self, ctx: ValidationContext) -> bool:
        return True

    def post_validate(self, ctx: ValidationContext) -> bool:
        """Compare against another field's live value when ``shouldMatch`` is set."""
        should_match = ctx.option('shouldMatch')
        if not should_match:
            return True

        target = resolve_references(should_match['target'], ctx.data)
        if loosely_equals(ctx.value, target):
            return True

        return ctx.fail(
            should_match.get('err') or f"{self.post_validate_prefix} did not match"
        )


class TextValidator(TypeValidator):
    """Free text limited by character count and declared regex rules."""

    limit_prefix = None

    def check(self, ctx: ValidationContext) -> bool:
        value = str(ctx.value)
        if not self.limiting.check(ctx, len(value), UNIT_CHARACTERS, prefix=self.limit_prefix):
            return False
        return self.patterns.check_rule_options(ctx, value)


class PasswordValidator(TextValidator):
    """Text validator whose defaults are injected by the rule resolver."""

    limit_prefix = 'Password'
    post_validate_prefix = 'Passwords'


class BooleanValidator(TypeValidator):
    """Checkbox and boolean fields accept any submitted value."""


# ============================================================================
# NUMBERS AND DATES
# ============================================================================

class NumberValidator(TypeValidator):
    """Numeric text checked against a sign-aware format, then limited numerically."""

    def __init__(self, pattern: Pattern, message: str, cast=float, **kwargs):
        super().__init__(**kwargs)
        self.pattern = pattern
        self.message = message
        self.cast = cast

    def check(self, ctx: ValidationContext) -> bool:
        value = str(ctx.value).strip()
        if not self.pattern.match(value):
            return ctx.fail(ctx.option('err', self.message))
        return self.limiting.check(ctx, self.cast(value), UNIT_NUMERIC)


NUMBER_FORMATS = {
    'int': (re.compile(r'^[-+]?\d+$'), '{this} is not a valid integer', int),
    'pInt': (re.compile(r'^[+]?\d+$'), '{this} is not a valid positive integer', int),
    'nInt': (re.compile(r'^-\d+$'), '{this} is not a valid negative integer', int),
    'number': (re.compile(r'^(?:[-+]?\d+(\.\d+)?|\.\d+)$'), '{this} is not a valid number', float),
    'pNumber': (re.compile(r'^(?:\+?\d+(\.\d+)?|\.\d+)$'), '{this} is not a valid positive number', float),
    'nNumber': (re.compile(r'^[-]\d+(\.\d+)?$'), '{this} is not a valid negative number', float),
}
NUMBER_FORMATS['money'] = NUMBER_FORMATS['pNumber']


class DateValidator(TypeValidator):
    """Dates in ``YYYY-MM-DD`` form with an optional repeated separator."""

    def check(self, ctx: ValidationContext) -> bool:
        value = str(ctx.value).strip()
        if not DATE_FORMAT.match(value):
            return ctx.fail(ctx.option('formatErr', '{this} is not a valid date format'))

        parsed = resolve_date(value)
        if parsed is None:
            return ctx.fail(ctx.option('err', '{this} is not a valid date'))

        return self.limiting.check(ctx, parsed, UNIT_DATE, transform=resolve_date)


# ============================================================================
# FORMATTED TEXT
# ============================================================================

class EmailValidator(TypeValidator):
    """Email addresses: built-in pattern checks, declared regex rules, then length."""

    def check(self, ctx: ValidationContext) -> bool:
        value = str(ctx.value)
        err = ctx.option('err', '{this} is not a valid email address')
        builtin_all = tuple(RegexTest(test.pattern, err) for test in EMAIL_REGEX_ALL)
        builtin_none = tuple(RegexTest(test.pattern, err) for test in EMAIL_REGEX_NONE)

        if not self.patterns.check(ctx, value, regex_all=builtin_all, regex_none=builtin_none):
            return False
        if not self.patterns.check_rule_options(ctx, value):
            return False
        return self.limiting.check(ctx, len(value), UNIT_CHARACTERS)


class URLValidator(TypeValidator):
    """URLs with an optional scheme from the allow-list."""

    def check(self, ctx: ValidationContext) -> bool:
        value = str(ctx.value)
        builtin = RegexTest(URL_REGEX.pattern, ctx.option('err', '{this} is not a valid url'))

        if not self.patterns.check(ctx, value, regex=builtin):
            return False
        if not self.patterns.check_rule_options(ctx, value):
            return False
        return self.limiting.check(ctx, len(value), UNIT_CHARACTERS)


class ChoiceValidator(TypeValidator):
    """Value must loosely equal one of the ``choices`` option entries."""

    def check(self, ctx: ValidationContext) -> bool:
        choices = ctx.option('choices') or ()
        if any(loosely_equals(ctx.value, choice) for choice in choices):
            return True
        return ctx.fail(ctx.option('err', '{this} is not an acceptable choice'))


def generate_range(start: Any, end: Any, step: Any = 1) -> Tuple[Any, ...]:
    """
    Build the choices of a ``range`` field.

    Numeric bounds produce numbers, single letters produce letters. The step is always
    taken as an absolute value and the sequence runs downwards when ``end < start``.
    """
    step = abs(float(step or 1))
    if step == 0:
        step = 1.0

    letters = isinstance(start, str) and isinstance(end, str) \
        and len(start) == 1 and len(end) == 1 and start.isalpha() and end.isalpha()
    if letters:
        first, last, step = ord(start), ord(end), max(int(step), 1)
        direction = 1 if last >= first else -1
        return tuple(chr(code) for code in range(first, last + direction, step * direction))

    first, last = float(start), float(end)
    integral = first.is_integer() and last.is_integer() and step.is_integer()
    direction = 1 if last >= first else -1
    values = []
    current = first
    while (current <= last) if direction > 0 else (current >= last):
        values.append(int(current) if integral else round(current, 10))
        current += step * direction
    return tuple(values)
