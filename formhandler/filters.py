"""
Post-validation filter pipeline.

Filters run in a fixed order once a field has passed validation and its existence
checks:

    decode -> stripTags -> minimize -> trim -> numeric coercion -> case -> inflection -> callback

``decode``, ``stripTags`` and ``trim`` are on unless a rule turns them off. Password
fields are only decoded and stripped when their rule asks for it. Fields of
type ``title`` are titleized by default. Integer, float and boolean field types are
cast to their Python types during numeric coercion.
"""

import html
import re
from typing import Any, Iterable, List, Optional, Union
from urllib.parse import unquote

import bleach
import structlog

from formhandler.inflector import capitalize, ordinalize, pluralize, singularize, titleize
from formhandler.rules import FieldRule, is_checked
from formhandler.validators import BOOLEAN_TYPES, FLOAT_TYPES, INTEGER_TYPES

logger = structlog.get_logger(__name__)

LEADING_NUMBER = re.compile(r'^[-+]?(?:\d+(?:\.\d*)?|\.\d+)')
TAG_NAME = re.compile(r'[A-Za-z][\w-]*')
VERBATIM_TYPES = frozenset({'password'})


def to_numeric(value: Any) -> Union[int, float]:
    """
    Leading number of a string, or 0.

    Example:
        >>> to_numeric('200AD')
        200
        >>> to_numeric('AD30')
        0
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    match = LEADING_NUMBER.match(str(value).strip())
    if not match:
        return 0
    number = float(match.group(0))
    return int(number) if number.is_integer() and '.' not in match.group(0) else number


def parse_tag_list(tags: Union[str, Iterable[str], None]) -> List[str]:
    """Turn ``'p,<br>'`` or ``['p', '<br>']`` into ``['p', 'br']``."""
    if not tags:
        return []
    if isinstance(tags, str):
        tags = tags.split(',')
    names = []
    for tag in tags:
        match = TAG_NAME.search(str(tag))
        if match:
            names.append(match.group(0).lower())
    return names


def strip_tags(value: str, allowed: Optional[Iterable[str]] = None) -> str:
    """Remove HTML tags, keeping the surrounding text as it was written."""
    if '<' not in value:
        return value
    # bleach escapes the text it keeps
    cleaned = bleach.clean(value, tags=frozenset(allowed or ()), attributes={}, strip=True,
                           strip_comments=True)
    return html.unescape(cleaned)


def minimize(value: str) -> str:
    """Collapse runs of whitespace, line breaks included, into single spaces."""
    return re.sub(r'\s+', ' ', value).strip()


class FilterPipeline:
    """Applies a field's filters to its validated value or list of values."""

    def apply(self, rule: FieldRule, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return [self.apply_one(rule, item) for item in value]
        return self.apply_one(rule, value)

    def apply_one(self, rule: FieldRule, value: Any) -> Any:
        filters = rule.filters

        if isinstance(value, str):
            # passwords are kept as typed unless the rule opts in
            markup_default = rule.type not in VERBATIM_TYPES
            if filters.get('decode', markup_default):
                value = unquote(value)
            if filters.get('stripTags', markup_default):
                value = strip_tags(value, parse_tag_list(filters.get('stripTagsIgnore')))
            if filters.get('minimize', False):
                value = minimize(value)
            if filters.get('trim', True):
                value = value.strip()

        value = self.coerce(rule, value)

        if isinstance(value, str):
            value = self.transform_case(rule, value)
            if filters.get('pluralize', False):
                value = pluralize(value)
            if filters.get('singularize', False):
                value = singularize(value)

        if filters.get('ordinalize', False) and not isinstance(value, bool):
            value = ordinalize(value)

        callback = filters.get('callback')
        if callback is not None:
            value = callback(value)
        return value

    def coerce(self, rule: FieldRule, value: Any) -> Any:
        if rule.type in BOOLEAN_TYPES:
            return is_checked(value)
        if rule.filters.get('toNumeric', False):
            value = to_numeric(value)
        if rule.type in INTEGER_TYPES:
            return int(to_numeric(value))
        if rule.type in FLOAT_TYPES:
            return float(to_numeric(value))
        return value

    def transform_case(self, rule: FieldRule, value: str) -> str:
        filters = rule.filters
        if filters.get('uppercase', False):
            value = value.upper()
        if filters.get('lowercase', False):
            value = value.lower()
        if filters.get('capitalize', False):
            value = capitalize(value)
        if filters.get('titleize', rule.type == 'title'):
            value = titleize(value)
        return value
