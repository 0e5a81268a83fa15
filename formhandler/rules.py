"""
Rule data model.

Raw rule declarations are loose dictionaries. ``RuleResolver`` turns them into the
frozen value objects defined here, so validators and filters read an immutable
snapshot instead of a shared, mutable options dictionary.
"""

import re
from dataclasses import dataclass, field as dataclass_field
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Pattern, Tuple, Union

from formhandler.exceptions import RuleDefinitionError

# Raw values a form sends for an unticked checkbox or a false flag
FALSY_FORM_VALUES = ('', '0', 'false', 'off', 'no', 'null', 'undefined', 'none')

REQUIRED_IF_CONDITIONS = ('checked', 'notChecked', 'equals', 'notEquals', 'in', 'notIn')

EMPTY_MAPPING: Mapping[str, Any] = MappingProxyType({})


# ============================================================================
# VALUE HELPERS
# ============================================================================

def is_empty(value: Any) -> bool:
    """A value is empty when it is None, an empty string or a list of empty values."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ''
    if isinstance(value, (list, tuple)):
        return all(is_empty(item) for item in value)
    return False


def is_checked(value: Any) -> bool:
    """Form truthiness: strings such as '0', 'false' and 'off' count as unchecked."""
    if isinstance(value, (list, tuple)):
        return any(is_checked(item) for item in value)
    if isinstance(value, str):
        return value.strip().lower() not in FALSY_FORM_VALUES
    return bool(value)


def loosely_equals(first: Any, second: Any) -> bool:
    """Compare form values the way they arrive over the wire, as strings."""
    if first is None or second is None:
        return first is second
    if isinstance(first, bool) or isinstance(second, bool):
        return is_checked(first) == is_checked(second)
    if first == second:
        return True
    return str(first) == str(second)


def freeze(value: Any) -> Any:
    """Recursively turn dicts into read-only mappings and lists into tuples."""
    if isinstance(value, Mapping) and not isinstance(value, MappingProxyType):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(freeze(item) for item in value)
    return value


# ============================================================================
# REGEX VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)
class RegexTest:
    """A compiled pattern with an optional error message override."""

    pattern: Pattern
    err: Optional[str] = None

    def test(self, value: str) -> bool:
        """Search semantics: the pattern may match anywhere in the value."""
        return self.pattern.search(value) is not None

    @classmethod
    def compile(cls, test: Union[str, Pattern], err: Optional[str] = None,
                flags: int = 0) -> 'RegexTest':
        if isinstance(test, re.Pattern):
            return cls(pattern=test, err=err)
        if isinstance(test, str):
            try:
                return cls(pattern=re.compile(test, flags), err=err)
            except re.error as exc:
                raise RuleDefinitionError(f"invalid regex '{test}': {exc}") from exc
        raise RuleDefinitionError(f"unsupported regex test value {test!r}")

    @classmethod
    def from_option(cls, option: Any) -> 'RegexTest':
        """Build from a pattern, a pattern string or a ``{test, err}`` mapping."""
        if isinstance(option, RegexTest):
            return option
        if isinstance(option, Mapping):
            if 'test' not in option:
                raise RuleDefinitionError("regex rule is missing its 'test' entry")
            return cls.compile(option['test'], option.get('err'))
        return cls.compile(option)


@dataclass(frozen=True)
class RegexGroup:
    """Patterns of a ``regexAny`` rule sharing one error message."""

    tests: Tuple[RegexTest, ...]
    err: Optional[str] = None

    @classmethod
    def from_option(cls, option: Any) -> 'RegexGroup':
        if isinstance(option, RegexGroup):
            return option
        if isinstance(option, Mapping):
            tests = option.get('tests', ())
            err = option.get('err')
        else:
            tests, err = option, None
        if not isinstance(tests, (list, tuple)):
            tests = [tests]
        return cls(tests=tuple(RegexTest.from_option(test) for test in tests), err=err)


def compile_regex_list(option: Any) -> Tuple[RegexTest, ...]:
    """Normalize a ``regexAll``/``regexNone`` option to a tuple of compiled tests."""
    if not isinstance(option, (list, tuple)):
        option = [option]
    return tuple(RegexTest.from_option(item) for item in option)


# ============================================================================
# REQUIRED-IF CONDITIONS
# ============================================================================

@dataclass(frozen=True)
class RequiredCondition:
    """
    Conditional requiredness, e.g. ``{'if': 'checked', 'field': 'subscribe'}``.

    ``value`` holds the comparison value of ``equals``/``notEquals`` and ``choices``
    the list of ``in``/``notIn``.
    """

    condition: str
    field: str
    value: Any = None
    choices: Tuple[Any, ...] = ()
    drop_on_fail: bool = True

    @classmethod
    def from_option(cls, option: Mapping[str, Any], owner: str) -> 'RequiredCondition':
        condition = option.get('if')
        if condition not in REQUIRED_IF_CONDITIONS:
            raise RuleDefinitionError(
                f"unknown required-if condition '{condition}'",
                field=owner,
                details={'allowed': list(REQUIRED_IF_CONDITIONS)}
            )
        target = option.get('field')
        if not target:
            raise RuleDefinitionError("required-if condition is missing its target field", field=owner)

        choices = option.get('list', option.get('value'))
        if not isinstance(choices, (list, tuple)):
            choices = () if choices is None else (choices,)

        return cls(
            condition=condition,
            field=target,
            value=option.get('value'),
            choices=tuple(choices),
            drop_on_fail=option.get('dropOnFail', option.get('drop_on_fail', True)) is not False
        )

    def evaluate(self, data: Mapping[str, Any]) -> bool:
        """Return True when the owning field is required given the live data."""
        target_value = data.get(self.field)

        if self.condition == 'checked':
            return is_checked(target_value)
        if self.condition == 'notChecked':
            return not is_checked(target_value)
        if self.condition == 'equals':
            return loosely_equals(target_value, self.value)
        if self.condition == 'notEquals':
            return not loosely_equals(target_value, self.value)

        contained = any(loosely_equals(target_value, choice) for choice in self.choices)
        return contained if self.condition == 'in' else not contained


# ============================================================================
# FIELD RULE
# ============================================================================

@dataclass(frozen=True)
class FieldRule:
    """Fully resolved rule of one field."""

    field: str
    type: str = 'text'
    required: bool = True
    is_list: bool = False
    options: Mapping[str, Any] = dataclass_field(default_factory=lambda: EMPTY_MAPPING)
    filters: Mapping[str, Any] = dataclass_field(default_factory=lambda: EMPTY_MAPPING)
    checks: Tuple[Mapping[str, Any], ...] = ()
    validate: Optional[Callable] = None
    compute: Optional[Callable] = None
    default_value: Any = None
    has_default: bool = False
    hint: Optional[str] = None
    extras: Mapping[str, Any] = dataclass_field(default_factory=lambda: EMPTY_MAPPING)
