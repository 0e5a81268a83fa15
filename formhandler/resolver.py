"""
Rule resolution.

Turns sparse rule declarations into frozen ``FieldRule`` snapshots. Resolution runs in
a fixed order:

1. Shorthand normalization (``'email'`` becomes ``{'type': 'email'}``)
2. Required-if evaluation, dropping the rule when the condition fails
3. List inference from the plural form of the field name
4. Placeholder substitution of ``{name}``, ``{current_date}``, ``{current_year}``
   and ``{current_time}`` in every string option
5. ``shouldMatch`` normalization to ``{'target': '{other}'}``
6. Type defaults and regex compilation

Other ``{field}`` tokens are left in place; validators resolve them against the live
data source when they read the option.
"""

import re
import time
from datetime import date
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import structlog

from formhandler.db_checker import IT_DOES_NOT_EXIST, IT_EXISTS
from formhandler.exceptions import RuleDefinitionError
from formhandler.files import DEFAULT_FILE_MIMES
from formhandler.inflector import is_plural, last_word
from formhandler.rules import (
    FieldRule,
    RegexGroup,
    RegexTest,
    RequiredCondition,
    compile_regex_list,
    freeze,
)
from formhandler.validators import generate_range

logger = structlog.get_logger(__name__)

RULE_KEYS = frozenset({
    'type', 'required', 'isList', 'is_list', 'options', 'filters', 'check', 'checks',
    'validate', 'compute', 'defaultValue', 'default_value', 'hint',
})

NOW_PLACEHOLDER = re.compile(r'\{(name|current_date|current_year|current_time)\}')

PASSWORD_DEFAULTS = {'min': 8, 'max': 28}

PASSWORD_REGEX_ALL = (
    RegexTest.compile(r'[a-z].*[a-z]', 'Password must contain at least two letter alphabets',
                      flags=re.IGNORECASE),
    RegexTest.compile(r'[^a-z].*[^a-z]', 'Password must contain at least two non letter alphabets',
                      flags=re.IGNORECASE),
)


class RuleResolver:
    """
    Resolves raw rule declarations into ``FieldRule`` snapshots.

    Args:
        known_types: Field type names accepted in declarations
    """

    def __init__(self, known_types: Iterable[str]):
        self.known_types = frozenset(known_types)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve_all(self, rules: Mapping[str, Any],
                    data: Mapping[str, Any]) -> Mapping[str, FieldRule]:
        """Resolve every declared rule, in declaration order, skipping dropped ones."""
        resolved: Dict[str, FieldRule] = {}
        for field, raw in rules.items():
            rule = self.resolve(field, raw, data)
            if rule is not None:
                resolved[field] = rule
        return MappingProxyType(resolved)

    def resolve(self, field: str, raw: Any,
                data: Optional[Mapping[str, Any]] = None) -> Optional[FieldRule]:
        """
        Resolve one field's rule.

        Args:
            field: Field name
            raw: Type name, rule mapping or None
            data: Data source used by required-if conditions

        Returns:
            Resolved rule, or None when a required-if condition drops the field

        Raises:
            RuleDefinitionError: For unknown types and malformed options
        """
        data = data or {}
        declaration = self.normalize_shorthand(field, raw)
        rule_type = declaration.get('type') or 'text'
        if rule_type not in self.known_types:
            raise RuleDefinitionError(f"unknown field type '{rule_type}'", field=field)

        has_default = 'defaultValue' in declaration or 'default_value' in declaration
        required = self.resolve_required(field, rule_type, declaration, data)
        if required is None:
            logger.debug("Field rule dropped by required-if condition", field=field)
            return None

        is_list = self.resolve_is_list(field, declaration)

        now = self.now_values(field)
        options = self.substitute(dict(declaration.get('options') or {}), now)
        filters = self.substitute(dict(declaration.get('filters') or {}), now)
        checks = self.resolve_checks(field, declaration, now)
        hint = declaration.get('hint')
        if isinstance(hint, str):
            hint = self.substitute(hint, now)

        options = self.resolve_should_match(options)
        options = self.apply_type_defaults(field, rule_type, options)
        options = self.compile_regex_options(options)

        extras = {
            key: self.substitute(value, now)
            for key, value in declaration.items() if key not in RULE_KEYS
        }

        return FieldRule(
            field=field,
            type=rule_type,
            required=required,
            is_list=is_list,
            options=freeze(options),
            filters=freeze(filters),
            checks=checks,
            validate=declaration.get('validate'),
            compute=declaration.get('compute'),
            default_value=declaration.get('defaultValue', declaration.get('default_value')),
            has_default=has_default,
            hint=hint,
            extras=freeze(extras),
        )

    # ------------------------------------------------------------------
    # Resolution steps
    # ------------------------------------------------------------------

    def normalize_shorthand(self, field: str, raw: Any) -> Dict[str, Any]:
        if raw is None:
            return {}
        if isinstance(raw, str):
            return {'type': raw}
        if isinstance(raw, Mapping):
            return dict(raw)
        raise RuleDefinitionError(f"unsupported rule declaration {raw!r}", field=field)

    def resolve_required(self, field: str, rule_type: str,
                         declaration: Mapping[str, Any],
                         data: Mapping[str, Any]) -> Optional[bool]:
        """Return the required flag, or None when the rule must be dropped."""
        # checkboxes and fields with a default value are optional unless declared otherwise
        has_default = 'defaultValue' in declaration or 'default_value' in declaration
        required = declaration.get('required', rule_type != 'checkbox' and not has_default)
        if not isinstance(required, Mapping):
            return bool(required)

        condition = RequiredCondition.from_option(required, owner=field)
        if condition.evaluate(data):
            return True
        if condition.drop_on_fail:
            return None
        return False

    def resolve_is_list(self, field: str, declaration: Mapping[str, Any]) -> bool:
        for key in ('isList', 'is_list'):
            if key in declaration:
                return bool(declaration[key])
        return is_plural(last_word(field))

    def now_values(self, field: str) -> Dict[str, str]:
        today = date.today()
        return {
            'name': field,
            'current_date': today.isoformat(),
            'current_year': str(today.year),
            'current_time': str(int(time.time() * 1000)),
        }

    def substitute(self, value: Any, now: Mapping[str, str]) -> Any:
        """Replace the name and time placeholders in strings, recursing into containers."""
        if isinstance(value, str):
            return NOW_PLACEHOLDER.sub(lambda match: now[match.group(1)], value)
        if isinstance(value, Mapping):
            return {key: self.substitute(item, now) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.substitute(item, now) for item in value]
        return value

    def resolve_checks(self, field: str, declaration: Mapping[str, Any],
                       now: Mapping[str, str]) -> Tuple[Mapping[str, Any], ...]:
        checks = declaration.get('checks', declaration.get('check'))
        if not checks:
            return ()
        if isinstance(checks, Mapping):
            checks = [checks]

        resolved = []
        for check in checks:
            if not isinstance(check, Mapping):
                raise RuleDefinitionError(f"unsupported existence check {check!r}", field=field)
            if check.get('that') not in (IT_EXISTS, IT_DOES_NOT_EXIST):
                raise RuleDefinitionError(
                    f"unknown existence check '{check.get('that')}'", field=field
                )
            # the model is passed through untouched
            entry = {key: (item if key == 'model' else self.substitute(item, now))
                     for key, item in check.items()}
            resolved.append(MappingProxyType(entry))
        return tuple(resolved)

    def resolve_should_match(self, options: Dict[str, Any]) -> Dict[str, Any]:
        should_match = options.pop('shouldMatch', None) or options.pop('matchWith', None)
        options.pop('matchWith', None)
        if not should_match:
            return options

        if isinstance(should_match, Mapping):
            should_match = dict(should_match)
        else:
            should_match = {'target': str(should_match)}

        target = str(should_match.get('target', ''))
        if not (target.startswith('{') and target.endswith('}')):
            target = '{' + target + '}'
        should_match['target'] = target
        options['shouldMatch'] = should_match
        return options

    def apply_type_defaults(self, field: str, rule_type: str,
                            options: Dict[str, Any]) -> Dict[str, Any]:
        """Return a new options dictionary carrying the defaults of ``rule_type``."""
        options = dict(options)

        if rule_type == 'password':
            for key, value in PASSWORD_DEFAULTS.items():
                options.setdefault(key, value)
            options.setdefault('regexAll', PASSWORD_REGEX_ALL)

        elif rule_type == 'range':
            if 'from' not in options or 'to' not in options:
                raise RuleDefinitionError("range rules need 'from' and 'to' options", field=field)
            try:
                options['choices'] = generate_range(
                    options['from'], options['to'], options.get('step', 1)
                )
            except (TypeError, ValueError) as exc:
                raise RuleDefinitionError(f"invalid range options: {exc}", field=field) from exc

        elif rule_type in DEFAULT_FILE_MIMES:
            options.setdefault('mimes', DEFAULT_FILE_MIMES[rule_type])

        return options

    def compile_regex_options(self, options: Dict[str, Any]) -> Dict[str, Any]:
        if options.get('regex') is not None:
            options['regex'] = RegexTest.from_option(options['regex'])
        if options.get('regexAll') is not None:
            options['regexAll'] = compile_regex_list(options['regexAll'])
        if options.get('regexAny') is not None:
            options['regexAny'] = RegexGroup.from_option(options['regexAny'])
        if options.get('regexNone') is not None:
            options['regexNone'] = compile_regex_list(options['regexNone'])
        return options
