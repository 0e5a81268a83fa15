"""
Pattern rule engine.

Runs the four regex combinators over a text value: ``regex``, ``regexAll``,
``regexAny`` and ``regexNone``. Each combinator is skipped once the field carries an
error. Patterns are precompiled ``RegexTest`` values produced during rule resolution.
"""

from typing import Iterable, Optional

from formhandler.context import ValidationContext
from formhandler.rules import RegexGroup, RegexTest

DEFAULT_REGEX_ERR = '{this} is not a valid value'
DEFAULT_REGEX_ALL_ERR = '{this} did not meet all expected formats'
DEFAULT_REGEX_ANY_ERR = '{this} did not meet any of the expected formats'
DEFAULT_REGEX_NONE_ERR = '{this} format not acceptable or contains some unwanted characters'


class PatternRuleEngine:
    """Evaluates regex combinators against a string value."""

    def check_regex(self, ctx: ValidationContext, value: str,
                    test: Optional[RegexTest]) -> bool:
        if test is None or ctx.has_error:
            return not ctx.has_error
        if not test.test(value):
            return ctx.fail(test.err or DEFAULT_REGEX_ERR)
        return True

    def check_regex_all(self, ctx: ValidationContext, value: str,
                        tests: Iterable[RegexTest]) -> bool:
        if ctx.has_error:
            return False
        for test in tests:
            if not test.test(value):
                return ctx.fail(test.err or DEFAULT_REGEX_ALL_ERR)
        return True

    def check_regex_any(self, ctx: ValidationContext, value: str,
                        group: Optional[RegexGroup]) -> bool:
        if group is None or not group.tests or ctx.has_error:
            return not ctx.has_error
        if any(test.test(value) for test in group.tests):
            return True
        return ctx.fail(group.err or DEFAULT_REGEX_ANY_ERR)

    def check_regex_none(self, ctx: ValidationContext, value: str,
                         tests: Iterable[RegexTest]) -> bool:
        if ctx.has_error:
            return False
        for test in tests:
            if test.test(value):
                return ctx.fail(test.err or DEFAULT_REGEX_NONE_ERR)
        return True

    def check(
        self,
        ctx: ValidationContext,
        value: str,
        regex: Optional[RegexTest] = None,
        regex_all: Iterable[RegexTest] = (),
        regex_any: Optional[RegexGroup] = None,
        regex_none: Iterable[RegexTest] = ()
    ) -> bool:
        """Run the combinators in order: regex, regexAll, regexAny, regexNone."""
        self.check_regex(ctx, value, regex)
        self.check_regex_all(ctx, value, regex_all)
        self.check_regex_any(ctx, value, regex_any)
        self.check_regex_none(ctx, value, regex_none)
        return not ctx.has_error

    def check_rule_options(self, ctx: ValidationContext, value: str) -> bool:
        """Run the combinators declared in the field's resolved options."""
        return self.check(
            ctx,
            value,
            regex=ctx.option('regex'),
            regex_all=ctx.option('regexAll', ()),
            regex_any=ctx.option('regexAny'),
            regex_none=ctx.option('regexNone', ()),
        )
