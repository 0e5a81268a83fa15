"""
Datastore existence checks.

A check declaration looks like::

    {'that': 'itDoesNotExist', 'model': users, 'field': 'email', 'err': '...'}

``itDoesNotExist`` fails when matching records are found, ``itExists`` fails when
none are. The query is either the declared ``query`` mapping or a single
``{field_name: value}`` pair whose name follows the configured case style.
"""

from typing import Any, Dict, Mapping, Optional

import structlog

from formhandler.adapters import DBAdapter, MongoAdapter
from formhandler.config.settings import DBCaseStyle
from formhandler.context import ValidationContext, resolve_references
from formhandler.exceptions import RuleDefinitionError
from formhandler.inflector import camel_case, snake_case
from formhandler.monitoring.metrics import HandlerMetrics
from formhandler.rules import is_empty

logger = structlog.get_logger(__name__)

IT_EXISTS = 'itExists'
IT_DOES_NOT_EXIST = 'itDoesNotExist'


class DBChecker:
    """Runs existence checks through a counting adapter."""

    def __init__(
        self,
        adapter: Optional[DBAdapter] = None,
        case_style: DBCaseStyle = DBCaseStyle.CAMEL,
        metrics: Optional[HandlerMetrics] = None
    ):
        self.adapter = adapter or MongoAdapter()
        self.case_style = case_style
        self.metrics = metrics or HandlerMetrics(enabled=False)

    def resolve_field_name(self, field: str) -> str:
        if self.case_style == DBCaseStyle.SNAKE:
            return snake_case(field)
        return camel_case(field)

    def build_query(self, ctx: ValidationContext, check: Mapping[str, Any]) -> Dict[str, Any]:
        """Build the count query for the value under check."""
        query = check.get('query')
        if query:
            return {key: self._resolve_query_value(ctx, item) for key, item in query.items()}
        return {self.resolve_field_name(check.get('field') or ctx.field): ctx.value}

    def _resolve_query_value(self, ctx: ValidationContext, item: Any) -> Any:
        if isinstance(item, Mapping):
            return {key: self._resolve_query_value(ctx, value) for key, value in item.items()}
        if isinstance(item, str):
            if item in ('{this}', '{value}'):
                return ctx.value
            return resolve_references(item, ctx.data)
        return item

    def should_proceed(self, ctx: ValidationContext) -> bool:
        return not (is_empty(ctx.value) and not ctx.required)

    async def check_if_exists(self, ctx: ValidationContext, check: Mapping[str, Any]) -> bool:
        """Fail when at least one matching record exists."""
        if not self.should_proceed(ctx):
            return True

        count = await self.adapter.count(check.get('model'), self.build_query(ctx, check))
        passed = count == 0
        self.metrics.record_existence_check(IT_DOES_NOT_EXIST, passed)
        if not passed:
            return ctx.fail(check.get('err') or '{_this}:{this} already exists')
        return True

    async def check_if_not_exists(self, ctx: ValidationContext, check: Mapping[str, Any]) -> bool:
        """Fail when no matching record exists."""
        if not self.should_proceed(ctx):
            return True

        count = await self.adapter.count(check.get('model'), self.build_query(ctx, check))
        passed = count > 0
        self.metrics.record_existence_check(IT_EXISTS, passed)
        if not passed:
            return ctx.fail(check.get('err') or '{_this}:{this} does not exist')
        return True

    async def run(self, ctx: ValidationContext, check: Mapping[str, Any]) -> bool:
        """Dispatch a check declaration on its ``that`` entry."""
        that = check.get('that')
        if that == IT_DOES_NOT_EXIST:
            return await self.check_if_exists(ctx, check)
        if that == IT_EXISTS:
            return await self.check_if_not_exists(ctx, check)
        raise RuleDefinitionError(
            f"unknown existence check '{that}'",
            field=ctx.field,
            details={'allowed': [IT_EXISTS, IT_DOES_NOT_EXIST]}
        )
