"""
Form handler orchestration.

``Handler`` owns the data source, the files source and the raw rules of one form
submission, and drives every declared field through resolution, presence checks,
type validation, existence checks, filters and custom hooks.

Key Features:
- Single-use state machine: idle, running, then done or failed
- Fail-fast presence checks before any datastore or hook call
- On-demand mode validating only submitted fields plus extra required ones
- First-error-wins error bag and read-only result data
- Structured logging and Prometheus metrics per execution

Example:
    handler = Handler(request_data, request_files, {
        'email': {'type': 'email', 'checks': {'that': 'itDoesNotExist', 'model': users}},
        'password1': 'password',
        'password2': {'type': 'password', 'options': {'shouldMatch': 'password1'}},
    })
    if await handler.execute():
        save(handler.data)
"""

import inspect
import os
import time
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import structlog

from formhandler.adapters import DBAdapter
from formhandler.config.settings import DBCaseStyle, HandlerSettings, get_settings
from formhandler.context import ValidationContext
from formhandler.db_checker import DBChecker
from formhandler.error_bag import ErrorBag
from formhandler.exceptions import (
    DataSourceNotSetError,
    FilesSourceNotSetError,
    RulesNotSetError,
    StateError,
)
from formhandler.files import FILE_TYPES, FileExtensionDetector, FileValidator
from formhandler.filters import FilterPipeline
from formhandler.monitoring.metrics import HandlerMetrics
from formhandler.registry import ValidatorRegistry, create_validator_registry, get_validator
from formhandler.resolver import RuleResolver
from formhandler.rules import FieldRule, is_empty

logger = structlog.get_logger(__name__)

DEFAULT_SET_ERROR_MESSAGE = 'error occurred'


class HandlerState(Enum):
    """Lifecycle states of a handler."""

    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class Handler:
    """
    Validates one form submission against declared field rules.

    Args:
        data_source: Mapping of field name to submitted value(s)
        files_source: Mapping of file field name to upload attributes
        rules: Mapping of field name to rule declaration
        db_adapter: Counting adapter used by existence checks
        file_detector: Content sniffer used by file fields
        validators: Custom type name to validator registry
        settings: Settings snapshot, defaults to the process-wide settings
        db_case_style: Per-instance override of the settings' case style
    """

    def __init__(
        self,
        data_source: Optional[Mapping[str, Any]] = None,
        files_source: Optional[Mapping[str, Any]] = None,
        rules: Optional[Mapping[str, Any]] = None,
        db_adapter: Optional[DBAdapter] = None,
        file_detector: Optional[FileExtensionDetector] = None,
        validators: Optional[ValidatorRegistry] = None,
        settings: Optional[HandlerSettings] = None,
        db_case_style: Union[DBCaseStyle, str, None] = None
    ):
        self.settings = settings or get_settings()
        if db_case_style is not None:
            self.settings = self.settings.with_case_style(db_case_style)

        self._data_source: Optional[Dict[str, Any]] = None
        self._files_source: Optional[Dict[str, Any]] = None
        self._rules: Optional[Dict[str, Any]] = None

        self._state = HandlerState.IDLE
        self._resolved_rules: Mapping[str, FieldRule] = MappingProxyType({})
        self._errors = ErrorBag()
        self._data: Dict[str, Any] = {}
        self._custom_data: Dict[str, Any] = {}
        self._succeeded = False

        self.metrics = HandlerMetrics(enabled=self.settings.metrics_enabled)
        self.filters = FilterPipeline()
        self.db_adapter = db_adapter
        self.validators = validators or create_validator_registry(file_detector)

        if data_source is not None:
            self.set_data_source(data_source)
        if files_source is not None:
            self.set_files_source(files_source)
        if rules is not None:
            self.set_rules(rules)

    # ========================================================================
    # CONFIGURATION
    # ========================================================================

    def set_data_source(self, data_source: Mapping[str, Any]) -> 'Handler':
        self._data_source = dict(data_source)
        return self

    def set_files_source(self, files_source: Mapping[str, Any]) -> 'Handler':
        self._files_source = dict(files_source)
        return self

    def set_rules(self, rules: Mapping[str, Any]) -> 'Handler':
        self._rules = dict(rules)
        return self

    def set_db_adapter(self, adapter: DBAdapter) -> 'Handler':
        self.db_adapter = adapter
        return self

    def set_db_case_style(self, case_style: Union[DBCaseStyle, str]) -> 'Handler':
        self.settings = self.settings.with_case_style(case_style)
        return self

    def add_field(self, field: str, value: Any) -> 'Handler':
        """Add or replace one entry of the data source."""
        if self._data_source is None:
            self._data_source = {}
        self._data_source[field] = value
        return self

    def add_fields(self, fields: Mapping[str, Any]) -> 'Handler':
        for field, value in fields.items():
            self.add_field(field, value)
        return self

    def set_error(self, field: str, message: Optional[str] = None) -> 'Handler':
        """Record an error for ``field``; a falsy message becomes a generic one."""
        self._errors.set(field, message or DEFAULT_SET_ERROR_MESSAGE)
        return self

    def set_custom_data(self, key: str, value: Any) -> 'Handler':
        self._custom_data[key] = value
        return self

    def get_custom_data(self, key: str, default: Any = None) -> Any:
        return self._custom_data.get(key, default)

    # ========================================================================
    # RESULTS
    # ========================================================================

    @property
    def state(self) -> HandlerState:
        return self._state

    @property
    def errors(self) -> Mapping[str, str]:
        return self._errors.as_mapping()

    @property
    def data(self) -> Mapping[str, Any]:
        return MappingProxyType(self._data)

    def get_resolved_rules(self) -> Mapping[str, FieldRule]:
        return self._resolved_rules

    def succeeds(self) -> bool:
        return self._state is HandlerState.DONE and self._succeeded

    def fails(self) -> bool:
        return not self.succeeds()

    @property
    def file_validator(self) -> Optional[FileValidator]:
        for validator in self.validators.values():
            if isinstance(validator, FileValidator):
                return validator
        return None

    def get_file_name(self, field: Optional[str] = None) -> Optional[str]:
        """Generated name of the last relocated upload, optionally of one field."""
        validator = self.file_validator
        return validator.get_file_name(field) if validator else None

    def get_file_names(self, field: str) -> List[str]:
        validator = self.file_validator
        return validator.get_file_names(field) if validator else []

    # ========================================================================
    # EXECUTION
    # ========================================================================

    async def execute(
        self,
        on_demand: bool = False,
        required_fields: Union[str, Iterable[str], None] = None
    ) -> bool:
        """
        Validate the submission.

        Args:
            on_demand: Only validate fields present in the data or files source
            required_fields: Extra fields validated in on-demand mode even when absent

        Returns:
            True when every processed field passed

        Raises:
            StateError: If the handler was already executed
            DataSourceNotSetError: If no data source was set
            RulesNotSetError: If no rules were set
            FilesSourceNotSetError: If a file field is declared without a files source
        """
        if self._state is not HandlerState.IDLE:
            raise StateError(details={'state': self._state.value})
        self._state = HandlerState.RUNNING
        started = time.perf_counter()

        try:
            self._check_preconditions()
            rules = self._select_rules(on_demand, required_fields)

            resolver = RuleResolver(self.validators.keys())
            self._resolved_rules = resolver.resolve_all(rules, self._data_source)
            self._check_files_source()

            pending = self._validate_fields()
            for rule, values in pending:
                await self._post_process(rule, values)
                self._record_field_outcome(rule)
        except Exception:
            self._state = HandlerState.FAILED
            raise

        self._succeeded = len(self._errors) == 0
        self._state = HandlerState.DONE

        duration = time.perf_counter() - started
        self.metrics.record_execution(self._succeeded, duration)
        logger.info(
            "Form handler executed",
            succeeded=self._succeeded,
            fields=len(self._resolved_rules),
            errors=len(self._errors),
            on_demand=on_demand,
            duration=round(duration, 6)
        )
        return self._succeeded

    def _check_preconditions(self) -> None:
        if self._data_source is None:
            raise DataSourceNotSetError()
        if self._rules is None:
            raise RulesNotSetError()

    def _select_rules(self, on_demand: bool,
                      required_fields: Union[str, Iterable[str], None]) -> Dict[str, Any]:
        if not on_demand:
            return self._rules

        if isinstance(required_fields, str):
            required_fields = [required_fields]
        wanted = set(required_fields or ())
        wanted.update(self._data_source.keys())
        wanted.update((self._files_source or {}).keys())

        return {field: rule for field, rule in self._rules.items() if field in wanted}

    def _check_files_source(self) -> None:
        if self._files_source is not None:
            return
        file_fields = [field for field, rule in self._resolved_rules.items()
                       if rule.type in FILE_TYPES]
        if file_fields:
            raise FilesSourceNotSetError(details={'fields': file_fields})

    def _context(self, rule: FieldRule, value: Any, index: int = 0) -> ValidationContext:
        return ValidationContext(
            rule=rule,
            value=value,
            errors=self._errors,
            data=self._data_source,
            files=self._files_source or {},
            index=index,
        )

    def _raw_value(self, rule: FieldRule) -> Any:
        if rule.type in FILE_TYPES:
            entry = (self._files_source or {}).get(rule.field) or {}
            return entry.get('name')
        return self._data_source.get(rule.field)

    def _validate_fields(self) -> List[Tuple[FieldRule, List[Any]]]:
        """
        Run presence checks and type validation for every field.

        Nothing here suspends, so missing required fields are reported before any
        existence check or hook runs.

        Returns:
            Fields that passed, paired with their value list
        """
        missing = []
        candidates = []

        for rule in self._resolved_rules.values():
            value = self._raw_value(rule)
            if rule.is_list and not isinstance(value, (list, tuple)) and not is_empty(value):
                value = [value]

            if is_empty(value):
                if rule.required:
                    self._context(rule, value).fail('{_this} is required')
                    missing.append(rule.field)
                elif rule.has_default:
                    self._data[rule.field] = rule.default_value
                continue

            candidates.append((rule, value))

        if missing:
            logger.debug("Required fields missing", fields=missing)

        passed = []
        for rule, value in candidates:
            if not rule.is_list and isinstance(value, (list, tuple)):
                self._context(rule, value).fail('{_this} does not accept multiple values')
                self._record_field_outcome(rule)
                continue

            values = list(value) if rule.is_list else [value]
            validator = get_validator(self.validators, rule.type)
            for index, item in enumerate(values):
                if not validator.validate(self._context(rule, item, index)):
                    break

            if self._errors.has(rule.field):
                self._record_field_outcome(rule)
            else:
                passed.append((rule, values))

        for field in missing:
            self.metrics.record_field_failure(self._resolved_rules[field].type)
        return passed

    async def _post_process(self, rule: FieldRule, values: List[Any]) -> None:
        """Existence checks, filters, then the validate and compute hooks."""
        for check in rule.checks:
            for index, item in enumerate(values):
                if not await self._db_checker().run(self._context(rule, item, index), check):
                    return

        if rule.type in FILE_TYPES:
            values = self._file_values(rule, len(values))
        else:
            values = self.filters.apply(rule, values)
        self._store(rule, values)

        if rule.validate is not None:
            for index, item in enumerate(values):
                outcome = rule.validate(rule.field, item, index, self)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                if not outcome:
                    self._data.pop(rule.field, None)
                    self._context(rule, item, index).fail(
                        rule.options.get('validateErr') or '{_this} validation failed'
                    )
                    return

        if rule.compute is not None:
            computed = []
            for item in values:
                result = rule.compute(rule.field, item)
                if inspect.isawaitable(result):
                    result = await result
                computed.append(result)
            self._store(rule, computed)

    def _store(self, rule: FieldRule, values: List[Any]) -> None:
        self._data[rule.field] = values if rule.is_list else values[0]

    def _file_values(self, rule: FieldRule, count: int) -> List[Dict[str, Any]]:
        """Per-upload attribute mappings, pointing at relocated files when moved."""
        entry = (self._files_source or {}).get(rule.field) or {}
        moved = self.get_file_names(rule.field)
        move_to = rule.options.get('moveTo')

        results = []
        for index in range(count):
            attributes = {}
            for key, value in entry.items():
                attributes[key] = value[index] if isinstance(value, (list, tuple)) else value
            if move_to and index < len(moved):
                destination = os.path.join(str(move_to).rstrip('/\\'), moved[index])
                attributes['tmpName'] = destination
                attributes['path'] = destination
                attributes['fileName'] = moved[index]
            results.append(attributes)
        return results

    def _db_checker(self) -> DBChecker:
        return DBChecker(
            adapter=self.db_adapter,
            case_style=self.settings.db_case_style,
            metrics=self.metrics
        )

    def _record_field_outcome(self, rule: FieldRule) -> None:
        if self._errors.has(rule.field):
            self.metrics.record_field_failure(rule.type)
