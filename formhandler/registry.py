"""
Validator registry mapping field type names to validator strategies.

Every handler builds its own registry so file validators keep per-execution state
(generated file names) and a custom detector can be injected.
"""

from typing import Dict, Optional

from formhandler.engines.limiting import LimitingRuleEngine
from formhandler.engines.patterns import PatternRuleEngine
from formhandler.exceptions import RuleDefinitionError
from formhandler.files import FILE_TYPES, FileExtensionDetector, FileValidator
from formhandler.validators import (
    BOOLEAN_TYPES,
    NUMBER_FORMATS,
    TEXT_TYPES,
    BooleanValidator,
    ChoiceValidator,
    DateValidator,
    EmailValidator,
    NumberValidator,
    PasswordValidator,
    TextValidator,
    TypeValidator,
    URLValidator,
)

ValidatorRegistry = Dict[str, TypeValidator]


def create_validator_registry(
    detector: Optional[FileExtensionDetector] = None
) -> ValidatorRegistry:
    """
    Build the type name to validator mapping.

    Args:
        detector: Content sniffer used by file types, defaults to the built-in one

    Returns:
        Dictionary keyed by every supported field type
    """
    engines = {'limiting': LimitingRuleEngine(), 'patterns': PatternRuleEngine()}

    registry: ValidatorRegistry = {}

    text = TextValidator(**engines)
    for type_name in TEXT_TYPES:
        registry[type_name] = text

    for type_name, (pattern, message, cast) in NUMBER_FORMATS.items():
        registry[type_name] = NumberValidator(pattern, message, cast, **engines)

    boolean = BooleanValidator(**engines)
    for type_name in BOOLEAN_TYPES:
        registry[type_name] = boolean

    choice = ChoiceValidator(**engines)
    registry['choice'] = choice
    registry['range'] = choice

    registry['date'] = DateValidator(**engines)
    registry['email'] = EmailValidator(**engines)
    registry['url'] = URLValidator(**engines)
    registry['password'] = PasswordValidator(**engines)

    files = FileValidator(detector=detector, **engines)
    for type_name in FILE_TYPES:
        registry[type_name] = files

    return registry


def get_validator(registry: ValidatorRegistry, type_name: str) -> TypeValidator:
    """
    Look up the validator of a field type.

    Raises:
        RuleDefinitionError: If the type is not registered
    """
    validator = registry.get(type_name)
    if validator is None:
        raise RuleDefinitionError(
            f"unknown field type '{type_name}'",
            details={'type': type_name}
        )
    return validator
