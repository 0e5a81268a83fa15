"""Per-field error storage where the first recorded message wins."""

from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional


class ErrorBag:
    """
    Mapping of field name to a single error message.

    Once a field has a message, later ``set`` calls for that field are ignored so the
    first failure reported for a field is the one the caller sees.
    """

    def __init__(self):
        self._errors: Dict[str, str] = {}

    def set(self, field: str, message: str) -> bool:
        """Record ``message`` for ``field``. Returns False if the field already failed."""
        if field in self._errors:
            return False
        self._errors[field] = message
        return True

    def has(self, field: str) -> bool:
        return field in self._errors

    def get(self, field: str) -> Optional[str]:
        return self._errors.get(field)

    def as_mapping(self) -> Mapping[str, str]:
        """Read-only view of the recorded errors."""
        return MappingProxyType(self._errors)

    def __contains__(self, field: object) -> bool:
        return field in self._errors

    def __iter__(self) -> Iterator[str]:
        return iter(self._errors)

    def __len__(self) -> int:
        return len(self._errors)

    def __repr__(self) -> str:
        return f"ErrorBag({self._errors!r})"
