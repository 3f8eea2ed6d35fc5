from __future__ import annotations

from typing import Any, Iterable, Optional


class ContentError(Exception):
    """Base class for every failure surfaced by the content repository."""


class DocumentNotFound(ContentError):
    """
    Requested id does not resolve, or resolves but fails a required match
    condition (wrong language, deleted, wrong type).
    """

    def __init__(self, entity: str, query: dict[str, Any], message: Optional[str] = None):
        self.entity = entity
        self.query = query
        super().__init__(message or f"{entity} not found for query {query!r}")


class ValidationError(ContentError):
    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"'{field}' is required")


class PartialBatchFailure(ContentError):
    """
    A bulk or fan-out operation completed for some rows/children and failed
    for others. The hierarchy may be in a mixed state until repaired.
    """

    def __init__(
        self,
        operation: str,
        failures: list[tuple[str, Any]],
        succeeded: Iterable[str] = (),
    ):
        self.operation = operation
        self.failures = failures
        self.succeeded = list(succeeded)
        failed_keys = ", ".join(str(key) for key, _ in failures)
        super().__init__(
            f"{operation}: {len(failures)} failed ({failed_keys}), {len(self.succeeded)} succeeded"
        )

    @property
    def failed_keys(self) -> list[str]:
        return [key for key, _ in self.failures]


def ensure_not_empty(field: str, value: Any) -> None:
    if value is None or (isinstance(value, (str, list, tuple, set, dict)) and not value):
        raise ValidationError(field, f"'{field}' must not be null or empty")


def ensure_found(entity: str, document: Any, query: dict[str, Any]) -> None:
    if document is None:
        raise DocumentNotFound(entity, query)
