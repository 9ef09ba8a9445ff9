"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message

    @property
    def retryable(self) -> bool:
        # Only lost optimistic-concurrency races are safe to replay unchanged.
        return self.code == "VERSION_CONFLICT"


def version_conflict(*, entity: str, entity_id: object, expected: int | None = None) -> DomainError:
    """Build the retryable conflict raised when a row moved under the caller."""
    details: dict[str, Any] = {"entity": entity, "entityId": str(entity_id)}
    if expected is not None:
        details["expectedVersion"] = expected
    return DomainError(
        code="VERSION_CONFLICT",
        http_status=409,
        message=f"{entity} was modified concurrently; reload and retry",
        details=details,
    )
