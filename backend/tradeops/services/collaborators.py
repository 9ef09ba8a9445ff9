"""External collaborator checks consumed by transition validations."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

import requests

from ..config import settings
from ..domain_errors import DomainError

logger = logging.getLogger(__name__)

# One pooled session per process.
_http_session = requests.Session()


class TradeCollaborators(Protocol):
    def product_active(self, product_id: UUID) -> bool: ...

    def quantity_within_constraints(self, product_id: UUID, quantity: Decimal) -> bool: ...

    def credit_available(self, customer_id: UUID | None, legal_entity_id: UUID | None, amount: Decimal) -> bool: ...

    def customer_blocked(self, customer_id: UUID | None) -> bool: ...

    def compliance_approved(self, compliance_data_id: UUID | None) -> bool: ...

    def commercial_terms_complete(self, commercial_terms_id: UUID | None) -> bool: ...

    def has_evidence(self, check: str, kind: str, item_id: UUID) -> bool: ...


def _collaborator_unavailable(check: str, reason: str) -> DomainError:
    return DomainError(
        code="COLLABORATOR_UNAVAILABLE",
        http_status=503,
        message=f"Check {check} could not be evaluated: {reason}",
        details={"check": check},
    )


def _jsonable(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    return value


class HttpTradeCollaborators:
    """Evaluates checks against the collaborator HTTP API.

    Every check is ``POST {base}/checks/{name}`` with a JSON body of parameters and
    answers ``{"passed": bool}``. Transport failures and non-2xx answers fail closed
    with ``COLLABORATOR_UNAVAILABLE``.
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None, session: requests.Session | None = None):
        self.base_url = (base_url if base_url is not None else settings.COLLABORATORS_BASE_URL) or ""
        self.timeout = timeout if timeout is not None else settings.COLLABORATORS_TIMEOUT_SECONDS
        self.session = session or _http_session

    def _check(self, name: str, **params: Any) -> bool:
        if not self.base_url:
            raise _collaborator_unavailable(name, "COLLABORATORS_BASE_URL is not configured")
        url = f"{self.base_url.rstrip('/')}/checks/{name}"
        try:
            response = self.session.post(
                url,
                json={key: _jsonable(value) for key, value in params.items()},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Collaborator check %s failed: %s", name, exc)
            raise _collaborator_unavailable(name, "transport error") from exc

        if response.status_code >= 400:
            logger.warning("Collaborator check %s answered HTTP %s", name, response.status_code)
            raise _collaborator_unavailable(name, f"HTTP {response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise _collaborator_unavailable(name, "malformed response") from exc
        return bool(body.get("passed"))

    def product_active(self, product_id):
        return self._check("product_active", product_id=product_id)

    def quantity_within_constraints(self, product_id, quantity):
        return self._check("quantity_constraints", product_id=product_id, quantity=quantity)

    def credit_available(self, customer_id, legal_entity_id, amount):
        return self._check(
            "credit_available",
            customer_id=customer_id,
            legal_entity_id=legal_entity_id,
            amount=amount,
        )

    def customer_blocked(self, customer_id):
        return self._check("customer_blocked", customer_id=customer_id)

    def compliance_approved(self, compliance_data_id):
        return self._check("compliance_approved", compliance_data_id=compliance_data_id)

    def commercial_terms_complete(self, commercial_terms_id):
        return self._check("commercial_terms_complete", commercial_terms_id=commercial_terms_id)

    def has_evidence(self, check, kind, item_id):
        return self._check("evidence", evidence=check, item_kind=kind, item_id=item_id)


def get_collaborators() -> TradeCollaborators:
    return HttpTradeCollaborators(session=_http_session)
