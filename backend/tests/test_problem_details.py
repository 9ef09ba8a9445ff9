from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from tradeops.domain_errors import DomainError, version_conflict
from tradeops.problem_details import build_problem_details_response, domain_error_handler


def test_problem_details_payload_contains_stable_code_and_rfc7807_fields() -> None:
    response = build_problem_details_response(
        DomainError(
            code="PROBE_ERROR",
            http_status=409,
            message="probe failed",
            details={"probe": True},
        )
    )

    assert response.status_code == 409
    assert response.media_type == "application/problem+json"

    body = response.body.decode("utf-8")
    assert '"type":"https://api.tradeops.local/problems/probe_error"' in body
    assert '"title":"Conflict"' in body
    assert '"status":409' in body
    assert '"detail":"probe failed"' in body
    assert '"code":"PROBE_ERROR"' in body
    assert '"details":{"probe":true}' in body
    assert '"success":false' in body


def test_problem_details_omits_details_when_none() -> None:
    response = build_problem_details_response(
        DomainError(
            code="NO_DETAILS",
            http_status=422,
            message="validation failed",
            details=None,
        )
    )

    body = response.body.decode("utf-8")
    assert response.status_code == 422
    assert '"code":"NO_DETAILS"' in body
    assert '"details"' not in body


def test_only_version_conflicts_are_retryable() -> None:
    conflict = version_conflict(entity="rfq_item", entity_id="abc", expected=3)
    closed = DomainError(code="ITEM_CLOSED", http_status=400, message="closed")

    assert conflict.retryable is True
    assert conflict.http_status == 409
    assert conflict.details == {"entity": "rfq_item", "entityId": "abc", "expectedVersion": 3}
    assert closed.retryable is False


def test_fastapi_exception_handler_maps_domain_error_to_problem_details() -> None:
    app = FastAPI()
    app.add_exception_handler(DomainError, domain_error_handler)

    @app.get("/boom")
    def _boom():
        raise version_conflict(entity="order_item", entity_id="42")

    client = TestClient(app)
    response = client.get("/boom")

    assert response.status_code == 409
    assert response.headers["content-type"].startswith("application/problem+json")
    payload = response.json()
    assert payload["code"] == "VERSION_CONFLICT"
    assert payload["error"] == {
        "code": "VERSION_CONFLICT",
        "message": "order_item was modified concurrently; reload and retry",
        "retryable": True,
    }
