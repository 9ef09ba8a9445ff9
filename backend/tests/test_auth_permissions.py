from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace
from uuid import uuid4

import pytest
from fastapi import HTTPException

from tradeops.auth import (
    ROLE_PERMISSIONS,
    _parse_token_subject,
    check_permission,
    create_access_token,
    decode_token,
    issue_access_token,
)
from tradeops.states import Role


@pytest.mark.parametrize(
    ("role", "expected"),
    [
        (
            "SALES_EXECUTIVE",
            {
                "canTransitionItems": True,
                "canViewItems": True,
                "canRequestRevisions": True,
                "canDecideRevisions": False,
                "canViewRevisions": True,
                "canViewSla": False,
                "canTriggerSlaMonitor": False,
                "canViewAudit": False,
                "canViewCatalog": True,
            },
        ),
        (
            "DIRECTOR",
            {
                "canTransitionItems": True,
                "canViewItems": True,
                "canRequestRevisions": True,
                "canDecideRevisions": True,
                "canViewRevisions": True,
                "canViewSla": True,
                "canTriggerSlaMonitor": True,
                "canViewAudit": True,
                "canViewCatalog": True,
            },
        ),
        (
            "CUSTOMER",
            {
                "canTransitionItems": False,
                "canViewItems": False,
                "canRequestRevisions": False,
                "canDecideRevisions": True,
                "canViewRevisions": True,
                "canViewSla": False,
                "canTriggerSlaMonitor": False,
                "canViewAudit": False,
                "canViewCatalog": False,
            },
        ),
        (
            "SYSTEM",
            {
                "canTransitionItems": True,
                "canViewItems": False,
                "canRequestRevisions": False,
                "canDecideRevisions": False,
                "canViewRevisions": False,
                "canViewSla": False,
                "canTriggerSlaMonitor": False,
                "canViewAudit": False,
                "canViewCatalog": False,
            },
        ),
    ],
)
def test_role_permission_matrix_is_stable(role: str, expected: dict[str, bool]) -> None:
    assert ROLE_PERMISSIONS[role] == expected


def test_every_role_has_the_same_permission_keys() -> None:
    keysets = {frozenset(permissions) for permissions in ROLE_PERMISSIONS.values()}
    assert len(keysets) == 1
    assert set(ROLE_PERMISSIONS) == {role.value for role in Role}


def test_unknown_role_is_denied() -> None:
    user = SimpleNamespace(role="unknown-role")
    assert check_permission(user, "canViewItems") is False


def test_issued_token_round_trips_subject_and_role() -> None:
    user = SimpleNamespace(id=uuid4(), org_id=uuid4(), role="TECH_LEAD")

    payload = decode_token(issue_access_token(user))

    assert payload["type"] == "access"
    assert payload["role"] == "TECH_LEAD"
    assert _parse_token_subject(payload) == user.id


def test_expired_token_is_rejected() -> None:
    token = create_access_token({"sub": str(uuid4())}, expires_delta=timedelta(hours=-2))

    with pytest.raises(HTTPException) as exc:
        decode_token(token)

    assert exc.value.status_code == 401
    assert exc.value.detail == "Token expired"


def test_malformed_subject_is_rejected() -> None:
    with pytest.raises(HTTPException) as exc:
        _parse_token_subject({"sub": "not-a-uuid"})

    assert exc.value.status_code == 401
