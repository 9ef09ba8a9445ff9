from __future__ import annotations

import pytest

from tradeops.catalog import (
    CATALOG_VERSION,
    ORDER_ITEM_TRANSITIONS,
    RFQ_ITEM_TRANSITIONS,
    TransitionCatalog,
    build_catalog,
    get_catalog,
)
from tradeops.states import (
    STATE_ENUMS,
    TERMINAL_STATES,
    ItemKind,
    OrderItemState,
    RfqItemState,
    Role,
    active_states,
    is_known_state,
)


@pytest.mark.parametrize("kind", list(ItemKind))
def test_every_edge_connects_known_states(kind: ItemKind) -> None:
    catalog = build_catalog()

    for state in STATE_ENUMS[kind]:
        for edge in catalog.from_state(kind, state):
            assert is_known_state(kind, edge.from_state)
            assert is_known_state(kind, edge.to_state)


@pytest.mark.parametrize("kind", list(ItemKind))
def test_terminal_states_have_no_outgoing_edges(kind: ItemKind) -> None:
    catalog = get_catalog()

    for state in TERMINAL_STATES[kind]:
        assert catalog.from_state(kind, state) == ()


@pytest.mark.parametrize("kind", list(ItemKind))
def test_every_active_state_can_be_force_closed_by_executives_with_reason(kind: ItemKind) -> None:
    catalog = get_catalog()

    for state in active_states(kind):
        edge = catalog.get(kind, state, "FORCE_CLOSED")
        assert edge is not None, state
        assert edge.requires_reason is True
        assert edge.allows(Role.DIRECTOR)
        assert edge.allows(Role.MD)
        assert not edge.allows(Role.SALES_MANAGER)


def test_auto_edges_are_open_to_system_and_internal_roles() -> None:
    edge = get_catalog().get(ItemKind.RFQ_ITEM, RfqItemState.RFQ_SUBMITTED, RfqItemState.SALES_REVIEW)

    assert edge is not None
    assert edge.auto is True
    assert edge.allows(Role.SYSTEM)
    assert edge.allows(Role.SALES_EXECUTIVE)
    assert edge.allows(Role.SUPER_ADMIN)
    assert not edge.allows(Role.CUSTOMER)
    assert not edge.allows(Role.VENDOR)


def test_unknown_role_is_never_allowed() -> None:
    edge = get_catalog().get(ItemKind.RFQ_ITEM, RfqItemState.DRAFT, RfqItemState.RFQ_SUBMITTED)

    assert edge is not None
    assert edge.allows("SALES_EXECUTIVE")
    assert not edge.allows("operator")


def test_cancelled_order_item_keeps_single_force_close_edge() -> None:
    catalog = get_catalog()
    edges = [
        edge
        for edge in catalog.from_state(ItemKind.ORDER_ITEM, OrderItemState.CANCELLED)
        if edge.to_state == OrderItemState.FORCE_CLOSED.value
    ]

    assert len(edges) == 1
    assert edges[0].requires_reason is True


def test_lookup_accepts_enums_and_strings() -> None:
    catalog = get_catalog()

    by_enum = catalog.get(ItemKind.ORDER_ITEM, OrderItemState.CREDIT_CHECK, OrderItemState.PO_RELEASED)
    by_str = catalog.get("order_item", "CREDIT_CHECK", "PO_RELEASED")

    assert by_enum is by_str
    assert [rule.code for rule in by_enum.validations] == ["CREDIT_AVAILABLE", "CUSTOMER_NOT_BLOCKED"]


def test_missing_edge_returns_none() -> None:
    assert get_catalog().get(ItemKind.RFQ_ITEM, RfqItemState.DRAFT, RfqItemState.QUOTE_SENT) is None


def test_duplicate_edges_are_rejected() -> None:
    with pytest.raises(ValueError, match="Duplicate transition"):
        TransitionCatalog({ItemKind.RFQ_ITEM: RFQ_ITEM_TRANSITIONS + RFQ_ITEM_TRANSITIONS[:1]}, version="test")


def test_catalog_is_cached_and_versioned() -> None:
    catalog = get_catalog()

    assert catalog is get_catalog()
    assert catalog.version == CATALOG_VERSION
    assert catalog.edge_count(ItemKind.RFQ_ITEM) > len(RFQ_ITEM_TRANSITIONS)
    assert catalog.edge_count(ItemKind.ORDER_ITEM) > len(ORDER_ITEM_TRANSITIONS)
