from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import sessionmaker

from tradeops.database import Base
from tradeops.domain_errors import DomainError
from tradeops.models import AuditLog, Organization, Rfq, RfqItem, RfqItemRevision, User
from tradeops.schemas import RevisionChanges, TransitionRequest
from tradeops.states import ItemKind
from tradeops.use_cases.item_transitions import RequestMeta, TransitionHooks, execute_transition_use_case
from tradeops.use_cases.revisions import create_revision_use_case
from tradeops.use_cases.sla_monitor import monitor_sla_status

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


@compiles(JSONB, "sqlite")
def _jsonb_on_sqlite(type_, compiler, **kw):
    return "JSON"


class _RecordingNotifier:
    def __init__(self):
        self.calls: list[dict] = []

    def send(self, **kwargs):
        self.calls.append(kwargs)


class _Collaborators:
    def product_active(self, product_id):
        return True

    def quantity_within_constraints(self, product_id, quantity):
        return True


@pytest.fixture()
def session_factory(tmp_path):
    # A file database so each session gets its own connection, like concurrent requests.
    engine = create_engine(f"sqlite:///{tmp_path / 'tradeops.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


def _seed(session_factory, *, state="DRAFT", entered_hours_ago=30, sla_hours=24):
    entered = NOW - timedelta(hours=entered_hours_ago)
    db = session_factory()
    org = Organization(id=uuid4(), name="Acme Pipes", code="ACME")
    user = User(
        id=uuid4(),
        org_id=org.id,
        username="asha",
        password_hash="x",
        name="Asha Rao",
        role="SALES_EXECUTIVE",
    )
    rfq = Rfq(id=uuid4(), org_id=org.id, rfq_number="RFQ-0001", customer_id=uuid4(), legal_entity_id=uuid4())
    item = RfqItem(
        id=uuid4(),
        org_id=org.id,
        rfq_id=rfq.id,
        item_number=1,
        product_id=uuid4(),
        quantity=Decimal("120"),
        unit_of_measure="MTR",
        specifications={"grade": "A106-B"},
        target_price=Decimal("42.50"),
        currency="USD",
        state=state,
        state_entered_at=entered,
        version=1,
        sla_due_at=entered + timedelta(hours=sla_hours),
    )
    db.add_all([org, user, rfq, item])
    db.commit()
    seeded = SimpleNamespace(
        org_id=org.id,
        item_id=item.id,
        user=SimpleNamespace(id=user.id, org_id=org.id, role="SALES_EXECUTIVE", name="Asha Rao"),
    )
    db.close()
    return seeded


def _submit(db, seeded, hooks):
    return execute_transition_use_case(
        db=db,
        kind=ItemKind.RFQ_ITEM,
        item_id=seeded.item_id,
        data=TransitionRequest(to_state="RFQ_SUBMITTED"),
        current_user=seeded.user,
        request_meta=RequestMeta(ip_address="10.0.0.7", user_agent="pytest"),
        hooks=hooks,
    )


def _hooks(collaborators_factory=_Collaborators):
    return TransitionHooks(
        collaborators_factory=collaborators_factory,
        notifier=_RecordingNotifier(),
        now_utc=lambda: NOW,
        min_margin_pct=5.0,
    )


def _reload(session_factory, item_id):
    db = session_factory()
    try:
        return db.query(RfqItem).filter(RfqItem.id == item_id).one()
    finally:
        db.close()


def test_transition_persists_state_and_bumps_version(session_factory) -> None:
    seeded = _seed(session_factory, entered_hours_ago=1)
    db = session_factory()

    _submit(db, seeded, _hooks())
    db.close()

    stored = _reload(session_factory, seeded.item_id)
    assert stored.state == "RFQ_SUBMITTED"
    assert stored.version == 2
    assert stored.owner_id == seeded.user.id
    assert stored.sla_due_at.replace(tzinfo=timezone.utc) == NOW + timedelta(hours=2)

    check = session_factory()
    actions = [row.action for row in check.query(AuditLog).filter(AuditLog.entity_id == seeded.item_id).all()]
    check.close()
    assert actions == ["STATE_TRANSITION"]


def test_stale_write_is_reported_as_version_conflict(session_factory) -> None:
    seeded = _seed(session_factory, entered_hours_ago=1)
    engine = session_factory.kw["bind"]

    def concurrent_edit():
        with engine.begin() as conn:
            conn.execute(
                update(RfqItem.__table__)
                .where(RfqItem.__table__.c.id == seeded.item_id)
                .values(version=2, quantity=Decimal("150"))
            )
        return _Collaborators()

    db = session_factory()
    with pytest.raises(DomainError) as exc:
        _submit(db, seeded, _hooks(concurrent_edit))
    db.close()

    assert exc.value.code == "VERSION_CONFLICT"
    assert exc.value.http_status == 409
    assert exc.value.details["expectedVersion"] == 1

    stored = _reload(session_factory, seeded.item_id)
    assert stored.state == "DRAFT"
    assert stored.version == 2
    assert stored.quantity == Decimal("150")


def test_sweep_between_load_and_commit_does_not_leak_into_new_state(session_factory) -> None:
    seeded = _seed(session_factory, entered_hours_ago=30, sla_hours=24)
    sweep_sender = _RecordingNotifier()

    def sweep_then_collaborators():
        sweep_db = session_factory()
        try:
            result = monitor_sla_status(db=sweep_db, org_id=seeded.org_id, now=NOW, sender=sweep_sender)
        finally:
            sweep_db.close()
        assert result.breached == 1
        return _Collaborators()

    db = session_factory()
    _submit(db, seeded, _hooks(sweep_then_collaborators))
    db.close()

    stored = _reload(session_factory, seeded.item_id)
    assert stored.state == "RFQ_SUBMITTED"
    assert stored.version == 2
    assert stored.sla_breached is False
    assert stored.sla_warning is False
    assert stored.at_risk_reason is None
    assert stored.sla_due_at.replace(tzinfo=timezone.utc) == NOW + timedelta(hours=2)
    assert sweep_sender.calls

    check = session_factory()
    actions = sorted(row.action for row in check.query(AuditLog).filter(AuditLog.entity_id == seeded.item_id).all())
    check.close()
    assert actions == ["SLA_BREACHED", "STATE_TRANSITION"]


def test_sweep_after_transition_judges_the_new_state(session_factory) -> None:
    seeded = _seed(session_factory, entered_hours_ago=30, sla_hours=24)
    db = session_factory()
    _submit(db, seeded, _hooks())
    db.close()

    sweep_db = session_factory()
    result = monitor_sla_status(db=sweep_db, org_id=seeded.org_id, now=NOW, sender=_RecordingNotifier())
    sweep_db.close()

    assert result.checked == 1
    assert result.breached == 0
    assert result.warned == 0
    assert _reload(session_factory, seeded.item_id).sla_breached is False


def test_concurrent_revision_number_is_a_version_conflict(session_factory) -> None:
    seeded = _seed(session_factory, state="PRICE_FROZEN", entered_hours_ago=1, sla_hours=12)
    db = session_factory()

    @event.listens_for(db, "before_flush", once=True)
    def _other_request_takes_revision_one(session, flush_context, instances):
        other = session_factory()
        other.add(
            RfqItemRevision(
                id=uuid4(),
                org_id=seeded.org_id,
                rfq_item_id=seeded.item_id,
                revision_number=1,
                revision_reason="Freight surcharge",
                revision_strategy="NEW_REVISION_DIRECTOR",
                approval_role="DIRECTOR",
            )
        )
        other.commit()
        other.close()

    with pytest.raises(DomainError) as exc:
        create_revision_use_case(
            db=db,
            item_id=seeded.item_id,
            changes=RevisionChanges(target_price=Decimal("39.90")),
            reason="Volume discount",
            current_user=seeded.user,
        )

    assert exc.value.code == "VERSION_CONFLICT"
    assert exc.value.retryable is True
    # The session was rolled back and stays usable.
    assert db.query(RfqItemRevision).count() == 1
    db.close()
