"""Seed database with demo data."""
from tradeops.database import SessionLocal
from tradeops.models import Organization, User, Rfq, RfqItem, Order, OrderItem
from tradeops.auth import get_password_hash
from tradeops.services.sla_rules import now_utc, sla_window_for_entry
from tradeops.states import ItemKind, OrderItemState, RfqItemState, Role
from decimal import Decimal
import uuid


def _demo_id(suffix: int) -> uuid.UUID:
    return uuid.UUID(f"00000000-0000-0000-0000-{suffix:012d}")


def seed():
    """Seed database with demo data."""
    db = SessionLocal()

    try:
        # Create organization
        org = Organization(
            id=_demo_id(1),
            name="Demo Trading Co.",
            code="DEMO"
        )
        db.add(org)
        db.flush()

        # Create users, one per role the demo walks through
        users_data = [
            {'username': 'admin', 'name': 'Administrator', 'role': Role.ADMIN},
            {'username': 'sales', 'name': 'Sales Executive', 'role': Role.SALES_EXECUTIVE},
            {'username': 'salesmgr', 'name': 'Sales Manager', 'role': Role.SALES_MANAGER},
            {'username': 'tech', 'name': 'Tech Engineer', 'role': Role.TECH_ENGINEER},
            {'username': 'techlead', 'name': 'Tech Lead', 'role': Role.TECH_LEAD},
            {'username': 'purchase', 'name': 'Purchase Engineer', 'role': Role.PURCHASE_ENGINEER},
            {'username': 'finance', 'name': 'Finance Officer', 'role': Role.FINANCE_OFFICER},
            {'username': 'director', 'name': 'Director', 'role': Role.DIRECTOR},
        ]

        users = {}
        for index, user_data in enumerate(users_data, start=101):
            user = User(
                id=_demo_id(index),
                org_id=org.id,
                username=user_data['username'],
                name=user_data['name'],
                role=user_data['role'].value,
                password_hash=get_password_hash(f"{user_data['username']}123"),
            )
            db.add(user)
            users[user_data['username']] = user

        db.flush()

        now = now_utc()
        customer_id = _demo_id(901)
        legal_entity_id = _demo_id(902)

        rfq = Rfq(
            id=_demo_id(301),
            org_id=org.id,
            rfq_number="RFQ-2026-0001",
            customer_id=customer_id,
            legal_entity_id=legal_entity_id,
            created_by=users['sales'].id,
        )
        db.add(rfq)
        db.flush()

        rfq_items_data = [
            {
                'id': _demo_id(311),
                'item_number': 1,
                'product_name': 'Seamless pipe 2in SCH40',
                'quantity': Decimal('120'),
                'unit_of_measure': 'MTR',
                'target_price': Decimal('42.50'),
                'currency': 'USD',
                'state': RfqItemState.DRAFT,
            },
            {
                'id': _demo_id(312),
                'item_number': 2,
                'product_name': 'Gate valve DN50 PN16',
                'quantity': Decimal('10'),
                'unit_of_measure': 'PCS',
                'target_price': Decimal('310.00'),
                'vendor_price': Decimal('280.00'),
                'selling_price': Decimal('335.00'),
                'currency': 'USD',
                'state': RfqItemState.PRICE_FROZEN,
            },
        ]
        for item_data in rfq_items_data:
            state = item_data.pop('state')
            window = sla_window_for_entry(ItemKind.RFQ_ITEM, state, now)
            db.add(
                RfqItem(
                    org_id=org.id,
                    rfq_id=rfq.id,
                    state=state.value,
                    state_entered_at=now,
                    version=1,
                    owner_id=users['sales'].id,
                    created_by=users['sales'].id,
                    **window.as_values(),
                    **item_data,
                )
            )

        order = Order(
            id=_demo_id(401),
            org_id=org.id,
            order_number="SO-2026-0001",
            customer_id=customer_id,
            legal_entity_id=legal_entity_id,
            created_by=users['sales'].id,
        )
        db.add(order)
        db.flush()

        window = sla_window_for_entry(ItemKind.ORDER_ITEM, OrderItemState.PR_CREATED, now)
        db.add(
            OrderItem(
                id=_demo_id(411),
                org_id=org.id,
                order_id=order.id,
                item_number=1,
                product_name='Flange WN 2in 150#',
                ordered_quantity=Decimal('40'),
                unit_of_measure='PCS',
                unit_price=Decimal('18.75'),
                currency='USD',
                total_amount=Decimal('750.00'),
                paid_amount=Decimal('0'),
                state=OrderItemState.PR_CREATED.value,
                state_entered_at=now,
                version=1,
                owner_id=users['purchase'].id,
                created_by=users['sales'].id,
                **window.as_values(),
            )
        )

        db.commit()
        print("Database seeded successfully!")
        print("\nDemo users (password = <username>123):")
        for user_data in users_data:
            print(f"  {user_data['username']} ({user_data['role'].value})")

    except Exception as e:
        db.rollback()
        print(f"Error seeding database: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
