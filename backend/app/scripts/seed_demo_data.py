"""Seed Demo Data Script

Creates item types, merchants and one approved request order with its first
offer, so the workflow can be exercised right after migrating.
Run with: python -m app.scripts.seed_demo_data
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from sqlalchemy.orm import Session  # noqa: E402

from app import models  # noqa: E402
from app.database import SessionLocal  # noqa: E402
from app.services import offer_state_machine, request_orders  # noqa: E402

ITEM_TYPES = [
    ("Aluminium billet 6063", "kg"),
    ("Steel rebar 12mm", "ton"),
    ("Copper cable 4mm2", "m"),
]

MERCHANTS = [
    ("Delta Metals", "sales@delta-metals.example"),
    ("Nile Supply Co.", "orders@nilesupply.example"),
]


def ensure_item_types(db: Session) -> dict[str, models.ItemType]:
    existing = {t.name: t for t in db.query(models.ItemType).all()}
    for name, unit in ITEM_TYPES:
        if name in existing:
            continue
        item_type = models.ItemType(name=name, measuring_unit=unit)
        db.add(item_type)
        existing[name] = item_type
        print(f"Created item type: {name}")
    db.commit()
    return existing


def ensure_merchants(db: Session) -> dict[str, models.Merchant]:
    existing = {m.name: m for m in db.query(models.Merchant).all()}
    for name, email in MERCHANTS:
        if name in existing:
            continue
        merchant = models.Merchant(name=name, email=email)
        db.add(merchant)
        existing[name] = merchant
        print(f"Created merchant: {name}")
    db.commit()
    return existing


def seed_request_order(db: Session, item_types: dict[str, models.ItemType]) -> None:
    title = "Demo: Q3 plant maintenance"
    if db.query(models.RequestOrder).filter(models.RequestOrder.title == title).first():
        print(f"Request order already present: {title}")
        return

    request_order = request_orders.create_request_order(
        db=db,
        title=title,
        description="Seeded by seed_demo_data",
        items=[
            (item_types["Aluminium billet 6063"].id, 500.0, None),
            (item_types["Steel rebar 12mm"].id, 12.0, "Grade B500"),
        ],
        actor="seed",
    )
    request_orders.approve_request_order(db=db, request_order_id=request_order.id, actor="seed")
    offer = offer_state_machine.create_offer(db=db, request_order_id=request_order.id, actor="seed")
    print(f"Created request order #{request_order.id} with offer #{offer.id}")


def main():
    print("\nStarting demo data seed script...")

    # Tables come from migrations (alembic upgrade head).
    db = SessionLocal()

    try:
        item_types = ensure_item_types(db)
        ensure_merchants(db)
        seed_request_order(db, item_types)
    except Exception as e:
        print(f"\nError seeding demo data: {e}")
        db.rollback()
        raise
    finally:
        db.close()

    print("Done.")


if __name__ == "__main__":
    main()
