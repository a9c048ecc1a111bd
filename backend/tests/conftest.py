# ruff: noqa: E402

import os
import tempfile

# Set before any app import: app.config.settings is built at import time.
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), "test_procurement_offers.db")
os.environ["SECRET_KEY"] = "test-secret-key-1234567890"
os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{_TEST_DB_PATH}"
os.environ["ENVIRONMENT"] = "test"
os.environ["API_V1_STR"] = "/api"
os.environ.pop("PAYMENT_REQUESTS_URL", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app import models
from app.api import deps
from app.database import Base, get_db
from app.database import engine as app_engine
from app.main import app
from app.models.domain import OfferItemFinanceStatus, RoleName
from app.services import offer_items, offer_state_machine, request_orders

TEST_ENGINE = app_engine

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=TEST_ENGINE, future=True)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(scope="function", autouse=True)
def setup_test_database():
    """Fresh schema per test; test-specific dependency overrides are dropped afterwards."""

    original_overrides = dict(app.dependency_overrides)

    Base.metadata.drop_all(bind=TEST_ENGINE)
    Base.metadata.create_all(bind=TEST_ENGINE)

    yield

    app.dependency_overrides.clear()
    app.dependency_overrides.update(original_overrides)

    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def as_role():
    """Switch the authenticated user for subsequent requests."""

    def _set(role: RoleName, username: str | None = None) -> deps.CurrentUser:
        user = deps.CurrentUser(username=username or f"{role.value}-user", role=role)
        app.dependency_overrides[deps.get_current_user] = lambda: user
        return user

    return _set


@pytest.fixture
def catalog(db_session):
    """Two item types and two merchants."""

    steel = models.ItemType(name="Steel rebar", measuring_unit="ton")
    cable = models.ItemType(name="Copper cable", measuring_unit="m")
    acme = models.Merchant(name="Acme Metals")
    nile = models.Merchant(name="Nile Supply")
    db_session.add_all([steel, cable, acme, nile])
    db_session.commit()
    return {"steel": steel, "cable": cable, "acme": acme, "nile": nile}


@pytest.fixture
def approved_offer(db_session, catalog):
    """Approved request order for steel x10 and cable x5 plus its UNSTARTED offer."""

    request_order = request_orders.create_request_order(
        db=db_session,
        title="Plant maintenance",
        items=[(catalog["steel"].id, 10.0, None), (catalog["cable"].id, 5.0, "armoured")],
        actor="requester",
    )
    request_orders.approve_request_order(
        db=db_session, request_order_id=request_order.id, actor="approver"
    )
    return offer_state_machine.create_offer(
        db=db_session, request_order_id=request_order.id, actor="buyer"
    )


@pytest.fixture
def accepted_offer(db_session, catalog, approved_offer):
    """Manager-accepted offer: steel x10 @100 from Acme (14 days) and cable x5 @20 from Nile."""

    offer_id = approved_offer.id
    offer_state_machine.start(db=db_session, offer_id=offer_id, actor="buyer")
    offer_items.add_offer_item(
        db=db_session,
        offer_id=offer_id,
        item_type_id=catalog["steel"].id,
        merchant_id=catalog["acme"].id,
        quantity=10.0,
        unit_price=100.0,
        estimated_delivery_days=14,
        actor="buyer",
    )
    offer_items.add_offer_item(
        db=db_session,
        offer_id=offer_id,
        item_type_id=catalog["cable"].id,
        merchant_id=catalog["nile"].id,
        quantity=5.0,
        unit_price=20.0,
        actor="buyer",
    )
    offer_state_machine.submit(db=db_session, offer_id=offer_id, actor="buyer")
    return offer_state_machine.manager_decide(
        db=db_session, offer_id=offer_id, accept=True, actor="boss"
    )


@pytest.fixture
def finance_review(db_session):
    """Finance decision accepting every item except those of the given item types."""

    def _decide(offer, *, reject_item_type_ids=(), reason=None):
        rejected = set(reject_item_type_ids)
        decisions = [
            offer_state_machine.FinanceDecision(
                offer_item_id=item.id,
                status=(
                    OfferItemFinanceStatus.REJECTED
                    if item.item_type_id in rejected
                    else OfferItemFinanceStatus.ACCEPTED
                ),
                rejection_reason="too expensive" if item.item_type_id in rejected else None,
            )
            for item in offer.offer_items
        ]
        return offer_state_machine.finance_decide(
            db=db_session, offer_id=offer.id, decisions=decisions, actor="cfo", reason=reason
        )

    return _decide
