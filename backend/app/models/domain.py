# ruff: noqa: E501
from datetime import date, datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.database import Base


class RoleName(PyEnum):
    admin = "admin"
    procurement = "procurement"
    manager = "manager"
    finance = "finance"


class RequestOrderStatus(PyEnum):
    draft = "draft"
    approved = "approved"
    rejected = "rejected"


class OfferStatus(PyEnum):
    UNSTARTED = "UNSTARTED"
    INPROGRESS = "INPROGRESS"
    SUBMITTED = "SUBMITTED"
    MANAGERACCEPTED = "MANAGERACCEPTED"
    MANAGERREJECTED = "MANAGERREJECTED"
    FINALIZING = "FINALIZING"
    FINALIZED = "FINALIZED"
    COMPLETED = "COMPLETED"


class OfferFinanceStatus(PyEnum):
    PENDING_FINANCE_REVIEW = "PENDING_FINANCE_REVIEW"
    FINANCE_ACCEPTED = "FINANCE_ACCEPTED"
    FINANCE_REJECTED = "FINANCE_REJECTED"
    FINANCE_PARTIALLY_ACCEPTED = "FINANCE_PARTIALLY_ACCEPTED"


class OfferItemFinanceStatus(PyEnum):
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class ModificationAction(PyEnum):
    ADD = "ADD"
    EDIT = "EDIT"
    DELETE = "DELETE"


class PurchaseOrderStatus(PyEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class RetryLockStatus(PyEnum):
    in_progress = "in_progress"
    completed = "completed"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    actor: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    offer_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    request_order_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    payload_json: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class DocumentMonthlySequence(Base):
    __tablename__ = "document_monthly_sequences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    doc_type: Mapped[str] = mapped_column(String(16), nullable=False)
    year_month: Mapped[str] = mapped_column(String(6), nullable=False)  # YYYYMM
    last_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("doc_type", "year_month", name="uq_doc_seq_doc_type_year_month"),
    )


class ItemType(Base):
    __tablename__ = "item_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    measuring_unit: Mapped[str | None] = mapped_column(String(32))


class Merchant(Base):
    __tablename__ = "merchants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(64))


class RequestOrder(Base):
    __tablename__ = "request_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[RequestOrderStatus] = mapped_column(
        Enum(RequestOrderStatus, native_enum=False),
        default=RequestOrderStatus.draft,
        nullable=False,
        index=True,
    )
    deadline: Mapped[date | None] = mapped_column(Date)
    created_by: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[str | None] = mapped_column(String(255))

    items = relationship(
        "RequestOrderItem",
        back_populates="request_order",
        cascade="all, delete-orphan",
        order_by="RequestOrderItem.id",
    )
    offers = relationship("Offer", back_populates="request_order")


class RequestOrderItem(Base):
    __tablename__ = "request_order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_order_id: Mapped[int] = mapped_column(
        ForeignKey("request_orders.id"), nullable=False, index=True
    )
    item_type_id: Mapped[int] = mapped_column(ForeignKey("item_types.id"), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text)

    request_order = relationship("RequestOrder", back_populates="items")
    item_type = relationship("ItemType", lazy="joined")

    @property
    def item_type_name(self) -> str | None:
        return self.item_type.name if self.item_type is not None else None

    @property
    def measuring_unit(self) -> str | None:
        return self.item_type.measuring_unit if self.item_type is not None else None


class OfferLineage(Base):
    """Attempt counter shared by every offer of a retry chain.

    Rows are never deleted, so attempt numbers stay unique after offers go away.
    """

    __tablename__ = "offer_lineages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_order_id: Mapped[int] = mapped_column(
        ForeignKey("request_orders.id"), nullable=False, index=True
    )
    parent_lineage_id: Mapped[int | None] = mapped_column(
        ForeignKey("offer_lineages.id"), nullable=True, index=True
    )
    last_attempt_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Offer(Base):
    __tablename__ = "offers"
    # Without AUTOINCREMENT SQLite hands the id of a deleted offer to the next one.
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[OfferStatus] = mapped_column(
        Enum(OfferStatus, native_enum=False),
        default=OfferStatus.UNSTARTED,
        nullable=False,
        index=True,
    )
    finance_status: Mapped[OfferFinanceStatus | None] = mapped_column(
        Enum(OfferFinanceStatus, native_enum=False), nullable=True, index=True
    )

    request_order_id: Mapped[int] = mapped_column(
        ForeignKey("request_orders.id"), nullable=False, index=True
    )
    lineage_id: Mapped[int] = mapped_column(
        ForeignKey("offer_lineages.id"), nullable=False, index=True
    )
    # Weak back-reference: the parent is usually deleted by the retry that created this row.
    parent_offer_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_attempt_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # Set by the first fork and never cleared: deleting every fork leaves an empty request.
    request_items_forked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    created_by: Mapped[str | None] = mapped_column(String(255))
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    submitted_by: Mapped[str | None] = mapped_column(String(255))
    manager_decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    manager_decided_by: Mapped[str | None] = mapped_column(String(255))
    finance_decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finance_decided_by: Mapped[str | None] = mapped_column(String(255))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finalized_by: Mapped[str | None] = mapped_column(String(255))

    request_order = relationship("RequestOrder", back_populates="offers", lazy="joined")
    lineage = relationship("OfferLineage")
    offer_items = relationship(
        "OfferItem",
        back_populates="offer",
        cascade="all, delete-orphan",
        order_by="OfferItem.id",
    )
    request_item_forks = relationship(
        "OfferRequestItem",
        back_populates="offer",
        cascade="all, delete-orphan",
        order_by="OfferRequestItem.id",
    )
    modifications = relationship(
        "RequestItemModification",
        back_populates="offer",
        cascade="all, delete-orphan",
    )

    @validates("retry_count")
    def _validate_retry_count(self, _key, value):
        if value is None or int(value) < 0:
            raise ValueError("Offer.retry_count must be >= 0")
        return int(value)

    @validates("current_attempt_number")
    def _validate_attempt_number(self, _key, value):
        if value is None or int(value) < 1:
            raise ValueError("Offer.current_attempt_number must be >= 1")
        return int(value)


class OfferItem(Base):
    __tablename__ = "offer_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    offer_id: Mapped[int] = mapped_column(
        ForeignKey("offers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_type_id: Mapped[int] = mapped_column(ForeignKey("item_types.id"), nullable=False, index=True)
    merchant_id: Mapped[int] = mapped_column(ForeignKey("merchants.id"), nullable=False, index=True)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    unit_price: Mapped[float] = mapped_column(Float, nullable=False)
    # Derived; see _derive_total_price.
    total_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="EGP")
    finance_status: Mapped[OfferItemFinanceStatus | None] = mapped_column(
        Enum(OfferItemFinanceStatus, native_enum=False), nullable=True
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    finalized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    estimated_delivery_days: Mapped[int | None] = mapped_column(Integer)
    delivery_notes: Mapped[str | None] = mapped_column(Text)
    comment: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    created_by: Mapped[str | None] = mapped_column(String(255))

    offer = relationship("Offer", back_populates="offer_items")
    item_type = relationship("ItemType", lazy="joined")
    merchant = relationship("Merchant", lazy="joined")

    @validates("quantity", "unit_price")
    def _validate_amounts(self, key, value):
        if value is None:
            raise ValueError(f"OfferItem.{key} is required")
        amount = float(value)
        if key == "quantity" and amount <= 0:
            raise ValueError("OfferItem.quantity must be > 0")
        if key == "unit_price" and amount < 0:
            raise ValueError("OfferItem.unit_price must be >= 0")

        quantity = amount if key == "quantity" else self.quantity
        unit_price = amount if key == "unit_price" else self.unit_price
        if quantity is not None and unit_price is not None:
            self.total_price = float(quantity) * float(unit_price)
        return amount

    def _derive_total_price(self) -> None:
        self.total_price = float(self.quantity or 0.0) * float(self.unit_price or 0.0)


@event.listens_for(OfferItem, "before_insert")
def _offer_item_before_insert(_mapper, _connection, target: OfferItem):
    target._derive_total_price()


@event.listens_for(OfferItem, "before_update")
def _offer_item_before_update(_mapper, _connection, target: OfferItem):
    target._derive_total_price()


class OfferRequestItem(Base):
    """Per-offer copy of a request order line; replaces the originals once it exists."""

    __tablename__ = "offer_request_items"

    __table_args__ = (
        UniqueConstraint("offer_id", "item_type_id", name="uq_offer_request_items_offer_item_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    offer_id: Mapped[int] = mapped_column(
        ForeignKey("offers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_type_id: Mapped[int] = mapped_column(ForeignKey("item_types.id"), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text)
    original_request_order_item_id: Mapped[int | None] = mapped_column(
        ForeignKey("request_order_items.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    created_by: Mapped[str | None] = mapped_column(String(255))
    last_modified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_modified_by: Mapped[str | None] = mapped_column(String(255))

    offer = relationship("Offer", back_populates="request_item_forks")
    item_type = relationship("ItemType", lazy="joined")

    @validates("quantity")
    def _validate_quantity(self, _key, value):
        if value is None or float(value) <= 0:
            raise ValueError("OfferRequestItem.quantity must be > 0")
        return float(value)


class RequestItemModification(Base):
    __tablename__ = "request_item_modifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    offer_id: Mapped[int] = mapped_column(
        ForeignKey("offers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action: Mapped[ModificationAction] = mapped_column(
        Enum(ModificationAction, native_enum=False), nullable=False
    )
    item_type_id: Mapped[int | None] = mapped_column(Integer)
    item_type_name: Mapped[str | None] = mapped_column(String(255))
    old_quantity: Mapped[float | None] = mapped_column(Float)
    new_quantity: Mapped[float | None] = mapped_column(Float)
    old_comment: Mapped[str | None] = mapped_column(Text)
    new_comment: Mapped[str | None] = mapped_column(Text)
    action_by: Mapped[str | None] = mapped_column(String(255))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    notes: Mapped[str | None] = mapped_column(Text)

    offer = relationship("Offer", back_populates="modifications")


class OfferTimelineEvent(Base):
    __tablename__ = "offer_timeline_events"

    __table_args__ = (
        UniqueConstraint(
            "event_type",
            "idempotency_key",
            name="uq_offer_timeline_events_event_type_idempotency_key",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    event_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    # Offers may be deleted by retries; the log outlives them, so no FK here.
    offer_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    lineage_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    request_order_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    attempt_number: Mapped[int | None] = mapped_column(Integer)
    previous_status: Mapped[str | None] = mapped_column(String(32))
    new_status: Mapped[str | None] = mapped_column(String(32))

    action_by: Mapped[str | None] = mapped_column(String(255))
    notes: Mapped[str | None] = mapped_column(Text)
    display_title: Mapped[str | None] = mapped_column(String(255))
    display_description: Mapped[str | None] = mapped_column(Text)

    correlation_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class OfferRetryLock(Base):
    __tablename__ = "offer_retry_locks"
    # One row per attempt of a lineage, ever. The unique constraint is the lock.
    __table_args__ = (
        UniqueConstraint("lineage_id", "attempt_number", name="uq_offer_retry_locks_lineage_attempt"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lineage_id: Mapped[int] = mapped_column(Integer, nullable=False)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    offer_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    status: Mapped[RetryLockStatus] = mapped_column(
        Enum(RetryLockStatus, native_enum=False),
        nullable=False,
        default=RetryLockStatus.in_progress,
    )
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    acquired_by: Mapped[str | None] = mapped_column(String(255))
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    successor_offer_id: Mapped[int | None] = mapped_column(Integer)


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    po_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    offer_id: Mapped[int] = mapped_column(ForeignKey("offers.id"), nullable=False, index=True)
    request_order_id: Mapped[int] = mapped_column(
        ForeignKey("request_orders.id"), nullable=False, index=True
    )
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        Enum(PurchaseOrderStatus, native_enum=False),
        default=PurchaseOrderStatus.PENDING,
        nullable=False,
    )
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    total_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    payment_terms: Mapped[str | None] = mapped_column(String(64))
    expected_delivery_date: Mapped[date | None] = mapped_column(Date)
    payment_request_id: Mapped[str | None] = mapped_column(String(64))
    payment_request_status: Mapped[str | None] = mapped_column(String(32))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    created_by: Mapped[str | None] = mapped_column(String(255))

    items = relationship(
        "PurchaseOrderItem",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id",
    )


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    offer_item_id: Mapped[int] = mapped_column(Integer, nullable=False)
    item_type_id: Mapped[int] = mapped_column(ForeignKey("item_types.id"), nullable=False)
    merchant_id: Mapped[int] = mapped_column(ForeignKey("merchants.id"), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    unit_price: Mapped[float] = mapped_column(Float, nullable=False)
    total_price: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    estimated_delivery_days: Mapped[int | None] = mapped_column(Integer)
    comment: Mapped[str | None] = mapped_column(Text)

    purchase_order = relationship("PurchaseOrder", back_populates="items")
    item_type = relationship("ItemType", lazy="joined")
    merchant = relationship("Merchant", lazy="joined")
