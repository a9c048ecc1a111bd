"""offer workflow baseline

Revision ID: 20260301_0001_offer_workflow_baseline
Revises: None
Create Date: 2026-03-01
"""
from alembic import op
import sqlalchemy as sa


revision = "20260301_0001_offer_workflow_baseline"
down_revision = None
branch_labels = None
depends_on = None


def _enum(*values: str, name: str) -> sa.Enum:
    # Stored as VARCHAR on every dialect so new members need no ALTER TYPE.
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=False)


def upgrade() -> None:
    request_order_status = _enum("draft", "approved", "rejected", name="requestorderstatus")
    offer_status = _enum(
        "UNSTARTED",
        "INPROGRESS",
        "SUBMITTED",
        "MANAGERACCEPTED",
        "MANAGERREJECTED",
        "FINALIZING",
        "FINALIZED",
        "COMPLETED",
        name="offerstatus",
    )
    offer_finance_status = _enum(
        "PENDING_FINANCE_REVIEW",
        "FINANCE_ACCEPTED",
        "FINANCE_REJECTED",
        "FINANCE_PARTIALLY_ACCEPTED",
        name="offerfinancestatus",
    )
    item_finance_status = _enum("ACCEPTED", "REJECTED", name="offeritemfinancestatus")
    modification_action = _enum("ADD", "EDIT", "DELETE", name="modificationaction")
    po_status = _enum("PENDING", "CONFIRMED", "CANCELLED", name="purchaseorderstatus")
    lock_status = _enum("in_progress", "completed", name="retrylockstatus")

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("actor", sa.String(length=255)),
        sa.Column("offer_id", sa.Integer()),
        sa.Column("request_order_id", sa.Integer()),
        sa.Column("payload_json", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_actor", "audit_logs", ["actor"])
    op.create_index("ix_audit_logs_offer_id", "audit_logs", ["offer_id"])
    op.create_index("ix_audit_logs_request_order_id", "audit_logs", ["request_order_id"])

    op.create_table(
        "document_monthly_sequences",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("doc_type", sa.String(length=16), nullable=False),
        sa.Column("year_month", sa.String(length=6), nullable=False),
        sa.Column("last_seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.UniqueConstraint("doc_type", "year_month", name="uq_doc_seq_doc_type_year_month"),
    )

    op.create_table(
        "item_types",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False, unique=True),
        sa.Column("measuring_unit", sa.String(length=32)),
    )

    op.create_table(
        "merchants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255)),
        sa.Column("phone", sa.String(length=64)),
    )
    op.create_index("ix_merchants_name", "merchants", ["name"])

    op.create_table(
        "request_orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("status", request_order_status, nullable=False),
        sa.Column("deadline", sa.Date()),
        sa.Column("created_by", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("approved_at", sa.DateTime(timezone=True)),
        sa.Column("approved_by", sa.String(length=255)),
    )
    op.create_index("ix_request_orders_status", "request_orders", ["status"])

    op.create_table(
        "request_order_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "request_order_id", sa.Integer(), sa.ForeignKey("request_orders.id"), nullable=False
        ),
        sa.Column("item_type_id", sa.Integer(), sa.ForeignKey("item_types.id"), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("comment", sa.Text()),
    )
    op.create_index(
        "ix_request_order_items_request_order_id", "request_order_items", ["request_order_id"]
    )

    op.create_table(
        "offer_lineages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "request_order_id", sa.Integer(), sa.ForeignKey("request_orders.id"), nullable=False
        ),
        sa.Column(
            "parent_lineage_id", sa.Integer(), sa.ForeignKey("offer_lineages.id"), nullable=True
        ),
        sa.Column("last_attempt_number", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_offer_lineages_request_order_id", "offer_lineages", ["request_order_id"])
    op.create_index("ix_offer_lineages_parent_lineage_id", "offer_lineages", ["parent_lineage_id"])

    op.create_table(
        "offers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("status", offer_status, nullable=False),
        sa.Column("finance_status", offer_finance_status, nullable=True),
        sa.Column(
            "request_order_id", sa.Integer(), sa.ForeignKey("request_orders.id"), nullable=False
        ),
        sa.Column("lineage_id", sa.Integer(), sa.ForeignKey("offer_lineages.id"), nullable=False),
        sa.Column("parent_offer_id", sa.Integer(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_attempt_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("request_items_forked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("created_by", sa.String(length=255)),
        sa.Column("submitted_at", sa.DateTime(timezone=True)),
        sa.Column("submitted_by", sa.String(length=255)),
        sa.Column("manager_decided_at", sa.DateTime(timezone=True)),
        sa.Column("manager_decided_by", sa.String(length=255)),
        sa.Column("finance_decided_at", sa.DateTime(timezone=True)),
        sa.Column("finance_decided_by", sa.String(length=255)),
        sa.Column("rejection_reason", sa.Text()),
        sa.Column("finalized_at", sa.DateTime(timezone=True)),
        sa.Column("finalized_by", sa.String(length=255)),
        sa.CheckConstraint("retry_count >= 0", name="ck_offers_retry_count_nonneg"),
        sa.CheckConstraint("current_attempt_number >= 1", name="ck_offers_attempt_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_offers_status", "offers", ["status"])
    op.create_index("ix_offers_finance_status", "offers", ["finance_status"])
    op.create_index("ix_offers_request_order_id", "offers", ["request_order_id"])
    op.create_index("ix_offers_lineage_id", "offers", ["lineage_id"])
    op.create_index("ix_offers_parent_offer_id", "offers", ["parent_offer_id"])

    op.create_table(
        "offer_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "offer_id", sa.Integer(), sa.ForeignKey("offers.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("item_type_id", sa.Integer(), sa.ForeignKey("item_types.id"), nullable=False),
        sa.Column("merchant_id", sa.Integer(), sa.ForeignKey("merchants.id"), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("unit_price", sa.Float(), nullable=False),
        sa.Column("total_price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("finance_status", item_finance_status, nullable=True),
        sa.Column("rejection_reason", sa.Text()),
        sa.Column("finalized", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("estimated_delivery_days", sa.Integer()),
        sa.Column("delivery_notes", sa.Text()),
        sa.Column("comment", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("created_by", sa.String(length=255)),
        sa.CheckConstraint("quantity > 0", name="ck_offer_items_quantity_positive"),
        sa.CheckConstraint("unit_price >= 0", name="ck_offer_items_unit_price_nonneg"),
    )
    op.create_index("ix_offer_items_offer_id", "offer_items", ["offer_id"])
    op.create_index("ix_offer_items_item_type_id", "offer_items", ["item_type_id"])
    op.create_index("ix_offer_items_merchant_id", "offer_items", ["merchant_id"])

    op.create_table(
        "offer_request_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "offer_id", sa.Integer(), sa.ForeignKey("offers.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("item_type_id", sa.Integer(), sa.ForeignKey("item_types.id"), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("comment", sa.Text()),
        sa.Column(
            "original_request_order_item_id",
            sa.Integer(),
            sa.ForeignKey("request_order_items.id"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("created_by", sa.String(length=255)),
        sa.Column("last_modified_at", sa.DateTime(timezone=True)),
        sa.Column("last_modified_by", sa.String(length=255)),
        sa.UniqueConstraint(
            "offer_id", "item_type_id", name="uq_offer_request_items_offer_item_type"
        ),
        sa.CheckConstraint("quantity > 0", name="ck_offer_request_items_quantity_positive"),
    )
    op.create_index("ix_offer_request_items_offer_id", "offer_request_items", ["offer_id"])

    op.create_table(
        "request_item_modifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "offer_id", sa.Integer(), sa.ForeignKey("offers.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("action", modification_action, nullable=False),
        sa.Column("item_type_id", sa.Integer()),
        sa.Column("item_type_name", sa.String(length=255)),
        sa.Column("old_quantity", sa.Float()),
        sa.Column("new_quantity", sa.Float()),
        sa.Column("old_comment", sa.Text()),
        sa.Column("new_comment", sa.Text()),
        sa.Column("action_by", sa.String(length=255)),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text()),
    )
    op.create_index(
        "ix_request_item_modifications_offer_id", "request_item_modifications", ["offer_id"]
    )
    op.create_index(
        "ix_request_item_modifications_timestamp", "request_item_modifications", ["timestamp"]
    )

    op.create_table(
        "offer_timeline_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("event_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("offer_id", sa.Integer(), nullable=False),
        sa.Column("lineage_id", sa.Integer(), nullable=False),
        sa.Column("request_order_id", sa.Integer(), nullable=True),
        sa.Column("attempt_number", sa.Integer()),
        sa.Column("previous_status", sa.String(length=32)),
        sa.Column("new_status", sa.String(length=32)),
        sa.Column("action_by", sa.String(length=255)),
        sa.Column("notes", sa.Text()),
        sa.Column("display_title", sa.String(length=255)),
        sa.Column("display_description", sa.Text()),
        sa.Column("correlation_id", sa.String(length=36), nullable=False),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.UniqueConstraint(
            "event_type",
            "idempotency_key",
            name="uq_offer_timeline_events_event_type_idempotency_key",
        ),
    )
    op.create_index("ix_offer_timeline_events_event_type", "offer_timeline_events", ["event_type"])
    op.create_index("ix_offer_timeline_events_event_time", "offer_timeline_events", ["event_time"])
    op.create_index("ix_offer_timeline_events_offer_id", "offer_timeline_events", ["offer_id"])
    op.create_index("ix_offer_timeline_events_lineage_id", "offer_timeline_events", ["lineage_id"])
    op.create_index(
        "ix_offer_timeline_events_correlation_id", "offer_timeline_events", ["correlation_id"]
    )

    op.create_table(
        "offer_retry_locks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("lineage_id", sa.Integer(), nullable=False),
        sa.Column("attempt_number", sa.Integer(), nullable=False),
        sa.Column("offer_id", sa.Integer(), nullable=False),
        sa.Column("status", lock_status, nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("acquired_by", sa.String(length=255)),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        sa.Column("successor_offer_id", sa.Integer()),
        sa.UniqueConstraint(
            "lineage_id", "attempt_number", name="uq_offer_retry_locks_lineage_attempt"
        ),
    )
    op.create_index("ix_offer_retry_locks_offer_id", "offer_retry_locks", ["offer_id"])

    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("po_number", sa.String(length=50), nullable=False, unique=True),
        sa.Column("offer_id", sa.Integer(), sa.ForeignKey("offers.id"), nullable=False),
        sa.Column(
            "request_order_id", sa.Integer(), sa.ForeignKey("request_orders.id"), nullable=False
        ),
        sa.Column("status", po_status, nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("total_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("payment_terms", sa.String(length=64)),
        sa.Column("expected_delivery_date", sa.Date()),
        sa.Column("payment_request_id", sa.String(length=64)),
        sa.Column("payment_request_status", sa.String(length=32)),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("created_by", sa.String(length=255)),
    )
    op.create_index("ix_purchase_orders_offer_id", "purchase_orders", ["offer_id"])
    op.create_index("ix_purchase_orders_request_order_id", "purchase_orders", ["request_order_id"])

    op.create_table(
        "purchase_order_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "purchase_order_id",
            sa.Integer(),
            sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("offer_item_id", sa.Integer(), nullable=False),
        sa.Column("item_type_id", sa.Integer(), sa.ForeignKey("item_types.id"), nullable=False),
        sa.Column("merchant_id", sa.Integer(), sa.ForeignKey("merchants.id"), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("unit_price", sa.Float(), nullable=False),
        sa.Column("total_price", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("estimated_delivery_days", sa.Integer()),
        sa.Column("comment", sa.Text()),
    )
    op.create_index(
        "ix_purchase_order_items_purchase_order_id", "purchase_order_items", ["purchase_order_id"]
    )


def downgrade() -> None:
    for table in (
        "purchase_order_items",
        "purchase_orders",
        "offer_retry_locks",
        "offer_timeline_events",
        "request_item_modifications",
        "offer_request_items",
        "offer_items",
        "offers",
        "offer_lineages",
        "request_order_items",
        "request_orders",
        "merchants",
        "item_types",
        "document_monthly_sequences",
        "audit_logs",
    ):
        op.drop_table(table)
