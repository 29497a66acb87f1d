from __future__ import annotations

from ..extensions import db
from ..money import usd_to_json
from ..time_utils import to_utc_z


class Order(db.Model):
    """
    Delivery order and the money it carries.

    Money columns come in pairs: USD as Numeric(14, 2), LBP as whole pounds.
    computed_total_* is the server-authoritative output of
    compute_displayed_amounts and is rewritten whenever money fields change.

    The cashbox_applied_* flags are idempotency guards: each cash effect is
    applied at most once per order per direction, and the flag is set in the
    same transaction that moves the money.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_history_created", "moved_to_history", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_ref = db.Column(db.String(64), nullable=False, unique=True)

    # Classification
    type = db.Column(db.String(32), nullable=False, default="ecommerce", index=True)
    deliver_method = db.Column(db.String(32), nullable=False, default="in_house")
    is_purchase = db.Column(db.Boolean, nullable=False, default=False)
    account_type = db.Column(db.String(16), nullable=False, default="cash")

    # Workflow
    status = db.Column(db.String(32), nullable=False, default="new", index=True)
    payment_status = db.Column(db.String(32), nullable=False, default="unpaid", index=True)

    # Customer / descriptive
    customer_name = db.Column(db.String(128), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_address = db.Column(db.String(255), nullable=True)
    brand_name = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Money
    total_usd = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_lbp = db.Column(db.BigInteger, nullable=False, default=0)
    delivery_fee_usd = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    delivery_fee_lbp = db.Column(db.BigInteger, nullable=False, default=0)
    third_party_fee_usd = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    third_party_fee_lbp = db.Column(db.BigInteger, nullable=False, default=0)
    driver_fee_usd = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    driver_fee_lbp = db.Column(db.BigInteger, nullable=False, default=0)
    computed_total_usd = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    computed_total_lbp = db.Column(db.BigInteger, nullable=False, default=0)

    # Idempotency / archival flags
    cashbox_applied_on_create = db.Column(db.Boolean, nullable=False, default=False)
    cashbox_applied_on_delivery = db.Column(db.Boolean, nullable=False, default=False)
    accounting_cashed = db.Column(db.Boolean, nullable=False, default=False)
    driver_cashed = db.Column(db.Boolean, nullable=False, default=False)
    third_party_cashed = db.Column(db.Boolean, nullable=False, default=False)
    moved_to_history = db.Column(db.Boolean, nullable=False, default=False)
    moved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Relationships
    driver_id = db.Column(db.Integer, db.ForeignKey("drivers.id"), nullable=True, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True, index=True)
    third_party_id = db.Column(db.Integer, nullable=True)
    third_party_name = db.Column(db.String(128), nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    driver = db.relationship("Driver", backref=db.backref("orders", lazy=True))
    client = db.relationship("Client", backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def any_cash_effect_applied(self) -> bool:
        return bool(
            self.cashbox_applied_on_create
            or self.cashbox_applied_on_delivery
            or self.accounting_cashed
            or self.driver_cashed
            or self.third_party_cashed
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_ref": self.order_ref,
            "type": self.type,
            "deliver_method": self.deliver_method,
            "is_purchase": self.is_purchase,
            "account_type": self.account_type,
            "status": self.status,
            "payment_status": self.payment_status,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "brand_name": self.brand_name,
            "notes": self.notes,
            "total_usd": usd_to_json(self.total_usd),
            "total_lbp": self.total_lbp,
            "delivery_fee_usd": usd_to_json(self.delivery_fee_usd),
            "delivery_fee_lbp": self.delivery_fee_lbp,
            "third_party_fee_usd": usd_to_json(self.third_party_fee_usd),
            "third_party_fee_lbp": self.third_party_fee_lbp,
            "driver_fee_usd": usd_to_json(self.driver_fee_usd),
            "driver_fee_lbp": self.driver_fee_lbp,
            "computed_total_usd": usd_to_json(self.computed_total_usd),
            "computed_total_lbp": self.computed_total_lbp,
            "cashbox_applied_on_create": self.cashbox_applied_on_create,
            "cashbox_applied_on_delivery": self.cashbox_applied_on_delivery,
            "accounting_cashed": self.accounting_cashed,
            "driver_cashed": self.driver_cashed,
            "third_party_cashed": self.third_party_cashed,
            "moved_to_history": self.moved_to_history,
            "moved_at": to_utc_z(self.moved_at),
            "driver_id": self.driver_id,
            "driver_name": self.driver.full_name if self.driver else None,
            "client_id": self.client_id,
            "third_party_id": self.third_party_id,
            "third_party_name": self.third_party_name,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "created_by_user_id": self.created_by_user_id,
            "version_id": self.version_id,
        }


class OrderEvent(db.Model):
    """
    Append-only workflow trail for an order.

    Written in the same transaction as the change it records. Never updated.
    """
    __tablename__ = "order_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    action = db.Column(db.String(32), nullable=False, index=True)
    from_status = db.Column(db.String(32), nullable=True)
    to_status = db.Column(db.String(32), nullable=True)
    payment_status = db.Column(db.String(32), nullable=True)
    actor_user_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.Text, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship(
        "Order",
        backref=db.backref("events", lazy=True, cascade="all, delete-orphan", order_by="OrderEvent.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "action": self.action,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "payment_status": self.payment_status,
            "actor_user_id": self.actor_user_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
