from __future__ import annotations

from ..extensions import db
from ..money import usd_to_json
from ..time_utils import to_utc_z

CASHBOX_ID = 1


class Cashbox(db.Model):
    """
    Singleton ledger balance (always id=1).

    balance_* is the aggregate and always equals cash_balance_* + wish_balance_*.
    Mutated only through cashbox_service.apply_entry and the capital operations.
    """
    __tablename__ = "cashbox"

    id = db.Column(db.Integer, primary_key=True)

    balance_usd = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    balance_lbp = db.Column(db.BigInteger, nullable=False, default=0)
    cash_balance_usd = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    cash_balance_lbp = db.Column(db.BigInteger, nullable=False, default=0)
    wish_balance_usd = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    wish_balance_lbp = db.Column(db.BigInteger, nullable=False, default=0)

    initial_capital_usd = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    initial_capital_lbp = db.Column(db.BigInteger, nullable=False, default=0)
    capital_set_at = db.Column(db.DateTime(timezone=True), nullable=True)
    capital_set_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "balance_usd": usd_to_json(self.balance_usd),
            "balance_lbp": self.balance_lbp,
            "cash_balance_usd": usd_to_json(self.cash_balance_usd),
            "cash_balance_lbp": self.cash_balance_lbp,
            "wish_balance_usd": usd_to_json(self.wish_balance_usd),
            "wish_balance_lbp": self.wish_balance_lbp,
            "initial_capital_usd": usd_to_json(self.initial_capital_usd),
            "initial_capital_lbp": self.initial_capital_lbp,
            "capital_set_at": to_utc_z(self.capital_set_at),
            "capital_set_by_user_id": self.capital_set_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class CashboxEntry(db.Model):
    """
    Append-only reconciliation trail: one row per balance-affecting event.

    Amounts are magnitudes; direction says whether the account was credited
    or debited. balance_after_* snapshots the aggregate after this entry.
    """
    __tablename__ = "cashbox_entries"
    __table_args__ = (
        db.Index("ix_cashbox_entries_type_created", "entry_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entry_type = db.Column(db.String(32), nullable=False)
    direction = db.Column(db.String(8), nullable=False)  # credit | debit | adjust
    account_type = db.Column(db.String(16), nullable=False, default="cash")

    amount_usd = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    amount_lbp = db.Column(db.BigInteger, nullable=False, default=0)
    balance_after_usd = db.Column(db.Numeric(14, 2), nullable=True)
    balance_after_lbp = db.Column(db.BigInteger, nullable=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)
    actor_type = db.Column(db.String(32), nullable=True)
    actor_id = db.Column(db.Integer, nullable=True)

    category = db.Column(db.String(64), nullable=True)
    subcategory = db.Column(db.String(64), nullable=True)
    description = db.Column(db.String(255), nullable=False, default="")
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entry_type": self.entry_type,
            "direction": self.direction,
            "account_type": self.account_type,
            "amount_usd": usd_to_json(self.amount_usd),
            "amount_lbp": self.amount_lbp,
            "balance_after_usd": usd_to_json(self.balance_after_usd) if self.balance_after_usd is not None else None,
            "balance_after_lbp": self.balance_after_lbp,
            "order_id": self.order_id,
            "actor_type": self.actor_type,
            "actor_id": self.actor_id,
            "category": self.category,
            "subcategory": self.subcategory,
            "description": self.description,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class ExchangeRate(db.Model):
    """LBP per USD over time; the latest effective row wins."""
    __tablename__ = "exchange_rates"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    lbp_per_usd = db.Column(db.Integer, nullable=False)
    effective_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lbp_per_usd": self.lbp_per_usd,
            "effective_at": to_utc_z(self.effective_at),
        }
