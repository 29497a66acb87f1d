# Overview: Atomic, idempotent cash effects of orders on the cashbox ledger.

"""
Order Cash Effects

Two effects move money because of an order:

    DEDUCT ON CREATE     go_to_market / purchase / prepaid orders pay out the
                         effective total when the order is created
    CREDIT ON DELIVERY   delivered (or completed) + paid orders bring the
                         effective total back in

Each effect is guarded by a flag on the order row
(cashbox_applied_on_create / cashbox_applied_on_delivery). The flag is set in
the same transaction as the balance change and the ledger entry, so an effect
is applied at most once no matter how often the order is re-saved.

LOCKING: cashbox row first, then the order row. The order is re-read under
lock and the flag is re-checked after the lock is held.

The appliers flush and never commit. run_cash_effect() wraps one applier in
a SAVEPOINT: on failure the balance change and the flag roll back together,
the order mutation around it survives, and the caller gets a warning string
(unless CASHBOX_STRICT_LEDGER is on, in which case the error propagates).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import CashboxEntry, Order, OrderEvent
from .amounts import compute_displayed_amounts
from .cashbox_service import (
    ACCOUNT_CASH,
    ENTRY_ORDER_CASH_IN,
    ENTRY_ORDER_CASH_OUT,
    VALID_ACCOUNTS,
    CashboxError,
    apply_entry,
    get_locked_cashbox,
)
from .concurrency import lock_for_update
from .order_state import credits_on_delivery, deducts_on_create


class CashEffectError(Exception):
    """Raised when a cash effect cannot be applied to an order."""
    pass


@dataclass(frozen=True)
class CashEffectResult:
    applied: bool
    amount_usd: Decimal = Decimal("0.00")
    amount_lbp: int = 0
    entry: CashboxEntry | None = None
    reason: str | None = None


def should_cash_out_on_create(order) -> bool:
    return deducts_on_create(order.type, order.is_purchase, order.payment_status)


def should_credit_on_delivery(order) -> bool:
    return credits_on_delivery(order.status, order.payment_status)


def route_account(order) -> str:
    """Orders settle through cash unless they name the wish account."""
    account = (order.account_type or "").strip().lower()
    return account if account in VALID_ACCOUNTS else ACCOUNT_CASH


def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise CashEffectError(f"Order {order_id} not found")
    return order


def apply_deduction_on_create(order_id: int, actor_user_id: int | None = None) -> CashEffectResult:
    """
    Debit the order's effective total from the cashbox, once.

    Returns a non-applied result (with reason) when the flag is already set,
    the order does not qualify, or both currencies are zero. In the zero case
    the flag is still set and no entry is written.
    """
    get_locked_cashbox()
    order = _lock_order(order_id)

    if order.cashbox_applied_on_create:
        return CashEffectResult(applied=False, reason="already_applied")
    if not should_cash_out_on_create(order):
        return CashEffectResult(applied=False, reason="not_applicable")

    amounts = compute_displayed_amounts(order)
    usd, lbp = amounts.computed_total_usd, amounts.computed_total_lbp

    if usd == 0 and lbp == 0:
        order.cashbox_applied_on_create = True
        db.session.flush()
        return CashEffectResult(applied=False, reason="zero_amount")

    entry = apply_entry(
        account_type=route_account(order),
        usd_delta=-usd,
        lbp_delta=-lbp,
        entry_type=ENTRY_ORDER_CASH_OUT,
        order_id=order.id,
        actor_type="client" if order.client_id else None,
        actor_id=order.client_id,
        description=f"Order {order.order_ref} cash out on create",
        created_by_user_id=actor_user_id,
    )
    order.cashbox_applied_on_create = True
    db.session.flush()

    current_app.logger.info(
        "Cash out on create applied: order_id=%s ref=%s usd=%s lbp=%s",
        order.id, order.order_ref, usd, lbp,
    )
    return CashEffectResult(applied=True, amount_usd=usd, amount_lbp=lbp, entry=entry)


def apply_credit_on_delivery(order_id: int, actor_user_id: int | None = None) -> CashEffectResult:
    """
    Credit the order's effective total to the cashbox, once.

    For orders whose deduction was applied at creation this restores the
    prepaid amount; the numeric effect is the same.
    """
    get_locked_cashbox()
    order = _lock_order(order_id)

    if order.cashbox_applied_on_delivery:
        return CashEffectResult(applied=False, reason="already_applied")
    if not should_credit_on_delivery(order):
        return CashEffectResult(applied=False, reason="not_applicable")

    amounts = compute_displayed_amounts(order)
    usd, lbp = amounts.computed_total_usd, amounts.computed_total_lbp

    if usd == 0 and lbp == 0:
        order.cashbox_applied_on_delivery = True
        db.session.flush()
        return CashEffectResult(applied=False, reason="zero_amount")

    if order.cashbox_applied_on_create:
        description = f"Order {order.order_ref} delivered: restores prepaid deduction"
    else:
        description = f"Order {order.order_ref} delivered and paid"

    entry = apply_entry(
        account_type=route_account(order),
        usd_delta=usd,
        lbp_delta=lbp,
        entry_type=ENTRY_ORDER_CASH_IN,
        order_id=order.id,
        actor_type="driver" if order.driver_id else None,
        actor_id=order.driver_id,
        description=description,
        created_by_user_id=actor_user_id,
    )
    order.cashbox_applied_on_delivery = True
    db.session.flush()

    current_app.logger.info(
        "Cash in on delivery applied: order_id=%s ref=%s usd=%s lbp=%s",
        order.id, order.order_ref, usd, lbp,
    )
    return CashEffectResult(applied=True, amount_usd=usd, amount_lbp=lbp, entry=entry)


def run_cash_effect(
    applier: Callable[[int, int | None], CashEffectResult],
    order: Order,
    actor_user_id: int | None = None,
) -> tuple[CashEffectResult | None, str | None]:
    """
    Run an applier inside a SAVEPOINT.

    The order must already be flushed. Returns (result, None) on success and
    (None, warning) when the ledger write failed and was rolled back.
    """
    order_id, order_ref = order.id, order.order_ref
    try:
        with db.session.begin_nested():
            result = applier(order_id, actor_user_id)
        return result, None
    except (SQLAlchemyError, CashboxError, CashEffectError) as exc:
        if current_app.config.get("CASHBOX_STRICT_LEDGER"):
            raise
        code = getattr(getattr(exc, "orig", None), "pgcode", None) or type(exc).__name__
        current_app.logger.warning(
            "Cash effect %s failed: order_id=%s ref=%s code=%s error=%s",
            applier.__name__, order_id, order_ref, code, exc,
        )
        db.session.add(OrderEvent(
            order_id=order_id,
            action="cash_effect_failed",
            actor_user_id=actor_user_id,
            note=f"{applier.__name__}: {code}",
        ))
        db.session.flush()
        return None, f"Cashbox not updated for order {order_ref} ({code}); order saved"
