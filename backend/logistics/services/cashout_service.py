# Overview: Per-order cashouts that settle client, driver and third-party accounts.

"""
Order Cashout Service

MODES:
    clients      pay the client the collected effective total (debit);
                 prepaid orders were settled at creation, so nothing moves
    drivers      book the driver fee (delivery fee when no driver fee) as
                 fleet income (credit)
    third_party  book the net margin driver_fee - third_party_fee when
                 positive (credit)

Each mode has its own flag on the order (accounting_cashed, driver_cashed,
third_party_cashed) and refuses to run twice. After every cashout the
archival rule is applied: completed + paid + accounting_cashed moves the
order to history.

Unlike the order cash effects, cashouts are explicit user actions: a ledger
failure fails the request and nothing is committed.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import CashboxEntry, Order
from ..money import round_usd
from .amounts import compute_displayed_amounts
from .cash_effects import route_account
from .cashbox_service import (
    ENTRY_CLIENT_CASHOUT,
    ENTRY_DRIVER_CASHOUT,
    ENTRY_THIRD_PARTY_CASHOUT,
    apply_entry,
    get_locked_cashbox,
)
from .concurrency import run_with_retry
from .order_service import OrderResult, lock_order, record_event, archive_order
from .order_state import DELIVERED_STATUSES, DeliveryMethod, OrderError, PaymentStatus, normalize_status


MODE_CLIENTS = "clients"
MODE_DRIVERS = "drivers"
MODE_THIRD_PARTY = "third_party"
VALID_MODES = {MODE_CLIENTS, MODE_DRIVERS, MODE_THIRD_PARTY}

DRIVER_FEE_CATEGORY = "Operations / Fleet"
DRIVER_FEE_SUBCATEGORY = "Driver Fee Income"


@dataclass
class CashoutResult(OrderResult):
    mode: str = MODE_CLIENTS
    entry: CashboxEntry | None = None
    amount_usd: Decimal = Decimal("0.00")
    amount_lbp: int = 0


def _require_delivered(order: Order) -> None:
    if normalize_status(order.status) not in DELIVERED_STATUSES:
        raise OrderError(f"Order {order.order_ref} must be delivered or completed before cashout")


def _cashout_client(order: Order, actor_user_id):
    _require_delivered(order)
    if order.payment_status != PaymentStatus.PAID.value:
        raise OrderError(f"Order {order.order_ref} must be paid before client cashout")
    if order.accounting_cashed:
        raise OrderError(f"Order {order.order_ref} was already cashed out to the client")

    order.accounting_cashed = True
    if order.cashbox_applied_on_create:
        return None, Decimal("0.00"), 0

    amounts = compute_displayed_amounts(order)
    usd, lbp = amounts.computed_total_usd, amounts.computed_total_lbp
    if usd == 0 and lbp == 0:
        return None, usd, lbp

    entry = apply_entry(
        account_type=route_account(order),
        usd_delta=-usd,
        lbp_delta=-lbp,
        entry_type=ENTRY_CLIENT_CASHOUT,
        order_id=order.id,
        actor_type="client" if order.client_id else None,
        actor_id=order.client_id,
        description=f"Client cashout for order {order.order_ref}",
        created_by_user_id=actor_user_id,
    )
    return entry, usd, lbp


def _cashout_driver(order: Order, actor_user_id):
    _require_delivered(order)
    if not order.driver_id:
        raise OrderError(f"Order {order.order_ref} has no driver to cash out")
    if order.driver_cashed:
        raise OrderError(f"Order {order.order_ref} was already cashed out for the driver")

    usd = round_usd(order.driver_fee_usd or 0)
    lbp = int(order.driver_fee_lbp or 0)
    if usd == 0 and lbp == 0:
        usd = round_usd(order.delivery_fee_usd or 0)
        lbp = int(order.delivery_fee_lbp or 0)

    order.driver_cashed = True
    if usd == 0 and lbp == 0:
        return None, usd, lbp

    entry = apply_entry(
        account_type=route_account(order),
        usd_delta=usd,
        lbp_delta=lbp,
        entry_type=ENTRY_DRIVER_CASHOUT,
        order_id=order.id,
        actor_type="driver",
        actor_id=order.driver_id,
        category=DRIVER_FEE_CATEGORY,
        subcategory=DRIVER_FEE_SUBCATEGORY,
        description=f"Driver fee for order {order.order_ref}",
        created_by_user_id=actor_user_id,
    )
    return entry, usd, lbp


def _cashout_third_party(order: Order, actor_user_id):
    if order.deliver_method != DeliveryMethod.THIRD_PARTY.value:
        raise OrderError(f"Order {order.order_ref} is not a third-party delivery")
    if order.third_party_cashed:
        raise OrderError(f"Order {order.order_ref} was already cashed out for the third party")

    usd = round_usd(Decimal(order.driver_fee_usd or 0) - Decimal(order.third_party_fee_usd or 0))
    lbp = int(order.driver_fee_lbp or 0) - int(order.third_party_fee_lbp or 0)
    usd = max(usd, Decimal("0.00"))
    lbp = max(lbp, 0)

    order.third_party_cashed = True
    if usd == 0 and lbp == 0:
        return None, usd, lbp

    entry = apply_entry(
        account_type=route_account(order),
        usd_delta=usd,
        lbp_delta=lbp,
        entry_type=ENTRY_THIRD_PARTY_CASHOUT,
        order_id=order.id,
        actor_type="third_party",
        actor_id=order.third_party_id,
        description=f"Third party margin for order {order.order_ref}",
        created_by_user_id=actor_user_id,
    )
    return entry, usd, lbp


_HANDLERS = {
    MODE_CLIENTS: _cashout_client,
    MODE_DRIVERS: _cashout_driver,
    MODE_THIRD_PARTY: _cashout_third_party,
}


def cashout_order(order_id: int, mode: str, actor_user_id: int | None = None) -> CashoutResult:
    """
    Settle one account of an order.

    Raises:
        OrderError: invalid mode, order not eligible, or already cashed out
        OrderNotFound: unknown order id
    """
    mode = (mode or "").strip().lower()
    if mode not in VALID_MODES:
        raise OrderError(f"Invalid cashout mode '{mode}'. Must be one of: {', '.join(sorted(VALID_MODES))}")
    handler = _HANDLERS[mode]

    def _op():
        get_locked_cashbox()
        order = lock_order(order_id)

        entry, usd, lbp = handler(order, actor_user_id)
        record_event(order, "cashed_out", actor_user_id=actor_user_id, note=f"{mode}: usd={usd} lbp={lbp}")
        archive_order(order, actor_user_id)
        db.session.commit()

        current_app.logger.info(
            "Cashout applied: order_id=%s ref=%s mode=%s usd=%s lbp=%s",
            order.id, order.order_ref, mode, usd, lbp,
        )
        return CashoutResult(order=order, warnings=[], mode=mode, entry=entry, amount_usd=usd, amount_lbp=lbp)

    return run_with_retry(_op)
