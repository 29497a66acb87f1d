# Overview: Service-layer operations for orders; creation, edits, workflow transitions, and history.

"""
Order Service

Every write path follows the same shape:

1. Parse and validate input (nothing is mutated on failure)
2. Lock rows: cashbox first when money may move, then the order
3. Plan the transition (order_state.plan_transition) before mutating
4. Apply fields, stamp timestamps, flush
5. Fire cash effects through run_cash_effect (SAVEPOINT per effect)
6. Record OrderEvents, commit once

Cash-effect failures do not fail the request: the order commits and the
caller receives a warning (see cash_effects.run_cash_effect).
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import Client, Driver, Order, OrderEvent
from ..money import parse_lbp, parse_usd, usd_to_json
from ..time_utils import utcnow
from ..validation import ConflictError, ValidationError, clean_text, parse_bool, parse_choice, parse_optional_id
from .amounts import compute_displayed_amounts, normalize_delivery_method
from .cash_effects import apply_credit_on_delivery, apply_deduction_on_create, run_cash_effect
from .cashbox_service import VALID_ACCOUNTS, get_locked_cashbox
from .concurrency import lock_for_update, run_with_retry
from .order_state import (
    UNSET,
    CashEffect,
    DeliveryMethod,
    OrderError,
    OrderStatus,
    OrderType,
    PaymentStatus,
    TERMINAL_STATUSES,
    TransitionPlan,
    normalize_order_type,
    normalize_status,
    plan_transition,
    should_archive,
)


class OrderNotFound(OrderError):
    """Raised when an order id does not exist (404)."""
    pass


@dataclass
class OrderResult:
    order: Order
    warnings: list[str] = field(default_factory=list)


MONEY_FIELDS = (
    ("total_usd", "total_lbp"),
    ("delivery_fee_usd", "delivery_fee_lbp"),
    ("third_party_fee_usd", "third_party_fee_lbp"),
    ("driver_fee_usd", "driver_fee_lbp"),
)

TEXT_FIELDS = {
    "customer_phone": 32,
    "customer_address": 255,
    "brand_name": 128,
    "notes": None,
    "third_party_name": 128,
}

ORDER_REF_ATTEMPTS = 5


# =============================================================================
# HELPERS
# =============================================================================

def lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


def _require_driver(driver_id: int) -> Driver:
    driver = db.session.get(Driver, driver_id)
    if not driver:
        raise ValidationError(f"Driver {driver_id} not found")
    if not driver.is_active:
        raise OrderError(f"Driver {driver_id} is inactive")
    return driver


def _require_client(client_id: int) -> Client:
    client = db.session.get(Client, client_id)
    if not client:
        raise ValidationError(f"Client {client_id} not found")
    return client


def _order_ref_taken(order_ref: str) -> bool:
    return db.session.query(Order.id).filter(Order.order_ref == order_ref).first() is not None


def generate_order_ref() -> str:
    """
    Generate ORD-YYYYMMDDHHMMSS-NNN, retrying on collision.

    Raises:
        ConflictError: no free reference after ORDER_REF_ATTEMPTS tries
    """
    prefix = current_app.config.get("ORDER_REF_PREFIX", "ORD")
    stamp = utcnow().strftime("%Y%m%d%H%M%S")
    for _ in range(ORDER_REF_ATTEMPTS):
        candidate = f"{prefix}-{stamp}-{random.randint(0, 999):03d}"
        if not _order_ref_taken(candidate):
            return candidate
    raise ConflictError("Could not generate a unique order reference; retry")


def _parse_fields(data: dict, *, creating: bool) -> dict:
    """
    Validate the editable order fields present in data.

    On create, customer_name is required and defaults are filled in. On edit,
    only keys present in data are returned.
    """
    fields: dict[str, Any] = {}

    if creating or "customer_name" in data:
        fields["customer_name"] = clean_text(data.get("customer_name"), "customer_name", max_length=128, required=True)

    for name, max_length in TEXT_FIELDS.items():
        if creating or name in data:
            fields[name] = clean_text(data.get(name), name, max_length=max_length)

    for usd_field, lbp_field in MONEY_FIELDS:
        if creating or usd_field in data:
            fields[usd_field] = parse_usd(data.get(usd_field), usd_field)
        if creating or lbp_field in data:
            fields[lbp_field] = parse_lbp(data.get(lbp_field), lbp_field)

    if creating or "type" in data or "order_type" in data:
        raw_type = data.get("type", data.get("order_type"))
        fields["type"] = normalize_order_type(raw_type).value

    if creating or "deliver_method" in data or "delivery_mode" in data:
        fields["deliver_method"] = normalize_delivery_method(data.get("delivery_mode") or data.get("deliver_method"))

    if creating or "is_purchase" in data:
        fields["is_purchase"] = parse_bool(data.get("is_purchase"), "is_purchase")
    if fields.get("type") == OrderType.GO_TO_MARKET.value:
        fields["is_purchase"] = True

    if creating or "account_type" in data:
        fields["account_type"] = parse_choice(data.get("account_type"), "account_type", VALID_ACCOUNTS, default="cash")

    if creating or "client_id" in data:
        client_id = parse_optional_id(data.get("client_id"), "client_id")
        if client_id is not None:
            _require_client(client_id)
        fields["client_id"] = client_id

    if creating or "third_party_id" in data:
        fields["third_party_id"] = parse_optional_id(data.get("third_party_id"), "third_party_id")

    return fields


def _parse_driver(data: dict) -> Any:
    """UNSET when driver_id is absent; None to unassign; a validated id otherwise."""
    if "driver_id" not in data:
        return UNSET
    driver_id = parse_optional_id(data.get("driver_id"), "driver_id")
    if driver_id is not None:
        _require_driver(driver_id)
    return driver_id


def refresh_computed_totals(order: Order) -> None:
    amounts = compute_displayed_amounts(order)
    order.computed_total_usd = amounts.computed_total_usd
    order.computed_total_lbp = amounts.computed_total_lbp


def record_event(order: Order, action: str, *, actor_user_id: int | None, note: str | None = None,
                 from_status: str | None = None) -> None:
    db.session.add(OrderEvent(
        order_id=order.id,
        action=action,
        from_status=from_status,
        to_status=order.status,
        payment_status=order.payment_status,
        actor_user_id=actor_user_id,
        note=note,
        occurred_at=utcnow(),
    ))


def archive_order(order: Order, actor_user_id: int | None = None) -> bool:
    """Move a settled order to history. Returns False when not eligible."""
    if not should_archive(order):
        return False
    order.moved_to_history = True
    order.moved_at = utcnow()
    record_event(order, "archived", actor_user_id=actor_user_id)
    return True


def _apply_plan(order: Order, plan: TransitionPlan, *, actor_user_id: int | None,
                action: str | None = None, note: str | None = None) -> list[str]:
    """Write a validated plan onto a flushed order and fire its effects."""
    now = utcnow()
    previous_status = order.status
    driver_changed = plan.driver_id != order.driver_id

    order.status = plan.to_status.value
    order.payment_status = plan.to_payment_status.value
    order.driver_id = plan.driver_id
    for stamp in plan.stamps:
        setattr(order, stamp, now)
    order.updated_at = now
    db.session.flush()

    if action:
        record_event(order, action, actor_user_id=actor_user_id, note=note, from_status=previous_status)
    elif not plan.is_noop:
        record_event(order, "status_changed", actor_user_id=actor_user_id, note=note, from_status=previous_status)
    elif driver_changed:
        record_event(order, "driver_assigned", actor_user_id=actor_user_id, note=note, from_status=previous_status)

    warnings: list[str] = []
    for effect in plan.effects:
        if effect == CashEffect.DEDUCT_ON_CREATE:
            _, warning = run_cash_effect(apply_deduction_on_create, order, actor_user_id)
        elif effect == CashEffect.CREDIT_ON_DELIVERY:
            _, warning = run_cash_effect(apply_credit_on_delivery, order, actor_user_id)
        else:
            archive_order(order, actor_user_id)
            warning = None
        if warning:
            warnings.append(warning)
    return warnings


# =============================================================================
# WRITE OPERATIONS
# =============================================================================

def create_order(data: dict, actor_user_id: int | None = None) -> OrderResult:
    """
    Create an order and apply any cash effect its initial state implies.

    Raises:
        ValidationError: bad or missing fields
        TransitionError: initial status/payment not allowed (e.g. delivered
            without a driver)
        ConflictError: explicit order_ref already exists
    """
    fields = _parse_fields(data, creating=True)
    driver_id = _parse_driver(data)
    requested_ref = clean_text(data.get("order_ref"), "order_ref", max_length=64)

    def _op():
        order = Order(**fields)
        order.driver_id = None if driver_id is UNSET else driver_id
        order.cashbox_applied_on_create = False
        order.cashbox_applied_on_delivery = False
        order.accounting_cashed = False
        order.moved_to_history = False

        plan = plan_transition(
            order,
            status=data.get("status"),
            payment_status=data.get("payment_status"),
            creating=True,
        )

        if requested_ref:
            if _order_ref_taken(requested_ref):
                raise ConflictError(f"Order reference {requested_ref} already exists")
            order.order_ref = requested_ref
        else:
            order.order_ref = generate_order_ref()

        order.status = OrderStatus.NEW.value
        order.payment_status = PaymentStatus.UNPAID.value
        order.created_by_user_id = actor_user_id
        refresh_computed_totals(order)
        db.session.add(order)
        db.session.flush()
        record_event(order, "created", actor_user_id=actor_user_id)

        warnings = _apply_plan(order, plan, actor_user_id=actor_user_id)
        db.session.commit()
        return OrderResult(order, warnings)

    return run_with_retry(_op)


def update_order(order_id: int, data: dict, actor_user_id: int | None = None) -> OrderResult:
    """
    Edit order fields; status/payment/driver keys go through the state machine.

    Computed totals are recomputed from the stored fields. Cash effects that
    already fired are not repeated (their flags are set); the delivery credit
    is re-evaluated against the new state.
    """
    fields = _parse_fields(data, creating=False)
    driver_id = _parse_driver(data)

    def _op():
        get_locked_cashbox()
        order = lock_order(order_id)

        if "order_ref" in data:
            new_ref = clean_text(data.get("order_ref"), "order_ref", max_length=64, required=True)
            if new_ref != order.order_ref and _order_ref_taken(new_ref):
                raise ConflictError(f"Order reference {new_ref} already exists")
            order.order_ref = new_ref

        plan = plan_transition(
            order,
            status=data.get("status"),
            payment_status=data.get("payment_status"),
            driver_id=driver_id,
        )

        for name, value in fields.items():
            setattr(order, name, value)
        refresh_computed_totals(order)
        order.updated_at = utcnow()
        db.session.flush()

        warnings = _apply_plan(order, plan, actor_user_id=actor_user_id)
        db.session.commit()
        return OrderResult(order, warnings)

    return run_with_retry(_op)


def update_order_status(
    order_id: int,
    *,
    status: str | None = None,
    payment_status: str | None = None,
    driver_id: Any = UNSET,
    notes: str | None = None,
    actor_user_id: int | None = None,
    action: str | None = None,
) -> OrderResult:
    """
    Change status and/or payment status (the PATCH path).

    Guards run before any mutation. Side effects (delivery credit, archival)
    fire in the same transaction; the order commits once.

    Raises:
        OrderError: neither status nor payment_status given
        OrderNotFound: unknown order id
        TransitionError: disallowed move or missing driver
    """
    if status in (None, "") and payment_status in (None, ""):
        raise OrderError("status or payment_status is required")
    if driver_id is not UNSET and driver_id is not None:
        _require_driver(driver_id)

    def _op():
        get_locked_cashbox()
        order = lock_order(order_id)
        plan = plan_transition(order, status=status, payment_status=payment_status, driver_id=driver_id)

        if notes is not None:
            order.notes = clean_text(notes, "notes")
        warnings = _apply_plan(order, plan, actor_user_id=actor_user_id, action=action, note=notes)
        db.session.commit()
        return OrderResult(order, warnings)

    return run_with_retry(_op)


def assign_driver(order_id: int, driver_id: int, actor_user_id: int | None = None) -> OrderResult:
    """Assign an active driver; orders still "new" move to "assigned"."""
    driver_id = parse_optional_id(driver_id, "driver_id")
    if driver_id is None:
        raise ValidationError("driver_id is required")
    driver = _require_driver(driver_id)

    def _op():
        get_locked_cashbox()
        order = lock_order(order_id)
        current = normalize_status(order.status)
        if current in TERMINAL_STATUSES:
            raise OrderError(f"Cannot assign a driver to a {current.value} order")

        target = OrderStatus.ASSIGNED if current == OrderStatus.NEW else None
        plan = plan_transition(order, status=target, driver_id=driver_id)
        warnings = _apply_plan(
            order, plan,
            actor_user_id=actor_user_id,
            action="driver_assigned",
            note=f"Assigned to {driver.full_name}",
        )
        db.session.commit()
        return OrderResult(order, warnings)

    return run_with_retry(_op)


def complete_order(order_id: int, actor_user_id: int | None = None, payment_status: str = "paid") -> OrderResult:
    """Mark an order completed; shares the PATCH path and its idempotency flags."""
    return update_order_status(
        order_id,
        status=OrderStatus.COMPLETED.value,
        payment_status=payment_status,
        actor_user_id=actor_user_id,
        action="completed",
    )


def cancel_order(order_id: int, reason: str | None = None, actor_user_id: int | None = None) -> OrderResult:
    """
    Cancel an order (terminal).

    Cash effects already applied are not reversed; reversal is a manual
    cashbox operation.
    """
    def _op():
        get_locked_cashbox()
        order = lock_order(order_id)
        plan = plan_transition(order, status=OrderStatus.CANCELLED.value)
        warnings = _apply_plan(
            order, plan,
            actor_user_id=actor_user_id,
            action="cancelled",
            note=clean_text(reason, "reason"),
        )
        if order.any_cash_effect_applied:
            warnings.append(f"Order {order.order_ref} cancelled; cash effects already applied were not reversed")
        db.session.commit()
        return OrderResult(order, warnings)

    return run_with_retry(_op)


def delete_order(order_id: int) -> None:
    """Delete an order that never moved money."""
    def _op():
        order = lock_order(order_id)
        if order.any_cash_effect_applied:
            raise OrderError("Cannot delete an order whose cash effects were applied; cancel it instead")
        db.session.delete(order)
        db.session.commit()

    run_with_retry(_op)


def recompute_computed_totals() -> int:
    """Recompute computed_total_* for every order. Returns the number changed."""
    changed = 0
    for order in db.session.query(Order).order_by(Order.id).all():
        amounts = compute_displayed_amounts(order)
        if (
            Decimal(order.computed_total_usd or 0) != amounts.computed_total_usd
            or int(order.computed_total_lbp or 0) != amounts.computed_total_lbp
        ):
            order.computed_total_usd = amounts.computed_total_usd
            order.computed_total_lbp = amounts.computed_total_lbp
            changed += 1
    db.session.commit()
    return changed


def archive_eligible_orders() -> int:
    """Archive every completed, paid, client-cashed order not yet archived."""
    candidates = db.session.query(Order).filter(
        Order.moved_to_history.is_(False),
        Order.status == OrderStatus.COMPLETED.value,
        Order.payment_status == PaymentStatus.PAID.value,
        Order.accounting_cashed.is_(True),
    ).all()
    archived = sum(1 for order in candidates if archive_order(order))
    db.session.commit()
    return archived


# =============================================================================
# READ OPERATIONS
# =============================================================================

@dataclass(frozen=True)
class OrderFilters:
    status: str | None = None
    payment_status: str | None = None
    driver_id: int | None = None
    client_id: int | None = None
    search: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    limit: int = 20
    offset: int = 0


HISTORY_GROUPS = {"client", "driver", "third_party"}


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


def _apply_filters(query, filters: OrderFilters):
    if filters.status:
        query = query.filter(Order.status == normalize_status(filters.status).value)
    if filters.payment_status:
        query = query.filter(Order.payment_status == filters.payment_status)
    if filters.driver_id:
        query = query.filter(Order.driver_id == filters.driver_id)
    if filters.client_id:
        query = query.filter(Order.client_id == filters.client_id)
    if filters.date_from:
        query = query.filter(Order.created_at >= filters.date_from)
    if filters.date_to:
        query = query.filter(Order.created_at <= filters.date_to)
    if filters.search:
        like = f"%{filters.search}%"
        query = query.filter(or_(
            Order.order_ref.ilike(like),
            Order.customer_name.ilike(like),
            Order.customer_phone.ilike(like),
            Order.brand_name.ilike(like),
        ))
    return query


def list_orders(filters: OrderFilters) -> tuple[list[Order], int]:
    """Active orders (not moved to history), newest first."""
    query = _apply_filters(db.session.query(Order).filter(Order.moved_to_history.is_(False)), filters)
    total = query.count()
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).offset(filters.offset).limit(filters.limit).all()
    return orders, total


def _history_query(group: str | None):
    query = db.session.query(Order).filter(Order.moved_to_history.is_(True))
    if group == "client":
        query = query.filter(Order.client_id.isnot(None))
    elif group == "driver":
        query = query.filter(Order.driver_id.isnot(None))
    elif group == "third_party":
        query = query.filter(Order.deliver_method == DeliveryMethod.THIRD_PARTY.value)
    return query


def list_order_history(filters: OrderFilters, group: str | None = None) -> tuple[list[Order], int]:
    """
    Archived orders, optionally narrowed to one account group.

    Groups: client (has client_id), driver (has driver_id), third_party
    (delivered by an external courier). An order can appear in several.
    """
    if group and group not in HISTORY_GROUPS:
        raise ValidationError(f"Invalid group '{group}'. Must be one of: {', '.join(sorted(HISTORY_GROUPS))}")
    query = _apply_filters(_history_query(group), filters)
    total = query.count()
    orders = query.order_by(Order.moved_at.desc(), Order.id.desc()).offset(filters.offset).limit(filters.limit).all()
    return orders, total


def get_history_stats() -> dict:
    """Counts and effective totals of archived orders per group."""
    stats = {}
    for group in [None, *sorted(HISTORY_GROUPS)]:
        query = _history_query(group).with_entities(
            db.func.count(Order.id),
            db.func.coalesce(db.func.sum(Order.computed_total_usd), 0),
            db.func.coalesce(db.func.sum(Order.computed_total_lbp), 0),
        )
        count, total_usd, total_lbp = query.one()
        stats[group or "all"] = {
            "count": int(count),
            "total_usd": usd_to_json(Decimal(str(total_usd))),
            "total_lbp": int(total_lbp),
        }
    return stats
