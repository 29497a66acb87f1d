# Overview: Order status state machine; transition tables, driver guards, and side-effect planning.

"""
Order Status State Machine

STATUS FLOW:
    new -> assigned -> picked_up -> in_transit -> delivered -> completed
      \\________\\___________\\____________\\____________\\-> cancelled

    Forward moves may skip steps (new -> delivered is allowed).
    completed and cancelled are terminal.
    Moving to the current state is a no-op.

PAYMENT FLOW:
    unpaid -> partial | prepaid | paid
    partial -> paid | prepaid
    prepaid -> paid | refunded
    paid -> refunded
    refunded is terminal.

GUARDS:
- status picked_up / in_transit / delivered requires an assigned driver
- payment_status paid / refunded requires an assigned driver

plan_transition() validates everything before any mutation and returns a
TransitionPlan describing what to write and which cash effects to fire. It
never touches the session; order_service applies the plan.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class OrderError(ValueError):
    """Raised for order business-rule violations."""
    pass


class TransitionError(OrderError):
    """
    Raised when a status or payment transition is not allowed.

    Always raised before any mutation, so the order row is untouched.
    """
    pass


class OrderStatus(str, Enum):
    NEW = "new"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PREPAID = "prepaid"
    PAID = "paid"
    REFUNDED = "refunded"


class DeliveryMethod(str, Enum):
    IN_HOUSE = "in_house"
    THIRD_PARTY = "third_party"


class OrderType(str, Enum):
    ECOMMERCE = "ecommerce"
    INSTANT = "instant"
    GO_TO_MARKET = "go_to_market"


class CashEffect(str, Enum):
    DEDUCT_ON_CREATE = "deduct_on_create"
    CREDIT_ON_DELIVERY = "credit_on_delivery"
    ARCHIVE = "archive"


# =============================================================================
# TRANSITION TABLES
# =============================================================================

STATUS_FLOW = (
    OrderStatus.NEW,
    OrderStatus.ASSIGNED,
    OrderStatus.PICKED_UP,
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
)

TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


def _build_order_transitions() -> dict[OrderStatus, frozenset[OrderStatus]]:
    table: dict[OrderStatus, frozenset[OrderStatus]] = {}
    for index, status in enumerate(STATUS_FLOW):
        if status in TERMINAL_STATUSES:
            table[status] = frozenset()
            continue
        table[status] = frozenset(STATUS_FLOW[index + 1:]) | {OrderStatus.CANCELLED}
    table[OrderStatus.CANCELLED] = frozenset()
    return table


ORDER_TRANSITIONS = _build_order_transitions()

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.UNPAID: frozenset({PaymentStatus.PARTIAL, PaymentStatus.PREPAID, PaymentStatus.PAID}),
    PaymentStatus.PARTIAL: frozenset({PaymentStatus.PAID, PaymentStatus.PREPAID}),
    PaymentStatus.PREPAID: frozenset({PaymentStatus.PAID, PaymentStatus.REFUNDED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}

DRIVER_REQUIRED_STATUSES = frozenset({
    OrderStatus.PICKED_UP,
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED,
})
DRIVER_REQUIRED_PAYMENT_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.REFUNDED})

DELIVERED_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.COMPLETED})
PREPAID_PAYMENT_STATUSES = frozenset({PaymentStatus.PREPAID, PaymentStatus.PAID})


# =============================================================================
# NORMALIZATION
# =============================================================================

def _key(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    return "_".join(str(value or "").strip().lower().replace("-", " ").split())


def normalize_status(value: Any) -> OrderStatus:
    """Accepts "Picked Up", "picked-up", "PICKED_UP"; raises on unknown values."""
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(_key(value))
    except ValueError:
        raise TransitionError(
            f"Invalid status '{value}'. Must be one of: {', '.join(s.value for s in OrderStatus)}"
        )


def normalize_payment_status(value: Any) -> PaymentStatus:
    if isinstance(value, PaymentStatus):
        return value
    try:
        return PaymentStatus(_key(value))
    except ValueError:
        raise TransitionError(
            f"Invalid payment_status '{value}'. Must be one of: {', '.join(s.value for s in PaymentStatus)}"
        )


def normalize_order_type(value: Any) -> OrderType:
    if value in (None, ""):
        return OrderType.ECOMMERCE
    try:
        return OrderType(_key(value))
    except ValueError:
        raise OrderError(
            f"Invalid type '{value}'. Must be one of: {', '.join(t.value for t in OrderType)}"
        )


# =============================================================================
# PURE PREDICATES
# =============================================================================

def deducts_on_create(order_type: Any, is_purchase: bool, payment_status: Any) -> bool:
    """go_to_market, purchases and orders prepaid at creation move cash out."""
    if _key(order_type) == OrderType.GO_TO_MARKET.value:
        return True
    if is_purchase:
        return True
    return _key(payment_status) in {s.value for s in PREPAID_PAYMENT_STATUSES}


def credits_on_delivery(status: Any, payment_status: Any) -> bool:
    return (
        _key(status) in {s.value for s in DELIVERED_STATUSES}
        and _key(payment_status) == PaymentStatus.PAID.value
    )


def archives(status: Any, payment_status: Any, accounting_cashed: bool) -> bool:
    return (
        _key(status) == OrderStatus.COMPLETED.value
        and _key(payment_status) == PaymentStatus.PAID.value
        and bool(accounting_cashed)
    )


def should_archive(order) -> bool:
    """completed + paid + client cashout done, and not archived yet."""
    if getattr(order, "moved_to_history", False):
        return False
    return archives(order.status, order.payment_status, order.accounting_cashed)


# =============================================================================
# PLANNING
# =============================================================================

class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


@dataclass(frozen=True)
class TransitionPlan:
    from_status: OrderStatus
    to_status: OrderStatus
    from_payment_status: PaymentStatus
    to_payment_status: PaymentStatus
    driver_id: int | None
    stamps: tuple[str, ...] = ()
    effects: tuple[CashEffect, ...] = field(default_factory=tuple)

    @property
    def status_changed(self) -> bool:
        return self.from_status != self.to_status

    @property
    def payment_changed(self) -> bool:
        return self.from_payment_status != self.to_payment_status

    @property
    def is_noop(self) -> bool:
        return not self.status_changed and not self.payment_changed


def _check_status_move(current: OrderStatus, target: OrderStatus) -> None:
    if target == current:
        return
    if target not in ORDER_TRANSITIONS[current]:
        if current in TERMINAL_STATUSES:
            raise TransitionError(f"Order is {current.value}; status can no longer change")
        raise TransitionError(f"Cannot move order from {current.value} to {target.value}")


def _check_payment_move(current: PaymentStatus, target: PaymentStatus) -> None:
    if target == current:
        return
    if target not in PAYMENT_TRANSITIONS[current]:
        raise TransitionError(f"Cannot change payment status from {current.value} to {target.value}")


def plan_transition(
    order,
    *,
    status: Any = None,
    payment_status: Any = None,
    driver_id: Any = UNSET,
    creating: bool = False,
) -> TransitionPlan:
    """
    Validate a status/payment/driver change and describe its consequences.

    Args:
        order: Order (or any object with status, payment_status, driver_id,
            type, is_purchase, the cashbox flags and accounting_cashed)
        status: Target status, or None to keep the current one
        payment_status: Target payment status, or None to keep it
        driver_id: New driver id; UNSET keeps the current driver
        creating: True when planning the initial state of a new order.
            Only then is DEDUCT_ON_CREATE considered, and the order's
            current state is treated as "new"/"unpaid".

    Raises:
        TransitionError: unknown value, disallowed move, or missing driver
    """
    if creating:
        current_status, current_payment = OrderStatus.NEW, PaymentStatus.UNPAID
    else:
        current_status = normalize_status(order.status)
        current_payment = normalize_payment_status(order.payment_status)

    target_status = normalize_status(status) if status not in (None, "") else current_status
    target_payment = (
        normalize_payment_status(payment_status) if payment_status not in (None, "") else current_payment
    )
    effective_driver = order.driver_id if driver_id is UNSET else driver_id

    _check_status_move(current_status, target_status)
    _check_payment_move(current_payment, target_payment)

    if not effective_driver:
        if status not in (None, "") and target_status in DRIVER_REQUIRED_STATUSES:
            raise TransitionError(
                f"Driver must be assigned before marking order as {target_status.value}"
            )
        if payment_status not in (None, "") and target_payment in DRIVER_REQUIRED_PAYMENT_STATUSES:
            raise TransitionError(
                f"Driver must be assigned before marking payment as {target_payment.value}"
            )
        if driver_id is not UNSET and target_status in DRIVER_REQUIRED_STATUSES:
            raise TransitionError(
                f"Cannot remove the driver from an order that is {target_status.value}"
            )

    stamps: list[str] = []
    if target_status != current_status or creating:
        if target_status == OrderStatus.DELIVERED:
            stamps.extend(["delivered_at", "completed_at"])
        elif target_status == OrderStatus.COMPLETED:
            stamps.append("completed_at")
        elif target_status == OrderStatus.CANCELLED:
            stamps.append("cancelled_at")

    effects: list[CashEffect] = []
    if creating and not getattr(order, "cashbox_applied_on_create", False):
        if deducts_on_create(getattr(order, "type", None), getattr(order, "is_purchase", False), target_payment):
            effects.append(CashEffect.DEDUCT_ON_CREATE)
    if not getattr(order, "cashbox_applied_on_delivery", False):
        if credits_on_delivery(target_status, target_payment):
            effects.append(CashEffect.CREDIT_ON_DELIVERY)
    if not getattr(order, "moved_to_history", False):
        if archives(target_status, target_payment, getattr(order, "accounting_cashed", False)):
            effects.append(CashEffect.ARCHIVE)

    return TransitionPlan(
        from_status=current_status,
        to_status=target_status,
        from_payment_status=current_payment,
        to_payment_status=target_payment,
        driver_id=effective_driver or None,
        stamps=tuple(stamps),
        effects=tuple(effects),
    )
