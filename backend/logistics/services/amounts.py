# Overview: Amount computation engine; pure mapping from order money fields to effective totals.

"""
Order Amount Computation

WHY: The business recognizes a different order value depending on who
delivers it and whether it is an instant order. The same function feeds the
data-entry preview and the persisted computed_total_* columns; the server's
result is canonical.

MATRIX:
    in_house,    non-instant: total                          fees shown = delivery fee
    in_house,    instant:     total + driver fee             fees hidden
    third_party, non-instant: total + delivery + third party fees shown = delivery + third party
    third_party, instant:     total + driver fee + third party fees hidden

Unrecognized delivery methods behave as in_house. Only the literal type
"instant" is instant; every other type is non-instant.

Pure: no database access, no side effects, never raises. Inputs are coerced
(missing or non-numeric -> 0) and rounded before arithmetic, and results are
rounded again: USD to cents, LBP to whole pounds.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from ..money import coerce_lbp, coerce_usd, round_lbp, round_usd

DELIVERY_IN_HOUSE = "in_house"
DELIVERY_THIRD_PARTY = "third_party"
ORDER_TYPE_INSTANT = "instant"

_IN_HOUSE_ALIASES = {"in_house", "inhouse"}
_THIRD_PARTY_ALIASES = {"third_party", "thirdparty"}


@dataclass(frozen=True)
class DisplayedAmounts:
    computed_total_usd: Decimal
    computed_total_lbp: int
    delivery_fees_usd_shown: Decimal
    delivery_fees_lbp_shown: int
    show_delivery_fees: bool

    def to_dict(self) -> dict:
        return {
            "computedTotalUSD": float(self.computed_total_usd),
            "computedTotalLBP": self.computed_total_lbp,
            "deliveryFeesUSDShown": float(self.delivery_fees_usd_shown),
            "deliveryFeesLBPShown": self.delivery_fees_lbp_shown,
            "showDeliveryFees": self.show_delivery_fees,
        }


def _read(order: Any, *keys: str) -> Any:
    """First non-empty value among keys, from a mapping or an object."""
    for key in keys:
        if isinstance(order, Mapping):
            value = order.get(key)
        else:
            value = getattr(order, key, None)
        if value not in (None, ""):
            return value
    return None


def _key(value: Any) -> str:
    return "_".join(str(value or "").strip().lower().replace("-", " ").split())


def normalize_delivery_method(value: Any) -> str:
    """
    Map free-form delivery method text onto in_house or third_party.

    "Third Party", "third-party" and "THIRD_PARTY" are all third_party.
    Anything unrecognized (including empty) falls back to in_house.
    """
    key = _key(value)
    if key in _THIRD_PARTY_ALIASES:
        return DELIVERY_THIRD_PARTY
    if key in _IN_HOUSE_ALIASES:
        return DELIVERY_IN_HOUSE
    return DELIVERY_IN_HOUSE


def is_instant(order_type: Any) -> bool:
    return _key(order_type) == ORDER_TYPE_INSTANT


def compute_displayed_amounts(order: Any) -> DisplayedAmounts:
    """
    Compute the effective order total and the delivery fees to surface.

    Accepts a mapping (request payload, row dict) or an Order instance.
    delivery_mode takes precedence over deliver_method, and type over
    order_type, matching how legacy rows carry these fields.
    """
    total_usd = coerce_usd(_read(order, "total_usd"))
    total_lbp = coerce_lbp(_read(order, "total_lbp"))
    delivery_usd = coerce_usd(_read(order, "delivery_fee_usd", "delivery_fees_usd"))
    delivery_lbp = coerce_lbp(_read(order, "delivery_fee_lbp", "delivery_fees_lbp"))
    third_party_usd = coerce_usd(_read(order, "third_party_fee_usd"))
    third_party_lbp = coerce_lbp(_read(order, "third_party_fee_lbp"))
    driver_usd = coerce_usd(_read(order, "driver_fee_usd"))
    driver_lbp = coerce_lbp(_read(order, "driver_fee_lbp"))

    method = normalize_delivery_method(_read(order, "delivery_mode", "deliver_method"))
    instant = is_instant(_read(order, "type", "order_type"))

    if method == DELIVERY_THIRD_PARTY:
        if instant:
            computed_usd = total_usd + driver_usd + third_party_usd
            computed_lbp = total_lbp + driver_lbp + third_party_lbp
            shown_usd, shown_lbp, show = Decimal("0"), 0, False
        else:
            computed_usd = total_usd + delivery_usd + third_party_usd
            computed_lbp = total_lbp + delivery_lbp + third_party_lbp
            shown_usd, shown_lbp, show = delivery_usd + third_party_usd, delivery_lbp + third_party_lbp, True
    else:
        if instant:
            computed_usd = total_usd + driver_usd
            computed_lbp = total_lbp + driver_lbp
            shown_usd, shown_lbp, show = Decimal("0"), 0, False
        else:
            computed_usd = total_usd
            computed_lbp = total_lbp
            shown_usd, shown_lbp, show = delivery_usd, delivery_lbp, True

    return DisplayedAmounts(
        computed_total_usd=round_usd(computed_usd),
        computed_total_lbp=round_lbp(computed_lbp),
        delivery_fees_usd_shown=round_usd(shown_usd),
        delivery_fees_lbp_shown=round_lbp(shown_lbp),
        show_delivery_fees=show,
    )
