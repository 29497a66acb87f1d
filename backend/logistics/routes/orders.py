# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API Routes

DESIGN:
- Routes parse JSON and query args, call order services, shape responses
- Write responses carry a "warnings" list (cash effects that could not be
  booked; the order itself was saved)
- The acting user comes from the X-User-Id header (attribution only)

ERRORS:
    400  validation, business rule, or transition violation
    404  unknown order
    409  conflict (duplicate order_ref)
    500  unexpected (logged)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import with_actor
from ..services import cashout_service, order_service
from ..services.amounts import compute_displayed_amounts
from ..services.cashbox_service import CashboxError
from ..services.order_service import OrderFilters, OrderNotFound
from ..services.order_state import UNSET, OrderError
from ..time_utils import parse_range_bound
from ..validation import ConflictError, ValidationError, parse_optional_id, parse_page_args


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _date_arg(name: str, *, end_of_day: bool = False):
    try:
        return parse_range_bound(request.args.get(name), end_of_day=end_of_day)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date")


def _filters_from_args() -> OrderFilters:
    limit, offset = parse_page_args(request.args)
    return OrderFilters(
        status=request.args.get("status") or None,
        payment_status=request.args.get("payment_status") or None,
        driver_id=parse_optional_id(request.args.get("driver_id"), "driver_id"),
        client_id=parse_optional_id(request.args.get("client_id"), "client_id"),
        search=(request.args.get("search") or "").strip() or None,
        date_from=_date_arg("date_from"),
        date_to=_date_arg("date_to", end_of_day=True),
        limit=limit,
        offset=offset,
    )


def _result_response(result, status: int = 200):
    return jsonify({
        "order": result.order.to_dict(),
        "warnings": result.warnings,
    }), status


# =============================================================================
# QUERIES
# =============================================================================

@orders_bp.get("/")
def list_orders_route():
    """
    List active orders (not moved to history), newest first.

    Query params: status, payment_status, driver_id, client_id, search,
    date_from, date_to, limit, offset
    """
    try:
        filters = _filters_from_args()
        orders, total = order_service.list_orders(filters)
        return jsonify({
            "orders": [o.to_dict() for o in orders],
            "total": total,
            "limit": filters.limit,
            "offset": filters.offset,
        }), 200
    except (ValidationError, OrderError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/history")
def list_order_history_route():
    """Archived orders. Query param group: client | driver | third_party."""
    try:
        filters = _filters_from_args()
        group = (request.args.get("group") or "").strip().lower() or None
        orders, total = order_service.list_order_history(filters, group=group)
        return jsonify({
            "orders": [o.to_dict() for o in orders],
            "total": total,
            "group": group,
            "limit": filters.limit,
            "offset": filters.offset,
        }), 200
    except (ValidationError, OrderError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list order history")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/history/stats")
def history_stats_route():
    try:
        return jsonify(order_service.get_history_stats()), 200
    except Exception:
        current_app.logger.exception("Failed to compute history stats")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({
            "order": order.to_dict(),
            "events": [e.to_dict() for e in order.events],
        }), 200
    except OrderNotFound as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/compute")
def compute_route():
    """
    Preview computed totals for data entry. Stateless; never fails on
    malformed amounts (they count as zero).

    Request body: any subset of the order money fields plus
    deliver_method/delivery_mode and type.
    """
    try:
        data = _json_body()
        return jsonify(compute_displayed_amounts(data).to_dict()), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


# =============================================================================
# WRITES
# =============================================================================

@orders_bp.post("/")
@with_actor
def create_order_route():
    """
    Create an order.

    Request body:
    {
        "customer_name": "Rami",            (required)
        "customer_phone": "+961 3 000000",
        "type": "ecommerce",                ecommerce | instant | go_to_market
        "deliver_method": "in_house",       in_house | third_party
        "status": "new",
        "payment_status": "unpaid",
        "account_type": "cash",             cash | wish
        "total_usd": 10, "total_lbp": 0,
        "delivery_fee_usd": 2, "driver_fee_usd": 1, ...
        "driver_id": 3, "client_id": 7
    }

    Returns:
        201: {"order": {...}, "warnings": [...]}
    """
    try:
        result = order_service.create_order(_json_body(), actor_user_id=g.actor_user_id)
        return _result_response(result, 201)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except (ValidationError, OrderError, CashboxError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>")
@with_actor
def update_order_route(order_id: int):
    """Edit order fields. Computed totals are recomputed server-side."""
    try:
        result = order_service.update_order(order_id, _json_body(), actor_user_id=g.actor_user_id)
        return _result_response(result)
    except OrderNotFound as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except (ValidationError, OrderError, CashboxError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>")
@with_actor
def update_order_status_route(order_id: int):
    """
    Change status and/or payment status.

    Request body: {"status": "delivered", "payment_status": "paid",
    "driver_id": 3, "notes": "..."}; at least one of status/payment_status.
    """
    try:
        data = _json_body()
        driver_id = UNSET
        if "driver_id" in data:
            driver_id = parse_optional_id(data.get("driver_id"), "driver_id")
        result = order_service.update_order_status(
            order_id,
            status=data.get("status"),
            payment_status=data.get("payment_status"),
            driver_id=driver_id,
            notes=data.get("notes"),
            actor_user_id=g.actor_user_id,
        )
        return _result_response(result)
    except OrderNotFound as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, OrderError, CashboxError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/assign-driver")
@with_actor
def assign_driver_route(order_id: int):
    try:
        data = _json_body()
        result = order_service.assign_driver(order_id, data.get("driver_id"), actor_user_id=g.actor_user_id)
        return _result_response(result)
    except OrderNotFound as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, OrderError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to assign driver")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/complete")
@with_actor
def complete_order_route(order_id: int):
    """Mark completed (default payment_status "paid"); same path as PATCH."""
    try:
        data = _json_body()
        result = order_service.complete_order(
            order_id,
            actor_user_id=g.actor_user_id,
            payment_status=data.get("payment_status") or "paid",
        )
        return _result_response(result)
    except OrderNotFound as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, OrderError, CashboxError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to complete order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@with_actor
def cancel_order_route(order_id: int):
    try:
        data = _json_body()
        result = order_service.cancel_order(order_id, reason=data.get("reason"), actor_user_id=g.actor_user_id)
        return _result_response(result)
    except OrderNotFound as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, OrderError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cashout")
@with_actor
def cashout_order_route(order_id: int):
    """
    Settle one account of an order.

    Request body: {"mode": "clients" | "drivers" | "third_party"}
    """
    try:
        data = _json_body()
        result = cashout_service.cashout_order(order_id, data.get("mode"), actor_user_id=g.actor_user_id)
        return jsonify({
            "order": result.order.to_dict(),
            "mode": result.mode,
            "amount_usd": float(result.amount_usd),
            "amount_lbp": result.amount_lbp,
            "entry": result.entry.to_dict() if result.entry else None,
            "warnings": result.warnings,
        }), 200
    except OrderNotFound as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, OrderError, CashboxError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to cash out order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
def delete_order_route(order_id: int):
    try:
        order_service.delete_order(order_id)
        return jsonify({"deleted": True, "id": order_id}), 200
    except OrderNotFound as e:
        return jsonify({"error": str(e)}), 404
    except OrderError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500
