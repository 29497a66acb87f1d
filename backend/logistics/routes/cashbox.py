# Overview: Flask API routes for the cashbox ledger; parses input and returns JSON responses.

"""
Cashbox API Routes

Amounts are parsed strictly at this boundary (money.parse_usd/parse_lbp):
numbers or numeric strings with thousands separators, never negative.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import with_actor
from ..money import parse_lbp, parse_usd
from ..services import cashbox_service
from ..services.cashbox_service import ACCOUNT_CASH, CashboxError, ReportFilters
from ..time_utils import parse_range_bound
from ..validation import ValidationError, clean_text, parse_optional_id, parse_page_args


cashbox_bp = Blueprint("cashbox", __name__, url_prefix="/api/cashbox")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _amounts(data: dict):
    return (
        parse_usd(data.get("amount_usd"), "amount_usd"),
        parse_lbp(data.get("amount_lbp"), "amount_lbp"),
    )


def _account(data: dict, key: str = "account_type") -> str:
    return str(data.get(key) or ACCOUNT_CASH).strip().lower()


def _date_arg(name: str, *, end_of_day: bool = False):
    try:
        return parse_range_bound(request.args.get(name), end_of_day=end_of_day)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date")


def _summary_response(status: int = 200):
    return jsonify(cashbox_service.get_balance_summary()), status


# =============================================================================
# READ
# =============================================================================

@cashbox_bp.get("/balance")
def balance_route():
    try:
        return _summary_response()
    except Exception:
        current_app.logger.exception("Failed to read cashbox balance")
        return jsonify({"error": "Internal server error"}), 500


@cashbox_bp.get("/timeline")
def timeline_route():
    """Recent entries, newest first. Query: limit (default 10), offset, entry_type."""
    try:
        limit, offset = parse_page_args(request.args, default_limit=10)
        entries = cashbox_service.get_timeline(
            limit=limit,
            offset=offset,
            entry_type=(request.args.get("entry_type") or "").strip() or None,
        )
        return jsonify({"entries": [e.to_dict() for e in entries], "limit": limit, "offset": offset}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to read cashbox timeline")
        return jsonify({"error": "Internal server error"}), 500


@cashbox_bp.get("/report")
def report_route():
    """
    Grouped totals for a period.

    Query: date_from, date_to (a bare date covers that whole day),
    account_type (cash | wish | all)
    """
    try:
        filters = ReportFilters(
            date_from=_date_arg("date_from"),
            date_to=_date_arg("date_to", end_of_day=True),
            account_type=(request.args.get("account_type") or "").strip().lower() or None,
        )
        return jsonify(cashbox_service.get_report(filters)), 200
    except (ValidationError, CashboxError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to build cashbox report")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CAPITAL
# =============================================================================

@cashbox_bp.post("/capital")
@with_actor
def set_capital_route():
    """
    Set initial capital (resets balances onto the chosen account).

    Request body: {"amount_usd": 1000, "amount_lbp": 0, "account_type": "cash",
    "description": "..."}
    """
    try:
        data = _json_body()
        amount_usd, amount_lbp = _amounts(data)
        cashbox_service.set_capital(
            amount_usd=amount_usd,
            amount_lbp=amount_lbp,
            account_type=_account(data),
            description=clean_text(data.get("description"), "description", max_length=255) or "Initial capital setup",
            user_id=g.actor_user_id,
        )
        return _summary_response(201)
    except (ValidationError, CashboxError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to set capital")
        return jsonify({"error": "Internal server error"}), 500


@cashbox_bp.put("/capital")
@with_actor
def edit_capital_route():
    """Change capital; only the difference moves."""
    try:
        data = _json_body()
        amount_usd, amount_lbp = _amounts(data)
        cashbox_service.edit_capital(
            amount_usd=amount_usd,
            amount_lbp=amount_lbp,
            account_type=_account(data),
            description=clean_text(data.get("description"), "description", max_length=255) or "Capital adjustment",
            user_id=g.actor_user_id,
        )
        return _summary_response()
    except (ValidationError, CashboxError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to edit capital")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# MOVEMENTS
# =============================================================================

@cashbox_bp.post("/income")
@with_actor
def income_route():
    try:
        data = _json_body()
        amount_usd, amount_lbp = _amounts(data)
        cashbox_service.add_income(
            amount_usd=amount_usd,
            amount_lbp=amount_lbp,
            description=clean_text(data.get("description"), "description", max_length=255, required=True),
            account_type=_account(data),
            notes=clean_text(data.get("notes"), "notes"),
            order_id=parse_optional_id(data.get("order_id"), "order_id"),
            user_id=g.actor_user_id,
        )
        return _summary_response(201)
    except (ValidationError, CashboxError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to add income")
        return jsonify({"error": "Internal server error"}), 500


@cashbox_bp.post("/expense")
@with_actor
def expense_route():
    try:
        data = _json_body()
        amount_usd, amount_lbp = _amounts(data)
        cashbox_service.add_expense(
            amount_usd=amount_usd,
            amount_lbp=amount_lbp,
            description=clean_text(data.get("description"), "description", max_length=255, required=True),
            account_type=_account(data),
            category=clean_text(data.get("category"), "category", max_length=64),
            subcategory=clean_text(data.get("subcategory"), "subcategory", max_length=64),
            notes=clean_text(data.get("notes"), "notes"),
            user_id=g.actor_user_id,
        )
        return _summary_response(201)
    except (ValidationError, CashboxError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to add expense")
        return jsonify({"error": "Internal server error"}), 500


@cashbox_bp.post("/expense-capital")
@with_actor
def capital_expense_route():
    try:
        data = _json_body()
        amount_usd, amount_lbp = _amounts(data)
        cashbox_service.add_capital_expense(
            amount_usd=amount_usd,
            amount_lbp=amount_lbp,
            account_type=_account(data),
            description=clean_text(data.get("description"), "description", max_length=255) or "Capital Expense",
            category=clean_text(data.get("category"), "category", max_length=64),
            user_id=g.actor_user_id,
        )
        return _summary_response(201)
    except (ValidationError, CashboxError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to add capital expense")
        return jsonify({"error": "Internal server error"}), 500


@cashbox_bp.post("/transfer")
@with_actor
def transfer_route():
    """Request body: {"amount_usd": 50, "from_account": "cash", "to_account": "wish"}"""
    try:
        data = _json_body()
        amount_usd, amount_lbp = _amounts(data)
        cashbox_service.transfer(
            amount_usd=amount_usd,
            amount_lbp=amount_lbp,
            from_account=str(data.get("from_account") or "").strip().lower(),
            to_account=str(data.get("to_account") or "").strip().lower(),
            description=clean_text(data.get("description"), "description", max_length=200) or "Account transfer",
            user_id=g.actor_user_id,
        )
        return _summary_response(201)
    except (ValidationError, CashboxError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to transfer between accounts")
        return jsonify({"error": "Internal server error"}), 500
