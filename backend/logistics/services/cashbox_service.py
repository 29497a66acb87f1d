# Overview: Service-layer operations for the cashbox ledger; balances, entries, and manual movements.

"""
Cashbox Ledger Service

The cashbox is a singleton (id=1) holding USD/LBP balances split across two
accounts, "cash" and "wish". Every balance change writes exactly one
CashboxEntry in the same transaction.

INVARIANTS:
- balance_* == cash_balance_* + wish_balance_* after every write
- cashbox_entries is append-only; entries are never updated or deleted
- Every mutation locks the cashbox row first (SELECT ... FOR UPDATE). Callers
  that also touch an order lock it after the cashbox, never before.

apply_entry() is the mutation primitive. It works on the caller's session and
only flushes; the order appliers commit as part of their own transaction.
The manual operations below (capital, income, expense, transfer) are
standalone units of work and commit themselves.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Cashbox, CashboxEntry, ExchangeRate, CASHBOX_ID
from ..money import round_lbp, round_usd, usd_to_json
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


class CashboxError(Exception):
    """Raised for cashbox business-rule violations (400-level)."""
    pass


# =============================================================================
# CONSTANTS
# =============================================================================

ACCOUNT_CASH = "cash"
ACCOUNT_WISH = "wish"
VALID_ACCOUNTS = {ACCOUNT_CASH, ACCOUNT_WISH}

DIRECTION_CREDIT = "credit"
DIRECTION_DEBIT = "debit"
DIRECTION_ADJUST = "adjust"

ENTRY_ORDER_CASH_OUT = "order_cash_out"
ENTRY_ORDER_CASH_IN = "order_cash_in"
ENTRY_CASH_IN = "cash_in"
ENTRY_CASH_OUT = "cash_out"
ENTRY_INCOME = "income"
ENTRY_EXPENSE = "expense"
ENTRY_CAPITAL_ADD = "capital_add"
ENTRY_CAPITAL_EDIT = "capital_edit"
ENTRY_CAPITAL_EXPENSE = "capital_expense"
ENTRY_CLIENT_CASHOUT = "client_cashout"
ENTRY_DRIVER_CASHOUT = "driver_cashout"
ENTRY_THIRD_PARTY_CASHOUT = "third_party_cashout"

VALID_ENTRY_TYPES = {
    ENTRY_ORDER_CASH_OUT,
    ENTRY_ORDER_CASH_IN,
    ENTRY_CASH_IN,
    ENTRY_CASH_OUT,
    ENTRY_INCOME,
    ENTRY_EXPENSE,
    ENTRY_CAPITAL_ADD,
    ENTRY_CAPITAL_EDIT,
    ENTRY_CAPITAL_EXPENSE,
    ENTRY_CLIENT_CASHOUT,
    ENTRY_DRIVER_CASHOUT,
    ENTRY_THIRD_PARTY_CASHOUT,
}


def validate_account(account_type: str) -> str:
    if account_type not in VALID_ACCOUNTS:
        raise CashboxError(
            f"Invalid account_type '{account_type}'. Must be one of: {', '.join(sorted(VALID_ACCOUNTS))}"
        )
    return account_type


# =============================================================================
# SINGLETON ACCESS
# =============================================================================

def ensure_cashbox() -> Cashbox:
    """
    Ensure the singleton cashbox row exists.

    Safe to call repeatedly (idempotent). Flushes, does not commit.
    """
    cashbox = db.session.get(Cashbox, CASHBOX_ID)
    if cashbox:
        return cashbox

    cashbox = Cashbox(
        id=CASHBOX_ID,
        balance_usd=Decimal("0.00"),
        balance_lbp=0,
        cash_balance_usd=Decimal("0.00"),
        cash_balance_lbp=0,
        wish_balance_usd=Decimal("0.00"),
        wish_balance_lbp=0,
        initial_capital_usd=Decimal("0.00"),
        initial_capital_lbp=0,
    )
    db.session.add(cashbox)
    db.session.flush()
    return cashbox


def get_cashbox() -> Cashbox:
    return ensure_cashbox()


def get_locked_cashbox() -> Cashbox:
    """Read the cashbox with a row lock for read-modify-write."""
    cashbox = lock_for_update(db.session.query(Cashbox).filter_by(id=CASHBOX_ID)).first()
    if cashbox is None:
        ensure_cashbox()
        cashbox = lock_for_update(db.session.query(Cashbox).filter_by(id=CASHBOX_ID)).first()
    return cashbox


# =============================================================================
# MUTATION PRIMITIVE
# =============================================================================

def _shift_account(cashbox: Cashbox, account_type: str, usd_delta: Decimal, lbp_delta: int) -> None:
    if account_type == ACCOUNT_CASH:
        cashbox.cash_balance_usd = round_usd(Decimal(cashbox.cash_balance_usd or 0) + usd_delta)
        cashbox.cash_balance_lbp = int(cashbox.cash_balance_lbp or 0) + lbp_delta
    else:
        cashbox.wish_balance_usd = round_usd(Decimal(cashbox.wish_balance_usd or 0) + usd_delta)
        cashbox.wish_balance_lbp = int(cashbox.wish_balance_lbp or 0) + lbp_delta
    _sync_aggregate(cashbox)


def _sync_aggregate(cashbox: Cashbox) -> None:
    cashbox.balance_usd = round_usd(Decimal(cashbox.cash_balance_usd or 0) + Decimal(cashbox.wish_balance_usd or 0))
    cashbox.balance_lbp = int(cashbox.cash_balance_lbp or 0) + int(cashbox.wish_balance_lbp or 0)
    cashbox.updated_at = utcnow()


def _direction_for(usd_delta: Decimal, lbp_delta: int) -> str:
    if usd_delta >= 0 and lbp_delta >= 0:
        return DIRECTION_CREDIT
    if usd_delta <= 0 and lbp_delta <= 0:
        return DIRECTION_DEBIT
    return DIRECTION_ADJUST


def _record_entry(
    cashbox: Cashbox,
    *,
    entry_type: str,
    account_type: str,
    usd_delta: Decimal,
    lbp_delta: int,
    direction: str | None = None,
    order_id: int | None = None,
    actor_type: str | None = None,
    actor_id: int | None = None,
    category: str | None = None,
    subcategory: str | None = None,
    description: str = "",
    notes: str | None = None,
    created_by_user_id: int | None = None,
) -> CashboxEntry:
    if entry_type not in VALID_ENTRY_TYPES:
        raise CashboxError(f"Invalid entry_type '{entry_type}'")

    direction = direction or _direction_for(usd_delta, lbp_delta)
    if direction == DIRECTION_ADJUST:
        # Mixed-sign adjustment: keep the signed deltas
        amount_usd, amount_lbp = usd_delta, lbp_delta
    else:
        amount_usd, amount_lbp = abs(usd_delta), abs(lbp_delta)

    entry = CashboxEntry(
        entry_type=entry_type,
        direction=direction,
        account_type=account_type,
        amount_usd=round_usd(amount_usd),
        amount_lbp=int(amount_lbp),
        balance_after_usd=cashbox.balance_usd,
        balance_after_lbp=cashbox.balance_lbp,
        order_id=order_id,
        actor_type=actor_type,
        actor_id=actor_id,
        category=category,
        subcategory=subcategory,
        description=(description or "")[:255],
        notes=notes,
        created_by_user_id=created_by_user_id,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def apply_entry(
    *,
    account_type: str,
    usd_delta: Decimal | int,
    lbp_delta: int,
    entry_type: str,
    order_id: int | None = None,
    actor_type: str | None = None,
    actor_id: int | None = None,
    category: str | None = None,
    subcategory: str | None = None,
    description: str = "",
    notes: str | None = None,
    created_by_user_id: int | None = None,
) -> CashboxEntry:
    """
    Apply a signed currency delta to one account and append its entry.

    Positive deltas credit the account, negative deltas debit it. The
    aggregate balance follows the sub-account. Flushes, never commits.

    Raises:
        CashboxError: invalid account or entry type
    """
    validate_account(account_type)
    if entry_type not in VALID_ENTRY_TYPES:
        raise CashboxError(f"Invalid entry_type '{entry_type}'")
    usd = round_usd(usd_delta)
    lbp = round_lbp(lbp_delta)

    cashbox = get_locked_cashbox()
    _shift_account(cashbox, account_type, usd, lbp)
    db.session.flush()

    return _record_entry(
        cashbox,
        entry_type=entry_type,
        account_type=account_type,
        usd_delta=usd,
        lbp_delta=lbp,
        order_id=order_id,
        actor_type=actor_type,
        actor_id=actor_id,
        category=category,
        subcategory=subcategory,
        description=description,
        notes=notes,
        created_by_user_id=created_by_user_id,
    )


# =============================================================================
# MANUAL OPERATIONS (each commits its own transaction)
# =============================================================================

def _require_amount(amount_usd: Decimal, amount_lbp: int) -> None:
    if amount_usd < 0 or amount_lbp < 0:
        raise CashboxError("Amounts must be >= 0")
    if amount_usd == 0 and amount_lbp == 0:
        raise CashboxError("Amount must be greater than 0")


def set_capital(
    *,
    amount_usd: Decimal,
    amount_lbp: int,
    account_type: str = ACCOUNT_CASH,
    description: str = "Initial capital setup",
    user_id: int | None = None,
) -> Cashbox:
    """
    Set initial capital.

    Resets balances: the chosen account holds exactly the capital and the
    other account is zeroed, as on a fresh setup.
    """
    validate_account(account_type)
    if amount_usd < 0 or amount_lbp < 0:
        raise CashboxError("Capital cannot be negative")

    def _op():
        cashbox = get_locked_cashbox()
        now = utcnow()

        cashbox.initial_capital_usd = round_usd(amount_usd)
        cashbox.initial_capital_lbp = int(amount_lbp)
        cashbox.capital_set_at = now
        cashbox.capital_set_by_user_id = user_id

        cashbox.cash_balance_usd = Decimal("0.00")
        cashbox.cash_balance_lbp = 0
        cashbox.wish_balance_usd = Decimal("0.00")
        cashbox.wish_balance_lbp = 0
        _shift_account(cashbox, account_type, round_usd(amount_usd), int(amount_lbp))
        db.session.flush()

        _record_entry(
            cashbox,
            entry_type=ENTRY_CAPITAL_ADD,
            account_type=account_type,
            usd_delta=round_usd(amount_usd),
            lbp_delta=int(amount_lbp),
            direction=DIRECTION_CREDIT,
            description=description,
            created_by_user_id=user_id,
        )
        db.session.commit()
        return cashbox

    return run_with_retry(_op)


def edit_capital(
    *,
    amount_usd: Decimal,
    amount_lbp: int,
    account_type: str = ACCOUNT_CASH,
    description: str = "Capital adjustment",
    user_id: int | None = None,
) -> Cashbox:
    """
    Change the recorded capital and apply the difference to one account.

    Unlike set_capital, existing balances are preserved; only the diff
    between the new and the previous capital moves.
    """
    validate_account(account_type)
    if amount_usd < 0 or amount_lbp < 0:
        raise CashboxError("Capital cannot be negative")

    def _op():
        cashbox = get_locked_cashbox()
        usd_diff = round_usd(amount_usd) - Decimal(cashbox.initial_capital_usd or 0)
        lbp_diff = int(amount_lbp) - int(cashbox.initial_capital_lbp or 0)

        cashbox.initial_capital_usd = round_usd(amount_usd)
        cashbox.initial_capital_lbp = int(amount_lbp)
        cashbox.capital_set_at = utcnow()
        cashbox.capital_set_by_user_id = user_id

        _shift_account(cashbox, account_type, usd_diff, lbp_diff)
        db.session.flush()

        _record_entry(
            cashbox,
            entry_type=ENTRY_CAPITAL_EDIT,
            account_type=account_type,
            usd_delta=usd_diff,
            lbp_delta=lbp_diff,
            description=description,
            created_by_user_id=user_id,
        )
        db.session.commit()
        return cashbox

    return run_with_retry(_op)


def add_income(
    *,
    amount_usd: Decimal,
    amount_lbp: int,
    description: str,
    account_type: str = ACCOUNT_CASH,
    notes: str | None = None,
    order_id: int | None = None,
    user_id: int | None = None,
) -> Cashbox:
    if not description:
        raise CashboxError("Description is required")
    validate_account(account_type)
    _require_amount(amount_usd, amount_lbp)

    def _op():
        apply_entry(
            account_type=account_type,
            usd_delta=amount_usd,
            lbp_delta=amount_lbp,
            entry_type=ENTRY_INCOME,
            order_id=order_id,
            description=description,
            notes=notes,
            created_by_user_id=user_id,
        )
        db.session.commit()
        return get_cashbox()

    return run_with_retry(_op)


def add_expense(
    *,
    amount_usd: Decimal,
    amount_lbp: int,
    description: str,
    account_type: str = ACCOUNT_CASH,
    category: str | None = None,
    subcategory: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> Cashbox:
    if not description:
        raise CashboxError("Description is required")
    validate_account(account_type)
    _require_amount(amount_usd, amount_lbp)

    def _op():
        apply_entry(
            account_type=account_type,
            usd_delta=-amount_usd,
            lbp_delta=-amount_lbp,
            entry_type=ENTRY_EXPENSE,
            category=category,
            subcategory=subcategory,
            description=description,
            notes=notes,
            created_by_user_id=user_id,
        )
        db.session.commit()
        return get_cashbox()

    return run_with_retry(_op)


def add_capital_expense(
    *,
    amount_usd: Decimal,
    amount_lbp: int,
    account_type: str = ACCOUNT_CASH,
    description: str = "Capital Expense",
    category: str | None = None,
    user_id: int | None = None,
) -> Cashbox:
    """Remove capital from the cash or wish account."""
    validate_account(account_type)
    _require_amount(amount_usd, amount_lbp)

    def _op():
        apply_entry(
            account_type=account_type,
            usd_delta=-amount_usd,
            lbp_delta=-amount_lbp,
            entry_type=ENTRY_CAPITAL_EXPENSE,
            category=category,
            description=description,
            created_by_user_id=user_id,
        )
        db.session.commit()
        return get_cashbox()

    return run_with_retry(_op)


def transfer(
    *,
    amount_usd: Decimal,
    amount_lbp: int,
    from_account: str,
    to_account: str,
    description: str = "Account transfer",
    user_id: int | None = None,
) -> Cashbox:
    """Move money between cash and wish; aggregate balance is unchanged."""
    if not from_account or not to_account or from_account == to_account:
        raise CashboxError("Valid from_account and to_account are required")
    validate_account(from_account)
    validate_account(to_account)
    _require_amount(amount_usd, amount_lbp)

    def _op():
        apply_entry(
            account_type=from_account,
            usd_delta=-amount_usd,
            lbp_delta=-amount_lbp,
            entry_type=ENTRY_CASH_OUT,
            description=f"Transfer to {to_account}: {description}",
            created_by_user_id=user_id,
        )
        apply_entry(
            account_type=to_account,
            usd_delta=amount_usd,
            lbp_delta=amount_lbp,
            entry_type=ENTRY_CASH_IN,
            description=f"Transfer from {from_account}: {description}",
            created_by_user_id=user_id,
        )
        db.session.commit()
        return get_cashbox()

    return run_with_retry(_op)


# =============================================================================
# EXCHANGE RATE
# =============================================================================

def get_exchange_rate() -> int:
    """Latest LBP per USD, or the configured default when none is recorded."""
    row = db.session.query(ExchangeRate).order_by(
        ExchangeRate.effective_at.desc(), ExchangeRate.id.desc()
    ).first()
    if row:
        return int(row.lbp_per_usd)
    return int(current_app.config.get("DEFAULT_LBP_PER_USD", 89000))


def set_exchange_rate(lbp_per_usd: int) -> ExchangeRate:
    if lbp_per_usd <= 0:
        raise CashboxError("lbp_per_usd must be positive")
    rate = ExchangeRate(lbp_per_usd=lbp_per_usd, effective_at=utcnow())
    db.session.add(rate)
    db.session.commit()
    return rate


# =============================================================================
# READ SIDE
# =============================================================================

@dataclass(frozen=True)
class ReportFilters:
    date_from: datetime | None = None
    date_to: datetime | None = None
    account_type: str | None = None


def get_balance_summary() -> dict:
    """Balances plus a single USD-equivalent figure at the current rate."""
    cashbox = get_cashbox()
    rate = get_exchange_rate()
    equivalent = round_usd(Decimal(cashbox.balance_usd or 0) + Decimal(cashbox.balance_lbp or 0) / Decimal(rate))

    summary = cashbox.to_dict()
    summary["lbp_per_usd"] = rate
    summary["equivalent_total_usd"] = usd_to_json(equivalent)
    return summary


def get_timeline(*, limit: int = 10, offset: int = 0, entry_type: str | None = None) -> list[CashboxEntry]:
    """Most recent entries first."""
    query = db.session.query(CashboxEntry)
    if entry_type and entry_type != "all":
        query = query.filter(CashboxEntry.entry_type == entry_type)
    return (
        query.order_by(CashboxEntry.created_at.desc(), CashboxEntry.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_report(filters: ReportFilters) -> dict:
    """
    Totals grouped by entry type, account, category and subcategory.

    date_to is inclusive.
    """
    query = db.session.query(
        CashboxEntry.entry_type,
        CashboxEntry.account_type,
        CashboxEntry.category,
        CashboxEntry.subcategory,
        db.func.coalesce(db.func.sum(CashboxEntry.amount_usd), 0).label("total_usd"),
        db.func.coalesce(db.func.sum(CashboxEntry.amount_lbp), 0).label("total_lbp"),
        db.func.count(CashboxEntry.id).label("count"),
    )
    if filters.date_from:
        query = query.filter(CashboxEntry.created_at >= filters.date_from)
    if filters.date_to:
        query = query.filter(CashboxEntry.created_at <= filters.date_to)
    if filters.account_type and filters.account_type != "all":
        query = query.filter(CashboxEntry.account_type == validate_account(filters.account_type))

    rows = query.group_by(
        CashboxEntry.entry_type,
        CashboxEntry.account_type,
        CashboxEntry.category,
        CashboxEntry.subcategory,
    ).order_by(
        CashboxEntry.entry_type,
        CashboxEntry.category,
        CashboxEntry.subcategory,
    ).all()

    breakdown = [
        {
            "entry_type": row.entry_type,
            "account_type": row.account_type,
            "category": row.category,
            "subcategory": row.subcategory,
            "total_usd": usd_to_json(Decimal(str(row.total_usd))),
            "total_lbp": int(row.total_lbp),
            "count": int(row.count),
        }
        for row in rows
    ]

    return {
        "summary": get_balance_summary(),
        "breakdown": breakdown,
    }
