# Overview: Pytest coverage for per-order cashouts and archival.

from decimal import Decimal

import pytest

from logistics.extensions import db
from logistics.models import Cashbox, CashboxEntry, CASHBOX_ID
from logistics.services import order_service
from logistics.services.cashout_service import cashout_order
from logistics.services.order_state import OrderError


def cash_usd() -> Decimal:
    db.session.expire_all()
    return Decimal(db.session.get(Cashbox, CASHBOX_ID).balance_usd)


@pytest.fixture
def delivered_order(cashbox, driver):
    """Delivered and paid in-house order: total 20, delivery fee 3, driver fee 2."""
    order = order_service.create_order({
        "customer_name": "Lina",
        "total_usd": 20,
        "delivery_fee_usd": 3,
        "driver_fee_usd": 2,
        "driver_id": driver.id,
    }).order
    order_service.update_order_status(order.id, status="delivered", payment_status="paid")
    return order


class TestClientCashout:
    def test_pays_client_and_sets_flag(self, delivered_order):
        before = cash_usd()
        result = cashout_order(delivered_order.id, "clients")

        assert result.amount_usd == Decimal("20.00")
        assert result.entry.entry_type == "client_cashout"
        assert result.order.accounting_cashed is True
        assert cash_usd() == before - Decimal("20.00")

    def test_refuses_second_cashout(self, delivered_order):
        cashout_order(delivered_order.id, "clients")
        with pytest.raises(OrderError):
            cashout_order(delivered_order.id, "clients")

    def test_requires_paid(self, cashbox, driver):
        order = order_service.create_order({"customer_name": "A", "total_usd": 5, "driver_id": driver.id}).order
        order_service.update_order_status(order.id, status="delivered")
        with pytest.raises(OrderError):
            cashout_order(order.id, "clients")

    def test_prepaid_order_moves_no_money(self, cashbox, driver):
        order = order_service.create_order({
            "customer_name": "A", "total_usd": 5, "payment_status": "prepaid", "driver_id": driver.id,
        }).order
        order_service.update_order_status(order.id, status="delivered", payment_status="paid")
        before = cash_usd()

        result = cashout_order(order.id, "clients")
        assert result.entry is None
        assert result.order.accounting_cashed is True
        assert cash_usd() == before

    def test_completed_paid_cashed_order_archives(self, delivered_order):
        order_service.complete_order(delivered_order.id)
        result = cashout_order(delivered_order.id, "clients")

        assert result.order.moved_to_history is True
        assert result.order.moved_at is not None
        assert result.order.events[-1].action == "archived"


class TestDriverCashout:
    def test_books_driver_fee_income(self, delivered_order):
        before = cash_usd()
        result = cashout_order(delivered_order.id, "drivers")

        assert result.amount_usd == Decimal("2.00")
        assert result.entry.category == "Operations / Fleet"
        assert result.entry.subcategory == "Driver Fee Income"
        assert result.order.driver_cashed is True
        assert cash_usd() == before + Decimal("2.00")

    def test_falls_back_to_delivery_fee(self, cashbox, driver):
        order = order_service.create_order({
            "customer_name": "A", "total_usd": 5, "delivery_fee_usd": 4, "driver_id": driver.id,
        }).order
        order_service.update_order_status(order.id, status="delivered")
        assert cashout_order(order.id, "drivers").amount_usd == Decimal("4.00")

    def test_once_per_order(self, delivered_order):
        cashout_order(delivered_order.id, "drivers")
        with pytest.raises(OrderError):
            cashout_order(delivered_order.id, "drivers")
        assert db.session.query(CashboxEntry).filter_by(entry_type="driver_cashout").count() == 1


class TestThirdPartyCashout:
    def test_books_positive_margin(self, cashbox):
        order = order_service.create_order({
            "customer_name": "A",
            "deliver_method": "third_party",
            "driver_fee_usd": 5,
            "third_party_fee_usd": 3,
            "driver_fee_lbp": 10_000,
            "third_party_fee_lbp": 20_000,
        }).order
        result = cashout_order(order.id, "third_party")
        assert result.amount_usd == Decimal("2.00")
        assert result.amount_lbp == 0
        assert result.order.third_party_cashed is True

    def test_requires_third_party_method(self, delivered_order):
        with pytest.raises(OrderError):
            cashout_order(delivered_order.id, "third_party")


def test_invalid_mode(delivered_order):
    with pytest.raises(OrderError):
        cashout_order(delivered_order.id, "vendors")
