# Overview: Pytest coverage for order creation, edits, and workflow transitions.

import re
from decimal import Decimal

import pytest

from logistics.extensions import db
from logistics.models import Cashbox, CashboxEntry, Order, OrderEvent, CASHBOX_ID
from logistics.services import cash_effects, cashbox_service, concurrency, order_service
from logistics.services.order_service import OrderFilters, OrderNotFound
from logistics.services.order_state import OrderError, TransitionError
from logistics.validation import ConflictError, ValidationError


def reload(order_id: int) -> Order:
    db.session.expire_all()
    return db.session.get(Order, order_id)


def cash_in_entries() -> int:
    return db.session.query(CashboxEntry).filter_by(entry_type="order_cash_in").count()


class TestCreateOrder:
    def test_defaults_and_reference(self, cashbox):
        result = order_service.create_order({"customer_name": "  Rami  ", "total_usd": "12.345"})
        order = result.order

        assert re.fullmatch(r"ORD-\d{14}-\d{3}", order.order_ref)
        assert order.customer_name == "Rami"
        assert order.status == "new"
        assert order.payment_status == "unpaid"
        assert order.deliver_method == "in_house"
        assert order.type == "ecommerce"
        assert order.total_usd == Decimal("12.35")
        assert order.computed_total_usd == Decimal("12.35")
        assert [e.action for e in order.events] == ["created"]

    def test_customer_name_required(self, cashbox):
        with pytest.raises(ValidationError):
            order_service.create_order({"total_usd": 10})
        assert db.session.query(Order).count() == 0

    def test_invalid_money_rejected(self, cashbox):
        with pytest.raises(ValidationError) as exc:
            order_service.create_order({"customer_name": "X", "delivery_fee_usd": "ten"})
        assert "delivery_fee_usd" in str(exc.value)

    def test_duplicate_reference_conflicts(self, cashbox):
        order_service.create_order({"customer_name": "A", "order_ref": "ORD-1"})
        with pytest.raises(ConflictError):
            order_service.create_order({"customer_name": "B", "order_ref": "ORD-1"})

    def test_go_to_market_is_purchase(self, cashbox):
        result = order_service.create_order({"customer_name": "A", "type": "go_to_market"})
        assert result.order.is_purchase is True

    def test_delivery_method_normalized(self, cashbox):
        result = order_service.create_order({"customer_name": "A", "deliver_method": "Third Party"})
        assert result.order.deliver_method == "third_party"

    def test_initial_delivered_requires_driver(self, cashbox):
        with pytest.raises(TransitionError):
            order_service.create_order({"customer_name": "A", "status": "delivered"})
        assert db.session.query(Order).count() == 0

    def test_inactive_driver_rejected(self, cashbox, inactive_driver):
        with pytest.raises(OrderError):
            order_service.create_order({"customer_name": "A", "driver_id": inactive_driver.id})


class TestDriverGuard:
    def test_delivered_without_driver_changes_nothing(self, cashbox):
        """Rejected before any mutation: order row and cashbox untouched."""
        order = order_service.create_order({"customer_name": "A", "total_usd": 10}).order
        before_version = order.version_id

        with pytest.raises(TransitionError) as exc:
            order_service.update_order_status(order.id, status="delivered", payment_status="paid")
        assert "Driver must be assigned" in str(exc.value)

        fresh = reload(order.id)
        assert fresh.status == "new"
        assert fresh.payment_status == "unpaid"
        assert fresh.delivered_at is None
        assert fresh.version_id == before_version
        assert [e.action for e in fresh.events] == ["created"]
        assert db.session.get(Cashbox, CASHBOX_ID).balance_usd == Decimal("1000.00")
        assert cash_in_entries() == 0

    def test_status_or_payment_required(self, cashbox):
        order = order_service.create_order({"customer_name": "A"}).order
        with pytest.raises(OrderError):
            order_service.update_order_status(order.id)


class TestNoDoubleCredit:
    def test_unrelated_edit_does_not_recredit(self, cashbox, driver):
        order = order_service.create_order({"customer_name": "A", "total_usd": 30, "driver_id": driver.id}).order
        order_service.update_order_status(order.id, status="delivered", payment_status="paid")
        assert cash_in_entries() == 1

        result = order_service.update_order(order.id, {"notes": "Left at the door"})
        assert result.warnings == []
        assert cash_in_entries() == 1

        order_service.update_order_status(order.id, status="completed", payment_status="paid")
        assert cash_in_entries() == 1
        assert db.session.get(Cashbox, CASHBOX_ID).balance_usd == Decimal("1030.00")

    def test_edit_recomputes_totals(self, cashbox):
        order = order_service.create_order({"customer_name": "A", "total_usd": 10, "driver_fee_usd": 2}).order
        assert order.computed_total_usd == Decimal("10.00")

        order_service.update_order(order.id, {"type": "instant"})
        assert reload(order.id).computed_total_usd == Decimal("12.00")


class TestWorkflow:
    def test_delivered_stamps_timestamps(self, cashbox, driver):
        order = order_service.create_order({"customer_name": "A", "driver_id": driver.id}).order
        order_service.update_order_status(order.id, status="Delivered")
        fresh = reload(order.id)
        assert fresh.status == "delivered"
        assert fresh.delivered_at is not None
        assert fresh.completed_at is not None

    def test_assign_driver_moves_new_to_assigned(self, cashbox, driver):
        order = order_service.create_order({"customer_name": "A"}).order
        result = order_service.assign_driver(order.id, driver.id)
        assert result.order.status == "assigned"
        assert result.order.driver_id == driver.id
        assert result.order.events[-1].action == "driver_assigned"

    def test_assign_inactive_driver(self, cashbox, inactive_driver):
        order = order_service.create_order({"customer_name": "A"}).order
        with pytest.raises(OrderError):
            order_service.assign_driver(order.id, inactive_driver.id)

    def test_complete_shares_patch_path(self, cashbox, driver):
        """complete then PATCH completed again credits once."""
        order = order_service.create_order({"customer_name": "A", "total_usd": 8, "driver_id": driver.id}).order
        order_service.complete_order(order.id)
        order_service.update_order_status(order.id, status="completed", payment_status="paid")

        fresh = reload(order.id)
        assert fresh.status == "completed"
        assert fresh.cashbox_applied_on_delivery is True
        assert cash_in_entries() == 1

    def test_completed_is_terminal(self, cashbox, driver):
        order = order_service.create_order({"customer_name": "A", "driver_id": driver.id}).order
        order_service.complete_order(order.id)
        with pytest.raises(TransitionError):
            order_service.update_order_status(order.id, status="in_transit")

    def test_cancel_keeps_cash_effects(self, cashbox):
        order = order_service.create_order({"customer_name": "A", "is_purchase": True, "total_usd": 15}).order
        result = order_service.cancel_order(order.id, reason="Customer changed mind")

        assert result.order.status == "cancelled"
        assert result.order.cancelled_at is not None
        assert result.warnings
        assert db.session.get(Cashbox, CASHBOX_ID).balance_usd == Decimal("985.00")

    def test_delete_refused_after_cash_effect(self, cashbox):
        order = order_service.create_order({"customer_name": "A", "is_purchase": True, "total_usd": 15}).order
        with pytest.raises(OrderError):
            order_service.delete_order(order.id)

    def test_delete_plain_order(self, cashbox):
        order = order_service.create_order({"customer_name": "A"}).order
        order_id = order.id
        order_service.delete_order(order_id)
        with pytest.raises(OrderNotFound):
            order_service.get_order(order_id)
        assert db.session.query(OrderEvent).filter_by(order_id=order_id).count() == 0


class TestQueries:
    def test_list_excludes_history(self, cashbox):
        active = order_service.create_order({"customer_name": "Active"}).order
        archived = order_service.create_order({"customer_name": "Archived"}).order
        archived.moved_to_history = True
        db.session.commit()

        orders, total = order_service.list_orders(OrderFilters())
        assert total == 1
        assert orders[0].id == active.id

        history, history_total = order_service.list_order_history(OrderFilters())
        assert history_total == 1
        assert history[0].id == archived.id

    def test_search_filter(self, cashbox):
        order_service.create_order({"customer_name": "Nour", "brand_name": "Cedar"})
        order_service.create_order({"customer_name": "Karim"})
        orders, total = order_service.list_orders(OrderFilters(search="cedar"))
        assert total == 1
        assert orders[0].customer_name == "Nour"

    def test_history_group_validation(self, cashbox):
        with pytest.raises(ValidationError):
            order_service.list_order_history(OrderFilters(), group="vendors")

    def test_history_stats(self, cashbox, crm_client):
        order = order_service.create_order({"customer_name": "A", "total_usd": 9, "client_id": crm_client.id}).order
        order.moved_to_history = True
        db.session.commit()

        stats = order_service.get_history_stats()
        assert stats["all"]["count"] == 1
        assert stats["client"]["count"] == 1
        assert stats["driver"]["count"] == 0
        assert stats["all"]["total_usd"] == 9.0

    def test_recompute_totals(self, cashbox):
        order = order_service.create_order({"customer_name": "A", "total_usd": 10}).order
        order.computed_total_usd = Decimal("0")
        db.session.commit()

        assert order_service.recompute_computed_totals() == 1
        assert reload(order.id).computed_total_usd == Decimal("10.00")

    def test_archive_eligible_orders(self, cashbox):
        ready = order_service.create_order({"customer_name": "Ready"}).order
        ready.status = "completed"
        ready.payment_status = "paid"
        ready.accounting_cashed = True
        pending = order_service.create_order({"customer_name": "Pending"}).order
        pending.status = "completed"
        pending.payment_status = "paid"
        db.session.commit()

        assert order_service.archive_eligible_orders() == 1
        assert reload(ready.id).moved_to_history is True
        assert reload(pending.id).moved_to_history is False


class TestLockOrder:
    """Every write path locks the cashbox row before the order row."""

    @pytest.fixture
    def lock_log(self, monkeypatch):
        locks = []
        original = concurrency.lock_for_update

        def recording_lock(query):
            locks.append(query.column_descriptions[0]["entity"].__name__)
            return original(query)

        for module in (order_service, cash_effects, cashbox_service):
            monkeypatch.setattr(module, "lock_for_update", recording_lock)
        return locks

    @staticmethod
    def assert_cashbox_first(locks):
        assert locks
        assert locks[0] == "Cashbox"
        for i, name in enumerate(locks):
            if name == "Order":
                assert "Cashbox" in locks[:i]

    def test_assign_driver_retrying_failed_credit(self, cashbox, driver, monkeypatch, lock_log):
        def ledger_offline(*args, **kwargs):
            raise cashbox_service.CashboxError("ledger offline")

        order = order_service.create_order({"customer_name": "A", "total_usd": 30, "driver_id": driver.id}).order
        with monkeypatch.context() as patch:
            patch.setattr(cashbox_service, "_record_entry", ledger_offline)
            assert order_service.update_order_status(order.id, status="delivered", payment_status="paid").warnings
        assert cash_in_entries() == 0

        lock_log.clear()
        order_service.assign_driver(order.id, driver.id)

        self.assert_cashbox_first(lock_log)
        assert cash_in_entries() == 1
        assert reload(order.id).cashbox_applied_on_delivery is True

    def test_cancel_locks_cashbox_first(self, cashbox, lock_log):
        order = order_service.create_order({"customer_name": "A"}).order
        lock_log.clear()
        order_service.cancel_order(order.id, reason="duplicate")
        self.assert_cashbox_first(lock_log)
