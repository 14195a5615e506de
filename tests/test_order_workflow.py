import datetime as dt
import re
import threading
from decimal import Decimal
from types import SimpleNamespace

import pytest

from marketplace.crud import orders as order_crud
from marketplace.crud import products as product_crud
from marketplace.errors import (
    EmptyOrder,
    Forbidden,
    Inactive,
    InsufficientStock,
    InvalidState,
    MixedSellers,
    NotFound,
    ValidationFailed,
)
from marketplace.models import Order
from marketplace.workflow import ALLOWED_TRANSITIONS, TERMINAL_STATUSES, OrderWorkflow, can_transition

ADDRESS = "221B Baker Street, London"


@pytest.fixture()
def workflow(db, dispatcher):
    return OrderWorkflow(db, dispatcher=dispatcher)


def _stock(db, product_id):
    db.expire_all()
    return product_crud.get_product(db, product_id).stock


class TestCreateOrder:
    def test_total_and_stock_for_two_line_items(self, db, workflow, buyer, seller, make_product):
        p = make_product(seller, title="Product P", price=Decimal("100"), stock=5)
        q = make_product(seller, title="Product Q", price=Decimal("50"), stock=4)

        order = workflow.create(
            buyer.id,
            [{"product_id": p.id, "quantity": 2}, {"product_id": q.id, "quantity": 1}],
            ADDRESS,
        )

        assert order.total_amount == Decimal("250")
        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.seller_id == seller.id
        assert [item.quantity for item in order.items] == [2, 1]
        assert _stock(db, p.id) == 3
        assert _stock(db, q.id) == 3

    def test_order_number_format(self, workflow, buyer, seller, make_product):
        p = make_product(seller)
        order = workflow.create(buyer.id, [{"product_id": p.id, "quantity": 1}], ADDRESS)
        assert re.fullmatch(r"ORD-[0-9A-Z]+-[0-9A-Z]{6}", order.order_number)

    def test_snapshot_price_survives_product_price_change(self, db, workflow, buyer, seller, make_product):
        p = make_product(seller, price=Decimal("100"), stock=5)
        order = workflow.create(buyer.id, [{"product_id": p.id, "quantity": 2}], ADDRESS)

        product_crud.update_product(db, product_crud.get_product(db, p.id), {"price": Decimal("999")})
        db.expire_all()
        reloaded = order_crud.get_order(db, order.id)

        assert reloaded.items[0].price == Decimal("100")
        assert reloaded.total_amount == Decimal("200")

    def test_active_discount_is_charged(self, workflow, buyer, seller, make_product):
        p = make_product(seller, price=Decimal("100"), discount_price=Decimal("80"))
        order = workflow.create(buyer.id, [{"product_id": p.id, "quantity": 2}], ADDRESS)
        assert order.total_amount == Decimal("160")

    def test_expired_discount_is_not_charged(self, workflow, buyer, seller, make_product):
        p = make_product(
            seller,
            price=Decimal("100"),
            discount_price=Decimal("80"),
            discount_end_date=dt.datetime.now(dt.timezone.utc) - dt.timedelta(days=1),
        )
        order = workflow.create(buyer.id, [{"product_id": p.id, "quantity": 1}], ADDRESS)
        assert order.total_amount == Decimal("100")

    def test_duplicate_lines_are_merged(self, db, workflow, buyer, seller, make_product):
        p = make_product(seller, stock=5)
        order = workflow.create(
            buyer.id,
            [{"product_id": p.id, "quantity": 2}, {"product_id": p.id, "quantity": 1}],
            ADDRESS,
        )
        assert len(order.items) == 1
        assert order.items[0].quantity == 3
        assert _stock(db, p.id) == 2

    def test_merged_quantity_is_checked_against_stock(self, db, workflow, buyer, seller, make_product):
        p = make_product(seller, stock=3)
        with pytest.raises(InsufficientStock):
            workflow.create(
                buyer.id,
                [{"product_id": p.id, "quantity": 2}, {"product_id": p.id, "quantity": 2}],
                ADDRESS,
            )
        assert _stock(db, p.id) == 3

    def test_confirmation_mail_is_sent(self, workflow, dispatcher, emailer, buyer, seller, make_product):
        p = make_product(seller)
        order = workflow.create(buyer.id, [{"product_id": p.id, "quantity": 1}], ADDRESS)
        dispatcher.flush()

        assert emailer.subjects() == [f"Order Confirmation - #{order.order_number}"]
        assert emailer.sent[0]["to"] == buyer.email


class TestCreateOrderFailures:
    def test_missing_product(self, workflow, buyer):
        with pytest.raises(NotFound, match="Product 9999 not found"):
            workflow.create(buyer.id, [{"product_id": 9999, "quantity": 1}], ADDRESS)

    def test_inactive_product(self, workflow, buyer, seller, make_product):
        p = make_product(seller, title="Hidden", is_active=False)
        with pytest.raises(Inactive, match="Product Hidden is not available"):
            workflow.create(buyer.id, [{"product_id": p.id, "quantity": 1}], ADDRESS)

    def test_insufficient_stock(self, db, workflow, buyer, seller, make_product):
        p = make_product(seller, title="Scarce", stock=1)
        with pytest.raises(InsufficientStock, match="Insufficient stock for Scarce"):
            workflow.create(buyer.id, [{"product_id": p.id, "quantity": 2}], ADDRESS)
        assert _stock(db, p.id) == 1

    def test_mixed_sellers_mutate_nothing(self, db, workflow, buyer, make_account, make_product):
        first = make_product(make_account("seller"), stock=5)
        second = make_product(make_account("seller"), stock=5)

        with pytest.raises(MixedSellers, match="All products must be from the same seller"):
            workflow.create(
                buyer.id,
                [{"product_id": first.id, "quantity": 1}, {"product_id": second.id, "quantity": 1}],
                ADDRESS,
            )

        assert _stock(db, first.id) == 5
        assert _stock(db, second.id) == 5
        assert db.query(Order).count() == 0

    def test_empty_order(self, workflow, buyer):
        with pytest.raises(EmptyOrder):
            workflow.create(buyer.id, [], ADDRESS)

    @pytest.mark.parametrize("quantity", [0, -2, 1.5, "3", True])
    def test_quantity_must_be_a_positive_whole_number(self, db, workflow, buyer, seller, make_product, quantity):
        p = make_product(seller, stock=5)
        with pytest.raises(ValidationFailed):
            workflow.create(buyer.id, [{"product_id": p.id, "quantity": quantity}], ADDRESS)

        assert not db.new
        assert _stock(db, p.id) == 5
        assert db.query(Order).count() == 0

    def test_malformed_line_item(self, workflow, buyer):
        with pytest.raises(ValidationFailed, match="Invalid order items"):
            workflow.create(buyer.id, [{"quantity": 1}], ADDRESS)

    def test_unexpected_failure_rolls_back(self, db, workflow, buyer, seller, make_product, monkeypatch):
        p = make_product(seller, stock=5)

        def broken_decrement(session, product_id, quantity):
            raise RuntimeError("connection dropped")

        monkeypatch.setattr(product_crud, "decrement_stock", broken_decrement)
        with pytest.raises(RuntimeError):
            workflow.create(buyer.id, [{"product_id": p.id, "quantity": 1}], ADDRESS)
        monkeypatch.undo()

        assert not db.new
        assert db.query(Order).count() == 0
        assert _stock(db, p.id) == 5

    def test_failed_order_sends_no_mail(self, workflow, dispatcher, emailer, buyer):
        with pytest.raises(NotFound):
            workflow.create(buyer.id, [{"product_id": 1234, "quantity": 1}], ADDRESS)
        dispatcher.flush()
        assert emailer.sent == []


class TestConcurrentStock:
    def test_both_orders_succeed_when_demand_fits(self, db, workflow, buyer, seller, make_product):
        p = make_product(seller, stock=5)
        workflow.create(buyer.id, [{"product_id": p.id, "quantity": 2}], ADDRESS)
        workflow.create(buyer.id, [{"product_id": p.id, "quantity": 3}], ADDRESS)
        assert _stock(db, p.id) == 0

    def test_stale_read_cannot_overdraw(self, db, workflow, buyer, seller, make_product, monkeypatch):
        p = make_product(seller, title="Hot item", stock=5)
        # A second request validated against stock=5 before the first one committed.
        stale = SimpleNamespace(
            id=p.id,
            title=p.title,
            seller_id=seller.id,
            is_active=True,
            stock=5,
            price=p.price,
            discount_price=None,
            discount_end_date=None,
            images=[],
        )

        workflow.create(buyer.id, [{"product_id": p.id, "quantity": 3}], ADDRESS)
        assert _stock(db, p.id) == 2

        monkeypatch.setattr(product_crud, "get_product", lambda session, product_id: stale)
        with pytest.raises(InsufficientStock):
            workflow.create(buyer.id, [{"product_id": p.id, "quantity": 3}], ADDRESS)
        monkeypatch.undo()

        assert _stock(db, p.id) == 2
        assert db.query(Order).count() == 1

    def test_parallel_orders_cannot_overdraw(self, app, db, buyer, seller, make_product, monkeypatch):
        p = make_product(seller, title="Hot item", stock=5)
        buyer_id, product_id = buyer.id, p.id

        # Hold both requests until each has read stock=5, so both reach the decrement.
        both_read = threading.Barrier(2)
        real_get_product = product_crud.get_product

        def get_product_then_wait(session, pid):
            product = real_get_product(session, pid)
            both_read.wait(timeout=5)
            return product

        monkeypatch.setattr(product_crud, "get_product", get_product_then_wait)
        outcomes = []

        def place():
            session = app.state.session_factory()
            try:
                OrderWorkflow(session).create(buyer_id, [{"product_id": product_id, "quantity": 3}], ADDRESS)
                outcomes.append("placed")
            except InsufficientStock:
                outcomes.append("insufficient")
            finally:
                session.close()

        threads = [threading.Thread(target=place) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=15)
        monkeypatch.undo()

        assert sorted(outcomes) == ["insufficient", "placed"]
        assert _stock(db, product_id) == 2
        assert db.query(Order).count() == 1

    def test_guarded_decrement(self, db, seller, make_product):
        p = make_product(seller, stock=2)
        assert product_crud.decrement_stock(db, p.id, 2) is True
        assert product_crud.decrement_stock(db, p.id, 1) is False
        db.commit()
        assert _stock(db, p.id) == 0


class TestStatusLifecycle:
    def _order(self, workflow, buyer, seller, make_product):
        p = make_product(seller)
        return workflow.create(buyer.id, [{"product_id": p.id, "quantity": 1}], ADDRESS)

    def test_happy_path_to_completed(self, workflow, dispatcher, emailer, buyer, seller, make_product):
        order = self._order(workflow, buyer, seller, make_product)
        for status in ("approved", "processing", "out-for-delivery", "completed"):
            order = workflow.update_status(order.id, seller.id, status)
            assert order.status == status
        dispatcher.flush()

        delivered = [s for s in emailer.subjects() if s.startswith("Order Delivered")]
        updates = [s for s in emailer.subjects() if s.startswith("Order Update")]
        assert delivered == [f"Order Delivered - #{order.order_number}"]
        assert len(updates) == 3

    def test_only_owning_seller_may_update(self, workflow, buyer, seller, make_account, make_product):
        order = self._order(workflow, buyer, seller, make_product)
        other = make_account("seller")
        with pytest.raises(Forbidden, match="Not authorized to update this order"):
            workflow.update_status(order.id, other.id, "approved")

    def test_unknown_order(self, workflow, seller):
        with pytest.raises(NotFound, match="Order not found"):
            workflow.update_status(424242, seller.id, "approved")

    def test_invalid_transition_is_rejected_without_mail(
        self, db, workflow, dispatcher, emailer, buyer, seller, make_product
    ):
        order = self._order(workflow, buyer, seller, make_product)
        dispatcher.flush()
        sent_before = len(emailer.sent)

        with pytest.raises(InvalidState):
            workflow.update_status(order.id, seller.id, "completed")
        dispatcher.flush()

        db.expire_all()
        assert order_crud.get_order(db, order.id).status == "pending"
        assert len(emailer.sent) == sent_before

    def test_terminal_states_have_no_exit(self, workflow, buyer, seller, make_product):
        order = self._order(workflow, buyer, seller, make_product)
        workflow.update_status(order.id, seller.id, "rejected")
        with pytest.raises(InvalidState):
            workflow.update_status(order.id, seller.id, "approved")

    def test_mail_failure_does_not_undo_status(self, db, workflow, dispatcher, emailer, buyer, seller, make_product):
        order = self._order(workflow, buyer, seller, make_product)
        emailer.fail = True

        updated = workflow.update_status(order.id, seller.id, "approved")
        dispatcher.flush()

        assert updated.status == "approved"
        db.expire_all()
        assert order_crud.get_order(db, order.id).status == "approved"
        assert emailer.attempts == 2


class TestTransitionTable:
    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {"completed", "rejected", "cancelled"}

    def test_cancel_allowed_until_dispatch(self):
        assert can_transition("pending", "cancelled")
        assert can_transition("approved", "cancelled")
        assert can_transition("processing", "cancelled")
        assert not can_transition("out-for-delivery", "cancelled")

    def test_no_skipping_ahead(self):
        assert not can_transition("pending", "processing")
        assert not can_transition("approved", "completed")

    def test_every_status_is_known(self):
        assert set(ALLOWED_TRANSITIONS) == {
            "pending",
            "approved",
            "rejected",
            "processing",
            "out-for-delivery",
            "completed",
            "cancelled",
        }
