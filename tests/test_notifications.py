import threading
from types import SimpleNamespace

from marketplace.notifications import NotificationDispatcher, SmtpEmailer
from marketplace.notifications import messages

from .conftest import RecordingEmailer


def _order(**overrides):
    data = dict(
        order_number="ORD-ABC123-XYZ789",
        buyer=SimpleNamespace(name="Rahim"),
        items=[SimpleNamespace(product_title="Kettle", quantity=2, price="15.00")],
        total_amount="30.00",
        shipping_address="7 Lake Road, Dhaka",
        payment_method="cash-on-delivery",
    )
    data.update(overrides)
    return SimpleNamespace(**data)


class TestDispatcher:
    def test_send_email_and_flush(self):
        emailer = RecordingEmailer()
        dispatcher = NotificationDispatcher(emailer, max_workers=2)
        try:
            for n in range(3):
                dispatcher.send_email("test", to_email=f"u{n}@example.com", subject=f"Hi {n}", body="...")
            dispatcher.flush(timeout=5)
            assert sorted(emailer.subjects()) == ["Hi 0", "Hi 1", "Hi 2"]
            assert dispatcher.pending == 0
        finally:
            dispatcher.shutdown()

    def test_failures_are_contained(self):
        emailer = RecordingEmailer()
        emailer.fail = True
        dispatcher = NotificationDispatcher(emailer, max_workers=1)
        try:
            future = dispatcher.send_email("test", to_email="a@example.com", subject="s", body="b")
            assert future.result(timeout=5) is False
            assert emailer.attempts == 1
        finally:
            dispatcher.shutdown()

    def test_not_delivered_counts_as_failure(self):
        dispatcher = NotificationDispatcher(RecordingEmailer(), max_workers=1)
        try:
            assert dispatcher.submit("test", lambda: False).result(timeout=5) is False
            assert dispatcher.submit("test", lambda: None).result(timeout=5) is True
        finally:
            dispatcher.shutdown()

    def test_timed_out_job_is_a_failure(self):
        def stalled_smtp(**kwargs):
            raise TimeoutError("timed out")

        dispatcher = NotificationDispatcher(RecordingEmailer(), max_workers=1)
        try:
            assert dispatcher.submit("test", stalled_smtp).result(timeout=5) is False
        finally:
            dispatcher.shutdown()

    def test_flush_wait_is_bounded(self):
        release = threading.Event()
        dispatcher = NotificationDispatcher(RecordingEmailer(), max_workers=1)
        try:
            dispatcher.submit("slow", release.wait, 5)
            dispatcher.flush(timeout=0.1)
            assert dispatcher.pending == 1
        finally:
            release.set()
            dispatcher.shutdown()

    def test_jobs_beyond_capacity_are_dropped(self):
        release = threading.Event()
        dispatcher = NotificationDispatcher(RecordingEmailer(), max_workers=1, max_pending=1)
        try:
            blocked = dispatcher.submit("slow", release.wait, 5)
            assert blocked is not None
            assert dispatcher.submit("extra", lambda: True) is None
        finally:
            release.set()
            dispatcher.shutdown()

    def test_submit_after_shutdown_is_dropped(self):
        dispatcher = NotificationDispatcher(RecordingEmailer())
        dispatcher.shutdown()
        assert dispatcher.submit("late", lambda: True) is None


class TestSmtpEmailer:
    def test_unconfigured_reports_failure(self):
        emailer = SmtpEmailer(host="", port=587)
        assert emailer.configured is False
        assert emailer.send(to_email="a@example.com", subject="s", body="b") is False

    def test_sends_over_smtp(self, monkeypatch):
        sent = []

        class FakeSMTP:
            def __init__(self, host, port, timeout):
                self.calls = [("connect", host, port)]

            def __enter__(self):
                return self

            def __exit__(self, *exc):
                return False

            def starttls(self):
                self.calls.append(("starttls",))

            def login(self, username, password):
                self.calls.append(("login", username))

            def send_message(self, msg):
                sent.append((msg["To"], msg["Subject"], self.calls))

        monkeypatch.setattr("marketplace.notifications.emailer.smtplib.SMTP", FakeSMTP)
        emailer = SmtpEmailer(host="smtp.example.com", port=587, username="bot", password="pw")

        assert emailer.send(to_email="a@example.com", subject="Hello", body="Body") is True
        to, subject, calls = sent[0]
        assert (to, subject) == ("a@example.com", "Hello")
        assert [c[0] for c in calls] == ["connect", "starttls", "login"]


class TestMessages:
    def test_confirmation(self):
        subject, body = messages.order_confirmation(_order())
        assert subject == "Order Confirmation - #ORD-ABC123-XYZ789"
        assert "Kettle x 2 @ 15.00" in body
        assert "Total: 30.00" in body

    def test_status_update_uses_status_text(self):
        subject, body = messages.status_update(_order(), "out-for-delivery")
        assert subject == "Order Update - #ORD-ABC123-XYZ789"
        assert "out for delivery" in body

    def test_delivered_invites_review(self):
        subject, body = messages.order_delivered(_order(buyer=None))
        assert subject.startswith("Order Delivered")
        assert body.startswith("Hello Customer,")
        assert "review" in body
