"""
Tests for the classifier, image stores, notifications and geocoder
"""
import smtplib

import httpx
import pytest

import sys
sys.path.insert(0, '.')

from src.alerts.email_sender import EmailConfig, EmailSender, generate_notification_email_html
from src.alerts.notifier import EmailChannel, InMemoryChannel, NotificationDispatcher
from src.core.constants import CLASSIFIER_LABELS
from src.core.exceptions import NotFoundError, ValidationError
from src.crowdsource.image_store import InMemoryImageStore, LocalImageStore, validate_image
from src.crowdsource.lifecycle import ReportLifecycleManager
from src.crowdsource.waste_classifier import MockWasteClassifier
from src.ingestion.geocoder import NominatimGeocoder


class TestWasteClassifier:
    """Test suite for the mock classifier."""

    def test_seed_is_deterministic(self):
        image = b"x" * 200_000
        first = MockWasteClassifier(seed=7).classify(image)
        second = MockWasteClassifier(seed=7).classify(image)
        assert first == second

    @pytest.mark.parametrize("size,low,high", [
        (600_000, 0.7, 1.0),
        (200_000, 0.4, 0.8),
        (1_000, 0.2, 0.6),
    ])
    def test_confidence_follows_image_size(self, size, low, high):
        classifier = MockWasteClassifier(seed=3)
        for _ in range(25):
            result = classifier.classify(b"x" * size)
            assert low <= result.confidence <= high

    def test_waste_type_comes_from_label(self):
        classifier = MockWasteClassifier(seed=11)
        results = [classifier.classify(b"x" * 600_000) for _ in range(25)]
        waste = [r for r in results if r.is_waste]

        assert waste
        for result in waste:
            assert result.waste_type == CLASSIFIER_LABELS[result.label]

    def test_not_waste_has_no_label(self):
        classifier = MockWasteClassifier(seed=5)
        results = [classifier.classify(b"x" * 10) for _ in range(40)]
        rejected = [r for r in results if not r.is_waste]

        assert rejected
        assert all(r.label is None and r.waste_type is None for r in rejected)
        assert all(r.suggestions for r in rejected)

    def test_to_dict(self):
        result = MockWasteClassifier(seed=1).classify(b"x" * 600_000)
        data = result.to_dict()
        assert data["model_version"] == "mock-1.0"
        assert 0 <= data["quality_score"] <= 100


class TestImageStores:
    """Test suite for upload validation and storage."""

    def test_validate_image(self):
        assert validate_image(b"data", "image/png") == ".png"
        assert validate_image(b"data", "IMAGE/JPEG") == ".jpg"

    @pytest.mark.parametrize("data,mime_type", [
        (b"data", "image/gif"),
        (b"data", None),
        (b"", "image/jpeg"),
        (b"x" * 11, "image/jpeg"),
    ])
    def test_rejected_uploads(self, data, mime_type):
        with pytest.raises(ValidationError):
            validate_image(data, mime_type, max_bytes=10)

    def test_memory_store(self):
        store = InMemoryImageStore()
        url = store.save(b"pixels", "image/webp")

        assert url.startswith("memory://")
        assert url.endswith(".webp")
        assert store.load(url) == b"pixels"
        with pytest.raises(NotFoundError):
            store.load("memory://missing.jpg")

    def test_local_store(self, tmp_path):
        store = LocalImageStore(directory=str(tmp_path / "uploads"))
        url = store.save(b"pixels", "image/jpeg")

        assert url.startswith("/uploads/")
        assert store.load(url) == b"pixels"
        assert len(list((tmp_path / "uploads").iterdir())) == 1

    def test_local_store_rejects_oversize(self, tmp_path):
        store = LocalImageStore(directory=str(tmp_path), max_bytes=4)
        with pytest.raises(ValidationError):
            store.save(b"too large", "image/jpeg")


class FailingChannel:
    name = "broken"

    def send(self, notification):
        raise RuntimeError("channel down")


class FakeSender:
    def __init__(self, success=True):
        self.success = success
        self.sent = []

    def send_email(self, to_addresses, subject, body_text, body_html=None):
        self.sent.append((to_addresses, subject))
        if self.success:
            return {"success": True, "sent_to": to_addresses}
        return {"success": False, "error": "SMTP error: refused", "sent_to": []}


class TestNotifications:
    """Test suite for notification fan-out."""

    def test_failing_channel_does_not_block_others(self):
        inbox = InMemoryChannel()
        dispatcher = NotificationDispatcher([FailingChannel(), inbox])

        result = dispatcher.notify(1, "Report verified", "Your report was verified")

        assert result["channels"] == {"broken": "failed", "memory": "sent"}
        assert result["total_sent"] == 1
        assert result["total_failed"] == 1
        assert inbox.for_user(1)[0].title == "Report verified"

    def test_email_channel(self):
        sender = FakeSender()
        channel = EmailChannel(lambda user_id: "ana@example.com", sender=sender)
        dispatcher = NotificationDispatcher([channel])

        result = dispatcher.notify(1, "Points earned!", "You earned 50 points")

        assert result["channels"] == {"email": "sent"}
        assert sender.sent == [(["ana@example.com"], "WasteWatch: Points earned!")]

    def test_email_channel_failure_counts(self):
        channel = EmailChannel(lambda user_id: "ana@example.com", sender=FakeSender(success=False))
        result = NotificationDispatcher([channel]).notify(1, "Title", "Message")
        assert result["channels"] == {"email": "failed"}

    def test_email_channel_skips_unknown_address(self):
        sender = FakeSender()
        channel = EmailChannel(lambda user_id: None, sender=sender)
        result = NotificationDispatcher([channel]).notify(1, "Title", "Message")

        assert result["channels"] == {"email": "sent"}
        assert sender.sent == []

    def test_email_sender_without_credentials(self):
        sender = EmailSender(EmailConfig(
            smtp_host="localhost", smtp_port=25, username="", password="", from_address="a@example.com"
        ))
        result = sender.send_email(["b@example.com"], "Subject", "Body")
        assert result["success"] is False

    def test_email_sender_submits_over_smtp(self, monkeypatch):
        servers = []

        class FakeSMTP:
            def __init__(self, host, port):
                self.address = (host, port)
                self.calls = []
                servers.append(self)

            def __enter__(self):
                return self

            def __exit__(self, *exc_info):
                self.calls.append("quit")

            def starttls(self):
                self.calls.append("starttls")

            def login(self, username, password):
                self.calls.append(("login", username, password))

            def send_message(self, message, from_addr=None, to_addrs=None):
                self.message = message
                self.calls.append(("send", from_addr, tuple(to_addrs)))

        monkeypatch.setattr("src.alerts.email_sender.smtplib.SMTP", FakeSMTP)
        sender = EmailSender(EmailConfig(
            smtp_host="mail.test", smtp_port=587, username="bot", password="secret",
            from_address="bot@wastewatch.test",
        ))

        result = sender.send_email(["ana@example.com"], "Points earned!", "You earned 50", "<p>You earned 50</p>")

        assert result == {"success": True, "sent_to": ["ana@example.com"]}
        server = servers[0]
        assert server.address == ("mail.test", 587)
        assert server.calls == [
            "starttls",
            ("login", "bot", "secret"),
            ("send", "bot@wastewatch.test", ("ana@example.com",)),
            "quit",
        ]
        assert server.message["From"] == "WasteWatch <bot@wastewatch.test>"
        assert server.message["Subject"] == "Points earned!"
        assert server.message.get_body(preferencelist=("html",)).get_content().strip() == "<p>You earned 50</p>"

    @pytest.mark.parametrize("error", [smtplib.SMTPAuthenticationError(535, b"bad login"), OSError("unreachable")])
    def test_email_sender_reports_smtp_failure(self, monkeypatch, error):
        def refuse(host, port):
            raise error

        monkeypatch.setattr("src.alerts.email_sender.smtplib.SMTP", refuse)
        sender = EmailSender(EmailConfig(
            smtp_host="mail.test", smtp_port=587, username="bot", password="secret",
            from_address="bot@wastewatch.test",
        ))

        result = sender.send_email(["ana@example.com"], "Subject", "Body")

        assert result["success"] is False
        assert result["error"].startswith("SMTP error")
        assert result["sent_to"] == []

    def test_email_html_is_escaped(self):
        html = generate_notification_email_html("<b>Title</b>", "a & b")
        assert "&lt;b&gt;Title&lt;/b&gt;" in html
        assert "a &amp; b" in html

    def test_lifecycle_survives_notifier_errors(self, db, points_ledger, clock, locks, users):
        class ExplodingNotifier:
            def notify(self, *args, **kwargs):
                raise RuntimeError("queue unavailable")

        manager = ReportLifecycleManager(db, points_ledger, notifier=ExplodingNotifier(), clock=clock, locks=locks)
        report = manager.submit(
            citizen_id=users["citizen"].id,
            description="Broken glass on the sidewalk",
            latitude=40.7,
            longitude=-74.0,
            image_url="memory://glass.jpg",
        )
        assert report.id is not None


def nominatim(handler):
    return NominatimGeocoder(
        base_url="https://nominatim.test",
        transport=httpx.MockTransport(handler),
        min_interval=0,
    )


class TestGeocoder:
    """Test suite for reverse geocoding."""

    def test_reverse(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            seen["agent"] = request.headers["User-Agent"]
            return httpx.Response(200, json={"display_name": "Battery Park, New York"})

        with nominatim(handler) as geocoder:
            assert geocoder.reverse(40.7033, -74.017) == "Battery Park, New York"

        assert seen["params"]["lat"] == "40.7033"
        assert seen["params"]["format"] == "json"
        assert seen["agent"]

    @pytest.mark.parametrize("response", [
        httpx.Response(500),
        httpx.Response(200, content=b"not json"),
        httpx.Response(200, json=["unexpected"]),
        httpx.Response(200, json={"error": "Unable to geocode"}),
    ])
    def test_failures_return_none(self, response):
        with nominatim(lambda request: response) as geocoder:
            assert geocoder.reverse(0.0, 0.0) is None

    def test_network_error_returns_none(self):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        with nominatim(handler) as geocoder:
            assert geocoder.reverse(0.0, 0.0) is None

    def test_submit_fills_address(self, db, points_ledger, notifier, clock, locks, users):
        geocoder = nominatim(lambda request: httpx.Response(200, json={"display_name": "5th Ave, New York"}))
        manager = ReportLifecycleManager(
            db, points_ledger, notifier=notifier, geocoder=geocoder, clock=clock, locks=locks
        )

        report = manager.submit(
            citizen_id=users["citizen"].id,
            description="Mattress left on the corner",
            latitude=40.7484,
            longitude=-73.9857,
            image_url="memory://mattress.jpg",
        )
        assert report.address == "5th Ave, New York"

        explicit = manager.submit(
            citizen_id=users["citizen"].id,
            description="Cans in the park",
            latitude=40.7484,
            longitude=-73.9857,
            image_url="memory://cans.jpg",
            address="Bryant Park",
        )
        assert explicit.address == "Bryant Park"
