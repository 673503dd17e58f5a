"""
Tests for outbound webhooks: signing, registration, delivery, retry
backoff, the failure queue and replays. requests.post is patched.
"""
import json
import pytest
import requests
from datetime import timedelta
from unittest.mock import patch, MagicMock
from core.helpers import utc_now, parse_timestamp
from errors import NotFoundError, ValidationError
from services import webhook_service as wh


def _http(status=200, text="ok"):
    response = MagicMock()
    response.status_code = status
    response.text = text
    response.headers = {"Content-Type": "text/plain"}
    return response


def _webhook(events=("order.created",), **extra):
    return wh.create_webhook({"url": "https://hooks.example.com/in", "events": list(events), **extra}, "m1")


# ═══════════════════════════════════════════
# A. SIGNING
# ═══════════════════════════════════════════

class TestSigning:

    def test_secret_format(self):
        secret = wh.generate_secret()
        assert secret.startswith("whsec_")
        assert len(secret) == len("whsec_") + 64
        assert wh.generate_secret() != secret

    def test_signature_round_trip(self):
        signature = wh.generate_signature('{"id":"1"}', "whsec_abc")
        assert wh.verify_signature('{"id":"1"}', signature, "whsec_abc") is True
        assert wh.verify_signature('{"id":"2"}', signature, "whsec_abc") is False
        assert wh.verify_signature('{"id":"1"}', signature, "whsec_other") is False

    def test_missing_signature_or_secret(self):
        assert wh.verify_signature("{}", "", "whsec_abc") is False
        assert wh.verify_signature("{}", "abc", "") is False


# ═══════════════════════════════════════════
# B. REGISTRATIONS
# ═══════════════════════════════════════════

class TestRegistrations:

    def test_create_defaults(self):
        webhook = _webhook()
        assert webhook["secret"].startswith("whsec_")
        assert webhook["is_active"] is True
        assert webhook["retry_enabled"] is True
        assert webhook["max_retries"] == 3
        assert webhook["timeout_seconds"] == 30
        assert webhook["created_by"] == "m1"

    @pytest.mark.parametrize("data", [
        {"url": "ftp://x", "events": ["order.created"]},
        {"url": "https://x", "events": []},
        {"url": "https://x", "events": ["order.exploded"]},
    ])
    def test_create_validation(self, data):
        with pytest.raises(ValidationError):
            wh.create_webhook(data)

    def test_update_ignores_unknown_and_none_fields(self):
        webhook = _webhook()
        updated = wh.update_webhook(webhook["id"], {"name": "Orders", "secret": "stolen", "url": None})
        assert updated["name"] == "Orders"
        assert updated["secret"] == webhook["secret"]
        assert updated["url"] == "https://hooks.example.com/in"

    def test_update_unknown(self):
        with pytest.raises(NotFoundError):
            wh.update_webhook("missing", {"name": "x"})

    def test_subscription_filter(self):
        orders = _webhook(["order.created", "order.updated"])
        _webhook(["ticket.created"])
        paused = _webhook(["order.created"])
        wh.set_webhook_active(paused["id"], False)

        assert [w["id"] for w in wh.get_webhooks_by_event("order.created")] == [orders["id"]]

    def test_delete(self, mock_db):
        webhook = _webhook()
        wh.delete_webhook(webhook["id"])
        assert wh.get_webhook(webhook["id"]) is None


# ═══════════════════════════════════════════
# C. DELIVERY
# ═══════════════════════════════════════════

class TestDelivery:

    @patch("services.webhook_service.requests.post")
    def test_signed_request(self, mock_post):
        mock_post.return_value = _http(200)
        webhook = _webhook(api_key="k-123", headers={"X-Shop": "bkk"})

        result = wh.trigger_event("order.created", {"order_id": "ORD1"}, resource_id="ORD1", resource_type="order")

        args, kwargs = mock_post.call_args
        assert args[0] == "https://hooks.example.com/in"
        body = kwargs["data"].decode("utf-8")
        headers = kwargs["headers"]
        assert wh.verify_signature(body, headers["X-Webhook-Signature"], webhook["secret"])
        assert headers["X-Webhook-ID"] == webhook["id"]
        assert headers["User-Agent"] == "OmniSales-Webhook/1.0"
        assert headers["Authorization"] == "Bearer k-123"
        assert headers["X-Shop"] == "bkk"
        assert kwargs["timeout"] == 30

        payload = json.loads(body)
        assert payload["event"] == "order.created"
        assert payload["data"] == {"order_id": "ORD1"}
        assert payload["id"] == result["event"]["id"]
        assert result["deliveries"][0]["status"] == "success"
        assert result["deliveries"][0]["next_retry_at"] is None

    @patch("services.webhook_service.requests.post")
    def test_unsubscribed_webhook_not_called(self, mock_post):
        _webhook(["ticket.created"])
        result = wh.trigger_event("order.created", {})
        mock_post.assert_not_called()
        assert result["deliveries"] == []

    @patch("services.webhook_service.requests.post")
    def test_failed_attempt_schedules_retry(self, mock_post):
        mock_post.return_value = _http(500, "boom")
        _webhook()

        delivery = wh.trigger_event("order.created", {})["deliveries"][0]

        assert delivery["status"] == "failed"
        assert delivery["http_status_code"] == 500
        delay = parse_timestamp(delivery["next_retry_at"]) - utc_now()
        assert timedelta(0) < delay <= timedelta(seconds=1)

    @patch("services.webhook_service.requests.post")
    def test_last_attempt_goes_to_failure_queue(self, mock_post, mock_db):
        mock_post.side_effect = requests.exceptions.Timeout("read timeout")
        webhook = _webhook()
        event = wh.trigger_event("order.created", {})["event"]

        delivery = wh.deliver_webhook(webhook, event, attempt_number=wh.retry_config.max_attempts)

        assert delivery["status"] == "timeout"
        assert delivery["next_retry_at"] is None
        failures = wh.get_failed_deliveries(webhook["id"])
        assert len(failures) == 1
        assert failures[0]["failure_reason"].startswith("timeout: ")

    @patch("services.webhook_service.requests.post")
    def test_webhook_max_retries_limits_attempts(self, mock_post, mock_db):
        mock_post.return_value = _http(500, "boom")
        webhook = _webhook(max_retries=1)

        delivery = wh.trigger_event("order.created", {})["deliveries"][0]

        assert delivery["next_retry_at"] is None
        failures = wh.get_failed_deliveries(webhook["id"])
        assert len(failures) == 1
        assert failures[0]["attempts_count"] == 1
        assert failures[0]["failure_reason"] == "server_error: HTTP 500"

    @pytest.mark.parametrize("webhook,attempts", [
        ({"max_retries": 3}, 3),
        ({"max_retries": 50}, 5),
        ({"max_retries": None}, 5),
        ({"max_retries": 3, "retry_enabled": False}, 1),
    ])
    def test_max_attempts_for(self, webhook, attempts):
        assert wh.max_attempts_for(webhook, wh.RetryConfig(max_attempts=5)) == attempts

    def test_backoff_is_capped(self):
        config = wh.RetryConfig(initial_delay_ms=1000, backoff_multiplier=2, max_delay_ms=5000)
        second = wh.next_retry_at(2, config) - utc_now()
        tenth = wh.next_retry_at(10, config) - utc_now()
        assert timedelta(seconds=1.9) < second <= timedelta(seconds=2)
        assert timedelta(seconds=4.9) < tenth <= timedelta(seconds=5)

    @pytest.mark.parametrize("status,http_status,connection_failed,code", [
        ("timeout", None, False, "timeout"),
        ("failed", None, True, "connection_error"),
        ("failed", 401, False, "authentication_error"),
        ("failed", 403, False, "authentication_error"),
        ("failed", 429, False, "rate_limited"),
        ("failed", 404, False, "client_error"),
        ("failed", 503, False, "server_error"),
        ("failed", None, False, "unknown_error"),
    ])
    def test_error_codes(self, status, http_status, connection_failed, code):
        assert wh.error_code(status, http_status, connection_failed) == code

    @patch("services.webhook_service.requests.post")
    def test_connection_error_outcome(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectionError("refused")
        outcome = wh.send_webhook_request({"id": "w", "url": "https://x", "secret": "s"}, {"event": "x"})
        assert outcome["status"] == "failed"
        assert outcome["connection_failed"] is True


# ═══════════════════════════════════════════
# D. RETRY QUEUE, REPLAY, TEST EVENTS
# ═══════════════════════════════════════════

class TestRetryAndReplay:

    def _due_failure(self, db, webhook, attempt=1):
        event = db.seed("webhook_events", {"event_type": "order.created", "event_data": {}})[0]
        return db.seed("webhook_deliveries", {
            "webhook_id": webhook["id"], "event_id": event["id"], "attempt_number": attempt,
            "status": "failed", "next_retry_at": (utc_now() - timedelta(seconds=5)).isoformat(),
        })[0]

    @patch("services.webhook_service.requests.post")
    def test_due_deliveries_retried_once(self, mock_post, mock_db):
        mock_post.return_value = _http(200)
        webhook = _webhook()
        original = self._due_failure(mock_db, webhook, attempt=2)

        assert wh.process_retry_queue() == 1
        assert wh.process_retry_queue() == 0

        deliveries = mock_db.table("webhook_deliveries")
        assert deliveries[0]["next_retry_at"] is None
        assert deliveries[1]["attempt_number"] == 3
        assert deliveries[1]["event_id"] == original["event_id"]

    @patch("services.webhook_service.requests.post")
    def test_timed_out_delivery_retried(self, mock_post, mock_db):
        mock_post.side_effect = [requests.exceptions.Timeout("read timeout"), _http(200)]
        webhook = _webhook()
        first = wh.trigger_event("order.created", {})["deliveries"][0]
        assert first["status"] == "timeout"
        assert first["next_retry_at"] is not None

        mock_db.table("webhook_deliveries")[0]["next_retry_at"] = (utc_now() - timedelta(seconds=5)).isoformat()

        assert wh.process_retry_queue() == 1
        retried = wh.get_delivery_logs(webhook["id"])
        assert sorted(d["attempt_number"] for d in retried) == [1, 2]
        assert [d["status"] for d in retried if d["attempt_number"] == 2] == ["success"]

    @patch("services.webhook_service.requests.post")
    def test_inactive_or_retry_disabled_skipped(self, mock_post, mock_db):
        paused = _webhook()
        wh.set_webhook_active(paused["id"], False)
        no_retry = _webhook(retry_enabled=False)
        self._due_failure(mock_db, paused)
        self._due_failure(mock_db, no_retry)

        assert wh.process_retry_queue() == 0
        mock_post.assert_not_called()

    @patch("services.webhook_service.requests.post")
    def test_replay_marks_failure(self, mock_post, mock_db):
        mock_post.return_value = _http(200)
        webhook = _webhook()
        event = mock_db.seed("webhook_events", {"event_type": "order.created", "event_data": {}})[0]
        failure = mock_db.seed("webhook_failures", {
            "webhook_id": webhook["id"], "event_id": event["id"], "can_replay": True, "replayed_at": None,
        })[0]

        delivery = wh.replay_failed_event(failure["id"])

        assert delivery["attempt_number"] == 1
        assert delivery["status"] == "success"
        assert wh.get_failed_deliveries(webhook["id"]) == []

    def test_replay_unknown(self):
        with pytest.raises(NotFoundError):
            wh.replay_failed_event("missing")

    @patch("services.webhook_service.requests.post")
    def test_test_event_not_recorded(self, mock_post, mock_db):
        mock_post.return_value = _http(204)
        webhook = _webhook()

        result = wh.send_test_event(webhook["id"])

        assert result["status"] == "success"
        assert result["http_status_code"] == 204
        payload = json.loads(mock_post.call_args.kwargs["data"])
        assert payload["data"]["test"] is True
        assert mock_db.table("webhook_deliveries") == []
        assert mock_db.table("webhook_events") == []

    def test_test_event_unknown_webhook(self):
        with pytest.raises(NotFoundError):
            wh.send_test_event("missing")
