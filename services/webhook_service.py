"""
Webhook Service
================
Outbound webhooks: registrations, signed delivery, retry with exponential
backoff and a failure queue for deliveries that ran out of attempts.

Every request carries:
  X-Webhook-Signature   hex HMAC-SHA256 of the exact JSON body, keyed by the webhook secret
  X-Webhook-Timestamp   unix seconds
  X-Webhook-ID          webhook id
  User-Agent            OmniSales-Webhook/1.0

Tables:
  - webhooks             registrations
  - webhook_events       one row per triggered event
  - webhook_deliveries   one row per attempt (next_retry_at while retries remain)
  - webhook_failures     final failed attempt, replayable
"""

import hashlib
import hmac
import json
import secrets
import time
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

import requests

from app_config import (
    WEBHOOK_MAX_ATTEMPTS,
    WEBHOOK_INITIAL_DELAY_MS,
    WEBHOOK_BACKOFF_MULTIPLIER,
    WEBHOOK_MAX_DELAY_MS,
    WEBHOOK_DEFAULT_TIMEOUT_SECONDS,
    WEBHOOK_USER_AGENT,
    WEBHOOK_RETRY_BATCH_SIZE,
)
from chat_logger import get_logger, sanitize_url
from core.helpers import now_iso, utc_now, compact
from db_client import get_db, rows
from errors import DatabaseError, NotFoundError, ValidationError

logger = get_logger("omnisales")

WEBHOOK_EVENTS = (
    "order.created",
    "order.updated",
    "order.shipped",
    "order.cancelled",
    "shipment.created",
    "shipment.updated",
    "return.created",
    "return.updated",
    "refund.processed",
    "ticket.created",
    "ticket.assigned",
    "ticket.status_updated",
    "ticket.priority_updated",
    "chat.escalated",
)

UPDATABLE_FIELDS = (
    "name", "description", "url", "events", "headers", "is_active",
    "retry_enabled", "max_retries", "timeout_seconds", "api_key",
)

# Error codes recorded on webhook_failures
ERROR_TIMEOUT = "timeout"
ERROR_CONNECTION = "connection_error"
ERROR_AUTH = "authentication_error"
ERROR_RATE_LIMITED = "rate_limited"
ERROR_CLIENT = "client_error"
ERROR_SERVER = "server_error"
ERROR_UNKNOWN = "unknown_error"


@dataclass
class RetryConfig:
    max_attempts: int = WEBHOOK_MAX_ATTEMPTS
    initial_delay_ms: int = WEBHOOK_INITIAL_DELAY_MS
    backoff_multiplier: float = WEBHOOK_BACKOFF_MULTIPLIER
    max_delay_ms: int = WEBHOOK_MAX_DELAY_MS


retry_config = RetryConfig()


# Attempt outcomes that stay in the retry queue
RETRYABLE_STATUSES = ("failed", "timeout")


def max_attempts_for(webhook: dict, config: RetryConfig = None) -> int:
    """
    Total attempts allowed for one event on this webhook. The webhook's own
    max_retries applies, bounded by the service-wide limit; a webhook with
    retries disabled gets a single attempt.
    """
    config = config or retry_config
    if webhook.get("retry_enabled") is False:
        return 1
    limit = webhook.get("max_retries")
    if not limit:
        return config.max_attempts
    return max(1, min(int(limit), config.max_attempts))


# ═══════════════════════════════════════════
# SIGNING
# ═══════════════════════════════════════════

def generate_secret() -> str:
    return f"whsec_{secrets.token_hex(32)}"


def generate_signature(payload: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(payload: str, signature: str, secret: str) -> bool:
    """Constant-time check of a received X-Webhook-Signature."""
    if not signature or not secret:
        return False
    return hmac.compare_digest(generate_signature(payload, secret), signature)


# ═══════════════════════════════════════════
# REGISTRATIONS
# ═══════════════════════════════════════════

def _validate_events(events) -> None:
    if not events or not isinstance(events, list):
        raise ValidationError("At least one event is required")
    unknown = [e for e in events if e not in WEBHOOK_EVENTS]
    if unknown:
        raise ValidationError(f"Unknown webhook events: {', '.join(unknown)}", {"events": unknown})


def create_webhook(data: dict, user_id: Optional[str] = None) -> dict:
    url = data.get("url") or ""
    if not url.startswith(("http://", "https://")):
        raise ValidationError("Webhook URL must start with http:// or https://")
    _validate_events(data.get("events"))

    now = now_iso()
    result = get_db().insert("webhooks", {
        "name": data.get("name"),
        "description": data.get("description"),
        "url": url,
        "secret": generate_secret(),
        "events": list(data["events"]),
        "headers": data.get("headers") or {},
        "is_active": True,
        "retry_enabled": data.get("retry_enabled") is not False,
        "max_retries": data.get("max_retries") or 3,
        "timeout_seconds": data.get("timeout_seconds") or WEBHOOK_DEFAULT_TIMEOUT_SECONDS,
        "api_key": data.get("api_key"),
        "created_by": user_id,
        "created_at": now,
        "updated_at": now,
    })
    if not result["success"]:
        raise DatabaseError("Failed to create webhook", {"error": result["error"]})

    webhook = result["data"]
    logger.info(f"Webhook created | id={webhook.get('id')} | url={sanitize_url(url)} | events={webhook['events']}")
    return webhook


def get_webhooks() -> List[dict]:
    result = get_db().select("webhooks", order="created_at.desc")
    if not result["success"]:
        raise DatabaseError("Failed to get webhooks", {"error": result["error"]})
    return rows(result)


def get_webhook(webhook_id: str) -> Optional[dict]:
    return get_db().select_one("webhooks", {"id": webhook_id})


def update_webhook(webhook_id: str, updates: dict) -> dict:
    if "events" in updates:
        _validate_events(updates["events"])
    values = compact({k: updates.get(k) for k in UPDATABLE_FIELDS})
    values["updated_at"] = now_iso()

    result = get_db().update("webhooks", values, {"id": webhook_id})
    if not result["success"]:
        raise DatabaseError("Failed to update webhook", {"error": result["error"]})
    updated = rows(result)
    if not updated:
        raise NotFoundError(f"Webhook {webhook_id} not found")
    return updated[0]


def delete_webhook(webhook_id: str) -> None:
    result = get_db().delete("webhooks", {"id": webhook_id})
    if not result["success"]:
        raise DatabaseError("Failed to delete webhook", {"error": result["error"]})


def set_webhook_active(webhook_id: str, is_active: bool) -> dict:
    return update_webhook(webhook_id, {"is_active": is_active})


def get_webhooks_by_event(event_type: str) -> List[dict]:
    """Active webhooks subscribed to the event."""
    result = get_db().select("webhooks", {"is_active": True})
    if not result["success"]:
        raise DatabaseError("Failed to get webhooks by event", {"error": result["error"]})
    return [w for w in rows(result) if event_type in (w.get("events") or [])]


def get_webhook_events(event_type: Optional[str] = None, limit: int = 100) -> List[dict]:
    filters = {"event_type": event_type} if event_type else None
    return rows(get_db().select("webhook_events", filters, order="triggered_at.desc", limit=limit))


def get_delivery_logs(webhook_id: str, limit: int = 100) -> List[dict]:
    return rows(get_db().select("webhook_deliveries", {"webhook_id": webhook_id},
                                order="created_at.desc", limit=limit))


def get_failed_deliveries(webhook_id: str) -> List[dict]:
    """Failures still waiting for a replay."""
    return rows(get_db().select(
        "webhook_failures",
        {"webhook_id": webhook_id, "can_replay": True, "replayed_at": None},
        order="created_at.desc",
    ))


# ═══════════════════════════════════════════
# DELIVERY
# ═══════════════════════════════════════════

def build_payload(event: dict) -> dict:
    return {
        "id": event["id"],
        "event": event["event_type"],
        "created_at": event.get("triggered_at") or event.get("created_at") or now_iso(),
        "data": event.get("event_data"),
    }


def next_retry_at(attempt_number: int, config: RetryConfig = None):
    config = config or retry_config
    delay_ms = min(
        config.initial_delay_ms * (config.backoff_multiplier ** (attempt_number - 1)),
        config.max_delay_ms,
    )
    return utc_now() + timedelta(milliseconds=delay_ms)


def error_code(status: str, http_status: Optional[int] = None, connection_failed: bool = False) -> str:
    if status == "timeout":
        return ERROR_TIMEOUT
    if connection_failed:
        return ERROR_CONNECTION
    if http_status:
        if http_status in (401, 403):
            return ERROR_AUTH
        if http_status == 429:
            return ERROR_RATE_LIMITED
        if 400 <= http_status < 500:
            return ERROR_CLIENT
        if http_status >= 500:
            return ERROR_SERVER
    return ERROR_UNKNOWN


def send_webhook_request(webhook: dict, payload: dict) -> Dict[str, Any]:
    """POST the signed payload. Never raises; the outcome is in the returned dict."""
    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)
    headers = {
        "Content-Type": "application/json",
        "X-Webhook-Signature": generate_signature(body, webhook.get("secret") or ""),
        "X-Webhook-Timestamp": str(int(time.time())),
        "X-Webhook-ID": str(webhook.get("id")),
        "User-Agent": WEBHOOK_USER_AGENT,
    }
    headers.update(webhook.get("headers") or {})
    if webhook.get("api_key"):
        headers["Authorization"] = f"Bearer {webhook['api_key']}"

    url = webhook["url"]
    start_time = time.time()
    logger.info(f"Webhook request: POST {sanitize_url(url)} | event={payload.get('event')}")
    try:
        response = requests.post(
            url,
            data=body.encode("utf-8"),
            headers=headers,
            timeout=webhook.get("timeout_seconds") or WEBHOOK_DEFAULT_TIMEOUT_SECONDS,
        )
    except requests.exceptions.Timeout as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.warning(f"Webhook timeout: {sanitize_url(url)} | response_time_ms={duration_ms}")
        return {"status": "timeout", "http_status": None, "error": str(e),
                "connection_failed": False, "duration_ms": duration_ms}
    except requests.exceptions.RequestException as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.warning(f"Webhook connection failed: {sanitize_url(url)} | error={str(e)}")
        return {"status": "failed", "http_status": None, "error": str(e),
                "connection_failed": isinstance(e, requests.exceptions.ConnectionError),
                "duration_ms": duration_ms}

    duration_ms = int((time.time() - start_time) * 1000)
    logger.info(
        f"Webhook response: POST {sanitize_url(url)} | status={response.status_code} | "
        f"response_time_ms={duration_ms}"
    )
    return {
        "status": "success" if 200 <= response.status_code < 300 else "failed",
        "http_status": response.status_code,
        "response_body": response.text[:2000],
        "response_headers": dict(response.headers),
        "error": None,
        "connection_failed": False,
        "duration_ms": duration_ms,
    }


def _record_delivery(webhook_id: str, event_id: str, attempt_number: int, outcome: dict,
                     max_attempts: int) -> dict:
    should_retry = outcome["status"] != "success" and attempt_number < max_attempts
    result = get_db().insert("webhook_deliveries", {
        "webhook_id": webhook_id,
        "event_id": event_id,
        "attempt_number": attempt_number,
        "status": outcome["status"],
        "http_status_code": outcome.get("http_status"),
        "response_body": outcome.get("response_body"),
        "response_headers": outcome.get("response_headers"),
        "error_message": outcome.get("error"),
        "duration_ms": outcome.get("duration_ms"),
        "next_retry_at": next_retry_at(attempt_number).isoformat() if should_retry else None,
        "delivered_at": now_iso() if outcome["status"] == "success" else None,
        "created_at": now_iso(),
    })
    if not result["success"]:
        raise DatabaseError("Failed to record delivery", {"error": result["error"]})
    return result["data"]


def _record_failure(webhook_id: str, event_id: str, delivery_id: str, attempts: int, reason: str) -> None:
    result = get_db().insert("webhook_failures", {
        "webhook_id": webhook_id,
        "event_id": event_id,
        "delivery_id": delivery_id,
        "failure_reason": reason,
        "attempts_count": attempts,
        "last_attempt_at": now_iso(),
        "can_replay": True,
        "replayed_at": None,
        "created_at": now_iso(),
    })
    if not result["success"]:
        logger.error(f"Failed to record webhook failure for {webhook_id}: {result['error']}")


def deliver_webhook(webhook: dict, event: dict, attempt_number: int = 1) -> dict:
    """Send one attempt, record it, and park it in webhook_failures after the last attempt."""
    outcome = send_webhook_request(webhook, build_payload(event))
    max_attempts = max_attempts_for(webhook)
    delivery = _record_delivery(webhook["id"], event["id"], attempt_number, outcome, max_attempts)

    if outcome["status"] != "success" and attempt_number >= max_attempts:
        code = error_code(outcome["status"], outcome.get("http_status"), outcome.get("connection_failed", False))
        detail = outcome.get("error") or f"HTTP {outcome.get('http_status')}"
        _record_failure(webhook["id"], event["id"], delivery.get("id"), attempt_number, f"{code}: {detail}")
        logger.error(f"Webhook gave up | webhook={webhook['id']} | event={event['id']} | {code}")

    get_db().update("webhooks", {"last_triggered_at": now_iso()}, {"id": webhook["id"]})
    return delivery


def trigger_event(event_type: str, data: Any, resource_id: Optional[str] = None,
                  resource_type: Optional[str] = None) -> dict:
    """Record the event and deliver it to every active subscribed webhook."""
    result = get_db().insert("webhook_events", {
        "event_type": event_type,
        "event_data": data,
        "resource_id": resource_id,
        "resource_type": resource_type,
        "triggered_at": now_iso(),
        "created_at": now_iso(),
    })
    if not result["success"]:
        raise DatabaseError("Failed to create event", {"error": result["error"]})
    event = result["data"]

    deliveries = []
    for webhook in get_webhooks_by_event(event_type):
        try:
            deliveries.append(deliver_webhook(webhook, event))
        except DatabaseError as e:
            logger.error(f"Failed to deliver webhook {webhook.get('id')}: {e.message}")

    logger.info(f"Event triggered: {event_type} | resource={resource_id} | deliveries={len(deliveries)}")
    return {"event": event, "deliveries": deliveries}


def process_retry_queue() -> int:
    """Retry failed or timed-out deliveries whose next_retry_at has passed. Returns how many were retried."""
    db = get_db()
    result = db.select(
        "webhook_deliveries",
        {"status": ("in", list(RETRYABLE_STATUSES)), "next_retry_at": ("lte", now_iso())},
        order="next_retry_at",
        limit=WEBHOOK_RETRY_BATCH_SIZE,
    )
    if not result["success"]:
        raise DatabaseError("Failed to get retry queue", {"error": result["error"]})

    processed = 0
    for delivery in rows(result):
        if not delivery.get("next_retry_at"):
            continue
        webhook = db.select_one("webhooks", {"id": delivery["webhook_id"]})
        event = db.select_one("webhook_events", {"id": delivery["event_id"]})
        if not webhook or not event:
            continue
        if not webhook.get("is_active") or not webhook.get("retry_enabled"):
            continue

        # Clear the schedule so this attempt is not picked up twice
        db.update("webhook_deliveries", {"next_retry_at": None}, {"id": delivery["id"]})
        try:
            deliver_webhook(webhook, event, int(delivery.get("attempt_number") or 1) + 1)
            processed += 1
        except DatabaseError as e:
            logger.error(f"Failed to retry delivery {delivery['id']}: {e.message}")

    logger.info(f"Webhook retry queue processed | retried={processed}")
    return processed


def replay_failed_event(failure_id: str) -> dict:
    db = get_db()
    failure = db.select_one("webhook_failures", {"id": failure_id})
    if not failure:
        raise NotFoundError(f"Webhook failure {failure_id} not found")
    webhook = db.select_one("webhooks", {"id": failure["webhook_id"]})
    event = db.select_one("webhook_events", {"id": failure["event_id"]})
    if not webhook or not event:
        raise NotFoundError("Webhook or event for this failure no longer exists")

    delivery = deliver_webhook(webhook, event, 1)
    db.update("webhook_failures", {"replayed_at": now_iso()}, {"id": failure_id})
    return delivery


def send_test_event(webhook_id: str) -> dict:
    webhook = get_webhook(webhook_id)
    if not webhook:
        raise NotFoundError(f"Webhook {webhook_id} not found")

    event = {
        "id": str(uuid.uuid4()),
        "event_type": "order.created",
        "event_data": {"test": True, "message": "This is a test webhook event", "timestamp": now_iso()},
        "triggered_at": now_iso(),
    }
    outcome = send_webhook_request(webhook, build_payload(event))
    return {
        "status": outcome["status"],
        "http_status_code": outcome.get("http_status"),
        "error_message": outcome.get("error"),
        "duration_ms": outcome.get("duration_ms"),
    }
