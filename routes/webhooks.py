"""
Webhook registration, delivery log and retry endpoints.
"""

from flask import Blueprint, request

from errors import NotFoundError, ValidationError
from services import webhook_service
from . import json_body, ok

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/webhooks")


def _public(webhook: dict) -> dict:
    """Registration without its secret and api key."""
    return {k: v for k, v in webhook.items() if k not in ("secret", "api_key")}


@webhooks_bp.route("", methods=["GET"])
def list_webhooks():
    return ok([_public(w) for w in webhook_service.get_webhooks()])


@webhooks_bp.route("", methods=["POST"])
def create():
    body = json_body("url", "events")
    webhook = webhook_service.create_webhook(body, body.get("user_id"))
    # The secret is shown once, at creation
    return ok(webhook, 201)


@webhooks_bp.route("/events", methods=["GET"])
def events():
    limit = request.args.get("limit", 100, type=int)
    return ok(webhook_service.get_webhook_events(request.args.get("event_type"), limit),
              available_events=list(webhook_service.WEBHOOK_EVENTS))


@webhooks_bp.route("/trigger", methods=["POST"])
def trigger():
    body = json_body("event_type")
    if body["event_type"] not in webhook_service.WEBHOOK_EVENTS:
        raise ValidationError(f"Unknown event type: {body['event_type']}")
    result = webhook_service.trigger_event(
        body["event_type"], body.get("data") or {}, body.get("resource_id"), body.get("resource_type"),
    )
    return ok(result, 201)


@webhooks_bp.route("/retry", methods=["POST"])
def retry():
    return ok({"retried": webhook_service.process_retry_queue()})


@webhooks_bp.route("/failures/<failure_id>/replay", methods=["POST"])
def replay(failure_id):
    return ok(webhook_service.replay_failed_event(failure_id))


@webhooks_bp.route("/verify", methods=["POST"])
def verify():
    body = json_body("payload", "signature", "secret")
    return ok({"valid": webhook_service.verify_signature(body["payload"], body["signature"], body["secret"])})


@webhooks_bp.route("/<webhook_id>", methods=["GET"])
def get_one(webhook_id):
    webhook = webhook_service.get_webhook(webhook_id)
    if webhook is None:
        raise NotFoundError(f"Webhook {webhook_id} not found")
    return ok(_public(webhook))


@webhooks_bp.route("/<webhook_id>", methods=["PATCH"])
def update(webhook_id):
    return ok(_public(webhook_service.update_webhook(webhook_id, json_body())))


@webhooks_bp.route("/<webhook_id>", methods=["DELETE"])
def delete(webhook_id):
    webhook_service.delete_webhook(webhook_id)
    return ok({"id": webhook_id, "deleted": True})


@webhooks_bp.route("/<webhook_id>/test", methods=["POST"])
def test(webhook_id):
    return ok(webhook_service.send_test_event(webhook_id))


@webhooks_bp.route("/<webhook_id>/deliveries", methods=["GET"])
def deliveries(webhook_id):
    limit = request.args.get("limit", 100, type=int)
    return ok(webhook_service.get_delivery_logs(webhook_id, limit))


@webhooks_bp.route("/<webhook_id>/failures", methods=["GET"])
def failures(webhook_id):
    return ok(webhook_service.get_failed_deliveries(webhook_id))
