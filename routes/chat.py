"""
Chatbot endpoints as a Flask Blueprint.
"""

from flask import Blueprint, request, jsonify

from chat_logger import get_logger, sanitize_log_string
from chatbot_engine import get_chatbot_engine
from chat_security import perform_security_check
from errors import NotFoundError, OmniSalesError
from intent_classifier import detect_intent
from models import ChatRequest
from services import ticket_service
from . import json_body, ok

logger = get_logger("omnisales")

chat_bp = Blueprint("chat", __name__)


@chat_bp.route("/chat", methods=["POST"])
def chat():
    """
    Main chat endpoint.

    Request:
        POST /chat
        {
            "message": "Where is my order ORD123456?",
            "conversation_id": "conv_xxx",
            "customer_id": "cust_42",
            "context": {"customer_info": {...}, "order_history": [...]}
        }

    Response:
        {
            "success": true,
            "data": {"conversation_id", "message_id", "response", "intent",
                     "intent_confidence", "entities", "suggestions",
                     "escalated", "escalation_reason", "metadata"},
            "ticket_id": "..."          # only when escalated
        }
    """
    body = json_body("message")
    message = str(body["message"])
    customer_id = body.get("customer_id")
    conversation_id = body.get("conversation_id")
    ip = request.headers.get("X-Forwarded-For", request.remote_addr or "").split(",")[0].strip()

    logger.info(
        f'POST /chat | conversation={conversation_id} | customer_id={customer_id} | '
        f'message="{sanitize_log_string(message[:100])}"'
    )

    security = perform_security_check(message, str(customer_id or ip or "anonymous"), ip or None)
    if not security.allowed:
        status = 429 if security.rate_limited else 400
        logger.warning(f"POST /chat | rejected | status={status} | warnings={security.warnings}")
        return jsonify({
            "success": False,
            "error": security.warnings[0] if security.warnings else "Message rejected",
            "error_type": "RateLimitError" if security.rate_limited else "ValidationError",
            "warnings": security.warnings,
            "rate_limit": security.rate_limit_info,
        }), status

    response = get_chatbot_engine().chat(ChatRequest(
        message=security.sanitized_message,
        conversation_id=conversation_id,
        customer_id=customer_id,
        context=body.get("context") or {},
    ))

    extra = {}
    if response.escalated:
        extra["ticket_id"] = _open_escalation_ticket(response, body)
    return ok(response.to_dict(), **extra)


def _open_escalation_ticket(response, body: dict):
    customer = (body.get("context") or {}).get("customer_info") or {}
    try:
        ticket = ticket_service.create_ticket_from_conversation(response.conversation_id, {
            "subject": "Chat escalation",
            "priority": ticket_service.escalation_priority(response.escalation_reason),
            "category": "chat",
            "customer_id": body.get("customer_id"),
            "customer_name": customer.get("name"),
            "customer_email": customer.get("email"),
            "metadata": {
                "escalation_reason": response.escalation_reason.value if response.escalation_reason else None,
            },
        })
    except OmniSalesError as e:
        logger.error(f"Escalation ticket not created | conversation={response.conversation_id} | {e.message}")
        return None
    return ticket.get("id")


@chat_bp.route("/chat/intent", methods=["POST"])
def chat_intent():
    body = json_body("message")
    result = detect_intent(str(body["message"]), body.get("context") or {})
    return ok(result.to_dict())


@chat_bp.route("/chat/<conversation_id>/history", methods=["GET"])
def chat_history(conversation_id):
    history = get_chatbot_engine().get_conversation_history(conversation_id)
    if not history:
        raise NotFoundError(f"Conversation {conversation_id} not found")
    return ok(history)


@chat_bp.route("/chat/<conversation_id>/history", methods=["DELETE"])
def clear_chat_history(conversation_id):
    get_chatbot_engine().clear_conversation_history(conversation_id)
    return ok({"conversation_id": conversation_id, "cleared": True})


@chat_bp.route("/chat/config", methods=["GET"])
def chat_config():
    return ok(get_chatbot_engine().get_config().to_dict())
