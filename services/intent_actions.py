"""
Intent Actions
===============
Runs the backend lookup behind each detected chatbot intent.

  - order_lookup            -> orders by id, else the customer's latest 5
  - shipping_tracking       -> shipments by tracking number or order id
  - return_request          -> return-window eligibility for an order
  - product_recommendation  -> active products by category or popularity
  - faq                     -> fixed answers
  - refund / account        -> always handed to an agent
"""

from typing import Any, Dict, Optional

from app_config import RETURN_WINDOW_DAYS
from chat_logger import get_logger
from core.helpers import days_between
from db_client import get_db, rows
from models import Intent, EscalationReason, IntentActionResult

logger = get_logger("omnisales")

FAQ_ANSWERS = {
    "shipping": "We offer free shipping on orders over ฿1,500. Standard delivery takes 3-5 business days.",
    "return": f"You can return items within {RETURN_WINDOW_DAYS} days of purchase for a full refund. "
              "Items must be in original condition.",
    "payment": "We accept credit cards, debit cards, PromptPay, and bank transfers.",
    "warranty": "All products come with a 1-year manufacturer warranty.",
    "international": "We ship internationally to most countries. Shipping fees vary by destination.",
}


def execute_intent_action(intent: Intent, entities: Dict[str, Any],
                          customer_id: Optional[str]) -> IntentActionResult:
    """Dispatch to the handler for the intent. Unhandled intents succeed with a generic message."""
    handlers = {
        Intent.ORDER_LOOKUP: _handle_order_lookup,
        Intent.SHIPPING_TRACKING: _handle_shipping_tracking,
        Intent.RETURN_REQUEST: _handle_return_request,
        Intent.REFUND_REQUEST: _handle_refund_request,
        Intent.PRODUCT_RECOMMENDATION: _handle_product_recommendation,
        Intent.ACCOUNT_MANAGEMENT: _handle_account_management,
        Intent.FAQ: _handle_faq,
    }
    handler = handlers.get(intent)
    if handler is None:
        return IntentActionResult(success=True, data={"message": "General inquiry handled"})

    logger.debug(f"Intent action: {intent.value} | entities={entities}")
    return handler(entities, customer_id)


# ─────────────────────────────────────────────
# HANDLERS
# ─────────────────────────────────────────────

def _handle_order_lookup(entities: dict, customer_id: Optional[str]) -> IntentActionResult:
    db = get_db()
    if entities.get("order_id"):
        result = db.select("orders", {"id": entities["order_id"]})
    else:
        result = db.select("orders", {"customer_id": customer_id}, order="created_at.desc", limit=5)

    if not result["success"]:
        return IntentActionResult(
            success=False,
            error=result["error"],
            should_escalate=True,
            escalation_reason=EscalationReason.COMPLEX_ISSUE,
        )

    orders = rows(result)
    message = f"Found {len(orders)} order(s)" if orders else "No orders found"
    return IntentActionResult(success=True, data={"orders": orders, "message": message})


def _handle_shipping_tracking(entities: dict, customer_id: Optional[str]) -> IntentActionResult:
    tracking_number = entities.get("tracking_number")
    order_id = entities.get("order_id")
    if not tracking_number and not order_id:
        return IntentActionResult(success=False, error="Please provide an order ID or tracking number")

    filters = {"tracking_number": tracking_number} if tracking_number else {"order_id": order_id}
    shipment = get_db().select_one("shipments", filters)
    if not shipment:
        return IntentActionResult(success=False, error="Shipment not found")

    return IntentActionResult(
        success=True,
        data={"shipment": shipment, "message": f"Your package is currently {shipment.get('status')}"},
    )


def _handle_return_request(entities: dict, customer_id: Optional[str]) -> IntentActionResult:
    order_id = entities.get("order_id")
    if not order_id:
        return IntentActionResult(success=False, error="Please provide your order ID to initiate a return")

    result = get_db().select("orders", {"id": order_id, "customer_id": customer_id}, limit=1)
    if not result["success"]:
        return IntentActionResult(
            success=False,
            error=result["error"],
            should_escalate=True,
            escalation_reason=EscalationReason.COMPLEX_ISSUE,
        )

    found = rows(result)
    if not found:
        return IntentActionResult(success=False, error="Order not found or does not belong to you")

    order = found[0]
    days_since_order = days_between(order["created_at"])
    if days_since_order > RETURN_WINDOW_DAYS:
        return IntentActionResult(
            success=False,
            error=f"This order is no longer eligible for return (must be within {RETURN_WINDOW_DAYS} days)",
            should_escalate=True,
            escalation_reason=EscalationReason.COMPLEX_ISSUE,
        )

    days_left = RETURN_WINDOW_DAYS - days_since_order
    return IntentActionResult(
        success=True,
        data={
            "order": order,
            "return_eligible": True,
            "days_left": days_left,
            "message": f"Your order is eligible for return. You have {days_left} days left to return.",
        },
    )


def _handle_refund_request(entities: dict, customer_id: Optional[str]) -> IntentActionResult:
    return IntentActionResult(
        success=True,
        data={"message": "Refund requests require agent approval"},
        should_escalate=True,
        escalation_reason=EscalationReason.SENSITIVE_DATA,
    )


def _handle_product_recommendation(entities: dict, customer_id: Optional[str]) -> IntentActionResult:
    category = entities.get("product_category")
    filters = {"is_active": True}
    order = None
    if category:
        filters["category"] = ("ilike", f"*{category}*")
    else:
        order = "view_count.desc"

    result = get_db().select("products", filters, order=order, limit=5)
    if not result["success"]:
        return IntentActionResult(success=False, error=result["error"])

    products = rows(result)
    return IntentActionResult(
        success=True,
        data={"products": products, "message": f"Here are {len(products)} recommended products"},
    )


def _handle_account_management(entities: dict, customer_id: Optional[str]) -> IntentActionResult:
    return IntentActionResult(
        success=True,
        data={"message": "Account changes require verification. Connecting you with an agent."},
        should_escalate=True,
        escalation_reason=EscalationReason.SENSITIVE_DATA,
    )


def _handle_faq(entities: dict, customer_id: Optional[str]) -> IntentActionResult:
    return IntentActionResult(
        success=True,
        data={"faqs": dict(FAQ_ANSWERS), "message": "Here are answers to common questions"},
    )
