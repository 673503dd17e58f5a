"""Services package - exports all service modules."""

from . import pricing_service
from . import returns_service
from . import wishlist_service
from . import webhook_service
from . import ticket_service
from .intent_actions import execute_intent_action, FAQ_ANSWERS
from .shipping_manager import (
    ShippingManager,
    get_shipping_manager,
    reset_shipping_manager,
)

__all__ = [
    "pricing_service",
    "returns_service",
    "wishlist_service",
    "webhook_service",
    "ticket_service",
    "execute_intent_action",
    "FAQ_ANSWERS",
    "ShippingManager",
    "get_shipping_manager",
    "reset_shipping_manager",
]
