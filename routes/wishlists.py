"""
Wishlist endpoints, including public share links.
"""

from flask import Blueprint, request

from errors import DatabaseError, NotFoundError, ValidationError
from services import wishlist_service
from . import json_body, number_field, ok

wishlists_bp = Blueprint("wishlists", __name__, url_prefix="/wishlists")


def _query(name: str) -> str:
    value = request.args.get(name)
    if not value:
        raise ValidationError(f"{name} is required")
    return value


@wishlists_bp.route("", methods=["GET"])
def list_wishlists():
    return ok(wishlist_service.get_user_wishlists(_query("user_id"), _query("customer_email")))


@wishlists_bp.route("", methods=["POST"])
def create():
    body = json_body("user_id", "customer_email", "wishlist_name")
    wishlist = wishlist_service.create_wishlist(body["user_id"], body)
    if wishlist is None:
        raise DatabaseError("Failed to create wishlist")
    return ok(wishlist, 201)


@wishlists_bp.route("/shared/<token>", methods=["GET"])
def shared(token):
    wishlist = wishlist_service.get_shared_wishlist(token)
    if wishlist is None:
        raise NotFoundError("Shared wishlist not found or link expired")
    return ok(wishlist)


@wishlists_bp.route("/alerts", methods=["GET"])
def price_drop_alerts():
    threshold = request.args.get("threshold", 10, type=float)
    return ok(wishlist_service.get_price_drop_alerts(_query("user_id"), threshold))


@wishlists_bp.route("/preferences", methods=["GET"])
def preferences():
    prefs = wishlist_service.get_wishlist_preferences(_query("customer_email"))
    return ok(prefs or dict(wishlist_service.DEFAULT_PREFERENCES))


@wishlists_bp.route("/preferences", methods=["PUT"])
def save_preferences():
    body = json_body("user_id", "customer_email")
    prefs = wishlist_service.update_wishlist_preferences(body["user_id"], body["customer_email"], body)
    if prefs is None:
        raise DatabaseError("Failed to save wishlist preferences")
    return ok(prefs)


@wishlists_bp.route("/<wishlist_id>", methods=["GET"])
def get_one(wishlist_id):
    wishlist = wishlist_service.get_wishlist_with_items(wishlist_id)
    if wishlist is None:
        raise NotFoundError(f"Wishlist {wishlist_id} not found")
    return ok(wishlist)


@wishlists_bp.route("/<wishlist_id>", methods=["DELETE"])
def delete(wishlist_id):
    if not wishlist_service.delete_wishlist(wishlist_id):
        raise DatabaseError(f"Failed to delete wishlist {wishlist_id}")
    return ok({"id": wishlist_id, "deleted": True})


@wishlists_bp.route("/<wishlist_id>/visibility", methods=["PUT"])
def visibility(wishlist_id):
    body = json_body()
    if not isinstance(body.get("is_public"), bool):
        raise ValidationError("is_public must be true or false")
    if not wishlist_service.update_wishlist_visibility(wishlist_id, body["is_public"]):
        raise DatabaseError(f"Failed to update wishlist {wishlist_id}")
    return ok({"id": wishlist_id, "is_public": body["is_public"]})


@wishlists_bp.route("/<wishlist_id>/items", methods=["POST"])
def add_item(wishlist_id):
    body = json_body("user_id", "product_id", "product_name", "price_at_added")
    item = wishlist_service.add_wishlist_item(body["user_id"], wishlist_id, body)
    if item is None:
        raise DatabaseError("Failed to add wishlist item")
    return ok(item, 201)


@wishlists_bp.route("/<wishlist_id>/items/<item_id>", methods=["DELETE"])
def remove_item(wishlist_id, item_id):
    if not wishlist_service.remove_wishlist_item(_query("user_id"), wishlist_id, item_id):
        raise DatabaseError(f"Failed to remove wishlist item {item_id}")
    return ok({"id": item_id, "deleted": True})


@wishlists_bp.route("/items/<item_id>/price", methods=["POST"])
def track_price(item_id):
    body = json_body("user_id", "new_price")
    record = wishlist_service.track_price_change(body["user_id"], item_id, number_field(body, "new_price"))
    if record is None:
        raise NotFoundError(f"Wishlist item {item_id} not found")
    return ok(record, 201)


@wishlists_bp.route("/items/<item_id>/price-history", methods=["GET"])
def price_history(item_id):
    return ok(wishlist_service.get_item_price_history(item_id))


@wishlists_bp.route("/<wishlist_id>/share", methods=["POST"])
def share(wishlist_id):
    body = json_body("user_id")
    record = wishlist_service.share_wishlist(body["user_id"], wishlist_id, body)
    if record is None:
        raise DatabaseError("Failed to share wishlist")
    return ok(record, 201)


@wishlists_bp.route("/<wishlist_id>/analytics", methods=["GET"])
def analytics(wishlist_id):
    return ok(wishlist_service.get_wishlist_analytics(wishlist_id, request.args.get("days", 30, type=int)))
