"""
Shipping endpoints over the ShippingManager.
"""

from flask import Blueprint, request

from errors import NotFoundError, ValidationError
from models import ShipmentRequest
from services.shipping_manager import get_shipping_manager
from . import json_body, number_field, ok

shipping_bp = Blueprint("shipping", __name__, url_prefix="/shipping")


def _shipment_request(data: dict) -> ShipmentRequest:
    if not isinstance(data, dict):
        raise ValidationError("Each shipment must be a JSON object")
    for field in ("provider", "sender_address", "recipient_address", "parcel"):
        if not data.get(field):
            raise ValidationError(f"Missing required field: {field}")
    return ShipmentRequest.from_dict(data)


@shipping_bp.route("/rates", methods=["POST"])
def rates():
    body = json_body("origin", "destination", "weight")
    weight = number_field(body, "weight")
    quotes = get_shipping_manager().get_rates(
        str(body["origin"]), str(body["destination"]), weight, body.get("dimensions"),
    )
    return ok([q.to_dict() for q in quotes])


@shipping_bp.route("/shipments", methods=["POST"])
def create_shipment():
    shipment = get_shipping_manager().create_shipment(_shipment_request(json_body()))
    return ok(shipment.to_dict(), 201)


@shipping_bp.route("/shipments/bulk", methods=["POST"])
def bulk_create_shipments():
    body = json_body("shipments")
    requests_ = [_shipment_request(s) for s in body["shipments"]]
    shipments = get_shipping_manager().bulk_create_shipments(requests_)
    return ok([s.to_dict() for s in shipments], 201, requested=len(requests_), created=len(shipments))


@shipping_bp.route("/track/<provider>/<tracking_number>", methods=["GET"])
def track(provider, tracking_number):
    return ok(get_shipping_manager().track_shipment(provider, tracking_number).to_dict())


@shipping_bp.route("/shipments/<provider>/<tracking_number>/cancel", methods=["POST"])
def cancel(provider, tracking_number):
    body = request.get_json(silent=True) or {}
    cancelled = get_shipping_manager().cancel_shipment(provider, tracking_number, body.get("reason"))
    return ok({"tracking_number": tracking_number, "cancelled": cancelled})


@shipping_bp.route("/label/<provider>/<tracking_number>", methods=["GET"])
def label(provider, tracking_number):
    return ok({"label_url": get_shipping_manager().get_shipping_label(provider, tracking_number)})


@shipping_bp.route("/providers", methods=["GET"])
def providers():
    return ok(get_shipping_manager().get_available_providers())


@shipping_bp.route("/orders/<order_id>", methods=["GET"])
def shipment_by_order(order_id):
    shipment = get_shipping_manager().get_shipment_by_order_id(order_id)
    if shipment is None:
        raise NotFoundError(f"No shipment for order {order_id}")
    return ok(shipment.to_dict())


@shipping_bp.route("/orders/<order_id>/ship", methods=["POST"])
def ship_order(order_id):
    body = json_body("provider")
    result = get_shipping_manager().create_shipment_for_order(order_id, body["provider"], body.get("service_type"))
    if not result["success"]:
        if result["error"] == "Order not found":
            raise NotFoundError(result["error"])
        raise ValidationError(result["error"], {k: v for k, v in result.items() if k not in ("success", "error")})
    return ok(result, 201)


@shipping_bp.route("/sync", methods=["POST"])
def sync():
    return ok(get_shipping_manager().sync_active_shipments())
