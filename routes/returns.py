"""
Returns & refunds endpoints.
"""

from flask import Blueprint, request

from errors import DatabaseError, NotFoundError, ValidationError
from services import returns_service
from . import json_body, ok

returns_bp = Blueprint("returns", __name__, url_prefix="/returns")


def _required(value, action: str):
    if value is None or value is False:
        raise DatabaseError(f"Failed to {action}")
    return value


@returns_bp.route("/reasons", methods=["GET"])
def reasons():
    return ok(returns_service.get_return_reasons())


@returns_bp.route("", methods=["GET"])
def list_returns():
    user_id = request.args.get("user_id")
    if not user_id:
        raise ValidationError("user_id is required")
    return ok(returns_service.get_returns(user_id, request.args.get("status")))


@returns_bp.route("", methods=["POST"])
def initiate():
    body = json_body("user_id", "order_id")
    return ok(_required(returns_service.initiate_return(body["user_id"], body), "initiate return"), 201)


@returns_bp.route("/statistics", methods=["GET"])
def statistics():
    user_id = request.args.get("user_id")
    if not user_id:
        raise ValidationError("user_id is required")
    return ok(_required(returns_service.get_return_statistics(user_id), "compute return statistics"))


@returns_bp.route("/analytics", methods=["GET"])
def analytics():
    user_id = request.args.get("user_id")
    if not user_id:
        raise ValidationError("user_id is required")
    return ok(returns_service.get_return_analytics(user_id, request.args.get("days", 30, type=int)))


@returns_bp.route("/analytics", methods=["POST"])
def record_analytics():
    body = json_body("user_id")
    return ok(_required(returns_service.record_return_analytics(body["user_id"], body), "record analytics"), 201)


@returns_bp.route("/refunds", methods=["GET"])
def refunds():
    user_id = request.args.get("user_id")
    if not user_id:
        raise ValidationError("user_id is required")
    return ok(returns_service.get_refund_transactions(user_id))


@returns_bp.route("/<return_id>", methods=["GET"])
def get_one(return_id):
    record = returns_service.get_return(return_id)
    if record is None:
        raise NotFoundError(f"Return {return_id} not found")
    return ok({
        **record,
        "items": returns_service.get_return_items(return_id),
        "shipping": returns_service.get_return_shipping(return_id),
        "refund": returns_service.get_refund_transaction(return_id),
    })


@returns_bp.route("/<return_id>/authorize", methods=["POST"])
def authorize(return_id):
    body = json_body("user_id")
    _required(returns_service.authorize_return(body["user_id"], return_id, body.get("authorization_code")),
              "authorize return")
    return ok(returns_service.get_return(return_id))


@returns_bp.route("/<return_id>/status", methods=["PUT"])
def set_status(return_id):
    body = json_body("status")
    _required(returns_service.update_return_status(return_id, body["status"]), "update return status")
    return ok({"id": return_id, "return_status": body["status"]})


@returns_bp.route("/<return_id>/approve", methods=["POST"])
def approve(return_id):
    body = request.get_json(silent=True) or {}
    _required(returns_service.approve_return(
        return_id, body.get("refund_amount"), body.get("restocking_fee_percentage"),
    ), "approve return")
    return ok(returns_service.get_return(return_id))


@returns_bp.route("/<return_id>/reject", methods=["POST"])
def reject(return_id):
    body = json_body("reason")
    _required(returns_service.reject_return(return_id, body["reason"]), "reject return")
    return ok({"id": return_id, "return_status": "rejected"})


@returns_bp.route("/<return_id>/items", methods=["GET"])
def items(return_id):
    return ok(returns_service.get_return_items(return_id))


@returns_bp.route("/<return_id>/items", methods=["POST"])
def add_item(return_id):
    body = json_body("product_id", "quantity_returned")
    return ok(_required(returns_service.add_return_item(return_id, body), "add return item"), 201)


@returns_bp.route("/items/<item_id>/condition", methods=["PUT"])
def item_condition(item_id):
    body = json_body("condition")
    _required(returns_service.update_return_item_condition(item_id, body["condition"]), "update item condition")
    return ok({"id": item_id, "item_condition": body["condition"]})


@returns_bp.route("/items/<item_id>/inspections", methods=["GET"])
def inspections(item_id):
    return ok(returns_service.get_return_inspections(item_id))


@returns_bp.route("/items/<item_id>/inspections", methods=["POST"])
def inspect(item_id):
    body = json_body("inspection_result")
    return ok(_required(returns_service.create_return_inspection(item_id, body), "create inspection"), 201)


@returns_bp.route("/<return_id>/refund", methods=["POST"])
def refund(return_id):
    body = json_body("user_id", "refund_amount")
    return ok(_required(returns_service.process_refund(body["user_id"], return_id, body), "process refund"), 201)


@returns_bp.route("/<return_id>/shipping", methods=["POST"])
def setup_shipping(return_id):
    body = json_body()
    return ok(_required(returns_service.setup_return_shipping(return_id, body), "set up return shipping"), 201)


@returns_bp.route("/shipping/<return_shipping_id>", methods=["PATCH"])
def update_shipping(return_shipping_id):
    _required(returns_service.update_return_shipping(return_shipping_id, json_body()), "update return shipping")
    return ok({"id": return_shipping_id})
