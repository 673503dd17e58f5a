"""
Pricing endpoints: dynamic pricing strategies/rules and the rule-engine quote.
"""

from flask import Blueprint, request

from errors import NotFoundError, ValidationError, DatabaseError
from pricing_rules import get_rule_engine, validate_rule
from services import pricing_service
from . import json_body, number_field, ok

pricing_bp = Blueprint("pricing", __name__, url_prefix="/pricing")


# ─────────────────────────────────────────────
# STRATEGIES & RULES
# ─────────────────────────────────────────────

@pricing_bp.route("/strategies", methods=["GET"])
def list_strategies():
    user_id = request.args.get("user_id")
    if not user_id:
        raise ValidationError("user_id is required")
    active_only = request.args.get("active_only", "false").lower() == "true"
    return ok(pricing_service.get_pricing_strategies(user_id, active_only))


@pricing_bp.route("/strategies", methods=["POST"])
def create_strategy():
    body = json_body("user_id", "strategy_name", "strategy_type")
    strategy = pricing_service.create_pricing_strategy(body["user_id"], body)
    if strategy is None:
        raise DatabaseError("Failed to create pricing strategy")
    return ok(strategy, 201)


@pricing_bp.route("/strategies/<strategy_id>", methods=["PATCH"])
def update_strategy(strategy_id):
    if not pricing_service.update_pricing_strategy(strategy_id, json_body()):
        raise DatabaseError(f"Failed to update pricing strategy {strategy_id}")
    return ok({"id": strategy_id})


@pricing_bp.route("/strategies/<strategy_id>", methods=["DELETE"])
def delete_strategy(strategy_id):
    if not pricing_service.delete_pricing_strategy(strategy_id):
        raise DatabaseError(f"Failed to delete pricing strategy {strategy_id}")
    return ok({"id": strategy_id, "deleted": True})


@pricing_bp.route("/strategies/<strategy_id>/rules", methods=["GET"])
def list_rules(strategy_id):
    return ok(pricing_service.get_pricing_rules(strategy_id))


@pricing_bp.route("/strategies/<strategy_id>/rules", methods=["POST"])
def create_rule(strategy_id):
    body = json_body("user_id", "rule_name", "price_adjustment_type")
    if body["price_adjustment_type"] not in pricing_service.ADJUSTMENT_TYPES:
        raise ValidationError(
            f"Invalid price_adjustment_type: {body['price_adjustment_type']}",
            {"allowed": list(pricing_service.ADJUSTMENT_TYPES)},
        )
    rule = pricing_service.create_pricing_rule(body["user_id"], {**body, "strategy_id": strategy_id})
    if rule is None:
        raise DatabaseError("Failed to create pricing rule")
    return ok(rule, 201)


@pricing_bp.route("/rules/<rule_id>", methods=["PATCH"])
def update_rule(rule_id):
    if not pricing_service.update_pricing_rule(rule_id, json_body()):
        raise DatabaseError(f"Failed to update pricing rule {rule_id}")
    return ok({"id": rule_id})


@pricing_bp.route("/rules/<rule_id>", methods=["DELETE"])
def delete_rule(rule_id):
    if not pricing_service.delete_pricing_rule(rule_id):
        raise DatabaseError(f"Failed to delete pricing rule {rule_id}")
    return ok({"id": rule_id, "deleted": True})


# ─────────────────────────────────────────────
# DYNAMIC PRICE, HISTORY, COMPETITORS
# ─────────────────────────────────────────────

@pricing_bp.route("/calculate", methods=["POST"])
def calculate():
    body = json_body("user_id", "product_id", "base_price")
    base_price = number_field(body, "base_price")
    price = pricing_service.calculate_dynamic_price(body["user_id"], body["product_id"], base_price)
    return ok({"product_id": body["product_id"], "base_price": base_price, "final_price": price})


@pricing_bp.route("/products/<product_id>/price", methods=["PUT"])
def set_product_price(product_id):
    body = json_body("user_id", "new_price", "change_reason")
    new_price = number_field(body, "new_price")
    updated = pricing_service.update_product_price(
        body["user_id"], product_id, new_price, body["change_reason"],
        body.get("strategy_id"), body.get("rule_id"),
    )
    if not updated:
        raise NotFoundError(f"Product {product_id} not found or not updated")
    return ok({"product_id": product_id, "price": new_price})


@pricing_bp.route("/products/<product_id>/history", methods=["GET"])
def product_price_history(product_id):
    days = request.args.get("days", 30, type=int)
    return ok(pricing_service.get_price_history(product_id, days))


@pricing_bp.route("/products/<product_id>/competitors", methods=["GET"])
def competitor_prices(product_id):
    return ok(pricing_service.get_competitor_prices(product_id))


@pricing_bp.route("/products/<product_id>/competitors", methods=["POST"])
def add_competitor_price(product_id):
    body = json_body("user_id", "competitor_name", "competitor_price", "our_price")
    record = pricing_service.record_competitor_price(
        body["user_id"], product_id, body["competitor_name"],
        number_field(body, "competitor_price"), number_field(body, "our_price"), body.get("competitor_sku"),
    )
    if record is None:
        raise DatabaseError("Failed to record competitor price")
    return ok(record, 201)


# ─────────────────────────────────────────────
# RULE ENGINE
# ─────────────────────────────────────────────

@pricing_bp.route("/quote", methods=["POST"])
def quote():
    """
    Body: {"item": {product_id, product_name, price, quantity},
           "customer": {id, email, tags, total_orders, total_spent},
           "date": ISO timestamp (optional), "order_total": number (optional)}
    """
    body = json_body("item")
    item = body["item"]
    if not isinstance(item, dict) or item.get("price") is None:
        raise ValidationError("item.price is required")
    item = {**item, "price": number_field(item, "price")}
    if item.get("quantity") is not None:
        item["quantity"] = number_field(item, "quantity", int)
    order_total = number_field(body, "order_total") if body.get("order_total") is not None else None
    calculation = get_rule_engine().calculate_price(
        item, body.get("customer") or {}, body.get("date"), order_total,
    )
    return ok(calculation.to_dict())


@pricing_bp.route("/engine/rules", methods=["GET"])
def engine_rules():
    return ok([r.to_dict() for r in get_rule_engine().get_all_rules()])


@pricing_bp.route("/engine/rules", methods=["POST"])
def engine_create_rule():
    body = json_body()
    errors = validate_rule(body)
    if errors:
        raise ValidationError("Invalid pricing rule", {"errors": errors})
    return ok(get_rule_engine().create_rule(body).to_dict(), 201)


@pricing_bp.route("/engine/rules/<rule_id>", methods=["PATCH"])
def engine_update_rule(rule_id):
    body = json_body()
    errors = validate_rule(body, partial=True)
    if errors:
        raise ValidationError("Invalid pricing rule", {"errors": errors})
    rule = get_rule_engine().update_rule(rule_id, body)
    if rule is None:
        raise NotFoundError(f"Pricing rule {rule_id} not found")
    return ok(rule.to_dict())


@pricing_bp.route("/engine/rules/<rule_id>", methods=["DELETE"])
def engine_delete_rule(rule_id):
    if not get_rule_engine().delete_rule(rule_id):
        raise NotFoundError(f"Pricing rule {rule_id} not found")
    return ok({"id": rule_id, "deleted": True})


@pricing_bp.route("/engine/rules/<rule_id>/toggle", methods=["POST"])
def engine_toggle_rule(rule_id):
    rule = get_rule_engine().toggle_rule(rule_id)
    if rule is None:
        raise NotFoundError(f"Pricing rule {rule_id} not found")
    return ok(rule.to_dict())


@pricing_bp.route("/engine/rules/<rule_id>/duplicate", methods=["POST"])
def engine_duplicate_rule(rule_id):
    body = request.get_json(silent=True) or {}
    rule = get_rule_engine().duplicate_rule(rule_id, body.get("name"))
    if rule is None:
        raise NotFoundError(f"Pricing rule {rule_id} not found")
    return ok(rule.to_dict(), 201)


@pricing_bp.route("/engine/statistics", methods=["GET"])
def engine_statistics():
    return ok(get_rule_engine().rule_statistics())


@pricing_bp.route("/engine/history", methods=["GET"])
def engine_history():
    limit = request.args.get("limit", 100, type=int)
    return ok(get_rule_engine().get_price_history(limit, request.args.get("product_id")))
