"""
Flask Blueprints, one per subsystem.

Errors raised by the services are turned into
    {"success": false, "error": "...", "error_type": "..."}
with the exception's HTTP status code.
"""

from flask import jsonify, request

from errors import OmniSalesError, ValidationError


def error_response(error: OmniSalesError):
    body = {"success": False, "error": error.message, "error_type": type(error).__name__}
    if error.details:
        body["details"] = error.details
    return jsonify(body), error.status_code


def ok(data=None, status: int = 200, **extra):
    body = {"success": True, "data": data}
    body.update(extra)
    return jsonify(body), status


def json_body(*required: str) -> dict:
    """Request JSON as a dict; raises ValidationError when missing or lacking required fields."""
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    missing = [name for name in required if body.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", {"missing": missing})
    return body


def number_field(body: dict, name: str, cast=float):
    """body[name] converted with cast; a ValidationError (400) when it is not a number."""
    value = body.get(name)
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number", {"field": name})
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number", {"field": name})


def register_blueprints(app) -> None:
    from .chat import chat_bp
    from .pricing import pricing_bp
    from .shipping import shipping_bp
    from .returns import returns_bp
    from .wishlists import wishlists_bp
    from .tickets import tickets_bp
    from .webhooks import webhooks_bp

    for bp in (chat_bp, pricing_bp, shipping_bp, returns_bp, wishlists_bp, tickets_bp, webhooks_bp):
        app.register_blueprint(bp)
    app.register_error_handler(OmniSalesError, error_response)


__all__ = ["error_response", "ok", "json_body", "number_field", "register_blueprints"]
