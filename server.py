"""
OmniSales Commerce Services API Backend
Runs on port 5010 (PORT env) with one Blueprint per subsystem.

Usage:
    python server.py

Endpoints:
    POST http://localhost:5010/chat
    POST http://localhost:5010/pricing/quote
    POST http://localhost:5010/shipping/rates
    ...  /returns, /wishlists, /tickets, /webhooks
    GET  http://localhost:5010/health
"""

from datetime import datetime, timezone

from dotenv import load_dotenv

load_dotenv()

from flask import Flask, jsonify
from flask_cors import CORS

from app_config import PORT, DEBUG, AI_PROVIDER, AI_MODEL
from chat_logger import get_logger
from routes import register_blueprints
from services import get_shipping_manager

# ─── Initialize logger ───
logger = get_logger("omnisales")


# ═══════════════════════════════════════════
# FLASK APP
# ═══════════════════════════════════════════

def create_app() -> Flask:
    app = Flask(__name__)
    CORS(app)
    register_blueprints(app)

    @app.route("/health", methods=["GET"])
    def health():
        providers = get_shipping_manager().get_available_providers()
        return jsonify({
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "carriers": [p["id"] for p in providers if p["enabled"]],
            "llm": {"provider": AI_PROVIDER, "model": AI_MODEL},
        })

    @app.errorhandler(404)
    def not_found(_error):
        return jsonify({"success": False, "error": "Endpoint not found", "error_type": "NotFoundError"}), 404

    @app.errorhandler(405)
    def method_not_allowed(_error):
        return jsonify({"success": False, "error": "Method not allowed", "error_type": "MethodNotAllowed"}), 405

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Unhandled server error: {error}", exc_info=True)
        return jsonify({"success": False, "error": "Internal server error", "error_type": "InternalError"}), 500

    return app


app = create_app()


if __name__ == "__main__":
    print("=" * 60)
    print("  OmniSales Commerce Services API")
    print("=" * 60)
    print()
    print(f"🚀 Starting server on http://localhost:{PORT}")
    print(f"   POST http://localhost:{PORT}/chat")
    print(f"   POST http://localhost:{PORT}/pricing/quote")
    print(f"   POST http://localhost:{PORT}/shipping/rates")
    print(f"   GET  http://localhost:{PORT}/health")
    print()

    app.run(
        host="0.0.0.0",
        port=PORT,
        debug=DEBUG,
    )
