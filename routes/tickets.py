"""
Support ticket endpoints.
"""

from flask import Blueprint, request

from errors import DatabaseError, NotFoundError
from services import ticket_service
from . import json_body, ok

tickets_bp = Blueprint("tickets", __name__, url_prefix="/tickets")

_LIST_FILTERS = ("user_id", "status", "priority", "assigned_agent_id", "customer_id", "category", "search")


def _with_sla(ticket: dict) -> dict:
    return {
        **ticket,
        "sla_breached": ticket_service.is_sla_breached(ticket),
        "seconds_until_sla_breach": ticket_service.time_until_sla_breach(ticket),
    }


@tickets_bp.route("", methods=["GET"])
def list_tickets():
    filters = {k: request.args.get(k) for k in _LIST_FILTERS if request.args.get(k)}
    return ok([_with_sla(t) for t in ticket_service.list_tickets(filters)])


@tickets_bp.route("", methods=["POST"])
def create():
    body = json_body("subject", "customer_email")
    return ok(ticket_service.create_ticket(body, body.get("user_id")), 201)


@tickets_bp.route("/from-conversation/<conversation_id>", methods=["POST"])
def from_conversation(conversation_id):
    body = request.get_json(silent=True) or {}
    return ok(ticket_service.create_ticket_from_conversation(conversation_id, body, body.get("user_id")), 201)


@tickets_bp.route("/overdue", methods=["GET"])
def overdue():
    return ok([_with_sla(t) for t in ticket_service.get_overdue_tickets()])


@tickets_bp.route("/sla-metrics", methods=["GET"])
def sla_metrics():
    filters = {k: request.args.get(k) for k in _LIST_FILTERS if request.args.get(k)}
    return ok(ticket_service.get_sla_metrics(filters))


@tickets_bp.route("/bulk-status", methods=["POST"])
def bulk_status():
    body = json_body("ticket_ids", "status")
    updated = ticket_service.bulk_update_status(list(body["ticket_ids"]), body["status"])
    return ok(updated, requested=len(body["ticket_ids"]), updated=len(updated))


@tickets_bp.route("/agents/<agent_id>", methods=["GET"])
def agent_tickets(agent_id):
    return ok(ticket_service.get_agent_tickets(agent_id, request.args.get("status")))


@tickets_bp.route("/customers/<customer_id>", methods=["GET"])
def customer_tickets(customer_id):
    return ok(ticket_service.get_customer_tickets(customer_id))


@tickets_bp.route("/<ticket_id>", methods=["GET"])
def get_one(ticket_id):
    ticket = ticket_service.get_ticket(ticket_id)
    if ticket is None:
        raise NotFoundError(f"Ticket {ticket_id} not found")
    return ok({**_with_sla(ticket), "notes": ticket_service.get_ticket_notes(ticket_id)})


@tickets_bp.route("/<ticket_id>/status", methods=["PUT"])
def set_status(ticket_id):
    return ok(ticket_service.update_ticket_status(ticket_id, json_body("status")["status"]))


@tickets_bp.route("/<ticket_id>/priority", methods=["PUT"])
def set_priority(ticket_id):
    return ok(ticket_service.update_ticket_priority(ticket_id, json_body("priority")["priority"]))


@tickets_bp.route("/<ticket_id>/assign", methods=["POST"])
def assign(ticket_id):
    return ok(ticket_service.assign_ticket(ticket_id, json_body("agent_id")["agent_id"]))


@tickets_bp.route("/<ticket_id>/notes", methods=["POST"])
def add_note(ticket_id):
    note = ticket_service.add_ticket_note(ticket_id, json_body("message"))
    if note is None:
        raise DatabaseError(f"Failed to add note to ticket {ticket_id}")
    return ok(note, 201)
