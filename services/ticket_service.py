"""
Support Ticket Service
=======================
Tickets with SLA deadlines, agent assignment and notes. Customer
notifications leave as webhook events (ticket.created, ticket.assigned,
ticket.status_updated, ticket.priority_updated) carrying a rendered
subject/body for the mailer behind the webhook.

Tables:
  - support_tickets        the ticket
  - support_agents         agent_name, agent_email, skills, status (online/away/offline)
  - ticket_conversations   notes and replies on a ticket
"""

from collections import Counter
from datetime import timedelta
from typing import Dict, List, Optional

from app_config import SLA_HOURS
from chat_logger import get_logger
from core.helpers import now_iso, utc_now, parse_timestamp
from core.session import get_history
from db_client import get_db, rows
from errors import DatabaseError, NotFoundError, ValidationError
from models import EscalationReason
from services import webhook_service

logger = get_logger("omnisales")

PRIORITIES = ("urgent", "high", "medium", "low")
STATUSES = ("open", "in_progress", "waiting_customer", "resolved", "closed")
CLOSED_STATUSES = ("resolved", "closed")

# Chat escalation reason -> ticket priority
ESCALATION_PRIORITY = {
    EscalationReason.SENSITIVE_DATA: "high",
    EscalationReason.COMPLEX_ISSUE: "high",
    EscalationReason.USER_REQUEST: "medium",
    EscalationReason.LOW_CONFIDENCE: "low",
}

NOTIFICATION_SUBJECTS = {
    "created": "Support Ticket Created: {subject}",
    "assigned": "Ticket Assigned: {subject}",
    "status_updated": "Ticket Status Updated: {subject}",
    "priority_updated": "Ticket Priority Changed: {subject}",
}


def calculate_sla_due_date(priority: str, created_at=None) -> str:
    start = parse_timestamp(created_at) if created_at else utc_now()
    return (start + timedelta(hours=SLA_HOURS[priority])).isoformat()


def _validate_priority(priority: str) -> None:
    if priority not in PRIORITIES:
        raise ValidationError(f"Invalid priority: {priority}", {"allowed": list(PRIORITIES)})


def _update(ticket_id: str, values: dict) -> dict:
    values["updated_at"] = now_iso()
    result = get_db().update("support_tickets", values, {"id": ticket_id})
    if not result["success"]:
        raise DatabaseError(f"Failed to update ticket {ticket_id}", {"error": result["error"]})
    updated = rows(result)
    if not updated:
        raise NotFoundError(f"Ticket {ticket_id} not found")
    return updated[0]


# ─────────────────────────────────────────────
# NOTIFICATIONS
# ─────────────────────────────────────────────

def render_notification(ticket: dict, event: str) -> Dict[str, str]:
    info = "\n".join(line for line in (
        f"Ticket ID: {ticket.get('id')}",
        f"Subject: {ticket.get('subject')}",
        f"Priority: {ticket.get('priority')}",
        f"Status: {ticket.get('status')}",
        f"Created: {ticket.get('created_at')}",
        f"SLA Due: {ticket['sla_due_at']}" if ticket.get("sla_due_at") else "",
    ) if line)

    if event == "created":
        body = f"Your support ticket has been created.\n\n{info}"
    elif event == "assigned":
        body = f"Your ticket has been assigned to {ticket.get('assigned_agent_name')}.\n\n{info}"
    elif event == "status_updated":
        body = f"Your ticket status has been updated to: {ticket.get('status')}\n\n{info}"
    else:
        body = f"Your ticket priority has been changed to: {ticket.get('priority')}\n\n{info}"

    return {
        "to": ticket.get("customer_email") or "",
        "subject": NOTIFICATION_SUBJECTS[event].format(subject=ticket.get("subject")),
        "body": body,
    }


def _notify(ticket: dict, event: str) -> None:
    """Emit ticket.<event>. A delivery problem never fails the ticket operation."""
    try:
        webhook_service.trigger_event(
            f"ticket.{event}",
            {"ticket": ticket, "notification": render_notification(ticket, event)},
            resource_id=ticket.get("id"),
            resource_type="ticket",
        )
    except DatabaseError as e:
        logger.warning(f"Ticket notification not sent | ticket={ticket.get('id')} | event={event} | {e.message}")


# ─────────────────────────────────────────────
# CREATION
# ─────────────────────────────────────────────

def create_ticket(data: dict, user_id: Optional[str] = None) -> dict:
    """
    Create an open ticket with its SLA deadline.

    Urgent and high priority tickets are assigned straight away to an
    online agent (category skill first, then fewest open tickets).
    """
    if not data.get("subject"):
        raise ValidationError("Ticket subject is required")
    priority = data.get("priority") or "medium"
    _validate_priority(priority)

    now = now_iso()
    result = get_db().insert("support_tickets", {
        "user_id": user_id,
        "conversation_id": data.get("conversation_id"),
        "customer_id": data.get("customer_id"),
        "customer_name": data.get("customer_name"),
        "customer_email": data.get("customer_email"),
        "customer_phone": data.get("customer_phone"),
        "subject": data["subject"],
        "description": data.get("description") or "",
        "category": data.get("category"),
        "priority": priority,
        "status": "open",
        "tags": list(data.get("tags") or []),
        "sla_due_at": calculate_sla_due_date(priority, now),
        "metadata": data.get("metadata") or {},
        "created_at": now,
        "updated_at": now,
    })
    if not result["success"]:
        raise DatabaseError("Failed to create ticket", {"error": result["error"]})

    ticket = result["data"]
    logger.info(f"Ticket created | id={ticket.get('id')} | priority={priority} | customer={ticket.get('customer_id')}")
    _notify(ticket, "created")

    if priority in ("urgent", "high"):
        ticket = _auto_assign(ticket) or ticket
    return ticket


def create_ticket_from_conversation(conversation_id: str, data: dict, user_id: Optional[str] = None) -> dict:
    """Open a ticket whose description carries the chatbot transcript."""
    history = get_history(conversation_id)
    if not history:
        raise NotFoundError(f"Conversation {conversation_id} not found")

    transcript = "\n".join(f"{m['role']}: {m['content']}" for m in history)
    description = data.get("description") or ""
    description = f"{description}\n\nConversation transcript:\n{transcript}".strip()

    intents = [m["intent"] for m in history if m.get("intent")]
    metadata = dict(data.get("metadata") or {})
    metadata.update({"source": "chat", "message_count": len(history), "intents": intents})

    return create_ticket({
        **data,
        "conversation_id": conversation_id,
        "subject": data.get("subject") or "Chat escalation",
        "description": description,
        "metadata": metadata,
    }, user_id)


def escalation_priority(reason: Optional[EscalationReason]) -> str:
    return ESCALATION_PRIORITY.get(reason, "medium")


# ─────────────────────────────────────────────
# RETRIEVAL
# ─────────────────────────────────────────────

def get_ticket(ticket_id: str) -> Optional[dict]:
    return get_db().select_one("support_tickets", {"id": ticket_id})


def list_tickets(filters: Optional[dict] = None) -> List[dict]:
    """Filters: user_id, status, priority, assigned_agent_id, customer_id, category, search."""
    filters = filters or {}
    query = {k: filters[k] for k in (
        "user_id", "status", "priority", "assigned_agent_id", "customer_id", "category",
    ) if filters.get(k)}
    tickets = rows(get_db().select("support_tickets", query, order="created_at.desc"))

    search = (filters.get("search") or "").lower()
    if search:
        tickets = [t for t in tickets if any(
            search in (t.get(field) or "").lower()
            for field in ("subject", "description", "customer_name", "customer_email")
        ) or any(search in tag.lower() for tag in t.get("tags") or [])]
    return tickets


def get_agent_tickets(agent_id: str, status: Optional[str] = None) -> List[dict]:
    return list_tickets({"assigned_agent_id": agent_id, "status": status})


def get_customer_tickets(customer_id: str) -> List[dict]:
    return list_tickets({"customer_id": customer_id})


def get_overdue_tickets() -> List[dict]:
    tickets = rows(get_db().select(
        "support_tickets", {"status": ("not.in", list(CLOSED_STATUSES))}, order="sla_due_at"
    ))
    return [t for t in tickets if is_sla_breached(t)]


# ─────────────────────────────────────────────
# UPDATES
# ─────────────────────────────────────────────

def update_ticket_status(ticket_id: str, status: str) -> dict:
    if status not in STATUSES:
        raise ValidationError(f"Invalid status: {status}", {"allowed": list(STATUSES)})

    values = {"status": status}
    if status == "resolved":
        values["resolved_at"] = now_iso()
    elif status == "closed":
        values["closed_at"] = now_iso()

    ticket = _update(ticket_id, values)
    logger.info(f"Ticket status | id={ticket_id} | status={status}")
    _notify(ticket, "status_updated")
    return ticket


def update_ticket_priority(ticket_id: str, priority: str) -> dict:
    """Change priority; the SLA deadline is recomputed from the original created_at."""
    _validate_priority(priority)
    ticket = get_ticket(ticket_id)
    if not ticket:
        raise NotFoundError(f"Ticket {ticket_id} not found")

    ticket = _update(ticket_id, {
        "priority": priority,
        "sla_due_at": calculate_sla_due_date(priority, ticket.get("created_at")),
    })
    if priority in ("urgent", "high"):
        _notify(ticket, "priority_updated")
    return ticket


def assign_ticket(ticket_id: str, agent_id: str) -> dict:
    agent = get_db().select_one("support_agents", {"id": agent_id})
    if not agent:
        raise NotFoundError(f"Agent {agent_id} not found")

    ticket = _update(ticket_id, {
        "assigned_agent_id": agent["id"],
        "assigned_agent_name": agent.get("agent_name"),
        "status": "in_progress",
    })
    logger.info(f"Ticket assigned | id={ticket_id} | agent={agent_id}")
    _notify(ticket, "assigned")
    return ticket


def _auto_assign(ticket: dict) -> Optional[dict]:
    agents = rows(get_db().select("support_agents", {"status": "online"}))
    if not agents:
        logger.info(f"No online agent for ticket {ticket.get('id')}")
        return None

    category = ticket.get("category")
    skilled = [a for a in agents if category and category in (a.get("skills") or [])]
    candidates = skilled or agents

    open_tickets = rows(get_db().select(
        "support_tickets",
        {"assigned_agent_id": ("in", [a["id"] for a in candidates]),
         "status": ("not.in", list(CLOSED_STATUSES))},
        columns="id,assigned_agent_id",
    ))
    load = Counter(t["assigned_agent_id"] for t in open_tickets)
    agent = min(candidates, key=lambda a: load.get(a["id"], 0))
    return assign_ticket(ticket["id"], agent["id"])


def add_ticket_note(ticket_id: str, note: dict) -> Optional[dict]:
    if not note.get("message"):
        raise ValidationError("Note message is required")
    if not get_ticket(ticket_id):
        raise NotFoundError(f"Ticket {ticket_id} not found")

    result = get_db().insert("ticket_conversations", {
        "ticket_id": ticket_id,
        "sender_type": note.get("sender_type") or "agent",
        "sender_name": note.get("sender_name"),
        "sender_email": note.get("sender_email"),
        "message": note["message"],
        "is_internal": bool(note.get("is_internal", True)),
        "created_at": now_iso(),
    })
    if not result["success"]:
        logger.error(f"Error adding note to ticket {ticket_id}: {result['error']}")
        return None
    return result["data"]


def get_ticket_notes(ticket_id: str, include_internal: bool = True) -> List[dict]:
    filters = {"ticket_id": ticket_id}
    if not include_internal:
        filters["is_internal"] = False
    return rows(get_db().select("ticket_conversations", filters, order="created_at"))


def bulk_update_status(ticket_ids: List[str], status: str) -> List[dict]:
    updated = []
    for ticket_id in ticket_ids:
        try:
            updated.append(update_ticket_status(ticket_id, status))
        except (NotFoundError, DatabaseError) as e:
            logger.error(f"Bulk status update skipped ticket {ticket_id}: {e.message}")
    return updated


# ─────────────────────────────────────────────
# SLA
# ─────────────────────────────────────────────

def is_sla_breached(ticket: dict) -> bool:
    due = parse_timestamp(ticket.get("sla_due_at"))
    if not due or ticket.get("status") in CLOSED_STATUSES:
        return False
    return utc_now() > due


def time_until_sla_breach(ticket: dict) -> Optional[int]:
    """Seconds left before the SLA deadline (0 once passed); None for closed or no deadline."""
    due = parse_timestamp(ticket.get("sla_due_at"))
    if not due or ticket.get("status") in CLOSED_STATUSES:
        return None
    return max(0, int((due - utc_now()).total_seconds()))


def get_sla_metrics(filters: Optional[dict] = None) -> dict:
    tickets = list_tickets(filters)
    within = breached = 0
    response_minutes: List[float] = []
    resolution_hours: List[float] = []

    for ticket in tickets:
        created = parse_timestamp(ticket.get("created_at"))
        resolved = parse_timestamp(ticket.get("resolved_at"))
        due = parse_timestamp(ticket.get("sla_due_at"))
        if resolved and due:
            if resolved <= due:
                within += 1
            else:
                breached += 1
        first_response = parse_timestamp(ticket.get("first_response_at"))
        if first_response and created:
            response_minutes.append((first_response - created).total_seconds() / 60)
        if resolved and created:
            resolution_hours.append((resolved - created).total_seconds() / 3600)

    total = len(tickets)
    return {
        "total": total,
        "within_sla": within,
        "breached_sla": breached,
        "compliance_rate": round(within / total * 100, 2) if total else 0.0,
        "average_response_minutes": round(sum(response_minutes) / len(response_minutes), 2) if response_minutes else 0.0,
        "average_resolution_hours": round(sum(resolution_hours) / len(resolution_hours), 2) if resolution_hours else 0.0,
    }
