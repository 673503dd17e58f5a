"""
HTTP client for the hosted Supabase (PostgREST) database.

Every table call goes through /rest/v1/<table> with the service-role key,
mirroring the query builder the dashboard used:

    db.select("orders", {"customer_id": cid}, order="created_at.desc", limit=5)
    db.insert("shipments", {...})
    db.update("returns", {"return_status": "approved"}, {"id": rid})

Filters: {column: value} is equality; {column: (op, value)} uses any
PostgREST operator (neq, gt, gte, lt, lte, ilike, in, is, not.is).
"""

import time
from datetime import datetime, date
from typing import Any, Dict, List, Optional

import requests as http_requests

from app_config import SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY, SUPABASE_TIMEOUT_SECONDS
from chat_logger import get_logger

logger = get_logger("omnisales")


def to_jsonable(value: Any) -> Any:
    """Convert datetimes (also nested in dicts/lists) to ISO strings."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, set)):
        return "(" + ",".join(_format_value(v) for v in value) + ")"
    return str(to_jsonable(value))


def build_filter_params(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Translate a filters dict into PostgREST query params."""
    params = {}
    for column, condition in (filters or {}).items():
        if isinstance(condition, tuple):
            op, value = condition
        elif condition is None:
            op, value = "is", None
        else:
            op, value = "eq", condition
        params[column] = f"{op}.{_format_value(value)}"
    return params


class SupabaseClient:
    """Executes table operations against PostgREST with the service-role key."""

    def __init__(self, url: str = SUPABASE_URL, service_key: str = SUPABASE_SERVICE_ROLE_KEY,
                 timeout: int = SUPABASE_TIMEOUT_SECONDS):
        self.base = f"{url.rstrip('/')}/rest/v1"
        self.timeout = timeout
        self.session = http_requests.Session()
        self.session.headers.update({
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Prefer": "return=representation",
        })

    # ─────────────────────────────────────────────
    # INTERNAL: single request
    # ─────────────────────────────────────────────

    def _request(self, method: str, table: str, params: dict, body: Any = None) -> dict:
        start_time = time.time()
        logger.debug(f"DB request: {method} {table} | params={params}")
        try:
            resp = self.session.request(
                method=method,
                url=f"{self.base}/{table}",
                params=params,
                json=to_jsonable(body) if body is not None else None,
                timeout=self.timeout,
            )
            response_time_ms = int((time.time() - start_time) * 1000)
            resp.raise_for_status()
            data = resp.json() if resp.content else []
            result_count = len(data) if isinstance(data, list) else 1
            logger.info(
                f"DB response: {method} {table} | status={resp.status_code} | "
                f"results={result_count} | response_time_ms={response_time_ms}"
            )
            return {"success": True, "data": data, "error": None}
        except http_requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            body_text = e.response.text[:300] if e.response is not None else "N/A"
            logger.error(f"DB error: {method} {table} | HTTP {status}: {body_text}")
            return {"success": False, "data": None, "error": f"HTTP {status}: {body_text}"}
        except Exception as e:
            response_time_ms = int((time.time() - start_time) * 1000)
            logger.error(
                f"DB error: {method} {table} | error={str(e)} | response_time_ms={response_time_ms}",
                exc_info=True,
            )
            return {"success": False, "data": None, "error": str(e)}

    # ─────────────────────────────────────────────
    # TABLE OPERATIONS
    # ─────────────────────────────────────────────

    def select(self, table: str, filters: Optional[Dict[str, Any]] = None,
               order: Optional[str] = None, limit: Optional[int] = None,
               columns: str = "*") -> dict:
        params = {"select": columns}
        params.update(build_filter_params(filters))
        if order:
            params["order"] = order
        if limit:
            params["limit"] = str(limit)
        return self._request("GET", table, params)

    def select_one(self, table: str, filters: Dict[str, Any],
                   order: Optional[str] = None) -> Optional[dict]:
        """First matching row, or None when missing or on error."""
        result = self.select(table, filters, order=order, limit=1)
        if result["success"] and result["data"]:
            return result["data"][0]
        return None

    def insert(self, table: str, row: dict) -> dict:
        result = self._request("POST", table, {}, row)
        if result["success"] and isinstance(result["data"], list):
            result["data"] = result["data"][0] if result["data"] else None
        return result

    def update(self, table: str, values: dict, filters: Dict[str, Any]) -> dict:
        return self._request("PATCH", table, build_filter_params(filters), values)

    def delete(self, table: str, filters: Dict[str, Any]) -> dict:
        return self._request("DELETE", table, build_filter_params(filters))


# ═══════════════════════════════════════════
# CLIENT REGISTRY
# ═══════════════════════════════════════════

_db = None


def set_db(client) -> None:
    global _db
    _db = client


def get_db():
    global _db
    if _db is None:
        _db = SupabaseClient()
    return _db


def rows(result: dict) -> List[dict]:
    """Data of a select result, or [] when it failed."""
    if result.get("success") and result.get("data"):
        return list(result["data"])
    return []
