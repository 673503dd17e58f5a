"""
Pytest configuration and fixtures for omnisales tests.

Provides an in-memory MockDatabase that answers the same select/insert/
update/delete calls as the Supabase client, and resets every module-level
singleton (cache, conversations, chatbot engine, rule engine, shipping
manager) between tests.
"""

import copy
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

import chatbot_engine
from cache_manager import get_cache_manager
from chatbot_engine import ChatbotConfig, ChatbotEngine, reset_chatbot_engine
from core.session import conversations
from db_client import set_db
from pricing_rules import reset_rule_engine
from services import reset_shipping_manager


def _ilike(pattern: str) -> re.Pattern:
    parts = [re.escape(p) for p in str(pattern).split("*")]
    return re.compile("^" + ".*".join(parts) + "$", re.IGNORECASE | re.DOTALL)


def _compare(actual: Any, op: str, expected: Any) -> bool:
    if op == "eq":
        return actual == expected
    if op == "neq":
        return actual != expected
    if op == "is":
        return actual is expected if expected is None or isinstance(expected, bool) else actual == expected
    if op == "not.is":
        return not _compare(actual, "is", expected)
    if op == "in":
        return actual in list(expected)
    if op == "not.in":
        return actual not in list(expected)
    if op == "ilike":
        return actual is not None and bool(_ilike(expected).match(str(actual)))
    if actual is None:
        return False
    if op == "gt":
        return actual > expected
    if op == "gte":
        return actual >= expected
    if op == "lt":
        return actual < expected
    if op == "lte":
        return actual <= expected
    raise ValueError(f"MockDatabase: unsupported operator {op}")


class MockDatabase:
    """
    In-memory stand-in for db_client.SupabaseClient.

    Tables are plain lists of dicts. Filters follow the client's
    convention: {col: value} is eq, {col: None} is "is null",
    {col: (op, value)} uses the operator. Tables listed in
    `failing_tables` answer every call with a failure result.
    """

    def __init__(self, tables: Optional[Dict[str, List[dict]]] = None):
        self.tables: Dict[str, List[dict]] = {k: [dict(r) for r in v] for k, v in (tables or {}).items()}
        self.failing_tables = set()
        self.calls: List[tuple] = []

    # ── helpers ──

    def seed(self, table: str, *rows_: dict) -> List[dict]:
        stored = []
        for row in rows_:
            stored.append(self._store(table, row))
        return stored

    def table(self, name: str) -> List[dict]:
        return self.tables.setdefault(name, [])

    def _store(self, table: str, row: dict) -> dict:
        record = dict(row)
        record.setdefault("id", str(uuid.uuid4()))
        record.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        self.table(table).append(record)
        return record

    def _failure(self, table: str) -> Optional[dict]:
        if table in self.failing_tables:
            return {"success": False, "data": None, "error": f"HTTP 500: {table} unavailable"}
        return None

    @staticmethod
    def _matches(row: dict, filters: Optional[Dict[str, Any]]) -> bool:
        for column, condition in (filters or {}).items():
            if isinstance(condition, tuple):
                op, value = condition
            elif condition is None:
                op, value = "is", None
            else:
                op, value = "eq", condition
            if not _compare(row.get(column), op, value):
                return False
        return True

    @staticmethod
    def _order(found: List[dict], order: str) -> List[dict]:
        for part in reversed(order.split(",")):
            column, _, direction = part.strip().partition(".")
            descending = direction.startswith("desc")
            present = [r for r in found if r.get(column) is not None]
            missing = [r for r in found if r.get(column) is None]
            present.sort(key=lambda r: r[column], reverse=descending)
            found = present + missing
        return found

    # ── client API ──

    def select(self, table: str, filters: Optional[Dict[str, Any]] = None,
               order: Optional[str] = None, limit: Optional[int] = None,
               columns: str = "*") -> dict:
        self.calls.append(("select", table, filters))
        failure = self._failure(table)
        if failure:
            return failure
        found = [r for r in self.table(table) if self._matches(r, filters)]
        if order:
            found = self._order(found, order)
        if limit:
            found = found[:limit]
        return {"success": True, "data": copy.deepcopy(found), "error": None}

    def select_one(self, table: str, filters: Dict[str, Any], order: Optional[str] = None) -> Optional[dict]:
        result = self.select(table, filters, order=order, limit=1)
        if result["success"] and result["data"]:
            return result["data"][0]
        return None

    def insert(self, table: str, row: dict) -> dict:
        self.calls.append(("insert", table, row))
        failure = self._failure(table)
        if failure:
            return failure
        return {"success": True, "data": copy.deepcopy(self._store(table, row)), "error": None}

    def update(self, table: str, values: dict, filters: Dict[str, Any]) -> dict:
        self.calls.append(("update", table, filters))
        failure = self._failure(table)
        if failure:
            return failure
        updated = []
        for row in self.table(table):
            if self._matches(row, filters):
                row.update(copy.deepcopy(values))
                updated.append(copy.deepcopy(row))
        return {"success": True, "data": updated, "error": None}

    def delete(self, table: str, filters: Dict[str, Any]) -> dict:
        self.calls.append(("delete", table, filters))
        failure = self._failure(table)
        if failure:
            return failure
        kept, removed = [], []
        for row in self.table(table):
            (removed if self._matches(row, filters) else kept).append(row)
        self.tables[table] = kept
        return {"success": True, "data": copy.deepcopy(removed), "error": None}


@pytest.fixture(autouse=True)
def mock_db():
    """
    Function-scoped fixture: a fresh MockDatabase registered with db_client,
    and clean singletons for every test.
    """
    db = MockDatabase()
    set_db(db)
    cache = get_cache_manager()
    cache.clear()
    cache.reset_stats()
    conversations.clear()
    reset_chatbot_engine()
    reset_rule_engine()
    reset_shipping_manager({})
    yield db
    # Cleanup
    conversations.clear()
    cache.clear()
    set_db(None)


@pytest.fixture
def fake_llm():
    """LLM client double returning a fixed completion."""
    llm = MagicMock()
    llm.chat_completion.return_value = {
        "content": "Thanks for reaching out! Here is what I found.",
        "input_tokens": 40,
        "output_tokens": 12,
        "total_tokens": 52,
        "model": "gpt-4",
        "latency_ms": 5,
    }
    return llm


@pytest.fixture
def engine(fake_llm, monkeypatch):
    """Chatbot engine wired to the fake LLM and installed as the singleton."""
    bot = ChatbotEngine(ChatbotConfig(api_key="test-key"), llm_client=fake_llm)
    monkeypatch.setattr(chatbot_engine, "_engine", bot)
    return bot


@pytest.fixture
def client():
    """Flask test client for the full application."""
    from server import create_app
    app = create_app()
    app.testing = True
    return app.test_client()
