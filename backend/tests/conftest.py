"""
Pytest configuration and shared test helpers for backend tests.

FakeDb stands in for the motor database: it implements the subset of
collection calls the ledger uses, including conditional update filters and
the unique indexes database.py creates.
"""
import copy
import os
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

os.environ.setdefault("PYTEST_RUNNING", "1")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-for-pytest")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")

import pytest
from jose import jwt
from pymongo.errors import DuplicateKeyError

_MISSING = object()


def _get_path(doc, path):
    value = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _set_path(doc, path, value):
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def _matches_condition(value, condition):
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            if op == "$in":
                if value is _MISSING or value not in operand:
                    return False
            elif op in ("$gte", "$gt", "$lte", "$lt"):
                if value is _MISSING or value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
                    return False
                if op == "$gte" and not value >= operand:
                    return False
                if op == "$gt" and not value > operand:
                    return False
                if op == "$lte" and not value <= operand:
                    return False
                if op == "$lt" and not value < operand:
                    return False
            else:
                raise NotImplementedError(f"FakeCollection does not support {op}")
        return True
    if condition is None:
        return value is _MISSING or value is None
    return value is not _MISSING and value == condition


def matches(doc, query):
    return all(_matches_condition(_get_path(doc, key), cond) for key, cond in query.items())


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, key, direction=1):
        self._docs = sorted(self._docs, key=lambda d: d.get(key), reverse=direction == -1)
        return self

    def skip(self, n):
        self._docs = self._docs[n:]
        return self

    def limit(self, n):
        if n:
            self._docs = self._docs[:n]
        return self

    async def to_list(self, length=None):
        docs = self._docs if length is None else self._docs[:length]
        return [copy.deepcopy(d) for d in docs]


class FakeCollection:
    def __init__(self, unique=None):
        self.docs = []
        # [(fields, partial_filter)]
        self.unique = unique or []

    def _violates_unique(self, doc, ignore=None):
        for fields, partial in self.unique:
            if partial and not matches(doc, partial):
                continue
            key = tuple(_get_path(doc, f) for f in fields)
            if any(v is _MISSING for v in key):
                continue
            for other in self.docs:
                if other is ignore:
                    continue
                if partial and not matches(other, partial):
                    continue
                if tuple(_get_path(other, f) for f in fields) == key:
                    return True
        return False

    async def insert_one(self, document):
        doc = copy.deepcopy(document)
        if self._violates_unique(doc):
            raise DuplicateKeyError("E11000 duplicate key error")
        self.docs.append(doc)
        return SimpleNamespace(inserted_id=len(self.docs))

    async def find_one(self, query, projection=None):
        for doc in self.docs:
            if matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def find(self, query=None, projection=None):
        return FakeCursor([d for d in self.docs if matches(d, query or {})])

    async def count_documents(self, query):
        return sum(1 for d in self.docs if matches(d, query))

    async def update_one(self, query, update):
        for doc in self.docs:
            if not matches(doc, query):
                continue
            for path, value in (update.get("$set") or {}).items():
                _set_path(doc, path, copy.deepcopy(value))
            for path, delta in (update.get("$inc") or {}).items():
                current = _get_path(doc, path)
                _set_path(doc, path, (0 if current is _MISSING else current) + delta)
            return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)


class FakeDb:
    def __init__(self):
        self.accounts = FakeCollection(unique=[(("account_id",), None)])
        self.credit_transactions = FakeCollection(unique=[
            (("transaction_id",), None),
            (("account_id", "external_payment_id"), {"type": "purchase"}),
        ])
        self.checkout_sessions = FakeCollection(unique=[(("payment_id",), None)])
        self.mail_outbox = FakeCollection(unique=[(("mail_id",), None)])


@pytest.fixture
def fake_db():
    """In-memory database patched in for every service."""
    db = FakeDb()
    with patch("database.database.get_db", return_value=db):
        yield db


@pytest.fixture
def platform_key(monkeypatch):
    monkeypatch.setenv("PLATFORM_AI_API_KEY", "sk-platform-test")
    monkeypatch.setenv("PLATFORM_AI_PROVIDER", "anthropic")
    monkeypatch.setenv("PLATFORM_AI_MODEL", "claude-test")


def make_token(account_id="acct-1", role=None, email="user@example.com", name="Test User"):
    claims = {"sub": account_id, "email": email, "name": name}
    if role:
        claims["role"] = role
    return jwt.encode(claims, os.environ["JWT_SECRET"], algorithm="HS256")


def auth_headers(account_id="acct-1", role=None):
    return {"Authorization": f"Bearer {make_token(account_id, role=role)}"}


def account_doc(account_id="acct-1", free=5, purchased=0, last_free_reset=None, llm_mode="platform", **extra):
    from datetime import datetime, timezone
    doc = {
        "account_id": account_id,
        "email": f"{account_id}@example.com",
        "display_name": "Test User",
        "role": "user",
        "credits": {
            "free": free,
            "purchased": purchased,
            "last_free_reset": last_free_reset or datetime.now(timezone.utc),
        },
        "llm_mode": llm_mode,
        "api_key": None,
    }
    doc.update(extra)
    return doc
