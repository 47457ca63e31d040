"""
repository.py
-------------
Persistence for users and reviewed transactions.

``SqlStore`` talks to the relational database through SQLAlchemy.  When
the database cannot be reached at startup the service keeps working in
mock mode on top of ``MemoryStore``, which holds everything in process
memory and is lost on restart.
"""

from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from datetime import date, datetime
from typing import Iterable, List, Optional

from dotenv import load_dotenv
from sqlalchemy.orm import sessionmaker

from mafifulus.database import SessionLocal, Transaction, User, check_connection, init_db

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "AED"


class InviteCodeError(Exception):
    """Raised when a new user signs up without the server's invite code."""


def invite_code() -> Optional[str]:
    return os.getenv("INVITE_CODE") or None


def _check_invite(supplied: Optional[str]):
    required = invite_code()
    if required and supplied != required:
        raise InviteCodeError("Invalid Invite Code. Access Denied.")


def parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value).strip()[:10], "%Y-%m-%d").date()


def normalize_row(t: dict) -> dict:
    """Coerce one reviewed transaction into the stored shape."""
    amount = float(t.get("amount"))
    return {
        "date": parse_date(t.get("date")),
        "description": str(t.get("description") or ""),
        "amount": amount,
        "currency": t.get("currency") or DEFAULT_CURRENCY,
        "category": t.get("category") or "Other",
        "type": "expense" if amount < 0 else "income",
        "source": t.get("source") or "Bank Statement",
    }


def transaction_to_dict(txn: Transaction) -> dict:
    return {
        "id": txn.id,
        "date": txn.date.isoformat() if txn.date else None,
        "description": txn.description,
        "amount": txn.amount,
        "currency": txn.currency,
        "category": txn.category,
        "type": txn.type,
        "source": txn.source,
    }


class SqlStore:
    persistent = True

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def login(self, phone_number: str, name: Optional[str] = None, invite: Optional[str] = None) -> dict:
        if not phone_number:
            raise ValueError("Phone number required")

        db = self.session_factory()
        try:
            user = db.query(User).filter(User.phone_number == phone_number).first()
            if user is None:
                _check_invite(invite)
                user = User(phone_number=phone_number, full_name=name or "Anonymous")
                db.add(user)
            elif name:
                user.full_name = name
            db.commit()
            db.refresh(user)
            return {"id": user.id, "phone_number": user.phone_number, "full_name": user.full_name}
        finally:
            db.close()

    def save_transactions(self, user_id: Optional[str], transactions: Iterable[dict]) -> int:
        rows = [normalize_row(t) for t in transactions]

        db = self.session_factory()
        try:
            owner = db.get(User, user_id) if user_id else None
            db.add_all([Transaction(user_id=owner.id if owner else None, **row) for row in rows])
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info("[DB] Saved %d transactions.", len(rows))
        return len(rows)

    def list_transactions(self, user_id: str) -> List[dict]:
        db = self.session_factory()
        try:
            txns = (
                db.query(Transaction)
                .filter(Transaction.user_id == user_id)
                .order_by(Transaction.date.desc(), Transaction.created_at.desc())
                .all()
            )
            return [transaction_to_dict(t) for t in txns]
        finally:
            db.close()

    def count_users(self) -> int:
        db = self.session_factory()
        try:
            return db.query(User).count()
        finally:
            db.close()


class MemoryStore:
    """In-process fallback used when the database is unavailable."""

    persistent = False

    def __init__(self):
        self._lock = threading.Lock()
        self.users: dict[str, dict] = {}
        self.transactions: list[dict] = []

    def login(self, phone_number: str, name: Optional[str] = None, invite: Optional[str] = None) -> dict:
        if not phone_number:
            raise ValueError("Phone number required")

        logger.info("[Mock DB] Login for %s", phone_number)
        with self._lock:
            user = self.users.get(phone_number)
            if user is None:
                _check_invite(invite)
                user = {
                    "id": f"mock-user-id-{int(time.time() * 1000)}",
                    "phone_number": phone_number,
                    "full_name": name or "Anonymous",
                }
                self.users[phone_number] = user
            elif name:
                user["full_name"] = name
            return dict(user)

    def save_transactions(self, user_id: Optional[str], transactions: Iterable[dict]) -> int:
        rows = [normalize_row(t) for t in transactions]
        with self._lock:
            known = any(u["id"] == user_id for u in self.users.values())
            for row in rows:
                row["id"] = str(uuid.uuid4())
                row["user_id"] = user_id if known else None
                row["created_at"] = datetime.utcnow()
                self.transactions.append(row)

        logger.info("[Mock DB] Kept %d transactions in memory.", len(rows))
        return len(rows)

    def list_transactions(self, user_id: str) -> List[dict]:
        with self._lock:
            mine = [r for r in self.transactions if r["user_id"] == user_id]
        mine.sort(key=lambda r: (r["date"], r["created_at"]), reverse=True)
        return [
            {**{k: v for k, v in r.items() if k not in ("user_id", "created_at")}, "date": r["date"].isoformat()}
            for r in mine
        ]

    def count_users(self) -> int:
        return len(self.users)


_store = None
_store_lock = threading.Lock()


def get_store():
    """Return the process-wide store, probing the database on first use."""
    global _store
    with _store_lock:
        if _store is None:
            if check_connection():
                init_db()
                logger.info("[DB] Connected to Database successfully.")
                _store = SqlStore()
            else:
                logger.warning("[DB Warning] Could not connect to Database. Running in Mock/Dev mode.")
                logger.warning("    -> To fix: Ensure DATABASE_URL is set in .env and Postgres is running.")
                _store = MemoryStore()
        return _store


def set_store(store):
    global _store
    with _store_lock:
        _store = store
