"""Authentication utilities: DB-backed bearer session tokens bound to a rider device.

Token issuance (OTP, refresh) lives outside this service. What the ping path
needs is a principal lookup, exposed through a small key/value store so handlers
can be given an in-memory store in tests.
"""

import datetime
import os
import secrets
from typing import Optional

from models import Session

SESSION_TTL = datetime.timedelta(days=int(os.environ.get("SESSION_TTL_DAYS", "90")))


class SqlSessionStore:
    """Session principals keyed by token, stored in the ``sessions`` table."""

    def __init__(self, db):
        self.db = db

    def get(self, token: str) -> Optional[dict]:
        session = self.db.query(Session).filter(Session.token == token).first()
        if not session:
            return None
        if session.expires_at < datetime.datetime.utcnow():
            self.db.delete(session)
            self.db.commit()
            return None
        return {"sub": session.user_id, "device_id": session.device_id}

    def put(self, token: str, principal: dict, ttl: datetime.timedelta = SESSION_TTL):
        session = Session(
            user_id=principal["sub"],
            token=token,
            device_id=principal.get("device_id"),
            expires_at=datetime.datetime.utcnow() + ttl,
        )
        self.db.add(session)
        self.db.commit()

    def delete(self, token: str):
        session = self.db.query(Session).filter(Session.token == token).first()
        if session:
            self.db.delete(session)
            self.db.commit()

    def cleanup_expired(self):
        self.db.query(Session).filter(Session.expires_at < datetime.datetime.utcnow()).delete()
        self.db.commit()


class InMemorySessionStore:
    """Dict-backed session store with the same interface as SqlSessionStore."""

    def __init__(self, clock=datetime.datetime.utcnow):
        self._items: dict[str, tuple[dict, datetime.datetime]] = {}
        self._clock = clock

    def get(self, token: str) -> Optional[dict]:
        item = self._items.get(token)
        if item is None:
            return None
        principal, expires_at = item
        if expires_at < self._clock():
            del self._items[token]
            return None
        return dict(principal)

    def put(self, token: str, principal: dict, ttl: datetime.timedelta = SESSION_TTL):
        self._items[token] = (dict(principal), self._clock() + ttl)

    def delete(self, token: str):
        self._items.pop(token, None)

    def cleanup_expired(self):
        now = self._clock()
        for token in [t for t, (_, exp) in self._items.items() if exp < now]:
            del self._items[token]


def create_token(user_id: str, db, device_id: str = None) -> str:
    store = SqlSessionStore(db)
    store.cleanup_expired()
    token = secrets.token_urlsafe(32)
    store.put(token, {"sub": user_id, "device_id": device_id})
    return token


def decode_token(token: str, db) -> dict | None:
    if not token:
        return None
    return SqlSessionStore(db).get(token)


def revoke_token(token: str, db):
    SqlSessionStore(db).delete(token)
