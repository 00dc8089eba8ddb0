"""
auth/store.py -- Credential store interface and its two implementations.

Pattern: Repository + Data Mapper. CredentialStore is the capability the
session service depends on; it never knows which implementation is active.

  MemoryCredentialStore -- dict-backed, for tests and the demo app. A lock
      makes check-and-insert atomic so the uniqueness invariant holds under
      threads.

  SqlCredentialStore -- SQLAlchemy Core against any SQLAlchemy URL (SQLite
      by default, the hosted Postgres in production). Uniqueness is enforced
      by UNIQUE constraints on lower-cased copies of email and username;
      IntegrityError is translated to DuplicateIdentityError.

Case-insensitivity: both stores compare lower-cased email/username. The
original casing is kept for display.

Security:
  All SQL uses bound parameters. No f-strings in SQL.
  hashed_password is returned only to the session service; callers outside
  the core receive Identity.public() copies.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import dataclasses
import threading
import uuid
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Boolean, Column, DateTime, MetaData, String, Table, Text, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateIdentityError
from auth.models import Identity, Role


class CredentialStore(Protocol):
    """Capability the auth core needs from identity persistence."""

    def find_by_email_or_username(self, identifier: str) -> Identity | None: ...

    def get_by_id(self, identity_id: str) -> Identity | None: ...

    def insert(self, identity: Identity) -> Identity: ...

    def update_last_login(self, identity_id: str, when: datetime) -> None: ...

    def update_password_hash(self, identity_id: str, hashed_password: str) -> None: ...

    def set_active(self, identity_id: str, active: bool) -> bool: ...

    def has_identities(self) -> bool: ...

    def close(self) -> None: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class MemoryCredentialStore:
    """Process-local store. Returned identities are copies; mutate via methods only.

    Usage:
        store = MemoryCredentialStore([Identity(email="a@x.com", username="ana", hashed_password=h)])
    """

    def __init__(self, identities: list[Identity] | None = None) -> None:
        self._lock = threading.Lock()
        self._by_id: dict[str, Identity] = {}
        for identity in identities or []:
            self.insert(identity)

    def _match(self, identifier: str) -> Identity | None:
        needle = identifier.strip().lower()
        for identity in self._by_id.values():
            if identity.email.lower() == needle or identity.username.lower() == needle:
                return identity
        return None

    def find_by_email_or_username(self, identifier: str) -> Identity | None:
        with self._lock:
            found = self._match(identifier)
            return dataclasses.replace(found) if found else None

    def get_by_id(self, identity_id: str) -> Identity | None:
        with self._lock:
            found = self._by_id.get(identity_id)
            return dataclasses.replace(found) if found else None

    def insert(self, identity: Identity) -> Identity:
        """Store identity and return the stored copy with id and timestamps set.

        Raises DuplicateIdentityError if the email or username already
        matches any identity's email or username.
        """
        now = _now()
        with self._lock:
            if self._match(identity.email) or self._match(identity.username):
                raise DuplicateIdentityError()
            stored = dataclasses.replace(
                identity,
                id=identity.id or _new_id(),
                role=Role(identity.role),
                created_at=identity.created_at or now,
                updated_at=now,
            )
            self._by_id[stored.id] = stored
            return dataclasses.replace(stored)

    def update_last_login(self, identity_id: str, when: datetime) -> None:
        with self._lock:
            identity = self._by_id.get(identity_id)
            if identity is not None:
                identity.last_login = when

    def update_password_hash(self, identity_id: str, hashed_password: str) -> None:
        with self._lock:
            identity = self._by_id.get(identity_id)
            if identity is not None:
                identity.hashed_password = hashed_password
                identity.updated_at = _now()

    def set_active(self, identity_id: str, active: bool) -> bool:
        with self._lock:
            identity = self._by_id.get(identity_id)
            if identity is None:
                return False
            identity.is_active = active
            identity.updated_at = _now()
            return True

    def has_identities(self) -> bool:
        with self._lock:
            return bool(self._by_id)

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# SQL (SQLAlchemy Core)
# ---------------------------------------------------------------------------

_metadata = MetaData()

_identities = Table(
    "identities",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(254), nullable=False),
    Column("email_key", String(254), nullable=False, unique=True),  # lower(email)
    Column("username", String(64), nullable=False),
    Column("username_key", String(64), nullable=False, unique=True),  # lower(username)
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("role", String(20), nullable=False, server_default=Role.employee.value),
    Column("hashed_password", Text),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("last_login", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind a writer.

    Set per-connection because SQLite PRAGMAs are not inherited from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


class SqlCredentialStore:
    """SQLAlchemy Core repository for identities.

    Usage:
        store = SqlCredentialStore("sqlite:///salonauth.db")
        store.insert(Identity(email="ana@salon.com", username="ana", hashed_password=h))
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///salonauth.db") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def find_by_email_or_username(self, identifier: str) -> Identity | None:
        needle = identifier.strip().lower()
        query = _identities.select().where(or_(_identities.c.email_key == needle, _identities.c.username_key == needle))
        with self.engine.connect() as conn:
            row = conn.execute(query).first()
        return _row_to_identity(row) if row is not None else None

    def get_by_id(self, identity_id: str) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(_identities.select().where(_identities.c.id == identity_id)).first()
        return _row_to_identity(row) if row is not None else None

    def insert(self, identity: Identity) -> Identity:
        """Insert identity and return the stored record.

        The cross check (new email vs existing usernames and the reverse)
        runs in the same transaction as the insert; the UNIQUE constraints
        catch the same-column races.
        """
        now = _now()
        email_key = identity.email.strip().lower()
        username_key = identity.username.strip().lower()
        identity_id = identity.id or _new_id()
        clash = select(func.count()).select_from(_identities).where(
            or_(
                _identities.c.email_key.in_([email_key, username_key]),
                _identities.c.username_key.in_([email_key, username_key]),
            )
        )
        try:
            with self.engine.begin() as conn:
                if conn.execute(clash).scalar():
                    raise DuplicateIdentityError()
                conn.execute(
                    _identities.insert().values(
                        id=identity_id,
                        email=identity.email.strip(),
                        email_key=email_key,
                        username=identity.username.strip(),
                        username_key=username_key,
                        first_name=identity.first_name,
                        last_name=identity.last_name,
                        role=Role(identity.role).value,
                        hashed_password=identity.hashed_password,
                        is_active=identity.is_active,
                        created_at=identity.created_at or now,
                        updated_at=now,
                    )
                )
        except IntegrityError as exc:
            raise DuplicateIdentityError() from exc
        stored = self.get_by_id(identity_id)
        if stored is None:
            raise RuntimeError(f"Identity {identity_id} missing after insert")
        return stored

    def update_last_login(self, identity_id: str, when: datetime) -> None:
        with self.engine.begin() as conn:
            conn.execute(_identities.update().where(_identities.c.id == identity_id).values(last_login=when))

    def update_password_hash(self, identity_id: str, hashed_password: str) -> None:
        """Replace the stored hash, e.g. after a cost-factor upgrade on login."""
        with self.engine.begin() as conn:
            conn.execute(
                _identities.update()
                .where(_identities.c.id == identity_id)
                .values(hashed_password=hashed_password, updated_at=_now())
            )

    def set_active(self, identity_id: str, active: bool) -> bool:
        """Activate or deactivate. Returns False if identity_id was not found."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _identities.update().where(_identities.c.id == identity_id).values(is_active=active, updated_at=_now())
            )
        return result.rowcount > 0

    def has_identities(self) -> bool:
        """Cheap first-run check used by registration's bootstrap rule."""
        with self.engine.connect() as conn:
            row = conn.execute(select(_identities.c.id).limit(1)).first()
        return row is not None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back; every stored timestamp is UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        username=row.username,
        first_name=row.first_name,
        last_name=row.last_name,
        role=Role(row.role),
        hashed_password=row.hashed_password,
        is_active=bool(row.is_active),
        last_login=_aware(row.last_login),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )
