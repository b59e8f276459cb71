"""Contact store port and its SQLite adapter.

The identify pipeline only talks to a ContactRepository, obtained from
ContactStore.transaction(). Everything a request reads and writes goes
through one such unit of work.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import ContextManager, Iterable, Iterator, List, Optional, Protocol

from db_models import Contact
from db_setup import DEFAULT_DB_NAME, get_db_connection, init_db
from errors import StoreError

logger = logging.getLogger(__name__)


class ContactRepository(Protocol):
    """Queries and writes on non-deleted contacts, ordered oldest first."""

    def find_by_email_or_phone(self, email: Optional[str], phone: Optional[str]) -> List[Contact]:
        """Contacts whose email or phone equals a submitted value. Absent values are not filtered on."""
        ...

    def find_by_ids_or_linked_ids(self, ids: Iterable[int]) -> List[Contact]:
        """Contacts whose id, or whose linkedId, is in ids."""
        ...

    def create(
        self,
        *,
        email: Optional[str],
        phone_number: Optional[str],
        linked_id: Optional[int],
        link_precedence: str,
    ) -> Contact:
        ...

    def update_one(
        self,
        contact_id: int,
        *,
        linked_id: Optional[int],
        link_precedence: str,
        updated_at: datetime,
    ) -> None:
        ...

    def update_many_by_linked_id(self, old_linked_id: int, *, linked_id: int, updated_at: datetime) -> int:
        """Re-point every contact linked to old_linked_id. Returns the number of rows changed."""
        ...


class ContactStore(Protocol):
    def transaction(self) -> ContextManager[ContactRepository]:
        """Unit of work: serialized against other writers, all-or-nothing."""
        ...


def _timestamp(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


class SqliteContactRepository:
    """ContactRepository bound to one open SQLite transaction."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def _select(self, where: str, params) -> List[Contact]:
        query = f"""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL
            AND ({where})
            ORDER BY createdAt ASC, id ASC
        """
        rows = self._conn.execute(query, params).fetchall()
        return [Contact(**dict(row)) for row in rows]

    def find_by_email_or_phone(self, email, phone):
        clauses = []
        params = []
        if email is not None:
            clauses.append("email = ?")
            params.append(email)
        if phone is not None:
            clauses.append("phoneNumber = ?")
            params.append(phone)
        if not clauses:
            return []
        return self._select(" OR ".join(clauses), params)

    def find_by_ids_or_linked_ids(self, ids):
        ids = sorted(set(ids))
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        where = f"id IN ({placeholders}) OR linkedId IN ({placeholders})"
        return self._select(where, ids + ids)

    def create(self, *, email, phone_number, linked_id, link_precedence):
        now = datetime.now()
        cursor = self._conn.execute("""
            INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (phone_number, email, linked_id, link_precedence, _timestamp(now), _timestamp(now)))
        return Contact(
            id=cursor.lastrowid,
            email=email,
            phoneNumber=phone_number,
            linkedId=linked_id,
            linkPrecedence=link_precedence,
            createdAt=now,
            updatedAt=now,
        )

    def update_one(self, contact_id, *, linked_id, link_precedence, updated_at):
        self._conn.execute("""
            UPDATE Contact
            SET linkedId = ?, linkPrecedence = ?, updatedAt = ?
            WHERE id = ? AND deletedAt IS NULL
        """, (linked_id, link_precedence, _timestamp(updated_at), contact_id))

    def update_many_by_linked_id(self, old_linked_id, *, linked_id, updated_at):
        cursor = self._conn.execute("""
            UPDATE Contact
            SET linkedId = ?, updatedAt = ?
            WHERE linkedId = ? AND deletedAt IS NULL
        """, (linked_id, _timestamp(updated_at), old_linked_id))
        return cursor.rowcount


def _rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK")


class SqliteContactStore:
    """Durable contact store on a SQLite file.

    Each transaction opens its own connection and starts with BEGIN IMMEDIATE,
    which takes the database write lock before the first read. Concurrent
    identify requests therefore run one after another; a request that cannot
    get the lock within `timeout` seconds fails with StoreError.
    """

    def __init__(self, db_path: str = DEFAULT_DB_NAME, timeout: float = 5.0) -> None:
        self.db_path = db_path
        self.timeout = timeout

    def init_schema(self) -> None:
        try:
            init_db(self.db_path)
        except sqlite3.Error as exc:
            raise StoreError(f"Could not initialise contact store at {self.db_path}") from exc

    @contextmanager
    def transaction(self) -> Iterator[SqliteContactRepository]:
        try:
            conn = get_db_connection(self.db_path, timeout=self.timeout)
        except sqlite3.Error as exc:
            raise StoreError(f"Could not open contact store at {self.db_path}") from exc

        try:
            conn.execute("BEGIN IMMEDIATE")
            yield SqliteContactRepository(conn)
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            logger.warning("Rolling back contact store transaction: %s", exc)
            _rollback(conn)
            raise StoreError(str(exc)) from exc
        except BaseException:
            _rollback(conn)
            raise
        finally:
            conn.close()
