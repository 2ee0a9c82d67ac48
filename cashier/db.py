"""
db.py
SQLite-backed store for clients, tickets and users.

Amounts are stored as integer cents and instants as UTC ISO-8601 text, so
ordering and range filters on ``date`` work lexicographically.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .exceptions import (
    ClientNotFoundError,
    DuplicateDniError,
    DuplicateTicketCodeError,
    DuplicateUsernameError,
    StoreError,
    TicketNotFoundError,
    UserNotFoundError,
)
from .ledger import from_cents, generate_ticket_code, to_cents
from .models import Client, MembershipType, NewTicket, Role, Ticket, User
from .store import TICKET_MUTABLE_FIELDS, USER_MUTABLE_FIELDS

logger = logging.getLogger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL CHECK(role IN ('admin','cashier')),
        active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS clients (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        dni TEXT NOT NULL UNIQUE,
        membership_type TEXT NOT NULL
            CHECK(membership_type IN ('Regular','Silver','Gold','VIP','Platinum')),
        active INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tickets (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        client_id INTEGER NOT NULL,
        type TEXT NOT NULL CHECK(type IN ('Deposit','Withdrawal')),
        amount_cents INTEGER NOT NULL CHECK(amount_cents > 0),
        date TEXT NOT NULL,
        code TEXT NOT NULL UNIQUE,
        payment_method TEXT NOT NULL CHECK(payment_method IN ('cash','card','bank_transfer')),
        created_by INTEGER,
        updated_by INTEGER,
        updated_at TEXT,
        FOREIGN KEY(client_id) REFERENCES clients(id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tickets_client ON tickets(client_id)",
    "CREATE INDEX IF NOT EXISTS idx_tickets_date ON tickets(date)",
)


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _client(row: sqlite3.Row) -> Client:
    return Client(
        id=row["id"],
        name=row["name"],
        dni=row["dni"],
        membership_type=MembershipType(row["membership_type"]),
        active=bool(row["active"]),
    )


def _ticket(row: sqlite3.Row) -> Ticket:
    return Ticket(
        id=row["id"],
        client_id=row["client_id"],
        type=row["type"],
        amount=from_cents(row["amount_cents"]),
        date=_parse(row["date"]),
        code=row["code"],
        payment_method=row["payment_method"],
        created_by=row["created_by"],
        updated_by=row["updated_by"],
        updated_at=_parse(row["updated_at"]),
    )


def _user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        username=row["username"],
        password_hash=row["password_hash"],
        role=Role(row["role"]),
        active=bool(row["active"]),
        created_at=_parse(row["created_at"]),
    )


class SQLiteStorage:
    def __init__(self, path: Path | str, timeout: float = 5.0):
        self.path = Path(path)
        self.timeout = timeout
        self.init_db()

    @contextmanager
    def get_conn(self):
        try:
            conn = sqlite3.connect(self.path, timeout=self.timeout, check_same_thread=False)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise
        except sqlite3.Error as e:
            conn.rollback()
            # "database is locked" after the busy timeout lands here
            logger.error("Store operation failed: %s", e)
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def execute(self, sql: str, params: tuple = ()) -> int:
        with self.get_conn() as conn:
            return conn.execute(sql, params).lastrowid

    def execute_count(self, sql: str, params: tuple = ()) -> int:
        with self.get_conn() as conn:
            return conn.execute(sql, params).rowcount

    def fetch_one(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self.get_conn() as conn:
            return conn.execute(sql, params).fetchone()

    def fetch_all(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self.get_conn() as conn:
            return conn.execute(sql, params).fetchall()

    def init_db(self) -> None:
        with self.get_conn() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    # ---------- Clients ----------

    def add_client(self, name, dni, membership_type, active=True) -> Client:
        try:
            row_id = self.execute(
                "INSERT INTO clients(name, dni, membership_type, active) VALUES(?,?,?,?)",
                (name, dni, MembershipType(membership_type).value, int(active)),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateDniError(f"DNI {dni} is already registered") from e
        return self.get_client(row_id)

    def update_client(self, client: Client) -> Client:
        try:
            count = self.execute_count(
                "UPDATE clients SET name = ?, dni = ?, membership_type = ?, active = ? WHERE id = ?",
                (client.name, client.dni, client.membership_type.value, int(client.active), client.id),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateDniError(f"DNI {client.dni} is already registered") from e
        if count == 0:
            raise ClientNotFoundError(f"Client {client.id} not found")
        return self.get_client(client.id)

    def get_client(self, client_id):
        row = self.fetch_one("SELECT * FROM clients WHERE id = ?", (client_id,))
        return _client(row) if row else None

    def find_client_by_dni(self, dni):
        row = self.fetch_one("SELECT * FROM clients WHERE dni = ?", (dni,))
        return _client(row) if row else None

    def list_clients(self, active_only=False):
        sql = "SELECT * FROM clients"
        if active_only:
            sql += " WHERE active = 1"
        sql += " ORDER BY name COLLATE NOCASE"
        return [_client(r) for r in self.fetch_all(sql)]

    def get_client_name(self, client_id):
        row = self.fetch_one("SELECT name FROM clients WHERE id = ?", (client_id,))
        return row["name"] if row else None

    # ---------- Tickets ----------

    def insert_ticket(self, ticket: NewTicket) -> Ticket:
        code = ticket.code or generate_ticket_code(ticket.client_id)
        try:
            row_id = self.execute(
                """
                INSERT INTO tickets(client_id, type, amount_cents, date, code, payment_method, created_by)
                VALUES(?,?,?,?,?,?,?)
                """,
                (
                    ticket.client_id,
                    ticket.type.value,
                    to_cents(ticket.amount),
                    _iso(ticket.date),
                    code,
                    ticket.payment_method.value,
                    ticket.created_by,
                ),
            )
        except sqlite3.IntegrityError as e:
            message = str(e)
            if "FOREIGN KEY" in message:
                raise ClientNotFoundError(f"Client {ticket.client_id} not found") from e
            if "tickets.code" in message:
                raise DuplicateTicketCodeError(f"Ticket code {code} already exists") from e
            raise StoreError(message) from e
        return self.get_ticket(row_id)

    def get_ticket(self, ticket_id):
        row = self.fetch_one("SELECT * FROM tickets WHERE id = ?", (ticket_id,))
        return _ticket(row) if row else None

    def list_tickets(self):
        rows = self.fetch_all("SELECT * FROM tickets ORDER BY date DESC, id DESC")
        return [_ticket(r) for r in rows]

    def list_tickets_by_client(self, client_id):
        rows = self.fetch_all(
            "SELECT * FROM tickets WHERE client_id = ? ORDER BY date DESC, id DESC",
            (client_id,),
        )
        return [_ticket(r) for r in rows]

    def list_tickets_between(self, start, end):
        rows = self.fetch_all(
            "SELECT * FROM tickets WHERE date >= ? AND date < ? ORDER BY date DESC, id DESC",
            (_iso(start), _iso(end)),
        )
        return [_ticket(r) for r in rows]

    def update_ticket(self, ticket_id, fields: dict[str, Any]) -> Ticket:
        unknown = set(fields) - TICKET_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update ticket fields: {sorted(unknown)}")
        columns, params = [], []
        for key, value in fields.items():
            if key == "amount":
                columns.append("amount_cents = ?")
                params.append(to_cents(value))
            elif key in ("date", "updated_at"):
                columns.append(f"{key} = ?")
                params.append(_iso(value))
            elif key in ("type", "payment_method"):
                columns.append(f"{key} = ?")
                params.append(value.value)
            else:
                columns.append(f"{key} = ?")
                params.append(value)
        if columns:
            count = self.execute_count(
                f"UPDATE tickets SET {', '.join(columns)} WHERE id = ?",
                (*params, ticket_id),
            )
            if count == 0:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        ticket = self.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    def delete_ticket(self, ticket_id):
        count = self.execute_count("DELETE FROM tickets WHERE id = ?", (ticket_id,))
        if count == 0:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")

    # ---------- Users ----------

    def add_user(self, username, password_hash, role, active=True) -> User:
        now = _iso(datetime.now(timezone.utc))
        try:
            row_id = self.execute(
                "INSERT INTO users(username, password_hash, role, active, created_at) VALUES(?,?,?,?,?)",
                (username, password_hash, Role(role).value, int(active), now),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateUsernameError(f"Username {username} is already taken") from e
        return self.get_user(row_id)

    def get_user(self, user_id):
        row = self.fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
        return _user(row) if row else None

    def get_user_by_username(self, username):
        row = self.fetch_one("SELECT * FROM users WHERE username = ?", (username,))
        return _user(row) if row else None

    def list_users(self):
        return [_user(r) for r in self.fetch_all("SELECT * FROM users ORDER BY username")]

    def update_user(self, user_id, fields: dict[str, Any]) -> User:
        unknown = set(fields) - USER_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user fields: {sorted(unknown)}")
        columns, params = [], []
        for key, value in fields.items():
            if key == "role":
                value = Role(value).value
            elif key == "active":
                value = int(value)
            columns.append(f"{key} = ?")
            params.append(value)
        if columns:
            try:
                count = self.execute_count(
                    f"UPDATE users SET {', '.join(columns)} WHERE id = ?",
                    (*params, user_id),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateUsernameError(f"Username {fields.get('username')} is already taken") from e
            if count == 0:
                raise UserNotFoundError(f"User {user_id} not found")
        user = self.get_user(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    def delete_user(self, user_id):
        count = self.execute_count("DELETE FROM users WHERE id = ?", (user_id,))
        if count == 0:
            raise UserNotFoundError(f"User {user_id} not found")

    def count_users(self):
        return self.fetch_one("SELECT COUNT(*) AS c FROM users")["c"]

    def get_username(self, user_id):
        row = self.fetch_one("SELECT username FROM users WHERE id = ?", (user_id,))
        return row["username"] if row else None
