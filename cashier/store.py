from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, List, Optional, Protocol

from .exceptions import (
    ClientNotFoundError,
    DuplicateDniError,
    DuplicateTicketCodeError,
    DuplicateUsernameError,
    TicketNotFoundError,
    UserNotFoundError,
)
from .ledger import generate_ticket_code
from .models import Client, MembershipType, NewTicket, Role, Ticket, User

TICKET_MUTABLE_FIELDS = {"type", "amount", "date", "payment_method", "updated_by", "updated_at"}
USER_MUTABLE_FIELDS = {"username", "password_hash", "role", "active"}


class TicketStore(Protocol):
    """
    Persistence abstraction for clients, tickets and users.

    Implementations map rows to the domain models and guarantee that each
    single call is atomic. Nothing spanning several calls is atomic; callers
    that need check-then-act semantics serialize themselves.
    """

    # Clients

    def add_client(
        self, name: str, dni: str, membership_type: MembershipType, active: bool
    ) -> Client:
        ...

    def update_client(self, client: Client) -> Client:
        ...

    def get_client(self, client_id: int) -> Optional[Client]:
        ...

    def find_client_by_dni(self, dni: str) -> Optional[Client]:
        ...

    def list_clients(self, active_only: bool = False) -> List[Client]:
        ...

    def get_client_name(self, client_id: int) -> Optional[str]:
        """Best-effort name lookup; None when the client is missing."""
        ...

    # Tickets

    def insert_ticket(self, ticket: NewTicket) -> Ticket:
        """
        Persist a new ticket, assigning its id and a code when none is given.

        Raises ClientNotFoundError for an unknown client and
        DuplicateTicketCodeError when the code is already taken.
        """
        ...

    def get_ticket(self, ticket_id: int) -> Optional[Ticket]:
        ...

    def list_tickets(self) -> List[Ticket]:
        """All tickets, newest first."""
        ...

    def list_tickets_by_client(self, client_id: int) -> List[Ticket]:
        """A client's tickets, newest first."""
        ...

    def list_tickets_between(self, start: datetime, end: datetime) -> List[Ticket]:
        """Tickets with ``start <= date < end``, newest first."""
        ...

    def update_ticket(self, ticket_id: int, fields: dict[str, Any]) -> Ticket:
        ...

    def delete_ticket(self, ticket_id: int) -> None:
        ...

    # Users

    def add_user(self, username: str, password_hash: str, role: Role, active: bool) -> User:
        ...

    def get_user(self, user_id: int) -> Optional[User]:
        ...

    def get_user_by_username(self, username: str) -> Optional[User]:
        ...

    def list_users(self) -> List[User]:
        ...

    def update_user(self, user_id: int, fields: dict[str, Any]) -> User:
        ...

    def delete_user(self, user_id: int) -> None:
        ...

    def count_users(self) -> int:
        ...

    def get_username(self, user_id: int) -> Optional[str]:
        """Best-effort username lookup; None when the user is missing."""
        ...


def _newest_first(tickets: List[Ticket]) -> List[Ticket]:
    return sorted(tickets, key=lambda t: (t.date, t.id), reverse=True)


class InMemoryStorage:
    """Dictionary-backed store used by tests and the ``memory`` backend."""

    def __init__(self):
        self.clients: dict[int, dict] = {}
        self.tickets: dict[int, dict] = {}
        self.users: dict[int, dict] = {}
        self.code_index: dict[str, int] = {}
        self._next_ids = {"clients": 1, "tickets": 1, "users": 1}
        self._lock = threading.RLock()

    def _next_id(self, table: str) -> int:
        value = self._next_ids[table]
        self._next_ids[table] = value + 1
        return value

    # Clients

    def add_client(self, name, dni, membership_type, active=True) -> Client:
        with self._lock:
            if self.find_client_by_dni(dni):
                raise DuplicateDniError(f"DNI {dni} is already registered")
            client_id = self._next_id("clients")
            self.clients[client_id] = {
                "id": client_id, "name": name, "dni": dni,
                "membership_type": MembershipType(membership_type), "active": active,
            }
            return Client(**self.clients[client_id])

    def update_client(self, client: Client) -> Client:
        with self._lock:
            if client.id not in self.clients:
                raise ClientNotFoundError(f"Client {client.id} not found")
            other = self.find_client_by_dni(client.dni)
            if other and other.id != client.id:
                raise DuplicateDniError(f"DNI {client.dni} is already registered")
            self.clients[client.id] = client.model_dump()
            return Client(**self.clients[client.id])

    def get_client(self, client_id):
        with self._lock:
            data = self.clients.get(client_id)
            return Client(**data) if data else None

    def find_client_by_dni(self, dni):
        with self._lock:
            for data in self.clients.values():
                if data["dni"] == dni:
                    return Client(**data)
        return None

    def list_clients(self, active_only=False):
        with self._lock:
            clients = [Client(**c) for c in self.clients.values()]
        if active_only:
            clients = [c for c in clients if c.active]
        return sorted(clients, key=lambda c: c.name.lower())

    def get_client_name(self, client_id):
        with self._lock:
            data = self.clients.get(client_id)
            return data["name"] if data else None

    # Tickets

    def insert_ticket(self, ticket: NewTicket) -> Ticket:
        with self._lock:
            if ticket.client_id not in self.clients:
                raise ClientNotFoundError(f"Client {ticket.client_id} not found")
            code = ticket.code or generate_ticket_code(ticket.client_id)
            if code in self.code_index:
                raise DuplicateTicketCodeError(f"Ticket code {code} already exists")
            ticket_id = self._next_id("tickets")
            data = ticket.model_dump()
            data.update({"id": ticket_id, "code": code, "updated_by": None, "updated_at": None})
            self.tickets[ticket_id] = data
            self.code_index[code] = ticket_id
            return Ticket(**data)

    def get_ticket(self, ticket_id):
        with self._lock:
            data = self.tickets.get(ticket_id)
            return Ticket(**data) if data else None

    def _select_tickets(self, predicate) -> List[Ticket]:
        with self._lock:
            rows = [Ticket(**t) for t in self.tickets.values() if predicate(t)]
        return _newest_first(rows)

    def list_tickets(self):
        return self._select_tickets(lambda t: True)

    def list_tickets_by_client(self, client_id):
        return self._select_tickets(lambda t: t["client_id"] == client_id)

    def list_tickets_between(self, start, end):
        return self._select_tickets(lambda t: start <= t["date"] < end)

    def update_ticket(self, ticket_id, fields):
        unknown = set(fields) - TICKET_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update ticket fields: {sorted(unknown)}")
        with self._lock:
            data = self.tickets.get(ticket_id)
            if not data:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")
            data.update(fields)
            return Ticket(**data)

    def delete_ticket(self, ticket_id):
        with self._lock:
            data = self.tickets.pop(ticket_id, None)
            if not data:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")
            self.code_index.pop(data["code"], None)

    # Users

    def add_user(self, username, password_hash, role, active=True) -> User:
        with self._lock:
            if self.get_user_by_username(username):
                raise DuplicateUsernameError(f"Username {username} is already taken")
            user_id = self._next_id("users")
            self.users[user_id] = {
                "id": user_id, "username": username, "password_hash": password_hash,
                "role": Role(role), "active": active,
                "created_at": datetime.now(timezone.utc),
            }
            return User(**self.users[user_id])

    def get_user(self, user_id):
        with self._lock:
            data = self.users.get(user_id)
            return User(**data) if data else None

    def get_user_by_username(self, username):
        with self._lock:
            for data in self.users.values():
                if data["username"] == username:
                    return User(**data)
        return None

    def list_users(self):
        with self._lock:
            users = [User(**u) for u in self.users.values()]
        return sorted(users, key=lambda u: u.username)

    def update_user(self, user_id, fields):
        unknown = set(fields) - USER_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user fields: {sorted(unknown)}")
        with self._lock:
            data = self.users.get(user_id)
            if not data:
                raise UserNotFoundError(f"User {user_id} not found")
            if "username" in fields:
                other = self.get_user_by_username(fields["username"])
                if other and other.id != user_id:
                    raise DuplicateUsernameError(f"Username {fields['username']} is already taken")
            data.update(fields)
            return User(**data)

    def delete_user(self, user_id):
        with self._lock:
            if self.users.pop(user_id, None) is None:
                raise UserNotFoundError(f"User {user_id} not found")

    def count_users(self):
        with self._lock:
            return len(self.users)

    def get_username(self, user_id):
        with self._lock:
            data = self.users.get(user_id)
            return data["username"] if data else None
