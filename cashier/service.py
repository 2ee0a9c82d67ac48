import logging
import re
import threading
import weakref
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .config import Settings
from .exceptions import (
    ClientNotFoundError,
    DuplicateDniError,
    DuplicateTicketCodeError,
    InsufficientBalanceError,
    TicketNotFoundError,
    ValidationError,
)
from .ledger import (
    compute_balance,
    day_bounds,
    generate_ticket_code,
    is_withdrawal_permitted,
    validate_amount,
)
from .models import (
    Client,
    ClientBalance,
    ClientDetail,
    CreateClientRequest,
    CreateTicketRequest,
    NewTicket,
    PaymentMethod,
    SortDirection,
    Ticket,
    TicketResponse,
    TicketType,
    UpdateClientRequest,
    UpdateTicketRequest,
)
from .store import TicketStore

logger = logging.getLogger(__name__)

DNI_PATTERN = re.compile(r"^\d{8}$")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ClientLocks:
    """
    One lock per client id; writes for a client are serialized, other clients are not.

    A lock lives only while some caller holds a reference to it, so ids that
    are no longer in use (or never existed) do not accumulate.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def for_client(self, client_id: int) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(client_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[client_id] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)


class LedgerService:
    def __init__(self, store: TicketStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or Settings(store_backend="memory")
        self.locks = ClientLocks()

    # ---------- Balance ----------

    def get_balance(self, client_id: int) -> Decimal:
        return compute_balance(self.store.list_tickets_by_client(client_id))

    def get_client_balance(self, client_id: int) -> ClientBalance:
        tickets = self.store.list_tickets_by_client(client_id)
        last = max(tickets, key=lambda t: t.date) if tickets else None
        return ClientBalance(
            client_id=client_id,
            current_balance=compute_balance(tickets),
            total_tickets=len(tickets),
            last_transaction_at=last.date if last else None,
        )

    def can_withdraw(self, client_id: int, amount) -> bool:
        try:
            amount = validate_amount(amount)
        except ValidationError:
            return False
        return is_withdrawal_permitted(amount, self.get_balance(client_id))

    # ---------- Ticket workflow ----------

    def create_deposit(
        self,
        client_id: int,
        amount,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        created_by: Optional[int] = None,
        code: Optional[str] = None,
    ) -> TicketResponse:
        amount = validate_amount(amount)
        with self.locks.for_client(client_id):
            ticket = self._insert(client_id, TicketType.DEPOSIT, amount, payment_method, created_by, code)
            balance = self.get_balance(client_id)

        logger.info(
            "Deposit %s for client %s (%s)", amount, client_id, ticket.code,
            extra={"client_id": client_id, "ticket_code": ticket.code},
        )
        return TicketResponse(ticket=ticket, balance_after=balance, message="Deposit registered successfully")

    def request_withdrawal(
        self,
        client_id: int,
        amount,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        created_by: Optional[int] = None,
        code: Optional[str] = None,
    ) -> TicketResponse:
        amount = validate_amount(amount)
        # Check and insert under the client's lock so concurrent withdrawals
        # cannot both spend the same balance.
        with self.locks.for_client(client_id):
            balance = self.get_balance(client_id)
            if not is_withdrawal_permitted(amount, balance):
                logger.warning(
                    "Rejected withdrawal of %s for client %s: balance %s", amount, client_id, balance,
                    extra={"client_id": client_id},
                )
                raise InsufficientBalanceError(client_id, amount, balance)
            ticket = self._insert(client_id, TicketType.WITHDRAWAL, amount, payment_method, created_by, code)

        logger.info(
            "Withdrawal %s for client %s (%s)", amount, client_id, ticket.code,
            extra={"client_id": client_id, "ticket_code": ticket.code},
        )
        return TicketResponse(
            ticket=ticket, balance_after=balance - amount, message="Withdrawal registered successfully"
        )

    def create_ticket(self, request: CreateTicketRequest, created_by: Optional[int] = None) -> TicketResponse:
        if request.type == TicketType.WITHDRAWAL:
            return self.request_withdrawal(
                request.client_id, request.amount, request.payment_method, created_by, request.code
            )
        return self.create_deposit(
            request.client_id, request.amount, request.payment_method, created_by, request.code
        )

    def _insert(
        self,
        client_id: int,
        ticket_type: TicketType,
        amount: Decimal,
        payment_method: PaymentMethod,
        created_by: Optional[int],
        code: Optional[str],
    ) -> Ticket:
        now = datetime.now(timezone.utc)
        new_ticket = NewTicket(
            client_id=client_id,
            type=ticket_type,
            amount=amount,
            date=now,
            payment_method=payment_method,
            code=code,
            created_by=created_by,
        )
        if code is not None:
            # A caller-supplied code is theirs to keep unique
            return self.store.insert_ticket(new_ticket)

        attempts = self.settings.ticket_code_attempts
        for attempt in range(1, attempts + 1):
            new_ticket.code = generate_ticket_code(client_id, now)
            try:
                return self.store.insert_ticket(new_ticket)
            except DuplicateTicketCodeError:
                logger.warning("Ticket code collision on attempt %s/%s: %s", attempt, attempts, new_ticket.code)
        raise DuplicateTicketCodeError(f"Could not allocate a unique ticket code after {attempts} attempts")

    # ---------- Queries ----------

    def get_ticket(self, ticket_id: int) -> Ticket:
        ticket = self.store.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    def list_tickets(
        self,
        type_filter: Optional[TicketType] = None,
        search: Optional[str] = None,
        sort: SortDirection = SortDirection.DESC,
    ) -> list[Ticket]:
        tickets = self.store.list_tickets()
        if type_filter is not None:
            tickets = [t for t in tickets if t.type == type_filter]

        if search and search.strip():
            term = search.strip().lower()
            names = {c.id: c.name.lower() for c in self.store.list_clients()}
            tickets = [
                t for t in tickets
                if term in names.get(t.client_id, "") or term in t.code.lower()
            ]

        tickets.sort(key=lambda t: (t.date, t.id), reverse=sort == SortDirection.DESC)
        return tickets

    def list_client_tickets(self, client_id: int) -> list[Ticket]:
        return self.store.list_tickets_by_client(client_id)

    def today_bounds(self, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
        return day_bounds(now or datetime.now(timezone.utc), self.settings.tzinfo)

    def list_tickets_today(self, now: Optional[datetime] = None) -> list[Ticket]:
        start, end = self.today_bounds(now)
        return self.store.list_tickets_between(start, end)

    # ---------- Corrections ----------

    def update_ticket(
        self, ticket_id: int, request: UpdateTicketRequest, updated_by: Optional[int] = None
    ) -> Ticket:
        """
        Correct a ticket in place.

        The edit is not re-authorized against the balance and leaves no
        reversal record; only ``updated_by``/``updated_at`` are stamped.
        """
        ticket = self.get_ticket(ticket_id)
        fields = {}
        if request.type is not None:
            fields["type"] = request.type
        if request.amount is not None:
            fields["amount"] = validate_amount(request.amount)
        if request.date is not None:
            fields["date"] = _as_utc(request.date)
        if request.payment_method is not None:
            fields["payment_method"] = request.payment_method
        if not fields:
            return ticket

        fields["updated_by"] = updated_by
        fields["updated_at"] = datetime.now(timezone.utc)
        with self.locks.for_client(ticket.client_id):
            updated = self.store.update_ticket(ticket_id, fields)
        logger.info("Ticket %s updated by %s: %s", ticket.code, updated_by, sorted(fields))
        return updated

    def delete_ticket(self, ticket_id: int) -> None:
        ticket = self.get_ticket(ticket_id)
        with self.locks.for_client(ticket.client_id):
            self.store.delete_ticket(ticket_id)
        logger.info("Ticket %s deleted", ticket.code)


class ClientService:
    def __init__(self, store: TicketStore, ledger: Optional[LedgerService] = None):
        self.store = store
        self.ledger = ledger or LedgerService(store)

    def _validate(self, request: CreateClientRequest, exclude_id: Optional[int] = None) -> tuple[str, str]:
        name = request.name.strip()
        dni = request.dni.strip()
        if not name:
            raise ValidationError("Client name is required")
        if not DNI_PATTERN.match(dni):
            raise ValidationError("DNI must be exactly 8 digits")
        if not self.is_unique_dni(dni, exclude_id):
            raise DuplicateDniError(f"DNI {dni} is already registered")
        return name, dni

    def is_unique_dni(self, dni: str, exclude_id: Optional[int] = None) -> bool:
        existing = self.store.find_client_by_dni(dni)
        return existing is None or existing.id == exclude_id

    def create_client(self, request: CreateClientRequest) -> Client:
        name, dni = self._validate(request)
        client = self.store.add_client(name, dni, request.membership_type, request.active)
        logger.info("Registered client %s (%s)", client.id, client.membership_type.value)
        return client

    def update_client(self, client_id: int, request: UpdateClientRequest) -> Client:
        self.get_client(client_id)
        name, dni = self._validate(request, exclude_id=client_id)
        return self.store.update_client(Client(
            id=client_id,
            name=name,
            dni=dni,
            membership_type=request.membership_type,
            active=request.active,
        ))

    def toggle_client_status(self, client_id: int) -> Client:
        client = self.get_client(client_id)
        client.active = not client.active
        return self.store.update_client(client)

    def get_client(self, client_id: int) -> Client:
        client = self.store.get_client(client_id)
        if client is None:
            raise ClientNotFoundError(f"Client {client_id} not found")
        return client

    def list_clients(self, active_only: bool = False, search: Optional[str] = None) -> list[Client]:
        clients = self.store.list_clients(active_only=active_only)
        if search and search.strip():
            term = search.strip().lower()
            clients = [c for c in clients if term in c.name.lower() or term in c.dni.lower()]
        return clients

    def get_client_detail(self, client_id: int) -> ClientDetail:
        client = self.get_client(client_id)
        tickets = self.ledger.list_client_tickets(client_id)
        return ClientDetail(client=client, balance=compute_balance(tickets), tickets=tickets)
