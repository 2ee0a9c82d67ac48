"""Pytest configuration and fixtures."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from cashier.config import Settings
from cashier.models import MembershipType, NewTicket, PaymentMethod, TicketType
from cashier.service import ClientService, LedgerService
from cashier.store import InMemoryStorage


@pytest.fixture
def settings() -> Settings:
    """Memory-backed settings pinned to UTC with cheap bcrypt."""
    return Settings(
        store_backend="memory",
        timezone="UTC",
        bcrypt_rounds=4,
        seed_default_users=False,
    )


@pytest.fixture
def store() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def ledger(store, settings) -> LedgerService:
    return LedgerService(store, settings)


@pytest.fixture
def clients(store, ledger) -> ClientService:
    return ClientService(store, ledger)


@pytest.fixture
def patron_id(store) -> int:
    """A registered, active client."""
    return store.add_client("Lucia Fernandez", "30123456", MembershipType.GOLD, True).id


@pytest.fixture
def make_ticket(store):
    """Insert a ticket directly through the store, bypassing authorization."""

    def _make(client_id, ticket_type, amount, date=None, code=None, created_by=None,
              payment_method=PaymentMethod.CASH):
        return store.insert_ticket(NewTicket(
            client_id=client_id,
            type=TicketType(ticket_type),
            amount=Decimal(str(amount)),
            date=date or datetime.now(timezone.utc),
            payment_method=payment_method,
            code=code,
            created_by=created_by,
        ))

    return _make
