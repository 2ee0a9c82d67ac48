"""Tests for the in-memory store under concurrent use."""

import threading
from datetime import datetime, timezone
from decimal import Decimal

from cashier.models import MembershipType, NewTicket, Role, TicketType
from cashier.store import InMemoryStorage

WRITERS = 8
TICKETS_PER_WRITER = 200


class TestInMemoryStorageConcurrency:

    def test_reads_while_other_clients_write(self):
        """Listing never trips over inserts made by other threads."""
        store = InMemoryStorage()
        client_ids = [
            store.add_client(f"Client {i}", f"{10000000 + i}", MembershipType.REGULAR, True).id
            for i in range(WRITERS)
        ]
        errors = []
        done = threading.Event()

        def write(client_id):
            try:
                for n in range(TICKETS_PER_WRITER):
                    store.insert_ticket(NewTicket(
                        client_id=client_id,
                        type=TicketType.DEPOSIT,
                        amount=Decimal("1.00"),
                        date=datetime.now(timezone.utc),
                        code=f"T-{client_id}-{n}",
                    ))
                store.add_user(f"user{client_id}", "hash", Role.CASHIER, True)
            except Exception as e:
                errors.append(e)

        def read():
            try:
                while not done.is_set():
                    store.list_tickets()
                    store.list_tickets_between(datetime.min.replace(tzinfo=timezone.utc), datetime.now(timezone.utc))
                    store.list_clients()
                    store.list_users()
                    store.get_user_by_username("nobody")
            except Exception as e:
                errors.append(e)

        writers = [threading.Thread(target=write, args=(cid,)) for cid in client_ids]
        readers = [threading.Thread(target=read) for _ in range(4)]
        for t in readers + writers:
            t.start()
        for t in writers:
            t.join()
        done.set()
        for t in readers:
            t.join()

        assert errors == []
        assert len(store.list_tickets()) == WRITERS * TICKETS_PER_WRITER
        assert store.count_users() == WRITERS
