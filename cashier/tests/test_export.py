"""Tests for the CSV ticket export."""

import csv
import io
from datetime import datetime, timezone

from cashier.exceptions import StoreError
from cashier.export import (
    CSV_COLUMNS,
    NO_TICKETS_SENTINEL,
    SYSTEM_USER,
    UNKNOWN_CLIENT,
    export_filename,
    export_tickets,
    tickets_to_csv,
)
from cashier.models import ExportScope, NewTicket, PaymentMethod, Role, TicketType
from cashier.store import InMemoryStorage

NOW = datetime(2024, 5, 10, 15, 30, tzinfo=timezone.utc)


def _parse(content):
    return list(csv.reader(io.StringIO(content)))


class TestExport:

    def test_empty_export_returns_sentinel(self, ledger):
        """No tickets gives the sentinel string, not a header-only document."""
        assert export_tickets(ledger, ExportScope.ALL) == NO_TICKETS_SENTINEL
        assert export_tickets(ledger, ExportScope.TODAY, now=NOW) == NO_TICKETS_SENTINEL

    def test_rows_and_labels(self, ledger, store, patron_id, make_ticket):
        cashier = store.add_user("caja", "hash", Role.CASHIER, True)
        make_ticket(
            patron_id, TicketType.WITHDRAWAL, "75.5", date=NOW, code="TICK-00001-1-001",
            created_by=cashier.id, payment_method=PaymentMethod.BANK_TRANSFER,
        )

        rows = _parse(export_tickets(ledger, ExportScope.ALL))

        assert rows[0] == CSV_COLUMNS
        assert rows[1] == [
            "TICK-00001-1-001",
            "Lucia Fernandez",
            "Withdrawal",
            "75.50",
            "Bank Transfer",
            "2024-05-10 15:30:00",
            "caja",
        ]

    def test_every_field_quoted(self, ledger, patron_id, make_ticket):
        make_ticket(patron_id, TicketType.DEPOSIT, "10", date=NOW)
        content = export_tickets(ledger, ExportScope.ALL)

        for line in content.strip().split("\n"):
            assert line.startswith('"') and line.endswith('"')
            assert line.count('","') == len(CSV_COLUMNS) - 1

    def test_embedded_quotes_and_commas_escaped(self, ledger, store, make_ticket):
        tricky = store.add_client('Juan "El Rey", Perez', "55555555", "VIP", True)
        make_ticket(tricky.id, TicketType.DEPOSIT, "1", date=NOW)

        content = export_tickets(ledger, ExportScope.ALL)

        assert '"Juan ""El Rey"", Perez"' in content
        assert _parse(content)[1][1] == 'Juan "El Rey", Perez'

    def test_lookup_misses_degrade_to_placeholders(self, ledger, store, patron_id, make_ticket):
        make_ticket(patron_id, TicketType.DEPOSIT, "10", date=NOW, created_by=77)
        store.clients.pop(patron_id)

        row = _parse(export_tickets(ledger, ExportScope.ALL))[1]
        assert row[1] == UNKNOWN_CLIENT
        assert row[6] == SYSTEM_USER

    def test_missing_creator_is_system(self, ledger, patron_id, make_ticket):
        make_ticket(patron_id, TicketType.DEPOSIT, "10", date=NOW)
        assert _parse(export_tickets(ledger, ExportScope.ALL))[1][6] == SYSTEM_USER

    def test_lookup_failure_degrades(self, settings):
        class FlakyStore(InMemoryStorage):
            def get_client_name(self, client_id):
                raise StoreError("connection reset")

        store = FlakyStore()
        client = store.add_client("Flaky", "12121212", "Regular", True)
        store.insert_ticket(NewTicket(
            client_id=client.id, type=TicketType.DEPOSIT, amount="5", date=NOW,
        ))

        rows = _parse(tickets_to_csv(store.list_tickets(), store, settings.tzinfo))
        assert rows[1][1] == UNKNOWN_CLIENT

    def test_today_scope(self, ledger, patron_id, make_ticket):
        make_ticket(patron_id, TicketType.DEPOSIT, "1", date=datetime(2024, 5, 9, 23, 59, tzinfo=timezone.utc))
        make_ticket(patron_id, TicketType.DEPOSIT, "2", date=datetime(2024, 5, 10, 0, 0, tzinfo=timezone.utc))

        rows = _parse(export_tickets(ledger, ExportScope.TODAY, now=NOW))
        assert len(rows) == 2
        assert rows[1][3] == "2.00"

        assert len(_parse(export_tickets(ledger, ExportScope.ALL))) == 3

    def test_export_filename(self, settings):
        assert export_filename(NOW, settings.tzinfo) == "tickets_2024-05-10.csv"
