"""Tests for the dashboard summary."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from cashier.dashboard import dashboard_summary
from cashier.models import TicketType

NOW = datetime(2024, 5, 10, 18, 0, tzinfo=timezone.utc)


class TestDashboardSummary:

    def test_empty(self, ledger):
        summary = dashboard_summary(ledger, now=NOW)

        assert summary.client_count == 0
        assert summary.ticket_count == 0
        assert summary.total_balance == Decimal("0.00")
        assert summary.average_balance == Decimal("0.00")
        assert summary.recent_tickets == []
        assert len(summary.last_7_days) == 7
        assert all(d.deposits == 0 and d.withdrawals == 0 for d in summary.last_7_days)

    def test_counts_and_balances(self, ledger, store, patron_id, make_ticket):
        store.add_client("Inactive", "22222222", "Silver", False)
        make_ticket(patron_id, TicketType.DEPOSIT, "100", date=NOW)
        make_ticket(patron_id, TicketType.WITHDRAWAL, "25", date=NOW)

        summary = dashboard_summary(ledger, now=NOW)

        assert summary.client_count == 2
        assert summary.active_client_count == 1
        assert summary.ticket_count == 2
        assert summary.total_balance == Decimal("75.00")
        assert summary.average_balance == Decimal("37.50")

    def test_recent_tickets_newest_first(self, ledger, patron_id, make_ticket):
        created = [
            make_ticket(patron_id, TicketType.DEPOSIT, str(i + 1), date=NOW - timedelta(hours=i))
            for i in range(7)
        ]

        summary = dashboard_summary(ledger, now=NOW)

        assert [t.id for t in summary.recent_tickets] == [t.id for t in created[:5]]

    def test_seven_day_series(self, ledger, patron_id, make_ticket):
        make_ticket(patron_id, TicketType.DEPOSIT, "10", date=NOW)
        make_ticket(patron_id, TicketType.DEPOSIT, "5", date=NOW - timedelta(hours=1))
        make_ticket(patron_id, TicketType.WITHDRAWAL, "3", date=NOW - timedelta(days=6))
        make_ticket(patron_id, TicketType.DEPOSIT, "99", date=NOW - timedelta(days=7))

        series = dashboard_summary(ledger, now=NOW).last_7_days

        assert [d.day for d in series] == [
            (NOW.date() - timedelta(days=offset)).isoformat() for offset in range(6, -1, -1)
        ]
        assert series[-1].deposits == Decimal("15.00")
        assert series[0].withdrawals == Decimal("3.00")
        assert sum(d.deposits for d in series) == Decimal("15.00")
