"""Dashboard figures: registry counts, ledger totals and the last week of activity."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from .ledger import CENT, ZERO, compute_balance
from .models import DailyTotals, DashboardSummary, TicketType
from .service import LedgerService

RECENT_TICKETS = 5
CHART_DAYS = 7


def dashboard_summary(ledger: LedgerService, now: Optional[datetime] = None) -> DashboardSummary:
    now = now or datetime.now(timezone.utc)
    tz = ledger.settings.tzinfo
    clients = ledger.store.list_clients()
    tickets = ledger.store.list_tickets()

    total_balance = compute_balance(tickets)
    average = (total_balance / len(clients)).quantize(CENT) if clients else ZERO

    today = now.astimezone(tz).date()
    days = [today - timedelta(days=offset) for offset in range(CHART_DAYS - 1, -1, -1)]
    totals = {day: {TicketType.DEPOSIT: ZERO, TicketType.WITHDRAWAL: ZERO} for day in days}
    for ticket in tickets:
        day = ticket.date.astimezone(tz).date()
        if day in totals:
            totals[day][ticket.type] += ticket.amount

    return DashboardSummary(
        client_count=len(clients),
        active_client_count=sum(1 for c in clients if c.active),
        ticket_count=len(tickets),
        total_balance=total_balance,
        average_balance=average,
        recent_tickets=tickets[:RECENT_TICKETS],
        last_7_days=[
            DailyTotals(
                day=day.isoformat(),
                deposits=totals[day][TicketType.DEPOSIT],
                withdrawals=totals[day][TicketType.WITHDRAWAL],
            )
            for day in days
        ],
    )
