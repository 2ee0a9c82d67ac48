"""
export.py
CSV projection of the ticket ledger.
"""

from __future__ import annotations

import csv
import logging
from datetime import datetime, tzinfo
from typing import Callable, Iterable, Optional

import pandas as pd

from .exceptions import StoreError
from .models import ExportScope, Ticket
from .service import LedgerService
from .store import TicketStore

logger = logging.getLogger(__name__)

NO_TICKETS_SENTINEL = "No tickets to export"
UNKNOWN_CLIENT = "Unknown client"
SYSTEM_USER = "system"

CSV_COLUMNS = ["Code", "Client", "Type", "Amount", "Payment Method", "Date", "Created By"]


def _cached_lookup(lookup: Callable[[int], Optional[str]], placeholder: str) -> Callable[[Optional[int]], str]:
    """Wrap a best-effort name lookup: misses and store failures become ``placeholder``."""
    cache: dict[int, str] = {}

    def resolve(key: Optional[int]) -> str:
        if key is None:
            return placeholder
        if key not in cache:
            try:
                name = lookup(key)
            except StoreError as e:
                logger.warning("Lookup for %s failed, using %r: %s", key, placeholder, e)
                name = None
            cache[key] = name if name is not None else placeholder
        return cache[key]

    return resolve


def tickets_to_rows(tickets: Iterable[Ticket], store: TicketStore, tz: tzinfo) -> list[dict]:
    client_name = _cached_lookup(store.get_client_name, UNKNOWN_CLIENT)
    username = _cached_lookup(store.get_username, SYSTEM_USER)
    return [
        {
            "Code": t.code,
            "Client": client_name(t.client_id),
            "Type": t.type.value,
            "Amount": f"{t.amount:.2f}",
            "Payment Method": t.payment_method.label,
            "Date": t.date.astimezone(tz).strftime("%Y-%m-%d %H:%M:%S"),
            "Created By": username(t.created_by),
        }
        for t in tickets
    ]


def tickets_to_csv(tickets: Iterable[Ticket], store: TicketStore, tz: tzinfo) -> str:
    """Render tickets as CSV with every field quoted; empty input gives the sentinel."""
    rows = tickets_to_rows(tickets, store, tz)
    if not rows:
        return NO_TICKETS_SENTINEL
    df = pd.DataFrame(rows, columns=CSV_COLUMNS)
    return df.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")


def export_tickets(
    ledger: LedgerService,
    scope: ExportScope = ExportScope.ALL,
    now: Optional[datetime] = None,
) -> str:
    if ExportScope(scope) == ExportScope.TODAY:
        tickets = ledger.list_tickets_today(now)
    else:
        tickets = ledger.list_tickets()
    logger.info("Exporting %s tickets (scope=%s)", len(tickets), ExportScope(scope).value)
    return tickets_to_csv(tickets, ledger.store, ledger.settings.tzinfo)


def export_filename(now: datetime, tz: tzinfo) -> str:
    return f"tickets_{now.astimezone(tz).date().isoformat()}.csv"
