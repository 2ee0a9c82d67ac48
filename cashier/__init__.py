"""
Casino Cashier Back Office

This package provides:
- Client (patron) registry with unique national IDs
- Deposit and withdrawal tickets with generated ticket codes
- Derived client balances and withdrawal authorization
- Role-based users (admin / cashier) with bcrypt passwords
- CSV export and dashboard reporting
"""

from .models import (
    Client,
    MembershipType,
    PaymentMethod,
    Permission,
    Role,
    Ticket,
    TicketType,
)
from .service import ClientService, LedgerService

__all__ = [
    "Client",
    "MembershipType",
    "PaymentMethod",
    "Permission",
    "Role",
    "Ticket",
    "TicketType",
    "ClientService",
    "LedgerService",
]
