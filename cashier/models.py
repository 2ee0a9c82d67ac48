from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class TicketType(str, Enum):
    DEPOSIT = "Deposit"
    WITHDRAWAL = "Withdrawal"

    @property
    def sign(self) -> int:
        return 1 if self is TicketType.DEPOSIT else -1


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"

    @property
    def label(self) -> str:
        return {
            PaymentMethod.CASH: "Cash",
            PaymentMethod.CARD: "Card",
            PaymentMethod.BANK_TRANSFER: "Bank Transfer",
        }[self]


class MembershipType(str, Enum):
    REGULAR = "Regular"
    SILVER = "Silver"
    GOLD = "Gold"
    VIP = "VIP"
    PLATINUM = "Platinum"

    @property
    def rank(self) -> int:
        return list(MembershipType).index(self)


class Role(str, Enum):
    ADMIN = "admin"
    CASHIER = "cashier"


class Permission(str, Enum):
    VIEW_ALL_CLIENTS = "view_all_clients"
    VIEW_ACTIVE_CLIENTS = "view_active_clients"
    MANAGE_CLIENTS = "manage_clients"
    CREATE_TICKETS = "create_tickets"
    EDIT_TICKETS = "edit_tickets"
    DELETE_TICKETS = "delete_tickets"
    EXPORT_ALL_TICKETS = "export_all_tickets"
    EXPORT_TODAY_TICKETS = "export_today_tickets"
    MANAGE_USERS = "manage_users"
    VIEW_DASHBOARD = "view_dashboard"
    VIEW_SETTINGS = "view_settings"


class ExportScope(str, Enum):
    ALL = "all"
    TODAY = "today"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class Client(BaseModel):
    id: int
    name: str
    dni: str
    membership_type: MembershipType = MembershipType.REGULAR
    active: bool = True

    model_config = ConfigDict(from_attributes=True)


class Ticket(BaseModel):
    id: int
    client_id: int
    type: TicketType
    amount: Decimal
    date: datetime
    code: str
    payment_method: PaymentMethod = PaymentMethod.CASH
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class NewTicket(BaseModel):
    """A ticket row about to be inserted; the store assigns id and, if absent, code."""

    client_id: int
    type: TicketType
    amount: Decimal
    date: datetime
    payment_method: PaymentMethod = PaymentMethod.CASH
    code: Optional[str] = None
    created_by: Optional[int] = None


class User(BaseModel):
    id: int
    username: str
    password_hash: str
    role: Role = Role.CASHIER
    active: bool = True
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def to_public(self) -> "UserPublic":
        return UserPublic(**self.model_dump(exclude={"password_hash"}))


class UserPublic(BaseModel):
    id: int
    username: str
    role: Role
    active: bool
    created_at: datetime


class CreateClientRequest(BaseModel):
    name: str = Field(..., description="Display name of the patron")
    dni: str = Field(..., description="National ID, exactly 8 digits")
    membership_type: MembershipType = MembershipType.REGULAR
    active: bool = True

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "name": "Lucia Fernandez",
            "dni": "30123456",
            "membership_type": "Gold",
            "active": True
        }
    })


class UpdateClientRequest(CreateClientRequest):
    pass


class CreateTicketRequest(BaseModel):
    client_id: int
    type: TicketType = TicketType.DEPOSIT
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH
    code: Optional[str] = Field(default=None, description="Optional caller-supplied ticket code")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "client_id": 1,
            "type": "Withdrawal",
            "amount": "150.00",
            "payment_method": "cash"
        }
    })


class UpdateTicketRequest(BaseModel):
    type: Optional[TicketType] = None
    amount: Optional[Decimal] = None
    date: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None


class CreateUserRequest(BaseModel):
    username: str
    password: str
    role: Role = Role.CASHIER
    active: bool = True


class UpdateUserRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = Field(default=None, description="Leave empty to keep the current password")
    role: Optional[Role] = None
    active: Optional[bool] = None


class ClientBalance(BaseModel):
    client_id: int
    current_balance: Decimal
    total_tickets: int
    last_transaction_at: Optional[datetime] = None


class ClientDetail(BaseModel):
    client: Client
    balance: Decimal
    tickets: list[Ticket]


class TicketResponse(BaseModel):
    ticket: Ticket
    balance_after: Decimal
    message: str


class DailyTotals(BaseModel):
    day: str
    deposits: Decimal
    withdrawals: Decimal


class DashboardSummary(BaseModel):
    client_count: int
    active_client_count: int
    ticket_count: int
    total_balance: Decimal
    average_balance: Decimal
    recent_tickets: list[Ticket]
    last_7_days: list[DailyTotals]
