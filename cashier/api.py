import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from .auth import UserService, has_permission, require_permission
from .config import Settings
from .dashboard import dashboard_summary
from .db import SQLiteStorage
from .exceptions import (
    AuthenticationError,
    ClientNotFoundError,
    DuplicateError,
    InsufficientBalanceError,
    NotFoundError,
    PermissionDeniedError,
    StoreError,
    TicketNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from .export import NO_TICKETS_SENTINEL, export_filename, export_tickets
from .logging import setup_logging
from .models import (
    Client,
    ClientBalance,
    ClientDetail,
    CreateClientRequest,
    CreateTicketRequest,
    CreateUserRequest,
    DashboardSummary,
    ExportScope,
    Permission,
    SortDirection,
    Ticket,
    TicketResponse,
    TicketType,
    UpdateClientRequest,
    UpdateTicketRequest,
    UpdateUserRequest,
    User,
    UserPublic,
)
from .service import ClientService, LedgerService
from .store import InMemoryStorage, TicketStore

logger = logging.getLogger(__name__)

security = HTTPBasic()


@dataclass
class Services:
    settings: Settings
    store: TicketStore
    ledger: LedgerService
    clients: ClientService
    users: UserService


def build_services(settings: Settings) -> Services:
    if settings.store_backend == "memory":
        store = InMemoryStorage()
    else:
        store = SQLiteStorage(settings.database_path, timeout=settings.store_timeout_seconds)
    ledger = LedgerService(store, settings)
    users = UserService(store, bcrypt_rounds=settings.bcrypt_rounds)
    if settings.seed_default_users:
        users.seed_default_users()
    return Services(
        settings=settings,
        store=store,
        ledger=ledger,
        clients=ClientService(store, ledger),
        users=users,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user(
    credentials: HTTPBasicCredentials = Depends(security),
    services: Services = Depends(get_services),
) -> User:
    try:
        return services.users.authenticate(credentials.username, credentials.password)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Basic"},
        )


def _authorize(user: User, permission: Permission) -> None:
    try:
        require_permission(user, permission)
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))


def requires(permission: Permission):
    def dependency(user: User = Depends(current_user)) -> User:
        _authorize(user, permission)
        return user
    return dependency


def _visible_client(services: Services, user: User, client_id: int) -> Client:
    """Resolve a client the caller may see; cashiers only see active clients."""
    try:
        client = services.clients.get_client(client_id)
    except ClientNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Client {client_id} not found")
    if has_permission(user.role, Permission.VIEW_ALL_CLIENTS):
        return client
    if has_permission(user.role, Permission.VIEW_ACTIVE_CLIENTS) and client.active:
        return client
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Client {client_id} not found")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="Casino Cashier API",
        description="Cashier back office: client registry, deposit/withdrawal tickets and ledger balances",
        version="1.0.0",
    )
    app.state.services = build_services(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StoreError)
    def store_error_handler(request: Request, exc: StoreError):
        logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Storage backend unavailable"},
        )

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "casino-cashier"}

    @app.get("/me", tags=["Users"])
    def me(user: User = Depends(current_user)):
        return {
            "user": user.to_public(),
            "permissions": sorted(p.value for p in Permission if has_permission(user.role, p)),
        }

    # ---------- Clients ----------

    @app.get("/clients", response_model=list[Client], tags=["Clients"])
    def list_clients(
        search: Optional[str] = None,
        active_only: bool = False,
        user: User = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        if has_permission(user.role, Permission.VIEW_ALL_CLIENTS):
            return services.clients.list_clients(active_only=active_only, search=search)
        if has_permission(user.role, Permission.VIEW_ACTIVE_CLIENTS):
            return services.clients.list_clients(active_only=True, search=search)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permission view_active_clients required")

    @app.post("/clients", response_model=Client, status_code=status.HTTP_201_CREATED, tags=["Clients"])
    def create_client(
        request: CreateClientRequest,
        user: User = Depends(requires(Permission.MANAGE_CLIENTS)),
        services: Services = Depends(get_services),
    ):
        try:
            return services.clients.create_client(request)
        except DuplicateError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.get("/clients/{client_id}", response_model=ClientDetail, tags=["Clients"])
    def get_client(
        client_id: int,
        user: User = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        _visible_client(services, user, client_id)
        return services.clients.get_client_detail(client_id)

    @app.put("/clients/{client_id}", response_model=Client, tags=["Clients"])
    def update_client(
        client_id: int,
        request: UpdateClientRequest,
        user: User = Depends(requires(Permission.MANAGE_CLIENTS)),
        services: Services = Depends(get_services),
    ):
        try:
            return services.clients.update_client(client_id, request)
        except ClientNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Client {client_id} not found")
        except DuplicateError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.post("/clients/{client_id}/toggle", response_model=Client, tags=["Clients"])
    def toggle_client(
        client_id: int,
        user: User = Depends(requires(Permission.MANAGE_CLIENTS)),
        services: Services = Depends(get_services),
    ):
        try:
            return services.clients.toggle_client_status(client_id)
        except ClientNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Client {client_id} not found")

    @app.get("/clients/{client_id}/balance", response_model=ClientBalance, tags=["Clients"])
    def get_client_balance(
        client_id: int,
        user: User = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        _visible_client(services, user, client_id)
        return services.ledger.get_client_balance(client_id)

    @app.get("/clients/{client_id}/tickets", response_model=list[Ticket], tags=["Clients"])
    def get_client_tickets(
        client_id: int,
        user: User = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        _visible_client(services, user, client_id)
        return services.ledger.list_client_tickets(client_id)

    # ---------- Tickets ----------

    @app.get("/tickets", response_model=list[Ticket], tags=["Tickets"])
    def list_tickets(
        type: Optional[TicketType] = None,
        search: Optional[str] = None,
        sort: SortDirection = SortDirection.DESC,
        user: User = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        return services.ledger.list_tickets(type_filter=type, search=search, sort=sort)

    @app.post("/tickets", response_model=TicketResponse, status_code=status.HTTP_201_CREATED, tags=["Tickets"])
    def create_ticket(
        request: CreateTicketRequest,
        user: User = Depends(requires(Permission.CREATE_TICKETS)),
        services: Services = Depends(get_services),
    ):
        _visible_client(services, user, request.client_id)
        try:
            return services.ledger.create_ticket(request, created_by=user.id)
        except InsufficientBalanceError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except ClientNotFoundError:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail=f"Client {request.client_id} not found"
            )
        except DuplicateError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.get("/tickets/today", response_model=list[Ticket], tags=["Tickets"])
    def list_tickets_today(
        user: User = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        return services.ledger.list_tickets_today()

    @app.get("/tickets/export", tags=["Tickets"])
    def export(
        scope: ExportScope = ExportScope.TODAY,
        user: User = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        needed = Permission.EXPORT_ALL_TICKETS if scope == ExportScope.ALL else Permission.EXPORT_TODAY_TICKETS
        _authorize(user, needed)

        content = export_tickets(services.ledger, scope)
        if content == NO_TICKETS_SENTINEL:
            return Response(status_code=status.HTTP_204_NO_CONTENT)

        filename = export_filename(datetime.now(timezone.utc), services.settings.tzinfo)
        return Response(
            content=content,
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.get("/tickets/{ticket_id}", response_model=Ticket, tags=["Tickets"])
    def get_ticket(
        ticket_id: int,
        user: User = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        try:
            return services.ledger.get_ticket(ticket_id)
        except TicketNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Ticket {ticket_id} not found")

    @app.patch("/tickets/{ticket_id}", response_model=Ticket, tags=["Tickets"])
    def update_ticket(
        ticket_id: int,
        request: UpdateTicketRequest,
        user: User = Depends(requires(Permission.EDIT_TICKETS)),
        services: Services = Depends(get_services),
    ):
        try:
            return services.ledger.update_ticket(ticket_id, request, updated_by=user.id)
        except TicketNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Ticket {ticket_id} not found")
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.delete("/tickets/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Tickets"])
    def delete_ticket(
        ticket_id: int,
        user: User = Depends(requires(Permission.DELETE_TICKETS)),
        services: Services = Depends(get_services),
    ):
        try:
            services.ledger.delete_ticket(ticket_id)
        except TicketNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Ticket {ticket_id} not found")
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # ---------- Users ----------

    @app.get("/users", response_model=list[UserPublic], tags=["Users"])
    def list_users(
        user: User = Depends(requires(Permission.MANAGE_USERS)),
        services: Services = Depends(get_services),
    ):
        return [u.to_public() for u in services.users.list_users()]

    @app.post("/users", response_model=UserPublic, status_code=status.HTTP_201_CREATED, tags=["Users"])
    def create_user(
        request: CreateUserRequest,
        user: User = Depends(requires(Permission.MANAGE_USERS)),
        services: Services = Depends(get_services),
    ):
        try:
            return services.users.create_user(request).to_public()
        except DuplicateError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.put("/users/{user_id}", response_model=UserPublic, tags=["Users"])
    def update_user(
        user_id: int,
        request: UpdateUserRequest,
        user: User = Depends(requires(Permission.MANAGE_USERS)),
        services: Services = Depends(get_services),
    ):
        try:
            return services.users.update_user(user_id, request).to_public()
        except UserNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User {user_id} not found")
        except DuplicateError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Users"])
    def delete_user(
        user_id: int,
        user: User = Depends(requires(Permission.MANAGE_USERS)),
        services: Services = Depends(get_services),
    ):
        try:
            services.users.delete_user(user_id, acting_user_id=user.id)
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User {user_id} not found")
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # ---------- Dashboard ----------

    @app.get("/dashboard", response_model=DashboardSummary, tags=["Dashboard"])
    def dashboard(
        user: User = Depends(requires(Permission.VIEW_DASHBOARD)),
        services: Services = Depends(get_services),
    ):
        return dashboard_summary(services.ledger)

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
