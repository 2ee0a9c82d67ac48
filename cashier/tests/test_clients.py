"""Tests for the client registry."""

from decimal import Decimal

import pytest

from cashier.exceptions import ClientNotFoundError, DuplicateDniError, ValidationError
from cashier.models import CreateClientRequest, MembershipType, TicketType, UpdateClientRequest


def _request(name="Ana Gomez", dni="12345678", membership=MembershipType.REGULAR, active=True):
    return CreateClientRequest(name=name, dni=dni, membership_type=membership, active=active)


class TestClientRegistration:

    def test_create_client(self, clients):
        client = clients.create_client(_request(membership=MembershipType.VIP))

        assert client.id is not None
        assert client.name == "Ana Gomez"
        assert client.membership_type == MembershipType.VIP
        assert client.active is True

    def test_name_and_dni_are_trimmed(self, clients):
        client = clients.create_client(_request(name="  Ana  ", dni=" 12345678 "))
        assert client.name == "Ana"
        assert client.dni == "12345678"

    @pytest.mark.parametrize("dni", ["1234567", "123456789", "1234567a", "", "12 45678"])
    def test_dni_must_be_eight_digits(self, clients, dni):
        with pytest.raises(ValidationError):
            clients.create_client(_request(dni=dni))

    def test_name_required(self, clients):
        with pytest.raises(ValidationError):
            clients.create_client(_request(name="   "))

    def test_duplicate_dni_rejected(self, clients):
        clients.create_client(_request())
        with pytest.raises(DuplicateDniError):
            clients.create_client(_request(name="Someone Else"))

    def test_is_unique_dni_excludes_self(self, clients):
        client = clients.create_client(_request())
        assert clients.is_unique_dni("12345678") is False
        assert clients.is_unique_dni("12345678", exclude_id=client.id) is True


class TestClientUpdates:

    def test_update_keeps_own_dni(self, clients):
        client = clients.create_client(_request())
        updated = clients.update_client(client.id, UpdateClientRequest(
            name="Ana Maria Gomez", dni="12345678", membership_type=MembershipType.PLATINUM,
        ))
        assert updated.name == "Ana Maria Gomez"
        assert updated.membership_type == MembershipType.PLATINUM

    def test_update_to_taken_dni_rejected(self, clients):
        clients.create_client(_request())
        other = clients.create_client(_request(name="Luis", dni="87654321"))
        with pytest.raises(DuplicateDniError):
            clients.update_client(other.id, UpdateClientRequest(name="Luis", dni="12345678"))

    def test_update_missing_client(self, clients):
        with pytest.raises(ClientNotFoundError):
            clients.update_client(99, UpdateClientRequest(name="X", dni="11112222"))

    def test_toggle_status(self, clients):
        client = clients.create_client(_request())
        assert clients.toggle_client_status(client.id).active is False
        assert clients.toggle_client_status(client.id).active is True


class TestClientQueries:

    def test_list_active_only_and_search(self, clients):
        clients.create_client(_request(name="Ana Gomez", dni="12345678"))
        inactive = clients.create_client(_request(name="Bruno Diaz", dni="23456789", active=False))
        clients.create_client(_request(name="Carla Paz", dni="34567890"))

        assert len(clients.list_clients()) == 3
        assert inactive.id not in {c.id for c in clients.list_clients(active_only=True)}
        assert [c.name for c in clients.list_clients(search="gom")] == ["Ana Gomez"]
        assert [c.name for c in clients.list_clients(search="3456789")] == ["Bruno Diaz", "Carla Paz"]

    def test_membership_tiers_are_ordered(self):
        ranks = [m.rank for m in MembershipType]
        assert ranks == sorted(ranks)
        assert MembershipType.REGULAR.rank < MembershipType.PLATINUM.rank

    def test_client_detail(self, clients, ledger, patron_id, make_ticket):
        make_ticket(patron_id, TicketType.DEPOSIT, "300")
        make_ticket(patron_id, TicketType.WITHDRAWAL, "120.50")

        detail = clients.get_client_detail(patron_id)
        assert detail.client.id == patron_id
        assert detail.balance == Decimal("179.50")
        assert len(detail.tickets) == 2

    def test_detail_missing_client(self, clients):
        with pytest.raises(ClientNotFoundError):
            clients.get_client_detail(404)
