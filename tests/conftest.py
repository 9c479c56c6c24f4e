"""Pytest fixtures for testing"""

import httpx
import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from capping_gateway.api.dependencies import get_ledger_client, get_request_id
from capping_gateway.api.main import create_app
from capping_gateway.domain.capping import CappingPolicy
from capping_gateway.domain.models import Account, Role
from capping_gateway.infrastructure.clients.ledger import LedgerClient
from capping_gateway.utils.money import to_minor_units
from mock.ledger_server.main import InMemoryLedger, create_app as create_ledger_app

LEDGER_BASE_URL = "http://ledger.test"


def make_account(
    account_id: str,
    role: Role,
    balance: str,
    created_by: str | None = None,
    name: str | None = None,
) -> Account:
    """Account snapshot with the balance given in rupees"""
    return Account(
        id=account_id,
        name=name or account_id,
        role=role,
        balance_cents=to_minor_units(balance),
        created_by=created_by,
    )


@pytest.fixture
def policy() -> CappingPolicy:
    """Distributor floor ₹10,000, reseller floor ₹1,000"""
    return CappingPolicy.from_amounts("10000", "1000")


@pytest.fixture
def ledger() -> InMemoryLedger:
    """Fresh reference ledger seeded from mock/ledger_stub"""
    return InMemoryLedger.from_stub()


@pytest.fixture
def ledger_app(ledger: InMemoryLedger) -> FastAPI:
    return create_ledger_app(ledger)


@pytest.fixture
def ledger_transport(ledger_app: FastAPI) -> httpx.ASGITransport:
    return httpx.ASGITransport(app=ledger_app)


@pytest.fixture
def make_client(ledger_transport: httpx.ASGITransport):
    """Factory for LedgerClients acting as a given account of the reference ledger"""

    def factory(token: str | None) -> LedgerClient:
        client = LedgerClient(base_url=LEDGER_BASE_URL, token=token, transport=ledger_transport)
        client.backoff_base = 0
        return client

    return factory


@pytest.fixture
def client(ledger_transport: httpx.ASGITransport) -> TestClient:
    """Gateway test client talking to the in-process reference ledger"""
    app = create_app()

    def override_get_ledger_client(request: Request) -> LedgerClient:
        token = request.headers.get("Authorization", "").removeprefix("Bearer ").strip() or None
        return LedgerClient(
            base_url=LEDGER_BASE_URL,
            token=token,
            transport=ledger_transport,
            request_id=get_request_id(request),
        )

    app.dependency_overrides[get_ledger_client] = override_get_ledger_client
    return TestClient(app)
