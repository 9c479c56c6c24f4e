"""Integration tests for LedgerClient against the mock ledger server"""

import httpx
import pytest

from capping_gateway.application.orchestrator import OrchestratorState, TransactionOrchestrator
from capping_gateway.domain.capping import CappingPolicy
from capping_gateway.domain.exceptions import (
    LedgerAPIError,
    LedgerNetworkError,
    LedgerRejectionError,
    LedgerUnauthorizedError,
    StaleBalanceError,
)
from capping_gateway.domain.models import Role, TransactionType
from capping_gateway.infrastructure.clients.ledger import LedgerClient
from conftest import LEDGER_BASE_URL


def mock_client(handler) -> LedgerClient:
    client = LedgerClient(base_url=LEDGER_BASE_URL, token="dist-a", transport=httpx.MockTransport(handler))
    client.backoff_base = 0
    return client


class TestReads:
    async def test_current_account(self, make_client):
        account = await make_client("dist-a").get_current_account()

        assert account.name == "Distributor A"
        assert account.role == Role.DISTRIBUTOR
        assert account.balance_cents == 1_500_000
        assert account.created_by == "admin-1"

    async def test_distributor_sees_own_resellers(self, make_client):
        accounts = await make_client("dist-a").list_accounts(Role.RESELLER)
        assert [a.id for a in accounts] == ["res-b", "res-c"]

    async def test_admin_sees_everyone(self, make_client):
        accounts = await make_client("admin-1").list_accounts()
        assert len(accounts) == 6

    async def test_capping_policy(self, make_client, policy):
        assert await make_client("res-b").get_capping_policy() == policy

    async def test_unknown_token_is_rejected(self, make_client):
        with pytest.raises(LedgerRejectionError) as exc_info:
            await make_client("nobody").get_current_account()
        assert exc_info.value.status_code == 401


class TestTransactions:
    async def test_credit_returns_authoritative_balances(self, make_client, ledger):
        receipt = await make_client("dist-a").create_transaction(
            TransactionType.CREDIT,
            400_000,
            "res-b",
            "req-1",
            expected_sender_balance_cents=1_500_000,
            expected_target_balance_cents=50_000,
        )

        assert receipt.sender_balance_after_cents == 1_100_000
        assert receipt.target_balance_after_cents == 450_000
        assert receipt.record.type == TransactionType.CREDIT
        assert receipt.record.target_name == "Reseller B"
        assert ledger.accounts["res-b"].balance_cents == 450_000

    async def test_stale_expected_balance_is_409(self, make_client, ledger):
        with pytest.raises(StaleBalanceError) as exc_info:
            await make_client("dist-a").create_transaction(
                TransactionType.CREDIT, 100_000, "res-b", "req-1", expected_sender_balance_cents=1_400_000
            )

        assert exc_info.value.status_code == 409
        assert ledger.records == []

    async def test_ledger_floor_rejection_is_verbatim(self, make_client):
        with pytest.raises(LedgerRejectionError) as exc_info:
            await make_client("dist-a").create_transaction(TransactionType.DEBIT, 30_000, "res-c", "req-1")

        assert exc_info.value.status_code == 422
        assert exc_info.value.message == (
            "Reseller C's balance will go below capping limit of ₹1,000. Cannot perform Debit."
        )

    async def test_foreign_reseller_is_forbidden(self, make_client):
        with pytest.raises(LedgerUnauthorizedError) as exc_info:
            await make_client("dist-a").create_transaction(TransactionType.CREDIT, 100, "res-d", "req-1")
        assert exc_info.value.message == "You can only manage credit for your resellers"

    async def test_duplicate_request_id_is_applied_once(self, make_client, ledger):
        client = make_client("dist-a")

        first = await client.create_transaction(TransactionType.CREDIT, 100_000, "res-b", "req-dup")
        second = await client.create_transaction(TransactionType.CREDIT, 100_000, "res-b", "req-dup")

        assert first == second
        assert len(ledger.records) == 1
        assert ledger.accounts["dist-a"].balance_cents == 1_400_000

    async def test_self_credit(self, make_client):
        receipt = await make_client("admin-1").self_credit(500_000, "req-1")

        assert receipt.sender_balance_after_cents == 700_000
        assert receipt.target_balance_after_cents is None
        assert receipt.record.target_id is None

    async def test_history_filters_by_type(self, make_client):
        admin = make_client("admin-1")
        await admin.self_credit(100, "req-1")
        await admin.create_transaction(TransactionType.CREDIT, 100, "dist-a", "req-2")

        records = await admin.list_transactions(TransactionType.SELF_CREDIT)

        assert [r.type for r in records] == [TransactionType.SELF_CREDIT]

    async def test_reseller_history_only_shows_own_entries(self, make_client):
        await make_client("dist-a").create_transaction(TransactionType.CREDIT, 100, "res-b", "req-1")
        await make_client("dist-b").create_transaction(TransactionType.CREDIT, 100, "res-d", "req-2")

        records = await make_client("res-b").list_transactions()

        assert [r.target_id for r in records] == ["res-b"]


class TestCappingPolicy:
    async def test_admin_updates_policy(self, make_client, ledger):
        accepted = await make_client("admin-1").update_capping_policy(CappingPolicy(2_000_000, 150_050))

        assert accepted == CappingPolicy(2_000_000, 150_050)
        assert ledger.policy_store.current == accepted

    async def test_non_admin_is_forbidden(self, make_client, ledger, policy):
        with pytest.raises(LedgerUnauthorizedError):
            await make_client("dist-a").update_capping_policy(CappingPolicy(0, 0))
        assert ledger.policy_store.current == policy


class TestTransportFailures:
    async def test_reads_retry_server_errors(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, json={"detail": "busy"})
            return httpx.Response(200, json={"distributorFloor": "10000", "resellerFloor": "1000"})

        policy = await mock_client(handler).get_capping_policy()

        assert len(calls) == 3
        assert policy.reseller_floor_cents == 100_000

    async def test_reads_give_up_after_max_retries(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = mock_client(handler)
        with pytest.raises(LedgerNetworkError):
            await client.get_current_account()

        assert len(calls) == client.max_retries

    async def test_reads_do_not_retry_client_errors(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(403, json={"detail": "Forbidden"})

        with pytest.raises(LedgerUnauthorizedError):
            await mock_client(handler).list_accounts()

        assert len(calls) == 1

    async def test_writes_are_single_attempt(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(LedgerNetworkError):
            await mock_client(handler).create_transaction(TransactionType.CREDIT, 100, "res-b", "req-1")

        assert len(calls) == 1

    async def test_amounts_are_sent_as_decimal_strings(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(500, json={"message": "ledger exploded"})

        with pytest.raises(LedgerRejectionError, match="ledger exploded"):
            await mock_client(handler).create_transaction(
                TransactionType.DEBIT, 123_456, "res-b", "req-1", expected_target_balance_cents=50_000
            )

        assert b'"amount":"1234.56"' in bodies[0].replace(b" ", b"")
        assert b'"expectedTargetBalance":"500.00"' in bodies[0].replace(b" ", b"")

    async def test_malformed_payload_is_ledger_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": "x", "role": "superuser", "balance": "1"})

        with pytest.raises(LedgerAPIError, match="Invalid account data"):
            await mock_client(handler).get_current_account()

    async def test_forwards_token_and_request_id(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers)
            return httpx.Response(200, json={"accounts": []})

        client = LedgerClient(
            base_url=LEDGER_BASE_URL, token="admin-1", transport=httpx.MockTransport(handler), request_id="trace-1"
        )
        await client.list_accounts(Role.DISTRIBUTOR)

        assert seen[0]["Authorization"] == "Bearer admin-1"
        assert seen[0]["X-Request-ID"] == "trace-1"

    async def test_non_json_success_body_is_rejection(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(201, text="<html>OK</html>", headers={"Content-Type": "text/html"})

        with pytest.raises(LedgerRejectionError) as exc_info:
            await mock_client(handler).self_credit(1_000, "req-1")

        assert exc_info.value.status_code == 201

    async def test_list_body_is_rejection(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{"id": "res-b"}])

        with pytest.raises(LedgerRejectionError):
            await mock_client(handler).list_accounts()


ADMIN_JSON = {"id": "admin-1", "name": "Asha Admin", "role": "admin", "balance": "2000"}
POLICY_JSON = {"distributorFloor": "10000", "resellerFloor": "1000"}


async def test_html_receipt_fails_submission_instead_of_hanging():
    """A 201 with an HTML body still ends the submission in Failed and allows reopening"""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/transactions/self-credit":
            return httpx.Response(201, text="<html>OK</html>", headers={"Content-Type": "text/html"})
        if request.url.path == "/accounts/me":
            return httpx.Response(200, json=ADMIN_JSON)
        if request.url.path == "/capping-policy":
            return httpx.Response(200, json=POLICY_JSON)
        return httpx.Response(200, json={"accounts": []})

    client = LedgerClient(base_url=LEDGER_BASE_URL, token="admin-1", transport=httpx.MockTransport(handler))
    orchestrator = TransactionOrchestrator(client)
    await orchestrator.open_form()
    orchestrator.evaluate("Self Credit", "10")

    outcome = await orchestrator.submit()

    assert outcome.settled is False
    assert outcome.reason == "Rejected"
    assert orchestrator.state == OrchestratorState.FAILED
    assert orchestrator.cache.actor.id == "admin-1"
    assert await orchestrator.open_form() == OrchestratorState.READY


async def test_html_refresh_fails_open_form():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>", headers={"Content-Type": "text/html"})

    orchestrator = TransactionOrchestrator(
        LedgerClient(base_url=LEDGER_BASE_URL, token="admin-1", transport=httpx.MockTransport(handler))
    )

    assert await orchestrator.open_form() == OrchestratorState.FAILED
    assert orchestrator.last_failure.status_code == 200
