"""Ledger API HTTP client for balances, capping policy, and transactions"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from capping_gateway.config import settings
from capping_gateway.domain.capping import CappingPolicy
from capping_gateway.domain.exceptions import (
    InvalidPolicyError,
    LedgerAPIError,
    LedgerNetworkError,
    LedgerRejectionError,
    LedgerUnauthorizedError,
    StaleBalanceError,
)
from capping_gateway.domain.models import (
    Account,
    LedgerReceipt,
    Role,
    TransactionRecord,
    TransactionType,
)
from capping_gateway.infrastructure.observability.metrics import (
    ledger_failure_counter,
    ledger_latency_histogram,
)
from capping_gateway.utils.money import to_minor_units, to_wire

logger = logging.getLogger(__name__)

_ERRORS_BY_STATUS = {
    403: LedgerUnauthorizedError,
    409: StaleBalanceError,
}


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        message = body.get("detail") or body.get("message")
        if message:
            return message if isinstance(message, str) else str(message)

    return f"Ledger API error: {response.status_code}"


def _raise_for_status(response: httpx.Response) -> None:
    """Map ledger HTTP errors onto domain exceptions, keeping the server's message"""
    if response.is_success:
        return
    error_cls = _ERRORS_BY_STATUS.get(response.status_code, LedgerRejectionError)
    raise error_cls(_error_message(response), status_code=response.status_code)


def _decode(response: httpx.Response) -> Dict[str, Any]:
    """JSON object body of a successful response"""
    try:
        data = response.json()
    except ValueError as e:
        raise LedgerRejectionError(
            f"Ledger returned a non-JSON body ({response.status_code})", status_code=response.status_code
        ) from e

    if not isinstance(data, dict):
        raise LedgerRejectionError(
            f"Ledger returned an unexpected body ({response.status_code})", status_code=response.status_code
        )
    return data


def parse_account(data: Dict[str, Any]) -> Account:
    return Account(
        id=str(data["id"]),
        name=data.get("name", ""),
        role=Role(data["role"]),
        balance_cents=to_minor_units(data["balance"]),
        created_by=data.get("createdBy"),
        email=data.get("email"),
    )


def parse_record(data: Dict[str, Any]) -> TransactionRecord:
    target_after = data.get("targetBalanceAfter")
    return TransactionRecord(
        id=str(data["id"]),
        type=TransactionType(data["type"]),
        amount_cents=to_minor_units(data["amount"]),
        sender_id=str(data["senderAccountId"]),
        sender_name=data.get("senderName", ""),
        target_id=data.get("targetAccountId"),
        target_name=data.get("targetName"),
        sender_balance_after_cents=to_minor_units(data["senderBalanceAfter"]),
        target_balance_after_cents=None if target_after is None else to_minor_units(target_after),
        created_at=datetime.fromisoformat(data["createdAt"]),
        sender_email=data.get("senderEmail"),
        target_email=data.get("targetEmail"),
    )


def _parse_receipt(data: Dict[str, Any]) -> LedgerReceipt:
    target_after = data.get("targetBalanceAfter")
    return LedgerReceipt(
        record=parse_record(data["transaction"]),
        sender_balance_after_cents=to_minor_units(data["senderBalanceAfter"]),
        target_balance_after_cents=None if target_after is None else to_minor_units(target_after),
    )


class LedgerClient:
    """Client for the remote credit ledger API"""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        request_id: str | None = None,
    ):
        self.base_url = base_url or settings.ledger_api_base
        self.token = token
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport
        self.request_id = request_id
        self.max_retries = settings.refresh_max_retries
        self.backoff_base = settings.refresh_backoff_base

    def _client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        if self.request_id:
            headers["X-Request-ID"] = self.request_id
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=self.transport,
        )

    async def _get(self, operation: str, path: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        GET with retry.

        Retry strategy:
        - Exponential backoff: base, 2*base, 4*base ... (base^attempt)
        - Retries on 5xx errors and network failures only
        - 4xx responses are raised immediately
        """
        attempt = 0
        async with self._client() as client:
            while True:
                try:
                    with ledger_latency_histogram.labels(operation=operation).time():
                        response = await client.get(path, params=params)
                    if response.status_code < 500:
                        _raise_for_status(response)
                        return _decode(response)
                    error: LedgerAPIError = LedgerRejectionError(
                        _error_message(response), status_code=response.status_code
                    )
                except httpx.TimeoutException:
                    error = LedgerNetworkError(f"Ledger API timeout after {self.timeout}s")
                except httpx.RequestError as e:
                    error = LedgerNetworkError(f"Ledger API unreachable: {e}")
                except LedgerAPIError as e:
                    ledger_failure_counter.labels(operation=operation, reason=e.reason).inc()
                    raise

                attempt += 1
                ledger_failure_counter.labels(operation=operation, reason=error.reason).inc()

                if attempt >= self.max_retries:
                    raise error

                backoff = self.backoff_base * (2 ** (attempt - 1))
                logger.warning(
                    "Ledger %s failed, retrying in %.2fs",
                    operation,
                    backoff,
                    extra={"operation": operation, "attempt": attempt},
                )
                await asyncio.sleep(backoff)

    async def _send(self, operation: str, method: str, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Single-attempt write; retrying is left to the caller's idempotency key"""
        async with self._client() as client:
            try:
                with ledger_latency_histogram.labels(operation=operation).time():
                    response = await client.request(method, path, json=body)
                _raise_for_status(response)
                return _decode(response)

            except httpx.TimeoutException as e:
                ledger_failure_counter.labels(operation=operation, reason="NetworkError").inc()
                raise LedgerNetworkError(f"Ledger API timeout after {self.timeout}s") from e
            except httpx.RequestError as e:
                ledger_failure_counter.labels(operation=operation, reason="NetworkError").inc()
                raise LedgerNetworkError(f"Ledger API unreachable: {e}") from e
            except LedgerAPIError as e:
                ledger_failure_counter.labels(operation=operation, reason=e.reason).inc()
                raise

    async def get_current_account(self) -> Account:
        data = await self._get("get_me", "/accounts/me")
        try:
            return parse_account(data)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise LedgerAPIError(f"Invalid account data from ledger: {e}") from e

    async def list_accounts(self, role: Role | None = None) -> List[Account]:
        """Accounts visible to the caller, optionally filtered by role"""
        params = {"role": role.value} if role else None
        data = await self._get("list_accounts", "/accounts", params=params)
        try:
            return [parse_account(item) for item in data.get("accounts", [])]
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise LedgerAPIError(f"Invalid account data from ledger: {e}") from e

    async def get_capping_policy(self) -> CappingPolicy:
        data = await self._get("get_capping_policy", "/capping-policy")
        try:
            return CappingPolicy.from_amounts(data["distributorFloor"], data["resellerFloor"])
        except (KeyError, TypeError, AttributeError, InvalidPolicyError) as e:
            raise LedgerAPIError(f"Invalid capping policy from ledger: {e}") from e

    async def update_capping_policy(self, policy: CappingPolicy) -> CappingPolicy:
        """
        Replace the global capping floors (admin only).

        Raises:
            LedgerUnauthorizedError: Caller is not an admin
            LedgerRejectionError: Ledger refused the values
        """
        data = await self._send(
            "update_capping_policy",
            "PUT",
            "/capping-policy",
            {
                "distributorFloor": to_wire(policy.distributor_floor_cents),
                "resellerFloor": to_wire(policy.reseller_floor_cents),
            },
        )
        try:
            return CappingPolicy.from_amounts(data["distributorFloor"], data["resellerFloor"])
        except (KeyError, TypeError, AttributeError, InvalidPolicyError) as e:
            raise LedgerAPIError(f"Invalid capping policy from ledger: {e}") from e

    async def create_transaction(
        self,
        transaction_type: TransactionType,
        amount_cents: int,
        target_id: str,
        request_id: str,
        expected_sender_balance_cents: int | None = None,
        expected_target_balance_cents: int | None = None,
    ) -> LedgerReceipt:
        """
        Submit a Credit, Debit or Reverse Credit.

        The expected balances let the ledger answer 409 when the client
        evaluated against stale snapshots.
        """
        body: Dict[str, Any] = {
            "type": transaction_type.value,
            "amount": to_wire(amount_cents),
            "targetAccountId": target_id,
            "requestId": request_id,
        }
        if expected_sender_balance_cents is not None:
            body["expectedSenderBalance"] = to_wire(expected_sender_balance_cents)
        if expected_target_balance_cents is not None:
            body["expectedTargetBalance"] = to_wire(expected_target_balance_cents)

        data = await self._send("create_transaction", "POST", "/transactions", body)
        try:
            return _parse_receipt(data)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise LedgerAPIError(f"Invalid transaction receipt from ledger: {e}") from e

    async def self_credit(self, amount_cents: int, request_id: str) -> LedgerReceipt:
        data = await self._send(
            "self_credit",
            "POST",
            "/transactions/self-credit",
            {"amount": to_wire(amount_cents), "requestId": request_id},
        )
        try:
            return _parse_receipt(data)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise LedgerAPIError(f"Invalid transaction receipt from ledger: {e}") from e

    async def list_transactions(self, transaction_type: TransactionType | None = None) -> List[TransactionRecord]:
        params = {"type": transaction_type.value} if transaction_type else None
        data = await self._get("list_transactions", "/transactions", params=params)
        try:
            return [parse_record(item) for item in data.get("transactions", [])]
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise LedgerAPIError(f"Invalid transaction data from ledger: {e}") from e
