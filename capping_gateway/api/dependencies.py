"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, HTTPException, Request

from capping_gateway.application.capping_settings import CappingSettingsService
from capping_gateway.application.orchestrator import TransactionOrchestrator
from capping_gateway.domain.capping import PolicyStore
from capping_gateway.domain.exceptions import LedgerAPIError, LedgerNetworkError
from capping_gateway.infrastructure.clients.ledger import LedgerClient

# Shared by every request; each refresh replaces it with the ledger's policy
_policy_store = PolicyStore()


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_ledger_client(request: Request) -> LedgerClient:
    """Provide Ledger API client acting as the caller (bearer token and request ID forwarded)"""
    authorization = request.headers.get("Authorization", "")
    token = authorization.removeprefix("Bearer ").strip() or None
    return LedgerClient(token=token, request_id=get_request_id(request))


def get_policy_store() -> PolicyStore:
    return _policy_store


def get_orchestrator(
    client: LedgerClient = Depends(get_ledger_client),
    policy_store: PolicyStore = Depends(get_policy_store),
) -> TransactionOrchestrator:
    return TransactionOrchestrator(client, policy_store=policy_store)


def get_capping_service(
    client: LedgerClient = Depends(get_ledger_client),
    policy_store: PolicyStore = Depends(get_policy_store),
) -> CappingSettingsService:
    return CappingSettingsService(client, policy_store)


def ledger_http_error(error: LedgerAPIError | None) -> HTTPException:
    """Pass the ledger's status and message through; network failures become 503"""
    if isinstance(error, LedgerNetworkError):
        return HTTPException(status_code=503, detail="Ledger service unavailable")
    if error is None or error.status_code is None:
        return HTTPException(status_code=502, detail=error.message if error else "Ledger error")
    return HTTPException(status_code=error.status_code, detail=error.message)
