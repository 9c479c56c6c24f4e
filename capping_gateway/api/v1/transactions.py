"""POST /v1/transactions - preview and submit credit transactions"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Request

from capping_gateway.api.dependencies import get_orchestrator, get_request_id, ledger_http_error
from capping_gateway.api.v1.schemas import PreviewResponse, TransactionRequest, TransactionResponse
from capping_gateway.application.orchestrator import OrchestratorState, TransactionOrchestrator
from capping_gateway.domain.exceptions import MalformedTransactionError, StaleSnapshotError
from capping_gateway.domain.preview import TransactionPreview

router = APIRouter()


async def _prepare(
    body: TransactionRequest,
    orchestrator: TransactionOrchestrator,
    request_id: str,
) -> TransactionPreview:
    """Refresh authoritative balances, then evaluate the form values"""
    if await orchestrator.open_form() == OrchestratorState.FAILED:
        logging.error(
            f"Balance refresh failed: {orchestrator.last_error}",
            extra={"request_id": request_id},
        )
        raise ledger_http_error(orchestrator.last_failure)

    try:
        return orchestrator.preview(body.type, body.amount, body.target_account_id)
    except StaleSnapshotError:
        raise HTTPException(status_code=404, detail="Target account not found")
    except MalformedTransactionError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/transactions/preview", response_model=PreviewResponse)
async def preview_transaction(
    body: TransactionRequest,
    request: Request,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
):
    """
    Show the projected balances for a proposed transaction.

    Never sends anything to the ledger besides the balance refresh.
    """
    preview = await _prepare(body, orchestrator, get_request_id(request))

    return PreviewResponse(
        type=preview.type,
        allowed=preview.allowed,
        reason=preview.reason,
        warning=preview.warning,
        amount=preview.amount,
        sender_name=preview.sender_name,
        sender_balance=preview.sender_balance,
        sender_balance_after=preview.sender_balance_after,
        target_name=preview.target_name,
        target_balance=preview.target_balance,
        target_balance_after=preview.target_balance_after,
    )


@router.post("/transactions", response_model=TransactionResponse, status_code=201)
async def create_transaction(
    body: TransactionRequest,
    request: Request,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    """
    Validate locally and submit to the ledger.

    Flow:
    1. Refresh caller, counterparty and capping policy from the ledger
    2. Evaluate against the fresh snapshots (422 with the reason if refused)
    3. Submit with an idempotency key
    4. Return the ledger's authoritative balances
    """
    request_id = get_request_id(request)
    preview = await _prepare(body, orchestrator, request_id)

    if not preview.allowed:
        logging.warning(
            f"Transaction refused locally: {preview.reason}",
            extra={"request_id": request_id},
        )
        raise HTTPException(
            status_code=422,
            detail={"reason": preview.reason, "message": preview.warning},
        )

    outcome = await orchestrator.submit(request_id=idempotency_key)

    if not outcome.settled:
        logging.error(
            f"Ledger rejected transaction: {outcome.error}",
            extra={"request_id": request_id, "reason": outcome.reason},
        )
        raise ledger_http_error(orchestrator.last_failure)

    receipt = outcome.receipt
    return TransactionResponse(
        transaction_id=receipt.record.id,
        request_id=outcome.request_id,
        type=outcome.transaction.type,
        amount_cents=outcome.transaction.amount_cents,
        sender_balance_after_cents=receipt.sender_balance_after_cents,
        target_balance_after_cents=receipt.target_balance_after_cents,
        message=outcome.message,
    )
