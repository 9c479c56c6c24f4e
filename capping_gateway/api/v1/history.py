"""GET /v1/transactions/history - Fetch the caller's visible ledger entries"""

from typing import Optional
from fastapi import APIRouter, Depends, Query

from capping_gateway.api.dependencies import get_ledger_client, ledger_http_error
from capping_gateway.api.v1.schemas import HistoryItem, HistoryResponse
from capping_gateway.domain.exceptions import LedgerAPIError
from capping_gateway.domain.history import search_records, summarize_records
from capping_gateway.domain.models import TransactionType
from capping_gateway.infrastructure.clients.ledger import LedgerClient

router = APIRouter()


@router.get("/transactions/history", response_model=HistoryResponse)
async def get_transaction_history(
    type: Optional[TransactionType] = Query(None, description="Only this transaction type"),
    search: str = Query("", description="Match on party names, emails or amount"),
    client: LedgerClient = Depends(get_ledger_client),
):
    """
    Retrieve ledger entries the caller may see, newest first.

    Returns:
        Matching entries plus per-type counts for the summary cards
    """
    try:
        records = await client.list_transactions(type)
    except LedgerAPIError as e:
        raise ledger_http_error(e)

    matching = search_records(records, search)
    summary = summarize_records(matching)

    items = [
        HistoryItem(
            transaction_id=r.id,
            type=r.type,
            amount_cents=r.amount_cents,
            sender_name=r.sender_name,
            target_name=r.target_name,
            sender_email=r.sender_email,
            target_email=r.target_email,
            sender_balance_after_cents=r.sender_balance_after_cents,
            target_balance_after_cents=r.target_balance_after_cents,
            created_at=r.created_at.isoformat(),
        )
        for r in matching
    ]

    return HistoryResponse(
        total=summary.total,
        counts={t.value: count for t, count in summary.by_type.items()},
        transactions=items,
    )
