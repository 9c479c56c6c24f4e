"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Union

from capping_gateway.domain.models import TransactionType

# Rupee amount as entered; parsed exactly into paise downstream
AmountInput = Union[str, int, float]


class TransactionRequest(BaseModel):
    """Request body for POST /v1/transactions and /v1/transactions/preview"""

    type: TransactionType
    amount: AmountInput = Field(..., description="Amount in rupees, as entered")
    target_account_id: Optional[str] = Field(None, description="Counterparty; omitted for Self Credit")


class PreviewResponse(BaseModel):
    """Response for POST /v1/transactions/preview"""

    type: TransactionType
    allowed: bool
    reason: Optional[str] = None
    warning: Optional[str] = None
    amount: Optional[str] = None
    sender_name: str
    sender_balance: str
    sender_balance_after: str
    target_name: Optional[str] = None
    target_balance: Optional[str] = None
    target_balance_after: Optional[str] = None


class TransactionResponse(BaseModel):
    """Response for POST /v1/transactions"""

    transaction_id: str
    request_id: str
    type: TransactionType
    amount_cents: int
    sender_balance_after_cents: int
    target_balance_after_cents: Optional[int] = None
    message: str


class HistoryItem(BaseModel):
    """Single ledger entry in history"""

    transaction_id: str
    type: TransactionType
    amount_cents: int
    sender_name: str
    target_name: Optional[str] = None
    sender_email: Optional[str] = None
    target_email: Optional[str] = None
    sender_balance_after_cents: int
    target_balance_after_cents: Optional[int] = None
    created_at: str


class HistoryResponse(BaseModel):
    """Response for GET /v1/transactions/history"""

    total: int
    counts: Dict[str, int]
    transactions: List[HistoryItem]


class CappingUpdateRequest(BaseModel):
    """Request body for PUT /v1/capping"""

    distributor_floor: AmountInput
    reseller_floor: AmountInput


class CappingResponse(BaseModel):
    """Response for GET/PUT /v1/capping"""

    distributor_floor_cents: int
    reseller_floor_cents: int
    distributor_floor: str
    reseller_floor: str
