"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class Role(str, Enum):
    """Participant role in the credit network, fixed at account creation"""

    ADMIN = "admin"
    DISTRIBUTOR = "distributor"
    RESELLER = "reseller"


class TransactionType(str, Enum):
    """Ledger transaction kinds, valued with the ledger's wire labels"""

    CREDIT = "Credit"
    DEBIT = "Debit"
    REVERSE_CREDIT = "Reverse Credit"
    SELF_CREDIT = "Self Credit"

    @property
    def has_counterparty(self) -> bool:
        return self is not TransactionType.SELF_CREDIT


class ViolationReason(str, Enum):
    """Why a proposed transaction was refused locally"""

    INVALID_AMOUNT = "InvalidAmount"
    SENDER_BELOW_FLOOR = "SenderBelowFloor"
    TARGET_INSUFFICIENT_BALANCE = "TargetInsufficientBalance"
    TARGET_BELOW_FLOOR_AFTER_DEDUCTION = "TargetBelowFloorAfterDeduction"
    UNAUTHORIZED = "Unauthorized"


@dataclass(frozen=True)
class Account:
    """Cached snapshot of a ledger account"""

    id: str
    name: str
    role: Role
    balance_cents: int
    created_by: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class Transaction:
    """Proposed transaction intent, not yet persisted"""

    type: TransactionType
    amount_cents: Optional[int]  # None when the entered amount was not a number
    sender_id: str
    target_id: Optional[str] = None


@dataclass(frozen=True)
class Evaluation:
    """Output of the rule engine for one proposed transaction"""

    allowed: bool
    reason: Optional[ViolationReason]
    sender_balance_after_cents: int
    target_balance_after_cents: Optional[int]


@dataclass(frozen=True)
class TransactionRecord:
    """Persisted ledger entry, owned by the remote ledger"""

    id: str
    type: TransactionType
    amount_cents: int
    sender_id: str
    sender_name: str
    target_id: Optional[str]
    target_name: Optional[str]
    sender_balance_after_cents: int
    target_balance_after_cents: Optional[int]
    created_at: datetime
    sender_email: Optional[str] = None
    target_email: Optional[str] = None


@dataclass(frozen=True)
class LedgerReceipt:
    """Ledger's authoritative answer to an accepted transaction"""

    record: TransactionRecord
    sender_balance_after_cents: int
    target_balance_after_cents: Optional[int]
