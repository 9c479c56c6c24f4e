"""Preview adapter - display-ready figures for an evaluated transaction"""

from dataclasses import dataclass, replace
from typing import Optional

from capping_gateway.domain.capping import CappingPolicy
from capping_gateway.domain.models import (
    Account,
    Evaluation,
    Role,
    Transaction,
    TransactionType,
    ViolationReason,
)
from capping_gateway.utils.money import MoneyFormatter


@dataclass(frozen=True)
class TransactionPreview:
    """What the transaction form shows before submit"""

    type: TransactionType
    allowed: bool
    reason: Optional[str]
    warning: Optional[str]
    amount: Optional[str]
    sender_name: str
    sender_balance: str
    sender_balance_after: str
    sender_balance_after_cents: int
    target_name: Optional[str] = None
    target_balance: Optional[str] = None
    target_balance_after: Optional[str] = None
    target_balance_after_cents: Optional[int] = None


def _warning(
    transaction: Transaction,
    sender: Account,
    target: Optional[Account],
    evaluation: Evaluation,
    policy: CappingPolicy,
    fmt: MoneyFormatter,
) -> Optional[str]:
    reason = evaluation.reason
    label = transaction.type.value

    if reason is None:
        return None

    if reason == ViolationReason.INVALID_AMOUNT:
        return "Please enter a valid amount"

    if reason == ViolationReason.UNAUTHORIZED:
        if transaction.type == TransactionType.SELF_CREDIT:
            return "Only admins can perform self-credit"
        if sender.role == Role.RESELLER:
            return "You do not have permission to create credit transactions"
        if target is not None and target.id == sender.id:
            return "You cannot transact with your own account"
        return "You can only manage credit for your resellers"

    if reason == ViolationReason.SENDER_BELOW_FLOOR:
        return (
            f"Your balance ({fmt.format(sender.balance_cents)}) minus "
            f"{fmt.format(transaction.amount_cents)} will be "
            f"{fmt.format(evaluation.sender_balance_after_cents)}, which is below your capping limit of "
            f"{fmt.format(policy.floor_for(sender.role))}. Cannot perform {label}."
        )

    if reason == ViolationReason.TARGET_INSUFFICIENT_BALANCE:
        return f"{target.name}'s balance ({fmt.format(target.balance_cents)}) is insufficient"

    return (
        f"{target.name}'s balance will go below capping limit of "
        f"{fmt.format(policy.floor_for(target.role))}. Cannot perform {label}."
    )


def build_preview(
    transaction: Transaction,
    sender: Account,
    target: Optional[Account],
    evaluation: Evaluation,
    policy: CappingPolicy,
    formatter: MoneyFormatter,
) -> TransactionPreview:
    """
    Format an evaluation for display.

    Figures come straight from the Evaluation so the preview always matches
    what will be submitted; nothing is recomputed here.
    """
    amount = None
    if evaluation.reason != ViolationReason.INVALID_AMOUNT:
        amount = formatter.format(transaction.amount_cents)

    preview = TransactionPreview(
        type=transaction.type,
        allowed=evaluation.allowed,
        reason=evaluation.reason.value if evaluation.reason else None,
        warning=_warning(transaction, sender, target, evaluation, policy, formatter),
        amount=amount,
        sender_name=sender.name,
        sender_balance=formatter.format(sender.balance_cents),
        sender_balance_after=formatter.format(evaluation.sender_balance_after_cents),
        sender_balance_after_cents=evaluation.sender_balance_after_cents,
    )

    if target is None:
        return preview

    return replace(
        preview,
        target_name=target.name,
        target_balance=formatter.format(target.balance_cents),
        target_balance_after=formatter.format(evaluation.target_balance_after_cents),
        target_balance_after_cents=evaluation.target_balance_after_cents,
    )


def settlement_message(
    transaction_type: TransactionType,
    sender_name: str,
    sender_balance_cents: int,
    formatter: MoneyFormatter,
    target_name: Optional[str] = None,
    target_balance_cents: Optional[int] = None,
) -> str:
    """Confirmation text shown once the ledger accepted a transaction"""
    if transaction_type == TransactionType.SELF_CREDIT:
        return (
            f"{transaction_type.value} successful!\n"
            f"New Balance: {formatter.format(sender_balance_cents)}"
        )

    return (
        f"{transaction_type.value} successful!\n"
        f"{sender_name}: {formatter.format(sender_balance_cents)}\n"
        f"{target_name}: {formatter.format(target_balance_cents)}"
    )
