"""Transaction rule engine - legality checks and balance projection"""

from typing import Iterable, List, Optional

from capping_gateway.domain.capping import CappingPolicy
from capping_gateway.domain.exceptions import MalformedTransactionError
from capping_gateway.domain.models import (
    Account,
    Evaluation,
    Role,
    Transaction,
    TransactionType,
    ViolationReason,
)


def _check_structure(
    transaction: Transaction,
    sender: Optional[Account],
    target: Optional[Account],
) -> None:
    if not isinstance(transaction.type, TransactionType):
        raise MalformedTransactionError(f"Unknown transaction type: {transaction.type!r}")

    if sender is None:
        raise MalformedTransactionError("Sender snapshot is required")
    if sender.id != transaction.sender_id:
        raise MalformedTransactionError(
            f"Sender snapshot {sender.id} does not match transaction sender {transaction.sender_id}"
        )

    if transaction.type.has_counterparty:
        if target is None or transaction.target_id is None:
            raise MalformedTransactionError(f"{transaction.type.value} requires a target account")
        if target.id != transaction.target_id:
            raise MalformedTransactionError(
                f"Target snapshot {target.id} does not match transaction target {transaction.target_id}"
            )
    elif target is not None or transaction.target_id is not None:
        raise MalformedTransactionError("Self Credit has no target account")


def _is_valid_amount(amount_cents: Optional[int]) -> bool:
    return isinstance(amount_cents, int) and not isinstance(amount_cents, bool) and amount_cents > 0


def is_authorized(transaction_type: TransactionType, sender: Account, target: Optional[Account]) -> bool:
    """
    Role rules for who may move money to or from whom.

    - Only admins may Self Credit
    - Resellers cannot initiate transfers
    - Distributors may only transact with resellers they created
    - Nobody transacts with themselves
    """
    if transaction_type == TransactionType.SELF_CREDIT:
        return sender.role == Role.ADMIN

    if target is None or target.id == sender.id:
        return False

    if sender.role == Role.ADMIN:
        return True
    if sender.role == Role.DISTRIBUTOR:
        return target.role == Role.RESELLER and target.created_by == sender.id
    return False


def _unchanged(
    reason: ViolationReason,
    sender: Account,
    target: Optional[Account],
) -> Evaluation:
    return Evaluation(
        allowed=False,
        reason=reason,
        sender_balance_after_cents=sender.balance_cents,
        target_balance_after_cents=target.balance_cents if target else None,
    )


def evaluate(
    transaction: Transaction,
    sender: Optional[Account],
    target: Optional[Account],
    policy: CappingPolicy,
) -> Evaluation:
    """
    Decide whether a proposed transaction is legal and project both balances.

    Business-rule violations are returned as `allowed=False` with a reason;
    only structurally invalid input raises.

    Rules:
    - Credit: sender pays target; sender must stay at or above its floor
    - Debit / Reverse Credit: sender takes from target; target must hold the
      amount and stay at or above its floor afterwards
    - Self Credit: admin tops up its own balance, always allowed

    Raises:
        MalformedTransactionError: Unknown type or missing/mismatched account snapshots
    """
    _check_structure(transaction, sender, target)

    if not _is_valid_amount(transaction.amount_cents):
        return _unchanged(ViolationReason.INVALID_AMOUNT, sender, target)

    if not is_authorized(transaction.type, sender, target):
        return _unchanged(ViolationReason.UNAUTHORIZED, sender, target)

    amount = transaction.amount_cents

    if transaction.type == TransactionType.SELF_CREDIT:
        return Evaluation(
            allowed=True,
            reason=None,
            sender_balance_after_cents=sender.balance_cents + amount,
            target_balance_after_cents=None,
        )

    if transaction.type == TransactionType.CREDIT:
        sender_after = sender.balance_cents - amount
        target_after = target.balance_cents + amount
        reason = None
        if sender_after < policy.floor_for(sender.role):
            reason = ViolationReason.SENDER_BELOW_FLOOR
    else:
        # Debit and Reverse Credit share arithmetic; only the label differs
        sender_after = sender.balance_cents + amount
        target_after = target.balance_cents - amount
        reason = None
        if target.balance_cents < amount:
            reason = ViolationReason.TARGET_INSUFFICIENT_BALANCE
        elif target_after < policy.floor_for(target.role):
            reason = ViolationReason.TARGET_BELOW_FLOOR_AFTER_DEDUCTION

    return Evaluation(
        allowed=reason is None,
        reason=reason,
        sender_balance_after_cents=sender_after,
        target_balance_after_cents=target_after,
    )


def eligible_targets(actor: Account, accounts: Iterable[Account]) -> List[Account]:
    """Accounts the actor may pick as counterparty, sorted by name"""
    candidates = [
        account
        for account in accounts
        if is_authorized(TransactionType.CREDIT, actor, account)
    ]
    return sorted(candidates, key=lambda a: a.name.lower())
