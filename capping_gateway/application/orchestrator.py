"""Transaction orchestrator - refresh, validate, submit, refresh again"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from capping_gateway.domain.capping import PolicyStore
from capping_gateway.domain.exceptions import (
    LedgerAPIError,
    LedgerNetworkError,
    MalformedTransactionError,
    StaleSnapshotError,
    SubmissionInProgressError,
    SubmissionNotAllowedError,
)
from capping_gateway.domain.models import (
    Account,
    Evaluation,
    LedgerReceipt,
    Role,
    Transaction,
    TransactionType,
)
from capping_gateway.domain.preview import TransactionPreview, build_preview, settlement_message
from capping_gateway.domain.rules import eligible_targets, evaluate
from capping_gateway.infrastructure.clients.ledger import LedgerClient
from capping_gateway.infrastructure.observability.logging import log_transaction
from capping_gateway.infrastructure.observability.metrics import record_evaluation, record_submission
from capping_gateway.utils.money import MoneyFormatter, parse_amount

logger = logging.getLogger(__name__)

# Which accounts each role may see as counterparties
_CANDIDATE_ROLE = {
    Role.ADMIN: None,  # every role
    Role.DISTRIBUTOR: Role.RESELLER,
}


def _as_ledger_error(error: Exception) -> LedgerAPIError:
    """Anything the client raises outside its own error types still ends the step as a ledger failure"""
    if isinstance(error, LedgerAPIError):
        return error
    logger.exception("Unexpected ledger failure")
    return LedgerAPIError(f"Unexpected ledger failure: {error}")


class OrchestratorState(str, Enum):
    IDLE = "Idle"
    REFRESHING_BALANCES = "RefreshingBalances"
    READY = "Ready"
    SUBMITTING = "Submitting"
    SETTLED = "Settled"
    FAILED = "Failed"


@dataclass(frozen=True)
class StateChange:
    """Delivered to subscribers on every state transition"""

    previous: OrchestratorState
    state: OrchestratorState
    error: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class SubmissionOutcome:
    """Result of one submission attempt"""

    settled: bool
    transaction: Transaction
    request_id: str
    receipt: Optional[LedgerReceipt] = None
    reason: Optional[str] = None
    error: Optional[str] = None  # server message, verbatim
    message: Optional[str] = None


class BalanceCache:
    """
    Read-through cache of account snapshots owned by the orchestrator.

    Snapshots are only handed out after a refresh; invalidated accounts raise
    StaleSnapshotError until the next refresh, so stale balances are never
    evaluated silently.
    """

    def __init__(self, client: LedgerClient, policy_store: PolicyStore):
        self._client = client
        self._policy_store = policy_store
        self._actor_id: Optional[str] = None
        self._accounts: Dict[str, Account] = {}

    async def refresh(self) -> None:
        """Fetch the caller, the capping policy and candidate counterparties"""
        actor = await self._client.get_current_account()

        fetches: List[Any] = [self._client.get_capping_policy()]
        if actor.role in _CANDIDATE_ROLE:
            fetches.append(self._client.list_accounts(_CANDIDATE_ROLE[actor.role]))

        results = await asyncio.gather(*fetches)
        policy = results[0]
        accounts = results[1] if len(results) > 1 else []

        fresh = {account.id: account for account in accounts}
        fresh[actor.id] = actor

        self._policy_store.replace(policy)
        self._actor_id = actor.id
        self._accounts = fresh

    def invalidate(self, account_id: Optional[str] = None) -> None:
        if account_id is None:
            self._accounts = {}
        else:
            self._accounts.pop(account_id, None)

    def snapshot(self, account_id: str) -> Account:
        try:
            return self._accounts[account_id]
        except KeyError:
            raise StaleSnapshotError(f"No fresh balance for account {account_id}") from None

    @property
    def actor(self) -> Account:
        if self._actor_id is None:
            raise StaleSnapshotError("Balances have not been fetched yet")
        return self.snapshot(self._actor_id)

    def candidates(self) -> List[Account]:
        return eligible_targets(self.actor, self._accounts.values())


class TransactionOrchestrator:
    """
    Coordinates one transaction form against the remote ledger.

    State machine:
        Idle -> RefreshingBalances -> Ready -> Submitting -> Settled -> Idle
                                                         \\-> Failed

    The local evaluation is an optimistic pre-check; the ledger remains the
    final arbiter and its rejections are surfaced verbatim.
    """

    def __init__(
        self,
        client: LedgerClient,
        policy_store: PolicyStore | None = None,
        formatter: MoneyFormatter | None = None,
    ):
        self._client = client
        self.policy_store = policy_store or PolicyStore()
        self.formatter = formatter or MoneyFormatter.from_settings()
        self.cache = BalanceCache(client, self.policy_store)

        self._state = OrchestratorState.IDLE
        self._listeners: List[Callable[[StateChange], None]] = []
        self._intent: Optional[Transaction] = None
        self._evaluation: Optional[Evaluation] = None
        self._retry_key: Optional[Tuple[Transaction, str]] = None
        self._detached = False
        self._generation = 0  # bumped by open_form() and cancel()
        self.last_error: Optional[str] = None
        self.last_failure: Optional[LedgerAPIError] = None

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def can_submit(self) -> bool:
        """Whether the UI should enable the submit control"""
        return (
            self._state == OrchestratorState.READY
            and self._evaluation is not None
            and self._evaluation.allowed
        )

    def subscribe(self, listener: Callable[[StateChange], None]) -> Callable[[], None]:
        """Register a state listener; returns a callable that unsubscribes it"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _transition(
        self,
        state: OrchestratorState,
        error: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        change = StateChange(previous=self._state, state=state, error=error, reason=reason)
        self._state = state
        self.last_error = error
        for listener in list(self._listeners):
            listener(change)

    async def open_form(self) -> OrchestratorState:
        """Fetch authoritative balances before the form can be evaluated"""
        if self._state == OrchestratorState.SUBMITTING:
            raise SubmissionInProgressError("A submission is already in flight")

        self._intent = None
        self._evaluation = None
        self._detached = False
        self.last_failure = None
        self._generation += 1
        generation = self._generation
        self._transition(OrchestratorState.REFRESHING_BALANCES)

        try:
            await self.cache.refresh()
        except Exception as e:
            error = _as_ledger_error(e)
            if generation != self._generation:
                return self._state
            logger.error("Balance refresh failed: %s", error.message, extra={"reason": error.reason})
            self.last_failure = error
            self._transition(OrchestratorState.FAILED, error=error.message, reason=error.reason)
            return self._state

        # Cancelled or superseded while the refresh was in flight
        if generation != self._generation:
            return self._state

        self._transition(OrchestratorState.READY)
        return self._state

    def _resolve(
        self,
        transaction_type: TransactionType | str,
        amount: Any,
        target_id: Optional[str],
    ) -> Tuple[Transaction, Account, Optional[Account]]:
        try:
            transaction_type = TransactionType(transaction_type)
        except ValueError:
            raise MalformedTransactionError(f"Unknown transaction type: {transaction_type!r}") from None

        sender = self.cache.actor
        if transaction_type == TransactionType.SELF_CREDIT:
            target_id = None
        target = self.cache.snapshot(target_id) if target_id is not None else None

        transaction = Transaction(
            type=transaction_type,
            amount_cents=parse_amount(amount),
            sender_id=sender.id,
            target_id=target_id,
        )
        return transaction, sender, target

    def evaluate(
        self,
        transaction_type: TransactionType | str,
        amount: Any,
        target_id: Optional[str] = None,
    ) -> Evaluation:
        """
        Evaluate the form's current values against cached snapshots.

        `amount` is the rupee value as entered; unparsable input evaluates to
        InvalidAmount. The result gates the next submit().
        """
        transaction, sender, target = self._resolve(transaction_type, amount, target_id)
        evaluation = evaluate(transaction, sender, target, self.policy_store.current)

        record_evaluation(
            transaction.type.value,
            evaluation.allowed,
            evaluation.reason.value if evaluation.reason else None,
        )

        self._intent = transaction
        self._evaluation = evaluation
        return evaluation

    def preview(
        self,
        transaction_type: TransactionType | str,
        amount: Any,
        target_id: Optional[str] = None,
    ) -> TransactionPreview:
        """Evaluate and format; call again whenever type, amount or target changes"""
        evaluation = self.evaluate(transaction_type, amount, target_id)
        transaction = self._intent
        sender = self.cache.snapshot(transaction.sender_id)
        target = self.cache.snapshot(transaction.target_id) if transaction.target_id else None
        return build_preview(
            transaction, sender, target, evaluation, self.policy_store.current, self.formatter
        )

    def _request_id_for(self, transaction: Transaction) -> str:
        # Resubmitting the same intent after a network failure keeps its key
        # so the ledger can deduplicate a request that did land.
        if self._retry_key is not None and self._retry_key[0] == transaction:
            return self._retry_key[1]
        return str(uuid.uuid4())

    def _begin_submission(self, request_id: Optional[str] = None) -> Tuple[Transaction, str, Account, Optional[Account]]:
        if self._state == OrchestratorState.SUBMITTING:
            raise SubmissionInProgressError("A submission is already in flight")
        if not self.can_submit:
            raise SubmissionNotAllowedError("Transaction has not passed local validation")

        transaction = self._intent
        sender = self.cache.snapshot(transaction.sender_id)
        target = self.cache.snapshot(transaction.target_id) if transaction.target_id else None
        request_id = request_id or self._request_id_for(transaction)

        self._transition(OrchestratorState.SUBMITTING)
        return transaction, request_id, sender, target

    async def submit(self, request_id: Optional[str] = None) -> SubmissionOutcome:
        """
        Send the last evaluated intent to the ledger.

        `request_id` overrides the generated idempotency key, e.g. when the
        caller already holds one from its own client.

        Raises:
            SubmissionInProgressError: Another submission is in flight
            SubmissionNotAllowedError: Last evaluation was not allowed or the form is not Ready
        """
        return await self._perform(*self._begin_submission(request_id))

    def submit_task(self) -> "asyncio.Task[SubmissionOutcome]":
        """Start submission and return its task handle; state moves to Submitting immediately"""
        return asyncio.create_task(self._perform(*self._begin_submission()))

    async def _perform(
        self,
        transaction: Transaction,
        request_id: str,
        sender: Account,
        target: Optional[Account],
    ) -> SubmissionOutcome:
        start_time = time.time()
        log_transaction(request_id, transaction.type.value, "submit", "pending")

        try:
            if transaction.type == TransactionType.SELF_CREDIT:
                receipt = await self._client.self_credit(transaction.amount_cents, request_id)
            else:
                receipt = await self._client.create_transaction(
                    transaction.type,
                    transaction.amount_cents,
                    transaction.target_id,
                    request_id,
                    expected_sender_balance_cents=sender.balance_cents,
                    expected_target_balance_cents=target.balance_cents,
                )
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            return await self._fail(transaction, request_id, _as_ledger_error(e), duration_ms)

        duration_ms = (time.time() - start_time) * 1000
        return await self._settle(transaction, request_id, receipt, sender, target, duration_ms)

    async def _refresh_parties(self, transaction: Transaction) -> None:
        self.cache.invalidate(transaction.sender_id)
        if transaction.target_id:
            self.cache.invalidate(transaction.target_id)

        try:
            await self.cache.refresh()
        except Exception as e:
            # Snapshots stay invalidated; the next open_form() must refresh
            error = _as_ledger_error(e)
            logger.warning("Post-submit balance refresh failed: %s", error.message, extra={"reason": error.reason})

    async def _settle(
        self,
        transaction: Transaction,
        request_id: str,
        receipt: LedgerReceipt,
        sender: Account,
        target: Optional[Account],
        duration_ms: float,
    ) -> SubmissionOutcome:
        record_submission(transaction.type.value, "settled")
        log_transaction(request_id, transaction.type.value, "settled", "settled", duration_ms=duration_ms)

        self._retry_key = None
        outcome = SubmissionOutcome(
            settled=True,
            transaction=transaction,
            request_id=request_id,
            receipt=receipt,
            message=settlement_message(
                transaction.type,
                sender.name,
                receipt.sender_balance_after_cents,
                self.formatter,
                target_name=target.name if target else None,
                target_balance_cents=receipt.target_balance_after_cents,
            ),
        )

        if not self._detached:
            self._transition(OrchestratorState.SETTLED)

        await self._refresh_parties(transaction)

        self._intent = None
        self._evaluation = None
        self._detached = False
        self._transition(OrchestratorState.IDLE)
        return outcome

    async def _fail(
        self,
        transaction: Transaction,
        request_id: str,
        error: LedgerAPIError,
        duration_ms: float,
    ) -> SubmissionOutcome:
        record_submission(transaction.type.value, error.reason)
        log_transaction(
            request_id,
            transaction.type.value,
            "failed",
            "failed",
            reason=error.reason,
            duration_ms=duration_ms,
        )

        self.last_failure = error
        self._retry_key = (transaction, request_id) if isinstance(error, LedgerNetworkError) else None
        outcome = SubmissionOutcome(
            settled=False,
            transaction=transaction,
            request_id=request_id,
            reason=error.reason,
            error=error.message,
        )

        self._evaluation = None
        if self._detached:
            await self._refresh_parties(transaction)
            self._detached = False
            self._transition(OrchestratorState.IDLE)
            return outcome

        self._transition(OrchestratorState.FAILED, error=error.message, reason=error.reason)
        await self._refresh_parties(transaction)
        return outcome

    def cancel(self) -> None:
        """
        Abandon the form (e.g. navigation away).

        A request already sent is not cancelled; only its effect on the UI
        state is dropped. Caches are still refreshed when it completes.
        """
        if self._state == OrchestratorState.SUBMITTING:
            self._detached = True
            return

        self._generation += 1
        self._intent = None
        self._evaluation = None
        if self._state != OrchestratorState.IDLE:
            self._transition(OrchestratorState.IDLE)
