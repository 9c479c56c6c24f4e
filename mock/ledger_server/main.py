"""Mock ledger server - in-memory authoritative ledger for local runs and tests"""

import json
import os
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from capping_gateway.domain.capping import CappingPolicy, PolicyStore
from capping_gateway.domain.exceptions import InvalidPolicyError
from capping_gateway.domain.models import (
    Account,
    Role,
    Transaction,
    TransactionRecord,
    TransactionType,
    ViolationReason,
)
from capping_gateway.domain.preview import build_preview
from capping_gateway.domain.rules import evaluate
from capping_gateway.infrastructure.clients.ledger import parse_account
from capping_gateway.utils.money import MoneyFormatter, parse_amount, to_minor_units, to_wire

# Support both local development and Docker
DATA_DIR = Path("/ledger_stub") if os.path.exists("/ledger_stub") else Path(__file__).resolve().parents[1] / "ledger_stub"

Amount = Union[str, int, float]


class TransactionBody(BaseModel):
    type: str
    amount: Amount
    targetAccountId: str
    requestId: Optional[str] = None
    expectedSenderBalance: Optional[Amount] = None
    expectedTargetBalance: Optional[Amount] = None


class SelfCreditBody(BaseModel):
    amount: Amount
    requestId: Optional[str] = None


class CappingBody(BaseModel):
    distributorFloor: Amount
    resellerFloor: Amount


def account_to_json(account: Account) -> Dict[str, Any]:
    return {
        "id": account.id,
        "name": account.name,
        "role": account.role.value,
        "balance": to_wire(account.balance_cents),
        "createdBy": account.created_by,
        "email": account.email,
    }


def record_to_json(record: TransactionRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "type": record.type.value,
        "amount": to_wire(record.amount_cents),
        "senderAccountId": record.sender_id,
        "senderName": record.sender_name,
        "targetAccountId": record.target_id,
        "targetName": record.target_name,
        "senderBalanceAfter": to_wire(record.sender_balance_after_cents),
        "targetBalanceAfter": (
            None if record.target_balance_after_cents is None else to_wire(record.target_balance_after_cents)
        ),
        "createdAt": record.created_at.isoformat(),
        "senderEmail": record.sender_email,
        "targetEmail": record.target_email,
    }


def policy_to_json(policy: CappingPolicy) -> Dict[str, str]:
    return {
        "distributorFloor": to_wire(policy.distributor_floor_cents),
        "resellerFloor": to_wire(policy.reseller_floor_cents),
    }


class InMemoryLedger:
    """
    Authoritative ledger state.

    Handlers never await between reading and writing balances, so requests
    are serialized by the event loop.
    """

    def __init__(self, accounts: List[Account], policy: CappingPolicy):
        self.accounts: Dict[str, Account] = {a.id: a for a in accounts}
        self.policy_store = PolicyStore(policy)
        self.records: List[TransactionRecord] = []
        self.receipts: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.formatter = MoneyFormatter()

    @classmethod
    def from_stub(cls, data_dir: Path = DATA_DIR) -> "InMemoryLedger":
        accounts = json.loads((data_dir / "accounts.json").read_text())["accounts"]
        capping = json.loads((data_dir / "capping.json").read_text())
        return cls(
            accounts=[parse_account(item) for item in accounts],
            policy=CappingPolicy.from_amounts(capping["distributorFloor"], capping["resellerFloor"]),
        )

    def visible_accounts(self, actor: Account, role: Optional[Role]) -> List[Account]:
        if actor.role == Role.ADMIN:
            visible = list(self.accounts.values())
        elif actor.role == Role.DISTRIBUTOR:
            visible = [
                a for a in self.accounts.values()
                if a.role == Role.RESELLER and a.created_by == actor.id
            ]
        else:
            visible = []

        if role is not None:
            visible = [a for a in visible if a.role == role]
        return sorted(visible, key=lambda a: a.name.lower())

    def visible_records(self, actor: Account, transaction_type: Optional[TransactionType]) -> List[TransactionRecord]:
        if actor.role == Role.ADMIN:
            involved = None
        elif actor.role == Role.DISTRIBUTOR:
            involved = {actor.id} | {
                a.id for a in self.accounts.values()
                if a.role == Role.RESELLER and a.created_by == actor.id
            }
        else:
            involved = {actor.id}

        records = [
            r for r in self.records
            if involved is None or r.sender_id in involved or r.target_id in involved
        ]
        if transaction_type is not None:
            records = [r for r in records if r.type == transaction_type]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def record(
        self,
        transaction_type: TransactionType,
        amount_cents: int,
        sender: Account,
        target: Optional[Account],
    ) -> TransactionRecord:
        record = TransactionRecord(
            id=str(uuid.uuid4()),
            type=transaction_type,
            amount_cents=amount_cents,
            sender_id=sender.id,
            sender_name=sender.name,
            target_id=target.id if target else None,
            target_name=target.name if target else None,
            sender_balance_after_cents=sender.balance_cents,
            target_balance_after_cents=target.balance_cents if target else None,
            created_at=datetime.now(timezone.utc),
            sender_email=sender.email,
            target_email=target.email if target else None,
        )
        self.records.append(record)
        return record


def _expected_matches(expected: Optional[Amount], actual_cents: int) -> bool:
    if expected is None:
        return True
    try:
        return to_minor_units(expected) == actual_cents
    except ValueError:
        return False


def create_app(ledger: InMemoryLedger | None = None) -> FastAPI:
    app = FastAPI(title="Mock Ledger Server", version="1.0.0")
    app.state.ledger = ledger or InMemoryLedger.from_stub()

    def get_ledger(request: Request) -> InMemoryLedger:
        return request.app.state.ledger

    def current_account(
        authorization: Optional[str] = Header(default=None),
        ledger: InMemoryLedger = Depends(get_ledger),
    ) -> Account:
        # Tokens are account ids in the mock
        token = (authorization or "").removeprefix("Bearer ").strip()
        if token not in ledger.accounts:
            raise HTTPException(status_code=401, detail="Not authenticated")
        return ledger.accounts[token]

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/accounts/me")
    async def get_me(actor: Account = Depends(current_account)):
        return account_to_json(actor)

    @app.get("/accounts")
    async def list_accounts(
        role: Optional[Role] = None,
        actor: Account = Depends(current_account),
        ledger: InMemoryLedger = Depends(get_ledger),
    ):
        return {"accounts": [account_to_json(a) for a in ledger.visible_accounts(actor, role)]}

    @app.get("/capping-policy")
    async def get_capping_policy(
        actor: Account = Depends(current_account),
        ledger: InMemoryLedger = Depends(get_ledger),
    ):
        return policy_to_json(ledger.policy_store.current)

    @app.put("/capping-policy")
    async def update_capping_policy(
        body: CappingBody,
        actor: Account = Depends(current_account),
        ledger: InMemoryLedger = Depends(get_ledger),
    ):
        if actor.role != Role.ADMIN:
            raise HTTPException(status_code=403, detail="Only admins can update capping settings")
        try:
            policy = ledger.policy_store.set_floors(body.distributorFloor, body.resellerFloor)
        except InvalidPolicyError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return policy_to_json(policy)

    @app.get("/transactions")
    async def list_transactions(
        type: Optional[TransactionType] = None,
        actor: Account = Depends(current_account),
        ledger: InMemoryLedger = Depends(get_ledger),
    ):
        return {"transactions": [record_to_json(r) for r in ledger.visible_records(actor, type)]}

    @app.post("/transactions", status_code=201)
    async def create_transaction(
        body: TransactionBody,
        actor: Account = Depends(current_account),
        ledger: InMemoryLedger = Depends(get_ledger),
    ):
        actor = ledger.accounts[actor.id]  # latest balance, not the dependency-time copy
        if body.requestId and (actor.id, body.requestId) in ledger.receipts:
            return JSONResponse(status_code=201, content=ledger.receipts[(actor.id, body.requestId)])

        if actor.role == Role.RESELLER:
            raise HTTPException(status_code=403, detail="You do not have permission to create credit transactions")

        try:
            transaction_type = TransactionType(body.type)
        except ValueError:
            transaction_type = None
        if transaction_type is None or transaction_type == TransactionType.SELF_CREDIT:
            raise HTTPException(status_code=400, detail="Type must be Credit, Debit, or Reverse Credit")

        amount_cents = parse_amount(body.amount)
        if amount_cents is None or amount_cents <= 0:
            raise HTTPException(status_code=422, detail="Amount must be a positive number")

        target = ledger.accounts.get(body.targetAccountId)
        if target is None:
            raise HTTPException(status_code=404, detail="User not found")

        if not (
            _expected_matches(body.expectedSenderBalance, actor.balance_cents)
            and _expected_matches(body.expectedTargetBalance, target.balance_cents)
        ):
            raise HTTPException(status_code=409, detail="Balances changed since they were displayed. Refresh and try again.")

        transaction = Transaction(transaction_type, amount_cents, actor.id, target.id)
        policy = ledger.policy_store.current
        evaluation = evaluate(transaction, actor, target, policy)

        if not evaluation.allowed:
            warning = build_preview(transaction, actor, target, evaluation, policy, ledger.formatter).warning
            status = 403 if evaluation.reason == ViolationReason.UNAUTHORIZED else 422
            raise HTTPException(status_code=status, detail=warning)

        sender = replace(actor, balance_cents=evaluation.sender_balance_after_cents)
        target = replace(target, balance_cents=evaluation.target_balance_after_cents)
        ledger.accounts[sender.id] = sender
        ledger.accounts[target.id] = target

        record = ledger.record(transaction_type, amount_cents, sender, target)
        response = {
            "transaction": record_to_json(record),
            "senderBalanceAfter": to_wire(sender.balance_cents),
            "targetBalanceAfter": to_wire(target.balance_cents),
        }
        if body.requestId:
            ledger.receipts[(actor.id, body.requestId)] = response
        return JSONResponse(status_code=201, content=response)

    @app.post("/transactions/self-credit", status_code=201)
    async def self_credit(
        body: SelfCreditBody,
        actor: Account = Depends(current_account),
        ledger: InMemoryLedger = Depends(get_ledger),
    ):
        actor = ledger.accounts[actor.id]  # latest balance, not the dependency-time copy
        if body.requestId and (actor.id, body.requestId) in ledger.receipts:
            return JSONResponse(status_code=201, content=ledger.receipts[(actor.id, body.requestId)])

        if actor.role != Role.ADMIN:
            raise HTTPException(status_code=403, detail="Only admins can perform self-credit")

        amount_cents = parse_amount(body.amount)
        if amount_cents is None or amount_cents <= 0:
            raise HTTPException(status_code=422, detail="Amount must be a positive number")

        transaction = Transaction(TransactionType.SELF_CREDIT, amount_cents, actor.id)
        evaluation = evaluate(transaction, actor, None, ledger.policy_store.current)

        sender = replace(actor, balance_cents=evaluation.sender_balance_after_cents)
        ledger.accounts[sender.id] = sender

        record = ledger.record(TransactionType.SELF_CREDIT, amount_cents, sender, None)
        response = {
            "transaction": record_to_json(record),
            "senderBalanceAfter": to_wire(sender.balance_cents),
            "targetBalanceAfter": None,
        }
        if body.requestId:
            ledger.receipts[(actor.id, body.requestId)] = response
        return JSONResponse(status_code=201, content=response)

    return app


app = create_app()
