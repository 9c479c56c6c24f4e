"""Capping settings - load and update the global capping policy"""

from typing import Any

from capping_gateway.domain.capping import CappingPolicy, PolicyStore
from capping_gateway.infrastructure.clients.ledger import LedgerClient
from capping_gateway.infrastructure.observability.logging import log_policy_update


class CappingSettingsService:
    """Backs the capping settings form"""

    def __init__(self, client: LedgerClient, policy_store: PolicyStore):
        self._client = client
        self.policy_store = policy_store

    async def load(self) -> CappingPolicy:
        policy = await self._client.get_capping_policy()
        self.policy_store.replace(policy)
        return policy

    async def update(self, distributor_floor: Any, reseller_floor: Any) -> CappingPolicy:
        """
        Validate locally, then replace the floors on the ledger.

        Nothing is sent when either value is invalid, and the local store is
        only replaced with what the ledger accepted.

        Raises:
            InvalidPolicyError: Negative or non-numeric floor
            LedgerUnauthorizedError: Caller is not an admin
        """
        proposed = CappingPolicy.from_amounts(distributor_floor, reseller_floor)
        accepted = await self._client.update_capping_policy(proposed)
        self.policy_store.replace(accepted)
        log_policy_update(accepted.distributor_floor_cents, accepted.reseller_floor_cents)
        return accepted
