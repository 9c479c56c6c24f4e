"""Capping policy - per-role minimum balances"""

from dataclasses import dataclass
from typing import Any

from capping_gateway.config import settings
from capping_gateway.domain.exceptions import InvalidPolicyError
from capping_gateway.domain.models import Role
from capping_gateway.utils.money import to_minor_units


def _parse_floor(label: str, value: Any) -> int:
    try:
        floor_cents = to_minor_units(value)
    except ValueError as e:
        raise InvalidPolicyError(f"{label} capping must be a non-negative number") from e

    if floor_cents < 0:
        raise InvalidPolicyError(f"{label} capping must be a non-negative number")

    return floor_cents


@dataclass(frozen=True)
class CappingPolicy:
    """Minimum balances an account must retain, by role. Admins are unconstrained."""

    distributor_floor_cents: int
    reseller_floor_cents: int

    @classmethod
    def from_amounts(cls, distributor_floor: Any, reseller_floor: Any) -> "CappingPolicy":
        """
        Build a policy from rupee amounts.

        Raises:
            InvalidPolicyError: If either floor is negative or non-numeric
        """
        return cls(
            distributor_floor_cents=_parse_floor("Distributor", distributor_floor),
            reseller_floor_cents=_parse_floor("Reseller", reseller_floor),
        )

    @classmethod
    def default(cls) -> "CappingPolicy":
        return cls.from_amounts(settings.default_distributor_floor, settings.default_reseller_floor)

    def floor_for(self, role: Role) -> int:
        if role == Role.DISTRIBUTOR:
            return self.distributor_floor_cents
        if role == Role.RESELLER:
            return self.reseller_floor_cents
        return 0


class PolicyStore:
    """Holds the active policy; replacement is a single reference swap"""

    def __init__(self, policy: CappingPolicy | None = None):
        self._policy = policy or CappingPolicy.default()

    @property
    def current(self) -> CappingPolicy:
        return self._policy

    def replace(self, policy: CappingPolicy) -> None:
        self._policy = policy

    def set_floors(self, distributor_floor: Any, reseller_floor: Any) -> CappingPolicy:
        # Both floors are validated before anything is swapped
        policy = CappingPolicy.from_amounts(distributor_floor, reseller_floor)
        self._policy = policy
        return policy
