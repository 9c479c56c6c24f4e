"""GET/PUT /v1/capping - Read and update capping floors"""

from fastapi import APIRouter, Depends, HTTPException

from capping_gateway.api.dependencies import get_capping_service, ledger_http_error
from capping_gateway.api.v1.schemas import CappingResponse, CappingUpdateRequest
from capping_gateway.application.capping_settings import CappingSettingsService
from capping_gateway.domain.capping import CappingPolicy
from capping_gateway.domain.exceptions import InvalidPolicyError, LedgerAPIError
from capping_gateway.utils.money import MoneyFormatter

router = APIRouter()


def _to_response(policy: CappingPolicy) -> CappingResponse:
    formatter = MoneyFormatter.from_settings()
    return CappingResponse(
        distributor_floor_cents=policy.distributor_floor_cents,
        reseller_floor_cents=policy.reseller_floor_cents,
        distributor_floor=formatter.format(policy.distributor_floor_cents),
        reseller_floor=formatter.format(policy.reseller_floor_cents),
    )


@router.get("/capping", response_model=CappingResponse)
async def get_capping(service: CappingSettingsService = Depends(get_capping_service)):
    try:
        policy = await service.load()
    except LedgerAPIError as e:
        raise ledger_http_error(e)
    return _to_response(policy)


@router.put("/capping", response_model=CappingResponse)
async def update_capping(
    body: CappingUpdateRequest,
    service: CappingSettingsService = Depends(get_capping_service),
):
    """
    Replace both floors (admin only).

    Invalid values are rejected before anything reaches the ledger.
    """
    try:
        policy = await service.update(body.distributor_floor, body.reseller_floor)
    except InvalidPolicyError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except LedgerAPIError as e:
        raise ledger_http_error(e)
    return _to_response(policy)
