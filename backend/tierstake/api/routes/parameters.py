"""
API routes for operating parameters
"""
from datetime import datetime
from typing import Annotated, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field, StrictBool

from tierstake.api.dependencies import (get_parameter_change_service,
                                        get_parameter_store)
from tierstake.core.identity import get_current_identity
from tierstake.models.parameter import ParameterCategory
from tierstake.services.parameter_change_service import ParameterChangeService
from tierstake.services.parameter_store import (MAX_VALUE_LENGTH, ParameterStore,
                                                parse_category)

router = APIRouter(prefix="/api/parameters", tags=["parameters"])

# StrictBool first so JSON true/false is not coerced to 1/0
ParameterValue = Union[StrictBool, Annotated[str, Field(max_length=MAX_VALUE_LENGTH)], int, float]


class HistoryEntryResponse(BaseModel):
    sequence: int
    previous_value: str
    timestamp: datetime
    updated_by: str
    approval_reference: Optional[str] = None

    class Config:
        from_attributes = True


class ParameterResponse(BaseModel):
    """Parameter response model"""
    key: str
    value: str
    description: str
    category: ParameterCategory
    is_active: bool
    is_critical: bool
    version: int
    updated_by: str
    updated_at: datetime

    class Config:
        from_attributes = True


class ParameterDetailResponse(ParameterResponse):
    history: List[HistoryEntryResponse] = Field(default_factory=list)


class ParameterUpdateRequest(BaseModel):
    """Body of PUT /api/parameters"""
    key: str = Field(..., min_length=1, max_length=128)
    value: ParameterValue = Field(..., description="New scalar value")
    description: Optional[str] = Field(default=None, max_length=2000)
    nonce: Optional[int] = Field(
        default=None,
        description="Confirmed approval transaction authorizing a critical-key change"
    )


class ParameterUpdateResponse(BaseModel):
    status: str
    message: str
    parameter: ParameterResponse
    nonce: Optional[int] = None
    approval_status: Optional[str] = None


@router.get("", response_model=List[ParameterResponse])
async def list_parameters(
    category: Optional[str] = Query(default=None, description="Filter by category"),
    store: ParameterStore = Depends(get_parameter_store),
):
    """Active parameters sorted by key"""
    return store.list(parse_category(category))


@router.put("", response_model=ParameterUpdateResponse)
async def update_parameter(
    request: ParameterUpdateRequest,
    response: Response,
    identity: str = Depends(get_current_identity),
    service: ParameterChangeService = Depends(get_parameter_change_service),
):
    """
    Update a parameter.

    Critical keys answer 202 with an approval transaction nonce on first
    submission; resubmitting with that nonce once it is confirmed applies it.
    """
    try:
        outcome = service.submit(
            request.key,
            request.value,
            request.description,
            identity=identity,
            nonce=request.nonce,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if outcome.applied:
        message = f"Parameter {request.key} updated"
    else:
        response.status_code = status.HTTP_202_ACCEPTED
        message = f"Approval required: transaction {outcome.nonce} awaits approvals"

    return ParameterUpdateResponse(
        status=outcome.status,
        message=message,
        parameter=ParameterResponse.model_validate(outcome.parameter),
        nonce=outcome.nonce,
        approval_status=outcome.approval_status,
    )


@router.get("/{key}", response_model=ParameterDetailResponse)
async def get_parameter(
    key: str,
    store: ParameterStore = Depends(get_parameter_store),
):
    """Get parameter by key, including its history"""
    return store.get(key)


@router.get("/{key}/history", response_model=List[HistoryEntryResponse])
async def get_parameter_history(
    key: str,
    store: ParameterStore = Depends(get_parameter_store),
):
    return store.history(key)
