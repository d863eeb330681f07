"""
API routes for approval transactions on critical parameters
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from tierstake.api.dependencies import get_governance_gate
from tierstake.api.routes.parameters import ParameterValue
from tierstake.core.identity import get_current_identity
from tierstake.services.governance_gate import GovernanceGate

router = APIRouter(prefix="/api/governance", tags=["governance"])


class TransactionResponse(BaseModel):
    """Approval transaction response model"""
    nonce: int
    target_key: str
    payload: dict
    proposed_by: str
    threshold: int
    status: str
    approvers: List[str]
    approval_count: int
    created_at: datetime
    expires_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None
    applied_value: Optional[str] = None

    class Config:
        from_attributes = True


class ProposeRequest(BaseModel):
    target_key: str = Field(..., min_length=1, max_length=128)
    value: ParameterValue
    description: Optional[str] = None


class ApproveRequest(BaseModel):
    signature: Optional[str] = Field(default=None, description="Approver signature over the transaction")


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, description="Reason for rejection")


def _to_response(transaction) -> TransactionResponse:
    data = transaction.to_dict()
    data["created_at"] = transaction.created_at
    data["expires_at"] = transaction.expires_at
    data["executed_at"] = transaction.executed_at
    return TransactionResponse(**data)


@router.get("/transactions", response_model=List[TransactionResponse])
async def list_open_transactions(
    target_key: Optional[str] = None,
    gate: GovernanceGate = Depends(get_governance_gate),
):
    """Pending and confirmed transactions"""
    return [_to_response(t) for t in gate.list_open(target_key)]


@router.get("/transactions/{nonce}", response_model=TransactionResponse)
async def get_transaction(
    nonce: int,
    gate: GovernanceGate = Depends(get_governance_gate),
):
    return _to_response(gate.get(nonce))


@router.post("/transactions", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def propose_transaction(
    request: ProposeRequest,
    identity: str = Depends(get_current_identity),
    gate: GovernanceGate = Depends(get_governance_gate),
):
    """Open an approval transaction for a parameter change"""
    try:
        transaction = gate.propose(
            request.target_key,
            {"value": request.value, "description": request.description},
            proposed_by=identity,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _to_response(transaction)


@router.post("/transactions/{nonce}/approve", response_model=TransactionResponse)
async def approve_transaction(
    nonce: int,
    request: Optional[ApproveRequest] = None,
    identity: str = Depends(get_current_identity),
    gate: GovernanceGate = Depends(get_governance_gate),
):
    signature = request.signature if request else None
    return _to_response(gate.approve(nonce, identity, signature=signature))


@router.post("/transactions/{nonce}/reject", response_model=TransactionResponse)
async def reject_transaction(
    nonce: int,
    request: RejectRequest,
    identity: str = Depends(get_current_identity),
    gate: GovernanceGate = Depends(get_governance_gate),
):
    return _to_response(gate.reject(nonce, identity, request.reason))


@router.get("/transactions/{nonce}/executable")
async def transaction_executable(
    nonce: int,
    gate: GovernanceGate = Depends(get_governance_gate),
):
    return {"nonce": nonce, "executable": gate.is_executable(nonce)}


@router.post("/transactions/{nonce}/execute")
async def execute_transaction(
    nonce: int,
    identity: str = Depends(get_current_identity),
    gate: GovernanceGate = Depends(get_governance_gate),
):
    """Apply a confirmed transaction; repeat calls return the applied value"""
    applied_value = gate.execute(nonce, executed_by=identity)
    transaction = gate.get(nonce)
    return {
        "nonce": nonce,
        "status": transaction.status.value,
        "target_key": transaction.target_key,
        "applied_value": applied_value,
    }
