"""
Caller identity resolution.

Session and token validation happen in the upstream auth gateway; it forwards
the verified wallet address in the ``X-Caller-Identity`` header. Handlers
receive the identity as an explicit argument and pass it on to services.
"""
from typing import Optional

from fastapi import Header, HTTPException, status

IDENTITY_HEADER = "X-Caller-Identity"
# Width of the identity columns (wallet_address, approver, updated_by)
IDENTITY_MAX_LENGTH = 64


def normalize_identity(identity: Optional[str]) -> str:
    """Wallet identities are compared case-insensitively and stored lowercase"""
    return (identity or "").strip().lower()


async def get_current_identity(
    x_caller_identity: Optional[str] = Header(default=None, alias=IDENTITY_HEADER)
) -> str:
    """Require an authenticated caller identity"""
    identity = normalize_identity(x_caller_identity)
    if not identity:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Caller identity required"
        )
    if len(identity) > IDENTITY_MAX_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Caller identity exceeds {IDENTITY_MAX_LENGTH} characters"
        )
    return identity
