"""
SQLAlchemy models
"""
from tierstake.core.database import Base
from tierstake.models.account import Account, TeamLevel  # noqa: F401
from tierstake.models.approval import (OPEN_STATUSES,  # noqa: F401
                                       ApprovalRecord, ApprovalStatus,
                                       ApprovalTransaction)
from tierstake.models.parameter import (CRITICAL_KEYS,  # noqa: F401
                                        Parameter, ParameterCategory,
                                        ParameterHistory, is_critical_key)

__all__ = [
    "Base",
    "Account",
    "TeamLevel",
    "ApprovalRecord",
    "ApprovalStatus",
    "ApprovalTransaction",
    "OPEN_STATUSES",
    "CRITICAL_KEYS",
    "Parameter",
    "ParameterCategory",
    "ParameterHistory",
    "is_critical_key",
]
