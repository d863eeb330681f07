"""
Service error taxonomy shared by stores, governance, ranking and the API layer
"""
from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base error carrying a machine code, HTTP status and context"""

    code = "service_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "detail": self.message,
            "retryable": self.retryable,
            "context": self.context,
        }


class NotFound(ServiceError):
    """Requested key, identity or nonce does not exist"""
    code = "not_found"
    status_code = 404


class UnknownParameter(NotFound):
    """Proposal targets a parameter key that does not exist"""
    code = "unknown_parameter"


class InactiveParameter(ServiceError):
    """Parameter has been soft-deleted"""
    code = "inactive"
    status_code = 409


class Unauthorized(ServiceError):
    """Identity outside the authorized set, or no identity supplied"""
    code = "unauthorized"
    status_code = 403


class ApprovalRequired(Unauthorized):
    """Critical key written without a confirmed approval transaction"""
    code = "approval_required"


class AlreadyApproved(ServiceError):
    code = "already_approved"
    status_code = 409


class NotConfirmed(ServiceError):
    code = "not_confirmed"
    status_code = 409


class TransactionClosed(ServiceError):
    """Transaction is rejected or expired; no further transitions"""
    code = "transaction_closed"
    status_code = 409


class InvalidCategory(ServiceError):
    code = "invalid_category"
    status_code = 400


class InvalidRankingType(ServiceError):
    code = "invalid_ranking_type"
    status_code = 400


class ConcurrentUpdate(ServiceError):
    """Another writer changed the row between read and write"""
    code = "concurrent_update"
    status_code = 409
    retryable = True


class StoreUnavailable(ServiceError):
    """Underlying persistence unreachable"""
    code = "store_unavailable"
    status_code = 503
    retryable = True
