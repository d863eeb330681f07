"""
Pluggable verification of approver signatures on governance transactions.

No cryptographic check is performed by default. A deployment that wires a
real multisig (e.g. a Safe contract) supplies its own ApprovalVerifier.
"""
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from tierstake.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)


class ApprovalVerifier(ABC):
    """Decides whether an approval attempt carries a valid signature"""

    @abstractmethod
    def verify(self, transaction, approver: str, signature: Optional[str]) -> bool:
        """Return True if the approver's signature over the transaction is acceptable"""


class AcceptAllVerifier(ApprovalVerifier):
    """Accepts every approval; membership in the owner set is still enforced by the gate"""

    def verify(self, transaction, approver: str, signature: Optional[str]) -> bool:
        if signature is None:
            logger.debug(
                "Approval accepted without signature",
                extra={"nonce": getattr(transaction, "nonce", None), "approver": approver}
            )
        return True


class StaticSignatureVerifier(ApprovalVerifier):
    """Accepts only pre-registered (nonce, approver) -> signature pairs"""

    def __init__(self, signatures: Optional[Dict[Tuple[int, str], str]] = None):
        self._signatures = dict(signatures or {})

    def register(self, nonce: int, approver: str, signature: str) -> None:
        self._signatures[(nonce, approver.lower())] = signature

    def verify(self, transaction, approver: str, signature: Optional[str]) -> bool:
        expected = self._signatures.get((transaction.nonce, approver.lower()))
        return expected is not None and signature == expected
