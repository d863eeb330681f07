"""
Boundary for parameter writes: routes critical keys through governance and
everything else straight to the store.
"""
from dataclasses import dataclass
from typing import Optional

from tierstake.core.exceptions import ApprovalRequired, InactiveParameter
from tierstake.core.logging_config import LoggingConfig
from tierstake.models.approval import ApprovalStatus
from tierstake.models.parameter import Parameter, is_critical_key
from tierstake.services.governance_gate import GovernanceGate
from tierstake.services.parameter_store import ParameterStore, encode_value

logger = LoggingConfig.get_logger(__name__)


@dataclass
class ChangeOutcome:
    """Result of a write request"""
    status: str  # 'applied' or 'approval_required'
    parameter: Parameter
    nonce: Optional[int] = None
    approval_status: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.status == "applied"


class ParameterChangeService:
    def __init__(self, store: ParameterStore, gate: GovernanceGate):
        self.store = store
        self.gate = gate

    def submit(
        self,
        key: str,
        value,
        description: Optional[str],
        identity: str,
        nonce: Optional[int] = None,
    ) -> ChangeOutcome:
        """
        Handle a write request for one parameter.

        Non-critical keys are written directly. For a critical key:
          - without a nonce a proposal is opened and the caller is told
            approval is required;
          - with a nonce the transaction must target the same key and value;
            it is executed if confirmed (or already executed), otherwise
            ApprovalRequired is raised and nothing changes.
        """
        parameter = self.store.get(key)
        if not parameter.is_active:
            raise InactiveParameter(f"Parameter '{key}' is inactive", context={"key": key})
        if not is_critical_key(key):
            updated = self.store.update(key, value, description, updated_by=identity)
            return ChangeOutcome(status="applied", parameter=updated)

        if nonce is None:
            transaction = self.gate.propose(
                key,
                {"value": value, "description": description},
                proposed_by=identity,
            )
            logger.info(
                f"Write to critical key {key} deferred to approval transaction {transaction.nonce}",
                extra={"key": key, "nonce": transaction.nonce, "identity": identity}
            )
            return ChangeOutcome(
                status="approval_required",
                parameter=parameter,
                nonce=transaction.nonce,
                approval_status=transaction.status.value,
            )

        transaction = self.gate.get(nonce)
        if transaction.target_key != key or transaction.proposed_value != encode_value(value):
            raise ApprovalRequired(
                f"Approval transaction {nonce} does not cover {key} = {value}",
                context={"key": key, "nonce": nonce}
            )
        if transaction.status not in (ApprovalStatus.CONFIRMED, ApprovalStatus.EXECUTED):
            raise ApprovalRequired(
                f"Approval transaction {nonce} is {transaction.status.value}; "
                f"{transaction.approval_count}/{transaction.threshold} approvals collected",
                context={"key": key, "nonce": nonce, "status": transaction.status.value}
            )

        self.gate.execute(nonce, executed_by=identity)
        return ChangeOutcome(
            status="applied",
            parameter=self.store.get(key),
            nonce=nonce,
            approval_status=ApprovalStatus.EXECUTED.value,
        )
