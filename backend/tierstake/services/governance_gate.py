"""
Multi-party approval gate for critical parameter changes.

State machine:
    PENDING --(distinct approvals reach threshold)--> CONFIRMED --(execute)--> EXECUTED
    PENDING | CONFIRMED --(reject)--> REJECTED
    PENDING | CONFIRMED --(ttl elapsed)--> EXPIRED

Every operation runs in a single database transaction; a failure part way
through rolls back and leaves the approval transaction unchanged.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tierstake.core.approval_verifier import AcceptAllVerifier, ApprovalVerifier
from tierstake.core.config import GovernanceConfig
from tierstake.core.exceptions import (AlreadyApproved, NotConfirmed,
                                       NotFound, ServiceError,
                                       StoreUnavailable, TransactionClosed,
                                       Unauthorized, UnknownParameter)
from tierstake.core.identity import normalize_identity
from tierstake.core.logging_config import LoggingConfig
from tierstake.core.metrics import (governance_open_transactions,
                                    governance_transitions_total)
from tierstake.models.approval import (OPEN_STATUSES, ApprovalRecord,
                                       ApprovalStatus, ApprovalTransaction)
from tierstake.services.parameter_store import ParameterStore, encode_value

logger = LoggingConfig.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class GovernanceGate:
    """Collects approvals from a fixed owner set and applies confirmed changes"""

    def __init__(
        self,
        db: Session,
        config: GovernanceConfig,
        verifier: Optional[ApprovalVerifier] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.config = config
        self.verifier = verifier or AcceptAllVerifier()
        self.clock = clock
        self.parameters = ParameterStore(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load(self, nonce: int, for_update: bool = False) -> ApprovalTransaction:
        try:
            query = self.db.query(ApprovalTransaction).filter(ApprovalTransaction.nonce == nonce)
            if for_update:
                query = query.with_for_update().populate_existing()
            transaction = query.first()
        except SQLAlchemyError as e:
            raise StoreUnavailable(
                f"Failed to read approval transaction {nonce}: {e}",
                context={"nonce": nonce}
            ) from e
        if transaction is None:
            raise NotFound(f"Approval transaction {nonce} not found", context={"nonce": nonce})
        return transaction

    def get(self, nonce: int) -> ApprovalTransaction:
        return self._load(nonce)

    def list_open(self, target_key: Optional[str] = None) -> List[ApprovalTransaction]:
        """Pending and confirmed transactions, oldest first"""
        try:
            query = self.db.query(ApprovalTransaction).filter(ApprovalTransaction.status.in_(OPEN_STATUSES))
            if target_key:
                query = query.filter(ApprovalTransaction.target_key == target_key)
            transactions = query.order_by(ApprovalTransaction.nonce.asc()).all()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to list approval transactions: {e}") from e
        if target_key is None:
            governance_open_transactions.set(len(transactions))
        return transactions

    def is_executable(self, nonce: int) -> bool:
        transaction = self._load(nonce)
        return transaction.status == ApprovalStatus.CONFIRMED and not self._is_past_ttl(transaction)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def propose(self, target_key: str, payload: Dict[str, Any], proposed_by: str) -> ApprovalTransaction:
        """
        Open a new approval transaction for a parameter change.

        Args:
            target_key: Existing parameter key
            payload: {"value": new value, "description": optional text}
            proposed_by: Caller identity

        Raises:
            UnknownParameter: target_key does not exist
        """
        if self.parameters.find(target_key) is None:
            raise UnknownParameter(
                f"Cannot propose change to unknown parameter '{target_key}'",
                context={"key": target_key}
            )
        if "value" not in payload:
            raise ValueError("proposal payload requires a 'value'")

        now = self.clock()
        transaction = ApprovalTransaction(
            target_key=target_key,
            payload={
                "value": encode_value(payload["value"]),
                "description": payload.get("description") or "",
            },
            proposed_by=normalize_identity(proposed_by),
            threshold=self.config.threshold,
            status=ApprovalStatus.PENDING,
            created_at=now,
            expires_at=now + timedelta(hours=self.config.approval_ttl_hours),
        )
        try:
            self.db.add(transaction)
            self.db.commit()
            self.db.refresh(transaction)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(
                f"Failed to create approval transaction for '{target_key}': {e}",
                context={"key": target_key, "operation": "propose"}
            ) from e

        governance_transitions_total.labels(status=ApprovalStatus.PENDING.value).inc()
        logger.info(
            f"Approval transaction {transaction.nonce} proposed for {target_key}",
            extra={
                "nonce": transaction.nonce,
                "key": target_key,
                "proposed_by": transaction.proposed_by,
                "threshold": transaction.threshold,
            }
        )
        return transaction

    def approve(self, nonce: int, approver: str, signature: Optional[str] = None) -> ApprovalTransaction:
        """
        Record one owner's approval.

        A second approval by the same owner raises AlreadyApproved and does not
        change the count.
        """
        approver = normalize_identity(approver)
        if not self.config.is_owner(approver):
            raise Unauthorized(
                f"{approver or 'anonymous'} is not an authorized approver",
                context={"nonce": nonce, "approver": approver}
            )

        try:
            transaction = self._load(nonce, for_update=True)
            self._ensure_open(transaction)
            if approver in transaction.approvers:
                raise AlreadyApproved(
                    f"{approver} already approved transaction {nonce}",
                    context={"nonce": nonce, "approver": approver}
                )
            if not self.verifier.verify(transaction, approver, signature):
                raise Unauthorized(
                    f"Signature from {approver} rejected for transaction {nonce}",
                    context={"nonce": nonce, "approver": approver}
                )

            now = self.clock()
            transaction.approvals.append(ApprovalRecord(approver=approver, signature=signature, approved_at=now))
            confirmed = (
                transaction.status == ApprovalStatus.PENDING
                and transaction.approval_count >= transaction.threshold
            )
            if confirmed:
                transaction.status = ApprovalStatus.CONFIRMED
                transaction.confirmed_at = now
            self.db.commit()
            self.db.refresh(transaction)
        except IntegrityError as e:
            # Lost a race with the same approver on another connection
            self.db.rollback()
            raise AlreadyApproved(
                f"{approver} already approved transaction {nonce}",
                context={"nonce": nonce, "approver": approver}
            ) from e
        except ServiceError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(
                f"Failed to record approval on transaction {nonce}: {e}",
                context={"nonce": nonce, "operation": "approve"}
            ) from e

        logger.info(
            f"Transaction {nonce} approved by {approver} "
            f"({transaction.approval_count}/{transaction.threshold})",
            extra={"nonce": nonce, "approver": approver, "status": transaction.status.value}
        )
        if confirmed:
            governance_transitions_total.labels(status=ApprovalStatus.CONFIRMED.value).inc()
        return transaction

    def execute(self, nonce: int, executed_by: str) -> str:
        """
        Apply a confirmed change through the ParameterStore.

        Re-executing an executed transaction returns the applied value
        without touching the parameter again.

        Raises:
            NotConfirmed: transaction has not reached its threshold
            TransactionClosed: transaction was rejected or expired
        """
        executed_by = normalize_identity(executed_by) or "governance"
        try:
            transaction = self._load(nonce, for_update=True)
            if transaction.status == ApprovalStatus.EXECUTED:
                applied_value = transaction.applied_value
                self.db.rollback()
                return applied_value
            self._ensure_open(transaction)
            if transaction.status != ApprovalStatus.CONFIRMED:
                raise NotConfirmed(
                    f"Transaction {nonce} has {transaction.approval_count}/{transaction.threshold} approvals",
                    context={"nonce": nonce, "status": transaction.status.value}
                )

            parameter = self.parameters.update(
                transaction.target_key,
                transaction.proposed_value,
                transaction.proposed_description,
                updated_by=executed_by,
                approval_reference=str(nonce),
                source="governance",
                commit=False,
            )
            transaction.status = ApprovalStatus.EXECUTED
            transaction.applied_value = parameter.value
            transaction.executed_at = self.clock()
            transaction.executed_by = executed_by
            transaction.closed_at = transaction.executed_at
            self.db.commit()
        except ServiceError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(
                f"Failed to execute transaction {nonce}: {e}",
                context={"nonce": nonce, "operation": "execute"}
            ) from e

        governance_transitions_total.labels(status=ApprovalStatus.EXECUTED.value).inc()
        logger.info(
            f"Transaction {nonce} executed: {transaction.target_key} = {transaction.applied_value}",
            extra={"nonce": nonce, "key": transaction.target_key, "executed_by": executed_by}
        )
        return transaction.applied_value

    def reject(self, nonce: int, rejected_by: str, reason: str = "") -> ApprovalTransaction:
        """Any authorized owner may reject an open transaction"""
        rejected_by = normalize_identity(rejected_by)
        if not self.config.is_owner(rejected_by):
            raise Unauthorized(
                f"{rejected_by or 'anonymous'} is not an authorized approver",
                context={"nonce": nonce, "approver": rejected_by}
            )
        try:
            transaction = self._load(nonce, for_update=True)
            self._ensure_open(transaction)
            transaction.status = ApprovalStatus.REJECTED
            transaction.rejected_by = rejected_by
            transaction.rejection_reason = reason
            transaction.closed_at = self.clock()
            self.db.commit()
            self.db.refresh(transaction)
        except ServiceError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(
                f"Failed to reject transaction {nonce}: {e}",
                context={"nonce": nonce, "operation": "reject"}
            ) from e

        governance_transitions_total.labels(status=ApprovalStatus.REJECTED.value).inc()
        logger.info(
            f"Transaction {nonce} rejected by {rejected_by}",
            extra={"nonce": nonce, "rejected_by": rejected_by, "reason": reason}
        )
        return transaction

    def expire_stale(self) -> int:
        """Close open transactions whose ttl has elapsed; returns how many"""
        now = self.clock()
        try:
            transactions = (
                self.db.query(ApprovalTransaction)
                .filter(ApprovalTransaction.status.in_(OPEN_STATUSES))
                .with_for_update()
                .all()
            )
            expired = 0
            for transaction in transactions:
                if self._is_past_ttl(transaction, now):
                    self._mark_expired(transaction, now)
                    expired += 1
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(f"Failed to expire approval transactions: {e}") from e

        if expired:
            governance_transitions_total.labels(status=ApprovalStatus.EXPIRED.value).inc(expired)
            logger.info(f"Expired {expired} approval transactions")
        governance_open_transactions.set(len(transactions) - expired)
        return expired

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_past_ttl(self, transaction: ApprovalTransaction, now: Optional[datetime] = None) -> bool:
        expires_at = _as_utc(transaction.expires_at)
        return expires_at is not None and (now or self.clock()) >= expires_at

    def _mark_expired(self, transaction: ApprovalTransaction, now: datetime) -> None:
        transaction.status = ApprovalStatus.EXPIRED
        transaction.closed_at = now

    def _ensure_open(self, transaction: ApprovalTransaction) -> None:
        """Raise TransactionClosed for terminal transactions, expiring overdue ones first"""
        if transaction.is_open and self._is_past_ttl(transaction):
            self._mark_expired(transaction, self.clock())
            self.db.commit()
            governance_transitions_total.labels(status=ApprovalStatus.EXPIRED.value).inc()
            logger.info(f"Transaction {transaction.nonce} expired", extra={"nonce": transaction.nonce})
        if not transaction.is_open:
            raise TransactionClosed(
                f"Transaction {transaction.nonce} is {transaction.status.value}",
                context={"nonce": transaction.nonce, "status": transaction.status.value}
            )
