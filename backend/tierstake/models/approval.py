"""
Approval transaction model for multi-party changes to critical parameters
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from sqlalchemy import JSON, Column, DateTime
from sqlalchemy import Enum as SQLEnum
from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from tierstake.core.database import Base


class ApprovalStatus(str, Enum):
    """Approval transaction lifecycle"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXECUTED = "executed"
    REJECTED = "rejected"
    EXPIRED = "expired"


OPEN_STATUSES = (ApprovalStatus.PENDING, ApprovalStatus.CONFIRMED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalTransaction(Base):
    """Proposed change to one parameter, identified by its nonce"""
    __tablename__ = "approval_transactions"

    # Autoincrement primary key: monotonic, never reused
    nonce = Column(Integer, primary_key=True, autoincrement=True)
    target_key = Column(String(128), nullable=False, index=True)
    payload = Column(JSON, nullable=False)  # {"value": ..., "description": ...}
    proposed_by = Column(String(64), nullable=False)
    threshold = Column(Integer, nullable=False)
    status = Column(SQLEnum(ApprovalStatus), nullable=False, default=ApprovalStatus.PENDING, index=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    executed_at = Column(DateTime(timezone=True), nullable=True)
    executed_by = Column(String(64), nullable=True)
    applied_value = Column(String(255), nullable=True)

    rejected_by = Column(String(64), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    approvals = relationship(
        "ApprovalRecord",
        back_populates="transaction",
        order_by="ApprovalRecord.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def approvers(self) -> List[str]:
        return [record.approver for record in self.approvals]

    @property
    def approval_count(self) -> int:
        return len({record.approver for record in self.approvals})

    @property
    def proposed_value(self) -> str:
        return str(self.payload.get("value"))

    @property
    def proposed_description(self) -> str:
        return self.payload.get("description") or ""

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nonce": self.nonce,
            "target_key": self.target_key,
            "payload": self.payload,
            "proposed_by": self.proposed_by,
            "threshold": self.threshold,
            "status": self.status.value,
            "approvers": self.approvers,
            "approval_count": self.approval_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "applied_value": self.applied_value,
        }

    def __repr__(self):
        return f"<ApprovalTransaction(nonce={self.nonce}, key={self.target_key}, status={self.status})>"


class ApprovalRecord(Base):
    """A single approver's approval; one per approver per transaction"""
    __tablename__ = "approval_records"
    __table_args__ = (
        UniqueConstraint("nonce", "approver", name="uq_approval_records_nonce_approver"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    nonce = Column(Integer, ForeignKey("approval_transactions.nonce", ondelete="CASCADE"), nullable=False, index=True)
    approver = Column(String(64), nullable=False)
    signature = Column(Text, nullable=True)
    approved_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    transaction = relationship("ApprovalTransaction", back_populates="approvals")
