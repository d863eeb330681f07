"""
Parameter model: versioned key/value configuration with append-only history
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, Column, DateTime
from sqlalchemy import Enum as SQLEnum
from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from tierstake.core.database import Base


class ParameterCategory(str, Enum):
    """Categories of operating parameters"""
    STAKING = "staking"
    REFERRAL = "referral"
    NODE = "node"
    MARKET = "market"
    CONTROL = "control"


# Keys with direct economic impact; writes require multi-party approval
CRITICAL_KEYS = frozenset({"dailyYieldBase", "buyTaxRate", "sellTaxRate", "decayRate"})


def is_critical_key(key: str) -> bool:
    """Exact, case-sensitive membership test"""
    return key in CRITICAL_KEYS


class Parameter(Base):
    """Operating parameter; value is a string-encoded scalar"""
    __tablename__ = "parameters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(128), unique=True, nullable=False, index=True)
    value = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(SQLEnum(ParameterCategory), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    version = Column(Integer, nullable=False)
    updated_by = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    history = relationship(
        "ParameterHistory",
        back_populates="parameter",
        order_by="ParameterHistory.sequence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    # Concurrent writers to the same row fail with StaleDataError instead of
    # silently overwriting each other
    __mapper_args__ = {"version_id_col": version}

    @property
    def is_critical(self) -> bool:
        return is_critical_key(self.key)

    def to_dict(self, include_history: bool = False) -> Dict[str, Any]:
        data = {
            "key": self.key,
            "value": self.value,
            "description": self.description,
            "category": self.category.value if self.category else None,
            "is_active": self.is_active,
            "is_critical": self.is_critical,
            "version": self.version,
            "updated_by": self.updated_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_history:
            data["history"] = [entry.to_dict() for entry in self.history]
        return data

    def __repr__(self):
        return f"<Parameter(key={self.key}, value={self.value}, category={self.category})>"


class ParameterHistory(Base):
    """One entry per committed change, recording the value that was replaced"""
    __tablename__ = "parameter_history"
    __table_args__ = (
        UniqueConstraint("parameter_id", "sequence", name="uq_parameter_history_sequence"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    parameter_id = Column(Integer, ForeignKey("parameters.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    previous_value = Column(String(255), nullable=False)
    timestamp = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_by = Column(String(64), nullable=False)
    approval_reference = Column(String(64), nullable=True)

    parameter = relationship("Parameter", back_populates="history")

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "sequence": self.sequence,
            "previous_value": self.previous_value,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "updated_by": self.updated_by,
            "approval_reference": self.approval_reference,
        }
