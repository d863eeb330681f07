"""
Account model (owned by staking/referral logic, read-only for ranking)
"""
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime
from sqlalchemy import Enum as SQLEnum
from sqlalchemy import Float, Integer, String
from sqlalchemy.orm import validates

from tierstake.core.database import Base


class TeamLevel(str, Enum):
    """Ordered team tier labels"""
    NONE = "none"
    V1 = "V1"
    V2 = "V2"
    V3 = "V3"
    V4 = "V4"
    V5 = "V5"
    V6 = "V6"


class Account(Base):
    """Staking participant keyed by wallet address"""
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String(64), unique=True, nullable=False, index=True)
    referrer = Column(String(64), nullable=True, index=True)
    referrals = Column(JSON, nullable=False, default=list)

    staking_amount = Column(Float, nullable=False, default=0.0, index=True)
    district_performance = Column(Float, nullable=False, default=0.0, index=True)
    total_rewards = Column(Float, nullable=False, default=0.0)
    team_level = Column(SQLEnum(TeamLevel), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    @validates("wallet_address", "referrer")
    def _lowercase_identity(self, key, value):
        return value.strip().lower() if value else value

    @validates("referrals")
    def _lowercase_referrals(self, key, value):
        # Set semantics: duplicates collapse, order of first appearance kept
        seen = []
        for item in value or []:
            normalized = item.strip().lower()
            if normalized and normalized not in seen:
                seen.append(normalized)
        return seen

    @validates("staking_amount", "district_performance", "total_rewards")
    def _non_negative(self, key, value):
        if value is None:
            return 0.0
        if value < 0:
            raise ValueError(f"{key} must be non-negative")
        return float(value)

    @property
    def is_district_eligible(self) -> bool:
        """A single downstream line does not qualify for district ranking"""
        return (self.district_performance or 0) > 0 and len(self.referrals or []) > 1

    def __repr__(self):
        return f"<Account(wallet={self.wallet_address}, stake={self.staking_amount}, active={self.is_active})>"
