"""
Read access to staking accounts for ranking and decay
"""
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tierstake.core.exceptions import StoreUnavailable
from tierstake.core.identity import normalize_identity
from tierstake.models.account import Account, TeamLevel


class AccountStore:
    """Queries over the accounts table; the ranking core never writes here"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, identity: str) -> Optional[Account]:
        identity = normalize_identity(identity)
        if not identity:
            return None
        try:
            return self.db.query(Account).filter(Account.wallet_address == identity).first()
        except SQLAlchemyError as e:
            raise StoreUnavailable(
                f"Failed to read account {identity}: {e}",
                context={"identity": identity, "operation": "get_account"}
            ) from e

    def active_accounts(self) -> List[Account]:
        """Active accounts, stake descending, identity ascending on ties"""
        try:
            return (
                self.db.query(Account)
                .filter(Account.is_active.is_(True))
                .order_by(Account.staking_amount.desc(), Account.wallet_address.asc())
                .all()
            )
        except SQLAlchemyError as e:
            raise StoreUnavailable(
                f"Failed to load active accounts: {e}",
                context={"operation": "active_accounts"}
            ) from e

    def district_eligible(self) -> List[Account]:
        """Active accounts with district performance and more than one referral line"""
        try:
            candidates = (
                self.db.query(Account)
                .filter(Account.is_active.is_(True), Account.district_performance > 0)
                .order_by(Account.district_performance.desc(), Account.wallet_address.asc())
                .all()
            )
        except SQLAlchemyError as e:
            raise StoreUnavailable(
                f"Failed to load district candidates: {e}",
                context={"operation": "district_eligible"}
            ) from e
        # Referral count lives in a JSON column, so the size check runs here
        return [account for account in candidates if account.is_district_eligible]

    def total_staked(self) -> float:
        """Aggregate stake of active accounts"""
        try:
            total = (
                self.db.query(func.coalesce(func.sum(Account.staking_amount), 0.0))
                .filter(Account.is_active.is_(True))
                .scalar()
            )
        except SQLAlchemyError as e:
            raise StoreUnavailable(
                f"Failed to aggregate total stake: {e}",
                context={"operation": "total_staked"}
            ) from e
        return float(total or 0.0)

    def upsert(
        self,
        identity: str,
        staking_amount: float = 0.0,
        district_performance: float = 0.0,
        referrals: Optional[Iterable[str]] = None,
        referrer: Optional[str] = None,
        team_level: Optional[TeamLevel] = None,
        total_rewards: float = 0.0,
        is_active: bool = True,
    ) -> Account:
        """Create or replace an account snapshot (seeding and fixtures)"""
        identity = normalize_identity(identity)
        account = self.get(identity)
        if account is None:
            account = Account(wallet_address=identity)
            self.db.add(account)
        account.staking_amount = staking_amount
        account.district_performance = district_performance
        account.referrals = list(referrals or [])
        account.referrer = referrer
        account.team_level = team_level
        account.total_rewards = total_rewards
        account.is_active = is_active
        try:
            self.db.commit()
            self.db.refresh(account)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(
                f"Failed to write account {identity}: {e}",
                context={"identity": identity, "operation": "upsert"}
            ) from e
        return account
