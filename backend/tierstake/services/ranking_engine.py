"""
Personal and district rankings and the reward bonus derived from rank.

Every query reads a fresh snapshot from the AccountStore; nothing is cached
or written back.
"""
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from tierstake.core.exceptions import InvalidRankingType
from tierstake.core.identity import normalize_identity
from tierstake.core.logging_config import LoggingConfig
from tierstake.core.metrics import (ranking_computation_duration_seconds,
                                    ranking_queries_total)
from tierstake.models.account import Account
from tierstake.services.account_store import AccountStore

logger = LoggingConfig.get_logger(__name__)


class RankingType(str, Enum):
    PERSONAL = "personal"
    DISTRICT = "district"


# (first rank, last rank, bonus percent), inclusive on both ends
BONUS_TIERS: Tuple[Tuple[int, int, int], ...] = (
    (1, 100, 20),
    (101, 299, 10),
)


def parse_ranking_type(kind: Union[str, RankingType]) -> RankingType:
    if isinstance(kind, RankingType):
        return kind
    try:
        return RankingType(str(kind).strip().lower())
    except ValueError:
        raise InvalidRankingType(
            f"Unknown ranking type '{kind}' (expected 'personal' or 'district')",
            context={"type": kind}
        )


def bonus_for_rank(rank: Optional[int]) -> int:
    """Bonus percentage for a 1-based rank; unranked earns nothing"""
    if rank is None:
        return 0
    for first, last, percent in BONUS_TIERS:
        if first <= rank <= last:
            return percent
    return 0


@dataclass(frozen=True)
class RankingEntry:
    rank: int
    wallet_address: str
    score: float
    staking_amount: float
    district_performance: float
    total_rewards: float
    team_level: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "wallet_address": self.wallet_address,
            "score": self.score,
            "staking_amount": self.staking_amount,
            "district_performance": self.district_performance,
            "total_rewards": self.total_rewards,
            "team_level": self.team_level,
            "bonus": bonus_for_rank(self.rank),
        }


class RankingEngine:
    """Computes ranks and bonuses from account snapshots"""

    def __init__(self, accounts: AccountStore):
        self.accounts = accounts

    def _ordered(self, kind: RankingType) -> List[Account]:
        start = time.time()
        if kind is RankingType.PERSONAL:
            candidates = self.accounts.active_accounts()
            score = lambda account: account.staking_amount  # noqa: E731
        else:
            candidates = self.accounts.district_eligible()
            score = lambda account: account.district_performance  # noqa: E731
        # Python ordering keeps the identity tie-break independent of DB collation
        ordered = sorted(candidates, key=lambda account: (-score(account), account.wallet_address))
        ranking_computation_duration_seconds.labels(kind=kind.value).observe(time.time() - start)
        ranking_queries_total.labels(kind=kind.value).inc()
        return ordered

    def _rank_of(self, identity: str, kind: RankingType) -> Optional[int]:
        identity = normalize_identity(identity)
        if not identity:
            return None
        for position, account in enumerate(self._ordered(kind), start=1):
            if account.wallet_address == identity:
                return position
        return None

    def personal_rank(self, identity: str) -> Optional[int]:
        """1-based stake rank among active accounts, or None when unranked"""
        return self._rank_of(identity, RankingType.PERSONAL)

    def district_rank(self, identity: str) -> Optional[int]:
        """1-based district rank among eligible accounts, or None when unranked"""
        return self._rank_of(identity, RankingType.DISTRICT)

    @staticmethod
    def personal_bonus(rank: Optional[int]) -> int:
        return bonus_for_rank(rank)

    @staticmethod
    def district_bonus(rank: Optional[int]) -> int:
        return bonus_for_rank(rank)

    def total_bonus(self, identity: str) -> int:
        """The higher of the two bonuses; they never stack"""
        return max(
            self.personal_bonus(self.personal_rank(identity)),
            self.district_bonus(self.district_rank(identity)),
        )

    def ranking_summary(self, identity: str) -> Optional[Dict[str, Any]]:
        """Rank and bonus breakdown for one account, or None if it does not exist"""
        account = self.accounts.get(identity)
        if account is None:
            return None

        personal_rank = self.personal_rank(account.wallet_address)
        district_rank = self.district_rank(account.wallet_address)
        personal_bonus = self.personal_bonus(personal_rank)
        district_bonus = self.district_bonus(district_rank)

        return {
            "wallet_address": account.wallet_address,
            "personal_rank": personal_rank,
            "personal_bonus": personal_bonus,
            "district_rank": district_rank,
            "district_bonus": district_bonus,
            "total_bonus": max(personal_bonus, district_bonus),
            "staking_amount": account.staking_amount,
            "total_rewards": account.total_rewards,
            "team_level": account.team_level.value if account.team_level else None,
        }

    def ranking_list(self, kind: Union[str, RankingType], limit: int) -> List[RankingEntry]:
        """Top `limit` entries of the given ranking"""
        kind = parse_ranking_type(kind)
        if limit < 1:
            return []
        entries = []
        for position, account in enumerate(self._ordered(kind)[:limit], start=1):
            entries.append(RankingEntry(
                rank=position,
                wallet_address=account.wallet_address,
                score=account.staking_amount if kind is RankingType.PERSONAL else account.district_performance,
                staking_amount=account.staking_amount,
                district_performance=account.district_performance,
                total_rewards=account.total_rewards,
                team_level=account.team_level.value if account.team_level else None,
            ))
        return entries

    def recalculate_all(self) -> Dict[str, int]:
        """
        Daily hook. Rankings are computed on demand, so this only takes a
        snapshot of both orderings and reports their sizes.
        """
        personal = self._ordered(RankingType.PERSONAL)
        district = self._ordered(RankingType.DISTRICT)
        summary = {
            "personal": len(personal),
            "district": len(district),
            "bonus_eligible_personal": sum(1 for rank in range(1, len(personal) + 1) if bonus_for_rank(rank)),
            "bonus_eligible_district": sum(1 for rank in range(1, len(district) + 1) if bonus_for_rank(rank)),
        }
        logger.info("Rankings recalculated", extra=summary)
        return summary
