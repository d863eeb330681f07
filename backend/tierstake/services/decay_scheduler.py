"""
Daily decay of pool yield rates once aggregate stake crosses the threshold
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError

from tierstake.core.config import Settings, get_settings
from tierstake.core.exceptions import ServiceError, StoreUnavailable
from tierstake.core.logging_config import LoggingConfig
from tierstake.core.metrics import decay_pool_changes_total
from tierstake.services.parameter_store import ParameterStore

logger = LoggingConfig.get_logger(__name__)

DECAY_THRESHOLD = Decimal("100000000")
DECAY_STEP = Decimal("0.001")
DECAY_POOL_IDS = (0, 1, 2, 3, 4)
DECAY_IDENTITY = "decay-scheduler"


def pool_rate_key(pool_id: int) -> str:
    return f"pool{pool_id}DailyRate"


@dataclass(frozen=True)
class RateChange:
    pool_id: int
    old_rate: Decimal
    new_rate: Decimal

    def to_dict(self):
        return {"pool_id": self.pool_id, "old_rate": str(self.old_rate), "new_rate": str(self.new_rate)}


def _format_rate(rate: Decimal) -> str:
    # Decimal("0.000") -> "0", Decimal("0.0030") -> "0.003"
    normalized = rate.normalize()
    if normalized == 0:
        return "0"
    return format(normalized, "f")


class DecayScheduler:
    """
    Reduces each pool's daily rate by a fixed step, floored at zero.

    Pool rate keys are non-critical, so writes go straight to the
    ParameterStore. All pools are written in one transaction: either every
    pool decays or none does. The caller's trigger is responsible for
    running the pass at most once per day.
    """

    def __init__(
        self,
        parameters: ParameterStore,
        threshold: Decimal = DECAY_THRESHOLD,
        step: Decimal = DECAY_STEP,
        pool_ids: Sequence[int] = DECAY_POOL_IDS,
    ):
        self.parameters = parameters
        self.threshold = Decimal(threshold)
        self.step = Decimal(step)
        self.pool_ids = tuple(pool_ids)

    @classmethod
    def from_settings(cls, parameters: ParameterStore, settings: Optional[Settings] = None) -> "DecayScheduler":
        settings = settings or get_settings()
        return cls(
            parameters,
            threshold=settings.decay_threshold,
            step=settings.decay_step,
            pool_ids=settings.decay_pool_id_list,
        )

    def should_decay(self, total_staked: Union[int, float, Decimal]) -> bool:
        return Decimal(str(total_staked)) > self.threshold

    def run_decay_pass(
        self,
        total_staked: Union[int, float, Decimal],
        updated_by: str = DECAY_IDENTITY,
    ) -> List[RateChange]:
        """
        Apply one decay step to every configured pool.

        Returns:
            One RateChange per pool written, in pool order; empty when the
            total stake is at or below the threshold.
        """
        if not self.should_decay(total_staked):
            logger.info(
                "Decay pass skipped: total stake below threshold",
                extra={"total_staked": str(total_staked), "threshold": str(self.threshold)}
            )
            return []

        changes = []
        try:
            for pool_id in self.pool_ids:
                key = pool_rate_key(pool_id)
                current = self._current_rate(key)
                if current is None:
                    continue
                new_rate = max(Decimal(0), current - self.step)
                self.parameters.update(
                    key,
                    _format_rate(new_rate),
                    None,
                    updated_by=updated_by,
                    source="decay",
                    commit=False,
                )
                changes.append(RateChange(pool_id=pool_id, old_rate=current, new_rate=new_rate))
            self.parameters.db.commit()
        except ServiceError:
            self.parameters.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.parameters.db.rollback()
            raise StoreUnavailable(
                f"Decay pass failed, no pool rates changed: {e}",
                context={"operation": "decay_pass"}
            ) from e

        for change in changes:
            decay_pool_changes_total.labels(pool_id=str(change.pool_id)).inc()
        logger.info(
            f"Decay pass applied to {len(changes)} pools",
            extra={"total_staked": str(total_staked), "changes": [c.to_dict() for c in changes]}
        )
        return changes

    def _current_rate(self, key: str) -> Optional[Decimal]:
        """Current pool rate, or None when the pool cannot be decayed"""
        parameter = self.parameters.find(key)
        if parameter is None or not parameter.is_active:
            logger.warning(f"Decay pass: {key} missing or inactive, pool skipped", extra={"key": key})
            return None
        try:
            current = Decimal(parameter.value)
        except InvalidOperation:
            current = None
        if current is None or not current.is_finite():
            logger.warning(
                f"Decay pass: {key} holds non-numeric value {parameter.value!r}, pool skipped",
                extra={"key": key}
            )
            return None
        return current
