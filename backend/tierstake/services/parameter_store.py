"""
Parameter store: reads, writes and history of operating parameters.

The store performs no governance checks; writes against critical keys are
gated by the caller (see ParameterChangeService / GovernanceGate).
"""
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple, Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from tierstake.core.exceptions import (ConcurrentUpdate, InactiveParameter,
                                       InvalidCategory, NotFound,
                                       ServiceError, StoreUnavailable)
from tierstake.core.logging_config import LoggingConfig
from tierstake.core.metrics import parameter_updates_total
from tierstake.models.parameter import (Parameter, ParameterCategory,
                                        ParameterHistory, is_critical_key)

logger = LoggingConfig.get_logger(__name__)

SYSTEM_IDENTITY = "system"

# Width of the parameters.value column
MAX_VALUE_LENGTH = 255

# (key, value, category, description)
DEFAULT_PARAMETERS: Tuple[Tuple[str, str, ParameterCategory, str], ...] = (
    ("dailyYieldBase", "0.004", ParameterCategory.STAKING, "Base daily yield rate"),
    ("decayRate", "0.001", ParameterCategory.STAKING, "Pool rate reduction per decay pass"),
    ("lpMultiplier", "2", ParameterCategory.STAKING, "LP mode reward multiplier"),
    ("pool0DailyRate", "0.004", ParameterCategory.STAKING, "Pool 0 daily rate"),
    ("pool1DailyRate", "0.004", ParameterCategory.STAKING, "Pool 1 daily rate"),
    ("pool2DailyRate", "0.005", ParameterCategory.STAKING, "Pool 2 daily rate"),
    ("pool3DailyRate", "0.006", ParameterCategory.STAKING, "Pool 3 daily rate"),
    ("pool4DailyRate", "0.007", ParameterCategory.STAKING, "Pool 4 daily rate"),
    ("buyTaxRate", "0.02", ParameterCategory.MARKET, "Buy tax rate"),
    ("sellTaxRate", "0.05", ParameterCategory.MARKET, "Sell tax rate"),
    ("transferTaxRate", "0.01", ParameterCategory.MARKET, "Transfer tax rate"),
    ("level1Rate", "0.05", ParameterCategory.REFERRAL, "First generation referral reward rate"),
    ("level2Rate", "0.03", ParameterCategory.REFERRAL, "Second generation referral reward rate"),
    ("teamBonusRate", "0.06", ParameterCategory.REFERRAL, "Team reward rate"),
    ("nodeActivationFee", "5000", ParameterCategory.NODE, "Node application fee"),
    ("nodeDividendRate", "0.02", ParameterCategory.NODE, "Node dividend share"),
    ("minOnlineRate", "0.9", ParameterCategory.NODE, "Minimum node online rate"),
    ("dailyPurchaseLimit", "1000", ParameterCategory.CONTROL, "Per-account daily purchase cap"),
    ("withdrawalPaused", "false", ParameterCategory.CONTROL, "Emergency withdrawal pause flag"),
)


def parse_category(category: Union[None, str, ParameterCategory]) -> Optional[ParameterCategory]:
    """Validate a category filter before any store access"""
    if category is None or isinstance(category, ParameterCategory):
        return category
    try:
        return ParameterCategory(category.strip().lower())
    except ValueError:
        allowed = ", ".join(c.value for c in ParameterCategory)
        raise InvalidCategory(
            f"Unknown category '{category}' (expected one of: {allowed})",
            context={"category": category}
        )


def encode_value(value) -> str:
    """Parameters hold string-encoded scalars"""
    if isinstance(value, bool):
        return "true" if value else "false"
    encoded = str(value).strip()
    if not encoded:
        raise ValueError("parameter value must not be empty")
    if len(encoded) > MAX_VALUE_LENGTH:
        raise ValueError(f"parameter value exceeds {MAX_VALUE_LENGTH} characters")
    return encoded


class ParameterStore:
    """Versioned key/value store backed by the parameters table"""

    def __init__(self, db: Session):
        self.db = db

    def find(self, key: str) -> Optional[Parameter]:
        try:
            return self.db.query(Parameter).filter(Parameter.key == key).first()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to read parameter '{key}': {e}", context={"key": key}) from e

    def get(self, key: str) -> Parameter:
        """Get a parameter by key, active or not"""
        parameter = self.find(key)
        if parameter is None:
            raise NotFound(f"Parameter '{key}' not found", context={"key": key})
        return parameter

    def list(self, category: Union[None, str, ParameterCategory] = None) -> List[Parameter]:
        """Active parameters, optionally filtered by category, sorted by key"""
        category = parse_category(category)
        try:
            query = self.db.query(Parameter).filter(Parameter.is_active.is_(True))
            if category is not None:
                query = query.filter(Parameter.category == category)
            return query.order_by(Parameter.key.asc()).all()
        except SQLAlchemyError as e:
            raise StoreUnavailable(
                f"Failed to list parameters: {e}",
                context={"category": category.value if category else None}
            ) from e

    def history(self, key: str) -> List[ParameterHistory]:
        return list(self.get(key).history)

    def _load_for_update(self, key: str) -> Optional[Parameter]:
        # Row lock where supported; the version column covers the rest
        return (
            self.db.query(Parameter)
            .filter(Parameter.key == key)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def update(
        self,
        key: str,
        new_value,
        description: Optional[str],
        updated_by: str,
        approval_reference: Optional[str] = None,
        source: str = "direct",
        commit: bool = True,
    ) -> Parameter:
        """
        Overwrite a parameter value, appending the replaced value to history.

        Args:
            key: Parameter key
            new_value: New scalar value (stored string-encoded)
            description: New description; keeps the current one when empty
            updated_by: Identity responsible for the change
            approval_reference: Governance nonce when the change was approved
            source: Metrics label for where the change came from
            commit: Commit immediately; when False the caller owns the transaction

        Returns:
            The updated Parameter

        Raises:
            NotFound, InactiveParameter, ConcurrentUpdate, StoreUnavailable
        """
        encoded = encode_value(new_value)
        try:
            parameter = self._load_for_update(key)
            if parameter is None:
                raise NotFound(f"Parameter '{key}' not found", context={"key": key})
            if not parameter.is_active:
                raise InactiveParameter(f"Parameter '{key}' is inactive", context={"key": key})

            previous_value = parameter.value
            next_sequence = (
                self.db.query(func.coalesce(func.max(ParameterHistory.sequence), 0))
                .filter(ParameterHistory.parameter_id == parameter.id)
                .scalar()
            ) + 1
            parameter.history.append(ParameterHistory(
                sequence=next_sequence,
                previous_value=previous_value,
                timestamp=datetime.now(timezone.utc),
                updated_by=updated_by,
                approval_reference=approval_reference,
            ))
            parameter.value = encoded
            if description:
                parameter.description = description
            parameter.updated_by = updated_by
            parameter.updated_at = datetime.now(timezone.utc)

            if commit:
                self.db.commit()
                self.db.refresh(parameter)
            else:
                self.db.flush()
        except ServiceError:
            if commit:
                self.db.rollback()
            raise
        except (StaleDataError, IntegrityError) as e:
            self.db.rollback()
            raise ConcurrentUpdate(
                f"Parameter '{key}' was modified concurrently; retry",
                context={"key": key, "operation": "update"}
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(
                f"Failed to update parameter '{key}': {e}",
                context={"key": key, "operation": "update"}
            ) from e

        parameter_updates_total.labels(category=parameter.category.value, source=source).inc()
        logger.info(
            f"Parameter {key} updated",
            extra={
                "key": key,
                "previous_value": previous_value,
                "new_value": encoded,
                "updated_by": updated_by,
                "approval_reference": approval_reference,
                "critical": is_critical_key(key),
            }
        )
        return parameter

    def create(
        self,
        key: str,
        value,
        category: Union[str, ParameterCategory],
        description: str = "",
        created_by: str = SYSTEM_IDENTITY,
        commit: bool = True,
    ) -> Parameter:
        category = parse_category(category)
        parameter = Parameter(
            key=key,
            value=encode_value(value),
            category=category,
            description=description,
            is_active=True,
            updated_by=created_by,
        )
        try:
            self.db.add(parameter)
            if commit:
                self.db.commit()
                self.db.refresh(parameter)
            else:
                self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise ConcurrentUpdate(f"Parameter '{key}' already exists", context={"key": key}) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(
                f"Failed to create parameter '{key}': {e}",
                context={"key": key, "operation": "create"}
            ) from e
        return parameter

    def deactivate(self, key: str, updated_by: str) -> Parameter:
        """Soft delete; history and value are retained"""
        try:
            parameter = self._load_for_update(key)
            if parameter is None:
                raise NotFound(f"Parameter '{key}' not found", context={"key": key})
            parameter.is_active = False
            parameter.updated_by = updated_by
            parameter.updated_at = datetime.now(timezone.utc)
            self.db.commit()
            self.db.refresh(parameter)
        except ServiceError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(
                f"Failed to deactivate parameter '{key}': {e}",
                context={"key": key, "operation": "deactivate"}
            ) from e
        logger.info(f"Parameter {key} deactivated", extra={"key": key, "updated_by": updated_by})
        return parameter

    def seed_defaults(
        self,
        defaults: Iterable[Tuple[str, str, ParameterCategory, str]] = DEFAULT_PARAMETERS,
    ) -> int:
        """Create any missing default parameters; existing keys are left alone"""
        created = 0
        for key, value, category, description in defaults:
            if self.find(key) is None:
                self.create(key, value, category, description, commit=False)
                created += 1
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(f"Failed to seed parameters: {e}", context={"operation": "seed"}) from e
        if created:
            logger.info(f"Seeded {created} default parameters")
        return created
