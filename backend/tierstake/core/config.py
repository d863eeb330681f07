"""
Configuration management using Pydantic Settings
"""
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import FrozenSet, List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# config.py is at: backend/tierstake/core/config.py
_current_file = Path(__file__).resolve()
_backend_dir = _current_file.parent.parent.parent
_project_root = _backend_dir.parent
ENV_FILE = _project_root / ".env"
# Fallback: try in backend/ directory if not found in project root
if not ENV_FILE.exists():
    ENV_FILE = _backend_dir / ".env"
if ENV_FILE.exists():
    load_dotenv(ENV_FILE, override=True)


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "tierstake"
    app_env: str = Field(default="development", description="Application environment")
    log_level: str = Field(default="INFO", description="Logging level")
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, ge=1, le=65535, description="API port")
    allowed_origins: str = Field(
        default="http://localhost:8000",
        description="Allowed CORS origins (comma-separated)"
    )

    # Logging
    log_sqlalchemy: bool = Field(default=False, description="Enable SQLAlchemy query logging")
    log_module_levels: Optional[str] = Field(
        default=None,
        description='Module-specific log levels (JSON string, e.g., {"tierstake.api": "DEBUG"})'
    )
    log_format: str = Field(
        default="json",
        description="Log format: 'json' for structured logging, 'text' for plain text"
    )
    log_file_enabled: bool = Field(default=False, description="Enable file logging")
    log_file_path: str = Field(
        default="logs/tierstake.log",
        description="Path to log file (relative to project root)"
    )
    log_file_retention: int = Field(default=30, ge=1, description="Number of days to keep log files")
    log_sensitive_data: bool = Field(
        default=False,
        description="Enable logging of sensitive data (tokens, signatures) - NOT RECOMMENDED"
    )

    # Database
    database_url_override: Optional[str] = Field(
        default=None,
        validation_alias="DATABASE_URL",
        description="Full SQLAlchemy URL; takes precedence over the postgres_* fields"
    )
    postgres_host: str = Field(default="localhost", description="PostgreSQL host")
    postgres_db: str = Field(default="tierstake", description="PostgreSQL database name")
    postgres_user: str = Field(default="tierstake", description="PostgreSQL user")
    postgres_password: str = Field(default="", description="PostgreSQL password")
    postgres_port: int = Field(default=5432, ge=1, le=65535, description="PostgreSQL port")
    database_pool_size: int = Field(default=10, ge=1, description="Database pool size")
    database_max_overflow: int = Field(default=5, ge=0, description="Database max overflow")
    store_timeout_seconds: int = Field(
        default=5,
        ge=1,
        le=120,
        description="Connect and statement timeout for store calls (seconds)"
    )

    # Governance
    governance_owners: str = Field(
        default="",
        description="Authorized approver identities (comma-separated wallet addresses)"
    )
    governance_threshold: int = Field(default=2, ge=1, description="Distinct approvals required")
    approval_ttl_hours: int = Field(
        default=24,
        ge=1,
        description="Hours before an open approval transaction expires"
    )

    # Decay
    decay_threshold: Decimal = Field(
        default=Decimal("100000000"),
        description="Total stake above which pool rates decay"
    )
    decay_step: Decimal = Field(default=Decimal("0.001"), gt=0, description="Rate reduction per pass")
    decay_pool_ids: str = Field(default="0,1,2,3,4", description="Pool ids touched by decay (ordered)")

    # Daily jobs
    enable_daily_jobs: bool = Field(default=True, description="Start the daily job scheduler")
    daily_job_hour: int = Field(default=0, ge=0, le=23, description="UTC hour of the daily run")
    daily_job_check_interval_seconds: int = Field(
        default=300,
        ge=1,
        description="How often the scheduler loop checks the clock"
    )

    # Ranking
    ranking_default_limit: int = Field(default=100, ge=1, description="Default ranking list size")
    ranking_max_limit: int = Field(default=1000, ge=1, description="Largest ranking list served")

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Only json and text formats are supported"""
        if v.lower() not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return v.lower()

    @property
    def database_url(self) -> str:
        """Construct database URL"""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def governance_owner_list(self) -> List[str]:
        """Parse approver identities from comma-separated string"""
        return [owner.strip().lower() for owner in self.governance_owners.split(",") if owner.strip()]

    @property
    def decay_pool_id_list(self) -> List[int]:
        """Parse decay pool ids, keeping configured order"""
        return [int(pool.strip()) for pool in self.decay_pool_ids.split(",") if pool.strip()]

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
        populate_by_name=True
    )


@dataclass(frozen=True)
class GovernanceConfig:
    """Immutable approval settings shared read-only by every GovernanceGate"""
    owners: FrozenSet[str]
    threshold: int = 2
    approval_ttl_hours: int = 24

    def __post_init__(self):
        normalized = frozenset(owner.strip().lower() for owner in self.owners if owner.strip())
        object.__setattr__(self, "owners", normalized)
        if self.threshold < 1:
            raise ValueError("governance threshold must be at least 1")
        if self.threshold > len(normalized):
            raise ValueError(
                f"governance threshold {self.threshold} exceeds the {len(normalized)} authorized owners"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "GovernanceConfig":
        return cls(
            owners=frozenset(settings.governance_owner_list),
            threshold=settings.governance_threshold,
            approval_ttl_hours=settings.approval_ttl_hours,
        )

    def is_owner(self, identity: str) -> bool:
        return bool(identity) and identity.strip().lower() in self.owners


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
