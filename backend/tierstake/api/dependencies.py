"""
Service factories for FastAPI dependency injection
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from tierstake.core.approval_verifier import AcceptAllVerifier, ApprovalVerifier
from tierstake.core.config import GovernanceConfig, get_settings
from tierstake.core.database import get_db
from tierstake.services.account_store import AccountStore
from tierstake.services.governance_gate import GovernanceGate
from tierstake.services.parameter_change_service import ParameterChangeService
from tierstake.services.parameter_store import ParameterStore
from tierstake.services.ranking_engine import RankingEngine


def get_governance_config(request: Request) -> GovernanceConfig:
    """Built once at startup and kept on app.state"""
    config = getattr(request.app.state, "governance_config", None)
    if config is None:
        config = GovernanceConfig.from_settings(get_settings())
        request.app.state.governance_config = config
    return config


def get_approval_verifier(request: Request) -> ApprovalVerifier:
    return getattr(request.app.state, "approval_verifier", None) or AcceptAllVerifier()


def get_parameter_store(db: Session = Depends(get_db)) -> ParameterStore:
    return ParameterStore(db)


def get_governance_gate(
    db: Session = Depends(get_db),
    config: GovernanceConfig = Depends(get_governance_config),
    verifier: ApprovalVerifier = Depends(get_approval_verifier),
) -> GovernanceGate:
    return GovernanceGate(db, config, verifier)


def get_parameter_change_service(
    store: ParameterStore = Depends(get_parameter_store),
    gate: GovernanceGate = Depends(get_governance_gate),
) -> ParameterChangeService:
    return ParameterChangeService(store, gate)


def get_ranking_engine(db: Session = Depends(get_db)) -> RankingEngine:
    return RankingEngine(AccountStore(db))
