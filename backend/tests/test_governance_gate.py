"""
Unit tests for GovernanceGate
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from conftest import OUTSIDER, OWNER_A, OWNER_B, OWNER_C

from tierstake.core.approval_verifier import StaticSignatureVerifier
from tierstake.core.config import GovernanceConfig
from tierstake.core.exceptions import (AlreadyApproved, NotConfirmed,
                                       NotFound, StoreUnavailable,
                                       TransactionClosed, Unauthorized,
                                       UnknownParameter)
from tierstake.models.approval import ApprovalRecord, ApprovalStatus
from tierstake.services.governance_gate import GovernanceGate
from tierstake.services.parameter_store import ParameterStore


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def timed_gate(db, parameter_store, governance_config, clock):
    return GovernanceGate(db, governance_config, clock=clock)


def _confirmed(gate, key="buyTaxRate", value="0.03"):
    transaction = gate.propose(key, {"value": value}, proposed_by=OWNER_A)
    gate.approve(transaction.nonce, OWNER_A)
    gate.approve(transaction.nonce, OWNER_B)
    return transaction


def test_propose_creates_pending_transaction(gate):
    transaction = gate.propose("buyTaxRate", {"value": 0.03, "description": "Raise"}, proposed_by="0xAnyone")

    assert transaction.status == ApprovalStatus.PENDING
    assert transaction.payload == {"value": "0.03", "description": "Raise"}
    assert transaction.proposed_by == "0xanyone"
    assert transaction.threshold == 2
    assert transaction.approval_count == 0
    assert transaction.expires_at is not None


def test_propose_assigns_increasing_nonces(gate):
    first = gate.propose("buyTaxRate", {"value": "0.03"}, proposed_by=OWNER_A)
    second = gate.propose("sellTaxRate", {"value": "0.04"}, proposed_by=OWNER_A)
    assert second.nonce > first.nonce


def test_propose_unknown_key(gate):
    with pytest.raises(UnknownParameter):
        gate.propose("noSuchKey", {"value": "1"}, proposed_by=OWNER_A)


def test_propose_requires_value(gate):
    with pytest.raises(ValueError):
        gate.propose("buyTaxRate", {"description": "no value"}, proposed_by=OWNER_A)


def test_approvals_reach_threshold(gate):
    transaction = gate.propose("sellTaxRate", {"value": "0.04"}, proposed_by=OWNER_C)

    transaction = gate.approve(transaction.nonce, OWNER_A)
    assert transaction.status == ApprovalStatus.PENDING
    assert transaction.approval_count == 1

    transaction = gate.approve(transaction.nonce, OWNER_B.upper())
    assert transaction.status == ApprovalStatus.CONFIRMED
    assert transaction.approval_count == 2
    assert set(transaction.approvers) == {OWNER_A, OWNER_B}
    assert transaction.confirmed_at is not None


def test_approval_past_threshold_keeps_confirmed(gate):
    transaction = _confirmed(gate)
    transaction = gate.approve(transaction.nonce, OWNER_C)
    assert transaction.status == ApprovalStatus.CONFIRMED
    assert transaction.approval_count == 3


def test_duplicate_approval_rejected(db, gate):
    """The same owner approving twice counts once"""
    transaction = gate.propose("buyTaxRate", {"value": "0.03"}, proposed_by=OWNER_A)
    gate.approve(transaction.nonce, OWNER_A)

    with pytest.raises(AlreadyApproved):
        gate.approve(transaction.nonce, OWNER_A)

    transaction = gate.get(transaction.nonce)
    assert transaction.approval_count == 1
    assert transaction.status == ApprovalStatus.PENDING
    assert db.query(ApprovalRecord).count() == 1


def test_non_owner_cannot_approve(gate):
    transaction = gate.propose("buyTaxRate", {"value": "0.03"}, proposed_by=OUTSIDER)
    with pytest.raises(Unauthorized):
        gate.approve(transaction.nonce, OUTSIDER)
    assert gate.get(transaction.nonce).approval_count == 0


def test_approve_unknown_nonce(gate):
    with pytest.raises(NotFound):
        gate.approve(9999, OWNER_A)


def test_signature_verifier_enforced(db, parameter_store, governance_config):
    verifier = StaticSignatureVerifier()
    gate = GovernanceGate(db, governance_config, verifier=verifier)
    transaction = gate.propose("decayRate", {"value": "0.002"}, proposed_by=OWNER_A)
    verifier.register(transaction.nonce, OWNER_A, "0xsig-a")

    with pytest.raises(Unauthorized):
        gate.approve(transaction.nonce, OWNER_A, signature="0xforged")
    transaction = gate.approve(transaction.nonce, OWNER_A, signature="0xsig-a")
    assert transaction.approvals[0].signature == "0xsig-a"


def test_execute_applies_value(gate, parameter_store):
    transaction = _confirmed(gate)
    assert gate.is_executable(transaction.nonce) is True

    applied = gate.execute(transaction.nonce, executed_by=OWNER_B)

    assert applied == "0.03"
    assert parameter_store.get("buyTaxRate").value == "0.03"
    transaction = gate.get(transaction.nonce)
    assert transaction.status == ApprovalStatus.EXECUTED
    assert transaction.executed_by == OWNER_B
    history = parameter_store.history("buyTaxRate")
    assert history[-1].previous_value == "0.02"
    assert history[-1].approval_reference == str(transaction.nonce)


def test_execute_is_idempotent(gate, parameter_store):
    transaction = _confirmed(gate)
    first = gate.execute(transaction.nonce, executed_by=OWNER_A)
    second = gate.execute(transaction.nonce, executed_by=OWNER_A)

    assert first == second == "0.03"
    assert len(parameter_store.history("buyTaxRate")) == 1


def test_execute_requires_confirmation(gate, parameter_store):
    transaction = gate.propose("buyTaxRate", {"value": "0.03"}, proposed_by=OWNER_A)
    gate.approve(transaction.nonce, OWNER_A)

    with pytest.raises(NotConfirmed):
        gate.execute(transaction.nonce, executed_by=OWNER_A)
    assert gate.is_executable(transaction.nonce) is False
    assert parameter_store.get("buyTaxRate").value == "0.02"


def test_execute_is_atomic(db, gate, parameter_store):
    """A failure while applying leaves both the parameter and the transaction untouched"""
    transaction = _confirmed(gate)
    with patch.object(ParameterStore, "update", side_effect=StoreUnavailable("write failed")):
        with pytest.raises(StoreUnavailable):
            gate.execute(transaction.nonce, executed_by=OWNER_A)

    db.expire_all()
    assert gate.get(transaction.nonce).status == ApprovalStatus.CONFIRMED
    assert parameter_store.get("buyTaxRate").value == "0.02"


def test_execute_rolls_back_on_commit_failure(db, gate, parameter_store):
    from sqlalchemy.exc import OperationalError

    transaction = _confirmed(gate)
    error = OperationalError("COMMIT", {}, Exception("disk I/O error"))
    with patch.object(db, "commit", side_effect=error):
        with pytest.raises(StoreUnavailable):
            gate.execute(transaction.nonce, executed_by=OWNER_A)

    db.expire_all()
    assert gate.get(transaction.nonce).status == ApprovalStatus.CONFIRMED
    parameter = parameter_store.get("buyTaxRate")
    assert parameter.value == "0.02"
    assert parameter.history == []


def test_reject_closes_transaction(gate):
    transaction = gate.propose("sellTaxRate", {"value": "0.1"}, proposed_by=OWNER_A)
    transaction = gate.reject(transaction.nonce, OWNER_C, reason="Too high")

    assert transaction.status == ApprovalStatus.REJECTED
    assert transaction.rejected_by == OWNER_C
    with pytest.raises(TransactionClosed):
        gate.approve(transaction.nonce, OWNER_A)
    with pytest.raises(TransactionClosed):
        gate.execute(transaction.nonce, executed_by=OWNER_A)


def test_reject_requires_owner(gate):
    transaction = gate.propose("sellTaxRate", {"value": "0.1"}, proposed_by=OWNER_A)
    with pytest.raises(Unauthorized):
        gate.reject(transaction.nonce, OUTSIDER, reason="No")


def test_expired_transaction_cannot_execute(timed_gate, clock, parameter_store):
    transaction = _confirmed(timed_gate)
    clock.advance(hours=25)

    assert timed_gate.is_executable(transaction.nonce) is False
    with pytest.raises(TransactionClosed):
        timed_gate.execute(transaction.nonce, executed_by=OWNER_A)
    assert timed_gate.get(transaction.nonce).status == ApprovalStatus.EXPIRED
    assert parameter_store.get("buyTaxRate").value == "0.02"


def test_expire_stale(timed_gate, clock):
    old = timed_gate.propose("buyTaxRate", {"value": "0.03"}, proposed_by=OWNER_A)
    clock.advance(hours=20)
    recent = timed_gate.propose("sellTaxRate", {"value": "0.04"}, proposed_by=OWNER_A)
    clock.advance(hours=5)

    assert timed_gate.expire_stale() == 1
    assert timed_gate.get(old.nonce).status == ApprovalStatus.EXPIRED
    assert [t.nonce for t in timed_gate.list_open()] == [recent.nonce]


def test_list_open_filters_by_key(gate):
    buy = gate.propose("buyTaxRate", {"value": "0.03"}, proposed_by=OWNER_A)
    gate.propose("sellTaxRate", {"value": "0.04"}, proposed_by=OWNER_A)
    executed = _confirmed(gate, key="buyTaxRate", value="0.025")
    gate.execute(executed.nonce, executed_by=OWNER_A)

    assert [t.nonce for t in gate.list_open("buyTaxRate")] == [buy.nonce]
    assert len(gate.list_open()) == 2


def test_threshold_of_one(db, parameter_store):
    config = GovernanceConfig(owners=frozenset({OWNER_A}), threshold=1)
    gate = GovernanceGate(db, config)
    transaction = gate.propose("decayRate", {"value": "0.002"}, proposed_by=OWNER_A)
    assert gate.approve(transaction.nonce, OWNER_A).status == ApprovalStatus.CONFIRMED


def test_approve_is_atomic_on_commit_failure(db, gate):
    """A failed commit records no partial approval and no status change"""
    from sqlalchemy.exc import OperationalError

    transaction = gate.propose("buyTaxRate", {"value": "0.03"}, proposed_by=OWNER_A)
    gate.approve(transaction.nonce, OWNER_A)

    error = OperationalError("COMMIT", {}, Exception("connection reset"))
    with patch.object(db, "commit", side_effect=error):
        with pytest.raises(StoreUnavailable):
            gate.approve(transaction.nonce, OWNER_B)

    db.expire_all()
    transaction = gate.get(transaction.nonce)
    assert transaction.status == ApprovalStatus.PENDING
    assert transaction.approval_count == 1
    assert transaction.approvers == [OWNER_A]
    assert db.query(ApprovalRecord).filter(ApprovalRecord.nonce == transaction.nonce).count() == 1

    # The same approver can retry once the store recovers
    assert gate.approve(transaction.nonce, OWNER_B).status == ApprovalStatus.CONFIRMED
