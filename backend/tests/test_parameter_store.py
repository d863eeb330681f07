"""
Unit tests for ParameterStore
"""
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from tierstake.core.exceptions import (ConcurrentUpdate, InactiveParameter,
                                       InvalidCategory, NotFound,
                                       StoreUnavailable)
from tierstake.models.parameter import CRITICAL_KEYS, ParameterCategory
from tierstake.services.parameter_store import (DEFAULT_PARAMETERS,
                                                ParameterStore, encode_value,
                                                parse_category)


def test_seed_defaults_is_idempotent(db):
    """Seeding twice creates nothing the second time"""
    store = ParameterStore(db)
    assert store.seed_defaults() == len(DEFAULT_PARAMETERS)
    assert store.seed_defaults() == 0
    assert len(store.list()) == len(DEFAULT_PARAMETERS)


def test_seeded_defaults_cover_critical_keys(parameter_store):
    for key in CRITICAL_KEYS:
        assert parameter_store.get(key).is_critical is True
    assert parameter_store.get("pool0DailyRate").is_critical is False


def test_get_unknown_key(parameter_store):
    with pytest.raises(NotFound):
        parameter_store.get("noSuchKey")
    assert parameter_store.find("noSuchKey") is None


def test_list_sorted_by_key(parameter_store):
    keys = [p.key for p in parameter_store.list()]
    assert keys == sorted(keys)


def test_list_by_category(parameter_store):
    market = parameter_store.list("market")
    assert {p.key for p in market} == {"buyTaxRate", "sellTaxRate", "transferTaxRate"}
    assert all(p.category == ParameterCategory.MARKET for p in market)


def test_list_invalid_category(parameter_store):
    with pytest.raises(InvalidCategory):
        parameter_store.list("lottery")


def test_list_excludes_inactive(parameter_store):
    parameter_store.deactivate("lpMultiplier", updated_by="0xadmin")
    assert "lpMultiplier" not in [p.key for p in parameter_store.list()]
    # Still readable by key
    assert parameter_store.get("lpMultiplier").is_active is False


def test_update_appends_history(parameter_store):
    """Each write records the replaced value with a growing sequence"""
    parameter_store.update("pool0DailyRate", "0.003", None, updated_by="0xadmin")
    parameter = parameter_store.update("pool0DailyRate", 0.002, "Lowered", updated_by="0xother")

    assert parameter.value == "0.002"
    assert parameter.description == "Lowered"
    assert parameter.updated_by == "0xother"

    history = parameter_store.history("pool0DailyRate")
    assert [h.sequence for h in history] == [1, 2]
    assert [h.previous_value for h in history] == ["0.004", "0.003"]
    assert history[0].updated_by == "0xadmin"
    assert history[0].approval_reference is None


def test_update_keeps_description_when_empty(parameter_store):
    before = parameter_store.get("level1Rate").description
    parameter = parameter_store.update("level1Rate", "0.06", "", updated_by="0xadmin")
    assert parameter.description == before


def test_update_bumps_version(parameter_store):
    version = parameter_store.get("level2Rate").version
    parameter = parameter_store.update("level2Rate", "0.04", None, updated_by="0xadmin")
    assert parameter.version == version + 1


def test_update_unknown_key(parameter_store):
    with pytest.raises(NotFound):
        parameter_store.update("noSuchKey", "1", None, updated_by="0xadmin")


def test_update_inactive_key(parameter_store):
    parameter_store.deactivate("minOnlineRate", updated_by="0xadmin")
    with pytest.raises(InactiveParameter):
        parameter_store.update("minOnlineRate", "0.8", None, updated_by="0xadmin")
    assert parameter_store.get("minOnlineRate").value == "0.9"


def test_update_encodes_booleans(parameter_store):
    parameter = parameter_store.update("withdrawalPaused", True, None, updated_by="0xadmin")
    assert parameter.value == "true"


def test_update_rejects_empty_value(parameter_store):
    with pytest.raises(ValueError):
        parameter_store.update("lpMultiplier", "   ", None, updated_by="0xadmin")


def test_update_concurrent_write_is_reported(db, parameter_store):
    """A stale version on commit surfaces as a retryable ConcurrentUpdate"""
    with patch.object(db, "commit", side_effect=StaleDataError("version mismatch")):
        with pytest.raises(ConcurrentUpdate) as exc_info:
            parameter_store.update("nodeActivationFee", "6000", None, updated_by="0xadmin")
    assert exc_info.value.retryable is True

    db.expire_all()
    parameter = parameter_store.get("nodeActivationFee")
    assert parameter.value == "5000"
    assert parameter.history == []


def test_store_unavailable_on_read_failure(db, parameter_store):
    error = OperationalError("SELECT", {}, Exception("database is down"))
    with patch.object(db, "query", side_effect=error):
        with pytest.raises(StoreUnavailable) as exc_info:
            parameter_store.get("buyTaxRate")
    assert exc_info.value.status_code == 503


def test_create_duplicate_key(parameter_store):
    with pytest.raises(ConcurrentUpdate):
        parameter_store.create("buyTaxRate", "0.03", "market")


def test_create_and_read_back(parameter_store):
    parameter = parameter_store.create("pool5DailyRate", "0.008", ParameterCategory.STAKING, "Pool 5 daily rate")
    assert parameter.version == 1
    assert parameter_store.get("pool5DailyRate").value == "0.008"


def test_parse_category():
    assert parse_category(None) is None
    assert parse_category(" Node ") == ParameterCategory.NODE
    with pytest.raises(InvalidCategory):
        parse_category("unknown")


def test_encode_value():
    assert encode_value(False) == "false"
    assert encode_value(5000) == "5000"
    assert encode_value(" 0.1 ") == "0.1"


def test_interleaved_writers_keep_one_history_entry_per_change(session_factory, parameter_store):
    """Writers on separate sessions reload the row, so neither overwrites the other"""
    first = ParameterStore(session_factory())
    second = ParameterStore(session_factory())
    try:
        first.get("teamBonusRate")
        second.get("teamBonusRate")

        first.update("teamBonusRate", "0.07", None, updated_by="0xfirst")
        second.update("teamBonusRate", "0.08", None, updated_by="0xsecond")
    finally:
        first.db.close()
        second.db.close()

    reader = ParameterStore(session_factory())
    try:
        parameter = reader.get("teamBonusRate")
        assert parameter.value == "0.08"
        assert [(h.sequence, h.previous_value, h.updated_by) for h in parameter.history] == [
            (1, "0.06", "0xfirst"),
            (2, "0.07", "0xsecond"),
        ]
    finally:
        reader.db.close()


def test_write_racing_a_committed_change_is_rejected(session_factory, parameter_store, monkeypatch):
    """A writer whose locked row changed underneath it fails instead of losing the other write"""
    loser = ParameterStore(session_factory())
    winner = ParameterStore(session_factory())
    original_load = loser._load_for_update

    def load_then_lose_race(key):
        parameter = original_load(key)
        winner.update(key, "0.035", None, updated_by="0xwinner")
        return parameter

    monkeypatch.setattr(loser, "_load_for_update", load_then_lose_race)
    try:
        with pytest.raises(ConcurrentUpdate):
            loser.update("level2Rate", "0.025", None, updated_by="0xloser")
    finally:
        loser.db.close()
        winner.db.close()

    reader = ParameterStore(session_factory())
    try:
        parameter = reader.get("level2Rate")
        assert parameter.value == "0.035"
        assert [(h.previous_value, h.updated_by) for h in parameter.history] == [("0.03", "0xwinner")]
    finally:
        reader.db.close()


def test_decay_threshold_is_not_a_stored_parameter(parameter_store):
    # The threshold comes from settings; a stored copy would have no effect
    assert parameter_store.find("decayThreshold") is None


def test_encode_value_rejects_oversized_values():
    with pytest.raises(ValueError):
        encode_value("1" * 256)
    assert encode_value("1" * 255) == "1" * 255
