"""
Permission Repository Tests.

============================================================
PURPOSE
============================================================
Verify the audit trail round trip against an in-memory
SQLite database.

============================================================
TEST PRINCIPLES
============================================================
- One assessment row plus four verdict rows per save
- Repository flushes, caller commits
- SQLite drops tzinfo, so stored datetimes compare naive

============================================================
"""

from dataclasses import replace
from datetime import timedelta

import pytest
from sqlalchemy import inspect

from database import (
    DatabasePersistenceError,
    create_all_tables,
    create_database_engine,
    get_db_session,
    get_engine,
    get_session,
    get_session_factory,
    initialize_database,
    reset_engine,
    transaction_scope,
)
from gate_evaluator.types import FlowDirection, GateStatus
from permission_engine.engine import PermissionStateEngine
from permission_engine.models import GateVerdictRecord, PermissionStateTransitionRecord
from permission_engine.repository import PermissionRepository


# ============================================================
# FIXTURES
# ============================================================


@pytest.fixture
def session_factory():
    engine = create_database_engine("sqlite:///:memory:")
    create_all_tables(engine)
    yield get_session_factory(engine)
    engine.dispose()


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def repository(session):
    return PermissionRepository(session)


@pytest.fixture
def env_database(monkeypatch, tmp_path):
    """Point the module-level engine at a throwaway SQLite file."""
    monkeypatch.setenv("DATABASE_URL_SYNC", f"sqlite:///{tmp_path / 'permissions.db'}")
    reset_engine()
    create_all_tables(get_engine())
    yield
    reset_engine()


@pytest.fixture
def assess(make_gate_result, now):
    """Assessment factory pinned to a fixed assessment time."""
    engine = PermissionStateEngine()

    def _assess(asset="BTC", at=now, **statuses):
        assessment = engine.assess(asset, make_gate_result(**statuses))
        return replace(
            assessment,
            assessed_at=at,
            valid_until=at + timedelta(seconds=assessment.validity_seconds),
        )

    return _assess


def _naive(dt):
    return dt.replace(tzinfo=None)


# ============================================================
# WRITES
# ============================================================


class TestSaveAssessment:
    """Tests for PermissionRepository.save_assessment."""

    def test_saves_assessment_and_verdicts(self, repository, session, assess):
        assessment = assess(risk=GateStatus.FAIL)

        record = repository.save_assessment(assessment)

        assert record.id == assessment.id
        assert record.permission_state == "NO_TRADE"
        assert record.state_rank == 1
        assert record.primary_reason == "Risk Gate FAIL (Tier 1 constraint)"
        assert record.raw_assessment_json is None
        assert [v.gate_name for v in record.gate_verdicts] == ["REGIME", "FLOW", "RISK", "CONTEXT"]
        assert session.query(GateVerdictRecord).count() == 4

    def test_verdict_rows_carry_details(self, repository, assess):
        record = repository.save_assessment(assess())

        flow = next(v for v in record.gate_verdicts if v.gate_name == "FLOW")
        assert flow.status == "PASS"
        assert flow.details["flow_direction"] == "ACCUMULATION"

    def test_counts_conflicts(self, repository, make_gate_result):
        engine = PermissionStateEngine()
        assessment = engine.assess(
            "BTC", make_gate_result(flow_fields={"flow_direction": FlowDirection.DISTRIBUTION})
        )

        record = repository.save_assessment(assessment, include_raw_json=True)

        assert record.conflict_count == 1
        assert record.high_conflict_count == 1
        assert record.conflicts_json[0]["conflict_type"] == "REGIME_FLOW_DIVERGENCE"
        assert record.raw_assessment_json["permission_state"] == "WAIT"


class TestStateTransitions:
    """Tests for state change persistence and alert tracking."""

    def _change(self, assess):
        engine = PermissionStateEngine()
        previous = assess()
        current = assess(flow=GateStatus.WEAK_PASS)
        return engine.detect_state_change(previous, current), current

    def test_save_state_change(self, repository, assess):
        change, current = self._change(assess)
        repository.save_assessment(current)

        record = repository.save_state_change(change, assessment_id=current.id)

        assert record.id is not None
        assert record.previous_state == "TRADE_ALLOWED"
        assert record.current_state == "SCALP_ONLY"
        assert record.is_downgrade is True
        assert record.alert_sent is False
        assert record.trigger == "Flow Gate WEAK_PASS"

    def test_pending_alerts_and_mark_sent(self, repository, assess):
        change, _ = self._change(assess)
        record = repository.save_state_change(change)

        assert [r.id for r in repository.get_pending_alerts()] == [record.id]

        assert repository.mark_alert_sent(record.id, tier="T3_ALERT") is True
        assert repository.get_pending_alerts() == []
        assert record.alert_tier == "T3_ALERT"

    def test_mark_unknown_transition(self, repository):
        assert repository.mark_alert_sent("missing") is False


# ============================================================
# READS
# ============================================================


class TestQueries:
    """Tests for repository read operations."""

    def test_latest_assessment(self, repository, assess, now):
        repository.save_assessment(assess(at=now - timedelta(minutes=10)))
        latest = repository.save_assessment(assess(at=now, regime=GateStatus.WEAK_PASS))
        repository.save_assessment(assess(asset="ETH", at=now + timedelta(minutes=5)))

        found = repository.get_latest_assessment("btc")

        assert found.id == latest.id
        assert found.permission_state == "TRADE_ALLOWED_REDUCED_RISK"

    def test_latest_assessment_missing(self, repository):
        assert repository.get_latest_assessment("SOL") is None

    def test_assessments_in_range(self, repository, assess, now):
        for minutes in (0, 10, 20, 30):
            repository.save_assessment(assess(at=now + timedelta(minutes=minutes)))

        found = repository.get_assessments_in_range(
            now + timedelta(minutes=5), now + timedelta(minutes=20), asset="BTC"
        )

        assert [_naive(r.assessed_at) for r in found] == [
            _naive(now + timedelta(minutes=10)),
            _naive(now + timedelta(minutes=20)),
        ]

    def test_state_distribution(self, repository, assess, now):
        repository.save_assessment(assess(at=now - timedelta(hours=1)))
        repository.save_assessment(assess(at=now - timedelta(hours=2)))
        repository.save_assessment(assess(at=now - timedelta(hours=3), risk=GateStatus.FAIL))
        repository.save_assessment(assess(at=now - timedelta(hours=48), risk=GateStatus.FAIL))

        distribution = repository.get_state_distribution(asset="BTC", hours=24, now=now)

        assert distribution == {"TRADE_ALLOWED": 2, "NO_TRADE": 1}


# ============================================================
# CLEANUP AND TRANSACTIONS
# ============================================================


class TestCleanup:
    """Tests for retention cleanup."""

    def test_delete_old_assessments(self, repository, session, assess, now):
        old = assess(at=now - timedelta(days=40))
        repository.save_assessment(old)
        repository.save_assessment(assess(at=now - timedelta(days=1)))

        change = PermissionStateEngine().detect_state_change(assess(risk=GateStatus.FAIL), old)
        transition = repository.save_state_change(change, assessment_id=old.id)

        deleted = repository.delete_old_assessments(older_than_days=30, now=now)

        assert deleted == 1
        assert session.query(GateVerdictRecord).count() == 4
        session.refresh(transition)
        assert transition.assessment_id is None
        assert session.query(PermissionStateTransitionRecord).count() == 1

    def test_nothing_to_delete(self, repository, assess, now):
        repository.save_assessment(assess(at=now))

        assert repository.delete_old_assessments(older_than_days=30, now=now) == 0


class TestTransactionScope:
    """Commit and rollback through database.transaction_scope."""

    def test_commit(self, session_factory, assess):
        assessment = assess()

        with transaction_scope(session_factory) as session:
            PermissionRepository(session).save_assessment(assessment)

        with transaction_scope(session_factory) as session:
            assert PermissionRepository(session).get_latest_assessment("BTC").id == assessment.id

    def test_rollback_on_error(self, session_factory, assess):
        with pytest.raises(DatabasePersistenceError):
            with transaction_scope(session_factory) as session:
                PermissionRepository(session).save_assessment(assess())
                raise RuntimeError("downstream failure")

        with transaction_scope(session_factory) as session:
            assert PermissionRepository(session).get_latest_assessment("BTC") is None


class TestInitializeDatabase:
    """Tests for database.initialize_database."""

    def test_creates_permission_tables(self):
        engine = create_database_engine("sqlite:///:memory:")

        initialize_database(engine)

        tables = set(inspect(engine).get_table_names())
        engine.dispose()

        assert {
            "permission_assessments",
            "permission_gate_verdicts",
            "permission_state_transitions",
        } <= tables


class TestWriteLogging:
    """Every repository write logs the rows it touched."""

    def test_writes_are_logged(self, repository, assess, now, caplog):
        previous = assess(at=now - timedelta(days=40))
        current = assess(flow=GateStatus.WEAK_PASS)
        change = PermissionStateEngine().detect_state_change(previous, current)

        with caplog.at_level("INFO", logger="permission_engine.repository"):
            repository.save_assessment(previous)
            repository.save_assessment(current)
            transition = repository.save_state_change(change, assessment_id=current.id)
            repository.mark_alert_sent(transition.id, tier="T3_ALERT")
            repository.delete_old_assessments(older_than_days=30, now=now)

        assert "(4 verdict rows)" in caplog.text
        assert f"Saved state transition {transition.id}" in caplog.text
        assert f"Marked alert sent for transition {transition.id} (tier=T3_ALERT)" in caplog.text
        assert "Deleted 1 assessments older than 30 days" in caplog.text


# ============================================================
# MODULE-LEVEL ENGINE
# ============================================================


@pytest.mark.usefixtures("env_database")
class TestModuleSession:
    """Sessions built from the environment-configured engine."""

    def test_get_db_session_round_trip(self, assess):
        assessment = assess()

        with get_db_session() as session:
            PermissionRepository(session).save_assessment(assessment)
            session.commit()

        with get_db_session() as session:
            assert PermissionRepository(session).get_latest_assessment("BTC").id == assessment.id

    def test_get_db_session_rolls_back(self, assess):
        with pytest.raises(RuntimeError):
            with get_db_session() as session:
                PermissionRepository(session).save_assessment(assess())
                raise RuntimeError("downstream failure")

        with get_db_session() as session:
            assert PermissionRepository(session).get_latest_assessment("BTC") is None

    def test_transaction_scope_default_factory(self, assess):
        assessment = assess()

        with transaction_scope() as session:
            PermissionRepository(session).save_assessment(assessment)

        session = get_session()
        try:
            assert PermissionRepository(session).get_latest_assessment("BTC").id == assessment.id
        finally:
            session.close()

    def test_reset_engine_discards_cached_engine(self):
        first = get_engine()

        reset_engine()

        assert get_engine() is not first
