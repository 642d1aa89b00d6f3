"""
Permission Engine - Repository.

============================================================
PURPOSE
============================================================
Repository pattern implementation for permission assessment
persistence.

Provides clean interface for:
- Saving assessments with their gate verdicts
- Recording state transitions
- Querying historical data
- Retrieving the latest assessment per asset

The repository only flushes. Commit boundaries belong to the
caller, normally database.transaction_scope().

============================================================
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy import and_, desc, func, select, update
from sqlalchemy.orm import Session

from .models import (
    GateVerdictRecord,
    PermissionAssessmentRecord,
    PermissionStateTransitionRecord,
)
from .types import (
    ConflictSeverity,
    PermissionAssessment,
    PermissionStateChange,
    StateChangeDirection,
)

logger = logging.getLogger(__name__)


class PermissionRepository:
    """
    Repository for permission engine persistence operations.

    ============================================================
    METHODS
    ============================================================
    - save_assessment: Persist an assessment and its verdicts
    - save_state_change: Record a state transition
    - mark_alert_sent: Flag a transition as alerted
    - get_latest_assessment: Most recent assessment for an asset
    - get_assessments_in_range: Historical query
    - get_pending_alerts: Transitions still needing an alert
    - get_state_distribution: Counts per state over a window
    - delete_old_assessments: Retention cleanup

    ============================================================
    """

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self._session = session

    # --------------------------------------------------------
    # WRITE OPERATIONS
    # --------------------------------------------------------

    def save_assessment(
        self,
        assessment: PermissionAssessment,
        include_raw_json: bool = False,
        engine_version: str = "1.0.0",
    ) -> PermissionAssessmentRecord:
        """
        Save a permission assessment.

        Creates:
        - PermissionAssessmentRecord
        - GateVerdictRecord for each of the four gates

        Args:
            assessment: The assessment to persist
            include_raw_json: Whether to store the full assessment as JSON
            engine_version: Engine version recorded with the row

        Returns:
            Created PermissionAssessmentRecord
        """
        record = PermissionAssessmentRecord(
            id=assessment.id,
            asset=assessment.asset,
            permission_state=assessment.permission_state.value,
            state_rank=assessment.permission_state.rank,
            uncertainty_level=assessment.uncertainty_level.value,
            primary_reason=assessment.primary_reason,
            conflict_count=len(assessment.conflicts),
            high_conflict_count=sum(
                1 for c in assessment.conflicts if c.severity == ConflictSeverity.HIGH
            ),
            conflicts_json=[c.to_dict() for c in assessment.conflicts],
            explanation_json=assessment.explanation.to_dict(),
            raw_assessment_json=assessment.to_dict() if include_raw_json else None,
            data_quality_score=assessment.gate_evaluations.data_quality.overall_score,
            assessed_at=assessment.assessed_at,
            valid_until=assessment.valid_until,
            engine_version=engine_version,
        )

        for gate in assessment.gate_evaluations.gates:
            serialized = gate.to_dict()
            record.gate_verdicts.append(GateVerdictRecord(
                gate_name=gate.gate_name.value,
                status=gate.status.value,
                confidence=gate.confidence.value,
                data_freshness=gate.data_freshness.value,
                human_note=gate.human_note,
                details=serialized["details"],
                supporting_evidence=serialized["supporting_evidence"],
                conflicting_evidence=serialized["conflicting_evidence"],
            ))

        self._session.add(record)
        self._session.flush()

        logger.info(
            f"Saved assessment {record.id} for {record.asset}: "
            f"{record.permission_state} ({len(record.gate_verdicts)} verdict rows)"
        )
        return record

    def save_state_change(
        self,
        change: PermissionStateChange,
        assessment_id: Optional[str] = None,
    ) -> PermissionStateTransitionRecord:
        """
        Record a permission state transition.

        Args:
            change: The state change
            assessment_id: Optional link to the assessment that caused it

        Returns:
            Created PermissionStateTransitionRecord
        """
        record = PermissionStateTransitionRecord(
            assessment_id=assessment_id,
            asset=change.asset,
            previous_state=change.previous_state.value,
            current_state=change.current_state.value,
            direction=change.direction.value,
            is_downgrade=change.direction == StateChangeDirection.DOWNGRADE,
            trigger=change.trigger,
            transition_timestamp=change.changed_at,
        )
        self._session.add(record)
        self._session.flush()

        logger.info(f"Saved state transition {record.id}: {change.change_description}")
        return record

    def mark_alert_sent(
        self,
        transition_id: str,
        tier: Optional[str] = None,
        sent_at: Optional[datetime] = None,
    ) -> bool:
        """
        Mark a transition's alert as sent.

        Returns:
            True if the transition existed
        """
        stmt = select(PermissionStateTransitionRecord).where(
            PermissionStateTransitionRecord.id == transition_id
        )
        transition = self._session.execute(stmt).scalar_one_or_none()

        if transition is None:
            logger.warning(f"Transition {transition_id} not found, alert not marked")
            return False

        transition.alert_sent = True
        transition.alert_tier = tier
        transition.alert_sent_at = sent_at or datetime.now(timezone.utc)
        self._session.flush()

        logger.info(f"Marked alert sent for transition {transition_id} (tier={tier})")
        return True

    # --------------------------------------------------------
    # READ OPERATIONS
    # --------------------------------------------------------

    def get_latest_assessment(self, asset: str) -> Optional[PermissionAssessmentRecord]:
        """Get the most recent assessment for an asset."""
        stmt = (
            select(PermissionAssessmentRecord)
            .where(PermissionAssessmentRecord.asset == asset.upper())
            .order_by(desc(PermissionAssessmentRecord.assessed_at))
            .limit(1)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def get_assessments_in_range(
        self,
        start: datetime,
        end: datetime,
        asset: Optional[str] = None,
    ) -> List[PermissionAssessmentRecord]:
        """
        Get assessments within a time range, oldest first.

        Args:
            start: Range start (inclusive)
            end: Range end (inclusive)
            asset: Restrict to one asset
        """
        conditions = [
            PermissionAssessmentRecord.assessed_at >= start,
            PermissionAssessmentRecord.assessed_at <= end,
        ]
        if asset is not None:
            conditions.append(PermissionAssessmentRecord.asset == asset.upper())

        stmt = (
            select(PermissionAssessmentRecord)
            .where(and_(*conditions))
            .order_by(PermissionAssessmentRecord.assessed_at)
        )
        return list(self._session.execute(stmt).scalars().all())

    def get_pending_alerts(self, limit: int = 100) -> List[PermissionStateTransitionRecord]:
        """Get transitions that have not been alerted yet, oldest first."""
        stmt = (
            select(PermissionStateTransitionRecord)
            .where(PermissionStateTransitionRecord.alert_sent == False)  # noqa: E712
            .order_by(PermissionStateTransitionRecord.transition_timestamp)
            .limit(limit)
        )
        return list(self._session.execute(stmt).scalars().all())

    def get_state_distribution(
        self,
        asset: Optional[str] = None,
        hours: int = 24,
        now: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """
        Get distribution of permission states over a time period.

        Returns:
            Dict mapping state name to count
        """
        since = (now or datetime.now(timezone.utc)) - timedelta(hours=hours)

        stmt = (
            select(
                PermissionAssessmentRecord.permission_state,
                func.count(PermissionAssessmentRecord.id),
            )
            .where(PermissionAssessmentRecord.assessed_at >= since)
            .group_by(PermissionAssessmentRecord.permission_state)
        )
        if asset is not None:
            stmt = stmt.where(PermissionAssessmentRecord.asset == asset.upper())

        return {row[0]: row[1] for row in self._session.execute(stmt).all()}

    # --------------------------------------------------------
    # CLEANUP
    # --------------------------------------------------------

    def delete_old_assessments(
        self,
        older_than_days: int = 30,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Delete assessments older than a specified number of days.

        Gate verdict rows are removed with their assessment;
        transitions are kept and unlinked.

        Returns:
            Number of deleted assessments
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=older_than_days)

        stmt = select(PermissionAssessmentRecord).where(
            PermissionAssessmentRecord.assessed_at < cutoff
        )
        records = list(self._session.execute(stmt).scalars().all())

        if not records:
            return 0

        ids = [r.id for r in records]
        self._session.execute(
            update(PermissionStateTransitionRecord)
            .where(PermissionStateTransitionRecord.assessment_id.in_(ids))
            .values(assessment_id=None)
        )

        for record in records:
            self._session.delete(record)
        self._session.flush()

        logger.info(f"Deleted {len(records)} assessments older than {older_than_days} days")
        return len(records)
