"""
Permission Engine - Persistence Models.

============================================================
PURPOSE
============================================================
ORM models for the permission assessment audit trail.

Enables:
- Historical tracking of permission states
- Per-gate verdict breakdown for every assessment
- State transition history for alerting
- Audit trail for human review

============================================================
MODELS
============================================================
1. PermissionAssessmentRecord: One assessment
2. GateVerdictRecord: Per-gate verdict (child of assessment)
3. PermissionStateTransitionRecord: State change events

Identifiers are 36-character UUID strings so the same schema
runs on PostgreSQL and SQLite.

============================================================
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database.engine import Base


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# PERMISSION ASSESSMENT MODEL
# ============================================================


class PermissionAssessmentRecord(Base):
    """
    Point-in-time permission assessment.

    ============================================================
    WHAT IT STORES
    ============================================================
    - Permission state and its rank
    - Uncertainty level and primary reason
    - Conflicts and explanation as JSON
    - Validity window

    ============================================================
    RELATIONSHIPS
    ============================================================
    - Has many GateVerdictRecord (one per gate)

    ============================================================
    """

    __tablename__ = "permission_assessments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    asset: Mapped[str] = mapped_column(String(30), nullable=False)

    permission_state: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="TRADE_ALLOWED .. NO_TRADE",
    )

    state_rank: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="5 (most permissive) .. 1 (NO_TRADE)",
    )

    uncertainty_level: Mapped[str] = mapped_column(String(15), nullable=False)

    primary_reason: Mapped[str] = mapped_column(Text, nullable=False)

    conflict_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    high_conflict_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    conflicts_json: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON, nullable=True)
    explanation_json: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Full assessment for debugging
    raw_assessment_json: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    data_quality_score: Mapped[Optional[float]] = mapped_column(nullable=True)

    assessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    engine_version: Mapped[str] = mapped_column(String(20), nullable=False, default="1.0.0")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    gate_verdicts: Mapped[List["GateVerdictRecord"]] = relationship(
        "GateVerdictRecord",
        back_populates="assessment",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_permission_assessments_asset_assessed_at", "asset", "assessed_at"),
        Index("ix_permission_assessments_state", "permission_state"),
    )

    def __repr__(self) -> str:
        return (
            f"PermissionAssessmentRecord("
            f"id={self.id}, "
            f"asset={self.asset}, "
            f"state={self.permission_state}, "
            f"assessed_at={self.assessed_at})"
        )


# ============================================================
# GATE VERDICT MODEL
# ============================================================


class GateVerdictRecord(Base):
    """Per-gate verdict of an assessment."""

    __tablename__ = "permission_gate_verdicts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    assessment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("permission_assessments.id", ondelete="CASCADE"),
        nullable=False,
    )

    gate_name: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="REGIME, FLOW, RISK, CONTEXT",
    )
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    confidence: Mapped[str] = mapped_column(String(10), nullable=False)
    data_freshness: Mapped[str] = mapped_column(String(10), nullable=False)
    human_note: Mapped[str] = mapped_column(Text, nullable=False)

    # Gate-specific classification fields
    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    supporting_evidence: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON, nullable=True)
    conflicting_evidence: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON, nullable=True)

    assessment: Mapped["PermissionAssessmentRecord"] = relationship(
        "PermissionAssessmentRecord",
        back_populates="gate_verdicts",
    )

    __table_args__ = (
        Index("ix_permission_gate_verdicts_assessment_id", "assessment_id"),
        Index("ix_permission_gate_verdicts_gate_status", "gate_name", "status"),
    )

    def __repr__(self) -> str:
        return f"GateVerdictRecord(gate={self.gate_name}, status={self.status})"


# ============================================================
# STATE TRANSITION MODEL
# ============================================================


class PermissionStateTransitionRecord(Base):
    """
    Records permission state changes for alerting and analysis.

    ============================================================
    WHAT IT STORES
    ============================================================
    - Asset and previous / current state
    - Direction (UPGRADE, DOWNGRADE)
    - Trigger (primary reason of the new assessment)
    - Whether an alert was sent

    ============================================================
    """

    __tablename__ = "permission_state_transitions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    # Assessment that produced the new state
    assessment_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("permission_assessments.id", ondelete="SET NULL"),
        nullable=True,
    )

    asset: Mapped[str] = mapped_column(String(30), nullable=False)
    previous_state: Mapped[str] = mapped_column(String(40), nullable=False)
    current_state: Mapped[str] = mapped_column(String(40), nullable=False)
    direction: Mapped[str] = mapped_column(String(10), nullable=False)

    is_downgrade: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    trigger: Mapped[str] = mapped_column(Text, nullable=False)

    # Alerting tracking
    alert_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    alert_tier: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)
    alert_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    transition_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        Index("ix_permission_state_transitions_asset_ts", "asset", "transition_timestamp"),
        Index("ix_permission_state_transitions_alert_sent", "alert_sent"),
    )

    def __repr__(self) -> str:
        return (
            f"PermissionStateTransitionRecord("
            f"asset={self.asset}, "
            f"{self.previous_state} → {self.current_state})"
        )
