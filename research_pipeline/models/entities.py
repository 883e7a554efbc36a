"""Persisted entities owned by the Item Store.

Flow: Item → Artifact → Validation → Plan → Critique, plus the append-only
ActivityRecord audit log, reviewer Feedback on any of them and cached
FullText for items with an open-access version.
"""

import uuid
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from research_pipeline.models.enums import (
    ArtifactStatus,
    Bucket,
    ConfidenceLevel,
    Disposition,
    EntityType,
    EvidenceStrength,
    FeedbackAction,
    Level,
    OutputKind,
    PlanStatus,
    Recommendation,
    Severity,
)


def new_id() -> str:
    """Generate a unique entity ID."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.utcnow()


# =============================================================================
# Item
# =============================================================================

class SourceId(BaseModel):
    """Provenance: which connector, which external identifier."""

    provider: str = Field(description="Connector name, e.g. 'pubmed'")
    external_id: Optional[str] = Field(None, description="PMID, paperId, NCT number")


class Item(BaseModel):
    """A unit of discovered content."""

    id: str = Field(default_factory=new_id)
    source_id: SourceId
    title: str = Field(min_length=1)
    body: str = ""
    published_at: Optional[date] = None
    tags: list[str] = Field(default_factory=list)
    score: Optional[float] = None
    bucket: Optional[Bucket] = None
    processed: bool = False

    authors: list[str] = Field(default_factory=list)
    url: Optional[str] = None
    venue: Optional[str] = None
    citation_count: int = 0
    extra: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("tags")
    @classmethod
    def _tags_as_set(cls, value: list[str]) -> list[str]:
        # Order is irrelevant; keep a canonical sorted, de-duplicated list.
        return sorted({t.strip() for t in value if t and t.strip()})


# =============================================================================
# Artifact
# =============================================================================

class Artifact(BaseModel):
    """A structured, falsifiable claim derived from one Item."""

    id: str = Field(default_factory=new_id)
    item_id: str
    title: str = Field(min_length=1)
    statement: str = Field(min_length=1)
    rationale: str = ""
    assumptions: list[str] = Field(default_factory=list)
    predictions: list[str] = Field(default_factory=list)
    required_evidence: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    status: ArtifactStatus = ArtifactStatus.GENERATED

    potential_impact: Optional[str] = None
    target_venture: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    status_updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Validation
# =============================================================================

class Evidence(BaseModel):
    source: str
    summary: str = ""
    strength: EvidenceStrength = EvidenceStrength.MODERATE


class Validation(BaseModel):
    """Evidence-gathering outcome for one Artifact."""

    id: str = Field(default_factory=new_id)
    artifact_id: str
    supporting_evidence: list[Evidence] = Field(default_factory=list)
    contradicting_evidence: list[Evidence] = Field(default_factory=list)
    gaps: list[str] = Field(default_factory=list)
    key_references: list[str] = Field(default_factory=list)
    confidence_level: ConfidenceLevel
    recommendation: Recommendation
    summary: str = ""

    suggested_modifications: Optional[str] = None
    evidence_count: int = Field(default=0, ge=0, description="Search results shown to the model")
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Plan
# =============================================================================

class Milestone(BaseModel):
    name: str
    deliverable: str = ""
    target_offset_days: int = Field(default=0, ge=0)


class Resource(BaseModel):
    kind: str
    description: str = ""
    estimated_cost: float = Field(default=0.0, ge=0.0)


class Plan(BaseModel):
    """An actionable project derived from a validated Artifact."""

    id: str = Field(default_factory=new_id)
    artifact_id: str
    title: str = Field(min_length=1)
    objective: str = ""
    methodology: str = ""
    milestones: list[Milestone] = Field(default_factory=list)
    resources: list[Resource] = Field(default_factory=list)
    timeline_units: int = Field(default=0, ge=0, description="Timeline in weeks")
    estimated_cost: float = Field(default=0.0, ge=0.0)
    output_kind: OutputKind
    feasibility: float = Field(default=0.5, ge=0.0, le=1.0)
    risk_notes: str = ""
    status: PlanStatus = PlanStatus.DRAFTED

    target_venture: Optional[str] = None
    success_metrics: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    status_updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Critique
# =============================================================================

class Weakness(BaseModel):
    area: str
    issue: str
    severity: Severity


class Risk(BaseModel):
    risk: str
    likelihood: Level = Level.MEDIUM
    impact: Level = Level.MEDIUM
    mitigation: str = ""


class Critique(BaseModel):
    """Adversarial review of exactly one Plan."""

    id: str = Field(default_factory=new_id)
    plan_id: str
    open_questions: list[str] = Field(default_factory=list)
    weaknesses: list[Weakness] = Field(default_factory=list)
    risks: list[Risk] = Field(default_factory=list)
    competitive_notes: str = ""
    compliance_notes: str = ""
    mitigations: list[str] = Field(default_factory=list)
    disposition: Disposition

    rationale: str = ""
    key_success_factors: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Activity log
# =============================================================================

class ActivityRecord(BaseModel):
    """Append-only audit entry."""

    id: Optional[int] = Field(None, description="Assigned by the store; reflects completion order")
    agent_name: str
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    summary: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


# =============================================================================
# Feedback
# =============================================================================

FEEDBACK_ENTITY_TYPES = frozenset({
    EntityType.ITEM,
    EntityType.ARTIFACT,
    EntityType.VALIDATION,
    EntityType.PLAN,
    EntityType.CRITIQUE,
})


class Feedback(BaseModel):
    """A reviewer's rating and notes on one stored entity.

    There is at most one record per entity; submitting again updates it.
    """

    id: str = Field(default_factory=new_id)
    entity_type: EntityType
    entity_id: str = Field(min_length=1)
    rating: Optional[int] = Field(None, ge=-1, le=5, description="1-5 stars, or -1 for thumbs down")
    useful: Optional[bool] = None
    notes: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    action_taken: Optional[FeedbackAction] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("entity_type")
    @classmethod
    def _reviewable(cls, value: EntityType) -> EntityType:
        if value not in FEEDBACK_ENTITY_TYPES:
            raise ValueError(f"feedback is not accepted on {value.value}")
        return value

    @field_validator("rating")
    @classmethod
    def _no_zero_rating(cls, value: Optional[int]) -> Optional[int]:
        if value == 0:
            raise ValueError("rating must be -1 or 1-5")
        return value


# =============================================================================
# Full text
# =============================================================================

class FullTextSection(BaseModel):
    title: str
    text: str = ""


class FullText(BaseModel):
    """Open-access body text fetched for an Item, cached by the store."""

    item_id: str
    pmcid: str
    sections: list[FullTextSection] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=utcnow)

    @property
    def text(self) -> str:
        return "\n\n".join(f"## {s.title}\n{s.text}" for s in self.sections)
