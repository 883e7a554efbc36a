"""Schema-validated shapes of generative-model responses.

Each stage decodes the model's JSON into one of these models before anything
is persisted. A response that does not fit raises MalformedResponse; fields
are never silently filled in with nulls standing in for validation.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from research_pipeline.models.enums import (
    ConfidenceLevel,
    Disposition,
    OutputKind,
    Recommendation,
)
from research_pipeline.models.entities import Evidence, Milestone, Resource, Risk, Weakness


class _Descriptor(BaseModel):
    """Base: an explicit null on an optional field means "use the default"."""

    @field_validator("*", mode="before")
    @classmethod
    def _null_as_default(cls, value: Any, info) -> Any:
        field = cls.model_fields.get(info.field_name)
        if value is None and field is not None and not field.is_required():
            return field.get_default(call_default_factory=True)
        return value


# =============================================================================
# Scoring
# =============================================================================

class ScoreDescriptor(_Descriptor):
    item_id: str
    relevance: float = Field(ge=0, le=30)
    novelty: float = Field(ge=0, le=25)
    actionability: float = Field(ge=0, le=25)
    urgency: float = Field(ge=0, le=20)
    reasoning: str = ""


class ScoringResponse(_Descriptor):
    scores: list[ScoreDescriptor]


# =============================================================================
# Generation
# =============================================================================

class ArtifactDescriptor(_Descriptor):
    title: str = Field(min_length=1)
    statement: str = Field(min_length=1)
    rationale: str = ""
    assumptions: list[str] = Field(default_factory=list)
    predictions: list[str] = Field(default_factory=list)
    required_evidence: list[str] = Field(default_factory=list)
    potential_impact: Optional[str] = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    target_venture: Optional[str] = None

    @field_validator("title", "statement", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class GenerationResponse(_Descriptor):
    # Entries are validated one by one so a bad descriptor only drops itself.
    artifacts: list[Any]


# =============================================================================
# Validation
# =============================================================================

class ValidationDescriptor(_Descriptor):
    supporting_evidence: list[Evidence] = Field(default_factory=list)
    contradicting_evidence: list[Evidence] = Field(default_factory=list)
    gaps: list[str] = Field(default_factory=list)
    key_references: list[str] = Field(default_factory=list)
    confidence_level: ConfidenceLevel
    recommendation: Recommendation
    summary: str = ""
    suggested_modifications: Optional[str] = None


# =============================================================================
# Planning
# =============================================================================

class PlanDescriptor(_Descriptor):
    title: str = Field(min_length=1)
    objective: str = ""
    output_kind: OutputKind
    target_venture: Optional[str] = None
    methodology: str = ""
    milestones: list[Milestone] = Field(default_factory=list)
    resources: list[Resource] = Field(default_factory=list)
    timeline_units: int = Field(default=0, ge=0)
    estimated_cost: float = Field(default=0.0, ge=0.0)
    feasibility: float = Field(default=0.5, ge=0.0, le=1.0)
    risk_notes: str = ""
    success_metrics: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)


# =============================================================================
# Critique
# =============================================================================

class CritiqueDescriptor(_Descriptor):
    open_questions: list[str] = Field(default_factory=list)
    weaknesses: list[Weakness] = Field(default_factory=list)
    risks: list[Risk] = Field(default_factory=list)
    competitive_notes: str = ""
    compliance_notes: str = ""
    mitigations: list[str] = Field(default_factory=list)
    disposition: Disposition
    rationale: str = ""
    key_success_factors: list[str] = Field(default_factory=list)
