"""Run-level contracts: options in, summary out."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from research_pipeline.models.entities import new_id, utcnow
from research_pipeline.models.enums import Bucket


class PipelineOptions(BaseModel):
    """Options for a full pipeline run.

    Unset values fall back to Settings.
    """

    query: Optional[str] = Field(None, description="Custom search query; domain scan when omitted")
    days_back: Optional[int] = Field(None, ge=1, le=365)
    providers: Optional[list[str]] = Field(None, description="Restrict discovery to these connectors")
    max_results: Optional[int] = Field(None, ge=1)
    generation_top_k: Optional[int] = Field(None, ge=0)
    review_confidence_floor: float = Field(
        default=0.0, ge=0.0, le=1.0,
        description="Artifacts below this confidence are held for human review",
    )
    resume_pending: bool = Field(
        default=True,
        description="Also process persisted work left over from earlier runs",
    )


class ScoreResult(BaseModel):
    """Scoring output for one Item."""

    item_id: str
    relevance: float = Field(ge=0, le=30)
    novelty: float = Field(ge=0, le=25)
    actionability: float = Field(ge=0, le=25)
    urgency: float = Field(ge=0, le=20)
    total: float = Field(ge=0, le=100)
    bucket: Bucket
    reasoning: str = ""


class StageFailure(BaseModel):
    stage: str
    entity_id: Optional[str] = None
    reason: str
    kind: str = "error"


class ConnectorFailure(BaseModel):
    stage: str
    provider: str
    reason: str


class ScoredCounts(BaseModel):
    high: int = 0
    medium: int = 0
    low: int = 0

    def add(self, bucket: Bucket) -> None:
        setattr(self, bucket.value, getattr(self, bucket.value) + 1)


class RunSummary(BaseModel):
    """What a full or partial run did. Always produced, even on abort."""

    run_id: str = Field(default_factory=new_id)
    mode: str = "full"
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    item_count: int = 0
    scored_counts: ScoredCounts = Field(default_factory=ScoredCounts)
    artifact_count: int = 0
    validated_count: int = 0
    pursued_count: int = 0
    plan_count: int = 0
    critique_count: int = 0
    duration_seconds: float = 0.0

    failures: list[StageFailure] = Field(default_factory=list)
    connector_errors: list[ConnectorFailure] = Field(default_factory=list)
    scored_item_ids: list[str] = Field(default_factory=list)
    artifact_ids: list[str] = Field(default_factory=list)
    validated_artifact_ids: list[str] = Field(default_factory=list)
    plan_ids: list[str] = Field(default_factory=list)
    critiqued_plan_ids: list[str] = Field(default_factory=list)
    held_for_review: list[str] = Field(default_factory=list)
    approved_plans: list[str] = Field(default_factory=list)
    stage_durations: dict[str, float] = Field(default_factory=dict)
    cancelled: bool = False
    aborted: bool = False
    abort_reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return not self.aborted and not self.failures
