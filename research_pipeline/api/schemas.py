"""
Request and response schemas for the API.

Entities and RunSummary are returned as their own Pydantic models; these
schemas only cover the envelopes around them.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from research_pipeline.config.context import ResearchDomain
from research_pipeline.models.entities import ActivityRecord, Artifact, Feedback, Item, Plan
from research_pipeline.models.enums import EntityType, FeedbackAction


# =============================================================================
# Requests
# =============================================================================

class StageRunRequest(BaseModel):
    """Inputs for a single-stage run."""
    input_ids: list[str] = Field(
        default_factory=list,
        description="Queries for discovery, otherwise entity ids; pending work when empty",
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"input_ids": []},
                {"input_ids": ["3f0e8c1a-0d5b-4f57-9a7e-2d1b9c4e6a10"]},
            ]
        }
    }


class ArtifactEditRequest(BaseModel):
    """Human edit of an artifact's content. Omitted fields are unchanged."""
    title: Optional[str] = Field(None, min_length=1)
    statement: Optional[str] = Field(None, min_length=1)
    rationale: Optional[str] = None
    assumptions: Optional[list[str]] = None
    predictions: Optional[list[str]] = None
    required_evidence: Optional[list[str]] = None


class FeedbackRequest(BaseModel):
    """Rating and notes on a stored entity. Replaces earlier feedback on it."""
    entity_type: EntityType
    entity_id: str = Field(..., min_length=1)
    rating: Optional[int] = Field(None, ge=-1, le=5, description="1-5 stars, or -1 for thumbs down")
    useful: Optional[bool] = None
    notes: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    action_taken: Optional[FeedbackAction] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"entity_type": "artifact", "entity_id": "3f0e8c1a-0d5b-4f57-9a7e-2d1b9c4e6a10",
                 "rating": 4, "useful": True, "notes": "Worth a pilot"},
            ]
        }
    }


class DomainUpdateRequest(BaseModel):
    """Omitted fields are unchanged."""
    keywords: Optional[list[str]] = Field(None, min_length=1)
    active: Optional[bool] = None


# =============================================================================
# Responses
# =============================================================================

class RunAccepted(BaseModel):
    """Response after queueing a full run."""
    status: str = "queued"
    queued_at: datetime = Field(default_factory=datetime.utcnow)


class ArtifactListResponse(BaseModel):
    artifacts: list[Artifact]
    count: int


class ActivityListResponse(BaseModel):
    records: list[ActivityRecord]
    count: int


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str


class ItemListResponse(BaseModel):
    items: list[Item]
    count: int


class PlanListResponse(BaseModel):
    plans: list[Plan]
    count: int


class FeedbackListResponse(BaseModel):
    feedback: list[Feedback]
    count: int


class DomainListResponse(BaseModel):
    domains: list[ResearchDomain]
    count: int
