"""Pydantic data models for the pipeline."""

from .enums import (
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
    StageName,
)
from .entities import (
    ActivityRecord,
    Artifact,
    Critique,
    Evidence,
    Feedback,
    FullText,
    FullTextSection,
    Item,
    Milestone,
    Plan,
    Resource,
    Risk,
    SourceId,
    Validation,
    Weakness,
    new_id,
)
from .descriptors import (
    ArtifactDescriptor,
    CritiqueDescriptor,
    GenerationResponse,
    PlanDescriptor,
    ScoreDescriptor,
    ScoringResponse,
    ValidationDescriptor,
)
from .run import (
    ConnectorFailure,
    PipelineOptions,
    RunSummary,
    ScoredCounts,
    ScoreResult,
    StageFailure,
)

__all__ = [
    # Enums
    "ArtifactStatus",
    "Bucket",
    "ConfidenceLevel",
    "Disposition",
    "EntityType",
    "EvidenceStrength",
    "FeedbackAction",
    "Level",
    "OutputKind",
    "PlanStatus",
    "Recommendation",
    "Severity",
    "StageName",
    # Entities
    "ActivityRecord",
    "Artifact",
    "Critique",
    "Evidence",
    "Feedback",
    "FullText",
    "FullTextSection",
    "Item",
    "Milestone",
    "Plan",
    "Resource",
    "Risk",
    "SourceId",
    "Validation",
    "Weakness",
    "new_id",
    # Model responses
    "ArtifactDescriptor",
    "CritiqueDescriptor",
    "GenerationResponse",
    "PlanDescriptor",
    "ScoreDescriptor",
    "ScoringResponse",
    "ValidationDescriptor",
    # Runs
    "ConnectorFailure",
    "PipelineOptions",
    "RunSummary",
    "ScoredCounts",
    "ScoreResult",
    "StageFailure",
]
