"""Pipeline stages: Discovery, Scoring, Generation, Validation, Planning, Critique,
plus full-text Enrichment ahead of Generation."""

from .critique import CritiqueStage, plan_status_for
from .discovery import DiscoveryResult, DiscoveryStage
from .enrichment import EnrichmentResult, EnrichmentStage
from .generation import GenerationStage
from .planning import PlanningStage
from .scoring import ScoringStage, bucket_for
from .validation import ValidationStage, artifact_status_for, build_query

__all__ = [
    "CritiqueStage",
    "DiscoveryResult",
    "DiscoveryStage",
    "EnrichmentResult",
    "EnrichmentStage",
    "GenerationStage",
    "PlanningStage",
    "ScoringStage",
    "ValidationStage",
    "artifact_status_for",
    "bucket_for",
    "build_query",
    "plan_status_for",
]
