"""Enumeration types for the pipeline models."""

from enum import Enum


class Bucket(str, Enum):
    """Coarse priority classification assigned by the Scoring stage."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ArtifactStatus(str, Enum):
    """Lifecycle of a generated hypothesis.

    Order: generated < validating < validated/rejected < planned. Allowed
    moves are enforced by the Item Store (``ARTIFACT_TRANSITIONS``).
    """

    GENERATED = "generated"
    VALIDATING = "validating"
    VALIDATED = "validated"
    REJECTED = "rejected"
    PLANNED = "planned"


class EvidenceStrength(str, Enum):
    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INSUFFICIENT = "insufficient"


class Recommendation(str, Enum):
    """Validation outcome; decides the artifact's next status."""

    PURSUE = "pursue"
    MODIFY = "modify"
    REJECT = "reject"
    NEEDS_MORE_RESEARCH = "needs_more_research"

    @property
    def plannable(self) -> bool:
        return self in (Recommendation.PURSUE, Recommendation.MODIFY)


class OutputKind(str, Enum):
    GRANT = "grant"
    TRIAL = "trial"
    PRODUCT = "product"
    PUBLICATION = "publication"


class PlanStatus(str, Enum):
    DRAFTED = "drafted"
    APPROVED = "approved"
    REVISION_NEEDED = "revision_needed"
    PAUSED = "paused"
    REJECTED = "rejected"


class Severity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


class Level(str, Enum):
    """Likelihood/impact rating used in critique risks."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Disposition(str, Enum):
    """Red-team verdict on a plan."""

    PROCEED = "proceed"
    REVISE = "revise"
    PAUSE = "pause"
    ABANDON = "abandon"


class StageName(str, Enum):
    DISCOVERY = "discovery"
    SCORING = "scoring"
    GENERATION = "generation"
    VALIDATION = "validation"
    PLANNING = "planning"
    CRITIQUE = "critique"


class EntityType(str, Enum):
    ITEM = "item"
    ARTIFACT = "artifact"
    VALIDATION = "validation"
    PLAN = "plan"
    CRITIQUE = "critique"
    RUN = "run"


class FeedbackAction(str, Enum):
    """What the reviewer did with the entity."""

    PURSUED = "pursued"
    IGNORED = "ignored"
    MODIFIED = "modified"
    SHARED = "shared"
