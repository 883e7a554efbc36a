"""Unit tests for Pydantic models."""

import pytest
from pydantic import ValidationError

from research_pipeline.models import (
    Artifact,
    ArtifactDescriptor,
    ArtifactStatus,
    Bucket,
    CritiqueDescriptor,
    EntityType,
    Feedback,
    FullText,
    FullTextSection,
    Item,
    PipelineOptions,
    PlanDescriptor,
    Recommendation,
    RunSummary,
    ScoreDescriptor,
    ScoredCounts,
    SourceId,
    StageFailure,
    ValidationDescriptor,
)


class TestItem:
    """Tests for Item model."""

    def test_tags_are_a_sorted_set(self):
        item = Item(
            source_id=SourceId(provider="pubmed", external_id="1"),
            title="Title",
            tags=["obesity", " myostatin ", "obesity", ""],
        )
        assert item.tags == ["myostatin", "obesity"]

    def test_empty_title_rejected(self):
        with pytest.raises(ValidationError):
            Item(source_id=SourceId(provider="pubmed"), title="")

    def test_defaults(self):
        item = Item(source_id=SourceId(provider="pubmed"), title="T")
        assert item.score is None
        assert item.bucket is None
        assert item.processed is False
        assert item.id


class TestArtifact:
    """Tests for Artifact model."""

    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            Artifact(item_id="i", title="T", statement="S", confidence=1.5)

    def test_default_status_is_generated(self):
        artifact = Artifact(item_id="i", title="T", statement="S")
        assert artifact.status == ArtifactStatus.GENERATED


class TestRecommendation:
    @pytest.mark.parametrize("value,plannable", [
        ("pursue", True),
        ("modify", True),
        ("reject", False),
        ("needs_more_research", False),
    ])
    def test_plannable(self, value, plannable):
        assert Recommendation(value).plannable is plannable


class TestDescriptors:
    """Tests for the model-response descriptors."""

    def test_score_component_out_of_range(self):
        with pytest.raises(ValidationError):
            ScoreDescriptor(item_id="a", relevance=31, novelty=0, actionability=0, urgency=0)

    def test_null_optional_field_takes_default(self):
        descriptor = ArtifactDescriptor.model_validate({
            "title": "  Padded title  ",
            "statement": "Statement",
            "assumptions": None,
            "confidence": None,
        })
        assert descriptor.title == "Padded title"
        assert descriptor.assumptions == []
        assert descriptor.confidence == 0.5

    def test_null_required_field_still_fails(self):
        with pytest.raises(ValidationError):
            ValidationDescriptor.model_validate({"confidence_level": "high", "recommendation": None})

    def test_unknown_recommendation_rejected(self):
        with pytest.raises(ValidationError):
            ValidationDescriptor.model_validate({"confidence_level": "high", "recommendation": "maybe"})

    def test_unknown_disposition_rejected(self):
        with pytest.raises(ValidationError):
            CritiqueDescriptor.model_validate({"disposition": "ship_it"})

    def test_plan_requires_output_kind(self):
        with pytest.raises(ValidationError):
            PlanDescriptor.model_validate({"title": "Plan"})


class TestRunModels:
    def test_scored_counts_add(self):
        counts = ScoredCounts()
        counts.add(Bucket.HIGH)
        counts.add(Bucket.HIGH)
        counts.add(Bucket.LOW)
        assert (counts.high, counts.medium, counts.low) == (2, 0, 1)

    def test_summary_succeeded(self):
        summary = RunSummary()
        assert summary.succeeded
        summary.failures.append(StageFailure(stage="scoring", entity_id="x", reason="boom"))
        assert not summary.succeeded

    def test_options_days_back_bounds(self):
        with pytest.raises(ValidationError):
            PipelineOptions(days_back=0)
        assert PipelineOptions().resume_pending is True


class TestFeedback:
    def test_rating_range(self):
        assert Feedback(entity_type=EntityType.ITEM, entity_id="i", rating=-1).rating == -1
        for rating in (0, 6, -2):
            with pytest.raises(ValidationError):
                Feedback(entity_type=EntityType.ITEM, entity_id="i", rating=rating)

    def test_runs_not_reviewable(self):
        with pytest.raises(ValidationError):
            Feedback(entity_type=EntityType.RUN, entity_id="r")

    def test_full_text_joins_sections(self):
        full_text = FullText(
            item_id="i",
            pmcid="PMC1",
            sections=[FullTextSection(title="Intro", text="Background"), FullTextSection(title="Methods", text="RCT")],
        )
        assert full_text.text == "## Intro\nBackground\n\n## Methods\nRCT"
