"""Unit tests for the SQLAlchemy-backed ItemStore."""

import threading

import pytest

from research_pipeline.config.context import ResearchDomain
from research_pipeline.errors import InvalidTransition, PreconditionFailed, StorageError
from research_pipeline.models.entities import (
    Artifact,
    Critique,
    Feedback,
    FullText,
    FullTextSection,
    Plan,
    Validation,
)
from research_pipeline.models.enums import (
    ArtifactStatus,
    Bucket,
    Disposition,
    EntityType,
    FeedbackAction,
    OutputKind,
    PlanStatus,
    Recommendation,
)
from research_pipeline.models.run import ScoreResult
from research_pipeline.store.item_store import ItemStore, can_transition


def _score(item_id: str, total: float, bucket: Bucket) -> ScoreResult:
    return ScoreResult(
        item_id=item_id,
        relevance=min(30, total),
        novelty=max(0, min(25, total - 30)),
        actionability=max(0, min(25, total - 55)),
        urgency=max(0, total - 80),
        total=total,
        bucket=bucket,
    )


def _artifact(store: ItemStore, item_id: str, **kwargs) -> Artifact:
    return store.insert_artifact(Artifact(item_id=item_id, title="Claim", statement="X causes Y", **kwargs))


class TestItemDedup:
    """Tests for insert_item duplicate detection."""

    def test_same_provider_and_external_id(self, store, make_item):
        first_id, created = store.insert_item(make_item("A study of muscle", external_id="42"))
        second_id, created_again = store.insert_item(make_item("Different title entirely", external_id="42"))
        assert created is True
        assert created_again is False
        assert second_id == first_id

    def test_same_normalized_title_across_providers(self, store, make_item):
        first_id, _ = store.insert_item(make_item("Myostatin and Lean Mass!", external_id="1"))
        second_id, created = store.insert_item(
            make_item("myostatin and lean mass", provider="semantic_scholar", external_id="abc")
        )
        assert created is False
        assert second_id == first_id

    def test_near_identical_long_titles_match(self, store, make_item):
        title = "Myostatin inhibition preserves lean mass after bariatric surgery in adults"
        first_id, _ = store.insert_item(make_item(title, external_id="1"))
        second_id, created = store.insert_item(
            make_item(title.replace("adults", "adult"), provider="semantic_scholar", external_id="x")
        )
        assert created is False
        assert second_id == first_id

    def test_non_latin_titles_are_deduplicated(self, store, make_item):
        title = "Саркопения после бариатрической хирургии"
        first_id, _ = store.insert_item(make_item(title, external_id="1"))
        second_id, created = store.insert_item(make_item(title, provider="semantic_scholar", external_id="s"))
        assert created is False
        assert second_id == first_id

    def test_distinct_non_latin_titles_are_kept(self, store, make_item):
        store.insert_item(make_item("肥満手術後の筋肉量", external_id="1"))
        _, created = store.insert_item(make_item("肥満治療薬の副作用", external_id="2"))
        assert created is True

    def test_short_titles_need_exact_match(self, store, make_item):
        store.insert_item(make_item("Obesity review", external_id="1"))
        _, created = store.insert_item(make_item("Obesity reviews", external_id="2"))
        assert created is True

    def test_distinct_items(self, store, sample_items):
        results = [store.insert_item(item) for item in sample_items]
        assert all(created for _, created in results)
        assert len({item_id for item_id, _ in results}) == 3


class TestItemQueries:
    def test_get_items_preserves_order_and_skips_unknown(self, store, sample_items):
        ids = [store.insert_item(item)[0] for item in sample_items]
        fetched = store.get_items([ids[2], "missing", ids[0]])
        assert [i.id for i in fetched] == [ids[2], ids[0]]

    def test_set_scores_and_unprocessed_order(self, store, sample_items):
        ids = [store.insert_item(item)[0] for item in sample_items]
        store.set_item_scores([
            _score(ids[0], 45, Bucket.MEDIUM),
            _score(ids[1], 85, Bucket.HIGH),
            _score(ids[2], 20, Bucket.LOW),
        ])

        candidates = store.unprocessed_items(buckets=[Bucket.HIGH, Bucket.MEDIUM])
        assert [i.id for i in candidates] == [ids[1], ids[0]]
        assert store.unscored_items() == []

        store.mark_item_processed(ids[1])
        assert [i.id for i in store.unprocessed_items(buckets=[Bucket.HIGH, Bucket.MEDIUM], limit=5)] == [ids[0]]

    def test_scoring_unknown_item(self, store):
        with pytest.raises(PreconditionFailed):
            store.set_item_scores([_score("missing", 50, Bucket.MEDIUM)])

    def test_unscored_items_excludes_processed(self, store, sample_items):
        ids = [store.insert_item(item)[0] for item in sample_items]
        store.mark_item_processed(ids[0])
        assert {i.id for i in store.unscored_items()} == set(ids[1:])


class TestArtifactTransitions:
    """Status only moves forward along the lifecycle."""

    @pytest.mark.parametrize("current,target,allowed", [
        (ArtifactStatus.GENERATED, ArtifactStatus.VALIDATING, True),
        (ArtifactStatus.GENERATED, ArtifactStatus.VALIDATED, True),
        (ArtifactStatus.GENERATED, ArtifactStatus.PLANNED, False),
        (ArtifactStatus.VALIDATING, ArtifactStatus.REJECTED, True),
        (ArtifactStatus.VALIDATED, ArtifactStatus.VALIDATING, False),
        (ArtifactStatus.VALIDATED, ArtifactStatus.REJECTED, True),
        (ArtifactStatus.VALIDATED, ArtifactStatus.PLANNED, True),
        (ArtifactStatus.REJECTED, ArtifactStatus.VALIDATED, False),
        (ArtifactStatus.PLANNED, ArtifactStatus.VALIDATED, False),
        (ArtifactStatus.PLANNED, ArtifactStatus.PLANNED, True),
    ])
    def test_can_transition(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_transition_stamps_time(self, store):
        artifact = _artifact(store, "item")
        updated = store.transition_artifact(artifact.id, ArtifactStatus.VALIDATED)
        assert updated.status == ArtifactStatus.VALIDATED
        assert updated.status_updated_at >= artifact.status_updated_at

    def test_regression_rejected(self, store):
        artifact = _artifact(store, "item")
        store.transition_artifact(artifact.id, ArtifactStatus.VALIDATED)
        with pytest.raises(InvalidTransition):
            store.transition_artifact(artifact.id, ArtifactStatus.VALIDATING)
        assert store.get_artifact(artifact.id).status == ArtifactStatus.VALIDATED

    def test_unknown_artifact(self, store):
        with pytest.raises(PreconditionFailed):
            store.transition_artifact("missing", ArtifactStatus.VALIDATED)

    def test_concurrent_writers_never_regress(self, store):
        artifact = _artifact(store, "item")
        targets = [ArtifactStatus.VALIDATING, ArtifactStatus.VALIDATED] * 10

        def move(status):
            try:
                store.transition_artifact(artifact.id, status)
            except InvalidTransition:
                pass

        threads = [threading.Thread(target=move, args=(s,)) for s in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.get_artifact(artifact.id).status == ArtifactStatus.VALIDATED


class TestArtifactBatches:
    def test_insert_artifacts_together(self, store):
        artifacts = [Artifact(item_id="item", title=t, statement="S") for t in ("A", "B")]
        store.insert_artifacts(artifacts)
        assert {a.title for a in store.list_artifacts(item_id="item")} == {"A", "B"}

    def test_insert_artifacts_all_or_nothing(self, store):
        first = Artifact(item_id="item", title="A", statement="S")
        second = Artifact(item_id="item", title="B", statement="S")
        with pytest.raises(StorageError):
            store.insert_artifacts([first, second, first])
        assert store.list_artifacts() == []


class TestArtifactEdits:
    def test_edit_generated_artifact(self, store):
        artifact = _artifact(store, "item")
        updated = store.update_artifact_content(artifact.id, {"statement": "Refined claim"})
        assert updated.statement == "Refined claim"
        assert store.get_artifact(artifact.id).statement == "Refined claim"

    def test_edit_rejected_after_validation(self, store):
        artifact = _artifact(store, "item")
        store.transition_artifact(artifact.id, ArtifactStatus.VALIDATED)
        with pytest.raises(PreconditionFailed):
            store.update_artifact_content(artifact.id, {"title": "New"})

    def test_non_editable_field(self, store):
        artifact = _artifact(store, "item")
        with pytest.raises(PreconditionFailed):
            store.update_artifact_content(artifact.id, {"status": "planned"})


class TestValidationsPlansCritiques:
    def test_current_validation_is_latest(self, store):
        artifact = _artifact(store, "item")
        first = store.insert_validation(Validation(
            artifact_id=artifact.id, confidence_level="low", recommendation=Recommendation.NEEDS_MORE_RESEARCH,
        ))
        second = store.insert_validation(Validation(
            artifact_id=artifact.id, confidence_level="high", recommendation=Recommendation.PURSUE,
        ))
        assert store.current_validation(artifact.id).id == second.id
        assert [v.id for v in store.validation_history(artifact.id)] == [first.id, second.id]

    def test_validated_without_plan(self, store):
        planned = _artifact(store, "item")
        pending = _artifact(store, "item")
        for artifact in (planned, pending):
            store.transition_artifact(artifact.id, ArtifactStatus.VALIDATED)
        store.insert_plan(Plan(artifact_id=planned.id, title="P", output_kind=OutputKind.GRANT))
        assert [a.id for a in store.validated_artifacts_without_plan()] == [pending.id]

    def test_record_plan_moves_artifact(self, store):
        artifact = _artifact(store, "item")
        store.transition_artifact(artifact.id, ArtifactStatus.VALIDATED)
        plan = store.record_plan(Plan(artifact_id=artifact.id, title="P", output_kind=OutputKind.TRIAL))
        assert store.get_artifact(artifact.id).status == ArtifactStatus.PLANNED
        assert store.plan_for_artifact(artifact.id).id == plan.id

    def test_record_plan_for_rejected_artifact_stores_nothing(self, store):
        artifact = _artifact(store, "item")
        store.transition_artifact(artifact.id, ArtifactStatus.REJECTED)
        with pytest.raises(InvalidTransition):
            store.record_plan(Plan(artifact_id=artifact.id, title="P", output_kind=OutputKind.TRIAL))
        assert store.plan_for_artifact(artifact.id) is None
        assert store.get_artifact(artifact.id).status == ArtifactStatus.REJECTED

    def test_record_plan_for_unknown_artifact(self, store):
        with pytest.raises(PreconditionFailed):
            store.record_plan(Plan(artifact_id="missing", title="P", output_kind=OutputKind.TRIAL))
        assert store.plans_by_status(PlanStatus.DRAFTED) == []

    def test_plans_without_critique(self, store):
        reviewed = store.insert_plan(Plan(artifact_id="a", title="P1", output_kind=OutputKind.TRIAL))
        open_plan = store.insert_plan(Plan(artifact_id="b", title="P2", output_kind=OutputKind.TRIAL))
        store.insert_critique(Critique(plan_id=reviewed.id, disposition=Disposition.PAUSE))
        assert [p.id for p in store.plans_without_critique()] == [open_plan.id]
        assert store.current_critique(reviewed.id).disposition == Disposition.PAUSE

    def test_list_plans_by_status(self, store):
        drafted = store.insert_plan(Plan(artifact_id="a", title="P1", output_kind=OutputKind.TRIAL))
        approved = store.insert_plan(Plan(artifact_id="b", title="P2", output_kind=OutputKind.GRANT))
        store.update_plan_status(approved.id, PlanStatus.APPROVED)
        assert [p.id for p in store.list_plans(status=PlanStatus.DRAFTED)] == [drafted.id]
        assert {p.id for p in store.list_plans()} == {drafted.id, approved.id}
        assert len(store.list_plans(limit=1)) == 1

    def test_update_plan_status(self, store):
        plan = store.insert_plan(Plan(artifact_id="a", title="P", output_kind=OutputKind.PRODUCT))
        assert store.update_plan_status(plan.id, PlanStatus.APPROVED).status == PlanStatus.APPROVED
        with pytest.raises(PreconditionFailed):
            store.update_plan_status("missing", PlanStatus.APPROVED)


class TestFeedback:
    def test_feedback_on_existing_item(self, store, make_item):
        item_id, _ = store.insert_item(make_item("Myostatin and lean mass"))
        saved = store.add_feedback(Feedback(entity_type=EntityType.ITEM, entity_id=item_id, rating=4, tags=["muscle"]))
        stored = store.get_feedback(EntityType.ITEM, item_id)
        assert stored.id == saved.id
        assert stored.rating == 4
        assert stored.tags == ["muscle"]

    def test_second_submission_replaces_first(self, store):
        artifact = _artifact(store, "item")
        first = store.add_feedback(Feedback(entity_type=EntityType.ARTIFACT, entity_id=artifact.id, rating=2))
        second = store.add_feedback(Feedback(
            entity_type=EntityType.ARTIFACT,
            entity_id=artifact.id,
            rating=-1,
            notes="Already tried",
            action_taken=FeedbackAction.IGNORED,
        ))
        assert second.id == first.id
        assert second.rating == -1
        assert second.action_taken == FeedbackAction.IGNORED
        assert len(store.list_feedback()) == 1

    def test_missing_entity(self, store):
        with pytest.raises(PreconditionFailed):
            store.add_feedback(Feedback(entity_type=EntityType.PLAN, entity_id="missing", useful=True))
        assert store.list_feedback() == []

    def test_validation_feedback_looks_up_by_id(self, store):
        artifact = _artifact(store, "item")
        validation = store.insert_validation(Validation(
            artifact_id=artifact.id, confidence_level="high", recommendation=Recommendation.PURSUE,
        ))
        store.add_feedback(Feedback(entity_type=EntityType.VALIDATION, entity_id=validation.id, useful=False))
        assert store.get_feedback(EntityType.VALIDATION, validation.id).useful is False

    def test_list_filtered_by_entity_type(self, store, make_item):
        item_id, _ = store.insert_item(make_item("Myostatin and lean mass"))
        artifact = _artifact(store, item_id)
        store.add_feedback(Feedback(entity_type=EntityType.ITEM, entity_id=item_id, rating=5))
        store.add_feedback(Feedback(entity_type=EntityType.ARTIFACT, entity_id=artifact.id, rating=3))

        listed = store.list_feedback(entity_type=EntityType.ARTIFACT)
        assert [f.entity_id for f in listed] == [artifact.id]
        assert len(store.list_feedback(limit=1)) == 1


class TestDomains:
    def test_seed_only_into_empty_table(self, store):
        assert store.seed_domains([ResearchDomain(name="obesity", keywords=["GLP-1"])]) == 1
        assert store.seed_domains([ResearchDomain(name="sarcopenia", keywords=["muscle wasting"])]) == 0
        assert [d.name for d in store.list_domains()] == ["obesity"]

    def test_deleted_domains_stay_deleted_after_reseeding(self, store):
        domains = [
            ResearchDomain(name="obesity", keywords=["GLP-1"]),
            ResearchDomain(name="sarcopenia", keywords=["muscle wasting"]),
        ]
        store.seed_domains(domains)
        assert store.delete_domain("sarcopenia") is True
        store.seed_domains(domains)
        assert [d.name for d in store.list_domains()] == ["obesity"]
        assert store.delete_domain("sarcopenia") is False

    def test_upsert_replaces_keywords(self, store):
        store.upsert_domain(ResearchDomain(name="Surgical AI", keywords=["video"]))
        store.upsert_domain(ResearchDomain(name="surgical_ai", keywords=["video", "phase recognition"]))
        assert store.get_domain("surgical_ai").keywords == ["video", "phase recognition"]
        assert len(store.list_domains()) == 1

    def test_update_active_flag(self, store):
        store.upsert_domain(ResearchDomain(name="obesity", keywords=["GLP-1"]))
        store.upsert_domain(ResearchDomain(name="sarcopenia", keywords=["muscle wasting"]))
        assert store.update_domain("obesity", {"active": False}).active is False
        assert [d.name for d in store.list_domains(active_only=True)] == ["sarcopenia"]

    @pytest.mark.parametrize("name, changes", [
        ("missing", {"active": False}),
        ("obesity", {"name": "renamed"}),
        ("obesity", {"keywords": []}),
    ])
    def test_update_rejected(self, store, name, changes):
        store.upsert_domain(ResearchDomain(name="obesity", keywords=["GLP-1"]))
        with pytest.raises(PreconditionFailed):
            store.update_domain(name, changes)
        assert store.get_domain("obesity").keywords == ["GLP-1"]


class TestFullTextCache:
    def test_cache_and_read_back(self, store, make_item):
        item_id, _ = store.insert_item(make_item("Myostatin and lean mass", external_id="1001"))
        store.cache_full_text(FullText(
            item_id=item_id,
            pmcid="PMC42",
            sections=[FullTextSection(title="Methods", text="Randomized"), FullTextSection(title="Results")],
        ))
        cached = store.get_full_text(item_id)
        assert cached.pmcid == "PMC42"
        assert [s.title for s in cached.sections] == ["Methods", "Results"]
        assert cached.text.startswith("## Methods\nRandomized")

    def test_refetch_overwrites(self, store, make_item):
        item_id, _ = store.insert_item(make_item("Myostatin and lean mass", external_id="1001"))
        store.cache_full_text(FullText(item_id=item_id, pmcid="PMC1", sections=[FullTextSection(title="Old")]))
        store.cache_full_text(FullText(item_id=item_id, pmcid="PMC2", sections=[FullTextSection(title="New")]))
        cached = store.get_full_text(item_id)
        assert cached.pmcid == "PMC2"
        assert [s.title for s in cached.sections] == ["New"]

    def test_missing(self, store):
        assert store.get_full_text("missing") is None


class TestActivityLog:
    def test_append_only_and_ordered(self, store):
        first = store.log_activity("scoring", "score_items", summary="one")
        second = store.log_activity("generation", "generate_artifacts", "item", "i1", "two")
        assert second.id > first.id
        recent = store.recent_activity(limit=10)
        assert [r.id for r in recent] == [second.id, first.id]
        assert [r.action for r in store.recent_activity(agent_name="scoring")] == ["score_items"]
        assert [r.id for r in store.recent_activity(entity_id="i1")] == [second.id]

    def test_stats(self, store, sample_items):
        for item in sample_items:
            store.insert_item(item)
        stats = store.stats()
        assert stats["items"] == 3
        assert stats["artifacts"] == 0
        assert stats["feedback"] == 0
        assert stats["full_texts"] == 0

    def test_stats_count_feedback_and_active_domains(self, store, make_item):
        item_id, _ = store.insert_item(make_item("Myostatin and lean mass"))
        store.add_feedback(Feedback(entity_type=EntityType.ITEM, entity_id=item_id, rating=5))
        store.upsert_domain(ResearchDomain(name="obesity", keywords=["GLP-1"]))
        store.upsert_domain(ResearchDomain(name="sarcopenia", keywords=["muscle wasting"], active=False))
        stats = store.stats()
        assert stats["feedback"] == 1
        assert stats["domains_active"] == 1


class TestStorageFailure:
    def test_closed_engine_raises_storage_error(self, tmp_path, make_item):
        store = ItemStore.from_url(f"sqlite:///{tmp_path}/db.sqlite")
        with store.engine.begin() as conn:
            conn.exec_driver_sql("DROP TABLE items")
        with pytest.raises(StorageError):
            store.insert_item(make_item("Anything at all"))
