"""Unit tests for the Planning and Critique stages."""

import pytest

from conftest import FakeClient, critique_json, plan_json
from research_pipeline.errors import InvalidTransition, MalformedResponse, PreconditionFailed
from research_pipeline.models.entities import Artifact, Plan, Validation
from research_pipeline.models.enums import (
    ArtifactStatus,
    ConfidenceLevel,
    Disposition,
    OutputKind,
    PlanStatus,
    Recommendation,
    StageName,
)
from research_pipeline.stages.critique import CritiqueStage, plan_status_for
from research_pipeline.stages.planning import PlanningStage


def _validated(store, recommendation=Recommendation.PURSUE):
    artifact = store.insert_artifact(Artifact(item_id="item", title="Claim", statement="X improves Y"))
    validation = store.insert_validation(Validation(
        artifact_id=artifact.id,
        confidence_level=ConfidenceLevel.HIGH,
        recommendation=recommendation,
    ))
    if recommendation.plannable:
        store.transition_artifact(artifact.id, ArtifactStatus.VALIDATED)
    return store.get_artifact(artifact.id), validation


class TestPlanningStage:
    def _stage(self, store, client, stage_configs, context):
        return PlanningStage(store, client, stage_configs[StageName.PLANNING], context)

    def test_plan_drafted_and_artifact_planned(self, store, stage_configs, context):
        artifact, validation = _validated(store)
        client = FakeClient({"planning": plan_json("Pilot RCT")})
        plan = self._stage(store, client, stage_configs, context).plan(artifact, validation)

        assert plan.status == PlanStatus.DRAFTED
        assert plan.output_kind == OutputKind.TRIAL
        assert plan.milestones[0].name == "Protocol"
        assert store.get_plan(plan.id).title == "Pilot RCT"
        assert store.get_artifact(artifact.id).status == ArtifactStatus.PLANNED
        assert store.recent_activity(limit=1)[0].action == "design_plan"

    def test_modify_is_plannable(self, store, stage_configs, context):
        artifact, validation = _validated(store, Recommendation.MODIFY)
        client = FakeClient({"planning": plan_json()})
        assert self._stage(store, client, stage_configs, context).plan(artifact, validation)

    @pytest.mark.parametrize("recommendation", [Recommendation.REJECT, Recommendation.NEEDS_MORE_RESEARCH])
    def test_non_plannable_recommendation(self, store, stage_configs, context, recommendation):
        artifact, validation = _validated(store, recommendation)
        client = FakeClient({"planning": plan_json()})
        with pytest.raises(PreconditionFailed):
            self._stage(store, client, stage_configs, context).plan(artifact, validation)
        assert client.calls == []

    def test_validation_of_another_artifact(self, store, stage_configs, context):
        artifact, _ = _validated(store)
        _, other_validation = _validated(store)
        with pytest.raises(PreconditionFailed):
            self._stage(store, FakeClient(), stage_configs, context).plan(artifact, other_validation)

    def test_already_planned(self, store, stage_configs, context):
        artifact, validation = _validated(store)
        stage = self._stage(store, FakeClient({"planning": plan_json()}), stage_configs, context)
        stage.plan(artifact, validation)
        with pytest.raises(PreconditionFailed):
            stage.plan(artifact, validation)

    def test_rejected_during_call_stores_no_plan(self, store, stage_configs, context):
        artifact, validation = _validated(store)

        def plan(prompt):
            store.transition_artifact(artifact.id, ArtifactStatus.REJECTED)
            return plan_json()

        with pytest.raises(InvalidTransition):
            self._stage(store, FakeClient({"planning": plan}), stage_configs, context).plan(artifact, validation)
        assert store.plan_for_artifact(artifact.id) is None
        assert store.get_artifact(artifact.id).status == ArtifactStatus.REJECTED

    def test_bad_output_kind_is_malformed(self, store, stage_configs, context):
        artifact, validation = _validated(store)
        client = FakeClient({"planning": plan_json(output_kind="podcast")})
        with pytest.raises(MalformedResponse):
            self._stage(store, client, stage_configs, context).plan(artifact, validation)
        assert store.get_artifact(artifact.id).status == ArtifactStatus.VALIDATED


class TestPlanStatusFor:
    @pytest.mark.parametrize("disposition,status", [
        (Disposition.PROCEED, PlanStatus.APPROVED),
        (Disposition.REVISE, PlanStatus.REVISION_NEEDED),
        (Disposition.PAUSE, PlanStatus.PAUSED),
        (Disposition.ABANDON, PlanStatus.REJECTED),
        ("proceed", PlanStatus.APPROVED),
    ])
    def test_mapping(self, disposition, status):
        assert plan_status_for(disposition) == status

    def test_unknown_disposition(self):
        with pytest.raises(ValueError):
            plan_status_for("ship_it")


class TestCritiqueStage:
    def _plan(self, store):
        artifact, _ = _validated(store)
        plan = store.insert_plan(Plan(artifact_id=artifact.id, title="Pilot", output_kind=OutputKind.GRANT))
        return artifact, plan

    @pytest.mark.parametrize("disposition,status", [
        ("proceed", PlanStatus.APPROVED),
        ("revise", PlanStatus.REVISION_NEEDED),
        ("pause", PlanStatus.PAUSED),
        ("abandon", PlanStatus.REJECTED),
    ])
    def test_disposition_sets_plan_status(self, store, stage_configs, disposition, status):
        artifact, plan = self._plan(store)
        client = FakeClient({"critique": critique_json(disposition)})
        critique = CritiqueStage(store, client, stage_configs[StageName.CRITIQUE]).critique(plan, artifact)

        assert critique.plan_id == plan.id
        assert critique.risks[0].risk == "slow recruitment"
        assert store.get_plan(plan.id).status == status
        assert store.current_critique(plan.id).id == critique.id

    def test_unknown_disposition_is_malformed(self, store, stage_configs):
        artifact, plan = self._plan(store)
        client = FakeClient({"critique": critique_json("ship_it")})
        with pytest.raises(MalformedResponse):
            CritiqueStage(store, client, stage_configs[StageName.CRITIQUE]).critique(plan, artifact)
        assert store.get_plan(plan.id).status == PlanStatus.DRAFTED
        assert store.current_critique(plan.id) is None

    def test_plan_of_another_artifact(self, store, stage_configs):
        _, plan = self._plan(store)
        other, _ = _validated(store)
        with pytest.raises(PreconditionFailed):
            CritiqueStage(store, FakeClient(), stage_configs[StageName.CRITIQUE]).critique(plan, other)
