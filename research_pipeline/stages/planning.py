"""Planning: design a project for a validated Artifact."""

import structlog

from research_pipeline.config.context import OrganizationContext
from research_pipeline.config.prompts import PLANNING_USER_PROMPT
from research_pipeline.config.stage_config import StageConfiguration
from research_pipeline.errors import PreconditionFailed
from research_pipeline.llm.client import GenerativeClient
from research_pipeline.llm.parsing import decode
from research_pipeline.models.descriptors import PlanDescriptor
from research_pipeline.models.entities import Artifact, Plan, Validation
from research_pipeline.models.enums import ArtifactStatus, EntityType, PlanStatus
from research_pipeline.stages.base import GenerativeStage, join_or
from research_pipeline.store.item_store import ItemStore

logger = structlog.get_logger(__name__)


class PlanningStage(GenerativeStage):
    def __init__(
        self,
        store: ItemStore,
        client: GenerativeClient,
        config: StageConfiguration,
        context: OrganizationContext,
    ):
        super().__init__(store, client, config)
        self.context = context

    def _check_preconditions(self, artifact: Artifact, validation: Validation) -> Artifact:
        if validation.artifact_id != artifact.id:
            raise PreconditionFailed(
                f"Validation {validation.id} belongs to artifact {validation.artifact_id}, not {artifact.id}"
            )
        if not validation.recommendation.plannable:
            raise PreconditionFailed(
                f"Validation {validation.id} recommends {validation.recommendation.value}; "
                "planning needs pursue or modify"
            )
        current = self.store.get_artifact(artifact.id)
        if current is None:
            raise PreconditionFailed(f"Artifact {artifact.id} not found")
        if current.status != ArtifactStatus.VALIDATED:
            raise PreconditionFailed(f"Artifact {artifact.id} is {current.status.value}, not validated")
        return current

    def _build_prompt(self, artifact: Artifact, validation: Validation) -> str:
        return PLANNING_USER_PROMPT.format(
            title=artifact.title,
            statement=artifact.statement,
            potential_impact=artifact.potential_impact or "Not specified",
            confidence_level=validation.confidence_level.value,
            recommendation=validation.recommendation.value,
            summary=validation.summary or "Not provided",
            suggested_modifications=validation.suggested_modifications or "None",
            gaps=join_or(validation.gaps),
            ventures=self.context.ventures_text(),
            venture_keys=self.context.venture_keys(),
        )

    def plan(self, artifact: Artifact, validation: Validation) -> Plan:
        """Persist a ``drafted`` Plan and move the Artifact to ``planned``.

        Raises:
            PreconditionFailed: The validation is not pursue/modify, belongs to
                another artifact, or the artifact is not ``validated``.
            GenerativeCallError: The request failed.
            InvalidTransition: The artifact left ``validated`` during the call;
                no plan is stored.
            MalformedResponse: The plan descriptor did not decode.
        """
        current = self._check_preconditions(artifact, validation)

        response = self._complete(self._build_prompt(current, validation))
        descriptor = decode(response, PlanDescriptor)

        plan = Plan(
            artifact_id=current.id,
            status=PlanStatus.DRAFTED,
            **descriptor.model_dump(),
        )
        self.store.record_plan(plan)

        self._log(
            "design_plan",
            entity_type=EntityType.PLAN.value,
            entity_id=plan.id,
            summary=(
                f'Designed plan "{plan.title}" ({plan.output_kind.value}) - '
                f"{plan.timeline_units} weeks, ${plan.estimated_cost:,.0f}"
            ),
        )
        logger.info(
            "plan_drafted",
            plan_id=plan.id,
            artifact_id=current.id,
            output_kind=plan.output_kind.value,
            feasibility=plan.feasibility,
        )
        return plan
