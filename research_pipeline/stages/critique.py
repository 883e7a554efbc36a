"""Critique: adversarial review of a Plan and the resulting Plan status."""

import structlog

from research_pipeline.config.prompts import CRITIQUE_USER_PROMPT
from research_pipeline.errors import PreconditionFailed
from research_pipeline.llm.parsing import decode
from research_pipeline.models.descriptors import CritiqueDescriptor
from research_pipeline.models.entities import Artifact, Critique, Plan
from research_pipeline.models.enums import Disposition, EntityType, PlanStatus
from research_pipeline.stages.base import GenerativeStage, join_or

logger = structlog.get_logger(__name__)


def plan_status_for(disposition: Disposition) -> PlanStatus:
    """Plan status for a critique disposition.

    Raises:
        ValueError: For anything outside the four dispositions.
    """
    disposition = Disposition(disposition)
    if disposition is Disposition.PROCEED:
        return PlanStatus.APPROVED
    if disposition is Disposition.REVISE:
        return PlanStatus.REVISION_NEEDED
    if disposition is Disposition.PAUSE:
        return PlanStatus.PAUSED
    if disposition is Disposition.ABANDON:
        return PlanStatus.REJECTED
    raise ValueError(f"Unknown disposition: {disposition!r}")


class CritiqueStage(GenerativeStage):
    def _build_prompt(self, plan: Plan, artifact: Artifact) -> str:
        return CRITIQUE_USER_PROMPT.format(
            title=plan.title,
            objective=plan.objective or "Not specified",
            output_kind=plan.output_kind.value,
            timeline_units=plan.timeline_units,
            estimated_cost=f"{plan.estimated_cost:,.0f}",
            methodology=plan.methodology or "Not specified",
            milestones=join_or([m.name for m in plan.milestones], ", "),
            statement=artifact.statement,
            assumptions=join_or(artifact.assumptions),
        )

    def critique(self, plan: Plan, artifact: Artifact) -> Critique:
        """Persist a Critique and apply its disposition to the Plan.

        Raises:
            PreconditionFailed: The plan was not derived from ``artifact``.
            GenerativeCallError: The request failed.
            MalformedResponse: The descriptor did not decode, including a
                disposition outside proceed/revise/pause/abandon.
        """
        if plan.artifact_id != artifact.id:
            raise PreconditionFailed(f"Plan {plan.id} was not derived from artifact {artifact.id}")

        response = self._complete(self._build_prompt(plan, artifact))
        descriptor = decode(response, CritiqueDescriptor)

        critique = Critique(plan_id=plan.id, **descriptor.model_dump())
        self.store.insert_critique(critique)
        status = plan_status_for(critique.disposition)
        self.store.update_plan_status(plan.id, status)

        self._log(
            "critique_plan",
            entity_type=EntityType.CRITIQUE.value,
            entity_id=critique.id,
            summary=(
                f'Reviewed "{plan.title}": {critique.disposition.value} -> {status.value} '
                f"({len(critique.weaknesses)} weaknesses, {len(critique.risks)} risks)"
            ),
        )
        logger.info(
            "plan_critiqued",
            plan_id=plan.id,
            disposition=critique.disposition.value,
            plan_status=status.value,
        )
        return critique
