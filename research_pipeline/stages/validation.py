"""Validation: gather literature for an Artifact and record a verdict.

Provider failures only shrink the evidence. A failed or undecodable
generative call raises ValidationIncomplete and leaves the Artifact alone.
"""

from typing import Optional

import structlog

from research_pipeline.config.prompts import NO_EVIDENCE_FOUND, VALIDATION_USER_PROMPT
from research_pipeline.config.stage_config import StageConfiguration
from research_pipeline.connectors.base import SearchOptions
from research_pipeline.connectors.registry import ConnectorSet
from research_pipeline.errors import (
    ConnectorError,
    GenerativeCallError,
    InvalidTransition,
    MalformedResponse,
    PreconditionFailed,
    ValidationIncomplete,
)
from research_pipeline.llm.client import GenerativeClient
from research_pipeline.llm.parsing import decode
from research_pipeline.models.descriptors import ValidationDescriptor
from research_pipeline.models.entities import Artifact, Item, Validation
from research_pipeline.models.enums import ArtifactStatus, EntityType, Recommendation
from research_pipeline.stages.base import GenerativeStage, join_or, truncate
from research_pipeline.store.item_store import ItemStore

logger = structlog.get_logger(__name__)

VALIDATABLE_STATUSES = frozenset({
    ArtifactStatus.GENERATED,
    ArtifactStatus.VALIDATING,
    ArtifactStatus.VALIDATED,
})


def artifact_status_for(recommendation: Recommendation) -> ArtifactStatus:
    """Artifact status implied by a validation recommendation."""
    recommendation = Recommendation(recommendation)
    if recommendation in (Recommendation.PURSUE, Recommendation.MODIFY):
        return ArtifactStatus.VALIDATED
    if recommendation is Recommendation.REJECT:
        return ArtifactStatus.REJECTED
    if recommendation is Recommendation.NEEDS_MORE_RESEARCH:
        return ArtifactStatus.VALIDATING
    raise ValueError(f"Unknown recommendation: {recommendation!r}")


def build_query(artifact: Artifact, max_chars: int = 200) -> str:
    return truncate(f"{artifact.title} {artifact.statement}", max_chars).strip()


def summarize_evidence(items: list[Item]) -> str:
    if not items:
        return NO_EVIDENCE_FOUND
    return "\n".join(
        f"- {item.title} ({item.source_id.provider}"
        + (f", {item.source_id.external_id}" if item.source_id.external_id else "")
        + f"): {truncate(item.body, 200)}"
        for item in items
    )


class ValidationStage(GenerativeStage):
    def __init__(
        self,
        store: ItemStore,
        client: GenerativeClient,
        config: StageConfiguration,
        connectors: ConnectorSet,
    ):
        super().__init__(store, client, config)
        self.connectors = connectors

    def _gather_evidence(self, artifact: Artifact, error_sink: Optional[list[ConnectorError]]) -> list[Item]:
        query = build_query(artifact, self.policy("query_max_chars", 200))
        outcome = self.connectors.search(
            query,
            SearchOptions(max_results=self.policy("max_results", 15)),
            providers=self.policy("providers"),
        )
        for error in outcome.errors:
            if error_sink is not None:
                error_sink.append(error)
            self._log(
                "connector_error",
                entity_type=EntityType.ARTIFACT.value,
                entity_id=artifact.id,
                summary=f"{error.provider} failed during evidence search: {error.message}",
            )
        return outcome.items

    def _build_prompt(self, artifact: Artifact, evidence: list[Item]) -> str:
        return VALIDATION_USER_PROMPT.format(
            title=artifact.title,
            statement=artifact.statement,
            rationale=artifact.rationale or "Not provided",
            assumptions=join_or(artifact.assumptions),
            predictions=join_or(artifact.predictions),
            evidence_block=summarize_evidence(evidence),
        )

    def validate(
        self,
        artifact: Artifact,
        error_sink: Optional[list[ConnectorError]] = None,
    ) -> Validation:
        """Validate ``artifact`` against freshly retrieved evidence.

        Args:
            artifact: The artifact to validate.
            error_sink: Receives the ConnectorErrors of providers that failed.

        Raises:
            PreconditionFailed: The artifact is rejected or already planned.
            ValidationIncomplete: The generative call failed or its response
                did not decode. No record is written and the status is unchanged.
        """
        current = self.store.get_artifact(artifact.id)
        if current is None:
            raise PreconditionFailed(f"Artifact {artifact.id} not found")
        if current.status not in VALIDATABLE_STATUSES:
            raise PreconditionFailed(f"Artifact {artifact.id} is {current.status.value}; cannot validate")

        evidence = self._gather_evidence(current, error_sink)

        try:
            response = self._complete(self._build_prompt(current, evidence))
            descriptor = decode(response, ValidationDescriptor)
        except (GenerativeCallError, MalformedResponse) as e:
            logger.warning(
                "validation_incomplete",
                artifact_id=artifact.id,
                error_kind=e.kind,
                error=str(e)[:200],
            )
            raise ValidationIncomplete(f"{e.kind}: {e}") from e

        validation = Validation(
            artifact_id=current.id,
            evidence_count=len(evidence),
            **descriptor.model_dump(),
        )
        self.store.insert_validation(validation)

        target = artifact_status_for(validation.recommendation)
        try:
            self.store.transition_artifact(current.id, target)
        except InvalidTransition:
            # A newer decision already moved the artifact further along
            logger.warning(
                "artifact_status_kept",
                artifact_id=current.id,
                recommendation=validation.recommendation.value,
            )

        self._log(
            "validate_artifact",
            entity_type=EntityType.VALIDATION.value,
            entity_id=validation.id,
            summary=(
                f'Validated "{truncate(current.title, 60)}": {validation.recommendation.value} '
                f"({validation.confidence_level.value} confidence, {len(evidence)} sources)"
            ),
        )
        logger.info(
            "artifact_validated",
            artifact_id=current.id,
            recommendation=validation.recommendation.value,
            confidence=validation.confidence_level.value,
            evidence=len(evidence),
        )
        return validation
