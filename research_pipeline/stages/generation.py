"""Generation: derive candidate Artifacts from one Item."""

import structlog
from pydantic import ValidationError

from research_pipeline.config.context import OrganizationContext
from research_pipeline.config.prompts import GENERATION_USER_PROMPT
from research_pipeline.config.stage_config import StageConfiguration
from research_pipeline.llm.client import GenerativeClient
from research_pipeline.llm.parsing import decode
from research_pipeline.models.descriptors import ArtifactDescriptor, GenerationResponse
from research_pipeline.models.entities import Artifact, Item
from research_pipeline.models.enums import ArtifactStatus, EntityType
from research_pipeline.stages.base import GenerativeStage, join_or, truncate
from research_pipeline.store.item_store import ItemStore

logger = structlog.get_logger(__name__)


class GenerationStage(GenerativeStage):
    def __init__(
        self,
        store: ItemStore,
        client: GenerativeClient,
        config: StageConfiguration,
        context: OrganizationContext,
    ):
        super().__init__(store, client, config)
        self.context = context

    @property
    def top_k(self) -> int:
        """How many eligible items one run fans out to."""
        return self.policy("top_k", 5)

    @property
    def full_text_max_chars(self) -> int:
        return self.policy("full_text_max_chars", 4000)

    def _full_text_excerpt(self, item: Item) -> str:
        full_text = self.store.get_full_text(item.id)
        if full_text is None or self.full_text_max_chars <= 0:
            return ""
        return f"\n- Full text excerpt:\n{truncate(full_text.text, self.full_text_max_chars)}"

    def _build_prompt(self, item: Item) -> str:
        return GENERATION_USER_PROMPT.format(
            title=item.title,
            provider=item.source_id.provider,
            body=item.body or "No abstract available",
            tags=join_or(item.tags, ", "),
            full_text=self._full_text_excerpt(item),
            ventures=self.context.ventures_text(),
            venture_keys=self.context.venture_keys(),
        )

    def generate(self, item: Item) -> list[Artifact]:
        """Persist every valid descriptor as a ``generated`` Artifact.

        Invalid descriptors are dropped with a warning. The surviving
        artifacts are written together, so a storage failure leaves none of
        them behind. The Item is not marked processed here.

        Raises:
            GenerativeCallError: The request failed.
            MalformedResponse: No ``{"artifacts": [...]}`` object in the response.
        """
        response = self._complete(self._build_prompt(item))
        decoded = decode(response, GenerationResponse)

        artifacts = []
        for index, raw in enumerate(decoded.artifacts):
            try:
                descriptor = ArtifactDescriptor.model_validate(raw)
            except ValidationError as e:
                logger.warning(
                    "artifact_descriptor_dropped",
                    item_id=item.id,
                    index=index,
                    errors=e.error_count(),
                    detail=str(e)[:200],
                )
                continue

            artifact = Artifact(
                item_id=item.id,
                status=ArtifactStatus.GENERATED,
                **descriptor.model_dump(),
            )
            artifacts.append(artifact)

        self.store.insert_artifacts(artifacts)

        dropped = len(decoded.artifacts) - len(artifacts)
        self._log(
            "generate_artifacts",
            entity_type=EntityType.ITEM.value,
            entity_id=item.id,
            summary=f"Generated {len(artifacts)} artifacts from: {item.title[:50]}"
            + (f" ({dropped} dropped)" if dropped else ""),
        )
        logger.info(
            "item_generation_complete",
            item_id=item.id,
            artifacts=len(artifacts),
            dropped=dropped,
        )
        return artifacts
