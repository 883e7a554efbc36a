"""Scoring: one generative request per batch, all-or-nothing persistence."""

import structlog

from research_pipeline.config.context import OrganizationContext
from research_pipeline.config.prompts import SCORING_ITEM_TEMPLATE, SCORING_USER_PROMPT
from research_pipeline.config.stage_config import StageConfiguration
from research_pipeline.errors import MalformedResponse
from research_pipeline.llm.client import GenerativeClient
from research_pipeline.llm.parsing import decode
from research_pipeline.models.descriptors import ScoringResponse
from research_pipeline.models.entities import Item
from research_pipeline.models.enums import Bucket, EntityType
from research_pipeline.models.run import ScoreResult
from research_pipeline.stages.base import GenerativeStage, join_or, truncate
from research_pipeline.store.item_store import ItemStore

logger = structlog.get_logger(__name__)

DEFAULT_HIGH_THRESHOLD = 70.0
DEFAULT_MEDIUM_THRESHOLD = 40.0


def bucket_for(
    total: float,
    high_threshold: float = DEFAULT_HIGH_THRESHOLD,
    medium_threshold: float = DEFAULT_MEDIUM_THRESHOLD,
) -> Bucket:
    """Bucket for a total score; thresholds are inclusive lower bounds."""
    if total >= high_threshold:
        return Bucket.HIGH
    if total >= medium_threshold:
        return Bucket.MEDIUM
    return Bucket.LOW


class ScoringStage(GenerativeStage):
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
    def high_threshold(self) -> float:
        return self.policy("high_threshold", DEFAULT_HIGH_THRESHOLD)

    @property
    def medium_threshold(self) -> float:
        return self.policy("medium_threshold", DEFAULT_MEDIUM_THRESHOLD)

    @property
    def batch_size(self) -> int:
        return self.policy("batch_size", 10)

    def _build_prompt(self, items: list[Item]) -> str:
        items_block = "\n---\n".join(
            SCORING_ITEM_TEMPLATE.format(
                index=i,
                item_id=item.id,
                title=item.title,
                provider=item.source_id.provider,
                body=truncate(item.body, 500) or "No abstract available",
                tags=join_or(item.tags[:12], ", "),
            )
            for i, item in enumerate(items, start=1)
        )
        return SCORING_USER_PROMPT.format(
            focus_areas=self.context.focus_areas_text(),
            items_block=items_block,
        )

    def score(self, items: list[Item]) -> list[ScoreResult]:
        """Score one batch and persist every score/bucket in a single write.

        Raises:
            GenerativeCallError: The request failed.
            MalformedResponse: The response could not be decoded, a component
                was out of range, or an input item has no score. Nothing is
                persisted in that case.
        """
        if not items:
            return []

        response = self._complete(self._build_prompt(items))
        decoded = decode(response, ScoringResponse)

        by_id = {}
        for entry in decoded.scores:
            if entry.item_id in by_id:
                logger.warning("duplicate_score_entry", item_id=entry.item_id)
                continue
            by_id[entry.item_id] = entry

        missing = [item.id for item in items if item.id not in by_id]
        if missing:
            raise MalformedResponse(f"No score returned for items: {missing}", response)
        extra = set(by_id) - {item.id for item in items}
        if extra:
            logger.warning("unexpected_score_entries", item_ids=sorted(extra))

        results = []
        for item in items:
            entry = by_id[item.id]
            total = entry.relevance + entry.novelty + entry.actionability + entry.urgency
            results.append(ScoreResult(
                item_id=item.id,
                relevance=entry.relevance,
                novelty=entry.novelty,
                actionability=entry.actionability,
                urgency=entry.urgency,
                total=total,
                bucket=bucket_for(total, self.high_threshold, self.medium_threshold),
                reasoning=entry.reasoning,
            ))

        self.store.set_item_scores(results)

        counts = {bucket: sum(1 for r in results if r.bucket == bucket) for bucket in Bucket}
        self._log(
            "score_items",
            entity_type=EntityType.ITEM.value,
            summary=(
                f"Scored {len(results)} items: {counts[Bucket.HIGH]} high, "
                f"{counts[Bucket.MEDIUM]} medium, {counts[Bucket.LOW]} low"
            ),
        )
        logger.info(
            "score_batch_complete",
            items=len(results),
            high=counts[Bucket.HIGH],
            medium=counts[Bucket.MEDIUM],
            low=counts[Bucket.LOW],
            config_version=self.config.version,
        )
        return results
