"""Enrichment: attach open-access full text to PubMed items before Generation."""

from dataclasses import dataclass, field

import structlog

from research_pipeline.connectors.pmc import PmcClient
from research_pipeline.errors import ConnectorError
from research_pipeline.models.entities import FullText, Item
from research_pipeline.models.enums import EntityType, StageName
from research_pipeline.store.item_store import ItemStore

logger = structlog.get_logger(__name__)


@dataclass
class EnrichmentResult:
    full_texts: dict[str, FullText] = field(default_factory=dict)
    fetched: int = 0
    errors: list[ConnectorError] = field(default_factory=list)


class EnrichmentStage:
    """Fetches and caches full text for up to ``max_items`` items per call.

    Cached full text is reused without a request. A failed lookup is recorded
    and the item goes on to Generation with its abstract only.
    """

    def __init__(self, store: ItemStore, client: PmcClient, max_items: int = 5):
        self.store = store
        self.client = client
        self.max_items = max_items

    def enrich(self, items: list[Item]) -> EnrichmentResult:
        result = EnrichmentResult()
        for item in items:
            if len(result.full_texts) >= self.max_items:
                break

            cached = self.store.get_full_text(item.id)
            if cached is not None:
                result.full_texts[item.id] = cached
                continue

            try:
                full_text = self.client.fetch(item)
            except ConnectorError as e:
                logger.warning("full_text_fetch_failed", item_id=item.id, error=e.message)
                result.errors.append(e)
                continue
            if full_text is None:
                continue

            self.store.cache_full_text(full_text)
            result.full_texts[item.id] = full_text
            result.fetched += 1
            self.store.log_activity(
                agent_name=StageName.DISCOVERY.value,
                action="full_text_cached",
                entity_type=EntityType.ITEM.value,
                entity_id=item.id,
                summary=f"{full_text.pmcid}: {len(full_text.sections)} sections for {item.title[:50]}",
            )

        logger.info(
            "enrichment_complete",
            items=len(items),
            with_full_text=len(result.full_texts),
            fetched=result.fetched,
            errors=len(result.errors),
        )
        return result
