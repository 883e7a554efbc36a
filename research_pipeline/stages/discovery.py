"""Discovery: search the connectors and persist new Items.

Runs either one custom query or a scan over every active research domain.
Domains come from the Item Store once any are stored, otherwise from the
organizational context. A failing provider is recorded and skipped.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional

import structlog

from research_pipeline.config.context import OrganizationContext, ResearchDomain
from research_pipeline.config.stage_config import StageConfiguration
from research_pipeline.connectors.base import SearchOptions
from research_pipeline.connectors.dedup import dedupe_items
from research_pipeline.connectors.registry import ConnectorSet
from research_pipeline.errors import ConnectorError
from research_pipeline.models.entities import Item
from research_pipeline.models.enums import EntityType
from research_pipeline.store.item_store import ItemStore

logger = structlog.get_logger(__name__)


@dataclass
class DiscoveryResult:
    item_ids: list[str] = field(default_factory=list)
    created: int = 0
    duplicates: int = 0
    errors: list[ConnectorError] = field(default_factory=list)


class DiscoveryStage:
    def __init__(
        self,
        store: ItemStore,
        connectors: ConnectorSet,
        config: StageConfiguration,
        context: OrganizationContext,
    ):
        self.store = store
        self.connectors = connectors
        self.config = config
        self.context = context

    @property
    def name(self) -> str:
        return self.config.stage.value

    def scan_domains(self) -> list[ResearchDomain]:
        stored = self.store.list_domains()
        domains = stored if stored else self.context.domains
        return [d for d in domains if d.active]

    def _options(self, days_back: int, max_results: int) -> SearchOptions:
        return SearchOptions(
            max_results=max_results,
            min_date=date.today() - timedelta(days=days_back),
            sort_by="date",
        )

    def discover(
        self,
        query: Optional[str] = None,
        days_back: Optional[int] = None,
        providers: Optional[list[str]] = None,
        max_results: Optional[int] = None,
    ) -> DiscoveryResult:
        """Search and persist. Items already stored are reported by their existing id."""
        days_back = days_back or self.config.policy.get("days_back", 7)
        max_results = max_results or self.config.policy.get("max_results", 20)
        providers = providers if providers is not None else self.config.policy.get("providers")
        options = self._options(days_back, max_results)

        if query:
            searches = [("query", query)]
        else:
            searches = [(domain.name, domain.query()) for domain in self.scan_domains()]

        result = DiscoveryResult()
        found: list[Item] = []
        for label, search_query in searches:
            outcome = self.connectors.search(search_query, options, providers=providers)
            found.extend(outcome.items)
            for error in outcome.errors:
                result.errors.append(error)
                self.store.log_activity(
                    agent_name=self.name,
                    action="connector_error",
                    summary=f"{error.provider} failed for {label}: {error.message}",
                )
            self.store.log_activity(
                agent_name=self.name,
                action="query_search" if query else "domain_search",
                entity_type=EntityType.ITEM.value,
                summary=f"Found {len(outcome.items)} items for {label}",
            )

        # Domains overlap, so merge across searches before persisting
        found = dedupe_items(found, self.connectors.similarity_threshold, self.connectors.min_title_length)

        seen: set[str] = set()
        for item in found:
            item_id, created = self.store.insert_item(item)
            if created:
                result.created += 1
            else:
                result.duplicates += 1
            if item_id not in seen:
                seen.add(item_id)
                result.item_ids.append(item_id)

        logger.info(
            "stage_discovery_complete",
            searches=len(searches),
            items=len(result.item_ids),
            created=result.created,
            duplicates=result.duplicates,
            connector_errors=len(result.errors),
        )
        return result
