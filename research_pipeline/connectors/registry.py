"""Fan a query out to several connectors and merge the results."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, Optional

import structlog

from research_pipeline.config.settings import Settings
from research_pipeline.connectors.base import SearchOptions, SourceConnector
from research_pipeline.connectors.clinical_trials import ClinicalTrialsConnector
from research_pipeline.connectors.dedup import dedupe_items
from research_pipeline.connectors.pubmed import PubMedConnector
from research_pipeline.connectors.semantic_scholar import SemanticScholarConnector
from research_pipeline.errors import ConnectorError
from research_pipeline.models.entities import Item

logger = structlog.get_logger(__name__)


@dataclass
class SearchOutcome:
    items: list[Item] = field(default_factory=list)
    errors: list[ConnectorError] = field(default_factory=list)
    providers_queried: list[str] = field(default_factory=list)
    total_before_dedup: int = 0


class ConnectorSet:
    """Named connectors queried concurrently; one failing provider never fails the search.

    Each connector rate-limits itself, so different providers run in parallel
    while requests to the same provider stay spaced out.
    """

    def __init__(
        self,
        connectors: Iterable[SourceConnector],
        similarity_threshold: float = 97.0,
        min_title_length: int = 24,
    ):
        self.connectors = {c.name: c for c in connectors}
        self.similarity_threshold = similarity_threshold
        self.min_title_length = min_title_length

    @property
    def names(self) -> list[str]:
        return list(self.connectors)

    def _search_one(self, name: str, query: str, options: SearchOptions) -> list[Item]:
        connector = self.connectors[name]
        try:
            return connector.search(query, options)
        except ConnectorError:
            raise
        except Exception as e:
            raise ConnectorError(name, str(e) or type(e).__name__) from e

    def search(
        self,
        query: str,
        options: SearchOptions,
        providers: Optional[list[str]] = None,
    ) -> SearchOutcome:
        """Query ``providers`` (default: all) and return de-duplicated Items plus per-provider errors."""
        requested = providers if providers is not None else self.names
        selected = [p for p in dict.fromkeys(requested) if p in self.connectors]
        unknown = [p for p in requested if p not in self.connectors]
        if unknown:
            logger.warning("unknown_providers_skipped", providers=unknown)

        outcome = SearchOutcome(providers_queried=selected)
        if not selected:
            return outcome

        collected: list[Item] = []
        with ThreadPoolExecutor(max_workers=len(selected), thread_name_prefix="connector") as pool:
            futures = {name: pool.submit(self._search_one, name, query, options) for name in selected}
            for name in selected:
                try:
                    results = futures[name].result()
                except ConnectorError as e:
                    logger.warning("connector_failed", provider=name, error=e.message)
                    outcome.errors.append(e)
                    continue
                logger.debug("connector_results", provider=name, count=len(results))
                collected.extend(results)

        outcome.total_before_dedup = len(collected)
        outcome.items = dedupe_items(collected, self.similarity_threshold, self.min_title_length)
        logger.info(
            "search_complete",
            query=query[:80],
            providers=selected,
            before_dedup=outcome.total_before_dedup,
            after_dedup=len(outcome.items),
            errors=len(outcome.errors),
        )
        return outcome

    def close(self) -> None:
        for connector in self.connectors.values():
            close = getattr(connector, "close", None)
            if close is not None:
                close()


def build_default_connectors(settings: Settings) -> ConnectorSet:
    """The bundled PubMed, Semantic Scholar and ClinicalTrials.gov connectors."""
    return ConnectorSet(
        [
            PubMedConnector(
                min_interval=settings.pubmed_min_interval,
                timeout=settings.connector_timeout,
                api_key=settings.ncbi_api_key,
            ),
            SemanticScholarConnector(
                min_interval=settings.semantic_scholar_min_interval,
                timeout=settings.connector_timeout,
            ),
            ClinicalTrialsConnector(
                min_interval=settings.clinical_trials_min_interval,
                timeout=settings.connector_timeout,
            ),
        ],
        similarity_threshold=settings.dedup_similarity_threshold,
        min_title_length=settings.dedup_min_title_length,
    )
