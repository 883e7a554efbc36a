"""Semantic Scholar Graph API paper search."""

from datetime import date
from typing import Any, Optional

import httpx
import structlog

from research_pipeline.connectors.base import HttpConnector, SearchOptions
from research_pipeline.errors import ConnectorError
from research_pipeline.models.entities import Item, SourceId

logger = structlog.get_logger(__name__)

SEARCH_FIELDS = [
    "paperId", "title", "abstract", "year", "citationCount",
    "influentialCitationCount", "authors", "journal", "venue", "url",
    "publicationDate", "fieldsOfStudy", "externalIds",
]


def _published(paper: dict[str, Any]) -> Optional[date]:
    raw = paper.get("publicationDate")
    if raw:
        try:
            return date.fromisoformat(raw)
        except ValueError:
            pass
    year = paper.get("year")
    return date(int(year), 1, 1) if year else None


def normalize_paper(paper: dict[str, Any]) -> Optional[Item]:
    paper_id = paper.get("paperId")
    title = (paper.get("title") or "").strip()
    if not paper_id or not title:
        return None
    journal = paper.get("journal") or {}
    return Item(
        source_id=SourceId(provider=SemanticScholarConnector.name, external_id=paper_id),
        title=title,
        body=paper.get("abstract") or "",
        published_at=_published(paper),
        tags=paper.get("fieldsOfStudy") or [],
        authors=[a["name"] for a in paper.get("authors") or [] if a.get("name")],
        url=paper.get("url") or f"https://www.semanticscholar.org/paper/{paper_id}",
        venue=journal.get("name") or paper.get("venue") or None,
        citation_count=paper.get("citationCount") or 0,
        extra={
            "influential_citation_count": paper.get("influentialCitationCount") or 0,
            "external_ids": paper.get("externalIds") or {},
        },
    )


class SemanticScholarConnector(HttpConnector):
    name = "semantic_scholar"
    base_url = "https://api.semanticscholar.org/graph/v1"

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        min_interval: float = 1.0,
        timeout: float = 30.0,
    ):
        super().__init__(client=client, min_interval=min_interval, timeout=timeout)

    def search(self, query: str, options: SearchOptions) -> list[Item]:
        params: dict[str, Any] = {
            "query": query,
            "limit": min(options.max_results, 100),
            "fields": ",".join(SEARCH_FIELDS),
        }
        if options.min_date or options.max_date:
            start = options.min_date.isoformat() if options.min_date else ""
            end = options.max_date.isoformat() if options.max_date else ""
            params["publicationDateOrYear"] = f"{start}:{end}"

        data = self._get_json("paper/search", params)
        if not isinstance(data, dict):
            raise ConnectorError(self.name, "unexpected search payload")

        items = [item for item in (normalize_paper(p) for p in data.get("data") or []) if item]
        if options.sort_by == "date":
            items.sort(key=lambda i: i.published_at or date.min, reverse=True)
        logger.debug("semantic_scholar_search_complete", query=query[:80], items=len(items))
        return items
