"""PubMed via NCBI E-utilities: esearch (JSON) for PMIDs, efetch (XML) for records."""

import xml.etree.ElementTree as ET
from datetime import date
from typing import Optional

import httpx
import structlog

from research_pipeline.connectors.base import HttpConnector, SearchOptions
from research_pipeline.errors import ConnectorError
from research_pipeline.models.entities import Item, SourceId

logger = structlog.get_logger(__name__)

# Reviews and meta-analyses are excluded; only original studies are kept.
ORIGINAL_STUDIES_FILTER = (
    'NOT (Review[pt] OR Systematic Review[pt] OR Meta-Analysis[pt] OR "review"[Title] '
    'OR "systematic review"[Title] OR "meta-analysis"[Title])'
)

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}


def _text(element: Optional[ET.Element]) -> str:
    # itertext keeps inline markup such as <i> inside titles
    return "".join(element.itertext()).strip() if element is not None else ""


def _parse_month(value: str) -> int:
    if value.isdigit():
        return min(max(int(value), 1), 12)
    return _MONTHS.get(value[:3].lower(), 1)


def _parse_pub_date(pub_date: Optional[ET.Element]) -> Optional[date]:
    if pub_date is None:
        return None
    year = _text(pub_date.find("Year")) or _text(pub_date.find("MedlineDate"))[:4]
    if not year.isdigit():
        return None
    month = _parse_month(_text(pub_date.find("Month")) or "1")
    day_text = _text(pub_date.find("Day"))
    day = int(day_text) if day_text.isdigit() else 1
    try:
        return date(int(year), month, day)
    except ValueError:
        return date(int(year), month, 1)


def parse_articles(xml_text: str) -> list[Item]:
    """Normalize an efetch ``PubmedArticleSet`` document to Items."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ConnectorError(PubMedConnector.name, f"invalid XML: {e}") from e

    items = []
    for article in root.iter("PubmedArticle"):
        citation = article.find("MedlineCitation")
        if citation is None:
            continue
        pmid = _text(citation.find("PMID"))
        data = citation.find("Article")
        title = _text(data.find("ArticleTitle")) if data is not None else ""
        if not pmid or not title:
            continue

        abstract = " ".join(_text(t) for t in data.findall("Abstract/AbstractText") if _text(t))
        authors = []
        for author in data.findall("AuthorList/Author"):
            name = f"{_text(author.find('ForeName'))} {_text(author.find('LastName'))}".strip()
            if name:
                authors.append(name)

        mesh_terms = [_text(m) for m in citation.findall("MeshHeadingList/MeshHeading/DescriptorName")]
        keywords = [_text(k) for k in citation.findall("KeywordList/Keyword")]
        pub_types = [_text(t) for t in data.findall("PublicationTypeList/PublicationType")]
        doi = None
        for article_id in article.findall("PubmedData/ArticleIdList/ArticleId"):
            if article_id.get("IdType") == "doi":
                doi = _text(article_id)

        items.append(Item(
            source_id=SourceId(provider=PubMedConnector.name, external_id=pmid),
            title=title,
            body=abstract,
            published_at=_parse_pub_date(data.find("Journal/JournalIssue/PubDate")),
            tags=[t for t in mesh_terms + keywords if t],
            authors=authors,
            url=f"https://pubmed.ncbi.nlm.nih.gov/{pmid}/",
            venue=_text(data.find("Journal/Title")) or None,
            extra={"pmid": pmid, "doi": doi, "publication_types": pub_types},
        ))
    return items


class PubMedConnector(HttpConnector):
    name = "pubmed"
    base_url = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        min_interval: float = 0.35,
        timeout: float = 30.0,
        api_key: Optional[str] = None,
        original_studies_only: bool = True,
    ):
        super().__init__(client=client, min_interval=min_interval, timeout=timeout)
        self.api_key = api_key
        self.original_studies_only = original_studies_only

    def _params(self, **params) -> dict:
        if self.api_key:
            params["api_key"] = self.api_key
        return params

    def search(self, query: str, options: SearchOptions) -> list[Item]:
        term = f"({query}) {ORIGINAL_STUDIES_FILTER}" if self.original_studies_only else query
        params = self._params(
            db="pubmed",
            term=term,
            retmax=options.max_results,
            sort="pub_date" if options.sort_by == "date" else "relevance",
            retmode="json",
        )
        if options.min_date:
            params.update(
                datetype="pdat",
                mindate=options.min_date.strftime("%Y/%m/%d"),
                maxdate=(options.max_date or date.today()).strftime("%Y/%m/%d"),
            )

        data = self._get_json("esearch.fcgi", params)
        if not isinstance(data, dict):
            raise ConnectorError(self.name, "unexpected esearch payload")
        pmids = data.get("esearchresult", {}).get("idlist", [])
        if not pmids:
            logger.debug("pubmed_no_results", query=query[:80])
            return []

        response = self._get("efetch.fcgi", self._params(db="pubmed", id=",".join(pmids), retmode="xml"))
        items = parse_articles(response.text)
        logger.debug("pubmed_search_complete", query=query[:80], pmids=len(pmids), items=len(items))
        return items
