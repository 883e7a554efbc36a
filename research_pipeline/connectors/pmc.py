"""PubMed Central open-access full text via NCBI E-utilities.

elink (JSON) maps a PMID to its PMC record; efetch (XML) returns the article
body, which is flattened into titled sections.
"""

import xml.etree.ElementTree as ET
from typing import Optional

import httpx
import structlog

from research_pipeline.connectors.base import HttpConnector, RateLimiter
from research_pipeline.connectors.pubmed import PubMedConnector, _text
from research_pipeline.errors import ConnectorError
from research_pipeline.models.entities import FullText, FullTextSection, Item

logger = structlog.get_logger(__name__)


def _section(sec: ET.Element) -> FullTextSection:
    title = _text(sec.find("title")) or "Untitled Section"
    paragraphs = [_text(p) for p in sec.findall("p")]
    text = "\n\n".join(p for p in paragraphs if p)
    for child in sec.findall("sec"):
        sub = _section(child)
        text += f"\n\n### {sub.title}\n{sub.text}"
    return FullTextSection(title=title, text=text.strip())


def parse_full_text(xml_text: str) -> list[FullTextSection]:
    """Top-level body sections of a ``pmc-articleset`` (or bare ``article``) document."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ConnectorError(PmcClient.name, f"invalid XML: {e}") from e

    article = root if root.tag == "article" else root.find("article")
    if article is None:
        return []
    body = article.find("body")
    if body is None:
        return []
    return [_section(sec) for sec in body.findall("sec")]


class PmcClient(HttpConnector):
    """Looks up and fetches open-access full text for PubMed items."""

    name = "pmc"
    base_url = PubMedConnector.base_url

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        min_interval: float = 0.35,
        timeout: float = 30.0,
        api_key: Optional[str] = None,
        limiter: Optional[RateLimiter] = None,
    ):
        super().__init__(client=client, min_interval=min_interval, timeout=timeout, limiter=limiter)
        self.api_key = api_key

    def _params(self, **params) -> dict:
        if self.api_key:
            params["api_key"] = self.api_key
        return params

    def find_pmcid(self, pmid: str) -> Optional[str]:
        """``PMC<id>`` for ``pmid``, or None when there is no open-access copy."""
        data = self._get_json("elink.fcgi", self._params(dbfrom="pubmed", db="pmc", id=pmid, retmode="json"))
        if not isinstance(data, dict):
            raise ConnectorError(self.name, "unexpected elink payload")
        linksets = data.get("linksets") or [{}]
        for linkset in linksets[0].get("linksetdbs") or []:
            if linkset.get("dbto") == "pmc" and linkset.get("links"):
                return f"PMC{linkset['links'][0]}"
        return None

    def fetch_sections(self, pmcid: str) -> list[FullTextSection]:
        response = self._get(
            "efetch.fcgi",
            self._params(db="pmc", id=pmcid.removeprefix("PMC"), rettype="full", retmode="xml"),
        )
        return parse_full_text(response.text)

    def fetch(self, item: Item) -> Optional[FullText]:
        """Full text for a PubMed item, or None if it has none.

        Raises:
            ConnectorError: On transport errors, bad status codes or bad payloads.
        """
        if item.source_id.provider != PubMedConnector.name:
            return None
        pmid = item.source_id.external_id or item.extra.get("pmid")
        if not pmid:
            return None

        pmcid = self.find_pmcid(pmid)
        if pmcid is None:
            logger.debug("pmc_not_available", item_id=item.id, pmid=pmid)
            return None

        sections = self.fetch_sections(pmcid)
        if not sections:
            logger.debug("pmc_empty_body", item_id=item.id, pmcid=pmcid)
            return None
        return FullText(item_id=item.id, pmcid=pmcid, sections=sections)
