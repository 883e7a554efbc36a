"""Source connectors: search providers normalized to Items."""

from .base import HttpConnector, RateLimiter, SearchOptions, SourceConnector
from .clinical_trials import ClinicalTrialsConnector
from .dedup import dedupe_items, normalize_title, titles_match
from .pmc import PmcClient, parse_full_text
from .pubmed import PubMedConnector
from .registry import ConnectorSet, SearchOutcome, build_default_connectors
from .semantic_scholar import SemanticScholarConnector

__all__ = [
    "ClinicalTrialsConnector",
    "ConnectorSet",
    "HttpConnector",
    "PmcClient",
    "PubMedConnector",
    "RateLimiter",
    "SearchOptions",
    "SearchOutcome",
    "SemanticScholarConnector",
    "SourceConnector",
    "build_default_connectors",
    "dedupe_items",
    "normalize_title",
    "parse_full_text",
    "titles_match",
]
