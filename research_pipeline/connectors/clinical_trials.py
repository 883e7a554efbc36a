"""ClinicalTrials.gov v2 study search."""

from datetime import date
from typing import Any, Optional

import httpx
import structlog

from research_pipeline.connectors.base import HttpConnector, SearchOptions
from research_pipeline.errors import ConnectorError
from research_pipeline.models.entities import Item, SourceId

logger = structlog.get_logger(__name__)


def _parse_partial_date(raw: Optional[str]) -> Optional[date]:
    # Registry dates are "YYYY-MM" or "YYYY-MM-DD"
    if not raw:
        return None
    parts = raw.split("-")
    try:
        year = int(parts[0])
        month = int(parts[1]) if len(parts) > 1 else 1
        day = int(parts[2]) if len(parts) > 2 else 1
        return date(year, month, day)
    except (ValueError, IndexError):
        return None


def normalize_study(study: dict[str, Any]) -> Optional[Item]:
    protocol = study.get("protocolSection") or {}
    identification = protocol.get("identificationModule") or {}
    status = protocol.get("statusModule") or {}
    description = protocol.get("descriptionModule") or {}
    design = protocol.get("designModule") or {}
    arms = protocol.get("armsInterventionsModule") or {}
    sponsors = protocol.get("sponsorCollaboratorsModule") or {}
    conditions = (protocol.get("conditionsModule") or {}).get("conditions") or []

    nct_id = identification.get("nctId")
    title = identification.get("officialTitle") or identification.get("briefTitle") or ""
    if not nct_id or not title.strip():
        return None

    sponsor = (sponsors.get("leadSponsor") or {}).get("name")
    return Item(
        source_id=SourceId(provider=ClinicalTrialsConnector.name, external_id=nct_id),
        title=title.strip(),
        body=description.get("briefSummary") or "",
        published_at=_parse_partial_date((status.get("startDateStruct") or {}).get("date")),
        tags=conditions,
        authors=[sponsor] if sponsor else [],
        url=f"https://clinicaltrials.gov/study/{nct_id}",
        extra={
            "nct_id": nct_id,
            "status": status.get("overallStatus"),
            "phase": ", ".join(design.get("phases") or []) or "N/A",
            "study_type": design.get("studyType"),
            "enrollment": (design.get("enrollmentInfo") or {}).get("count"),
            "interventions": [
                {"type": i.get("type"), "name": i.get("name")}
                for i in arms.get("interventions") or []
            ],
            "sponsor": sponsor,
            "completion_date": (status.get("completionDateStruct") or {}).get("date"),
        },
    )


class ClinicalTrialsConnector(HttpConnector):
    name = "clinical_trials"
    base_url = "https://clinicaltrials.gov/api/v2"

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        min_interval: float = 0.0,
        timeout: float = 30.0,
    ):
        super().__init__(client=client, min_interval=min_interval, timeout=timeout)

    def search(self, query: str, options: SearchOptions) -> list[Item]:
        params: dict[str, Any] = {
            "query.term": query,
            "pageSize": min(options.max_results, 1000),
            "format": "json",
        }
        if options.sort_by == "date":
            params["sort"] = "LastUpdatePostDate:desc"
        if options.min_date:
            end = options.max_date.isoformat() if options.max_date else "MAX"
            params["filter.advanced"] = f"AREA[LastUpdatePostDate]RANGE[{options.min_date.isoformat()},{end}]"

        data = self._get_json("studies", params)
        if not isinstance(data, dict):
            raise ConnectorError(self.name, "unexpected studies payload")

        items = [item for item in (normalize_study(s) for s in data.get("studies") or []) if item]
        logger.debug("clinical_trials_search_complete", query=query[:80], items=len(items))
        return items
