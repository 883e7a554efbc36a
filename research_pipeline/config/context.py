"""Organizational context: research domains scanned by Discovery and the
ventures that Generation and Planning target.

The built-in values can be replaced with a JSON file of the form
``{"domains": [{"name": ..., "keywords": [...]}], "ventures": [...]}``.
Once stored, domains are managed through the Item Store; the context only
seeds an empty domains table.
"""

import json
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = structlog.get_logger(__name__)


class ResearchDomain(BaseModel):
    """A named keyword set scanned by Discovery.

    ``name`` is the identifier: lowercased, with whitespace runs replaced by
    underscores.
    """

    name: str = Field(min_length=1)
    keywords: list[str] = Field(min_length=1)
    active: bool = True

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        name = "_".join(value.lower().split())
        if not name:
            raise ValueError("domain name must not be blank")
        return name

    def query(self) -> str:
        """Keyword query: terms OR-joined."""
        return " OR ".join(self.keywords)


class Venture(BaseModel):
    key: str = Field(description="Identifier used in model responses")
    name: str
    kind: str = ""
    focus: str = ""


class OrganizationContext(BaseModel):
    domains: list[ResearchDomain] = Field(default_factory=list)
    ventures: list[Venture] = Field(default_factory=list)

    def focus_areas_text(self) -> str:
        return "\n".join(f"   - {d.name}: {', '.join(d.keywords[:4])}" for d in self.domains)

    def ventures_text(self) -> str:
        lines = []
        for i, v in enumerate(self.ventures, start=1):
            kind = f" ({v.kind})" if v.kind else ""
            lines.append(f"{i}. {v.name}{kind} [{v.key}]: {v.focus}")
        return "\n".join(lines)

    def venture_keys(self) -> str:
        return "|".join(v.key for v in self.ventures)


DEFAULT_DOMAINS = [
    ResearchDomain(
        name="myostatin",
        keywords=["myostatin inhibitor", "GLP-1 muscle loss", "lean mass preservation", "activin receptor"],
    ),
    ResearchDomain(
        name="surgical_ai",
        keywords=["surgical video analysis", "endoscopy artificial intelligence", "surgical skill assessment"],
    ),
    ResearchDomain(
        name="bariatric",
        keywords=["endoscopic sleeve gastroplasty", "bariatric endoscopy", "intragastric balloon"],
    ),
    ResearchDomain(
        name="digital_twin",
        keywords=["digital twin", "cardiometabolic modeling", "patient-specific simulation"],
    ),
    ResearchDomain(
        name="ai_medicine",
        keywords=["large language model clinical", "medical foundation model", "clinical decision support AI"],
    ),
]

DEFAULT_VENTURES = [
    Venture(
        key="muscleon",
        name="Muscleon",
        kind="Pre-seed biotech",
        focus="Myostatin inhibitors for muscle preservation during GLP-1 therapy",
    ),
    Venture(
        key="diagnis",
        name="Diagnis/SCAI",
        kind="Startup",
        focus="AI-powered surgical coaching for endoscopy",
    ),
    Venture(
        key="cemiendo",
        name="Cemiendo",
        kind="Clinical practice",
        focus="Bariatric endoscopy procedures",
    ),
    Venture(
        key="academic",
        name="Hacettepe University",
        kind="Academic",
        focus="Digital twins, cardiometabolic care, grants and publications",
    ),
]


def default_context() -> OrganizationContext:
    return OrganizationContext(domains=list(DEFAULT_DOMAINS), ventures=list(DEFAULT_VENTURES))


def load_context(path: Optional[str] = None) -> OrganizationContext:
    """Load organizational context from a JSON file, or the built-in defaults.

    Sections missing from the file keep their defaults.

    Raises:
        ValueError: If the file exists but is not valid JSON for the schema.
    """
    context = default_context()
    if not path:
        return context

    file_path = Path(path)
    if not file_path.exists():
        logger.warning("context_file_missing", path=str(file_path))
        return context

    try:
        raw = json.loads(file_path.read_text(encoding="utf-8"))
        loaded = OrganizationContext.model_validate({
            "domains": raw.get("domains", [d.model_dump() for d in context.domains]),
            "ventures": raw.get("ventures", [v.model_dump() for v in context.ventures]),
        })
    except (json.JSONDecodeError, ValidationError, AttributeError) as e:
        raise ValueError(f"Invalid context file {file_path}: {e}") from e

    logger.info(
        "context_loaded",
        path=str(file_path),
        domains=len(loaded.domains),
        ventures=len(loaded.ventures),
    )
    return loaded
