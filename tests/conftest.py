"""Pytest configuration and fixtures."""

import json
import re
import threading
from typing import Callable, Optional, Union

import pytest

from research_pipeline.config.context import default_context
from research_pipeline.config.settings import Settings
from research_pipeline.config.stage_config import StageConfiguration, stage_policies
from research_pipeline.connectors.base import SearchOptions
from research_pipeline.connectors.registry import ConnectorSet
from research_pipeline.errors import ConnectorError
from research_pipeline.models.entities import Item, SourceId
from research_pipeline.models.enums import StageName
from research_pipeline.store.item_store import ItemStore

Responder = Union[str, Exception, Callable[[str], str]]

_ITEM_ID = re.compile(r"ID: (\S+)")
_TITLE = re.compile(r"- Title: (.+)")


class FakeClient:
    """Generative client that answers per stage.

    Test stage configurations use the stage name as the persona, so the
    system context identifies the stage. A responder is a fixed string, an
    exception to raise, or a callable receiving the user prompt.
    """

    def __init__(self, responders: Optional[dict[str, Responder]] = None):
        self.responders: dict[str, Responder] = dict(responders or {})
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def complete(self, system_context, messages) -> str:
        stage = system_context
        prompt = messages[-1].content
        with self._lock:
            self.calls.append((stage, prompt))
        responder = self.responders[stage]
        if isinstance(responder, Exception):
            raise responder
        if callable(responder):
            return responder(prompt)
        return responder

    def calls_for(self, stage: str) -> list[str]:
        return [prompt for s, prompt in self.calls if s == stage]


class FakeConnector:
    """In-memory connector returning fixed items, or failing."""

    def __init__(self, name: str, items: Optional[list[Item]] = None, error: Optional[str] = None):
        self.name = name
        self.items = list(items or [])
        self.error = error
        self.queries: list[str] = []

    def search(self, query: str, options: SearchOptions) -> list[Item]:
        self.queries.append(query)
        if self.error:
            raise ConnectorError(self.name, self.error)
        return [item.model_copy(deep=True) for item in self.items[: options.max_results]]


# =============================================================================
# Response builders
# =============================================================================

def split_total(total: float) -> dict[str, float]:
    """Spread a 0-100 total over the four bounded scoring components."""
    relevance = min(30.0, total)
    novelty = min(25.0, total - relevance)
    actionability = min(25.0, total - relevance - novelty)
    urgency = total - relevance - novelty - actionability
    return {
        "relevance": relevance,
        "novelty": novelty,
        "actionability": actionability,
        "urgency": urgency,
    }


def scoring_responder(totals: dict[str, float], default: float = 50.0) -> Callable[[str], str]:
    """Score every item in the prompt; ``totals`` maps a title substring to a total."""

    def respond(prompt: str) -> str:
        scores = []
        for block in prompt.split("\n---\n"):
            match = _ITEM_ID.search(block)
            if not match:
                continue
            total = next((t for key, t in totals.items() if key in block), default)
            scores.append({"item_id": match.group(1), "reasoning": "fits", **split_total(total)})
        return json.dumps({"scores": scores})

    return respond


def artifact_json(title: str, confidence: float = 0.7, **extra) -> dict:
    return {
        "title": title,
        "statement": f"{title} improves outcomes",
        "rationale": "Mechanistic plausibility",
        "assumptions": ["effect size is meaningful"],
        "predictions": ["measurable change at 12 weeks"],
        "required_evidence": ["randomized data"],
        "confidence": confidence,
        "potential_impact": "high",
        **extra,
    }


def generation_responder(artifacts_by_item: dict[str, list[dict]]) -> Callable[[str], str]:
    """``artifacts_by_item`` maps an item-title substring to the artifacts to return."""

    def respond(prompt: str) -> str:
        title = _TITLE.search(prompt).group(1)
        for key, artifacts in artifacts_by_item.items():
            if key in title:
                return json.dumps({"artifacts": artifacts})
        return json.dumps({"artifacts": []})

    return respond


def validation_json(recommendation: str = "pursue", confidence_level: str = "high") -> str:
    return json.dumps({
        "supporting_evidence": [{"source": "PMID 1", "summary": "supports", "strength": "strong"}],
        "contradicting_evidence": [],
        "gaps": ["long-term data"],
        "key_references": ["PMID 1"],
        "confidence_level": confidence_level,
        "recommendation": recommendation,
        "summary": "Evidence is consistent",
        "suggested_modifications": None,
    })


def validation_responder(by_title: dict[str, str], default: str = "pursue") -> Callable[[str], str]:
    def respond(prompt: str) -> str:
        title = _TITLE.search(prompt).group(1)
        recommendation = next((r for key, r in by_title.items() if key in title), default)
        return validation_json(recommendation)

    return respond


def plan_json(title: str = "Pilot study", output_kind: str = "trial") -> str:
    return json.dumps({
        "title": title,
        "objective": "Test the hypothesis in a pilot cohort",
        "output_kind": output_kind,
        "target_venture": "academic",
        "methodology": "Randomized pilot",
        "milestones": [{"name": "Protocol", "deliverable": "IRB approval", "target_offset_days": 30}],
        "resources": [{"kind": "personnel", "description": "Research nurse", "estimated_cost": 20000}],
        "timeline_units": 24,
        "estimated_cost": 50000,
        "feasibility": 0.7,
        "risk_notes": "Recruitment",
        "success_metrics": ["enrollment"],
        "next_steps": ["draft protocol"],
    })


def critique_json(disposition: str = "proceed") -> str:
    return json.dumps({
        "open_questions": ["Is the effect durable?"],
        "weaknesses": [{"area": "design", "issue": "small sample", "severity": "major"}],
        "risks": [{"risk": "slow recruitment", "likelihood": "medium", "impact": "high", "mitigation": "add sites"}],
        "competitive_notes": "",
        "compliance_notes": "IRB needed",
        "mitigations": ["multi-site"],
        "disposition": disposition,
        "rationale": "Worth a pilot",
        "key_success_factors": ["recruitment"],
    })


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        max_concurrent_llm_calls=2,
        generation_top_k=5,
        discovery_providers=["pubmed", "semantic_scholar"],
        validation_providers=["pubmed", "semantic_scholar"],
    )


@pytest.fixture
def stage_configs(settings: Settings) -> dict[StageName, StageConfiguration]:
    policies = stage_policies(settings)
    return {stage: StageConfiguration.build(stage, stage.value, policies[stage]) for stage in StageName}


@pytest.fixture
def context():
    return default_context()


@pytest.fixture
def store() -> ItemStore:
    store = ItemStore.from_url()
    yield store
    store.close()


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def make_item() -> Callable[..., Item]:
    def _make(
        title: str,
        provider: str = "pubmed",
        external_id: Optional[str] = None,
        body: str = "Abstract text",
        **kwargs,
    ) -> Item:
        return Item(
            source_id=SourceId(provider=provider, external_id=external_id),
            title=title,
            body=body,
            **kwargs,
        )

    return _make


@pytest.fixture
def sample_items(make_item) -> list[Item]:
    return [
        make_item("Myostatin inhibition preserves lean mass after bariatric surgery", external_id="1001"),
        make_item("Surgical video foundation models for phase recognition", external_id="1002"),
        make_item("Digital twin calibration for perioperative risk", provider="semantic_scholar",
                  external_id="s-1003"),
    ]


@pytest.fixture
def connectors(sample_items) -> ConnectorSet:
    return ConnectorSet([
        FakeConnector("pubmed", sample_items[:2]),
        FakeConnector("semantic_scholar", sample_items[2:]),
    ])
