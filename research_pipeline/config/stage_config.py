"""Per-stage persona and policy, built once per run and injected into stages."""

import hashlib
import json
from pathlib import Path
from typing import Any, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from research_pipeline.config.prompts import (
    CRITIQUE_SYSTEM_PROMPT,
    DISCOVERY_SYSTEM_PROMPT,
    GENERATION_SYSTEM_PROMPT,
    JSON_ONLY_INSTRUCTION,
    PLANNING_SYSTEM_PROMPT,
    SCORING_SYSTEM_PROMPT,
    VALIDATION_SYSTEM_PROMPT,
)
from research_pipeline.config.settings import Settings
from research_pipeline.models.enums import StageName

logger = structlog.get_logger(__name__)

BUILTIN_PERSONAS = {
    StageName.DISCOVERY: DISCOVERY_SYSTEM_PROMPT,
    StageName.SCORING: SCORING_SYSTEM_PROMPT,
    StageName.GENERATION: GENERATION_SYSTEM_PROMPT,
    StageName.VALIDATION: VALIDATION_SYSTEM_PROMPT,
    StageName.PLANNING: PLANNING_SYSTEM_PROMPT,
    StageName.CRITIQUE: CRITIQUE_SYSTEM_PROMPT,
}


class StageConfiguration(BaseModel):
    """Versioned persona text and policy values for one stage.

    ``version`` is a content hash, so two runs with the same persona and policy
    report the same version in their activity records.
    """

    model_config = ConfigDict(frozen=True)

    stage: StageName
    version: str
    system_context: str
    policy: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def build(cls, stage: StageName, system_context: str, policy: Optional[dict] = None) -> "StageConfiguration":
        policy = dict(policy or {})
        digest = hashlib.sha256(
            (system_context + json.dumps(policy, sort_keys=True, default=str)).encode("utf-8")
        ).hexdigest()
        return cls(stage=stage, version=digest[:12], system_context=system_context, policy=policy)


def stage_policies(settings: Settings) -> dict[StageName, dict[str, Any]]:
    """Policy values each stage reads, taken from Settings."""
    return {
        StageName.DISCOVERY: {
            "providers": list(settings.discovery_providers),
            "days_back": settings.discovery_days_back,
            "max_results": settings.discovery_max_results,
        },
        StageName.SCORING: {
            "high_threshold": settings.high_bucket_threshold,
            "medium_threshold": settings.medium_bucket_threshold,
            "batch_size": settings.scoring_batch_size,
        },
        StageName.GENERATION: {
            "top_k": settings.generation_top_k,
            "full_text_max_chars": settings.full_text_max_chars,
        },
        StageName.VALIDATION: {
            "query_max_chars": settings.validation_query_max_chars,
            "max_results": settings.validation_max_results,
            "providers": list(settings.validation_providers),
        },
        StageName.PLANNING: {},
        StageName.CRITIQUE: {},
    }


def load_stage_configurations(
    settings: Settings,
    config_dir: Optional[str] = None,
) -> dict[StageName, StageConfiguration]:
    """Build every stage's configuration.

    A ``<stage>.md`` file in ``config_dir`` (default ``settings.stage_config_dir``)
    replaces the built-in persona for that stage. The JSON-only instruction is
    appended to file personas of stages that decode structured responses.
    """
    directory = Path(config_dir or settings.stage_config_dir) if (config_dir or settings.stage_config_dir) else None
    policies = stage_policies(settings)
    configs = {}

    for stage in StageName:
        persona = BUILTIN_PERSONAS[stage]
        if directory is not None:
            persona_file = directory / f"{stage.value}.md"
            if persona_file.exists():
                persona = persona_file.read_text(encoding="utf-8").strip()
                if stage != StageName.DISCOVERY:
                    persona += JSON_ONLY_INSTRUCTION
                logger.debug("stage_persona_loaded", stage=stage.value, path=str(persona_file))
        configs[stage] = StageConfiguration.build(stage, persona, policies[stage])

    logger.debug(
        "stage_configurations_built",
        versions={stage.value: config.version for stage, config in configs.items()},
    )
    return configs
