"""
Pipeline Routes

Trigger runs and inspect the latest summary. Browse items, artifacts, plans
and the activity log; record feedback and manage research domains.
Pipeline errors are translated to HTTP status codes by the handlers in app.py.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response, status
from pydantic import ValidationError

from research_pipeline import __version__
from research_pipeline.api.deps import get_orchestrator
from research_pipeline.api.schemas import (
    ActivityListResponse,
    ArtifactEditRequest,
    ArtifactListResponse,
    DomainListResponse,
    DomainUpdateRequest,
    FeedbackListResponse,
    FeedbackRequest,
    HealthResponse,
    ItemListResponse,
    PlanListResponse,
    RunAccepted,
    StageRunRequest,
)
from research_pipeline.config.context import ResearchDomain
from research_pipeline.models.entities import Artifact, Feedback, FullText, Item, Plan
from research_pipeline.models.enums import ArtifactStatus, Bucket, EntityType, PlanStatus
from research_pipeline.models.run import PipelineOptions, RunSummary
from research_pipeline.pipeline.orchestrator import PipelineOrchestrator

logger = structlog.get_logger(__name__)

router = APIRouter()


# =============================================================================
# Runs
# =============================================================================

@router.post("/pipeline/run", response_model=RunAccepted, status_code=status.HTTP_202_ACCEPTED)
def run_pipeline(
    background_tasks: BackgroundTasks,
    options: Optional[PipelineOptions] = None,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> RunAccepted:
    """
    Start a full pipeline run.

    The run executes in the background; poll ``GET /pipeline/summary`` for
    the result.
    """
    background_tasks.add_task(orchestrator.run_full_pipeline, options or PipelineOptions())
    logger.info("pipeline_run_queued", query=options.query if options else None)
    return RunAccepted()


@router.post("/pipeline/stages/{stage}", response_model=RunSummary)
def run_stage(
    stage: str,
    request: Optional[StageRunRequest] = None,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> RunSummary:
    """Run one stage synchronously and return its summary."""
    return orchestrator.run_stage(stage, request.input_ids if request else [])


@router.post("/pipeline/cancel", status_code=status.HTTP_202_ACCEPTED)
def cancel_pipeline(orchestrator: PipelineOrchestrator = Depends(get_orchestrator)) -> dict:
    orchestrator.cancel()
    return {"status": "cancelling"}


@router.get("/pipeline/summary", response_model=RunSummary)
def latest_summary(orchestrator: PipelineOrchestrator = Depends(get_orchestrator)) -> RunSummary:
    summary = orchestrator.get_run_summary()
    if summary is None:
        raise HTTPException(status_code=404, detail="No run has completed yet")
    return summary


# =============================================================================
# Artifacts
# =============================================================================

@router.get("/artifacts", response_model=ArtifactListResponse)
def list_artifacts(
    status: Optional[ArtifactStatus] = None,
    limit: int = Query(default=50, ge=1, le=500),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> ArtifactListResponse:
    artifacts = orchestrator.store.list_artifacts(status=status, limit=limit)
    return ArtifactListResponse(artifacts=artifacts, count=len(artifacts))


@router.get("/artifacts/{artifact_id}", response_model=Artifact)
def get_artifact(
    artifact_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> Artifact:
    artifact = orchestrator.store.get_artifact(artifact_id)
    if artifact is None:
        raise HTTPException(status_code=404, detail=f"Artifact not found: {artifact_id}")
    return artifact


@router.put("/artifacts/{artifact_id}", response_model=Artifact)
def edit_artifact(
    artifact_id: str,
    edit: ArtifactEditRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> Artifact:
    """
    Edit an artifact before it is validated.

    Only ``generated`` and ``validating`` artifacts accept edits.
    """
    changes = edit.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=422, detail="No fields to update")
    artifact = orchestrator.store.update_artifact_content(artifact_id, changes)
    orchestrator.store.log_activity(
        agent_name="human",
        action="edit_artifact",
        entity_type="artifact",
        entity_id=artifact_id,
        summary=f"Edited {', '.join(sorted(changes))}",
    )
    return artifact


# =============================================================================
# Items / plans
# =============================================================================

@router.get("/items", response_model=ItemListResponse)
def list_items(
    bucket: Optional[Bucket] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> ItemListResponse:
    """Discovered items, newest first."""
    items = orchestrator.store.list_items(bucket=bucket, limit=limit, offset=offset)
    return ItemListResponse(items=items, count=len(items))


@router.get("/items/{item_id}", response_model=Item)
def get_item(
    item_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> Item:
    item = orchestrator.store.get_item(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Item not found: {item_id}")
    return item


@router.get("/items/{item_id}/full-text", response_model=FullText)
def get_full_text(
    item_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> FullText:
    full_text = orchestrator.store.get_full_text(item_id)
    if full_text is None:
        raise HTTPException(status_code=404, detail=f"No full text cached for item {item_id}")
    return full_text


@router.get("/plans", response_model=PlanListResponse)
def list_plans(
    status: Optional[PlanStatus] = None,
    limit: int = Query(default=50, ge=1, le=500),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> PlanListResponse:
    plans = orchestrator.store.list_plans(status=status, limit=limit)
    return PlanListResponse(plans=plans, count=len(plans))


@router.get("/plans/{plan_id}", response_model=Plan)
def get_plan(
    plan_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> Plan:
    plan = orchestrator.store.get_plan(plan_id)
    if plan is None:
        raise HTTPException(status_code=404, detail=f"Plan not found: {plan_id}")
    return plan


# =============================================================================
# Feedback
# =============================================================================

@router.post("/feedback", response_model=Feedback, status_code=status.HTTP_201_CREATED)
def add_feedback(
    request: FeedbackRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> Feedback:
    """
    Rate or annotate an item, artifact, validation, plan or critique.

    Submitting again for the same entity replaces the earlier feedback.
    """
    try:
        feedback = Feedback(**request.model_dump())
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    saved = orchestrator.store.add_feedback(feedback)
    orchestrator.store.log_activity(
        agent_name="human",
        action="feedback",
        entity_type=saved.entity_type.value,
        entity_id=saved.entity_id,
        summary=f"Rating {saved.rating}" if saved.rating is not None else "Feedback recorded",
    )
    return saved


@router.get("/feedback", response_model=FeedbackListResponse)
def list_feedback(
    entity_type: Optional[EntityType] = None,
    limit: int = Query(default=50, ge=1, le=500),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> FeedbackListResponse:
    feedback = orchestrator.store.list_feedback(entity_type=entity_type, limit=limit)
    return FeedbackListResponse(feedback=feedback, count=len(feedback))


# =============================================================================
# Research domains
# =============================================================================

@router.get("/domains", response_model=DomainListResponse)
def list_domains(
    active_only: bool = False,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> DomainListResponse:
    domains = orchestrator.store.list_domains(active_only=active_only)
    return DomainListResponse(domains=domains, count=len(domains))


@router.post("/domains", response_model=ResearchDomain, status_code=status.HTTP_201_CREATED)
def save_domain(
    domain: ResearchDomain,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> ResearchDomain:
    """Add a domain, or replace the keywords of an existing one with the same name."""
    saved = orchestrator.store.upsert_domain(domain)
    logger.info("domain_saved", name=saved.name)
    return saved


@router.put("/domains/{name}", response_model=ResearchDomain)
def update_domain(
    name: str,
    update: DomainUpdateRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> ResearchDomain:
    changes = update.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=422, detail="No fields to update")
    if orchestrator.store.get_domain(name) is None:
        raise HTTPException(status_code=404, detail=f"Domain not found: {name}")
    return orchestrator.store.update_domain(name, changes)


@router.delete("/domains/{name}", status_code=status.HTTP_204_NO_CONTENT)
def delete_domain(
    name: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> Response:
    if not orchestrator.store.delete_domain(name):
        raise HTTPException(status_code=404, detail=f"Domain not found: {name}")
    logger.info("domain_deleted", name=name)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Activity / stats / health
# =============================================================================

@router.get("/activity", response_model=ActivityListResponse)
def recent_activity(
    limit: int = Query(default=50, ge=1, le=500),
    agent: Optional[str] = None,
    entity_id: Optional[str] = None,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> ActivityListResponse:
    records = orchestrator.store.recent_activity(limit=limit, agent_name=agent, entity_id=entity_id)
    return ActivityListResponse(records=records, count=len(records))


@router.get("/stats")
def store_stats(orchestrator: PipelineOrchestrator = Depends(get_orchestrator)) -> dict:
    """Entity counts, overall and by status."""
    return orchestrator.store.stats()


@router.get("/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    return HealthResponse(version=__version__)
