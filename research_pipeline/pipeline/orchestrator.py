"""Pipeline orchestrator: sequences the stages into full or partial runs.

Stages run strictly in order, Discovery -> Scoring -> Generation -> Validation
-> Planning -> Critique. When a PMC client is injected, open-access full text is
fetched for the items about to be generated from. Each stage's outputs are persisted through the Item
Store before the next stage starts, so an interrupted run loses no completed
work and the next run resumes from persisted state.

Units inside a stage (score batches, items, artifacts, plans) run on a small
thread pool bounded by ``max_concurrent_llm_calls``. A unit failure is logged
to the activity log, reported in ``RunSummary.failures`` and never stops the
batch. Storage and precondition errors stop the run; an artifact that moved
to an incompatible status while its unit ran fails only that unit.

Each run owns its own cancel event, so ``cancel()`` stops the runs in flight
and a run started later is unaffected by it.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Sequence

import structlog

from research_pipeline.config.context import OrganizationContext, load_context
from research_pipeline.config.settings import Settings, get_settings
from research_pipeline.config.stage_config import StageConfiguration, load_stage_configurations
from research_pipeline.connectors.pmc import PmcClient
from research_pipeline.connectors.registry import ConnectorSet
from research_pipeline.errors import (
    ConnectorError,
    InvalidTransition,
    MalformedResponse,
    PipelineError,
    PreconditionFailed,
    RECOVERABLE_UNIT_ERRORS,
    StorageError,
    UnknownStage,
)
from research_pipeline.llm.client import GenerativeClient
from research_pipeline.models.entities import Artifact, Item, Plan, Validation, utcnow
from research_pipeline.models.enums import (
    ArtifactStatus,
    Bucket,
    EntityType,
    PlanStatus,
    Recommendation,
    StageName,
)
from research_pipeline.models.run import (
    ConnectorFailure,
    PipelineOptions,
    RunSummary,
    StageFailure,
)
from research_pipeline.stages import (
    CritiqueStage,
    DiscoveryStage,
    EnrichmentStage,
    GenerationStage,
    PlanningStage,
    ScoringStage,
    ValidationStage,
)
from research_pipeline.store.item_store import ItemStore

logger = structlog.get_logger(__name__)

ORCHESTRATOR_AGENT = "orchestrator"
GENERATION_BUCKETS = [Bucket.HIGH, Bucket.MEDIUM]


@dataclass
class _Stages:
    discovery: DiscoveryStage
    scoring: ScoringStage
    generation: GenerationStage
    validation: ValidationStage
    planning: PlanningStage
    critique: CritiqueStage
    enrichment: Optional[EnrichmentStage] = None


def _unique_by_id(*groups: Sequence[Any]) -> list[Any]:
    seen: set[str] = set()
    merged = []
    for group in groups:
        for entity in group:
            if entity.id not in seen:
                seen.add(entity.id)
                merged.append(entity)
    return merged


class PipelineOrchestrator:
    """Runs the pipeline over an injected store, connector set and generative client."""

    def __init__(
        self,
        store: ItemStore,
        connectors: ConnectorSet,
        client: GenerativeClient,
        settings: Optional[Settings] = None,
        context: Optional[OrganizationContext] = None,
        stage_configs: Optional[dict[StageName, StageConfiguration]] = None,
        full_text: Optional[PmcClient] = None,
    ):
        self.store = store
        self.connectors = connectors
        self.client = client
        self.settings = settings or get_settings()
        self.context = context or load_context(self.settings.context_file)
        self._stage_configs = stage_configs
        self.full_text = full_text
        self._runs: dict[str, threading.Event] = {}
        self._runs_lock = threading.Lock()
        self._summary_lock = threading.Lock()
        self._latest: Optional[RunSummary] = None

    # =========================================================================
    # Public verbs
    # =========================================================================

    def cancel(self) -> None:
        """Stop every active run after the units already in flight finish."""
        with self._runs_lock:
            events = list(self._runs.values())
        logger.info("pipeline_cancel_requested", active_runs=len(events))
        for event in events:
            event.set()

    def close(self) -> None:
        self.connectors.close()
        if self.full_text is not None:
            self.full_text.close()

    def get_run_summary(self) -> Optional[RunSummary]:
        """Summary of the most recent full or partial run."""
        return self._latest

    def run_full_pipeline(self, options: Optional[PipelineOptions] = None) -> RunSummary:
        """Run every stage in order. Always returns a summary.

        A storage or precondition failure stops the run; the summary then has
        ``aborted=True`` and the reason.
        """
        options = options or PipelineOptions()
        summary = self._begin("full")
        logger.info("pipeline_start", run_id=summary.run_id, query=options.query)

        try:
            self.store.log_activity(
                ORCHESTRATOR_AGENT, "run_started", EntityType.RUN.value, summary.run_id,
                summary=f"Full run ({'query: ' + options.query if options.query else 'domain scan'})",
            )
            stages = self._build_stages()
            resume = options.resume_pending

            with self._timed(summary, StageName.DISCOVERY):
                discovered_ids = self._discover(stages, summary, options.query, options.days_back,
                                                options.providers, options.max_results)
                summary.item_count = len(discovered_ids)

            if not self._cancelled(summary):
                with self._timed(summary, StageName.SCORING):
                    found = [i for i in self.store.get_items(discovered_ids) if i.score is None and not i.processed]
                    pending = self.store.unscored_items() if resume else []
                    self._score(stages, summary, _unique_by_id(found, pending))

            artifacts: list[Artifact] = []
            if not self._cancelled(summary):
                with self._timed(summary, StageName.GENERATION):
                    top_k = options.generation_top_k
                    if top_k is None:
                        top_k = stages.generation.top_k
                    eligible = self.store.unprocessed_items(buckets=GENERATION_BUCKETS)
                    if not resume:
                        run_ids = set(discovered_ids)
                        eligible = [i for i in eligible if i.id in run_ids]
                    artifacts = self._generate(stages, summary, eligible[:top_k])

            validations: list[Validation] = []
            if not self._cancelled(summary):
                with self._timed(summary, StageName.VALIDATION):
                    pending = self.store.artifacts_by_status(ArtifactStatus.GENERATED) if resume else []
                    candidates = _unique_by_id(artifacts, pending)
                    to_validate = []
                    for artifact in candidates:
                        if artifact.confidence < options.review_confidence_floor:
                            summary.held_for_review.append(artifact.id)
                        else:
                            to_validate.append(artifact)
                    if summary.held_for_review:
                        logger.info("artifacts_held_for_review", count=len(summary.held_for_review))
                    validations = self._validate(stages, summary, to_validate)

            plans: list[Plan] = []
            if not self._cancelled(summary):
                with self._timed(summary, StageName.PLANNING):
                    plannable = self._plannable_from(validations)
                    if resume:
                        plannable = self._merge_pairs(plannable, self._pending_plannable())
                    plans = self._plan(stages, summary, plannable)

            if not self._cancelled(summary):
                with self._timed(summary, StageName.CRITIQUE):
                    pending = self.store.plans_without_critique() if resume else []
                    self._critique(stages, summary, _unique_by_id(plans, pending))

        except (StorageError, PreconditionFailed) as e:
            self._abort(summary, e)

        return self._finish(summary)

    def run_stage(self, stage_name: str, input_ids: Optional[list[str]] = None) -> RunSummary:
        """Run a single stage over explicit inputs, or over its pending work when none are given.

        ``input_ids`` are search queries for discovery, item ids for scoring
        and generation, artifact ids for validation and planning, and plan
        ids for critique.

        Raises:
            UnknownStage: ``stage_name`` is not a stage.
            PreconditionFailed: An input id is unknown or not eligible.
            StorageError: The store failed.
        """
        try:
            stage = StageName(stage_name)
        except ValueError as e:
            raise UnknownStage(f"Unknown stage: {stage_name!r}") from e

        input_ids = list(input_ids or [])
        summary = self._begin(f"stage:{stage.value}")
        logger.info("stage_run_start", run_id=summary.run_id, stage=stage.value, inputs=len(input_ids))

        try:
            stages = self._build_stages()
            with self._timed(summary, stage):
                if stage == StageName.DISCOVERY:
                    found: list[str] = []
                    for query in input_ids or [None]:
                        found.extend(self._discover(stages, summary, query))
                    summary.item_count = len(set(found))

                elif stage == StageName.SCORING:
                    items = self._require_items(input_ids) if input_ids else self.store.unscored_items()
                    self._score(stages, summary, items)

                elif stage == StageName.GENERATION:
                    if input_ids:
                        items = self._require_items(input_ids)
                    else:
                        items = self.store.unprocessed_items(
                            buckets=GENERATION_BUCKETS, limit=stages.generation.top_k
                        )
                    self._generate(stages, summary, items)

                elif stage == StageName.VALIDATION:
                    if input_ids:
                        artifacts = self._require_artifacts(input_ids)
                    else:
                        artifacts = self.store.artifacts_by_status(ArtifactStatus.GENERATED)
                    self._validate(stages, summary, artifacts)

                elif stage == StageName.PLANNING:
                    if input_ids:
                        pairs = self._require_plannable(input_ids)
                    else:
                        pairs = self._pending_plannable()
                    self._plan(stages, summary, pairs)

                elif stage == StageName.CRITIQUE:
                    if input_ids:
                        plans = self._require_plans(input_ids)
                    else:
                        plans = self.store.plans_without_critique()
                    self._critique(stages, summary, plans)
        except (StorageError, PreconditionFailed) as e:
            self._abort(summary, e)
            self._finish(summary)
            raise

        return self._finish(summary)

    # =========================================================================
    # Run bookkeeping
    # =========================================================================

    def _begin(self, mode: str) -> RunSummary:
        summary = RunSummary(mode=mode)
        with self._runs_lock:
            self._runs[summary.run_id] = threading.Event()
        return summary

    def _cancel_event(self, summary: RunSummary) -> threading.Event:
        with self._runs_lock:
            return self._runs.setdefault(summary.run_id, threading.Event())

    def _build_stages(self) -> _Stages:
        configs = self._stage_configs or load_stage_configurations(self.settings)
        return _Stages(
            discovery=DiscoveryStage(self.store, self.connectors, configs[StageName.DISCOVERY], self.context),
            scoring=ScoringStage(self.store, self.client, configs[StageName.SCORING], self.context),
            generation=GenerationStage(self.store, self.client, configs[StageName.GENERATION], self.context),
            validation=ValidationStage(self.store, self.client, configs[StageName.VALIDATION], self.connectors),
            planning=PlanningStage(self.store, self.client, configs[StageName.PLANNING], self.context),
            critique=CritiqueStage(self.store, self.client, configs[StageName.CRITIQUE]),
            enrichment=(
                EnrichmentStage(self.store, self.full_text, self.settings.full_text_max_items)
                if self.full_text is not None else None
            ),
        )

    @contextmanager
    def _timed(self, summary: RunSummary, stage: StageName) -> Iterator[None]:
        start = time.monotonic()
        logger.info(f"stage_{stage.value}_start", run_id=summary.run_id)
        try:
            yield
        finally:
            summary.stage_durations[stage.value] = round(time.monotonic() - start, 3)

    def _cancelled(self, summary: RunSummary) -> bool:
        if self._cancel_event(summary).is_set():
            summary.cancelled = True
        return summary.cancelled

    def _abort(self, summary: RunSummary, error: PipelineError) -> None:
        summary.aborted = True
        summary.abort_reason = f"{error.kind}: {error}"
        logger.error("pipeline_aborted", run_id=summary.run_id, error_kind=error.kind, error=str(error))

    def _finish(self, summary: RunSummary) -> RunSummary:
        with self._runs_lock:
            self._runs.pop(summary.run_id, None)
        summary.finished_at = utcnow()
        summary.duration_seconds = round((summary.finished_at - summary.started_at).total_seconds(), 3)
        self._latest = summary

        outcome = "aborted" if summary.aborted else "cancelled" if summary.cancelled else "completed"
        try:
            self.store.log_activity(
                ORCHESTRATOR_AGENT, f"run_{outcome}", EntityType.RUN.value, summary.run_id,
                summary=(
                    f"{summary.mode}: {summary.item_count} items, {summary.artifact_count} artifacts, "
                    f"{summary.validated_count} validated, {summary.plan_count} plans, "
                    f"{summary.critique_count} critiques, {len(summary.failures)} failures"
                ),
            )
        except StorageError as e:
            logger.error("run_activity_not_recorded", run_id=summary.run_id, error=str(e))

        logger.info(
            "pipeline_complete" if summary.mode == "full" else "stage_run_complete",
            run_id=summary.run_id,
            mode=summary.mode,
            outcome=outcome,
            duration_seconds=summary.duration_seconds,
            items=summary.item_count,
            artifacts=summary.artifact_count,
            validated=summary.validated_count,
            pursued=summary.pursued_count,
            plans=summary.plan_count,
            critiques=summary.critique_count,
            failures=len(summary.failures),
            connector_errors=len(summary.connector_errors),
        )
        return summary

    # =========================================================================
    # Unit execution
    # =========================================================================

    def _record_failure(self, summary: RunSummary, stage: StageName, entity_type: str,
                        entity_id: str, error: Exception) -> None:
        kind = error.kind if isinstance(error, PipelineError) else "unexpected_error"
        reason = str(error) or type(error).__name__
        with self._summary_lock:
            summary.failures.append(StageFailure(stage=stage.value, entity_id=entity_id, reason=reason, kind=kind))

        log = logger.warning if isinstance(error, RECOVERABLE_UNIT_ERRORS) else logger.error
        log(
            "unit_failed",
            stage=stage.value,
            entity_id=entity_id,
            error_kind=kind,
            error=reason[:300],
            raw_snippet=error.snippet if isinstance(error, MalformedResponse) else None,
        )
        self.store.log_activity(
            agent_name=stage.value,
            action="unit_failed",
            entity_type=entity_type,
            entity_id=entity_id,
            summary=f"{kind}: {reason}"[:500],
        )

    def _run_units(
        self,
        summary: RunSummary,
        stage: StageName,
        entity_type: str,
        units: Sequence[Any],
        work: Callable[[Any], Any],
        entity_ids: Callable[[Any], list[str]],
    ) -> list[Any]:
        """Run ``work`` over ``units`` on the bounded pool; results in completion order.

        Cancellation and fatal errors are checked before each unit starts;
        units already running finish.
        """
        if not units:
            return []

        cancel = self._cancel_event(summary)
        halt = threading.Event()

        def guarded(unit: Any) -> tuple[bool, Any]:
            if cancel.is_set() or halt.is_set():
                return False, None
            try:
                return True, work(unit)
            except InvalidTransition as e:
                for entity_id in entity_ids(unit):
                    self._record_failure(summary, stage, entity_type, entity_id, e)
                return True, None
            except (StorageError, PreconditionFailed):
                halt.set()
                raise
            except Exception as e:
                for entity_id in entity_ids(unit):
                    self._record_failure(summary, stage, entity_type, entity_id, e)
                return True, None

        results = []
        fatal: Optional[Exception] = None
        workers = max(1, min(self.settings.max_concurrent_llm_calls, len(units)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"{stage.value}") as pool:
            futures = [pool.submit(guarded, unit) for unit in units]
            for future in as_completed(futures):
                try:
                    started, result = future.result()
                except (StorageError, PreconditionFailed) as e:
                    fatal = fatal or e
                    continue
                if not started:
                    continue
                if result is not None:
                    results.append(result)

        if fatal is not None:
            raise fatal
        if cancel.is_set():
            summary.cancelled = True
            logger.info("stage_cancelled", stage=stage.value)
        return results

    # =========================================================================
    # Stage steps
    # =========================================================================

    def _discover(self, stages: _Stages, summary: RunSummary, query: Optional[str],
                  days_back: Optional[int] = None, providers: Optional[list[str]] = None,
                  max_results: Optional[int] = None) -> list[str]:
        result = stages.discovery.discover(
            query=query, days_back=days_back, providers=providers, max_results=max_results,
        )
        summary.connector_errors.extend(self._connector_failures(StageName.DISCOVERY, result.errors))
        return result.item_ids

    def _connector_failures(self, stage: StageName, errors: list[ConnectorError]) -> list[ConnectorFailure]:
        return [ConnectorFailure(stage=stage.value, provider=e.provider, reason=e.message) for e in errors]

    def _score(self, stages: _Stages, summary: RunSummary, items: list[Item]) -> None:
        size = max(1, stages.scoring.batch_size)
        batches = [items[i:i + size] for i in range(0, len(items), size)]
        results = self._run_units(
            summary, StageName.SCORING, EntityType.ITEM.value, batches,
            stages.scoring.score,
            lambda batch: [item.id for item in batch],
        )
        for batch_results in results:
            for score in batch_results:
                summary.scored_counts.add(score.bucket)
                summary.scored_item_ids.append(score.item_id)

    def _generate(self, stages: _Stages, summary: RunSummary, items: list[Item]) -> list[Artifact]:
        if stages.enrichment is not None and items:
            enriched = stages.enrichment.enrich(items)
            summary.connector_errors.extend(self._connector_failures(StageName.GENERATION, enriched.errors))

        def generate_and_mark(item: Item) -> list[Artifact]:
            # Processed means generation was attempted, successful or not
            try:
                artifacts = stages.generation.generate(item)
            except StorageError:
                raise
            except Exception:
                self.store.mark_item_processed(item.id)
                raise
            self.store.mark_item_processed(item.id)
            return artifacts

        results = self._run_units(
            summary, StageName.GENERATION, EntityType.ITEM.value, items,
            generate_and_mark, lambda item: [item.id],
        )
        artifacts = [a for batch in results for a in batch]
        summary.artifact_count += len(artifacts)
        summary.artifact_ids.extend(a.id for a in artifacts)
        return artifacts

    def _validate(self, stages: _Stages, summary: RunSummary, artifacts: list[Artifact]) -> list[Validation]:
        connector_errors: list[ConnectorError] = []
        errors_lock = threading.Lock()

        def validate(artifact: Artifact) -> Validation:
            sink: list[ConnectorError] = []
            try:
                return stages.validation.validate(artifact, error_sink=sink)
            finally:
                with errors_lock:
                    connector_errors.extend(sink)

        validations = self._run_units(
            summary, StageName.VALIDATION, EntityType.ARTIFACT.value, artifacts,
            validate, lambda artifact: [artifact.id],
        )
        summary.connector_errors.extend(self._connector_failures(StageName.VALIDATION, connector_errors))
        summary.validated_count += len(validations)
        summary.validated_artifact_ids.extend(v.artifact_id for v in validations)
        summary.pursued_count += sum(1 for v in validations if v.recommendation == Recommendation.PURSUE)
        return validations

    def _plan(self, stages: _Stages, summary: RunSummary,
              pairs: list[tuple[Artifact, Validation]]) -> list[Plan]:
        plans = self._run_units(
            summary, StageName.PLANNING, EntityType.ARTIFACT.value, pairs,
            lambda pair: stages.planning.plan(*pair),
            lambda pair: [pair[0].id],
        )
        summary.plan_count += len(plans)
        summary.plan_ids.extend(p.id for p in plans)
        return plans

    def _critique(self, stages: _Stages, summary: RunSummary, plans: list[Plan]) -> None:
        def critique(plan: Plan):
            artifact = self.store.get_artifact(plan.artifact_id)
            if artifact is None:
                raise PreconditionFailed(f"Artifact {plan.artifact_id} of plan {plan.id} not found")
            result = stages.critique.critique(plan, artifact)
            return plan.id, result

        results = self._run_units(
            summary, StageName.CRITIQUE, EntityType.PLAN.value, plans,
            critique, lambda plan: [plan.id],
        )
        summary.critique_count += len(results)
        for plan_id, _ in results:
            summary.critiqued_plan_ids.append(plan_id)
            plan = self.store.get_plan(plan_id)
            if plan is not None and plan.status == PlanStatus.APPROVED:
                summary.approved_plans.append(plan_id)

    # =========================================================================
    # Input selection
    # =========================================================================

    def _plannable_from(self, validations: list[Validation]) -> list[tuple[Artifact, Validation]]:
        pairs = []
        for validation in validations:
            if not validation.recommendation.plannable:
                continue
            artifact = self.store.get_artifact(validation.artifact_id)
            if artifact is None or artifact.status != ArtifactStatus.VALIDATED:
                continue
            current = self.store.current_validation(artifact.id)
            if current is not None and current.id == validation.id:
                pairs.append((artifact, validation))
        return pairs

    def _pending_plannable(self) -> list[tuple[Artifact, Validation]]:
        pairs = []
        for artifact in self.store.validated_artifacts_without_plan():
            validation = self.store.current_validation(artifact.id)
            if validation is not None and validation.recommendation.plannable:
                pairs.append((artifact, validation))
        return pairs

    @staticmethod
    def _merge_pairs(*groups: list[tuple[Artifact, Validation]]) -> list[tuple[Artifact, Validation]]:
        seen: set[str] = set()
        merged = []
        for group in groups:
            for artifact, validation in group:
                if artifact.id not in seen:
                    seen.add(artifact.id)
                    merged.append((artifact, validation))
        return merged

    def _require_items(self, item_ids: list[str]) -> list[Item]:
        items = self.store.get_items(item_ids)
        missing = set(item_ids) - {i.id for i in items}
        if missing:
            raise PreconditionFailed(f"Unknown item ids: {sorted(missing)}")
        return items

    def _require_artifacts(self, artifact_ids: list[str]) -> list[Artifact]:
        artifacts = self.store.get_artifacts(artifact_ids)
        missing = set(artifact_ids) - {a.id for a in artifacts}
        if missing:
            raise PreconditionFailed(f"Unknown artifact ids: {sorted(missing)}")
        return artifacts

    def _require_plannable(self, artifact_ids: list[str]) -> list[tuple[Artifact, Validation]]:
        pairs = []
        for artifact in self._require_artifacts(artifact_ids):
            validation = self.store.current_validation(artifact.id)
            if validation is None or not validation.recommendation.plannable:
                raise PreconditionFailed(
                    f"Artifact {artifact.id} has no pursue/modify validation"
                )
            if artifact.status != ArtifactStatus.VALIDATED:
                raise PreconditionFailed(f"Artifact {artifact.id} is {artifact.status.value}, not validated")
            pairs.append((artifact, validation))
        return pairs

    def _require_plans(self, plan_ids: list[str]) -> list[Plan]:
        plans = self.store.get_plans(plan_ids)
        missing = set(plan_ids) - {p.id for p in plans}
        if missing:
            raise PreconditionFailed(f"Unknown plan ids: {sorted(missing)}")
        return plans
