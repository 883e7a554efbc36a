"""Item Store: the only owner of persisted pipeline state.

Every session runs under one re-entrant lock, so concurrent stage workers can
append activity and update different rows safely. Status changes are checked
and written inside the same locked session.
"""

import threading
from contextlib import contextmanager
from enum import Enum
from typing import Any, Iterator, Optional, TypeVar

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy import JSON, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from research_pipeline.config.context import ResearchDomain
from research_pipeline.connectors.dedup import normalize_title, titles_match
from research_pipeline.errors import InvalidTransition, PreconditionFailed, StorageError
from research_pipeline.models.entities import (
    ActivityRecord,
    Artifact,
    Critique,
    Feedback,
    FullText,
    Item,
    Plan,
    SourceId,
    Validation,
    utcnow,
)
from research_pipeline.models.enums import ArtifactStatus, Bucket, EntityType, PlanStatus
from research_pipeline.models.run import ScoreResult
from research_pipeline.store.database import MEMORY_URL, create_db_engine, create_session_factory, init_db
from research_pipeline.store.tables import (
    ActivityRow,
    ArtifactRow,
    CritiqueRow,
    DomainRow,
    FeedbackRow,
    FullTextRow,
    ItemRow,
    PlanRow,
    ValidationRow,
)

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Allowed artifact moves. Same-status writes are accepted everywhere and only
# refresh status_updated_at.
ARTIFACT_TRANSITIONS: dict[ArtifactStatus, frozenset[ArtifactStatus]] = {
    ArtifactStatus.GENERATED: frozenset({
        ArtifactStatus.VALIDATING, ArtifactStatus.VALIDATED, ArtifactStatus.REJECTED,
    }),
    ArtifactStatus.VALIDATING: frozenset({
        ArtifactStatus.VALIDATED, ArtifactStatus.REJECTED,
    }),
    ArtifactStatus.VALIDATED: frozenset({
        ArtifactStatus.REJECTED, ArtifactStatus.PLANNED,
    }),
    ArtifactStatus.REJECTED: frozenset(),
    ArtifactStatus.PLANNED: frozenset(),
}

EDITABLE_ARTIFACT_FIELDS = frozenset({
    "title", "statement", "rationale", "assumptions", "predictions", "required_evidence",
})
EDITABLE_ARTIFACT_STATUSES = frozenset({ArtifactStatus.GENERATED, ArtifactStatus.VALIDATING})

_FEEDBACK_TARGETS = {
    EntityType.ITEM: ItemRow,
    EntityType.ARTIFACT: ArtifactRow,
    EntityType.VALIDATION: ValidationRow,
    EntityType.PLAN: PlanRow,
    EntityType.CRITIQUE: CritiqueRow,
}


def can_transition(current: ArtifactStatus, target: ArtifactStatus) -> bool:
    return current == target or target in ARTIFACT_TRANSITIONS[current]


def _row_values(model: BaseModel, row_cls: type) -> dict[str, Any]:
    """Column values for ``model``: JSON columns and enums in JSON form, the rest as-is."""
    python = model.model_dump()
    jsonable = model.model_dump(mode="json")
    values = {}
    for column in row_cls.__table__.columns:
        if column.name not in python:
            continue
        value = python[column.name]
        if isinstance(column.type, JSON) or isinstance(value, Enum):
            values[column.name] = jsonable[column.name]
        else:
            values[column.name] = value
    return values


def _from_row(row: Any, model_cls: type[ModelT]) -> ModelT:
    data = {
        c.name: getattr(row, c.name)
        for c in row.__table__.columns
        if c.name in model_cls.model_fields
    }
    return model_cls.model_validate(data)


def _item_from_row(row: ItemRow) -> Item:
    return Item(
        id=row.id,
        source_id=SourceId(provider=row.provider, external_id=row.external_id),
        title=row.title,
        body=row.body or "",
        published_at=row.published_at,
        tags=row.tags or [],
        score=row.score,
        bucket=row.bucket,
        processed=row.processed,
        authors=row.authors or [],
        url=row.url,
        venue=row.venue,
        citation_count=row.citation_count or 0,
        extra=row.extra or {},
        created_at=row.created_at,
    )


class ItemStore:
    """CRUD and status queries over items, artifacts, validations, plans,
    critiques, reviewer feedback, research domains, cached full texts and the
    append-only activity log."""

    def __init__(
        self,
        engine: Engine,
        similarity_threshold: float = 97.0,
        min_title_length: int = 24,
    ):
        self.engine = engine
        self.similarity_threshold = similarity_threshold
        self.min_title_length = min_title_length
        self._session_factory = create_session_factory(engine)
        self._lock = threading.RLock()
        try:
            init_db(engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not initialize database: {e}") from e

    @classmethod
    def from_url(cls, database_url: str = MEMORY_URL, **kwargs) -> "ItemStore":
        try:
            engine = create_db_engine(database_url)
        except (SQLAlchemyError, OSError) as e:
            raise StorageError(f"Could not open database {database_url}: {e}") from e
        return cls(engine, **kwargs)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self._lock:
            session = self._session_factory()
            try:
                yield session
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error("storage_error", error=str(e))
                raise StorageError(str(e)) from e
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def close(self) -> None:
        self.engine.dispose()

    # =========================================================================
    # Items
    # =========================================================================

    def _find_duplicate(self, session: Session, item: Item, key: str) -> Optional[str]:
        source = item.source_id
        if source.external_id is not None:
            row = (
                session.query(ItemRow.id)
                .filter(ItemRow.provider == source.provider, ItemRow.external_id == source.external_id)
                .first()
            )
            if row:
                return row.id

        if not key:
            return None

        row = session.query(ItemRow.id).filter(ItemRow.title_key == key).first()
        if row:
            return row.id

        if len(key) < self.min_title_length:
            return None
        candidates = (
            session.query(ItemRow.id, ItemRow.title_key)
            .filter(func.length(ItemRow.title_key) >= self.min_title_length)
            .all()
        )
        for candidate in candidates:
            if titles_match(key, candidate.title_key, self.similarity_threshold, self.min_title_length):
                return candidate.id
        return None

    def insert_item(self, item: Item) -> tuple[str, bool]:
        """Insert ``item`` unless it duplicates a stored one.

        Returns:
            ``(id, created)``; on a duplicate, the existing id and False.
        """
        key = normalize_title(item.title)
        with self._session() as session:
            existing = self._find_duplicate(session, item, key)
            if existing is not None:
                logger.debug("item_duplicate", existing_id=existing, title=item.title[:80])
                return existing, False

            values = _row_values(item, ItemRow)
            values.update(
                provider=item.source_id.provider,
                external_id=item.source_id.external_id,
                title_key=key,
            )
            session.add(ItemRow(**values))
            return item.id, True

    def get_item(self, item_id: str) -> Optional[Item]:
        with self._session() as session:
            row = session.get(ItemRow, item_id)
            return _item_from_row(row) if row else None

    def get_items(self, item_ids: list[str]) -> list[Item]:
        """Items for ``item_ids`` in the given order; unknown ids are skipped."""
        if not item_ids:
            return []
        with self._session() as session:
            rows = {r.id: r for r in session.query(ItemRow).filter(ItemRow.id.in_(item_ids)).all()}
            return [_item_from_row(rows[i]) for i in item_ids if i in rows]

    def list_items(
        self,
        bucket: Optional[Bucket] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Item]:
        with self._session() as session:
            query = session.query(ItemRow)
            if bucket is not None:
                query = query.filter(ItemRow.bucket == bucket.value)
            rows = query.order_by(ItemRow.created_at.desc()).offset(offset).limit(limit).all()
            return [_item_from_row(r) for r in rows]

    def unprocessed_items(
        self,
        buckets: Optional[list[Bucket]] = None,
        limit: Optional[int] = None,
    ) -> list[Item]:
        """Unprocessed items, highest score first (unscored last)."""
        with self._session() as session:
            query = session.query(ItemRow).filter(ItemRow.processed.is_(False))
            if buckets is not None:
                query = query.filter(ItemRow.bucket.in_([b.value for b in buckets]))
            query = query.order_by(ItemRow.score.is_(None), ItemRow.score.desc(), ItemRow.created_at)
            if limit is not None:
                query = query.limit(limit)
            return [_item_from_row(r) for r in query.all()]

    def unscored_items(self, limit: Optional[int] = None) -> list[Item]:
        with self._session() as session:
            query = (
                session.query(ItemRow)
                .filter(ItemRow.processed.is_(False), ItemRow.score.is_(None))
                .order_by(ItemRow.created_at)
            )
            if limit is not None:
                query = query.limit(limit)
            return [_item_from_row(r) for r in query.all()]

    def set_item_scores(self, results: list[ScoreResult]) -> None:
        """Persist a scored batch in one write. Rescoring overwrites."""
        with self._session() as session:
            for result in results:
                row = session.get(ItemRow, result.item_id)
                if row is None:
                    raise PreconditionFailed(f"Item {result.item_id} not found")
                row.score = result.total
                row.bucket = result.bucket.value

    def mark_item_processed(self, item_id: str) -> None:
        with self._session() as session:
            row = session.get(ItemRow, item_id)
            if row is None:
                raise PreconditionFailed(f"Item {item_id} not found")
            row.processed = True

    # =========================================================================
    # Artifacts
    # =========================================================================

    def insert_artifact(self, artifact: Artifact) -> Artifact:
        with self._session() as session:
            session.add(ArtifactRow(**_row_values(artifact, ArtifactRow)))
        return artifact

    def insert_artifacts(self, artifacts: list[Artifact]) -> list[Artifact]:
        """Persist one item's artifacts in a single write; all or none are stored."""
        with self._session() as session:
            for artifact in artifacts:
                session.add(ArtifactRow(**_row_values(artifact, ArtifactRow)))
        return artifacts

    def get_artifact(self, artifact_id: str) -> Optional[Artifact]:
        with self._session() as session:
            row = session.get(ArtifactRow, artifact_id)
            return _from_row(row, Artifact) if row else None

    def get_artifacts(self, artifact_ids: list[str]) -> list[Artifact]:
        if not artifact_ids:
            return []
        with self._session() as session:
            rows = {
                r.id: r
                for r in session.query(ArtifactRow).filter(ArtifactRow.id.in_(artifact_ids)).all()
            }
            return [_from_row(rows[i], Artifact) for i in artifact_ids if i in rows]

    def list_artifacts(
        self,
        status: Optional[ArtifactStatus] = None,
        item_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Artifact]:
        """Artifacts, oldest first, optionally filtered by status and source item."""
        with self._session() as session:
            query = session.query(ArtifactRow)
            if status is not None:
                query = query.filter(ArtifactRow.status == status.value)
            if item_id is not None:
                query = query.filter(ArtifactRow.item_id == item_id)
            query = query.order_by(ArtifactRow.created_at, ArtifactRow.id)
            if limit is not None:
                query = query.limit(limit)
            return [_from_row(r, Artifact) for r in query.all()]

    def artifacts_by_status(self, status: ArtifactStatus) -> list[Artifact]:
        return self.list_artifacts(status=status)

    def validated_artifacts_without_plan(self) -> list[Artifact]:
        with self._session() as session:
            planned = select(PlanRow.artifact_id)
            rows = (
                session.query(ArtifactRow)
                .filter(ArtifactRow.status == ArtifactStatus.VALIDATED.value)
                .filter(~ArtifactRow.id.in_(planned))
                .order_by(ArtifactRow.created_at, ArtifactRow.id)
                .all()
            )
            return [_from_row(r, Artifact) for r in rows]

    def transition_artifact(self, artifact_id: str, status: ArtifactStatus) -> Artifact:
        """Move an artifact to ``status``, stamping ``status_updated_at``.

        The check and the write happen under the store lock, so concurrent
        writers resolve last-write-wins without ever moving backwards.

        Raises:
            InvalidTransition: If the move would regress the lifecycle.
            PreconditionFailed: If the artifact does not exist.
        """
        with self._session() as session:
            row = session.get(ArtifactRow, artifact_id)
            if row is None:
                raise PreconditionFailed(f"Artifact {artifact_id} not found")
            current = ArtifactStatus(row.status)
            if not can_transition(current, status):
                raise InvalidTransition(
                    f"Artifact {artifact_id} cannot move from {current.value} to {status.value}"
                )
            row.status = status.value
            row.status_updated_at = utcnow()
            artifact = _from_row(row, Artifact)

        logger.debug("artifact_status_changed", artifact_id=artifact_id, old=current.value, new=status.value)
        return artifact

    def update_artifact_content(self, artifact_id: str, changes: dict[str, Any]) -> Artifact:
        """Human edit of an artifact's content before it is decided on.

        Raises:
            PreconditionFailed: Unknown/non-editable fields, invalid values,
                or the artifact is already validated, rejected or planned.
        """
        unknown = set(changes) - EDITABLE_ARTIFACT_FIELDS
        if unknown:
            raise PreconditionFailed(f"Fields not editable: {sorted(unknown)}")

        with self._session() as session:
            row = session.get(ArtifactRow, artifact_id)
            if row is None:
                raise PreconditionFailed(f"Artifact {artifact_id} not found")
            current = _from_row(row, Artifact)
            if current.status not in EDITABLE_ARTIFACT_STATUSES:
                raise PreconditionFailed(
                    f"Artifact {artifact_id} is {current.status.value}; only generated or validating artifacts can be edited"
                )
            try:
                updated = Artifact.model_validate({**current.model_dump(), **changes})
            except ValidationError as e:
                raise PreconditionFailed(f"Invalid artifact content: {e}") from e

            values = _row_values(updated, ArtifactRow)
            for field_name in changes:
                setattr(row, field_name, values[field_name])
            return updated

    # =========================================================================
    # Validations
    # =========================================================================

    def insert_validation(self, validation: Validation) -> Validation:
        with self._session() as session:
            session.add(ValidationRow(**_row_values(validation, ValidationRow)))
        return validation

    def current_validation(self, artifact_id: str) -> Optional[Validation]:
        """Latest validation for the artifact."""
        with self._session() as session:
            row = (
                session.query(ValidationRow)
                .filter(ValidationRow.artifact_id == artifact_id)
                .order_by(ValidationRow.seq.desc())
                .first()
            )
            return _from_row(row, Validation) if row else None

    def validation_history(self, artifact_id: str) -> list[Validation]:
        with self._session() as session:
            rows = (
                session.query(ValidationRow)
                .filter(ValidationRow.artifact_id == artifact_id)
                .order_by(ValidationRow.seq)
                .all()
            )
            return [_from_row(r, Validation) for r in rows]

    # =========================================================================
    # Plans
    # =========================================================================

    def insert_plan(self, plan: Plan) -> Plan:
        with self._session() as session:
            session.add(PlanRow(**_row_values(plan, PlanRow)))
        return plan

    def record_plan(self, plan: Plan) -> Plan:
        """Store ``plan`` and move its artifact to planned in one write.

        The artifact must still be validated when the write happens; otherwise
        nothing is stored.

        Raises:
            InvalidTransition: If the artifact left validated in the meantime.
            PreconditionFailed: If the artifact does not exist.
        """
        with self._session() as session:
            row = session.get(ArtifactRow, plan.artifact_id)
            if row is None:
                raise PreconditionFailed(f"Artifact {plan.artifact_id} not found")
            current = ArtifactStatus(row.status)
            if current != ArtifactStatus.VALIDATED:
                raise InvalidTransition(
                    f"Artifact {plan.artifact_id} is {current.value}; only validated artifacts can be planned"
                )
            session.add(PlanRow(**_row_values(plan, PlanRow)))
            row.status = ArtifactStatus.PLANNED.value
            row.status_updated_at = utcnow()

        logger.debug("plan_recorded", plan_id=plan.id, artifact_id=plan.artifact_id)
        return plan

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        with self._session() as session:
            row = session.query(PlanRow).filter(PlanRow.id == plan_id).first()
            return _from_row(row, Plan) if row else None

    def get_plans(self, plan_ids: list[str]) -> list[Plan]:
        if not plan_ids:
            return []
        with self._session() as session:
            rows = {r.id: r for r in session.query(PlanRow).filter(PlanRow.id.in_(plan_ids)).all()}
            return [_from_row(rows[i], Plan) for i in plan_ids if i in rows]

    def list_plans(self, status: Optional[PlanStatus] = None, limit: Optional[int] = None) -> list[Plan]:
        """Plans, oldest first, optionally filtered by status."""
        with self._session() as session:
            query = session.query(PlanRow)
            if status is not None:
                query = query.filter(PlanRow.status == status.value)
            query = query.order_by(PlanRow.seq)
            if limit is not None:
                query = query.limit(limit)
            return [_from_row(r, Plan) for r in query.all()]

    def plans_by_status(self, status: PlanStatus) -> list[Plan]:
        return self.list_plans(status=status)

    def plan_for_artifact(self, artifact_id: str) -> Optional[Plan]:
        with self._session() as session:
            row = (
                session.query(PlanRow)
                .filter(PlanRow.artifact_id == artifact_id)
                .order_by(PlanRow.seq.desc())
                .first()
            )
            return _from_row(row, Plan) if row else None

    def plans_without_critique(self, status: PlanStatus = PlanStatus.DRAFTED) -> list[Plan]:
        with self._session() as session:
            reviewed = select(CritiqueRow.plan_id)
            rows = (
                session.query(PlanRow)
                .filter(PlanRow.status == status.value)
                .filter(~PlanRow.id.in_(reviewed))
                .order_by(PlanRow.seq)
                .all()
            )
            return [_from_row(r, Plan) for r in rows]

    def update_plan_status(self, plan_id: str, status: PlanStatus) -> Plan:
        with self._session() as session:
            row = session.query(PlanRow).filter(PlanRow.id == plan_id).first()
            if row is None:
                raise PreconditionFailed(f"Plan {plan_id} not found")
            row.status = status.value
            row.status_updated_at = utcnow()
            return _from_row(row, Plan)

    # =========================================================================
    # Critiques
    # =========================================================================

    def insert_critique(self, critique: Critique) -> Critique:
        with self._session() as session:
            session.add(CritiqueRow(**_row_values(critique, CritiqueRow)))
        return critique

    def current_critique(self, plan_id: str) -> Optional[Critique]:
        with self._session() as session:
            row = (
                session.query(CritiqueRow)
                .filter(CritiqueRow.plan_id == plan_id)
                .order_by(CritiqueRow.seq.desc())
                .first()
            )
            return _from_row(row, Critique) if row else None

    def critique_history(self, plan_id: str) -> list[Critique]:
        with self._session() as session:
            rows = (
                session.query(CritiqueRow)
                .filter(CritiqueRow.plan_id == plan_id)
                .order_by(CritiqueRow.seq)
                .all()
            )
            return [_from_row(r, Critique) for r in rows]

    # =========================================================================
    # Feedback
    # =========================================================================

    def _require_entity(self, session: Session, entity_type: EntityType, entity_id: str) -> None:
        row_cls = _FEEDBACK_TARGETS[entity_type]
        if session.query(row_cls.id).filter(row_cls.id == entity_id).first() is None:
            raise PreconditionFailed(f"{entity_type.value.title()} {entity_id} not found")

    def add_feedback(self, feedback: Feedback) -> Feedback:
        """Record feedback on an entity, replacing any earlier feedback on it.

        Raises:
            PreconditionFailed: If the entity does not exist.
        """
        with self._session() as session:
            self._require_entity(session, feedback.entity_type, feedback.entity_id)
            row = (
                session.query(FeedbackRow)
                .filter(
                    FeedbackRow.entity_type == feedback.entity_type.value,
                    FeedbackRow.entity_id == feedback.entity_id,
                )
                .first()
            )
            values = _row_values(feedback, FeedbackRow)
            if row is None:
                session.add(FeedbackRow(**values))
                return feedback

            for name in ("rating", "useful", "notes", "tags", "action_taken"):
                setattr(row, name, values[name])
            row.updated_at = utcnow()
            return _from_row(row, Feedback)

    def get_feedback(self, entity_type: EntityType, entity_id: str) -> Optional[Feedback]:
        with self._session() as session:
            row = (
                session.query(FeedbackRow)
                .filter(FeedbackRow.entity_type == entity_type.value, FeedbackRow.entity_id == entity_id)
                .first()
            )
            return _from_row(row, Feedback) if row else None

    def list_feedback(self, entity_type: Optional[EntityType] = None, limit: int = 50) -> list[Feedback]:
        """Most recently updated first."""
        with self._session() as session:
            query = session.query(FeedbackRow)
            if entity_type is not None:
                query = query.filter(FeedbackRow.entity_type == entity_type.value)
            rows = query.order_by(FeedbackRow.updated_at.desc()).limit(limit).all()
            return [_from_row(r, Feedback) for r in rows]

    # =========================================================================
    # Research domains
    # =========================================================================

    def list_domains(self, active_only: bool = False) -> list[ResearchDomain]:
        with self._session() as session:
            query = session.query(DomainRow)
            if active_only:
                query = query.filter(DomainRow.active.is_(True))
            rows = query.order_by(DomainRow.created_at, DomainRow.name).all()
            return [_from_row(r, ResearchDomain) for r in rows]

    def get_domain(self, name: str) -> Optional[ResearchDomain]:
        with self._session() as session:
            row = session.get(DomainRow, name)
            return _from_row(row, ResearchDomain) if row else None

    def upsert_domain(self, domain: ResearchDomain) -> ResearchDomain:
        with self._session() as session:
            row = session.get(DomainRow, domain.name)
            values = _row_values(domain, DomainRow)
            if row is None:
                session.add(DomainRow(**values, created_at=utcnow()))
            else:
                row.keywords = values["keywords"]
                row.active = values["active"]
        logger.debug("domain_saved", name=domain.name, active=domain.active)
        return domain

    def update_domain(self, name: str, changes: dict[str, Any]) -> ResearchDomain:
        """Change a domain's keywords or active flag.

        Raises:
            PreconditionFailed: Unknown domain, unknown fields or invalid values.
        """
        unknown = set(changes) - {"keywords", "active"}
        if unknown:
            raise PreconditionFailed(f"Fields not editable: {sorted(unknown)}")

        with self._session() as session:
            row = session.get(DomainRow, name)
            if row is None:
                raise PreconditionFailed(f"Domain {name} not found")
            try:
                updated = ResearchDomain.model_validate({**_from_row(row, ResearchDomain).model_dump(), **changes})
            except ValidationError as e:
                raise PreconditionFailed(f"Invalid domain: {e}") from e
            row.keywords = updated.keywords
            row.active = updated.active
            return updated

    def delete_domain(self, name: str) -> bool:
        with self._session() as session:
            row = session.get(DomainRow, name)
            if row is None:
                return False
            session.delete(row)
            return True

    def seed_domains(self, domains: list[ResearchDomain]) -> int:
        """Store ``domains`` when no domain has been stored yet; returns how many were added."""
        with self._session() as session:
            if session.query(DomainRow.name).first() is not None:
                return 0
            now = utcnow()
            for domain in domains:
                session.add(DomainRow(**_row_values(domain, DomainRow), created_at=now))
        logger.info("domains_seeded", count=len(domains))
        return len(domains)

    # =========================================================================
    # Full text cache
    # =========================================================================

    def cache_full_text(self, full_text: FullText) -> FullText:
        with self._session() as session:
            values = _row_values(full_text, FullTextRow)
            row = session.get(FullTextRow, full_text.item_id)
            if row is None:
                session.add(FullTextRow(**values))
            else:
                row.pmcid = values["pmcid"]
                row.sections = values["sections"]
                row.fetched_at = values["fetched_at"]
        return full_text

    def get_full_text(self, item_id: str) -> Optional[FullText]:
        with self._session() as session:
            row = session.get(FullTextRow, item_id)
            return _from_row(row, FullText) if row else None

    # =========================================================================
    # Activity log
    # =========================================================================

    def log_activity(
        self,
        agent_name: str,
        action: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        summary: str = "",
    ) -> ActivityRecord:
        """Append an activity record; ids increase in completion order."""
        with self._session() as session:
            row = ActivityRow(
                agent_name=agent_name,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                summary=summary,
                timestamp=utcnow(),
            )
            session.add(row)
            session.flush()
            return _from_row(row, ActivityRecord)

    def recent_activity(
        self,
        limit: int = 50,
        agent_name: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> list[ActivityRecord]:
        """Most recent records first."""
        with self._session() as session:
            query = session.query(ActivityRow)
            if agent_name is not None:
                query = query.filter(ActivityRow.agent_name == agent_name)
            if entity_id is not None:
                query = query.filter(ActivityRow.entity_id == entity_id)
            rows = query.order_by(ActivityRow.id.desc()).limit(limit).all()
            return [_from_row(r, ActivityRecord) for r in rows]

    # =========================================================================
    # Statistics
    # =========================================================================

    def stats(self) -> dict[str, Any]:
        with self._session() as session:
            def grouped(column) -> dict[str, int]:
                return {
                    key: count
                    for key, count in session.query(column, func.count()).group_by(column).all()
                    if key is not None
                }

            return {
                "items": session.query(func.count(ItemRow.id)).scalar(),
                "items_processed": session.query(func.count(ItemRow.id))
                .filter(ItemRow.processed.is_(True))
                .scalar(),
                "items_by_bucket": grouped(ItemRow.bucket),
                "artifacts": session.query(func.count(ArtifactRow.id)).scalar(),
                "artifacts_by_status": grouped(ArtifactRow.status),
                "validations": session.query(func.count(ValidationRow.seq)).scalar(),
                "plans": session.query(func.count(PlanRow.seq)).scalar(),
                "plans_by_status": grouped(PlanRow.status),
                "critiques": session.query(func.count(CritiqueRow.seq)).scalar(),
                "feedback": session.query(func.count(FeedbackRow.id)).scalar(),
                "domains_active": session.query(func.count(DomainRow.name))
                .filter(DomainRow.active.is_(True))
                .scalar(),
                "full_texts": session.query(func.count(FullTextRow.item_id)).scalar(),
                "activity": session.query(func.count(ActivityRow.id)).scalar(),
            }
