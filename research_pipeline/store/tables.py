"""SQLAlchemy table models for the Item Store."""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from research_pipeline.store.database import Base


class ItemRow(Base):
    __tablename__ = "items"
    __table_args__ = (UniqueConstraint("provider", "external_id", name="uq_item_source"),)

    id = Column(String(36), primary_key=True)
    provider = Column(String(64), nullable=False)
    external_id = Column(String(255), nullable=True)
    title = Column(Text, nullable=False)
    title_key = Column(String(100), nullable=False, index=True)
    body = Column(Text, nullable=False, default="")
    published_at = Column(Date, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    score = Column(Float, nullable=True, index=True)
    bucket = Column(String(16), nullable=True)
    processed = Column(Boolean, nullable=False, default=False)
    authors = Column(JSON, nullable=False, default=list)
    url = Column(Text, nullable=True)
    venue = Column(Text, nullable=True)
    citation_count = Column(Integer, nullable=False, default=0)
    extra = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<ItemRow(id={self.id}, provider={self.provider!r}, score={self.score})>"


class ArtifactRow(Base):
    __tablename__ = "artifacts"

    id = Column(String(36), primary_key=True)
    item_id = Column(String(36), ForeignKey("items.id"), nullable=False, index=True)
    title = Column(Text, nullable=False)
    statement = Column(Text, nullable=False)
    rationale = Column(Text, nullable=False, default="")
    assumptions = Column(JSON, nullable=False, default=list)
    predictions = Column(JSON, nullable=False, default=list)
    required_evidence = Column(JSON, nullable=False, default=list)
    confidence = Column(Float, nullable=False, default=0.5)
    status = Column(String(16), nullable=False, index=True)
    potential_impact = Column(Text, nullable=True)
    target_venture = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    status_updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<ArtifactRow(id={self.id}, status={self.status!r})>"


class ValidationRow(Base):
    __tablename__ = "validations"

    # seq orders history; "current" is the highest seq per artifact
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, nullable=False)
    artifact_id = Column(String(36), ForeignKey("artifacts.id"), nullable=False, index=True)
    supporting_evidence = Column(JSON, nullable=False, default=list)
    contradicting_evidence = Column(JSON, nullable=False, default=list)
    gaps = Column(JSON, nullable=False, default=list)
    key_references = Column(JSON, nullable=False, default=list)
    confidence_level = Column(String(16), nullable=False)
    recommendation = Column(String(32), nullable=False)
    summary = Column(Text, nullable=False, default="")
    suggested_modifications = Column(Text, nullable=True)
    evidence_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class PlanRow(Base):
    __tablename__ = "plans"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, nullable=False)
    artifact_id = Column(String(36), ForeignKey("artifacts.id"), nullable=False, index=True)
    title = Column(Text, nullable=False)
    objective = Column(Text, nullable=False, default="")
    methodology = Column(Text, nullable=False, default="")
    milestones = Column(JSON, nullable=False, default=list)
    resources = Column(JSON, nullable=False, default=list)
    timeline_units = Column(Integer, nullable=False, default=0)
    estimated_cost = Column(Float, nullable=False, default=0.0)
    output_kind = Column(String(16), nullable=False)
    feasibility = Column(Float, nullable=False, default=0.5)
    risk_notes = Column(Text, nullable=False, default="")
    status = Column(String(16), nullable=False, index=True)
    target_venture = Column(String(64), nullable=True)
    success_metrics = Column(JSON, nullable=False, default=list)
    next_steps = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    status_updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class CritiqueRow(Base):
    __tablename__ = "critiques"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, nullable=False)
    plan_id = Column(String(36), ForeignKey("plans.id"), nullable=False, index=True)
    open_questions = Column(JSON, nullable=False, default=list)
    weaknesses = Column(JSON, nullable=False, default=list)
    risks = Column(JSON, nullable=False, default=list)
    competitive_notes = Column(Text, nullable=False, default="")
    compliance_notes = Column(Text, nullable=False, default="")
    mitigations = Column(JSON, nullable=False, default=list)
    disposition = Column(String(16), nullable=False)
    rationale = Column(Text, nullable=False, default="")
    key_success_factors = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class ActivityRow(Base):
    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_name = Column(String(64), nullable=False, index=True)
    action = Column(String(128), nullable=False)
    entity_type = Column(String(32), nullable=True)
    entity_id = Column(String(64), nullable=True)
    summary = Column(Text, nullable=False, default="")
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)


class FeedbackRow(Base):
    __tablename__ = "feedback"
    __table_args__ = (UniqueConstraint("entity_type", "entity_id", name="uq_feedback_entity"),)

    id = Column(String(36), primary_key=True)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(64), nullable=False)
    rating = Column(Integer, nullable=True)
    useful = Column(Boolean, nullable=True)
    notes = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    action_taken = Column(String(16), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)


class DomainRow(Base):
    __tablename__ = "domains"

    name = Column(String(64), primary_key=True)
    keywords = Column(JSON, nullable=False, default=list)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class FullTextRow(Base):
    __tablename__ = "full_texts"

    item_id = Column(String(36), ForeignKey("items.id"), primary_key=True)
    pmcid = Column(String(32), nullable=False)
    sections = Column(JSON, nullable=False, default=list)
    fetched_at = Column(DateTime, nullable=False, default=datetime.utcnow)
