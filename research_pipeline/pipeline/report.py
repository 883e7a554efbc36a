"""Markdown run report rendered from a RunSummary and the Item Store."""

from pathlib import Path
from typing import Optional

import structlog

from research_pipeline.models.enums import Bucket
from research_pipeline.models.run import RunSummary
from research_pipeline.store.item_store import ItemStore

logger = structlog.get_logger(__name__)


def _section(title: str, lines: list[str]) -> str:
    return f"## {title}\n" + ("\n".join(lines) if lines else "None") + "\n"


def render_report(summary: RunSummary, store: ItemStore) -> str:
    """Render the report for one run."""
    minutes = summary.duration_seconds / 60
    counts = summary.scored_counts

    header = [
        "# Research Pipeline Report",
        f"Run: {summary.run_id} ({summary.mode})",
        f"Generated: {(summary.finished_at or summary.started_at).isoformat()}",
        f"Duration: {minutes:.1f} minutes",
        "",
    ]
    if summary.aborted:
        header.append(f"**Run aborted**: {summary.abort_reason}\n")
    elif summary.cancelled:
        header.append("**Run cancelled** before all work finished\n")

    overview = [
        f"- **Items discovered**: {summary.item_count}",
        f"- **Scored**: {counts.high} high, {counts.medium} medium, {counts.low} low",
        f"- **Artifacts generated**: {summary.artifact_count}",
        f"- **Validations completed**: {summary.validated_count} ({summary.pursued_count} pursue)",
        f"- **Plans designed**: {summary.plan_count}",
        f"- **Critiques completed**: {summary.critique_count} ({len(summary.approved_plans)} approved)",
        f"- **Held for review**: {len(summary.held_for_review)}",
        f"- **Failures**: {len(summary.failures)}",
    ]

    high_items = [
        i for i in store.get_items(summary.scored_item_ids) if i.bucket == Bucket.HIGH
    ]
    high_items.sort(key=lambda i: i.score or 0, reverse=True)
    high_lines = [f"- **{i.title}** ({i.source_id.provider}): score {i.score:.0f}" for i in high_items]

    artifact_lines = []
    for artifact in store.get_artifacts(summary.artifact_ids):
        artifact_lines += [
            f"### {artifact.title}",
            f"- **Statement**: {artifact.statement}",
            f"- **Confidence**: {artifact.confidence:.2f}",
            f"- **Impact**: {artifact.potential_impact or 'Not specified'}",
            f"- **Status**: {artifact.status.value}",
            "",
        ]

    validation_lines = []
    for artifact in store.get_artifacts(summary.validated_artifact_ids):
        validation = store.current_validation(artifact.id)
        if validation is None:
            continue
        validation_lines += [
            f"### {artifact.title}",
            f"- **Confidence Level**: {validation.confidence_level.value}",
            f"- **Recommendation**: {validation.recommendation.value}",
            f"- **Summary**: {validation.summary or 'Not provided'}",
            "",
        ]

    plan_lines = []
    for plan in store.get_plans(summary.plan_ids):
        plan_lines += [
            f"### {plan.title}",
            f"- **Objective**: {plan.objective or 'Not specified'}",
            f"- **Output Type**: {plan.output_kind.value}",
            f"- **Timeline**: {plan.timeline_units} weeks",
            f"- **Budget**: ${plan.estimated_cost:,.0f}",
            f"- **Status**: {plan.status.value}",
            "",
        ]

    critique_lines = []
    for plan in store.get_plans(summary.critiqued_plan_ids):
        critique = store.current_critique(plan.id)
        if critique is None:
            continue
        critique_lines += [
            f"### {plan.title}",
            f"- **Assessment**: {critique.disposition.value}",
            f"- **Critical Questions**: {'; '.join(critique.open_questions) or 'None'}",
            f"- **Key Risks**: {'; '.join(r.risk for r in critique.risks) or 'None'}",
            "",
        ]

    failure_lines = [
        f"- [{f.stage}] {f.entity_id or '-'}: {f.kind}: {f.reason}" for f in summary.failures
    ] + [
        f"- [{e.stage}] connector {e.provider}: {e.reason}" for e in summary.connector_errors
    ]

    return "\n".join([
        "\n".join(header),
        _section("Summary", overview),
        _section("High Priority Items", high_lines),
        _section("Generated Artifacts", artifact_lines),
        _section("Validated Artifacts", validation_lines),
        _section("Designed Plans", plan_lines),
        _section("Critiques", critique_lines),
        _section("Failures", failure_lines),
        "---\n*Generated by research-pipeline*\n",
    ])


def save_report(summary: RunSummary, store: ItemStore, reports_dir: str,
                content: Optional[str] = None) -> Path:
    """Write the report to ``<reports_dir>/pipeline-<date>-<run>.md``."""
    directory = Path(reports_dir)
    directory.mkdir(parents=True, exist_ok=True)
    stamp = summary.started_at.strftime("%Y-%m-%d")
    path = directory / f"pipeline-{stamp}-{summary.run_id[:8]}.md"
    path.write_text(content if content is not None else render_report(summary, store), encoding="utf-8")
    logger.info("report_saved", path=str(path), run_id=summary.run_id)
    return path
