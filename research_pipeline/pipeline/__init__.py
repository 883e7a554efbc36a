"""Pipeline orchestration and run reports."""

from .factory import build_orchestrator
from .orchestrator import PipelineOrchestrator
from .report import render_report, save_report

__all__ = [
    "PipelineOrchestrator",
    "build_orchestrator",
    "render_report",
    "save_report",
]
