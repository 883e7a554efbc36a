"""Configuration: settings, prompts, organizational context, stage personas."""

from .context import OrganizationContext, ResearchDomain, Venture, default_context, load_context
from .settings import Settings, get_settings
from .stage_config import StageConfiguration, load_stage_configurations

__all__ = [
    "OrganizationContext",
    "ResearchDomain",
    "Settings",
    "StageConfiguration",
    "Venture",
    "default_context",
    "get_settings",
    "load_context",
    "load_stage_configurations",
]
