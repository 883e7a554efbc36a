"""Shared plumbing for the generative stages."""

from typing import Optional

import structlog

from research_pipeline.config.stage_config import StageConfiguration
from research_pipeline.llm.client import ConversationTurn, GenerativeClient
from research_pipeline.models.entities import ActivityRecord
from research_pipeline.store.item_store import ItemStore

logger = structlog.get_logger(__name__)


def truncate(text: Optional[str], limit: int) -> str:
    text = text or ""
    return text if len(text) <= limit else text[:limit]


def join_or(values: list[str], separator: str = "; ", empty: str = "None") -> str:
    return separator.join(v for v in values if v) or empty


class GenerativeStage:
    """A stage that sends one request per unit and persists the decoded result.

    The store, client and configuration are injected; the stage keeps no state
    of its own between units.
    """

    def __init__(self, store: ItemStore, client: GenerativeClient, config: StageConfiguration):
        self.store = store
        self.client = client
        self.config = config

    @property
    def name(self) -> str:
        return self.config.stage.value

    def policy(self, key: str, default=None):
        return self.config.policy.get(key, default)

    def _complete(self, user_prompt: str) -> str:
        """One single-turn request with this stage's persona as system context."""
        return self.client.complete(
            self.config.system_context,
            [ConversationTurn(role="user", content=user_prompt)],
        )

    def _log(
        self,
        action: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        summary: str = "",
    ) -> ActivityRecord:
        return self.store.log_activity(
            agent_name=self.name,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            summary=summary,
        )
