"""Multi-turn chat with a stage persona, used by the CLI ``chat`` command."""

from typing import Optional

import structlog

from research_pipeline.llm.client import ConversationTurn, GenerativeClient

logger = structlog.get_logger(__name__)


class Conversation:
    """Keeps the turn history and replays it on every completion."""

    def __init__(self, client: GenerativeClient, system_context: str, max_turns: Optional[int] = 40):
        self.client = client
        self.system_context = system_context
        self.max_turns = max_turns
        self.history: list[ConversationTurn] = []

    def ask(self, message: str) -> str:
        """Send ``message`` and return the reply.

        The user turn is only kept if the call succeeds.
        """
        turns = self._window() + [ConversationTurn(role="user", content=message)]
        reply = self.client.complete(self.system_context, turns)
        self.history.append(turns[-1])
        self.history.append(ConversationTurn(role="assistant", content=reply))
        logger.debug("conversation_turn", turns=len(self.history), reply_length=len(reply))
        return reply

    def reset(self) -> None:
        self.history.clear()

    def _window(self) -> list[ConversationTurn]:
        if self.max_turns is None or len(self.history) <= self.max_turns:
            return list(self.history)
        return self.history[-self.max_turns:]
