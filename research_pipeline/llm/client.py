"""Generative client: ``complete(system_context, messages) -> str``.

Stages depend only on the GenerativeClient protocol. The bundled
implementation talks to Ollama through LangChain, retries transport failures
and falls back to a secondary model when the primary returns nothing.
"""

from functools import lru_cache
from typing import Literal, Optional, Protocol, Sequence

import structlog
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_core.output_parsers import StrOutputParser
from langchain_ollama import ChatOllama
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict
from tenacity import retry, stop_after_attempt, wait_exponential

from research_pipeline.errors import GenerativeCallError

logger = structlog.get_logger(__name__)


class LLMSettings(BaseSettings):
    """LLM configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore",
    )

    ollama_base_url: str = "http://localhost:11434"
    model_name: str = "gpt-oss:20b"
    fallback_model_name: str = "gemma3:latest"  # Used when primary returns empty
    temperature: float = 0.2
    request_timeout: int = 120
    num_ctx: int = 8192
    num_predict: int = 4096  # Max tokens to generate


@lru_cache
def get_llm_settings() -> LLMSettings:
    """Get cached LLM settings."""
    return LLMSettings()


class ConversationTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class GenerativeClient(Protocol):
    """Anything that can answer a system context plus conversation."""

    def complete(self, system_context: str, messages: Sequence[ConversationTurn]) -> str:
        ...


def to_langchain_messages(system_context: str, messages: Sequence[ConversationTurn]) -> list[BaseMessage]:
    converted: list[BaseMessage] = [SystemMessage(content=system_context)]
    for turn in messages:
        if turn.role == "user":
            converted.append(HumanMessage(content=turn.content))
        else:
            converted.append(AIMessage(content=turn.content))
    return converted


class OllamaGenerativeClient:
    """GenerativeClient backed by ``ChatOllama``."""

    def __init__(self, settings: Optional[LLMSettings] = None):
        self.settings = settings or get_llm_settings()

    def _create_chat_model(self, use_fallback: bool = False) -> ChatOllama:
        model = self.settings.fallback_model_name if use_fallback else self.settings.model_name
        return ChatOllama(
            model=model,
            base_url=self.settings.ollama_base_url,
            temperature=self.settings.temperature,
            num_ctx=self.settings.num_ctx,
            num_predict=self.settings.num_predict,
            client_kwargs={"timeout": self.settings.request_timeout},
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    def _invoke(self, messages: list[BaseMessage], use_fallback: bool = False) -> str:
        chain = self._create_chat_model(use_fallback) | StrOutputParser()
        return chain.invoke(messages)

    def complete(self, system_context: str, messages: Sequence[ConversationTurn]) -> str:
        """Run one completion, trying the fallback model on an empty response.

        Raises:
            GenerativeCallError: Transport failure after retries, or both
                models returned empty responses.
        """
        lc_messages = to_langchain_messages(system_context, messages)
        primary = self.settings.model_name
        fallback = self.settings.fallback_model_name

        try:
            logger.debug("llm_trying_primary", model=primary, turns=len(messages))
            response = self._invoke(lc_messages)
            if response and response.strip():
                logger.debug("llm_primary_success", model=primary, length=len(response))
                return response

            logger.warning("llm_primary_empty_trying_fallback", primary_model=primary, fallback_model=fallback)
            response = self._invoke(lc_messages, use_fallback=True)
        except GenerativeCallError:
            raise
        except Exception as e:
            logger.error("llm_call_failed", model=primary, error=str(e))
            raise GenerativeCallError(f"Generative call failed: {e}") from e

        if response and response.strip():
            logger.info("llm_fallback_success", model=fallback, length=len(response))
            return response

        raise GenerativeCallError(
            f"Both primary ({primary}) and fallback ({fallback}) returned empty responses"
        )
