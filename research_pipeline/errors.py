"""Error taxonomy shared by stages, connectors and the orchestrator.

Unit-level errors (connector, generative call, malformed response) are
recovered by the orchestrator and reported in the run summary, as is an
invalid transition hit while a unit runs. Storage and other precondition
errors abort immediately.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    kind = "pipeline_error"


class ConnectorError(PipelineError):
    """A search provider failed (transport, status code, bad payload)."""

    kind = "connector_error"

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class GenerativeCallError(PipelineError):
    """Transport, timeout or quota failure calling the generative service."""

    kind = "generative_call_error"


class MalformedResponse(PipelineError):
    """The generative call succeeded but structured extraction failed."""

    kind = "malformed_response"

    def __init__(self, message: str, raw_response: Optional[str] = None):
        super().__init__(message)
        self.raw_response = raw_response or ""

    @property
    def snippet(self) -> str:
        return self.raw_response[:300]


class ValidationIncomplete(PipelineError):
    """Validation could not produce a record; the artifact is left untouched."""

    kind = "validation_incomplete"


class PreconditionFailed(PipelineError):
    """A stage was invoked on inputs that violate its contract."""

    kind = "precondition_failed"


class InvalidTransition(PreconditionFailed):
    """A status change is not allowed from the entity's current status."""

    kind = "invalid_transition"


class StorageError(PipelineError):
    """The durable store is unavailable or rejected a write."""

    kind = "storage_error"


class UnknownStage(PipelineError):
    """A partial run named a stage that does not exist."""

    kind = "unknown_stage"


# Errors that are recovered per unit and reported in the run summary.
RECOVERABLE_UNIT_ERRORS = (
    ConnectorError,
    GenerativeCallError,
    MalformedResponse,
    InvalidTransition,
    ValidationIncomplete,
)
