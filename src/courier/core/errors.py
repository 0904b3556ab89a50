"""
Error taxonomy for the command engine.

Every error knows how to render itself as an :class:`~courier.core.schema.ErrorInfo`, which is what
ends up in a failed ``ToolResult`` or in the ``show_error`` payload returned to the caller.
"""

from typing import (
    Any,
    List,
)

from courier.core.schema import (
    ClarificationOption,
    ErrorInfo,
)


class CourierError(Exception):
    """Base class for all engine errors."""

    code: str = "internal_error"

    def __init__(self, message: str, suggestion: str | None = None):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion

    def to_error_info(self) -> ErrorInfo:
        """Render the error for the caller."""
        return ErrorInfo(code=self.code, message=self.message, suggestion=self.suggestion)


# ---------------------------------------------------------------------------
# Structural errors (raised before anything executes)
# ---------------------------------------------------------------------------
class ValidationError(CourierError):
    """Bad command, malformed chain or unresolved parameters."""

    code = "validation_error"

    def __init__(
        self, message: str, suggestion: str | None = None, errors: List[str] | None = None
    ):
        super().__init__(message, suggestion)
        self.errors = errors or [message]


class ChainLengthExceeded(ValidationError):
    """The planner proposed more steps than allowed."""

    code = "chain_too_long"


class DuplicateToolError(ValidationError):
    """The same tool appears at two adjacent positions of a chain."""

    code = "duplicate_tool"


class DuplicateToolNameError(CourierError, ValueError):
    """A tool with the same name is already registered."""

    code = "duplicate_tool_name"


# ---------------------------------------------------------------------------
# Resolution errors
# ---------------------------------------------------------------------------
class NotFoundError(CourierError, LookupError):
    """Nothing matched: no tool, contact or conversation."""

    code = "not_found"


class AmbiguousMatchError(CourierError):
    """Several candidates are too close to call; the user has to pick one."""

    code = "ambiguous_match"

    def __init__(
        self,
        message: str,
        options: List[ClarificationOption],
        suggestion: str | None = None,
        low_confidence: bool = False,
    ):
        super().__init__(message, suggestion)
        self.options = options
        self.low_confidence = low_confidence


# ---------------------------------------------------------------------------
# Execution errors (abort the remaining chain)
# ---------------------------------------------------------------------------
class ToolExecutionError(CourierError, RuntimeError):
    """Raised when a requested tool cannot run or fails."""

    code = "tool_failed"


class ChainTimeoutError(CourierError, TimeoutError):
    """An LLM or tool call exceeded its time budget."""

    code = "timeout"


class PlannerError(CourierError):
    """The planning model is unavailable or returned something unusable."""

    code = "planner_error"


class RetrievalDegraded(CourierError):
    """Vector search is unavailable or too sparse. Absorbed by the retrieval layer."""

    code = "retrieval_degraded"

    def __init__(self, message: str, cause: Any = None):
        super().__init__(message)
        self.cause = cause
