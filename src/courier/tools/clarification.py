"""Explicit clarification requests."""

import logging
from typing import (
    Any,
    Dict,
    List,
)

from pydantic import ValidationError as PydanticValidationError

from courier.agent.tool_executor import error_result
from courier.core.errors import ValidationError
from courier.core.schema import (
    ClarificationOption,
    ClarificationPayload,
    ClarificationReason,
    NextAction,
    ToolResult,
)
from courier.tools import (
    ToolContext,
    register_tool,
)

logger = logging.getLogger(__name__)


@register_tool("request_clarification")
async def request_clarification(
    ctx: ToolContext,
    reason: str,
    question: str,
    options: List[Dict[str, Any]],
) -> ToolResult:
    """
    Ask the user to choose between options and stop the chain.

    Each option needs an ``id`` and a ``title``; ``reason`` is one of the clarification reasons.
    """
    try:
        parsed_reason = ClarificationReason(reason)
    except ValueError:
        allowed = ", ".join(r.value for r in ClarificationReason)
        message = f"Unknown clarification reason '{reason}' ({allowed})."
        return error_result(ValidationError(message))

    try:
        parsed_options = [ClarificationOption.model_validate(option) for option in options]
    except PydanticValidationError as exc:
        message = f"Invalid clarification options: {exc.error_count()} errors"
        return error_result(ValidationError(message))

    if not parsed_options:
        return error_result(ValidationError("A clarification needs at least one option."))

    limit = ctx.services.settings.MAX_CLARIFICATION_OPTIONS
    logger.info(
        "Requesting clarification (%s) with %d options", parsed_reason.value, len(parsed_options)
    )
    return ToolResult(
        success=True,
        next_action=NextAction.CLARIFICATION_NEEDED,
        clarification=ClarificationPayload(
            reason=parsed_reason, question=question, options=parsed_options[:limit]
        ),
    )
