"""Dispatches tool calls registered in ``courier.tools`` and wraps errors."""

import asyncio
import logging
from typing import (
    Any,
    Dict,
)

from courier.core.errors import (
    AmbiguousMatchError,
    ChainTimeoutError,
    CourierError,
    ToolExecutionError,
)
from courier.core.schema import (
    ClarificationPayload,
    ClarificationReason,
    NextAction,
    ToolCall,
    ToolResult,
)
from courier.tools import (
    ToolContext,
    ToolRegistry,
)

logger = logging.getLogger(__name__)


def error_result(exc: CourierError, **metadata: Any) -> ToolResult:
    """Turn a domain error raised inside a tool into an ``error`` result."""
    return ToolResult(
        success=False, next_action=NextAction.ERROR, error=exc.to_error_info(), metadata=metadata
    )


def clarification_result(
    exc: AmbiguousMatchError, reason: ClarificationReason | None = None, **data: Any
) -> ToolResult:
    """Turn an :class:`AmbiguousMatchError` into a ``clarification_needed`` result."""
    if reason is None:
        reason = (
            ClarificationReason.LOW_CONFIDENCE_CONTACT
            if exc.low_confidence
            else ClarificationReason.AMBIGUOUS_CONTACT
        )
    return ToolResult(
        success=True,
        next_action=NextAction.CLARIFICATION_NEEDED,
        data=data,
        clarification=ClarificationPayload(
            reason=reason, question=exc.message, options=exc.options
        ),
        confidence=exc.options[0].confidence if exc.options else None,
    )


async def execute_tool(
    registry: ToolRegistry,
    call: ToolCall,
    ctx: ToolContext,
    timeout: float | None = None,
) -> ToolResult:
    """
    Look up ``call.tool`` in *registry* and await it with ``call.parameters``.

    Parameters
    ----------
    registry:
        Registry holding the tool definition.
    call:
        Tool name plus fully resolved keyword arguments.
    ctx:
        Per-step context passed as the handler's first argument.
    timeout:
        Seconds to wait before giving up; ``None`` waits forever.

    Returns
    -------
    ToolResult
        Whatever the tool returned.

    Raises
    ------
    NotFoundError
        If the tool is not registered.
    ChainTimeoutError
        If the tool does not finish within *timeout*.
    CourierError
        Domain errors raised by the tool pass through unchanged.
    ToolExecutionError
        If the invocation raises anything else or returns something that is not a
        :class:`ToolResult`.
    """
    tool = registry.get(call.tool)
    args: Dict[str, Any] = dict(call.parameters)

    try:
        logger.debug("Executing tool '%s' with args=%s", call.tool, sorted(args))
        result = await asyncio.wait_for(tool.handler(ctx, **args), timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("Tool '%s' timed out after %ss", call.tool, timeout)
        raise ChainTimeoutError(
            f"'{call.tool}' took too long to respond.", suggestion="Please try again."
        ) from exc
    except CourierError:
        # Already carries a code and a user-facing message.
        raise
    except TypeError as exc:
        # Argument mismatch; give the caller a clean exception.
        logger.exception("Argument error while executing tool '%s'", call.tool)
        raise ToolExecutionError(f"Invalid arguments for tool '{call.tool}': {exc}") from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", call.tool)
        raise ToolExecutionError(f"Tool '{call.tool}' raised an error: {exc}") from exc

    if not isinstance(result, ToolResult):
        raise ToolExecutionError(
            f"Tool '{call.tool}' returned {type(result).__name__}, expected ToolResult"
        )
    return result
