"""
Basic sanity tests for the tool executor.

Run with:
$ pytest -q
"""

import asyncio

import pytest

from courier.agent.tool_executor import execute_tool
from courier.core.errors import (
    ChainTimeoutError,
    NotFoundError,
    ToolExecutionError,
)
from courier.core.schema import (
    AppContext,
    NextAction,
    ToolCall,
    ToolResult,
)
from courier.tools import (
    ToolContext,
    ToolRegistry,
    register_tool,
)

REGISTRY = ToolRegistry()


# Stub tools for testing purposes.
@register_tool("add", registry=REGISTRY)
async def _add(ctx: ToolContext, a: int, b: int) -> ToolResult:
    """Return the sum of two integers (used only for tests)."""

    return ToolResult(success=True, next_action=NextAction.COMPLETE, data={"sum": a + b})


@register_tool("slow", registry=REGISTRY)
async def _slow(ctx: ToolContext) -> ToolResult:
    """Never finishes in time."""

    await asyncio.sleep(5)
    return ToolResult(success=True, next_action=NextAction.COMPLETE)


@register_tool("broken", registry=REGISTRY)
async def _broken(ctx: ToolContext) -> ToolResult:
    """Always raises."""

    raise KeyError("boom")


@register_tool("untyped", registry=REGISTRY)
async def _untyped(ctx: ToolContext) -> dict:
    """Returns the wrong type."""

    return {"ok": True}


def _ctx() -> ToolContext:
    return ToolContext(
        app_context=AppContext(current_user_id="u-1"), services=None  # type: ignore[arg-type]
    )


@pytest.mark.asyncio
async def test_execute_tool_success() -> None:
    """Executor should return the tool's result when the tool is valid."""

    result = await execute_tool(REGISTRY, ToolCall(tool="add", parameters={"a": 2, "b": 3}), _ctx())
    assert result.data == {"sum": 5}


@pytest.mark.asyncio
async def test_execute_tool_missing() -> None:
    """Executor should raise *NotFoundError* for an unknown tool."""

    try:
        await execute_tool(REGISTRY, ToolCall(tool="not_a_tool"), _ctx())
    except NotFoundError as exc:
        assert "not_a_tool" in str(exc)
    else:  # pragma: no cover
        raise AssertionError("NotFoundError was not raised")


@pytest.mark.asyncio
async def test_execute_tool_bad_args() -> None:
    """Executor should raise *ToolExecutionError* for wrong arguments."""

    try:
        # missing "b"
        await execute_tool(REGISTRY, ToolCall(tool="add", parameters={"a": 2}), _ctx())
    except ToolExecutionError as exc:
        assert "Invalid arguments" in str(exc)
    else:  # pragma: no cover
        raise AssertionError("ToolExecutionError was not raised")


@pytest.mark.asyncio
async def test_execute_tool_timeout() -> None:
    """A tool that outlives its budget becomes a timeout error."""

    with pytest.raises(ChainTimeoutError) as info:
        await execute_tool(REGISTRY, ToolCall(tool="slow"), _ctx(), timeout=0.01)
    assert info.value.code == "timeout"


@pytest.mark.asyncio
async def test_execute_tool_wraps_exceptions() -> None:
    """Unexpected exceptions are wrapped with the tool name."""

    with pytest.raises(ToolExecutionError, match="broken"):
        await execute_tool(REGISTRY, ToolCall(tool="broken"), _ctx())


@pytest.mark.asyncio
async def test_execute_tool_rejects_wrong_return_type() -> None:
    """Handlers must return a ToolResult."""

    with pytest.raises(ToolExecutionError, match="expected ToolResult"):
        await execute_tool(REGISTRY, ToolCall(tool="untyped"), _ctx())
