"""
Best-effort parser for the planner's JSON output.

The model is asked for exactly
    {"tool_calls": [{"tool": "<name>", "parameters": { ... }}, ...]}
but in practice wraps it in code fences, prefixes prose, or uses ``name``/``args`` keys.  This
module digs the outermost JSON object out of the text and normalises it into a
:class:`~courier.core.schema.ChainPlan`.
"""

import json
import logging
import re
from typing import (
    Any,
    Dict,
    List,
)

from pydantic import (
    BaseModel,
    Field,
)
from pydantic import ValidationError as PydanticValidationError

from courier.core.errors import PlannerError
from courier.core.schema import (
    ChainPlan,
    ToolCall,
)

logger = logging.getLogger(__name__)


class ToolCallParseError(PlannerError):
    """Raised when the planner output cannot be turned into a chain plan."""


class PlannerResponse(BaseModel):
    """Validates planner responses from LLMs."""

    tool_calls: List[Dict[str, Any]] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------
_FENCE = re.compile(r"```(?:json)?\s*(.+?)```", re.DOTALL)


def _skip_string(s: str, i: int) -> int:
    """Given s[i] == '"', return the index just past the closing quote."""
    i += 1
    esc = False
    while i < len(s):
        ch = s[i]
        if esc:
            esc = False
        elif ch == "\\":
            esc = True
        elif ch == '"':
            return i + 1
        i += 1
    raise ToolCallParseError("unterminated string literal")


def _find_matching_brace(s: str, i: int) -> int:
    """Given s[i] == '{', return index just past its matching '}'."""
    depth = 0
    while i < len(s):
        ch = s[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
        elif ch == '"':
            i = _skip_string(s, i)  # skip over quoted section
            continue
        i += 1
    raise ToolCallParseError("unbalanced braces")


def sanitize_json_string(content: str) -> str:
    """Strip code fences and control characters, then cut out the outermost JSON object."""
    match = _FENCE.search(content)
    if match:
        content = match.group(1).strip()

    # Remove control characters except whitespace
    content = "".join(ch for ch in content if ch >= " " or ch in "\n\r\t")

    open_idx = content.find("{")
    if open_idx < 0:
        raise ToolCallParseError("no JSON object in planner output")
    return content[open_idx : _find_matching_brace(content, open_idx)]


def _normalise_call(raw: Dict[str, Any]) -> ToolCall:
    tool = raw.get("tool") or raw.get("name")
    params = raw.get("parameters", raw.get("args", {}))
    if not isinstance(tool, str) or not tool.strip():
        raise ToolCallParseError(f"tool call without a name: {raw!r}")
    if not isinstance(params, dict):
        raise ToolCallParseError(f"parameters of '{tool}' must be an object")
    return ToolCall(tool=tool.strip(), parameters=params)


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------
def parse_chain_plan(text: str) -> ChainPlan:
    """
    Parse planner output into a :class:`ChainPlan`.

    Accepts ``{"tool_calls": [...]}`` as well as a single bare ``{"tool": ..., "args": ...}``
    object.  Each call may use ``tool`` or ``name`` and ``parameters`` or ``args``.

    Raises
    ------
    ToolCallParseError
        If no JSON object can be extracted or its shape is wrong.
    """
    cleaned = sanitize_json_string(text)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.error("Planner returned invalid JSON: %s", cleaned[:200])
        raise ToolCallParseError(f"invalid JSON from planner: {exc}") from exc

    single_call = isinstance(parsed, dict) and ("tool" in parsed or "name" in parsed)
    if single_call and "tool_calls" not in parsed:
        parsed = {"tool_calls": [parsed]}

    try:
        response = PlannerResponse.model_validate(parsed)
    except PydanticValidationError as exc:
        raise ToolCallParseError(f"unexpected planner output shape: {exc}") from exc

    return ChainPlan(calls=[_normalise_call(raw) for raw in response.tool_calls])
