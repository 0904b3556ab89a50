"""
Deterministic data flow between chain steps.

The planner is told to use ``$prev.<field>`` references, but it does not get the final say: for
every known ``(previous tool, next tool)`` pair the table below names which output field feeds
which input parameter, and that mapping overwrites whatever the planner wrote.  An id the planner
made up can therefore never reach a tool when the previous step produced the real one.
"""

import logging
import re
from typing import (
    Any,
    Dict,
    Mapping,
    Tuple,
)

from courier.core.errors import ValidationError
from courier.core.schema import (
    AppContext,
    ChainPlan,
    ToolCall,
    ToolDefinition,
)
from courier.tools import ToolRegistry

logger = logging.getLogger(__name__)

PARAMETER_MAP: Dict[Tuple[str, str], Dict[str, str]] = {
    ("lookup_contacts", "send_message"): {"recipient_id": "contact_id"},
    ("lookup_contacts", "resolve_conversation"): {"contact_identifier": "contact_id"},
    ("resolve_conversation", "send_message"): {"conversation_id": "conversation_id"},
    ("resolve_conversation", "summarize_conversation"): {"conversation_id": "conversation_id"},
    ("resolve_conversation", "analyze_conversation"): {"conversation_id": "conversation_id"},
    ("resolve_conversation", "get_messages"): {"conversation_id": "conversation_id"},
    ("get_conversations", "summarize_conversation"): {"conversation_id": "conversation_id"},
    ("get_conversations", "analyze_conversation"): {"conversation_id": "conversation_id"},
    ("get_conversations", "get_messages"): {"conversation_id": "conversation_id"},
    ("get_messages", "summarize_conversation"): {"conversation_id": "conversation_id"},
}
"""``(from_tool, to_tool) -> {to_param: from_field}``"""

REFERENCE_PATTERN = re.compile(r"^\$prev\.([A-Za-z_][\w.]*)$")

USER_PARAMETERS = ("user_id", "current_user_id", "sender_id")

_MISSING = object()


def mapped_parameters(from_tool: str | None, to_tool: str) -> Dict[str, str]:
    """Parameters of *to_tool* that the previous step *from_tool* supplies."""
    if from_tool is None:
        return {}
    return PARAMETER_MAP.get((from_tool, to_tool), {})


def is_reference(value: Any) -> bool:
    """True for a ``$prev.<field>`` token."""
    return isinstance(value, str) and REFERENCE_PATTERN.match(value.strip()) is not None


def lookup_path(data: Mapping[str, Any], path: str) -> Any:
    """Follow a dotted *path* through nested mappings and lists; ``_MISSING`` when absent."""
    current: Any = data
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
    return current


# ---------------------------------------------------------------------------
# Before validation
# ---------------------------------------------------------------------------
def apply_context_defaults(
    plan: ChainPlan, app_context: AppContext, registry: ToolRegistry
) -> ChainPlan:
    """
    Fill parameters the caller's context determines.

    ``user_id``, ``current_user_id`` and ``sender_id`` always become the calling user, whatever the
    planner wrote.  ``conversation_id`` defaults to the open conversation when the tool accepts it,
    the planner left it out and no earlier step feeds the tool.
    """
    calls = []
    previous: str | None = None
    for call in plan.calls:
        if call.tool not in registry:
            calls.append(call)
            previous = call.tool
            continue

        schema = registry.get(call.tool).parameter_schema
        params = dict(call.parameters)
        for name in USER_PARAMETERS:
            if name in schema:
                params[name] = app_context.current_user_id

        fed_by_previous = bool(mapped_parameters(previous, call.tool))
        if (
            "conversation_id" in schema
            and params.get("conversation_id") in (None, "")
            and not fed_by_previous
            and not params.get("recipient_id")
            and app_context.current_conversation_id
        ):
            params["conversation_id"] = app_context.current_conversation_id

        calls.append(ToolCall(tool=call.tool, parameters=params))
        previous = call.tool
    return ChainPlan(calls=calls, source=plan.source)


# ---------------------------------------------------------------------------
# During execution
# ---------------------------------------------------------------------------
def resolve_parameters(
    call: ToolCall,
    tool: ToolDefinition,
    previous_tool: str | None = None,
    previous_data: Mapping[str, Any] | None = None,
) -> Dict[str, Any]:
    """
    Produce the concrete keyword arguments for one step.

    Reference tokens are replaced with values from *previous_data*, then the table mapping for
    ``(previous_tool, call.tool)`` is applied on top.  Parameters the tool does not accept are
    dropped.

    Raises
    ------
    ValidationError
        If a reference cannot be resolved or a mapped field is absent from the previous output.
    """
    data = previous_data or {}
    params: Dict[str, Any] = {}

    for name, value in call.parameters.items():
        if name not in tool.parameter_schema:
            logger.debug("Dropping unknown parameter '%s' for tool '%s'", name, call.tool)
            continue
        if is_reference(value):
            if previous_tool is None:
                raise ValidationError(
                    f"'{call.tool}' refers to a previous step, but it is the first step."
                )
            path = REFERENCE_PATTERN.match(value.strip()).group(1)  # type: ignore[union-attr]
            resolved = lookup_path(data, path)
            if resolved is _MISSING:
                raise ValidationError(
                    f"Could not resolve '{value}' for '{call.tool}': "
                    f"'{previous_tool}' returned no '{path}'."
                )
            value = resolved
        params[name] = value

    for to_param, from_field in mapped_parameters(previous_tool, call.tool).items():
        value = lookup_path(data, from_field)
        if value is _MISSING or value is None:
            if params.get(to_param) in (None, ""):
                raise ValidationError(
                    f"'{previous_tool}' did not return '{from_field}' needed by '{call.tool}'."
                )
            continue
        if to_param in params and params[to_param] != value:
            logger.debug(
                "Overriding planner value for %s.%s with %s.%s",
                call.tool,
                to_param,
                previous_tool,
                from_field,
            )
        params[to_param] = value

    return params
