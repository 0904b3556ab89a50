"""
Structural checks that run before anything executes.

Two stages:

* :func:`validate_preflight` looks at the raw command and context.  Hard errors stop the request;
  warnings are returned to the caller alongside the response.
* :func:`validate_chain` looks at the plan after context defaults have been applied and raises on
  the first class of problem it finds.  A plan that passes here cannot fail for structural reasons
  later.
"""

import logging
import re
from typing import (
    Any,
    Dict,
    List,
    Tuple,
)

from pydantic import (
    BaseModel,
    Field,
)

from courier.agent.parameter_mapper import (
    is_reference,
    mapped_parameters,
)
from courier.core.errors import (
    ChainLengthExceeded,
    DuplicateToolError,
    ValidationError,
)
from courier.core.schema import (
    AppContext,
    ChainPlan,
    ToolCall,
)
from courier.tools import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHAIN_LENGTH = 3

INFO_QUESTION_PATTERN = re.compile(
    r"^\s*(who|what|when|where|which|why|did|does|is|are|was|were|has|have|anyone|anybody)\b"
    r"|\b(is|was|did|does) (anyone|anybody|someone)\b",
    re.IGNORECASE,
)

PLACEHOLDER_PATTERNS = (
    re.compile(r"^\s*\[[^\]]*\]\s*$"),
    re.compile(r"^\s*<[^>]*>\s*$"),
    re.compile(r"^\s*\{[^}]*\}\s*$"),
    re.compile(r"\bfrom (the )?(previous|prior|first|last|above) (step|result|call)\b", re.I),
    re.compile(r"\b(from|of) step \d+\b", re.I),
)

CHAIN_PATTERNS: Dict[Tuple[str, ...], str] = {
    ("lookup_contacts", "send_message"): "message-contact",
    ("lookup_contacts", "resolve_conversation"): "open-conversation",
    ("lookup_contacts", "resolve_conversation", "summarize_conversation"): "summarize-contact",
    ("lookup_contacts", "resolve_conversation", "analyze_conversation"): "ask-about-contact",
    ("lookup_contacts", "resolve_conversation", "send_message"): "message-contact-thread",
    ("resolve_conversation", "summarize_conversation"): "summarize-conversation",
    ("get_conversations", "summarize_conversation"): "summarize-latest",
    ("analyze_conversations_multi",): "cross-conversation-question",
}

_TYPE_CHECKS = {
    "str": lambda v: isinstance(v, str),
    "int": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "float": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "bool": lambda v: isinstance(v, bool),
    "list": lambda v: isinstance(v, list),
    "dict": lambda v: isinstance(v, dict),
}


class PreflightReport(BaseModel):
    """Outcome of the command-level checks."""

    valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


def is_information_question(command: str) -> bool:
    """Heuristic: does *command* ask about message content rather than ask for an action?"""
    return bool(INFO_QUESTION_PATTERN.search(command)) or command.strip().endswith("?")


def validate_preflight(
    command: str, app_context: AppContext, max_length: int = 1000
) -> PreflightReport:
    """Check the command and context before planning."""
    report = PreflightReport()
    text = command.strip()

    if not text:
        report.errors.append("Command is empty.")
        report.suggestions.append('Try something like "Tell John I\'m on my way".')
    elif len(text) > max_length:
        report.errors.append(f"Command is too long ({len(text)} > {max_length} characters).")
        report.suggestions.append("Shorten the command and try again.")

    if not app_context.current_user_id:
        report.errors.append("No current user in the app context.")

    if text and is_information_question(text) and not app_context.in_conversation:
        report.warnings.append(
            "Question asked outside a conversation: searching across all conversations."
        )

    report.valid = not report.errors
    return report


def is_placeholder(value: Any) -> bool:
    """Literal template values such as ``"[contact_id]"`` or ``"id from step 1"``."""
    if isinstance(value, list):
        return any(is_placeholder(item) for item in value)
    if not isinstance(value, str) or is_reference(value):
        return False
    return any(pattern.search(value) for pattern in PLACEHOLDER_PATTERNS)


def _is_present(value: Any) -> bool:
    return value is not None and value != ""


def _check_call(
    index: int, call: ToolCall, previous: str | None, registry: ToolRegistry
) -> List[str]:
    errors: List[str] = []
    step = f"step {index + 1} ({call.tool})"
    if call.tool not in registry:
        return [f"{step}: unknown tool."]

    schema = registry.get(call.tool).parameter_schema
    supplied = mapped_parameters(previous, call.tool)

    for name, value in call.parameters.items():
        if is_placeholder(value):
            errors.append(f"{step}: parameter '{name}' has placeholder value {value!r}.")
        elif is_reference(value):
            if previous is None:
                errors.append(f"{step}: '{name}' refers to a previous step that does not exist.")
        elif name in schema and _is_present(value):
            expected = schema[name]["type"]
            check = _TYPE_CHECKS.get(expected)
            if check is not None and not check(value):
                errors.append(
                    f"{step}: parameter '{name}' should be {expected}, got {type(value).__name__}."
                )

    for name, info in schema.items():
        if not info["required"]:
            continue
        if name in supplied or _is_present(call.parameters.get(name)):
            continue
        errors.append(f"{step}: missing required parameter '{name}'.")

    if call.tool == "send_message":
        has_target = any(
            _is_present(call.parameters.get(name)) or name in supplied
            for name in ("recipient_id", "conversation_id")
        )
        if not has_target:
            errors.append(f"{step}: no recipient or conversation to send to.")

    return errors


def validate_chain(
    plan: ChainPlan, registry: ToolRegistry, max_length: int = DEFAULT_MAX_CHAIN_LENGTH
) -> None:
    """
    Reject a plan that cannot run.

    Raises
    ------
    ValidationError
        Empty plan, unknown tool, missing/mistyped/placeholder parameters, misplaced references,
        repeated ``lookup_contacts`` or a ``send_message`` without a target.
    ChainLengthExceeded
        More than *max_length* steps.
    DuplicateToolError
        The same tool at two adjacent positions.
    """
    names = plan.tool_names
    if not names:
        raise ValidationError(
            "I couldn't work out what to do.", suggestion="Try rephrasing the command."
        )
    if len(names) > max_length:
        raise ChainLengthExceeded(
            f"Plan has {len(names)} steps; at most {max_length} are allowed.",
            suggestion="Split the request into smaller commands.",
        )
    for first, second in zip(names, names[1:]):
        if first == second:
            raise DuplicateToolError(f"'{first}' is planned twice in a row.")

    errors: List[str] = []
    if names.count("lookup_contacts") > 1:
        errors.append("lookup_contacts can only be used once per command.")

    previous: str | None = None
    for index, call in enumerate(plan.calls):
        errors.extend(_check_call(index, call, previous, registry))
        previous = call.tool

    if errors:
        logger.info("Rejected plan %s: %s", names, errors)
        raise ValidationError(
            errors[0], suggestion="Try rephrasing the command.", errors=errors
        )


def describe_chain_pattern(plan: ChainPlan) -> str:
    """Short label for a plan's shape, used in logs."""
    names = tuple(plan.tool_names)
    return CHAIN_PATTERNS.get(names, "single-step" if len(names) == 1 else "custom")
