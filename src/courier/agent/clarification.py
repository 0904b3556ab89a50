"""
Clarification protocol.

A tool that cannot decide returns ``clarification_needed`` with a list of options; the caller shows
them and re-sends the *same* command with ``app_context.clarification_response`` set.  Nothing is
stored server-side between the two requests.  On the second request the planner is bypassed: the
selected id plus the original command are enough to build the one call that finishes the job.
"""

import logging
import re
from enum import Enum

from courier.core.errors import ValidationError
from courier.core.schema import (
    AppContext,
    NextAction,
    ToolCall,
    ToolResult,
)
from courier.tools.fuzzy_match import (
    is_initial,
    tokenize,
)

logger = logging.getLogger(__name__)

SEND_VERB_PATTERN = re.compile(
    r"^\s*(?:please\s+)?(tell|message|text|send|ask|let|remind|ping|dm)\b", re.IGNORECASE
)
SUMMARY_PATTERN = re.compile(
    r"\b(summari[sz]e|summary|recap|catch me up|tl;?dr|what did i miss)\b", re.IGNORECASE
)
FILLER_PATTERNS = (
    re.compile(r"^(?:a\s+)?(?:quick\s+)?message(?:\s+to)?\b", re.IGNORECASE),
    re.compile(r"^(?:to|that|saying|says)\b", re.IGNORECASE),
    re.compile(r"^know(?:\s+that)?\b", re.IGNORECASE),
    re.compile(r"^[:,\-]"),
)
_QUOTES = "\"'“”"


class ClarificationState(str, Enum):
    """Where a request stands in the clarification round-trip."""

    NONE = "none"
    PENDING = "pending"
    RESOLVED = "resolved"


def clarification_state(
    app_context: AppContext, last_result: ToolResult | None = None
) -> ClarificationState:
    """``RESOLVED`` when the caller sent a pick, ``PENDING`` when *last_result* asks for one."""
    if app_context.clarification_response is not None:
        return ClarificationState.RESOLVED
    if last_result is not None and last_result.next_action is NextAction.CLARIFICATION_NEEDED:
        return ClarificationState.PENDING
    return ClarificationState.NONE


def is_send_command(command: str) -> bool:
    """Does *command* start like a request to send something?"""
    return SEND_VERB_PATTERN.match(command) is not None


def is_summary_command(command: str) -> bool:
    """Does *command* ask for a summary?"""
    return SUMMARY_PATTERN.search(command) is not None


def _strip_fillers(text: str) -> str:
    changed = True
    while changed and text:
        changed = False
        for pattern in FILLER_PATTERNS:
            match = pattern.match(text)
            if match:
                text = text[match.end() :].lstrip()
                changed = True
    return text


def _strip_recipient(text: str, recipient_title: str | None) -> str:
    words = text.split()
    if not words:
        return text
    if not recipient_title:
        return " ".join(words[1:])

    # The word after the verb names the recipient, possibly misspelt; later words only go when they
    # repeat the picked name exactly or are initials like "F.".
    title_tokens = {token.rstrip(".") for token in tokenize(recipient_title)}
    dropped = 1
    for word in words[1:]:
        token = word.lower().strip(",:;")
        initial = token.endswith(".") and is_initial(token)
        if token.rstrip(".") not in title_tokens and not initial:
            break
        dropped += 1
    return " ".join(words[dropped:])


def extract_message_content(command: str, recipient_title: str | None = None) -> str | None:
    """
    Pull the message body out of a send-style command.

    ``"Tell John I'm on my way"`` -> ``"I'm on my way"``;
    ``"Send a message to John saying hi"`` -> ``"hi"``.  Returns ``None`` when the command is not a
    send command or nothing is left once the verb, fillers and recipient are removed.
    """
    match = SEND_VERB_PATTERN.match(command)
    if match is None:
        return None

    rest = _strip_fillers(command[match.end() :].strip())
    rest = _strip_recipient(rest, recipient_title)
    rest = _strip_fillers(rest).strip().strip(_QUOTES).strip()
    return rest or None


def build_resume_call(command: str, app_context: AppContext) -> ToolCall:
    """
    Build the single call that completes a clarified command.

    Raises
    ------
    ValidationError
        If the context carries no clarification response.
    """
    response = app_context.clarification_response
    if response is None:
        raise ValidationError("No clarification response to resume from.")

    option = response.selected_option
    reason = response.original_reason
    user_id = app_context.current_user_id

    if reason.selects_contact:
        content = extract_message_content(command, option.title)
        if content:
            call = ToolCall(
                tool="send_message",
                parameters={"recipient_id": option.id, "content": content, "sender_id": user_id},
            )
        else:
            call = ToolCall(
                tool="resolve_conversation",
                parameters={"contact_identifier": option.id, "user_id": user_id},
            )
    elif is_summary_command(command):
        call = ToolCall(
            tool="summarize_conversation",
            parameters={"conversation_id": option.id, "current_user_id": user_id},
        )
    else:
        call = ToolCall(
            tool="analyze_conversation",
            parameters={"conversation_id": option.id, "query": command, "current_user_id": user_id},
        )

    logger.info("Resuming '%s' clarification with %s(%s)", reason.value, call.tool, option.id)
    return call
