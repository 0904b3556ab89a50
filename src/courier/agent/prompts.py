"""
Prompt text for the planning and generation steps.

The system prompt is assembled from fixed sections in a fixed order so that the model always sees
the hard rules before the context and the examples.  Only the context block changes with the
caller's screen.  The prompt is advisory: everything it asks for is enforced again by the chain
validator and the parameter mapper.
"""

import json
from typing import (
    List,
    Mapping,
)

from courier.common import truncate_text
from courier.core.schema import (
    AppContext,
    Message,
)
from courier.tools import (
    ToolRegistry,
    ToolSchema,
    get_tool_schemas,
)

ROLE = """\
# ROLE
You are the command planner of a messaging app. You turn one user command into a short chain of
tool calls. You never answer the user yourself and you never invent data."""

CRITICAL_RULES = """\
# CRITICAL RULES
1. Respond with ONE JSON object and nothing else:
   {"tool_calls": [{"tool": "<name>", "parameters": {...}}]}
2. Use at most 3 tool calls. Never call the same tool twice in a row.
3. Call lookup_contacts at most once.
4. Never write placeholder values such as "[contact_id]", "<id>" or "{contact_id}".
   To use a value produced by the previous call write "$prev.<field>", e.g. "$prev.contact_id".
5. The first call can never use "$prev"."""

CONTEXT_IN_CONVERSATION = """\
# CONTEXT
The user is viewing conversation "{conversation_id}".
- Questions about "this chat", "here" or what someone said refer to this conversation: use
  analyze_conversation with conversation_id "{conversation_id}".
- "Summarize" without a name means this conversation: use summarize_conversation.
- Messages without a named recipient go to this conversation: send_message with
  conversation_id "{conversation_id}"."""

CONTEXT_LIST_VIEW = """\
# CONTEXT
The user is on the "{screen}" screen, not inside a conversation.
- Questions about message content (who/what/when/where/did anyone...) must use
  analyze_conversations_multi. NEVER use analyze_conversation from this screen unless a
  previous call in the chain produced the conversation_id.
- Any message must name a recipient; resolve it with lookup_contacts first."""

TOOL_PATTERNS = """\
# TOOL PATTERNS
- "Tell/message/text <name> <content>" -> lookup_contacts, send_message
- "Open my chat with <name>" -> lookup_contacts, resolve_conversation
- "Summarize my chat with <name>" -> lookup_contacts, resolve_conversation, summarize_conversation
- "What did <name> say about <x>?" -> lookup_contacts, resolve_conversation, analyze_conversation
- "Summarize my latest conversation" -> get_conversations, summarize_conversation
- "Who/what/when ... ?" outside a chat -> analyze_conversations_multi"""

PARAMETER_EXTRACTION = """\
# PARAMETER EXTRACTION
| Tool                      | Parameter          | Source                                  |
|---------------------------|--------------------|-----------------------------------------|
| lookup_contacts           | query              | the person's name exactly as typed      |
| send_message              | content            | the message text only, without the name |
| send_message              | recipient_id       | "$prev.contact_id"                      |
| resolve_conversation      | contact_identifier | "$prev.contact_id"                      |
| summarize_conversation    | conversation_id    | "$prev.conversation_id" or context      |
| analyze_conversation      | query              | the user's question, verbatim           |
| analyze_conversations_multi | query            | the user's question, verbatim           |
User ids are filled in automatically; leave them out."""

EXAMPLE = """\
# EXAMPLE
Command: Tell John I'm on my way
{"tool_calls": [
  {"tool": "lookup_contacts", "parameters": {"query": "John"}},
  {"tool": "send_message",
   "parameters": {"recipient_id": "$prev.contact_id", "content": "I'm on my way"}}
]}"""

WHAT_TO_AVOID = """\
# WHAT TO AVOID
- Including the recipient's name or "tell him" in the message content.
- Guessing ids, or copying ids from the examples.
- Using analyze_conversation outside a conversation view for a content question.
- Adding steps the command did not ask for (no summary after a send, no lookup before
  analyze_conversations_multi)."""


def render_tool_catalogue(tool_schemas: Mapping[str, ToolSchema]) -> str:
    """One line per tool: ``- name(param: type, opt?: type): description``."""
    lines = ["# AVAILABLE TOOLS"]
    for name, schema in tool_schemas.items():
        params = ", ".join(
            f"{param}{'' if info['required'] else '?'}: {info['type']}"
            for param, info in schema["parameters"].items()
        )
        lines.append(f"- {name}({params}): {schema['description']}")
    return "\n".join(lines)


def build_system_prompt(app_context: AppContext, registry: ToolRegistry | None = None) -> str:
    """Assemble the planner system prompt for *app_context*."""
    if app_context.in_conversation:
        conversation_id = app_context.current_conversation_id
        context = CONTEXT_IN_CONVERSATION.format(conversation_id=conversation_id)
    else:
        context = CONTEXT_LIST_VIEW.format(screen=app_context.current_screen)

    sections: List[str] = [
        ROLE,
        CRITICAL_RULES,
        context,
        TOOL_PATTERNS,
        PARAMETER_EXTRACTION,
        EXAMPLE,
        WHAT_TO_AVOID,
        render_tool_catalogue(get_tool_schemas(registry)),
    ]
    return "\n\n".join(sections)


# ---------------------------------------------------------------------------
# Generation prompts used by tools
# ---------------------------------------------------------------------------
SUMMARY_LENGTHS = {
    "short": "in one or two sentences",
    "medium": "in a short paragraph",
    "long": "in several paragraphs with bullet points for decisions and open questions",
}

SUMMARY_SYSTEM_PROMPT = """\
You summarise chat conversations for one of the participants. Be factual, mention who said what
when it matters, and never invent content that is not in the transcript. Reply with plain text."""

EXTRACTION_SYSTEM_PROMPT = """\
You answer questions about a chat conversation using ONLY the messages provided. Each message
starts with its id in square brackets. Respond with one JSON object:
{"answer": "<answer>", "confidence": <0..1>, "supporting_message_ids": ["<id>", ...]}
If the messages do not contain the answer, say so and use a low confidence."""


def render_transcript(messages: List[Message], with_ids: bool = False) -> str:
    """Chronological transcript, one message per line."""
    lines = []
    for message in messages:
        prefix = f"[{message.id}] " if with_ids else ""
        sender = message.sender_name or message.sender_id
        stamp = message.timestamp.strftime("%Y-%m-%d %H:%M")
        lines.append(f"{prefix}{stamp} {sender}: {truncate_text(message.text, 500)}")
    return "\n".join(lines)


def build_summary_prompt(messages: List[Message], summary_length: str = "medium") -> str:
    """User prompt for ``summarize_conversation``."""
    length = SUMMARY_LENGTHS.get(summary_length, SUMMARY_LENGTHS["medium"])
    return f"Summarise this conversation {length}.\n\n{render_transcript(messages)}"


def build_extraction_prompt(query: str, messages: List[Message]) -> str:
    """User prompt for ``analyze_conversation``."""
    return (
        f"Question: {json.dumps(query)}\n\n"
        f"Messages:\n{render_transcript(messages, with_ids=True)}"
    )
