"""
Summaries and question answering over conversation content.

``analyze_conversation`` answers from one conversation; ``analyze_conversations_multi`` first works
out *which* conversation the question is about and either answers from it directly or asks the user
to pick.
"""

import logging
from typing import (
    Any,
    Dict,
    List,
)

from courier.agent.prompts import (
    EXTRACTION_SYSTEM_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
    build_extraction_prompt,
    build_summary_prompt,
)
from courier.agent.tool_executor import error_result
from courier.common import (
    conversation_title,
    format_relative_time,
    truncate_text,
)
from courier.core.errors import (
    NotFoundError,
    PlannerError,
    RetrievalDegraded,
)
from courier.core.schema import (
    ClarificationOption,
    ClarificationPayload,
    ClarificationReason,
    Conversation,
    NextAction,
    ToolResult,
)
from courier.tools import (
    ToolContext,
    register_tool,
)

logger = logging.getLogger(__name__)


async def _load_conversation(ctx: ToolContext, conversation_id: str, user_id: str) -> Conversation:
    conversation = await ctx.services.conversations.get_conversation(conversation_id)
    if conversation is None or user_id not in conversation.participants:
        raise NotFoundError(
            f"Conversation '{conversation_id}' not found.",
            suggestion="Open the conversation and try again.",
        )
    return conversation


def _clamp_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(1.0, confidence))


@register_tool("summarize_conversation")
async def summarize_conversation(
    ctx: ToolContext,
    conversation_id: str,
    current_user_id: str,
    max_messages: int = 50,
    summary_length: str = "medium",
) -> ToolResult:
    """
    Summarise the most recent messages of a conversation.

    ``summary_length`` is one of ``short``, ``medium`` or ``long``.
    """
    try:
        conversation = await _load_conversation(ctx, conversation_id, current_user_id)
    except NotFoundError as exc:
        return error_result(exc)

    store = ctx.services.conversations
    newest_first = await store.get_messages(conversation_id, limit=max_messages)
    messages = list(reversed(newest_first))
    title = conversation_title(conversation, current_user_id)

    if not messages:
        summary = "This conversation has no messages yet."
    else:
        try:
            summary = await ctx.services.llm.complete(
                SUMMARY_SYSTEM_PROMPT, build_summary_prompt(messages, summary_length)
            )
        except PlannerError as exc:
            return error_result(exc, conversation_id=conversation_id)

    return ToolResult(
        success=True,
        next_action=ctx.next_action,
        data={
            "conversation_id": conversation_id,
            "title": title,
            "summary": summary.strip(),
            "message_count": len(messages),
            "summary_length": summary_length,
        },
    )


@register_tool("analyze_conversation")
async def analyze_conversation(
    ctx: ToolContext,
    conversation_id: str,
    current_user_id: str,
    query: str,
    max_messages: int = 50,
    use_rag: bool = True,
) -> ToolResult:
    """
    Answer a question about one conversation from its messages.

    Relevant messages are found by semantic search (topped up with recent ones) and handed to the
    model, which must cite the ids of the messages its answer rests on.
    """
    try:
        conversation = await _load_conversation(ctx, conversation_id, current_user_id)
    except NotFoundError as exc:
        return error_result(exc)

    retrieved = await ctx.services.retrieval.retrieve_for_conversation(
        query, current_user_id, conversation_id, max_messages=max_messages, use_rag=use_rag
    )
    metadata = {
        "used_rag": retrieved.used_rag,
        "retrieval_degraded": retrieved.degraded,
        "messages_considered": len(retrieved.messages),
    }
    title = conversation_title(conversation, current_user_id)

    if not retrieved.messages:
        return ToolResult(
            success=True,
            next_action=ctx.next_action,
            data={
                "conversation_id": conversation_id,
                "title": title,
                "query": query,
                "answer": "There are no messages in this conversation yet.",
                "confidence": 0.0,
                "supporting_message_ids": [],
                "supporting_messages": [],
            },
            confidence=0.0,
            metadata=metadata,
        )

    try:
        parsed = await ctx.services.llm.complete_json(
            EXTRACTION_SYSTEM_PROMPT, build_extraction_prompt(query, retrieved.messages)
        )
    except PlannerError as exc:
        return error_result(exc, **metadata)

    by_id = {message.id: message for message in retrieved.messages}
    cited = parsed.get("supporting_message_ids")
    if not isinstance(cited, list):
        cited = []
    # Only ids of messages the model was actually shown
    supporting_ids: List[str] = list(
        dict.fromkeys(str(m_id) for m_id in cited if str(m_id) in by_id)
    )
    confidence = _clamp_confidence(parsed.get("confidence"))

    return ToolResult(
        success=True,
        next_action=ctx.next_action,
        data={
            "conversation_id": conversation_id,
            "title": title,
            "query": query,
            "answer": str(parsed.get("answer") or "I couldn't find that in the conversation."),
            "confidence": confidence,
            "supporting_message_ids": supporting_ids,
            "supporting_messages": [
                {
                    "message_id": message_id,
                    "sender_name": by_id[message_id].sender_name,
                    "text": truncate_text(by_id[message_id].text, 120),
                }
                for message_id in supporting_ids
            ],
        },
        confidence=confidence,
        metadata=metadata,
    )


async def _degraded_clarification(
    ctx: ToolContext, current_user_id: str, max_conversations: int, cause: RetrievalDegraded
) -> ToolResult:
    logger.warning("Cross-conversation search degraded: %s", cause)
    limit = min(max_conversations, ctx.services.settings.MAX_CLARIFICATION_OPTIONS)
    recent = await ctx.services.conversations.list_conversations(current_user_id, limit=limit)
    if not recent:
        return error_result(
            NotFoundError("You don't have any conversations yet."), retrieval_degraded=True
        )
    options = [
        ClarificationOption(
            id=conversation.id,
            title=conversation_title(conversation, current_user_id),
            subtitle=format_relative_time(conversation.last_message_at or conversation.created_at),
            confidence=0.0,
            metadata={
                "last_message_preview": truncate_text(conversation.last_message_text or "", 60)
            },
        )
        for conversation in recent
    ]
    return ToolResult(
        success=True,
        next_action=NextAction.CLARIFICATION_NEEDED,
        clarification=ClarificationPayload(
            reason=ClarificationReason.RETRIEVAL_DEGRADED,
            question=(
                "Message search is unavailable right now. Which conversation should I look in?"
            ),
            options=options,
        ),
        metadata={"retrieval_degraded": True},
    )


@register_tool("analyze_conversations_multi")
async def analyze_conversations_multi(
    ctx: ToolContext,
    query: str,
    current_user_id: str,
    max_conversations: int = 5,
    time_window_hours: float = 48.0,
) -> ToolResult:
    """
    Answer a question when it is not known which conversation it is about.

    Conversations are ranked by how well their recent messages match the question.  A single clear
    match is answered directly; several make the user choose; none is an error.
    """
    settings = ctx.services.settings
    try:
        candidates = await ctx.services.retrieval.rank_conversations(
            query, current_user_id, time_window_hours=time_window_hours
        )
    except RetrievalDegraded as exc:
        return await _degraded_clarification(ctx, current_user_id, max_conversations, exc)

    qualifying = [c for c in candidates if c.composite >= settings.CONVERSATION_QUALIFY_THRESHOLD]
    logger.info(
        "%d of %d conversations qualify for '%s'",
        len(qualifying),
        len(candidates),
        truncate_text(query, 60),
    )

    if not qualifying:
        return error_result(
            NotFoundError(
                "I couldn't find a conversation about that.",
                suggestion="Open the conversation you mean and ask again.",
            ),
            candidates_considered=len(candidates),
        )

    if len(qualifying) == 1:
        match = qualifying[0]
        result = await analyze_conversation(
            ctx,
            conversation_id=match.conversation.id,
            current_user_id=current_user_id,
            query=query,
        )
        result.metadata.update(
            {"resolved_conversation_id": match.conversation.id, "relevance": match.composite}
        )
        return result

    limit = min(max_conversations, settings.MAX_CLARIFICATION_OPTIONS)
    options = [
        ClarificationOption(
            id=candidate.conversation.id,
            title=candidate.title,
            subtitle=f"{candidate.snippet} ({format_relative_time(candidate.last_hit_at)})",
            confidence=min(candidate.composite, 1.0),
            metadata={"relevance": candidate.relevance, "recency": candidate.recency},
        )
        for candidate in qualifying[:limit]
    ]
    scores: Dict[str, float] = {option.id: option.confidence for option in options}
    return ToolResult(
        success=True,
        next_action=NextAction.CLARIFICATION_NEEDED,
        clarification=ClarificationPayload(
            reason=ClarificationReason.AMBIGUOUS_CONVERSATION,
            question=f"That came up in {len(qualifying)} conversations. Which one do you mean?",
            options=options,
        ),
        metadata={"candidate_scores": scores},
    )
