"""Sending messages and listing conversations / messages."""

import logging

from courier.agent.tool_executor import error_result
from courier.common import (
    conversation_title,
    format_relative_time,
    truncate_text,
)
from courier.core.errors import (
    NotFoundError,
    ValidationError,
)
from courier.core.schema import ToolResult
from courier.tools import (
    ToolContext,
    register_tool,
)

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 60


@register_tool("send_message")
async def send_message(
    ctx: ToolContext,
    content: str,
    sender_id: str,
    recipient_id: str | None = None,
    conversation_id: str | None = None,
    create_conversation_if_missing: bool = True,
) -> ToolResult:
    """
    Send a text message to a contact or into a conversation.

    With ``recipient_id`` the direct conversation with that contact is used (and created if it does
    not exist yet); otherwise the message goes into ``conversation_id``.
    """
    store = ctx.services.conversations
    text = (content or "").strip()
    if not text:
        return error_result(
            ValidationError("The message is empty.", suggestion="Say what the message should be.")
        )

    recipient_name = None
    if recipient_id:
        recipient = await ctx.services.contacts.get_user(recipient_id)
        if recipient is None:
            return error_result(NotFoundError(f"Contact '{recipient_id}' not found."))
        recipient_name = recipient.display_name
        conversation = await store.find_direct_conversation(sender_id, recipient_id)
        if conversation is None:
            if not create_conversation_if_missing:
                return error_result(
                    NotFoundError(f"You don't have a conversation with {recipient_name} yet.")
                )
            conversation = await store.create_conversation([sender_id, recipient_id])
            logger.info("Started conversation %s with %s", conversation.id, recipient_id)
    elif conversation_id:
        conversation = await store.get_conversation(conversation_id)
        if conversation is None or sender_id not in conversation.participants:
            return error_result(NotFoundError(f"Conversation '{conversation_id}' not found."))
    else:
        return error_result(
            ValidationError(
                "I don't know who to send that to.", suggestion="Include the person's name."
            )
        )

    message = await store.create_message(conversation.id, sender_id, text)
    await ctx.services.retrieval.index_message(message, conversation.participants)
    logger.info("Sent message %s to conversation %s", message.id, conversation.id)

    return ToolResult(
        success=True,
        next_action=ctx.next_action,
        data={
            "message_id": message.id,
            "conversation_id": conversation.id,
            "recipient_id": recipient_id,
            "recipient_name": recipient_name or conversation_title(conversation, sender_id),
            "content": text,
            "timestamp": message.timestamp.isoformat(),
        },
    )


@register_tool("get_conversations")
async def get_conversations(
    ctx: ToolContext,
    user_id: str,
    limit: int = 10,
    sort_by: str = "last_message",
) -> ToolResult:
    """
    List the user's conversations, most recent first.

    Returns the first conversation's id as ``conversation_id`` for the next step.
    """
    conversations = await ctx.services.conversations.list_conversations(
        user_id, sort_key=sort_by, limit=limit
    )
    if not conversations and not ctx.is_last_step:
        return error_result(NotFoundError("You don't have any conversations yet."))

    items = [
        {
            "conversation_id": conversation.id,
            "title": conversation_title(conversation, user_id),
            "type": conversation.type,
            "participant_count": len(conversation.participants),
            "last_message_preview": truncate_text(
                conversation.last_message_text or "", PREVIEW_LENGTH
            ),
            "last_activity": format_relative_time(
                conversation.last_message_at or conversation.created_at
            ),
        }
        for conversation in conversations
    ]
    data = {"conversations": items, "count": len(items)}
    if items:
        data["conversation_id"] = items[0]["conversation_id"]
    return ToolResult(success=True, next_action=ctx.next_action, data=data)


@register_tool("get_messages")
async def get_messages(
    ctx: ToolContext,
    conversation_id: str,
    limit: int = 50,
    before_id: str | None = None,
) -> ToolResult:
    """
    Fetch the newest messages of a conversation, optionally older than ``before_id``.
    """
    store = ctx.services.conversations
    conversation = await store.get_conversation(conversation_id)
    if conversation is None or ctx.user_id not in conversation.participants:
        return error_result(NotFoundError(f"Conversation '{conversation_id}' not found."))

    try:
        messages = await store.get_messages(conversation_id, limit=limit, before=before_id)
    except NotFoundError as exc:
        return error_result(exc, before_id=before_id)
    items = [
        {
            "message_id": message.id,
            "sender_id": message.sender_id,
            "sender_name": message.sender_name,
            "text": message.text,
            "timestamp": message.timestamp.isoformat(),
            "relative_time": format_relative_time(message.timestamp),
        }
        for message in messages
    ]
    return ToolResult(
        success=True,
        next_action=ctx.next_action,
        data={
            "conversation_id": conversation_id,
            "title": conversation_title(conversation, ctx.user_id),
            "messages": items,
            "count": len(items),
            "has_more": len(items) == limit,
        },
    )
