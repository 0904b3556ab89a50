"""Contact lookup and direct-conversation resolution."""

import logging
from typing import (
    List,
    Set,
)

from courier.agent.tool_executor import (
    clarification_result,
    error_result,
)
from courier.common import conversation_title
from courier.core.errors import (
    AmbiguousMatchError,
    NotFoundError,
    ValidationError,
)
from courier.core.schema import (
    Contact,
    ToolResult,
)
from courier.tools import (
    ToolContext,
    register_tool,
)
from courier.tools.fuzzy_match import (
    rank_contacts,
    resolve_contact,
)

logger = logging.getLogger(__name__)


async def _recent_contact_ids(ctx: ToolContext, user_id: str) -> Set[str]:
    conversations = await ctx.services.conversations.list_conversations(user_id, limit=10)
    return {pid for c in conversations for pid in c.participants if pid != user_id}


async def _match_contact(
    ctx: ToolContext,
    query: str,
    user_id: str,
    limit: int = 10,
    min_confidence: float | None = None,
    exclude_self: bool = True,
) -> tuple[Contact, float, List[dict]]:
    """Resolve *query* to one contact; raises the fuzzy matcher's errors."""
    settings = ctx.services.settings
    contacts = await ctx.services.contacts.list_users()
    if exclude_self:
        contacts = [contact for contact in contacts if contact.id != user_id]

    ranked = rank_contacts(
        query,
        contacts,
        recent_ids=sorted(await _recent_contact_ids(ctx, user_id)),
        recent_boost=settings.RECENT_CONTACT_BOOST,
        min_score=settings.FUZZY_MIN_SCORE if min_confidence is None else min_confidence,
    )[:limit]
    best, ranked = resolve_contact(
        query,
        ranked,
        epsilon=settings.FUZZY_AMBIGUITY_EPSILON,
        floor=settings.FUZZY_CONFIDENCE_FLOOR,
        max_options=settings.MAX_CLARIFICATION_OPTIONS,
    )
    matches = [
        {
            "contact_id": item.contact.id,
            "display_name": item.contact.display_name,
            "score": item.score,
        }
        for item in ranked
    ]
    return best.contact, best.score, matches


@register_tool("lookup_contacts")
async def lookup_contacts(
    ctx: ToolContext,
    query: str,
    user_id: str,
    limit: int = 10,
    min_confidence: float | None = None,
    exclude_self: bool = True,
) -> ToolResult:
    """
    Find the contact a name or email refers to.

    Returns ``contact_id`` for the next step.  Asks the user to pick when several contacts match
    about equally well or the best match is weak.
    """
    if not query or not query.strip():
        return error_result(ValidationError("Who should I look for?"))

    try:
        contact, score, matches = await _match_contact(
            ctx, query.strip(), user_id, limit, min_confidence, exclude_self
        )
    except AmbiguousMatchError as exc:
        return clarification_result(exc, query=query)
    except NotFoundError as exc:
        return error_result(exc, query=query)

    logger.info("Resolved contact query '%s' to %s (%.2f)", query, contact.id, score)
    return ToolResult(
        success=True,
        next_action=ctx.next_action,
        data={
            "contact_id": contact.id,
            "display_name": contact.display_name,
            "email": contact.email,
            "matches": matches,
        },
        confidence=score,
    )


@register_tool("resolve_conversation")
async def resolve_conversation(
    ctx: ToolContext,
    user_id: str,
    contact_identifier: str,
    create_if_missing: bool = False,
) -> ToolResult:
    """
    Find the direct conversation between the user and a contact.

    ``contact_identifier`` is a contact id; a name is accepted too and goes through contact
    matching.  Returns ``conversation_id`` for the next step.
    """
    directory = ctx.services.contacts
    store = ctx.services.conversations

    contact = await directory.get_user(contact_identifier)
    if contact is None:
        try:
            contact, _, _ = await _match_contact(ctx, contact_identifier, user_id)
        except AmbiguousMatchError as exc:
            return clarification_result(exc, query=contact_identifier)
        except NotFoundError as exc:
            return error_result(exc, contact_identifier=contact_identifier)

    conversation = await store.find_direct_conversation(user_id, contact.id)
    created = False
    if conversation is None:
        if not create_if_missing:
            return error_result(
                NotFoundError(
                    f"You don't have a conversation with {contact.display_name} yet.",
                    suggestion="Send them a message to start one.",
                ),
                contact_id=contact.id,
            )
        conversation = await store.create_conversation([user_id, contact.id])
        created = True
        logger.info("Created conversation %s with %s", conversation.id, contact.id)

    return ToolResult(
        success=True,
        next_action=ctx.next_action,
        data={
            "conversation_id": conversation.id,
            "contact_id": contact.id,
            "title": conversation_title(conversation, user_id),
            "created": created,
        },
    )
