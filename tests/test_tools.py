"""Built-in tools against the seeded in-memory store."""

import dataclasses
import json

import pytest

from courier.config import Settings
from courier.core.errors import NotFoundError
from courier.core.schema import (
    AppContext,
    ClarificationReason,
    Contact,
    NextAction,
)
from courier.tools import ToolContext
from courier.tools.analysis import (
    analyze_conversation,
    analyze_conversations_multi,
    summarize_conversation,
)
from courier.tools.clarification import request_clarification
from courier.tools.contacts import (
    lookup_contacts,
    resolve_conversation,
)
from courier.tools.messaging import (
    get_conversations,
    get_messages,
    send_message,
)

from conftest import (
    ME,
    make_hit,
)


@pytest.fixture
def ctx(services) -> ToolContext:
    """A single-step chain, so successful tools report ``complete``."""
    return ToolContext(app_context=AppContext(current_user_id=ME), services=services)


@pytest.fixture
def first_of_two(services) -> ToolContext:
    return ToolContext(
        app_context=AppContext(current_user_id=ME), services=services, chain_length=2
    )


def _by_id(store) -> dict:
    return {message.id: message for message in store.all_messages()}


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_lookup_contacts_resolves_unique_name(ctx) -> None:
    result = await lookup_contacts(ctx, query="John", user_id=ME)

    assert result.success
    assert result.next_action is NextAction.COMPLETE
    assert result.data["contact_id"] == "u-john"
    assert result.data["email"] == "john.smith@example.com"
    # 0.85 for a first-name match plus the recent-contact boost
    assert result.confidence == pytest.approx(0.9)


@pytest.mark.asyncio
async def test_lookup_contacts_continues_mid_chain(first_of_two) -> None:
    result = await lookup_contacts(first_of_two, query="Sarah Chen", user_id=ME)
    assert result.next_action is NextAction.CONTINUE
    assert result.data["contact_id"] == "u-sarah"


@pytest.mark.asyncio
async def test_lookup_contacts_asks_when_ambiguous(ctx, directory) -> None:
    directory.add(Contact(id="u-johnd", display_name="John Doe"))
    result = await lookup_contacts(ctx, query="John", user_id=ME)

    assert result.next_action is NextAction.CLARIFICATION_NEEDED
    assert result.clarification.reason is ClarificationReason.AMBIGUOUS_CONTACT
    assert [o.id for o in result.clarification.options] == ["u-john", "u-johnd"]
    assert result.clarification.options[0].metadata["is_recent"] is True


@pytest.mark.asyncio
async def test_lookup_contacts_not_found(ctx) -> None:
    result = await lookup_contacts(ctx, query="Zed", user_id=ME)
    assert not result.success
    assert result.next_action is NextAction.ERROR
    assert result.error.code == "not_found"


@pytest.mark.asyncio
async def test_lookup_contacts_honours_min_score_setting(ctx, services) -> None:
    """A weak prefix match is accepted by default and dropped under a stricter threshold."""

    assert (await lookup_contacts(ctx, query="Jo", user_id=ME)).data["contact_id"] == "u-john"

    strict = dataclasses.replace(
        services, settings=Settings(_env_file=None, PLANNER="rules", FUZZY_MIN_SCORE=0.8)
    )
    result = await lookup_contacts(
        ToolContext(app_context=AppContext(current_user_id=ME), services=strict),
        query="Jo",
        user_id=ME,
    )
    assert result.next_action is NextAction.ERROR
    assert result.error.code == "not_found"

    explicit = await lookup_contacts(ctx, query="Jo", user_id=ME, min_confidence=0.9)
    assert explicit.error.code == "not_found"


@pytest.mark.asyncio
async def test_lookup_contacts_excludes_the_caller(ctx) -> None:
    result = await lookup_contacts(ctx, query="Alice", user_id=ME)
    assert result.error.code == "not_found"


@pytest.mark.asyncio
async def test_lookup_contacts_requires_a_query(ctx) -> None:
    result = await lookup_contacts(ctx, query="  ", user_id=ME)
    assert result.error.code == "validation_error"


@pytest.mark.asyncio
async def test_resolve_conversation_by_id(first_of_two) -> None:
    result = await resolve_conversation(first_of_two, user_id=ME, contact_identifier="u-john")

    assert result.next_action is NextAction.CONTINUE
    assert result.data == {
        "conversation_id": "c-john",
        "contact_id": "u-john",
        "title": "John Smith",
        "created": False,
    }


@pytest.mark.asyncio
async def test_resolve_conversation_by_name(ctx) -> None:
    result = await resolve_conversation(ctx, user_id=ME, contact_identifier="Sarah")
    assert result.data["conversation_id"] == "c-sarah"


@pytest.mark.asyncio
async def test_resolve_conversation_without_direct_chat(ctx, store) -> None:
    missing = await resolve_conversation(ctx, user_id=ME, contact_identifier="u-bob")
    assert missing.error.code == "not_found"
    assert "Bob Lee" in missing.error.message

    created = await resolve_conversation(
        ctx, user_id=ME, contact_identifier="u-bob", create_if_missing=True
    )
    assert created.data["created"] is True
    assert await store.find_direct_conversation(ME, "u-bob") is not None


# ---------------------------------------------------------------------------
# Messaging
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_send_message_to_contact(ctx, store, index) -> None:
    result = await send_message(ctx, content="I'm on my way", sender_id=ME, recipient_id="u-john")

    assert result.success
    assert result.data["conversation_id"] == "c-john"
    assert result.data["recipient_name"] == "John Smith"
    newest = (await store.get_messages("c-john", limit=1))[0]
    assert newest.id == result.data["message_id"]
    assert newest.text == "I'm on my way"
    assert newest.sender_name == "Alice Morgan"
    assert index.indexed == [(newest.id, (ME, "u-john"))]


@pytest.mark.asyncio
async def test_send_message_starts_new_conversation(ctx, store) -> None:
    result = await send_message(ctx, content="Hi Bob", sender_id=ME, recipient_id="u-bob")
    conversation = await store.find_direct_conversation(ME, "u-bob")
    assert conversation is not None
    assert result.data["conversation_id"] == conversation.id


@pytest.mark.asyncio
async def test_send_message_into_group(ctx) -> None:
    result = await send_message(ctx, content="Shipped!", sender_id=ME, conversation_id="c-team")
    assert result.data["recipient_name"] == "Launch Team"
    assert result.data["recipient_id"] is None


@pytest.mark.asyncio
async def test_send_message_errors(ctx) -> None:
    empty = await send_message(ctx, content="   ", sender_id=ME, recipient_id="u-john")
    no_target = await send_message(ctx, content="hello", sender_id=ME)
    unknown = await send_message(ctx, content="hello", sender_id=ME, recipient_id="u-ghost")

    assert empty.error.code == "validation_error"
    assert no_target.error.code == "validation_error"
    assert unknown.error.code == "not_found"


@pytest.mark.asyncio
async def test_get_conversations_most_recent_first(ctx) -> None:
    result = await get_conversations(ctx, user_id=ME)

    ids = [item["conversation_id"] for item in result.data["conversations"]]
    assert ids == ["c-group", "c-team", "c-sarah", "c-john"]
    assert result.data["conversation_id"] == "c-group"
    first = result.data["conversations"][0]
    assert first["title"] == "Group Chat (3 people)"
    assert first["last_message_preview"] == "Who is bringing snacks?"
    assert first["last_activity"] == "2h ago"


@pytest.mark.asyncio
async def test_get_conversations_empty_mid_chain_is_an_error(services) -> None:
    ctx = ToolContext(
        app_context=AppContext(current_user_id="u-nobody"), services=services, chain_length=2
    )
    result = await get_conversations(ctx, user_id="u-nobody")
    assert result.error.code == "not_found"


@pytest.mark.asyncio
async def test_get_messages_pages_backwards(ctx) -> None:
    page = await get_messages(ctx, conversation_id="c-john", limit=2)
    older = await get_messages(ctx, conversation_id="c-john", limit=2, before_id="m5")

    assert [m["message_id"] for m in page.data["messages"]] == ["m6", "m5"]
    assert page.data["has_more"] is True
    assert [m["message_id"] for m in older.data["messages"]] == ["m4", "m3"]


@pytest.mark.asyncio
async def test_get_messages_unknown_conversation(ctx) -> None:
    result = await get_messages(ctx, conversation_id="c-nope")
    assert result.error.code == "not_found"


@pytest.mark.asyncio
async def test_get_messages_unknown_cursor(ctx, store) -> None:
    """A cursor from another conversation is an error, not the newest page."""

    result = await get_messages(ctx, conversation_id="c-john", limit=2, before_id="s1")

    assert result.next_action is NextAction.ERROR
    assert result.error.code == "not_found"
    assert result.metadata == {"before_id": "s1"}
    with pytest.raises(NotFoundError):
        await store.get_messages("c-john", before="m-missing")


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_summarize_conversation(ctx, planner) -> None:
    result = await summarize_conversation(
        ctx, conversation_id="c-john", current_user_id=ME, summary_length="short"
    )

    assert result.data["summary"] == "A short summary."
    assert result.data["message_count"] == 6
    assert result.data["title"] == "John Smith"
    prompt = planner.prompts[0]
    assert "one or two sentences" in prompt
    assert prompt.index("Are we still on for lunch") < prompt.index("No problem.")


@pytest.mark.asyncio
async def test_summarize_unknown_conversation(ctx) -> None:
    result = await summarize_conversation(ctx, conversation_id="c-nope", current_user_id=ME)
    assert result.error.code == "not_found"


@pytest.mark.asyncio
async def test_analyze_conversation_keeps_only_shown_citations(ctx, planner, index, store) -> None:
    index.hits = [make_hit(_by_id(store)["m3"], 0.9)]
    planner.completions.append(
        json.dumps(
            {
                "answer": "John is bringing the contract drafts.",
                "confidence": 1.7,
                "supporting_message_ids": ["m3", "bogus", "m3"],
            }
        )
    )
    result = await analyze_conversation(
        ctx, conversation_id="c-john", current_user_id=ME, query="Who brings the contract?"
    )

    assert result.data["answer"] == "John is bringing the contract drafts."
    assert result.data["supporting_message_ids"] == ["m3"]
    assert result.confidence == 1.0
    assert result.metadata["used_rag"] is True
    assert "[m3]" in planner.prompts[0]


@pytest.mark.asyncio
async def test_analyze_conversation_degraded_index(ctx, index) -> None:
    index.fail = True
    result = await analyze_conversation(
        ctx, conversation_id="c-john", current_user_id=ME, query="lunch?"
    )
    assert result.success
    assert result.metadata["retrieval_degraded"] is True
    assert result.metadata["used_rag"] is False
    assert result.metadata["messages_considered"] == 6


@pytest.mark.asyncio
async def test_multi_single_match_is_answered(ctx, index, store) -> None:
    msgs = _by_id(store)
    index.hits = [make_hit(msgs["s1"], 0.9), make_hit(msgs["t1"], 0.2)]
    result = await analyze_conversations_multi(
        ctx, query="When is the design review?", current_user_id=ME
    )

    assert result.success
    assert result.next_action is NextAction.COMPLETE
    assert result.data["conversation_id"] == "c-sarah"
    assert result.metadata["resolved_conversation_id"] == "c-sarah"


@pytest.mark.asyncio
async def test_multi_several_matches_ask(ctx, index, store) -> None:
    msgs = _by_id(store)
    index.hits = [make_hit(msgs["s1"], 0.9), make_hit(msgs["t1"], 0.9)]
    result = await analyze_conversations_multi(
        ctx, query="Where are the notes?", current_user_id=ME
    )

    assert result.next_action is NextAction.CLARIFICATION_NEEDED
    assert result.clarification.reason is ClarificationReason.AMBIGUOUS_CONVERSATION
    # same relevance, the newer hit wins
    assert [o.id for o in result.clarification.options] == ["c-team", "c-sarah"]


@pytest.mark.asyncio
async def test_multi_options_are_capped(ctx, index, store) -> None:
    msgs = _by_id(store)
    index.hits = [make_hit(msgs["s1"], 0.9), make_hit(msgs["t1"], 0.9)]
    result = await analyze_conversations_multi(
        ctx, query="notes", current_user_id=ME, max_conversations=1
    )
    assert len(result.clarification.options) == 1
    assert "2 conversations" in result.clarification.question


@pytest.mark.asyncio
async def test_multi_no_match(ctx) -> None:
    result = await analyze_conversations_multi(ctx, query="quarterly budget", current_user_id=ME)
    assert result.error.code == "not_found"
    assert result.error.message == "I couldn't find a conversation about that."


@pytest.mark.asyncio
async def test_multi_degraded_offers_recent_conversations(ctx, index) -> None:
    index.fail = True
    result = await analyze_conversations_multi(ctx, query="snacks?", current_user_id=ME)

    assert result.next_action is NextAction.CLARIFICATION_NEEDED
    assert result.clarification.reason is ClarificationReason.RETRIEVAL_DEGRADED
    assert [o.id for o in result.clarification.options][:2] == ["c-group", "c-team"]
    assert result.metadata["retrieval_degraded"] is True


# ---------------------------------------------------------------------------
# Explicit clarification
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_request_clarification(ctx) -> None:
    options = [{"id": f"c{i}", "title": f"Chat {i}"} for i in range(7)]
    result = await request_clarification(
        ctx, reason="ambiguous_conversation", question="Which chat?", options=options
    )
    assert result.next_action is NextAction.CLARIFICATION_NEEDED
    assert len(result.clarification.options) == 5


@pytest.mark.asyncio
async def test_request_clarification_rejects_bad_input(ctx) -> None:
    bad_reason = await request_clarification(
        ctx, reason="because", question="?", options=[{"id": "a", "title": "A"}]
    )
    no_options = await request_clarification(
        ctx, reason="ambiguous_contact", question="?", options=[]
    )
    bad_option = await request_clarification(
        ctx, reason="ambiguous_contact", question="?", options=[{"title": "no id"}]
    )
    assert bad_reason.error.code == "validation_error"
    assert no_options.error.code == "validation_error"
    assert bad_option.error.code == "validation_error"
