"""Clarification round-trip: state detection, content extraction and resume calls."""

import pytest

from courier.agent.clarification import (
    ClarificationState,
    build_resume_call,
    clarification_state,
    extract_message_content,
    is_send_command,
    is_summary_command,
)
from courier.core.errors import ValidationError
from courier.core.schema import (
    AppContext,
    ClarificationOption,
    ClarificationPayload,
    ClarificationReason,
    ClarificationResponse,
    NextAction,
    ToolResult,
)

from conftest import ME


def _resumed(option_id: str, title: str, reason: ClarificationReason) -> AppContext:
    return AppContext(
        current_user_id=ME,
        clarification_response=ClarificationResponse(
            selected_option=ClarificationOption(id=option_id, title=title, confidence=0.85),
            original_reason=reason,
        ),
    )


def test_state_transitions(chats_context) -> None:
    paused = ToolResult(
        success=True,
        next_action=NextAction.CLARIFICATION_NEEDED,
        clarification=ClarificationPayload(
            reason=ClarificationReason.AMBIGUOUS_CONTACT, question="Which John?", options=[]
        ),
    )
    assert clarification_state(chats_context) is ClarificationState.NONE
    assert clarification_state(chats_context, paused) is ClarificationState.PENDING
    resumed = _resumed("u-john", "John Smith", ClarificationReason.AMBIGUOUS_CONTACT)
    assert clarification_state(resumed) is ClarificationState.RESOLVED


def test_command_kinds() -> None:
    assert is_send_command("Tell John I'm on my way")
    assert is_send_command("please text Sarah hello")
    assert not is_send_command("Open my chat with John")
    assert is_summary_command("Summarize my chat with John")
    assert is_summary_command("what did I miss")
    assert not is_summary_command("Tell John hi")


@pytest.mark.parametrize(
    "command, title, expected",
    [
        ("Tell John I'm on my way", "John Smith", "I'm on my way"),
        ("Tell John I'm on my way", None, "I'm on my way"),
        ("Send a message to John saying hi", "John Smith", "hi"),
        ("Tell John Smith: running late", "John Smith", "running late"),
        ("Let Sarah know that I'm late", "Sarah Chen", "I'm late"),
        ('Text Sarah "see you at 3"', "Sarah Chen", "see you at 3"),
        ("Tell Sam same time tomorrow", "Sam Lee", "same time tomorrow"),
        ("Tell John Johnson called", "John Smith", "Johnson called"),
        ("Tell Jon I will call later", "John Smith", "I will call later"),
        ("Tell John F. Kennedy the car is here", "John F. Kennedy", "the car is here"),
    ],
)
def test_message_content_extraction(command, title, expected) -> None:
    assert extract_message_content(command, title) == expected


def test_no_content_without_body_or_verb() -> None:
    assert extract_message_content("Message John", "John Smith") is None
    assert extract_message_content("Open my chat with John", "John Smith") is None


def test_resume_contact_pick_sends_message() -> None:
    ctx = _resumed("u-john", "John Smith", ClarificationReason.AMBIGUOUS_CONTACT)
    call = build_resume_call("Tell John I'm on my way", ctx)
    assert call.tool == "send_message"
    assert call.parameters == {
        "recipient_id": "u-john",
        "content": "I'm on my way",
        "sender_id": ME,
    }


def test_resume_contact_pick_without_body_opens_conversation() -> None:
    ctx = _resumed("u-john", "John Smith", ClarificationReason.LOW_CONFIDENCE_CONTACT)
    call = build_resume_call("Open my chat with Jon", ctx)
    assert call.tool == "resolve_conversation"
    assert call.parameters["contact_identifier"] == "u-john"


def test_resume_conversation_pick_summarizes_or_analyzes() -> None:
    ctx = _resumed("c-team", "Launch Team", ClarificationReason.AMBIGUOUS_CONVERSATION)
    summary = build_resume_call("Summarize the launch discussion", ctx)
    question = build_resume_call("Where is the launch checklist?", ctx)
    assert summary.tool == "summarize_conversation"
    assert summary.parameters["conversation_id"] == "c-team"
    assert question.tool == "analyze_conversation"
    assert question.parameters["query"] == "Where is the launch checklist?"


def test_resume_without_response_is_an_error(chats_context) -> None:
    with pytest.raises(ValidationError):
        build_resume_call("Tell John hi", chats_context)
