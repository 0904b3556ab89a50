"""HTTP surface and CLI client."""

import pytest
from fastapi.testclient import TestClient

from courier.agent.engine import CommandEngine
from courier.agent.planner_interface import RulePlanner
from courier.api.app import (
    app,
    get_engine,
)
from courier.client import cli
from courier.core.schema import Contact
from courier.main import build_parser

from conftest import ME

CHATS = {"current_screen": "chats", "current_user_id": ME}


@pytest.fixture
def client(registry, services, settings):
    engine = CommandEngine(registry, RulePlanner(), services, settings)
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_root_and_health(client) -> None:
    assert "Courier" in client.get("/").json()["message"]
    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["planner"] == "RulePlanner"
    assert health["tools"] >= 9


def test_tools_endpoint(client) -> None:
    tools = {tool["name"]: tool for tool in client.get("/tools").json()["tools"]}
    assert "analyze_conversations_multi" in tools
    params = {p["name"]: p for p in tools["send_message"]["parameters"]}
    assert params["content"]["required"] is True
    assert params["create_conversation_if_missing"]["default"] is True


def test_command_round_trip(client) -> None:
    body = client.post(
        "/commands", json={"command": "Tell John I'm on my way", "app_context": CHATS}
    ).json()
    assert body["success"] is True
    assert body["action"] == "navigate"
    assert body["tools_used"] == ["lookup_contacts", "send_message"]


def test_clarification_over_http(client, directory) -> None:
    """The second request carries the pick; the server kept nothing in between."""

    directory.add(Contact(id="u-johnd", display_name="John Doe"))
    first = client.post(
        "/commands", json={"command": "Tell John lunch is on me", "app_context": CHATS}
    ).json()
    assert first["action"] == "show_clarification"

    clarification = first["payload"]["clarification"]
    resumed = dict(
        CHATS,
        clarification_response={
            "selected_option": clarification["options"][0],
            "original_reason": clarification["reason"],
        },
    )
    second = client.post(
        "/commands", json={"command": "Tell John lunch is on me", "app_context": resumed}
    ).json()
    assert second["response"] == "Message sent to John Smith!"
    assert second["payload"]["content"] == "lunch is on me"


def test_bad_request_is_rejected(client) -> None:
    assert client.post("/commands", json={"command": "hi"}).status_code == 422
    bad_screen = {"command": "hi", "app_context": {"current_screen": "moon"}}
    assert client.post("/commands", json=bad_screen).status_code == 422


def test_cli_resends_with_pick(client, directory, monkeypatch) -> None:
    directory.add(Contact(id="u-johnd", display_name="John Doe"))
    sent = []

    def fake_call_api(endpoint, data, max_retries=5, base_url=None):
        sent.append(data)
        return client.post(endpoint, json=data).json()

    monkeypatch.setattr(cli, "call_api", fake_call_api)
    monkeypatch.setattr("builtins.input", lambda prompt="": "2")

    response = cli.run_command("Tell John see you soon", dict(CHATS))

    assert len(sent) == 2
    assert sent[1]["app_context"]["clarification_response"]["selected_option"]["id"] == "u-johnd"
    assert response["response"] == "Message sent to John Doe!"


def test_cli_choose_option_cancel(monkeypatch) -> None:
    monkeypatch.setattr("builtins.input", lambda prompt="": "")
    assert cli.choose_option([{"id": "a", "title": "A"}]) is None


def test_parser_defaults() -> None:
    args = build_parser().parse_args(["--mode", "CLI", "--user-id", ME])
    assert args.mode == "cli"
    assert args.screen == "chats"
    assert args.conversation_id is None
