"""
Shared fixtures: a seeded in-memory store, a fake vector index and a scripted planner.

Timestamps are relative to "now" because recency scoring and time windows use the wall clock.
"""

from datetime import (
    datetime,
    timedelta,
    timezone,
)
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Sequence,
)

import pytest

from courier.agent.engine import CommandEngine
from courier.agent.planner_interface import BasePlanner
from courier.config import Settings
from courier.core.errors import RetrievalDegraded
from courier.core.schema import (
    AppContext,
    ChainPlan,
    Contact,
    Conversation,
    Message,
    VectorHit,
)
from courier.memory.retrieval import RetrievalAdapter
from courier.memory.stores import (
    InMemoryContactDirectory,
    InMemoryConversationStore,
)
from courier.tools import (
    ToolRegistry,
    ToolServices,
    load_builtin_tools,
)

ME = "u-me"
NOW = datetime.now(timezone.utc)

CONTACTS = [
    Contact(id=ME, display_name="Alice Morgan", email="alice@example.com"),
    Contact(id="u-john", display_name="John Smith", email="john.smith@example.com"),
    Contact(id="u-sarah", display_name="Sarah Chen", email="sarah.chen@example.com"),
    Contact(id="u-bob", display_name="Bob Lee"),
]


def hours_ago(hours: float) -> datetime:
    """A timestamp *hours* before the start of the test session."""
    return NOW - timedelta(hours=hours)


def make_hit(message: Message, score: float) -> VectorHit:
    """A vector hit for a stored message."""
    return VectorHit(
        message_id=message.id,
        conversation_id=message.conversation_id,
        score=score,
        text=message.text,
        sender_id=message.sender_id,
        sender_name=message.sender_name,
        timestamp=message.timestamp,
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------
class FakeVectorIndex:
    """Returns the configured hits, filtered by conversation; can be told to fail."""

    def __init__(self, hits: Sequence[VectorHit] = (), fail: bool = False):
        self.hits = list(hits)
        self.fail = fail
        self.searches: List[Dict[str, Any]] = []
        self.indexed: List[tuple] = []

    async def search(
        self,
        query: str,
        user_id: str,
        conversation_id: Optional[str] = None,
        top_k: int = 20,
    ) -> List[VectorHit]:
        self.searches.append(
            {"query": query, "user_id": user_id, "conversation_id": conversation_id, "top_k": top_k}
        )
        if self.fail:
            raise RetrievalDegraded("index offline")
        hits = [h for h in self.hits if conversation_id in (None, h.conversation_id)]
        return sorted(hits, key=lambda h: h.score, reverse=True)[:top_k]

    async def index_message(self, message: Message, participants: Sequence[str]) -> None:
        self.indexed.append((message.id, tuple(participants)))


class ScriptedPlanner(BasePlanner):
    """Replays queued plans and completions and records every call."""

    def __init__(
        self,
        plans: Sequence[Any] = (),
        completions: Sequence[str] = (),
    ):
        self.plans = list(plans)
        self.completions = list(completions)
        self.plan_calls: List[str] = []
        self.prompts: List[str] = []

    async def plan(self, command, app_context, registry=None) -> ChainPlan:
        self.plan_calls.append(command)
        step = self.plans.pop(0)
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return await step()
        return step

    async def complete(
        self, system_prompt: str, user_prompt: str, json_output: bool = False
    ) -> str:
        self.prompts.append(user_prompt)
        if self.completions:
            return self.completions.pop(0)
        if json_output:
            return '{"answer": "ok", "confidence": 0.5, "supporting_message_ids": []}'
        return "A short summary."


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def settings() -> Settings:
    """Settings independent of the environment."""
    return Settings(_env_file=None, PLANNER="rules", TOOL_TIMEOUT_S=5.0, PLANNER_TIMEOUT_S=5.0)


@pytest.fixture
def directory() -> InMemoryContactDirectory:
    return InMemoryContactDirectory(CONTACTS)


@pytest.fixture
def store(directory: InMemoryContactDirectory) -> InMemoryConversationStore:
    names = {c.id: c.display_name for c in CONTACTS}
    store = InMemoryConversationStore(directory)

    def conversation(conv_id: str, members: List[str], kind: str = "direct", name=None):
        store.add_conversation(
            Conversation(
                id=conv_id,
                type=kind,
                participants=members,
                participant_names={m: names[m] for m in members},
                name=name,
                created_at=hours_ago(200),
            )
        )

    conversation("c-john", [ME, "u-john"])
    conversation("c-sarah", [ME, "u-sarah"])
    conversation("c-team", [ME, "u-john", "u-sarah"], kind="group", name="Launch Team")
    conversation("c-group", [ME, "u-sarah", "u-bob"], kind="group")

    script = [
        ("m1", "c-john", "u-john", "Are we still on for lunch tomorrow?", 10),
        ("m2", "c-john", ME, "Yes, noon at the usual place.", 9),
        ("m3", "c-john", "u-john", "I'll bring the contract drafts.", 8),
        ("m4", "c-john", ME, "Great, see you there.", 7),
        ("m5", "c-john", "u-john", "Running ten minutes late.", 6),
        ("m6", "c-john", ME, "No problem.", 5),
        ("s1", "c-sarah", "u-sarah", "The design review moved to Thursday at 3pm.", 4),
        ("t1", "c-team", "u-john", "Launch checklist is in the shared drive.", 3),
        ("g1", "c-group", "u-bob", "Who is bringing snacks?", 2),
    ]
    for msg_id, conv_id, sender, text, age in script:
        store.add_message(
            Message(
                id=msg_id,
                conversation_id=conv_id,
                sender_id=sender,
                sender_name=names[sender],
                text=text,
                timestamp=hours_ago(age),
            )
        )
    return store


@pytest.fixture
def index() -> FakeVectorIndex:
    return FakeVectorIndex()


@pytest.fixture
def planner() -> ScriptedPlanner:
    return ScriptedPlanner()


@pytest.fixture
def registry() -> ToolRegistry:
    return load_builtin_tools()


@pytest.fixture
def services(store, directory, index, planner, settings) -> ToolServices:
    return ToolServices(
        conversations=store,
        contacts=directory,
        retrieval=RetrievalAdapter(index, store, settings),
        llm=planner,
        settings=settings,
    )


@pytest.fixture
def engine(registry, planner, services, settings) -> CommandEngine:
    return CommandEngine(registry, planner, services, settings)


@pytest.fixture
def chats_context() -> AppContext:
    return AppContext(current_screen="chats", current_user_id=ME)


@pytest.fixture
def conversation_context() -> AppContext:
    return AppContext(
        current_screen="conversation", current_conversation_id="c-john", current_user_id=ME
    )
