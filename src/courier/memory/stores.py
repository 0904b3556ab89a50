"""
Collaborator interfaces for the conversation store and contact directory.

The engine only ever talks to these protocols.  The in-memory implementations back local
development (seeded from a JSON file) and the test-suite; production deployments plug in their own
store behind the same methods.
"""

import asyncio
import json
import logging
import uuid
from datetime import (
    datetime,
    timezone,
)
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
)

from courier.core.errors import NotFoundError
from courier.core.schema import (
    Contact,
    Conversation,
    Message,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


class ConversationStore(Protocol):
    """Read conversations and messages, write new messages."""

    async def list_conversations(
        self, user_id: str, sort_key: str = "last_message", limit: int = 10
    ) -> List[Conversation]: ...

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]: ...

    async def get_messages(
        self, conversation_id: str, limit: int = 50, before: Optional[str] = None
    ) -> List[Message]: ...

    async def create_message(
        self, conversation_id: str, sender_id: str, content: str
    ) -> Message: ...

    async def find_direct_conversation(
        self, user_a: str, user_b: str
    ) -> Optional[Conversation]: ...

    async def create_conversation(
        self, participants: Sequence[str], name: Optional[str] = None
    ) -> Conversation: ...


class ContactDirectory(Protocol):
    """Read user records."""

    async def get_user(self, user_id: str) -> Optional[Contact]: ...

    async def list_users(self) -> List[Contact]: ...


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------
class InMemoryContactDirectory:
    """Dictionary-backed :class:`ContactDirectory`."""

    def __init__(self, contacts: Sequence[Contact] = ()):
        self._contacts: Dict[str, Contact] = {contact.id: contact for contact in contacts}

    def add(self, contact: Contact) -> None:
        """Insert or replace a user record."""
        self._contacts[contact.id] = contact

    async def get_user(self, user_id: str) -> Optional[Contact]:
        return self._contacts.get(user_id)

    async def list_users(self) -> List[Contact]:
        return list(self._contacts.values())


class InMemoryConversationStore:
    """Dictionary-backed :class:`ConversationStore`; messages are kept oldest first."""

    def __init__(self, directory: InMemoryContactDirectory | None = None):
        self._directory = directory
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, List[Message]] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------ #
    # Seeding helpers
    # ------------------------------------------------------------------ #
    def add_conversation(self, conversation: Conversation) -> None:
        """Insert or replace a conversation."""
        self._conversations[conversation.id] = conversation
        self._messages.setdefault(conversation.id, [])

    def add_message(self, message: Message) -> None:
        """Append a message and refresh the conversation's last-message fields."""
        if message.conversation_id not in self._conversations:
            raise NotFoundError(f"Conversation '{message.conversation_id}' not found")
        messages = self._messages[message.conversation_id]
        messages.append(message)
        messages.sort(key=lambda m: m.timestamp)
        conversation = self._conversations[message.conversation_id]
        latest = conversation.last_message_at
        if latest is None or message.timestamp >= latest:
            self._conversations[conversation.id] = conversation.model_copy(
                update={"last_message_at": message.timestamp, "last_message_text": message.text}
            )

    def all_messages(self) -> List[Message]:
        """Every stored message (used to bootstrap the vector index)."""
        return [message for messages in self._messages.values() for message in messages]

    # ------------------------------------------------------------------ #
    # ConversationStore API
    # ------------------------------------------------------------------ #
    async def list_conversations(
        self, user_id: str, sort_key: str = "last_message", limit: int = 10
    ) -> List[Conversation]:
        conversations = [c for c in self._conversations.values() if user_id in c.participants]
        if sort_key == "created":
            conversations.sort(key=lambda c: c.created_at or _EPOCH, reverse=True)
        else:
            conversations.sort(
                key=lambda c: c.last_message_at or c.created_at or _EPOCH, reverse=True
            )
        return conversations[:limit]

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    async def get_messages(
        self, conversation_id: str, limit: int = 50, before: Optional[str] = None
    ) -> List[Message]:
        """Return up to *limit* messages, newest first, optionally older than message *before*."""
        if conversation_id not in self._conversations:
            raise NotFoundError(f"Conversation '{conversation_id}' not found")
        messages = list(reversed(self._messages[conversation_id]))
        if before is not None:
            ids = [m.id for m in messages]
            if before not in ids:
                raise NotFoundError(
                    f"Message '{before}' not found in conversation '{conversation_id}'"
                )
            messages = messages[ids.index(before) + 1 :]
        return messages[:limit]

    async def create_message(self, conversation_id: str, sender_id: str, content: str) -> Message:
        async with self._lock:
            sender = await self._directory.get_user(sender_id) if self._directory else None
            message = Message(
                id=uuid.uuid4().hex,
                conversation_id=conversation_id,
                sender_id=sender_id,
                sender_name=sender.display_name if sender else None,
                text=content,
                timestamp=datetime.now(timezone.utc),
            )
            self.add_message(message)
            return message

    async def find_direct_conversation(self, user_a: str, user_b: str) -> Optional[Conversation]:
        for conversation in self._conversations.values():
            if conversation.type == "direct" and {user_a, user_b} == set(conversation.participants):
                return conversation
        return None

    async def create_conversation(
        self, participants: Sequence[str], name: Optional[str] = None
    ) -> Conversation:
        async with self._lock:
            names: Dict[str, str] = {}
            for user_id in participants:
                user = await self._directory.get_user(user_id) if self._directory else None
                names[user_id] = user.display_name if user else "Unknown"
            conversation = Conversation(
                id=uuid.uuid4().hex,
                type="direct" if len(participants) == 2 else "group",
                participants=list(participants),
                participant_names=names,
                name=name,
                created_at=datetime.now(timezone.utc),
            )
            self.add_conversation(conversation)
            return conversation


def load_seed_data(path: str | Path) -> tuple[InMemoryContactDirectory, InMemoryConversationStore]:
    """
    Build in-memory collaborators from a JSON seed file.

    Expected layout::

        {"users": [Contact...], "conversations": [Conversation...], "messages": [Message...]}
    """
    raw: Dict[str, Any] = json.loads(Path(path).read_text(encoding="utf-8"))
    directory = InMemoryContactDirectory([Contact.model_validate(u) for u in raw.get("users", [])])
    store = InMemoryConversationStore(directory)
    for item in raw.get("conversations", []):
        store.add_conversation(Conversation.model_validate(item))
    for item in raw.get("messages", []):
        store.add_message(Message.model_validate(item))
    logger.info(
        "Loaded seed data from %s: %d users, %d conversations",
        path,
        len(raw.get("users", [])),
        len(raw.get("conversations", [])),
    )
    return directory, store
