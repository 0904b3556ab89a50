"""
Retrieval adapter: the single place tools get "relevant messages" from.

Two entry points:

* :meth:`RetrievalAdapter.retrieve_for_conversation` feeds single-conversation extraction.  Vector
  hits are topped up with recent messages when sparse and replaced by them when the index is down.
* :meth:`RetrievalAdapter.rank_conversations` scores every conversation of the user for a query by
  blending semantic relevance with recency.

Vector search failures never escape :meth:`retrieve_for_conversation`; they are logged and reported
through ``RetrievalResult.degraded``.  :meth:`rank_conversations` has no sensible fallback of its
own and re-raises :class:`~courier.core.errors.RetrievalDegraded` for the caller to handle.
"""

import logging
from dataclasses import dataclass
from datetime import (
    datetime,
    timedelta,
)
from typing import (
    Dict,
    List,
    Optional,
    Sequence,
)

from courier.common import (
    as_utc,
    conversation_title,
    truncate_text,
    utcnow,
)
from courier.config import Settings
from courier.core.errors import RetrievalDegraded
from courier.core.schema import (
    Conversation,
    Message,
    VectorHit,
)
from courier.memory.stores import ConversationStore
from courier.memory.vector_memory import VectorIndex

logger = logging.getLogger(__name__)

RELEVANCE_WEIGHT = 0.7
RECENCY_WEIGHT = 0.3


@dataclass
class RetrievalResult:
    """Messages handed to the extraction step, oldest first."""

    messages: List[Message]
    used_rag: bool
    degraded: bool = False
    hit_count: int = 0


@dataclass
class ConversationCandidate:
    """One conversation scored against a query."""

    conversation: Conversation
    title: str
    relevance: float
    recency: float
    composite: float
    snippet: str
    last_hit_at: Optional[datetime] = None


def recency_score(timestamp: datetime | None, now: datetime, half_life_hours: float) -> float:
    """Exponential decay: 1.0 now, 0.5 after one half-life."""
    if timestamp is None:
        return 0.0
    age_hours = max((as_utc(now) - as_utc(timestamp)).total_seconds() / 3600.0, 0.0)
    return 0.5 ** (age_hours / half_life_hours)


def _hit_to_message(hit: VectorHit) -> Message:
    return Message(
        id=hit.message_id,
        conversation_id=hit.conversation_id,
        sender_id=hit.sender_id,
        sender_name=hit.sender_name,
        text=hit.text,
        timestamp=hit.timestamp or utcnow(),
    )


class RetrievalAdapter:
    """Combines the vector index with the conversation store."""

    def __init__(
        self,
        index: VectorIndex | None,
        conversations: ConversationStore,
        settings: Settings,
    ):
        self._index = index
        self._conversations = conversations
        self._settings = settings

    @property
    def available(self) -> bool:
        """False when no vector index is configured."""
        return self._index is not None

    async def index_message(self, message: Message, participants: Sequence[str]) -> None:
        """Best-effort indexing of a freshly written message."""
        if self._index is None:
            return
        try:
            await self._index.index_message(message, participants)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Failed to index message %s: %s", message.id, exc)

    # ------------------------------------------------------------------ #
    # Single conversation
    # ------------------------------------------------------------------ #
    async def retrieve_for_conversation(
        self,
        query: str,
        user_id: str,
        conversation_id: str,
        max_messages: int = 50,
        use_rag: bool = True,
    ) -> RetrievalResult:
        """
        Gather the messages most likely to answer *query* inside one conversation.

        Parameters
        ----------
        query: str
            The user's question.
        user_id: str
            Caller; hits are scoped to documents indexed for this user.
        conversation_id: str
            Conversation to search.
        max_messages: int
            Cap for the recent-messages path (RAG disabled or degraded).
        use_rag: bool
            Set to ``False`` to skip the vector index entirely.

        Returns
        -------
        RetrievalResult
            Deduplicated messages in chronological order.
        """
        if not use_rag or self._index is None:
            recent = await self._conversations.get_messages(conversation_id, limit=max_messages)
            return RetrievalResult(messages=_chronological(recent), used_rag=False)

        try:
            hits = await self._index.search(
                query, user_id, conversation_id=conversation_id, top_k=self._settings.RAG_TOP_K
            )
        except RetrievalDegraded as exc:
            logger.warning(
                "Vector search degraded for conversation %s, using recent messages: %s",
                conversation_id,
                exc,
            )
            recent = await self._conversations.get_messages(conversation_id, limit=max_messages)
            return RetrievalResult(messages=_chronological(recent), used_rag=False, degraded=True)

        hits = [hit for hit in hits if hit.conversation_id == conversation_id]
        messages: Dict[str, Message] = {hit.message_id: _hit_to_message(hit) for hit in hits}
        if len(hits) < self._settings.RAG_MIN_HITS:
            logger.debug(
                "Only %d hits for conversation %s, adding %d recent messages",
                len(hits),
                conversation_id,
                self._settings.RAG_RECENT_FALLBACK,
            )
            recent = await self._conversations.get_messages(
                conversation_id, limit=self._settings.RAG_RECENT_FALLBACK
            )
            for message in recent:
                messages.setdefault(message.id, message)

        return RetrievalResult(
            messages=_chronological(messages.values()), used_rag=True, hit_count=len(hits)
        )

    # ------------------------------------------------------------------ #
    # Across conversations
    # ------------------------------------------------------------------ #
    async def rank_conversations(
        self,
        query: str,
        user_id: str,
        time_window_hours: float = 48.0,
        now: datetime | None = None,
    ) -> List[ConversationCandidate]:
        """
        Score the user's conversations for *query*, best first.

        Hits older than *time_window_hours* are ignored (``0`` disables the window).  A
        conversation's relevance is its best hit score; recency decays with the age of its newest
        hit.

        Raises
        ------
        RetrievalDegraded
            If no index is configured or the search fails.
        """
        if self._index is None:
            raise RetrievalDegraded("No vector index configured")

        now = now or utcnow()
        hits = await self._index.search(query, user_id, top_k=self._settings.RAG_TOP_K)
        if time_window_hours > 0:
            cutoff = now - timedelta(hours=time_window_hours)
            hits = [hit for hit in hits if hit.timestamp is None or as_utc(hit.timestamp) >= cutoff]

        grouped: Dict[str, List[VectorHit]] = {}
        for hit in hits:
            grouped.setdefault(hit.conversation_id, []).append(hit)

        candidates: List[ConversationCandidate] = []
        for conversation_id, conversation_hits in grouped.items():
            conversation = await self._conversations.get_conversation(conversation_id)
            if conversation is None or user_id not in conversation.participants:
                continue
            best = max(conversation_hits, key=lambda hit: hit.score)
            stamps = [hit.timestamp for hit in conversation_hits if hit.timestamp is not None]
            newest = max(stamps, key=as_utc) if stamps else conversation.last_message_at
            recency = recency_score(newest, now, self._settings.RECENCY_HALF_LIFE_HOURS)
            composite = RELEVANCE_WEIGHT * best.score + RECENCY_WEIGHT * recency
            candidates.append(
                ConversationCandidate(
                    conversation=conversation,
                    title=conversation_title(conversation, user_id),
                    relevance=round(best.score, 4),
                    recency=round(recency, 4),
                    composite=round(composite, 4),
                    snippet=truncate_text(best.text, 80),
                    last_hit_at=newest,
                )
            )

        candidates.sort(key=lambda candidate: candidate.composite, reverse=True)
        logger.info(
            "Ranked %d conversations for query '%s'", len(candidates), truncate_text(query, 60)
        )
        return candidates


def _chronological(messages) -> List[Message]:
    return sorted(messages, key=lambda message: as_utc(message.timestamp))
