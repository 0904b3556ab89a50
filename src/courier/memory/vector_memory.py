"""
Thin wrapper around Chroma for semantic search over messages.

We store each message once per participant so every query can be scoped to the calling user:
  id       = "<message_id>:<user_id>"
  text     = message text
  metadata = { "message_id", "user_id", "conversation_id", "sender_id", "sender_name", "timestamp" }

Chroma's client is blocking, so every call is pushed onto a worker thread.
"""

import asyncio
import logging
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    cast,
)

import chromadb
from chromadb.api.types import EmbeddingFunction
from chromadb.utils import embedding_functions

from courier.config import settings
from courier.core.errors import RetrievalDegraded
from courier.core.schema import (
    Message,
    VectorHit,
)

logger = logging.getLogger(__name__)


class VectorIndex(Protocol):
    """Nearest-neighbour search over message text, scoped per user."""

    async def search(
        self,
        query: str,
        user_id: str,
        conversation_id: Optional[str] = None,
        top_k: int = 20,
    ) -> List[VectorHit]: ...

    async def index_message(self, message: Message, participants: Sequence[str]) -> None: ...


class ChromaVectorIndex:
    """
    Chroma-backed :class:`VectorIndex`.
    """

    def __init__(
        self,
        collection_name: str = settings.VECTOR_COLLECTION,
        persist: bool = True,
        host: str = settings.VECTOR_DB_HOST,  # service name in docker-compose
        port: int = settings.VECTOR_DB_PORT,
        embed_model: str = settings.EMBED_MODEL,
    ):
        self._client = chromadb.HttpClient(host=host, port=port)
        self._embed_fn: EmbeddingFunction = (
            embedding_functions.SentenceTransformerEmbeddingFunction(model_name=embed_model)
        )

        if not persist:
            try:
                self._client.delete_collection(collection_name)
                logger.info(
                    "Deleted existing collection '%s' (non-persistent mode)", collection_name
                )
            except Exception as e:  # pylint: disable=broad-except
                # Collection might not exist yet
                logger.debug("Could not delete collection '%s': %s", collection_name, str(e))

        self._col = self._client.get_or_create_collection(
            name=collection_name,
            embedding_function=cast(EmbeddingFunction, self._embed_fn),
            metadata={"hnsw:space": "cosine"},
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    async def index_message(self, message: Message, participants: Sequence[str]) -> None:
        """Upsert *message* once for every participant of its conversation."""
        if not message.text.strip() or not participants:
            return
        ids = [f"{message.id}:{user_id}" for user_id in participants]
        metadatas = [
            {
                "message_id": message.id,
                "user_id": user_id,
                "conversation_id": message.conversation_id,
                "sender_id": message.sender_id,
                "sender_name": message.sender_name or "",
                "timestamp": message.timestamp.isoformat(),
            }
            for user_id in participants
        ]
        await asyncio.to_thread(
            self._col.upsert,
            ids=ids,
            documents=[message.text] * len(ids),
            metadatas=metadatas,
        )

    async def search(
        self,
        query: str,
        user_id: str,
        conversation_id: Optional[str] = None,
        top_k: int = 20,
    ) -> List[VectorHit]:
        """
        Return up to *top_k* hits for *query*, best first.

        Raises
        ------
        RetrievalDegraded
            If Chroma cannot be reached or the query fails.
        """
        where: Dict[str, Any] = {"user_id": user_id}
        if conversation_id:
            where = {"$and": [{"user_id": user_id}, {"conversation_id": conversation_id}]}
        try:
            res = await asyncio.to_thread(
                self._col.query,
                query_texts=[query],
                n_results=top_k,
                where=where,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:  # pylint: disable=broad-except
            raise RetrievalDegraded(f"Vector search failed: {exc}", cause=exc) from exc

        logger.debug("Vector query '%s' returned %d hits", query[:60], len(res.get("ids", [[]])[0]))
        return _to_hits(res)

    # Convenience for tests / admin
    def count(self) -> int:
        """Return number of documents in the collection."""
        return self._col.count()


def _to_hits(res: Dict[str, Any]) -> List[VectorHit]:
    ids = (res.get("ids") or [[]])[0]
    documents = (res.get("documents") or [[]])[0]
    metadatas = (res.get("metadatas") or [[]])[0]
    distances = (res.get("distances") or [[]])[0]
    hits: List[VectorHit] = []
    for index in range(len(ids)):
        meta = metadatas[index] or {}
        timestamp = meta.get("timestamp")
        hits.append(
            VectorHit(
                message_id=str(meta.get("message_id") or ids[index].split(":", 1)[0]),
                conversation_id=str(meta.get("conversation_id", "")),
                score=max(0.0, min(1.0, 1.0 - float(distances[index]))),
                text=documents[index] or "",
                sender_id=str(meta.get("sender_id", "")),
                sender_name=meta.get("sender_name") or None,
                timestamp=_parse_timestamp(timestamp) if timestamp else None,
            )
        )
    hits.sort(key=lambda hit: hit.score, reverse=True)
    return hits


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
