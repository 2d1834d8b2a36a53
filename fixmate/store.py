from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument

from .errors import ConversationConflictError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Turn:
    user_text: str
    assistant_text: str
    timestamp: datetime

    def to_document(self) -> Dict[str, Any]:
        return {
            "userText": self.user_text,
            "assistantText": self.assistant_text,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Turn":
        ts = doc["timestamp"]
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return cls(
            user_text=doc.get("userText", ""),
            assistant_text=doc.get("assistantText", ""),
            timestamp=ts,
        )


@dataclass(frozen=True)
class ConversationRecord:
    user_id: str
    turns: Tuple[Turn, ...] = ()
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 0

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ConversationRecord":
        updated = doc.get("updatedAt") or utcnow()
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=timezone.utc)
        return cls(
            user_id=doc["userId"],
            turns=tuple(Turn.from_document(t) for t in doc.get("turns", [])),
            updated_at=updated,
            version=int(doc.get("version", 0)),
        )


class ConversationStore(ABC):
    """Per-user, append-only log of chat turns."""

    name = "abstract"

    @abstractmethod
    async def load(self, user_id: str) -> Optional[ConversationRecord]:
        """Return the user's record, or None for a first-time user."""

    @abstractmethod
    async def append_turn(self, user_id: str, turn: Turn) -> ConversationRecord:
        """Read-modify-write append. Raises on a concurrent modification."""

    @abstractmethod
    async def upsert_append(self, user_id: str, turn: Turn) -> ConversationRecord:
        """Atomically push ``turn``, creating the record if it is absent."""

    async def ensure_indexes(self) -> None:
        return None

    async def close(self) -> None:
        return None


class InMemoryConversationStore(ConversationStore):
    """Thread-safe in-RAM store for local runs and tests."""

    name = "memory"

    def __init__(self) -> None:
        self._lock = Lock()
        self._records: Dict[str, ConversationRecord] = {}

    async def load(self, user_id: str) -> Optional[ConversationRecord]:
        with self._lock:
            return self._records.get(user_id)

    async def append_turn(self, user_id: str, turn: Turn) -> ConversationRecord:
        snapshot = await self.load(user_id)
        if snapshot is None:
            updated = ConversationRecord(
                user_id=user_id, turns=(turn,), updated_at=utcnow(), version=1
            )
        else:
            updated = replace(
                snapshot,
                turns=snapshot.turns + (turn,),
                updated_at=utcnow(),
                version=snapshot.version + 1,
            )
        return self._save(updated, expected_version=snapshot.version if snapshot else 0)

    def _save(self, record: ConversationRecord, expected_version: int) -> ConversationRecord:
        with self._lock:
            current = self._records.get(record.user_id)
            current_version = current.version if current else 0
            if current_version != expected_version:
                raise ConversationConflictError(record.user_id, expected_version)
            self._records[record.user_id] = record
            return record

    async def upsert_append(self, user_id: str, turn: Turn) -> ConversationRecord:
        with self._lock:
            current = self._records.get(user_id) or ConversationRecord(user_id=user_id)
            record = replace(
                current,
                turns=current.turns + (turn,),
                updated_at=utcnow(),
                version=current.version + 1,
            )
            self._records[user_id] = record
            return record


class MongoConversationStore(ConversationStore):
    """One document per user in a MongoDB collection (motor, asyncio)."""

    name = "mongodb"

    def __init__(self, collection: Any, client: Any = None) -> None:
        self._collection = collection
        self._client = client

    @classmethod
    def from_uri(cls, uri: str, database: str, collection: str = "chatmessages") -> "MongoConversationStore":
        client = AsyncIOMotorClient(uri, tz_aware=True)
        return cls(client[database][collection], client=client)

    async def ensure_indexes(self) -> None:
        await self._collection.create_index("userId", unique=True)

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()

    async def load(self, user_id: str) -> Optional[ConversationRecord]:
        doc = await self._collection.find_one({"userId": user_id})
        if doc is None:
            return None
        return ConversationRecord.from_document(doc)

    async def append_turn(self, user_id: str, turn: Turn) -> ConversationRecord:
        record = await self.load(user_id)
        now = utcnow()

        if record is None:
            doc = {
                "userId": user_id,
                "turns": [turn.to_document()],
                "updatedAt": now,
                "version": 1,
            }
            # a racing first turn surfaces here as DuplicateKeyError
            await self._collection.insert_one(doc)
            return ConversationRecord.from_document(doc)

        turns = [t.to_document() for t in record.turns]
        turns.append(turn.to_document())
        doc = {
            "userId": user_id,
            "turns": turns,
            "updatedAt": now,
            "version": record.version + 1,
        }
        result = await self._collection.replace_one(
            {"userId": user_id, "version": record.version}, doc
        )
        if result.matched_count == 0:
            raise ConversationConflictError(user_id, record.version)
        return ConversationRecord.from_document(doc)

    async def upsert_append(self, user_id: str, turn: Turn) -> ConversationRecord:
        doc = await self._collection.find_one_and_update(
            {"userId": user_id},
            {
                "$push": {"turns": turn.to_document()},
                "$set": {"updatedAt": utcnow()},
                "$inc": {"version": 1},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return ConversationRecord.from_document(doc)


def build_store(settings) -> ConversationStore:
    if settings.mongodb_uri:
        logger.info("Using MongoDB conversation store (db=%s)", settings.mongodb_db)
        return MongoConversationStore.from_uri(settings.mongodb_uri, settings.mongodb_db)
    logger.info("MONGODB_URI not set; using in-memory conversation store")
    return InMemoryConversationStore()
