from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import List, Optional, Sequence

import pytest
from pymongo.errors import DuplicateKeyError

from fixmate.llm import ModelStreamBridge
from fixmate.store import ConversationRecord, InMemoryConversationStore, Turn
from fixmate.transport import TurnSink

BASE_TIME = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def make_turn(i: int, minutes: Optional[int] = None) -> Turn:
    offset = i if minutes is None else minutes
    return Turn(
        user_text=f"question {i}",
        assistant_text=f"answer {i}",
        timestamp=BASE_TIME + timedelta(minutes=offset),
    )


def make_record(user_id: str, n: int) -> ConversationRecord:
    return ConversationRecord(user_id=user_id, turns=tuple(make_turn(i) for i in range(n)), version=n)


class ScriptedBridge(ModelStreamBridge):
    """Yields a fixed list of fragments, then optionally raises."""

    name = "scripted"

    def __init__(self, fragments: Sequence[str] = (), error: Optional[Exception] = None) -> None:
        self.fragments = list(fragments)
        self.error = error
        self.calls: List[tuple] = []

    async def stream(self, system_instruction, history, prompt):
        self.calls.append((system_instruction, list(history), prompt))
        for fragment in self.fragments:
            yield fragment
        if self.error is not None:
            raise self.error


class RecordingSink(TurnSink):
    def __init__(self, broken_after: Optional[int] = None) -> None:
        self.events: List[tuple] = []
        self.broken_after = broken_after

    @property
    def written(self) -> List[str]:
        return [e[1] for e in self.events if e[0] == "write"]

    @property
    def closed(self) -> bool:
        return ("close",) in self.events

    async def write(self, text: str) -> None:
        if self.broken_after is not None and len(self.written) >= self.broken_after:
            raise ConnectionResetError("client went away")
        self.events.append(("write", text))

    async def fail(self, error: BaseException) -> None:
        self.events.append(("fail", error))

    async def close(self) -> None:
        self.events.append(("close",))


class FlakyStore(InMemoryConversationStore):
    """In-memory store whose write paths can be made to fail."""

    def __init__(self, primary_error=None, fallback_error=None) -> None:
        super().__init__()
        self.primary_error = primary_error
        self.fallback_error = fallback_error
        self.primary_calls: List[Turn] = []
        self.fallback_calls: List[Turn] = []

    async def append_turn(self, user_id, turn):
        self.primary_calls.append(turn)
        if self.primary_error is not None:
            raise self.primary_error
        return await super().append_turn(user_id, turn)

    async def upsert_append(self, user_id, turn):
        self.fallback_calls.append(turn)
        if self.fallback_error is not None:
            raise self.fallback_error
        return await super().upsert_append(user_id, turn)


class FakeMongoCollection:
    """Just enough of a motor collection for MongoConversationStore."""

    def __init__(self) -> None:
        self.docs = {}
        self.indexes = []

    async def create_index(self, keys, **kwargs):
        self.indexes.append((keys, kwargs))
        return keys

    async def find_one(self, flt):
        doc = self.docs.get(flt["userId"])
        return copy.deepcopy(doc) if doc is not None else None

    async def insert_one(self, doc):
        if doc["userId"] in self.docs:
            raise DuplicateKeyError("E11000 duplicate key error")
        self.docs[doc["userId"]] = copy.deepcopy(doc)
        return SimpleNamespace(inserted_id=doc["userId"])

    async def replace_one(self, flt, doc):
        current = self.docs.get(flt["userId"])
        if current is None or current.get("version", 0) != flt["version"]:
            return SimpleNamespace(matched_count=0, modified_count=0)
        self.docs[flt["userId"]] = copy.deepcopy(doc)
        return SimpleNamespace(matched_count=1, modified_count=1)

    async def find_one_and_update(self, flt, update, upsert=False, return_document=None):
        user_id = flt["userId"]
        if user_id not in self.docs:
            if not upsert:
                return None
            self.docs[user_id] = {"userId": user_id, "turns": []}
        doc = self.docs[user_id]
        doc["turns"].append(copy.deepcopy(update["$push"]["turns"]))
        doc.update(update["$set"])
        doc["version"] = doc.get("version", 0) + update["$inc"]["version"]
        return copy.deepcopy(doc)


@pytest.fixture
def store():
    return InMemoryConversationStore()
