"""One streamed chat turn, from prompt to persisted history.

Flow:
1. Load the user's conversation record (absent for first-time users)
2. Window it down to the most recent turns
3. Open the model stream
4. Relay each fragment to the sink in arrival order, accumulating the reply
5. Persist the turn (optimistic save, then atomic push as fallback)
6. Close the sink

Delivery to the client and durability are independent: a turn that cannot
be saved is logged and dropped from history, the user still has the reply.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List

from .history import MAX_HISTORY_TURNS, window
from .llm import ModelStreamBridge
from .prompts import SYSTEM_INSTRUCTION
from .store import ConversationStore, Turn, utcnow
from .transport import TurnSink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TurnOutcome:
    reply: str
    streamed: bool
    failed: bool
    persisted: bool


class ChatTurnPipeline:
    def __init__(
        self,
        store: ConversationStore,
        bridge: ModelStreamBridge,
        system_instruction: str = SYSTEM_INSTRUCTION,
        max_turns: int = MAX_HISTORY_TURNS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.bridge = bridge
        self.system_instruction = system_instruction
        self.max_turns = max(1, min(max_turns, MAX_HISTORY_TURNS))
        self.clock = clock

    async def handle_turn(self, user_id: str, prompt: str, sink: TurnSink) -> TurnOutcome:
        parts: List[str] = []
        emitted = False
        failed = False
        sink_ok = True

        try:
            record = await self.store.load(user_id)
            if record is None:
                logger.info("No previous chat history for user %s, starting fresh", user_id)
            history = window(record, self.max_turns)

            async for fragment in self.bridge.stream(self.system_instruction, history, prompt):
                emitted = True
                parts.append(fragment)
                if sink_ok:
                    sink_ok = await self._write(sink, fragment, user_id)
        except Exception as e:
            if not emitted:
                logger.error("Chat request failed for user %s: %s", user_id, e)
                await sink.fail(e)
                await sink.close()
                return TurnOutcome(reply="", streamed=False, failed=True, persisted=False)

            logger.warning(
                "Model stream for user %s broke after %d fragments: %s", user_id, len(parts), e
            )
            failed = True
            await self._fail(sink, e, user_id)

        reply = "".join(parts)
        persisted = await self.commit(user_id, Turn(prompt, reply, self.clock()))
        await sink.close()
        return TurnOutcome(reply=reply, streamed=emitted, failed=failed, persisted=persisted)

    async def commit(self, user_id: str, turn: Turn) -> bool:
        """Save ``turn``; True if it reached the store by either path."""
        try:
            await self.store.append_turn(user_id, turn)
            return True
        except Exception as e:
            logger.error("Error saving chat turn for user %s: %s", user_id, e)

        try:
            await self.store.upsert_append(user_id, turn)
            logger.info("Chat turn for user %s saved via atomic append", user_id)
            return True
        except Exception as e:
            logger.warning("Alternative save also failed for user %s: %s", user_id, e)
            return False

    async def _write(self, sink: TurnSink, fragment: str, user_id: str) -> bool:
        try:
            await sink.write(fragment)
            return True
        except Exception as e:
            logger.debug("Dropping output for user %s, sink write failed: %s", user_id, e)
            return False

    async def _fail(self, sink: TurnSink, error: Exception, user_id: str) -> None:
        try:
            await sink.fail(error)
        except Exception as e:
            logger.debug("Could not append error marker for user %s: %s", user_id, e)
