from __future__ import annotations

from typing import List, Optional, Tuple

from .store import ConversationRecord

MAX_HISTORY_TURNS = 20

USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"


def window(
    record: Optional[ConversationRecord], max_turns: int = MAX_HISTORY_TURNS
) -> List[Tuple[str, str]]:
    """Bounded model context for ``record``: the newest ``max_turns`` turns,
    oldest first, each expanded to a user entry followed by an assistant entry.

    Stored order is not trusted (concurrent writers can interleave), so turns
    are re-sorted by timestamp; ``sorted`` is stable, ties keep storage order.
    """
    if record is None or max_turns <= 0:
        return []

    recent = sorted(record.turns, key=lambda t: t.timestamp)[-max_turns:]

    history: List[Tuple[str, str]] = []
    for turn in recent:
        history.append((USER_ROLE, turn.user_text))
        history.append((ASSISTANT_ROLE, turn.assistant_text))
    return history
