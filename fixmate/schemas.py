from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    prompt: str = Field(..., min_length=1)


class ChatError(BaseModel):
    error: str
    details: str


class TurnOut(BaseModel):
    userText: str
    assistantText: str
    timestamp: datetime


class HistoryResponse(BaseModel):
    userId: str
    turns: List[TurnOut]
    updatedAt: Optional[datetime] = None


class HealthResponse(BaseModel):
    ok: bool
    backend: str
    demo: bool
    local_only: bool
    has_gemini_key: bool
    store: str
