"""
Data models for the webchat service.

Defines Message, SubscriptionKeys, PushSubscription, InsightInput and SignalInput.
Do not duplicate these definitions elsewhere.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Message(BaseModel):
    """A chat message as seen by the hint engine."""

    id: str
    role: str  # "user" | "assistant"
    content: str = ""


class SubscriptionKeys(BaseModel):
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)


class PushSubscription(BaseModel):
    """Browser PushSubscription JSON."""

    endpoint: str = Field(min_length=1)
    keys: SubscriptionKeys


class InsightInput(BaseModel):
    """One learned insight about a user, posted by the agent."""

    dimension: str
    insight: str
    confidence: float = Field(ge=0, le=1)
    evidence: Optional[List[Any]] = Field(default_factory=list)


class SignalInput(BaseModel):
    signal_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    session_key_hash: Optional[str] = None
    created_at: Optional[str] = None
