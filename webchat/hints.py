"""
Session hint engine.

Turns the message stream of the active conversation into a small set of
behavioral hints (frustration, clarification, long question, topics) and
emits changes through a callback with a 2s debounce and a 10s cooldown.

The topic keyword table lives in topics.yaml next to this module.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Protocol, Sequence, Tuple

import yaml

logger = logging.getLogger("webchat")

USER_FRUSTRATED = "user-frustrated"
NEEDS_CLARIFICATION = "needs-clarification"
DETAILED_QUESTION = "detailed-question"
TOPIC_PREFIX = "topic:"

PROFILE_SYNC_PREFIX = "[fc:profile-sync:v1]"
HISTORY_MESSAGE_ID_PREFIX = "hist_"

RAPID_FIRE_THRESHOLD = 3
RAPID_FIRE_WINDOW_SECONDS = 60.0
FOLLOW_UP_WINDOW_SECONDS = 30.0
LONG_INPUT_CHARS = 200
DEBOUNCE_SECONDS = 2.0
COOLDOWN_SECONDS = 10.0

TOPICS_FILE = Path(__file__).parent / "topics.yaml"

_SHORT_KEYWORD_RE = re.compile(r"^[a-z0-9]{1,3}$")

HintCallback = Callable[[List[str]], None]


class TopicTableError(RuntimeError):
    """Raised when the topic keyword table cannot be loaded."""


def load_topic_table(path: Path = TOPICS_FILE) -> Tuple[Tuple[str, Tuple[str, ...]], ...]:
    """Load topics.yaml into an ordered, immutable (topic, keywords) table."""
    if not path.exists():
        raise TopicTableError(f"Topic table not found: {path}")

    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    topics = data.get("topics") if isinstance(data, dict) else None
    if not isinstance(topics, dict):
        raise TopicTableError("Topic table must contain a 'topics' mapping")

    table: List[Tuple[str, Tuple[str, ...]]] = []
    for topic, keywords in topics.items():
        if not isinstance(keywords, list):
            raise TopicTableError(f"Keywords for topic '{topic}' must be a list")
        table.append((str(topic), tuple(str(kw).lower() for kw in keywords if str(kw).strip())))
    return tuple(table)


_TOPIC_TABLE: Optional[Tuple[Tuple[str, Tuple[str, ...]], ...]] = None


def get_topic_table() -> Tuple[Tuple[str, Tuple[str, ...]], ...]:
    global _TOPIC_TABLE
    if _TOPIC_TABLE is None:
        _TOPIC_TABLE = load_topic_table()
    return _TOPIC_TABLE


def contains_keyword(text_lower: str, keyword_lower: str) -> bool:
    if not keyword_lower:
        return False
    if _SHORT_KEYWORD_RE.match(keyword_lower):
        return re.search(rf"\b{re.escape(keyword_lower)}\b", text_lower, re.ASCII) is not None
    return keyword_lower in text_lower


def detect_topics(text: str, table: Optional[Sequence[Tuple[str, Sequence[str]]]] = None) -> List[str]:
    """Return topic:<name> hints for every topic with a matching keyword, in table order."""
    lower = text.lower()
    hints: List[str] = []
    for topic, keywords in table if table is not None else get_topic_table():
        if any(contains_keyword(lower, kw) for kw in keywords):
            hints.append(f"{TOPIC_PREFIX}{topic}")
    return hints


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    """Schedules timers on the running asyncio loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


class EmitState(enum.Enum):
    IDLE = "idle"
    PENDING = "pending"


@dataclass
class SessionKeyState:
    """Per-conversation engine state. Replaced wholesale on session switch."""

    user_timestamps: List[float] = field(default_factory=list)
    last_assistant_at: Optional[float] = None
    last_user_at: Optional[float] = None
    last_user_content: str = ""
    last_processed_id: Optional[str] = None
    last_emitted_key: Optional[Tuple[str, ...]] = None
    last_emit_at: Optional[float] = None
    emit_state: EmitState = EmitState.IDLE
    timer: Optional[TimerHandle] = None
    pending_hints: List[str] = field(default_factory=list)
    pending_key: Optional[Tuple[str, ...]] = None
    pending_callback: Optional[HintCallback] = None


def _message_field(message: Any, name: str) -> Any:
    if isinstance(message, Mapping):
        return message.get(name)
    return getattr(message, name, None)


class SessionHintEngine:
    """
    Derive behavioral hints for one active conversation.

    `clock` returns seconds (monotonic by default) and `scheduler` provides
    `call_later`; both are injectable so the debounce can be driven by hand.
    """

    def __init__(
        self,
        session_key: Optional[str] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Optional[Scheduler] = None,
        topic_table: Optional[Sequence[Tuple[str, Sequence[str]]]] = None,
    ) -> None:
        self._clock = clock
        self._scheduler = scheduler or AsyncioScheduler()
        self._topic_table = topic_table
        self.session_key = session_key
        self.state = SessionKeyState()

    def set_session(self, session_key: Optional[str]) -> None:
        """Switch the active conversation; any change clears all state."""
        if session_key == self.session_key:
            return
        self._cancel_timer()
        self.session_key = session_key
        self.state = SessionKeyState()

    def close(self) -> None:
        self._cancel_timer()
        self.state.pending_callback = None

    def compute_hints(self, now: float) -> List[str]:
        state = self.state
        hints: List[str] = []

        state.user_timestamps = [t for t in state.user_timestamps if now - t < RAPID_FIRE_WINDOW_SECONDS]
        if len(state.user_timestamps) >= RAPID_FIRE_THRESHOLD:
            hints.append(USER_FRUSTRATED)

        if state.last_user_at is not None and state.last_assistant_at is not None:
            gap = state.last_user_at - state.last_assistant_at
            if 0 < gap < FOLLOW_UP_WINDOW_SECONDS:
                hints.append(NEEDS_CLARIFICATION)

        text = state.last_user_content
        if text and len(text) > LONG_INPUT_CHARS:
            hints.append(DETAILED_QUESTION)

        if text:
            for topic_hint in detect_topics(text, self._topic_table):
                if topic_hint not in hints:
                    hints.append(topic_hint)

        return hints

    def process_message(self, messages: Sequence[Any], on_hints_changed: HintCallback) -> None:
        if not messages:
            return
        last = messages[-1]
        message_id = _message_field(last, "id")
        if not message_id:
            return

        state = self.state
        if message_id == state.last_processed_id:
            return
        state.last_processed_id = message_id

        if str(message_id).startswith(HISTORY_MESSAGE_ID_PREFIX):
            return

        now = self._clock()
        if _message_field(last, "role") == "assistant":
            state.last_assistant_at = now
        else:
            content = _message_field(last, "content") or ""
            trimmed = content.strip()
            if not trimmed or trimmed.startswith(PROFILE_SYNC_PREFIX):
                return
            state.last_user_at = now
            state.last_user_content = content
            state.user_timestamps = [t for t in state.user_timestamps if now - t < RAPID_FIRE_WINDOW_SECONDS]
            state.user_timestamps.append(now)

        hints = self.compute_hints(now)
        key = tuple(sorted(hints))
        if key == state.last_emitted_key:
            return

        state.pending_hints = hints
        state.pending_key = key
        state.pending_callback = on_hints_changed
        self._cancel_timer()
        state.timer = self._scheduler.call_later(DEBOUNCE_SECONDS, self._fire)
        state.emit_state = EmitState.PENDING

    def _fire(self) -> None:
        state = self.state
        state.timer = None
        state.emit_state = EmitState.IDLE

        emit_at = self._clock()
        if state.last_emit_at is not None and emit_at - state.last_emit_at < COOLDOWN_SECONDS:
            logger.debug("hints dropped during cooldown session=%s hints=%s", self.session_key, state.pending_hints)
            return

        state.last_emitted_key = state.pending_key
        state.last_emit_at = emit_at
        callback = state.pending_callback
        state.pending_callback = None
        if callback is not None:
            callback(list(state.pending_hints))

    def _cancel_timer(self) -> None:
        if self.state.timer is not None:
            self.state.timer.cancel()
            self.state.timer = None
        self.state.emit_state = EmitState.IDLE
