from __future__ import annotations

import logging
import re
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Literal

from .cache import TimedLRUCache
from .config import (
    FOCUS_TTL_SECONDS,
    PENDING_ACTION_TTL_SECONDS,
    ROUTER_HISTORY_SIZE,
    SESSION_IDLE_TTL_SECONDS,
    SESSION_STORE_MAX_ENTRIES,
)
from .contracts import ActionId
from .normalize import normalize_text

logger = logging.getLogger(__name__)

Confirmation = Literal["affirm", "decline"]

_AFFIRMATIVE_PATTERN = re.compile(r"\b(yes|yeah|yep|sure|ok(?:ay)?|please|do it|go ahead|sounds good)\b")
_NEGATIVE_PATTERN = re.compile(r"\b(no|nope|nah|not now|do not|cancel|never ?mind|don'?t)\b")
# Phrases that read as agreement even though they contain a negative word.
_AFFIRMING_IDIOMS = re.compile(r"\b(no problem|no worries|why not)\b")
_CONFIRMATION_MAX_WORDS = 8


@dataclass(frozen=True)
class RouteSample:
    timestamp_ms: int
    calibrated: float


@dataclass(frozen=True)
class PendingAction:
    action_id: str
    action: ActionId
    label: str
    params: Dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0

    def expired(self, now: float, ttl_seconds: float = PENDING_ACTION_TTL_SECONDS) -> bool:
        return now - self.created_at > ttl_seconds


@dataclass
class ConversationSession:
    """Per-conversation state. The caller owns one instance per active conversation."""

    conversation_id: str = field(default_factory=lambda: f"conv_{uuid.uuid4().hex[:8]}")
    current_focus: str | None = None
    focus_set_at: float | None = None
    focus_expiry: float | None = None
    pending_action: PendingAction | None = None
    route_history: deque[RouteSample] = field(default_factory=lambda: deque(maxlen=ROUTER_HISTORY_SIZE))
    last_route_at_ms: int | None = None
    last_route_intent: str | None = None
    last_fast_lane_key: str | None = None
    last_fast_lane_at: float | None = None

    def record_route(self, intent: str, calibrated: float, timestamp_ms: int) -> None:
        self.route_history.append(RouteSample(timestamp_ms=timestamp_ms, calibrated=calibrated))
        self.last_route_at_ms = timestamp_ms
        self.last_route_intent = intent

    def set_focus(self, topic: str, now: float, ttl_seconds: float = FOCUS_TTL_SECONDS) -> None:
        self.current_focus = topic
        self.focus_set_at = now
        self.focus_expiry = now + ttl_seconds

    def active_focus(self, now: float) -> str | None:
        if self.current_focus and self.focus_expiry is not None and now <= self.focus_expiry:
            return self.current_focus
        return None

    def register_pending_action(self, action: PendingAction) -> None:
        self.pending_action = action

    def clear_pending_action(self) -> None:
        self.pending_action = None

    def mark_fast_lane(self, pattern_key: str, now: float) -> None:
        self.last_fast_lane_key = pattern_key
        self.last_fast_lane_at = now

    def repeated_fast_lane(self, pattern_key: str, now: float, window_seconds: float) -> bool:
        if not pattern_key or self.last_fast_lane_key != pattern_key or self.last_fast_lane_at is None:
            return False
        return now - self.last_fast_lane_at <= window_seconds


def detect_confirmation(utterance: str) -> Confirmation | None:
    """Classify a short reply to a pending action. Any negation outweighs agreement."""
    text = normalize_text(utterance)
    if not text or len(text.split()) > _CONFIRMATION_MAX_WORDS:
        return None
    idiom = _AFFIRMING_IDIOMS.search(text)
    remainder = _AFFIRMING_IDIOMS.sub(" ", text)
    if _NEGATIVE_PATTERN.search(remainder):
        return "decline"
    if idiom or _AFFIRMATIVE_PATTERN.search(remainder):
        return "affirm"
    return None


class SessionStore:
    """In-process map of conversation id to session, for hosts without their own store.

    Sessions idle longer than `idle_ttl_seconds` expire, and the least recently used
    session is evicted once `max_entries` is reached.
    """

    def __init__(
        self,
        max_entries: int = SESSION_STORE_MAX_ENTRIES,
        idle_ttl_seconds: float = SESSION_IDLE_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sessions = TimedLRUCache(max_entries, idle_ttl_seconds, clock=clock)
        self._lock = threading.Lock()

    def get_or_create(self, conversation_id: str | None = None) -> ConversationSession:
        with self._lock:
            session = self._sessions.get(conversation_id) if conversation_id else None
            if session is None:
                session = ConversationSession(conversation_id=conversation_id) if conversation_id else ConversationSession()
                logger.info("session_created conversation_id=%s", session.conversation_id)
            # re-set on every access so the TTL measures idle time
            self._sessions.set(session.conversation_id, session)
            return session

    def discard(self, conversation_id: str) -> None:
        with self._lock:
            self._sessions.pop(conversation_id)

    def __len__(self) -> int:
        return len(self._sessions)
