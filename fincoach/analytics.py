"""Fire-and-forget analytics events.

Sinks never raise into the pipeline: `emit_event` logs and swallows sink failures,
and the HTTP sink posts from its own worker thread.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Literal, Protocol

import requests
from pydantic import BaseModel, ConfigDict, Field
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import ANALYTICS_ENABLED, ANALYTICS_ENDPOINT, ANALYTICS_TIMEOUT

logger = logging.getLogger(__name__)

EventName = Literal["route_decision", "fallback_used", "cost_summary", "user_outcome"]


class AnalyticsEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_id: str = Field(default_factory=lambda: f"evt_{uuid.uuid4().hex[:12]}")
    name: EventName
    trace_id: str = ""
    conversation_id: str = ""
    timestamp_ms: int = Field(default_factory=lambda: int(time.time() * 1000))
    properties: Dict[str, Any] = Field(default_factory=dict)


class AnalyticsSink(Protocol):
    def send(self, event: AnalyticsEvent) -> None: ...


class LoggingAnalyticsSink:
    def send(self, event: AnalyticsEvent) -> None:
        logger.info(
            "analytics_event name=%s trace_id=%s conversation_id=%s properties=%s",
            event.name,
            event.trace_id,
            event.conversation_id,
            event.properties,
        )


class HttpAnalyticsSink:
    def __init__(self, endpoint: str, *, timeout: float = ANALYTICS_TIMEOUT, max_workers: int = 1) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="analytics")

    @retry(
        retry=retry_if_exception_type((requests.exceptions.ConnectionError, requests.exceptions.Timeout)),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        reraise=True,
    )
    def _post(self, payload: Dict[str, Any]) -> None:
        response = requests.post(self.endpoint, json=payload, timeout=self.timeout)
        response.raise_for_status()

    def _deliver(self, event: AnalyticsEvent) -> None:
        try:
            self._post(event.model_dump(mode="json"))
        except Exception as exc:  # noqa: BLE001
            logger.warning("analytics_post_failed name=%s endpoint=%s error=%s", event.name, self.endpoint, exc)

    def send(self, event: AnalyticsEvent) -> None:
        self._executor.submit(self._deliver, event)

    def close(self) -> None:
        self._executor.shutdown(wait=True)


_LOCK = threading.Lock()
_DEFAULT_SINK: AnalyticsSink | None = None


def default_sink() -> AnalyticsSink:
    global _DEFAULT_SINK
    with _LOCK:
        if _DEFAULT_SINK is None:
            _DEFAULT_SINK = HttpAnalyticsSink(ANALYTICS_ENDPOINT) if ANALYTICS_ENDPOINT else LoggingAnalyticsSink()
        return _DEFAULT_SINK


def emit_event(
    sink: AnalyticsSink | None,
    name: EventName,
    *,
    trace_id: str = "",
    conversation_id: str = "",
    **properties: Any,
) -> AnalyticsEvent | None:
    if not ANALYTICS_ENABLED or sink is None:
        return None
    event = AnalyticsEvent(name=name, trace_id=trace_id, conversation_id=conversation_id, properties=properties)
    try:
        sink.send(event)
    except Exception as exc:  # noqa: BLE001
        logger.warning("analytics_emit_failed name=%s error=%s", name, exc)
    return event
