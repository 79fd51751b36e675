from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from difflib import SequenceMatcher
from pathlib import Path
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field

from ..config import KB_MIN_SCORE, KB_PATH, KB_SEARCH_CACHE_TTL_SECONDS, KB_TOP_K
from ..contracts import ResponseAction
from ..errors import KnowledgeBaseError
from ..normalize import content_tokens, stem, tokenize
from ..cache import TimedLRUCache
from .schemas import validate_knowledge_base_payload

logger = logging.getLogger(__name__)

DEFAULT_KB_PATH = Path(__file__).with_name("knowledge_base.json")

KEYWORD_HIT_WEIGHT = 0.4
KEYWORD_HIT_CAP = 0.6
FUZZY_MIN_RATIO = 0.8
FUZZY_WEIGHT = 0.2
OVERLAP_WEIGHT = 0.5
CATEGORY_BOOST = 0.1
SHORT_QUERY_PENALTY = 0.15

_LOCK = threading.Lock()
_DEFAULT_KB: "KnowledgeBase | None" = None


class KnowledgeItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    question: str
    answer: str
    category: str
    keywords: list[str] = Field(min_length=1)
    actions: list[ResponseAction] = Field(default_factory=list)


@dataclass(frozen=True)
class KnowledgeMatch:
    item: KnowledgeItem
    score: float


def _phrase(text: str) -> str:
    return " ".join(tokenize(text))


def _fuzzy_ratio(keyword: str, words: list[str]) -> float:
    """Best similarity between the keyword and any same-length window of the query."""
    size = max(1, len(keyword.split()))
    best = 0.0
    for start in range(max(1, len(words) - size + 1)):
        window = " ".join(words[start:start + size])
        if not window:
            continue
        best = max(best, SequenceMatcher(None, keyword, window).ratio())
    return best


def score_item(item: KnowledgeItem, question: str, *, focus: str | None = None) -> float:
    words = tokenize(question)
    phrase = f" {' '.join(words)} "
    asked = content_tokens(question)
    keywords = [_phrase(keyword) for keyword in item.keywords]

    hits = sum(1 for keyword in keywords if keyword and f" {keyword} " in phrase)
    score = min(KEYWORD_HIT_CAP, hits * KEYWORD_HIT_WEIGHT)

    if hits == 0:
        ratio = max((_fuzzy_ratio(keyword, words) for keyword in keywords if keyword), default=0.0)
        if ratio >= FUZZY_MIN_RATIO:
            score += FUZZY_WEIGHT * ratio

    item_tokens = content_tokens(item.question)
    if item_tokens:
        score += OVERLAP_WEIGHT * len(asked & item_tokens) / len(item_tokens)

    if stem(item.category) in asked or (focus and focus == item.category):
        score += CATEGORY_BOOST
    if len(asked) < 2:
        score -= SHORT_QUERY_PENALTY
    return round(max(0.0, min(1.0, score)), 4)


class KnowledgeBase:
    def __init__(self, items: list[KnowledgeItem], *, version: str = "", search_ttl_seconds: float = KB_SEARCH_CACHE_TTL_SECONDS) -> None:
        self.items = list(items)
        self.version = version
        self._search_cache = TimedLRUCache(max_entries=256, ttl_seconds=search_ttl_seconds)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], *, source: str = "") -> "KnowledgeBase":
        errors = validate_knowledge_base_payload(payload)
        if errors:
            raise KnowledgeBaseError(errors, source=source)
        items: list[KnowledgeItem] = []
        seen: set[str] = set()
        for index, raw in enumerate(payload["items"]):
            item = KnowledgeItem.model_validate(raw)
            if item.id in seen:
                errors.append(f"items.{index}.id: duplicate id {item.id}")
                continue
            seen.add(item.id)
            items.append(item)
        if errors:
            raise KnowledgeBaseError(errors, source=source)
        return cls(items, version=str(payload["version"]))

    @classmethod
    def load(cls, path: str | Path | None = None) -> "KnowledgeBase":
        location = Path(path or KB_PATH or DEFAULT_KB_PATH)
        try:
            payload = json.loads(location.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise KnowledgeBaseError([str(exc)], source=str(location)) from exc
        kb = cls.from_payload(payload, source=str(location))
        logger.info("knowledge_base_loaded path=%s version=%s items=%s", location, kb.version, len(kb.items))
        return kb

    def search(
        self,
        question: str,
        *,
        top_k: int = KB_TOP_K,
        min_score: float = KB_MIN_SCORE,
        focus: str | None = None,
    ) -> list[KnowledgeMatch]:
        key = (_phrase(question), top_k, min_score, focus)
        cached = self._search_cache.get(key)
        if cached is not None:
            return list(cached)

        matches = [KnowledgeMatch(item=item, score=score_item(item, question, focus=focus)) for item in self.items]
        selected = [match for match in matches if match.score >= min_score]
        selected.sort(key=lambda match: (-match.score, match.item.id))
        selected = selected[: max(1, int(top_k))]
        self._search_cache.set(key, tuple(selected))
        return selected


def default_knowledge_base() -> KnowledgeBase:
    global _DEFAULT_KB
    with _LOCK:
        if _DEFAULT_KB is None:
            _DEFAULT_KB = KnowledgeBase.load()
        return _DEFAULT_KB
