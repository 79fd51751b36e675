from __future__ import annotations

import re
import unicodedata
from typing import Any

_TOKEN_PATTERN = re.compile(r"[a-z0-9]+(?:\.[0-9]+)?")
_MONEY_PATTERN = re.compile(
    r"\$\s*([0-9][0-9,]*(?:\.[0-9]+)?)(?:\s*([kK])\b)?"
    r"|\b([0-9][0-9,]*(?:\.[0-9]+)?)(?:\s*([kK]))?\s*(?:dollars|bucks|usd)\b"
)

STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "been", "but", "by", "can", "could", "did", "do",
        "does", "for", "from", "get", "had", "has", "have", "how", "i", "if", "im", "in", "into", "is",
        "it", "its", "me", "much", "my", "of", "on", "or", "our", "please", "s", "should", "so", "some",
        "tell", "than", "that", "the", "their", "them", "then", "there", "these", "this", "to", "up",
        "us", "was", "we", "were", "what", "whats", "when", "where", "which", "who", "why", "will",
        "with", "would", "you", "your", "yours", "am", "any", "about", "just", "want", "need", "know",
        "show", "give", "let", "like", "all", "also", "doing", "go", "going", "many", "right", "now",
        "hows", "dont", "doesnt", "cant", "really", "okay", "ok", "yes", "no", "thanks",
    }
)


def safe_float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        return default
    text = text.replace(",", "").replace("$", "")
    try:
        return float(text)
    except ValueError:
        return default


def fmt_money(value: Any) -> str:
    numeric = round(safe_float(value), 2)
    sign = "-" if numeric < 0 else ""
    numeric = abs(numeric)
    if abs(numeric - round(numeric)) < 0.01:
        return f"{sign}${int(round(numeric)):,}"
    return f"{sign}${numeric:,.2f}"


def normalize_text(text: str) -> str:
    stripped = "".join(
        ch for ch in unicodedata.normalize("NFD", str(text or "")) if unicodedata.category(ch) != "Mn"
    )
    stripped = stripped.replace("\u2019", "'").replace("\u2018", "'")
    return re.sub(r"\s+", " ", stripped.lower()).strip()


def tokenize(text: str) -> list[str]:
    normalized = normalize_text(text).replace("'", "")
    return _TOKEN_PATTERN.findall(normalized)


def stem(token: str) -> str:
    if len(token) > 5 and token.endswith("ing"):
        return token[:-3]
    if len(token) > 4 and token.endswith("ies"):
        return token[:-3] + "y"
    if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


def content_tokens(text: str) -> set[str]:
    """Non-trivial stemmed tokens: stopwords and one/two letter words dropped."""
    return {stem(token) for token in tokenize(text) if token not in STOPWORDS and len(token) > 2}


def parse_money_amounts(text: str) -> list[float]:
    amounts: list[float] = []
    for match in _MONEY_PATTERN.finditer(str(text or "")):
        raw = match.group(1) or match.group(3)
        suffix = match.group(2) or match.group(4)
        value = safe_float(raw, default=-1.0)
        if value < 0:
            continue
        if suffix:
            value *= 1000
        amounts.append(value)
    return amounts
