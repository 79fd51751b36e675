from __future__ import annotations

import re
from typing import Any, Iterable

from ..grounding.contracts import GroundedFacts
from .contracts import CriticVerdict

MIN_RESPONSE_LENGTH = 50
NUMBER_TOLERANCE = 0.01

FORBIDDEN_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("guaranteed_return", re.compile(r"\bguarantee[ds]?\b.{0,40}\b(returns?|profits?|gains?|income|yield)\b", re.IGNORECASE)),
    ("guaranteed_return", re.compile(r"\b(surefire|sure[-\s]fire|can(?:no|')t lose|no way to lose)\b", re.IGNORECASE)),
    ("risk_free_claim", re.compile(r"\brisk[-\s]?free\b", re.IGNORECASE)),
    ("certainty_claim", re.compile(r"\b100\s?%\s+(success|safe|certain|guaranteed)\b", re.IGNORECASE)),
    (
        "investment_directive",
        re.compile(
            r"\b(buy|sell|short)\s+(some\s+|more\s+)?(shares?|stocks?|crypto|bitcoin|options?|etfs?|bonds?)\b",
            re.IGNORECASE,
        ),
    ),
    (
        "investment_directive",
        re.compile(r"\byou\s+(should|must|need to)\s+(invest|put)\b.{0,30}\b(money|savings|stocks?|crypto)\b", re.IGNORECASE),
    ),
    ("leverage_directive", re.compile(r"\bborrow\w*\b.{0,40}\binvest", re.IGNORECASE)),
    ("medical_claim", re.compile(r"\b(diagnos\w+|prescri\w+|medical advice|cure[sd]?)\b", re.IGNORECASE)),
    ("legal_claim", re.compile(r"\b(legal advice|you will not be sued|tax evasion|avoid taxes illegally)\b", re.IGNORECASE)),
]
_PERSONALIZED_CLAIM_PATTERN = re.compile(
    r"\b(based on your (data|spending|budgets?|transactions|accounts?)|your (budget|account|spending|data) shows)\b",
    re.IGNORECASE,
)
_NUMERIC_TOKEN_PATTERN = re.compile(r"[-+]?\d[\d,\.]*%?")


def _extract_numeric_tokens(text: str) -> set[str]:
    tokens: set[str] = set()
    for raw in _NUMERIC_TOKEN_PATTERN.findall(str(text or "")):
        token = raw.strip().strip(".,;:()[]{}")
        if token:
            tokens.add(token)
    return tokens


def _parse_numeric_token(token: str) -> float | None:
    normalized = str(token or "").strip().rstrip("%").replace(",", "")
    if not normalized:
        return None
    try:
        return float(normalized)
    except ValueError:
        return None


def _is_soft_token(value: float) -> bool:
    # Small counts (days, months, list positions) and calendar years are not fact claims.
    return abs(value) <= 31 or (1900 <= value <= 2100 and float(value).is_integer())


def _flatten_numbers(value: Any) -> Iterable[float]:
    if isinstance(value, bool):
        return
    if isinstance(value, (int, float)):
        yield float(value)
    elif isinstance(value, dict):
        for item in value.values():
            yield from _flatten_numbers(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _flatten_numbers(item)
    elif isinstance(value, str):
        for token in _extract_numeric_tokens(value):
            parsed = _parse_numeric_token(token)
            if parsed is not None:
                yield parsed


def grounded_numbers(grounded: GroundedFacts) -> set[float]:
    numbers: set[float] = set()
    for fact in grounded.facts:
        for value in _flatten_numbers(fact.model_dump(mode="json", exclude={"fact_id"})):
            numbers.add(round(value, 2))
            numbers.add(round(abs(value), 2))
            numbers.add(float(round(value)))
    return numbers


def ungrounded_numbers(text: str, grounded: GroundedFacts) -> list[str]:
    allowed = grounded_numbers(grounded)
    missing: list[str] = []
    for token in sorted(_extract_numeric_tokens(text)):
        value = _parse_numeric_token(token)
        if value is None or _is_soft_token(value):
            continue
        if any(abs(value - candidate) <= NUMBER_TOLERANCE for candidate in allowed):
            continue
        missing.append(token)
    return missing


def _clean(text: str) -> str:
    lines = [line.rstrip() for line in str(text or "").strip().splitlines()]
    cleaned = "\n".join(lines)
    return re.sub(r"\n{3,}", "\n\n", cleaned)


def forbidden_issues(text: str) -> list[str]:
    issues: list[str] = []
    for code, pattern in FORBIDDEN_PATTERNS:
        if pattern.search(text) and f"forbidden:{code}" not in issues:
            issues.append(f"forbidden:{code}")
    return issues


def review(text: str, grounded: GroundedFacts | None = None, *, min_length: int = MIN_RESPONSE_LENGTH) -> CriticVerdict:
    cleaned = _clean(text)
    issues = forbidden_issues(cleaned)

    if _PERSONALIZED_CLAIM_PATTERN.search(cleaned) and (grounded is None or not grounded.facts):
        issues.append("personalized_claim_without_facts")
    if grounded is not None:
        issues.extend(f"ungrounded_number:{token}" for token in ungrounded_numbers(cleaned, grounded))
    if len(cleaned) < min_length:
        issues.append("too_short")
    return CriticVerdict(ok=not issues, text=cleaned, issues=issues)
