from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterator

from pydantic import ValidationError

from ..config import NARRATION_PROMPT_VERSION
from ..errors import ModelCallFailure
from ..grounding.contracts import GroundedFacts
from .contracts import NarrationPlanV1
from .models import ModelClient
from .renderer import describe_fact
from .schemas import validate_narration_plan_payload
from .tiers import max_tokens_for

logger = logging.getLogger(__name__)


def _build_prompt(*, question: str, grounded: GroundedFacts, corrective_feedback: str = "") -> str:
    facts_json = json.dumps(
        [
            {
                "fact_id": fact.fact_id,
                "kind": fact.kind,
                "summary": describe_fact(fact),
                "data": fact.model_dump(mode="json", exclude={"fact_id", "kind"}),
            }
            for fact in grounded.facts
        ],
        ensure_ascii=True,
    )
    correction = f"\nPrevious attempt issues: {corrective_feedback}" if corrective_feedback else ""
    return (
        "You are a friendly personal-finance assistant explaining a user's own numbers.\n"
        "Return ONLY one valid JSON object. No markdown.\n"
        "The object must follow schema narration_plan_v1 with no extra properties.\n"
        "schema_version must be 'narration_plan_v1'.\n"
        "summary_lines must contain 1 to 4 short, plain sentences.\n"
        "Use only the facts provided. Do not invent numbers, accounts, budgets or goals.\n"
        "Write money amounts exactly as they appear in the facts, with a $ sign.\n"
        "used_fact_ids must list every fact_id you relied on.\n"
        "Do not recommend buying or selling specific securities and never promise returns.\n"
        "If the facts do not answer the question, say what is missing instead of guessing.\n"
        "JSON example:\n"
        "{\"schema_version\":\"narration_plan_v1\","
        "\"summary_lines\":[\"You have $200 left in your Groceries budget, with 50% used so far.\"],"
        "\"used_fact_ids\":[\"budget.b1\"]}\n"
        f"{correction}\n"
        f"Question: {question}\n"
        f"Period: {grounded.period}\n"
        f"Facts: {facts_json}\n"
    )


_QUOTE_TABLE = str.maketrans({0x201C: '"', 0x201D: '"', 0x2018: "'", 0x2019: "'", 0xFEFF: None})
_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", flags=re.DOTALL | re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_LABEL_PREFIX = re.compile(r"^json\s*[:\-]?\s*", flags=re.IGNORECASE)


def _json_candidates(raw_text: str) -> Iterator[str]:
    text = _LABEL_PREFIX.sub("", str(raw_text or "").translate(_QUOTE_TABLE).strip())
    if not text:
        return
    yield text
    for block in _FENCE_PATTERN.findall(text):
        yield block.strip()
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        yield text[start : end + 1]


def _extract_json_object(raw_text: str) -> Dict[str, Any] | None:
    """First JSON object found in model output, tolerating fences and trailing commas."""
    for candidate in _json_candidates(raw_text):
        for variant in (candidate, _TRAILING_COMMA.sub(r"\1", candidate)):
            try:
                parsed = json.loads(variant)
            except json.JSONDecodeError:
                continue
            if isinstance(parsed, dict):
                return parsed
    return None


def narrate(
    question: str,
    grounded: GroundedFacts,
    *,
    client: ModelClient,
    tier: str,
    corrective_feedback: str = "",
) -> tuple[NarrationPlanV1 | None, list[str], Dict[str, Any]]:
    """Ask `tier` to narrate the grounded facts.

    Returns (plan, errors, meta). Model failures come back as errors, never raised.
    """
    meta: Dict[str, Any] = {
        "tier": tier,
        "prompt_version": NARRATION_PROMPT_VERSION,
        "model_id": "",
        "input_tokens": 0,
        "output_tokens": 0,
        "latency_ms": 0,
    }
    prompt = _build_prompt(question=question, grounded=grounded, corrective_feedback=corrective_feedback)
    try:
        completion = client.complete(prompt, tier=tier, max_tokens=max_tokens_for(tier))
    except ModelCallFailure as exc:
        return None, [f"model_call_failed:{exc.reason}"], meta
    except Exception as exc:  # noqa: BLE001
        logger.warning("narration_invoke_failed tier=%s error=%s", tier, exc)
        return None, ["model_call_failed:unexpected"], meta

    meta.update(
        {
            "model_id": completion.model_id,
            "input_tokens": completion.input_tokens,
            "output_tokens": completion.output_tokens,
            "latency_ms": completion.latency_ms,
        }
    )
    payload = _extract_json_object(completion.text)
    if payload is None:
        return None, ["invalid_json"], meta

    errors = validate_narration_plan_payload(payload)
    if errors:
        return None, errors, meta
    try:
        plan = NarrationPlanV1.model_validate(payload)
    except ValidationError as exc:
        return None, [f"pydantic: {item['msg']}" for item in exc.errors()], meta

    known = set(grounded.fact_ids)
    unknown = [fact_id for fact_id in plan.used_fact_ids if fact_id not in known]
    if unknown:
        return None, [f"unknown_fact_ids: {', '.join(unknown)}"], meta
    return plan, [], meta
