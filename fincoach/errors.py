from __future__ import annotations

from typing import Any

# Reason codes recorded on the pipeline trace. These are outcomes, not exceptions.
REASON_GROUNDING_MISS = "grounding_miss"
REASON_CRITIC_REJECTED = "critic_rejected"
REASON_LOW_USEFULNESS = "low_usefulness"
REASON_OFF_TOPIC = "off_topic"
REASON_REPEAT_SUPPRESSED = "repeat_suppressed"
REASON_MODEL_CALL_FAILED = "model_call_failed"
REASON_FACTPACK_INVALID = "factpack_validation_failed"
REASON_ANSWERABILITY_DEGRADED = "answerability_degraded"
REASON_TOPIC_OVERRIDE = "topic_override"
REASON_ESCALATED = "escalated_to_pro"
REASON_PIPELINE_ERROR = "pipeline_error"


class FincoachError(Exception):
    """Base class for engine errors."""


class FactPackValidationError(FincoachError):
    def __init__(self, mismatches: list[Any]) -> None:
        self.mismatches = list(mismatches)
        fields = ", ".join(str(getattr(item, "path", item)) for item in self.mismatches[:5])
        super().__init__(f"fact pack validation failed ({len(self.mismatches)} mismatch(es)): {fields}")


class ModelCallFailure(FincoachError):
    def __init__(self, reason: str, *, tier: str = "", detail: str = "") -> None:
        self.reason = reason
        self.tier = tier
        self.detail = detail
        message = f"model call failed: {reason}"
        if tier:
            message = f"{message} tier={tier}"
        if detail:
            message = f"{message} detail={detail}"
        super().__init__(message)


class RuleTableError(FincoachError):
    def __init__(self, errors: list[str], *, source: str = "") -> None:
        self.errors = list(errors)
        self.source = source
        super().__init__(f"invalid rule table {source or '<inline>'}: {'; '.join(self.errors[:5])}")


class KnowledgeBaseError(FincoachError):
    def __init__(self, errors: list[str], *, source: str = "") -> None:
        self.errors = list(errors)
        self.source = source
        super().__init__(f"invalid knowledge base {source or '<inline>'}: {'; '.join(self.errors[:5])}")
