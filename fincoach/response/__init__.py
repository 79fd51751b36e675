from .contracts import CriticVerdict, NarrationPlanV1
from .critic import review
from .models import BedrockModelClient, ModelClient, ModelCompletion
from .narration import narrate
from .renderer import (
    compose_actionable_ask,
    compose_from_facts,
    compose_narrated,
    describe_fact,
    helpful_fallback,
)
from .tiers import escalation_allowed, pick_model_tier

__all__ = [
    "BedrockModelClient",
    "CriticVerdict",
    "ModelClient",
    "ModelCompletion",
    "NarrationPlanV1",
    "compose_actionable_ask",
    "compose_from_facts",
    "compose_narrated",
    "describe_fact",
    "escalation_allowed",
    "helpful_fallback",
    "narrate",
    "pick_model_tier",
    "review",
]
