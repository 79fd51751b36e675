from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import (
    AWS_REGION,
    BEDROCK_CONNECT_TIMEOUT,
    BEDROCK_READ_TIMEOUT,
    MODEL_ID_MINI,
    MODEL_ID_PRO,
    MODEL_ID_STD,
    MODEL_MAX_ATTEMPTS,
)
from ..errors import ModelCallFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelCompletion:
    text: str
    tier: str
    model_id: str
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0


class ModelClient(Protocol):
    def complete(self, prompt: str, *, tier: str, max_tokens: int) -> ModelCompletion: ...


def _converse_text(payload: Dict[str, Any]) -> str:
    blocks = ((payload.get("output") or {}).get("message") or {}).get("content") or []
    if not isinstance(blocks, list):
        return ""
    return "\n".join(block["text"] for block in blocks if isinstance(block, dict) and isinstance(block.get("text"), str)).strip()


class BedrockModelClient:
    """Tiered Bedrock `converse` client. A tier without a model id is treated as unavailable."""

    def __init__(
        self,
        model_ids: Dict[str, str] | None = None,
        *,
        region: str = AWS_REGION,
        client: Any | None = None,
    ) -> None:
        self.model_ids = model_ids or {"mini": MODEL_ID_MINI, "std": MODEL_ID_STD, "pro": MODEL_ID_PRO}
        self.region = region
        self._client = client
        self._lock = threading.Lock()

    def _runtime(self) -> Any:
        with self._lock:
            if self._client is None:
                cfg = Config(
                    connect_timeout=BEDROCK_CONNECT_TIMEOUT,
                    read_timeout=BEDROCK_READ_TIMEOUT,
                    retries={"max_attempts": 1, "mode": "standard"},
                )
                self._client = boto3.client("bedrock-runtime", region_name=self.region, config=cfg)
            return self._client

    @retry(
        retry=retry_if_exception_type(BotoCoreError),
        stop=stop_after_attempt(MODEL_MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        reraise=True,
    )
    def _converse(self, model_id: str, prompt: str, max_tokens: int) -> Dict[str, Any]:
        return self._runtime().converse(
            modelId=model_id,
            messages=[{"role": "user", "content": [{"text": prompt}]}],
            inferenceConfig={"temperature": 0.0, "topP": 0.01, "maxTokens": max_tokens},
        )

    def complete(self, prompt: str, *, tier: str, max_tokens: int) -> ModelCompletion:
        model_id = str(self.model_ids.get(tier) or "").strip()
        if not model_id:
            raise ModelCallFailure("model_not_configured", tier=tier)

        started = time.perf_counter()
        try:
            payload = self._converse(model_id, prompt, max_tokens)
        except (BotoCoreError, ClientError) as exc:
            logger.warning("model_call_failed tier=%s model_id=%s error=%s", tier, model_id, exc)
            raise ModelCallFailure("model_call_failed", tier=tier, detail=str(exc)) from exc

        text = _converse_text(payload)
        if not text:
            raise ModelCallFailure("empty_output", tier=tier)
        usage = payload.get("usage") or {}
        return ModelCompletion(
            text=text,
            tier=tier,
            model_id=model_id,
            input_tokens=int(usage.get("inputTokens") or 0),
            output_tokens=int(usage.get("outputTokens") or 0),
            latency_ms=int((time.perf_counter() - started) * 1000),
        )
