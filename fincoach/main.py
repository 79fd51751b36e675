from __future__ import annotations

import logging
import os
from typing import Any, Dict

from bedrock_agentcore import BedrockAgentCoreApp
from dotenv import load_dotenv
from pydantic import ValidationError

from .contracts import ChatContext
from .engine import ChatEngine
from .session import SessionStore

load_dotenv()
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"), format="%(asctime)s %(levelname)s %(name)s %(message)s")

logger = logging.getLogger(__name__)
app = BedrockAgentCoreApp()
sessions = SessionStore()

_ENGINE: ChatEngine | None = None


def get_engine() -> ChatEngine:
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = ChatEngine()
        logger.info("Startup: chat engine initialized rules=%s", _ENGINE.router.rules.version)
    return _ENGINE


def _parse_context(raw: Any) -> tuple[ChatContext, list[str]]:
    if isinstance(raw, ChatContext):
        return raw, []
    if not isinstance(raw, dict):
        return ChatContext(), []
    try:
        return ChatContext.model_validate(raw), []
    except ValidationError as exc:
        errors = [f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}" for item in exc.errors()]
        logger.warning("context_invalid errors=%s", "; ".join(errors[:5]))
        return ChatContext(), errors


@app.entrypoint
def invoke(payload: Dict[str, Any], context: Any | None = None) -> Dict[str, Any]:
    prompt = str(payload.get("prompt", "") or "")
    conversation_id = str(payload.get("conversation_id") or "").strip() or None
    chat_context, context_errors = _parse_context(payload.get("context"))
    session = sessions.get_or_create(conversation_id)

    result = get_engine().run(prompt, chat_context, session)
    return {
        "result": result.response.model_dump(mode="json", exclude_none=True),
        "trace_id": result.trace_id,
        "conversation_id": session.conversation_id,
        "routing_meta": {
            "intent": result.trace.get("intent", ""),
            "route_decision": result.route_decision.model_dump(mode="json") if result.route_decision else {},
            "answerability": result.answerability.model_dump(mode="json") if result.answerability else {},
            "path": result.trace.get("path", ""),
        },
        "response_meta": {
            "fact_pack_hash": result.fact_pack_hash,
            "reason_codes": result.reason_codes,
            "context_errors": context_errors,
            **{key: value for key, value in result.trace.items() if key not in {"intent", "path"}},
        },
    }


if __name__ == "__main__":
    app.run()
