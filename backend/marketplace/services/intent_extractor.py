"""
Intent Extractor
────────────────
Asks the chat model whether the customer's message (plus what we already
know) pins down a product, or what to ask next.

The model must answer with one of:

    {"action": "ASK_CLARIFICATION", "questions": [...], "quickReplies": [...]}
    {"action": "READY_TO_SEARCH",   "intent": {"brand"?, "type"?, "packageInfo"?}}

Anything else (transport error, timeout, non-JSON, missing or unknown
action) raises ExtractionError. The conversation flow treats all of those
the same way: it falls back to its own clarification policy.
"""
import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from marketplace.config.settings import settings
from marketplace.prompts.intent_prompts import INTENT_SYSTEM_PROMPT, build_intent_user_prompt
from marketplace.utils.logger import get_logger

logger = get_logger(__name__)

ASK_CLARIFICATION = "ASK_CLARIFICATION"
READY_TO_SEARCH = "READY_TO_SEARCH"

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class ExtractionError(Exception):
    pass


@dataclass
class ExtractorDecision:
    action: str
    questions: List[str] = field(default_factory=list)
    quick_replies: List[str] = field(default_factory=list)
    # Sparse slot patch, only for READY_TO_SEARCH
    intent: Dict[str, Any] = field(default_factory=dict)


def extract_json(text: Optional[str]) -> Optional[dict]:
    """First {...} block of a model reply, parsed; None if there is none."""
    if not text:
        return None
    match = _JSON_OBJECT.search(str(text))
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _strings(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


def parse_decision(text: Optional[str]) -> ExtractorDecision:
    parsed = extract_json(text)
    if not parsed or not parsed.get("action"):
        raise ExtractionError("Extractor reply has no action")

    action = parsed["action"]
    if action == ASK_CLARIFICATION:
        return ExtractorDecision(
            action=action,
            questions=_strings(parsed.get("questions")) or ["Please refine your request."],
            quick_replies=_strings(parsed.get("quickReplies")),
        )
    if action == READY_TO_SEARCH:
        intent = parsed.get("intent") or {}
        if not isinstance(intent, dict):
            raise ExtractionError("Extractor intent is not an object")
        return ExtractorDecision(action=action, intent=intent)
    raise ExtractionError(f"Unknown extractor action: {action!r}")


class IntentExtractor:
    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self.model = model or settings.intent_model
        self.timeout = timeout if timeout is not None else settings.extractor_timeout_seconds

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=settings.openai_api_key, timeout=self.timeout)
        return self._client

    async def extract(
        self,
        *,
        text: str,
        candidates: List[Dict[str, Any]],
        known: Dict[str, Any],
    ) -> ExtractorDecision:
        user_prompt = build_intent_user_prompt(
            json.dumps(candidates, ensure_ascii=False),
            json.dumps(known, ensure_ascii=False),
            json.dumps(text, ensure_ascii=False),
        )
        logger.info("extract — text=%r candidates=%d known=%s", text, len(candidates), known)

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": INTENT_SYSTEM_PROMPT},
                        {"role": "user", "content": user_prompt},
                    ],
                    response_format={"type": "json_object"},
                    temperature=0.2,
                    max_tokens=400,
                ),
                timeout=self.timeout,
            )
            content = response.choices[0].message.content
        except asyncio.TimeoutError as e:
            raise ExtractionError(f"Extractor timed out after {self.timeout}s") from e
        except Exception as e:
            raise ExtractionError(f"Extractor call failed: {e}") from e

        decision = parse_decision(content)
        logger.info("extract — action=%s intent=%s", decision.action, decision.intent)
        return decision


intent_extractor = IntentExtractor()
