from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from graded_chat.errors import ChatEngineError

HAIKU_MODEL = "claude-haiku-4-5-20251001"
SONNET_MODEL = "claude-sonnet-4-5-20250929"
OPUS_MODEL = "claude-opus-4-6"

HAIKU = "HAIKU"
SONNET = "SONNET"

# Slash command name -> model id for per-message overrides.
FORCED_MODELS = {
    "haiku": HAIKU_MODEL,
    "sonnet": SONNET_MODEL,
    "opus": OPUS_MODEL,
}

CONFIDENCE_THRESHOLD = 0.8
CLASSIFIER_MAX_TOKENS = 64

CLASSIFICATION_PROMPT = """\
Classify the user's message into a processing tier based on the message and the conversation arc provided.

HAIKU: greetings, casual chat, acknowledgments, follow-ups, advice, planning, opinions, \
simple explanations, simple code questions, short creative writing, factual lookups, \
and anything else that can be answered well without deep multi-step reasoning and without tools.

SONNET: weather queries, web search queries, any request requiring tool use, complex multi-step \
reasoning, writing or debugging substantial code, detailed document analysis, extended creative \
writing, comparative analysis, technical architecture and research synthesis.

When in doubt between HAIKU and SONNET, choose HAIKU. Never answer OPUS.

Respond with ONLY a JSON object, no other text:
{"tier": "HAIKU|SONNET", "confidence": 0.0-1.0}"""


class SingleShotProvider(Protocol):
    async def single_shot(
        self,
        model: str,
        system_prompt: str,
        messages: list[dict],
        *,
        max_tokens: int = 256,
    ) -> tuple[str, int, int]: ...


@dataclass(frozen=True)
class Classification:
    tier: str
    confidence: float


@dataclass(frozen=True)
class RouterDecision:
    model: str
    tier: str
    confidence: float
    input_tokens: int = 0
    output_tokens: int = 0


def build_classification_prompt(user_text: str, tips: Sequence[str]) -> str:
    prompt = ""
    if tips:
        prompt += "[Conversation arc]\n"
        for index, tip in enumerate(tips, 1):
            prompt += f"Turn {index}: {tip}\n"
        prompt += "\n"
    return prompt + f"[Current message]\n{user_text}"


def parse_classification(text: str) -> Classification:
    """Read the classifier reply. Anything unreadable counts as a confident HAIKU."""
    cleaned = text.replace("```json", "").replace("```", "").strip()
    if "\n" in cleaned:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start != -1 and end > start:
            cleaned = cleaned[start:end + 1]

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        data = None
    tier = data.get("tier") if isinstance(data, dict) else None
    confidence = data.get("confidence") if isinstance(data, dict) else None
    if not isinstance(tier, str) or isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        logger.warning(f"Router reply not understood, defaulting to Haiku: {text[:200]!r}")
        return Classification(HAIKU, 1.0)

    # OPUS and unknown tiers are capped at SONNET.
    return Classification(HAIKU if tier.upper() == HAIKU else SONNET, float(confidence))


def apply_escalation(classification: Classification) -> str:
    """Model id for a classification. Low-confidence HAIKU escalates to SONNET."""
    if classification.tier == HAIKU and classification.confidence >= CONFIDENCE_THRESHOLD:
        return HAIKU_MODEL
    return SONNET_MODEL


class ModelRouter:
    """Picks a model per message with a one-shot Haiku classification.

    Tips of earlier turns give the classifier the conversation arc. Failures
    of the classification call never fail the turn; they route to Sonnet.
    """

    def __init__(self, provider: SingleShotProvider):
        self._provider = provider

    async def classify(self, user_text: str, tips: Sequence[str] = ()) -> RouterDecision:
        messages = [{"role": "user", "content": build_classification_prompt(user_text, tips)}]
        try:
            text, input_tokens, output_tokens = await self._provider.single_shot(
                HAIKU_MODEL,
                CLASSIFICATION_PROMPT,
                messages,
                max_tokens=CLASSIFIER_MAX_TOKENS,
            )
        except ChatEngineError as ex:
            logger.warning(f"Router failed: {ex}, defaulting to Sonnet")
            return RouterDecision(SONNET_MODEL, SONNET, 0.0)

        classification = parse_classification(text)
        model = apply_escalation(classification)
        logger.info(
            f"Router: {classification.tier} (confidence {classification.confidence:.2f}) -> {model}"
        )
        return RouterDecision(
            model=model,
            tier=classification.tier,
            confidence=classification.confidence,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
