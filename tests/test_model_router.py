import asyncio
import unittest

from graded_chat.errors import TransportError
from graded_chat.model_router import (
    CLASSIFICATION_PROMPT,
    HAIKU,
    HAIKU_MODEL,
    SONNET,
    SONNET_MODEL,
    Classification,
    ModelRouter,
    apply_escalation,
    build_classification_prompt,
    parse_classification,
)


class _FakeClassifier:
    def __init__(self, reply: str = "", error: Exception | None = None) -> None:
        self._reply = reply
        self._error = error
        self.calls: list[dict] = []

    async def single_shot(self, model, system_prompt, messages, *, max_tokens=256):
        self.calls.append(
            {"model": model, "system_prompt": system_prompt, "messages": messages, "max_tokens": max_tokens}
        )
        if self._error is not None:
            raise self._error
        return self._reply, 90, 12


class ClassificationPromptTests(unittest.TestCase):
    def test_without_tips(self) -> None:
        self.assertEqual("[Current message]\nhello", build_classification_prompt("hello", []))

    def test_tips_form_the_conversation_arc(self) -> None:
        prompt = build_classification_prompt("and tomorrow?", ["Greeted user", "Gave weather for Paris"])
        self.assertEqual(
            "[Conversation arc]\nTurn 1: Greeted user\nTurn 2: Gave weather for Paris\n\n"
            "[Current message]\nand tomorrow?",
            prompt,
        )


class ParseClassificationTests(unittest.TestCase):
    def test_plain_json(self) -> None:
        self.assertEqual(Classification(HAIKU, 0.95), parse_classification('{"tier": "HAIKU", "confidence": 0.95}'))

    def test_fenced_json_with_surrounding_text(self) -> None:
        reply = 'Here you go:\n```json\n{"tier": "sonnet", "confidence": 0.7}\n```'
        self.assertEqual(Classification(SONNET, 0.7), parse_classification(reply))

    def test_opus_and_unknown_tiers_are_capped_at_sonnet(self) -> None:
        self.assertEqual(SONNET, parse_classification('{"tier": "OPUS", "confidence": 1}').tier)
        self.assertEqual(SONNET, parse_classification('{"tier": "GPT", "confidence": 1}').tier)

    def test_unreadable_reply_is_a_confident_haiku(self) -> None:
        for reply in ("HAIKU", '{"tier": "HAIKU"}', '{"tier": 3, "confidence": 0.9}', "[]", ""):
            with self.subTest(reply=reply):
                self.assertEqual(Classification(HAIKU, 1.0), parse_classification(reply))


class EscalationTests(unittest.TestCase):
    def test_confident_haiku_stays(self) -> None:
        self.assertEqual(HAIKU_MODEL, apply_escalation(Classification(HAIKU, 0.8)))

    def test_unsure_haiku_escalates(self) -> None:
        self.assertEqual(SONNET_MODEL, apply_escalation(Classification(HAIKU, 0.79)))

    def test_sonnet_never_drops(self) -> None:
        self.assertEqual(SONNET_MODEL, apply_escalation(Classification(SONNET, 0.1)))
        self.assertEqual(SONNET_MODEL, apply_escalation(Classification(SONNET, 1.0)))


class ModelRouterTests(unittest.TestCase):
    def test_classifies_with_haiku_and_tips(self) -> None:
        classifier = _FakeClassifier('{"tier": "HAIKU", "confidence": 0.9}')

        decision = asyncio.run(ModelRouter(classifier).classify("thanks!", ["Answered a question"]))

        self.assertEqual(HAIKU_MODEL, decision.model)
        self.assertEqual((HAIKU, 0.9), (decision.tier, decision.confidence))
        self.assertEqual((90, 12), (decision.input_tokens, decision.output_tokens))
        call = classifier.calls[0]
        self.assertEqual(HAIKU_MODEL, call["model"])
        self.assertEqual(CLASSIFICATION_PROMPT, call["system_prompt"])
        self.assertEqual(64, call["max_tokens"])
        self.assertIn("Turn 1: Answered a question", call["messages"][0]["content"])

    def test_failed_classification_routes_to_sonnet(self) -> None:
        classifier = _FakeClassifier(error=TransportError.from_status(529, "overloaded"))

        decision = asyncio.run(ModelRouter(classifier).classify("what's the weather?"))

        self.assertEqual(SONNET_MODEL, decision.model)
        self.assertEqual(0.0, decision.confidence)
        self.assertEqual((0, 0), (decision.input_tokens, decision.output_tokens))


if __name__ == "__main__":
    unittest.main()
