"""Importance classification strategies.

One strategy per configured mode. Each strategy returns a ``Decision``; the
``ImportanceClassifier`` applies the configured threshold and stamps the
decision onto the message. Remote failures never escape: they degrade to the
keyword result through ``Outcome.or_else``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import math
from typing import Dict, Optional, Tuple

from core.config import ClassificationConfig, ClassificationMode
from core.errors import ClassificationServiceError, GroupwatchError
from core.models import AIVerdict, ClassificationMethod, KeywordScore, Message
from core.ports import AIServicePort
from core.result import Outcome
from core.rules_engine import score_message

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    score: float
    reason: str
    method: ClassificationMethod
    matched_keywords: Tuple[str, ...]
    sender_allowed: bool


def _keyword_decision(result: KeywordScore) -> Decision:
    return Decision(
        score=result.score,
        reason=result.reason,
        method=ClassificationMethod.KEYWORD,
        matched_keywords=result.matched_keywords,
        sender_allowed=result.sender_allowed,
    )


class ClassificationStrategy:
    """Base strategy: keyword scoring, shared by every mode."""

    def __init__(self, ai: Optional[AIServicePort] = None) -> None:
        self._ai = ai

    async def decide(self, message: Message, config: ClassificationConfig) -> Decision:
        return _keyword_decision(score_message(message, config))

    async def _ask_ai(self, message: Message, config: ClassificationConfig) -> Outcome[AIVerdict]:
        if self._ai is None or not config.ai_configured:
            return Outcome.fail(ClassificationServiceError("AI classifier is not configured"))
        outcome = await self._ai.classify(message, config)
        if outcome.is_ok and not math.isfinite(outcome.value.score):
            return Outcome.fail(ClassificationServiceError(f"AI score {outcome.value.score!r} is not finite"))
        return outcome


class KeywordOnlyStrategy(ClassificationStrategy):
    pass


class AIOnlyStrategy(ClassificationStrategy):
    async def decide(self, message: Message, config: ClassificationConfig) -> Decision:
        keyword = score_message(message, config)
        if not keyword.sender_allowed:
            return _keyword_decision(keyword)

        def fallback(error: GroupwatchError) -> Decision:
            LOGGER.warning("AI classification unavailable, using keywords: %s", error)
            return _keyword_decision(keyword)

        outcome = await self._ask_ai(message, config)
        return outcome.map(
            lambda verdict: Decision(
                score=verdict.score,
                reason=verdict.reason,
                method=ClassificationMethod.AI,
                matched_keywords=keyword.matched_keywords,
                sender_allowed=True,
            )
        ).or_else(fallback)


class BothStrategy(ClassificationStrategy):
    async def decide(self, message: Message, config: ClassificationConfig) -> Decision:
        keyword = score_message(message, config)
        if not keyword.sender_allowed:
            return _keyword_decision(keyword)

        def fallback(error: GroupwatchError) -> Decision:
            LOGGER.warning("AI classification unavailable, using keywords: %s", error)
            return _keyword_decision(keyword)

        def combine(verdict: AIVerdict) -> Decision:
            # Ties go to the keyword result.
            if keyword.score >= verdict.score:
                score, reason = keyword.score, keyword.reason
            else:
                score, reason = verdict.score, verdict.reason
            return Decision(
                score=score,
                reason=reason,
                method=ClassificationMethod.BOTH,
                matched_keywords=keyword.matched_keywords,
                sender_allowed=True,
            )

        outcome = await self._ask_ai(message, config)
        return outcome.map(combine).or_else(fallback)


class ImportanceClassifier:
    """Fill in a message's classification fields according to ``config.mode``."""

    def __init__(self, ai: Optional[AIServicePort] = None) -> None:
        self._strategies: Dict[ClassificationMode, ClassificationStrategy] = {
            ClassificationMode.KEYWORD_ONLY: KeywordOnlyStrategy(ai),
            ClassificationMode.AI_ONLY: AIOnlyStrategy(ai),
            ClassificationMode.BOTH: BothStrategy(ai),
        }

    async def classify(self, message: Message, config: ClassificationConfig) -> Message:
        decision = await self._strategies[config.mode].decide(message, config)
        score = min(max(decision.score, 0.0), 1.0) if math.isfinite(decision.score) else 0.0
        return replace(
            message,
            is_important=decision.sender_allowed and score >= config.importance_threshold,
            importance_score=score,
            method=decision.method,
            matched_keywords=decision.matched_keywords,
            reason=decision.reason,
        )
