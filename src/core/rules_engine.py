"""Rule compilation and keyword scoring logic (core domain)."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Iterable, List

from core.config import ClassificationConfig, FilterMode, KeywordRule, SenderFilter
from core.models import KeywordScore, Message

LOGGER = logging.getLogger(__name__)

# The engine's own cut-off; the importance classifier re-checks the score
# against the user-configured threshold.
DEFAULT_THRESHOLD = 0.5
WHITELIST_BONUS = 0.3


@dataclass(frozen=True)
class CompiledRule:
    """A configured rule with its pattern ready for matching."""

    rule: KeywordRule
    pattern: re.Pattern


def compile_rules(rules: Iterable[KeywordRule]) -> List[CompiledRule]:
    """Compile enabled rules, skipping any pattern that does not compile.

    Literal keywords are escaped so they match as plain substrings; regex
    rules are compiled as written.
    """

    compiled: List[CompiledRule] = []
    for rule in rules:
        if not rule.enabled:
            continue
        source = rule.keyword if rule.is_regex else re.escape(rule.keyword)
        flags = 0 if rule.case_sensitive else re.IGNORECASE
        try:
            pattern = re.compile(source, flags)
        except re.error as exc:
            LOGGER.warning("Skipping rule %s: invalid pattern %r (%s)", rule.id, rule.keyword, exc)
            continue
        compiled.append(CompiledRule(rule=rule, pattern=pattern))
    return compiled


def _filter_reason(filters: SenderFilter, sender: str) -> str:
    if filters.mode is FilterMode.WHITELIST:
        return f"sender filter: {sender} is not whitelisted"
    return f"sender filter: {sender} is blacklisted"


def _build_reason(matched: List[str], whitelisted: bool) -> str:
    parts: List[str] = []
    if matched:
        parts.append(f"keyword(s): {', '.join(matched)}")
    if whitelisted:
        parts.append("whitelisted sender bonus")
    return " + ".join(parts) if parts else "no keyword matched"


def score_message(
    message: Message,
    config: ClassificationConfig,
    whitelist_bonus: float = WHITELIST_BONUS,
) -> KeywordScore:
    """Score one message against the configured rules and sender filter.

    Scoring logic:
    - A sender rejected by the filter scores 0 without evaluating any rule.
    - Every matching enabled rule adds its weight once.
    - A whitelisted sender adds ``whitelist_bonus``.
    - The sum is clamped to [0, 1].
    """

    filters = config.filters
    if not filters.allows(message.sender):
        return KeywordScore(
            score=0.0,
            matched_keywords=(),
            matched_texts=(),
            reason=_filter_reason(filters, message.sender),
            sender_allowed=False,
            is_important=False,
        )

    total = 0.0
    matched_keywords: List[str] = []
    matched_texts: List[str] = []
    for compiled in compile_rules(config.rules):
        hit = compiled.pattern.search(message.content)
        if hit is None:
            continue
        total += compiled.rule.weight
        matched_keywords.append(compiled.rule.keyword)
        matched_texts.append(hit.group(0))

    whitelisted = filters.is_whitelisted(message.sender)
    if whitelisted:
        total += whitelist_bonus

    score = min(max(total, 0.0), 1.0)
    return KeywordScore(
        score=score,
        matched_keywords=tuple(matched_keywords),
        matched_texts=tuple(matched_texts),
        reason=_build_reason(matched_keywords, whitelisted),
        sender_allowed=True,
        is_important=score >= DEFAULT_THRESHOLD,
    )
