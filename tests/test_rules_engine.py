from __future__ import annotations

from datetime import datetime, timezone

from core.config import ClassificationConfig, FilterMode, KeywordRule, SenderFilter
from core.models import Message
from core.rules_engine import WHITELIST_BONUS, compile_rules, score_message


def _message(content: str, sender: str = "Alice") -> Message:
    return Message(
        group="Team",
        sender=sender,
        content=content,
        received_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
    )


def _config(*rules: KeywordRule, filters: SenderFilter = SenderFilter()) -> ClassificationConfig:
    return ClassificationConfig(rules=tuple(rules), filters=filters)


def test_matching_keyword_scores_its_weight() -> None:
    result = score_message(_message("今晚会议延后"), _config(KeywordRule("会议", weight=0.6)))
    assert result.score == 0.6
    assert result.is_important
    assert result.matched_keywords == ("会议",)
    assert result.matched_texts == ("会议",)
    assert "会议" in result.reason


def test_no_match_scores_zero() -> None:
    result = score_message(_message("周末一起吃饭"), _config(KeywordRule("会议", weight=0.6)))
    assert result.score == 0.0
    assert not result.is_important
    assert result.matched_keywords == ()
    assert result.reason == "no keyword matched"


def test_blacklisted_sender_scores_zero_even_with_match() -> None:
    filters = SenderFilter(mode=FilterMode.BLACKLIST, blacklist=frozenset({"Bot"}))
    result = score_message(_message("会议 now", sender="Bot"), _config(KeywordRule("会议", weight=0.6), filters=filters))
    assert result.score == 0.0
    assert not result.is_important
    assert not result.sender_allowed
    assert "sender filter" in result.reason
    assert result.matched_keywords == ()


def test_sender_missing_from_whitelist_is_filtered() -> None:
    filters = SenderFilter(mode=FilterMode.WHITELIST, whitelist=frozenset({"Boss"}))
    result = score_message(_message("urgent"), _config(KeywordRule("urgent", weight=0.9), filters=filters))
    assert result.score == 0.0
    assert not result.sender_allowed
    assert "not whitelisted" in result.reason


def test_whitelisted_sender_gets_bonus() -> None:
    filters = SenderFilter(mode=FilterMode.WHITELIST, whitelist=frozenset({"Boss"}))
    result = score_message(
        _message("lunch?", sender="Boss"),
        _config(KeywordRule("urgent", weight=0.9), filters=filters),
    )
    assert result.score == WHITELIST_BONUS
    assert result.reason == "whitelisted sender bonus"


def test_score_is_clamped_to_one() -> None:
    config = _config(KeywordRule("deadline", weight=0.8), KeywordRule("urgent", weight=0.7))
    result = score_message(_message("urgent: deadline tomorrow"), config)
    assert result.score == 1.0
    assert result.matched_keywords == ("deadline", "urgent")
    assert result.reason == "keyword(s): deadline, urgent"


def test_each_rule_counts_once_per_message() -> None:
    result = score_message(_message("urgent urgent urgent"), _config(KeywordRule("urgent", weight=0.2)))
    assert result.score == 0.2


def test_literal_keywords_are_not_regex() -> None:
    result = score_message(_message("version 1x0"), _config(KeywordRule("1.0", weight=0.6)))
    assert result.score == 0.0


def test_regex_rule_matches_pattern() -> None:
    rule = KeywordRule(r"meeting\s+at\s+\d{1,2}", weight=0.6, is_regex=True)
    result = score_message(_message("Meeting at 10 in room B"), _config(rule))
    assert result.score == 0.6
    assert result.matched_texts == ("Meeting at 10",)


def test_invalid_regex_is_skipped() -> None:
    config = _config(
        KeywordRule("(unclosed", weight=0.9, is_regex=True),
        KeywordRule("deploy", weight=0.6),
    )
    result = score_message(_message("(unclosed deploy"), config)
    assert result.score == 0.6
    assert result.matched_keywords == ("deploy",)


def test_case_sensitive_rule() -> None:
    rule = KeywordRule("URGENT", weight=0.6, case_sensitive=True)
    assert score_message(_message("urgent"), _config(rule)).score == 0.0
    assert score_message(_message("URGENT"), _config(rule)).score == 0.6


def test_disabled_rules_are_not_compiled() -> None:
    rules = [KeywordRule("a", enabled=False), KeywordRule("b")]
    assert [compiled.rule.keyword for compiled in compile_rules(rules)] == ["b"]
