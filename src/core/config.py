"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet, Mapping, Tuple
import uuid

DEFAULT_AI_ENDPOINT = "https://open.bigmodel.cn/api/paas/v4/chat/completions"
DEFAULT_AI_MODEL = "glm-4-flash"


class ClassificationMode(str, Enum):
    KEYWORD_ONLY = "keyword_only"
    AI_ONLY = "ai_only"
    BOTH = "both"


class FilterMode(str, Enum):
    NONE = "none"
    WHITELIST = "whitelist"
    BLACKLIST = "blacklist"


@dataclass(frozen=True)
class KeywordRule:
    """A single configured keyword or pattern with its weight."""

    keyword: str
    weight: float = 0.5
    is_regex: bool = False
    case_sensitive: bool = False
    enabled: bool = True
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class SenderFilter:
    mode: FilterMode = FilterMode.NONE
    whitelist: FrozenSet[str] = frozenset()
    blacklist: FrozenSet[str] = frozenset()

    def allows(self, sender: str) -> bool:
        if self.mode is FilterMode.WHITELIST:
            return sender in self.whitelist
        if self.mode is FilterMode.BLACKLIST:
            return sender not in self.blacklist
        return True

    def is_whitelisted(self, sender: str) -> bool:
        return self.mode is FilterMode.WHITELIST and sender in self.whitelist


@dataclass(frozen=True)
class ClassificationConfig:
    """Settings read by value for every message that gets classified."""

    mode: ClassificationMode = ClassificationMode.KEYWORD_ONLY
    importance_threshold: float = 0.5
    rules: Tuple[KeywordRule, ...] = ()
    filters: SenderFilter = SenderFilter()
    ai_endpoint: str = DEFAULT_AI_ENDPOINT
    ai_credential: str = ""
    ai_model: str = DEFAULT_AI_MODEL
    monitored_groups: FrozenSet[str] = frozenset()

    @property
    def ai_configured(self) -> bool:
        return bool(self.ai_endpoint and self.ai_credential)

    def is_monitored(self, group: str) -> bool:
        # An empty set means every group is watched.
        return not self.monitored_groups or group in self.monitored_groups


def _unit_interval(value: Any, name: str) -> float:
    number = float(value)
    if not 0.0 <= number <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {number}")
    return number


def build_rule(raw: Mapping[str, Any]) -> KeywordRule:
    keyword = raw.get("keyword")
    if not keyword:
        raise ValueError("keyword rule requires a non-empty 'keyword'")
    kwargs = {}
    if raw.get("id"):
        kwargs["id"] = str(raw["id"])
    return KeywordRule(
        keyword=str(keyword),
        weight=_unit_interval(raw.get("weight", 0.5), "weight"),
        is_regex=bool(raw.get("is_regex", False)),
        case_sensitive=bool(raw.get("case_sensitive", False)),
        enabled=bool(raw.get("enabled", True)),
        **kwargs,
    )


def build_classification_config(raw: Mapping[str, Any]) -> ClassificationConfig:
    """Build a config from the flat JSON shape used in config.json."""

    filters_raw = raw.get("sender_filter", {}) or {}
    filters = SenderFilter(
        mode=FilterMode(filters_raw.get("mode", FilterMode.NONE.value)),
        whitelist=frozenset(filters_raw.get("whitelist", []) or []),
        blacklist=frozenset(filters_raw.get("blacklist", []) or []),
    )
    return ClassificationConfig(
        mode=ClassificationMode(raw.get("mode", ClassificationMode.KEYWORD_ONLY.value)),
        importance_threshold=_unit_interval(
            raw.get("importance_threshold", 0.5), "importance_threshold"
        ),
        rules=tuple(build_rule(rule) for rule in raw.get("rules", []) or []),
        filters=filters,
        ai_endpoint=str(raw.get("ai_endpoint") or DEFAULT_AI_ENDPOINT),
        ai_credential=str(raw.get("ai_credential") or ""),
        ai_model=str(raw.get("ai_model") or DEFAULT_AI_MODEL),
        monitored_groups=frozenset(raw.get("monitored_groups", []) or []),
    )


def dump_classification_config(
    config: ClassificationConfig, include_credential: bool = False
) -> dict:
    """Inverse of :func:`build_classification_config`.

    The credential is left out unless asked for, so keys that came from the
    environment are not copied into config.json.
    """

    data = {
        "mode": config.mode.value,
        "importance_threshold": config.importance_threshold,
        "rules": [
            {
                "id": rule.id,
                "keyword": rule.keyword,
                "weight": rule.weight,
                "is_regex": rule.is_regex,
                "case_sensitive": rule.case_sensitive,
                "enabled": rule.enabled,
            }
            for rule in config.rules
        ],
        "sender_filter": {
            "mode": config.filters.mode.value,
            "whitelist": sorted(config.filters.whitelist),
            "blacklist": sorted(config.filters.blacklist),
        },
        "ai_endpoint": config.ai_endpoint,
        "ai_model": config.ai_model,
        "monitored_groups": sorted(config.monitored_groups),
    }
    if include_credential and config.ai_credential:
        data["ai_credential"] = config.ai_credential
    return data
